"""
Unit tests for the token codec and hashing helpers.
"""
import base64

import pytest

from app.errors import DecryptionError
from app.services import crypto

PAYLOAD = {
    "transaction_id": "txn_abc",
    "type": "qr1",
    "amount": "500.00",
    "sender_id": "usr_sender",
    "receiver_id": "usr_receiver",
    "timestamp": 1700000000000,
    "expires_at": 1700000900000,
    "nonce": "a1b2c3d4e5f60718",
}


@pytest.fixture
def key_iv():
    return crypto.generate_key(), crypto.generate_iv()


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------
class TestKeyMaterial:
    def test_key_is_32_bytes_hex(self):
        assert len(bytes.fromhex(crypto.generate_key())) == 32

    def test_iv_is_16_bytes_hex(self):
        assert len(bytes.fromhex(crypto.generate_iv())) == 16

    def test_keys_are_random(self):
        assert crypto.generate_key() != crypto.generate_key()


# ---------------------------------------------------------------------------
# encrypt / decrypt
# ---------------------------------------------------------------------------
class TestCodec:
    def test_decrypt_returns_original_payload(self, key_iv):
        key, iv = key_iv
        assert crypto.decrypt(crypto.encrypt(PAYLOAD, key, iv), key, iv) == PAYLOAD

    def test_blob_is_urlsafe_base64(self, key_iv):
        key, iv = key_iv
        blob = crypto.encrypt(PAYLOAD, key, iv)
        assert "+" not in blob and "/" not in blob
        base64.urlsafe_b64decode(blob)

    def test_same_payload_same_key_is_deterministic(self, key_iv):
        key, iv = key_iv
        assert crypto.encrypt(PAYLOAD, key, iv) == crypto.encrypt(PAYLOAD, key, iv)

    def test_different_nonce_changes_first_block(self, key_iv):
        key, iv = key_iv
        other = dict(PAYLOAD, nonce="ffffffffffffffff")
        a = base64.urlsafe_b64decode(crypto.encrypt(PAYLOAD, key, iv))
        b = base64.urlsafe_b64decode(crypto.encrypt(other, key, iv))
        assert a[:16] != b[:16]

    def test_wrong_key_rejected(self, key_iv):
        key, iv = key_iv
        blob = crypto.encrypt(PAYLOAD, key, iv)
        with pytest.raises(DecryptionError):
            crypto.decrypt(blob, crypto.generate_key(), iv)

    def test_wrong_iv_rejected(self, key_iv):
        key, iv = key_iv
        blob = crypto.encrypt(PAYLOAD, key, iv)
        with pytest.raises(DecryptionError):
            crypto.decrypt(blob, key, crypto.generate_iv())

    def test_flipped_ciphertext_byte_rejected(self, key_iv):
        key, iv = key_iv
        raw = bytearray(base64.urlsafe_b64decode(crypto.encrypt(PAYLOAD, key, iv)))
        raw[3] ^= 0x01
        tampered = base64.urlsafe_b64encode(bytes(raw)).decode()
        with pytest.raises(DecryptionError, match="integrity"):
            crypto.decrypt(tampered, key, iv)

    def test_truncated_blob_rejected(self, key_iv):
        key, iv = key_iv
        raw = base64.urlsafe_b64decode(crypto.encrypt(PAYLOAD, key, iv))
        truncated = base64.urlsafe_b64encode(raw[:-5]).decode()
        with pytest.raises(DecryptionError):
            crypto.decrypt(truncated, key, iv)

    def test_garbage_rejected(self, key_iv):
        key, iv = key_iv
        with pytest.raises(DecryptionError):
            crypto.decrypt("not-a-token", key, iv)

    def test_empty_blob_rejected(self, key_iv):
        key, iv = key_iv
        with pytest.raises(DecryptionError):
            crypto.decrypt("", key, iv)

    def test_malformed_key_rejected(self):
        with pytest.raises(DecryptionError, match="key"):
            crypto.encrypt(PAYLOAD, "zz", crypto.generate_iv())

    def test_short_iv_rejected(self):
        with pytest.raises(DecryptionError, match="iv"):
            crypto.encrypt(PAYLOAD, crypto.generate_key(), "00" * 8)


class TestSerialize:
    def test_nonce_leads(self):
        assert crypto.serialize(PAYLOAD).startswith(b'{"nonce":')

    def test_extra_fields_sorted_after_known(self):
        out = crypto.serialize({"zeta": 1, "alpha": 2, "type": "qr2"})
        assert out == b'{"type":"qr2","alpha":2,"zeta":1}'


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------
class TestHashing:
    def test_hash_is_sha256_hex(self):
        assert crypto.hash_value("123456") == (
            "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92"
        )

    def test_verify_hash_matches(self):
        assert crypto.verify_hash("123456", crypto.hash_value("123456"))

    def test_verify_hash_rejects_other_value(self):
        assert not crypto.verify_hash("654321", crypto.hash_value("123456"))

    def test_verify_hash_handles_missing_digest(self):
        assert not crypto.verify_hash("123456", None)
