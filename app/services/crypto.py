"""
Token codec for QR bearer strings.

AES-256-CBC with PKCS7 padding, authenticated with HMAC-SHA256 over
iv + ciphertext (encrypt-then-MAC). Encryption and MAC subkeys are derived
from the per-transaction key with HKDF, so a single hex key is all a
transaction row has to store.

Blob layout (URL-safe base64): ciphertext || tag(32 bytes)
"""
import base64
import binascii
import hashlib
import hmac
import json
import secrets
from typing import Any, Dict, Tuple

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.errors import DecryptionError

KEY_BYTES = 32
IV_BYTES = 16
TAG_BYTES = 32
HKDF_INFO = b"qr-token-codec/v1"

# Nonce leads the serialized payload so QR1 and QR2 (same key and IV)
# diverge from the first cipher block.
FIELD_ORDER = (
    "nonce",
    "transaction_id",
    "type",
    "amount",
    "sender_id",
    "receiver_id",
    "timestamp",
    "expires_at",
)


def generate_key() -> str:
    return secrets.token_hex(KEY_BYTES)


def generate_iv() -> str:
    return secrets.token_hex(IV_BYTES)


def _parse_hex(value: str, size: int, label: str) -> bytes:
    try:
        raw = bytes.fromhex(value)
    except (TypeError, ValueError):
        raise DecryptionError(f"{label} is not valid hex")
    if len(raw) != size:
        raise DecryptionError(f"{label} must be {size} bytes, got {len(raw)}")
    return raw


def _subkeys(key: str) -> Tuple[bytes, bytes]:
    material = HKDF(
        algorithm=hashes.SHA256(),
        length=64,
        salt=None,
        info=HKDF_INFO,
    ).derive(_parse_hex(key, KEY_BYTES, "key"))
    return material[:32], material[32:]


def serialize(payload: Dict[str, Any]) -> bytes:
    """Deterministic JSON: known fields in FIELD_ORDER, extras sorted after."""
    ordered = {k: payload[k] for k in FIELD_ORDER if k in payload}
    for k in sorted(payload):
        if k not in ordered:
            ordered[k] = payload[k]
    return json.dumps(ordered, separators=(",", ":")).encode("utf-8")


def encrypt(payload: Dict[str, Any], key: str, iv: str) -> str:
    enc_key, mac_key = _subkeys(key)
    iv_bytes = _parse_hex(iv, IV_BYTES, "iv")

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(serialize(payload)) + padder.finalize()

    encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv_bytes)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    tag = hmac.new(mac_key, iv_bytes + ciphertext, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(ciphertext + tag).decode("ascii")


def decrypt(blob: str, key: str, iv: str) -> Dict[str, Any]:
    """
    Inverse of encrypt(). Raises DecryptionError unless the blob was produced
    with exactly this key/iv pair; never returns a partial payload.
    """
    enc_key, mac_key = _subkeys(key)
    iv_bytes = _parse_hex(iv, IV_BYTES, "iv")

    try:
        raw = base64.urlsafe_b64decode(blob.encode("ascii"))
    except (AttributeError, UnicodeEncodeError, binascii.Error, ValueError):
        raise DecryptionError("Token is not valid base64")

    block = algorithms.AES.block_size // 8
    if len(raw) < TAG_BYTES + block or (len(raw) - TAG_BYTES) % block:
        raise DecryptionError("Token has an invalid length")

    ciphertext, tag = raw[:-TAG_BYTES], raw[-TAG_BYTES:]
    expected = hmac.new(mac_key, iv_bytes + ciphertext, hashlib.sha256).digest()
    if not hmac.compare_digest(expected, tag):
        raise DecryptionError("Token integrity check failed")

    decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv_bytes)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        data = unpadder.update(padded) + unpadder.finalize()
        payload = json.loads(data.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise DecryptionError("Token payload is malformed")

    if not isinstance(payload, dict):
        raise DecryptionError("Token payload is not an object")
    return payload


def hash_value(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def verify_hash(data: str, digest: str) -> bool:
    return hmac.compare_digest(hash_value(data), digest or "")
