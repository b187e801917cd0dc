"""Single party check consumed by every orchestration step."""
import enum
from typing import Optional

from app.errors import AuthorizationError


class Party(str, enum.Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


def party_of(caller_id: str, transaction) -> Optional[Party]:
    if caller_id == transaction.sender_id:
        return Party.SENDER
    if caller_id == transaction.receiver_id:
        return Party.RECEIVER
    return None


def require_party(caller_id: str, transaction, party: Optional[Party] = None) -> Party:
    """
    Raise AuthorizationError unless caller is `party` on transaction.
    With party=None either side is accepted.
    """
    actual = party_of(caller_id, transaction)
    if actual is None or (party is not None and actual != party):
        wanted = party.value if party else "a party"
        raise AuthorizationError(
            f"Only {wanted} of transaction {transaction.transaction_number} "
            f"may perform this action"
        )
    return actual
