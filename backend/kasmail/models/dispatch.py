"""
Value types that flow through the send pipeline.

These never touch the database directly; MessageRecord (models.message) is
the persisted shape.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


@dataclass(frozen=True)
class SenderIdentity:
    """Wallet address of the sender plus its balance in sompi (never a float)."""
    address: str
    balance: int = 0


@dataclass(frozen=True)
class SendPreferences:
    only_internal: bool = True


@dataclass(frozen=True)
class InternalAddress:
    """A validated Kaspa address reachable inside KasMail."""
    address: str


@dataclass(frozen=True)
class ExternalAddress:
    """A conventional email address reachable only through the relay."""
    email: str


RecipientTarget = Union[InternalAddress, ExternalAddress]


@dataclass(frozen=True)
class MinerAddress:
    address: str
    rank: Optional[int] = None
    is_active: bool = True


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    balance: int = 0
    reason: Optional[str] = None


class PaymentState(str, Enum):
    NOT_STARTED = "not_started"
    DEV_FEE_ATTEMPTED = "dev_fee_attempted"
    MINER_FEE_ATTEMPTED = "miner_fee_attempted"
    SETTLED = "settled"


@dataclass
class FeeTransactionOutcome:
    """
    Result of the two anti-bot fee transfers.

    Both transaction ids are independently optional; ``settled`` is True when
    at least one of them is present.
    """
    dev_fee_txid: Optional[str] = None
    miner_fee_txid: Optional[str] = None
    miner_address: Optional[str] = None
    state: PaymentState = PaymentState.NOT_STARTED

    @property
    def settled(self) -> bool:
        return bool(self.dev_fee_txid or self.miner_fee_txid)


@dataclass(frozen=True)
class OutgoingAttachment:
    """Raw attachment as received from the compose form."""
    content: bytes
    filename: str
    content_type: Optional[str] = None
