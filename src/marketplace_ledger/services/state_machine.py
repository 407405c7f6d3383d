"""Payment and payout state machines with transition validation."""

from __future__ import annotations

from enum import Enum

from marketplace_ledger.exceptions import LedgerError


class PaymentStatus(str, Enum):
    """Payment status values."""

    PENDING = "pending"
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"


class PayoutStatus(str, Enum):
    """Payout status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FeeStatus(str, Enum):
    """Platform fee record collection status."""

    PENDING = "pending"
    COLLECTED = "collected"
    REFUNDED = "refunded"


class FeePayoutStatus(str, Enum):
    """Platform fee record payout status."""

    PENDING = "pending"
    RESERVED = "reserved"
    PROCESSING = "processing"
    PAID = "paid"


class InvalidTransitionError(LedgerError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = str(getattr(from_status, "value", from_status))
        self.to_status = str(getattr(to_status, "value", to_status))
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


def _value(status: str) -> str:
    # Enum members hash by name, so tables are keyed by plain values
    return status.value if isinstance(status, Enum) else status


class _StateMachine:
    VALID_TRANSITIONS: dict[str, list[str]] = {}
    TERMINAL: set[str] = set()

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(_value(from_status), [])
        return _value(to_status) in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(_value(current_status), [])

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return _value(status) in cls.TERMINAL


class PaymentStateMachine(_StateMachine):
    """State machine for payment status transitions.

    Allowed transitions:
    - pending → initiated (gateway accepted the intent)
    - pending → failed (gateway rejected or timed out)
    - initiated → completed | failed (webhook or status poll)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PaymentStatus.PENDING.value: [PaymentStatus.INITIATED.value, PaymentStatus.FAILED.value],
        PaymentStatus.INITIATED.value: [PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value],
        PaymentStatus.COMPLETED.value: [],  # Terminal state
        PaymentStatus.FAILED.value: [],  # Terminal state
    }

    TERMINAL = {PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value}


class PayoutStateMachine(_StateMachine):
    """State machine for payout status transitions.

    Allowed transitions:
    - pending → processing (operator approves)
    - pending → cancelled
    - processing → paid (disbursement succeeded)
    - processing → failed (disbursement rejected)
    - processing → cancelled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayoutStatus.PENDING.value: [PayoutStatus.PROCESSING.value, PayoutStatus.CANCELLED.value],
        PayoutStatus.PROCESSING.value: [
            PayoutStatus.PAID.value,
            PayoutStatus.FAILED.value,
            PayoutStatus.CANCELLED.value,
        ],
        PayoutStatus.PAID.value: [],
        PayoutStatus.FAILED.value: [],
        PayoutStatus.CANCELLED.value: [],
    }

    TERMINAL = {PayoutStatus.PAID.value, PayoutStatus.FAILED.value, PayoutStatus.CANCELLED.value}

    # Statuses whose fee records are still bound to the payout
    HOLDS_FEE_RECORDS = {PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value}

    @classmethod
    def can_cancel(cls, status: str) -> bool:
        return cls.can_transition(status, PayoutStatus.CANCELLED)
