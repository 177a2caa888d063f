"""Payment record state machines with transition validation."""

from __future__ import annotations

from enum import Enum


class Rail(str, Enum):
    """Out-of-band payment rails handled by the engine."""

    ACH = "ach"
    CARD = "card"


class AchStatus(str, Enum):
    """ACH payment status values."""

    PENDING_INVOICE = "pending_invoice"
    INVOICE_SENT = "invoice_sent"
    INVOICE_ERROR = "invoice_error"
    PROCESSED_PENDING_LAG = "processed_pending_lag"
    CLEARED = "cleared"
    REJECTED = "rejected"
    PLATFORM_PAYMENT_ERROR = "platform_payment_error"


class CardStatus(str, Enum):
    """Card payment status values."""

    CREATED = "created"
    LINK_CREATED = "link_created"
    PAID = "paid"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class _StateMachine:
    VALID_TRANSITIONS: dict[str, list[str]] = {}
    TERMINAL: frozenset[str] = frozenset()

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def sources_for(cls, to_status: str) -> list[str]:
        """Get every status (as plain strings) from which ``to_status`` may be entered."""
        return [
            str(from_status.value)
            for from_status, allowed in cls.VALID_TRANSITIONS.items()
            if to_status in allowed
        ]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL


class AchPaymentStateMachine(_StateMachine):
    """State machine for ACH payment records.

    Allowed transitions:
    - pending_invoice → invoice_sent | invoice_error
    - invoice_sent → processed_pending_lag (poller, hold starts)
    - invoice_sent → rejected (poller)
    - invoice_sent → cleared (verified synchronous callback)
    - processed_pending_lag → cleared | rejected | platform_payment_error
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        AchStatus.PENDING_INVOICE: [AchStatus.INVOICE_SENT, AchStatus.INVOICE_ERROR],
        AchStatus.INVOICE_SENT: [
            AchStatus.PROCESSED_PENDING_LAG,
            AchStatus.REJECTED,
            AchStatus.CLEARED,
        ],
        AchStatus.PROCESSED_PENDING_LAG: [
            AchStatus.CLEARED,
            AchStatus.REJECTED,
            AchStatus.PLATFORM_PAYMENT_ERROR,
        ],
        AchStatus.CLEARED: [],
        AchStatus.REJECTED: [],
        AchStatus.INVOICE_ERROR: [],
        AchStatus.PLATFORM_PAYMENT_ERROR: [],
    }

    TERMINAL = frozenset(
        {
            AchStatus.CLEARED,
            AchStatus.REJECTED,
            AchStatus.INVOICE_ERROR,
            AchStatus.PLATFORM_PAYMENT_ERROR,
        }
    )

    # Statuses the poller revisits on every sweep
    POLLABLE = frozenset({AchStatus.INVOICE_SENT, AchStatus.PROCESSED_PENDING_LAG})


class CardPaymentStateMachine(_StateMachine):
    """State machine for card payment records.

    Allowed transitions:
    - created → link_created
    - link_created → paid | failed
    - failed → paid (a later capture on the same checkout link)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        CardStatus.CREATED: [CardStatus.LINK_CREATED],
        CardStatus.LINK_CREATED: [CardStatus.PAID, CardStatus.FAILED],
        CardStatus.FAILED: [CardStatus.PAID],
        CardStatus.PAID: [],
    }

    TERMINAL = frozenset({CardStatus.PAID})
