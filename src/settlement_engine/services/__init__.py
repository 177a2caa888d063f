"""Settlement engine services.

Only the state machine is re-exported here; the ORM models depend on it, so
importing the store or handlers from this module would be circular.
"""

from settlement_engine.services.state_machine import (
    AchPaymentStateMachine,
    AchStatus,
    CardPaymentStateMachine,
    CardStatus,
    InvalidTransitionError,
    Rail,
)

__all__ = [
    "AchPaymentStateMachine",
    "AchStatus",
    "CardPaymentStateMachine",
    "CardStatus",
    "InvalidTransitionError",
    "Rail",
]
