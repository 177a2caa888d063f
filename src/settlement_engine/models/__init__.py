"""ORM models for payment records."""

from settlement_engine.models.base import Base, TimestampMixin, as_utc, utc_now
from settlement_engine.models.payments import AchPayment, CardPayment, PaymentRecordMixin

__all__ = [
    "Base",
    "TimestampMixin",
    "PaymentRecordMixin",
    "AchPayment",
    "CardPayment",
    "as_utc",
    "utc_now",
]
