"""Payment record models, one table per rail.

Rows are never deleted; together they form the audit trail of every
payment attempt the engine has seen.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from settlement_engine.models.base import Base, TimestampMixin
from settlement_engine.services.state_machine import AchStatus, CardStatus


def _status_check(enum_cls: type, name: str) -> CheckConstraint:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"status IN ({values})", name=name)


class PaymentRecordMixin(TimestampMixin):
    """Columns shared by every rail's payment record."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    order_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    is_cleared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)


class AchPayment(PaymentRecordMixin, Base):
    """ACH/e-check payment record.

    Progresses from invoice creation through check discovery, the
    post-processing hold, and finally clearing.
    """

    __tablename__ = "ach_payments"

    invoice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    check_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("order_id", name="ach_payments_order_uq"),
        UniqueConstraint("invoice_id", name="ach_payments_invoice_uq"),
        UniqueConstraint("check_id", name="ach_payments_check_uq"),
        _status_check(AchStatus, "ach_payments_status_ck"),
        CheckConstraint("amount >= 0", name="ach_payments_amount_ck"),
        Index("ach_payments_status_idx", "status", "is_cleared"),
    )

    def __repr__(self) -> str:
        return (
            f"<AchPayment id={self.id} order={self.order_id} "
            f"invoice={self.invoice_id} check={self.check_id} status={self.status}>"
        )


class CardPayment(PaymentRecordMixin, Base):
    """Card payment record.

    ``status`` follows the local state machine; ``gateway_status`` is the
    last status string the card gateway reported, kept for information.
    """

    __tablename__ = "card_payments"

    order_ref: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_event_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_webhook_payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint("order_id", name="card_payments_order_uq"),
        UniqueConstraint("order_ref", name="card_payments_order_ref_uq"),
        UniqueConstraint("gateway_order_id", name="card_payments_gateway_order_uq"),
        _status_check(CardStatus, "card_payments_status_ck"),
        CheckConstraint("amount >= 0", name="card_payments_amount_ck"),
    )

    def __repr__(self) -> str:
        return (
            f"<CardPayment id={self.id} order_ref={self.order_ref} "
            f"status={self.status} gateway_status={self.gateway_status}>"
        )
