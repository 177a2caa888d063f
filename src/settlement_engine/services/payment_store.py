"""Payment record store.

Every state change is one conditional UPDATE in its own transaction. The
WHERE clause always requires the record's current status to be a legal
source state for the target status, plus any extra guard (``paid_at IS
NULL`` for mark-paid writes). A method returns True only when exactly one
row moved, so callers can tell a lost race or an illegal transition from a
successful write without a separate read.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine.models import AchPayment, CardPayment
from settlement_engine.services.state_machine import (
    AchPaymentStateMachine,
    AchStatus,
    CardPaymentStateMachine,
    CardStatus,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", AchPayment, CardPayment)

MAX_FAILURE_REASON = 500


class PaymentStore:
    """Async persistence for ACH and card payment records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    async def _insert(self, record: ModelT) -> ModelT | None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(record)
        except IntegrityError:
            logger.info(
                "%s for order %s already exists",
                type(record).__name__,
                record.order_id,
            )
            return None
        return record

    async def _get(self, model: type[ModelT], *criteria: ColumnElement[bool]) -> ModelT | None:
        async with self._session_factory() as session:
            return await session.scalar(select(model).where(*criteria))

    async def _update(
        self,
        model: type[ModelT],
        record_id: int,
        guard: list[ColumnElement[bool]],
        values: dict[str, Any],
    ) -> bool:
        stmt = (
            update(model)
            .where(model.id == record_id, *guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        return result.rowcount == 1

    async def _transition(
        self,
        model: type[ModelT],
        machine: type[AchPaymentStateMachine] | type[CardPaymentStateMachine],
        record_id: int,
        to_status: AchStatus | CardStatus,
        now: datetime,
        *extra_guard: ColumnElement[bool],
        **values: Any,
    ) -> bool:
        guard = [model.status.in_(machine.sources_for(to_status)), *extra_guard]
        values.update(status=str(to_status.value), updated_at=now, last_status_at=now)
        moved = await self._update(model, record_id, guard, values)
        if not moved:
            logger.info(
                "%s %s: transition to %s not applied (illegal source state or already done)",
                model.__name__,
                record_id,
                to_status.value,
            )
        return moved

    async def _list(
        self,
        model: type[ModelT],
        status: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[ModelT], int]:
        criteria = [model.status == status] if status else []
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(model).where(*criteria)
            )
            rows = await session.scalars(
                select(model).where(*criteria).order_by(model.id.desc()).limit(limit).offset(offset)
            )
            return list(rows), int(total or 0)

    # -------------------------------------------------------------------------
    # ACH records
    # -------------------------------------------------------------------------

    async def create_ach_payment(
        self,
        *,
        order_id: int,
        order_name: str,
        amount: Decimal,
        currency: str,
        customer_email: str | None,
        now: datetime,
    ) -> AchPayment | None:
        """Insert a ``pending_invoice`` record; None if the order already has one."""
        return await self._insert(
            AchPayment(
                order_id=order_id,
                order_name=order_name,
                amount=amount,
                currency=currency,
                customer_email=customer_email or None,
                status=AchStatus.PENDING_INVOICE.value,
                is_cleared=False,
                created_at=now,
                updated_at=now,
                last_status_at=now,
            )
        )

    async def get_ach_payment(self, payment_id: int) -> AchPayment | None:
        return await self._get(AchPayment, AchPayment.id == payment_id)

    async def get_ach_by_order(self, order_id: int) -> AchPayment | None:
        return await self._get(AchPayment, AchPayment.order_id == order_id)

    async def get_ach_by_check_id(self, check_id: str) -> AchPayment | None:
        return await self._get(AchPayment, AchPayment.check_id == check_id)

    async def record_invoice(
        self,
        payment_id: int,
        invoice_id: str,
        check_id: str | None,
        now: datetime,
    ) -> bool:
        """pending_invoice → invoice_sent, storing the gateway ids."""
        return await self._transition(
            AchPayment,
            AchPaymentStateMachine,
            payment_id,
            AchStatus.INVOICE_SENT,
            now,
            invoice_id=invoice_id,
            check_id=check_id or None,
        )

    async def mark_invoice_error(self, payment_id: int, reason: str, now: datetime) -> bool:
        """pending_invoice → invoice_error (terminal)."""
        return await self._transition(
            AchPayment,
            AchPaymentStateMachine,
            payment_id,
            AchStatus.INVOICE_ERROR,
            now,
            last_error=reason,
        )

    async def set_check_id(self, payment_id: int, check_id: str, now: datetime) -> bool:
        """Attach a newly discovered check id, only if none is stored yet."""
        guard = [
            AchPayment.status.in_([s.value for s in AchPaymentStateMachine.POLLABLE]),
            or_(AchPayment.check_id.is_(None), AchPayment.check_id == ""),
        ]
        try:
            return await self._update(
                AchPayment, payment_id, guard, {"check_id": check_id, "updated_at": now}
            )
        except IntegrityError:
            logger.error(
                "ACH payment %s: check id %s already belongs to another record",
                payment_id,
                check_id,
            )
            return False

    async def list_pollable_ach(self) -> list[AchPayment]:
        """Every uncleared record the poller must revisit, oldest first."""
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(AchPayment)
                .where(
                    AchPayment.status.in_(
                        [s.value for s in AchPaymentStateMachine.POLLABLE]
                    ),
                    AchPayment.is_cleared.is_(False),
                )
                .order_by(AchPayment.id)
            )
            return list(rows)

    async def mark_ach_processed(self, payment_id: int, now: datetime) -> bool:
        """invoice_sent → processed_pending_lag; starts the holding period."""
        return await self._transition(
            AchPayment,
            AchPaymentStateMachine,
            payment_id,
            AchStatus.PROCESSED_PENDING_LAG,
            now,
            AchPayment.processed_at.is_(None),
            processed_at=now,
        )

    async def mark_ach_rejected(self, payment_id: int, now: datetime) -> bool:
        return await self._transition(
            AchPayment,
            AchPaymentStateMachine,
            payment_id,
            AchStatus.REJECTED,
            now,
            AchPayment.paid_at.is_(None),
            rejected_at=now,
        )

    async def mark_ach_cleared(self, payment_id: int, now: datetime) -> bool:
        """Terminal success; written at most once thanks to ``paid_at IS NULL``."""
        return await self._transition(
            AchPayment,
            AchPaymentStateMachine,
            payment_id,
            AchStatus.CLEARED,
            now,
            AchPayment.paid_at.is_(None),
            is_cleared=True,
            paid_at=now,
        )

    async def mark_ach_platform_error(self, payment_id: int, reason: str, now: datetime) -> bool:
        return await self._transition(
            AchPayment,
            AchPaymentStateMachine,
            payment_id,
            AchStatus.PLATFORM_PAYMENT_ERROR,
            now,
            AchPayment.paid_at.is_(None),
            last_error=reason,
        )

    async def list_ach_payments(
        self, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[AchPayment], int]:
        return await self._list(AchPayment, status, limit, offset)

    # -------------------------------------------------------------------------
    # Card records
    # -------------------------------------------------------------------------

    async def create_card_payment(
        self,
        *,
        order_id: int,
        order_name: str,
        amount: Decimal,
        currency: str,
        customer_email: str | None,
        customer_name: str | None,
        customer_phone: str | None,
        now: datetime,
    ) -> CardPayment | None:
        """Insert a ``created`` record; None if the order already has one."""
        return await self._insert(
            CardPayment(
                order_id=order_id,
                order_ref=str(order_id),
                order_name=order_name,
                amount=amount,
                currency=currency,
                customer_email=customer_email or None,
                customer_name=customer_name or None,
                customer_phone=customer_phone or None,
                status=CardStatus.CREATED.value,
                is_cleared=False,
                created_at=now,
                updated_at=now,
                last_status_at=now,
            )
        )

    async def get_card_payment(self, payment_id: int) -> CardPayment | None:
        return await self._get(CardPayment, CardPayment.id == payment_id)

    async def get_card_by_order(self, order_id: int) -> CardPayment | None:
        return await self._get(CardPayment, CardPayment.order_id == order_id)

    async def get_card_by_ref(self, order_ref: str) -> CardPayment | None:
        return await self._get(CardPayment, CardPayment.order_ref == order_ref)

    async def record_checkout_link(
        self,
        payment_id: int,
        *,
        gateway_order_id: str,
        checkout_url: str,
        gateway_status: str,
        now: datetime,
    ) -> bool:
        """created → link_created."""
        return await self._transition(
            CardPayment,
            CardPaymentStateMachine,
            payment_id,
            CardStatus.LINK_CREATED,
            now,
            gateway_order_id=gateway_order_id or None,
            checkout_url=checkout_url,
            gateway_status=(gateway_status or "").lower() or None,
        )

    async def record_card_event(
        self,
        order_ref: str,
        gateway_status: str,
        payload: dict[str, Any] | None,
        now: datetime,
    ) -> bool:
        """Store the raw webhook payload and reported status (no state change).

        An empty status keeps the last known one.
        """
        values: dict[str, Any] = {
            "last_webhook_payload": payload,
            "last_event_at": now,
            "updated_at": now,
        }
        if gateway_status:
            values["gateway_status"] = gateway_status
        stmt = (
            update(CardPayment)
            .where(CardPayment.order_ref == order_ref)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        return result.rowcount == 1

    async def mark_card_paid(self, payment_id: int, now: datetime) -> bool:
        """link_created | failed → paid; written at most once."""
        return await self._transition(
            CardPayment,
            CardPaymentStateMachine,
            payment_id,
            CardStatus.PAID,
            now,
            CardPayment.paid_at.is_(None),
            is_cleared=True,
            paid_at=now,
        )

    async def mark_card_failed(self, payment_id: int, reason: str, now: datetime) -> bool:
        """Record a failure on an unpaid record.

        link_created moves to failed; a record already failed (or still
        created) keeps its status but takes the latest reason and timestamp.
        A paid record is never touched.
        """
        reason = reason[:MAX_FAILURE_REASON]
        if await self._transition(
            CardPayment,
            CardPaymentStateMachine,
            payment_id,
            CardStatus.FAILED,
            now,
            CardPayment.paid_at.is_(None),
            failed_at=now,
            failure_reason=reason,
        ):
            return True
        return await self._update(
            CardPayment,
            payment_id,
            [CardPayment.paid_at.is_(None), CardPayment.status != CardStatus.PAID.value],
            {"failed_at": now, "failure_reason": reason, "updated_at": now},
        )

    async def list_card_payments(
        self, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[CardPayment], int]:
        return await self._list(CardPayment, status, limit, offset)
