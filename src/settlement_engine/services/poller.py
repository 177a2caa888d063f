"""ACH reconciliation poller.

Ticks frequently but sweeps only inside the configured daily windows. A
sweep walks every uncleared ACH record that is waiting on the gateway:

1. Discovers the check id of invoices that have been paid
2. Persists rejections (the authoritative rejection path)
3. Starts the holding period the first time a check is seen processed
4. Marks the commerce order paid once the hold has elapsed

Each record is processed independently; one failure never aborts a sweep.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from typing import Any, TypeVar

from settlement_engine.config import PollerConfig
from settlement_engine.gateways.base import (
    AchGatewayClient,
    CommercePlatformClient,
    GatewayError,
    call_with_timeout,
)
from settlement_engine.models import AchPayment, as_utc
from settlement_engine.services.clock import Clock, SystemClock
from settlement_engine.services.intake import format_amount
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.state_machine import AchStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SweepResult:
    """Result of one reconciliation sweep."""

    started_at: datetime
    finished_at: datetime | None = None
    records_checked: int = 0
    checks_discovered: int = 0
    processed: int = 0
    holding: int = 0
    rejected: int = 0
    cleared: int = 0
    platform_errors: int = 0
    skipped: int = 0
    failed: int = 0
    stopped_early: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the sweep completed without unexpected errors."""
        return self.failed == 0 and not self.errors

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class ReconciliationPoller:
    """Advances ACH records the callbacks missed."""

    def __init__(
        self,
        store: PaymentStore,
        ach: AchGatewayClient,
        commerce: CommercePlatformClient,
        config: PollerConfig | None = None,
        *,
        clock: Clock | None = None,
        gateway_label: str = "ach",
    ):
        self.store = store
        self.ach = ach
        self.commerce = commerce
        self.config = config or PollerConfig()
        self.clock = clock or SystemClock()
        self.gateway_label = gateway_label
        self._last_window: tuple[date, time] | None = None

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def due_window(self, now: datetime) -> tuple[date, time] | None:
        """The (local date, window start) that ``now`` falls in, if any."""
        local = now.astimezone(self.config.tz)
        for window in self.config.windows:
            start = datetime.combine(local.date(), window, tzinfo=self.config.tz)
            if start <= local < start + self.config.window_length:
                return local.date(), window
        return None

    async def tick(self, stop: asyncio.Event | None = None) -> SweepResult | None:
        """Sweep if a window is open and has not run yet today."""
        key = self.due_window(self.clock.now())
        if key is None or key == self._last_window:
            return None
        self._last_window = key
        logger.info("Reconciliation poller: window %s %s open", key[0], key[1].strftime("%H:%M"))
        return await self.sweep(stop=stop)

    async def run(self, stop: asyncio.Event) -> None:
        """Tick until ``stop`` is set."""
        interval = self.config.tick_interval.total_seconds()
        logger.info(
            "Reconciliation poller: started (interval=%ss, windows=%s, hold=%s)",
            interval,
            ",".join(w.strftime("%H:%M") for w in self.config.windows),
            self.config.hold_duration,
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while not stop.is_set():
            try:
                await self.tick(stop=stop)
            except Exception:
                logger.exception("Reconciliation poller: tick failed")
            # Fixed cadence: time spent in the tick does not push later ticks back
            deadline += interval
            delay = deadline - loop.time()
            if delay < 0:
                deadline = loop.time()
                delay = 0
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        logger.info("Reconciliation poller: stopped")

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    async def sweep(self, *, stop: asyncio.Event | None = None) -> SweepResult:
        """Run one pass over every pollable ACH record."""
        result = SweepResult(started_at=self.clock.now())

        try:
            payments = await self.store.list_pollable_ach()
        except Exception as e:
            logger.exception("Reconciliation poller: failed to list pending payments")
            result.errors.append({"code": "STORE_ERROR", "message": str(e)})
            result.finished_at = self.clock.now()
            return result

        if not payments:
            logger.info("Reconciliation poller: no pending ACH payments")
        else:
            logger.info("Reconciliation poller: checking %d pending ACH payments", len(payments))

        for payment in payments:
            if stop is not None and stop.is_set():
                result.stopped_early = True
                logger.info("Reconciliation poller: stop requested, ending sweep early")
                break
            result.records_checked += 1
            try:
                await self._reconcile_one(payment, result)
            except GatewayError as e:
                result.skipped += 1
                logger.warning(
                    "Reconciliation poller: payment %s (order %s, invoice %s, check %s) gateway error: %s",
                    payment.id,
                    payment.order_id,
                    payment.invoice_id,
                    payment.check_id,
                    e,
                )
            except Exception as e:
                result.failed += 1
                result.errors.append(
                    {"code": "RECORD_ERROR", "payment_id": payment.id, "message": str(e)}
                )
                logger.exception(
                    "Reconciliation poller: payment %s (order %s) failed", payment.id, payment.order_id
                )

        result.finished_at = self.clock.now()
        logger.info(
            "Reconciliation poller: sweep done checked=%d discovered=%d processed=%d "
            "holding=%d rejected=%d cleared=%d platform_errors=%d skipped=%d failed=%d",
            result.records_checked,
            result.checks_discovered,
            result.processed,
            result.holding,
            result.rejected,
            result.cleared,
            result.platform_errors,
            result.skipped,
            result.failed,
        )
        return result

    async def _call(self, call: Awaitable[T], gateway: str) -> T:
        return await call_with_timeout(call, self.config.call_timeout, gateway)

    async def _reconcile_one(self, payment: AchPayment, result: SweepResult) -> None:
        check_id = (payment.check_id or "").strip()

        if not check_id:
            if not payment.invoice_id:
                logger.info("Reconciliation poller: payment %s has no invoice or check id", payment.id)
                result.skipped += 1
                return
            invoice = await self._call(
                self.ach.invoice_status(payment.invoice_id), self.ach.gateway_name
            )
            if not invoice.has_check:
                logger.info(
                    "Reconciliation poller: invoice %s (payment %s) has no debit yet (result=%s %s)",
                    payment.invoice_id,
                    payment.id,
                    invoice.result,
                    invoice.description,
                )
                result.skipped += 1
                return
            check_id = invoice.check_id.strip()
            if not await self.store.set_check_id(payment.id, check_id, self.clock.now()):
                result.skipped += 1
                return
            result.checks_discovered += 1
            logger.info(
                "Reconciliation poller: payment %s invoice %s now has check %s",
                payment.id,
                payment.invoice_id,
                check_id,
            )

        status = await self._call(self.ach.check_status(check_id), self.ach.gateway_name)

        if status.rejected:
            if await self.store.mark_ach_rejected(payment.id, self.clock.now()):
                result.rejected += 1
                logger.info(
                    "Reconciliation poller: payment %s (order %s, check %s) rejected",
                    payment.id,
                    payment.order_id,
                    check_id,
                )
            else:
                result.skipped += 1
            return

        if not status.processed:
            result.skipped += 1
            return

        processed_at = as_utc(payment.processed_at)
        if processed_at is None:
            if await self.store.mark_ach_processed(payment.id, self.clock.now()):
                result.processed += 1
                logger.info(
                    "Reconciliation poller: payment %s (order %s, check %s) processed; hold of %s started",
                    payment.id,
                    payment.order_id,
                    check_id,
                    self.config.hold_duration,
                )
            else:
                result.skipped += 1
            return

        elapsed = self.clock.now() - processed_at
        if elapsed < self.config.hold_duration:
            result.holding += 1
            logger.info(
                "Reconciliation poller: payment %s (order %s) in hold; %s remaining",
                payment.id,
                payment.order_id,
                self.config.hold_duration - elapsed,
            )
            return

        await self._clear(payment.id, check_id, result)

    async def _clear(self, payment_id: int, check_id: str, result: SweepResult) -> None:
        current = await self.store.get_ach_payment(payment_id)
        if (
            current is None
            or current.paid_at is not None
            or current.status != AchStatus.PROCESSED_PENDING_LAG.value
        ):
            logger.info("Reconciliation poller: payment %s no longer clearable", payment_id)
            result.skipped += 1
            return

        try:
            await self._call(
                self.commerce.mark_order_paid(
                    current.order_id,
                    format_amount(current.amount),
                    current.currency,
                    self.gateway_label,
                ),
                "commerce",
            )
        except GatewayError as e:
            logger.error(
                "Reconciliation poller: marking order %s paid failed (payment %s, check %s): %s",
                current.order_id,
                payment_id,
                check_id,
                e,
            )
            await self.store.mark_ach_platform_error(payment_id, str(e), self.clock.now())
            result.platform_errors += 1
            return

        if await self.store.mark_ach_cleared(payment_id, self.clock.now()):
            result.cleared += 1
            logger.info(
                "Reconciliation poller: payment %s (order %s, check %s) cleared after hold",
                payment_id,
                current.order_id,
                check_id,
            )
        else:
            logger.warning(
                "Reconciliation poller: order %s marked paid but payment %s changed concurrently",
                current.order_id,
                payment_id,
            )
