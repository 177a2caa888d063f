"""Synchronous ACH settlement callback.

The ACH gateway calls back with a check id when it believes a debit has
completed. When the gateway client is configured the check status is
verified first; a failed verification query does not block the callback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from settlement_engine.gateways.base import (
    AchGatewayClient,
    CommercePlatformClient,
    GatewayError,
    call_with_timeout,
)
from settlement_engine.services.clock import Clock, SystemClock
from settlement_engine.services.intake import format_amount
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.state_machine import (
    AchPaymentStateMachine,
    AchStatus,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)


class AchCallbackOutcome(str, Enum):
    """Acknowledgement values for the ACH callback."""

    CLEARED = "cleared"
    HOLDING = "holding"
    REJECTED = "rejected"
    NOT_PROCESSED = "not_processed"
    NOT_FOUND = "not_found"
    ALREADY_CLEARED = "already_cleared"
    NOT_CLEARABLE = "not_clearable"
    PLATFORM_ERROR = "platform_error"


@dataclass
class AchCallbackResult:
    """Result of handling one ACH callback."""

    outcome: AchCallbackOutcome
    check_id: str
    payment_id: int | None = None
    detail: str = ""


class AchCallbackHandler:
    """Handles the ACH gateway's synchronous settlement callback.

    Rejections seen here are only acknowledged. The reconciliation poller
    owns persisting them.
    """

    def __init__(
        self,
        store: PaymentStore,
        ach: AchGatewayClient,
        commerce: CommercePlatformClient,
        *,
        clock: Clock | None = None,
        call_timeout: float = 15.0,
        enforce_hold: bool = False,
        gateway_label: str = "ach",
    ):
        self.store = store
        self.ach = ach
        self.commerce = commerce
        self.clock = clock or SystemClock()
        self.call_timeout = call_timeout
        self.enforce_hold = enforce_hold
        self.gateway_label = gateway_label

    async def handle(self, check_id: str, transaction_id: str | None = None) -> AchCallbackResult:
        """Process a callback for ``check_id``."""
        logger.info("ACH callback received: check_id=%s transaction_id=%s", check_id, transaction_id)

        verdict = await self._verify(check_id)
        if verdict is not None:
            return verdict

        payment = await self.store.get_ach_by_check_id(check_id)
        if payment is None:
            logger.warning("ACH callback: no payment for check_id=%s", check_id)
            return AchCallbackResult(AchCallbackOutcome.NOT_FOUND, check_id)

        if payment.paid_at is not None:
            logger.info(
                "ACH callback: payment %s (order %s, check %s) already cleared",
                payment.id,
                payment.order_id,
                check_id,
            )
            return AchCallbackResult(AchCallbackOutcome.ALREADY_CLEARED, check_id, payment.id)

        if self.enforce_hold:
            return await self._start_hold(payment.id, payment.status, payment.order_id, check_id)

        try:
            AchPaymentStateMachine.validate_transition(payment.status, AchStatus.CLEARED)
        except InvalidTransitionError as e:
            logger.warning(
                "ACH callback: payment %s (order %s, check %s) cannot clear: %s",
                payment.id,
                payment.order_id,
                check_id,
                e,
            )
            return AchCallbackResult(
                AchCallbackOutcome.NOT_CLEARABLE, check_id, payment.id, detail=payment.status
            )

        try:
            await call_with_timeout(
                self.commerce.mark_order_paid(
                    payment.order_id,
                    format_amount(payment.amount),
                    payment.currency,
                    self.gateway_label,
                ),
                self.call_timeout,
                "commerce",
            )
        except GatewayError as e:
            logger.error(
                "ACH callback: marking order %s paid failed (payment %s, check %s): %s",
                payment.order_id,
                payment.id,
                check_id,
                e,
            )
            return AchCallbackResult(
                AchCallbackOutcome.PLATFORM_ERROR, check_id, payment.id, detail=str(e)
            )

        if not await self.store.mark_ach_cleared(payment.id, self.clock.now()):
            logger.warning(
                "ACH callback: order %s marked paid but payment %s was cleared concurrently",
                payment.order_id,
                payment.id,
            )
        logger.info(
            "ACH callback: payment %s (order %s, check %s) cleared",
            payment.id,
            payment.order_id,
            check_id,
        )
        return AchCallbackResult(AchCallbackOutcome.CLEARED, check_id, payment.id)

    async def _verify(self, check_id: str) -> AchCallbackResult | None:
        """Ask the gateway about the check; a result means stop here."""
        if not self.ach.is_configured():
            logger.info("ACH gateway not configured; skipping check verification")
            return None
        try:
            status = await call_with_timeout(
                self.ach.check_status(check_id), self.call_timeout, self.ach.gateway_name
            )
        except GatewayError as e:
            logger.warning("ACH callback: check status for %s unavailable, proceeding: %s", check_id, e)
            return None

        if status.rejected:
            logger.info("ACH callback: check %s is rejected; not marking paid", check_id)
            return AchCallbackResult(AchCallbackOutcome.REJECTED, check_id)
        if not status.processed:
            logger.info("ACH callback: check %s not processed yet", check_id)
            return AchCallbackResult(AchCallbackOutcome.NOT_PROCESSED, check_id)
        return None

    async def _start_hold(
        self, payment_id: int, status: str, order_id: int, check_id: str
    ) -> AchCallbackResult:
        if status == AchStatus.PROCESSED_PENDING_LAG.value:
            return AchCallbackResult(AchCallbackOutcome.HOLDING, check_id, payment_id)
        if await self.store.mark_ach_processed(payment_id, self.clock.now()):
            logger.info(
                "ACH callback: payment %s (order %s, check %s) holding before clearing",
                payment_id,
                order_id,
                check_id,
            )
            return AchCallbackResult(AchCallbackOutcome.HOLDING, check_id, payment_id)
        return AchCallbackResult(AchCallbackOutcome.NOT_CLEARABLE, check_id, payment_id, detail=status)
