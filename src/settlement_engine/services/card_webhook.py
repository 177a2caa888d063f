"""Asynchronous card-gateway settlement webhook.

Every delivery is acknowledged with HTTP 200 so the gateway never retries
on our account; the returned outcome is for operators only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import ValidationError

from settlement_engine.gateways.base import (
    CommercePlatformClient,
    GatewayError,
    call_with_timeout,
)
from settlement_engine.services.clock import Clock, SystemClock
from settlement_engine.services.intake import format_amount
from settlement_engine.services.payloads import CardWebhookContent, CardWebhookEnvelope
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.state_machine import (
    CardPaymentStateMachine,
    CardStatus,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"captured", "paid", "completed", "success", "succeeded"})
FAILED_STATUSES = frozenset({"failed", "declined", "canceled", "cancelled", "error", "expired"})
DEFAULT_FAILURE_REASON = "card gateway reported payment failure"


class CardWebhookOutcome(str, Enum):
    """Acknowledgement values for the card webhook."""

    IGNORED = "ignored"
    UNKNOWN_ORDER = "unknown_order"
    RECORDED = "recorded"
    PAID = "paid"
    ALREADY_PAID = "already_paid"
    NOT_PAYABLE = "not_payable"
    PLATFORM_ERROR = "platform_error"
    FAILED = "failed"


@dataclass
class CardWebhookResult:
    """Result of handling one card-gateway notification."""

    outcome: CardWebhookOutcome
    order_ref: str | None = None
    status: str = ""


def extract_content_item(content: Any) -> dict[str, Any] | None:
    """First content item, whether ``content`` is an array or a single object."""
    if isinstance(content, list):
        if content and isinstance(content[0], dict):
            return content[0]
        return None
    if isinstance(content, dict) and content.get("idOrderExt"):
        return content
    return None


def parse_notification(raw: bytes) -> tuple[CardWebhookEnvelope, CardWebhookContent] | None:
    """Decode an envelope and its content item; None when unusable."""
    if not raw.strip():
        return None
    try:
        envelope = CardWebhookEnvelope.model_validate_json(raw)
        item = extract_content_item(envelope.content)
        if item is None:
            return None
        return envelope, CardWebhookContent.model_validate(item)
    except ValidationError as e:
        logger.warning("Card webhook: malformed body: %s", e.errors(include_url=False)[:3])
        return None


class CardWebhookHandler:
    """Reconciles card-gateway notifications against card payment records."""

    def __init__(
        self,
        store: PaymentStore,
        commerce: CommercePlatformClient,
        *,
        clock: Clock | None = None,
        call_timeout: float = 15.0,
        gateway_label: str = "card",
    ):
        self.store = store
        self.commerce = commerce
        self.clock = clock or SystemClock()
        self.call_timeout = call_timeout
        self.gateway_label = gateway_label

    async def handle(self, raw: bytes) -> CardWebhookResult:
        """Process one raw notification body."""
        parsed = parse_notification(raw)
        if parsed is None:
            logger.info("Card webhook: ignoring notification without a usable content item")
            return CardWebhookResult(CardWebhookOutcome.IGNORED)

        envelope, item = parsed
        order_ref = (item.order_ref or "").strip()
        if not order_ref:
            logger.info("Card webhook: content item has no idOrderExt")
            return CardWebhookResult(CardWebhookOutcome.IGNORED)

        status = (item.status or "").strip().lower()
        logger.info("Card webhook: order_ref=%s status=%s gateway_id=%s", order_ref, status, item.id)

        known = await self._record_event(order_ref, status, raw)

        if status in PAID_STATUSES:
            return await self._handle_paid(order_ref, status)
        if status in FAILED_STATUSES:
            return await self._handle_failed(order_ref, status, envelope.message)

        outcome = CardWebhookOutcome.RECORDED if known else CardWebhookOutcome.UNKNOWN_ORDER
        return CardWebhookResult(outcome, order_ref, status)

    async def _record_event(self, order_ref: str, status: str, raw: bytes) -> bool:
        """Best-effort audit write of the raw payload."""
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                payload = {"payload": payload}
            return await self.store.record_card_event(order_ref, status, payload, self.clock.now())
        except Exception:
            logger.exception("Card webhook: failed to store event for order_ref=%s", order_ref)
            return False

    async def _handle_paid(self, order_ref: str, status: str) -> CardWebhookResult:
        payment = await self.store.get_card_by_ref(order_ref)
        if payment is None:
            logger.warning("Card webhook: paid status for unknown order_ref=%s", order_ref)
            return CardWebhookResult(CardWebhookOutcome.UNKNOWN_ORDER, order_ref, status)

        if payment.paid_at is not None:
            logger.info("Card webhook: payment %s (order %s) already paid", payment.id, payment.order_id)
            return CardWebhookResult(CardWebhookOutcome.ALREADY_PAID, order_ref, status)

        try:
            CardPaymentStateMachine.validate_transition(payment.status, CardStatus.PAID)
        except InvalidTransitionError as e:
            logger.warning(
                "Card webhook: payment %s (order %s) cannot become paid: %s",
                payment.id,
                payment.order_id,
                e,
            )
            return CardWebhookResult(CardWebhookOutcome.NOT_PAYABLE, order_ref, status)

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
                "Card webhook: marking order %s paid failed (payment %s): %s",
                payment.order_id,
                payment.id,
                e,
            )
            return CardWebhookResult(CardWebhookOutcome.PLATFORM_ERROR, order_ref, status)

        if not await self.store.mark_card_paid(payment.id, self.clock.now()):
            logger.warning(
                "Card webhook: order %s marked paid but payment %s changed concurrently",
                payment.order_id,
                payment.id,
            )
        logger.info("Card webhook: payment %s (order %s) paid", payment.id, payment.order_id)
        return CardWebhookResult(CardWebhookOutcome.PAID, order_ref, status)

    async def _handle_failed(
        self, order_ref: str, status: str, message: Any
    ) -> CardWebhookResult:
        reason = str(message or "").strip() or DEFAULT_FAILURE_REASON
        payment = await self.store.get_card_by_ref(order_ref)
        if payment is None:
            logger.warning("Card webhook: failure status for unknown order_ref=%s", order_ref)
            return CardWebhookResult(CardWebhookOutcome.UNKNOWN_ORDER, order_ref, status)

        if await self.store.mark_card_failed(payment.id, reason, self.clock.now()):
            logger.info(
                "Card webhook: payment %s (order %s) failed (status=%s): %s",
                payment.id,
                payment.order_id,
                status,
                reason,
            )
        else:
            logger.info(
                "Card webhook: payment %s (order %s) failure not applied in status %s",
                payment.id,
                payment.order_id,
                payment.status,
            )
        return CardWebhookResult(CardWebhookOutcome.FAILED, order_ref, status)
