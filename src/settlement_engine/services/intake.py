"""Order intake: classify a new commerce order and start its payment flow.

ACH orders get an emailed invoice from the ACH gateway; card orders get a
hosted checkout link from the card gateway. Orders tagged with neither rail
are acknowledged and ignored.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from settlement_engine.gateways.base import (
    AchGatewayClient,
    CardGatewayClient,
    CardOrderRequest,
    GatewayError,
    InvoiceRequest,
    call_with_timeout,
)
from settlement_engine.models import CardPayment
from settlement_engine.services.clock import Clock, SystemClock
from settlement_engine.services.payloads import Address, CommerceOrder
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.state_machine import CardStatus, Rail

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEFAULT_CUSTOMER_NAME = "Customer"
DEFAULT_DIAL_CODE = "+1"

# ISO country code -> (name the card gateway expects, dial code)
COUNTRIES: dict[str, tuple[str, str]] = {
    "US": ("United States", "+1"),
    "CA": ("Canada", "+1"),
    "SV": ("El Salvador", "+503"),
    "CO": ("Colombia", "+57"),
}


class IntakeOutcome(str, Enum):
    """What intake did with an order."""

    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    INVOICE_SENT = "invoice_sent"
    INVOICE_ERROR = "invoice_error"
    LINK_CREATED = "link_created"
    CARD_LINK_ERROR = "card_link_error"


@dataclass
class IntakeResult:
    """Result of processing one order-creation webhook."""

    outcome: IntakeOutcome
    rail: Rail | None = None
    payment_id: int | None = None
    detail: str = ""

    @property
    def should_retry(self) -> bool:
        """Whether the upstream should redeliver the webhook."""
        return self.outcome == IntakeOutcome.CARD_LINK_ERROR


def format_amount(amount: Decimal) -> str:
    """Fixed 2-decimal string, e.g. Decimal("49.9") -> "49.90"."""
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


def _normalize_tags(tags: Iterable[str]) -> frozenset[str]:
    return frozenset(tag.strip().lower() for tag in tags if tag and tag.strip())


def classify_rail(
    gateway_names: Iterable[str],
    ach_tags: Iterable[str],
    card_tags: Iterable[str],
) -> Rail | None:
    """Pick the rail for an order by its payment-method tags.

    Tags compare trimmed and case-insensitively. ACH wins when both match.
    """
    names = _normalize_tags(gateway_names)
    if names & _normalize_tags(ach_tags):
        return Rail.ACH
    if names & _normalize_tags(card_tags):
        return Rail.CARD
    return None


def resolve_country(country_code: str | None) -> tuple[str, str]:
    """Map an ISO country code to the card gateway's (country name, dial code)."""
    code = (country_code or "").strip().upper()
    if code in COUNTRIES:
        return COUNTRIES[code]
    return code, DEFAULT_DIAL_CODE


def normalize_phone(phone: str | None, dial_code: str) -> str:
    """Digits only, without the international prefix when it matches ``dial_code``."""
    raw = (phone or "").strip()
    digits = re.sub(r"\D", "", raw)
    prefix = dial_code.lstrip("+")
    if raw.startswith("+") and digits.startswith(prefix):
        digits = digits[len(prefix):]
    elif prefix == "1" and len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def customer_name_for(order: CommerceOrder) -> str:
    """Billing name, else customer name, else shipping name, else the order name."""
    candidates = [
        order.billing_address.full_name() if order.billing_address else "",
        order.customer.full_name() if order.customer else "",
        order.shipping_address.full_name() if order.shipping_address else "",
        order.name.strip(),
    ]
    for candidate in candidates:
        if candidate:
            return candidate
    return DEFAULT_CUSTOMER_NAME


def item_name_for(order: CommerceOrder) -> str:
    name = order.name.strip()
    return f"Order {name}" if name else "Online Order"


def item_description_for(order: CommerceOrder, store_name: str) -> str:
    """Invoice line description; the order name is omitted when blank."""
    name = order.name.strip()
    if not name:
        return f"{store_name} order"
    return f"{store_name} order {name} ({order.id})"


def customer_email_for(order: CommerceOrder) -> str:
    if order.email and order.email.strip():
        return order.email.strip()
    if order.customer and order.customer.email:
        return order.customer.email.strip()
    return ""


class OrderIntakeService:
    """Turns order-creation webhooks into payment records.

    ACH path: ``pending_invoice`` → ``invoice_sent`` | ``invoice_error``.
    The ACH webhook is always acknowledged; the outcome is informational.

    Card path: ``created`` → ``link_created``. A gateway failure leaves the
    record in ``created`` and asks the upstream to retry.
    """

    def __init__(
        self,
        store: PaymentStore,
        ach: AchGatewayClient,
        card: CardGatewayClient,
        *,
        ach_tags: Iterable[str],
        card_tags: Iterable[str],
        store_name: str = "Online Store",
        clock: Clock | None = None,
        tz: tzinfo = timezone.utc,
        call_timeout: float = 15.0,
    ):
        self.store = store
        self.ach = ach
        self.card = card
        self.ach_tags = tuple(ach_tags)
        self.card_tags = tuple(card_tags)
        self.store_name = store_name
        self.clock = clock or SystemClock()
        self.tz = tz
        self.call_timeout = call_timeout

    async def handle_order(self, order: CommerceOrder) -> IntakeResult:
        """Process one order-creation webhook."""
        rail = classify_rail(order.payment_gateway_names, self.ach_tags, self.card_tags)
        if rail is None:
            logger.info(
                "Order %s (%s): no recognized payment tag in %s, ignoring",
                order.id,
                order.name,
                order.payment_gateway_names,
            )
            return IntakeResult(outcome=IntakeOutcome.IGNORED)

        if rail == Rail.ACH:
            return await self._start_ach(order)
        return await self._start_card(order)

    # -------------------------------------------------------------------------
    # ACH
    # -------------------------------------------------------------------------

    async def _start_ach(self, order: CommerceOrder) -> IntakeResult:
        existing = await self.store.get_ach_by_order(order.id)
        if existing is not None:
            logger.info(
                "Order %s: ACH payment %s already exists (status=%s)",
                order.id,
                existing.id,
                existing.status,
            )
            return IntakeResult(IntakeOutcome.DUPLICATE, Rail.ACH, existing.id)

        email = customer_email_for(order)
        payment = await self.store.create_ach_payment(
            order_id=order.id,
            order_name=order.name,
            amount=order.total_price,
            currency=order.currency,
            customer_email=email,
            now=self.clock.now(),
        )
        if payment is None:
            return IntakeResult(IntakeOutcome.DUPLICATE, Rail.ACH)

        if not email:
            return await self._invoice_failed(payment.id, order, "order has no customer email")
        if not self.ach.is_configured():
            return await self._invoice_failed(payment.id, order, "ACH gateway is not configured")

        request = self._invoice_request(order, email)
        try:
            invoice = await call_with_timeout(
                self.ach.create_invoice(request), self.call_timeout, self.ach.gateway_name
            )
        except GatewayError as e:
            return await self._invoice_failed(payment.id, order, str(e))

        if not invoice.invoice_id:
            return await self._invoice_failed(payment.id, order, "gateway returned no invoice id")

        await self.store.record_invoice(
            payment.id, invoice.invoice_id, invoice.check_id, self.clock.now()
        )
        logger.info(
            "Order %s: ACH payment %s invoice %s sent to %s for %s %s",
            order.id,
            payment.id,
            invoice.invoice_id,
            email,
            request.amount,
            order.currency,
        )
        return IntakeResult(
            IntakeOutcome.INVOICE_SENT, Rail.ACH, payment.id, detail=invoice.invoice_id
        )

    def _invoice_request(self, order: CommerceOrder, email: str) -> InvoiceRequest:
        today = self.clock.now().astimezone(self.tz)
        return InvoiceRequest(
            order_id=order.id,
            order_name=order.name,
            customer_name=customer_name_for(order),
            email=email,
            item_name=item_name_for(order),
            item_description=item_description_for(order, self.store_name),
            amount=format_amount(order.total_price),
            payment_date=today.strftime("%m/%d/%Y"),
        )

    async def _invoice_failed(
        self, payment_id: int, order: CommerceOrder, reason: str
    ) -> IntakeResult:
        logger.error("Order %s: ACH payment %s invoice failed: %s", order.id, payment_id, reason)
        await self.store.mark_invoice_error(payment_id, reason, self.clock.now())
        return IntakeResult(IntakeOutcome.INVOICE_ERROR, Rail.ACH, payment_id, detail=reason)

    # -------------------------------------------------------------------------
    # Card
    # -------------------------------------------------------------------------

    async def _start_card(self, order: CommerceOrder) -> IntakeResult:
        address = order.shipping_address or order.billing_address or Address()
        country, dial_code = resolve_country(address.country_code)
        name = address.full_name() or DEFAULT_CUSTOMER_NAME
        phone = normalize_phone(
            address.phone or (order.customer.phone if order.customer else None), dial_code
        )
        email = customer_email_for(order)

        payment = await self._card_record_for(order, name, phone, email)
        if payment is None or payment.status != CardStatus.CREATED.value:
            payment_id = payment.id if payment else None
            logger.info("Order %s: card payment %s already has a checkout link", order.id, payment_id)
            return IntakeResult(IntakeOutcome.DUPLICATE, Rail.CARD, payment_id)

        request = CardOrderRequest(
            order_ref=payment.order_ref,
            amount=order.total_price,
            currency=order.currency,
            name=name,
            email=email,
            phone=phone,
            dial_code=dial_code,
            address=address.address1 or "",
            city=address.city or "",
            state=address.province or "",
            zip=address.zip or "",
            country=country,
            customer_service=self.store_name,
        )
        try:
            result = await call_with_timeout(
                self.card.create_order(request), self.call_timeout, self.card.gateway_name
            )
        except GatewayError as e:
            logger.error(
                "Order %s: card payment %s checkout link failed: %s", order.id, payment.id, e
            )
            return IntakeResult(IntakeOutcome.CARD_LINK_ERROR, Rail.CARD, payment.id, detail=str(e))

        await self.store.record_checkout_link(
            payment.id,
            gateway_order_id=result.gateway_order_id,
            checkout_url=result.checkout_url,
            gateway_status=result.status,
            now=self.clock.now(),
        )
        logger.info(
            "Order %s: card payment %s gateway order %s link %s",
            order.id,
            payment.id,
            result.gateway_order_id,
            result.checkout_url,
        )
        return IntakeResult(
            IntakeOutcome.LINK_CREATED, Rail.CARD, payment.id, detail=result.checkout_url
        )

    async def _card_record_for(
        self, order: CommerceOrder, name: str, phone: str, email: str
    ) -> CardPayment | None:
        """Existing record for the order, or a freshly inserted one."""
        existing = await self.store.get_card_by_order(order.id)
        if existing is not None:
            return existing
        payment = await self.store.create_card_payment(
            order_id=order.id,
            order_name=order.name,
            amount=order.total_price,
            currency=order.currency,
            customer_email=email,
            customer_name=name,
            customer_phone=phone,
            now=self.clock.now(),
        )
        if payment is None:
            # Lost an insert race with a concurrent delivery
            return await self.store.get_card_by_order(order.id)
        return payment
