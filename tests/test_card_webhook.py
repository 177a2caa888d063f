"""Tests for the asynchronous card-gateway webhook."""

import json
from decimal import Decimal

import pytest

from settlement_engine.gateways import CommerceStubClient
from settlement_engine.models import as_utc
from settlement_engine.services.card_webhook import (
    DEFAULT_FAILURE_REASON,
    CardWebhookHandler,
    CardWebhookOutcome,
    extract_content_item,
    parse_notification,
)
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.state_machine import CardStatus

from conftest import START


@pytest.fixture
def handler(store, commerce, clock) -> CardWebhookHandler:
    return CardWebhookHandler(store, commerce, clock=clock, gateway_label="Credit/Debit Card")


async def _link_created(store: PaymentStore, order_id: int = 1001) -> int:
    payment = await store.create_card_payment(
        order_id=order_id,
        order_name=f"#{order_id}",
        amount=Decimal("129.99"),
        currency="USD",
        customer_email="sam@example.com",
        customer_name="Sam Smith",
        customer_phone=None,
        now=START,
    )
    await store.record_checkout_link(
        payment.id,
        gateway_order_id="CG-1",
        checkout_url="https://pay.example/CG-1",
        gateway_status="created",
        now=START,
    )
    return payment.id


def _body(status: str, order_ref: str = "1001", *, as_array: bool = True, message: str = "") -> bytes:
    item = {"id": 77, "status": status, "idOrderExt": order_ref, "url": "https://pay.example/CG-1"}
    return json.dumps(
        {"status": "ok", "message": message, "content": [item] if as_array else item}
    ).encode()


class TestParsing:
    """Test envelope and content extraction."""

    def test_extract_from_array(self):
        assert extract_content_item([{"idOrderExt": "1"}, {"idOrderExt": "2"}]) == {"idOrderExt": "1"}

    def test_extract_from_object(self):
        assert extract_content_item({"idOrderExt": "1", "status": "paid"})["status"] == "paid"

    def test_extract_requires_reference_on_object(self):
        assert extract_content_item({"status": "paid"}) is None
        assert extract_content_item([]) is None
        assert extract_content_item(None) is None

    @pytest.mark.parametrize("raw", [b"", b"   ", b"not json", b"[1, 2]", b'{"content": "x"}'])
    def test_unusable_bodies(self, raw):
        assert parse_notification(raw) is None

    def test_numeric_reference_is_stringified(self):
        raw = json.dumps({"content": {"idOrderExt": 1001, "status": "paid"}}).encode()
        _, item = parse_notification(raw)
        assert item.order_ref == "1001"


class TestPaidNotifications:
    """Paid statuses mark the commerce order paid once."""

    async def test_captured_marks_paid_once(
        self, handler, store, commerce: CommerceStubClient
    ):
        """Replaying an identical captured webhook causes no extra mark-paid call."""
        payment_id = await _link_created(store)

        first = await handler.handle(_body("captured"))
        second = await handler.handle(_body("captured"))

        assert first.outcome == CardWebhookOutcome.PAID
        assert second.outcome == CardWebhookOutcome.ALREADY_PAID
        assert len(commerce.transactions) == 1
        assert commerce.transactions[0].amount == "129.99"
        assert commerce.transactions[0].gateway == "Credit/Debit Card"

        payment = await store.get_card_payment(payment_id)
        assert payment.status == CardStatus.PAID.value
        assert payment.paid_at is not None
        assert payment.gateway_status == "captured"
        assert payment.last_webhook_payload["content"][0]["idOrderExt"] == "1001"

    @pytest.mark.parametrize("status", ["Paid", "COMPLETED", "success", "succeeded"])
    async def test_all_paid_statuses(self, handler, store, commerce, status):
        await _link_created(store)

        result = await handler.handle(_body(status, as_array=False))

        assert result.outcome == CardWebhookOutcome.PAID
        assert commerce.paid_orders() == [1001]

    async def test_platform_failure_is_acknowledged(self, handler, store, commerce):
        payment_id = await _link_created(store)
        commerce.simulate_failure()

        result = await handler.handle(_body("captured"))

        assert result.outcome == CardWebhookOutcome.PLATFORM_ERROR
        payment = await store.get_card_payment(payment_id)
        assert payment.paid_at is None
        assert payment.status == CardStatus.LINK_CREATED.value

        # A redelivery after the platform recovers completes the payment
        commerce.clear_failure()
        retry = await handler.handle(_body("captured"))
        assert retry.outcome == CardWebhookOutcome.PAID

    async def test_record_without_link_is_not_payable(self, handler, store, commerce):
        await store.create_card_payment(
            order_id=1001,
            order_name="#1001",
            amount=Decimal("1.00"),
            currency="USD",
            customer_email=None,
            customer_name=None,
            customer_phone=None,
            now=START,
        )

        result = await handler.handle(_body("captured"))

        assert result.outcome == CardWebhookOutcome.NOT_PAYABLE
        assert commerce.transactions == []

    async def test_unknown_order(self, handler, commerce):
        result = await handler.handle(_body("captured", order_ref="424242"))

        assert result.outcome == CardWebhookOutcome.UNKNOWN_ORDER
        assert commerce.transactions == []


class TestFailedNotifications:
    """Failed statuses persist the reason."""

    async def test_declined_records_reason(self, handler, store):
        payment_id = await _link_created(store)

        result = await handler.handle(_body("declined", message="Insufficient funds"))

        assert result.outcome == CardWebhookOutcome.FAILED
        payment = await store.get_card_payment(payment_id)
        assert payment.status == CardStatus.FAILED.value
        assert payment.failure_reason == "Insufficient funds"
        assert payment.failed_at is not None

    async def test_default_reason(self, handler, store):
        payment_id = await _link_created(store)

        await handler.handle(_body("expired"))

        payment = await store.get_card_payment(payment_id)
        assert payment.failure_reason == DEFAULT_FAILURE_REASON

    async def test_second_failure_replaces_reason(self, handler, store, clock):
        payment_id = await _link_created(store)
        await handler.handle(_body("declined", message="insufficient funds"))
        clock.advance(hours=1)

        result = await handler.handle(_body("expired", message="link expired"))

        assert result.outcome == CardWebhookOutcome.FAILED
        payment = await store.get_card_payment(payment_id)
        assert payment.status == CardStatus.FAILED.value
        assert payment.failure_reason == "link expired"
        assert as_utc(payment.failed_at) == clock.now()

    async def test_paid_record_never_downgraded(self, handler, store, commerce):
        payment_id = await _link_created(store)
        await handler.handle(_body("captured"))

        await handler.handle(_body("canceled", message="late cancel"))

        payment = await store.get_card_payment(payment_id)
        assert payment.status == CardStatus.PAID.value
        assert payment.failure_reason is None
        assert len(commerce.transactions) == 1

    async def test_capture_after_decline(self, handler, store, commerce):
        payment_id = await _link_created(store)
        await handler.handle(_body("declined"))

        result = await handler.handle(_body("captured"))

        assert result.outcome == CardWebhookOutcome.PAID
        payment = await store.get_card_payment(payment_id)
        assert payment.status == CardStatus.PAID.value


class TestOtherNotifications:
    """Malformed or informational deliveries."""

    @pytest.mark.parametrize("raw", [b"", b"{oops", b'{"status": "ok", "content": []}'])
    async def test_malformed_is_ignored(self, handler, raw):
        result = await handler.handle(raw)
        assert result.outcome == CardWebhookOutcome.IGNORED

    async def test_blank_reference_is_ignored(self, handler, store):
        result = await handler.handle(_body("captured", order_ref="  "))
        assert result.outcome == CardWebhookOutcome.IGNORED

    async def test_other_status_only_recorded(self, handler, store, commerce):
        payment_id = await _link_created(store)

        result = await handler.handle(_body("Pending"))

        assert result.outcome == CardWebhookOutcome.RECORDED
        payment = await store.get_card_payment(payment_id)
        assert payment.gateway_status == "pending"
        assert payment.status == CardStatus.LINK_CREATED.value
        assert commerce.transactions == []
