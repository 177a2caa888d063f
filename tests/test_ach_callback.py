"""Tests for the synchronous ACH settlement callback."""

from decimal import Decimal

import pytest

from settlement_engine.gateways import AchStubGateway, CommerceStubClient
from settlement_engine.services.ach_callback import AchCallbackHandler, AchCallbackOutcome
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.state_machine import AchStatus

from conftest import START


@pytest.fixture
def handler(store, ach_gateway, commerce, clock) -> AchCallbackHandler:
    return AchCallbackHandler(
        store, ach_gateway, commerce, clock=clock, gateway_label="ACH Bank Transfer"
    )


async def _invoice_sent(store: PaymentStore, check_id: str | None = "CHK-9") -> int:
    payment = await store.create_ach_payment(
        order_id=1001,
        order_name="#1001",
        amount=Decimal("49.9"),
        currency="USD",
        customer_email="jane@example.com",
        now=START,
    )
    await store.record_invoice(payment.id, "INV-1", check_id, START)
    return payment.id


class TestVerifiedCallback:
    """Callbacks verified against the gateway's check status."""

    async def test_processed_check_clears(
        self, handler, store, ach_gateway: AchStubGateway, commerce: CommerceStubClient
    ):
        payment_id = await _invoice_sent(store)
        ach_gateway.simulate_processed("CHK-9")

        result = await handler.handle("CHK-9", "T-1")

        assert result.outcome == AchCallbackOutcome.CLEARED
        assert result.payment_id == payment_id
        assert commerce.transactions[0].order_id == 1001
        assert commerce.transactions[0].amount == "49.90"
        assert commerce.transactions[0].gateway == "ACH Bank Transfer"

        payment = await store.get_ach_payment(payment_id)
        assert payment.status == AchStatus.CLEARED.value
        assert payment.is_cleared is True
        assert payment.paid_at is not None

    async def test_rejected_check_acknowledged_without_persisting(
        self, handler, store, ach_gateway, commerce
    ):
        payment_id = await _invoice_sent(store)
        ach_gateway.simulate_rejected("CHK-9")

        result = await handler.handle("CHK-9")

        assert result.outcome == AchCallbackOutcome.REJECTED
        assert commerce.transactions == []
        payment = await store.get_ach_payment(payment_id)
        # The poller is the one that persists rejections
        assert payment.status == AchStatus.INVOICE_SENT.value

    async def test_unprocessed_check_is_not_cleared(self, handler, store, ach_gateway, commerce):
        await _invoice_sent(store)
        ach_gateway.simulate_payment("INV-1", "CHK-9")

        result = await handler.handle("CHK-9")

        assert result.outcome == AchCallbackOutcome.NOT_PROCESSED
        assert commerce.transactions == []

    async def test_verification_failure_proceeds_optimistically(
        self, handler, store, ach_gateway, commerce
    ):
        await _invoice_sent(store)
        ach_gateway.fail_next("check_status")

        result = await handler.handle("CHK-9")

        assert result.outcome == AchCallbackOutcome.CLEARED
        assert commerce.paid_orders() == [1001]

    async def test_unconfigured_gateway_skips_verification(self, store, commerce, clock):
        handler = AchCallbackHandler(store, AchStubGateway(configured=False), commerce, clock=clock)
        await _invoice_sent(store)

        result = await handler.handle("CHK-9")

        assert result.outcome == AchCallbackOutcome.CLEARED


class TestCallbackGuards:
    """Lookup failures, replays, and platform errors."""

    async def test_unknown_check(self, handler, ach_gateway, commerce):
        ach_gateway.simulate_processed("CHK-404")

        result = await handler.handle("CHK-404")

        assert result.outcome == AchCallbackOutcome.NOT_FOUND
        assert commerce.transactions == []

    async def test_replay_marks_paid_once(self, handler, store, ach_gateway, commerce):
        await _invoice_sent(store)
        ach_gateway.simulate_processed("CHK-9")

        first = await handler.handle("CHK-9")
        second = await handler.handle("CHK-9")

        assert first.outcome == AchCallbackOutcome.CLEARED
        assert second.outcome == AchCallbackOutcome.ALREADY_CLEARED
        assert len(commerce.transactions) == 1

    async def test_rejected_record_not_clearable(self, handler, store, ach_gateway, commerce):
        payment_id = await _invoice_sent(store)
        await store.mark_ach_rejected(payment_id, START)
        ach_gateway.simulate_processed("CHK-9")

        result = await handler.handle("CHK-9")

        assert result.outcome == AchCallbackOutcome.NOT_CLEARABLE
        assert result.detail == "rejected"
        assert commerce.transactions == []

    async def test_platform_failure_leaves_record_untouched(
        self, handler, store, ach_gateway, commerce
    ):
        payment_id = await _invoice_sent(store)
        ach_gateway.simulate_processed("CHK-9")
        commerce.simulate_failure()

        result = await handler.handle("CHK-9")

        assert result.outcome == AchCallbackOutcome.PLATFORM_ERROR
        payment = await store.get_ach_payment(payment_id)
        assert payment.status == AchStatus.INVOICE_SENT.value
        assert payment.paid_at is None


class TestHoldEnforcement:
    """Callbacks configured to start the holding period instead of clearing."""

    async def test_callback_starts_hold(self, store, ach_gateway, commerce, clock):
        handler = AchCallbackHandler(store, ach_gateway, commerce, clock=clock, enforce_hold=True)
        payment_id = await _invoice_sent(store)
        ach_gateway.simulate_processed("CHK-9")

        first = await handler.handle("CHK-9")
        second = await handler.handle("CHK-9")

        assert first.outcome == AchCallbackOutcome.HOLDING
        assert second.outcome == AchCallbackOutcome.HOLDING
        assert commerce.transactions == []
        payment = await store.get_ach_payment(payment_id)
        assert payment.status == AchStatus.PROCESSED_PENDING_LAG.value
        assert payment.processed_at is not None
