"""Commerce platform stub for local development and testing."""

from __future__ import annotations

from dataclasses import dataclass

from settlement_engine.gateways.base import (
    GatewayError,
    GatewayNotConfiguredError,
    GatewayResponseError,
)


@dataclass(frozen=True)
class PaidTransaction:
    """A capture transaction recorded against an order."""

    order_id: int
    amount: str
    currency: str
    gateway: str


class CommerceStubClient:
    """In-memory commerce platform.

    Records every ``mark_order_paid`` call in ``transactions``. The
    platform itself does not dedupe, so a second call for the same order
    produces a second transaction, the same as a real store would.
    """

    gateway_name = "commerce_stub"

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.fail_with: GatewayError | None = None
        self.transactions: list[PaidTransaction] = []

    def is_configured(self) -> bool:
        return self.configured

    async def mark_order_paid(
        self,
        order_id: int,
        amount: str,
        currency: str,
        gateway: str,
    ) -> None:
        """Record a capture transaction (stub implementation)."""
        if not self.configured:
            raise GatewayNotConfiguredError(self.gateway_name, "store domain/token not set")
        if self.fail_with is not None:
            raise self.fail_with
        self.transactions.append(
            PaidTransaction(order_id=order_id, amount=amount, currency=currency, gateway=gateway)
        )

    def paid_orders(self) -> list[int]:
        return [tx.order_id for tx in self.transactions]

    def simulate_failure(self, message: str = "transaction rejected") -> None:
        """Make subsequent ``mark_order_paid`` calls fail."""
        self.fail_with = GatewayResponseError(self.gateway_name, message)

    def clear_failure(self) -> None:
        self.fail_with = None
