"""Card gateway stub for local development and testing."""

from __future__ import annotations

from settlement_engine.gateways.base import (
    CardOrderRequest,
    CardOrderResult,
    GatewayError,
    GatewayNotConfiguredError,
    GatewayResponseError,
)


class CardStubGateway:
    """In-memory card gateway.

    Every created order gets a predictable gateway id and a checkout URL
    under ``checkout_base_url``. Set ``fail_with`` to make ``create_order``
    raise.
    """

    gateway_name = "card_stub"

    def __init__(
        self,
        configured: bool = True,
        checkout_base_url: str = "https://checkout.example.test/pay",
    ):
        self.configured = configured
        self.checkout_base_url = checkout_base_url.rstrip("/")
        self.fail_with: GatewayError | None = None
        self.orders: dict[str, CardOrderRequest] = {}
        self.requests: list[CardOrderRequest] = []
        self._next_id = 1

    def is_configured(self) -> bool:
        return self.configured

    async def create_order(self, request: CardOrderRequest) -> CardOrderResult:
        """Create an order and checkout link (stub implementation)."""
        self.requests.append(request)
        if not self.configured:
            raise GatewayNotConfiguredError(self.gateway_name, "API key/secret not set")
        if self.fail_with is not None:
            raise self.fail_with
        if not request.order_ref:
            raise GatewayResponseError(self.gateway_name, "idOrderExt is required")

        gateway_order_id = f"CG-{self._next_id:06d}"
        self._next_id += 1
        self.orders[gateway_order_id] = request
        return CardOrderResult(
            gateway_order_id=gateway_order_id,
            order_ref=request.order_ref,
            checkout_url=f"{self.checkout_base_url}/{gateway_order_id}",
            status="created",
        )

    def simulate_failure(self, message: str = "gateway unavailable") -> None:
        """Make subsequent ``create_order`` calls fail."""
        self.fail_with = GatewayResponseError(self.gateway_name, message)

    def clear_failure(self) -> None:
        self.fail_with = None
