"""Capability contracts for the upstream gateways.

The engine talks to three collaborators:

- the ACH/e-check gateway (invoice creation, check and invoice status)
- the card gateway (order and checkout-link creation)
- the commerce platform (marking an order paid)

Each one is a narrow Protocol so that real HTTP adapters, the bundled
stubs, and test fakes are interchangeable. Adapters signal every failure by
raising GatewayError (or a subclass); they never return partial results.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, TypeVar

T = TypeVar("T")


class GatewayError(Exception):
    """Raised when a gateway call fails for any reason."""

    def __init__(self, gateway: str, message: str):
        self.gateway = gateway
        self.message = message
        super().__init__(f"{gateway}: {message}")


class GatewayNotConfiguredError(GatewayError):
    """Raised when a gateway is called without credentials."""


class GatewayResponseError(GatewayError):
    """Raised when a gateway answers with a non-success or malformed response."""

    def __init__(self, gateway: str, message: str, result_code: str | None = None):
        self.result_code = result_code
        super().__init__(gateway, message)


class GatewayTimeoutError(GatewayError):
    """Raised when a gateway call exceeds its time budget."""


# =============================================================================
# ACH gateway
# =============================================================================


@dataclass(frozen=True)
class InvoiceRequest:
    """Everything the ACH gateway needs to email a one-time invoice."""

    order_id: int
    order_name: str
    customer_name: str
    email: str
    item_name: str
    item_description: str
    amount: str  # 2-decimal string, e.g. "49.99"
    payment_date: str  # MM/DD/YYYY


@dataclass(frozen=True)
class InvoiceResult:
    """Result of creating an invoice."""

    invoice_id: str
    check_id: str | None = None
    payment_result: str = ""
    description: str = ""


@dataclass(frozen=True)
class CheckStatusResult:
    """Status of a single check (debit) at the ACH gateway."""

    check_id: str
    processed: bool
    rejected: bool
    result: str = "0"
    description: str = ""
    processed_date: str | None = None
    rejected_date: str | None = None


@dataclass(frozen=True)
class InvoiceStatusResult:
    """Status of an invoice, including the check that paid it (if any).

    The gateway reports ``check_id == "0"`` (or nothing) while no real
    debit exists yet.
    """

    invoice_id: str
    check_id: str = ""
    result: str = ""
    description: str = ""

    @property
    def has_check(self) -> bool:
        check_id = self.check_id.strip()
        return check_id not in ("", "0")


@dataclass(frozen=True)
class AchNotification:
    """Entry from the ACH gateway's notification queue."""

    notification_id: int
    message: str
    created: str = ""


class AchGatewayClient(Protocol):
    """Protocol for ACH/e-check gateway adapters."""

    gateway_name: str

    def is_configured(self) -> bool:
        """Return True when credentials are present."""
        ...

    async def create_invoice(self, request: InvoiceRequest) -> InvoiceResult:
        """Create and send a one-time invoice.

        Raises:
            GatewayError: on missing credentials, transport failure,
                non-success response, or a response without an invoice id.
        """
        ...

    async def check_status(self, check_id: str) -> CheckStatusResult:
        """Get the processing status of a check."""
        ...

    async def invoice_status(self, invoice_id: str) -> InvoiceStatusResult:
        """Map an invoice to the check that paid it."""
        ...

    async def unseen_notifications(self) -> list[AchNotification]:
        """Return queued notifications not yet viewed through the API."""
        ...


# =============================================================================
# Card gateway
# =============================================================================


@dataclass(frozen=True)
class CardOrderRequest:
    """Order/checkout-link creation request for the card gateway."""

    order_ref: str
    amount: Decimal
    currency: str
    name: str
    email: str
    phone: str = ""
    dial_code: str = "+1"
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = ""
    language: str = "English"
    sms: bool = False
    customer_service: str = ""


@dataclass(frozen=True)
class CardOrderResult:
    """Result of creating a card-gateway order."""

    gateway_order_id: str
    order_ref: str
    checkout_url: str
    status: str


class CardGatewayClient(Protocol):
    """Protocol for card gateway adapters."""

    gateway_name: str

    def is_configured(self) -> bool:
        """Return True when credentials are present."""
        ...

    async def create_order(self, request: CardOrderRequest) -> CardOrderResult:
        """Create an order and its hosted checkout link."""
        ...


# =============================================================================
# Commerce platform
# =============================================================================


class CommercePlatformClient(Protocol):
    """Protocol for the commerce platform the orders originate from."""

    def is_configured(self) -> bool:
        """Return True when credentials are present."""
        ...

    async def mark_order_paid(
        self,
        order_id: int,
        amount: str,
        currency: str,
        gateway: str,
    ) -> None:
        """Record a successful capture transaction on the order.

        Args:
            order_id: Numeric commerce order id.
            amount: Fixed 2-decimal amount string, e.g. "129.99".
            currency: ISO currency code.
            gateway: Name of the rail that collected the money.

        Raises:
            GatewayError: if the platform did not accept the transaction.
        """
        ...


async def call_with_timeout(call: Awaitable[T], timeout: float, gateway: str) -> T:
    """Await a gateway call, converting an expired budget into GatewayTimeoutError."""
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        raise GatewayTimeoutError(gateway, f"no response within {timeout:g}s") from None
