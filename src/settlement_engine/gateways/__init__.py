"""Gateway contracts and in-memory implementations."""

from settlement_engine.gateways.ach_stub import AchStubGateway
from settlement_engine.gateways.base import (
    AchGatewayClient,
    AchNotification,
    CardGatewayClient,
    CardOrderRequest,
    CardOrderResult,
    CheckStatusResult,
    CommercePlatformClient,
    GatewayError,
    GatewayNotConfiguredError,
    GatewayResponseError,
    GatewayTimeoutError,
    InvoiceRequest,
    InvoiceResult,
    InvoiceStatusResult,
    call_with_timeout,
)
from settlement_engine.gateways.card_stub import CardStubGateway
from settlement_engine.gateways.commerce_stub import CommerceStubClient, PaidTransaction

__all__ = [
    "AchGatewayClient",
    "AchNotification",
    "AchStubGateway",
    "CardGatewayClient",
    "CardOrderRequest",
    "CardOrderResult",
    "CardStubGateway",
    "CheckStatusResult",
    "CommercePlatformClient",
    "CommerceStubClient",
    "GatewayError",
    "GatewayNotConfiguredError",
    "GatewayResponseError",
    "GatewayTimeoutError",
    "InvoiceRequest",
    "InvoiceResult",
    "InvoiceStatusResult",
    "PaidTransaction",
    "call_with_timeout",
]
