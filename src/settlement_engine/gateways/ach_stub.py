"""ACH gateway stub for local development and testing.

Replace with an HTTP adapter for the e-check gateway in production.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any

from settlement_engine.gateways.base import (
    AchNotification,
    CheckStatusResult,
    GatewayError,
    GatewayNotConfiguredError,
    GatewayResponseError,
    InvoiceRequest,
    InvoiceResult,
    InvoiceStatusResult,
)


@dataclass
class _StubCheck:
    check_id: str
    processed: bool = False
    rejected: bool = False
    processed_date: str | None = None
    rejected_date: str | None = None


@dataclass
class _StubInvoice:
    invoice_id: str
    request: InvoiceRequest
    check_id: str = "0"
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


class AchStubGateway:
    """In-memory ACH gateway.

    In production, this would:
    - Call the gateway's invoice endpoint with client id and API password
    - Map "check id 0" responses to "no debit yet"
    - Surface non-zero result codes as GatewayResponseError

    The stub keeps invoices and checks in dictionaries and exposes
    ``simulate_*`` helpers so tests can drive the customer side.
    """

    gateway_name = "ach_stub"

    def __init__(self, configured: bool = True, invoice_prefix: str = "INV"):
        """Initialize stub gateway.

        Args:
            configured: Whether the gateway reports credentials as present.
                When False every call raises GatewayNotConfiguredError.
            invoice_prefix: Prefix for generated invoice ids.
        """
        self.configured = configured
        self.invoice_prefix = invoice_prefix
        self._invoices: dict[str, _StubInvoice] = {}
        self._checks: dict[str, _StubCheck] = {}
        self._notifications: list[AchNotification] = []
        self._next_invoice = 1
        self._failures: dict[str, GatewayError] = {}
        self.calls: list[tuple[str, Any]] = []

    def is_configured(self) -> bool:
        return self.configured

    def _enter(self, operation: str, argument: Any) -> None:
        self.calls.append((operation, argument))
        if not self.configured:
            raise GatewayNotConfiguredError(self.gateway_name, "client id/password not set")
        error = self._failures.get(operation)
        if error is not None:
            raise error

    async def create_invoice(self, request: InvoiceRequest) -> InvoiceResult:
        """Create an invoice (stub implementation)."""
        self._enter("create_invoice", request)

        invoice_id = f"{self.invoice_prefix}-{self._next_invoice}"
        self._next_invoice += 1
        self._invoices[invoice_id] = _StubInvoice(invoice_id=invoice_id, request=request)
        return InvoiceResult(
            invoice_id=invoice_id,
            check_id=None,
            payment_result="0",
            description="Invoice created",
        )

    async def check_status(self, check_id: str) -> CheckStatusResult:
        """Get status of a check."""
        self._enter("check_status", check_id)

        check = self._checks.get(check_id)
        if check is None:
            raise GatewayResponseError(
                self.gateway_name, f"check {check_id} not found", result_code="1"
            )
        return CheckStatusResult(
            check_id=check.check_id,
            processed=check.processed,
            rejected=check.rejected,
            result="0",
            description="OK",
            processed_date=check.processed_date,
            rejected_date=check.rejected_date,
        )

    async def invoice_status(self, invoice_id: str) -> InvoiceStatusResult:
        """Map an invoice to its check."""
        self._enter("invoice_status", invoice_id)

        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            raise GatewayResponseError(
                self.gateway_name, f"invoice {invoice_id} not found", result_code="1"
            )
        return InvoiceStatusResult(
            invoice_id=invoice_id,
            check_id=invoice.check_id,
            result="0",
            description="OK",
        )

    async def unseen_notifications(self) -> list[AchNotification]:
        """Return and drain queued notifications."""
        self._enter("unseen_notifications", None)

        pending, self._notifications = self._notifications, []
        return pending

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def fail_next(self, operation: str, error: GatewayError | None = None) -> None:
        """Make every call to ``operation`` raise until ``clear_failures``."""
        self._failures[operation] = error or GatewayResponseError(
            self.gateway_name, f"simulated {operation} failure", result_code="99"
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def calls_to(self, operation: str) -> list[Any]:
        return [arg for name, arg in self.calls if name == operation]

    def add_invoice(self, invoice_id: str, request: InvoiceRequest | None = None) -> None:
        """Register an invoice created outside the engine."""
        self._invoices[invoice_id] = _StubInvoice(
            invoice_id=invoice_id,
            request=request
            or InvoiceRequest(
                order_id=0,
                order_name="",
                customer_name="",
                email="",
                item_name="",
                item_description="",
                amount="0.00",
                payment_date="",
            ),
        )

    def simulate_payment(self, invoice_id: str, check_id: str) -> None:
        """Simulate the customer paying an invoice (a check now exists).

        Args:
            invoice_id: The invoice being paid
            check_id: Gateway id of the resulting debit
        """
        if invoice_id not in self._invoices:
            self.add_invoice(invoice_id)
        self._invoices[invoice_id].check_id = check_id
        self._checks.setdefault(check_id, _StubCheck(check_id=check_id))

    def simulate_processed(self, check_id: str, processed_date: str | None = None) -> None:
        """Simulate the gateway reporting a check as processed."""
        check = self._checks.setdefault(check_id, _StubCheck(check_id=check_id))
        check.processed = True
        check.processed_date = processed_date

    def simulate_rejected(self, check_id: str, rejected_date: str | None = None) -> None:
        """Simulate the gateway reporting a check as rejected (returned)."""
        check = self._checks.setdefault(check_id, _StubCheck(check_id=check_id))
        check.rejected = True
        check.rejected_date = rejected_date

    def queue_notification(self, message: str, created: str = "") -> AchNotification:
        notification = AchNotification(
            notification_id=len(self._notifications) + 1,
            message=message,
            created=created,
        )
        self._notifications.append(notification)
        return notification
