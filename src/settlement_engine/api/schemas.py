"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


# ============================================================================
# Commerce order webhook
# ============================================================================


class IntakeResponse(BaseModel):
    """Result of processing an order-creation webhook."""

    outcome: str
    rail: str | None = None
    payment_id: int | None = None
    detail: str = ""


# ============================================================================
# Settlement notifications
# ============================================================================


class AchCallbackResponse(BaseModel):
    """Acknowledgement of an ACH callback."""

    outcome: str
    check_id: str
    payment_id: int | None = None


class CardWebhookResponse(BaseModel):
    """Acknowledgement of a card-gateway notification."""

    outcome: str
    order_ref: str | None = None


# ============================================================================
# Payment record schemas
# ============================================================================


class AchPaymentResponse(BaseModel):
    """Schema for an ACH payment record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    order_name: str
    amount: Decimal
    currency: str
    customer_email: str | None = None
    status: str
    is_cleared: bool
    invoice_id: str | None = None
    check_id: str | None = None
    last_error: str | None = None
    processed_at: datetime | None = None
    paid_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    last_status_at: datetime


class AchPaymentListResponse(BaseModel):
    """Schema for listing ACH payments."""

    items: list[AchPaymentResponse]
    total: int
    limit: int
    offset: int


class CardPaymentResponse(BaseModel):
    """Schema for a card payment record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    order_ref: str
    order_name: str
    amount: Decimal
    currency: str
    customer_email: str | None = None
    customer_name: str | None = None
    status: str
    is_cleared: bool
    gateway_order_id: str | None = None
    checkout_url: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None
    last_event_at: datetime | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CardPaymentListResponse(BaseModel):
    """Schema for listing card payments."""

    items: list[CardPaymentResponse]
    total: int
    limit: int
    offset: int


class AchNotificationResponse(BaseModel):
    """Schema for an entry of the ACH gateway's notification queue."""

    model_config = ConfigDict(from_attributes=True)

    notification_id: int
    message: str
    created: str = ""

