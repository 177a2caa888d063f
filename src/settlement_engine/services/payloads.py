"""Inbound payload models shared by the API layer and the services.

The commerce platform's order-creation payload and the card gateway's
notification envelope. Only the fields the engine reads are declared.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Address(BaseModel):
    """Billing or shipping address as sent by the commerce platform."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    address1: str | None = None
    city: str | None = None
    province: str | None = None
    zip: str | None = None
    country_code: str | None = None

    def full_name(self) -> str:
        if self.name and self.name.strip():
            return self.name.strip()
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Customer(BaseModel):
    """Customer block of an order."""

    model_config = ConfigDict(extra="ignore")

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None

    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class CommerceOrder(BaseModel):
    """Order-creation webhook payload (only the fields the engine reads)."""

    model_config = ConfigDict(extra="ignore")

    id: int = Field(gt=0)
    name: str = ""
    email: str | None = None
    total_price: Decimal = Field(ge=0)
    currency: str = "USD"
    payment_gateway_names: list[str] = Field(default_factory=list)
    billing_address: Address | None = None
    shipping_address: Address | None = None
    customer: Customer | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 3:
            raise ValueError("currency must be a 3-letter code")
        return value


class CardWebhookContent(BaseModel):
    """One content item of a card-gateway notification."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Any = None
    status: str | None = None
    order_ref: str | None = Field(default=None, alias="idOrderExt")
    url: str | None = None

    @field_validator("order_ref", mode="before")
    @classmethod
    def _stringify_ref(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class CardWebhookEnvelope(BaseModel):
    """Card-gateway notification envelope; ``content`` is an object or an array."""

    model_config = ConfigDict(extra="ignore")

    status: Any = None
    message: Any = None
    content: Any = None
