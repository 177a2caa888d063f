"""Read-only operator endpoints for payment records."""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, Query, status

from settlement_engine.api.dependencies import AchGateway, Store
from settlement_engine.api.schemas import (
    AchNotificationResponse,
    AchPaymentListResponse,
    AchPaymentResponse,
    CardPaymentListResponse,
    CardPaymentResponse,
)
from settlement_engine.gateways.base import GatewayError
from settlement_engine.services.state_machine import AchStatus, CardStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


def _check_status_filter(value: str | None, allowed: type[AchStatus] | type[CardStatus]) -> None:
    if value is not None and value not in {s.value for s in allowed}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"unknown status '{value}'",
        )


# ============================================================================
# ACH
# ============================================================================


@router.get("/payments/ach", response_model=AchPaymentListResponse)
async def list_ach_payments(
    store: Store,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AchPaymentListResponse:
    """List ACH payments, newest first."""
    _check_status_filter(status_filter, AchStatus)
    items, total = await store.list_ach_payments(status_filter, limit, offset)
    return AchPaymentListResponse(
        items=[AchPaymentResponse.model_validate(p) for p in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/payments/ach/{payment_id}", response_model=AchPaymentResponse)
async def get_ach_payment(
    store: Store,
    payment_id: Annotated[int, Path(ge=1)],
) -> AchPaymentResponse:
    """Get one ACH payment."""
    payment = await store.get_ach_payment(payment_id)
    if payment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"ACH payment {payment_id} not found",
        )
    return AchPaymentResponse.model_validate(payment)


@router.get("/ach/notifications/unseen", response_model=list[AchNotificationResponse])
async def unseen_ach_notifications(ach: AchGateway) -> list[AchNotificationResponse]:
    """Drain the ACH gateway's unseen notification queue (debugging aid)."""
    try:
        notifications = await ach.unseen_notifications()
    except GatewayError as e:
        logger.error("Unseen ACH notifications unavailable: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        )
    return [AchNotificationResponse.model_validate(n) for n in notifications]


# ============================================================================
# Card
# ============================================================================


@router.get("/payments/card", response_model=CardPaymentListResponse)
async def list_card_payments(
    store: Store,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> CardPaymentListResponse:
    """List card payments, newest first."""
    _check_status_filter(status_filter, CardStatus)
    items, total = await store.list_card_payments(status_filter, limit, offset)
    return CardPaymentListResponse(
        items=[CardPaymentResponse.model_validate(p) for p in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/payments/card/{order_ref}", response_model=CardPaymentResponse)
async def get_card_payment(store: Store, order_ref: str) -> CardPaymentResponse:
    """Get one card payment by its external order reference."""
    payment = await store.get_card_by_ref(order_ref)
    if payment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"card payment {order_ref} not found",
        )
    return CardPaymentResponse.model_validate(payment)
