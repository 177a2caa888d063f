"""Inbound webhook receivers.

- order creation from the commerce platform
- the ACH gateway's synchronous settlement callback
- the card gateway's asynchronous settlement notification
"""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request, status

from settlement_engine.api.dependencies import AchCallback, CardWebhook, Intake
from settlement_engine.api.schemas import (
    AchCallbackResponse,
    CardWebhookResponse,
    IntakeResponse,
)
from settlement_engine.services.ach_callback import AchCallbackOutcome
from settlement_engine.services.payloads import CommerceOrder

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/orders/create",
    response_model=IntakeResponse,
    status_code=status.HTTP_200_OK,
)
async def order_created(order: CommerceOrder, intake: Intake) -> IntakeResponse:
    """Start the payment flow for a newly created order.

    Returns 502 when the card gateway could not create a checkout link so
    that the platform redelivers the webhook.
    """
    result = await intake.handle_order(order)
    if result.should_retry:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"card checkout link could not be created: {result.detail}",
        )
    return IntakeResponse(
        outcome=result.outcome.value,
        rail=result.rail.value if result.rail else None,
        payment_id=result.payment_id,
        detail=result.detail,
    )


@router.api_route(
    "/ach/callback",
    methods=["GET", "POST"],
    response_model=AchCallbackResponse,
    status_code=status.HTTP_200_OK,
)
async def ach_callback(
    handler: AchCallback,
    check_id: Annotated[str | None, Query()] = None,
    transaction_id: Annotated[str | None, Query()] = None,
) -> AchCallbackResponse:
    """Settle an ACH payment on the gateway's callback."""
    if not check_id or not check_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="check_id query parameter is required",
        )

    result = await handler.handle(check_id.strip(), transaction_id)

    if result.outcome == AchCallbackOutcome.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"no payment for check {result.check_id}",
        )
    if result.outcome == AchCallbackOutcome.PLATFORM_ERROR:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="failed to mark order paid",
        )
    return AchCallbackResponse(
        outcome=result.outcome.value,
        check_id=result.check_id,
        payment_id=result.payment_id,
    )


@router.post(
    "/card",
    response_model=CardWebhookResponse,
    status_code=status.HTTP_200_OK,
)
async def card_notification(request: Request, handler: CardWebhook) -> CardWebhookResponse:
    """Reconcile a card-gateway notification. Always acknowledged."""
    raw = await request.body()
    result = await handler.handle(raw)
    return CardWebhookResponse(outcome=result.outcome.value, order_ref=result.order_ref)
