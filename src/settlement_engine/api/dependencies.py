"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.gateways.base import AchGatewayClient
from settlement_engine.services.ach_callback import AchCallbackHandler
from settlement_engine.services.card_webhook import CardWebhookHandler
from settlement_engine.services.intake import OrderIntakeService
from settlement_engine.services.payment_store import PaymentStore


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_store(request: Request) -> PaymentStore:
    return request.app.state.store


def get_intake(request: Request) -> OrderIntakeService:
    return request.app.state.intake


def get_ach_callback(request: Request) -> AchCallbackHandler:
    return request.app.state.ach_callback


def get_card_webhook(request: Request) -> CardWebhookHandler:
    return request.app.state.card_webhook


def get_ach_gateway(request: Request) -> AchGatewayClient:
    return request.app.state.ach


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Store = Annotated[PaymentStore, Depends(get_store)]
Intake = Annotated[OrderIntakeService, Depends(get_intake)]
AchCallback = Annotated[AchCallbackHandler, Depends(get_ach_callback)]
CardWebhook = Annotated[CardWebhookHandler, Depends(get_card_webhook)]
AchGateway = Annotated[AchGatewayClient, Depends(get_ach_gateway)]
