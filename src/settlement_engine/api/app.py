"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine import __version__
from settlement_engine.api.routes import health_router, payments_router, webhooks_router
from settlement_engine.config import Settings, get_settings
from settlement_engine.database import create_schema, dispose_db, init_db
from settlement_engine.gateways import (
    AchGatewayClient,
    AchStubGateway,
    CardGatewayClient,
    CardStubGateway,
    CommercePlatformClient,
    CommerceStubClient,
)
from settlement_engine.services.ach_callback import AchCallbackHandler
from settlement_engine.services.card_webhook import CardWebhookHandler
from settlement_engine.services.clock import Clock, SystemClock
from settlement_engine.services.intake import OrderIntakeService
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.poller import ReconciliationPoller

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    state = app.state
    # Startup
    if state.settings.auto_create_schema and state.engine is not None:
        await create_schema(state.engine)

    stop = asyncio.Event()
    poller_task: asyncio.Task[None] | None = None
    if state.start_poller:
        poller_task = asyncio.create_task(state.poller.run(stop), name="reconciliation-poller")

    yield

    # Shutdown
    stop.set()
    if poller_task is not None:
        await poller_task
    if state.engine is not None:
        await dispose_db()


def _label(tags: tuple[str, ...], default: str) -> str:
    return tags[0] if tags else default


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    ach: AchGatewayClient | None = None,
    card: CardGatewayClient | None = None,
    commerce: CommercePlatformClient | None = None,
    clock: Clock | None = None,
    start_poller: bool | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Everything the routes need is built here and stored on ``app.state``.
    Collaborators not passed in default to the database configured in
    ``settings`` and to in-memory gateway stubs that report themselves
    unconfigured. The poller only starts on its own when every gateway
    adapter was injected.
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    poller_config = settings.poller_config()

    engine = None
    if session_factory is None:
        engine, session_factory = init_db(settings.database_url)

    on_stubs = ach is None or card is None or commerce is None
    if on_stubs:
        logger.warning(
            "No adapter injected for some gateways; using unconfigured in-memory stubs"
        )
    ach = ach or AchStubGateway(configured=False)
    card = card or CardStubGateway(configured=False)
    commerce = commerce or CommerceStubClient(configured=False)

    store = PaymentStore(session_factory)
    ach_label = _label(settings.ach_gateway_tags, "ach")
    card_label = _label(settings.card_gateway_tags, "card")

    app = FastAPI(
        title="Settlement Engine API",
        description="Order payment reconciliation for ACH and card rails",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.ach = ach
    app.state.card = card
    app.state.commerce = commerce
    app.state.store = store
    app.state.intake = OrderIntakeService(
        store,
        ach,
        card,
        ach_tags=settings.ach_gateway_tags,
        card_tags=settings.card_gateway_tags,
        store_name=settings.store_name,
        clock=clock,
        tz=poller_config.tz,
        call_timeout=poller_config.call_timeout,
    )
    app.state.ach_callback = AchCallbackHandler(
        store,
        ach,
        commerce,
        clock=clock,
        call_timeout=poller_config.call_timeout,
        enforce_hold=settings.ach_callback_enforces_hold,
        gateway_label=ach_label,
    )
    app.state.card_webhook = CardWebhookHandler(
        store,
        commerce,
        clock=clock,
        call_timeout=poller_config.call_timeout,
        gateway_label=card_label,
    )
    app.state.poller = ReconciliationPoller(
        store,
        ach,
        commerce,
        poller_config,
        clock=clock,
        gateway_label=ach_label,
    )
    if start_poller is None:
        start_poller = settings.poller_enabled and not on_stubs
        if settings.poller_enabled and on_stubs:
            logger.warning("Reconciliation poller not started: gateway adapters are stubs")
    app.state.start_poller = start_poller

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Non-JSON bodies are a 400; schema violations stay 422."""
        errors = exc.errors()
        if any(err.get("type") == "json_invalid" for err in errors):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "request body is not valid JSON", "code": "INVALID_JSON"},
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": [
                {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                for err in errors
            ]},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(payments_router, prefix="/api/v1")

    return app
