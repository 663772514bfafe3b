"""
FastAPI application entry point with health endpoints and the orders channel.

This module provides the FastAPI application instance, the process-wide event
bus and orders broadcaster, health and readiness endpoints, and the
``/ws/orders`` WebSocket over which every committed order status change is
broadcast.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from lifebank.core.config import get_settings
from lifebank.core.logging import configure_logging, get_logger, log_performance
from lifebank.database.connection import close_database_connections, get_session
from lifebank.services.notifications.broadcaster import OrdersBroadcaster
from lifebank.services.notifications.bus import EventBus
from lifebank.services.orders.service import OrderService

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)

settings = get_settings()

event_bus = EventBus()
broadcaster = OrdersBroadcaster(channel=settings.orders_channel)


def build_order_service(session: AsyncSession) -> OrderService:
    """Order service wired to the process-wide bus and orders channel."""
    return OrderService(session, event_bus=event_bus, broadcaster=broadcaster)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_database_connections()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Blood-unit order lifecycle service",
    lifespan=lifespan,
    debug=settings.debug,
)
app.state.event_bus = event_bus
app.state.broadcaster = broadcaster


@app.get(
    "/health",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check() -> dict[str, str]:
    """
    Basic health check endpoint.

    Always returns 200 OK if application is running.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Readiness check endpoint",
)
async def readiness_check():
    """Readiness check verifying database connectivity."""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(
            "Database connectivity check failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": "healthy",
    }


@app.websocket("/ws/orders")
async def orders_channel(websocket: WebSocket) -> None:
    """
    Subscribe a client to ``order.status.updated`` broadcasts.

    Inbound client messages are ignored; the socket stays subscribed until
    the client disconnects.
    """
    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await broadcaster.disconnect(websocket)
