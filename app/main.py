"""Main FastAPI application: intake, query and user notifications."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import notifications_router, transactions_router
from app.api.notifications import manager
from app.config import get_settings
from app.database import async_session_maker, dispose_engine
from app.schemas.common import ErrorResponse, HealthResponse
from app.schemas.events import TX_SENT, TX_STATUS
from app.services.event_bus import EventBus
from app.services.notifier import NotificationDispatcher
from app.services.queue import SubmissionQueue
from app.services.redis_client import connect_with_retry, create_redis

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Event bus consumer for user notifications
event_bus: Optional[EventBus] = None
notification_task: Optional[asyncio.Task] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global event_bus, notification_task

    logger.info("Starting transaction relay API...")

    redis_client = create_redis(settings)
    await connect_with_retry(
        redis_client,
        "submission queue",
        attempts=settings.bus_connect_attempts,
        initial_seconds=settings.bus_connect_initial_seconds,
        growth=settings.bus_connect_growth,
        max_seconds=settings.bus_connect_max_seconds,
    )
    app.state.submission_queue = SubmissionQueue(redis_client, settings.submission_stream)

    event_bus = EventBus(
        redis_client,
        connect_attempts=settings.bus_connect_attempts,
        connect_initial_seconds=settings.bus_connect_initial_seconds,
        connect_growth=settings.bus_connect_growth,
        connect_max_seconds=settings.bus_connect_max_seconds,
    )
    await event_bus.connect()

    dispatcher = NotificationDispatcher(async_session_maker, manager)
    notification_task = asyncio.create_task(
        event_bus.subscribe([TX_SENT, TX_STATUS], settings.notification_consumer_group, dispatcher.handle)
    )
    logger.info("Notification consumer started")

    yield

    logger.info("Shutting down...")
    if event_bus:
        await event_bus.stop()
    if notification_task:
        notification_task.cancel()
        try:
            await notification_task
        except asyncio.CancelledError:
            pass
    await redis_client.aclose()
    await dispose_engine()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Transaction Relay",
    description="""
## Multi-chain transaction submission and tracking

- **Intake**: queue a contract call for signing and submission
- **Submission worker**: signs, estimates and sends with bounded retry
- **Confirmation watcher**: confirmation count and finality checks
- **Reorg resolver**: resubmits or fails transactions displaced by reorgs
- **Notifications**: per-user WebSocket stream of status changes
    """,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    body = ErrorResponse(
        correlation_id=request.headers.get("X-Correlation-ID", "unknown"),
        error="Internal server error",
        error_code="INTERNAL_ERROR",
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(mode="json"),
    )


app.include_router(transactions_router)
app.include_router(notifications_router, tags=["Notifications"])


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        environment=settings.environment,
        event_bus_degraded=event_bus.degraded if event_bus else None,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)
