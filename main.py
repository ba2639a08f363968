import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from linkflow.config import settings
from linkflow.connection import RedisConnection
from linkflow.exceptions import (
    Conflict,
    ExhaustedAttempts,
    InvalidFormat,
    LinkflowError,
    NotFound,
    PermanentData,
    TransientInfra,
)
from linkflow.api.v1 import analytics, urls, redirect
from linkflow.database.connection import Base, engine
from linkflow.queue.factory import EventChannelBackend, EventChannelFactory
from linkflow.queue.publisher import ClickEventPublisher, OverflowPolicy
from linkflow.storage.strategies import SQLAlchemyClickStore
from linkflow.store.factory import CodeStoreBackend, CodeStoreFactory

# Import models to ensure they're registered with Base
from linkflow.models import ClickRecord  # noqa: F401

logger = logging.getLogger(__name__)


def _redis_connection(name: str) -> RedisConnection:
    return RedisConnection(
        settings.redis_url,
        name=name,
        connect_attempts=settings.connect_attempts,
        retry_delay=settings.retry_delay_seconds,
        health_check_interval=settings.health_check_interval,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Own every connection for the lifetime of the app.

    The code store is required: startup fails after the bounded retries.
    The event channel is optional: redirects keep working without it and
    its supervisor keeps reconnecting in the background.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    connections = []

    store_backend = CodeStoreBackend(settings.code_store_backend)
    store_connection = None
    if store_backend == CodeStoreBackend.REDIS:
        store_connection = _redis_connection("code store")
        await store_connection.connect()
        store_connection.start_supervisor()
        connections.append(store_connection)

    channel_backend = EventChannelBackend(settings.event_channel_backend)
    channel_connection = None
    if channel_backend == EventChannelBackend.REDIS_STREAMS:
        channel_connection = _redis_connection("event channel")
        try:
            await channel_connection.connect()
        except TransientInfra:
            logger.warning("⚠️  Event channel unavailable, continuing without analytics")
        channel_connection.start_supervisor()
        connections.append(channel_connection)

    code_store = CodeStoreFactory.create(store_backend, store_connection)
    channel = EventChannelFactory.create(channel_backend, channel_connection)
    try:
        await channel.declare_durable_queue(settings.queue_name)
    except TransientInfra as e:
        logger.warning("⚠️  Could not declare queue %s: %s", settings.queue_name, e)

    publisher = ClickEventPublisher(
        channel,
        settings.queue_name,
        max_pending=settings.publish_buffer_size,
        overflow_policy=OverflowPolicy(settings.publish_overflow_policy),
    )
    publisher.start()

    # Analytics are read-only here, an unreachable database only fails those requests
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.warning("⚠️  Analytics database unavailable: %s", e)
    click_store = SQLAlchemyClickStore(deduplicate=settings.ingest_deduplicate)

    app.state.code_store = code_store
    app.state.event_channel = channel
    app.state.publisher = publisher
    app.state.click_store = click_store
    app.state.connections = {"code_store": store_connection, "event_channel": channel_connection}

    try:
        yield
    finally:
        await publisher.stop()
        for connection in connections:
            await connection.close()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="URL shortener with an at-least-once click event pipeline",
    debug=settings.debug,
    lifespan=lifespan,
)


_ERROR_STATUS = [
    (InvalidFormat, 400),
    (Conflict, 409),
    (NotFound, 404),
    (PermanentData, 422),
    (ExhaustedAttempts, 500),
    (TransientInfra, 503),
]


@app.exception_handler(LinkflowError)
async def linkflow_error_handler(request: Request, exc: LinkflowError):
    """Map the error taxonomy onto HTTP responses"""
    status_code = next(
        (code for error_type, code in _ERROR_STATUS if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.error("❌ %s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": exc.message},
    )


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
def health_check(request: Request):
    """Health check endpoint"""
    def _status(connection):
        if connection is None:
            return "in-memory"
        return "connected" if connection.is_connected else "disconnected"

    connections = request.app.state.connections
    dependencies = {name: _status(conn) for name, conn in connections.items()}
    healthy = dependencies["code_store"] != "disconnected"

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "environment": settings.environment,
            "dependencies": dependencies,
        },
    )


######## Include routers
app.include_router(urls.router, prefix="/api/v1")
app.include_router(analytics.router, prefix="/api/v1")
app.include_router(redirect.router)
