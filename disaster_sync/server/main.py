"""
MODULE OVERVIEW:
The FastAPI application factory.

WHAT IS HAPPENING HERE:
`create_app()` wires one store, one event bus and one subscription registry onto
`app.state`, and subscribes the registry to the bus. Tests build a fresh app per
test; uvicorn serves the module-level `app`.

We use a `lifespan` context manager. On startup we spawn the periodic feed refresher
as a background task. On shutdown we cancel it together with any pending
fire-and-forget tasks, and close every WebSocket so no connection outlives the app.
"""

import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from disaster_sync.shared.config import settings
from disaster_sync.shared.errors import DomainError
from disaster_sync.shared.models import utcnow
from disaster_sync.server.cache import TTLCache
from disaster_sync.server.connection_manager import SubscriptionRegistry
from disaster_sync.server.event_bus import EventBus
from disaster_sync.server.feeds import FeedService, feed_refresher
from disaster_sync.server.middleware import RateLimitMiddleware, TimingMiddleware
from disaster_sync.server.routes import disasters, feeds, reports, websocket
from disaster_sync.server.store import DisasterStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    # STARTUP
    logger.info("Disaster sync server starting up...")
    state = app.state
    refresher = asyncio.create_task(
        feed_refresher(state.store, state.feeds, state.bus, settings.FEED_REFRESH_INTERVAL_S)
    )
    state.background_tasks.add(refresher)

    yield

    # SHUTDOWN
    logger.info("Server shutting down. Cancelling background tasks...")
    tasks = list(state.background_tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    await state.registry.close_all()
    logger.info("Shutdown complete.")


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, err: DomainError):
        return JSONResponse(status_code=err.status_code, content=err.to_body())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, err: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {err}")
        return JSONResponse(
            status_code=500,
            content={
                "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
                "timestamp": utcnow().isoformat(),
                "request_id": request.headers.get("x-request-id", "unknown"),
            },
        )


def create_app(
    rate_limit_window_s: float = settings.RATE_LIMIT_WINDOW_S,
    rate_limit_max_requests: int = settings.RATE_LIMIT_MAX_REQUESTS,
) -> FastAPI:
    app = FastAPI(
        title="Disaster Sync",
        description="Disaster response coordination with real-time updates",
        version="2.0.0",
        lifespan=lifespan,
    )

    app.state.store = DisasterStore()
    app.state.bus = EventBus()
    app.state.registry = SubscriptionRegistry()
    app.state.feeds = FeedService(TTLCache(settings.CACHE_TTL_S))
    app.state.background_tasks = set()
    app.state.bus.subscribe(app.state.registry.on_event)

    # Add Middlewares
    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        window_s=rate_limit_window_s,
        max_requests=rate_limit_max_requests,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "x-user-id"],
    )
    register_error_handlers(app)

    # Route registrations
    app.include_router(disasters.router, tags=["Disasters"])
    app.include_router(reports.router, tags=["Reports & Resources"])
    app.include_router(feeds.router, tags=["Feeds"])
    app.include_router(websocket.router, tags=["Real-time"])

    @app.get("/health", tags=["Ops"])
    async def health_check():
        return {"status": "healthy", "timestamp": utcnow().isoformat(), "version": app.version}

    @app.get("/stats", tags=["Ops"])
    async def get_stats():
        return app.state.registry.get_stats()

    return app


app = create_app()
