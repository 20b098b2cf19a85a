"""FastAPI application factory.

Learn: App factory pattern. create_app() returns a configured FastAPI
instance. The lifespan builds the CanvasContext, starts it (store with
retry, change-feed watcher, accrual job) and tears it down on shutdown.
If PostgreSQL never comes up, start() raises and the process exits.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pixelmap import __version__
from pixelmap.api import api_router
from pixelmap.config import Settings, settings as default_settings
from pixelmap.context import CanvasContext

logger = structlog.get_logger()


def create_app(settings: Settings = default_settings) -> FastAPI:
    """Build and return the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "pixelmap.starting",
            version=__version__,
            environment=settings.environment,
            port=settings.port,
        )
        canvas = CanvasContext.from_settings(settings)
        await canvas.start()
        app.state.canvas = canvas

        yield

        logger.info("pixelmap.shutdown")
        await canvas.stop()

    app = FastAPI(
        title="pixelmap",
        description="Collaborative pixel canvas with real-time updates",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from pixelmap.middleware.rate_limit import RateLimitMiddleware
    from pixelmap.middleware.request_id import RequestIdMiddleware
    from pixelmap.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware, access_log=settings.environment != "production")
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from pixelmap.realtime.websocket import pixel_socket
    app.add_api_websocket_route(settings.socket_path, pixel_socket)

    return app


# Default app instance (used by uvicorn: pixelmap.main:app)
app = create_app()
