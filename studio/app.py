"""Application factory. Wiring only: settings, store, shared collaborators, middleware, routers."""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studio.api.errors import register_exception_handlers
from studio.api.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from studio.api.v1 import router as v1_router
from studio.core.clock import Clock, utc_now
from studio.core.config import Settings, get_settings
from studio.core.database import build_engine, build_session_factory
from studio.core.security import SecretBox, TokenCodec
from studio.services.email import Mailer
from studio.services.rate_limit import FixedWindowRateLimiter
from studio.storage.base import Store
from studio.storage.sql import sql_store_provider

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], AbstractAsyncContextManager[Store]]


def create_app(
    settings: Settings | None = None,
    store_factory: StoreFactory | None = None,
    *,
    clock: Clock = utc_now,
    mailer: Mailer | None = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    ``store_factory`` returns an ``async with`` block yielding a Store per
    request; by default it opens an AsyncSession on DATABASE_URL.
    """
    settings = settings or get_settings()
    # Tracebacks and exception text never leave a production process, whatever DEBUG says.
    debug = settings.DEBUG and not settings.is_production
    engine = None
    if store_factory is None:
        engine = build_engine(settings)
        store_factory = sql_store_provider(build_session_factory(engine), clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Studio AI API starting (env=%s)", settings.APP_ENV)
        yield
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="Studio AI API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        debug=debug,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.store_factory = store_factory
    app.state.codec = TokenCodec.from_settings(settings, clock)
    app.state.secret_box = SecretBox(settings.ENCRYPTION_KEY.get_secret_value())
    app.state.mailer = mailer or Mailer(settings)
    if settings.RATE_LIMIT_ENABLED:
        app.state.general_limiter = FixedWindowRateLimiter(
            settings.RATE_LIMIT_WINDOW_SECONDS, settings.RATE_LIMIT_MAX_REQUESTS
        )
        app.state.auth_limiter = FixedWindowRateLimiter(
            settings.RATE_LIMIT_WINDOW_SECONDS, settings.AUTH_RATE_LIMIT_MAX_REQUESTS
        )
    else:
        app.state.general_limiter = None
        app.state.auth_limiter = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app, debug=not settings.is_production)
    app.include_router(v1_router, prefix=settings.API_PREFIX)

    @app.get("/")
    def root() -> dict[str, str]:
        """Root route; minimal payload for discovery."""
        return {"message": "Studio AI API"}

    return app
