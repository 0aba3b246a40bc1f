from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from foodsync.routers.health import router as health_router
from foodsync.routers.sync import router as sync_router
from foodsync.utils.logger import log_info
from foodsync.utils.telemetry import init_otel
from foodsync.observability.logger import configure_logging
from foodsync.db.base import async_engine, ensure_schema
from foodsync.middleware.rate_limiter import FailBlockMiddleware, RateLimitMiddleware
from foodsync.middleware.security_alerts import SecurityAlertMiddleware
from foodsync.middleware.error_handler import ErrorHandlerMiddleware, setup_exception_handlers
from foodsync import config
from foodsync.config import Settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(config)
    if app.state.settings.DB_AUTO_CREATE:
        await ensure_schema()
    log_info("foodsync API started")
    yield
    await async_engine.dispose()


def create_app(settings: Settings = None) -> FastAPI:
    settings = settings or config.settings

    app = FastAPI(
        title="Foodsync API",
        description="Snapshot sync for the baby food tracker",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Starlette wraps in reverse: the last middleware added is the outermost
    if settings.FAIL_BLOCK_ENABLED:
        app.add_middleware(
            FailBlockMiddleware,
            threshold=settings.FAIL_BLOCK_THRESHOLD,
            base_seconds=settings.FAIL_BLOCK_BASE_SECONDS,
            max_seconds=settings.FAIL_BLOCK_MAX_SECONDS,
            reset_seconds=settings.FAIL_BLOCK_RESET_SECONDS,
        )
    app.add_middleware(
        RateLimitMiddleware,
        api_limit=settings.API_RATE_LIMIT,
        sync_limit=settings.SYNC_RATE_LIMIT,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    app.add_middleware(ErrorHandlerMiddleware, debug=settings.DEBUG)
    if settings.SECURITY_ALERT_ENABLED:
        # Outside the limiters so their 403/429 answers are seen too
        app.add_middleware(
            SecurityAlertMiddleware,
            summary_seconds=settings.SECURITY_ALERT_SUMMARY_SECONDS,
            summary_threshold=settings.SECURITY_ALERT_SUMMARY_THRESHOLD,
        )
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type"],
            allow_credentials=False,
        )

    setup_exception_handlers(app)

    app.include_router(health_router)  # Health checks at root level
    app.include_router(sync_router, prefix="/api")

    if settings.OTEL_ENABLED:
        init_otel(settings, app=app, engine=async_engine)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("foodsync.main:app", host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
