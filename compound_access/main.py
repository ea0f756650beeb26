from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from compound_access.api.router import api_router
from compound_access.core.config import get_settings
from compound_access.core.errors import AccessError
from compound_access.core.logging import configure_logging, get_logger
from compound_access.core.rate_limit import SlidingWindowRateLimiter
from compound_access.db.session import SessionLocal
from compound_access.services.notification_dispatcher import NotificationDispatcher
from compound_access.services.push_transport import build_transport

logger = get_logger(__name__)


def create_app(
    notifier: NotificationDispatcher | None = None,
    scan_rate_limiter: SlidingWindowRateLimiter | None = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    if notifier is None:
        notifier = NotificationDispatcher(SessionLocal, build_transport(), max_workers=settings.notification_workers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_started", environment=settings.environment)
        yield
        app.state.notifier.shutdown(wait=False)
        app.state.scan_rate_limiter.client.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.notifier = notifier
    app.state.scan_rate_limiter = scan_rate_limiter or SlidingWindowRateLimiter.from_url(
        settings.redis_url,
        "scan",
        settings.scan_rate_limit_window_seconds,
        settings.scan_rate_limit_max,
    )

    @app.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code)
        headers = {}
        if "retry_after" in exc.details:
            headers["Retry-After"] = str(exc.details["retry_after"])
        return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump(), headers=headers)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
