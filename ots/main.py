"""One-time secret service - FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from ots import __version__
from ots.api import api_router, system_router
from ots.config import Settings
from ots.database import build_engine, build_session_factory, init_db
from ots.middleware.rate_limit import RateLimitMiddleware, SlidingWindowRateLimiter
from ots.services.expiration_sweeper import ExpirationSweeper
from ots.services.metrics import SecretMetrics
from ots.services.scheduler import SchedulerService
from ots.services.secret_service import SecretService
from ots.services.secret_store import Clock, SecretStore, utc_now
from ots.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


# Filter to exclude health check endpoints from access logs
class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from Granian access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if the log record is for an excluded endpoint."""
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("granian.access").addFilter(EndpointFilter(["/health"]))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: schema bootstrap, background jobs, teardown."""
    logger.info("Starting one-time secret service...")

    await init_db(app.state.engine)
    logger.info("Database initialized")

    if not app.state.settings.testing:
        await app.state.scheduler.start()
    else:
        logger.info("Background scheduler DISABLED (testing mode)")

    yield

    await app.state.scheduler.stop()
    await app.state.engine.dispose()
    logger.info("Shutting down one-time secret service...")


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Build the application and its long-lived components.

    Every component is constructed here and hung on ``app.state``, so two apps
    never share a store, limiter or metrics registry.

    Args:
        settings: Service settings; read from the environment when omitted
        engine: Pre-built engine (tests); built from settings.database_url otherwise
        clock: UTC time source for the store
    """
    settings = settings or Settings.from_env()
    engine = engine or build_engine(settings.database_url)

    metrics = SecretMetrics()
    store = SecretStore(
        build_session_factory(engine),
        clock=clock,
        default_timeout=float(settings.request_timeout),
    )
    limiter = SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window=float(settings.rate_limit_window),
    )
    sweeper = ExpirationSweeper(store, metrics)
    scheduler = SchedulerService(
        sweeper,
        limiter,
        sweep_interval=settings.cleanup_interval,
        reap_interval=settings.rate_limit_reap_interval,
    )

    app = FastAPI(
        title="One-Time Secrets",
        description="Store a client-encrypted secret and retrieve it exactly once",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.metrics = metrics
    app.state.secret_store = store
    app.state.secret_service = SecretService(store, settings, metrics)
    app.state.rate_limiter = limiter
    app.state.scheduler = scheduler

    # Middlewares run in LIFO order: CORS (outermost), security headers, rate limit
    # Only enable rate limiting outside tests
    if not settings.testing:
        app.add_middleware(RateLimitMiddleware, limiter=limiter, metrics=metrics)
        logger.info(
            f"Rate limiting enabled ({settings.rate_limit_requests} req / "
            f"{settings.rate_limit_window}s)"
        )
    else:
        logger.info("Rate limiting middleware DISABLED (testing mode)")

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        """Add security headers to all responses and record request metrics."""
        start = time.monotonic()
        response = await call_next(request)

        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        metrics.observe_request(request.method, response.status_code, time.monotonic() - start)
        return response

    # CORS - the API is called from browsers that hold the decryption key
    cors_origins = settings.cors_origins
    if cors_origins == ["*"]:
        logger.info("CORS configured with wildcard (*) origins")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Content-Type", "X-Requested-With"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
        max_age=300,
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed JSON or wrong field types are plain 400s."""
        logger.warning(
            f"Invalid request body on {request.method} "
            f"{sanitize_log_message(request.url.path)}: {len(exc.errors())} error(s)"
        )
        return JSONResponse(status_code=400, content={"detail": "invalid request body"})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Generic exception handler to prevent stack trace exposure.

        All errors are logged internally with full details. In debug mode
        (OTS_DEBUG=true) the exception type is included in the response.
        """
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {sanitize_log_message(str(exc))}",
            exc_info=exc,
            extra={
                "path": request.url.path,
                "method": request.method,
                "client": request.client.host if request.client else "unknown",
            },
        )

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={"detail": str(exc), "type": type(exc).__name__, "debug": True},
            )

        return JSONResponse(status_code=500, content={"detail": "internal error"})

    # Root probe paths for orchestrators that predate the /api mount
    app.include_router(system_router, include_in_schema=False)
    app.include_router(api_router)

    return app


settings = Settings.from_env()
configure_logging(settings.log_level)
app = create_app(settings)


if __name__ == "__main__":
    import subprocess
    import sys

    # Same server as production (Granian)
    cmd = [
        "granian",
        "--interface",
        "asgi",
        "--host",
        "0.0.0.0",
        "--port",
        str(settings.port),
        "ots.main:app",
    ]

    sys.exit(subprocess.run(cmd).returncode)
