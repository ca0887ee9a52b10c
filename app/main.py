import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import get_settings
from app.core.logging import configure_logging, init_sentry
from app.core.rate_limit import limiter

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
init_sentry(settings, "api")
logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.services.providers.registry import available_providers, register_default_providers

    register_default_providers()
    logger.info("app_startup", version=VERSION, providers=available_providers())
    yield
    logger.info("app_shutdown")


app = FastAPI(
    title="Shortlist Market API",
    description="Paid candidate shortlists: matching, pricing, payment holds and delivery",
    version=VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request id into the structlog context and logs each API call once."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()

        response = await call_next(request)

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
from app.api.v1.admin_shortlists import router as admin_shortlists_router
from app.api.v1.shortlists import router as shortlists_router
from app.api.v1.webhooks import router as webhooks_router

app.include_router(shortlists_router, prefix=settings.API_V1_PREFIX)
app.include_router(admin_shortlists_router, prefix=settings.API_V1_PREFIX)
app.include_router(webhooks_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health():
    from sqlalchemy import text

    from app.core.database import async_session
    from app.services.providers.registry import available_providers

    checks: dict = {"version": VERSION, "payment_providers": available_providers()}
    degraded = False

    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.warning("health_database_failed", error=str(e))
        checks["database"] = "error"
        degraded = True

    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        checks["redis"] = "ok"
    except Exception as e:
        logger.warning("health_redis_failed", error=str(e))
        checks["redis"] = "error"
        degraded = True

    checks["status"] = "degraded" if degraded else "ok"
    return JSONResponse(checks, status_code=503 if degraded else 200)
