from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI

from ringhub.config import settings
from ringhub.database import async_session_factory
from ringhub.logging_config import configure_logging
from ringhub.metrics import metrics_endpoint
from ringhub.middleware.logging_middleware import RequestLoggingMiddleware
from ringhub.routers import admin, rate_limits
from ringhub.services.rate_limiting import build_rate_limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    # Connects lazily; only the redis counter backend uses it
    app.state.redis = aioredis.from_url(
        settings.redis_url, encoding="utf-8", decode_responses=True
    )
    app.state.rate_limiter = build_rate_limiter(
        settings, async_session_factory, redis_client=app.state.redis
    )
    try:
        yield
    finally:
        await app.state.redis.aclose()


app = FastAPI(title=f"{settings.app_name} API", version="0.1.0", lifespan=lifespan)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(rate_limits.router)
app.include_router(admin.router)

# Prometheus metrics endpoint
app.get("/metrics")(metrics_endpoint)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
