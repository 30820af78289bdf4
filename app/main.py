from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy import text
from starlette.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware
from app.api import admin_pricing, quotes
from app.core import redis as redis_client
from app.core.config import settings
from app.core.error_handlers import register_exception_handlers
from app.core.metrics import request_count, request_duration, db_connected, redis_connected, get_metrics_text
from app.db.session import engine
import time
import logging

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            # route template keeps label cardinality bounded (/config/{config_id}, not /config/7)
            endpoint = getattr(request.scope.get("route"), "path", request.url.path)
            request_count.labels(method=request.method, endpoint=endpoint, status=status).inc()
            request_duration.labels(method=request.method, endpoint=endpoint).observe(
                time.perf_counter() - start_time
            )


async def _database_reachable() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database check failed: {e}")
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.API_TITLE} starting...")

    try:
        await redis_client.init_redis()
        redis_connected.set(1)
    except Exception as e:
        logger.warning(f"Redis unavailable, pricing cache disabled: {e}")
        redis_connected.set(0)

    if await _database_reachable():
        db_connected.set(1)
        logger.info("Database connected")
    else:
        db_connected.set(0)

    yield

    logger.info("Application shutting down...")
    await redis_client.close_redis()
    redis_connected.set(0)
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan
)

app.add_middleware(MetricsMiddleware)
register_exception_handlers(app)

app.include_router(quotes.router)
app.include_router(admin_pricing.router)


@app.get("/metrics", tags=["monitoring"])
async def metrics():
    return Response(
        content=get_metrics_text(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@app.get("/health", tags=["monitoring"])
async def health_check():
    database_ok = await _database_reachable()
    return {
        "status": "healthy",
        "service": settings.API_TITLE,
        "version": settings.API_VERSION,
        "dependencies": {
            "redis": "connected" if redis_client.is_connected() else "disconnected",
            "database": "connected" if database_ok else "disconnected"
        }
    }


@app.get("/readiness", tags=["monitoring"])
async def readiness_check():
    # Redis is optional; quotes can be priced straight from the database.
    if not await _database_reachable():
        return JSONResponse(
            status_code=503,
            content={"ready": False, "reason": "Database not available"}
        )

    return {
        "ready": True,
        "service": settings.API_TITLE,
        "cache": "enabled" if redis_client.is_connected() else "disabled"
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": settings.API_TITLE,
        "version": settings.API_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }
