"""
Application entry point with resource lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from app.routes import actions, health
from app.services.redis_client import fast_redis
from app.services.single_flight_cache import mail_outcomes, probe_outcomes

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        captcha_enabled=settings.captcha_enabled(),
        smtp_enabled=settings.SMTP_ENABLED,
    )

    try:
        logger.info("Initializing Redis connection")
        await fast_redis.initialize()
        logger.info("All services initialized successfully", services=["redis"])
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    # Background mail and probes first, they may still use Redis-backed stores
    for cache in (mail_outcomes, probe_outcomes):
        try:
            await cache.close()
        except Exception as e:
            logger.error("Error closing action cache", cache=cache.name, error=str(e))
            shutdown_errors.append(f"{cache.name}: {e}")

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Mail Action Gateway",
    description="Ticket-driven actions for the anti-spam filter",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.debug else None,
)

app.add_middleware(
    SecurityHeadersMiddleware,
    enforce_https=settings.environment == "production",
)
app.add_middleware(RequestContextMiddleware)

# Health first: /healthz and /readyz would otherwise be read as ticket paths
app.include_router(health.router)
app.include_router(actions.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(request.method, request.url.path, response.status_code, round(process_time, 2))
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
