"""
Health check endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.config import settings
from app.services.infrastructure.encryption_service import validate_encryption_config
from app.services.mail_transport import mail_sender
from app.services.redis_client import fast_redis
from app.services.single_flight_cache import mail_outcomes, probe_outcomes

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "mail-action-gateway"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check: Redis, ticket encryption and the action caches.

    CAPTCHA and outbound mail are optional; their state is reported but does
    not make the service unready.
    """
    checks = {}
    overall_ok = True

    # 1) Redis health check
    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["redis"] = {
            "ok": bool(redis_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Ticket encryption
    encryption_ok = validate_encryption_config()
    checks["encryption"] = {"ok": encryption_ok}
    overall_ok = overall_ok and encryption_ok

    # 3) Optional collaborators
    checks["captcha"] = {"enabled": settings.captcha_enabled()}
    checks["mail"] = {"enabled": mail_sender.available}

    # 4) Single-flight caches
    checks["caches"] = [await mail_outcomes.snapshot(), await probe_outcomes.snapshot()]

    checks["configuration"] = {
        "environment": settings.environment,
        "ticket_validity_days": settings.TICKET_VALIDITY_DAYS,
    }

    body = {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
    return JSONResponse(content=body, status_code=200 if overall_ok else 503)
