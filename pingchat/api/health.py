"""
Health check endpoints for liveness and readiness probes.
"""
from fastapi import APIRouter, Depends, Request, Response

from pingchat.core.config import Settings, get_settings
from pingchat.core.database import check_db_connection
from pingchat.core.logging import get_logger
from pingchat.schemas.common import HealthResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "/live",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Always returns 200 to indicate the service is alive."
)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness probe",
    description="Returns 200 if the service is ready to handle traffic."
)
async def readiness(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Readiness probe - checks if the service can handle traffic.

    Checks:
    - the marketplace store is reachable
    - WEBHOOK_SECRET (request signing) is configured
    Connectivity and offline queue depth are reported but do not gate readiness.
    """
    checks = {}
    is_ready = True

    engine = getattr(request.app.state, "engine", None)
    db_ok = engine is not None and await check_db_connection(engine)
    checks["database"] = "ok" if db_ok else "failed"
    if not db_ok:
        is_ready = False
        logger.warning("Readiness check failed: database not reachable")

    secret_ok = settings.is_webhook_secret_configured
    checks["webhook_secret"] = "ok" if secret_ok else "not configured"
    if not secret_ok:
        is_ready = False
        logger.warning("Readiness check failed: WEBHOOK_SECRET not configured")

    connectivity = getattr(request.app.state, "connectivity", None)
    if db_ok and connectivity is not None:
        await connectivity.check_once()

    services = getattr(request.app.state, "services", None)
    if services is not None:
        queue_status = await services.offline_queue.status()
        checks["network"] = "online" if services.network.is_online() else "offline"
        checks["offline_queue"] = queue_status.total

    if is_ready:
        return HealthResponse(status="ok", checks=checks)
    response.status_code = 503
    return HealthResponse(status="not ready", checks=checks)
