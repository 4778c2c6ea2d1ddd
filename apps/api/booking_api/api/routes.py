from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from booking_api.booking.api import router as booking_actions_router
from booking_api.core.auth import OperatorUser, require_roles
from booking_api.core.config import get_settings
from booking_api.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(booking_actions_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(operator: OperatorUser = Depends(require_roles("system.metrics.read"))) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
