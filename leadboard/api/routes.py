from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from leadboard.core.auth import AuthUser, get_current_user
from leadboard.core.config import get_settings
from leadboard.crm.access import ROLE_ADMIN
from leadboard.crm.api import analytics_router, board_router, leads_router, trash_router
from leadboard.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(board_router)
router.include_router(leads_router)
router.include_router(trash_router)
router.include_router(analytics_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if ROLE_ADMIN not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing role: admin")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
