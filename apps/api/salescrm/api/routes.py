from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from salescrm.business.deals.api import router as deals_router
from salescrm.business.leaderboard.api import router as leaderboard_router
from salescrm.business.payments.api import router as payments_router
from salescrm.business.reporting.api import router as reports_router
from salescrm.business.users.api import auth_router, router as users_router
from salescrm.core.auth import AuthUser, get_current_user
from salescrm.core.config import get_settings
from salescrm.crm.enums import Role
from salescrm.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(deals_router)
router.include_router(payments_router)
router.include_router(leaderboard_router)
router.include_router(reports_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | None]:
    return {
        "sub": user.sub,
        "role": user.role,
        "manager_id": user.manager_id,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role != Role.SUPER_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Requires role: {Role.SUPER_ADMIN}")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
