"""
Main API router for VEO3 Studio
"""

from typing import Dict, Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.engine import get_session
from src.database.crud import get_settings
from src.database.models import TokenSettings

# Import sub-routers
from src.api.auth import router as auth_router
from src.api.generation import router as generation_router
from src.api.history import router as history_router
from src.api.voice import router as voice_router
from src.api.affiliate import router as affiliate_router
from src.api.reseller import router as reseller_router
from src.api.admin import router as admin_router
from src.api.config import router as config_router


# Main router
router = APIRouter()

# Include sub-routers (they already carry their prefixes)
router.include_router(auth_router)
router.include_router(generation_router)
router.include_router(history_router)
router.include_router(voice_router)
router.include_router(affiliate_router)
router.include_router(reseller_router)
router.include_router(admin_router)  # Admin console (require_admin on every route)
router.include_router(config_router)  # Public config endpoints (plans, maintenance)


@router.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    """
    Health check endpoint (no auth required)

    Touches the database through the token settings singleton.
    """
    settings = await get_settings(session, TokenSettings)
    return {
        "status": "ok",
        "service": "VEO3 Studio API",
        "rotation_enabled": settings.rotation_enabled,
    }
