"""
Config API Endpoints
Public endpoints for plans and tool availability
"""

from typing import Dict, Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.limits import PLAN_CONFIGS, get_voice_character_limit, get_per_request_char_limit
from src.core.enums import ToolName
from src.database.crud import get_settings
from src.database.engine import get_session
from src.database.limit_manager import MAINTENANCE_FLAGS
from src.database.models import ToolMaintenance

# Create router
router = APIRouter(prefix="/config", tags=["config"])


@router.get("/plans")
async def get_plans() -> Dict[str, Any]:
    """
    Plan table for the pricing page

    Public endpoint - no authentication required

    Returns:
        {
            "plans": [
                {
                    "name": "scale",
                    "price_pkr": 900,
                    "duration_days": 10,
                    "daily_video_limit": 1000,
                    "tools": [...],
                    "bulk": {"max_batch": 7, "delay_seconds": 30, "max_prompts": 50},
                    "voice_characters": 50000,
                    "voice_per_request": 10000
                },
                ...
            ]
        }
    """
    plans = []
    for plan, config in PLAN_CONFIGS.items():
        plans.append({
            "name": plan.value,
            "price_pkr": config["price_pkr"],
            "duration_days": config["duration_days"],
            "daily_video_limit": config["daily_video_limit"],
            "tools": sorted(config["allowed_tools"]),
            "bulk": dict(config["bulk"]),
            "voice_characters": get_voice_character_limit(plan),
            "voice_per_request": get_per_request_char_limit(plan),
        })

    return {"plans": plans}


@router.get("/maintenance")
async def get_maintenance_status(session: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    """Which tools are currently available (public, used to grey out UI)"""
    maintenance = await get_settings(session, ToolMaintenance)
    tools = {}
    for tool in ToolName:
        flag = MAINTENANCE_FLAGS.get(tool)
        tools[tool.value] = getattr(maintenance, flag) if flag else True

    return {"tools": tools, "message": maintenance.message}
