"""
Plan limits configuration for VEO3 Studio

Defines precise limits for each plan:
- Daily video generations
- Tool access
- Bulk generation (batch size, delay, prompts per run)
- Voice characters (rolling window) and per-request character caps
"""

from typing import Dict, Any, Optional

from src.core.enums import PlanType, ToolName


# ============================================================================
# PLAN LIMITS
# ============================================================================

ALL_TOOLS = frozenset(tool.value for tool in ToolName)

PLAN_CONFIGS: Dict[PlanType, Dict[str, Any]] = {
    # FREE - account exists but no paid generation
    PlanType.FREE: {
        "daily_video_limit": 0,
        "allowed_tools": frozenset({
            ToolName.VEO.value,
            ToolName.VOICE.value,
            ToolName.IMAGE_TO_VIDEO.value,
        }),
        "bulk": {"max_batch": 0, "delay_seconds": 0, "max_prompts": 0},
        "price_pkr": 0,
        "duration_days": None,
    },

    # SCALE - entry paid plan
    PlanType.SCALE: {
        "daily_video_limit": 1000,
        "allowed_tools": frozenset({
            ToolName.VEO.value,
            ToolName.BULK.value,
            ToolName.TEXT_TO_IMAGE.value,
            ToolName.IMAGE_TO_VIDEO.value,
            ToolName.VOICE.value,
            ToolName.COMMUNITY_VOICES.value,
        }),
        "bulk": {"max_batch": 7, "delay_seconds": 30, "max_prompts": 50},
        "price_pkr": 900,
        "duration_days": 10,
    },

    # EMPIRE - everything, no daily cap
    PlanType.EMPIRE: {
        "daily_video_limit": None,
        "allowed_tools": ALL_TOOLS,
        "bulk": {"max_batch": 100, "delay_seconds": 15, "max_prompts": 100},
        "price_pkr": 1500,
        "duration_days": 10,
    },

    # ENTERPRISE - custom limit set per user (None = unlimited)
    PlanType.ENTERPRISE: {
        "daily_video_limit": None,
        "allowed_tools": ALL_TOOLS,
        "bulk": {"max_batch": 100, "delay_seconds": 10, "max_prompts": 500},
        "price_pkr": None,
        "duration_days": 30,
    },
}


# Voice characters per rolling window
VOICE_RESET_DAYS = 10

VOICE_CHARACTER_LIMITS: Dict[PlanType, int] = {
    PlanType.FREE: 10_000,
    PlanType.SCALE: 50_000,
    PlanType.EMPIRE: 1_000_000,
    PlanType.ENTERPRISE: 5_000_000,
}

# Max characters in a single TTS request
PER_REQUEST_CHAR_LIMITS: Dict[PlanType, int] = {
    PlanType.FREE: 5_000,
    PlanType.SCALE: 10_000,
    PlanType.EMPIRE: 10_000,
    PlanType.ENTERPRISE: 100_000,
}
ADMIN_PER_REQUEST_CHAR_LIMIT = 200_000


# ============================================================================
# MESSAGES
# ============================================================================

PLAN_EXPIRED_MESSAGE = "Your plan has expired. Please contact admin to renew."
DAILY_LIMIT_MESSAGE = (
    "You have reached your daily limit of {limit} videos. Limit resets at midnight."
)
NO_VIDEO_ACCESS_MESSAGE = "Your plan does not include video generation. Please upgrade."
VOICE_LIMIT_MESSAGE = (
    "Voice character limit reached ({used}/{limit}). Resets on {reset_date}."
)
PER_REQUEST_LIMIT_MESSAGE = "Text too long: {length} characters (max {limit} per request)."


# ============================================================================
# HELPERS
# ============================================================================

def get_plan_config(plan: PlanType) -> Dict[str, Any]:
    """
    Get full config for a plan

    Args:
        plan: Plan type

    Returns:
        Plan config dict (free plan config for unknown values)
    """
    return PLAN_CONFIGS.get(PlanType(plan), PLAN_CONFIGS[PlanType.FREE])


def get_daily_video_limit(plan: PlanType) -> Optional[int]:
    """Daily video limit for plan (None = unlimited)"""
    return get_plan_config(plan)["daily_video_limit"]


def get_bulk_limits(plan: PlanType) -> Dict[str, int]:
    """Bulk generation limits for plan"""
    return dict(get_plan_config(plan)["bulk"])


def plan_allows_tool(plan: PlanType, tool: str) -> bool:
    """Check if plan includes tool"""
    return tool in get_plan_config(plan)["allowed_tools"]


def get_voice_character_limit(plan: PlanType) -> int:
    """Voice characters per rolling window"""
    return VOICE_CHARACTER_LIMITS.get(PlanType(plan), VOICE_CHARACTER_LIMITS[PlanType.FREE])


def get_per_request_char_limit(plan: PlanType, is_admin: bool = False) -> int:
    """Max characters per TTS request"""
    if is_admin:
        return ADMIN_PER_REQUEST_CHAR_LIMIT
    return PER_REQUEST_CHAR_LIMITS.get(PlanType(plan), PER_REQUEST_CHAR_LIMITS[PlanType.FREE])
