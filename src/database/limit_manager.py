"""
Plan & Quota Manager - daily video quota, rolling voice quota, tool access

Every check resolves the *effective* plan first: a paid plan whose expiry
has passed is treated as free even if plan_type was never changed.
Consumption runs under a row lock on the user so concurrent requests from
one account cannot over-allow.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from src.core.enums import PlanType, PlanStatus, QuotaKind, ToolName
from src.core.exceptions import QuotaExceededError, ToolUnavailableError
from src.database.models import User, ToolMaintenance
from src.database.crud import get_settings
from src.utils.time_utils import utcnow, as_utc, quota_today
from config.limits import (
    VOICE_RESET_DAYS,
    PLAN_EXPIRED_MESSAGE,
    DAILY_LIMIT_MESSAGE,
    NO_VIDEO_ACCESS_MESSAGE,
    VOICE_LIMIT_MESSAGE,
    PER_REQUEST_LIMIT_MESSAGE,
    get_daily_video_limit,
    get_voice_character_limit,
    get_per_request_char_limit,
    get_bulk_limits,
    plan_allows_tool,
)


# Tool → ToolMaintenance column
MAINTENANCE_FLAGS = {
    ToolName.VEO: "veo_generator_active",
    ToolName.BULK: "bulk_generator_active",
    ToolName.TEXT_TO_IMAGE: "text_to_image_active",
    ToolName.IMAGE_TO_VIDEO: "image_to_video_active",
    ToolName.SCRIPT: "script_creator_active",
    ToolName.CHARACTER_CONSISTENCY: "character_consistency_active",
    ToolName.VOICE: "text_to_voice_active",
    ToolName.COMMUNITY_VOICES: "community_voices_active",
    ToolName.SCRIPT_TO_FRAMES: "script_to_frames_active",
}


@dataclass
class QuotaDecision:
    """Result of a quota check (limit None = unlimited)"""

    allowed: bool
    used: int
    limit: Optional[int]
    reason: Optional[str] = None

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise QuotaExceededError(self.reason, used=self.used, limit=self.limit)


# ===========================
# PLAN RESOLUTION
# ===========================


def is_plan_expired(user: User, now: Optional[datetime] = None) -> bool:
    """Admins and free users never expire"""
    if user.is_admin or user.plan_type == PlanType.FREE.value:
        return False
    if user.plan_status == PlanStatus.EXPIRED.value:
        return True
    if user.plan_expiry is None:
        return False
    return as_utc(user.plan_expiry) <= (now or utcnow())


def effective_plan(user: User, now: Optional[datetime] = None) -> PlanType:
    """Plan whose limits apply right now"""
    if is_plan_expired(user, now):
        return PlanType.FREE
    return PlanType(user.plan_type)


def resolve_daily_video_limit(user: User, now: Optional[datetime] = None) -> Optional[int]:
    """
    Daily video limit for user

    Returns:
        None for unlimited (admins, empire, enterprise without custom limit),
        otherwise the per-user override or the plan value.
    """
    if user.is_admin:
        return None
    if is_plan_expired(user, now):
        return get_daily_video_limit(PlanType.FREE)
    if user.daily_video_limit:
        return user.daily_video_limit
    return get_daily_video_limit(PlanType(user.plan_type))


async def _lock_user(session: AsyncSession, user_id: int) -> User:
    stmt = (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise ValueError(f"User {user_id} not found")
    return user


def _mark_expired(user: User) -> None:
    if user.plan_status != PlanStatus.EXPIRED.value:
        user.plan_status = PlanStatus.EXPIRED.value
        logger.info(f"User {user.id} plan {user.plan_type} expired at {user.plan_expiry}")


# ===========================
# QUOTA CONSUMPTION
# ===========================


async def check_and_consume_quota(
    session: AsyncSession,
    user_id: int,
    kind: QuotaKind,
    amount: int = 1,
    now: Optional[datetime] = None,
) -> QuotaDecision:
    """
    Atomically check and consume quota for user

    Args:
        session: Database session
        user_id: User ID
        kind: QuotaKind.VIDEO (amount = videos) or QuotaKind.VOICE (amount = characters)
        amount: Units to consume
        now: Override clock (tests)

    Returns:
        QuotaDecision; quota is consumed only when allowed
    """
    now = now or utcnow()
    user = await _lock_user(session, user_id)

    if is_plan_expired(user, now):
        _mark_expired(user)

    if kind == QuotaKind.VIDEO:
        decision = _consume_video(user, amount, now)
    elif kind == QuotaKind.VOICE:
        decision = _consume_voice(user, amount, now)
    else:
        raise ValueError(f"Unknown quota kind: {kind}")

    # Commit also persists day/window resets on denial
    await session.commit()

    logger.debug(
        f"Quota {kind.value} user={user.id}: allowed={decision.allowed} "
        f"used={decision.used}/{decision.limit if decision.limit is not None else 'inf'}"
    )
    return decision


def _consume_video(user: User, amount: int, now: datetime) -> QuotaDecision:
    today = quota_today(now)
    if user.daily_reset_date != today:
        user.daily_video_count = 0
        user.daily_reset_date = today

    limit = resolve_daily_video_limit(user, now)

    if limit is not None and user.daily_video_count + amount > limit:
        if is_plan_expired(user, now):
            reason = PLAN_EXPIRED_MESSAGE
        elif limit == 0:
            reason = NO_VIDEO_ACCESS_MESSAGE
        else:
            reason = DAILY_LIMIT_MESSAGE.format(limit=limit)
        return QuotaDecision(False, user.daily_video_count, limit, reason)

    user.daily_video_count += amount
    return QuotaDecision(True, user.daily_video_count, limit)


def _consume_voice(user: User, characters: int, now: datetime) -> QuotaDecision:
    plan = effective_plan(user, now)

    per_request = get_per_request_char_limit(plan, user.is_admin)
    if characters > per_request:
        return QuotaDecision(
            False,
            user.voice_characters_used,
            per_request,
            PER_REQUEST_LIMIT_MESSAGE.format(length=characters, limit=per_request),
        )

    reset_at = as_utc(user.voice_characters_reset_date)
    if reset_at is None or now >= reset_at:
        user.voice_characters_used = 0
        user.voice_characters_reset_date = now + timedelta(days=VOICE_RESET_DAYS)
        reset_at = as_utc(user.voice_characters_reset_date)

    if user.is_admin:
        user.voice_characters_used += characters
        return QuotaDecision(True, user.voice_characters_used, None)

    limit = get_voice_character_limit(plan)
    if user.voice_characters_used + characters > limit:
        reason = VOICE_LIMIT_MESSAGE.format(
            used=user.voice_characters_used, limit=limit, reset_date=reset_at.date().isoformat()
        )
        return QuotaDecision(False, user.voice_characters_used, limit, reason)

    user.voice_characters_used += characters
    return QuotaDecision(True, user.voice_characters_used, limit)


async def reset_daily_quota(session: AsyncSession, user_id: int) -> User:
    """Admin: zero today's video counter"""
    user = await _lock_user(session, user_id)
    user.daily_video_count = 0
    user.daily_reset_date = quota_today()
    await session.commit()
    logger.info(f"Daily quota reset for user {user_id}")
    return user


async def reset_voice_quota(session: AsyncSession, user_id: int) -> User:
    """Admin: start a fresh voice window"""
    user = await _lock_user(session, user_id)
    user.voice_characters_used = 0
    user.voice_characters_reset_date = None
    await session.commit()
    logger.info(f"Voice quota reset for user {user_id}")
    return user


def get_quota_status(user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Read-only quota snapshot for UI

    Does not persist resets; values reflect what the next check would see.
    """
    now = now or utcnow()
    plan = effective_plan(user, now)

    videos_used = user.daily_video_count if user.daily_reset_date == quota_today(now) else 0
    video_limit = resolve_daily_video_limit(user, now)

    reset_at = as_utc(user.voice_characters_reset_date)
    window_open = reset_at is not None and now < reset_at
    voice_used = user.voice_characters_used if window_open else 0

    return {
        "plan_type": user.plan_type,
        "effective_plan": plan.value,
        "plan_expired": is_plan_expired(user, now),
        "plan_expiry": as_utc(user.plan_expiry).isoformat() if user.plan_expiry else None,
        "videos_used_today": videos_used,
        "daily_video_limit": video_limit,
        "videos_remaining": None if video_limit is None else max(0, video_limit - videos_used),
        "voice_characters_used": voice_used,
        "voice_character_limit": None if user.is_admin else get_voice_character_limit(plan),
        "voice_reset_at": reset_at.isoformat() if window_open else None,
        "per_request_char_limit": get_per_request_char_limit(plan, user.is_admin),
    }


# ===========================
# TOOL ACCESS
# ===========================


async def ensure_tool_access(
    session: AsyncSession,
    user: User,
    tool: ToolName,
    now: Optional[datetime] = None,
) -> None:
    """
    Check plan includes tool and tool is not under maintenance

    Admins bypass both checks.

    Raises:
        ToolUnavailableError
    """
    if user.is_admin:
        return

    maintenance = await get_settings(session, ToolMaintenance)
    flag = MAINTENANCE_FLAGS.get(tool)
    if flag and not getattr(maintenance, flag):
        raise ToolUnavailableError(
            tool.value,
            maintenance.message or "This tool is under maintenance. Please try again later.",
            maintenance=True,
        )

    if is_plan_expired(user, now):
        raise ToolUnavailableError(tool.value, PLAN_EXPIRED_MESSAGE)

    if not plan_allows_tool(PlanType(user.plan_type), tool.value):
        raise ToolUnavailableError(
            tool.value, f"Your {user.plan_type} plan does not include this tool. Please upgrade."
        )


def get_user_bulk_limits(user: User, now: Optional[datetime] = None) -> Dict[str, int]:
    """Plan bulk limits with per-user overrides applied"""
    limits = get_bulk_limits(effective_plan(user, now))
    if user.bulk_max_batch:
        limits["max_batch"] = user.bulk_max_batch
    if user.bulk_delay_seconds is not None:
        limits["delay_seconds"] = user.bulk_delay_seconds
    if user.bulk_max_prompts:
        limits["max_prompts"] = user.bulk_max_prompts
    return limits


def check_bulk_request(user: User, prompt_count: int, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Validate batch size against plan

    Returns:
        Effective bulk limits

    Raises:
        QuotaExceededError: bulk not included or too many prompts
    """
    if prompt_count <= 0:
        raise ValueError("At least one prompt is required")

    limits = get_user_bulk_limits(user, now)
    if user.is_admin:
        return limits

    if is_plan_expired(user, now):
        raise QuotaExceededError(PLAN_EXPIRED_MESSAGE)
    if limits["max_prompts"] <= 0:
        raise QuotaExceededError("Bulk generation is not available on your plan. Please upgrade.")
    if prompt_count > limits["max_prompts"]:
        raise QuotaExceededError(
            f"Too many prompts: {prompt_count} (max {limits['max_prompts']} per batch)",
            used=prompt_count,
            limit=limits["max_prompts"],
        )
    return limits


async def expire_overdue_plans(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Mark paid plans past their expiry as expired

    Checks already treat such plans as free; this keeps plan_status and
    admin listings in step.

    Returns:
        Number of users updated
    """
    now = now or utcnow()
    stmt = (
        select(User)
        .where(
            User.is_admin.is_(False),
            User.plan_type != PlanType.FREE.value,
            User.plan_status == PlanStatus.ACTIVE.value,
            User.plan_expiry.is_not(None),
            User.plan_expiry <= now,
        )
        .with_for_update()
    )
    users = (await session.execute(stmt)).scalars().all()
    for user in users:
        _mark_expired(user)
    await session.commit()
    return len(users)
