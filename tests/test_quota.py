"""
Unit tests for the plan & quota manager
"""

from datetime import datetime, timedelta, UTC

import pytest

from src.core.enums import PlanType, PlanStatus, QuotaKind, ToolName
from src.core.exceptions import QuotaExceededError, ToolUnavailableError
from src.database import crud
from src.database.limit_manager import (
    check_and_consume_quota,
    check_bulk_request,
    effective_plan,
    ensure_tool_access,
    expire_overdue_plans,
    get_quota_status,
    get_user_bulk_limits,
    reset_daily_quota,
    resolve_daily_video_limit,
)
from src.database.models import ToolMaintenance
from src.utils.time_utils import quota_today


@pytest.mark.asyncio
async def test_free_plan_has_no_video_quota(db_session, free_user):
    """Free users are denied video generation"""
    decision = await check_and_consume_quota(db_session, free_user.id, QuotaKind.VIDEO)

    assert not decision.allowed
    assert decision.limit == 0
    assert "does not include video" in decision.reason


@pytest.mark.asyncio
async def test_daily_limit_enforced(db_session, make_user):
    """Consumption stops exactly at the daily limit"""
    user = await make_user("limited", plan_type=PlanType.SCALE, daily_video_limit=2)

    first = await check_and_consume_quota(db_session, user.id, QuotaKind.VIDEO)
    second = await check_and_consume_quota(db_session, user.id, QuotaKind.VIDEO)
    third = await check_and_consume_quota(db_session, user.id, QuotaKind.VIDEO)

    assert first.allowed and second.allowed
    assert not third.allowed
    assert third.used == 2
    assert third.limit == 2
    with pytest.raises(QuotaExceededError):
        third.raise_for_denial()


@pytest.mark.asyncio
async def test_daily_counter_resets_on_new_day(db_session, make_user):
    """A new quota day starts from zero"""
    user = await make_user("daily", plan_type=PlanType.SCALE, daily_video_limit=1)
    yesterday = datetime.now(UTC) - timedelta(days=1)

    await check_and_consume_quota(db_session, user.id, QuotaKind.VIDEO, now=yesterday)
    decision = await check_and_consume_quota(db_session, user.id, QuotaKind.VIDEO)

    assert decision.allowed
    assert decision.used == 1
    await db_session.refresh(user)
    assert user.daily_reset_date == quota_today()


@pytest.mark.asyncio
async def test_admin_is_unlimited(db_session, admin_user):
    """Admins bypass the daily limit"""
    for _ in range(5):
        decision = await check_and_consume_quota(db_session, admin_user.id, QuotaKind.VIDEO)
        assert decision.allowed
        assert decision.limit is None


@pytest.mark.asyncio
async def test_empire_is_unlimited(db_session, empire_user):
    assert resolve_daily_video_limit(empire_user) is None
    decision = await check_and_consume_quota(db_session, empire_user.id, QuotaKind.VIDEO, amount=5000)
    assert decision.allowed


@pytest.mark.asyncio
async def test_expired_plan_falls_back_to_free(db_session, scale_user):
    """Past expiry a paid plan gets free limits and is marked expired"""
    scale_user.plan_expiry = datetime.now(UTC) - timedelta(minutes=1)
    await db_session.commit()

    assert effective_plan(scale_user) == PlanType.FREE

    decision = await check_and_consume_quota(db_session, scale_user.id, QuotaKind.VIDEO)

    assert not decision.allowed
    assert "expired" in decision.reason
    await db_session.refresh(scale_user)
    assert scale_user.plan_status == PlanStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_voice_window_and_limit(db_session, free_user):
    """Voice characters accumulate inside a rolling window"""
    first = await check_and_consume_quota(db_session, free_user.id, QuotaKind.VOICE, amount=4000)
    second = await check_and_consume_quota(db_session, free_user.id, QuotaKind.VOICE, amount=4000)
    third = await check_and_consume_quota(db_session, free_user.id, QuotaKind.VOICE, amount=4000)

    assert first.allowed and second.allowed
    assert not third.allowed
    assert third.used == 8000
    assert third.limit == 10_000

    # Window over: counter starts again
    later = datetime.now(UTC) + timedelta(days=11)
    fourth = await check_and_consume_quota(db_session, free_user.id, QuotaKind.VOICE, amount=4000, now=later)
    assert fourth.allowed
    assert fourth.used == 4000


@pytest.mark.asyncio
async def test_voice_per_request_cap(db_session, free_user):
    """One request cannot exceed the per-request character cap"""
    decision = await check_and_consume_quota(db_session, free_user.id, QuotaKind.VOICE, amount=5001)

    assert not decision.allowed
    assert "Text too long" in decision.reason
    await db_session.refresh(free_user)
    assert free_user.voice_characters_used == 0


@pytest.mark.asyncio
async def test_reset_daily_quota(db_session, make_user):
    user = await make_user("resettable", plan_type=PlanType.SCALE, daily_video_limit=1)
    await check_and_consume_quota(db_session, user.id, QuotaKind.VIDEO)

    await reset_daily_quota(db_session, user.id)

    decision = await check_and_consume_quota(db_session, user.id, QuotaKind.VIDEO)
    assert decision.allowed


@pytest.mark.asyncio
async def test_quota_status_snapshot(db_session, scale_user):
    await check_and_consume_quota(db_session, scale_user.id, QuotaKind.VIDEO)
    await db_session.refresh(scale_user)

    status = get_quota_status(scale_user)

    assert status["effective_plan"] == "scale"
    assert status["videos_used_today"] == 1
    assert status["daily_video_limit"] == 1000
    assert status["videos_remaining"] == 999
    assert status["voice_reset_at"] is None


@pytest.mark.asyncio
async def test_tool_access_by_plan(db_session, free_user, scale_user, admin_user):
    """Plan tool lists gate access; admins see everything"""
    await ensure_tool_access(db_session, scale_user, ToolName.BULK)
    await ensure_tool_access(db_session, admin_user, ToolName.SCRIPT_TO_FRAMES)

    with pytest.raises(ToolUnavailableError) as exc_info:
        await ensure_tool_access(db_session, free_user, ToolName.BULK)
    assert not exc_info.value.maintenance

    with pytest.raises(ToolUnavailableError):
        await ensure_tool_access(db_session, scale_user, ToolName.SCRIPT_TO_FRAMES)


@pytest.mark.asyncio
async def test_tool_maintenance_blocks_non_admins(db_session, scale_user, admin_user):
    await crud.update_settings(db_session, ToolMaintenance, veo_generator_active=False, message="Upgrading")

    with pytest.raises(ToolUnavailableError) as exc_info:
        await ensure_tool_access(db_session, scale_user, ToolName.VEO)
    assert exc_info.value.maintenance
    assert exc_info.value.reason == "Upgrading"

    await ensure_tool_access(db_session, admin_user, ToolName.VEO)


@pytest.mark.asyncio
async def test_bulk_request_limits(scale_user, free_user):
    """Bulk size is capped per plan"""
    limits = check_bulk_request(scale_user, 50)
    assert limits == {"max_batch": 7, "delay_seconds": 30, "max_prompts": 50}

    with pytest.raises(QuotaExceededError):
        check_bulk_request(scale_user, 51)
    with pytest.raises(QuotaExceededError):
        check_bulk_request(free_user, 1)
    with pytest.raises(ValueError):
        check_bulk_request(scale_user, 0)


@pytest.mark.asyncio
async def test_bulk_overrides(scale_user):
    scale_user.bulk_max_prompts = 80
    scale_user.bulk_delay_seconds = 0

    limits = get_user_bulk_limits(scale_user)

    assert limits["max_prompts"] == 80
    assert limits["delay_seconds"] == 0
    assert limits["max_batch"] == 7


@pytest.mark.asyncio
async def test_expire_overdue_plans(db_session, scale_user, empire_user):
    scale_user.plan_expiry = datetime.now(UTC) - timedelta(hours=1)
    await db_session.commit()

    expired = await expire_overdue_plans(db_session)

    assert expired == 1
    await db_session.refresh(scale_user)
    await db_session.refresh(empire_user)
    assert scale_user.plan_status == PlanStatus.EXPIRED.value
    assert empire_user.plan_status == PlanStatus.ACTIVE.value
