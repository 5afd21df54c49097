"""
Unit tests for plan tables and configuration validation
"""

import pytest

from config import config as app_config
from config.affiliate_config import RESELLER_PLAN_COSTS, get_reseller_plan_cost
from config.limits import (
    PLAN_CONFIGS,
    get_bulk_limits,
    get_daily_video_limit,
    get_per_request_char_limit,
    get_voice_character_limit,
    plan_allows_tool,
)
from src.core.enums import PlanType, ToolName


def test_every_plan_is_configured():
    assert set(PLAN_CONFIGS) == set(PlanType)


def test_plan_limits():
    """Plan table values used by quota checks"""
    assert get_daily_video_limit(PlanType.FREE) == 0
    assert get_daily_video_limit(PlanType.SCALE) == 1000
    assert get_daily_video_limit(PlanType.EMPIRE) is None

    assert get_bulk_limits(PlanType.SCALE) == {"max_batch": 7, "delay_seconds": 30, "max_prompts": 50}
    assert get_bulk_limits(PlanType.FREE)["max_prompts"] == 0

    assert get_voice_character_limit(PlanType.SCALE) == 50_000
    assert get_per_request_char_limit(PlanType.FREE) == 5_000
    assert get_per_request_char_limit(PlanType.FREE, is_admin=True) == 200_000


def test_bulk_limits_are_copies():
    limits = get_bulk_limits(PlanType.EMPIRE)
    limits["max_prompts"] = 1
    assert get_bulk_limits(PlanType.EMPIRE)["max_prompts"] == 100


def test_tool_access_table():
    assert plan_allows_tool(PlanType.EMPIRE, ToolName.SCRIPT_TO_FRAMES.value)
    assert plan_allows_tool(PlanType.SCALE, ToolName.BULK.value)
    assert not plan_allows_tool(PlanType.SCALE, ToolName.SCRIPT_TO_FRAMES.value)
    assert not plan_allows_tool(PlanType.FREE, ToolName.TEXT_TO_IMAGE.value)


def test_reseller_costs():
    assert get_reseller_plan_cost(PlanType.SCALE) == RESELLER_PLAN_COSTS[PlanType.SCALE]
    with pytest.raises(ValueError):
        get_reseller_plan_cost(PlanType.ENTERPRISE)


def test_validate_config_accepts_defaults():
    assert app_config.validate_config()


def test_validate_config_rejects_default_secret_in_production(monkeypatch):
    monkeypatch.setattr(app_config, "ENVIRONMENT", "production")
    monkeypatch.setattr(app_config, "SESSION_SECRET", app_config.DEFAULT_SESSION_SECRET)

    with pytest.raises(ValueError) as exc_info:
        app_config.validate_config()
    assert "SESSION_SECRET" in str(exc_info.value)


def test_validate_config_rejects_bad_intervals(monkeypatch):
    monkeypatch.setattr(app_config, "POLL_INTERVAL_SECONDS", 0)
    monkeypatch.setattr(app_config, "BATCH_CONCURRENCY", 0)

    with pytest.raises(ValueError) as exc_info:
        app_config.validate_config()
    message = str(exc_info.value)
    assert "POLL_INTERVAL_SECONDS" in message
    assert "BATCH_CONCURRENCY" in message
