"""
Unit tests for the token rotation pool
"""

from datetime import datetime, timedelta, UTC

import pytest

from src.core.enums import TokenPoolType
from src.core.exceptions import NoCapacityError, UpstreamError
from src.database import crud
from src.database.models import ApiToken, CartesiaToken, TokenSettings
from src.services import token_pool


@pytest.mark.asyncio
async def test_round_robin_when_rotation_enabled(db_session, seed_tokens):
    """Video tokens are handed out in turn"""
    tokens = await seed_tokens(count=3)

    picked = [
        (await token_pool.acquire_token(db_session, TokenPoolType.VIDEO)).token_id
        for _ in range(4)
    ]

    ids = [t.id for t in tokens]
    assert picked == [ids[0], ids[1], ids[2], ids[0]]


@pytest.mark.asyncio
async def test_least_recently_used_without_rotation(db_session, seed_tokens):
    tokens = await seed_tokens(count=2)
    await crud.update_settings(db_session, TokenSettings, rotation_enabled=False)

    first = await token_pool.acquire_token(db_session, TokenPoolType.VIDEO)
    second = await token_pool.acquire_token(db_session, TokenPoolType.VIDEO)

    assert first.token_id == tokens[0].id
    assert second.token_id == tokens[1].id


@pytest.mark.asyncio
async def test_acquire_reserves_usage(db_session, seed_tokens):
    tokens = await seed_tokens(count=1)

    lease = await token_pool.acquire_token(db_session, TokenPoolType.VIDEO)

    token = await db_session.get(ApiToken, tokens[0].id)
    await db_session.refresh(token)
    assert lease.credential == "token-1"
    assert token.request_count == 1
    assert token.last_used_at is not None


@pytest.mark.asyncio
async def test_token_deactivated_at_request_limit(db_session, seed_tokens):
    """A token that reaches its usage limit leaves the pool"""
    tokens = await seed_tokens(count=1)
    await crud.update_settings(db_session, TokenSettings, max_requests_per_token=2)

    await token_pool.acquire_token(db_session, TokenPoolType.VIDEO)
    await token_pool.acquire_token(db_session, TokenPoolType.VIDEO)

    token = await db_session.get(ApiToken, tokens[0].id)
    await db_session.refresh(token)
    assert not token.is_active

    with pytest.raises(NoCapacityError):
        await token_pool.acquire_token(db_session, TokenPoolType.VIDEO)


@pytest.mark.asyncio
async def test_empty_pool_raises_no_capacity(db_session):
    with pytest.raises(NoCapacityError) as exc_info:
        await token_pool.acquire_token(db_session, TokenPoolType.CARTESIA)
    assert exc_info.value.pool == "cartesia"


@pytest.mark.asyncio
async def test_character_pool_prefers_most_remaining(db_session, seed_tokens):
    """Metered pools pick the key with most capacity left"""
    keys = await seed_tokens(TokenPoolType.CARTESIA, count=2, prefix="sk")
    keys[0].characters_used = 15_000
    await db_session.commit()

    lease = await token_pool.acquire_token(db_session, TokenPoolType.CARTESIA, units=1000)
    assert lease.token_id == keys[1].id

    # Request larger than what the fuller key has left skips it entirely
    lease = await token_pool.acquire_token(db_session, TokenPoolType.CARTESIA, units=6000)
    assert lease.token_id == keys[1].id

    key = await db_session.get(CartesiaToken, keys[1].id)
    await db_session.refresh(key)
    assert key.characters_used == 7000


@pytest.mark.asyncio
async def test_report_error_deactivates_at_threshold(db_session, seed_tokens):
    tokens = await seed_tokens(count=1)
    await crud.update_settings(db_session, TokenSettings, max_error_count=2)

    assert not await token_pool.report_error(db_session, TokenPoolType.VIDEO, tokens[0].id, "401")
    assert await token_pool.report_error(db_session, TokenPoolType.VIDEO, tokens[0].id, "401")

    token = await db_session.get(ApiToken, tokens[0].id)
    await db_session.refresh(token)
    assert not token.is_active
    assert token.error_count == 2


@pytest.mark.asyncio
async def test_rotation_on_credential_error(db_session, seed_tokens):
    """A rejected credential is reported and the next one is tried"""
    tokens = await seed_tokens(count=2)
    seen = []

    async def call(lease):
        seen.append(lease.credential)
        if lease.credential == "token-1":
            raise UpstreamError("401 - unauthorized", status=401)
        return "ok"

    result, lease = await token_pool.with_token_rotation(db_session, TokenPoolType.VIDEO, call)

    assert result == "ok"
    assert lease.token_id == tokens[1].id
    assert seen == ["token-1", "token-2"]

    rejected = await db_session.get(ApiToken, tokens[0].id)
    await db_session.refresh(rejected)
    assert rejected.error_count == 1


@pytest.mark.asyncio
async def test_rotation_surfaces_no_capacity_after_all_tried(db_session, seed_tokens):
    await seed_tokens(count=2)

    async def call(lease):
        raise UpstreamError("429 - quota", status=429)

    with pytest.raises(NoCapacityError):
        await token_pool.with_token_rotation(db_session, TokenPoolType.VIDEO, call)


@pytest.mark.asyncio
async def test_non_credential_error_propagates(db_session, seed_tokens):
    tokens = await seed_tokens(count=2)
    calls = []

    async def call(lease):
        calls.append(lease.token_id)
        raise UpstreamError("400 - invalid_argument", status=400)

    with pytest.raises(UpstreamError):
        await token_pool.with_token_rotation(db_session, TokenPoolType.VIDEO, call)

    assert calls == [tokens[0].id]


@pytest.mark.asyncio
async def test_reset_token_usage_reactivates(db_session, seed_tokens):
    tokens = await seed_tokens(count=1)
    await token_pool.set_token_active(db_session, TokenPoolType.VIDEO, tokens[0].id, False)
    await token_pool.report_error(db_session, TokenPoolType.VIDEO, tokens[0].id, "boom")

    token = await token_pool.reset_token_usage(db_session, TokenPoolType.VIDEO, tokens[0].id)

    assert token.is_active
    assert token.error_count == 0
    assert token.request_count == 0


@pytest.mark.asyncio
async def test_replace_pool_and_stats(db_session, seed_tokens):
    await seed_tokens(count=3)

    created = await token_pool.add_tokens(
        db_session, TokenPoolType.VIDEO, [("fresh-token", "Fresh"), ("  ", "blank")], replace=True
    )
    stats = await token_pool.pool_stats(db_session, TokenPoolType.VIDEO)

    assert len(created) == 1
    assert stats == {"pool": "video", "active": 1, "inactive": 0}


@pytest.mark.asyncio
async def test_serialize_token_masks_credential(db_session):
    tokens = await token_pool.add_tokens(
        db_session, TokenPoolType.VIDEO, [("ya29.very-long-bearer-token", "Main")]
    )
    settings = await crud.get_settings(db_session, TokenSettings)
    tokens[0].last_used_at = datetime.now(UTC) - timedelta(minutes=1)

    view = token_pool.serialize_token(tokens[0], TokenPoolType.VIDEO, settings)

    assert view["credential"] == "ya29.v...oken"
    assert view["limit"] == 1000
    assert "very-long" not in view["credential"]
