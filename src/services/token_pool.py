"""
Token Rotation Pool

Upstream credentials (video tokens, Cartesia/Zyphra keys, Flow cookies)
are picked here. Selection and usage increment happen in a single
transaction under row locks, so two concurrent requests cannot both take
the last unit of a near-limit token.

Selection policy:
- video pool with rotation enabled: round-robin via TokenSettings.next_rotation_index
- character-metered pools: most remaining capacity, then least recently used
- everything else: least recently used (never-used first)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from loguru import logger
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import TOKEN_ROTATION_ATTEMPTS
from src.core.enums import TokenPoolType
from src.core.exceptions import NoCapacityError, UpstreamError
from src.database.crud import get_settings
from src.database.models import ApiToken, CartesiaToken, ZyphraToken, FlowCookie, TokenSettings
from src.utils.time_utils import utcnow, as_utc

T = TypeVar("T")


@dataclass(frozen=True)
class PoolSpec:
    """How a pool's table maps onto credential/usage/limit columns"""

    model: type
    credential_attr: str
    usage_attr: str
    error_attr: str
    limit_attr: Optional[str] = None          # per-row limit column
    uses_request_limit: bool = False          # TokenSettings.max_requests_per_token applies
    success_attr: Optional[str] = None


POOLS: Dict[TokenPoolType, PoolSpec] = {
    TokenPoolType.VIDEO: PoolSpec(
        ApiToken, "token", "request_count", "error_count", uses_request_limit=True,
    ),
    TokenPoolType.CARTESIA: PoolSpec(
        CartesiaToken, "api_key", "characters_used", "error_count", limit_attr="characters_limit",
    ),
    TokenPoolType.ZYPHRA: PoolSpec(
        ZyphraToken, "api_key", "characters_used", "error_count", limit_attr="characters_limit",
    ),
    TokenPoolType.FLOW: PoolSpec(
        FlowCookie, "cookie_data", "request_count", "fail_count", success_attr="success_count",
    ),
}


@dataclass(frozen=True)
class TokenLease:
    """Credential handed to an upstream call"""

    pool: TokenPoolType
    token_id: int
    credential: str
    label: str


# ===========================
# CAPACITY
# ===========================


def _usage_limit(token, spec: PoolSpec, settings: TokenSettings) -> Optional[int]:
    if spec.limit_attr:
        return getattr(token, spec.limit_attr)
    if spec.uses_request_limit:
        return settings.max_requests_per_token
    return None


def remaining_capacity(token, spec: PoolSpec, settings: TokenSettings) -> Optional[int]:
    """Units left before the usage limit (None = unmetered)"""
    limit = _usage_limit(token, spec, settings)
    if limit is None:
        return None
    return limit - getattr(token, spec.usage_attr)


def is_eligible(token, spec: PoolSpec, settings: TokenSettings, units: int) -> bool:
    """Active, under error threshold, and able to absorb `units`"""
    if not token.is_active:
        return False
    if getattr(token, spec.error_attr) >= settings.max_error_count:
        return False
    remaining = remaining_capacity(token, spec, settings)
    if remaining is not None and remaining < units:
        return False
    if isinstance(token, ZyphraToken) and token.minutes_used >= token.minutes_limit:
        return False
    return True


def _lru_key(token) -> Tuple[int, float, int]:
    """Never-used first, then oldest use"""
    last_used = as_utc(token.last_used_at)
    if last_used is None:
        return (0, 0.0, token.id)
    return (1, last_used.timestamp(), token.id)


# ===========================
# ACQUIRE / REPORT
# ===========================


async def _lock_settings(session: AsyncSession) -> TokenSettings:
    await get_settings(session, TokenSettings)
    stmt = (
        select(TokenSettings)
        .where(TokenSettings.id == 1)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one()


async def acquire_token(
    session: AsyncSession,
    pool: TokenPoolType,
    units: int = 1,
    exclude_ids: Iterable[int] = (),
    now: Optional[datetime] = None,
) -> TokenLease:
    """
    Select a credential and reserve `units` of its usage

    Args:
        session: Database session
        pool: Pool to draw from
        units: Requests (video/flow) or characters (voice) to reserve
        exclude_ids: Tokens already tried for this call
        now: Override clock (tests)

    Returns:
        TokenLease

    Raises:
        NoCapacityError: no active token can absorb the request
    """
    spec = POOLS[pool]
    model = spec.model
    excluded = set(exclude_ids)
    now = now or utcnow()

    settings = await _lock_settings(session)

    stmt = (
        select(model)
        .where(model.is_active.is_(True))
        .order_by(model.created_at.asc(), model.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    tokens = list((await session.execute(stmt)).scalars().all())
    eligible = [
        t for t in tokens
        if t.id not in excluded and is_eligible(t, spec, settings, units)
    ]

    if not eligible:
        # Release row locks
        await session.commit()
        logger.error(
            f"Token pool '{pool.value}' exhausted: {len(tokens)} active, "
            f"{len(excluded)} excluded, {units} units requested"
        )
        raise NoCapacityError(pool.value)

    if pool == TokenPoolType.VIDEO and settings.rotation_enabled:
        index = settings.next_rotation_index % len(eligible)
        chosen = eligible[index]
        settings.next_rotation_index = (index + 1) % len(eligible)
    elif spec.limit_attr:
        chosen = min(
            eligible,
            key=lambda t: (-remaining_capacity(t, spec, settings), _lru_key(t)),
        )
    else:
        chosen = min(eligible, key=_lru_key)

    setattr(chosen, spec.usage_attr, getattr(chosen, spec.usage_attr) + units)
    chosen.last_used_at = now

    remaining = remaining_capacity(chosen, spec, settings)
    if remaining is not None and remaining <= 0:
        chosen.is_active = False
        logger.warning(f"Token {pool.value}#{chosen.id} ({chosen.label}) reached its usage limit, deactivated")

    lease = TokenLease(
        pool=pool,
        token_id=chosen.id,
        credential=getattr(chosen, spec.credential_attr),
        label=chosen.label,
    )
    await session.commit()

    logger.debug(f"Acquired {pool.value} token #{lease.token_id} ({lease.label}) for {units} units")
    return lease


async def _lock_token(session: AsyncSession, spec: PoolSpec, token_id: int):
    stmt = (
        select(spec.model)
        .where(spec.model.id == token_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def report_success(session: AsyncSession, pool: TokenPoolType, token_id: int) -> None:
    """Record a successful upstream call"""
    spec = POOLS[pool]
    token = await _lock_token(session, spec, token_id)
    if token is None:
        return
    token.last_used_at = utcnow()
    if spec.success_attr:
        setattr(token, spec.success_attr, getattr(token, spec.success_attr) + 1)
    await session.commit()


async def report_error(
    session: AsyncSession,
    pool: TokenPoolType,
    token_id: int,
    reason: str = "",
    expired: bool = False,
) -> bool:
    """
    Record an upstream error attributable to the credential

    Returns:
        True if the token was deactivated by this error
    """
    spec = POOLS[pool]
    settings = await get_settings(session, TokenSettings)
    token = await _lock_token(session, spec, token_id)
    if token is None:
        return False

    errors = getattr(token, spec.error_attr) + 1
    setattr(token, spec.error_attr, errors)
    if expired and isinstance(token, FlowCookie):
        token.expired_count += 1

    deactivated = False
    if token.is_active and errors >= settings.max_error_count:
        token.is_active = False
        deactivated = True
        logger.warning(
            f"Token {pool.value}#{token.id} ({token.label}) deactivated after {errors} errors: {reason}"
        )
    else:
        logger.info(f"Token {pool.value}#{token.id} error {errors}/{settings.max_error_count}: {reason}")

    await session.commit()
    return deactivated


async def record_minutes(session: AsyncSession, token_id: int, minutes: int) -> None:
    """Zyphra: add generated audio minutes"""
    token = await _lock_token(session, POOLS[TokenPoolType.ZYPHRA], token_id)
    if token is None:
        return
    token.minutes_used += minutes
    if token.minutes_used >= token.minutes_limit:
        token.is_active = False
        logger.warning(f"Zyphra token #{token.id} reached minutes limit, deactivated")
    await session.commit()


async def with_token_rotation(
    session: AsyncSession,
    pool: TokenPoolType,
    call: Callable[[TokenLease], Awaitable[T]],
    units: int = 1,
    max_attempts: int = TOKEN_ROTATION_ATTEMPTS,
    exclude_ids: Iterable[int] = (),
) -> Tuple[T, TokenLease]:
    """
    Run an upstream call, rotating to another token on credential errors

    Non-credential errors propagate immediately. NoCapacityError surfaces
    only once every eligible token has been tried.

    Returns:
        (call result, lease used)
    """
    tried: List[int] = list(exclude_ids)
    last_error: Optional[UpstreamError] = None

    for attempt in range(1, max_attempts + 1):
        lease = await acquire_token(session, pool, units=units, exclude_ids=tried)
        try:
            result = await call(lease)
        except UpstreamError as e:
            if not e.is_credential_error:
                raise
            await report_error(session, pool, lease.token_id, str(e), expired=e.status == 401)
            tried.append(lease.token_id)
            last_error = e
            logger.warning(
                f"{pool.value} token #{lease.token_id} rejected (HTTP {e.status}), "
                f"rotating (attempt {attempt}/{max_attempts})"
            )
            continue

        await report_success(session, pool, lease.token_id)
        return result, lease

    raise last_error


# ===========================
# ADMIN
# ===========================


async def add_tokens(
    session: AsyncSession,
    pool: TokenPoolType,
    credentials: List[Tuple[str, str]],
    replace: bool = False,
) -> List:
    """
    Add credentials to a pool

    Args:
        credentials: (credential, label) pairs; blank credentials skipped
        replace: Delete the existing pool first (bulk replace)
    """
    spec = POOLS[pool]
    if replace:
        existing = (await session.execute(select(spec.model))).scalars().all()
        for token in existing:
            await session.delete(token)
        if pool == TokenPoolType.VIDEO:
            settings = await _lock_settings(session)
            settings.next_rotation_index = 0

    created = []
    for position, (credential, label) in enumerate(credentials, start=1):
        credential = credential.strip()
        if not credential:
            continue
        token = spec.model(label=label or f"{pool.value.title()} {position}")
        setattr(token, spec.credential_attr, credential)
        session.add(token)
        created.append(token)

    await session.commit()
    for token in created:
        await session.refresh(token)

    logger.info(f"Added {len(created)} {pool.value} tokens (replace={replace})")
    return created


async def list_tokens(session: AsyncSession, pool: TokenPoolType) -> List:
    model = POOLS[pool].model
    result = await session.execute(select(model).order_by(model.created_at.asc(), model.id.asc()))
    return list(result.scalars().all())


async def get_token(session: AsyncSession, pool: TokenPoolType, token_id: int):
    return await session.get(POOLS[pool].model, token_id)


async def set_token_active(session: AsyncSession, pool: TokenPoolType, token_id: int, is_active: bool):
    token = await _lock_token(session, POOLS[pool], token_id)
    if token is None:
        return None
    token.is_active = is_active
    await session.commit()
    return token


async def delete_token(session: AsyncSession, pool: TokenPoolType, token_id: int) -> bool:
    token = await get_token(session, pool, token_id)
    if token is None:
        return False
    await session.delete(token)
    await session.commit()
    return True


async def reset_token_usage(session: AsyncSession, pool: TokenPoolType, token_id: int):
    """Admin: zero usage and error counters and reactivate"""
    spec = POOLS[pool]
    token = await _lock_token(session, spec, token_id)
    if token is None:
        return None
    setattr(token, spec.usage_attr, 0)
    setattr(token, spec.error_attr, 0)
    if isinstance(token, ZyphraToken):
        token.minutes_used = 0
    token.is_active = True
    await session.commit()
    logger.info(f"Usage reset for {pool.value} token #{token_id}")
    return token


def serialize_token(token, pool: TokenPoolType, settings: TokenSettings) -> dict:
    """Admin view; credential masked"""
    spec = POOLS[pool]
    credential = getattr(token, spec.credential_attr) or ""
    masked = f"{credential[:6]}...{credential[-4:]}" if len(credential) > 12 else "***"
    return {
        "id": token.id,
        "label": token.label,
        "credential": masked,
        "is_active": token.is_active,
        "usage": getattr(token, spec.usage_attr),
        "limit": _usage_limit(token, spec, settings),
        "error_count": getattr(token, spec.error_attr),
        "last_used_at": as_utc(token.last_used_at).isoformat() if token.last_used_at else None,
    }


async def pool_stats(session: AsyncSession, pool: TokenPoolType) -> dict:
    model = POOLS[pool].model
    stmt = select(model.is_active, func.count(model.id)).group_by(model.is_active)
    counts = {bool(active): count for active, count in (await session.execute(stmt)).all()}
    return {
        "pool": pool.value,
        "active": counts.get(True, 0),
        "inactive": counts.get(False, 0),
    }
