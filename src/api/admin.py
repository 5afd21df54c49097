"""
Admin Console API
All endpoints require admin privileges.

- Users: list, create, set plan, enable/disable, quota resets, bulk overrides
- Token pools: add / replace, toggle, delete, reset usage, stats
- Settings singletons: token rotation, auto-retry, maintenance, affiliate
- Affiliate withdrawals
- Resellers: create, credits, ledger audit
- Voices: curated top voices, community moderation
- Stats
"""

import uuid
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, HTTPException, Depends, Query
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.affiliate import serialize_withdrawal
from src.api.auth import require_admin, serialize_user
from src.api.reseller import serialize_reseller, serialize_ledger_entry
from src.api.voice import serialize_voice
from src.core.enums import PlanType, TokenPoolType, WithdrawalStatus
from src.database import crud
from src.database.engine import get_session
from src.database.limit_manager import reset_daily_quota, reset_voice_quota, get_user_bulk_limits
from src.database.models import (
    User,
    TokenSettings,
    AutoRetrySettings,
    ToolMaintenance,
    AffiliateSettings,
    CommunityVoice,
    TopVoice,
)
from src.services import affiliate_service, reseller_service, token_pool


router = APIRouter(prefix="/admin", tags=["admin"])


# ===========================
# REQUEST MODELS
# ===========================


class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6, max_length=200)
    plan_type: PlanType = PlanType.FREE
    is_admin: bool = False
    referred_by: Optional[str] = Field(None, max_length=20)
    plan_days: Optional[int] = Field(None, ge=1, le=3650)
    daily_video_limit: Optional[int] = Field(None, ge=0)


class SetPlanRequest(BaseModel):
    plan_type: PlanType
    days: Optional[int] = Field(None, ge=1, le=3650)
    daily_video_limit: Optional[int] = Field(None, ge=0, description="0 clears the override")
    transaction_id: Optional[str] = Field(None, max_length=100)


class ToggleRequest(BaseModel):
    is_active: bool


class BulkLimitsRequest(BaseModel):
    max_batch: Optional[int] = Field(None, ge=0)
    delay_seconds: Optional[int] = Field(None, ge=0)
    max_prompts: Optional[int] = Field(None, ge=0)


class TokenInput(BaseModel):
    credential: str = Field(..., min_length=1)
    label: str = Field("", max_length=100)


class AddTokensRequest(BaseModel):
    tokens: List[TokenInput] = Field(..., min_length=1)
    replace: bool = False


class TokenSettingsUpdate(BaseModel):
    rotation_enabled: Optional[bool] = None
    max_requests_per_token: Optional[int] = Field(None, ge=1)
    max_error_count: Optional[int] = Field(None, ge=1)
    videos_per_batch: Optional[int] = Field(None, ge=1)
    batch_delay_seconds: Optional[int] = Field(None, ge=0)


class AutoRetrySettingsUpdate(BaseModel):
    enable_auto_retry: Optional[bool] = None
    max_retry_attempts: Optional[int] = Field(None, ge=1, le=10)
    retry_delay_minutes: Optional[int] = Field(None, ge=1, le=60)


class MaintenanceUpdate(BaseModel):
    veo_generator_active: Optional[bool] = None
    bulk_generator_active: Optional[bool] = None
    text_to_image_active: Optional[bool] = None
    image_to_video_active: Optional[bool] = None
    script_creator_active: Optional[bool] = None
    character_consistency_active: Optional[bool] = None
    text_to_voice_active: Optional[bool] = None
    community_voices_active: Optional[bool] = None
    script_to_frames_active: Optional[bool] = None
    message: Optional[str] = Field(None, max_length=1000)


class AffiliateSettingsUpdate(BaseModel):
    is_enabled: Optional[bool] = None
    empire_earning: Optional[int] = Field(None, ge=0)
    scale_earning: Optional[int] = Field(None, ge=0)
    empire_renewal_earning: Optional[int] = Field(None, ge=0)
    scale_renewal_earning: Optional[int] = Field(None, ge=0)
    min_withdrawal: Optional[int] = Field(None, ge=0)


class ProcessWithdrawalRequest(BaseModel):
    approve: bool
    remarks: Optional[str] = Field(None, max_length=1000)


class CreateResellerRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6, max_length=200)
    initial_credits: int = Field(0, ge=0)


class AddCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0)
    reason: str = Field("Admin top-up", min_length=1, max_length=255)


class TopVoiceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    voice_id: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    provider: str = Field("cartesia", pattern="^(cartesia|zyphra)$")
    language: str = Field("en", max_length=10)
    demo_audio_url: Optional[str] = None
    sort_order: int = 0


# ===========================
# HELPERS
# ===========================


def _admin_user_view(user: User) -> Dict[str, Any]:
    data = serialize_user(user)
    data.update({
        "is_account_active": user.is_account_active,
        "plan_expiry": user.plan_expiry.isoformat() if user.plan_expiry else None,
        "daily_video_limit": user.daily_video_limit,
        "referred_by": user.referred_by,
        "total_referrals": user.total_referrals,
        "bulk_limits": get_user_bulk_limits(user),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    })
    return data


async def _get_user_or_404(session: AsyncSession, user_id: int) -> User:
    user = await crud.get_user_by_id(session, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _settings_view(row) -> Dict[str, Any]:
    return {
        column.name: getattr(row, column.name)
        for column in row.__table__.columns
        if column.name not in ("id", "updated_at")
    }


# ===========================
# USERS
# ===========================


@router.get("/users")
async def list_users(
    search: Optional[str] = Query(None, max_length=100),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    users = await crud.list_users(session, search=search, limit=limit, offset=offset)
    return {"users": [_admin_user_view(u) for u in users]}


@router.post("/users")
async def create_user(
    body: CreateUserRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    try:
        user = await crud.create_user(
            session,
            body.username,
            body.password,
            plan_type=body.plan_type,
            is_admin=body.is_admin,
            referred_by=body.referred_by,
            plan_days=body.plan_days,
            daily_video_limit=body.daily_video_limit or None,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if body.plan_type != PlanType.FREE:
        await affiliate_service.on_plan_activated(
            session, user, body.plan_type, transaction_id=f"admin-{uuid.uuid4().hex}"
        )

    logger.info(f"Admin {admin.id} created user {user.id} ({user.username})")
    return {"success": True, "user": _admin_user_view(user)}


@router.post("/users/{user_id}/plan")
async def set_user_plan(
    user_id: int,
    body: SetPlanRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Activate / renew / change plan

    Paid activations credit the referrer once per `transaction_id`
    (generated when omitted).
    """
    user = await _get_user_or_404(session, user_id)
    user = await crud.set_user_plan(
        session, user, body.plan_type, days=body.days, daily_video_limit=body.daily_video_limit
    )

    earning = None
    if body.plan_type != PlanType.FREE:
        transaction_id = body.transaction_id or f"admin-{uuid.uuid4().hex}"
        earning = await affiliate_service.on_plan_activated(session, user, body.plan_type, transaction_id)

    logger.info(f"Admin {admin.id} set user {user.id} plan to {user.plan_type}")
    return {
        "success": True,
        "user": _admin_user_view(user),
        "affiliate_earning": earning.amount if earning else 0,
    }


@router.post("/users/{user_id}/active")
async def set_user_active(
    user_id: int,
    body: ToggleRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    user = await _get_user_or_404(session, user_id)
    if user.id == admin.id and not body.is_active:
        raise HTTPException(status_code=400, detail="You cannot disable your own account")

    user = await crud.set_user_active(session, user, body.is_active)
    return {"success": True, "user": _admin_user_view(user)}


@router.post("/users/{user_id}/reset-quota")
async def reset_user_quota(
    user_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await _get_user_or_404(session, user_id)
    user = await reset_daily_quota(session, user_id)
    return {"success": True, "user": _admin_user_view(user)}


@router.post("/users/{user_id}/reset-voice-quota")
async def reset_user_voice_quota(
    user_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await _get_user_or_404(session, user_id)
    user = await reset_voice_quota(session, user_id)
    return {"success": True, "user": _admin_user_view(user)}


@router.post("/users/{user_id}/bulk-limits")
async def set_bulk_limits(
    user_id: int,
    body: BulkLimitsRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Per-user bulk overrides (0 / null = plan default)"""
    user = await _get_user_or_404(session, user_id)
    user.bulk_max_batch = body.max_batch or None
    user.bulk_delay_seconds = body.delay_seconds
    user.bulk_max_prompts = body.max_prompts or None
    await session.commit()
    await session.refresh(user)
    return {"success": True, "user": _admin_user_view(user)}


# ===========================
# TOKEN POOLS
# ===========================


@router.get("/tokens/{pool}")
async def list_pool_tokens(
    pool: TokenPoolType,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    settings = await crud.get_settings(session, TokenSettings)
    tokens = await token_pool.list_tokens(session, pool)
    return {
        "tokens": [token_pool.serialize_token(t, pool, settings) for t in tokens],
        "stats": await token_pool.pool_stats(session, pool),
    }


@router.post("/tokens/{pool}")
async def add_pool_tokens(
    pool: TokenPoolType,
    body: AddTokensRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Add credentials; `replace=true` swaps out the whole pool"""
    created = await token_pool.add_tokens(
        session, pool, [(t.credential, t.label) for t in body.tokens], replace=body.replace
    )
    logger.info(f"Admin {admin.id} added {len(created)} {pool.value} tokens")
    return {"success": True, "added": len(created)}


@router.post("/tokens/{pool}/{token_id}/active")
async def toggle_pool_token(
    pool: TokenPoolType,
    token_id: int,
    body: ToggleRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    token = await token_pool.set_token_active(session, pool, token_id, body.is_active)
    if token is None:
        raise HTTPException(status_code=404, detail="Token not found")
    return {"success": True, "is_active": token.is_active}


@router.post("/tokens/{pool}/{token_id}/reset")
async def reset_pool_token(
    pool: TokenPoolType,
    token_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    token = await token_pool.reset_token_usage(session, pool, token_id)
    if token is None:
        raise HTTPException(status_code=404, detail="Token not found")
    settings = await crud.get_settings(session, TokenSettings)
    return {"success": True, "token": token_pool.serialize_token(token, pool, settings)}


@router.delete("/tokens/{pool}/{token_id}")
async def delete_pool_token(
    pool: TokenPoolType,
    token_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    if not await token_pool.delete_token(session, pool, token_id):
        raise HTTPException(status_code=404, detail="Token not found")
    return {"success": True}


# ===========================
# SETTINGS
# ===========================


@router.get("/settings/tokens")
async def get_token_settings(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return _settings_view(await crud.get_settings(session, TokenSettings))


@router.put("/settings/tokens")
async def update_token_settings(
    body: TokenSettingsUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    row = await crud.update_settings(session, TokenSettings, **body.model_dump(exclude_none=True))
    return _settings_view(row)


@router.get("/settings/auto-retry")
async def get_auto_retry_settings(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return _settings_view(await crud.get_settings(session, AutoRetrySettings))


@router.put("/settings/auto-retry")
async def update_auto_retry_settings(
    body: AutoRetrySettingsUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    row = await crud.update_settings(session, AutoRetrySettings, **body.model_dump(exclude_none=True))
    return _settings_view(row)


@router.get("/settings/maintenance")
async def get_maintenance(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return _settings_view(await crud.get_settings(session, ToolMaintenance))


@router.put("/settings/maintenance")
async def update_maintenance(
    body: MaintenanceUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    row = await crud.update_settings(session, ToolMaintenance, **body.model_dump(exclude_none=True))
    logger.info(f"Admin {admin.id} updated maintenance flags")
    return _settings_view(row)


@router.get("/settings/affiliate")
async def get_affiliate_settings(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return _settings_view(await crud.get_settings(session, AffiliateSettings))


@router.put("/settings/affiliate")
async def update_affiliate_settings(
    body: AffiliateSettingsUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    row = await crud.update_settings(session, AffiliateSettings, **body.model_dump(exclude_none=True))
    return _settings_view(row)


# ===========================
# WITHDRAWALS
# ===========================


@router.get("/withdrawals")
async def list_withdrawals(
    status: Optional[WithdrawalStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    withdrawals = await affiliate_service.list_withdrawals(session, status=status, limit=limit)
    return {"withdrawals": [serialize_withdrawal(w) for w in withdrawals]}


@router.post("/withdrawals/{withdrawal_id}/process")
async def process_withdrawal(
    withdrawal_id: int,
    body: ProcessWithdrawalRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Approve or reject a pending withdrawal

    Errors:
        404: not found, 409: already processed, 400: balance below amount
    """
    withdrawal = await affiliate_service.process_withdrawal(
        session, withdrawal_id, approve=body.approve, admin_id=admin.id, remarks=body.remarks
    )
    if withdrawal is None:
        raise HTTPException(status_code=404, detail="Withdrawal not found")
    return {"success": True, "withdrawal": serialize_withdrawal(withdrawal)}


# ===========================
# RESELLERS
# ===========================


async def _get_reseller_or_404(session: AsyncSession, reseller_id: int):
    reseller = await reseller_service.get_reseller(session, reseller_id)
    if reseller is None:
        raise HTTPException(status_code=404, detail="Reseller not found")
    return reseller


@router.get("/resellers")
async def list_resellers(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    resellers = await reseller_service.list_resellers(session)
    return {"resellers": [serialize_reseller(r) for r in resellers]}


@router.post("/resellers")
async def create_reseller(
    body: CreateResellerRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    try:
        reseller = await reseller_service.create_reseller(
            session, body.username, body.password, initial_credits=body.initial_credits
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "reseller": serialize_reseller(reseller)}


@router.post("/resellers/{reseller_id}/credits")
async def add_reseller_credits(
    reseller_id: int,
    body: AddCreditsRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    await _get_reseller_or_404(session, reseller_id)
    balance = await reseller_service.add_credits(session, reseller_id, body.amount, body.reason)
    logger.info(f"Admin {admin.id} added {body.amount} credits to reseller {reseller_id}")
    return {"success": True, "credit_balance": balance}


@router.post("/resellers/{reseller_id}/active")
async def toggle_reseller(
    reseller_id: int,
    body: ToggleRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    reseller = await _get_reseller_or_404(session, reseller_id)
    reseller = await reseller_service.set_reseller_active(session, reseller, body.is_active)
    return {"success": True, "reseller": serialize_reseller(reseller)}


@router.get("/resellers/{reseller_id}/ledger")
async def get_reseller_ledger(
    reseller_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    reseller = await _get_reseller_or_404(session, reseller_id)
    entries = await reseller_service.get_ledger(session, reseller_id)
    return {
        "reseller": serialize_reseller(reseller),
        "entries": [serialize_ledger_entry(e) for e in entries],
        "users": await reseller_service.list_reseller_users(session, reseller_id),
    }


@router.get("/resellers/{reseller_id}/verify")
async def verify_reseller_ledger(
    reseller_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    reseller = await _get_reseller_or_404(session, reseller_id)
    return await reseller_service.verify_ledger(session, reseller)


# ===========================
# VOICES
# ===========================


@router.post("/top-voices")
async def create_top_voice(
    body: TopVoiceRequest,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    voice = TopVoice(**body.model_dump())
    session.add(voice)
    await session.commit()
    await session.refresh(voice)
    return {"success": True, "voice": serialize_voice(voice)}


@router.delete("/top-voices/{voice_id}")
async def delete_top_voice(
    voice_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    voice = await session.get(TopVoice, voice_id)
    if voice is None:
        raise HTTPException(status_code=404, detail="Voice not found")
    await session.delete(voice)
    await session.commit()
    return {"success": True}


@router.delete("/community-voices/{voice_id}")
async def delete_community_voice(
    voice_id: int,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    voice = await session.get(CommunityVoice, voice_id)
    if voice is None:
        raise HTTPException(status_code=404, detail="Voice not found")
    await crud.delete_community_voice(session, voice, admin)
    return {"success": True}


# ===========================
# STATS
# ===========================


@router.get("/stats")
async def get_stats(
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Users per plan, videos per status, token pool health"""
    return {
        "users_by_plan": await crud.count_users_by_plan(session),
        "videos_by_status": await crud.count_videos_by_status(session),
        "token_pools": [await token_pool.pool_stats(session, pool) for pool in TokenPoolType],
        "pending_withdrawals": len(
            await affiliate_service.list_withdrawals(session, status=WithdrawalStatus.PENDING, limit=500)
        ),
    }
