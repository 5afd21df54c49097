"""
Reseller portal API
- Login (session cookie with `reseller` role)
- Provision users on paid plans with credits
- Own users and ledger
"""

from typing import Dict, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config.affiliate_config import RESELLER_PLAN_COSTS
from config.config import LOGIN_RATE_LIMIT
from src.api.auth import (
    ROLE_RESELLER,
    create_session_token,
    set_session_cookie,
    clear_session_cookie,
    read_session,
)
from src.api.rate_limit import limiter
from src.core.enums import PlanType
from src.database.engine import get_session
from src.database.models import Reseller, ResellerCreditLedger
from src.services import reseller_service

router = APIRouter(prefix="/reseller", tags=["reseller"])


class ResellerLoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=200)


class ResellerCreateUserRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6, max_length=200)
    plan_type: PlanType
    referred_by: Optional[str] = Field(None, max_length=20)


async def get_current_reseller(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> Reseller:
    reseller_id = read_session(request, ROLE_RESELLER)
    reseller = await reseller_service.get_reseller(session, reseller_id)
    if reseller is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not reseller.is_active:
        raise HTTPException(status_code=403, detail="Reseller account is disabled")
    return reseller


def serialize_reseller(reseller: Reseller) -> Dict[str, Any]:
    return {
        "id": reseller.id,
        "username": reseller.username,
        "credit_balance": reseller.credit_balance,
        "is_active": reseller.is_active,
        "created_at": reseller.created_at.isoformat() if reseller.created_at else None,
    }


def serialize_ledger_entry(entry: ResellerCreditLedger) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "credit_change": entry.credit_change,
        "balance_after": entry.balance_after,
        "reason": entry.reason,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


@router.post("/login")
@limiter.limit(LOGIN_RATE_LIMIT)
async def reseller_login(
    request: Request,
    body: ResellerLoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    reseller = await reseller_service.authenticate_reseller(session, body.username, body.password)
    if reseller is None:
        logger.warning(f"Failed reseller login for '{body.username}'")
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not reseller.is_active:
        raise HTTPException(status_code=403, detail="Reseller account is disabled")

    set_session_cookie(response, create_session_token(reseller.id, ROLE_RESELLER))
    logger.info(f"Reseller {reseller.id} ({reseller.username}) logged in")
    return {"success": True, "reseller": serialize_reseller(reseller)}


@router.post("/logout")
async def reseller_logout(response: Response) -> Dict[str, Any]:
    clear_session_cookie(response)
    return {"success": True}


@router.get("/me")
async def reseller_me(reseller: Reseller = Depends(get_current_reseller)) -> Dict[str, Any]:
    return {
        "reseller": serialize_reseller(reseller),
        "plan_costs": {plan.value: cost for plan, cost in RESELLER_PLAN_COSTS.items()},
    }


@router.post("/users")
async def create_user(
    body: ResellerCreateUserRequest,
    reseller: Reseller = Depends(get_current_reseller),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Create a user on a paid plan (scale 900 / empire 1500 credits)

    Errors:
        400: username taken, plan not sellable, or not enough credits
    """
    try:
        user = await reseller_service.create_user_by_reseller(
            session,
            reseller,
            username=body.username,
            password=body.password,
            plan_type=body.plan_type,
            referred_by=body.referred_by,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await session.refresh(reseller)
    return {
        "success": True,
        "user": {
            "id": user.id,
            "username": user.username,
            "plan_type": user.plan_type,
            "plan_expiry": user.plan_expiry.isoformat() if user.plan_expiry else None,
        },
        "credit_balance": reseller.credit_balance,
    }


@router.get("/users")
async def list_users(
    reseller: Reseller = Depends(get_current_reseller),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return {"users": await reseller_service.list_reseller_users(session, reseller.id)}


@router.get("/ledger")
async def get_ledger(
    reseller: Reseller = Depends(get_current_reseller),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    entries = await reseller_service.get_ledger(session, reseller.id)
    return {
        "balance": reseller.credit_balance,
        "entries": [serialize_ledger_entry(e) for e in entries],
    }
