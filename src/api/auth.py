"""
Session authentication
- Self-registration on the free plan (optional referral code)
- Login with username/password (+ TOTP code when 2FA is enabled)
- Signed JWT (HS256) in an HTTP-only cookie
- `get_current_user` / `require_admin` dependencies for protected routes
"""

from datetime import timedelta
from typing import Optional, Dict, Any

from fastapi import APIRouter, HTTPException, Depends, Request, Response
from jose import JWTError, jwt
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import (
    SESSION_SECRET,
    SESSION_ALGORITHM,
    SESSION_COOKIE_NAME,
    SESSION_TTL_HOURS,
    SESSION_COOKIE_SECURE,
    LOGIN_RATE_LIMIT,
)
from config.sentry import set_user_context
from src.api.rate_limit import limiter
from src.core.enums import PlanType
from src.database.crud import create_user, get_user_by_id, get_user_by_uid, get_user_by_username
from src.database.engine import get_session
from src.database.limit_manager import get_quota_status
from src.database.models import User
from src.services import totp
from src.utils.passwords import verify_password
from src.utils.time_utils import utcnow

ROLE_USER = "user"
ROLE_RESELLER = "reseller"

router = APIRouter(prefix="/auth", tags=["auth"])


# ===========================
# SESSION TOKENS
# ===========================


def create_session_token(subject_id: int, role: str = ROLE_USER) -> str:
    """Signed session token for a user or reseller"""
    now = utcnow()
    payload = {
        "sub": str(subject_id),
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=SESSION_TTL_HOURS)).timestamp()),
    }
    return jwt.encode(payload, SESSION_SECRET, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate session token

    Raises:
        HTTPException: 401 if invalid or expired
    """
    try:
        payload = jwt.decode(token, SESSION_SECRET, algorithms=[SESSION_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Session token rejected: {e}")
        raise HTTPException(status_code=401, detail="Session expired. Please log in again.")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid session")
    return payload


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=SESSION_TTL_HOURS * 3600,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


def read_session(request: Request, role: str) -> int:
    """
    Subject id from the session cookie, checked against expected role

    Raises:
        HTTPException: 401 when missing/invalid/wrong role
    """
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = decode_session_token(token)
    if payload.get("role", ROLE_USER) != role:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session")


# ===========================
# DEPENDENCIES
# ===========================


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> User:
    """
    Resolve the logged-in user from the session cookie

    Raises:
        HTTPException: 401 not logged in, 403 account disabled
    """
    user_id = read_session(request, ROLE_USER)
    user = await get_user_by_id(session, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not user.is_account_active:
        raise HTTPException(status_code=403, detail="Your account has been disabled")

    set_user_context(user.id, user.username)
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency that requires admin privileges"""
    if not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail="Admin privileges required"
        )
    return user


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "is_admin": user.is_admin,
        "uid": user.uid,
        "plan_type": user.plan_type,
        "plan_status": user.plan_status,
        "plan_start_date": user.plan_start_date.isoformat() if user.plan_start_date else None,
        "two_factor_enabled": user.two_factor_enabled,
        "affiliate_balance": user.affiliate_balance,
        "quota": get_quota_status(user),
    }


# ===========================
# REQUEST MODELS
# ===========================


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=200)
    totp_code: Optional[str] = Field(None, max_length=10)


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=6, max_length=200)
    referral_code: Optional[str] = Field(None, max_length=20)


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=10)


# ===========================
# API ENDPOINTS
# ===========================


@router.post("/register")
@limiter.limit(LOGIN_RATE_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Create a free-plan account and log it in

    Errors:
        400: username taken or unknown referral code
    """
    username = body.username.strip()
    if len(username) < 3:
        raise HTTPException(status_code=400, detail="Username must be at least 3 characters")

    referral_code = (body.referral_code or "").strip() or None
    if referral_code and await get_user_by_uid(session, referral_code) is None:
        raise HTTPException(status_code=400, detail="Invalid referral code")

    try:
        user = await create_user(
            session, username, body.password, plan_type=PlanType.FREE, referred_by=referral_code
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    set_session_cookie(response, create_session_token(user.id, ROLE_USER))
    logger.info(f"User {user.id} ({user.username}) registered (referred_by={user.referred_by})")
    return {"success": True, "user": serialize_user(user)}


@router.post("/login")
@limiter.limit(LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Log in with username and password

    Errors:
        401: bad credentials, or `two_factor_required` / invalid code
        403: account disabled
    """
    user = await get_user_by_username(session, body.username)
    if user is None or not verify_password(body.password, user.password_hash):
        logger.warning(f"Failed login for '{body.username}'")
        raise HTTPException(status_code=401, detail="Invalid username or password")

    if not user.is_account_active:
        raise HTTPException(status_code=403, detail="Your account has been disabled")

    if user.two_factor_enabled:
        if not body.totp_code:
            raise HTTPException(
                status_code=401,
                detail={"detail": "Two-factor code required", "two_factor_required": True},
            )
        if not totp.verify_totp(user.two_factor_secret, body.totp_code):
            logger.warning(f"Invalid 2FA code for user {user.id}")
            raise HTTPException(status_code=401, detail="Invalid two-factor code")

    set_session_cookie(response, create_session_token(user.id, ROLE_USER))
    logger.info(f"User {user.id} ({user.username}) logged in")
    return {"success": True, "user": serialize_user(user)}


@router.post("/logout")
async def logout(response: Response) -> Dict[str, Any]:
    clear_session_cookie(response)
    return {"success": True}


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> Dict[str, Any]:
    """Current user with plan and quota snapshot"""
    return {"user": serialize_user(user)}


@router.post("/2fa/setup")
async def setup_two_factor(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Generate a new secret (not active until confirmed via /2fa/enable)"""
    if user.two_factor_enabled:
        raise HTTPException(status_code=409, detail="Two-factor authentication is already enabled")

    secret = totp.generate_secret()
    user.two_factor_secret = secret
    await session.commit()

    return {
        "secret": secret,
        "otpauth_uri": totp.provisioning_uri(secret, user.username),
    }


@router.post("/2fa/enable")
async def enable_two_factor(
    body: TwoFactorCodeRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    if user.two_factor_enabled:
        raise HTTPException(status_code=409, detail="Two-factor authentication is already enabled")
    if not user.two_factor_secret:
        raise HTTPException(status_code=400, detail="Run 2FA setup first")
    if not totp.verify_totp(user.two_factor_secret, body.code):
        raise HTTPException(status_code=400, detail="Invalid two-factor code")

    user.two_factor_enabled = True
    await session.commit()
    logger.info(f"2FA enabled for user {user.id}")
    return {"success": True}


@router.post("/2fa/disable")
async def disable_two_factor(
    body: TwoFactorCodeRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    if not user.two_factor_enabled:
        raise HTTPException(status_code=409, detail="Two-factor authentication is not enabled")
    if not totp.verify_totp(user.two_factor_secret, body.code):
        raise HTTPException(status_code=400, detail="Invalid two-factor code")

    user.two_factor_enabled = False
    user.two_factor_secret = None
    await session.commit()
    logger.info(f"2FA disabled for user {user.id}")
    return {"success": True}
