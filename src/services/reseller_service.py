"""
Reseller Credit Ledger

Resellers hold prepaid credits (topped up by admins) and spend them to
provision user accounts on paid plans. Every balance change appends one
ledger row carrying the resulting balance; `credit_balance` on the reseller
is a cached copy for fast reads, the ledger is what audits trust.
"""

import uuid
from typing import Optional, List, Dict, Any

from loguru import logger
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.affiliate_config import get_reseller_plan_cost
from config.limits import get_plan_config
from src.core.enums import PlanType
from src.core.exceptions import InsufficientCreditsError
from src.database import crud
from src.database.models import Reseller, ResellerCreditLedger, ResellerUser, User
from src.services import affiliate_service
from src.utils.passwords import hash_password, verify_password


async def create_reseller(
    session: AsyncSession,
    username: str,
    password: str,
    initial_credits: int = 0,
) -> Reseller:
    """
    Create reseller account (optionally with an opening top-up)

    Raises:
        ValueError: username taken or negative credits
    """
    username = username.strip()
    if initial_credits < 0:
        raise ValueError("Initial credits cannot be negative")

    stmt = select(Reseller.id).where(func.lower(Reseller.username) == username.lower())
    if (await session.execute(stmt)).first():
        raise ValueError("Reseller username already exists")

    reseller = Reseller(username=username, password_hash=hash_password(password), credit_balance=0)
    session.add(reseller)
    await session.flush()

    if initial_credits:
        await _apply_change(session, reseller.id, initial_credits, "Initial credits")

    await session.commit()
    await session.refresh(reseller)
    logger.info(f"Created reseller {reseller.username} (id={reseller.id}, credits={reseller.credit_balance})")
    return reseller


async def get_reseller(session: AsyncSession, reseller_id: int) -> Optional[Reseller]:
    return await session.get(Reseller, reseller_id)


async def list_resellers(session: AsyncSession) -> List[Reseller]:
    stmt = select(Reseller).order_by(Reseller.created_at.desc())
    return list((await session.execute(stmt)).scalars().all())


async def authenticate_reseller(session: AsyncSession, username: str, password: str) -> Optional[Reseller]:
    """Reseller matching credentials, or None"""
    stmt = select(Reseller).where(func.lower(Reseller.username) == username.strip().lower())
    reseller = (await session.execute(stmt)).scalar_one_or_none()
    if reseller is None or not verify_password(password, reseller.password_hash):
        return None
    return reseller


async def set_reseller_active(session: AsyncSession, reseller: Reseller, is_active: bool) -> Reseller:
    reseller.is_active = is_active
    await session.commit()
    await session.refresh(reseller)
    return reseller


# ===========================
# LEDGER
# ===========================


async def _apply_change(session: AsyncSession, reseller_id: int, delta: int, reason: str) -> ResellerCreditLedger:
    """Lock reseller, move balance, append ledger row (no commit)"""
    stmt = (
        select(Reseller)
        .where(Reseller.id == reseller_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    reseller = (await session.execute(stmt)).scalar_one_or_none()
    if reseller is None:
        raise ValueError(f"Reseller {reseller_id} not found")

    new_balance = reseller.credit_balance + delta
    if new_balance < 0:
        raise InsufficientCreditsError(reseller.credit_balance, -delta)

    reseller.credit_balance = new_balance
    entry = ResellerCreditLedger(
        reseller_id=reseller.id,
        credit_change=delta,
        balance_after=new_balance,
        reason=reason[:255],
    )
    session.add(entry)
    await session.flush()
    return entry


async def add_credits(session: AsyncSession, reseller_id: int, amount: int, reason: str = "Admin top-up") -> int:
    """
    Top up reseller credits

    Returns:
        New balance
    """
    if amount <= 0:
        raise ValueError("Credit amount must be positive")

    entry = await _apply_change(session, reseller_id, amount, reason)
    await session.commit()
    logger.info(f"Reseller {reseller_id}: +{amount} credits ({reason}), balance {entry.balance_after}")
    return entry.balance_after


async def spend_credits(session: AsyncSession, reseller_id: int, amount: int, reason: str) -> int:
    """
    Spend reseller credits

    Returns:
        New balance

    Raises:
        InsufficientCreditsError: balance < amount (nothing written)
    """
    if amount <= 0:
        raise ValueError("Credit amount must be positive")

    try:
        entry = await _apply_change(session, reseller_id, -amount, reason)
    except InsufficientCreditsError:
        # Release the row lock
        await session.commit()
        raise

    await session.commit()
    logger.info(f"Reseller {reseller_id}: -{amount} credits ({reason}), balance {entry.balance_after}")
    return entry.balance_after


async def get_ledger(session: AsyncSession, reseller_id: int, limit: int = 200) -> List[ResellerCreditLedger]:
    """Ledger rows, newest first"""
    stmt = (
        select(ResellerCreditLedger)
        .where(ResellerCreditLedger.reseller_id == reseller_id)
        .order_by(ResellerCreditLedger.id.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def verify_ledger(session: AsyncSession, reseller: Reseller) -> Dict[str, Any]:
    """
    Audit: ledger sum and running balances must match the cached balance

    Returns:
        {"consistent", "ledger_balance", "stored_balance", "entries", "broken_entry_id"}
    """
    stmt = (
        select(ResellerCreditLedger)
        .where(ResellerCreditLedger.reseller_id == reseller.id)
        .order_by(ResellerCreditLedger.id.asc())
    )
    entries = (await session.execute(stmt)).scalars().all()

    running = 0
    broken_entry_id = None
    for entry in entries:
        running += entry.credit_change
        if broken_entry_id is None and entry.balance_after != running:
            broken_entry_id = entry.id

    consistent = broken_entry_id is None and running == reseller.credit_balance
    if not consistent:
        logger.error(
            f"Reseller {reseller.id} ledger mismatch: ledger={running}, stored={reseller.credit_balance}, "
            f"first broken entry={broken_entry_id}"
        )

    return {
        "consistent": consistent,
        "ledger_balance": running,
        "stored_balance": reseller.credit_balance,
        "entries": len(entries),
        "broken_entry_id": broken_entry_id,
    }


# ===========================
# USER PROVISIONING
# ===========================


async def create_user_by_reseller(
    session: AsyncSession,
    reseller: Reseller,
    username: str,
    password: str,
    plan_type: PlanType,
    referred_by: Optional[str] = None,
) -> User:
    """
    Provision a user on a paid plan, paid with reseller credits

    Credits, ledger row, user and ResellerUser link are written in one commit.

    Raises:
        ValueError: inactive reseller, plan not sellable, username taken
        InsufficientCreditsError: not enough credits
    """
    if not reseller.is_active:
        raise ValueError("Reseller account is disabled")

    plan_type = PlanType(plan_type)
    cost = get_reseller_plan_cost(plan_type)

    if not username.strip() or len(password) < 6:
        raise ValueError("Username is required and password must be at least 6 characters")
    if await crud.get_user_by_username(session, username):
        raise ValueError("Username already exists")

    try:
        await _apply_change(session, reseller.id, -cost, f"Created user {username.strip()} ({plan_type.value})")
    except InsufficientCreditsError:
        # Nothing written; release the row lock
        await session.commit()
        raise

    try:
        user = await crud.create_user(
            session,
            username,
            password,
            plan_type=plan_type,
            referred_by=referred_by,
            plan_days=get_plan_config(plan_type)["duration_days"],
            commit=False,
        )
        session.add(ResellerUser(
            reseller_id=reseller.id,
            user_id=user.id,
            plan_type=plan_type.value,
            credit_cost=cost,
        ))
        await session.commit()
    except ValueError:
        await session.rollback()
        raise
    except IntegrityError:
        await session.rollback()
        raise ValueError("Username already exists")

    await session.refresh(user)
    logger.info(f"Reseller {reseller.id} created user {user.username} on {plan_type.value} for {cost} credits")

    await affiliate_service.on_plan_activated(session, user, plan_type, transaction_id=f"reseller-{uuid.uuid4().hex}")
    return user


async def list_reseller_users(session: AsyncSession, reseller_id: int) -> List[Dict[str, Any]]:
    stmt = (
        select(ResellerUser, User)
        .join(User, User.id == ResellerUser.user_id)
        .where(ResellerUser.reseller_id == reseller_id)
        .order_by(ResellerUser.created_at.desc())
    )
    rows = (await session.execute(stmt)).all()
    return [
        {
            "user_id": user.id,
            "username": user.username,
            "plan_type": link.plan_type,
            "plan_expiry": user.plan_expiry.isoformat() if user.plan_expiry else None,
            "credit_cost": link.credit_cost,
            "created_at": link.created_at.isoformat(),
        }
        for link, user in rows
    ]
