"""
Affiliate Ledger

Referrers earn PKR when a user who signed up with their code buys or renews
a paid plan. Earnings are immutable rows deduplicated per purchase event
(referred user + transaction id); balance only moves through earnings and
approved withdrawals.
"""

from typing import Optional, Dict, Any, List

from loguru import logger
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.affiliate_config import EARNING_PLANS
from src.core.enums import PlanType, WithdrawalStatus
from src.core.exceptions import InsufficientBalanceError, WithdrawalStateError
from src.database import crud
from src.database.models import User, AffiliateEarning, AffiliateWithdrawal, AffiliateSettings
from src.utils.time_utils import utcnow


def earning_amount(settings: AffiliateSettings, plan_type: PlanType, is_first_time: bool) -> int:
    """PKR earned for one purchase (0 for plans that do not pay)"""
    plan_type = PlanType(plan_type)
    if plan_type not in EARNING_PLANS:
        return 0
    if plan_type == PlanType.EMPIRE:
        return settings.empire_earning if is_first_time else settings.empire_renewal_earning
    return settings.scale_earning if is_first_time else settings.scale_renewal_earning


async def _lock_user(session: AsyncSession, user_id: int) -> Optional[User]:
    stmt = (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def _find_earning(
    session: AsyncSession, referred_user_id: int, transaction_id: str
) -> Optional[AffiliateEarning]:
    stmt = select(AffiliateEarning).where(
        AffiliateEarning.referred_user_id == referred_user_id,
        AffiliateEarning.transaction_id == transaction_id,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def credit_referral(
    session: AsyncSession,
    referrer_uid: str,
    referred_user_id: int,
    plan_type: PlanType,
    is_first_time: bool,
    transaction_id: str,
) -> Optional[AffiliateEarning]:
    """
    Credit the referrer for one purchase event

    Replaying the same (referred_user_id, transaction_id) returns the existing
    earning without crediting again.

    Args:
        session: Database session
        referrer_uid: Referral code of the referrer (VEO-XXXXXX)
        referred_user_id: Buyer
        plan_type: Plan purchased
        is_first_time: First purchase (vs renewal)
        transaction_id: Purchase/renewal event id (dedupe key)

    Returns:
        AffiliateEarning, or None when nothing is owed
    """
    if not transaction_id:
        raise ValueError("transaction_id is required")

    existing = await _find_earning(session, referred_user_id, transaction_id)
    if existing:
        logger.debug(f"Affiliate event {transaction_id} for user {referred_user_id} already credited")
        return existing

    settings = await crud.get_settings(session, AffiliateSettings)
    if not settings.is_enabled:
        logger.debug("Affiliate program disabled, skipping credit")
        return None

    amount = earning_amount(settings, plan_type, is_first_time)
    if amount <= 0:
        return None

    referrer = await crud.get_user_by_uid(session, referrer_uid)
    if referrer is None:
        logger.warning(f"Referral credit skipped: unknown referrer code {referrer_uid}")
        return None
    if referrer.id == referred_user_id:
        logger.warning(f"Referral credit skipped: self-referral by user {referrer.id}")
        return None

    referrer = await _lock_user(session, referrer.id)

    earning = AffiliateEarning(
        referrer_id=referrer.id,
        referred_user_id=referred_user_id,
        plan_type=PlanType(plan_type).value,
        amount=amount,
        is_first_time=is_first_time,
        transaction_id=transaction_id,
    )
    session.add(earning)
    referrer.affiliate_balance += amount
    if is_first_time:
        referrer.total_referrals += 1

    try:
        await session.commit()
    except IntegrityError:
        # Concurrent delivery of the same event won the insert
        await session.rollback()
        logger.info(f"Affiliate event {transaction_id} credited concurrently, returning existing row")
        return await _find_earning(session, referred_user_id, transaction_id)

    await session.refresh(earning)
    logger.info(
        f"Affiliate credit: {amount} PKR to user {referrer.id} for user {referred_user_id} "
        f"({earning.plan_type}, first_time={is_first_time}, balance={referrer.affiliate_balance})"
    )
    return earning


async def on_plan_activated(
    session: AsyncSession,
    user: User,
    plan_type: PlanType,
    transaction_id: str,
) -> Optional[AffiliateEarning]:
    """
    Hook for paid plan activation (admin or reseller)

    First time = the referred user has never produced an earning before.
    """
    if not user.referred_by:
        return None

    stmt = select(func.count(AffiliateEarning.id)).where(AffiliateEarning.referred_user_id == user.id)
    previous = (await session.execute(stmt)).scalar_one()

    return await credit_referral(
        session,
        referrer_uid=user.referred_by,
        referred_user_id=user.id,
        plan_type=plan_type,
        is_first_time=previous == 0,
        transaction_id=transaction_id,
    )


# ===========================
# WITHDRAWALS
# ===========================


async def create_withdrawal(
    session: AsyncSession,
    user: User,
    amount: int,
    bank_name: str,
    account_number: str,
    account_holder_name: str,
) -> AffiliateWithdrawal:
    """
    Request a payout (balance is debited only on approval)

    Raises:
        ValueError: amount below minimum, bank details missing, or a request already pending
        InsufficientBalanceError: amount exceeds balance
    """
    settings = await crud.get_settings(session, AffiliateSettings)

    if amount < settings.min_withdrawal:
        raise ValueError(f"Minimum withdrawal is {settings.min_withdrawal} PKR")
    if not (bank_name.strip() and account_number.strip() and account_holder_name.strip()):
        raise ValueError("Bank name, account number and account holder name are required")
    if amount > user.affiliate_balance:
        raise InsufficientBalanceError(
            f"Insufficient balance: {user.affiliate_balance} PKR available, {amount} PKR requested"
        )

    stmt = select(AffiliateWithdrawal.id).where(
        AffiliateWithdrawal.user_id == user.id,
        AffiliateWithdrawal.status == WithdrawalStatus.PENDING.value,
    )
    if (await session.execute(stmt)).first():
        raise ValueError("You already have a pending withdrawal request")

    withdrawal = AffiliateWithdrawal(
        user_id=user.id,
        amount=amount,
        bank_name=bank_name.strip(),
        account_number=account_number.strip(),
        account_holder_name=account_holder_name.strip(),
        status=WithdrawalStatus.PENDING.value,
    )
    session.add(withdrawal)
    await session.commit()
    await session.refresh(withdrawal)

    logger.info(f"Withdrawal #{withdrawal.id} requested by user {user.id}: {amount} PKR")
    return withdrawal


async def process_withdrawal(
    session: AsyncSession,
    withdrawal_id: int,
    approve: bool,
    admin_id: int,
    remarks: Optional[str] = None,
) -> Optional[AffiliateWithdrawal]:
    """
    Approve (debit balance) or reject (balance untouched) a pending withdrawal

    Returns:
        Updated withdrawal, or None if not found

    Raises:
        WithdrawalStateError: not pending
        InsufficientBalanceError: approval with balance < amount
    """
    stmt = (
        select(AffiliateWithdrawal)
        .where(AffiliateWithdrawal.id == withdrawal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    withdrawal = (await session.execute(stmt)).scalar_one_or_none()
    if withdrawal is None:
        return None

    if withdrawal.status != WithdrawalStatus.PENDING.value:
        await session.commit()
        raise WithdrawalStateError(f"Withdrawal #{withdrawal.id} already {withdrawal.status}")

    if approve:
        user = await _lock_user(session, withdrawal.user_id)
        if user.affiliate_balance < withdrawal.amount:
            await session.commit()
            raise InsufficientBalanceError(
                f"User balance {user.affiliate_balance} PKR is below withdrawal amount {withdrawal.amount} PKR"
            )
        user.affiliate_balance -= withdrawal.amount
        withdrawal.status = WithdrawalStatus.APPROVED.value
    else:
        withdrawal.status = WithdrawalStatus.REJECTED.value

    withdrawal.remarks = remarks
    withdrawal.processed_by = admin_id
    withdrawal.processed_at = utcnow()
    await session.commit()
    await session.refresh(withdrawal)

    logger.info(f"Withdrawal #{withdrawal.id} {withdrawal.status} by admin {admin_id}")
    return withdrawal


async def list_withdrawals(
    session: AsyncSession,
    user_id: Optional[int] = None,
    status: Optional[WithdrawalStatus] = None,
    limit: int = 100,
) -> List[AffiliateWithdrawal]:
    stmt = select(AffiliateWithdrawal).order_by(AffiliateWithdrawal.created_at.desc()).limit(limit)
    if user_id is not None:
        stmt = stmt.where(AffiliateWithdrawal.user_id == user_id)
    if status is not None:
        stmt = stmt.where(AffiliateWithdrawal.status == WithdrawalStatus(status).value)
    return list((await session.execute(stmt)).scalars().all())


async def get_affiliate_summary(session: AsyncSession, user: User) -> Dict[str, Any]:
    """Referral code, balance and recent earnings for the affiliate dashboard"""
    settings = await crud.get_settings(session, AffiliateSettings)

    total_stmt = select(func.coalesce(func.sum(AffiliateEarning.amount), 0)).where(
        AffiliateEarning.referrer_id == user.id
    )
    total_earned = (await session.execute(total_stmt)).scalar_one()

    withdrawn_stmt = select(func.coalesce(func.sum(AffiliateWithdrawal.amount), 0)).where(
        AffiliateWithdrawal.user_id == user.id,
        AffiliateWithdrawal.status == WithdrawalStatus.APPROVED.value,
    )
    total_withdrawn = (await session.execute(withdrawn_stmt)).scalar_one()

    earnings_stmt = (
        select(AffiliateEarning)
        .where(AffiliateEarning.referrer_id == user.id)
        .order_by(AffiliateEarning.created_at.desc())
        .limit(50)
    )
    earnings = (await session.execute(earnings_stmt)).scalars().all()

    return {
        "uid": user.uid,
        "balance": user.affiliate_balance,
        "total_referrals": user.total_referrals,
        "total_earned": total_earned,
        "total_withdrawn": total_withdrawn,
        "program_enabled": settings.is_enabled,
        "min_withdrawal": settings.min_withdrawal,
        "rates": {
            "empire": settings.empire_earning,
            "scale": settings.scale_earning,
            "empire_renewal": settings.empire_renewal_earning,
            "scale_renewal": settings.scale_renewal_earning,
        },
        "earnings": [
            {
                "id": e.id,
                "plan_type": e.plan_type,
                "amount": e.amount,
                "is_first_time": e.is_first_time,
                "created_at": e.created_at.isoformat(),
            }
            for e in earnings
        ],
    }
