"""
Unit tests for the affiliate ledger (earnings and withdrawals)
"""

import pytest

from src.core.enums import PlanType, WithdrawalStatus
from src.core.exceptions import InsufficientBalanceError, WithdrawalStateError
from src.database import crud
from src.database.models import AffiliateSettings, User
from src.services import affiliate_service


@pytest.fixture
async def referrer(make_user):
    return await make_user("referrer", plan_type=PlanType.SCALE)


@pytest.fixture
async def referred(make_user, referrer):
    return await make_user("referred", referred_by=referrer.uid)


@pytest.mark.asyncio
async def test_referral_code_format(referrer, referred):
    """Signup with a known code links the referrer"""
    assert referrer.uid.startswith("VEO-")
    assert len(referrer.uid) == 10
    assert referred.referred_by == referrer.uid


@pytest.mark.asyncio
async def test_unknown_referral_code_dropped(make_user):
    user = await make_user("lonely", referred_by="VEO-NOPE00")
    assert user.referred_by is None


@pytest.mark.asyncio
async def test_first_purchase_and_renewal_rates(db_session, referrer, referred):
    first = await affiliate_service.on_plan_activated(db_session, referred, PlanType.EMPIRE, "txn-1")
    renewal = await affiliate_service.on_plan_activated(db_session, referred, PlanType.SCALE, "txn-2")

    assert first.amount == 300
    assert first.is_first_time
    assert renewal.amount == 50
    assert not renewal.is_first_time

    await db_session.refresh(referrer)
    assert referrer.affiliate_balance == 350
    assert referrer.total_referrals == 1


@pytest.mark.asyncio
async def test_credit_is_idempotent_per_transaction(db_session, referrer, referred):
    """Replaying the same purchase event credits once"""
    first = await affiliate_service.on_plan_activated(db_session, referred, PlanType.SCALE, "txn-dup")
    replay = await affiliate_service.on_plan_activated(db_session, referred, PlanType.SCALE, "txn-dup")

    assert replay.id == first.id
    await db_session.refresh(referrer)
    assert referrer.affiliate_balance == 100


@pytest.mark.asyncio
async def test_self_referral_not_credited(db_session, referrer):
    earning = await affiliate_service.credit_referral(
        db_session, referrer.uid, referrer.id, PlanType.EMPIRE, True, "txn-self"
    )

    assert earning is None
    await db_session.refresh(referrer)
    assert referrer.affiliate_balance == 0


@pytest.mark.asyncio
async def test_no_credit_for_free_or_disabled(db_session, referrer, referred):
    assert await affiliate_service.on_plan_activated(db_session, referred, PlanType.FREE, "txn-free") is None

    await crud.update_settings(db_session, AffiliateSettings, is_enabled=False)
    assert await affiliate_service.on_plan_activated(db_session, referred, PlanType.EMPIRE, "txn-off") is None


@pytest.mark.asyncio
async def test_missing_transaction_id_rejected(db_session, referrer, referred):
    with pytest.raises(ValueError):
        await affiliate_service.credit_referral(db_session, referrer.uid, referred.id, PlanType.SCALE, True, "")


async def _fund(db_session, user: User, amount: int) -> None:
    user.affiliate_balance = amount
    await db_session.commit()


@pytest.mark.asyncio
async def test_withdrawal_validation(db_session, referrer):
    await _fund(db_session, referrer, 1500)

    with pytest.raises(ValueError):
        await affiliate_service.create_withdrawal(db_session, referrer, 500, "HBL", "123", "Ali")
    with pytest.raises(InsufficientBalanceError):
        await affiliate_service.create_withdrawal(db_session, referrer, 2000, "HBL", "123", "Ali")
    with pytest.raises(ValueError):
        await affiliate_service.create_withdrawal(db_session, referrer, 1000, "HBL", " ", "Ali")

    await affiliate_service.create_withdrawal(db_session, referrer, 1000, "HBL", "123", "Ali")
    with pytest.raises(ValueError):
        await affiliate_service.create_withdrawal(db_session, referrer, 1000, "HBL", "123", "Ali")


@pytest.mark.asyncio
async def test_approve_debits_balance_once(db_session, referrer, admin_user):
    await _fund(db_session, referrer, 1500)
    withdrawal = await affiliate_service.create_withdrawal(db_session, referrer, 1200, "Meezan", "PK00", "Sara")

    # Requesting does not move the balance
    await db_session.refresh(referrer)
    assert referrer.affiliate_balance == 1500

    processed = await affiliate_service.process_withdrawal(db_session, withdrawal.id, True, admin_user.id, "Paid")

    assert processed.status == WithdrawalStatus.APPROVED.value
    assert processed.processed_by == admin_user.id
    await db_session.refresh(referrer)
    assert referrer.affiliate_balance == 300

    with pytest.raises(WithdrawalStateError):
        await affiliate_service.process_withdrawal(db_session, withdrawal.id, True, admin_user.id)
    await db_session.refresh(referrer)
    assert referrer.affiliate_balance == 300


@pytest.mark.asyncio
async def test_reject_keeps_balance(db_session, referrer, admin_user):
    await _fund(db_session, referrer, 1500)
    withdrawal = await affiliate_service.create_withdrawal(db_session, referrer, 1000, "UBL", "9", "Omar")

    processed = await affiliate_service.process_withdrawal(db_session, withdrawal.id, False, admin_user.id, "Wrong IBAN")

    assert processed.status == WithdrawalStatus.REJECTED.value
    assert processed.remarks == "Wrong IBAN"
    await db_session.refresh(referrer)
    assert referrer.affiliate_balance == 1500


@pytest.mark.asyncio
async def test_approve_with_shrunken_balance(db_session, referrer, admin_user):
    await _fund(db_session, referrer, 1000)
    withdrawal = await affiliate_service.create_withdrawal(db_session, referrer, 1000, "UBL", "9", "Omar")
    await _fund(db_session, referrer, 200)

    with pytest.raises(InsufficientBalanceError):
        await affiliate_service.process_withdrawal(db_session, withdrawal.id, True, admin_user.id)

    pending = await affiliate_service.list_withdrawals(db_session, status=WithdrawalStatus.PENDING)
    assert [w.id for w in pending] == [withdrawal.id]


@pytest.mark.asyncio
async def test_process_unknown_withdrawal(db_session, admin_user):
    assert await affiliate_service.process_withdrawal(db_session, 999, True, admin_user.id) is None


@pytest.mark.asyncio
async def test_summary(db_session, referrer, referred):
    await affiliate_service.on_plan_activated(db_session, referred, PlanType.SCALE, "txn-s")
    await db_session.refresh(referrer)

    summary = await affiliate_service.get_affiliate_summary(db_session, referrer)

    assert summary["uid"] == referrer.uid
    assert summary["balance"] == 100
    assert summary["total_earned"] == 100
    assert summary["total_withdrawn"] == 0
    assert summary["min_withdrawal"] == 1000
    assert len(summary["earnings"]) == 1
