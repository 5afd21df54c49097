"""
Unit tests for the reseller credit ledger
"""

import pytest

from src.core.enums import PlanType
from src.core.exceptions import InsufficientCreditsError
from src.database import crud
from src.database.models import AffiliateEarning, ResellerCreditLedger
from src.services import reseller_service
from sqlalchemy import select


@pytest.fixture
async def reseller(db_session):
    return await reseller_service.create_reseller(db_session, "shop_pk", "reseller-pass", initial_credits=2000)


@pytest.mark.asyncio
async def test_create_reseller_with_opening_balance(db_session, reseller):
    """Opening credits are written to the ledger"""
    ledger = await reseller_service.get_ledger(db_session, reseller.id)

    assert reseller.credit_balance == 2000
    assert len(ledger) == 1
    assert ledger[0].credit_change == 2000
    assert ledger[0].balance_after == 2000


@pytest.mark.asyncio
async def test_duplicate_reseller_username(db_session, reseller):
    with pytest.raises(ValueError):
        await reseller_service.create_reseller(db_session, "SHOP_PK", "whatever1")


@pytest.mark.asyncio
async def test_authenticate_reseller(db_session, reseller):
    assert (await reseller_service.authenticate_reseller(db_session, "shop_pk", "reseller-pass")).id == reseller.id
    assert await reseller_service.authenticate_reseller(db_session, "shop_pk", "wrong") is None


@pytest.mark.asyncio
async def test_add_and_spend_credits(db_session, reseller):
    assert await reseller_service.add_credits(db_session, reseller.id, 500, "Top-up") == 2500
    assert await reseller_service.spend_credits(db_session, reseller.id, 900, "Manual spend") == 1600

    ledger = await reseller_service.get_ledger(db_session, reseller.id)
    assert [entry.credit_change for entry in ledger] == [-900, 500, 2000]
    assert [entry.balance_after for entry in ledger] == [1600, 2500, 2000]


@pytest.mark.asyncio
async def test_overspend_writes_nothing(db_session, reseller):
    with pytest.raises(InsufficientCreditsError) as exc_info:
        await reseller_service.spend_credits(db_session, reseller.id, 5000, "Too much")

    assert exc_info.value.balance == 2000
    assert exc_info.value.required == 5000
    assert len(await reseller_service.get_ledger(db_session, reseller.id)) == 1


@pytest.mark.asyncio
async def test_non_positive_amounts_rejected(db_session, reseller):
    with pytest.raises(ValueError):
        await reseller_service.add_credits(db_session, reseller.id, 0)
    with pytest.raises(ValueError):
        await reseller_service.spend_credits(db_session, reseller.id, -5, "negative")


@pytest.mark.asyncio
async def test_provision_user_spends_plan_cost(db_session, reseller):
    user = await reseller_service.create_user_by_reseller(
        db_session, reseller, "customer1", "customer-pass", PlanType.SCALE
    )

    assert user.plan_type == PlanType.SCALE.value
    assert user.plan_expiry is not None
    await db_session.refresh(reseller)
    assert reseller.credit_balance == 1100

    users = await reseller_service.list_reseller_users(db_session, reseller.id)
    assert [(u["username"], u["credit_cost"]) for u in users] == [("customer1", 900)]


@pytest.mark.asyncio
async def test_provision_insufficient_credits(db_session, reseller):
    await reseller_service.spend_credits(db_session, reseller.id, 1000, "Drain")

    with pytest.raises(InsufficientCreditsError):
        await reseller_service.create_user_by_reseller(
            db_session, reseller, "customer2", "customer-pass", PlanType.EMPIRE
        )

    assert await crud.get_user_by_username(db_session, "customer2") is None
    await db_session.refresh(reseller)
    assert reseller.credit_balance == 1000


@pytest.mark.asyncio
async def test_provision_rejects_taken_username_and_free_plan(db_session, reseller, make_user):
    await make_user("taken")

    with pytest.raises(ValueError):
        await reseller_service.create_user_by_reseller(db_session, reseller, "taken", "customer-pass", PlanType.SCALE)
    with pytest.raises(ValueError):
        await reseller_service.create_user_by_reseller(db_session, reseller, "newbie", "customer-pass", PlanType.FREE)

    await db_session.refresh(reseller)
    assert reseller.credit_balance == 2000


@pytest.mark.asyncio
async def test_disabled_reseller_cannot_provision(db_session, reseller):
    await reseller_service.set_reseller_active(db_session, reseller, False)

    with pytest.raises(ValueError):
        await reseller_service.create_user_by_reseller(db_session, reseller, "x_user", "customer-pass", PlanType.SCALE)


@pytest.mark.asyncio
async def test_provision_credits_referrer(db_session, reseller, make_user):
    referrer = await make_user("affiliate", plan_type=PlanType.SCALE)

    user = await reseller_service.create_user_by_reseller(
        db_session, reseller, "referred_customer", "customer-pass", PlanType.EMPIRE, referred_by=referrer.uid
    )

    earnings = (await db_session.execute(
        select(AffiliateEarning).where(AffiliateEarning.referred_user_id == user.id)
    )).scalars().all()
    assert len(earnings) == 1
    assert earnings[0].amount == 300
    assert earnings[0].transaction_id.startswith("reseller-")


@pytest.mark.asyncio
async def test_verify_ledger_detects_tampering(db_session, reseller):
    await reseller_service.spend_credits(db_session, reseller.id, 900, "Spend")

    clean = await reseller_service.verify_ledger(db_session, reseller)
    assert clean["consistent"]
    assert clean["ledger_balance"] == 1100
    assert clean["entries"] == 2

    reseller.credit_balance = 5000
    await db_session.commit()

    tampered = await reseller_service.verify_ledger(db_session, reseller)
    assert not tampered["consistent"]
    assert tampered["stored_balance"] == 5000


@pytest.mark.asyncio
async def test_verify_ledger_finds_broken_entry(db_session, reseller):
    await reseller_service.add_credits(db_session, reseller.id, 100)
    entry = (await db_session.execute(
        select(ResellerCreditLedger).where(ResellerCreditLedger.credit_change == 100)
    )).scalar_one()
    entry.balance_after = 9999
    await db_session.commit()

    report = await reseller_service.verify_ledger(db_session, reseller)

    assert not report["consistent"]
    assert report["broken_entry_id"] == entry.id
