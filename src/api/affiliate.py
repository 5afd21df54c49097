"""
Affiliate API
- Dashboard summary (code, balance, earnings)
- Withdrawal requests
"""

from typing import Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_user
from src.database.engine import get_session
from src.database.models import User, AffiliateWithdrawal
from src.services import affiliate_service

router = APIRouter(prefix="/affiliate", tags=["affiliate"])


class WithdrawalRequest(BaseModel):
    amount: int = Field(..., gt=0)
    bank_name: str = Field(..., min_length=1, max_length=100)
    account_number: str = Field(..., min_length=1, max_length=64)
    account_holder_name: str = Field(..., min_length=1, max_length=100)


def serialize_withdrawal(withdrawal: AffiliateWithdrawal) -> Dict[str, Any]:
    return {
        "id": withdrawal.id,
        "user_id": withdrawal.user_id,
        "amount": withdrawal.amount,
        "bank_name": withdrawal.bank_name,
        "account_number": withdrawal.account_number,
        "account_holder_name": withdrawal.account_holder_name,
        "status": withdrawal.status,
        "remarks": withdrawal.remarks,
        "processed_at": withdrawal.processed_at.isoformat() if withdrawal.processed_at else None,
        "created_at": withdrawal.created_at.isoformat() if withdrawal.created_at else None,
    }


@router.get("/summary")
async def get_summary(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await affiliate_service.get_affiliate_summary(session, user)


@router.post("/withdrawals")
async def request_withdrawal(
    body: WithdrawalRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Request a payout

    Errors:
        400: below minimum, insufficient balance, or a request already pending
    """
    try:
        withdrawal = await affiliate_service.create_withdrawal(
            session,
            user,
            amount=body.amount,
            bank_name=body.bank_name,
            account_number=body.account_number,
            account_holder_name=body.account_holder_name,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "withdrawal": serialize_withdrawal(withdrawal)}


@router.get("/withdrawals")
async def list_my_withdrawals(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    withdrawals = await affiliate_service.list_withdrawals(session, user_id=user.id)
    return {"withdrawals": [serialize_withdrawal(w) for w in withdrawals]}
