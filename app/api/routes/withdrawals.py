"""
Withdrawal API Routes - courier payout requests and their admin review
"""
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_admin, get_current_courier
from app.core.validation import (
    AccountReferenceValidator,
    account_ref_validator,
    sanitized_text_validator,
)
from app.db.database import get_db
from app.db.models.courier import Courier
from app.db.models.user import User
from app.db.models.withdrawal_request import WithdrawalRequest
from app.domain.services.earnings_service import BalanceBreakdown
from app.domain.services.withdrawal_service import WithdrawalService

router = APIRouter()


class WithdrawalCreate(BaseModel):
    """``amount`` is parsed by the service so that bad values get a domain error"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    amount: Any = None
    method: str
    account_ref: str

    @field_validator("account_ref")
    @classmethod
    def validate_account_ref(cls, v: str) -> str:
        return account_ref_validator(v)


class WithdrawalReview(BaseModel):
    status: str
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v: Optional[str]) -> Optional[str]:
        return sanitized_text_validator(v, max_length=1000)


class WithdrawalResponse(BaseModel):
    id: int
    courier_id: int
    amount: float
    method: str
    account_ref: str
    status: str
    notes: str | None
    created_at: datetime
    reviewed_at: datetime | None
    reviewed_by_user_id: int | None

    @classmethod
    def from_model(cls, request: WithdrawalRequest, *, mask_account: bool = False) -> "WithdrawalResponse":
        return cls(
            id=request.id,
            courier_id=request.courier_id,
            amount=float(request.amount),
            method=request.method.value,
            account_ref=(
                AccountReferenceValidator.mask(request.account_ref)
                if mask_account else request.account_ref
            ),
            status=request.status.value,
            notes=request.notes,
            created_at=request.created_at,
            reviewed_at=request.reviewed_at,
            reviewed_by_user_id=request.reviewed_by_user_id,
        )


class BalanceResponse(BaseModel):
    total_net: float
    pending_withdrawals: float
    paid_withdrawals: float
    available_balance: float

    @classmethod
    def from_breakdown(cls, balance: BalanceBreakdown) -> "BalanceResponse":
        return cls(
            total_net=float(balance.total_net),
            pending_withdrawals=float(balance.pending_withdrawals),
            paid_withdrawals=float(balance.paid_withdrawals),
            available_balance=float(balance.available_balance),
        )


class MyWithdrawalsResponse(BaseModel):
    balance: BalanceResponse
    requests: List[WithdrawalResponse]


@router.post(
    "/me/withdraw-requests",
    response_model=WithdrawalResponse,
    status_code=201,
    summary="Request a withdrawal",
    description=(
        "Creates a PENDING withdrawal if the amount is at least the configured "
        "minimum and does not exceed the available balance."
    ),
    responses={
        400: {"description": "Invalid amount, below minimum or insufficient balance"},
        403: {"description": "Courier not approved"},
    },
)
async def request_withdrawal(
    data: WithdrawalCreate,
    courier: Courier = Depends(get_current_courier),
    db: AsyncSession = Depends(get_db),
) -> WithdrawalResponse:
    request = await WithdrawalService(db).request_withdrawal(
        courier_id=courier.id,
        amount=data.amount,
        method=data.method,
        account_ref=data.account_ref,
    )
    return WithdrawalResponse.from_model(request, mask_account=True)


@router.get(
    "/me/withdraw-requests",
    response_model=MyWithdrawalsResponse,
    summary="List my withdrawals with my current balance",
)
async def list_my_withdrawals(
    courier: Courier = Depends(get_current_courier),
    db: AsyncSession = Depends(get_db),
) -> MyWithdrawalsResponse:
    service = WithdrawalService(db)
    requests = await service.list_withdrawals(courier_id=courier.id)
    balance = await service.get_balance(courier.id)
    return MyWithdrawalsResponse(
        balance=BalanceResponse.from_breakdown(balance),
        requests=[WithdrawalResponse.from_model(r, mask_account=True) for r in requests],
    )


@router.get(
    "/admin/withdraw-requests",
    response_model=List[WithdrawalResponse],
    summary="List all withdrawals",
)
async def list_withdrawals(
    status: Optional[str] = Query(None, description="Filter by withdrawal status"),
    courier_id: Optional[int] = Query(None, description="Filter by courier"),
    _: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> List[WithdrawalResponse]:
    requests = await WithdrawalService(db).list_withdrawals(courier_id=courier_id, status=status)
    return [WithdrawalResponse.from_model(r) for r in requests]


@router.put(
    "/admin/withdraw-requests/{request_id}",
    response_model=WithdrawalResponse,
    summary="Review a withdrawal",
    description="PENDING may become APPROVED, REJECTED or PAID; APPROVED may become PAID or REJECTED.",
    responses={
        400: {"description": "Unknown status"},
        404: {"description": "Withdrawal request not found"},
        409: {"description": "Transition not allowed"},
    },
)
async def review_withdrawal(
    request_id: int,
    data: WithdrawalReview,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> WithdrawalResponse:
    request = await WithdrawalService(db).review_withdrawal(
        request_id,
        data.status,
        reviewer_id=admin.id,
        notes=data.notes,
    )
    return WithdrawalResponse.from_model(request)
