"""
Courier Rules API Routes - admin configuration of earnings and withdrawal parameters
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_admin
from app.core.exceptions import ValidationException
from app.db.database import get_db
from app.db.models.courier_rule import CourierRuleKey
from app.db.models.user import User
from app.domain.services.courier_rules_service import CourierRules, CourierRulesService

router = APIRouter()


class RulesResponse(BaseModel):
    """Current values keyed by their wire names"""
    model_config = ConfigDict(populate_by_name=True)

    base_fee: float = Field(alias="courierBaseFee")
    variable_rate: float = Field(alias="courierVariableRate")
    platform_commission_rate: float = Field(alias="courierPlatformCommissionRate")
    min_withdrawal_amount: float = Field(alias="courierMinWithdrawalAmount")

    @classmethod
    def from_rules(cls, rules: CourierRules) -> "RulesResponse":
        return cls(
            base_fee=float(rules.base_fee),
            variable_rate=float(rules.variable_rate),
            platform_commission_rate=float(rules.platform_commission_rate),
            min_withdrawal_amount=float(rules.min_withdrawal_amount),
        )


class RulesUpdate(BaseModel):
    """Any subset of the keys; omitted keys keep their current value"""
    model_config = ConfigDict(populate_by_name=True)

    base_fee: Any = Field(None, alias="courierBaseFee")
    variable_rate: Any = Field(None, alias="courierVariableRate")
    platform_commission_rate: Any = Field(None, alias="courierPlatformCommissionRate")
    min_withdrawal_amount: Any = Field(None, alias="courierMinWithdrawalAmount")

    def to_values(self) -> dict[CourierRuleKey, Any]:
        fields = {
            CourierRuleKey.BASE_FEE: self.base_fee,
            CourierRuleKey.VARIABLE_RATE: self.variable_rate,
            CourierRuleKey.PLATFORM_COMMISSION_RATE: self.platform_commission_rate,
            CourierRuleKey.MIN_WITHDRAWAL_AMOUNT: self.min_withdrawal_amount,
        }
        return {key: value for key, value in fields.items() if value is not None}


class RuleEntryResponse(BaseModel):
    id: int
    key: str
    value: float
    updated_by_user_id: int | None
    created_at: datetime


@router.get(
    "/admin/rules",
    response_model=RulesResponse,
    response_model_by_alias=True,
    summary="Current courier rules",
)
async def get_rules(
    _: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> RulesResponse:
    rules = await CourierRulesService(db).get_current_rules()
    return RulesResponse.from_rules(rules)


@router.put(
    "/admin/rules",
    response_model=RulesResponse,
    response_model_by_alias=True,
    summary="Update courier rules",
    description=(
        "Appends new values for the given keys. Rates must be within [0, 1], "
        "amounts must be non-negative. Earlier values stay in the history."
    ),
    responses={400: {"description": "Value out of range or no key given"}},
)
async def update_rules(
    data: RulesUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> RulesResponse:
    values = data.to_values()
    if not values:
        raise ValidationException(
            "At least one rule must be provided",
            details={"allowed": [key.value for key in CourierRuleKey]},
        )
    rules = await CourierRulesService(db).set_rules(values, updated_by=admin.id)
    return RulesResponse.from_rules(rules)


@router.get(
    "/admin/rules/history",
    response_model=List[RuleEntryResponse],
    summary="History of courier rule changes",
)
async def get_rules_history(
    key: Optional[CourierRuleKey] = Query(None, description="Restrict to one key"),
    limit: int = Query(50, ge=1, le=500),
    _: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> List[RuleEntryResponse]:
    entries = await CourierRulesService(db).get_history(key=key, limit=limit)
    return [
        RuleEntryResponse(
            id=entry.id,
            key=entry.key.value,
            value=float(Decimal(str(entry.value))),
            updated_by_user_id=entry.updated_by_user_id,
            created_at=entry.created_at,
        )
        for entry in entries
    ]
