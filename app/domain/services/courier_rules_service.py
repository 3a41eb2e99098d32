"""
Courier Rules Service - read and append the courier earnings configuration

Each key's current value is its most recent entry in ``courier_rule_entries``;
keys never written fall back to the ``COURIER_DEFAULT_*`` settings.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import InvalidRuleValueError
from app.core.logging import get_logger, log_async_operation
from app.core.validation import AmountValidator, RuleValueValidator
from app.db.models.audit_log import AuditActionType
from app.db.models.courier_rule import CourierRuleEntry, CourierRuleKey
from app.domain.services.audit_service import AuditService

logger = get_logger(__name__)


@dataclass(frozen=True)
class CourierRules:
    """Snapshot of the four courier parameters"""
    base_fee: Decimal
    variable_rate: Decimal
    platform_commission_rate: Decimal
    min_withdrawal_amount: Decimal

    @classmethod
    def defaults(cls) -> "CourierRules":
        return cls(
            base_fee=settings.COURIER_DEFAULT_BASE_FEE,
            variable_rate=settings.COURIER_DEFAULT_VARIABLE_RATE,
            platform_commission_rate=settings.COURIER_DEFAULT_PLATFORM_COMMISSION_RATE,
            min_withdrawal_amount=settings.COURIER_DEFAULT_MIN_WITHDRAWAL_AMOUNT,
        )

    def value_of(self, key: CourierRuleKey) -> Decimal:
        return getattr(self, _FIELD_BY_KEY[key])

    def to_wire(self) -> dict[str, Decimal]:
        """Keyed by wire names (courierBaseFee, ...)"""
        return {key.value: self.value_of(key) for key in CourierRuleKey}


_FIELD_BY_KEY: dict[CourierRuleKey, str] = {
    CourierRuleKey.BASE_FEE: "base_fee",
    CourierRuleKey.VARIABLE_RATE: "variable_rate",
    CourierRuleKey.PLATFORM_COMMISSION_RATE: "platform_commission_rate",
    CourierRuleKey.MIN_WITHDRAWAL_AMOUNT: "min_withdrawal_amount",
}


def validate_rule_value(key: CourierRuleKey, value: Any) -> Decimal:
    """Parse ``value`` and check it is in range for ``key``.

    Raises:
        InvalidRuleValueError: not a number, or out of range
    """
    parsed = AmountValidator.parse(value)
    if parsed is None:
        raise InvalidRuleValueError(key.value, value, "must be a number")
    if key.is_rate:
        is_valid, reason = RuleValueValidator.validate_rate(parsed)
    else:
        is_valid, reason = RuleValueValidator.validate_amount(parsed)
    if not is_valid:
        raise InvalidRuleValueError(key.value, value, reason)
    return parsed


class CourierRulesService:
    """Access to the append-only rule log"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _latest_entry(self, key: CourierRuleKey) -> CourierRuleEntry | None:
        result = await self.db.execute(
            select(CourierRuleEntry)
            .where(CourierRuleEntry.key == key)
            .order_by(CourierRuleEntry.created_at.desc(), CourierRuleEntry.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_current_rules(self) -> CourierRules:
        """Most recent value per key, default where a key was never set"""
        defaults = CourierRules.defaults()
        values: dict[str, Decimal] = {}
        for key, field_name in _FIELD_BY_KEY.items():
            entry = await self._latest_entry(key)
            values[field_name] = (
                Decimal(str(entry.value)) if entry is not None else defaults.value_of(key)
            )
        return CourierRules(**values)

    @log_async_operation("set_courier_rule")
    async def set_rule(
        self,
        key: CourierRuleKey,
        value: Any,
        updated_by: int | None = None,
    ) -> CourierRuleEntry:
        """Append a new value for ``key``; earlier entries stay untouched"""
        entries = await self._append({key: value}, updated_by)
        return entries[0]

    @log_async_operation("set_courier_rules")
    async def set_rules(
        self,
        values: Mapping[CourierRuleKey, Any],
        updated_by: int | None = None,
    ) -> CourierRules:
        """Append several keys in one transaction, all validated before any write"""
        if values:
            await self._append(values, updated_by)
        return await self.get_current_rules()

    async def _append(
        self,
        values: Mapping[CourierRuleKey, Any],
        updated_by: int | None,
    ) -> list[CourierRuleEntry]:
        parsed = {
            CourierRuleKey(key): validate_rule_value(CourierRuleKey(key), value)
            for key, value in values.items()
        }
        current = await self.get_current_rules()
        audit = AuditService(self.db)

        entries = []
        for key, new_value in parsed.items():
            entry = CourierRuleEntry(key=key, value=new_value, updated_by_user_id=updated_by)
            self.db.add(entry)
            entries.append(entry)
            audit.record(
                AuditActionType.RULE_UPDATED,
                entity_type="courier_rule",
                entity_id=key.value,
                actor_user_id=updated_by,
                details={
                    "old_value": str(current.value_of(key)),
                    "new_value": str(new_value),
                },
            )

        await self.db.commit()

        logger.info(
            "Courier rules updated",
            extra_data={
                "keys": [key.value for key in parsed],
                "updated_by": updated_by,
            },
        )
        return entries

    async def get_history(
        self,
        key: CourierRuleKey | None = None,
        limit: int = 50,
    ) -> list[CourierRuleEntry]:
        """Entries newest first, optionally for one key"""
        query = select(CourierRuleEntry)
        if key is not None:
            query = query.where(CourierRuleEntry.key == key)
        result = await self.db.execute(
            query.order_by(CourierRuleEntry.created_at.desc(), CourierRuleEntry.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
