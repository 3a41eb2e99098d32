"""
Withdrawal Service - courier payout requests against the derived balance

    available = max(0, total_net - pending - paid)

The balance is recomputed from history on every request. The check-then-insert
sequence runs under a per-courier asyncio lock and a row lock on the courier,
so two requests from the same courier cannot both spend the same balance.
Balance is not re-checked when an admin reviews a request.
"""
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    CourierNotApprovedError,
    CourierNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidWithdrawalTransitionError,
    ValidationException,
    WithdrawalBelowMinimumError,
    WithdrawalNotFoundError,
)
from app.core.locks import courier_balance_lock
from app.core.logging import get_logger, log_async_operation
from app.core.validation import AccountReferenceValidator, AmountValidator, TextSanitizer
from app.db.models.audit_log import AuditActionType
from app.db.models.courier import Courier
from app.db.models.withdrawal_request import (
    WithdrawalMethod,
    WithdrawalRequest,
    WithdrawalStatus,
    is_valid_withdrawal_transition,
)
from app.domain.services.audit_service import AuditService
from app.domain.services.courier_rules_service import CourierRulesService
from app.domain.services.earnings_service import BalanceBreakdown, EarningsService
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)


def _parse_enum(enum_cls, value: Any, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationException(
            f"Invalid {field}: {value}",
            field=field,
            details={"allowed": [member.value for member in enum_cls]},
        ) from None


class WithdrawalService:
    """Courier withdrawal requests and their admin review"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.earnings_service = EarningsService(db)
        self.rules_service = CourierRulesService(db)
        self.outbox_service = OutboxService(db)
        self.audit_service = AuditService(db)

    async def _get_courier(self, courier_id: int, *, for_update: bool = False) -> Courier:
        query = select(Courier).where(Courier.id == courier_id)
        if for_update:
            query = query.with_for_update(of=Courier)
        result = await self.db.execute(query)
        courier = result.scalar_one_or_none()
        if not courier:
            raise CourierNotFoundError(courier_id)
        return courier

    async def get_balance(self, courier_id: int) -> BalanceBreakdown:
        """Total net, pending and paid withdrawals, and what is left to withdraw"""
        return await self.earnings_service.get_balance(courier_id)

    @log_async_operation("request_withdrawal")
    async def request_withdrawal(
        self,
        courier_id: int,
        amount: Any,
        method: WithdrawalMethod | str,
        account_ref: str,
    ) -> WithdrawalRequest:
        """Create a PENDING request if the courier's available balance covers it.

        Raises:
            CourierNotApprovedError: courier may not withdraw
            InvalidAmountError: amount missing, not a number or not positive
            ValidationException: bad method or account reference
            WithdrawalBelowMinimumError: amount under the configured minimum
            InsufficientBalanceError: amount above the available balance
        """
        courier = await self._get_courier(courier_id)
        if not courier.is_approved:
            raise CourierNotApprovedError(courier_id)

        parsed_amount = AmountValidator.parse(amount)
        if parsed_amount is None or parsed_amount <= 0:
            raise InvalidAmountError(amount)
        is_valid, error = AmountValidator.validate(parsed_amount)
        if not is_valid:
            raise ValidationException(error, field="amount")

        method = _parse_enum(WithdrawalMethod, method, "method")
        is_valid, error = AccountReferenceValidator.validate(account_ref)
        if not is_valid:
            raise ValidationException(error, field="account_ref")

        rules = await self.rules_service.get_current_rules()
        if parsed_amount < rules.min_withdrawal_amount:
            raise WithdrawalBelowMinimumError(courier_id, parsed_amount, rules.min_withdrawal_amount)

        async with courier_balance_lock.hold(courier_id):
            # Row lock serializes against other processes (PostgreSQL)
            await self._get_courier(courier_id, for_update=True)
            balance = await self.earnings_service.get_balance(courier_id, rules)

            if parsed_amount > balance.available_balance:
                await self.db.rollback()
                raise InsufficientBalanceError(courier_id, parsed_amount, balance.available_balance)

            request = WithdrawalRequest(
                courier_id=courier_id,
                amount=parsed_amount,
                method=method,
                account_ref=account_ref.strip(),
                status=WithdrawalStatus.PENDING,
            )
            self.db.add(request)
            await self.db.flush()

            await self.outbox_service.queue_withdrawal_requested(request, courier.user_id)
            self.audit_service.record(
                AuditActionType.WITHDRAWAL_REQUESTED,
                entity_type="withdrawal_request",
                entity_id=request.id,
                actor_user_id=courier.user_id,
                details={
                    "amount": str(parsed_amount),
                    "method": method.value,
                    "available_balance": str(balance.available_balance),
                },
            )
            await self.db.commit()

        logger.info(
            "Withdrawal requested",
            extra_data={
                "withdrawal_request_id": request.id,
                "courier_id": courier_id,
                "amount": str(parsed_amount),
                "method": method.value,
            },
        )
        return request

    async def get(self, request_id: int) -> WithdrawalRequest:
        result = await self.db.execute(
            select(WithdrawalRequest).where(WithdrawalRequest.id == request_id)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise WithdrawalNotFoundError(request_id)
        return request

    @log_async_operation("review_withdrawal")
    async def review_withdrawal(
        self,
        request_id: int,
        new_status: WithdrawalStatus | str,
        reviewer_id: int,
        notes: Optional[str] = None,
    ) -> WithdrawalRequest:
        """Move a request along PENDING -> {APPROVED, REJECTED, PAID}, APPROVED -> {PAID, REJECTED}.

        Raises:
            ValidationException: unknown status value
            WithdrawalNotFoundError: unknown request
            InvalidWithdrawalTransitionError: edge not allowed or request already final
        """
        target = _parse_enum(WithdrawalStatus, new_status, "status")

        result = await self.db.execute(
            select(WithdrawalRequest)
            .where(WithdrawalRequest.id == request_id)
            .with_for_update(of=WithdrawalRequest)
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise WithdrawalNotFoundError(request_id)

        previous = request.status
        if not is_valid_withdrawal_transition(previous, target):
            await self.db.rollback()
            raise InvalidWithdrawalTransitionError(request_id, previous.value, target.value)

        now = datetime.utcnow()
        request.status = target
        if notes is not None:
            request.notes = TextSanitizer.sanitize(notes)
        request.reviewed_by_user_id = reviewer_id
        request.reviewed_at = now
        request.updated_at = now

        courier = await self._get_courier(request.courier_id)
        await self.outbox_service.queue_withdrawal_reviewed(request, courier.user_id)
        self.audit_service.record(
            AuditActionType.WITHDRAWAL_REVIEWED,
            entity_type="withdrawal_request",
            entity_id=request.id,
            actor_user_id=reviewer_id,
            details={
                "from_status": previous.value,
                "to_status": target.value,
                "notes": request.notes,
            },
        )
        await self.db.commit()

        logger.info(
            "Withdrawal reviewed",
            extra_data={
                "withdrawal_request_id": request_id,
                "from_status": previous.value,
                "to_status": target.value,
                "reviewer_id": reviewer_id,
            },
        )
        return request

    async def list_withdrawals(
        self,
        courier_id: int | None = None,
        status: WithdrawalStatus | str | None = None,
        limit: int = 100,
    ) -> List[WithdrawalRequest]:
        """Requests newest first, optionally filtered by courier and status"""
        query = select(WithdrawalRequest)
        if courier_id is not None:
            query = query.where(WithdrawalRequest.courier_id == courier_id)
        if status is not None:
            query = query.where(
                WithdrawalRequest.status == _parse_enum(WithdrawalStatus, status, "status")
            )
        result = await self.db.execute(
            query.order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
