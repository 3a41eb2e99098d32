"""
Earnings Service - courier pay derived from delivered jobs

Nothing here is stored: every figure is recomputed from the DELIVERED
deliveries, their order totals and the *current* courier rules. Changing a
rule therefore changes historical earnings as well.

    gross      = base_fee + order_total * variable_rate
    commission = gross * platform_commission_rate
    net        = max(0, gross - commission)
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.models.delivery import Delivery, DeliveryStatus
from app.db.models.order import Order
from app.db.models.withdrawal_request import WithdrawalRequest, WithdrawalStatus
from app.domain.services.courier_rules_service import CourierRules, CourierRulesService

ZERO = Decimal("0")


@dataclass(frozen=True)
class EarningsBreakdown:
    gross: Decimal
    platform_commission: Decimal
    net: Decimal


def compute_earnings(order_total: Decimal | int | str, rules: CourierRules) -> EarningsBreakdown:
    """Pay for one delivered order. Exact ``Decimal`` arithmetic, no rounding."""
    total = order_total if isinstance(order_total, Decimal) else Decimal(str(order_total))
    gross = rules.base_fee + total * rules.variable_rate
    commission = gross * rules.platform_commission_rate
    net = max(ZERO, gross - commission)
    return EarningsBreakdown(gross=gross, platform_commission=commission, net=net)


def compute_available_balance(total_net: Decimal, pending: Decimal, paid: Decimal) -> Decimal:
    return max(ZERO, total_net - pending - paid)


def local_period_starts(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """Start of the local day and of the local week (Sunday 00:00).

    ``now`` must be timezone-aware. Results are naive UTC, matching how
    timestamps are stored.
    """
    tz = ZoneInfo(tz_name)
    local_now = now.astimezone(tz)
    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Monday is 0, so Sunday is 6
    days_since_sunday = (local_now.weekday() + 1) % 7
    week_start = day_start - timedelta(days=days_since_sunday)

    # ZoneInfo resolves the offset from the wall-clock time, so DST weeks stay exact
    return (
        day_start.astimezone(timezone.utc).replace(tzinfo=None),
        week_start.astimezone(timezone.utc).replace(tzinfo=None),
    )


@dataclass(frozen=True)
class Payout:
    """Earnings line for one delivered job"""
    delivery_id: int
    order_id: int
    delivered_at: datetime | None
    order_total: Decimal
    gross: Decimal
    platform_commission: Decimal
    net: Decimal


@dataclass(frozen=True)
class BalanceBreakdown:
    total_net: Decimal
    pending_withdrawals: Decimal
    paid_withdrawals: Decimal
    available_balance: Decimal


@dataclass(frozen=True)
class EarningsSummary:
    today: Decimal
    week: Decimal
    total: Decimal
    available_balance: Decimal
    pending_withdrawals: Decimal
    paid_withdrawals: Decimal
    rules: CourierRules


@dataclass(frozen=True)
class DeliveryStats:
    deliveries_count: int
    acceptance_rate: float
    cancellation_rate: float
    average_wait_minutes: float


@dataclass(frozen=True)
class CourierMetrics:
    earnings: EarningsSummary
    stats: DeliveryStats
    payouts: list[Payout] = field(default_factory=list)


class EarningsService:
    """Earnings, balance and statistics for one courier"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.rules_service = CourierRulesService(db)

    async def get_payouts(
        self,
        courier_id: int,
        rules: CourierRules | None = None,
    ) -> list[Payout]:
        """One line per DELIVERED job, newest first"""
        rules = rules or await self.rules_service.get_current_rules()
        result = await self.db.execute(
            select(
                Delivery.id,
                Delivery.order_id,
                Delivery.completed_at,
                Order.total_amount,
            )
            .join(Order, Order.id == Delivery.order_id)
            .where(
                Delivery.courier_id == courier_id,
                Delivery.status == DeliveryStatus.DELIVERED,
            )
            .order_by(Delivery.completed_at.desc(), Delivery.id.desc())
        )

        payouts = []
        for delivery_id, order_id, completed_at, order_total in result.all():
            total = Decimal(str(order_total))
            breakdown = compute_earnings(total, rules)
            payouts.append(
                Payout(
                    delivery_id=delivery_id,
                    order_id=order_id,
                    delivered_at=completed_at,
                    order_total=total,
                    gross=breakdown.gross,
                    platform_commission=breakdown.platform_commission,
                    net=breakdown.net,
                )
            )
        return payouts

    async def get_total_net(self, courier_id: int, rules: CourierRules | None = None) -> Decimal:
        payouts = await self.get_payouts(courier_id, rules)
        return sum((payout.net for payout in payouts), ZERO)

    async def get_withdrawal_totals(self, courier_id: int) -> tuple[Decimal, Decimal]:
        """(pending, paid) request amounts of the courier"""
        result = await self.db.execute(
            select(WithdrawalRequest.status, func.coalesce(func.sum(WithdrawalRequest.amount), 0))
            .where(
                WithdrawalRequest.courier_id == courier_id,
                WithdrawalRequest.status.in_([WithdrawalStatus.PENDING, WithdrawalStatus.PAID]),
            )
            .group_by(WithdrawalRequest.status)
        )
        totals = {status: Decimal(str(amount)) for status, amount in result.all()}
        return totals.get(WithdrawalStatus.PENDING, ZERO), totals.get(WithdrawalStatus.PAID, ZERO)

    async def get_balance(
        self,
        courier_id: int,
        rules: CourierRules | None = None,
    ) -> BalanceBreakdown:
        total_net = await self.get_total_net(courier_id, rules)
        pending, paid = await self.get_withdrawal_totals(courier_id)
        return BalanceBreakdown(
            total_net=total_net,
            pending_withdrawals=pending,
            paid_withdrawals=paid,
            available_balance=compute_available_balance(total_net, pending, paid),
        )

    async def get_delivery_stats(self, courier_id: int) -> DeliveryStats:
        """Ratios over every delivery of the courier, not only completed ones"""
        result = await self.db.execute(
            select(
                func.count(Delivery.id),
                func.sum(case((Delivery.status != DeliveryStatus.WAITING, 1), else_=0)),
                func.avg(Delivery.estimated_time),
            ).where(Delivery.courier_id == courier_id)
        )
        total, progressed, avg_estimated = result.one()
        total = total or 0
        progressed = progressed or 0

        if total == 0:
            return DeliveryStats(
                deliveries_count=0,
                acceptance_rate=0.0,
                cancellation_rate=0.0,
                average_wait_minutes=0.0,
            )

        return DeliveryStats(
            deliveries_count=total,
            acceptance_rate=progressed / total,
            cancellation_rate=(total - progressed) / total,
            average_wait_minutes=float(avg_estimated) if avg_estimated is not None else 0.0,
        )

    async def courier_metrics(
        self,
        courier_id: int,
        now: datetime | None = None,
    ) -> CourierMetrics:
        """Earnings for today / this week / all time, balance, stats and payouts"""
        now = now or datetime.now(timezone.utc)
        day_start, week_start = local_period_starts(now, settings.LOCAL_TIMEZONE)

        rules = await self.rules_service.get_current_rules()
        payouts = await self.get_payouts(courier_id, rules)

        total = sum((p.net for p in payouts), ZERO)
        today = sum((p.net for p in payouts if p.delivered_at and p.delivered_at >= day_start), ZERO)
        week = sum((p.net for p in payouts if p.delivered_at and p.delivered_at >= week_start), ZERO)

        pending, paid = await self.get_withdrawal_totals(courier_id)
        stats = await self.get_delivery_stats(courier_id)

        return CourierMetrics(
            earnings=EarningsSummary(
                today=today,
                week=week,
                total=total,
                available_balance=compute_available_balance(total, pending, paid),
                pending_withdrawals=pending,
                paid_withdrawals=paid,
                rules=rules,
            ),
            stats=stats,
            payouts=payouts,
        )
