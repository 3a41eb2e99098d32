"""
Tests for courier earnings, balance and metrics
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.db.models.courier_rule import CourierRuleKey
from app.db.models.delivery import DeliveryStatus
from app.db.models.withdrawal_request import WithdrawalStatus
from app.domain.services.courier_rules_service import CourierRules, CourierRulesService
from app.domain.services.earnings_service import (
    EarningsService,
    compute_available_balance,
    compute_earnings,
    local_period_starts,
)


def _rules(base="1.5", variable="0.12", commission="0.02", minimum="10") -> CourierRules:
    return CourierRules(
        base_fee=Decimal(base),
        variable_rate=Decimal(variable),
        platform_commission_rate=Decimal(commission),
        min_withdrawal_amount=Decimal(minimum),
    )


class TestComputeEarnings:
    """Pure earnings formula"""

    @pytest.mark.unit
    def test_reference_example(self):
        """orderTotal=40 with default rules gives gross 6.3, commission 0.126, net 6.174"""
        breakdown = compute_earnings(Decimal("40"), _rules())

        assert breakdown.gross == Decimal("6.3")
        assert breakdown.platform_commission == Decimal("0.126")
        assert breakdown.net == Decimal("6.174")

    @pytest.mark.unit
    def test_no_rounding_is_applied(self):
        breakdown = compute_earnings(Decimal("33.33"), _rules())

        # 1.5 + 33.33 * 0.12 = 5.4996 ; * 0.98 = 5.389608
        assert breakdown.gross == Decimal("5.4996")
        assert breakdown.net == Decimal("5.389608")

    @pytest.mark.unit
    def test_accepts_int_and_string_totals(self):
        assert compute_earnings(40, _rules()).net == Decimal("6.174")
        assert compute_earnings("40.00", _rules()).net == Decimal("6.174")

    @pytest.mark.unit
    def test_full_commission_gives_zero_net(self):
        breakdown = compute_earnings(Decimal("40"), _rules(commission="1"))

        assert breakdown.net == Decimal("0")
        assert breakdown.platform_commission == breakdown.gross

    @pytest.mark.unit
    def test_zero_order_total_pays_base_fee(self):
        breakdown = compute_earnings(Decimal("0"), _rules(commission="0"))
        assert breakdown.net == Decimal("1.5")


class TestAvailableBalance:

    @pytest.mark.unit
    def test_formula(self):
        assert compute_available_balance(Decimal("100"), Decimal("30"), Decimal("20")) == Decimal("50")

    @pytest.mark.unit
    def test_never_negative(self):
        """Rule changes can push the reserved amount above total net"""
        assert compute_available_balance(Decimal("10"), Decimal("30"), Decimal("0")) == Decimal("0")


class TestLocalPeriods:
    """Today / this week boundaries in the configured zone"""

    @pytest.mark.unit
    def test_week_starts_on_sunday(self):
        # Wednesday 2026-03-18 10:00 UTC = 11:00 in Paris (CET)
        now = datetime(2026, 3, 18, 10, 0, tzinfo=timezone.utc)

        day_start, week_start = local_period_starts(now, "Europe/Paris")

        assert day_start == datetime(2026, 3, 17, 23, 0)
        assert week_start == datetime(2026, 3, 14, 23, 0)

    @pytest.mark.unit
    def test_sunday_is_its_own_week_start(self):
        now = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

        day_start, week_start = local_period_starts(now, "Europe/Paris")

        assert day_start == week_start

    @pytest.mark.unit
    def test_week_spanning_dst_change(self):
        """Sunday 2026-03-29 starts in CET, the Monday after is in CEST"""
        now = datetime(2026, 3, 30, 12, 0, tzinfo=timezone.utc)

        day_start, week_start = local_period_starts(now, "Europe/Paris")

        assert day_start == datetime(2026, 3, 29, 22, 0)
        assert week_start == datetime(2026, 3, 28, 23, 0)

    @pytest.mark.unit
    def test_local_day_differs_from_utc_day(self):
        # 23:30 UTC on the 17th is already the 18th in Paris
        now = datetime(2026, 3, 17, 23, 30, tzinfo=timezone.utc)

        day_start, _ = local_period_starts(now, "Europe/Paris")

        assert day_start == datetime(2026, 3, 17, 23, 0)


class TestEarningsService:
    """Aggregations over the courier's deliveries"""

    @pytest.mark.integration
    async def test_payouts_only_count_delivered_jobs(
        self, db_session, approved_courier, delivery_factory
    ):
        courier_id = approved_courier.id
        delivered = await delivery_factory(
            status=DeliveryStatus.DELIVERED,
            courier_id=courier_id,
            completed_at=datetime(2026, 3, 18, 8, 0),
        )
        await delivery_factory(status=DeliveryStatus.ON_ROUTE, courier_id=courier_id)

        payouts = await EarningsService(db_session).get_payouts(courier_id)

        assert [p.delivery_id for p in payouts] == [delivered.id]
        assert payouts[0].net == Decimal("6.174")
        assert payouts[0].order_total == Decimal("40")

    @pytest.mark.integration
    async def test_payouts_newest_first(self, db_session, approved_courier, delivery_factory):
        courier_id = approved_courier.id
        older = await delivery_factory(
            status=DeliveryStatus.DELIVERED,
            courier_id=courier_id,
            completed_at=datetime(2026, 3, 1, 8, 0),
        )
        newer = await delivery_factory(
            status=DeliveryStatus.DELIVERED,
            courier_id=courier_id,
            completed_at=datetime(2026, 3, 2, 8, 0),
        )

        payouts = await EarningsService(db_session).get_payouts(courier_id)

        assert [p.delivery_id for p in payouts] == [newer.id, older.id]

    @pytest.mark.integration
    async def test_other_couriers_jobs_are_ignored(
        self, db_session, courier_factory, delivery_factory
    ):
        mine = await courier_factory()
        other = await courier_factory()
        mine_id, other_id = mine.id, other.id
        await delivery_factory(
            status=DeliveryStatus.DELIVERED,
            courier_id=other_id,
            completed_at=datetime(2026, 3, 1, 8, 0),
        )

        assert await EarningsService(db_session).get_total_net(mine_id) == Decimal("0")

    @pytest.mark.integration
    async def test_balance_subtracts_pending_and_paid_only(
        self, db_session, approved_courier, delivery_factory, withdrawal_factory
    ):
        courier_id = approved_courier.id
        await CourierRulesService(db_session).set_rules({
            CourierRuleKey.BASE_FEE: "100",
            CourierRuleKey.VARIABLE_RATE: "0",
            CourierRuleKey.PLATFORM_COMMISSION_RATE: "0",
        })
        await delivery_factory(
            status=DeliveryStatus.DELIVERED,
            courier_id=courier_id,
            completed_at=datetime(2026, 3, 1, 8, 0),
        )
        await withdrawal_factory(courier_id, "30", WithdrawalStatus.PENDING)
        await withdrawal_factory(courier_id, "20", WithdrawalStatus.PAID)
        await withdrawal_factory(courier_id, "40", WithdrawalStatus.REJECTED)

        balance = await EarningsService(db_session).get_balance(courier_id)

        assert balance.total_net == Decimal("100")
        assert balance.pending_withdrawals == Decimal("30")
        assert balance.paid_withdrawals == Decimal("20")
        assert balance.available_balance == Decimal("50")

    @pytest.mark.integration
    async def test_rule_change_recalculates_history(
        self, db_session, approved_courier, delivery_factory
    ):
        """Earnings always come from the current rules, past deliveries included"""
        courier_id = approved_courier.id
        await delivery_factory(
            status=DeliveryStatus.DELIVERED,
            courier_id=courier_id,
            completed_at=datetime(2026, 3, 1, 8, 0),
        )
        service = EarningsService(db_session)
        assert await service.get_total_net(courier_id) == Decimal("6.174")

        await CourierRulesService(db_session).set_rule(CourierRuleKey.BASE_FEE, "2.5")

        # 2.5 + 4.8 = 7.3 ; * 0.98 = 7.154
        assert await service.get_total_net(courier_id) == Decimal("7.154")

    @pytest.mark.integration
    async def test_delivery_stats(self, db_session, approved_courier, delivery_factory):
        courier_id = approved_courier.id
        for status, minutes in [
            (DeliveryStatus.DELIVERED, 20),
            (DeliveryStatus.DELIVERED, 30),
            (DeliveryStatus.ON_ROUTE, 40),
            (DeliveryStatus.ACCEPTED, 10),
            (DeliveryStatus.WAITING, 50),
        ]:
            await delivery_factory(status=status, courier_id=courier_id, estimated_time=minutes)

        stats = await EarningsService(db_session).get_delivery_stats(courier_id)

        assert stats.deliveries_count == 5
        assert stats.acceptance_rate == pytest.approx(0.8)
        assert stats.cancellation_rate == pytest.approx(0.2)
        assert stats.average_wait_minutes == pytest.approx(30.0)

    @pytest.mark.integration
    async def test_delivery_stats_without_deliveries(self, db_session, approved_courier):
        stats = await EarningsService(db_session).get_delivery_stats(approved_courier.id)

        assert stats.deliveries_count == 0
        assert stats.acceptance_rate == 0.0
        assert stats.cancellation_rate == 0.0
        assert stats.average_wait_minutes == 0.0

    @pytest.mark.integration
    async def test_courier_metrics_periods(
        self, db_session, approved_courier, delivery_factory, withdrawal_factory
    ):
        courier_id = approved_courier.id
        # Wednesday 2026-03-18 10:00 UTC; local week began Saturday 23:00 UTC
        now = datetime(2026, 3, 18, 10, 0, tzinfo=timezone.utc)
        await delivery_factory(
            status=DeliveryStatus.DELIVERED, courier_id=courier_id,
            completed_at=datetime(2026, 3, 18, 8, 0),
        )
        await delivery_factory(
            status=DeliveryStatus.DELIVERED, courier_id=courier_id,
            completed_at=datetime(2026, 3, 16, 8, 0),
        )
        await delivery_factory(
            status=DeliveryStatus.DELIVERED, courier_id=courier_id,
            completed_at=datetime(2026, 3, 10, 8, 0),
            total_amount="100.00",
        )
        await withdrawal_factory(courier_id, "10", WithdrawalStatus.PENDING)

        metrics = await EarningsService(db_session).courier_metrics(courier_id, now=now)

        assert metrics.earnings.today == Decimal("6.174")
        assert metrics.earnings.week == Decimal("12.348")
        # 13.5 * 0.98 = 13.23 for the 100.00 order
        assert metrics.earnings.total == Decimal("25.578")
        assert metrics.earnings.pending_withdrawals == Decimal("10")
        assert metrics.earnings.available_balance == Decimal("15.578")
        assert metrics.earnings.rules == CourierRules.defaults()
        assert len(metrics.payouts) == 3
        assert metrics.stats.deliveries_count == 3
