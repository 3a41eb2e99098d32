"""
Tests for courier issue reports
"""
import pytest
from sqlalchemy import select

from app.core.exceptions import (
    CourierNotFoundError,
    DeliveryNotAssignedError,
    DeliveryNotFoundError,
    ValidationException,
)
from app.db.models.audit_log import AuditActionType, AuditLog
from app.db.models.delivery import DeliveryStatus
from app.db.models.issue_report import CourierIssueReport, IssueType
from app.db.models.outbox_message import BROADCAST_ADMINS, OutboxMessage
from app.domain.services.support_service import MAX_MESSAGE_LENGTH, SupportService


class TestReportIssue:

    @pytest.mark.integration
    async def test_report_is_stored_and_forwarded(self, db_session, approved_courier, delivery_factory):
        courier_id, user_id = approved_courier.id, approved_courier.user_id
        delivery = await delivery_factory(status=DeliveryStatus.PICKED_UP, courier_id=courier_id)

        report = await SupportService(db_session).report_issue(
            courier_id, "CUSTOMER", "  Nobody answers at the door  ", delivery_id=delivery.id
        )

        assert report.issue_type == IssueType.CUSTOMER
        assert report.message == "Nobody answers at the door"
        assert report.delivery_id == delivery.id

        outbox = (await db_session.execute(select(OutboxMessage))).scalar_one()
        assert outbox.recipient == BROADCAST_ADMINS
        assert outbox.message_type == "courier_issue_report"
        assert outbox.message_content["report_id"] == report.id

        audit = (await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditActionType.ISSUE_REPORTED)
        )).scalar_one()
        assert audit.actor_user_id == user_id

    @pytest.mark.integration
    async def test_report_without_delivery(self, db_session, approved_courier):
        report = await SupportService(db_session).report_issue(
            approved_courier.id, IssueType.VEHICLE, "Flat tyre"
        )
        assert report.delivery_id is None

    @pytest.mark.integration
    async def test_unknown_issue_type(self, db_session, approved_courier):
        with pytest.raises(ValidationException) as exc_info:
            await SupportService(db_session).report_issue(approved_courier.id, "WEATHER", "Rain")
        assert exc_info.value.details["field"] == "issue_type"

    @pytest.mark.integration
    @pytest.mark.parametrize("message", ["", "   ", "\x00\x01"])
    async def test_empty_message(self, db_session, approved_courier, message):
        with pytest.raises(ValidationException):
            await SupportService(db_session).report_issue(approved_courier.id, "OTHER", message)

    @pytest.mark.integration
    async def test_long_message_is_truncated(self, db_session, approved_courier):
        report = await SupportService(db_session).report_issue(
            approved_courier.id, "OTHER", "x" * (MAX_MESSAGE_LENGTH + 50)
        )
        assert len(report.message) == MAX_MESSAGE_LENGTH

    @pytest.mark.integration
    async def test_unknown_courier(self, db_session):
        with pytest.raises(CourierNotFoundError):
            await SupportService(db_session).report_issue(999, "OTHER", "Lost")

    @pytest.mark.integration
    async def test_unknown_delivery(self, db_session, approved_courier):
        with pytest.raises(DeliveryNotFoundError):
            await SupportService(db_session).report_issue(
                approved_courier.id, "OTHER", "Lost", delivery_id=999
            )

    @pytest.mark.integration
    async def test_delivery_of_another_courier(
        self, db_session, approved_courier, courier_factory, delivery_factory
    ):
        other = await courier_factory()
        delivery = await delivery_factory(status=DeliveryStatus.ACCEPTED, courier_id=other.id)

        with pytest.raises(DeliveryNotAssignedError):
            await SupportService(db_session).report_issue(
                approved_courier.id, "RESTAURANT", "Closed", delivery_id=delivery.id
            )

        count = (await db_session.execute(select(CourierIssueReport))).scalars().all()
        assert count == []
