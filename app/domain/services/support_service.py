"""
Support Service - issue reports raised by couriers in the field
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    CourierNotFoundError,
    DeliveryNotAssignedError,
    DeliveryNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.core.validation import TextSanitizer
from app.db.models.audit_log import AuditActionType
from app.db.models.courier import Courier
from app.db.models.delivery import Delivery
from app.db.models.issue_report import CourierIssueReport, IssueType
from app.domain.services.audit_service import AuditService
from app.domain.services.outbox_service import OutboxService

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 2000


class SupportService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.outbox_service = OutboxService(db)

    @log_async_operation("report_issue")
    async def report_issue(
        self,
        courier_id: int,
        issue_type: IssueType | str,
        message: str,
        delivery_id: Optional[int] = None,
    ) -> CourierIssueReport:
        """Store the report and forward it to the admins.

        A report may reference one of the courier's own deliveries.
        """
        try:
            issue_type = IssueType(issue_type)
        except ValueError:
            raise ValidationException(
                f"Invalid issue type: {issue_type}",
                field="issue_type",
                details={"allowed": [t.value for t in IssueType]},
            ) from None

        text = TextSanitizer.sanitize(message or "", max_length=MAX_MESSAGE_LENGTH)
        if not text:
            raise ValidationException("Issue message is required", field="message")

        courier_result = await self.db.execute(select(Courier).where(Courier.id == courier_id))
        courier = courier_result.scalar_one_or_none()
        if not courier:
            raise CourierNotFoundError(courier_id)

        if delivery_id is not None:
            delivery_result = await self.db.execute(
                select(Delivery.courier_id).where(Delivery.id == delivery_id)
            )
            row = delivery_result.one_or_none()
            if row is None:
                raise DeliveryNotFoundError(delivery_id)
            if row.courier_id != courier_id:
                raise DeliveryNotAssignedError(delivery_id, courier_id)

        report = CourierIssueReport(
            courier_id=courier_id,
            delivery_id=delivery_id,
            issue_type=issue_type,
            message=text,
        )
        self.db.add(report)
        await self.db.flush()

        await self.outbox_service.queue_issue_report(report)
        AuditService(self.db).record(
            AuditActionType.ISSUE_REPORTED,
            entity_type="courier_issue_report",
            entity_id=report.id,
            actor_user_id=courier.user_id,
            details={"issue_type": issue_type.value, "delivery_id": delivery_id},
        )
        await self.db.commit()

        logger.info(
            "Courier issue reported",
            extra_data={
                "report_id": report.id,
                "courier_id": courier_id,
                "issue_type": issue_type.value,
            },
        )
        return report
