"""
Database Models
"""
from app.db.models.user import User
from app.db.models.courier import Courier
from app.db.models.restaurant import Restaurant
from app.db.models.order import Order
from app.db.models.delivery import Delivery
from app.db.models.courier_rule import CourierRuleEntry
from app.db.models.withdrawal_request import WithdrawalRequest
from app.db.models.audit_log import AuditLog
from app.db.models.outbox_message import OutboxMessage
from app.db.models.issue_report import CourierIssueReport

__all__ = [
    "User",
    "Courier",
    "Restaurant",
    "Order",
    "Delivery",
    "CourierRuleEntry",
    "WithdrawalRequest",
    "AuditLog",
    "OutboxMessage",
    "CourierIssueReport",
]
