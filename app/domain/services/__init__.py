"""
Domain Services
"""
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.earnings_service import EarningsService
from app.domain.services.courier_rules_service import CourierRulesService
from app.domain.services.withdrawal_service import WithdrawalService
from app.domain.services.support_service import SupportService
from app.domain.services.outbox_service import OutboxService
from app.domain.services.audit_service import AuditService

__all__ = [
    "DeliveryService",
    "EarningsService",
    "CourierRulesService",
    "WithdrawalService",
    "SupportService",
    "OutboxService",
    "AuditService",
]
