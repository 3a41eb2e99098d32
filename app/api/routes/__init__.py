"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.audit import router as audit_router
from app.api.routes.deliveries import router as deliveries_router
from app.api.routes.rules import router as rules_router
from app.api.routes.withdrawals import router as withdrawals_router

router = APIRouter()

# /deliveries/{delivery_id} is declared last inside deliveries_router; the
# other routers only add multi-segment paths, so order between them is free
router.include_router(withdrawals_router, prefix="/deliveries", tags=["Withdrawals"])
router.include_router(rules_router, prefix="/deliveries", tags=["Courier Rules"])
router.include_router(audit_router, prefix="/deliveries", tags=["Audit"])
router.include_router(deliveries_router, prefix="/deliveries", tags=["Deliveries"])
