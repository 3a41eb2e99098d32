"""
Custom Exception Hierarchy

Every rejection raised by the domain services is an ``AppException`` carrying
an error code, an HTTP status and structured details. The API layer renders
them through ``app_exception_handler``.
"""
from decimal import Decimal
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    CONFLICT = "ERR_1003"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"

    # Delivery errors (2xxx)
    DELIVERY_NOT_FOUND = "ERR_2001"
    DELIVERY_ALREADY_ACCEPTED = "ERR_2002"
    DELIVERY_INVALID_TRANSITION = "ERR_2003"
    DELIVERY_NOT_ASSIGNED = "ERR_2004"
    DELIVERY_ALREADY_ACTIVE = "ERR_2005"
    ORDER_NOT_FOUND = "ERR_2006"

    # Courier errors (3xxx)
    COURIER_NOT_FOUND = "ERR_3001"
    COURIER_NOT_APPROVED = "ERR_3002"

    # Withdrawal / balance errors (4xxx)
    WITHDRAWAL_NOT_FOUND = "ERR_4001"
    INSUFFICIENT_BALANCE = "ERR_4002"
    INVALID_AMOUNT = "ERR_4003"
    BELOW_MINIMUM_WITHDRAWAL = "ERR_4004"
    WITHDRAWAL_INVALID_TRANSITION = "ERR_4005"

    # External service errors (5xxx)
    NOTIFICATION_GATEWAY_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # Configuration errors (6xxx)
    INVALID_RULE_VALUE = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


# ==================== Categories ====================


class ValidationException(AppException):
    """Malformed or missing input, rejected before any state change"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class AuthorizationException(AppException):
    """Caller may not perform this action (role, approval, ownership)"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.FORBIDDEN,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=403,
            details=details
        )


class ConflictException(AppException):
    """The resource moved on; the caller should refresh and retry"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFLICT,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )


class BalanceException(AppException):
    """Withdrawal amount cannot be covered; user-correctable"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        courier_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if courier_id:
            self.details["courier_id"] = courier_id


# ==================== Deliveries ====================


class DeliveryNotFoundError(NotFoundException):
    """Raised when delivery is not found"""

    def __init__(self, delivery_id: int):
        super().__init__("Delivery", delivery_id, ErrorCode.DELIVERY_NOT_FOUND)


class OrderNotFoundError(NotFoundException):
    """Raised when the order a delivery refers to does not exist"""

    def __init__(self, order_id: int):
        super().__init__("Order", order_id, ErrorCode.ORDER_NOT_FOUND)


class DeliveryAlreadyAcceptedError(ConflictException):
    """Another courier won the conditional accept"""

    def __init__(self, delivery_id: int, current_status: str):
        super().__init__(
            message=f"Delivery {delivery_id} has already been accepted",
            error_code=ErrorCode.DELIVERY_ALREADY_ACCEPTED,
            details={"delivery_id": delivery_id, "current_status": current_status}
        )


class InvalidDeliveryTransitionError(ConflictException):
    """Requested status is not the immediate successor of the current one"""

    def __init__(self, delivery_id: int, current_status: str, target_status: str):
        super().__init__(
            message=f"Delivery {delivery_id} cannot move from '{current_status}' to '{target_status}'",
            error_code=ErrorCode.DELIVERY_INVALID_TRANSITION,
            details={
                "delivery_id": delivery_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


class ActiveDeliveryExistsError(ConflictException):
    """An order already has a delivery that is not finished"""

    def __init__(self, order_id: int, delivery_id: int):
        super().__init__(
            message=f"Order {order_id} already has an active delivery",
            error_code=ErrorCode.DELIVERY_ALREADY_ACTIVE,
            details={"order_id": order_id, "delivery_id": delivery_id}
        )


class DeliveryNotAssignedError(AuthorizationException):
    """Courier acts on a delivery assigned to someone else"""

    def __init__(self, delivery_id: int, courier_id: int):
        super().__init__(
            message=f"Delivery {delivery_id} is not assigned to courier {courier_id}",
            error_code=ErrorCode.DELIVERY_NOT_ASSIGNED,
            details={"delivery_id": delivery_id, "courier_id": courier_id}
        )


# ==================== Couriers ====================


class CourierNotFoundError(NotFoundException):
    """Raised when the courier profile does not exist"""

    def __init__(self, identifier: int):
        super().__init__("Courier", identifier, ErrorCode.COURIER_NOT_FOUND)


class CourierNotApprovedError(AuthorizationException):
    """Unapproved couriers may not accept, advance or withdraw"""

    def __init__(self, courier_id: int):
        super().__init__(
            message=f"Courier {courier_id} is not approved",
            error_code=ErrorCode.COURIER_NOT_APPROVED,
            details={"courier_id": courier_id}
        )


# ==================== Withdrawals ====================


class WithdrawalNotFoundError(NotFoundException):
    """Raised when a withdrawal request is not found"""

    def __init__(self, request_id: int):
        super().__init__("Withdrawal request", request_id, ErrorCode.WITHDRAWAL_NOT_FOUND)


class InvalidAmountError(ValidationException):
    """Amount is missing, not a number, or not positive"""

    def __init__(self, amount: Any):
        super().__init__(
            message="Amount must be a positive number",
            field="amount",
            error_code=ErrorCode.INVALID_AMOUNT,
            details={"amount": str(amount)}
        )


class WithdrawalBelowMinimumError(BalanceException):
    """Requested amount is below the configured minimum"""

    def __init__(self, courier_id: int, amount: Decimal, minimum: Decimal):
        super().__init__(
            message=f"Minimum withdrawal amount is {minimum:.2f}",
            error_code=ErrorCode.BELOW_MINIMUM_WITHDRAWAL,
            courier_id=courier_id,
            details={"amount": float(amount), "min_withdrawal_amount": float(minimum)}
        )


class InsufficientBalanceError(BalanceException):
    """Requested amount exceeds the available balance"""

    def __init__(self, courier_id: int, amount: Decimal, available_balance: Decimal):
        super().__init__(
            message=f"Insufficient balance. Available: {available_balance:.2f}",
            error_code=ErrorCode.INSUFFICIENT_BALANCE,
            courier_id=courier_id,
            details={"amount": float(amount), "available_balance": float(available_balance)}
        )


class InvalidWithdrawalTransitionError(ConflictException):
    """Withdrawal status edge not allowed (or request already terminal)"""

    def __init__(self, request_id: int, current_status: str, target_status: str):
        super().__init__(
            message=f"Withdrawal request {request_id} cannot move from '{current_status}' to '{target_status}'",
            error_code=ErrorCode.WITHDRAWAL_INVALID_TRANSITION,
            details={
                "request_id": request_id,
                "current_status": current_status,
                "target_status": target_status,
            }
        )


# ==================== Rules ====================


class InvalidRuleValueError(ValidationException):
    """Courier rule value outside its allowed range"""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid value for {key}: {reason}",
            field=key,
            error_code=ErrorCode.INVALID_RULE_VALUE,
            details={"value": str(value)}
        )


# ==================== External services ====================


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class NotificationGatewayError(ExternalServiceException):
    """Raised when the notification gateway rejects or fails a send"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="notification_gateway",
            message=f"Notification gateway error: {message}",
            error_code=ErrorCode.NOTIFICATION_GATEWAY_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "NotificationGatewayError":
        """Build the error from an httpx response, truncating the body for logs"""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )
