from typing import Any, Optional


class AppException(Exception):
    """Base exception for all application-specific errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Any] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
            details=details,
        )


class ValidationException(AppException):
    """Exception raised when validation fails."""

    def __init__(self, message: str = "Validation failed", details: Optional[Any] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedException(AppException):
    """Exception raised when authentication or authorization fails."""

    def __init__(self, message: str = "Unauthorized access", details: Optional[Any] = None):
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
            details=details,
        )


class InvalidTransition(AppException):
    """Order or payment status change not reachable from the current state."""

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        super().__init__(
            code="INVALID_TRANSITION",
            message=message or f"Invalid status transition from {current} to {target}",
            status_code=409,
            details={"current": current, "target": target},
        )


class InsufficientStock(AppException):
    """Requested quantity exceeds the available stock."""

    def __init__(self, item_name: str, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            code="INSUFFICIENT_STOCK",
            message=f"Insufficient stock for {item_name}. Requested: {requested}, available: {available}",
            status_code=409,
            details={"item": item_name, "requested": requested, "available": available},
        )


class QuotaExceeded(AppException):
    """Tenant plan limit reached for a resource."""

    def __init__(self, message: str, resource: str, current: int, limit: int):
        self.current = current
        self.limit = limit
        super().__init__(
            code="QUOTA_EXCEEDED",
            message=message,
            status_code=403,
            details={"resource": resource, "current": current, "limit": limit},
        )


class NoActivePlan(AppException):
    """Tenant has no active subscription plan."""

    def __init__(self, message: str = "No active subscription plan"):
        super().__init__(
            code="NO_ACTIVE_PLAN",
            message=message,
            status_code=403,
        )


class RefundFailed(AppException):
    """Payment provider could not confirm a refund; the refund must be retried."""

    def __init__(self, order_number: str, reason: str):
        super().__init__(
            code="REFUND_FAILED",
            message=f"Refund for order {order_number} failed: {reason}",
            status_code=502,
            details={"order_number": order_number, "reason": reason},
        )


class PersistenceConflict(AppException):
    """A concurrent write was detected; the whole operation can be retried."""

    def __init__(self, message: str = "Concurrent update detected, please retry", details: Optional[Any] = None):
        super().__init__(
            code="PERSISTENCE_CONFLICT",
            message=message,
            status_code=409,
            details=details,
        )


class InvalidCoupon(ValidationException):
    """Coupon code is unknown, inactive, expired or not applicable."""

    def __init__(self, code: str, reason: str):
        super().__init__(message=f"Coupon '{code}' {reason}", details={"coupon": code})
        self.code = "INVALID_COUPON"
