"""
Domain exceptions for the order lifecycle coordinator.

Every error carries a user-facing message, a `retryable` flag and an HTTP
status code. The global exception handler in main.py maps them onto the
standard error envelope, so services can raise them directly.
"""
from fastapi import HTTPException, status


class OrderFlowError(HTTPException):
    """Base class for all coordinator errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: dict | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable

    def __str__(self) -> str:
        return self.message


# ── Fetch ───────────────────────────────────────────────────────────


class FetchError(OrderFlowError):
    """Order could not be fetched (502). Retry manually, up to the cap."""
    retryable = True

    def __init__(self, message: str = "Failed to load order", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class RetryLimitExceeded(FetchError):
    """Manual retry cap reached (429). Terminal until the page is reloaded."""
    retryable = False

    def __init__(self, attempts: int):
        super().__init__(
            "Maximum retry attempts reached. Please refresh the page.",
            details={"attempts": attempts},
        )
        self.status_code = status.HTTP_429_TOO_MANY_REQUESTS


class OrderNotFoundError(OrderFlowError):
    """Order does not exist or is not visible to this session (404)."""

    def __init__(self, order_id: str):
        super().__init__(
            f"Order not found: {order_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"orderId": order_id},
        )


# ── Payment ─────────────────────────────────────────────────────────


class PaymentError(OrderFlowError):
    """Base for payment-step errors. Retried by re-running the payment step only."""
    retryable = True

    def __init__(self, message: str, order_id: str, status_code: int, details: dict | None = None):
        merged = {"orderId": order_id, **(details or {})}
        super().__init__(message, status_code=status_code, details=merged)
        self.order_id = order_id


class ScriptLoadError(PaymentError):
    """Gateway client script could not be loaded (502)."""

    def __init__(self, order_id: str, message: str = "Failed to load payment gateway"):
        super().__init__(message, order_id, status.HTTP_502_BAD_GATEWAY)


class IntentCreationError(PaymentError):
    """Server refused to create a payment intent (409)."""

    def __init__(self, order_id: str, message: str = "Unable to initialize payment"):
        super().__init__(message, order_id, status.HTTP_409_CONFLICT)


class GatewayFailure(PaymentError):
    """Gateway reported failure: declined, cancelled by the buyer, timed out (402)."""

    def __init__(self, order_id: str, message: str = "Payment failed. Please try again.", details: dict | None = None):
        super().__init__(message, order_id, status.HTTP_402_PAYMENT_REQUIRED, details=details)


class VerificationError(PaymentError):
    """Server did not accept the gateway proof (402). The intent is kept for retry."""

    def __init__(self, order_id: str, gateway_order_id: str | None, message: str = "Payment verification failed"):
        super().__init__(
            message,
            order_id,
            status.HTTP_402_PAYMENT_REQUIRED,
            details={"gatewayOrderId": gateway_order_id},
        )
        self.gateway_order_id = gateway_order_id


# ── Cancellation / workflow ─────────────────────────────────────────


class ValidationError(OrderFlowError):
    """Local validation error (400). Never reaches the network."""

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)
        self.field = field
        if field:
            self.details.setdefault("field", field)


class CancellationError(OrderFlowError):
    """Server rejected the cancellation (409)."""
    retryable = True

    def __init__(self, order_id: str, message: str = "Failed to cancel order. Please try again."):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details={"orderId": order_id})
        self.order_id = order_id


class WorkflowStateError(OrderFlowError):
    """Operation not allowed in the current workflow state (409)."""

    def __init__(self, message: str, state: str | None = None):
        super().__init__(
            message,
            status_code=status.HTTP_409_CONFLICT,
            details={"state": state} if state else None,
        )


# ── Session / views ─────────────────────────────────────────────────


class UnauthorizedError(OrderFlowError):
    """Session token missing, expired or rejected upstream (401)."""

    def __init__(self, message: str = "Session expired. Please sign in again."):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED)


class ViewNotFoundError(OrderFlowError):
    """No open view for this order id (404)."""

    def __init__(self, order_id: str):
        super().__init__(
            f"No open view for order: {order_id}",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"orderId": order_id},
        )
