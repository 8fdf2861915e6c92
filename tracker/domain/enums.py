"""
Domain enums for order tracking, payment and the view-level state machines.
"""

from enum import Enum


class OrderStatus(str, Enum):
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderKind(str, Enum):
    STANDARD = "standard"
    CUSTOM = "custom"


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class PaymentStep(str, Enum):
    IDLE = "idle"
    SCRIPT_LOADING = "script_loading"
    SCRIPT_READY = "script_ready"
    INTENT_CREATED = "intent_created"
    CHECKOUT_OPEN = "checkout_open"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    VERIFY_FAILED = "verify_failed"


class CancellationStep(str, Enum):
    IDLE = "idle"
    CONFIRM_SHOWN = "confirm_shown"
    REASON_FORM_SHOWN = "reason_form_shown"
    SUBMITTING = "submitting"
    DONE = "done"
    ERROR = "error"
