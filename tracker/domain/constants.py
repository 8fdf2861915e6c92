"""
Domain constants used across services/routers.
"""

from domain.enums import OrderStatus

# Statuses from which no further transition is permitted
ABSORBING_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Happy-path ordering, used for regression warnings only
STATUS_RANK = {
    OrderStatus.CONFIRMED: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 2,
    OrderStatus.OUT_FOR_DELIVERY: 3,
    OrderStatus.DELIVERED: 4,
}

# Wire statuses that are not part of the canonical set
STATUS_ALIASES = {
    "pending": OrderStatus.CONFIRMED,
    "approved": OrderStatus.PROCESSING,
    "in_production": OrderStatus.PROCESSING,
    "rejected": OrderStatus.CANCELLED,
}

# Realtime channel events (Socket.IO, per-order rooms)
EVENT_JOIN = "joinOrderRoom"
EVENT_LEAVE = "leaveOrderRoom"
EVENT_STATUS_UPDATE = "orderStatusUpdate"

# Gateway checkout events
GATEWAY_EVENT_FAILED = "payment.failed"

# Cancellation form
MIN_COMMENT_LENGTH = 5
CANCELLATION_REASONS = {
    "changed_mind": "Changed my mind",
    "ordered_by_mistake": "Ordered by mistake",
    "better_price": "Found a better price elsewhere",
    "delivery_too_slow": "Delivery is taking too long",
    "wrong_item": "Wrong product or model selected",
    "other": "Other",
}

# Marker stored on the snapshot while an optimistic cancel awaits the server
PENDING_CANCEL = "cancel"
