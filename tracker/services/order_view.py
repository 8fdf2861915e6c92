"""
Read-side helpers: the derived tracking view and the plain-text receipt.
"""
from datetime import datetime
from typing import Any, Optional

from domain.constants import ABSORBING_STATUSES
from domain.enums import OrderStatus
from models import CustomOrder, Order

TIMELINE_STEPS = (
    ("confirmed", "Order Confirmed", "Your order has been confirmed and is being prepared."),
    ("shipped", "Shipped", "Your order has been shipped and is on its way."),
    ("out_for_delivery", "Out For Delivery", "Your order is out for delivery and will arrive soon."),
    ("delivered", "Delivered", "Your order has been successfully delivered."),
)

_STEP_INDEX = {
    OrderStatus.CONFIRMED: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.SHIPPED: 1,
    OrderStatus.OUT_FOR_DELIVERY: 2,
    OrderStatus.DELIVERED: 3,
}


def current_step_index(status: OrderStatus) -> int:
    return _STEP_INDEX.get(status, 0)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _step_dates(order: Order) -> tuple[Optional[datetime], ...]:
    return (
        order.created_at,
        order.shipped_at,
        order.out_for_delivery_at,
        order.delivered_at or order.estimated_delivery,
    )


def build_order_view(order: Order) -> dict[str, Any]:
    """Everything the tracking screen renders, derived from one snapshot."""
    index = current_step_index(order.status)
    timeline = [
        {
            "key": key,
            "label": label,
            "description": description,
            "date": _iso(date),
            "completed": i <= index,
            "current": i == index,
        }
        for i, ((key, label, description), date) in enumerate(zip(TIMELINE_STEPS, _step_dates(order)))
    ]
    active = order.status not in ABSORBING_STATUSES

    view = {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "kind": order.kind.value,
        "status": order.status.value,
        "paymentStatus": order.payment_status.value,
        "timeline": timeline,
        "currentStep": index,
        "cancellable": active,
        "isActive": active,
        "showDeliveryNote": index < 2,
        "itemCount": order.item_count,
        "total": order.computed_total,
        "trackingNumber": order.tracking_number,
        "notes": order.notes,
        "estimatedDelivery": _iso(order.estimated_delivery),
        "cancellation": order.cancellation.model_dump(mode="json", by_alias=True) if order.cancellation else None,
        "pendingConfirmation": order.pending_confirmation,
        "lastUpdated": _iso(order.last_updated),
    }
    if isinstance(order, CustomOrder):
        view["designRef"] = order.design_ref
        view["itemCount"] = order.quantity
    return view


def render_receipt(order: Order) -> str:
    """Plain-text receipt for printing."""
    lines = [
        f"Order {order.order_number}",
        f"Placed: {_iso(order.created_at) or '-'}",
        f"Status: {order.status.value}",
        f"Payment: {order.payment_status.value}",
        "",
    ]
    if isinstance(order, CustomOrder):
        lines.append(f"Custom design x {order.quantity} @ {order.price:.2f}")
    for item in order.items:
        title = item.title or item.product_ref
        lines.append(f"{title} ({item.model or 'N/A'}, {item.color or 'N/A'}) x {item.quantity} @ {item.unit_price:.2f}")
    lines += ["", f"Total: {order.computed_total:.2f}"]

    address = order.shipping_address
    if address is not None:
        lines += ["", "Ship to:", address.name, address.address1]
        if address.address2:
            lines.append(address.address2)
        lines += [f"{address.city}, {address.state} {address.postal_code}", address.country, address.phone]
    if order.tracking_number:
        lines += ["", f"Tracking: {order.tracking_number}"]
    return "\n".join(lines) + "\n"
