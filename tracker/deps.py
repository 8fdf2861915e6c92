"""
Shared FastAPI dependencies.

Routers import the session, the view registry and the per-order view from
here. Order ids in the path are validated once, before any view lookup.
"""
import re
from typing import Optional

from fastapi import Depends, Header, Path

from domain.errors import ValidationError
from services.order_coordinator import OrderCoordinator, OrderViewRegistry, get_registry
from services.session_state import SessionState, get_session_state

# Mongo ObjectIds, UUIDs and short test ids all fit
_ORDER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_order_id(order_id: str) -> str:
    """
    Validate an order id taken from the URL.

    Raises:
        ValidationError(400) if the id is empty or has unexpected characters
    """
    if not order_id:
        raise ValidationError("Order id is required", field="orderId")
    if not _ORDER_ID_PATTERN.match(order_id):
        raise ValidationError(f"Invalid order id: {order_id[:16]}", field="orderId")
    return order_id


def validated_order_id(order_id: str = Path(..., description="Order id")) -> str:
    """FastAPI dependency for validating order id path parameters."""
    return validate_order_id(order_id)


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    return parse_bearer_token(authorization)


def session_state() -> SessionState:
    return get_session_state()


def view_registry() -> OrderViewRegistry:
    return get_registry()


def current_view(
    order_id: str = Depends(validated_order_id),
    registry: OrderViewRegistry = Depends(view_registry),
) -> OrderCoordinator:
    """The open view for the path's order id (404 if none)."""
    return registry.get(order_id)
