"""
Order view endpoints — open, read, retry and close a tracked order.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from deps import current_view, validated_order_id, view_registry
from domain.enums import OrderKind
from domain.responses import success_response
from services.order_coordinator import OrderCoordinator, OrderViewRegistry

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/views", tags=["views"])


@router.post("/{order_id}")
async def open_view(
    order_id: str = Depends(validated_order_id),
    kind: OrderKind = Query(OrderKind.STANDARD),
    previous: Optional[str] = Query(None, description="Order id of the view being replaced"),
    registry: OrderViewRegistry = Depends(view_registry),
):
    """Fetch the order, join its realtime room and start polling."""
    coordinator = await registry.open(order_id, kind, previous=previous)
    return success_response(coordinator.view(), meta={"channel": coordinator.channel.state.value})


@router.get("/{order_id}")
async def get_view(coordinator: OrderCoordinator = Depends(current_view)):
    return success_response(coordinator.view())


@router.get("/{order_id}/status")
async def get_view_status(coordinator: OrderCoordinator = Depends(current_view)):
    """Sync status: channel state, polling, retries left, metrics."""
    return success_response(coordinator.status())


@router.post("/{order_id}/retry")
async def retry_fetch(coordinator: OrderCoordinator = Depends(current_view)):
    """Manual retry after a failed load (capped)."""
    await coordinator.retry()
    return success_response(coordinator.view(), meta={"retry": coordinator.retry_controller.to_dict()})


@router.delete("/{order_id}")
async def close_view(
    order_id: str = Depends(validated_order_id),
    registry: OrderViewRegistry = Depends(view_registry),
):
    await registry.close(order_id)
    return success_response({"orderId": order_id, "closed": True})
