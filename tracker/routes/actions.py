"""
Order action endpoints — print receipt, chat with support.
"""
import logging

from fastapi import APIRouter, Depends

from deps import current_view
from domain.responses import success_response
from services.order_coordinator import OrderCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/views/{order_id}/actions", tags=["actions"])


@router.post("/print")
async def print_receipt(coordinator: OrderCoordinator = Depends(current_view)):
    order = coordinator.require_snapshot()
    printed = await coordinator.actions.print_receipt(order)
    return success_response({"printed": printed})


@router.post("/chat")
async def chat_with_support(coordinator: OrderCoordinator = Depends(current_view)):
    opened = await coordinator.actions.chat_with_support(coordinator.order_id)
    return success_response({"opened": opened, "url": coordinator.actions.support_link(coordinator.order_id)})
