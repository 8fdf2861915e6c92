"""
Cancellation endpoints — drive the confirm / reason / submit workflow.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from deps import current_view
from domain.responses import success_response
from services.order_coordinator import OrderCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/views/{order_id}/cancellation", tags=["cancellation"])


class CancellationFormRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=64)
    comment: Optional[str] = Field(default=None, max_length=1000)


def _state(coordinator: OrderCoordinator) -> dict:
    return {
        "cancellation": coordinator.cancellation.to_dict(),
        "order": coordinator.view(),
    }


@router.post("/request")
async def request_cancellation(coordinator: OrderCoordinator = Depends(current_view)):
    coordinator.cancellation.request()
    return success_response(_state(coordinator))


@router.post("/confirm")
async def confirm_cancellation(coordinator: OrderCoordinator = Depends(current_view)):
    coordinator.cancellation.confirm()
    return success_response(_state(coordinator))


@router.post("/dismiss")
async def dismiss_cancellation(coordinator: OrderCoordinator = Depends(current_view)):
    coordinator.cancellation.dismiss()
    return success_response(_state(coordinator))


@router.put("/form")
async def update_cancellation_form(
    request: CancellationFormRequest,
    coordinator: OrderCoordinator = Depends(current_view),
):
    """Reason / comment edits; each edit clears the previous validation error."""
    if request.reason is not None:
        coordinator.cancellation.set_reason(request.reason)
    if request.comment is not None:
        coordinator.cancellation.set_comment(request.comment)
    return success_response(_state(coordinator))


@router.post("/submit")
async def submit_cancellation(coordinator: OrderCoordinator = Depends(current_view)):
    await coordinator.cancellation.submit()
    return success_response(_state(coordinator))
