"""
Payment endpoints — open checkout and relay gateway callbacks.

The UI opens the gateway with the options returned by POST /payment and
forwards the gateway's `handler` payload to /payment/callback, or its
`payment.failed` payload to /payment/failed.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from deps import current_view
from domain.responses import success_response
from services.order_coordinator import OrderCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/views/{order_id}/payment", tags=["payments"])


class CheckoutRequest(BaseModel):
    prefill: Optional[dict[str, str]] = None
    notes: Optional[dict[str, str]] = None


class GatewaySuccessRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class GatewayFailureRequest(BaseModel):
    error: dict[str, Any] = Field(default_factory=dict)


@router.post("")
async def begin_payment(
    request: CheckoutRequest | None = None,
    coordinator: OrderCoordinator = Depends(current_view),
):
    request = request or CheckoutRequest()
    options = await coordinator.payment.begin(prefill=request.prefill, notes=request.notes)
    return success_response(
        options,
        meta={"payment": coordinator.payment.to_dict(), "scriptUrl": coordinator.payment.script_url},
    )


@router.post("/callback")
async def payment_callback(
    request: GatewaySuccessRequest,
    coordinator: OrderCoordinator = Depends(current_view),
):
    """Gateway success handler fired; verify with the server."""
    await coordinator.payment.complete_checkout(request.model_dump())
    return success_response({"payment": coordinator.payment.to_dict(), "order": coordinator.view()})


@router.post("/failed")
async def payment_failed(
    request: GatewayFailureRequest,
    coordinator: OrderCoordinator = Depends(current_view),
):
    await coordinator.payment.fail_checkout(request.model_dump())
    return success_response({"payment": coordinator.payment.to_dict()})


@router.post("/verify/retry")
async def retry_verification(coordinator: OrderCoordinator = Depends(current_view)):
    """Re-send the same proof for the same order."""
    await coordinator.payment.retry_verification()
    return success_response({"payment": coordinator.payment.to_dict(), "order": coordinator.view()})
