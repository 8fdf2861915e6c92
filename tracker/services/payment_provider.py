"""
Payment provider capability and the Razorpay implementation.

A provider does three things for the gateway bridge:
    1. load()            make the gateway's client script available (once per process)
    2. build_options()   turn a payment intent into checkout options
    3. create_checkout() build the opaque checkout object the UI opens

The checkout object mirrors the gateway SDK: it is constructed from
{key, amount, currency, order_id, prefill, notes, theme, handler}, fires
`handler` on success and the `payment.failed` event on failure, and settles
exactly once.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from config import settings
from domain.constants import GATEWAY_EVENT_FAILED
from domain.enums import OrderKind
from domain.errors import WorkflowStateError
from models import Order, PaymentIntent

logger = logging.getLogger(__name__)

CheckoutCallback = Callable[[dict], Awaitable[Any]]


class CheckoutSession:
    """One opened checkout. Settles once: success handler or failure event."""

    def __init__(self, options: dict[str, Any]):
        self._handler: Optional[CheckoutCallback] = options.get("handler")
        self.options = {k: v for k, v in options.items() if k != "handler"}
        self._events: dict[str, CheckoutCallback] = {}
        self.opened = False
        self.settled = False

    @property
    def gateway_order_id(self) -> Optional[str]:
        return self.options.get("order_id")

    def on(self, event: str, callback: CheckoutCallback) -> None:
        self._events[event] = callback

    def open(self) -> dict[str, Any]:
        """Hand the options to the UI. Returns the JSON-safe options."""
        self.opened = True
        return dict(self.options)

    def abandon(self) -> None:
        """Drop this checkout; late callbacks are refused."""
        self.settled = True

    def _settle(self) -> None:
        if not self.opened:
            raise WorkflowStateError("Checkout has not been opened")
        if self.settled:
            raise WorkflowStateError("Checkout already settled")
        self.settled = True

    async def complete(self, response: dict) -> Any:
        self._settle()
        if self._handler is None:
            return None
        return await self._handler(response)

    async def fail(self, error: dict) -> Any:
        self._settle()
        callback = self._events.get(GATEWAY_EVENT_FAILED)
        if callback is None:
            return None
        return await callback(error)


class PaymentProvider(ABC):
    """Gateway-agnostic capability used by PaymentGatewayBridge."""

    name: str = "provider"
    # Client script the UI loads before opening checkout; not a gateway option
    script_url: str | None = None

    @abstractmethod
    async def load(self) -> None:
        """Make the client script available. Raises ConnectionError on failure."""

    @abstractmethod
    def build_options(
        self,
        intent: PaymentIntent,
        order: Order,
        *,
        handler: CheckoutCallback,
        prefill: dict | None = None,
        notes: dict | None = None,
    ) -> dict[str, Any]:
        """Checkout options for this intent."""

    def create_checkout(self, options: dict[str, Any]) -> CheckoutSession:
        return CheckoutSession(options)


# ════════════════════════════════════════════════════════════════════
# Script cache: shared by every caller in the process
# ════════════════════════════════════════════════════════════════════

_script_task: Optional[asyncio.Task] = None


async def _download_script(url: str) -> str:
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        response = await client.get(url)
        response.raise_for_status()
        if not response.text.strip():
            raise httpx.HTTPError(f"Empty gateway script from {url}")
        logger.info(f"Gateway script loaded from {url} ({len(response.text)} bytes)")
        return response.text


async def load_gateway_script(url: str) -> str:
    """
    Load the gateway script at most once per process.

    Concurrent callers await the same task. A failed load is not cached, so
    the next payment attempt tries again.
    """
    global _script_task
    task = _script_task
    if task is None or (task.done() and (task.cancelled() or task.exception() is not None)):
        task = asyncio.ensure_future(_download_script(url))
        _script_task = task
    try:
        return await asyncio.shield(task)
    except httpx.HTTPError as e:
        raise ConnectionError(f"Failed to load payment gateway script: {e}") from e


def reset_script_cache() -> None:
    """Forget the cached script (tests, key rotation)."""
    global _script_task
    _script_task = None


class RazorpayProvider(PaymentProvider):
    """Razorpay Checkout."""

    name = "razorpay"

    def __init__(self, script_url: str | None = None):
        self.script_url = script_url or settings.gateway_script_url

    async def load(self) -> None:
        await load_gateway_script(self.script_url)

    def build_options(
        self,
        intent: PaymentIntent,
        order: Order,
        *,
        handler: CheckoutCallback,
        prefill: dict | None = None,
        notes: dict | None = None,
    ) -> dict[str, Any]:
        key = intent.key_id or settings.gateway_key_id
        if order.kind == OrderKind.CUSTOM:
            description = f"Custom order #{order.id}"
            order_note = {"customOrderId": order.id}
        else:
            description = f"Order #{order.id}"
            order_note = {"orderId": order.id}

        default_prefill = {}
        if order.shipping_address is not None:
            default_prefill = {
                "name": order.shipping_address.name,
                "contact": order.shipping_address.phone,
            }

        return {
            "key": key,
            "amount": intent.amount,
            "currency": intent.currency or settings.gateway_currency,
            "order_id": intent.gateway_order_id,
            "name": settings.checkout_brand_name,
            "description": description,
            "prefill": {**default_prefill, **(prefill or {})},
            "notes": {**order_note, **(notes or {})},
            "theme": {"color": settings.checkout_theme_color},
            "handler": handler,
        }
