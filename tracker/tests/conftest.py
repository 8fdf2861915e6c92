"""
Pytest configuration and shared fixtures for the order tracker tests.

Provides fakes for the order API, the realtime transport and the payment
provider, plus wire-shaped order payloads.
"""
import os, sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import asyncio
from typing import Any, Optional

import pytest
import pytest_asyncio

from domain.enums import OrderKind
from domain.errors import CancellationError, IntentCreationError, VerificationError
from models import GatewayProof, Order, PaymentIntent, parse_order
from services.payment_provider import PaymentProvider
from services.snapshot_store import OrderSnapshotStore, SnapshotMailbox
from services.sync_metrics import SyncMetrics

# ── Test Data ────────────────────────────────────────────────────────

ORDER_ID = "A1"
GATEWAY_ORDER_ID = "order_GW123"

SHIPPING_ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postalCode": "560001",
    "country": "India",
}


def order_payload(order_id: str = ORDER_ID, status: str = "confirmed", **overrides: Any) -> dict:
    """An order record shaped like the backend's response."""
    data = {
        "_id": order_id,
        "status": status,
        "payment": {"method": "razorpay", "status": "pending"},
        "items": [
            {
                "productId": "prod-1",
                "variantId": "var-1",
                "quantity": 2,
                "price": 499.0,
                "title": "Clear Case",
                "brand": "Copad",
                "model": "iPhone 15",
                "color": "Black",
            }
        ],
        "total": 998.0,
        "shippingAddress": dict(SHIPPING_ADDRESS),
        "createdAt": "2026-10-01T10:00:00Z",
        "notes": "Leave at the door",
        "trackingNumber": None,
    }
    data.update(overrides)
    return data


def make_order(order_id: str = ORDER_ID, status: str = "confirmed", kind: OrderKind = OrderKind.STANDARD, **overrides) -> Order:
    return parse_order(order_payload(order_id, status, **overrides), kind)


def gateway_success(gateway_order_id: str = GATEWAY_ORDER_ID) -> dict:
    return {
        "razorpay_order_id": gateway_order_id,
        "razorpay_payment_id": "pay_001",
        "razorpay_signature": "sig_abc",
    }


# ── Fakes ────────────────────────────────────────────────────────────


class FakeApi:
    """Stands in for OrderApiClient. Queue results/errors per call."""

    def __init__(self, order: Optional[Order] = None):
        self.order = order or make_order()
        self.fetch_queue: list[Any] = []
        self.cancel_error: Optional[Exception] = None
        self.cancel_result: Optional[Order] = None
        self.cancel_gate: Optional[asyncio.Event] = None
        self.intent_error: Optional[Exception] = None
        self.verify_queue: list[Any] = []
        self.fetch_calls: list[tuple[str, OrderKind]] = []
        self.cancel_calls: list[tuple[str, str]] = []
        self.intent_calls: list[str] = []
        self.verify_calls: list[tuple[str, str, str]] = []
        self.closed = False

    async def fetch_order(self, order_id: str, kind: OrderKind = OrderKind.STANDARD) -> Order:
        self.fetch_calls.append((order_id, kind))
        if self.fetch_queue:
            result = self.fetch_queue.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return self.order

    async def cancel_order(self, order_id: str, reason: str, kind: OrderKind = OrderKind.STANDARD):
        self.cancel_calls.append((order_id, reason))
        if self.cancel_gate is not None:
            await self.cancel_gate.wait()
        if self.cancel_error is not None:
            raise self.cancel_error
        return self.cancel_result

    async def create_payment_intent(self, order_id: str, kind: OrderKind = OrderKind.STANDARD) -> PaymentIntent:
        self.intent_calls.append(order_id)
        if self.intent_error is not None:
            raise self.intent_error
        return PaymentIntent(gateway_order_id=GATEWAY_ORDER_ID, amount=99800, currency="INR", key_id="rzp_test_key")

    async def verify_payment(self, proof: GatewayProof, order_id: str, kind: OrderKind = OrderKind.STANDARD):
        self.verify_calls.append((order_id, proof.gateway_order_id, proof.payment_id))
        if self.verify_queue:
            result = self.verify_queue.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return None

    async def aclose(self) -> None:
        self.closed = True


class FakeTransport:
    """In-memory ChannelTransport; records every call in `log`."""

    def __init__(self, fail_connect: bool = False):
        self.fail_connect = fail_connect
        self.connected = False
        self.handlers: dict[str, Any] = {}
        self.log: list[tuple] = []

    def on(self, event: str, handler) -> None:
        self.handlers[event] = handler

    async def connect(self) -> None:
        if self.fail_connect:
            raise ConnectionError("connection refused")
        self.connected = True
        self.log.append(("connect",))

    async def emit(self, event: str, data: Any) -> None:
        if not self.connected:
            raise ConnectionError("not connected")
        self.log.append(("emit", event, data))

    async def disconnect(self) -> None:
        self.connected = False
        self.log.append(("disconnect",))

    async def push(self, event: str, data: Any) -> None:
        """Deliver a server event to the registered handler."""
        await self.handlers[event](data)

    async def drop(self) -> None:
        self.connected = False
        await self.handlers["disconnect"]()


class TransportPool:
    """transport_factory that keeps every transport it built."""

    def __init__(self):
        self.created: list[FakeTransport] = []
        self.fail_connect = False

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(fail_connect=self.fail_connect)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class FakeProvider(PaymentProvider):
    """PaymentProvider without a network: load() only counts."""

    name = "fake"
    script_url = "https://cdn.test/checkout.js"

    def __init__(self, fail_load: bool = False):
        self.fail_load = fail_load
        self.loads = 0

    async def load(self) -> None:
        self.loads += 1
        if self.fail_load:
            raise ConnectionError("script blocked")

    def build_options(self, intent, order, *, handler, prefill=None, notes=None):
        return {
            "key": intent.key_id,
            "amount": intent.amount,
            "currency": intent.currency,
            "order_id": intent.gateway_order_id,
            "prefill": prefill or {},
            "notes": {"orderId": order.id, **(notes or {})},
            "theme": {"color": "#000000"},
            "handler": handler,
        }


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def transports() -> TransportPool:
    return TransportPool()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> OrderSnapshotStore:
    return OrderSnapshotStore(metrics=SyncMetrics())


@pytest_asyncio.fixture
async def mailbox(store: OrderSnapshotStore):
    """Running mailbox over a fresh store."""
    box = SnapshotMailbox(store)
    box.start()
    yield box
    await box.stop()


@pytest_asyncio.fixture
async def loaded_mailbox(mailbox: SnapshotMailbox, fake_api: FakeApi):
    """Mailbox whose store already holds the fake API's order."""
    await mailbox.load(fake_api.order)
    return mailbox


# Shared error instances for readability in tests
def cancel_rejected(order_id: str = ORDER_ID) -> CancellationError:
    return CancellationError(order_id, "Order already shipped")


def intent_rejected(order_id: str = ORDER_ID) -> IntentCreationError:
    return IntentCreationError(order_id, "Order already paid")


def verify_rejected(order_id: str = ORDER_ID) -> VerificationError:
    return VerificationError(order_id, GATEWAY_ORDER_ID, "Invalid signature")
