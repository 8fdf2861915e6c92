"""
Tests for OrderCoordinator and OrderViewRegistry.

Tests: open/close lifecycle, teardown order, failed first load with manual
retry, push updates through the mailbox, unauthorized session closes views,
polling survives a rejected optimistic cancel.
"""
import os, sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import asyncio

import pytest

from domain.constants import EVENT_JOIN, EVENT_LEAVE, EVENT_STATUS_UPDATE, PENDING_CANCEL
from domain.enums import ChannelState, OrderKind, OrderStatus
from domain.errors import CancellationError, FetchError, RetryLimitExceeded, ViewNotFoundError
from services.order_coordinator import OrderCoordinator, OrderViewRegistry
from services.session_state import SessionState
from conftest import FakeApi, FakeProvider, cancel_rejected, make_order


async def never(seconds: float) -> None:
    await asyncio.Event().wait()


class Ticker:
    """Fake sleep that returns only when the test calls tick()."""

    def __init__(self):
        self._ticks: asyncio.Queue = asyncio.Queue()

    async def __call__(self, seconds: float) -> None:
        await self._ticks.get()

    async def tick(self) -> None:
        self._ticks.put_nowait(None)
        for _ in range(20):
            await asyncio.sleep(0)


@pytest.fixture
def coordinator(fake_api, transports):
    return OrderCoordinator(
        "A1",
        api=fake_api,
        provider=FakeProvider(),
        transport_factory=transports,
        sleep=never,
        printer=lambda path, text: None,
    )


@pytest.fixture
def registry(fake_api, transports):
    session = SessionState()
    session.init("token-123")
    return OrderViewRegistry(
        session,
        api=fake_api,
        provider=FakeProvider(),
        transport_factory=transports,
        sleep=never,
        printer=lambda path, text: None,
    )


class TestCoordinatorLifecycle:

    @pytest.mark.asyncio
    async def test_open_fetches_subscribes_and_polls(self, coordinator, fake_api, transports):
        order = await coordinator.open()
        assert order.id == "A1"
        assert fake_api.fetch_calls == [("A1", OrderKind.STANDARD)]
        assert coordinator.channel.state == ChannelState.SUBSCRIBED
        assert transports.last.log == [("connect",), ("emit", EVENT_JOIN, "A1")]
        assert coordinator.poller.running is True
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_close_tears_down_in_order(self, coordinator, transports):
        await coordinator.open()
        await coordinator.close()
        assert transports.last.log[-2:] == [("emit", EVENT_LEAVE, "A1"), ("disconnect",)]
        assert coordinator.poller.running is False
        assert coordinator.mailbox.running is False
        # Second close is a no-op
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_delivered_order_not_polled(self, fake_api, coordinator):
        fake_api.order = make_order(status="delivered")
        await coordinator.open()
        assert coordinator.poller.running is False
        assert coordinator.view()["cancellable"] is False
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_push_update_reaches_view(self, coordinator, transports):
        await coordinator.open()
        await transports.last.push(EVENT_STATUS_UPDATE, {"orderId": "A1", "status": "shipped", "trackingNumber": "TRK1"})
        view = coordinator.view()
        assert view["status"] == "shipped"
        assert view["trackingNumber"] == "TRK1"
        assert coordinator.metrics.push_updates_applied == 1
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_realtime_outage_falls_back_to_polling(self, coordinator, transports):
        transports.fail_connect = True
        await coordinator.open()
        assert coordinator.channel.state == ChannelState.DISCONNECTED
        assert coordinator.poller.running is True
        await coordinator.close()


class TestCoordinatorRetry:

    @pytest.mark.asyncio
    async def test_failed_open_then_manual_retry(self, coordinator, fake_api, transports):
        fake_api.fetch_queue = [FetchError()]
        with pytest.raises(FetchError):
            await coordinator.open()
        assert coordinator.store.snapshot is None
        assert transports.created == []
        with pytest.raises(FetchError):
            coordinator.view()

        order = await coordinator.retry()
        assert order.status == OrderStatus.CONFIRMED
        assert coordinator.channel.state == ChannelState.SUBSCRIBED
        assert coordinator.retry_controller.attempts == 0
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_retry_cap(self, coordinator, fake_api):
        fake_api.fetch_queue = [FetchError() for _ in range(4)]
        with pytest.raises(FetchError):
            await coordinator.open()
        for _ in range(3):
            with pytest.raises(FetchError):
                await coordinator.retry()
        calls = len(fake_api.fetch_calls)
        with pytest.raises(RetryLimitExceeded):
            await coordinator.retry()
        assert len(fake_api.fetch_calls) == calls
        await coordinator.close()


class TestCoordinatorCancellation:

    @pytest.mark.asyncio
    async def test_rejected_cancel_keeps_polling(self, fake_api, transports):
        ticker = Ticker()
        coordinator = OrderCoordinator(
            "A1",
            api=fake_api,
            provider=FakeProvider(),
            transport_factory=transports,
            sleep=ticker,
            printer=lambda path, text: None,
        )
        await coordinator.open()
        fake_api.cancel_gate = asyncio.Event()
        fake_api.cancel_error = cancel_rejected()

        workflow = coordinator.cancellation
        workflow.request()
        workflow.confirm()
        workflow.set_reason("changed_mind")
        workflow.set_comment("no longer needed")
        task = asyncio.create_task(workflow.submit())
        while not fake_api.cancel_calls:
            await asyncio.sleep(0)
        assert coordinator.store.snapshot.pending_confirmation == PENDING_CANCEL

        # A poll tick lands while the server is still deciding
        await ticker.tick()
        assert coordinator.poller.running is True
        assert len(fake_api.fetch_calls) == 1

        fake_api.cancel_gate.set()
        with pytest.raises(CancellationError):
            await task
        assert coordinator.store.snapshot.status == OrderStatus.CONFIRMED

        await ticker.tick()
        assert coordinator.poller.running is True
        assert len(fake_api.fetch_calls) == 2
        await coordinator.close()


class TestRegistry:

    @pytest.mark.asyncio
    async def test_open_get_close(self, registry):
        coordinator = await registry.open("A1")
        assert registry.get("A1") is coordinator
        assert "A1" in registry
        await registry.close("A1")
        assert coordinator.closed is True
        with pytest.raises(ViewNotFoundError):
            registry.get("A1")

    @pytest.mark.asyncio
    async def test_switching_orders_closes_previous_first(self, registry, fake_api, transports):
        await registry.open("A1")
        fake_api.order = make_order(order_id="B2")
        await registry.open("B2", previous="A1")
        first, second = transports.created
        assert first.log[-2:] == [("emit", EVENT_LEAVE, "A1"), ("disconnect",)]
        assert second.log[-1] == ("emit", EVENT_JOIN, "B2")
        assert "A1" not in registry
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_unauthorized_closes_all_views(self, registry, fake_api):
        await registry.open("A1")
        fake_api.order = make_order(order_id="B2")
        await registry.open("B2")

        registry._session.mark_unauthorized()
        await asyncio.gather(*registry._pending_closes)
        assert len(registry) == 0
        await registry.aclose()
        assert fake_api.closed is True
