"""
Order coordinator — one per open order view, plus the registry that owns them.

Lifecycle of a view:
    open()   fetch (RetryController) -> mailbox.load -> channel.subscribe -> poller.start
    retry()  manual re-fetch; on success the channel and poller are (re)started
    close()  leave room + disconnect -> stop poller -> abandon checkout -> stop mailbox

Every writer (initial fetch, poll, push, optimistic cancel, payment
verification) goes through the view's SnapshotMailbox.

The registry listens on SessionState: an unauthorized signal closes every
open view.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from domain.enums import ChannelState, OrderKind
from domain.errors import OrderFlowError, ViewNotFoundError, WorkflowStateError
from models import Order
from services.background_poller import BackgroundPoller
from services.cancellation_workflow import CancellationWorkflow
from services.order_actions import OrderActionsFacade, write_receipt
from services.order_api import OrderApiClient
from services.order_view import build_order_view
from services.payment_bridge import PaymentGatewayBridge
from services.payment_provider import PaymentProvider, RazorpayProvider
from services.realtime_channel import ChannelTransport, RealtimeSyncChannel, SocketIOTransport
from services.retry_controller import RetryController
from services.session_state import SessionState
from services.snapshot_store import OrderSnapshotStore, SnapshotMailbox
from services.sync_metrics import SyncMetrics

logger = logging.getLogger(__name__)


class OrderCoordinator:
    """Owns the snapshot and every component attached to one order view."""

    def __init__(
        self,
        order_id: str,
        kind: OrderKind = OrderKind.STANDARD,
        *,
        api: OrderApiClient,
        provider: PaymentProvider,
        transport_factory: Callable[[], ChannelTransport],
        poll_interval_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        printer: Callable[[Path, str], None] = write_receipt,
        opener: Optional[Callable[[str], object]] = None,
    ):
        self.order_id = order_id
        self.kind = kind
        self._api = api
        self.metrics = SyncMetrics()
        self.store = OrderSnapshotStore(metrics=self.metrics)
        self.mailbox = SnapshotMailbox(self.store)
        self.retry_controller: RetryController[Order] = RetryController(self._fetch_and_load)
        self.channel = RealtimeSyncChannel(transport_factory, on_update=self.mailbox.merge, metrics=self.metrics)
        self.poller = BackgroundPoller(
            current=self.snapshot,
            refresh=self._fetch_and_load,
            interval_seconds=poll_interval_seconds,
            metrics=self.metrics,
            sleep=sleep,
        )
        action_kwargs: dict[str, Any] = {"printer": printer}
        if opener is not None:
            action_kwargs["opener"] = opener
        self.actions = OrderActionsFacade(api=api, mailbox=self.mailbox, **action_kwargs)
        self.cancellation = CancellationWorkflow(current=self.snapshot, actions=self.actions)
        self.payment = PaymentGatewayBridge(api=api, provider=provider, mailbox=self.mailbox, current=self.snapshot)
        self.closed = False

    def snapshot(self) -> Optional[Order]:
        return self.store.snapshot

    def require_snapshot(self) -> Order:
        order = self.store.snapshot
        if order is None:
            if self.retry_controller.last_error is not None:
                raise self.retry_controller.last_error
            raise WorkflowStateError("Order not loaded yet")
        return order

    async def _fetch_and_load(self) -> Order:
        try:
            order = await self._api.fetch_order(self.order_id, self.kind)
        except OrderFlowError:
            self.metrics.record_fetch(ok=False)
            raise
        self.metrics.record_fetch(ok=True)
        return await self.mailbox.load(order)

    # ── Lifecycle ───────────────────────────────────────────────────

    async def open(self) -> Order:
        """
        First load, then live updates.

        A failed fetch leaves the view open so retry() can be used; the
        error is re-raised to the caller.
        """
        if self.closed:
            raise WorkflowStateError("View already closed")
        self.mailbox.start()
        order = await self.retry_controller.fetch()
        await self._start_sync()
        return order

    async def retry(self) -> Order:
        """Manual re-fetch, capped by the RetryController."""
        if self.closed:
            raise WorkflowStateError("View already closed")
        order = await self.retry_controller.retry()
        await self._start_sync()
        return order

    async def _start_sync(self) -> None:
        if self.channel.state == ChannelState.DISCONNECTED:
            subscribed = await self.channel.subscribe(self.order_id)
            if not subscribed:
                logger.warning(f"Order {self.order_id}: realtime unavailable, relying on polling")
        self.poller.start()

    async def close(self) -> None:
        """Tear everything down. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        await self.channel.unsubscribe()
        await self.poller.stop()
        if self.payment.checkout is not None and not self.payment.checkout.settled:
            self.payment.checkout.abandon()
        await self.mailbox.stop()
        logger.info(f"Order view {self.order_id} closed")

    # ── Read side ───────────────────────────────────────────────────

    def view(self) -> dict:
        return build_order_view(self.require_snapshot())

    def status(self) -> dict:
        return {
            "orderId": self.order_id,
            "kind": self.kind.value,
            "loaded": self.store.snapshot is not None,
            "channel": self.channel.state.value,
            "polling": self.poller.running,
            "pollIntervalSeconds": self.poller.interval_seconds,
            "retry": self.retry_controller.to_dict(),
            "payment": self.payment.to_dict(),
            "cancellation": self.cancellation.to_dict(),
            "actions": self.actions.to_dict(),
            "metrics": self.metrics.to_dict(),
        }


# ════════════════════════════════════════════════════════════════════
# Registry: open views keyed by order id
# ════════════════════════════════════════════════════════════════════


class OrderViewRegistry:
    """All open order views for the current session."""

    def __init__(
        self,
        session: SessionState,
        *,
        api: OrderApiClient | None = None,
        provider: PaymentProvider | None = None,
        transport_factory: Callable[[], ChannelTransport] | None = None,
        **coordinator_kwargs: Any,
    ):
        self._session = session
        self._api = api or OrderApiClient(session)
        self._provider = provider or RazorpayProvider()
        self._transport_factory = transport_factory or (lambda: SocketIOTransport(session))
        self._coordinator_kwargs = coordinator_kwargs
        self._views: dict[str, OrderCoordinator] = {}
        self._pending_closes: set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.watch_session()

    def watch_session(self) -> None:
        """(Re)register for the session's unauthorized signal."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = self._session.on_unauthorized(self._on_unauthorized)

    def _on_unauthorized(self) -> None:
        logger.warning(f"Session unauthorized: closing {len(self._views)} order view(s)")
        task = asyncio.get_running_loop().create_task(self.close_all())
        self._pending_closes.add(task)
        task.add_done_callback(self._pending_closes.discard)

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._views

    def __len__(self) -> int:
        return len(self._views)

    def get(self, order_id: str) -> OrderCoordinator:
        coordinator = self._views.get(order_id)
        if coordinator is None:
            raise ViewNotFoundError(order_id)
        return coordinator

    async def open(
        self,
        order_id: str,
        kind: OrderKind = OrderKind.STANDARD,
        previous: str | None = None,
    ) -> OrderCoordinator:
        """
        Open a view for `order_id`, closing `previous` first when given.

        Re-opening an id that is already open returns the existing view.
        """
        if previous and previous != order_id and previous in self._views:
            await self.close(previous)
        existing = self._views.get(order_id)
        if existing is not None:
            if existing.kind == kind:
                return existing
            await self.close(order_id)

        coordinator = OrderCoordinator(
            order_id,
            kind,
            api=self._api,
            provider=self._provider,
            transport_factory=self._transport_factory,
            **self._coordinator_kwargs,
        )
        self._views[order_id] = coordinator
        await coordinator.open()
        return coordinator

    async def close(self, order_id: str) -> None:
        coordinator = self._views.pop(order_id, None)
        if coordinator is None:
            raise ViewNotFoundError(order_id)
        await coordinator.close()

    async def close_all(self) -> None:
        views, self._views = list(self._views.values()), {}
        for coordinator in views:
            await coordinator.close()

    async def aclose(self) -> None:
        """App shutdown: close views, drop the session listener, close HTTP."""
        await self.close_all()
        if self._pending_closes:
            await asyncio.gather(*self._pending_closes, return_exceptions=True)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self._api.aclose()


# Singleton registry instance (created in the app lifespan)
_registry: OrderViewRegistry | None = None


def get_registry() -> OrderViewRegistry:
    if _registry is None:
        raise WorkflowStateError("Order view registry not initialized")
    return _registry


def set_registry(registry: OrderViewRegistry | None) -> None:
    global _registry
    _registry = registry


def has_registry() -> bool:
    return _registry is not None
