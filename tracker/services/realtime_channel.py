"""
Realtime order updates over Socket.IO.

The back office emits `orderStatusUpdate` to a room per order; the client
joins with `joinOrderRoom(orderId)` and leaves with `leaveOrderRoom(orderId)`.

State: disconnected -> connecting -> subscribed -> disconnected.

Known limitation: if the transport drops, the channel goes back to
`disconnected` and does not resubscribe on its own. The background poll keeps
the snapshot fresh until the view is reopened.
"""
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

import socketio
from pydantic import ValidationError as PydanticValidationError

from config import settings
from domain.constants import EVENT_JOIN, EVENT_LEAVE, EVENT_STATUS_UPDATE
from domain.enums import ChannelState
from domain.errors import OrderFlowError
from models import StatusUpdate
from services.session_state import SessionState
from services.sync_metrics import SyncMetrics

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Awaitable[None]]


class ChannelTransport(Protocol):
    """Minimal duplex event transport. connect() raises ConnectionError on failure."""

    @property
    def connected(self) -> bool: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    async def connect(self) -> None: ...

    async def emit(self, event: str, data: Any) -> None: ...

    async def disconnect(self) -> None: ...


class SocketIOTransport:
    """ChannelTransport backed by python-socketio's asyncio client."""

    def __init__(self, session: SessionState, url: str | None = None):
        self._session = session
        self._url = url or settings.realtime_url
        # Reconnection is off: resubscription is the view's decision, not the socket's
        self._client = socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)

    @property
    def connected(self) -> bool:
        return self._client.connected

    def on(self, event: str, handler: EventHandler) -> None:
        self._client.on(event, handler)

    async def connect(self) -> None:
        try:
            await self._client.connect(
                self._url,
                headers=self._session.authorization_headers(),
                auth={"token": self._session.token} if self._session.token else None,
                wait_timeout=settings.realtime_connect_timeout_seconds,
            )
        except socketio.exceptions.ConnectionError as e:
            raise ConnectionError(f"Realtime channel unavailable: {e}") from e

    async def emit(self, event: str, data: Any) -> None:
        try:
            await self._client.emit(event, data)
        except socketio.exceptions.BadNamespaceError as e:
            raise ConnectionError(f"Realtime channel not connected: {e}") from e

    async def disconnect(self) -> None:
        await self._client.disconnect()


class RealtimeSyncChannel:
    """One per-order subscription feeding partial updates into the snapshot."""

    def __init__(
        self,
        transport_factory: Callable[[], ChannelTransport],
        on_update: Callable[[StatusUpdate], Awaitable[object]],
        metrics: SyncMetrics | None = None,
    ):
        self._transport_factory = transport_factory
        self._on_update = on_update
        self._metrics = metrics
        self._transport: Optional[ChannelTransport] = None
        self.state = ChannelState.DISCONNECTED
        self.order_id: Optional[str] = None

    async def subscribe(self, order_id: str) -> bool:
        """
        Join the room for `order_id`, leaving any previous room first.

        Returns False when the transport is unavailable; the view keeps
        working from fetches and polling.
        """
        if self.state == ChannelState.SUBSCRIBED and self.order_id == order_id:
            return True
        if self.state != ChannelState.DISCONNECTED:
            await self.unsubscribe()

        self.state = ChannelState.CONNECTING
        self.order_id = order_id
        transport = self._transport_factory()
        transport.on(EVENT_STATUS_UPDATE, self._handle_status_update)

        async def _on_drop(*args):
            await self._handle_drop(transport)

        transport.on("disconnect", _on_drop)
        self._transport = transport

        try:
            await transport.connect()
            await transport.emit(EVENT_JOIN, order_id)
        except ConnectionError as e:
            logger.warning(f"Realtime subscribe failed for order {order_id}: {e}")
            self._transport = None
            self.state = ChannelState.DISCONNECTED
            self.order_id = None
            return False

        self.state = ChannelState.SUBSCRIBED
        logger.info(f"Realtime channel joined order room {order_id}")
        return True

    async def unsubscribe(self) -> None:
        """Leave the room, then close the transport."""
        transport, order_id = self._transport, self.order_id
        was_subscribed = self.state == ChannelState.SUBSCRIBED
        self._transport = None
        self.state = ChannelState.DISCONNECTED
        self.order_id = None
        if transport is None:
            return
        if was_subscribed and order_id and transport.connected:
            try:
                await transport.emit(EVENT_LEAVE, order_id)
            except ConnectionError as e:
                logger.debug(f"Leave for order {order_id} not delivered: {e}")
        await transport.disconnect()
        logger.info(f"Realtime channel left order room {order_id}")

    async def _handle_status_update(self, data: Any) -> None:
        try:
            update = StatusUpdate.model_validate(data)
        except PydanticValidationError as e:
            logger.warning(f"Malformed status update ignored: {e.error_count()} error(s)")
            self._record(applied=False)
            return

        if self.state != ChannelState.SUBSCRIBED or update.order_id is None or update.order_id != self.order_id:
            logger.debug(f"Status update for {update.order_id} ignored (subscribed: {self.order_id})")
            self._record(applied=False)
            return

        try:
            await self._on_update(update)
        except OrderFlowError as e:
            logger.warning(f"Status update for {update.order_id} not applied: {e.message}")
            self._record(applied=False)
            return
        self._record(applied=True)

    async def _handle_drop(self, transport: ChannelTransport) -> None:
        if transport is not self._transport:
            return
        if self.state == ChannelState.SUBSCRIBED:
            logger.warning(f"Realtime transport dropped for order {self.order_id}; not resubscribing")
        self.state = ChannelState.DISCONNECTED

    def _record(self, applied: bool) -> None:
        if self._metrics:
            self._metrics.record_push(applied)
