"""
Background refresh — re-fetches the full order every poll interval.

Runs as an asyncio task while the order is not in an absorbing status.
The status is checked before every wait, so a push or optimistic update that
lands on `delivered`/`cancelled` ends the loop at the next tick without
another fetch. While an optimistic cancel awaits the server the loop keeps
ticking without fetching, so a rollback resumes polling. Poll failures of any
kind are logged and counted; they never touch the manual RetryController.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config import settings
from domain.constants import ABSORBING_STATUSES
from domain.errors import OrderFlowError
from models import Order
from services.sync_metrics import SyncMetrics

logger = logging.getLogger(__name__)


class BackgroundPoller:
    """Periodic full re-fetch, stopped by absorbing status or by stop()."""

    def __init__(
        self,
        *,
        current: Callable[[], Optional[Order]],
        refresh: Callable[[], Awaitable[object]],
        interval_seconds: float | None = None,
        metrics: SyncMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._current = current
        self._refresh = refresh
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.poll_interval_seconds
        self._metrics = metrics
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _should_poll(self) -> bool:
        order = self._current()
        if order is None:
            return False
        # An unconfirmed optimistic cancel may still be rolled back
        if order.pending_confirmation is not None:
            return True
        return order.status not in ABSORBING_STATUSES

    def _awaiting_confirmation(self) -> bool:
        order = self._current()
        return order is not None and order.pending_confirmation is not None

    def start(self) -> bool:
        """Schedule the loop. Returns False when nothing needs polling."""
        if self.running:
            return True
        if not self._should_poll():
            logger.debug("Background poll not scheduled: order absent or in absorbing status")
            return False
        self._task = asyncio.create_task(self._loop())
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _loop(self) -> None:
        logger.info(f"Background poll started (every {self.interval_seconds}s)")
        while self._should_poll():
            await self._sleep(self.interval_seconds)
            if not self._should_poll():
                break
            if self._awaiting_confirmation():
                logger.debug("Background poll skipped: cancellation awaiting server confirmation")
                continue
            try:
                await self._refresh()
            except OrderFlowError as e:
                logger.warning(f"Background poll failed: {e.message}")
                self._record(ok=False)
                continue
            except Exception as e:
                logger.error(f"Background poll failed unexpectedly: {e}", exc_info=True)
                self._record(ok=False)
                continue
            self._record(ok=True)
        logger.info("Background poll stopped")

    def _record(self, ok: bool) -> None:
        if self._metrics:
            self._metrics.record_poll(ok=ok)
