"""
Order snapshot store and its single-writer mailbox.

OrderSnapshotStore owns the in-memory Order used for rendering. It has two
blessed entry points, load() (wholesale replace after a full fetch) and
merge() (partial update), plus the optimistic-cancel trio used by the
cancellation flow. Every entry point is synchronous and all-or-nothing:
the partial is validated first, the new snapshot is computed, then swapped in.

SnapshotMailbox serializes writers. Initial fetch, background poll, realtime
push, optimistic cancel and payment verification all post into one FIFO queue
drained by a single task, so no two updates interleave.

Merge rules:
    - Only fields present (and non-null) in the partial are applied.
    - A status already `delivered` or `cancelled` never changes via merge,
      except an optimistic (unconfirmed) cancel, which a push may overwrite.
    - Stage timestamps are set at most once.
    - `cancellation` is present iff status == cancelled.
    - Re-applying the same partial is a no-op (lastUpdated included).
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from domain.constants import ABSORBING_STATUSES, PENDING_CANCEL, STATUS_RANK
from domain.enums import OrderStatus
from domain.errors import ValidationError, WorkflowStateError
from models import TIMESTAMP_FIELDS, Cancellation, Order, StatusUpdate
from services.sync_metrics import SyncMetrics

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderSnapshotStore:
    """Last-known order record for one view."""

    def __init__(self, metrics: SyncMetrics | None = None, clock: Callable[[], datetime] = _utcnow):
        self._order: Optional[Order] = None
        self._before_optimistic: Optional[Order] = None
        self._metrics = metrics
        self._clock = clock

    @property
    def snapshot(self) -> Optional[Order]:
        return self._order

    # ── load ────────────────────────────────────────────────────────

    def load(self, order: Order) -> Order:
        """Replace the snapshot wholesale with a fetched record."""
        if self._order is not None and order.id != self._order.id:
            raise WorkflowStateError(
                f"Snapshot belongs to order {self._order.id}, refusing load of {order.id}"
            )
        self._order = order.model_copy(update={"last_updated": self._clock()})
        # A fresh server record supersedes any optimistic change in flight
        self._before_optimistic = None
        if self._metrics:
            self._metrics.record_load()
        return self._order

    # ── merge ───────────────────────────────────────────────────────

    def merge(self, partial: StatusUpdate | dict[str, Any]) -> Optional[Order]:
        """
        Apply a partial update onto the current snapshot.

        Returns the (possibly unchanged) snapshot, or None when there is no
        snapshot yet (the update is dropped; the next load carries the truth).
        """
        update = self._coerce(partial)
        current = self._order
        if current is None:
            logger.debug("Merge dropped: no snapshot loaded yet")
            return None
        if update.order_id is not None and update.order_id != current.id:
            logger.debug(f"Merge dropped: update for {update.order_id}, snapshot is {current.id}")
            return current

        changes = self._resolve_changes(current, update.changes())
        if not changes:
            return current

        changes["last_updated"] = self._clock()
        self._order = current.model_copy(update=changes)
        if self._metrics:
            self._metrics.record_merge()
        return self._order

    @staticmethod
    def _coerce(partial: StatusUpdate | dict[str, Any]) -> StatusUpdate:
        if isinstance(partial, StatusUpdate):
            return partial
        try:
            return StatusUpdate.model_validate(partial)
        except PydanticValidationError as e:
            raise ValidationError("Malformed order update", details={"errors": e.errors(include_url=False)}) from e

    def _resolve_changes(self, current: Order, incoming: dict[str, Any]) -> dict[str, Any]:
        """Filter an incoming field map down to the changes that may apply."""
        changes: dict[str, Any] = {}
        pending_cancel = current.pending_confirmation == PENDING_CANCEL

        new_status = incoming.pop("status", None)
        if new_status is not None:
            if pending_cancel:
                # Optimistic cancel not yet confirmed: the push wins
                if new_status != OrderStatus.CANCELLED:
                    logger.warning(
                        f"Order {current.id}: push status '{new_status.value}' overwrote "
                        f"unconfirmed cancellation"
                    )
                changes["pending_confirmation"] = None
                if new_status != current.status:
                    changes["status"] = new_status
            elif new_status != current.status:
                if current.status in ABSORBING_STATUSES:
                    logger.warning(
                        f"Order {current.id}: ignored status '{new_status.value}' "
                        f"after absorbing '{current.status.value}'"
                    )
                else:
                    if STATUS_RANK.get(new_status, 99) < STATUS_RANK.get(current.status, 99):
                        logger.warning(
                            f"Order {current.id}: status regressed "
                            f"'{current.status.value}' -> '{new_status.value}'"
                        )
                    changes["status"] = new_status

        for name in TIMESTAMP_FIELDS:
            value = incoming.pop(name, None)
            if value is None:
                continue
            if getattr(current, name) is None:
                changes[name] = value
            elif getattr(current, name) != value:
                logger.debug(f"Order {current.id}: {name} already set, keeping first value")

        for name, value in incoming.items():
            if getattr(current, name) != value:
                changes[name] = value

        final_status = changes.get("status", current.status)
        if final_status != OrderStatus.CANCELLED and current.cancellation is not None:
            changes["cancellation"] = None
        elif final_status == OrderStatus.CANCELLED and current.cancellation is None:
            changes["cancellation"] = Cancellation()

        return changes

    # ── optimistic cancel ───────────────────────────────────────────

    def begin_optimistic_cancel(self, reason: str, comment: str) -> Order:
        """Mark the order cancelled before the server confirms."""
        current = self._require_snapshot()
        self._before_optimistic = current
        self._order = current.model_copy(
            update={
                "status": OrderStatus.CANCELLED,
                "cancellation": Cancellation(reason=reason, comment=comment, requested_at=self._clock()),
                "pending_confirmation": PENDING_CANCEL,
                "last_updated": self._clock(),
            }
        )
        return self._order

    def confirm_optimistic(self, server_order: Optional[Order] = None) -> Order:
        """Server accepted: adopt its record, or just clear the pending marker."""
        current = self._require_snapshot()
        self._before_optimistic = None
        if server_order is not None:
            loaded = self.load(server_order)
            if loaded.status == OrderStatus.CANCELLED and loaded.cancellation is None:
                self._order = loaded.model_copy(update={"cancellation": current.cancellation or Cancellation()})
            return self._order
        if current.pending_confirmation == PENDING_CANCEL:
            self._order = current.model_copy(update={"pending_confirmation": None, "last_updated": self._clock()})
        return self._order

    def rollback_optimistic(self) -> bool:
        """
        Server rejected: restore the pre-optimistic status and cancellation.

        A no-op when a load or push already replaced the optimistic status.
        """
        current = self._require_snapshot()
        before = self._before_optimistic
        self._before_optimistic = None
        if before is None or current.pending_confirmation != PENDING_CANCEL:
            return False
        self._order = current.model_copy(
            update={
                "status": before.status,
                "cancellation": before.cancellation,
                "pending_confirmation": None,
                "last_updated": self._clock(),
            }
        )
        logger.warning(f"Order {current.id}: optimistic cancellation rolled back to '{before.status.value}'")
        return True

    def _require_snapshot(self) -> Order:
        if self._order is None:
            raise WorkflowStateError("No order loaded")
        return self._order


# ════════════════════════════════════════════════════════════════════
# Mailbox: single writer
# ════════════════════════════════════════════════════════════════════


class SnapshotMailbox:
    """FIFO queue drained by one task; every store write goes through here."""

    def __init__(self, store: OrderSnapshotStore):
        self._store = store
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    @property
    def store(self) -> OrderSnapshotStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop draining; updates still queued fail with WorkflowStateError."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            _, _, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(WorkflowStateError("Order view closed"))

    async def _run(self) -> None:
        while True:
            operation, args, future = await self._queue.get()
            try:
                result = operation(*args)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    async def _submit(self, operation: Callable, *args):
        if not self.running:
            raise WorkflowStateError("Order view is not open")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((operation, args, future))
        return await future

    async def load(self, order: Order) -> Order:
        return await self._submit(self._store.load, order)

    async def merge(self, partial: StatusUpdate | dict[str, Any]) -> Optional[Order]:
        return await self._submit(self._store.merge, partial)

    async def begin_optimistic_cancel(self, reason: str, comment: str) -> Order:
        return await self._submit(self._store.begin_optimistic_cancel, reason, comment)

    async def confirm_optimistic(self, server_order: Optional[Order] = None) -> Order:
        return await self._submit(self._store.confirm_optimistic, server_order)

    async def rollback_optimistic(self) -> bool:
        return await self._submit(self._store.rollback_optimistic)
