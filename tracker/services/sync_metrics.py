"""
Per-view sync metrics: fetch/poll/push throughput and failures.

Simple in-memory counters, exposed on GET /views/{order_id}/status.
"""
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class SyncMetrics:
    """In-memory metrics for one order view."""

    fetches_total: int = 0
    fetch_errors: int = 0
    polls_total: int = 0
    poll_errors: int = 0
    push_updates_applied: int = 0
    push_updates_ignored: int = 0
    merges_total: int = 0
    loads_total: int = 0
    last_heartbeat: float = field(default_factory=time.monotonic)
    # Rolling window: push updates in the last 60 seconds
    _push_window: list[float] = field(default_factory=list)
    _window_seconds: float = 60.0

    def record_fetch(self, ok: bool) -> None:
        self.fetches_total += 1
        if not ok:
            self.fetch_errors += 1

    def record_poll(self, ok: bool) -> None:
        self.polls_total += 1
        if not ok:
            self.poll_errors += 1
        self.heartbeat()

    def record_push(self, applied: bool) -> None:
        if applied:
            self.push_updates_applied += 1
            now = time.monotonic()
            self._push_window.append(now)
            self._prune_window(now)
        else:
            self.push_updates_ignored += 1
        self.heartbeat()

    def record_merge(self) -> None:
        self.merges_total += 1

    def record_load(self) -> None:
        self.loads_total += 1

    def heartbeat(self) -> None:
        self.last_heartbeat = time.monotonic()

    def _prune_window(self, now: float) -> None:
        cutoff = now - self._window_seconds
        self._push_window = [t for t in self._push_window if t > cutoff]

    @property
    def pushes_last_minute(self) -> int:
        self._prune_window(time.monotonic())
        return len(self._push_window)

    def to_dict(self) -> dict:
        return {
            "fetches_total": self.fetches_total,
            "fetch_errors": self.fetch_errors,
            "polls_total": self.polls_total,
            "poll_errors": self.poll_errors,
            "push_updates_applied": self.push_updates_applied,
            "push_updates_ignored": self.push_updates_ignored,
            "pushes_last_minute": self.pushes_last_minute,
            "merges_total": self.merges_total,
            "loads_total": self.loads_total,
            "heartbeat_age_seconds": round(time.monotonic() - self.last_heartbeat, 1),
        }
