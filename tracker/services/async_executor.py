"""
Thread pool for the blocking order actions.

Receipts go through pathlib and the support chat through webbrowser, both
synchronous. They run here so the loop draining the snapshot mailboxes keeps
serving pushes and polls while a receipt is written.
"""
import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

_executor: ThreadPoolExecutor | None = None
_MAX_WORKERS = 2
# Actions slower than this are logged; a stuck browser launch shows up here
_SLOW_ACTION_SECONDS = 2.0

T = TypeVar("T")


def get_executor() -> ThreadPoolExecutor:
    """Lazy-initialize the action pool."""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="actions_")
        logger.info(f"Action executor started (max_workers={_MAX_WORKERS})")
    return _executor


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a synchronous action (receipt write, browser open) off the loop."""
    loop = asyncio.get_running_loop()
    started = time.monotonic()
    try:
        return await loop.run_in_executor(get_executor(), functools.partial(func, *args, **kwargs))
    finally:
        elapsed = time.monotonic() - started
        if elapsed > _SLOW_ACTION_SECONDS:
            name = getattr(func, "__name__", repr(func))
            logger.warning(f"Action {name} took {elapsed:.1f}s")


def shutdown_executor() -> None:
    """
    Stop the pool at app shutdown.

    Queued actions are dropped; one already running is allowed to finish.
    """
    global _executor
    if _executor is not None:
        _executor.shutdown(wait=True, cancel_futures=True)
        _executor = None
        logger.info("Action executor stopped")
