"""
Manual retry gate for order fetches.

The controller never retries on its own. The user triggers retry(); each
retry bumps the attempt counter, a success resets it to 0, and once the cap
is reached further retries are refused with RetryLimitExceeded without
touching the network.
"""
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from config import settings
from domain.errors import OrderFlowError, RetryLimitExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryController(Generic[T]):
    """Wraps an async fetch with a hard cap on manual retries."""

    def __init__(self, fetch: Callable[[], Awaitable[T]], max_attempts: int | None = None):
        self._fetch = fetch
        self.max_attempts = max_attempts if max_attempts is not None else settings.max_fetch_retries
        self.attempts = 0
        self.last_error: Optional[OrderFlowError] = None

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    async def fetch(self) -> T:
        """First load. Not counted against the cap; success still resets it."""
        return await self._call()

    async def retry(self) -> T:
        """User-triggered retry. Raises RetryLimitExceeded once the cap is hit."""
        if self.exhausted:
            logger.warning(f"Retry refused: {self.attempts}/{self.max_attempts} attempts used")
            self.last_error = RetryLimitExceeded(self.attempts)
            raise self.last_error
        self.attempts += 1
        logger.info(f"Manual retry {self.attempts}/{self.max_attempts}")
        return await self._call()

    async def _call(self) -> T:
        try:
            result = await self._fetch()
        except OrderFlowError as e:
            self.last_error = e
            raise
        self.attempts = 0
        self.last_error = None
        return result

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "exhausted": self.exhausted,
            "lastError": self.last_error.message if self.last_error else None,
        }
