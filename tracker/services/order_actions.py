"""
Order actions exposed to the presentation layer: cancel, print, chat.

Each action returns True/False and keeps its own busy flag (`cancelling`,
`printing`). A second call to the same action while the first is in flight
is refused with WorkflowStateError.
"""
import logging
import webbrowser
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlencode

from config import settings
from domain.errors import CancellationError, OrderFlowError, WorkflowStateError
from models import Order
from services.async_executor import run_blocking
from services.order_api import OrderApiClient
from services.order_view import render_receipt
from services.snapshot_store import SnapshotMailbox

logger = logging.getLogger(__name__)


def write_receipt(path: Path, text: str) -> None:
    """Default printer: write the receipt next to the others."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class OrderActionsFacade:
    """Thin composition over the API client and the snapshot mailbox."""

    def __init__(
        self,
        *,
        api: OrderApiClient,
        mailbox: SnapshotMailbox,
        printer: Callable[[Path, str], None] = write_receipt,
        opener: Callable[[str], object] = webbrowser.open,
        receipts_dir: str | None = None,
        support_chat_url: str | None = None,
    ):
        self._api = api
        self._mailbox = mailbox
        self._printer = printer
        self._opener = opener
        self._receipts_dir = Path(receipts_dir or settings.receipts_dir)
        self._support_chat_url = support_chat_url or settings.support_chat_url
        self.cancelling = False
        self.printing = False
        self.last_error: Optional[OrderFlowError] = None

    async def cancel(self, order: Order, reason: str) -> bool:
        """
        Cancel optimistically, then ask the server.

        On rejection the optimistic status is rolled back and the
        error is kept in `last_error`.
        """
        if self.cancelling:
            raise WorkflowStateError("Cancellation already in progress", state="cancelling")
        self.cancelling = True
        self.last_error = None
        code, _, comment = reason.partition(": ")
        try:
            await self._mailbox.begin_optimistic_cancel(code, comment)
            try:
                server_order = await self._api.cancel_order(order.id, reason, order.kind)
            except OrderFlowError as e:
                logger.warning(f"Cancel rejected for order {order.id}: {e.message}")
                await self._rollback(order, e)
                return False
            except Exception as e:
                logger.error(f"Cancel for order {order.id} failed unexpectedly: {e}", exc_info=True)
                await self._rollback(order, CancellationError(order.id))
                return False
            await self._mailbox.confirm_optimistic(server_order)
            logger.info(f"Order {order.id} cancelled ({code})")
            return True
        finally:
            self.cancelling = False

    async def _rollback(self, order: Order, error: OrderFlowError) -> None:
        self.last_error = error
        try:
            await self._mailbox.rollback_optimistic()
        except WorkflowStateError:
            logger.debug(f"Order {order.id}: view closed before rollback")

    async def print_receipt(self, order: Order) -> bool:
        if self.printing:
            raise WorkflowStateError("Receipt is already printing", state="printing")
        self.printing = True
        path = self._receipts_dir / f"{order.id}.txt"
        try:
            await run_blocking(self._printer, path, render_receipt(order))
        except OSError as e:
            logger.error(f"Receipt for order {order.id} not printed: {e}")
            return False
        finally:
            self.printing = False
        logger.info(f"Receipt for order {order.id} written to {path}")
        return True

    def support_link(self, order_id: str) -> str:
        separator = "&" if "?" in self._support_chat_url else "?"
        return f"{self._support_chat_url}{separator}{urlencode({'orderId': order_id})}"

    async def chat_with_support(self, order_id: str) -> bool:
        url = self.support_link(order_id)
        try:
            opened = await run_blocking(self._opener, url)
        except OSError as e:
            logger.error(f"Support chat for order {order_id} not opened: {e}")
            return False
        # webbrowser.open returns False when no browser is available
        return opened is not False

    def to_dict(self) -> dict:
        return {
            "cancelling": self.cancelling,
            "printing": self.printing,
            "lastError": self.last_error.message if self.last_error else None,
        }
