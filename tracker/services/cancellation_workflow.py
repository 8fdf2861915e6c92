"""
Cancellation workflow — confirm, collect a reason, submit.

    idle -> confirm_shown -> reason_form_shown -> submitting -> {done, error}

Local validation (reason selected, comment of at least 5 characters after
trimming) happens before anything is sent; a failed validation keeps the form
open and never calls the network. The form cannot be dismissed while a
submission is in flight.
"""
import logging
from typing import Callable, Optional

from domain.constants import ABSORBING_STATUSES, CANCELLATION_REASONS, MIN_COMMENT_LENGTH
from domain.enums import CancellationStep
from domain.errors import CancellationError, OrderFlowError, ValidationError, WorkflowStateError
from models import Order
from services.order_actions import OrderActionsFacade

logger = logging.getLogger(__name__)


def compile_reason(reason: str, comment: str) -> str:
    return f"{reason}: {comment.strip()}"


class CancellationWorkflow:
    """Human-in-the-loop cancel for one order view."""

    def __init__(self, *, current: Callable[[], Optional[Order]], actions: OrderActionsFacade):
        self._current = current
        self._actions = actions
        self.step = CancellationStep.IDLE
        self.reason: Optional[str] = None
        self.comment = ""
        self.error: Optional[OrderFlowError] = None

    def _order(self) -> Order:
        order = self._current()
        if order is None:
            raise WorkflowStateError("No order loaded", state=self.step.value)
        return order

    def _expect(self, *steps: CancellationStep) -> None:
        if self.step not in steps:
            raise WorkflowStateError(f"Not allowed while {self.step.value}", state=self.step.value)

    def _reset_form(self) -> None:
        self.reason = None
        self.comment = ""
        self.error = None

    # ── Transitions ─────────────────────────────────────────────────

    def request(self) -> None:
        """User asked to cancel: show the confirmation."""
        self._expect(CancellationStep.IDLE, CancellationStep.ERROR, CancellationStep.DONE)
        order = self._order()
        if order.status in ABSORBING_STATUSES:
            raise WorkflowStateError(
                f"Order is {order.status.value} and can no longer be cancelled",
                state=self.step.value,
            )
        self._reset_form()
        self.step = CancellationStep.CONFIRM_SHOWN

    def confirm(self) -> None:
        """Confirmation accepted: open the reason form. No network call."""
        self._expect(CancellationStep.CONFIRM_SHOWN)
        self.step = CancellationStep.REASON_FORM_SHOWN

    def dismiss(self) -> None:
        if self.step == CancellationStep.SUBMITTING:
            raise WorkflowStateError("Cancellation is being submitted", state=self.step.value)
        self._reset_form()
        self.step = CancellationStep.IDLE

    def set_reason(self, reason: str) -> None:
        self._expect(CancellationStep.REASON_FORM_SHOWN, CancellationStep.ERROR)
        self.reason = reason or None
        self.error = None

    def set_comment(self, comment: str) -> None:
        self._expect(CancellationStep.REASON_FORM_SHOWN, CancellationStep.ERROR)
        self.comment = comment or ""
        self.error = None

    def validate(self) -> str:
        """Return the compiled reason or raise ValidationError."""
        if not self.reason:
            raise ValidationError("Please select a reason for cancellation.", field="reason")
        if self.reason not in CANCELLATION_REASONS:
            raise ValidationError(f"Unknown cancellation reason: {self.reason}", field="reason")
        if len(self.comment.strip()) < MIN_COMMENT_LENGTH:
            raise ValidationError(
                f"Comments must be at least {MIN_COMMENT_LENGTH} characters long.",
                field="comment",
            )
        return compile_reason(self.reason, self.comment)

    async def submit(self) -> None:
        """
        Validate locally, then cancel through the actions facade.

        Raises ValidationError (form stays open) or CancellationError
        (step becomes `error`; the form can be resubmitted).
        """
        self._expect(CancellationStep.REASON_FORM_SHOWN, CancellationStep.ERROR)
        order = self._order()
        try:
            compiled = self.validate()
        except ValidationError as e:
            self.error = e
            self.step = CancellationStep.REASON_FORM_SHOWN
            raise

        self.error = None
        self.step = CancellationStep.SUBMITTING
        try:
            ok = await self._actions.cancel(order, compiled)
        except OrderFlowError as e:
            self.error = e
            self.step = CancellationStep.ERROR
            raise
        except Exception as e:
            logger.error(f"Cancellation for order {order.id} failed unexpectedly: {e}", exc_info=True)
            self.error = CancellationError(order.id)
            self.step = CancellationStep.ERROR
            raise self.error from e
        if not ok:
            self.error = self._actions.last_error
            self.step = CancellationStep.ERROR
            logger.warning(f"Cancellation for order {order.id} failed")
            raise self.error
        self.step = CancellationStep.DONE

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "reason": self.reason,
            "comment": self.comment,
            "reasons": CANCELLATION_REASONS,
            "error": self.error.message if self.error else None,
            "field": getattr(self.error, "field", None),
        }
