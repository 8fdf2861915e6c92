"""
Payment gateway bridge — drives one order through checkout.

    idle -> script_loading -> script_ready -> intent_created -> checkout_open
         -> {succeeded, failed} -> verifying -> {verified, verify_failed}

Trust boundary: the gateway's success callback only moves the bridge to
`succeeded`. The order becomes `paid` solely from a successful server
verification, merged into the snapshot through the mailbox.

Every failure keeps the order id, so the UI retries the payment step only:
    - ScriptLoadError / IntentCreationError  -> begin() again
    - GatewayFailure                         -> begin() again (new intent)
    - VerificationError                      -> retry_verification() with the
                                                same intent and proof; begin()
                                                is refused while that proof
                                                awaits verification
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from domain.constants import GATEWAY_EVENT_FAILED
from domain.enums import PaymentStatus, PaymentStep
from domain.errors import (
    GatewayFailure,
    IntentCreationError,
    OrderFlowError,
    PaymentError,
    ScriptLoadError,
    VerificationError,
    WorkflowStateError,
)
from models import GatewayProof, Order, PaymentIntent, PaymentRecord, StatusUpdate
from services.order_api import OrderApiClient
from services.payment_provider import CheckoutSession, PaymentProvider
from services.snapshot_store import SnapshotMailbox

logger = logging.getLogger(__name__)

# Steps with an await in flight; begin() must not interleave with them
_BUSY_STEPS = {
    PaymentStep.SCRIPT_LOADING,
    PaymentStep.SCRIPT_READY,
    PaymentStep.INTENT_CREATED,
    PaymentStep.SUCCEEDED,
    PaymentStep.VERIFYING,
}


class PaymentGatewayBridge:
    """Checkout state machine for one order view."""

    def __init__(
        self,
        *,
        api: OrderApiClient,
        provider: PaymentProvider,
        mailbox: SnapshotMailbox,
        current: Callable[[], Optional[Order]],
    ):
        self._api = api
        self._provider = provider
        self._mailbox = mailbox
        self._current = current
        self.step = PaymentStep.IDLE
        self.intent: Optional[PaymentIntent] = None
        self.proof: Optional[GatewayProof] = None
        self.checkout: Optional[CheckoutSession] = None
        self.last_error: Optional[PaymentError] = None

    @property
    def script_url(self) -> Optional[str]:
        return self._provider.script_url

    def _order(self) -> Order:
        order = self._current()
        if order is None:
            raise WorkflowStateError("No order loaded")
        return order

    def _transition(self, step: PaymentStep) -> None:
        order = self._current()
        logger.info(f"Payment {order.id if order else '?'}: {self.step.value} -> {step.value}")
        self.step = step

    # ── Checkout ────────────────────────────────────────────────────

    async def begin(self, prefill: dict | None = None, notes: dict | None = None) -> dict[str, Any]:
        """
        Load the script, create an intent and open checkout.

        Returns the checkout options for the gateway UI.
        """
        order = self._order()
        if self.step in _BUSY_STEPS:
            raise WorkflowStateError("Payment already in progress", state=self.step.value)
        if order.payment_status == PaymentStatus.PAID:
            raise IntentCreationError(order.id, "Order already paid")
        if self.step == PaymentStep.VERIFY_FAILED and self.proof is not None:
            # The gateway captured this payment; only verification may be retried
            raise WorkflowStateError(
                "Payment was captured but not verified. Retry verification instead.",
                state=self.step.value,
            )

        if self.checkout is not None and not self.checkout.settled:
            logger.info(f"Payment {order.id}: abandoning open checkout {self.checkout.gateway_order_id}")
            self.checkout.abandon()
        self.checkout = None
        self.proof = None
        self.last_error = None

        self._transition(PaymentStep.SCRIPT_LOADING)
        try:
            await self._provider.load()
        except Exception as e:
            logger.error(f"Payment {order.id}: gateway script not loaded: {e}")
            return self._fail_setup(ScriptLoadError(order.id))
        self._transition(PaymentStep.SCRIPT_READY)

        try:
            intent = await self._api.create_payment_intent(order.id, order.kind)
        except IntentCreationError as e:
            return self._fail_setup(e)
        except OrderFlowError:
            self.step = PaymentStep.IDLE
            raise
        except Exception as e:
            logger.error(f"Payment {order.id}: intent creation failed unexpectedly: {e}", exc_info=True)
            return self._fail_setup(IntentCreationError(order.id))
        self.intent = intent
        self._transition(PaymentStep.INTENT_CREATED)

        options = self._provider.build_options(
            intent,
            order,
            handler=self._on_gateway_success,
            prefill=prefill,
            notes=notes,
        )
        if not options.get("key"):
            return self._fail_setup(IntentCreationError(order.id, "Payment gateway key is not configured"))

        checkout = self._provider.create_checkout(options)
        checkout.on(GATEWAY_EVENT_FAILED, self._on_gateway_failed)
        public_options = checkout.open()
        self.checkout = checkout
        self._transition(PaymentStep.CHECKOUT_OPEN)
        return public_options

    def _fail_setup(self, error: PaymentError):
        self.last_error = error
        self.step = PaymentStep.IDLE
        raise error

    async def complete_checkout(self, response: dict) -> Order:
        """Gateway `handler` fired (UI forwards the payload)."""
        if self.checkout is None:
            raise WorkflowStateError("No checkout is open", state=self.step.value)
        return await self.checkout.complete(response)

    async def fail_checkout(self, error: dict) -> None:
        """Gateway `payment.failed` fired (UI forwards the payload)."""
        if self.checkout is None:
            raise WorkflowStateError("No checkout is open", state=self.step.value)
        await self.checkout.fail(error)

    # ── Gateway callbacks ───────────────────────────────────────────

    async def _on_gateway_success(self, response: dict) -> Order:
        order = self._order()
        gateway_order_id = self.intent.gateway_order_id if self.intent else None
        try:
            proof = GatewayProof.model_validate(response)
        except PydanticValidationError as e:
            self.step = PaymentStep.VERIFY_FAILED
            self.last_error = VerificationError(order.id, gateway_order_id, "Incomplete payment confirmation from gateway")
            raise self.last_error from e

        if gateway_order_id and proof.gateway_order_id != gateway_order_id:
            self.step = PaymentStep.VERIFY_FAILED
            self.last_error = VerificationError(order.id, gateway_order_id, "Payment confirmation does not match this checkout")
            raise self.last_error

        self.proof = proof
        self._transition(PaymentStep.SUCCEEDED)
        return await self._verify()

    async def _on_gateway_failed(self, error: dict) -> None:
        order = self._order()
        details = error.get("error", error) if isinstance(error, dict) else {}
        message = details.get("description") or "Payment failed. Please try again."
        self._transition(PaymentStep.FAILED)
        self.last_error = GatewayFailure(
            order.id,
            message,
            details={
                "gatewayOrderId": self.intent.gateway_order_id if self.intent else None,
                "code": details.get("code"),
                "reason": details.get("reason"),
            },
        )
        logger.warning(f"Payment {order.id}: gateway reported failure ({details.get('code')})")
        raise self.last_error

    # ── Verification ────────────────────────────────────────────────

    async def retry_verification(self) -> Order:
        """Re-send the same proof for the same order and intent."""
        if self.step != PaymentStep.VERIFY_FAILED or self.proof is None:
            raise WorkflowStateError("Nothing to re-verify", state=self.step.value)
        return await self._verify()

    async def _verify(self) -> Order:
        order = self._order()
        proof = self.proof
        self._transition(PaymentStep.VERIFYING)
        try:
            verified = await self._api.verify_payment(proof, order.id, order.kind)
        except VerificationError as e:
            self.step = PaymentStep.VERIFY_FAILED
            self.last_error = e
            logger.error(f"Payment {order.id}: verification failed for {proof.gateway_order_id}: {e.message}")
            raise
        except Exception as e:
            # Proof and intent are kept, so retry_verification() stays available
            self.step = PaymentStep.VERIFY_FAILED
            self.last_error = VerificationError(order.id, proof.gateway_order_id)
            logger.error(f"Payment {order.id}: verification for {proof.gateway_order_id} did not complete: {e}")
            if isinstance(e, OrderFlowError):
                raise
            raise self.last_error from e

        paid_at = None
        if verified is not None and verified.payment is not None:
            paid_at = verified.payment.paid_at
        update = StatusUpdate(
            order_id=order.id,
            payment_status=PaymentStatus.PAID,
            payment=PaymentRecord(
                gateway_order_id=proof.gateway_order_id,
                payment_id=proof.payment_id,
                signature=proof.signature,
                status=PaymentStatus.PAID,
                paid_at=paid_at or datetime.now(timezone.utc),
            ),
        )
        snapshot = await self._mailbox.merge(update)
        self.last_error = None
        self._transition(PaymentStep.VERIFIED)
        return snapshot

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "gatewayOrderId": self.intent.gateway_order_id if self.intent else None,
            "amount": self.intent.amount if self.intent else None,
            "currency": self.intent.currency if self.intent else None,
            "paymentId": self.proof.payment_id if self.proof else None,
            "error": self.last_error.message if self.last_error else None,
            "retryable": self.last_error.retryable if self.last_error else False,
        }
