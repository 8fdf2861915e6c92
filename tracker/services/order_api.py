"""
Order API client — the five upstream calls the coordinator depends on.

    fetch order          GET  {order_path}
    cancel order         POST {cancel_path}                 {orderId, reason}
    create intent        POST {payment_intent_path}         {orderId}
    verify payment       POST {payment_verify_path}         gateway proof + order id

Custom orders use their own fetch / intent / verify paths. Every request
carries the session's bearer token; a 401 flips the session to unauthorized
before UnauthorizedError is raised.
"""
import logging
from typing import Any, Optional

import httpx

from config import settings
from domain.enums import OrderKind
from domain.errors import (
    CancellationError,
    FetchError,
    IntentCreationError,
    OrderNotFoundError,
    UnauthorizedError,
    VerificationError,
)
from models import GatewayProof, Order, PaymentIntent, parse_order
from services.session_state import SessionState

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response, default: str) -> str:
    """Pull a human-readable message out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        if isinstance(body.get("message"), str):
            return body["message"]
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return default


def _json_body(response: httpx.Response) -> Any:
    """
    Decode a 2xx body. An empty body (204, or 200 with no content) is None.

    Raises:
        ValueError if the body is present but not JSON (HTML error pages)
    """
    if response.status_code == 204 or not response.content.strip():
        return None
    return response.json()


def unwrap_order_payload(body: Any) -> Optional[dict]:
    """
    Find the order record inside a response envelope.

    Accepts {data: {order}}, {data: {customOrder}}, {data: {...}}, {order} or
    the bare record.
    """
    if not isinstance(body, dict):
        return None
    data = body.get("data", body)
    if not isinstance(data, dict):
        return None
    for key in ("order", "customOrder"):
        if isinstance(data.get(key), dict):
            return data[key]
    if "id" in data or "_id" in data:
        return data
    return None


class OrderApiClient:
    """Async client for the order / payment endpoints."""

    def __init__(
        self,
        session: SessionState,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._session = session
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.http_timeout_seconds,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        """Issue a request with session headers. Raises httpx.HTTPError on transport failure."""
        response = await self._client.request(
            method,
            path,
            json=json,
            headers=self._session.authorization_headers(),
        )
        if response.status_code == 401:
            self._session.mark_unauthorized()
            raise UnauthorizedError()
        return response

    # ── Fetch ───────────────────────────────────────────────────────

    async def fetch_order(self, order_id: str, kind: OrderKind = OrderKind.STANDARD) -> Order:
        path_template = settings.custom_order_path if kind == OrderKind.CUSTOM else settings.order_path
        try:
            response = await self._send("GET", path_template.format(order_id=order_id))
        except httpx.HTTPError as e:
            logger.warning(f"Order fetch transport error for {order_id}: {e}")
            raise FetchError(details={"orderId": order_id}) from e

        if response.status_code == 404:
            raise OrderNotFoundError(order_id)
        if response.is_error:
            raise FetchError(
                _error_message(response, "Failed to load order"),
                details={"orderId": order_id, "status": response.status_code},
            )

        try:
            body = _json_body(response)
        except ValueError as e:
            logger.warning(f"Order fetch for {order_id} returned a non-JSON body: {e}")
            raise FetchError("Order data is malformed", details={"orderId": order_id}) from e
        record = unwrap_order_payload(body)
        if record is None:
            raise FetchError("Order data not found", details={"orderId": order_id})
        try:
            return parse_order(record, kind)
        except ValueError as e:
            logger.error(f"Malformed order payload for {order_id}: {e}")
            raise FetchError("Order data is malformed", details={"orderId": order_id}) from e

    # ── Cancel ──────────────────────────────────────────────────────

    async def cancel_order(self, order_id: str, reason: str, kind: OrderKind = OrderKind.STANDARD) -> Optional[Order]:
        try:
            response = await self._send(
                "POST",
                settings.cancel_path.format(order_id=order_id),
                json={"orderId": order_id, "reason": reason},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Cancel transport error for {order_id}: {e}")
            raise CancellationError(order_id) from e

        if response.is_error:
            raise CancellationError(order_id, _error_message(response, "Failed to cancel order. Please try again."))

        # The 2xx status is the acceptance; the body is only a bonus record
        try:
            record = unwrap_order_payload(_json_body(response))
            return parse_order(record, kind) if record else None
        except ValueError as e:
            logger.warning(f"Cancel for {order_id} accepted without a usable order record: {e}")
            return None

    # ── Payment ─────────────────────────────────────────────────────

    async def create_payment_intent(self, order_id: str, kind: OrderKind = OrderKind.STANDARD) -> PaymentIntent:
        if kind == OrderKind.CUSTOM:
            path, body = settings.custom_payment_intent_path, {"customOrderId": order_id}
        else:
            path, body = settings.payment_intent_path, {"orderId": order_id}
        try:
            response = await self._send("POST", path, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"Intent transport error for {order_id}: {e}")
            raise IntentCreationError(order_id) from e

        if response.is_error:
            raise IntentCreationError(order_id, _error_message(response, "Unable to initialize payment"))

        try:
            payload = _json_body(response)
            data = payload.get("data", payload) if isinstance(payload, dict) else {}
            return PaymentIntent.model_validate(data)
        except ValueError as e:
            logger.error(f"Malformed payment intent for {order_id}: {e}")
            raise IntentCreationError(order_id, "Unable to initialize payment") from e

    async def verify_payment(
        self,
        proof: GatewayProof,
        order_id: str,
        kind: OrderKind = OrderKind.STANDARD,
    ) -> Optional[Order]:
        body = {
            "razorpay_order_id": proof.gateway_order_id,
            "razorpay_payment_id": proof.payment_id,
            "razorpay_signature": proof.signature,
        }
        if kind == OrderKind.CUSTOM:
            path = settings.custom_payment_verify_path
            body["customOrderId"] = order_id
        else:
            path = settings.payment_verify_path
            body["orderId"] = order_id

        try:
            response = await self._send("POST", path, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"Verify transport error for {order_id}: {e}")
            raise VerificationError(order_id, proof.gateway_order_id) from e

        if response.is_error:
            raise VerificationError(
                order_id,
                proof.gateway_order_id,
                _error_message(response, "Payment verification failed"),
            )

        try:
            record = unwrap_order_payload(_json_body(response))
            return parse_order(record, kind) if record else None
        except ValueError as e:
            logger.error(f"Unreadable verification response for {order_id}: {e}")
            raise VerificationError(
                order_id,
                proof.gateway_order_id,
                "Payment verification returned an unreadable response",
            ) from e
