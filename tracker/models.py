"""
Pydantic models for the order snapshot, partial updates and payment exchange.

Wire payloads use camelCase (and a few legacy names such as `_id` or
`razorpayOrderId`); models accept both the alias and the Python name.
Order models are frozen: the snapshot store replaces them, nothing mutates them.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from domain.constants import STATUS_ALIASES
from domain.enums import OrderKind, OrderStatus, PaymentStatus


class WireModel(BaseModel):
    """Shared base — construct by Python name or alias, ignore unknown keys."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def normalize_status(value: Any) -> Any:
    """Map wire statuses (pending, approved, ...) onto the canonical set."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        return STATUS_ALIASES.get(lowered, lowered)
    return value


# ── Order parts ─────────────────────────────────────────────────────


class OrderItem(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    product_ref: str = Field(..., validation_alias=AliasChoices("productRef", "productId", "product_ref"))
    variant_ref: str = Field(..., validation_alias=AliasChoices("variantRef", "variantId", "variant_ref"))
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0, validation_alias=AliasChoices("unitPrice", "price", "unit_price"))
    title: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None

    @field_validator("product_ref", "variant_ref", mode="before")
    @classmethod
    def _stringify_ref(cls, v):
        return str(v) if v is not None else v

    @property
    def line_total(self) -> float:
        return self.quantity * self.unit_price


class ShippingAddress(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str
    phone: str
    address1: str = Field(..., validation_alias=AliasChoices("address1", "street"))
    address2: Optional[str] = None
    city: str
    state: str
    postal_code: str = Field(..., alias="postalCode")
    country: str = "India"


class PaymentRecord(WireModel):
    """Gateway identifiers; populated only after a successful verification."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    method: str = "razorpay"
    gateway_order_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("gatewayOrderId", "razorpayOrderId", "gateway_order_id")
    )
    payment_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("paymentId", "razorpayPaymentId", "payment_id")
    )
    signature: Optional[str] = Field(
        None, validation_alias=AliasChoices("signature", "razorpaySignature")
    )
    status: PaymentStatus = PaymentStatus.PENDING
    paid_at: Optional[datetime] = Field(None, alias="paidAt")


class Cancellation(WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    reason: Optional[str] = None
    comment: Optional[str] = None
    requested_at: Optional[datetime] = Field(None, alias="requestedAt")


TIMESTAMP_FIELDS = (
    "created_at",
    "shipped_at",
    "out_for_delivery_at",
    "delivered_at",
    "estimated_delivery",
)


# ── Order snapshot ──────────────────────────────────────────────────


class Order(WireModel):
    """Canonical order record held by the snapshot store."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = Field(..., validation_alias=AliasChoices("id", "_id"))
    kind: OrderKind = OrderKind.STANDARD
    status: OrderStatus = OrderStatus.CONFIRMED
    payment_status: PaymentStatus = Field(PaymentStatus.PENDING, alias="paymentStatus")
    payment: Optional[PaymentRecord] = None
    items: tuple[OrderItem, ...] = ()
    total: Optional[float] = None
    shipping_address: Optional[ShippingAddress] = Field(None, alias="shippingAddress")

    created_at: Optional[datetime] = Field(None, alias="createdAt")
    shipped_at: Optional[datetime] = Field(None, alias="shippedAt")
    out_for_delivery_at: Optional[datetime] = Field(None, alias="outForDeliveryAt")
    delivered_at: Optional[datetime] = Field(None, alias="deliveredAt")
    estimated_delivery: Optional[datetime] = Field(None, alias="estimatedDelivery")

    tracking_number: Optional[str] = Field(None, alias="trackingNumber")
    notes: Optional[str] = None
    cancellation: Optional[Cancellation] = None

    pending_confirmation: Optional[str] = Field(None, alias="pendingConfirmation")
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return normalize_status(v)

    @model_validator(mode="before")
    @classmethod
    def _lift_wire_fields(cls, data: Any):
        """Derive paymentStatus and cancellation from the legacy wire layout."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        payment = data.get("payment")
        if "paymentStatus" not in data and "payment_status" not in data:
            if isinstance(payment, dict) and payment.get("status"):
                data["paymentStatus"] = payment["status"]
        if data.get("cancellation") is None and data.get("cancellationReason"):
            data["cancellation"] = {"reason": data["cancellationReason"]}
        return data

    @property
    def order_number(self) -> str:
        return f"ORD-{self.id[-8:].upper()}"

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def computed_total(self) -> float:
        if self.total is not None:
            return self.total
        return sum(item.line_total for item in self.items)


class CustomOrder(Order):
    """Custom-printed order: a design reference and a flat price."""

    kind: OrderKind = OrderKind.CUSTOM
    design_ref: Optional[str] = Field(
        None, validation_alias=AliasChoices("designRef", "mockupUrl", "design_ref")
    )
    price: float = Field(0.0, ge=0)
    quantity: int = Field(1, ge=1)

    @property
    def computed_total(self) -> float:
        return self.total if self.total is not None else self.price * self.quantity


def parse_order(data: dict, kind: OrderKind = OrderKind.STANDARD) -> Order:
    """Validate a wire record as the model matching its kind."""
    if kind == OrderKind.CUSTOM:
        return CustomOrder.model_validate({**data, "kind": OrderKind.CUSTOM})
    return Order.model_validate({**data, "kind": OrderKind.STANDARD})


# ── Partial updates ─────────────────────────────────────────────────


class StatusUpdate(WireModel):
    """
    A partial order update (push event, payment result).

    Only fields that are present and non-null are applied; the back office
    sends `null` for values it does not know.
    """

    order_id: Optional[str] = Field(None, validation_alias=AliasChoices("orderId", "order_id"))
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(None, alias="trackingNumber")
    notes: Optional[str] = None
    payment_status: Optional[PaymentStatus] = Field(None, alias="paymentStatus")
    payment: Optional[PaymentRecord] = None

    shipped_at: Optional[datetime] = Field(None, alias="shippedAt")
    out_for_delivery_at: Optional[datetime] = Field(None, alias="outForDeliveryAt")
    delivered_at: Optional[datetime] = Field(None, alias="deliveredAt")
    estimated_delivery: Optional[datetime] = Field(None, alias="estimatedDelivery")

    @field_validator("order_id", mode="before")
    @classmethod
    def _stringify_order_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return normalize_status(v)

    def changes(self) -> dict[str, Any]:
        """Field name → value for every field this update carries."""
        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if name != "order_id" and getattr(self, name) is not None
        }


# ── Payment exchange ────────────────────────────────────────────────


class PaymentIntent(WireModel):
    """One checkout attempt, issued by the server. Not persisted."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    gateway_order_id: str = Field(
        ..., validation_alias=AliasChoices("gatewayOrderId", "razorpayOrderId", "orderId", "gateway_order_id")
    )
    amount: int = Field(..., ge=0, description="Amount in minor units (paise)")
    currency: str = "INR"
    key_id: Optional[str] = Field(None, validation_alias=AliasChoices("keyId", "key", "key_id"))


class GatewayProof(WireModel):
    """Opaque proof returned by the gateway's success handler."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    gateway_order_id: str = Field(
        ..., validation_alias=AliasChoices("gatewayOrderId", "razorpay_order_id", "gateway_order_id")
    )
    payment_id: str = Field(
        ..., validation_alias=AliasChoices("paymentId", "razorpay_payment_id", "payment_id")
    )
    signature: str = Field(
        ..., validation_alias=AliasChoices("signature", "razorpay_signature")
    )
