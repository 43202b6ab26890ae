import enum
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from .models import OrderStatusEnum


# --- Catalog Schemas ---
class Product(BaseModel):
    id: str
    title: str
    price: Decimal
    background_image: str = ""
    sizes: list[str] = []
    colors: list[str] = []


class ProductList(BaseModel):
    products: list[Product]


# --- Cart Schemas ---
class CartLineKey(BaseModel):
    product_ref: str
    size: str = ""
    color: str = ""


class CartItemCreate(CartLineKey):
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(CartLineKey):
    quantity: int = Field(..., ge=1)


class CartLine(CartLineKey):
    title: str = ""
    unit_price: Decimal
    quantity: int = Field(..., ge=1)
    display_image: str = ""

    def matches(self, key: CartLineKey) -> bool:
        return (self.product_ref, self.size, self.color) == (key.product_ref, key.size, key.color)

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart(BaseModel):
    lines: list[CartLine] = []
    total_amount: Decimal


class Wishlist(BaseModel):
    product_refs: list[str] = []


# --- Checkout Schemas ---
class ShippingAddress(BaseModel):
    name: str = ""
    email: str = ""
    street: str = ""
    city: str = ""
    postal_code: str = ""
    country_code: str = ""

    def missing_fields(self) -> list[str]:
        return [name for name, value in self if not str(value).strip()]


class OrderDraft(BaseModel):
    lines: list[CartLine]
    total_amount: Decimal
    currency: str
    shipping_address: ShippingAddress
    staged_at: datetime


class StageDraftRequest(BaseModel):
    shipping_address: ShippingAddress


class PaymentAuthorizationCreate(BaseModel):
    total: Decimal


class PaymentAuthorization(BaseModel):
    """Processor-side view of a payment attempt. `amount` is in minor units."""

    id: str
    amount: int
    currency: str
    status: str
    client_handle: str | None = None
    failure_message: str | None = None
    owner_id: str | None = None


class CheckoutState(str, enum.Enum):
    IDLE = "idle"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    AWAITING_EXTERNAL_CONFIRMATION = "awaiting_external_confirmation"
    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    FAILED = "failed"


class AuthorizationHandle(BaseModel):
    client_handle: str
    authorization_id: str
    amount_minor: int
    currency: str
    state: CheckoutState


class ReconcileRequest(BaseModel):
    client_handle: str


class ReconciliationOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    PENDING_CONFIRMATION = "pending_confirmation"
    PAYMENT_FAILED = "payment_failed"
    DRAFT_MISSING = "draft_missing"


class ReconciliationResult(BaseModel):
    outcome: ReconciliationOutcome
    state: CheckoutState
    authorization_id: str | None = None
    order_id: int | None = None
    message: str


# --- Order Schemas ---
class OrderCreate(BaseModel):
    lines: list[CartLine] = Field(..., min_length=1)
    total_amount: Decimal = Field(..., gt=0)
    currency: str | None = None
    shipping_address: ShippingAddress
    authorization_id: str = Field(..., min_length=1)


class OrderCreated(BaseModel):
    order_id: int


class OrderLine(BaseModel):
    product_ref: str
    title: str
    unit_price: Decimal
    quantity: int
    size: str
    color: str
    display_image: str

    class Config:
        from_attributes = True


class Order(BaseModel):
    id: int
    owner_id: str
    status: OrderStatusEnum
    total_amount: Decimal
    currency: str
    shipping_address: ShippingAddress
    payment_authorization_id: str
    created_at: datetime
    lines: list[OrderLine] = []

    class Config:
        from_attributes = True
