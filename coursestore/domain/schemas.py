# coursestore/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field


class ItemKind(str, Enum):
    COURSE = "course"
    BUNDLE = "bundle"


class ByobTier(str, Enum):
    NONE = "none"
    FIVE_PLUS = "5+"
    TEN_PLUS = "10+"


# =====================================================
# CART LINES (tagged union on "kind")
# =====================================================
class _LineBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    unit_original_price: Decimal = Field(..., ge=0)
    # derived, recomputed by the pricing engine on every cart change
    unit_price: Decimal = Field(default=Decimal("0.00"), ge=0)
    validity_months: int = Field(default=3, gt=0)
    thumbnail_url: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind, self.item_id)


class CourseLine(_LineBase):
    kind: Literal["course"] = "course"


class BundleLine(_LineBase):
    kind: Literal["bundle"] = "bundle"


CartLine = Annotated[Union[CourseLine, BundleLine], Field(discriminator="kind")]


class CartSummary(BaseModel):
    subtotal: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    tier: ByobTier = ByobTier.NONE


class CartOut(BaseModel):
    """Cart snapshot as returned to the caller."""

    buyer_id: str
    lines: List[CartLine]
    summary: CartSummary
    version: int
    updated_at: datetime | None = None


# =====================================================
# CART REQUESTS
# =====================================================
class ItemIn(BaseModel):
    """Add a catalog item to the cart by id."""

    kind: ItemKind
    item_id: str = Field(..., min_length=1)
    skip_ownership_check: bool = False


class LineIn(BaseModel):
    """A line as held by a client-side cart, prices are re-derived server side."""

    kind: ItemKind
    item_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    unit_original_price: Decimal = Field(..., ge=0)
    validity_months: int = Field(default=3, gt=0)
    thumbnail_url: Optional[str] = None

    def to_line(self):
        data = self.model_dump(exclude={"kind"})
        if self.kind == ItemKind.BUNDLE:
            return BundleLine(unit_price=self.unit_original_price, **data)
        return CourseLine(**data)


class ReplaceCartIn(BaseModel):
    lines: List[LineIn]


class ValidateCartIn(BaseModel):
    lines: Optional[List[LineIn]] = None


class CartConflict(BaseModel):
    item_id: str
    kind: ItemKind
    title: str
    conflict_type: Literal["already_owned", "in_bundle", "duplicate"]
    message: str


class CartValidation(BaseModel):
    valid: bool
    errors: List[str]
    warnings: List[str]
    conflicts: List[CartConflict]
    item_count: int
    course_count: int
    bundle_count: int
    tier: ByobTier


# =====================================================
# CATALOG (content collaborator records)
# =====================================================
class GrantTokens(BaseModel):
    three_month: Optional[str] = None
    six_month: Optional[str] = None
    nine_month: Optional[str] = None

    def for_validity(self, months: int) -> Optional[str]:
        if months >= 9:
            return self.nine_month
        if months >= 6:
            return self.six_month
        return self.three_month


class CourseRecord(BaseModel):
    id: str
    title: str
    price: Decimal
    thumbnail_url: Optional[str] = None
    grant_tokens: GrantTokens = Field(default_factory=GrantTokens)


class BundleRecord(BaseModel):
    id: str
    title: str
    price: Decimal
    validity_months: int = 1
    grant_token: Optional[str] = None
    thumbnail_url: Optional[str] = None
    course_ids: List[str] = []


# =====================================================
# PURCHASE SNAPSHOT
# =====================================================
class PurchasedCourse(BaseModel):
    course_id: str
    title: str
    original_price: Decimal
    price_paid: Decimal
    grant_token: Optional[str] = None
    validity_months: int


class PurchasedBundle(BaseModel):
    bundle_id: str
    title: str
    price_paid: Decimal
    grant_token: Optional[str] = None
    validity_months: int
    course_ids: List[str] = []


class ByobApplied(BaseModel):
    tier: ByobTier
    discount_rate: Decimal
    original_validity: int
    upgraded_validity: int


class ItemsSnapshot(BaseModel):
    """Frozen copy of what was bought, never re-derived from the catalog."""

    courses: List[PurchasedCourse] = []
    bundles: List[PurchasedBundle] = []
    byob_applied: Optional[ByobApplied] = None
    discount_details: CartSummary = Field(default_factory=CartSummary)


# =====================================================
# CHECKOUT
# =====================================================
class CheckoutMode(str, Enum):
    CART = "cart"
    BUY_NOW = "buy_now"


class CheckoutSessionIn(BaseModel):
    email: Optional[str] = None
    success_url: str = Field(..., min_length=1)
    cancel_url: str = Field(..., min_length=1)
    mode: CheckoutMode = CheckoutMode.CART
    single_item: Optional[ItemIn] = None


class CheckoutSessionOut(BaseModel):
    session_id: str
    redirect_url: str
    purchase_id: str


class PaymentSession(BaseModel):
    """What the payment collaborator tells us about a hosted session."""

    id: str
    url: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    customer_id: Optional[str] = None
    mode: Optional[str] = None
    metadata: dict[str, str] = {}


class PaymentConfirmation(BaseModel):
    purchase_id: str
    status: str
    already_confirmed: bool


# =====================================================
# ACCESS / LEDGER
# =====================================================
class AccessType(str, Enum):
    DIRECT = "direct"
    BUNDLE = "bundle"
    NONE = "none"


class AccessInfo(BaseModel):
    has_access: bool
    type: AccessType
    expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    entitlement_id: Optional[str] = None
    bundle_id: Optional[str] = None
    purchase_id: Optional[str] = None

    @classmethod
    def none(cls) -> "AccessInfo":
        return cls(has_access=False, type=AccessType.NONE)


class AccessCheckIn(BaseModel):
    course_id: Optional[str] = None
    course_ids: Optional[List[str]] = None


class PurchaseOut(BaseModel):
    id: str
    buyer_id: str
    purchase_type: str
    status: str
    amount_paid: Decimal
    currency: str
    items_snapshot: ItemsSnapshot
    payment_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EntitlementOut(BaseModel):
    id: str
    buyer_id: str
    purchase_id: str
    grant_type: ItemKind
    target_id: str
    target_title: Optional[str] = None
    grant_token: Optional[str] = None
    validity_months: int
    expires_at: datetime
    is_active: bool
    bundle_course_ids: Optional[List[str]] = None
    granted_at: datetime
    deactivated_at: Optional[datetime] = None
    deactivation_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class EntitlementWithPurchaseOut(EntitlementOut):
    purchase_paid_at: Optional[datetime] = None
    purchase_amount_paid: Decimal
    purchase_session_id: Optional[str] = None


class PurchaseStats(BaseModel):
    total_purchases: int
    total_spent: Decimal
    active_entitlements: int
    expired_entitlements: int
    processing_purchases: int


class InvoiceOut(BaseModel):
    """Where the buyer can download proof of payment, a Stripe invoice or a card receipt."""

    type: Literal["invoice", "receipt"]
    url: Optional[str] = None
    pdf_url: Optional[str] = None
    number: Optional[str] = None
    status: Optional[str] = None
    # minor units, as reported by the processor
    amount_paid: Optional[int] = None
    created: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None


# =====================================================
# RESPONSE ENVELOPE
# =====================================================
T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class ApiError(BaseModel):
    success: bool = False
    error: str
    message: str
    details: Optional[Any] = None
