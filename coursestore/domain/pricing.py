# coursestore/domain/pricing.py
"""
BYOB (Bundle Your Own Bundle) pricing engine.

The single place where the volume tier table lives. Every cart mutation and
every checkout prices through `price_cart`, nothing else re-implements the
thresholds.

Rules:
- only course lines count towards the tier, bundles are never repriced
- 5+ courses -> 13% off, 6 months validity
- 10+ courses -> 18% off, 9 months validity
- otherwise no discount, 3 months validity
- the discount amount is the sum of the per course reductions, so the cart
  total always equals the sum of the charged line prices
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Sequence

from coursestore.domain.schemas import BundleLine, ByobTier, CartSummary, CourseLine

CENT = Decimal("0.01")

FIVE_PLUS_THRESHOLD = 5
TEN_PLUS_THRESHOLD = 10
DEFAULT_VALIDITY_MONTHS = 3


@dataclass(frozen=True)
class TierTerms:
    discount_rate: Decimal
    validity_months: int


TIER_TABLE = {
    ByobTier.NONE: TierTerms(Decimal("0"), DEFAULT_VALIDITY_MONTHS),
    ByobTier.FIVE_PLUS: TierTerms(Decimal("0.13"), 6),
    ByobTier.TEN_PLUS: TierTerms(Decimal("0.18"), 9),
}


@dataclass(frozen=True)
class PricedCart:
    lines: List
    summary: CartSummary


def q2(amount) -> Decimal:
    """Quantize to cents, half up."""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def tier_for(course_count: int) -> ByobTier:
    if course_count >= TEN_PLUS_THRESHOLD:
        return ByobTier.TEN_PLUS
    if course_count >= FIVE_PLUS_THRESHOLD:
        return ByobTier.FIVE_PLUS
    return ByobTier.NONE


def discount_rate(course_count: int) -> Decimal:
    return TIER_TABLE[tier_for(course_count)].discount_rate


def validity_months(course_count: int) -> int:
    return TIER_TABLE[tier_for(course_count)].validity_months


def courses_to_next_tier(course_count: int) -> int | None:
    """How many more courses unlock the next tier, None when already at the top."""
    if course_count < FIVE_PLUS_THRESHOLD:
        return FIVE_PLUS_THRESHOLD - course_count
    if course_count < TEN_PLUS_THRESHOLD:
        return TEN_PLUS_THRESHOLD - course_count
    return None


def split_lines(lines: Iterable) -> tuple[list, list]:
    course_lines, bundle_lines = [], []
    for line in lines:
        if isinstance(line, CourseLine):
            course_lines.append(line)
        elif isinstance(line, BundleLine):
            bundle_lines.append(line)
        else:
            raise TypeError(f"Unsupported cart line: {type(line).__name__}")
    return course_lines, bundle_lines


def price_cart(lines: Sequence) -> PricedCart:
    """
    Recompute unit prices, validity and the cart summary.

    Input lines are left untouched (they are frozen models), repriced copies
    are returned in the original order.
    """
    course_lines, _ = split_lines(lines)
    tier = tier_for(len(course_lines))
    terms = TIER_TABLE[tier]

    priced = []
    for line in lines:
        if isinstance(line, CourseLine):
            priced.append(
                line.model_copy(
                    update={
                        "unit_price": q2(line.unit_original_price * (1 - terms.discount_rate)),
                        "validity_months": terms.validity_months,
                    }
                )
            )
        else:
            priced.append(line)

    subtotal = q2(sum((line.unit_original_price for line in lines), Decimal("0")))
    discount_amount = q2(sum(
        (line.unit_original_price - line.unit_price for line in priced if isinstance(line, CourseLine)),
        Decimal("0"),
    ))

    summary = CartSummary(
        subtotal=subtotal,
        discount_amount=discount_amount,
        total=subtotal - discount_amount,
        tier=tier,
    )
    return PricedCart(lines=priced, summary=summary)
