"""Suggested shortlist price from seniority, size and rarity."""

from dataclasses import asdict, dataclass
from decimal import Decimal

from app.models.enums import SeniorityLevel

BASE_PRICES: dict[SeniorityLevel, Decimal] = {
    SeniorityLevel.JUNIOR: Decimal("250"),
    SeniorityLevel.MID: Decimal("300"),
    SeniorityLevel.SENIOR: Decimal("500"),
    SeniorityLevel.LEAD: Decimal("600"),
    SeniorityLevel.PRINCIPAL: Decimal("700"),
}
DEFAULT_BASE_PRICE = Decimal("400")
RARE_ROLE_PREMIUM = Decimal("150")
MINIMUM_PRICE = Decimal("200")


@dataclass(frozen=True)
class PriceBreakdown:
    seniority: str
    base_price: Decimal
    candidate_count: int
    size_adjustment: Decimal
    is_rare: bool
    rare_premium: Decimal
    suggested_price: Decimal

    def as_dict(self) -> dict:
        """JSON-friendly copy for storage in pricing_factors."""
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in asdict(self).items()}


def size_adjustment(candidate_count: int) -> Decimal:
    if candidate_count <= 3:
        return Decimal("-50")
    if candidate_count <= 4:
        return Decimal("-25")
    if candidate_count <= 6:
        return Decimal("0")
    if candidate_count == 7:
        return Decimal("50")
    return Decimal("100")


def seniority_label(seniority: int | None) -> str:
    try:
        return SeniorityLevel(seniority).name.capitalize()
    except ValueError:
        return "Unspecified"


def calculate_price(seniority: int | None, candidate_count: int, is_rare: bool = False) -> PriceBreakdown:
    try:
        base = BASE_PRICES[SeniorityLevel(seniority)]
    except ValueError:
        base = DEFAULT_BASE_PRICE

    adjustment = size_adjustment(candidate_count)
    premium = RARE_ROLE_PREMIUM if is_rare else Decimal("0")
    price = max(base + adjustment + premium, MINIMUM_PRICE)

    return PriceBreakdown(
        seniority=seniority_label(seniority),
        base_price=base,
        candidate_count=candidate_count,
        size_adjustment=adjustment,
        is_rare=is_rare,
        rare_premium=premium,
        suggested_price=price,
    )


def apply_discount(price: Decimal, discount_percent: Decimal) -> Decimal:
    """Price after a percentage discount, rounded to cents."""
    factor = (Decimal("100") - Decimal(discount_percent)) / Decimal("100")
    return (Decimal(price) * factor).quantize(Decimal("0.01"))
