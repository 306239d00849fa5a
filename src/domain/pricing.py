# src/domain/pricing.py

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, Dict, Mapping


class BookingOrigin(str, Enum):
    USER = "user"
    MEMBER = "member"
    GUEST = "guest"
    OFFLINE = "offline"


# Single source of truth for discount codes -> percent off.
DISCOUNT_CODES: Mapping[str, int] = {
    "EARLYBIRD": 10,
    "SRS10": 10,
    "MEMBER15": 15,
    "FESTIVE20": 20,
    "VIP25": 25,
}


@dataclass(frozen=True)
class CategoryPrices:
    user: int
    member: int
    guest: int
    kid: int = 0


@dataclass(frozen=True)
class TicketCounts:
    member: int = 0
    guest: int = 0
    kid: int = 0

    @property
    def total(self) -> int:
        return self.member + self.guest + self.kid


@dataclass(frozen=True)
class PriceQuote:
    unit_price: int
    gross_amount: int
    discount_code: str | None
    discount_percent: int
    discount_amount: int
    final_amount: int


_UNIT_PRICE_BY_ORIGIN: Dict[BookingOrigin, Callable[[CategoryPrices], int] | None] = {
    BookingOrigin.USER: lambda prices: prices.user,
    BookingOrigin.MEMBER: lambda prices: prices.member,
    BookingOrigin.GUEST: lambda prices: prices.guest,
    # Offline entries mix categories, see quote_category_booking.
    BookingOrigin.OFFLINE: None,
}


def normalize_discount_code(code: str | None) -> str | None:
    if code is None:
        return None
    normalized = code.strip().upper()
    return normalized or None


def resolve_discount_percent(code: str | None) -> int:
    """
    Unknown and empty codes resolve to 0 percent. That is policy,
    not an error: a mistyped code simply grants no discount.
    """
    normalized = normalize_discount_code(code)
    if normalized is None:
        return 0
    return DISCOUNT_CODES.get(normalized, 0)


def discount_for(gross_amount: int, percent: int) -> int:
    """round(gross * percent / 100), halves rounded up."""
    amount = Decimal(gross_amount) * Decimal(percent) / Decimal(100)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def unit_price_for(origin: BookingOrigin, prices: CategoryPrices) -> int:
    if not isinstance(origin, BookingOrigin):
        raise TypeError(f"Expected BookingOrigin, got {type(origin)}")

    selector = _UNIT_PRICE_BY_ORIGIN[origin]
    if selector is None:
        raise ValueError(
            f"{origin.value} bookings are priced per ticket category"
        )
    return selector(prices)


def _apply_discount(
    unit_price: int,
    gross_amount: int,
    discount_code: str | None,
) -> PriceQuote:
    percent = resolve_discount_percent(discount_code)
    discount_amount = discount_for(gross_amount, percent)
    return PriceQuote(
        unit_price=unit_price,
        gross_amount=gross_amount,
        discount_code=normalize_discount_code(discount_code),
        discount_percent=percent,
        discount_amount=discount_amount,
        final_amount=gross_amount - discount_amount,
    )


def quote_single_category(
    origin: BookingOrigin,
    seat_count: int,
    prices: CategoryPrices,
    discount_code: str | None = None,
) -> PriceQuote:
    """Online booking: one price tier chosen by origin, times seat count."""
    unit_price = unit_price_for(origin, prices)
    return _apply_discount(unit_price, unit_price * seat_count, discount_code)


def quote_category_booking(
    counts: TicketCounts,
    prices: CategoryPrices,
    discount_code: str | None = None,
) -> PriceQuote:
    """
    Multi-category booking (offline entries):
    gross = member*member_price + guest*guest_price + kid*kid_price.

    unit_price is the per-seat average, floored.
    """
    gross_amount = (
        counts.member * prices.member
        + counts.guest * prices.guest
        + counts.kid * prices.kid
    )
    unit_price = gross_amount // counts.total if counts.total else 0
    return _apply_discount(unit_price, gross_amount, discount_code)
