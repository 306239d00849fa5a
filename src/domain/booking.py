# src/domain/booking.py

import random
import string
import time
from dataclasses import dataclass

from src.domain.exceptions import ValidationFailedError
from src.domain.pricing import PriceQuote

BOOKING_CODE_PREFIX = "SRS"
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class MealCounts:
    member_veg: int = 0
    member_non_veg: int = 0
    guest_veg: int = 0
    guest_non_veg: int = 0
    kid_veg: int = 0
    kid_non_veg: int = 0

    @property
    def total(self) -> int:
        return (
            self.member_veg
            + self.member_non_veg
            + self.guest_veg
            + self.guest_non_veg
            + self.kid_veg
            + self.kid_non_veg
        )


@dataclass(frozen=True)
class GuestDetails:
    first_name: str
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None


def generate_booking_code() -> str:
    """
    Human readable id: prefix + epoch millis + 6 random characters.
    Practically unique only; the store's unique constraint is the guard.
    """
    timestamp = str(int(time.time() * 1000))
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=6))
    return f"{BOOKING_CODE_PREFIX}{timestamp}{suffix}"


def ensure_positive_seats(seat_count: int) -> None:
    if seat_count < 1:
        raise ValidationFailedError("Must book at least 1 seat")


def ensure_non_negative(**counts: int) -> None:
    for name, value in counts.items():
        if value < 0:
            raise ValidationFailedError(f"{name} cannot be negative")


def ensure_meals_match(meals: MealCounts, seat_count: int) -> None:
    ensure_non_negative(**vars(meals))
    if meals.total != seat_count:
        raise ValidationFailedError(
            f"Total meal count ({meals.total}) must match seat count ({seat_count})"
        )


def ensure_within_limit(seat_count: int, limit: int, origin_label: str) -> None:
    if seat_count > limit:
        raise ValidationFailedError(
            f"Maximum {limit} tickets allowed for {origin_label} booking"
        )


def ensure_offline_payment(
    paid: bool,
    quote: PriceQuote,
    amount_paid: int | None,
    utr_number: str | None,
) -> None:
    """
    A booking marked paid must carry the bank reference (UTR) and the
    collected amount must equal the computed final amount.
    """
    if not paid:
        return
    if not utr_number or not utr_number.strip():
        raise ValidationFailedError(
            "UTR/reference number is required for paid bookings"
        )
    if amount_paid is None or amount_paid != quote.final_amount:
        raise ValidationFailedError(
            f"Amount paid ({amount_paid}) does not match final amount "
            f"({quote.final_amount})"
        )
