# tests/unit/test_booking_rules.py

import re

import pytest

from src.domain.booking import (
    MealCounts,
    ensure_meals_match,
    ensure_offline_payment,
    ensure_positive_seats,
    ensure_within_limit,
    generate_booking_code,
)
from src.domain.exceptions import ValidationFailedError
from src.domain.pricing import CategoryPrices, TicketCounts, quote_category_booking
from src.domain.qr import (
    ScanRejectReason,
    generate_qr_token,
    remaining_scans,
    render_qr_data_url,
    scan_rejection_reason,
)
from src.domain.state_machine import BookingStatus, PaymentStatus

QUOTE = quote_category_booking(
    TicketCounts(member=2),
    CategoryPrices(user=1000, member=800, guest=1200),
)


def test_booking_code_format():
    code = generate_booking_code()

    assert re.fullmatch(r"SRS\d{13}[A-Z0-9]{6}", code)


def test_booking_codes_differ():
    assert len({generate_booking_code() for _ in range(50)}) == 50


def test_zero_seats_rejected():
    with pytest.raises(ValidationFailedError):
        ensure_positive_seats(0)


def test_meals_must_cover_every_seat():
    ensure_meals_match(MealCounts(member_veg=1, guest_non_veg=2), 3)

    with pytest.raises(ValidationFailedError) as exc_info:
        ensure_meals_match(MealCounts(member_veg=1), 3)

    assert "(1)" in exc_info.value.message
    assert "(3)" in exc_info.value.message


def test_negative_meal_count_rejected():
    with pytest.raises(ValidationFailedError):
        ensure_meals_match(MealCounts(member_veg=4, kid_veg=-1), 3)


def test_ticket_limit():
    ensure_within_limit(5, 5, "user")

    with pytest.raises(ValidationFailedError, match="Maximum 3 tickets"):
        ensure_within_limit(4, 3, "guest")


def test_unpaid_offline_needs_no_reference():
    ensure_offline_payment(False, QUOTE, None, None)


def test_paid_offline_requires_utr():
    with pytest.raises(ValidationFailedError, match="UTR"):
        ensure_offline_payment(True, QUOTE, QUOTE.final_amount, "   ")


def test_paid_offline_requires_exact_amount():
    with pytest.raises(ValidationFailedError, match="does not match"):
        ensure_offline_payment(True, QUOTE, QUOTE.final_amount - 1, "UTR123")

    ensure_offline_payment(True, QUOTE, QUOTE.final_amount, "UTR123")


# ---------------------
# QR
# ---------------------

def test_qr_tokens_are_opaque_hex():
    token = generate_qr_token()

    assert re.fullmatch(r"[0-9a-f]{32}", token)
    assert token != generate_qr_token()


def test_qr_image_is_svg_data_url():
    assert render_qr_data_url("abc").startswith("data:image/svg+xml;base64,")


def test_remaining_scans_never_negative():
    assert remaining_scans(3, 1) == 2
    assert remaining_scans(3, 5) == 0


@pytest.mark.parametrize(
    "status, payment_status, count, expected",
    [
        (BookingStatus.CONFIRMED, PaymentStatus.COMPLETED, 0, None),
        (BookingStatus.PENDING, PaymentStatus.PENDING, 0, ScanRejectReason.NOT_CONFIRMED),
        (BookingStatus.CANCELLED, PaymentStatus.REFUNDED, 0, ScanRejectReason.NOT_CONFIRMED),
        (BookingStatus.CONFIRMED, PaymentStatus.PENDING, 0, ScanRejectReason.PAYMENT_NOT_COMPLETED),
        (BookingStatus.CONFIRMED, PaymentStatus.COMPLETED, 2, ScanRejectReason.QUOTA_EXHAUSTED),
    ],
)
def test_scan_rejection_reason(status, payment_status, count, expected):
    assert scan_rejection_reason(status, payment_status, count, 2) == expected


def test_reason_descriptions():
    assert ScanRejectReason.QUOTA_EXHAUSTED.describe() == "QR code fully used"
    assert ScanRejectReason.NOT_CONFIRMED.describe() == "Booking not confirmed"
