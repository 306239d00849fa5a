# src/domain/qr.py

import base64
import io
import secrets
from enum import Enum

import qrcode
from qrcode.image.svg import SvgPathImage

from src.domain.state_machine import BookingStatus, PaymentStatus


class ScanRejectReason(str, Enum):
    NOT_CONFIRMED = "not_confirmed"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"
    QUOTA_EXHAUSTED = "quota_exhausted"

    def describe(self) -> str:
        return _REASON_TEXT[self]


_REASON_TEXT = {
    ScanRejectReason.NOT_CONFIRMED: "Booking not confirmed",
    ScanRejectReason.PAYMENT_NOT_COMPLETED: "Payment not completed",
    ScanRejectReason.QUOTA_EXHAUSTED: "QR code fully used",
}


def generate_qr_token() -> str:
    return secrets.token_hex(16)


def render_qr_data_url(token: str) -> str:
    """Encode the token as an SVG QR code, returned as a data URL."""
    image = qrcode.make(token, image_factory=SvgPathImage)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def remaining_scans(scan_limit: int, scan_count: int) -> int:
    return max(0, scan_limit - scan_count)


def scan_rejection_reason(
    status: BookingStatus,
    payment_status: PaymentStatus,
    scan_count: int,
    scan_limit: int,
) -> ScanRejectReason | None:
    """
    None when the booking may be admitted. Causes are checked in the
    order operators should hear about them.
    """
    if status != BookingStatus.CONFIRMED:
        return ScanRejectReason.NOT_CONFIRMED
    if payment_status != PaymentStatus.COMPLETED:
        return ScanRejectReason.PAYMENT_NOT_COMPLETED
    if scan_count >= scan_limit:
        return ScanRejectReason.QUOTA_EXHAUSTED
    return None
