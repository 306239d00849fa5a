from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class MealCountsPayload(BaseModel):
    member_veg: int = Field(default=0, ge=0)
    member_non_veg: int = Field(default=0, ge=0)
    guest_veg: int = Field(default=0, ge=0)
    guest_non_veg: int = Field(default=0, ge=0)
    kid_veg: int = Field(default=0, ge=0)
    kid_non_veg: int = Field(default=0, ge=0)


class GuestDetailsPayload(BaseModel):
    first_name: str
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None


class EventCreate(BaseModel):
    title: str
    location: str
    start_date: datetime
    end_date: datetime
    max_capacity: int = Field(ge=1)
    user_price: int = Field(ge=0)
    member_price: int = Field(ge=0)
    guest_price: int = Field(ge=0)
    kid_price: int = Field(default=0, ge=0)
    max_tickets_per_user: int = Field(default=5, ge=1)
    max_tickets_per_member: int = Field(default=10, ge=1)
    max_tickets_per_guest: int = Field(default=3, ge=1)


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    location: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    user_price: int
    member_price: int
    guest_price: int
    kid_price: int
    max_capacity: int
    booked_seats: int
    available_seats: int
    max_tickets_per_user: int
    max_tickets_per_member: int
    max_tickets_per_guest: int


class EventSummaryResponse(BaseModel):
    event_id: str
    total_seats: int
    available_seats: int
    booked_seats: int
    confirmed_revenue: int


class BookingRequest(BaseModel):
    event_id: str
    origin: Literal["user", "member", "guest"]
    seat_count: int = Field(gt=0)
    meals: MealCountsPayload
    user_id: str | None = None
    discount_code: str | None = None
    guest_details: GuestDetailsPayload | None = None
    sponsoring_member_id: str | None = None
    special_requests: str | None = None


class OfflineBookingRequest(BaseModel):
    event_id: str
    member_ticket_count: int = Field(default=0, ge=0)
    guest_ticket_count: int = Field(default=0, ge=0)
    kid_ticket_count: int = Field(default=0, ge=0)
    meals: MealCountsPayload
    paid: bool = False
    amount_paid: int | None = Field(default=None, ge=0)
    utr_number: str | None = None
    payment_method: str = "cash"
    discount_code: str | None = None
    user_id: str | None = None
    member_name: str | None = None
    contact_number: str | None = None
    notes: str | None = None
    created_by: str | None = None


class OfflineBookingEdit(BaseModel):
    member_ticket_count: int | None = Field(default=None, ge=0)
    guest_ticket_count: int | None = Field(default=None, ge=0)
    kid_ticket_count: int | None = Field(default=None, ge=0)
    meals: MealCountsPayload | None = None
    discount_code: str | None = None
    paid: bool | None = None
    amount_paid: int | None = Field(default=None, ge=0)
    utr_number: str | None = None
    payment_method: str | None = None
    member_name: str | None = None
    contact_number: str | None = None
    notes: str | None = None
    modified_by: str | None = None


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_code: str
    event_id: str
    user_id: str | None
    origin: str
    status: str
    payment_status: str
    payment_method: str
    seat_count: int
    member_ticket_count: int
    guest_ticket_count: int
    kid_ticket_count: int
    unit_price: int
    gross_amount: int
    discount_code: str | None
    discount_percent: int
    discount_amount: int
    final_amount: int
    qr_token: str
    qr_code_image: str | None
    qr_scan_limit: int
    qr_scan_count: int
    remaining_scans: int
    sponsoring_member_id: str | None
    utr_number: str | None
    refund_amount: int | None
    refund_id: str | None
    cancellation_reason: str | None
    created_at: datetime | None = None

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            booking_code=booking.booking_code,
            event_id=booking.event_id,
            user_id=booking.user_id,
            origin=booking.origin.value,
            status=booking.status.value,
            payment_status=booking.payment_status.value,
            payment_method=booking.payment_method,
            seat_count=booking.seat_count,
            member_ticket_count=booking.member_ticket_count,
            guest_ticket_count=booking.guest_ticket_count,
            kid_ticket_count=booking.kid_ticket_count,
            unit_price=booking.unit_price,
            gross_amount=booking.gross_amount,
            discount_code=booking.discount_code,
            discount_percent=booking.discount_percent,
            discount_amount=booking.discount_amount,
            final_amount=booking.final_amount,
            qr_token=booking.qr_token,
            qr_code_image=booking.qr_code_image,
            qr_scan_limit=booking.qr_scan_limit,
            qr_scan_count=booking.qr_scan_count,
            remaining_scans=booking.remaining_scans,
            sponsoring_member_id=booking.sponsoring_member_id,
            utr_number=booking.utr_number,
            refund_amount=booking.refund_amount,
            refund_id=booking.refund_id,
            cancellation_reason=booking.cancellation_reason,
            created_at=booking.created_at,
        )


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    current_page: int
    total_pages: int
    total_bookings: int


class PaymentOrderResponse(BaseModel):
    booking_id: str
    order_id: str
    amount: int
    currency: str
    key_id: str | None = None


class RazorpayVerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class PaymentFailureRequest(BaseModel):
    reason: str = "Payment failed"


class CancelRequest(BaseModel):
    reason: str | None = None
    cancelled_by: str | None = None


class SponsorDecisionRequest(BaseModel):
    member_id: str
    reason: str | None = None


class ScanRequest(BaseModel):
    qr_token: str
    scanned_by: str | None = None
    location: str | None = None
    notes: str | None = None


class ScanResponse(BaseModel):
    booking_code: str
    seat_count: int
    qr_scan_count: int
    remaining_scans: int


class ScanEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    scanned_at: datetime
    scanned_by: str | None
    location: str | None
    notes: str | None
