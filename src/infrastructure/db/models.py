# src/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.pricing import BookingOrigin, CategoryPrices
from src.domain.qr import remaining_scans, scan_rejection_reason
from src.domain.state_machine import BookingStatus, PaymentStatus


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Event(Base):
    """
    Event with its seat counter.
    booked_seats is only ever changed by the seat ledger.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user_price: Mapped[int] = mapped_column(Integer, nullable=False)
    member_price: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_price: Mapped[int] = mapped_column(Integer, nullable=False)
    kid_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked_seats: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_tickets_per_user: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_tickets_per_member: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_tickets_per_guest: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("max_capacity >= 1", name="ck_event_capacity_positive"),
        CheckConstraint("booked_seats >= 0", name="ck_event_booked_nonnegative"),
        CheckConstraint("booked_seats <= max_capacity", name="ck_event_booked_lte_capacity"),
        CheckConstraint(
            "user_price >= 0 AND member_price >= 0 AND guest_price >= 0 AND kid_price >= 0",
            name="ck_event_prices_nonnegative",
        ),
        CheckConstraint("member_price <= user_price", name="ck_event_member_price_lte_user"),
        CheckConstraint("end_date >= start_date", name="ck_event_dates_ordered"),
    )

    @property
    def available_seats(self) -> int:
        return self.max_capacity - self.booked_seats

    @property
    def is_sold_out(self) -> bool:
        return self.booked_seats >= self.max_capacity

    @property
    def prices(self) -> CategoryPrices:
        return CategoryPrices(
            user=self.user_price,
            member=self.member_price,
            guest=self.guest_price,
            kid=self.kid_price,
        )

    def ticket_limit_for(self, origin: BookingOrigin) -> int | None:
        limits = {
            BookingOrigin.USER: self.max_tickets_per_user,
            BookingOrigin.MEMBER: self.max_tickets_per_member,
            BookingOrigin.GUEST: self.max_tickets_per_guest,
            BookingOrigin.OFFLINE: None,
        }
        return limits[origin]


class Booking(Base):
    """
    Booking table reflecting domain state.
    Domain controls transitions.
    DB stores current state safely.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    booking_code: Mapped[str] = mapped_column(String(40), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    origin: Mapped[BookingOrigin] = mapped_column(
        Enum(BookingOrigin, name="booking_origin", values_callable=_enum_values),
        nullable=False,
    )
    seat_count: Mapped[int] = mapped_column(Integer, nullable=False)

    member_ticket_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    guest_ticket_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kid_ticket_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    member_veg_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    member_non_veg_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    guest_veg_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    guest_non_veg_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kid_veg_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kid_non_veg_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    gross_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    discount_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    final_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="razorpay")

    # payment details
    razorpay_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    razorpay_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    razorpay_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    utr_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    qr_token: Mapped[str] = mapped_column(String(64), nullable=False)
    qr_code_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_scan_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    qr_scan_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # guest sponsorship
    sponsoring_member_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    guest_first_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    guest_last_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(128), nullable=True)
    guest_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    member_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    contact_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_modified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    confirmation_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("booking_code", name="uq_booking_code"),
        UniqueConstraint("qr_token", name="uq_booking_qr_token"),
        UniqueConstraint("razorpay_payment_id", name="uq_booking_razorpay_payment_id"),
        CheckConstraint("seat_count > 0", name="ck_seat_count_positive"),
        CheckConstraint("qr_scan_count >= 0", name="ck_qr_scan_count_nonnegative"),
        CheckConstraint("qr_scan_count <= qr_scan_limit", name="ck_qr_scan_count_lte_limit"),
        CheckConstraint("final_amount >= 0", name="ck_final_amount_nonnegative"),
        Index("ix_bookings_event_id", "event_id"),
        Index("ix_bookings_user_id", "user_id"),
        Index("ix_bookings_status", "status"),
    )

    @property
    def remaining_scans(self) -> int:
        return remaining_scans(self.qr_scan_limit, self.qr_scan_count)

    @property
    def is_fully_scanned(self) -> bool:
        return self.qr_scan_count >= self.qr_scan_limit

    @property
    def can_be_scanned(self) -> bool:
        return self.scan_rejection_reason is None

    @property
    def scan_rejection_reason(self):
        return scan_rejection_reason(
            self.status,
            self.payment_status,
            self.qr_scan_count,
            self.qr_scan_limit,
        )


class QRScanEvent(Base):
    """Append-only entry log for a booking's QR token."""

    __tablename__ = "qr_scan_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    scanned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    scanned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_qr_scan_events_booking_id", "booking_id"),
    )
