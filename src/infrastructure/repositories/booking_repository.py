# src/infrastructure/repositories/booking_repository.py

from datetime import datetime, timezone

from sqlalchemy.orm import Session
from sqlalchemy import delete, func, select, update

from src.infrastructure.db.models import Booking, QRScanEvent
from src.domain.pricing import BookingOrigin
from src.domain.state_machine import BookingStatus, PaymentStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:
        # Conditional updates bypass the identity map, always reload.
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_code(self, booking_code: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.booking_code == booking_code)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_qr_token(self, qr_token: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.qr_token == qr_token)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_id(self, payment_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.razorpay_payment_id == payment_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def booking_code_exists(self, booking_code: str) -> bool:
        stmt = select(Booking.id).where(Booking.booking_code == booking_code)
        return self.db.execute(stmt).first() is not None

    def qr_token_exists(self, qr_token: str) -> bool:
        stmt = select(Booking.id).where(Booking.qr_token == qr_token)
        return self.db.execute(stmt).first() is not None

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def conditional_update(
        self,
        booking_id: str,
        values: dict,
        statuses: set[BookingStatus] | None = None,
        payment_statuses: set[PaymentStatus] | None = None,
        version: int | None = None,
    ) -> bool:
        """
        Single-statement guarded write. Returns False when the booking
        no longer matches the guard (status moved or version bumped).
        """
        stmt = update(Booking).where(Booking.id == booking_id)
        if statuses is not None:
            stmt = stmt.where(Booking.status.in_(sorted(statuses)))
        if payment_statuses is not None:
            stmt = stmt.where(Booking.payment_status.in_(sorted(payment_statuses)))
        if version is not None:
            stmt = stmt.where(Booking.version == version)

        stmt = stmt.values(
            version=Booking.version + 1,
            updated_at=datetime.now(timezone.utc),
            **values,
        ).execution_options(synchronize_session=False)

        return self.db.execute(stmt).rowcount == 1

    def increment_scan_count(self, booking_id: str) -> bool:
        """
        Atomic admit: bumps qr_scan_count only while the booking is
        confirmed, paid and under quota.
        """
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.status == BookingStatus.CONFIRMED)
            .where(Booking.payment_status == PaymentStatus.COMPLETED)
            .where(Booking.qr_scan_count < Booking.qr_scan_limit)
            .values(
                qr_scan_count=Booking.qr_scan_count + 1,
                version=Booking.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def append_scan(
        self,
        booking_id: str,
        scanned_by: str | None,
        location: str | None,
        notes: str | None,
    ) -> QRScanEvent:
        scan = QRScanEvent(
            booking_id=booking_id,
            scanned_at=datetime.now(timezone.utc),
            scanned_by=scanned_by,
            location=location,
            notes=notes,
        )
        self.db.add(scan)
        self.db.flush()
        return scan

    def list_scans(self, booking_id: str) -> list[QRScanEvent]:
        stmt = (
            select(QRScanEvent)
            .where(QRScanEvent.booking_id == booking_id)
            .order_by(QRScanEvent.scanned_at, QRScanEvent.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_bookings(
        self,
        status: BookingStatus | None = None,
        event_id: str | None = None,
        user_id: str | None = None,
        origin: BookingOrigin | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Booking], int]:
        filters = []
        if status is not None:
            filters.append(Booking.status == status)
        if event_id is not None:
            filters.append(Booking.event_id == event_id)
        if user_id is not None:
            filters.append(Booking.user_id == user_id)
        if origin is not None:
            filters.append(Booking.origin == origin)

        total = self.db.execute(
            select(func.count()).select_from(Booking).where(*filters)
        ).scalar_one()

        stmt = (
            select(Booking)
            .where(*filters)
            .order_by(Booking.created_at.desc(), Booking.booking_code.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(self.db.execute(stmt).scalars().all()), total

    def confirmed_revenue(self, event_id: str) -> int:
        stmt = (
            select(func.coalesce(func.sum(Booking.final_amount), 0))
            .where(Booking.event_id == event_id)
            .where(Booking.payment_status == PaymentStatus.COMPLETED)
        )
        return int(self.db.execute(stmt).scalar_one())

    def hard_delete(self, booking: Booking) -> None:
        self.db.execute(delete(QRScanEvent).where(QRScanEvent.booking_id == booking.id))
        self.db.delete(booking)
        self.db.flush()
