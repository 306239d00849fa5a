import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from src.domain.booking import (
    GuestDetails,
    MealCounts,
    ensure_meals_match,
    ensure_non_negative,
    ensure_offline_payment,
    ensure_positive_seats,
    ensure_within_limit,
    generate_booking_code,
)
from src.domain.exceptions import (
    AlreadyCancelledError,
    BookingNotFoundError,
    ConcurrentModificationError,
    PaymentGatewayError,
    PaymentVerificationFailedError,
    ScanRejectedError,
    ValidationFailedError,
)
from src.domain.pricing import (
    BookingOrigin,
    PriceQuote,
    TicketCounts,
    quote_category_booking,
    quote_single_category,
)
from src.domain.qr import ScanRejectReason, generate_qr_token, render_qr_data_url
from src.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from src.infrastructure.db.models import Booking, Event, QRScanEvent
from src.infrastructure.notifications.sender import (
    LoggingNotificationSender,
    NotificationSender,
)
from src.infrastructure.payments.gateway import PaymentGateway, PaymentOrder
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.seat_repository import (
    SeatRepository,
    inventory_stats,
)
from src.infrastructure.tickets.renderer import TicketRenderer

logger = logging.getLogger(__name__)

SEAT_RELEASE_RETRY_DELAY = float(os.getenv("SEAT_RELEASE_RETRY_DELAY", "0.5"))
SEAT_RELEASE_MAX_ATTEMPTS = int(os.getenv("SEAT_RELEASE_MAX_ATTEMPTS", "0"))

OFFLINE_PAYMENT_METHODS = {"cash", "upi", "bank_transfer", "other"}
_CODE_ATTEMPTS = 5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookingService:
    """
    Application service coordinating the booking lifecycle.

    Every public write is one unit of work: it commits on success and
    rolls the session back on any error, so a failure after a seat
    reservation also undoes the reservation.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway | None = None,
        notifier: NotificationSender | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier or LoggingNotificationSender()
        self.booking_repository = BookingRepository(db)
        self.seat_repository = SeatRepository(db)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_booking(
        self,
        event_id: str,
        origin: BookingOrigin,
        seat_count: int,
        meals: MealCounts,
        user_id: str | None = None,
        discount_code: str | None = None,
        guest: GuestDetails | None = None,
        sponsoring_member_id: str | None = None,
        special_requests: str | None = None,
    ) -> Booking:
        """Online booking priced by origin tier, awaiting payment."""
        if origin == BookingOrigin.OFFLINE:
            raise ValidationFailedError("Offline bookings are created by staff")
        ensure_positive_seats(seat_count)
        ensure_meals_match(meals, seat_count)
        if sponsoring_member_id and origin != BookingOrigin.GUEST:
            raise ValidationFailedError("Only guest bookings can be sponsored")

        event = self._bookable_event(event_id)
        ensure_within_limit(seat_count, event.ticket_limit_for(origin), origin.value)
        quote = quote_single_category(origin, seat_count, event.prices, discount_code)

        sponsored = origin == BookingOrigin.GUEST and sponsoring_member_id is not None
        booking = self._new_booking(
            event=event,
            origin=origin,
            seat_count=seat_count,
            meals=meals,
            quote=quote,
            status=BookingStatus.PENDING_APPROVAL if sponsored else BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            user_id=user_id,
            payment_method="razorpay",
            sponsoring_member_id=sponsoring_member_id if sponsored else None,
            special_requests=special_requests,
            created_by=user_id,
        )
        if origin == BookingOrigin.MEMBER:
            booking.member_ticket_count = seat_count
        elif origin == BookingOrigin.GUEST:
            booking.guest_ticket_count = seat_count
        if guest is not None:
            booking.guest_first_name = guest.first_name
            booking.guest_last_name = guest.last_name
            booking.guest_email = guest.email
            booking.guest_phone = guest.phone

        return self._reserve_and_insert(booking)

    def create_offline_booking(
        self,
        event_id: str,
        counts: TicketCounts,
        meals: MealCounts,
        paid: bool,
        created_by: str | None,
        amount_paid: int | None = None,
        utr_number: str | None = None,
        payment_method: str = "cash",
        discount_code: str | None = None,
        user_id: str | None = None,
        member_name: str | None = None,
        contact_number: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        """
        Staff-entered booking. Paid entries are confirmed immediately and
        must carry a UTR plus the exact final amount.
        """
        ensure_non_negative(
            member_ticket_count=counts.member,
            guest_ticket_count=counts.guest,
            kid_ticket_count=counts.kid,
        )
        seat_count = counts.total
        ensure_positive_seats(seat_count)
        ensure_meals_match(meals, seat_count)
        if payment_method not in OFFLINE_PAYMENT_METHODS:
            raise ValidationFailedError(f"Unsupported payment method {payment_method}")

        event = self._bookable_event(event_id)
        quote = quote_category_booking(counts, event.prices, discount_code)
        ensure_offline_payment(paid, quote, amount_paid, utr_number)

        booking = self._new_booking(
            event=event,
            origin=BookingOrigin.OFFLINE,
            seat_count=seat_count,
            meals=meals,
            quote=quote,
            status=BookingStatus.CONFIRMED if paid else BookingStatus.PENDING,
            payment_status=PaymentStatus.COMPLETED if paid else PaymentStatus.PENDING,
            user_id=user_id,
            payment_method=payment_method,
            created_by=created_by,
        )
        booking.member_ticket_count = counts.member
        booking.guest_ticket_count = counts.guest
        booking.kid_ticket_count = counts.kid
        booking.member_name = member_name
        booking.contact_number = contact_number
        booking.notes = notes
        booking.utr_number = utr_number.strip() if utr_number else None
        if paid:
            booking.payment_date = _utc_now()

        return self._reserve_and_insert(booking)

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    def initiate_payment(self, booking_id: str) -> PaymentOrder:
        gateway = self._require_gateway()
        booking = self.get_booking(booking_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)
        PaymentStateMachine.validate_transition(booking.payment_status, PaymentStatus.COMPLETED)

        order = gateway.create_order(booking.final_amount, booking.booking_code)

        with self._unit_of_work():
            applied = self.booking_repository.conditional_update(
                booking.id,
                {"razorpay_order_id": order.order_id},
                statuses=BookingStateMachine.sources_of(BookingStatus.CONFIRMED),
                payment_statuses={PaymentStatus.PENDING},
            )
            if not applied:
                raise ConcurrentModificationError(
                    f"Booking {booking.booking_code} changed while opening payment"
                )

        logger.info(
            "Payment order created. booking_code=%s order_id=%s amount=%s",
            booking.booking_code,
            order.order_id,
            order.amount,
        )
        return order

    def verify_payment(
        self,
        booking_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> Booking:
        gateway = self._require_gateway()
        booking = self.get_booking(booking_id)

        if (
            booking.status == BookingStatus.CONFIRMED
            and booking.razorpay_payment_id == payment_id
        ):
            return booking
        if not booking.razorpay_order_id:
            raise ValidationFailedError("Order not created for this booking")
        if order_id != booking.razorpay_order_id:
            raise ValidationFailedError("Order id does not match this booking")

        owner = self.booking_repository.get_by_payment_id(payment_id)
        if owner and owner.id != booking.id:
            raise ValidationFailedError("Payment id already consumed by another booking")

        if not gateway.verify(order_id, payment_id, signature):
            logger.warning(
                "Payment verification failed. booking_code=%s order_id=%s",
                booking.booking_code,
                order_id,
            )
            raise PaymentVerificationFailedError("Invalid payment signature")

        with self._unit_of_work():
            self._confirm(
                booking,
                {
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                    "payment_date": _utc_now(),
                },
            )

        confirmed = self.get_booking(booking.id)
        logger.info("Booking confirmed. booking_code=%s", confirmed.booking_code)
        self._notify_confirmation(confirmed)
        return self.get_booking(booking.id)

    def record_payment_failure(self, booking_id: str, reason: str) -> Booking:
        """Gateway reported a failed payment: the booking gives its seats back."""
        with self._unit_of_work():
            booking = self.get_booking(booking_id)
            BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)
            PaymentStateMachine.validate_transition(booking.payment_status, PaymentStatus.FAILED)

            self._guarded_update(
                booking,
                {
                    "status": BookingStatus.CANCELLED,
                    "payment_status": PaymentStatus.FAILED,
                    "cancellation_reason": reason,
                    "cancelled_at": _utc_now(),
                },
            )
            self.seat_repository.release(booking.event_id, booking.seat_count)

        logger.warning(
            "Payment failed, booking cancelled. booking_code=%s reason=%s",
            booking.booking_code,
            reason,
        )
        return self.get_booking(booking_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cancel_booking(
        self,
        booking_id: str,
        reason: str | None,
        cancelled_by: str | None,
    ) -> Booking:
        """
        Record the cancellation and release the seats as one unit.
        Storage failures are retried until both land. A booking that
        changed under us (a scan landing first) is re-read and retried.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._unit_of_work():
                    booking = self._cancel_once(booking_id, reason, cancelled_by)
                break
            except ConcurrentModificationError:
                logger.info(
                    "Booking changed during cancellation, retrying. booking_id=%s attempt=%s",
                    booking_id,
                    attempt,
                )
            except OperationalError:
                logger.critical(
                    "Cancellation with seat release failed. booking_id=%s attempt=%s",
                    booking_id,
                    attempt,
                    exc_info=True,
                )
                if SEAT_RELEASE_MAX_ATTEMPTS and attempt >= SEAT_RELEASE_MAX_ATTEMPTS:
                    raise
                time.sleep(SEAT_RELEASE_RETRY_DELAY)

        logger.info(
            "Booking cancelled. booking_code=%s seats_released=%s by=%s",
            booking.booking_code,
            booking.seat_count,
            cancelled_by,
        )
        self._refund_online_payment(self.get_booking(booking_id))
        return self.get_booking(booking_id)

    def complete_booking(self, booking_id: str) -> Booking:
        with self._unit_of_work():
            booking = self.get_booking(booking_id)
            BookingStateMachine.validate_transition(booking.status, BookingStatus.COMPLETED)
            self._guarded_update(booking, {"status": BookingStatus.COMPLETED})
        return self.get_booking(booking_id)

    def approve_guest_booking(self, booking_id: str, member_id: str) -> Booking:
        with self._unit_of_work():
            booking = self._sponsored_booking(booking_id, member_id)
            BookingStateMachine.validate_transition(booking.status, BookingStatus.APPROVED)
            self._guarded_update(
                booking,
                {
                    "status": BookingStatus.APPROVED,
                    "approved_at": _utc_now(),
                    "last_modified_by": member_id,
                },
            )
        logger.info("Guest booking approved. booking_code=%s member=%s", booking.booking_code, member_id)
        return self.get_booking(booking_id)

    def reject_guest_booking(
        self,
        booking_id: str,
        member_id: str,
        reason: str | None = None,
    ) -> Booking:
        with self._unit_of_work():
            booking = self._sponsored_booking(booking_id, member_id)
            BookingStateMachine.validate_transition(booking.status, BookingStatus.REJECTED)
            self._guarded_update(
                booking,
                {
                    "status": BookingStatus.REJECTED,
                    "rejected_at": _utc_now(),
                    "rejection_reason": reason,
                    "last_modified_by": member_id,
                },
            )
            self.seat_repository.release(booking.event_id, booking.seat_count)
        logger.info("Guest booking rejected. booking_code=%s member=%s", booking.booking_code, member_id)
        return self.get_booking(booking_id)

    # ------------------------------------------------------------------
    # Offline administration
    # ------------------------------------------------------------------

    def edit_offline_booking(
        self,
        booking_id: str,
        modified_by: str | None,
        counts: TicketCounts | None = None,
        meals: MealCounts | None = None,
        discount_code: str | None = None,
        paid: bool | None = None,
        amount_paid: int | None = None,
        utr_number: str | None = None,
        payment_method: str | None = None,
        member_name: str | None = None,
        contact_number: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        """
        Revise an offline entry. discount_code=None keeps the current
        code, an empty string removes it.
        """
        with self._unit_of_work():
            booking = self.get_booking(booking_id)
            if booking.origin != BookingOrigin.OFFLINE:
                raise ValidationFailedError("Only offline bookings can be edited")
            if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                raise ValidationFailedError(
                    f"Cannot edit a booking in status {booking.status.value}"
                )

            new_counts = counts or TicketCounts(
                member=booking.member_ticket_count,
                guest=booking.guest_ticket_count,
                kid=booking.kid_ticket_count,
            )
            new_meals = meals or _meal_counts_of(booking)
            ensure_non_negative(
                member_ticket_count=new_counts.member,
                guest_ticket_count=new_counts.guest,
                kid_ticket_count=new_counts.kid,
            )
            seat_count = new_counts.total
            ensure_positive_seats(seat_count)
            ensure_meals_match(new_meals, seat_count)
            if seat_count < booking.qr_scan_count:
                raise ValidationFailedError(
                    f"{booking.qr_scan_count} entries already scanned, cannot reduce to {seat_count} seats"
                )
            if payment_method is not None and payment_method not in OFFLINE_PAYMENT_METHODS:
                raise ValidationFailedError(f"Unsupported payment method {payment_method}")

            already_paid = booking.payment_status == PaymentStatus.COMPLETED
            if paid is False and already_paid:
                raise ValidationFailedError("A completed payment cannot be marked unpaid")
            becomes_paid = bool(paid) and not already_paid

            event = self.seat_repository.require_event(booking.event_id)
            code = booking.discount_code if discount_code is None else discount_code
            quote = quote_category_booking(new_counts, event.prices, code)
            reference = utr_number or booking.utr_number
            if already_paid or becomes_paid:
                collected = amount_paid
                if collected is None and already_paid:
                    collected = booking.final_amount
                ensure_offline_payment(True, quote, collected, reference)

            values = {
                "seat_count": seat_count,
                "member_ticket_count": new_counts.member,
                "guest_ticket_count": new_counts.guest,
                "kid_ticket_count": new_counts.kid,
                "member_veg_count": new_meals.member_veg,
                "member_non_veg_count": new_meals.member_non_veg,
                "guest_veg_count": new_meals.guest_veg,
                "guest_non_veg_count": new_meals.guest_non_veg,
                "kid_veg_count": new_meals.kid_veg,
                "kid_non_veg_count": new_meals.kid_non_veg,
                "qr_scan_limit": seat_count,
                "unit_price": quote.unit_price,
                "gross_amount": quote.gross_amount,
                "discount_code": quote.discount_code,
                "discount_percent": quote.discount_percent,
                "discount_amount": quote.discount_amount,
                "final_amount": quote.final_amount,
                "utr_number": reference.strip() if reference else None,
                "last_modified_by": modified_by,
            }
            if payment_method is not None:
                values["payment_method"] = payment_method
            if member_name is not None:
                values["member_name"] = member_name
            if contact_number is not None:
                values["contact_number"] = contact_number
            if notes is not None:
                values["notes"] = notes
            if becomes_paid:
                BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)
                values["status"] = BookingStatus.CONFIRMED
                values["payment_status"] = PaymentStatus.COMPLETED
                values["payment_date"] = _utc_now()

            self.seat_repository.adjust(booking.event_id, seat_count - booking.seat_count)
            self._guarded_update(booking, values)

        logger.info(
            "Offline booking edited. booking_code=%s seats=%s->%s by=%s",
            booking.booking_code,
            booking.seat_count,
            seat_count,
            modified_by,
        )
        return self.get_booking(booking_id)

    def delete_offline_booking(self, booking_id: str, deleted_by: str | None) -> None:
        """Hard delete for erroneous offline entries; seats go back to the event."""
        with self._unit_of_work():
            booking = self.get_booking(booking_id)
            if booking.origin != BookingOrigin.OFFLINE:
                raise ValidationFailedError("Only offline bookings can be deleted")
            if booking.status in BookingStateMachine.SEAT_HOLDING:
                self.seat_repository.release(booking.event_id, booking.seat_count)
            self.booking_repository.hard_delete(booking)

        logger.warning(
            "Offline booking deleted. booking_code=%s seats=%s by=%s",
            booking.booking_code,
            booking.seat_count,
            deleted_by,
        )

    # ------------------------------------------------------------------
    # Entry validation
    # ------------------------------------------------------------------

    def scan_qr(
        self,
        qr_token: str,
        scanned_by: str | None,
        location: str | None = None,
        notes: str | None = None,
    ) -> Booking:
        """Admit one person on the token, or raise ScanRejectedError."""
        booking = self.booking_repository.get_by_qr_token(qr_token)
        if not booking:
            raise BookingNotFoundError("Invalid QR code")

        with self._unit_of_work():
            if not self.booking_repository.increment_scan_count(booking.id):
                current = self.get_booking(booking.id)
                reason = current.scan_rejection_reason or ScanRejectReason.QUOTA_EXHAUSTED
                logger.warning(
                    "QR scan rejected. booking_code=%s reason=%s",
                    current.booking_code,
                    reason.value,
                )
                raise ScanRejectedError(reason)
            self.booking_repository.append_scan(booking.id, scanned_by, location, notes)

        scanned = self.get_booking(booking.id)
        logger.info(
            "QR scanned. booking_code=%s remaining=%s location=%s",
            scanned.booking_code,
            scanned.remaining_scans,
            location,
        )
        return scanned

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError()
        return booking

    def get_booking_by_code(self, booking_code: str) -> Booking:
        booking = self.booking_repository.get_by_code(booking_code)
        if not booking:
            raise BookingNotFoundError()
        return booking

    def list_scans(self, booking_id: str) -> list[QRScanEvent]:
        booking = self.get_booking(booking_id)
        return self.booking_repository.list_scans(booking.id)

    def list_bookings(
        self,
        status: BookingStatus | None = None,
        event_id: str | None = None,
        user_id: str | None = None,
        origin: BookingOrigin | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        page = max(1, page)
        limit = max(1, min(limit, 200))
        items, total = self.booking_repository.list_bookings(
            status=status,
            event_id=event_id,
            user_id=user_id,
            origin=origin,
            page=page,
            limit=limit,
        )
        return {
            "items": items,
            "current_page": page,
            "total_pages": (total + limit - 1) // limit,
            "total_bookings": total,
        }

    def render_ticket(self, booking_id: str, renderer: TicketRenderer) -> bytes:
        booking = self.get_booking(booking_id)
        if booking.status not in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED):
            raise ValidationFailedError("Tickets are only issued for confirmed bookings")
        event = self.seat_repository.require_event(booking.event_id)
        return renderer.render_ticket(booking, event)

    def event_summary(self, event_id: str) -> dict:
        event = self.seat_repository.require_event(event_id)
        summary = inventory_stats(event)
        summary["confirmed_revenue"] = self.booking_repository.confirmed_revenue(event.id)
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self):
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _bookable_event(self, event_id: str) -> Event:
        event = self.seat_repository.require_event(event_id)
        if not event.is_active:
            raise ValidationFailedError("Event is not accepting bookings")
        return event

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise PaymentGatewayError("Payment gateway not configured")
        return self.gateway

    def _new_booking(
        self,
        event: Event,
        origin: BookingOrigin,
        seat_count: int,
        meals: MealCounts,
        quote: PriceQuote,
        status: BookingStatus,
        payment_status: PaymentStatus,
        **extra,
    ) -> Booking:
        return Booking(
            event_id=event.id,
            origin=origin,
            seat_count=seat_count,
            member_veg_count=meals.member_veg,
            member_non_veg_count=meals.member_non_veg,
            guest_veg_count=meals.guest_veg,
            guest_non_veg_count=meals.guest_non_veg,
            kid_veg_count=meals.kid_veg,
            kid_non_veg_count=meals.kid_non_veg,
            unit_price=quote.unit_price,
            gross_amount=quote.gross_amount,
            discount_code=quote.discount_code,
            discount_percent=quote.discount_percent,
            discount_amount=quote.discount_amount,
            final_amount=quote.final_amount,
            status=status,
            payment_status=payment_status,
            qr_scan_count=0,
            version=1,
            **extra,
        )

    def _reserve_and_insert(self, booking: Booking) -> Booking:
        """
        Reserve, issue the QR token and persist in one transaction.
        A booking-code collision caught by the unique constraint is
        retried from scratch with a fresh code.
        """
        attempt = 0
        while True:
            attempt += 1
            booking.booking_code = self._new_booking_code()
            try:
                with self._unit_of_work():
                    self.seat_repository.reserve(booking.event_id, booking.seat_count)
                    try:
                        self._issue_qr(booking)
                        self.booking_repository.add(booking)
                    except Exception:
                        logger.warning(
                            "Booking persistence failed after reserve, rolling back reservation. "
                            "event_id=%s seat_count=%s",
                            booking.event_id,
                            booking.seat_count,
                        )
                        raise
            except IntegrityError:
                if attempt == _CODE_ATTEMPTS or not self.booking_repository.booking_code_exists(
                    booking.booking_code
                ):
                    raise
                logger.warning("Booking code collision, retrying. code=%s", booking.booking_code)
                continue

            logger.info(
                "Booking created. booking_code=%s origin=%s status=%s seats=%s final_amount=%s",
                booking.booking_code,
                booking.origin.value,
                booking.status.value,
                booking.seat_count,
                booking.final_amount,
            )
            return self.get_booking(booking.id)

    def _new_booking_code(self) -> str:
        for _ in range(_CODE_ATTEMPTS):
            code = generate_booking_code()
            if not self.booking_repository.booking_code_exists(code):
                return code
        raise ConcurrentModificationError("Could not allocate a unique booking id")

    def _issue_qr(self, booking: Booking) -> None:
        token = generate_qr_token()
        while self.booking_repository.qr_token_exists(token):
            token = generate_qr_token()
        booking.qr_token = token
        booking.qr_code_image = render_qr_data_url(token)
        booking.qr_scan_limit = booking.seat_count
        booking.qr_scan_count = 0

    def _confirm(self, booking: Booking, payment_values: dict) -> None:
        """status=confirmed and payment_status=completed, never one without the other."""
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)
        PaymentStateMachine.validate_transition(booking.payment_status, PaymentStatus.COMPLETED)
        self._guarded_update(
            booking,
            {
                "status": BookingStatus.CONFIRMED,
                "payment_status": PaymentStatus.COMPLETED,
                **payment_values,
            },
        )

    def _cancel_once(
        self,
        booking_id: str,
        reason: str | None,
        cancelled_by: str | None,
    ) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise AlreadyCancelledError(booking.booking_code)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)

        now = _utc_now()
        values = {
            "status": BookingStatus.CANCELLED,
            "cancellation_reason": reason,
            "cancelled_at": now,
            "cancelled_by": cancelled_by,
            "last_modified_by": cancelled_by,
        }
        if booking.payment_status == PaymentStatus.COMPLETED:
            values["payment_status"] = PaymentStatus.REFUNDED
            values["refund_amount"] = booking.final_amount
            values["refund_date"] = now

        applied = self.booking_repository.conditional_update(
            booking.id,
            values,
            statuses={booking.status},
            version=booking.version,
        )
        if not applied:
            current = self.get_booking(booking_id)
            if current.status == BookingStatus.CANCELLED:
                raise AlreadyCancelledError(booking.booking_code)
            raise ConcurrentModificationError(
                f"Booking {booking.booking_code} changed during cancellation"
            )

        self.seat_repository.release(booking.event_id, booking.seat_count)
        return booking

    def _guarded_update(self, booking: Booking, values: dict) -> None:
        applied = self.booking_repository.conditional_update(
            booking.id,
            values,
            statuses={booking.status},
            version=booking.version,
        )
        if not applied:
            raise ConcurrentModificationError(
                f"Booking {booking.booking_code} was modified concurrently"
            )

    def _sponsored_booking(self, booking_id: str, member_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if not booking.sponsoring_member_id:
            raise ValidationFailedError("Booking is not a sponsorship request")
        if booking.sponsoring_member_id != member_id:
            raise ValidationFailedError("Only the sponsoring member can decide this request")
        return booking

    def _notify_confirmation(self, booking: Booking) -> None:
        try:
            self.notifier.send_booking_confirmation(booking)
        except Exception:
            logger.exception(
                "Booking confirmation notification failed. booking_code=%s",
                booking.booking_code,
            )
            return

        with self._unit_of_work():
            self.booking_repository.conditional_update(
                booking.id,
                {"confirmation_email_sent": True},
            )

    def _refund_online_payment(self, booking: Booking) -> None:
        if (
            booking.payment_status != PaymentStatus.REFUNDED
            or not booking.razorpay_payment_id
            or booking.refund_id
        ):
            return
        if self.gateway is None:
            logger.error(
                "No payment gateway configured, refund not issued. booking_code=%s",
                booking.booking_code,
            )
            return
        try:
            refund_id = self.gateway.refund(booking.razorpay_payment_id, booking.refund_amount)
        except PaymentGatewayError:
            logger.exception(
                "Refund failed for cancelled booking. booking_code=%s payment_id=%s",
                booking.booking_code,
                booking.razorpay_payment_id,
            )
            return

        with self._unit_of_work():
            self.booking_repository.conditional_update(booking.id, {"refund_id": refund_id})
        logger.info("Refund issued. booking_code=%s refund_id=%s", booking.booking_code, refund_id)


def _meal_counts_of(booking: Booking) -> MealCounts:
    return MealCounts(
        member_veg=booking.member_veg_count,
        member_non_veg=booking.member_non_veg_count,
        guest_veg=booking.guest_veg_count,
        guest_non_veg=booking.guest_non_veg_count,
        kid_veg=booking.kid_veg_count,
        kid_non_veg=booking.kid_non_veg_count,
    )
