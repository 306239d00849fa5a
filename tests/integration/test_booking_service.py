# tests/integration/test_booking_service.py

import logging

import pytest
import razorpay
import requests
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from src.application import booking_service
from src.application.booking_service import BookingService
from src.domain.booking import GuestDetails, MealCounts
from src.domain.exceptions import (
    AlreadyCancelledError,
    BookingNotFoundError,
    CapacityExceededError,
    InvalidStateTransitionError,
    PaymentGatewayError,
    PaymentVerificationFailedError,
    ScanRejectedError,
    ValidationFailedError,
)
from src.domain.pricing import BookingOrigin, TicketCounts
from src.domain.qr import ScanRejectReason
from src.domain.state_machine import BookingStatus, PaymentStatus
from src.infrastructure.db.models import Booking, QRScanEvent
from src.infrastructure.notifications.sender import NotificationSender
from src.infrastructure.payments.gateway import RazorpayGateway
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.tickets.renderer import TicketRenderer

SIGNATURE = "valid-signature"


class RecordingNotifier(NotificationSender):
    def __init__(self):
        self.sent = []

    def send_booking_confirmation(self, booking):
        self.sent.append(booking.booking_code)


class BrokenNotifier(NotificationSender):
    def send_booking_confirmation(self, booking):
        raise ConnectionError("smtp down")


def _member_booking(service, event, seats=2, **kwargs):
    return service.create_booking(
        event_id=event.id,
        origin=BookingOrigin.MEMBER,
        seat_count=seats,
        meals=MealCounts(member_veg=seats),
        user_id="member-1",
        **kwargs,
    )


def _pay(service, booking, payment_id="pay_001"):
    order = service.initiate_payment(booking.id)
    return service.verify_payment(booking.id, order.order_id, payment_id, SIGNATURE)


def _paid_offline(service, event, member=2, **kwargs):
    counts = TicketCounts(member=member)
    return service.create_offline_booking(
        event_id=event.id,
        counts=counts,
        meals=MealCounts(member_non_veg=member),
        paid=True,
        amount_paid=800 * member,
        utr_number="UTR0001",
        created_by="staff-1",
        **kwargs,
    )


def _unreachable_razorpay(monkeypatch, error):
    gateway = RazorpayGateway("rzp_test_key", "rzp_test_secret")

    def fail(*args, **kwargs):
        raise error

    monkeypatch.setattr(gateway._client.order, "create", fail)
    monkeypatch.setattr(gateway._client.payment, "refund", fail)
    return gateway


def _booking_rows(db) -> int:
    return db.execute(select(func.count()).select_from(Booking)).scalar_one()


# ---------------------
# ONLINE CREATION
# ---------------------

def test_member_booking_is_priced_and_reserved(service, event, seats):
    booking = _member_booking(service, event, seats=3, discount_code="member15")

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.unit_price == 800
    assert booking.gross_amount == 2400
    assert booking.discount_amount == 360
    assert booking.final_amount == 2040
    assert booking.qr_scan_limit == 3
    assert booking.qr_scan_count == 0
    assert booking.qr_code_image.startswith("data:image/svg+xml")
    assert booking.booking_code.startswith("SRS")
    assert seats(event.id) == 3


def test_meal_mismatch_creates_nothing(service, db, event, seats):
    with pytest.raises(ValidationFailedError):
        service.create_booking(
            event_id=event.id,
            origin=BookingOrigin.USER,
            seat_count=2,
            meals=MealCounts(member_veg=1),
        )

    assert seats(event.id) == 0
    assert _booking_rows(db) == 0


def test_per_origin_ticket_limit(service, event):
    with pytest.raises(ValidationFailedError, match="Maximum 3 tickets"):
        service.create_booking(
            event_id=event.id,
            origin=BookingOrigin.GUEST,
            seat_count=4,
            meals=MealCounts(guest_veg=4),
        )


def test_capacity_exceeded(service, db, make_event, seats):
    event = make_event(max_capacity=3)
    _member_booking(service, event, seats=2)

    with pytest.raises(CapacityExceededError):
        _member_booking(service, event, seats=2)

    assert seats(event.id) == 2
    assert _booking_rows(db) == 1


def test_offline_origin_not_accepted_online(service, event):
    with pytest.raises(ValidationFailedError):
        service.create_booking(
            event_id=event.id,
            origin=BookingOrigin.OFFLINE,
            seat_count=1,
            meals=MealCounts(member_veg=1),
        )


def test_inactive_event_rejects_bookings(service, db, event):
    SeatRepository(db).deactivate_event(event.id)
    db.commit()

    with pytest.raises(ValidationFailedError, match="not accepting"):
        _member_booking(service, event)


def test_failure_after_reserve_rolls_seats_back(service, db, event, seats, monkeypatch, caplog):
    def broken_add(self, booking):
        raise RuntimeError("disk full")

    monkeypatch.setattr(BookingRepository, "add", broken_add)

    with caplog.at_level(logging.WARNING):
        with pytest.raises(RuntimeError):
            _member_booking(service, event)

    assert seats(event.id) == 0
    assert "rolling back reservation" in caplog.text


# ---------------------
# PAYMENT
# ---------------------

def test_payment_confirms_booking_and_notifies(db, gateway, event):
    notifier = RecordingNotifier()
    service = BookingService(db, gateway=gateway, notifier=notifier)
    booking = _member_booking(service, event)

    order = service.initiate_payment(booking.id)
    assert order.amount == booking.final_amount

    confirmed = service.verify_payment(booking.id, order.order_id, "pay_001", SIGNATURE)

    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_status == PaymentStatus.COMPLETED
    assert confirmed.razorpay_payment_id == "pay_001"
    assert confirmed.payment_date is not None
    assert confirmed.confirmation_email_sent is True
    assert notifier.sent == [booking.booking_code]


def test_verify_is_idempotent(service, event):
    booking = _member_booking(service, event)
    order = service.initiate_payment(booking.id)
    service.verify_payment(booking.id, order.order_id, "pay_001", SIGNATURE)
    version = service.get_booking(booking.id).version

    again = service.verify_payment(booking.id, order.order_id, "pay_001", SIGNATURE)

    assert again.status == BookingStatus.CONFIRMED
    assert again.version == version


def test_bad_signature_leaves_booking_pending(service, event):
    booking = _member_booking(service, event)
    order = service.initiate_payment(booking.id)

    with pytest.raises(PaymentVerificationFailedError):
        service.verify_payment(booking.id, order.order_id, "pay_001", "forged")

    current = service.get_booking(booking.id)
    assert current.status == BookingStatus.PENDING
    assert current.payment_status == PaymentStatus.PENDING


def test_order_mismatch_rejected(service, event):
    booking = _member_booking(service, event)
    service.initiate_payment(booking.id)

    with pytest.raises(ValidationFailedError, match="does not match"):
        service.verify_payment(booking.id, "order_other", "pay_001", SIGNATURE)


def test_verify_without_order(service, event):
    booking = _member_booking(service, event)

    with pytest.raises(ValidationFailedError, match="Order not created"):
        service.verify_payment(booking.id, "order_1", "pay_001", SIGNATURE)


def test_payment_id_cannot_confirm_two_bookings(service, event):
    first = _member_booking(service, event, seats=1)
    second = _member_booking(service, event, seats=1)
    _pay(service, first, payment_id="pay_shared")

    with pytest.raises(ValidationFailedError, match="already consumed"):
        _pay(service, second, payment_id="pay_shared")


def test_notification_failure_does_not_undo_confirmation(db, gateway, event, caplog):
    service = BookingService(db, gateway=gateway, notifier=BrokenNotifier())
    booking = _member_booking(service, event)

    with caplog.at_level(logging.ERROR):
        confirmed = _pay(service, booking)

    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.confirmation_email_sent is False
    assert "notification failed" in caplog.text


def test_missing_gateway(db, event):
    service = BookingService(db)
    booking = _member_booking(service, event)

    with pytest.raises(PaymentGatewayError):
        service.initiate_payment(booking.id)


def test_unreachable_provider_fails_initiate_cleanly(db, event, monkeypatch):
    gateway = _unreachable_razorpay(
        monkeypatch, requests.exceptions.ConnectionError("connection refused")
    )
    service = BookingService(db, gateway=gateway)
    booking = _member_booking(service, event)

    with pytest.raises(PaymentGatewayError):
        service.initiate_payment(booking.id)

    pending = service.get_booking(booking.id)
    assert pending.status == BookingStatus.PENDING
    assert pending.razorpay_order_id is None


def test_payment_failure_cancels_and_releases(service, event, seats):
    booking = _member_booking(service, event, seats=3)

    failed = service.record_payment_failure(booking.id, "card declined")

    assert failed.status == BookingStatus.CANCELLED
    assert failed.payment_status == PaymentStatus.FAILED
    assert failed.cancellation_reason == "card declined"
    assert seats(event.id) == 0


# ---------------------
# CANCELLATION
# ---------------------

def test_cancel_paid_booking_refunds(service, gateway, event, seats):
    booking = _pay(service, _member_booking(service, event, seats=2))

    cancelled = service.cancel_booking(booking.id, "plans changed", "member-1")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert cancelled.refund_amount == booking.final_amount
    assert cancelled.refund_date is not None
    assert cancelled.refund_id == "rfnd_1"
    assert cancelled.cancelled_by == "member-1"
    assert gateway.refunds == [("pay_001", booking.final_amount)]
    assert seats(event.id) == 0


def test_cancel_unpaid_booking_keeps_payment_pending(service, event, seats):
    booking = _member_booking(service, event)

    cancelled = service.cancel_booking(booking.id, None, "member-1")

    assert cancelled.payment_status == PaymentStatus.PENDING
    assert cancelled.refund_amount is None
    assert seats(event.id) == 0


def test_cancel_twice_releases_once(service, event, seats):
    _member_booking(service, event, seats=1)
    booking = _member_booking(service, event, seats=2)
    service.cancel_booking(booking.id, None, "member-1")

    with pytest.raises(AlreadyCancelledError):
        service.cancel_booking(booking.id, None, "member-1")

    assert seats(event.id) == 1


def test_cancel_retries_when_a_scan_lands_first(
    service, session_factory, event, seats, monkeypatch, caplog
):
    booking = _paid_offline(service, event, member=2)
    original_update = BookingRepository.conditional_update
    scanned = []

    def update_after_scan(self, booking_id, values, **guards):
        if not scanned:
            scanned.append(True)
            gate = session_factory()
            try:
                BookingService(gate).scan_qr(booking.qr_token, "gate-1")
            finally:
                gate.close()
        return original_update(self, booking_id, values, **guards)

    monkeypatch.setattr(BookingRepository, "conditional_update", update_after_scan)

    with caplog.at_level(logging.INFO):
        cancelled = service.cancel_booking(booking.id, None, "staff-1")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.qr_scan_count == 1
    assert seats(event.id) == 0
    assert "retrying" in caplog.text


def test_refund_failure_is_logged_not_raised(service, gateway, event, caplog):
    booking = _pay(service, _member_booking(service, event))
    gateway.fail_refunds = True

    with caplog.at_level(logging.ERROR):
        cancelled = service.cancel_booking(booking.id, None, "member-1")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert cancelled.refund_id is None
    assert "Refund failed" in caplog.text


def test_provider_outage_during_refund_keeps_cancellation(
    db, service, event, seats, monkeypatch, caplog
):
    booking = _pay(service, _member_booking(service, event))
    gateway = _unreachable_razorpay(monkeypatch, razorpay.errors.GatewayError("gateway timeout"))

    with caplog.at_level(logging.ERROR):
        cancelled = BookingService(db, gateway=gateway).cancel_booking(
            booking.id, None, "member-1"
        )

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert cancelled.refund_id is None
    assert seats(event.id) == 0
    assert "Refund failed" in caplog.text


def test_offline_cancel_records_refund_without_gateway(service, gateway, event):
    booking = _paid_offline(service, event)

    cancelled = service.cancel_booking(booking.id, "duplicate", "staff-1")

    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert cancelled.refund_amount == 1600
    assert gateway.refunds == []


def test_cancel_retries_until_release_lands(service, event, seats, monkeypatch, caplog):
    booking = _member_booking(service, event, seats=2)
    original_release = SeatRepository.release
    calls = {"count": 0}

    def flaky_release(self, event_id, seat_count):
        calls["count"] += 1
        if calls["count"] <= 2:
            raise OperationalError("UPDATE events", {}, Exception("database is locked"))
        return original_release(self, event_id, seat_count)

    monkeypatch.setattr(SeatRepository, "release", flaky_release)
    monkeypatch.setattr(booking_service, "SEAT_RELEASE_RETRY_DELAY", 0)

    with caplog.at_level(logging.CRITICAL):
        cancelled = service.cancel_booking(booking.id, None, "member-1")

    assert cancelled.status == BookingStatus.CANCELLED
    assert seats(event.id) == 0
    assert calls["count"] == 3
    assert len([r for r in caplog.records if r.levelno == logging.CRITICAL]) == 2


def test_cancel_gives_up_after_configured_attempts(service, event, seats, monkeypatch):
    booking = _member_booking(service, event, seats=2)

    def failing_release(self, event_id, seat_count):
        raise OperationalError("UPDATE events", {}, Exception("database is locked"))

    monkeypatch.setattr(SeatRepository, "release", failing_release)
    monkeypatch.setattr(booking_service, "SEAT_RELEASE_RETRY_DELAY", 0)
    monkeypatch.setattr(booking_service, "SEAT_RELEASE_MAX_ATTEMPTS", 3)

    with pytest.raises(OperationalError):
        service.cancel_booking(booking.id, None, "member-1")

    assert service.get_booking(booking.id).status == BookingStatus.PENDING
    assert seats(event.id) == 2


def test_complete_requires_confirmation(service, event):
    booking = _member_booking(service, event)

    with pytest.raises(InvalidStateTransitionError):
        service.complete_booking(booking.id)

    _pay(service, booking)
    assert service.complete_booking(booking.id).status == BookingStatus.COMPLETED


# ---------------------
# GUEST SPONSORSHIP
# ---------------------

def _sponsored(service, event, seats=2):
    return service.create_booking(
        event_id=event.id,
        origin=BookingOrigin.GUEST,
        seat_count=seats,
        meals=MealCounts(guest_veg=seats),
        guest=GuestDetails(first_name="Asha", email="asha@example.com"),
        sponsoring_member_id="member-7",
    )


def test_sponsored_guest_waits_for_approval(service, event, seats):
    booking = _sponsored(service, event)

    assert booking.status == BookingStatus.PENDING_APPROVAL
    assert booking.unit_price == 1200
    assert booking.guest_ticket_count == 2
    assert booking.guest_first_name == "Asha"
    assert seats(event.id) == 2

    with pytest.raises(InvalidStateTransitionError):
        service.initiate_payment(booking.id)


def test_only_sponsor_may_decide(service, event):
    booking = _sponsored(service, event)

    with pytest.raises(ValidationFailedError, match="sponsoring member"):
        service.approve_guest_booking(booking.id, "member-8")


def test_approved_guest_can_pay(service, event):
    booking = _sponsored(service, event)

    approved = service.approve_guest_booking(booking.id, "member-7")
    assert approved.status == BookingStatus.APPROVED
    assert approved.approved_at is not None

    confirmed = _pay(service, approved)
    assert confirmed.status == BookingStatus.CONFIRMED


def test_rejected_guest_releases_seats(service, event, seats):
    booking = _sponsored(service, event)

    rejected = service.reject_guest_booking(booking.id, "member-7", "not a member event")

    assert rejected.status == BookingStatus.REJECTED
    assert rejected.rejection_reason == "not a member event"
    assert seats(event.id) == 0
    with pytest.raises(InvalidStateTransitionError):
        service.cancel_booking(booking.id, None, "member-7")


def test_sponsorship_only_for_guests(service, event):
    with pytest.raises(ValidationFailedError):
        _member_booking(service, event, sponsoring_member_id="member-7")


# ---------------------
# OFFLINE
# ---------------------

def test_paid_offline_booking_is_confirmed(service, event, seats):
    booking = service.create_offline_booking(
        event_id=event.id,
        counts=TicketCounts(member=2, guest=1, kid=1),
        meals=MealCounts(member_veg=2, guest_non_veg=1, kid_veg=1),
        paid=True,
        amount_paid=2970,
        utr_number=" UTR555 ",
        discount_code="earlybird",
        created_by="staff-1",
        member_name="R. Sharma",
    )

    assert booking.origin == BookingOrigin.OFFLINE
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.COMPLETED
    assert booking.gross_amount == 3300
    assert booking.final_amount == 2970
    assert booking.unit_price == 825
    assert booking.utr_number == "UTR555"
    assert "transaction_id" not in Booking.__table__.columns
    assert booking.kid_ticket_count == 1
    assert seats(event.id) == 4


def test_unpaid_offline_booking_is_pending(service, event):
    booking = service.create_offline_booking(
        event_id=event.id,
        counts=TicketCounts(guest=2),
        meals=MealCounts(guest_veg=2),
        paid=False,
        created_by="staff-1",
    )

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING


def test_offline_amount_mismatch_creates_nothing(service, db, event, seats):
    with pytest.raises(ValidationFailedError, match="does not match"):
        service.create_offline_booking(
            event_id=event.id,
            counts=TicketCounts(member=2),
            meals=MealCounts(member_veg=2),
            paid=True,
            amount_paid=1500,
            utr_number="UTR1",
            created_by="staff-1",
        )

    assert seats(event.id) == 0
    assert _booking_rows(db) == 0


def test_offline_paid_requires_utr(service, event):
    with pytest.raises(ValidationFailedError, match="UTR"):
        service.create_offline_booking(
            event_id=event.id,
            counts=TicketCounts(member=1),
            meals=MealCounts(member_veg=1),
            paid=True,
            amount_paid=800,
            created_by="staff-1",
        )


def test_offline_has_no_ticket_limit(service, make_event):
    event = make_event(max_capacity=50)

    booking = service.create_offline_booking(
        event_id=event.id,
        counts=TicketCounts(guest=20),
        meals=MealCounts(guest_veg=20),
        paid=False,
        created_by="staff-1",
    )

    assert booking.seat_count == 20


def test_edit_offline_grows_seats(service, event, seats):
    booking = service.create_offline_booking(
        event_id=event.id,
        counts=TicketCounts(member=2),
        meals=MealCounts(member_veg=2),
        paid=False,
        created_by="staff-1",
    )
    original_version = booking.version

    edited = service.edit_offline_booking(
        booking.id,
        modified_by="staff-2",
        counts=TicketCounts(member=2, kid=2),
        meals=MealCounts(member_veg=2, kid_veg=2),
    )

    assert edited.seat_count == 4
    assert edited.qr_scan_limit == 4
    assert edited.gross_amount == 2600
    assert edited.last_modified_by == "staff-2"
    assert edited.version > original_version
    assert seats(event.id) == 4


def test_edit_offline_mark_paid_confirms(service, event):
    booking = service.create_offline_booking(
        event_id=event.id,
        counts=TicketCounts(member=1),
        meals=MealCounts(member_veg=1),
        paid=False,
        created_by="staff-1",
    )

    edited = service.edit_offline_booking(
        booking.id,
        modified_by="staff-1",
        paid=True,
        amount_paid=800,
        utr_number="UTR9",
    )

    assert edited.status == BookingStatus.CONFIRMED
    assert edited.payment_status == PaymentStatus.COMPLETED


def test_edit_paid_offline_must_match_new_amount(service, event, seats):
    booking = _paid_offline(service, event, member=2)

    with pytest.raises(ValidationFailedError, match="does not match"):
        service.edit_offline_booking(
            booking.id,
            modified_by="staff-1",
            counts=TicketCounts(member=3),
            meals=MealCounts(member_veg=3),
        )
    assert seats(event.id) == 2

    edited = service.edit_offline_booking(
        booking.id,
        modified_by="staff-1",
        counts=TicketCounts(member=3),
        meals=MealCounts(member_veg=3),
        amount_paid=2400,
    )
    assert edited.final_amount == 2400
    assert seats(event.id) == 3


def test_edit_cannot_drop_below_scanned(service, event):
    booking = _paid_offline(service, event, member=3)
    service.scan_qr(booking.qr_token, "gate-1")
    service.scan_qr(booking.qr_token, "gate-1")

    with pytest.raises(ValidationFailedError, match="already scanned"):
        service.edit_offline_booking(
            booking.id,
            modified_by="staff-1",
            counts=TicketCounts(member=1),
            meals=MealCounts(member_veg=1),
            amount_paid=800,
        )


def test_edit_past_capacity_changes_nothing(service, make_event, seats):
    event = make_event(max_capacity=3)
    booking = service.create_offline_booking(
        event_id=event.id,
        counts=TicketCounts(member=2),
        meals=MealCounts(member_veg=2),
        paid=False,
        created_by="staff-1",
    )

    with pytest.raises(CapacityExceededError):
        service.edit_offline_booking(
            booking.id,
            modified_by="staff-1",
            counts=TicketCounts(member=5),
            meals=MealCounts(member_veg=5),
        )

    assert seats(event.id) == 2
    assert service.get_booking(booking.id).seat_count == 2


def test_edit_meal_mismatch_changes_nothing(service, event, seats):
    booking = service.create_offline_booking(
        event_id=event.id,
        counts=TicketCounts(member=2),
        meals=MealCounts(member_veg=2),
        paid=False,
        created_by="staff-1",
    )

    with pytest.raises(ValidationFailedError):
        service.edit_offline_booking(
            booking.id,
            modified_by="staff-1",
            counts=TicketCounts(member=3),
            meals=MealCounts(member_veg=2),
        )

    assert seats(event.id) == 2
    unchanged = service.get_booking(booking.id)
    assert unchanged.seat_count == 2
    assert unchanged.member_veg_count == 2


def test_only_offline_bookings_are_editable(service, event):
    booking = _member_booking(service, event)

    with pytest.raises(ValidationFailedError):
        service.edit_offline_booking(booking.id, modified_by="staff-1", notes="x")


def test_delete_offline_releases_seats_and_scans(service, db, event, seats):
    booking = _paid_offline(service, event, member=2)
    service.scan_qr(booking.qr_token, "gate-1")

    service.delete_offline_booking(booking.id, "admin")

    assert seats(event.id) == 0
    with pytest.raises(BookingNotFoundError):
        service.get_booking(booking.id)
    assert db.execute(select(func.count()).select_from(QRScanEvent)).scalar_one() == 0


def test_delete_cancelled_offline_does_not_release_twice(service, event, seats):
    _paid_offline(service, event, member=1)
    booking = _paid_offline(service, event, member=2)
    service.cancel_booking(booking.id, None, "staff-1")

    service.delete_offline_booking(booking.id, "admin")

    assert seats(event.id) == 1


# ---------------------
# QR SCANNING
# ---------------------

def test_scan_admits_up_to_seat_count(service, event):
    booking = _paid_offline(service, event, member=2)

    first = service.scan_qr(booking.qr_token, "gate-1", location="Main gate")
    assert first.remaining_scans == 1

    second = service.scan_qr(booking.qr_token, "gate-2")
    assert second.remaining_scans == 0
    with pytest.raises(ScanRejectedError) as exc_info:
        service.scan_qr(booking.qr_token, "gate-1")
    assert exc_info.value.reason == ScanRejectReason.QUOTA_EXHAUSTED

    scans = service.list_scans(booking.id)
    assert [s.scanned_by for s in scans] == ["gate-1", "gate-2"]
    assert scans[0].location == "Main gate"


def test_scan_pending_booking(service, event):
    booking = _member_booking(service, event)

    with pytest.raises(ScanRejectedError) as exc_info:
        service.scan_qr(booking.qr_token, "gate-1")

    assert exc_info.value.reason == ScanRejectReason.NOT_CONFIRMED
    assert service.get_booking(booking.id).qr_scan_count == 0


def test_scan_unknown_token(service):
    with pytest.raises(BookingNotFoundError, match="Invalid QR code"):
        service.scan_qr("deadbeef", "gate-1")


def test_scan_cancelled_booking(service, event):
    booking = _paid_offline(service, event)
    service.cancel_booking(booking.id, None, "staff-1")

    with pytest.raises(ScanRejectedError) as exc_info:
        service.scan_qr(booking.qr_token, "gate-1")

    assert exc_info.value.reason == ScanRejectReason.NOT_CONFIRMED


# ---------------------
# QUERIES
# ---------------------

def test_list_bookings_paginates(service, event):
    for _ in range(3):
        _member_booking(service, event, seats=1)
    _paid_offline(service, event, member=1)

    page = service.list_bookings(event_id=event.id, limit=2)
    assert page["total_bookings"] == 4
    assert page["total_pages"] == 2
    assert len(page["items"]) == 2

    offline = service.list_bookings(origin=BookingOrigin.OFFLINE)
    assert offline["total_bookings"] == 1


def test_event_summary_counts_paid_revenue(service, event):
    _member_booking(service, event, seats=1)
    _paid_offline(service, event, member=2)

    summary = service.event_summary(event.id)

    assert summary["booked_seats"] == 3
    assert summary["available_seats"] == 7
    assert summary["confirmed_revenue"] == 1600


def test_ticket_only_for_confirmed_bookings(service, event):
    pending = _member_booking(service, event)
    with pytest.raises(ValidationFailedError):
        service.render_ticket(pending.id, TicketRenderer())

    booking = _paid_offline(service, event)
    content = service.render_ticket(booking.id, TicketRenderer()).decode("utf-8")

    assert booking.booking_code in content
    assert booking.qr_token in content
    assert "Annual Dinner" in content
    assert "Entries: 2 of 2 remaining" in content


def test_three_seat_booking_scans_down_to_zero(service, event):
    booking = _paid_offline(service, event, member=3)

    remaining = [service.scan_qr(booking.qr_token, "gate-1").remaining_scans for _ in range(3)]

    assert remaining == [2, 1, 0]
    with pytest.raises(ScanRejectedError) as exc_info:
        service.scan_qr(booking.qr_token, "gate-1")
    assert exc_info.value.reason == ScanRejectReason.QUOTA_EXHAUSTED


def test_cancel_confirmed_booking_returns_its_seats(service, event, seats):
    _paid_offline(service, event, member=3)
    booking = _paid_offline(service, event, member=2)
    assert seats(event.id) == 5

    service.cancel_booking(booking.id, None, "staff-1")

    assert seats(event.id) == 3
