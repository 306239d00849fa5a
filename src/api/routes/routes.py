import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from src.infrastructure.db.session import SessionLocal
from src.application.booking_service import BookingService
from src.api.schemas.schemas import (
    BookingListResponse,
    BookingRequest,
    BookingResponse,
    CancelRequest,
    EventCreate,
    EventResponse,
    EventSummaryResponse,
    OfflineBookingEdit,
    OfflineBookingRequest,
    PaymentFailureRequest,
    PaymentOrderResponse,
    RazorpayVerifyRequest,
    ScanEventResponse,
    ScanRequest,
    ScanResponse,
    SponsorDecisionRequest,
)
from src.domain.booking import GuestDetails, MealCounts
from src.domain.exceptions import PaymentGatewayError
from src.domain.pricing import BookingOrigin, TicketCounts
from src.domain.state_machine import BookingStatus
from src.infrastructure.payments.gateway import PaymentGateway, RazorpayGateway
from src.infrastructure.repositories.seat_repository import SeatRepository
from src.infrastructure.tickets.renderer import TicketRenderer


router = APIRouter()
logger = logging.getLogger(__name__)

_ticket_renderer = TicketRenderer()


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_gateway() -> PaymentGateway:
    return RazorpayGateway.from_env()


def get_optional_gateway() -> PaymentGateway | None:
    # Cancellation still has to work when refunds cannot be issued.
    try:
        return RazorpayGateway.from_env()
    except PaymentGatewayError as exc:
        logger.warning("Payment gateway unavailable for refunds: %s", exc.message)
        return None


def _meals(payload) -> MealCounts:
    return MealCounts(**payload.model_dump())


@router.get("/health")
def health():
    return {"message": "SRS booking engine is running"}


# --------------------------------------------------------------------------
# Events
# --------------------------------------------------------------------------


@router.get("/events", response_model=list[EventResponse])
def list_events(include_inactive: bool = False, db: Session = Depends(get_db)):
    return SeatRepository(db).list_events(include_inactive=include_inactive)


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(request: EventCreate, db: Session = Depends(get_db)):
    event = SeatRepository(db).create_event(**request.model_dump())
    logger.info("Event created. event_id=%s capacity=%s", event.id, event.max_capacity)
    return event


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: str, db: Session = Depends(get_db)):
    return SeatRepository(db).require_event(event_id)


@router.post("/events/{event_id}/deactivate", response_model=EventResponse)
def deactivate_event(event_id: str, db: Session = Depends(get_db)):
    return SeatRepository(db).deactivate_event(event_id)


@router.get("/events/{event_id}/summary", response_model=EventSummaryResponse)
def event_summary(event_id: str, db: Session = Depends(get_db)):
    return BookingService(db).event_summary(event_id)


# --------------------------------------------------------------------------
# Online bookings
# --------------------------------------------------------------------------


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(request: BookingRequest, db: Session = Depends(get_db)):
    guest = None
    if request.guest_details is not None:
        guest = GuestDetails(**request.guest_details.model_dump())

    booking = BookingService(db).create_booking(
        event_id=request.event_id,
        origin=BookingOrigin(request.origin),
        seat_count=request.seat_count,
        meals=_meals(request.meals),
        user_id=request.user_id,
        discount_code=request.discount_code,
        guest=guest,
        sponsoring_member_id=request.sponsoring_member_id,
        special_requests=request.special_requests,
    )
    return BookingResponse.from_booking(booking)


@router.get("/bookings", response_model=BookingListResponse)
def list_bookings(
    status_filter: BookingStatus | None = None,
    event_id: str | None = None,
    user_id: str | None = None,
    origin: BookingOrigin | None = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
):
    result = BookingService(db).list_bookings(
        status=status_filter,
        event_id=event_id,
        user_id=user_id,
        origin=origin,
        page=page,
        limit=limit,
    )
    return BookingListResponse(
        bookings=[BookingResponse.from_booking(item) for item in result["items"]],
        current_page=result["current_page"],
        total_pages=result["total_pages"],
        total_bookings=result["total_bookings"],
    )


@router.get("/bookings/code/{booking_code}", response_model=BookingResponse)
def get_booking_by_code(booking_code: str, db: Session = Depends(get_db)):
    return BookingResponse.from_booking(BookingService(db).get_booking_by_code(booking_code))


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    return BookingResponse.from_booking(BookingService(db).get_booking(booking_id))


@router.post("/bookings/{booking_id}/payment", response_model=PaymentOrderResponse)
def initiate_payment(
    booking_id: str,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    order = BookingService(db, gateway=gateway).initiate_payment(booking_id)
    return PaymentOrderResponse(
        booking_id=booking_id,
        order_id=order.order_id,
        amount=order.amount,
        currency=order.currency,
        key_id=getattr(gateway, "key_id", None),
    )


@router.post("/bookings/{booking_id}/verify", response_model=BookingResponse)
def verify_payment(
    booking_id: str,
    request: RazorpayVerifyRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    booking = BookingService(db, gateway=gateway).verify_payment(
        booking_id=booking_id,
        order_id=request.razorpay_order_id,
        payment_id=request.razorpay_payment_id,
        signature=request.razorpay_signature,
    )
    return BookingResponse.from_booking(booking)


@router.post("/bookings/{booking_id}/payment-failed", response_model=BookingResponse)
def record_payment_failure(
    booking_id: str,
    request: PaymentFailureRequest,
    db: Session = Depends(get_db),
):
    booking = BookingService(db).record_payment_failure(booking_id, request.reason)
    return BookingResponse.from_booking(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway | None = Depends(get_optional_gateway),
):
    booking = BookingService(db, gateway=gateway).cancel_booking(
        booking_id,
        reason=request.reason,
        cancelled_by=request.cancelled_by,
    )
    return BookingResponse.from_booking(booking)


@router.post("/bookings/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(booking_id: str, db: Session = Depends(get_db)):
    return BookingResponse.from_booking(BookingService(db).complete_booking(booking_id))


@router.post("/bookings/{booking_id}/approve", response_model=BookingResponse)
def approve_guest_booking(
    booking_id: str,
    request: SponsorDecisionRequest,
    db: Session = Depends(get_db),
):
    booking = BookingService(db).approve_guest_booking(booking_id, request.member_id)
    return BookingResponse.from_booking(booking)


@router.post("/bookings/{booking_id}/reject", response_model=BookingResponse)
def reject_guest_booking(
    booking_id: str,
    request: SponsorDecisionRequest,
    db: Session = Depends(get_db),
):
    booking = BookingService(db).reject_guest_booking(
        booking_id,
        request.member_id,
        reason=request.reason,
    )
    return BookingResponse.from_booking(booking)


@router.get("/bookings/{booking_id}/ticket")
def download_ticket(booking_id: str, db: Session = Depends(get_db)):
    service = BookingService(db)
    content = service.render_ticket(booking_id, _ticket_renderer)
    booking = service.get_booking(booking_id)
    return Response(
        content=content,
        media_type="text/plain; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="ticket-{booking.booking_code}.txt"'
        },
    )


@router.get("/bookings/{booking_id}/scans", response_model=list[ScanEventResponse])
def list_scans(booking_id: str, db: Session = Depends(get_db)):
    return BookingService(db).list_scans(booking_id)


# --------------------------------------------------------------------------
# Offline bookings (staff)
# --------------------------------------------------------------------------


@router.post(
    "/offline-bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_offline_booking(request: OfflineBookingRequest, db: Session = Depends(get_db)):
    booking = BookingService(db).create_offline_booking(
        event_id=request.event_id,
        counts=TicketCounts(
            member=request.member_ticket_count,
            guest=request.guest_ticket_count,
            kid=request.kid_ticket_count,
        ),
        meals=_meals(request.meals),
        paid=request.paid,
        created_by=request.created_by,
        amount_paid=request.amount_paid,
        utr_number=request.utr_number,
        payment_method=request.payment_method,
        discount_code=request.discount_code,
        user_id=request.user_id,
        member_name=request.member_name,
        contact_number=request.contact_number,
        notes=request.notes,
    )
    return BookingResponse.from_booking(booking)


@router.patch("/offline-bookings/{booking_id}", response_model=BookingResponse)
def edit_offline_booking(
    booking_id: str,
    request: OfflineBookingEdit,
    db: Session = Depends(get_db),
):
    service = BookingService(db)
    counts = None
    ticket_fields = (
        request.member_ticket_count,
        request.guest_ticket_count,
        request.kid_ticket_count,
    )
    if any(value is not None for value in ticket_fields):
        current = service.get_booking(booking_id)
        counts = TicketCounts(
            member=current.member_ticket_count if request.member_ticket_count is None else request.member_ticket_count,
            guest=current.guest_ticket_count if request.guest_ticket_count is None else request.guest_ticket_count,
            kid=current.kid_ticket_count if request.kid_ticket_count is None else request.kid_ticket_count,
        )

    booking = service.edit_offline_booking(
        booking_id,
        modified_by=request.modified_by,
        counts=counts,
        meals=_meals(request.meals) if request.meals is not None else None,
        discount_code=request.discount_code,
        paid=request.paid,
        amount_paid=request.amount_paid,
        utr_number=request.utr_number,
        payment_method=request.payment_method,
        member_name=request.member_name,
        contact_number=request.contact_number,
        notes=request.notes,
    )
    return BookingResponse.from_booking(booking)


@router.delete("/offline-bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_offline_booking(
    booking_id: str,
    deleted_by: str | None = None,
    db: Session = Depends(get_db),
):
    BookingService(db).delete_offline_booking(booking_id, deleted_by)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --------------------------------------------------------------------------
# Entry
# --------------------------------------------------------------------------


@router.post("/scan", response_model=ScanResponse)
def scan_qr(request: ScanRequest, db: Session = Depends(get_db)):
    booking = BookingService(db).scan_qr(
        request.qr_token,
        scanned_by=request.scanned_by,
        location=request.location,
        notes=request.notes,
    )
    return ScanResponse(
        booking_code=booking.booking_code,
        seat_count=booking.seat_count,
        qr_scan_count=booking.qr_scan_count,
        remaining_scans=booking.remaining_scans,
    )
