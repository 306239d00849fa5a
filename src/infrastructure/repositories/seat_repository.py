# src/infrastructure/repositories/seat_repository.py

import logging
from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import case, select, update

from src.infrastructure.db.models import Event
from src.domain.booking import ensure_positive_seats
from src.domain.exceptions import (
    CapacityExceededError,
    EventNotFoundError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)


class SeatRepository:
    """
    Seat inventory ledger.

    Owns events.booked_seats. Every change is a single conditional
    UPDATE so concurrent requests (from any number of service
    instances) can never push the counter past max_capacity.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_event(self, event_id: str) -> Event | None:
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def require_event(self, event_id: str) -> Event:
        event = self.get_event(event_id)
        if not event:
            raise EventNotFoundError(event_id)
        return event

    def list_events(self, include_inactive: bool = False) -> list[Event]:
        stmt = select(Event).order_by(Event.start_date)
        if not include_inactive:
            stmt = stmt.where(Event.is_active.is_(True))
        return list(self.db.execute(stmt).scalars().all())

    def create_event(
        self,
        title: str,
        location: str,
        start_date: datetime,
        end_date: datetime,
        max_capacity: int,
        user_price: int,
        member_price: int,
        guest_price: int,
        kid_price: int = 0,
        max_tickets_per_user: int = 5,
        max_tickets_per_member: int = 10,
        max_tickets_per_guest: int = 3,
    ) -> Event:
        if max_capacity < 1:
            raise ValidationFailedError("Capacity must be at least 1")
        if min(user_price, member_price, guest_price, kid_price) < 0:
            raise ValidationFailedError("Price cannot be negative")
        if member_price > user_price:
            raise ValidationFailedError("Member price cannot be higher than user price")
        if end_date < start_date:
            raise ValidationFailedError("End date must be after start date")
        if min(max_tickets_per_user, max_tickets_per_member, max_tickets_per_guest) < 1:
            raise ValidationFailedError("Must allow at least 1 ticket per booking")

        event = Event(
            title=title,
            location=location,
            start_date=start_date,
            end_date=end_date,
            max_capacity=max_capacity,
            booked_seats=0,
            user_price=user_price,
            member_price=member_price,
            guest_price=guest_price,
            kid_price=kid_price,
            is_active=True,
            max_tickets_per_user=max_tickets_per_user,
            max_tickets_per_member=max_tickets_per_member,
            max_tickets_per_guest=max_tickets_per_guest,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def deactivate_event(self, event_id: str) -> Event:
        event = self.require_event(event_id)
        event.is_active = False
        self.db.flush()
        return event

    def reserve(self, event_id: str, seat_count: int) -> None:
        """
        Compare-and-increment:
        UPDATE events SET booked_seats = booked_seats + n
        WHERE id = :id AND booked_seats + n <= max_capacity
        """
        ensure_positive_seats(seat_count)

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.booked_seats + seat_count <= Event.max_capacity)
            .values(booked_seats=Event.booked_seats + seat_count)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            if not self._event_exists(event_id):
                raise EventNotFoundError(event_id)
            logger.warning(
                "Reservation rejected, capacity exceeded. event_id=%s seat_count=%s",
                event_id,
                seat_count,
            )
            raise CapacityExceededError(event_id, seat_count)

        logger.info("Reserved seats. event_id=%s seat_count=%s", event_id, seat_count)

    def release(self, event_id: str, seat_count: int) -> None:
        """
        Decrement booked_seats, never below zero.

        A release always pairs with an earlier reserve, so hitting the
        floor means the counters disagree somewhere upstream.
        """
        ensure_positive_seats(seat_count)

        before = self.db.execute(
            select(Event.booked_seats).where(Event.id == event_id)
        ).scalar_one_or_none()
        if before is None:
            raise EventNotFoundError(event_id)
        if before < seat_count:
            logger.error(
                "Seat release below zero, clamping booked_seats to 0. event_id=%s seat_count=%s",
                event_id,
                seat_count,
            )

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .values(
                booked_seats=case(
                    (Event.booked_seats >= seat_count, Event.booked_seats - seat_count),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount == 0:
            raise EventNotFoundError(event_id)

        logger.info("Released seats. event_id=%s seat_count=%s", event_id, seat_count)

    def adjust(self, event_id: str, delta: int) -> None:
        """Apply a signed seat change from an edit flow."""
        if delta > 0:
            self.reserve(event_id, delta)
        elif delta < 0:
            self.release(event_id, -delta)

    def _event_exists(self, event_id: str) -> bool:
        stmt = select(Event.id).where(Event.id == event_id)
        return self.db.execute(stmt).first() is not None


def inventory_stats(event: Event) -> dict:
    return {
        "event_id": event.id,
        "total_seats": event.max_capacity,
        "available_seats": event.available_seats,
        "booked_seats": event.booked_seats,
    }
