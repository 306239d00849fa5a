# src/infrastructure/notifications/sender.py

import logging
from abc import ABC, abstractmethod

from src.infrastructure.db.models import Booking

logger = logging.getLogger(__name__)


class NotificationSender(ABC):

    @abstractmethod
    def send_booking_confirmation(self, booking: Booking) -> None:
        ...


class LoggingNotificationSender(NotificationSender):
    """Default sender: records the confirmation in the application log."""

    def send_booking_confirmation(self, booking: Booking) -> None:
        logger.info(
            "Booking confirmation queued. booking_code=%s event_id=%s seats=%s amount=%s",
            booking.booking_code,
            booking.event_id,
            booking.seat_count,
            booking.final_amount,
        )
