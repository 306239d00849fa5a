

class BookingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking engine.
    """

    status_code = 400
    code = "BOOKING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EventNotFoundError(BookingEngineError):
    """Raised when an event does not exist."""

    status_code = 404
    code = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class BookingNotFoundError(BookingEngineError):
    """Raised when a booking (or QR token) does not resolve to a booking."""

    status_code = 404
    code = "BOOKING_NOT_FOUND"

    def __init__(self, message: str = "Booking not found"):
        super().__init__(message)


class CapacityExceededError(BookingEngineError):
    """Raised when an event cannot admit the requested seats."""

    status_code = 409
    code = "CAPACITY_EXCEEDED"

    def __init__(self, event_id: str, requested: int):
        self.event_id = event_id
        self.requested = requested
        super().__init__(
            f"Not enough seats available for event {event_id} "
            f"(requested {requested})"
        )


class ValidationFailedError(BookingEngineError):
    """
    Raised before any mutation when booking input is inconsistent:
    meal counts, paid amount, reference numbers, ticket limits.
    """

    status_code = 400
    code = "VALIDATION_FAILED"


class InvalidStateTransitionError(BookingEngineError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class AlreadyCancelledError(BookingEngineError):
    """Raised when cancelling a booking that is already cancelled."""

    status_code = 409
    code = "ALREADY_CANCELLED"

    def __init__(self, booking_code: str):
        self.booking_code = booking_code
        super().__init__(f"Booking {booking_code} is already cancelled")


class ScanRejectedError(BookingEngineError):
    """Raised when a QR token cannot be admitted. `reason` says why."""

    status_code = 409
    code = "SCAN_REJECTED"

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"QR code cannot be scanned: {reason.describe()}")


class PaymentVerificationFailedError(BookingEngineError):
    """Raised when the gateway does not vouch for a payment."""

    status_code = 402
    code = "PAYMENT_VERIFICATION_FAILED"


class ConcurrentModificationError(BookingEngineError):
    """Raised when a booking changed underneath an update."""

    status_code = 409
    code = "CONCURRENT_MODIFICATION"


class PaymentGatewayError(BookingEngineError):
    """Raised when the payment provider is unreachable or misconfigured."""

    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"
