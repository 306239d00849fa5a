import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.domain.exceptions import BookingEngineError, ScanRejectedError

logger = logging.getLogger(__name__)


async def booking_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Booking engine error on %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("Request rejected on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def scan_rejected_handler(request: Request, exc: ScanRejectedError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "reason": exc.reason.value},
    )


EXCEPTION_HANDLERS = {
    ScanRejectedError: scan_rejected_handler,
    BookingEngineError: booking_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
