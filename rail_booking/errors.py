"""Exceptions raised by the booking core."""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence


class BookingError(RuntimeError):
    """Base class for every error the booking core raises."""


class ValidationError(BookingError):
    """Raised when a request is malformed. Nothing has been written."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidSeatRange(ValidationError):
    def __init__(self, seats: Sequence[int], total_seats: int):
        self.seats = sorted(seats)
        self.total_seats = total_seats
        joined = ", ".join(str(seat) for seat in self.seats)
        super().__init__(
            f"Invalid seat numbers: {joined}. Valid seats are 1-{total_seats}",
            [{"field": "seats", "message": f"seat {seat} is outside 1-{total_seats}"} for seat in self.seats],
        )


class NotFoundError(BookingError):
    """Raised for an unknown train, booking or payment."""


class PaymentNotFound(NotFoundError):
    pass


class AuthorizationError(BookingError):
    """Raised when the caller does not own the record it tries to change."""


class ConflictError(BookingError):
    """Raised when the request clashes with existing live bookings."""


class DuplicateBooking(ConflictError):
    pass


class SeatConflict(ConflictError):
    def __init__(self, seats: Sequence[int]):
        self.seats = sorted(seats)
        joined = ", ".join(str(seat) for seat in self.seats)
        super().__init__(f"The following seat(s) are already taken: {joined}")


class InsufficientCapacity(ConflictError):
    def __init__(self, requested: int, available: int, class_type: str):
        self.requested = requested
        self.available = available
        super().__init__(f"Only {available} seats available in {class_type}")


class BookingStateError(ConflictError):
    """Raised for a lifecycle transition that is not allowed."""


class VerificationFailed(BookingError):
    """Raised when the gateway does not report the payment as successful."""


class PaymentGatewayError(BookingError):
    """Raised when a request to the payment gateway fails."""


class IncompleteScheduleData(BookingError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Train is missing required schedule data: {field}")


class MissingTicketField(BookingError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required ticket field: {field}")


class DeliveryFailure(BookingError):
    """Raised when a ticket email could not be handed to the mail server."""


__all__ = [
    "BookingError",
    "ValidationError",
    "InvalidSeatRange",
    "NotFoundError",
    "PaymentNotFound",
    "AuthorizationError",
    "ConflictError",
    "DuplicateBooking",
    "SeatConflict",
    "InsufficientCapacity",
    "BookingStateError",
    "VerificationFailed",
    "PaymentGatewayError",
    "IncompleteScheduleData",
    "MissingTicketField",
    "DeliveryFailure",
]
