"""Booking lifecycle: validation, state transitions and public booking codes."""
from __future__ import annotations

import logging
import random
import re
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .errors import AuthorizationError, BookingStateError, NotFoundError, ValidationError
from .ledger import FARE_TYPES, ReservationRequest, release, reserve
from .models import Booking, Payment, Train, utcnow

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
NIN_PATTERN = re.compile(r"^\d{11}$")

BOOKING_CODE_PREFIX = "NRC"

_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"cancelled"}),
    "cancelled": frozenset(),
}


def random_booking_code() -> str:
    return f"{BOOKING_CODE_PREFIX}{random.randint(10_000_000, 99_999_999)}"


def validate_booking_request(request: ReservationRequest) -> None:
    """Raise ``ValidationError`` listing every malformed field of ``request``."""

    errors: List[Dict[str, str]] = []

    def add(field: str, message: str) -> None:
        errors.append({"field": field, "message": message})

    if not request.seats:
        add("seats", "at least one seat is required")
    elif len(set(request.seats)) != len(request.seats):
        add("seats", "seat numbers must not repeat")
    if not request.coach:
        add("coach", "coach is required")
    if not request.passengers:
        add("passengers", "at least one passenger is required")
    elif len(request.passengers) != len(request.seats):
        add("passengers", "passenger count must equal seat count")

    for index, passenger in enumerate(request.passengers):
        prefix = f"passengers[{index}]"
        if passenger.fare_type not in FARE_TYPES:
            add(f"{prefix}.fare_type", f"fare type must be one of {', '.join(FARE_TYPES)}")
        if not passenger.name.strip():
            add(f"{prefix}.name", "name is required")
        if not EMAIL_PATTERN.match(passenger.email or ""):
            add(f"{prefix}.email", f"Invalid email for passenger: {passenger.email}")
        if not NIN_PATTERN.match(passenger.nin or ""):
            add(f"{prefix}.nin", f"NIN must be exactly 11 digits for passenger: {passenger.name}")
        if not (passenger.phone or "").strip():
            add(f"{prefix}.phone", "phone is required")

    contact = request.contact
    if contact is None:
        add("contact", "contact details are required")
    else:
        if not EMAIL_PATTERN.match(contact.email or ""):
            add("contact.email", "Invalid email format in contact details")
        if not (contact.phone or "").strip():
            add("contact.phone", "phone is required")

    if errors:
        raise ValidationError(errors[0]["message"], errors)


def create_booking(
    session: Session,
    request: ReservationRequest,
    *,
    user_id: str,
    convenience_fee: int,
) -> Booking:
    """Validate a booking request and hold its seats in a pending booking."""

    validate_booking_request(request)
    return reserve(session, request, user_id=user_id, convenience_fee=convenience_fee)


def _transition(booking: Booking, target: str) -> None:
    if target not in _TRANSITIONS[booking.status]:
        raise BookingStateError(f"Cannot move booking from {booking.status} to {target}")
    booking.status = target


def assign_booking_code(
    session: Session,
    booking: Booking,
    code_factory: Callable[[], str] = random_booking_code,
) -> str:
    """Give ``booking`` a public code, redrawing until the candidate is unused."""

    if booking.booking_code:
        return booking.booking_code
    while True:
        candidate = code_factory()
        clash = session.scalars(select(Booking.id).where(Booking.booking_code == candidate)).first()
        if clash is None:
            break
        logger.debug("Booking code %s already in use, drawing again", candidate)
    booking.booking_code = candidate
    return candidate


def confirm_booking(
    session: Session,
    booking: Booking,
    code_factory: Callable[[], str] = random_booking_code,
) -> Booking:
    _transition(booking, "confirmed")
    booking.confirmed_at = utcnow()
    assign_booking_code(session, booking, code_factory)
    session.flush()
    logger.info("Booking %s confirmed as %s", booking.id, booking.booking_code)
    return booking


def _cancel(session: Session, booking: Booking, reason: str) -> Booking:
    _transition(booking, "cancelled")
    booking.cancelled_at = utcnow()
    release(session, booking)
    session.flush()
    logger.info("Booking %s cancelled (%s)", booking.id, reason)
    return booking


def cancel_booking(session: Session, booking: Booking, *, user_id: str) -> Booking:
    """Cancel ``booking`` on behalf of its owner and release its seats."""

    if booking.user_id != user_id:
        raise AuthorizationError("Not authorized to cancel this booking")
    return _cancel(session, booking, reason=f"by user {user_id}")


def expire_pending_bookings(session: Session, *, older_than: timedelta, now: Optional[datetime] = None) -> List[int]:
    """Cancel unpaid bookings created before ``now - older_than``.

    A booking whose pending payment was opened inside the window is left
    alone so a checkout still in progress at the gateway can complete.
    """

    cutoff = (now or utcnow()) - older_than
    in_checkout = (
        select(Payment.id)
        .where(Payment.booking_id == Booking.id, Payment.status == "pending", Payment.created_at >= cutoff)
        .exists()
    )
    stale = list(
        session.scalars(
            select(Booking)
            .where(Booking.status == "pending", Booking.created_at < cutoff, ~in_checkout)
            .with_for_update()
        )
    )
    for booking in stale:
        _cancel(session, booking, reason="payment window expired")
    return [booking.id for booking in stale]


def _with_details(stmt):
    return stmt.options(
        selectinload(Booking.passengers),
        selectinload(Booking.train).selectinload(Train.classes),
    )


def get_booking(session: Session, booking_id: int) -> Booking:
    booking = session.scalars(_with_details(select(Booking).where(Booking.id == booking_id))).one_or_none()
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def get_booking_by_code(session: Session, booking_code: str) -> Booking:
    booking = session.scalars(
        _with_details(select(Booking).where(Booking.booking_code == booking_code))
    ).one_or_none()
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def list_user_bookings(session: Session, user_id: str, *, status: Optional[str] = None) -> List[Booking]:
    stmt = select(Booking).where(Booking.user_id == user_id)
    if status:
        stmt = stmt.where(Booking.status == status)
    return list(session.scalars(_with_details(stmt).order_by(Booking.created_at.desc(), Booking.id.desc())))


__all__ = [
    "BOOKING_CODE_PREFIX",
    "random_booking_code",
    "validate_booking_request",
    "create_booking",
    "assign_booking_code",
    "confirm_booking",
    "cancel_booking",
    "expire_pending_bookings",
    "get_booking",
    "get_booking_by_code",
    "list_user_bookings",
]
