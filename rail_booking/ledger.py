"""Seat inventory: the only code path that changes seat occupancy.

A partition is a ``(train, class, coach)`` triple. Seat numbers are unique
among the live bookings of a partition; class capacity is shared by all of
its coaches. ``reserve`` and ``release`` keep ``TrainClass.reserved_seats``
and the ``SeatHold`` rows in step inside the caller's unit of work, so both
commit or neither does.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import (
    DuplicateBooking,
    InsufficientCapacity,
    InvalidSeatRange,
    NotFoundError,
    SeatConflict,
)
from .models import Booking, BookingPassenger, SeatHold, Train, TrainClass

logger = logging.getLogger(__name__)

FARE_TYPES = ("Adult", "Child")


@dataclass
class PassengerDetails:
    fare_type: str
    name: str
    nin: str
    email: str
    phone: str


@dataclass
class ContactDetails:
    email: str
    phone: str


@dataclass
class ReservationRequest:
    train_id: int
    class_type: str
    coach: str
    seats: List[int]
    passengers: List[PassengerDetails] = field(default_factory=list)
    contact: ContactDetails | None = None


def _lock_class(session: Session, train_id: int, class_type: str) -> TrainClass:
    train_class = session.scalars(
        select(TrainClass)
        .where(TrainClass.train_id == train_id, TrainClass.class_type == class_type)
        .with_for_update()
    ).one_or_none()
    if train_class is None:
        if session.get(Train, train_id) is None:
            raise NotFoundError("Train not found")
        raise NotFoundError("Class not available")
    return train_class


def taken_seats(session: Session, train_id: int, class_type: str, coach: str) -> List[int]:
    """Seat numbers held by live bookings in one partition."""

    return sorted(
        session.scalars(
            select(SeatHold.seat_number).where(
                SeatHold.train_id == train_id,
                SeatHold.class_type == class_type,
                SeatHold.coach == coach,
            )
        )
    )


def quote_total(train_class: TrainClass, fare_types: Sequence[str], convenience_fee: int) -> int:
    """Price snapshot: unit fare per passenger plus one convenience fee."""

    return sum(train_class.unit_price(fare_type) for fare_type in fare_types) + convenience_fee


def _has_live_booking(session: Session, user_id: str, request: ReservationRequest) -> bool:
    existing = session.scalars(
        select(Booking.id)
        .where(
            Booking.user_id == user_id,
            Booking.train_id == request.train_id,
            Booking.class_type == request.class_type,
            Booking.coach == request.coach,
            Booking.status != "cancelled",
        )
        .limit(1)
    ).first()
    return existing is not None


def reserve(
    session: Session,
    request: ReservationRequest,
    *,
    user_id: str,
    convenience_fee: int,
) -> Booking:
    """Validate ``request`` against the inventory and create a pending booking.

    Checks run in a fixed order and the first violation wins: seat range,
    duplicate live booking for the caller, seat conflicts, then capacity.
    """

    train_class = _lock_class(session, request.train_id, request.class_type)
    seats = list(request.seats)

    out_of_range = [seat for seat in seats if seat < 1 or seat > train_class.total_seats]
    if out_of_range:
        raise InvalidSeatRange(out_of_range, train_class.total_seats)

    if _has_live_booking(session, user_id, request):
        raise DuplicateBooking("You already have a booking for this train class and coach")

    taken = set(taken_seats(session, request.train_id, request.class_type, request.coach))
    conflicts = [seat for seat in seats if seat in taken]
    if conflicts:
        raise SeatConflict(conflicts)

    if len(seats) > train_class.available_seats:
        raise InsufficientCapacity(len(seats), train_class.available_seats, request.class_type)

    total_price = quote_total(
        train_class, [passenger.fare_type for passenger in request.passengers], convenience_fee
    )

    result = session.execute(
        update(TrainClass)
        .where(
            TrainClass.id == train_class.id,
            TrainClass.reserved_seats + len(seats) <= TrainClass.total_seats,
        )
        .values(reserved_seats=TrainClass.reserved_seats + len(seats))
        .execution_options(synchronize_session=False)
    )
    session.refresh(train_class)
    if result.rowcount != 1:
        raise InsufficientCapacity(len(seats), train_class.available_seats, request.class_type)

    contact = request.contact
    booking = Booking(
        user_id=user_id,
        train_id=request.train_id,
        class_type=request.class_type,
        coach=request.coach,
        seats=seats,
        contact_email=contact.email if contact else "",
        contact_phone=contact.phone if contact else "",
        total_price=total_price,
        status="pending",
    )
    for position, passenger in enumerate(request.passengers):
        booking.passengers.append(
            BookingPassenger(
                position=position,
                fare_type=passenger.fare_type,
                name=passenger.name,
                nin=passenger.nin,
                email=passenger.email,
                phone=passenger.phone,
            )
        )
    for seat in seats:
        booking.holds.append(
            SeatHold(
                train_id=request.train_id,
                class_type=request.class_type,
                coach=request.coach,
                seat_number=seat,
            )
        )
    session.add(booking)
    try:
        session.flush()
    except IntegrityError as exc:
        raise SeatConflict(seats) from exc

    logger.info(
        "Reserved seats %s on train %s %s/%s for user %s (booking %s, total %s)",
        seats,
        request.train_id,
        request.class_type,
        request.coach,
        user_id,
        booking.id,
        total_price,
    )
    return booking


def release(session: Session, booking: Booking) -> int:
    """Return a booking's seats to the inventory. Safe to call twice."""

    released = len(booking.holds)
    if not released:
        return 0
    booking.holds.clear()
    session.execute(
        update(TrainClass)
        .where(TrainClass.train_id == booking.train_id, TrainClass.class_type == booking.class_type)
        .values(
            reserved_seats=case(
                (TrainClass.reserved_seats >= released, TrainClass.reserved_seats - released),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    session.flush()
    logger.info("Released %d seat(s) of booking %s", released, booking.id)
    return released


__all__ = [
    "FARE_TYPES",
    "PassengerDetails",
    "ContactDetails",
    "ReservationRequest",
    "taken_seats",
    "quote_total",
    "reserve",
    "release",
]
