"""Read-mostly train directory: trains, classes and fares."""
from __future__ import annotations

import re
from datetime import date
from typing import Iterable, List, Mapping, Optional

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from .errors import NotFoundError
from .models import Train, TrainClass, User

_PRICE_DIGITS = re.compile(r"[^\d]")


def parse_price(value: str | int) -> int:
    """Return the whole-naira amount of a fare such as ``"₦5,000"``."""

    if isinstance(value, int):
        return value
    digits = _PRICE_DIGITS.sub("", value)
    if not digits:
        raise ValueError(f"Cannot parse price {value!r}")
    return int(digits)


def add_user(session: Session, *, user_id: str, name: str, email: str) -> User:
    user = User(id=user_id, name=name, email=email)
    session.add(user)
    session.flush()
    return user


def add_train(
    session: Session,
    *,
    train_number: str,
    route: str,
    departure: Optional[Mapping[str, str]],
    arrival: Optional[Mapping[str, str]],
    classes: Iterable[Mapping[str, object]],
    time_of_day: str = "",
    duration: str = "",
) -> Train:
    """Create a train with its fare classes.

    ``departure`` and ``arrival`` are ``{"station", "date", "time"}`` mappings;
    each class mapping carries ``type``, ``price_adult``, ``price_child`` and
    ``total_seats``. Prices may be given as strings such as ``"₦5000"``.
    """

    departure = departure or {}
    arrival = arrival or {}
    train = Train(
        train_number=train_number,
        route=route,
        time_of_day=time_of_day,
        duration=duration,
        departure_station=departure.get("station"),
        departure_date=departure.get("date"),
        departure_time=departure.get("time"),
        arrival_station=arrival.get("station"),
        arrival_date=arrival.get("date"),
        arrival_time=arrival.get("time"),
    )
    for entry in classes:
        train.classes.append(
            TrainClass(
                class_type=str(entry["type"]),
                price_adult=parse_price(entry["price_adult"]),  # type: ignore[arg-type]
                price_child=parse_price(entry["price_child"]),  # type: ignore[arg-type]
                total_seats=int(entry["total_seats"]),  # type: ignore[arg-type]
                reserved_seats=0,
            )
        )
    session.add(train)
    session.flush()
    return train


def get_train(session: Session, train_id: int) -> Train:
    train = session.get(Train, train_id, options=[selectinload(Train.classes)])
    if train is None:
        raise NotFoundError("Train not found")
    return train


def list_trains(session: Session) -> List[Train]:
    return list(session.scalars(select(Train).options(selectinload(Train.classes)).order_by(Train.id)))


def search_trains(
    session: Session,
    *,
    departure_station: Optional[str] = None,
    arrival_station: Optional[str] = None,
    travel_date: Optional[date] = None,
) -> List[Train]:
    stmt: Select[tuple[Train]] = select(Train).options(selectinload(Train.classes))
    if departure_station:
        stmt = stmt.where(Train.departure_station.ilike(departure_station.strip()))
    if arrival_station:
        stmt = stmt.where(Train.arrival_station.ilike(arrival_station.strip()))
    if travel_date:
        stmt = stmt.where(Train.departure_date == travel_date.isoformat())
    return list(session.scalars(stmt.order_by(Train.id)))


def schedule_gap(train: Train) -> Optional[str]:
    """Return the first missing departure/arrival field, or ``None``."""

    for field in (
        "departure_station",
        "departure_date",
        "departure_time",
        "arrival_station",
        "arrival_date",
        "arrival_time",
    ):
        if not getattr(train, field):
            return field
    return None


__all__ = [
    "parse_price",
    "add_user",
    "add_train",
    "get_train",
    "list_trains",
    "search_trains",
    "schedule_gap",
]
