"""Utilities to populate the database with sample data for tests and demos."""
from __future__ import annotations

import random
from datetime import date, timedelta
from typing import Dict, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from .models import Train, User
from .schedule import add_train, add_user

ROUTES: Sequence[Tuple[str, str, str]] = (
    ("Lagos", "Ibadan", "2h 30m"),
    ("Ibadan", "Lagos", "2h 30m"),
    ("Abuja", "Kaduna", "2h 10m"),
    ("Kaduna", "Abuja", "2h 10m"),
    ("Warri", "Itakpe", "5h 30m"),
    ("Itakpe", "Warri", "5h 30m"),
)
DEPARTURE_TIMES = (("08:00", "Morning"), ("12:30", "Afternoon"), ("16:00", "Evening"))
CLASSES: Sequence[Dict[str, object]] = (
    {"type": "First Class", "price_adult": "₦10000", "price_child": "₦6000", "total_seats": 40},
    {"type": "Business Class", "price_adult": "₦7500", "price_child": "₦4500", "total_seats": 60},
    {"type": "Standard Class", "price_adult": "₦5000", "price_child": "₦3000", "total_seats": 88},
)
DEMO_USER = {"user_id": "demo-user", "name": "Demo Traveller", "email": "demo@example.com"}


def _arrival(departure: str, duration: str) -> str:
    hours, minutes = duration.replace("h", "").replace("m", "").split()
    dep_hour, dep_minute = (int(part) for part in departure.split(":"))
    total = dep_hour * 60 + dep_minute + int(hours) * 60 + int(minutes)
    return f"{(total // 60) % 24:02d}:{total % 60:02d}"


def generate_sample_data(
    session_factory: sessionmaker[Session],
    *,
    days: int = 7,
    start: date | None = None,
) -> Dict[str, int]:
    """Populate the database with a deterministic week of train schedules."""

    random.seed(42)
    start = start or date.today() + timedelta(days=1)
    created = 0
    with session_factory() as session:
        if session.get(User, DEMO_USER["user_id"]) is None:
            add_user(session, **DEMO_USER)
        offset = session.scalar(select(func.count(Train.id))) or 0
        for day in range(days):
            travel_date = (start + timedelta(days=day)).isoformat()
            for origin, destination, duration in ROUTES:
                departure, time_of_day = random.choice(DEPARTURE_TIMES)
                add_train(
                    session,
                    train_number=f"NRC-{100 + offset + created}",
                    route=f"{origin} - {destination}",
                    time_of_day=time_of_day,
                    duration=duration,
                    departure={"station": origin, "date": travel_date, "time": departure},
                    arrival={"station": destination, "date": travel_date, "time": _arrival(departure, duration)},
                    classes=CLASSES,
                )
                created += 1
        session.commit()
    return {"trains": created, "users": 1}
