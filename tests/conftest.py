from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import pytest

from rail_booking.database import create_session_factory, session_scope
from rail_booking.errors import DeliveryFailure
from rail_booking.gateway import GatewayTransaction, GatewayVerification
from rail_booking.ledger import ContactDetails, PassengerDetails, ReservationRequest
from rail_booking.models import Base
from rail_booking.schedule import add_train, add_user

COMPLETE_DEPARTURE = {"station": "Lagos", "date": "2026-11-02", "time": "08:00"}
COMPLETE_ARRIVAL = {"station": "Ibadan", "date": "2026-11-02", "time": "10:30"}
CLASSES = [
    {"type": "Standard Class", "price_adult": "₦5000", "price_child": "₦3000", "total_seats": 10},
    {"type": "First Class", "price_adult": "₦10000", "price_child": "₦6000", "total_seats": 2},
]


class FakeGateway:
    """In-memory stand-in for the Paystack API."""

    def __init__(self) -> None:
        self.statuses: dict = {}
        self.amounts: dict = {}
        self.initialized: List[dict] = []
        self.verified: List[str] = []

    def initialize_transaction(self, *, email, amount, reference, callback_url):
        self.initialized.append(
            {"email": email, "amount": amount, "reference": reference, "callback_url": callback_url}
        )
        self.amounts[reference] = amount * 100
        self.statuses.setdefault(reference, "success")
        return GatewayTransaction(
            authorization_url=f"https://checkout.test/{reference}",
            access_code=f"access-{reference[:6]}",
            reference=reference,
        )

    def verify_transaction(self, reference):
        self.verified.append(reference)
        return GatewayVerification(
            reference=reference,
            status=self.statuses.get(reference, "failed"),
            amount=self.amounts.get(reference, 0),
        )


class FakeMailer:
    """Records sent messages; fails the first ``failures`` sends, or always for ``broken`` recipients."""

    def __init__(self, failures: int = 0, broken: Sequence[str] = ()) -> None:
        self.failures = failures
        self.broken = set(broken)
        self.sent: list = []
        self.attempts = 0
        self._lock = threading.Lock()

    def send(self, message) -> None:
        with self._lock:
            self.attempts += 1
            if message["To"] in self.broken:
                raise DeliveryFailure(f"mailbox {message['To']} unavailable")
            if self.failures > 0:
                self.failures -= 1
                raise DeliveryFailure("SMTP server unavailable")
            self.sent.append(message)

    @property
    def recipients(self) -> List[str]:
        return [message["To"] for message in self.sent]


class FakeSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_request(
    train_id: int,
    seats: Sequence[int],
    *,
    fare_types: Optional[Sequence[str]] = None,
    class_type: str = "Standard Class",
    coach: str = "A",
) -> ReservationRequest:
    fare_types = list(fare_types or ["Adult"] * len(seats))
    return ReservationRequest(
        train_id=train_id,
        class_type=class_type,
        coach=coach,
        seats=list(seats),
        passengers=[
            PassengerDetails(
                fare_type=fare_type,
                name=f"Passenger {index}",
                nin=f"{12345678900 + index}",
                email=f"passenger{index}@example.com",
                phone=f"0803000000{index}",
            )
            for index, fare_type in enumerate(fare_types)
        ],
        contact=ContactDetails(email="contact@example.com", phone="08030000099"),
    )


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = create_session_factory(f"sqlite+pysqlite:///{tmp_path / 'booking.db'}")
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def users(session_factory):
    with session_scope(session_factory) as session:
        for index in range(8):
            add_user(session, user_id=f"user-{index}", name=f"User {index}", email=f"user{index}@example.com")
    return [f"user-{index}" for index in range(8)]


@pytest.fixture
def train_id(session_factory):
    with session_scope(session_factory) as session:
        train = add_train(
            session,
            train_number="NRC-100",
            route="Lagos - Ibadan",
            departure=COMPLETE_DEPARTURE,
            arrival=COMPLETE_ARRIVAL,
            classes=CLASSES,
            time_of_day="Morning",
            duration="2h 30m",
        )
        return train.id


@pytest.fixture
def incomplete_train_id(session_factory):
    with session_scope(session_factory) as session:
        train = add_train(
            session,
            train_number="NRC-200",
            route="Abuja - Kaduna",
            departure={"station": "Abuja", "date": "2026-11-02", "time": "09:00"},
            arrival=None,
            classes=CLASSES,
        )
        return train.id


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def fake_sleep():
    return FakeSleep()
