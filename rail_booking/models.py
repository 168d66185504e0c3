"""SQLAlchemy models for the train booking system."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

BOOKING_STATUSES = ("pending", "confirmed", "cancelled")
PAYMENT_STATUSES = ("pending", "successful", "failed", "refund_due")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(120), nullable=False)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="user")


class Train(Base):
    __tablename__ = "trains"
    __table_args__ = (UniqueConstraint("train_number", name="uq_train_number"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    train_number: Mapped[str] = mapped_column(String(20), nullable=False)
    route: Mapped[str] = mapped_column(String(120), nullable=False)
    time_of_day: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    duration: Mapped[str] = mapped_column(String(20), default="", nullable=False)

    # Schedule data may be incomplete; tickets cannot be issued until it is not.
    departure_station: Mapped[Optional[str]] = mapped_column(String(80))
    departure_date: Mapped[Optional[str]] = mapped_column(String(20))
    departure_time: Mapped[Optional[str]] = mapped_column(String(20))
    arrival_station: Mapped[Optional[str]] = mapped_column(String(80))
    arrival_date: Mapped[Optional[str]] = mapped_column(String(20))
    arrival_time: Mapped[Optional[str]] = mapped_column(String(20))

    classes: Mapped[List["TrainClass"]] = relationship(
        back_populates="train", cascade="all, delete-orphan", order_by="TrainClass.id"
    )
    bookings: Mapped[List["Booking"]] = relationship(back_populates="train")

    def get_class(self, class_type: str) -> Optional["TrainClass"]:
        for train_class in self.classes:
            if train_class.class_type == class_type:
                return train_class
        return None


class TrainClass(Base):
    __tablename__ = "train_classes"
    __table_args__ = (
        UniqueConstraint("train_id", "class_type", name="uq_train_class_type"),
        CheckConstraint("total_seats > 0", name="ck_total_seats_positive"),
        CheckConstraint("reserved_seats >= 0", name="ck_reserved_non_negative"),
        CheckConstraint("reserved_seats <= total_seats", name="ck_reserved_within_capacity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    train_id: Mapped[int] = mapped_column(ForeignKey("trains.id", ondelete="CASCADE"))
    class_type: Mapped[str] = mapped_column(String(40), nullable=False)
    price_adult: Mapped[int] = mapped_column(Integer, nullable=False)
    price_child: Mapped[int] = mapped_column(Integer, nullable=False)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    # Written only by rail_booking.ledger.
    reserved_seats: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    train: Mapped[Train] = relationship(back_populates="classes")

    @property
    def available_seats(self) -> int:
        return self.total_seats - self.reserved_seats

    def unit_price(self, fare_type: str) -> int:
        return self.price_adult if fare_type == "Adult" else self.price_child


class SeatHold(Base):
    """One occupied seat of a live booking inside a (train, class, coach) partition."""

    __tablename__ = "seat_holds"
    __table_args__ = (
        UniqueConstraint("train_id", "class_type", "coach", "seat_number", name="uq_partition_seat"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    train_id: Mapped[int] = mapped_column(ForeignKey("trains.id", ondelete="CASCADE"))
    class_type: Mapped[str] = mapped_column(String(40), nullable=False)
    coach: Mapped[str] = mapped_column(String(20), nullable=False)
    seat_number: Mapped[int] = mapped_column(Integer, nullable=False)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"))

    booking: Mapped["Booking"] = relationship(back_populates="holds")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (UniqueConstraint("booking_code", name="uq_booking_code"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_code: Mapped[Optional[str]] = mapped_column(String(11))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    train_id: Mapped[int] = mapped_column(ForeignKey("trains.id"))
    class_type: Mapped[str] = mapped_column(String(40), nullable=False)
    coach: Mapped[str] = mapped_column(String(20), nullable=False)
    seats: Mapped[List[int]] = mapped_column(JSON, nullable=False)
    contact_email: Mapped[str] = mapped_column(String(120), nullable=False)
    contact_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*BOOKING_STATUSES, name="booking_status"), default="pending", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    user: Mapped[User] = relationship(back_populates="bookings")
    train: Mapped[Train] = relationship(back_populates="bookings")
    passengers: Mapped[List["BookingPassenger"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan", order_by="BookingPassenger.position"
    )
    holds: Mapped[List[SeatHold]] = relationship(back_populates="booking", cascade="all, delete-orphan")
    payments: Mapped[List["Payment"]] = relationship(back_populates="booking", cascade="all, delete-orphan")

    @property
    def is_live(self) -> bool:
        return self.status != "cancelled"


class BookingPassenger(Base):
    __tablename__ = "booking_passengers"

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"))
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    fare_type: Mapped[str] = mapped_column(String(10), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    nin: Mapped[str] = mapped_column(String(11), nullable=False)
    email: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="passengers")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("reference", name="uq_payment_reference"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"))
    reference: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*PAYMENT_STATUSES, name="payment_status"), default="pending", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    booking: Mapped[Booking] = relationship(back_populates="payments")
