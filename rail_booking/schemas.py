"""Request and response bodies for the HTTP API."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .ledger import ContactDetails, PassengerDetails, ReservationRequest


class PassengerIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fare_type: str = Field(alias="type")
    name: str
    nin: str
    email: str
    phone: str


class ContactIn(BaseModel):
    email: str
    phone: str


class BookingCreate(BaseModel):
    train_id: int
    class_type: str
    coach: str
    seats: List[int]
    passengers: List[PassengerIn]
    contact: ContactIn

    def to_request(self) -> ReservationRequest:
        return ReservationRequest(
            train_id=self.train_id,
            class_type=self.class_type,
            coach=self.coach,
            seats=list(self.seats),
            passengers=[
                PassengerDetails(
                    fare_type=passenger.fare_type,
                    name=passenger.name,
                    nin=passenger.nin,
                    email=passenger.email,
                    phone=passenger.phone,
                )
                for passenger in self.passengers
            ],
            contact=ContactDetails(email=self.contact.email, phone=self.contact.phone),
        )


class PassengerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    position: int
    fare_type: str
    name: str
    nin: str
    email: str
    phone: str


class TrainClassOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    class_type: str
    price_adult: int
    price_child: int
    total_seats: int
    reserved_seats: int
    available_seats: int


class TrainOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    train_number: str
    route: str
    time_of_day: str
    duration: str
    departure_station: Optional[str]
    departure_date: Optional[str]
    departure_time: Optional[str]
    arrival_station: Optional[str]
    arrival_date: Optional[str]
    arrival_time: Optional[str]
    classes: List[TrainClassOut]


class SeatMapOut(BaseModel):
    train_id: int
    class_type: str
    coach: str
    total_seats: int
    available_seats: int
    taken: List[int]


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_code: Optional[str]
    user_id: str
    train_id: int
    class_type: str
    coach: str
    seats: List[int]
    passengers: List[PassengerOut]
    contact_email: str
    contact_phone: str
    total_price: int
    status: str
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class TicketOut(BookingOut):
    train: TrainOut


class BookingCreated(BaseModel):
    message: str
    booking: BookingOut


class PaymentInitIn(BaseModel):
    booking_id: int


class PaymentInitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: int
    reference: str
    amount: int
    authorization_url: str
    access_code: str


class ReconcileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reference: str
    booking_id: int
    booking_code: Optional[str]
    replayed: bool


class ResendIn(BaseModel):
    booking_id: str


class MessageOut(BaseModel):
    message: str
