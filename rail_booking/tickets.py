"""Ticket rendering and delivery.

Every message for a booking is rendered and checked before the first one is
sent, so a booking with incomplete data produces no mail at all.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from sqlalchemy.orm import Session

from .bookings import get_booking_by_code
from .errors import BookingStateError, DeliveryFailure, IncompleteScheduleData, MissingTicketField
from .mailer import build_message
from .models import Booking
from .schedule import schedule_gap

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
TICKET_SUBJECT = "Your Nigerian Railway Corporation Ticket"
SUMMARY_SUBJECT = "Summary of Your Nigerian Railway Corporation Booking"

T = TypeVar("T")


@dataclass
class OutgoingMessage:
    to: str
    subject: str
    html: str
    kind: str = "ticket"


@dataclass
class RetryPolicy:
    """Retry with exponential backoff: ``base_delay * multiplier ** n`` between attempts."""

    max_attempts: int = 3
    base_delay: float = 5.0
    multiplier: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delays(self) -> List[float]:
        return [self.base_delay * self.multiplier**attempt for attempt in range(max(self.max_attempts - 1, 0))]

    def run(self, operation: Callable[[], T], *, describe: str = "operation") -> T:
        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except DeliveryFailure as exc:
                if attempt > len(delays):
                    raise
                delay = delays[attempt - 1]
                logger.warning(
                    "%s failed on attempt %d/%d, retrying in %.1fs: %s",
                    describe,
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                self.sleep(delay)


def _require(context: Dict[str, Any]) -> None:
    for key, value in context.items():
        if value is None or value == "":
            raise MissingTicketField(key)


def ticket_contexts(booking: Booking) -> List[Dict[str, Any]]:
    """One template context per passenger, paired with the seat at the same position."""

    train = booking.train
    if train is None:
        raise IncompleteScheduleData("train")
    gap = schedule_gap(train)
    if gap:
        raise IncompleteScheduleData(gap)
    if len(booking.passengers) != len(booking.seats):
        raise MissingTicketField("seats")

    contexts = []
    for passenger, seat in zip(booking.passengers, booking.seats):
        context = {
            "departure_station": train.departure_station,
            "departure_date": train.departure_date,
            "departure_time": train.departure_time,
            "arrival_station": train.arrival_station,
            "arrival_date": train.arrival_date,
            "arrival_time": train.arrival_time,
            "train_number": train.train_number,
            "coach": booking.coach,
            "seat_number": seat,
            "passenger_type": passenger.fare_type,
            "booking_id": booking.booking_code,
            "booking_date": booking.created_at.strftime("%d/%m/%Y") if booking.created_at else None,
            "passenger_name": passenger.name,
            "passenger_nin": passenger.nin,
            "passenger_email": passenger.email,
            "passenger_phone": passenger.phone,
        }
        _require(context)
        contexts.append(context)
    return contexts


def summary_context(booking: Booking) -> Dict[str, Any]:
    context = {
        "booking_id": booking.booking_code,
        "train_number": booking.train.train_number if booking.train else None,
        "class_type": booking.class_type,
        "coach": booking.coach,
        "contact_email": booking.contact_email,
        "contact_phone": booking.contact_phone,
        "total_amount": booking.total_price,
    }
    _require(context)
    context["passengers"] = [
        {"name": passenger.name, "seat": seat, "type": passenger.fare_type}
        for passenger, seat in zip(booking.passengers, booking.seats)
    ]
    return context


class TicketDispatcher:
    def __init__(self, mailer, *, sender: str, template_dir: Optional[Path] = None) -> None:
        self.mailer = mailer
        self.sender = sender
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir or TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
        )

    def prepare(self, booking: Booking) -> List[OutgoingMessage]:
        """Render every ticket and the booking summary without sending anything."""

        ticket_template = self.env.get_template("ticket.html")
        summary_template = self.env.get_template("booking_summary.html")
        messages = [
            OutgoingMessage(
                to=context["passenger_email"],
                subject=TICKET_SUBJECT,
                html=ticket_template.render(**context),
            )
            for context in ticket_contexts(booking)
        ]
        summary = summary_context(booking)
        messages.append(
            OutgoingMessage(
                to=summary["contact_email"],
                subject=SUMMARY_SUBJECT,
                html=summary_template.render(**summary),
                kind="summary",
            )
        )
        return messages

    def send(self, message: OutgoingMessage) -> None:
        self.mailer.send(
            build_message(sender=self.sender, to=message.to, subject=message.subject, html=message.html)
        )

    def deliver(self, messages: List[OutgoingMessage]) -> int:
        for message in messages:
            self.send(message)
        return len(messages)

    def dispatch(self, booking: Booking) -> int:
        messages = self.prepare(booking)
        sent = self.deliver(messages)
        logger.info("Dispatched %d ticket message(s) for booking %s", sent, booking.booking_code)
        return sent


def dispatch_with_retry(dispatcher: TicketDispatcher, booking: Booking, policy: RetryPolicy) -> bool:
    """Deliver each message of ``booking`` under ``policy``.

    Rendering errors propagate. Delivery that still fails after the last
    attempt is logged and reported as ``False``; the booking is untouched.
    """

    messages = dispatcher.prepare(booking)
    delivered = True
    for message in messages:
        try:
            policy.run(
                lambda message=message: dispatcher.send(message),
                describe=f"{message.kind} delivery to {message.to}",
            )
        except DeliveryFailure as exc:
            delivered = False
            logger.error(
                "Giving up on %s for booking %s to %s after %d attempts: %s",
                message.kind,
                booking.booking_code,
                message.to,
                policy.max_attempts,
                exc,
            )
    if delivered:
        logger.info("Dispatched %d ticket message(s) for booking %s", len(messages), booking.booking_code)
    return delivered


def resend_tickets(session: Session, dispatcher: TicketDispatcher, booking_code: str) -> int:
    booking = get_booking_by_code(session, booking_code)
    if booking.status != "confirmed":
        raise BookingStateError("Only confirmed bookings have tickets")
    return dispatcher.dispatch(booking)


__all__ = [
    "OutgoingMessage",
    "RetryPolicy",
    "TicketDispatcher",
    "dispatch_with_retry",
    "resend_tickets",
    "summary_context",
    "ticket_contexts",
]
