"""FastAPI application exposing bookings, payments and tickets."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Type

from fastapi import BackgroundTasks, Body, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session, sessionmaker

from . import bookings as booking_service
from .config import Settings, configure_logging
from .database import init_db, session_scope
from .errors import (
    AuthorizationError,
    BookingError,
    ConflictError,
    DeliveryFailure,
    IncompleteScheduleData,
    InsufficientCapacity,
    MissingTicketField,
    NotFoundError,
    PaymentGatewayError,
    SeatConflict,
    ValidationError,
    VerificationFailed,
)
from .gateway import PaystackGateway
from .ledger import taken_seats
from .mailer import SMTPMailer
from .models import Booking, User
from .payments import PaymentReconciler
from .schedule import get_train, search_trains
from .schemas import (
    BookingCreate,
    BookingCreated,
    BookingOut,
    MessageOut,
    PaymentInitIn,
    PaymentInitOut,
    ReconcileOut,
    ResendIn,
    SeatMapOut,
    TicketOut,
    TrainOut,
)
from .tickets import RetryPolicy, TicketDispatcher, resend_tickets

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

_STATUS_CODES: List[Tuple[Type[BookingError], int]] = [
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (VerificationFailed, 402),
    (IncompleteScheduleData, 422),
    (MissingTicketField, 422),
    (PaymentGatewayError, 502),
    (DeliveryFailure, 502),
]


def _error_payload(exc: BookingError) -> Tuple[int, Dict[str, Any]]:
    status_code = next((code for kind, code in _STATUS_CODES if isinstance(exc, kind)), 500)
    body: Dict[str, Any] = {"message": str(exc)}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    if isinstance(exc, SeatConflict):
        body["seats"] = exc.seats
    if isinstance(exc, InsufficientCapacity):
        body["available"] = exc.available
    return status_code, body


def _owned_booking(booking: Booking, user_id: str) -> Booking:
    if booking.user_id != user_id:
        raise AuthorizationError("Not authorized to view this booking")
    return booking


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[sessionmaker[Session]] = None,
    gateway=None,
    mailer=None,
    retry_policy: Optional[RetryPolicy] = None,
) -> FastAPI:
    """Return an application wired to the configured database, gateway and mailer."""

    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    session_factory = session_factory or init_db(settings.database_url)
    gateway = gateway or PaystackGateway(settings.paystack_secret_key, base_url=settings.paystack_base_url)
    mailer = mailer or SMTPMailer(
        settings.smtp_host,
        settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
    )
    dispatcher = TicketDispatcher(mailer, sender=settings.mail_from)
    reconciler = PaymentReconciler(
        session_factory,
        gateway,
        dispatcher,
        callback_url=f"{settings.frontend_url.rstrip('/')}/payment-success",
        retry_policy=retry_policy
        or RetryPolicy(max_attempts=settings.ticket_retry_attempts, base_delay=settings.ticket_retry_base_delay),
    )

    app = FastAPI(title="Rail Booking", description="Train seat booking and ticketing")
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.reconciler = reconciler
    app.state.dispatcher = dispatcher

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        status_code, body = _error_payload(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=body)

    def current_user(x_user_id: Optional[str]) -> str:
        if not x_user_id:
            raise HTTPException(status_code=401, detail="Not authenticated")
        with session_factory() as session:
            if session.get(User, x_user_id) is None:
                raise HTTPException(status_code=401, detail="Unknown user")
        return x_user_id

    def _ticket_url(booking_code: Optional[str]) -> str:
        return f"{settings.frontend_url.rstrip('/')}/tickets/{booking_code or ''}"

    # ── Trains ────────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/trains", response_model=List[TrainOut])
    def list_trains(
        departure: Optional[str] = Query(None, description="Departure station"),
        arrival: Optional[str] = Query(None, description="Arrival station"),
        travel_date: Optional[date] = Query(None, alias="date"),
    ) -> List[TrainOut]:
        with session_scope(session_factory) as session:
            trains = search_trains(
                session, departure_station=departure, arrival_station=arrival, travel_date=travel_date
            )
            return [TrainOut.model_validate(train) for train in trains]

    @app.get(f"{API_PREFIX}/trains/{{train_id}}", response_model=TrainOut)
    def train_detail(train_id: int) -> TrainOut:
        with session_scope(session_factory) as session:
            return TrainOut.model_validate(get_train(session, train_id))

    @app.get(f"{API_PREFIX}/trains/{{train_id}}/seats", response_model=SeatMapOut)
    def seat_map(train_id: int, class_type: str, coach: str) -> SeatMapOut:
        with session_scope(session_factory) as session:
            train = get_train(session, train_id)
            train_class = train.get_class(class_type)
            if train_class is None:
                raise NotFoundError("Class not available")
            return SeatMapOut(
                train_id=train_id,
                class_type=class_type,
                coach=coach,
                total_seats=train_class.total_seats,
                available_seats=train_class.available_seats,
                taken=taken_seats(session, train_id, class_type, coach),
            )

    # ── Bookings ──────────────────────────────────────────────────────────

    @app.post(f"{API_PREFIX}/bookings", response_model=BookingCreated, status_code=201)
    def create_booking(payload: BookingCreate, x_user_id: Optional[str] = Header(None)) -> BookingCreated:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            booking = booking_service.create_booking(
                session,
                payload.to_request(),
                user_id=user_id,
                convenience_fee=settings.convenience_fee,
            )
            booking = booking_service.get_booking(session, booking.id)
            return BookingCreated(message="Booking created successfully", booking=BookingOut.model_validate(booking))

    @app.get(f"{API_PREFIX}/bookings", response_model=List[BookingOut])
    def user_bookings(x_user_id: Optional[str] = Header(None)) -> List[BookingOut]:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            return [BookingOut.model_validate(b) for b in booking_service.list_user_bookings(session, user_id)]

    @app.get(f"{API_PREFIX}/bookings/confirmed", response_model=List[BookingOut])
    def confirmed_bookings(x_user_id: Optional[str] = Header(None)) -> List[BookingOut]:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            found = booking_service.list_user_bookings(session, user_id, status="confirmed")
            return [BookingOut.model_validate(b) for b in found]

    @app.get(f"{API_PREFIX}/bookings/{{booking_id}}", response_model=BookingOut)
    def booking_detail(booking_id: int, x_user_id: Optional[str] = Header(None)) -> BookingOut:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            booking = _owned_booking(booking_service.get_booking(session, booking_id), user_id)
            return BookingOut.model_validate(booking)

    # ── Payments ──────────────────────────────────────────────────────────

    @app.post(f"{API_PREFIX}/payments/initialize", response_model=PaymentInitOut)
    def initialize_payment(payload: PaymentInitIn, x_user_id: Optional[str] = Header(None)) -> PaymentInitOut:
        user_id = current_user(x_user_id)
        return PaymentInitOut.model_validate(reconciler.initialize(payload.booking_id, user_id=user_id))

    @app.get(f"{API_PREFIX}/payments/callback")
    def payment_callback(background: BackgroundTasks, reference: str = Query(...)) -> RedirectResponse:
        outcome = reconciler.reconcile(reference, dispatch=False)
        if not outcome.replayed:
            background.add_task(reconciler.hand_off, outcome.booking_id)
        return RedirectResponse(_ticket_url(outcome.booking_code), status_code=303)

    @app.get(f"{API_PREFIX}/payments/verify/{{reference}}", response_model=ReconcileOut)
    def verify_payment(reference: str, background: BackgroundTasks) -> ReconcileOut:
        outcome = reconciler.reconcile(reference, dispatch=False)
        if not outcome.replayed:
            background.add_task(reconciler.hand_off, outcome.booking_id)
        return ReconcileOut.model_validate(outcome)

    @app.post(f"{API_PREFIX}/payments/webhook")
    def payment_webhook(background: BackgroundTasks, event: Dict[str, Any] = Body(...)) -> Dict[str, str]:
        outcome = reconciler.handle_webhook(event, dispatch=False)
        if outcome is not None and not outcome.replayed:
            background.add_task(reconciler.hand_off, outcome.booking_id)
        return {"status": "ok"}

    # ── Tickets ───────────────────────────────────────────────────────────

    @app.get(f"{API_PREFIX}/tickets", response_model=List[TicketOut])
    def confirmed_tickets(x_user_id: Optional[str] = Header(None)) -> List[TicketOut]:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            found = booking_service.list_user_bookings(session, user_id, status="confirmed")
            return [TicketOut.model_validate(b) for b in found]

    @app.get(f"{API_PREFIX}/tickets/{{booking_code}}", response_model=TicketOut)
    def ticket_detail(booking_code: str, x_user_id: Optional[str] = Header(None)) -> TicketOut:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            booking = _owned_booking(booking_service.get_booking_by_code(session, booking_code), user_id)
            return TicketOut.model_validate(booking)

    @app.post(f"{API_PREFIX}/tickets/resend-email", response_model=MessageOut)
    def resend_ticket_emails(payload: ResendIn, x_user_id: Optional[str] = Header(None)) -> MessageOut:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            _owned_booking(booking_service.get_booking_by_code(session, payload.booking_id), user_id)
            resend_tickets(session, dispatcher, payload.booking_id)
        return MessageOut(message="Ticket emails re-sent successfully")

    @app.delete(f"{API_PREFIX}/tickets/{{booking_code}}", response_model=MessageOut)
    def cancel_ticket(booking_code: str, x_user_id: Optional[str] = Header(None)) -> MessageOut:
        user_id = current_user(x_user_id)
        with session_scope(session_factory) as session:
            booking = booking_service.get_booking_by_code(session, booking_code)
            booking_service.cancel_booking(session, booking, user_id=user_id)
        return MessageOut(message="Ticket cancelled successfully")

    return app


__all__ = ["create_app"]
