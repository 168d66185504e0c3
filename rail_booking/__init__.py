"""Train seat booking, payment reconciliation and ticket delivery."""
from typing import Any

from .bookings import cancel_booking, confirm_booking, create_booking, expire_pending_bookings
from .config import Settings, configure_logging
from .database import create_session_factory, init_db, session_scope
from .dataset import generate_sample_data
from .errors import BookingError
from .ledger import ContactDetails, PassengerDetails, ReservationRequest, release, reserve
from .payments import PaymentReconciler, ReconcileOutcome
from .tickets import RetryPolicy, TicketDispatcher, dispatch_with_retry


def create_app(*args: Any, **kwargs: Any):  # pragma: no cover - thin wrapper
    from .web import create_app as _create_app

    return _create_app(*args, **kwargs)


def cli_main(*args: Any, **kwargs: Any) -> int:  # pragma: no cover - thin wrapper
    from .cli import main as _cli_main

    return _cli_main(*args, **kwargs)


__all__ = [
    "BookingError",
    "ContactDetails",
    "PassengerDetails",
    "PaymentReconciler",
    "ReconcileOutcome",
    "ReservationRequest",
    "RetryPolicy",
    "Settings",
    "TicketDispatcher",
    "cancel_booking",
    "cli_main",
    "configure_logging",
    "confirm_booking",
    "create_app",
    "create_booking",
    "create_session_factory",
    "dispatch_with_retry",
    "expire_pending_bookings",
    "generate_sample_data",
    "init_db",
    "release",
    "reserve",
    "session_scope",
]
