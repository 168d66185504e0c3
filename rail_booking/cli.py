"""Command line interface for operating the booking database."""
from __future__ import annotations

import argparse
import sys
from typing import Iterable, List

from tabulate import tabulate

from .config import Settings, configure_logging
from .database import init_db, session_scope
from .dataset import generate_sample_data
from .errors import BookingError
from .mailer import SMTPMailer
from .models import Train
from .schedule import list_trains
from .tickets import TicketDispatcher, resend_tickets
from .worker import main as worker_main
from .worker import sweep_once


def _render_trains(trains: Iterable[Train]) -> str:
    rows: List[list] = []
    for train in trains:
        for train_class in train.classes:
            rows.append(
                [
                    train.id,
                    train.train_number,
                    train.route,
                    f"{train.departure_date or '?'} {train.departure_time or '?'}",
                    train_class.class_type,
                    train_class.price_adult,
                    train_class.price_child,
                    f"{train_class.available_seats}/{train_class.total_seats}",
                ]
            )
    headers = ["ID", "Train", "Route", "Departs", "Class", "Adult", "Child", "Available"]
    return tabulate(rows, headers=headers, tablefmt="github")


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage the train booking database.")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL (default: RAIL_BOOKING_DATABASE_URL or a local SQLite file).",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create the database tables.")
    seed = sub.add_parser("seed", help="Insert a week of sample train schedules.")
    seed.add_argument("--days", type=int, default=7, help="Number of days to schedule (default: 7).")
    sub.add_parser("trains", help="List trains with seat availability per class.")
    sub.add_parser("expire", help="Cancel unpaid bookings older than the hold window.")
    resend = sub.add_parser("resend", help="Re-send ticket emails for a confirmed booking.")
    resend.add_argument("booking_code", help="Public booking identifier, e.g. NRC12345678.")
    sub.add_parser("worker", help="Run the expiry sweeper until interrupted.")
    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = Settings.from_env()
    if args.database_url:
        settings.database_url = args.database_url
    configure_logging(settings.log_level)

    if args.command == "worker":  # pragma: no cover - blocks until interrupted
        worker_main(settings)
        return 0

    session_factory = init_db(settings.database_url)
    try:
        if args.command == "init-db":
            print(f"Database ready at {settings.database_url}")
        elif args.command == "seed":
            summary = generate_sample_data(session_factory, days=args.days)
            print(f"Inserted {summary['trains']} trains")
        elif args.command == "trains":
            with session_scope(session_factory) as session:
                print(_render_trains(list_trains(session)))
        elif args.command == "expire":
            expired = sweep_once(session_factory, hold_minutes=settings.hold_minutes)
            print(f"Expired {len(expired)} booking(s)")
        elif args.command == "resend":
            mailer = SMTPMailer(
                settings.smtp_host,
                settings.smtp_port,
                username=settings.smtp_user,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
            )
            dispatcher = TicketDispatcher(mailer, sender=settings.mail_from)
            with session_scope(session_factory) as session:
                sent = resend_tickets(session, dispatcher, args.booking_code)
            print(f"Sent {sent} message(s) for {args.booking_code}")
    except BookingError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
