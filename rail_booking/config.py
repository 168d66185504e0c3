"""Runtime configuration read from the environment."""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass


def _to_int(val: str | None, default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


def _to_float(val: str | None, default: float) -> float:
    try:
        return float(val) if val is not None else default
    except ValueError:
        return default


def _to_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    database_url: str = "sqlite+pysqlite:///rail_booking.db"
    convenience_fee: int = 400
    hold_minutes: int = 30

    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    frontend_url: str = "http://localhost:3000"

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    mail_from: str = "NRC Bookings <no-reply@example.com>"

    ticket_retry_attempts: int = 3
    ticket_retry_base_delay: float = 5.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            database_url=env.get("RAIL_BOOKING_DATABASE_URL", cls.database_url),
            convenience_fee=_to_int(env.get("RAIL_BOOKING_CONVENIENCE_FEE"), cls.convenience_fee),
            hold_minutes=_to_int(env.get("RAIL_BOOKING_HOLD_MINUTES"), cls.hold_minutes),
            paystack_secret_key=env.get("PAYSTACK_SECRET_KEY", ""),
            paystack_base_url=env.get("PAYSTACK_BASE_URL", cls.paystack_base_url),
            frontend_url=env.get("FRONTEND_URL", cls.frontend_url),
            smtp_host=env.get("SMTP_HOST", cls.smtp_host),
            smtp_port=_to_int(env.get("SMTP_PORT"), cls.smtp_port),
            smtp_user=env.get("SMTP_USER"),
            smtp_password=env.get("SMTP_PASS"),
            smtp_use_tls=_to_bool(env.get("SMTP_USE_TLS"), True),
            mail_from=env.get("MAIL_FROM", cls.mail_from),
            ticket_retry_attempts=_to_int(env.get("TICKET_RETRY_ATTEMPTS"), cls.ticket_retry_attempts),
            ticket_retry_base_delay=_to_float(env.get("TICKET_RETRY_BASE_DELAY"), cls.ticket_retry_base_delay),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the package logger."""

    logger = logging.getLogger("rail_booking")
    if not any(getattr(handler, "_rail_booking", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._rail_booking = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))


__all__ = ["Settings", "configure_logging"]
