"""Background sweeper that cancels unpaid bookings and frees their seats."""
from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from .bookings import expire_pending_bookings
from .config import Settings, configure_logging
from .database import init_db, session_scope

logger = logging.getLogger(__name__)


def sweep_once(session_factory: sessionmaker[Session], *, hold_minutes: int) -> List[int]:
    with session_scope(session_factory) as session:
        expired = expire_pending_bookings(session, older_than=timedelta(minutes=hold_minutes))
    if expired:
        logger.info("Expired %d unpaid booking(s): %s", len(expired), expired)
    return expired


def worker_loop(
    stop_event: threading.Event,
    session_factory: sessionmaker[Session],
    *,
    hold_minutes: int,
    poll_interval: float = 60.0,
) -> None:
    """Run expiry sweeps until ``stop_event`` is set."""

    while not stop_event.is_set():
        try:
            sweep_once(session_factory, hold_minutes=hold_minutes)
        except Exception:
            logger.exception("Expiry sweep failed")
        stop_event.wait(poll_interval)


def main(settings: Optional[Settings] = None) -> None:  # pragma: no cover - thin wrapper
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    stop = threading.Event()
    try:
        worker_loop(stop, init_db(settings.database_url), hold_minutes=settings.hold_minutes)
    except KeyboardInterrupt:
        stop.set()


if __name__ == "__main__":  # pragma: no cover
    main()
