"""Payment initialization and reconciliation.

``reconcile`` is the single entry point for both the browser redirect and
the gateway webhook. It is idempotent per reference: the payment row is
flipped to ``successful`` with a compare-and-swap, and only the caller that
wins the swap confirms the booking and hands it to the ticket dispatcher.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from .bookings import confirm_booking, get_booking, random_booking_code
from .database import session_scope
from .errors import (
    AuthorizationError,
    BookingError,
    BookingStateError,
    IncompleteScheduleData,
    PaymentNotFound,
    ValidationError,
    VerificationFailed,
)
from .gateway import generate_reference
from .models import Payment, utcnow
from .schedule import schedule_gap
from .tickets import RetryPolicy, TicketDispatcher, dispatch_with_retry

logger = logging.getLogger(__name__)

SUCCESS_EVENT = "charge.success"


@dataclass
class PaymentInitialization:
    booking_id: int
    reference: str
    amount: int
    authorization_url: str
    access_code: str


@dataclass
class ReconcileOutcome:
    reference: str
    booking_id: int
    booking_code: Optional[str]
    replayed: bool = False
    dispatched: Optional[bool] = None


class PaymentReconciler:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway,
        dispatcher: Optional[TicketDispatcher] = None,
        *,
        callback_url: str = "",
        retry_policy: Optional[RetryPolicy] = None,
        code_factory: Callable[[], str] = random_booking_code,
        reference_factory: Callable[[], str] = generate_reference,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.callback_url = callback_url
        self.retry_policy = retry_policy or RetryPolicy()
        self.code_factory = code_factory
        self.reference_factory = reference_factory

    def initialize(self, booking_id: int, *, user_id: Optional[str] = None) -> PaymentInitialization:
        """Record a pending payment for ``booking_id`` and open a gateway transaction."""

        with session_scope(self.session_factory) as session:
            booking = get_booking(session, booking_id)
            if user_id is not None and booking.user_id != user_id:
                raise AuthorizationError("Not authorized to pay for this booking")
            if booking.status != "pending":
                raise BookingStateError(f"Booking is {booking.status}; only pending bookings can be paid")
            payment = Payment(
                booking_id=booking.id,
                reference=self.reference_factory(),
                amount=booking.total_price,
                status="pending",
            )
            session.add(payment)
            session.flush()
            reference, amount, email = payment.reference, payment.amount, booking.contact_email

        transaction = self.gateway.initialize_transaction(
            email=email,
            amount=amount,
            reference=reference,
            callback_url=self.callback_url,
        )
        logger.info("Initialized payment %s for booking %s (amount %s)", reference, booking_id, amount)
        return PaymentInitialization(
            booking_id=booking_id,
            reference=reference,
            amount=amount,
            authorization_url=transaction.authorization_url,
            access_code=transaction.access_code,
        )

    def reconcile(self, reference: str, *, dispatch: bool = True) -> ReconcileOutcome:
        """Confirm the booking paid for by ``reference`` once the gateway agrees.

        With ``dispatch=False`` the caller is responsible for calling
        :meth:`hand_off` with the returned booking id.
        """

        verification = self.gateway.verify_transaction(reference)
        if not verification.successful:
            raise VerificationFailed(f"Payment {reference} was not successful ({verification.status or 'unknown'})")

        refund_for: Optional[int] = None
        with session_scope(self.session_factory) as session:
            payment = session.scalars(
                select(Payment).where(Payment.reference == reference).with_for_update()
            ).one_or_none()
            if payment is None:
                raise PaymentNotFound("Payment record not found")
            if payment.status == "refund_due":
                raise BookingStateError(f"Payment {reference} belongs to a cancelled booking and awaits a refund")
            if payment.status == "successful":
                return self._replayed(session, payment)
            if verification.amount != payment.amount * 100:
                raise VerificationFailed(
                    f"Payment {reference} amount {verification.amount} does not match {payment.amount * 100}"
                )

            claimed = session.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status.notin_(("successful", "refund_due")))
                .values(status="successful", verified_at=utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                session.refresh(payment)
                return self._replayed(session, payment)

            booking = get_booking(session, payment.booking_id)
            if booking.status == "cancelled":
                payment.status = "refund_due"
                refund_for = booking.id
                logger.error(
                    "Payment %s captured %s for cancelled booking %s; refund required",
                    reference,
                    payment.amount,
                    booking.id,
                )
            else:
                if booking.train is None:
                    raise IncompleteScheduleData("train")
                gap = schedule_gap(booking.train)
                if gap:
                    logger.error("Refusing to confirm booking %s: train lacks %s", booking.id, gap)
                    raise IncompleteScheduleData(gap)

                if booking.status == "confirmed":
                    logger.warning(
                        "Payment %s succeeded for booking %s which is already confirmed", reference, booking.id
                    )
                    return ReconcileOutcome(reference, booking.id, booking.booking_code, replayed=True)
                confirm_booking(session, booking, self.code_factory)
                outcome = ReconcileOutcome(reference, booking.id, booking.booking_code)

        if refund_for is not None:
            raise BookingStateError(f"Booking {refund_for} was cancelled before payment {reference} completed")
        logger.info("Payment %s reconciled; booking %s confirmed", reference, outcome.booking_code)
        if dispatch:
            outcome.dispatched = self.hand_off(outcome.booking_id)
        return outcome

    def _replayed(self, session: Session, payment: Payment) -> ReconcileOutcome:
        booking = get_booking(session, payment.booking_id)
        logger.info("Payment %s already reconciled; nothing to do", payment.reference)
        return ReconcileOutcome(payment.reference, booking.id, booking.booking_code, replayed=True)

    def hand_off(self, booking_id: int) -> Optional[bool]:
        """Deliver tickets for a confirmed booking. Never undoes the confirmation."""

        if self.dispatcher is None:
            return None
        with self.session_factory() as session:
            booking = get_booking(session, booking_id)
            try:
                return dispatch_with_retry(self.dispatcher, booking, self.retry_policy)
            except BookingError:
                logger.exception("Ticket dispatch for booking %s failed", booking.booking_code)
                return False

    def handle_webhook(self, event: Mapping[str, object], *, dispatch: bool = True) -> Optional[ReconcileOutcome]:
        """Reconcile a ``charge.success`` notification; other events are ignored."""

        event_type = event.get("event")
        if event_type != SUCCESS_EVENT:
            logger.debug("Ignoring gateway event %r", event_type)
            return None
        data = event.get("data")
        reference = data.get("reference") if isinstance(data, Mapping) else None
        if not reference:
            raise ValidationError("Webhook payload has no reference", [{"field": "data.reference", "message": "required"}])
        return self.reconcile(str(reference), dispatch=dispatch)


__all__ = [
    "PaymentInitialization",
    "PaymentReconciler",
    "ReconcileOutcome",
    "SUCCESS_EVENT",
]
