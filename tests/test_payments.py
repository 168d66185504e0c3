from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import FakeMailer, make_request
from rail_booking.bookings import cancel_booking, create_booking, expire_pending_bookings, get_booking
from rail_booking.database import session_scope
from rail_booking.errors import (
    AuthorizationError,
    BookingStateError,
    IncompleteScheduleData,
    NotFoundError,
    PaymentNotFound,
    ValidationError,
    VerificationFailed,
)
from rail_booking.models import Payment, utcnow
from rail_booking.payments import PaymentReconciler
from rail_booking.tickets import RetryPolicy, TicketDispatcher


def _book(session_factory, user_id, train_id, seats, fare_types=None):
    with session_scope(session_factory) as session:
        request = make_request(train_id, seats, fare_types=fare_types)
        return create_booking(session, request, user_id=user_id, convenience_fee=400).id


def _reconciler(session_factory, gateway, mailer, fake_sleep, **kwargs):
    dispatcher = TicketDispatcher(mailer, sender="NRC Bookings <tickets@example.com>")
    return PaymentReconciler(
        session_factory,
        gateway,
        dispatcher,
        callback_url="https://frontend.test/payment-success",
        retry_policy=RetryPolicy(max_attempts=3, base_delay=5.0, sleep=fake_sleep),
        **kwargs,
    )


def _payment(session_factory, reference):
    with session_factory() as session:
        return session.scalars(select(Payment).where(Payment.reference == reference)).one()


def test_initialize_records_pending_payment(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1, 2], fare_types=["Adult", "Child"])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)

    result = reconciler.initialize(booking_id, user_id=users[0])

    assert result.amount == 8400
    assert len(result.reference) == 40
    assert result.authorization_url == f"https://checkout.test/{result.reference}"
    assert gateway.initialized == [
        {
            "email": "contact@example.com",
            "amount": 8400,
            "reference": result.reference,
            "callback_url": "https://frontend.test/payment-success",
        }
    ]
    payment = _payment(session_factory, result.reference)
    assert payment.status == "pending"
    assert payment.amount == 8400
    assert payment.booking_id == booking_id


def test_initialize_rejects_other_users_and_unknown_bookings(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)

    with pytest.raises(AuthorizationError):
        reconciler.initialize(booking_id, user_id=users[1])
    with pytest.raises(NotFoundError):
        reconciler.initialize(booking_id + 50)
    assert gateway.initialized == []


def test_reconcile_confirms_booking_and_sends_tickets(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [4, 5], fare_types=["Adult", "Child"])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep, code_factory=lambda: "NRC10000001")
    reference = reconciler.initialize(booking_id).reference

    outcome = reconciler.reconcile(reference)

    assert outcome.booking_code == "NRC10000001"
    assert outcome.replayed is False
    assert outcome.dispatched is True
    assert _payment(session_factory, reference).status == "successful"
    with session_factory() as session:
        booking = get_booking(session, booking_id)
        assert booking.status == "confirmed"
        assert booking.confirmed_at is not None
    assert mailer.recipients == [
        "passenger0@example.com",
        "passenger1@example.com",
        "contact@example.com",
    ]


def test_duplicate_notifications_confirm_and_dispatch_once(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference

    first = reconciler.reconcile(reference)
    second = reconciler.reconcile(reference)

    assert first.replayed is False
    assert second.replayed is True
    assert second.booking_code == first.booking_code
    assert len(mailer.sent) == 2
    with session_factory() as session:
        assert session.scalars(select(Payment.status)).all() == ["successful"]
        assert get_booking(session, booking_id).status == "confirmed"


def test_racing_redirect_and_webhook_confirm_once(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1, 2])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference
    event = {"event": "charge.success", "data": {"reference": reference}}

    def redirect(_):
        return reconciler.reconcile(reference)

    def webhook(_):
        return reconciler.handle_webhook(event)

    with ThreadPoolExecutor(max_workers=6) as pool:
        futures = [pool.submit(redirect if i % 2 else webhook, i) for i in range(6)]
        outcomes = [future.result() for future in futures]

    assert sum(not outcome.replayed for outcome in outcomes) == 1
    assert len({outcome.booking_code for outcome in outcomes}) == 1
    assert len(mailer.sent) == 3


def test_failed_verification_changes_nothing(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference
    gateway.statuses[reference] = "abandoned"

    with pytest.raises(VerificationFailed):
        reconciler.reconcile(reference)

    assert _payment(session_factory, reference).status == "pending"
    with session_factory() as session:
        assert get_booking(session, booking_id).status == "pending"
    assert mailer.sent == []


def test_amount_mismatch_is_a_verification_failure(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference
    gateway.amounts[reference] = 100

    with pytest.raises(VerificationFailed, match="does not match"):
        reconciler.reconcile(reference)
    assert _payment(session_factory, reference).status == "pending"


def test_unknown_reference(session_factory, gateway, mailer, fake_sleep):
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    gateway.statuses["ghost"] = "success"

    with pytest.raises(PaymentNotFound):
        reconciler.reconcile("ghost")


def test_incomplete_schedule_blocks_confirmation(
    session_factory, users, incomplete_train_id, gateway, mailer, fake_sleep
):
    booking_id = _book(session_factory, users[0], incomplete_train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference

    with pytest.raises(IncompleteScheduleData) as excinfo:
        reconciler.reconcile(reference)

    assert excinfo.value.field == "arrival_station"
    assert _payment(session_factory, reference).status == "pending"
    with session_factory() as session:
        booking = get_booking(session, booking_id)
        assert booking.status == "pending"
        assert booking.booking_code is None
    assert mailer.sent == []


def test_cancelled_booking_is_not_confirmed(session_factory, users, train_id, gateway, mailer, fake_sleep, caplog):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference
    with session_scope(session_factory) as session:
        cancel_booking(session, get_booking(session, booking_id), user_id=users[0])

    with caplog.at_level(logging.ERROR, logger="rail_booking.payments"):
        with pytest.raises(BookingStateError):
            reconciler.reconcile(reference)

    assert _payment(session_factory, reference).status == "refund_due"
    assert any("refund required" in record.getMessage() for record in caplog.records)
    with session_factory() as session:
        assert get_booking(session, booking_id).status == "cancelled"
    assert mailer.sent == []

    with pytest.raises(BookingStateError):
        reconciler.reconcile(reference)
    assert _payment(session_factory, reference).status == "refund_due"


def test_expired_booking_paid_late_is_flagged_for_refund(
    session_factory, users, train_id, gateway, mailer, fake_sleep, caplog
):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference
    with session_scope(session_factory) as session:
        later = utcnow() + timedelta(minutes=31)
        assert expire_pending_bookings(session, older_than=timedelta(minutes=30), now=later) == [booking_id]

    with caplog.at_level(logging.ERROR, logger="rail_booking.payments"):
        with pytest.raises(BookingStateError):
            reconciler.reconcile(reference)

    payment = _payment(session_factory, reference)
    assert payment.status == "refund_due"
    assert payment.verified_at is not None
    assert any(r.levelno == logging.ERROR and reference in r.getMessage() for r in caplog.records)


def test_sweeper_spares_booking_with_checkout_in_progress(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1])
    with session_scope(session_factory) as session:
        get_booking(session, booking_id).created_at = utcnow() - timedelta(hours=1)
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference

    with session_scope(session_factory) as session:
        assert expire_pending_bookings(session, older_than=timedelta(minutes=30)) == []

    outcome = reconciler.reconcile(reference)
    assert outcome.booking_code is not None
    assert _payment(session_factory, reference).status == "successful"


def test_only_pending_bookings_can_be_paid(session_factory, users, train_id, gateway, mailer, fake_sleep):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reconciler.reconcile(reconciler.initialize(booking_id).reference)

    with pytest.raises(BookingStateError):
        reconciler.initialize(booking_id)


def test_delivery_failure_keeps_booking_confirmed(session_factory, users, train_id, gateway, fake_sleep):
    mailer = FakeMailer(broken=["contact@example.com"])
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)
    reference = reconciler.initialize(booking_id).reference

    outcome = reconciler.reconcile(reference)

    assert outcome.dispatched is False
    assert fake_sleep.calls == [5.0, 10.0]
    assert mailer.recipients == ["passenger0@example.com"]
    assert _payment(session_factory, reference).status == "successful"
    with session_factory() as session:
        assert get_booking(session, booking_id).status == "confirmed"


def test_transient_delivery_failure_is_retried(session_factory, users, train_id, gateway, fake_sleep):
    mailer = FakeMailer(failures=1)
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)

    outcome = reconciler.reconcile(reconciler.initialize(booking_id).reference)

    assert outcome.dispatched is True
    assert fake_sleep.calls == [5.0]
    assert mailer.recipients == ["passenger0@example.com", "contact@example.com"]


def test_webhook_ignores_other_events(session_factory, gateway, mailer, fake_sleep):
    reconciler = _reconciler(session_factory, gateway, mailer, fake_sleep)

    assert reconciler.handle_webhook({"event": "transfer.success", "data": {"reference": "x"}}) is None
    assert gateway.verified == []
    with pytest.raises(ValidationError):
        reconciler.handle_webhook({"event": "charge.success", "data": {}})


def test_reconcile_without_dispatcher(session_factory, users, train_id, gateway):
    booking_id = _book(session_factory, users[0], train_id, [1])
    reconciler = PaymentReconciler(session_factory, gateway)

    outcome = reconciler.reconcile(reconciler.initialize(booking_id).reference)

    assert outcome.dispatched is None
    assert outcome.booking_code.startswith("NRC")
