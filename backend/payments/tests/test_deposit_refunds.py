from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

import pytest
from django.core import mail

from bookings.models import BookingRequest
from core.exceptions import InvalidAmount, InvalidState, NotAuthorized, ValidationFailed
from notifications.models import Notification
from payments.deposits import process_deposit_refund

pytestmark = pytest.mark.django_db

NOW = datetime(2026, 5, 10, 12, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def deposit_booking(booking_factory):
    return booking_factory(
        status=BookingRequest.Status.COMPLETED,
        deposit_amount=Decimal("200.00"),
        deposit_status=BookingRequest.DepositStatus.CHARGED,
        deposit_charge_id="ch_test_deposit",
    )


def test_partial_refund_keeps_deduction(host_user, shopper_user, deposit_booking, fake_gateway):
    outcome = process_deposit_refund(
        host_user,
        {
            "booking_id": deposit_booking.pk,
            "refund_type": "partial",
            "deduction_amount": "75.50",
            "notes": "Cracked fryer basket",
        },
        gateway=fake_gateway,
        now=NOW,
    )

    assert outcome.as_response() == {
        "deposit_status": "refunded",
        "refund_amount": 124.5,
        "deduction_amount": 75.5,
        "refund_id": "re_test_1",
    }
    refund = fake_gateway.refunds[0]
    assert refund["charge"] == "ch_test_deposit"
    assert refund["amount_cents"] == 12450
    assert refund["idempotency_key"] == f"booking:{deposit_booking.pk}:deposit_refund:12450"

    deposit_booking.refresh_from_db()
    assert deposit_booking.deposit_status == BookingRequest.DepositStatus.REFUNDED
    assert deposit_booking.deposit_refunded_at == NOW
    assert deposit_booking.deposit_refund_notes == "Cracked fryer basket"
    assert Notification.objects.get(user=shopper_user).title == "Deposit Refunded"
    assert mail.outbox[0].to == [shopper_user.email]
    assert "$124.50" in mail.outbox[0].body


def test_full_refund_returns_whole_deposit(host_user, deposit_booking, fake_gateway):
    outcome = process_deposit_refund(
        host_user,
        {"booking_id": deposit_booking.pk},
        gateway=fake_gateway,
        now=NOW,
    )

    assert outcome.refund_cents == 20000
    assert outcome.deduction_cents == 0
    deposit_booking.refresh_from_db()
    assert deposit_booking.deposit_refund_notes == "Full deposit refunded"


def test_forfeit_moves_no_money(host_user, shopper_user, deposit_booking, fake_gateway):
    outcome = process_deposit_refund(
        host_user,
        {"booking_id": deposit_booking.pk, "refund_type": "forfeit"},
        gateway=fake_gateway,
        now=NOW,
    )

    assert outcome.deposit_status == BookingRequest.DepositStatus.FORFEITED
    assert outcome.refund_id is None
    assert fake_gateway.refunds == []
    deposit_booking.refresh_from_db()
    assert deposit_booking.deposit_status == BookingRequest.DepositStatus.FORFEITED
    assert deposit_booking.deposit_refund_notes == "Deposit forfeited"
    assert Notification.objects.get(user=shopper_user).title == "Deposit Forfeited"
    assert mail.outbox == []


def test_deduction_of_whole_deposit_is_a_forfeit(host_user, deposit_booking, fake_gateway):
    outcome = process_deposit_refund(
        host_user,
        {"booking_id": deposit_booking.pk, "refund_type": "partial", "deduction_amount": 200},
        gateway=fake_gateway,
    )

    assert outcome.deposit_status == BookingRequest.DepositStatus.FORFEITED
    assert fake_gateway.refunds == []


def test_deduction_above_deposit_is_rejected(host_user, deposit_booking, fake_gateway):
    with pytest.raises(InvalidAmount, match=r"cannot exceed the deposit of \$200.00"):
        process_deposit_refund(
            host_user,
            {"booking_id": deposit_booking.pk, "refund_type": "partial", "deduction_amount": "200.01"},
            gateway=fake_gateway,
        )

    deposit_booking.refresh_from_db()
    assert deposit_booking.deposit_status == BookingRequest.DepositStatus.CHARGED


@pytest.mark.parametrize(
    "payload, error, message",
    [
        ({"refund_type": "partial"}, ValidationFailed, "Missing required field: deduction_amount"),
        ({"refund_type": "partial", "deduction_amount": 0}, InvalidAmount, "greater than zero"),
        ({"refund_type": "keep"}, ValidationFailed, "refund_type must be one of: full, partial, forfeit"),
    ],
)
def test_request_validation(host_user, deposit_booking, fake_gateway, payload, error, message):
    with pytest.raises(error, match=message):
        process_deposit_refund(
            host_user,
            {"booking_id": deposit_booking.pk, **payload},
            gateway=fake_gateway,
        )


@pytest.mark.parametrize(
    "deposit_status, message",
    [
        (BookingRequest.DepositStatus.REFUNDED, "Deposit has already been refunded"),
        (BookingRequest.DepositStatus.FORFEITED, "Cannot refund deposit with status: forfeited"),
    ],
)
def test_settled_deposit_is_rejected(host_user, deposit_booking, fake_gateway, deposit_status, message):
    deposit_booking.deposit_status = deposit_status
    deposit_booking.save(update_fields=["deposit_status"])

    with pytest.raises(InvalidState, match=message):
        process_deposit_refund(host_user, {"booking_id": deposit_booking.pk}, gateway=fake_gateway)

    assert fake_gateway.refunds == []


def test_booking_without_deposit(host_user, booking_factory, fake_gateway):
    booking = booking_factory()

    with pytest.raises(InvalidState, match="No deposit to refund for this booking"):
        process_deposit_refund(host_user, {"booking_id": booking.pk}, gateway=fake_gateway)


def test_shopper_cannot_settle_own_deposit(shopper_user, admin_user, deposit_booking, fake_gateway):
    with pytest.raises(NotAuthorized):
        process_deposit_refund(shopper_user, {"booking_id": deposit_booking.pk}, gateway=fake_gateway)

    outcome = process_deposit_refund(admin_user, {"booking_id": deposit_booking.pk}, gateway=fake_gateway)
    assert outcome.refund_cents == 20000
