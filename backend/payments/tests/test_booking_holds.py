from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from bookings.models import BookingRequest
from core.exceptions import (
    BookingNotFound,
    HostNotPayable,
    InvalidAmount,
    InvalidBookingState,
    ListingNotFound,
    NotAuthorized,
    Unauthenticated,
)
from payments.holds import create_booking_hold

pytestmark = pytest.mark.django_db

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def pending_booking(booking_factory):
    return booking_factory(
        status=BookingRequest.Status.PENDING,
        payment_status=BookingRequest.PaymentStatus.UNPAID,
        total_price=None,
    )


def _payload(booking, **overrides):
    payload = {
        "booking_id": booking.pk,
        "listing_id": booking.listing_id,
        "amount": 100,
        "delivery_fee": 10,
        "deposit_amount": 50,
    }
    payload.update(overrides)
    return payload


def test_hold_creates_manual_capture_session_and_persists_hold(
    shopper_user, pending_booking, fake_gateway
):
    result = create_booking_hold(
        shopper_user,
        _payload(pending_booking),
        origin="https://app.vendibook.test",
        gateway=fake_gateway,
        now=NOW,
    )

    response = result.as_response()
    assert response["session_id"] == "cs_test_1"
    assert response["customer_total"] == 174.19
    assert response["platform_fee"] == 28.38
    assert response["host_receives"] == 95.81
    assert response["hold_expires_at"] == (NOW + timedelta(days=7)).isoformat()

    session = fake_gateway.checkout_sessions[0]
    amounts = [item["price_data"]["unit_amount"] for item in session["line_items"]]
    assert amounts == [11000, 1419, 5000]
    assert sum(amounts) == 17419
    assert session["line_items"][2]["price_data"]["product_data"]["name"] == "Security Deposit (Refundable)"
    assert session["payment_intent_metadata"]["authorization_hold"] == "true"
    assert session["payment_intent_metadata"]["platform_fee_cents"] == "2838"
    assert session["success_url"] == (
        "https://app.vendibook.test/payment-success?session_id={CHECKOUT_SESSION_ID}&hold=true"
    )
    assert session["idempotency_key"] == f"booking:{pending_booking.pk}:checkout_hold:17419"

    pending_booking.refresh_from_db()
    assert pending_booking.checkout_session_id == "cs_test_1"
    assert pending_booking.hold_status == BookingRequest.HoldStatus.PENDING
    assert pending_booking.hold_expires_at == NOW + timedelta(days=7)
    assert pending_booking.payment_status == BookingRequest.PaymentStatus.UNPAID


def test_hold_without_deposit_has_two_line_items(shopper_user, pending_booking, fake_gateway):
    create_booking_hold(
        shopper_user,
        _payload(pending_booking, deposit_amount=None, delivery_fee=None),
        gateway=fake_gateway,
        now=NOW,
    )

    session = fake_gateway.checkout_sessions[0]
    assert len(session["line_items"]) == 2
    assert session["success_url"].startswith("https://vendibook.com/payment-success")


def test_hold_rejects_non_positive_amount(shopper_user, pending_booking, fake_gateway):
    with pytest.raises(InvalidAmount):
        create_booking_hold(shopper_user, _payload(pending_booking, amount=0), gateway=fake_gateway)

    assert fake_gateway.checkout_sessions == []


def test_hold_requires_authenticated_user(pending_booking, fake_gateway):
    with pytest.raises(Unauthenticated):
        create_booking_hold(None, _payload(pending_booking), gateway=fake_gateway)


def test_hold_unknown_listing(shopper_user, pending_booking, fake_gateway):
    with pytest.raises(ListingNotFound):
        create_booking_hold(
            shopper_user,
            _payload(pending_booking, listing_id=999999),
            gateway=fake_gateway,
        )


def test_hold_unknown_booking(shopper_user, pending_booking, fake_gateway):
    with pytest.raises(BookingNotFound):
        create_booking_hold(
            shopper_user,
            _payload(pending_booking, booking_id=999999),
            gateway=fake_gateway,
        )


def test_hold_only_for_the_booking_shopper(other_user, pending_booking, fake_gateway):
    with pytest.raises(NotAuthorized):
        create_booking_hold(other_user, _payload(pending_booking), gateway=fake_gateway)


def test_hold_rejects_already_paid_booking(shopper_user, booking_factory, fake_gateway):
    booking = booking_factory(status=BookingRequest.Status.PENDING)

    with pytest.raises(InvalidBookingState):
        create_booking_hold(shopper_user, _payload(booking), gateway=fake_gateway)


@pytest.mark.parametrize(
    "account_id, onboarded, message",
    [
        ("", False, "Host has not completed Stripe onboarding"),
        ("acct_half", False, "Host's Stripe account is not fully onboarded"),
    ],
)
def test_hold_requires_payable_host(
    shopper_user, host_user, pending_booking, fake_gateway, account_id, onboarded, message
):
    host_user.stripe_account_id = account_id
    host_user.stripe_onboarding_complete = onboarded
    host_user.save(update_fields=["stripe_account_id", "stripe_onboarding_complete"])

    with pytest.raises(HostNotPayable, match=message):
        create_booking_hold(shopper_user, _payload(pending_booking), gateway=fake_gateway)

    assert fake_gateway.checkout_sessions == []
    pending_booking.refresh_from_db()
    assert pending_booking.hold_status == BookingRequest.HoldStatus.NONE
