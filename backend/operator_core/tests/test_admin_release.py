from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.urls import reverse
from django.utils import timezone

from bookings.models import BookingRequest
from core.exceptions import BookingNotFound, HostNotPayable, ValidationFailed
from notifications.models import Notification
from operator_core.audit import record_admin_note
from operator_core.models import AdminNote, AppendOnlyError
from operator_core.services import release_payout
from payments.stripe_api import StripePaymentError

pytestmark = pytest.mark.django_db


@pytest.fixture
def completed_booking(booking_factory):
    return booking_factory(
        status=BookingRequest.Status.COMPLETED,
        deposit_amount=Decimal("200.00"),
        deposit_status=BookingRequest.DepositStatus.CHARGED,
        deposit_charge_id="ch_test_deposit",
    )


def _notes(booking):
    return AdminNote.objects.filter(
        entity_type=AdminNote.EntityType.BOOKING, entity_id=str(booking.pk)
    )


def test_release_payout_transfers_and_writes_note(admin_user, completed_booking, fake_gateway):
    outcome = release_payout(
        admin_user,
        {"booking_id": completed_booking.pk, "release_type": "payout", "reason": "Host verified"},
        gateway=fake_gateway,
    )

    assert outcome.results == {"payout": "tr_test_1"}
    assert outcome.skipped == {}
    transfer = fake_gateway.transfers[0]
    assert transfer["amount_cents"] == 9900
    assert transfer["metadata"]["type"] == "manual_early_release"
    assert transfer["metadata"]["released_by"] == str(admin_user.pk)
    assert transfer["idempotency_key"] == f"booking:{completed_booking.pk}:payout:0"

    completed_booking.refresh_from_db()
    assert completed_booking.payout_processed is True
    assert completed_booking.payout_transfer_id == "tr_test_1"
    assert completed_booking.payout_hold_until is None
    assert completed_booking.payout_hold_reason == "Manually released by admin: Host verified"
    assert completed_booking.payout_hold_set_by == admin_user

    note = _notes(completed_booking).get()
    assert note.note == "Manual release: payout. Reason: Host verified"
    assert note.created_by == admin_user
    assert Notification.objects.get(user=completed_booking.host).title == "Early Payout Released!"


def test_double_release_transfers_once(admin_user, completed_booking, fake_gateway):
    payload = {"booking_id": completed_booking.pk, "release_type": "payout"}

    release_payout(admin_user, payload, gateway=fake_gateway)
    second = release_payout(admin_user, payload, gateway=fake_gateway)

    assert len(fake_gateway.transfers) == 1
    assert second.results == {}
    assert second.skipped == {"payout": "Payout already processed"}
    assert _notes(completed_booking).count() == 2


def test_release_both_refunds_deposit(admin_user, completed_booking, fake_gateway):
    outcome = release_payout(
        admin_user,
        {"booking_id": completed_booking.pk, "release_type": "both"},
        gateway=fake_gateway,
    )

    assert set(outcome.results) == {"payout", "deposit"}
    refund = fake_gateway.refunds[0]
    assert refund["charge"] == "ch_test_deposit"
    assert refund["amount_cents"] == 20000
    assert refund["idempotency_key"] == f"booking:{completed_booking.pk}:deposit_refund:20000"

    completed_booking.refresh_from_db()
    assert completed_booking.deposit_status == BookingRequest.DepositStatus.REFUNDED
    assert completed_booking.deposit_refunded_at is not None
    assert _notes(completed_booking).get().note == "Manual release: both. Reason: Not specified"


def test_deposit_release_skips_when_nothing_to_refund(admin_user, booking_factory, fake_gateway):
    booking = booking_factory(status=BookingRequest.Status.COMPLETED)

    outcome = release_payout(
        admin_user,
        {"booking_id": booking.pk, "release_type": "deposit"},
        gateway=fake_gateway,
    )

    assert outcome.results == {}
    assert outcome.skipped == {"deposit": "No deposit to refund"}
    assert fake_gateway.refunds == []
    assert _notes(booking).count() == 1


def test_refunded_booking_payout_is_skipped(admin_user, booking_factory, fake_gateway):
    booking = booking_factory(
        status=BookingRequest.Status.CANCELLED,
        payment_status=BookingRequest.PaymentStatus.REFUNDED,
    )

    outcome = release_payout(
        admin_user,
        {"booking_id": booking.pk, "release_type": "payout"},
        gateway=fake_gateway,
    )

    assert outcome.skipped == {"payout": "Booking was refunded or cancelled"}
    assert fake_gateway.transfers == []


def test_release_bypasses_active_hold(admin_user, completed_booking, fake_gateway):
    completed_booking.payout_hold_until = timezone.now() + timedelta(days=5)
    completed_booking.payout_hold_reason = "Damage claim"
    completed_booking.save()

    outcome = release_payout(
        admin_user,
        {"booking_id": completed_booking.pk, "release_type": "payout"},
        gateway=fake_gateway,
    )

    assert outcome.results["payout"] == "tr_test_1"
    completed_booking.refresh_from_db()
    assert completed_booking.payout_hold_until is None


def test_host_without_account_is_rejected(admin_user, completed_booking, host_user, fake_gateway):
    host_user.stripe_account_id = ""
    host_user.save(update_fields=["stripe_account_id"])

    with pytest.raises(HostNotPayable) as excinfo:
        release_payout(
            admin_user,
            {"booking_id": completed_booking.pk, "release_type": "payout"},
            gateway=fake_gateway,
        )

    assert excinfo.value.message == "Host has no connected Stripe account"
    assert fake_gateway.transfers == []
    assert _notes(completed_booking).count() == 0


def test_note_is_written_when_processor_fails(admin_user, completed_booking, host_user, fake_gateway):
    fake_gateway.fail_transfers_to.add(host_user.stripe_account_id)

    with pytest.raises(StripePaymentError):
        release_payout(
            admin_user,
            {"booking_id": completed_booking.pk, "release_type": "payout"},
            gateway=fake_gateway,
        )

    assert _notes(completed_booking).count() == 1
    completed_booking.refresh_from_db()
    assert completed_booking.payout_processed is False
    assert completed_booking.payout_attempts == 1

    fake_gateway.fail_transfers_to.clear()
    outcome = release_payout(
        admin_user,
        {"booking_id": completed_booking.pk, "release_type": "payout"},
        gateway=fake_gateway,
    )

    assert outcome.results == {"payout": "tr_test_1"}
    assert fake_gateway.transfers[0]["idempotency_key"] == f"booking:{completed_booking.pk}:payout:1"


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"release_type": "payout"}, "booking_id is required"),
        ({"booking_id": 1, "release_type": "everything"}, "release_type must be 'payout', 'deposit', or 'both'"),
    ],
)
def test_release_validation(admin_user, payload, message):
    with pytest.raises(ValidationFailed) as excinfo:
        release_payout(admin_user, payload)

    assert excinfo.value.message == message


def test_release_unknown_booking(admin_user):
    with pytest.raises(BookingNotFound):
        release_payout(admin_user, {"booking_id": 99999, "release_type": "payout"})


def test_admin_note_is_append_only(admin_user, completed_booking):
    note = record_admin_note(
        actor=admin_user,
        entity_type=AdminNote.EntityType.BOOKING,
        entity_id=completed_booking.pk,
        note="Checked with host",
    )

    note.note = "edited"
    with pytest.raises(AppendOnlyError):
        note.save()
    with pytest.raises(AppendOnlyError):
        note.delete()
    with pytest.raises(AppendOnlyError):
        AdminNote.objects.filter(pk=note.pk).update(note="edited")
    with pytest.raises(AppendOnlyError):
        AdminNote.objects.filter(pk=note.pk).delete()


def test_record_admin_note_requires_text(admin_user):
    with pytest.raises(ValueError):
        record_admin_note(actor=admin_user, entity_type="booking", entity_id=1, note="")


def test_release_endpoint_requires_admin(api_client, shopper_user, completed_booking):
    api_client.force_authenticate(user=shopper_user)

    response = api_client.post(
        reverse("operator_core:admin-release-payout"),
        {"booking_id": completed_booking.pk, "release_type": "payout"},
        format="json",
    )

    assert response.status_code == 403
    assert response.json() == {"error": "Admin access required"}


def test_release_endpoint(api_client, admin_user, completed_booking, fake_gateway):
    api_client.force_authenticate(user=admin_user)

    response = api_client.post(
        reverse("operator_core:admin-release-payout"),
        {"booking_id": completed_booking.pk, "release_type": "payout", "reason": "Early payout"},
        format="json",
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Manual release processed successfully",
        "results": {"payout": "tr_test_1"},
        "skipped": {},
    }
