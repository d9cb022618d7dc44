"""Authorization holds for rental booking requests.

The renter is sent to a Stripe Checkout session in manual-capture mode: the
card is authorized now and the funds stay on the platform account until the
booking settles. Nothing is transferred to the host at this point.

The host then either captures the authorization, which makes the booking
``paid``, or releases it and the renter's card is never charged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping

from django.conf import settings
from django.utils import timezone

from bookings.models import BookingRequest
from core.exceptions import (
    BookingNotFound,
    HostNotPayable,
    InvalidBookingState,
    ListingNotFound,
    NotAuthorized,
    Unauthenticated,
    ValidationFailed,
)
from core.steps import StepLogger
from listings.models import Listing
from notifications import tasks as notification_tasks
from notifications.dispatch import enqueue
from notifications.models import Notification
from users.models import is_admin

from .fees import FeeBreakdown, calculate_rental_fees, cents_to_dollars, parse_amount
from .payouts import booking_capture_key, booking_release_hold_key
from .stripe_api import PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)
log_step = StepLogger("CREATE-BOOKING-HOLD", logger)
capture_step = StepLogger("CAPTURE-BOOKING-PAYMENT", logger)
release_step = StepLogger("RELEASE-BOOKING-HOLD", logger)

CAPTURED_RELEASE_MESSAGE = "Cannot release hold - payment was already captured. Use refund instead."


def _parse_id(value, field_name: str) -> int:
    if value in (None, ""):
        raise ValidationFailed(f"Missing required field: {field_name}")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field_name} must be an integer.")
    if parsed <= 0:
        raise ValidationFailed(f"{field_name} must be an integer.")
    return parsed


@dataclass(frozen=True)
class HoldRequest:
    booking_id: int
    listing_id: int
    amount: Decimal
    delivery_fee: Decimal = Decimal("0")
    deposit_amount: Decimal = Decimal("0")

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "HoldRequest":
        return cls(
            booking_id=_parse_id(data.get("booking_id"), "booking_id"),
            listing_id=_parse_id(data.get("listing_id"), "listing_id"),
            amount=parse_amount(data.get("amount"), "amount", required=True, allow_zero=False),
            delivery_fee=parse_amount(data.get("delivery_fee"), "delivery_fee"),
            deposit_amount=parse_amount(data.get("deposit_amount"), "deposit_amount"),
        )


@dataclass(frozen=True)
class HoldResult:
    url: str
    session_id: str
    fees: FeeBreakdown
    hold_expires_at: datetime

    def as_response(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "session_id": self.session_id,
            "customer_total": self.fees.customer_total_cents / 100,
            "platform_fee": self.fees.platform_fee_cents / 100,
            "host_receives": self.fees.host_receives_cents / 100,
            "hold_expires_at": self.hold_expires_at.isoformat(),
        }


def _line_items(listing: Listing, fees: FeeBreakdown, delivery_fee: Decimal) -> list[dict]:
    currency = getattr(settings, "STRIPE_CURRENCY", "usd")
    renter_percent = getattr(settings, "RENTAL_RENTER_FEE_PERCENT", Decimal("12.9"))
    description = "Rental booking"
    if delivery_fee > 0:
        description += f" (includes ${delivery_fee:.2f} delivery)"
    description += " - Payment held until host approves"

    items = [
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": listing.title, "description": description},
                "unit_amount": fees.subtotal_cents,
            },
            "quantity": 1,
        },
        {
            "price_data": {
                "currency": currency,
                "product_data": {
                    "name": "Platform Service Fee",
                    "description": f"Vendibook marketplace fee ({renter_percent}%)",
                },
                "unit_amount": fees.renter_fee_cents,
            },
            "quantity": 1,
        },
    ]
    if fees.deposit_cents > 0:
        items.append(
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {
                        "name": "Security Deposit (Refundable)",
                        "description": "Refunded after the rental ends if no damage is reported",
                    },
                    "unit_amount": fees.deposit_cents,
                },
                "quantity": 1,
            }
        )
    return items


def create_booking_hold(
    user,
    payload: Mapping[str, Any],
    *,
    origin: str | None = None,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> HoldResult:
    """
    Create a manual-capture checkout session for a renter's booking request.

    Validation and payability checks run before any processor call; the
    booking row is only updated once the session exists.
    """
    if user is None or not getattr(user, "is_authenticated", False) or not user.email:
        raise Unauthenticated("User not authenticated or email not available")
    log_step("User authenticated", {"user_id": user.pk})

    hold = HoldRequest.from_payload(payload)
    log_step(
        "Request received",
        {
            "booking_id": hold.booking_id,
            "listing_id": hold.listing_id,
            "amount": hold.amount,
            "delivery_fee": hold.delivery_fee,
            "deposit_amount": hold.deposit_amount,
        },
    )

    listing = Listing.objects.select_related("host").filter(pk=hold.listing_id).first()
    if listing is None:
        raise ListingNotFound()

    booking = BookingRequest.objects.filter(pk=hold.booking_id).first()
    if booking is None:
        raise BookingNotFound()
    if booking.shopper_id != user.pk:
        raise NotAuthorized("Only the renter can pay for this booking.")
    if booking.listing_id != listing.pk:
        raise ValidationFailed("Booking does not belong to this listing.")
    if booking.payment_status != BookingRequest.PaymentStatus.UNPAID or booking.is_terminal():
        raise InvalidBookingState("Booking is not awaiting payment.")

    host = listing.host
    if not host.has_payout_account:
        raise HostNotPayable("Host has not completed Stripe onboarding")
    if not host.stripe_onboarding_complete:
        raise HostNotPayable("Host's Stripe account is not fully onboarded")
    log_step("Host Stripe account verified", {"stripe_account_id": host.stripe_account_id})

    fees = calculate_rental_fees(
        base_price=hold.amount,
        delivery_fee=hold.delivery_fee,
        deposit_amount=hold.deposit_amount,
    )
    log_step("Fees calculated", fees.as_display())

    gateway = gateway or get_payment_gateway()
    customer_id = gateway.find_customer_id(user.email)
    log_step("Customer lookup", {"customer_id": customer_id})

    base_origin = (origin or getattr(settings, "FRONTEND_ORIGIN", "")).rstrip("/")
    session_metadata = {
        "booking_id": str(booking.pk),
        "listing_id": str(listing.pk),
        "mode": "rent",
        "buyer_id": str(user.pk),
        "host_id": str(host.pk),
        "deposit_amount": str(hold.deposit_amount),
        "authorization_hold": "true",
    }
    intent_metadata = {
        **session_metadata,
        "platform_fee_cents": str(fees.platform_fee_cents),
        "host_payout_cents": str(fees.host_receives_cents),
    }
    session = gateway.create_checkout_session(
        line_items=_line_items(listing, fees, hold.delivery_fee),
        customer_id=customer_id,
        customer_email=user.email,
        payment_intent_metadata=intent_metadata,
        metadata=session_metadata,
        success_url=f"{base_origin}/payment-success?session_id={{CHECKOUT_SESSION_ID}}&hold=true",
        cancel_url=f"{base_origin}/payment-cancelled?listing={listing.pk}",
        idempotency_key=f"booking:{booking.pk}:checkout_hold:{fees.customer_total_cents}",
    )
    log_step("Checkout session created with manual capture", {"session_id": session.id})

    now = now or timezone.now()
    hold_days = int(getattr(settings, "BOOKING_HOLD_DAYS", 7))
    hold_expires_at = now + timedelta(days=hold_days)

    updated = BookingRequest.objects.filter(pk=booking.pk).update(
        checkout_session_id=session.id,
        hold_status=BookingRequest.HoldStatus.PENDING,
        hold_expires_at=hold_expires_at,
        updated_at=now,
    )
    if not updated:
        log_step.warning("Failed to update booking", {"booking_id": booking.pk})

    return HoldResult(
        url=session.url,
        session_id=session.id,
        fees=fees,
        hold_expires_at=hold_expires_at,
    )


@dataclass(frozen=True)
class HoldActionResult:
    message: str
    payment_intent_id: str = ""
    amount_captured_cents: int | None = None

    def as_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {"message": self.message}
        if self.payment_intent_id:
            response["payment_intent_id"] = self.payment_intent_id
        if self.amount_captured_cents is not None:
            response["amount_captured"] = float(cents_to_dollars(self.amount_captured_cents))
        return response


def _booking_for_host_or_admin(user, payload: Mapping[str, Any], message: str) -> BookingRequest:
    if user is None or not getattr(user, "is_authenticated", False):
        raise Unauthenticated()
    booking_id = _parse_id(payload.get("booking_id"), "booking_id")
    booking = BookingRequest.objects.select_related("listing").filter(pk=booking_id).first()
    if booking is None:
        raise BookingNotFound()
    if booking.host_id != user.pk and not is_admin(user):
        raise NotAuthorized(message)
    return booking


def capture_booking_hold(
    user,
    payload: Mapping[str, Any],
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> HoldActionResult:
    """
    Capture the authorized payment of a booking once the host approves it.

    The booking becomes ``paid`` and enters settlement; an intent already
    captured at the processor is recorded without a second capture call.
    """
    booking = _booking_for_host_or_admin(user, payload, "Only the host can capture payment")
    capture_step("Booking found", {"booking_id": booking.pk, "hold_status": booking.hold_status})

    if not booking.payment_intent_id:
        raise InvalidBookingState("No payment intent found for this booking")
    if booking.hold_status == BookingRequest.HoldStatus.CAPTURED:
        raise InvalidBookingState("Payment has already been captured")
    if booking.hold_status == BookingRequest.HoldStatus.RELEASED:
        raise InvalidBookingState("Payment hold was already released")
    if booking.is_terminal():
        raise InvalidBookingState(f"Cannot capture payment for a {booking.status} booking")

    now = now or timezone.now()
    if booking.hold_expires_at is not None and booking.hold_expires_at <= now:
        capture_step.warning(
            "Hold expired",
            {"booking_id": booking.pk, "hold_expires_at": booking.hold_expires_at},
        )
        raise InvalidBookingState("Payment hold has expired")

    gateway = gateway or get_payment_gateway()
    intent = gateway.retrieve_payment_intent(booking.payment_intent_id)
    capture_step("Payment intent retrieved", {"status": intent.status})

    if intent.status == "succeeded":
        message = "Payment was already captured"
    elif intent.status == "requires_capture":
        intent = gateway.capture_payment_intent(
            booking.payment_intent_id,
            idempotency_key=booking_capture_key(booking),
        )
        capture_step(
            "Payment captured",
            {"payment_intent_id": intent.id, "amount_received": intent.amount_received_cents},
        )
        message = "Payment captured"
    else:
        raise InvalidBookingState(f"Cannot capture payment. Current status: {intent.status}")

    BookingRequest.objects.filter(pk=booking.pk).exclude(
        hold_status=BookingRequest.HoldStatus.CAPTURED,
    ).update(
        hold_status=BookingRequest.HoldStatus.CAPTURED,
        payment_status=BookingRequest.PaymentStatus.PAID,
        updated_at=now,
    )

    title = booking.listing.title or "your rental"
    enqueue(
        notification_tasks.create_notification,
        booking.shopper_id,
        Notification.Type.PAYMENT_CAPTURED,
        "Booking Confirmed",
        f'Your booking for "{title}" is confirmed and your payment has been processed.',
        "/dashboard",
        {"booking_id": booking.pk},
    )

    return HoldActionResult(
        message=message,
        payment_intent_id=intent.id or booking.payment_intent_id,
        amount_captured_cents=intent.amount_received_cents or None,
    )


def release_booking_hold(
    user,
    payload: Mapping[str, Any],
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> HoldActionResult:
    """
    Cancel an uncaptured authorization, returning the funds to the renter.

    Used when the host declines or the hold lapses. A captured payment has
    to go through a refund instead.
    """
    booking = _booking_for_host_or_admin(
        user, payload, "Only the host or admin can release payment hold"
    )
    reason = (payload.get("reason") or "").strip()
    release_step("Booking found", {"booking_id": booking.pk, "hold_status": booking.hold_status})

    now = now or timezone.now()
    if not booking.payment_intent_id:
        BookingRequest.objects.filter(pk=booking.pk).update(
            hold_status=BookingRequest.HoldStatus.NONE,
            updated_at=now,
        )
        return HoldActionResult(message="No payment hold to release")
    if booking.hold_status == BookingRequest.HoldStatus.RELEASED:
        return HoldActionResult(message="Payment hold was already released")
    if booking.hold_status == BookingRequest.HoldStatus.CAPTURED:
        raise InvalidBookingState(CAPTURED_RELEASE_MESSAGE)

    gateway = gateway or get_payment_gateway()
    intent = gateway.retrieve_payment_intent(booking.payment_intent_id)
    release_step("Payment intent retrieved", {"status": intent.status})

    if intent.status == "succeeded":
        raise InvalidBookingState(CAPTURED_RELEASE_MESSAGE)
    if intent.status == "canceled":
        release_step("Payment intent already canceled", {"payment_intent_id": intent.id})
    else:
        gateway.cancel_payment_intent(
            booking.payment_intent_id,
            idempotency_key=booking_release_hold_key(booking),
        )
        release_step("Payment intent canceled", {"payment_intent_id": booking.payment_intent_id})

    BookingRequest.objects.filter(pk=booking.pk).update(
        hold_status=BookingRequest.HoldStatus.RELEASED,
        updated_at=now,
    )

    title = booking.listing.title or "your rental"
    enqueue(
        notification_tasks.create_notification,
        booking.shopper_id,
        Notification.Type.HOLD_RELEASED,
        "Payment Hold Released",
        f'The payment hold for "{title}" has been released. '
        f"Reason: {reason or 'Host declined the booking request'}",
        "/dashboard",
        {"booking_id": booking.pk},
    )

    return HoldActionResult(message="Payment hold released - funds returned to customer")
