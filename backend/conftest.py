"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from bookings.models import BookingRequest
from listings.models import Listing
from payments.stripe_api import (
    CheckoutSession,
    PaymentGateway,
    PaymentIntentResult,
    RefundResult,
    StripePaymentError,
)
from sales.models import SaleTransaction
from users.models import UserRole

User = get_user_model()


class FakeGateway(PaymentGateway):
    """
    In-memory payment gateway recording every processor call.

    Transfers replay the first result seen for an idempotency key, rejections
    included, the way the processor does.
    """

    def __init__(self, *, balance_cents: int = 0, customer_id: str | None = None):
        self.balance_cents = balance_cents
        self.customer_id = customer_id
        self.checkout_sessions: list[dict] = []
        self.transfers: list[dict] = []
        self.refunds: list[dict] = []
        self.full_refund_cents = 11000
        self.balance_checks = 0
        self.fail_transfers_to: set[str] = set()
        self.fail_refunds_with: str | None = None
        self.failed_keys: list[str] = []
        self.intent_status = "requires_capture"
        self.intent_amount_cents = 12420
        self.captures: list[dict] = []
        self.cancellations: list[dict] = []
        self._results: dict[str, str | Exception] = {}

    def find_customer_id(self, email):
        return self.customer_id

    def create_checkout_session(self, **kwargs):
        self.checkout_sessions.append(kwargs)
        number = len(self.checkout_sessions)
        return CheckoutSession(
            id=f"cs_test_{number}",
            url=f"https://checkout.stripe.test/c/pay/cs_test_{number}",
        )

    def create_transfer(self, *, amount_cents, destination, metadata, idempotency_key, description=""):
        if idempotency_key in self._results:
            cached = self._results[idempotency_key]
            if isinstance(cached, Exception):
                raise cached
            return cached
        if destination in self.fail_transfers_to:
            error = StripePaymentError("Your destination account needs to have at least one capability enabled.")
            self._results[idempotency_key] = error
            self.failed_keys.append(idempotency_key)
            raise error
        transfer_id = f"tr_test_{len(self.transfers) + 1}"
        self.transfers.append(
            {
                "id": transfer_id,
                "amount_cents": amount_cents,
                "destination": destination,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        self._results[idempotency_key] = transfer_id
        return transfer_id

    def create_refund(
        self,
        *,
        idempotency_key,
        payment_intent=None,
        charge=None,
        amount_cents=None,
        reason=None,
        metadata=None,
    ):
        if self.fail_refunds_with:
            raise StripePaymentError(self.fail_refunds_with)
        refund_id = f"re_test_{len(self.refunds) + 1}"
        self.refunds.append(
            {
                "id": refund_id,
                "payment_intent": payment_intent,
                "charge": charge,
                "amount_cents": amount_cents,
                "reason": reason,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        return RefundResult(id=refund_id, status="succeeded", amount_cents=amount_cents or self.full_refund_cents)

    def available_balance_cents(self):
        self.balance_checks += 1
        return self.balance_cents

    def retrieve_payment_intent(self, payment_intent):
        return PaymentIntentResult(id=payment_intent, status=self.intent_status)

    def capture_payment_intent(self, payment_intent, *, idempotency_key):
        self.captures.append({"payment_intent": payment_intent, "idempotency_key": idempotency_key})
        self.intent_status = "succeeded"
        return PaymentIntentResult(
            id=payment_intent,
            status="succeeded",
            amount_received_cents=self.intent_amount_cents,
        )

    def cancel_payment_intent(self, payment_intent, *, idempotency_key):
        self.cancellations.append({"payment_intent": payment_intent, "idempotency_key": idempotency_key})
        self.intent_status = "canceled"
        return PaymentIntentResult(id=payment_intent, status="canceled")


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def default_gateway(monkeypatch, fake_gateway):
    """Route every default-constructed gateway to the fake."""
    for target in (
        "payments.holds.get_payment_gateway",
        "payments.refunds.get_payment_gateway",
        "payments.deposits.get_payment_gateway",
        "bookings.settlement.get_payment_gateway",
        "sales.settlement.get_payment_gateway",
        "operator_core.services.get_payment_gateway",
    ):
        monkeypatch.setattr(target, lambda: fake_gateway)
    return fake_gateway


def _create_user(username: str, **extra) -> User:
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="testpass",
        **extra,
    )


@pytest.fixture
def host_user():
    return _create_user(
        "host",
        full_name="Hana Host",
        stripe_account_id="acct_test_host",
        stripe_onboarding_complete=True,
    )


@pytest.fixture
def shopper_user():
    return _create_user("shopper", full_name="Sam Shopper")


@pytest.fixture
def other_user():
    return _create_user("other")


@pytest.fixture
def admin_user():
    user = _create_user("admin")
    UserRole.objects.create(user=user, role=UserRole.Role.ADMIN)
    return user


@pytest.fixture
def seller_factory() -> Callable[..., User]:
    counter = {"n": 0}

    def _create_seller(*, payable: bool = True) -> User:
        counter["n"] += 1
        suffix = counter["n"]
        extra = {}
        if payable:
            extra = {
                "stripe_account_id": f"acct_test_seller_{suffix}",
                "stripe_onboarding_complete": True,
            }
        return _create_user(f"seller{suffix}", **extra)

    return _create_seller


@pytest.fixture
def listing(host_user):
    return Listing.objects.create(host=host_user, title="Taco Truck 2019")


@pytest.fixture
def booking_factory(listing, shopper_user) -> Callable[..., BookingRequest]:
    def _create_booking(
        *,
        status=BookingRequest.Status.APPROVED,
        payment_status=BookingRequest.PaymentStatus.PAID,
        end_date=None,
        start_date=None,
        total_price=Decimal("110.00"),
        **extra_fields,
    ) -> BookingRequest:
        today = timezone.now().date()
        end_date = end_date or today - timedelta(days=1)
        start_date = start_date or end_date - timedelta(days=2)
        if payment_status != BookingRequest.PaymentStatus.UNPAID:
            extra_fields.setdefault("payment_intent_id", "pi_test_booking")
        return BookingRequest.objects.create(
            listing=listing,
            shopper=shopper_user,
            host=listing.host,
            start_date=start_date,
            end_date=end_date,
            status=status,
            payment_status=payment_status,
            total_price=total_price,
            **extra_fields,
        )

    return _create_booking


@pytest.fixture
def sale_factory(seller_factory, shopper_user) -> Callable[..., SaleTransaction]:
    def _create_sale(
        *,
        age=timedelta(days=26),
        seller=None,
        seller_payout=Decimal("900.00"),
        status=SaleTransaction.Status.PAID,
        **extra_fields,
    ) -> SaleTransaction:
        seller = seller or seller_factory()
        sale_listing = Listing.objects.create(
            host=seller,
            title=f"Food Trailer {seller.username}",
            mode=Listing.Mode.SALE,
        )
        return SaleTransaction.objects.create(
            listing=sale_listing,
            buyer=shopper_user,
            seller=seller,
            amount=seller_payout + Decimal("100.00"),
            platform_fee=Decimal("100.00"),
            seller_payout=seller_payout,
            status=status,
            created_at=timezone.now() - age,
            **extra_fields,
        )

    return _create_sale
