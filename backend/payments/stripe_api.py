"""Stripe access for the settlement engine.

Services never touch the ``stripe`` module directly; they receive a
``PaymentGateway`` so tests and alternative processors can be substituted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, NoReturn

import stripe
from django.conf import settings

from core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)


class StripeConfigurationError(PaymentProviderError):
    """Stripe is not configured correctly in the environment."""


class StripeTransientError(PaymentProviderError):
    """Temporary Stripe/API issue that should be retried."""


class StripePaymentError(PaymentProviderError):
    """Permanent failure reported by Stripe for a money-moving call."""


def _get_stripe_api_key() -> str:
    """Return the configured Stripe API key or raise if missing."""
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise StripeConfigurationError("STRIPE_SECRET_KEY is not set")
    return api_key


def handle_stripe_error(exc: stripe.StripeError) -> NoReturn:
    """Map Stripe SDK errors onto internal exception types, keeping Stripe's message."""
    message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__
    if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError, stripe.APIError)):
        raise StripeTransientError(message) from exc
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        raise StripeConfigurationError(message) from exc
    raise StripePaymentError(message) from exc


def _object_value(obj: Any, field: str, default: Any = None) -> Any:
    """Safely fetch a field from a Stripe object or dict payload."""
    if isinstance(obj, dict):
        return obj.get(field, default)
    value = getattr(obj, field, None)
    if value is None and hasattr(obj, "get"):
        try:
            value = obj.get(field, default)
        except TypeError:
            value = None
    return default if value is None else value


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class RefundResult:
    id: str
    status: str
    amount_cents: int


@dataclass(frozen=True)
class PaymentIntentResult:
    id: str
    status: str
    amount_received_cents: int = 0


class PaymentGateway:
    """Processor primitives the settlement engine depends on. Amounts are cents."""

    def find_customer_id(self, email: str) -> str | None:
        raise NotImplementedError

    def create_checkout_session(
        self,
        *,
        line_items: list[dict[str, Any]],
        customer_id: str | None,
        customer_email: str | None,
        payment_intent_metadata: dict[str, str],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
    ) -> CheckoutSession:
        raise NotImplementedError

    def create_transfer(
        self,
        *,
        amount_cents: int,
        destination: str,
        metadata: dict[str, str],
        idempotency_key: str,
        description: str = "",
    ) -> str:
        raise NotImplementedError

    def create_refund(
        self,
        *,
        idempotency_key: str,
        payment_intent: str | None = None,
        charge: str | None = None,
        amount_cents: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        raise NotImplementedError

    def retrieve_payment_intent(self, payment_intent: str) -> PaymentIntentResult:
        raise NotImplementedError

    def capture_payment_intent(self, payment_intent: str, *, idempotency_key: str) -> PaymentIntentResult:
        raise NotImplementedError

    def cancel_payment_intent(self, payment_intent: str, *, idempotency_key: str) -> PaymentIntentResult:
        raise NotImplementedError

    def available_balance_cents(self) -> int:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """``PaymentGateway`` backed by the Stripe SDK, with per-request credentials."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        currency: str | None = None,
        api_version: str | None = None,
    ):
        self.api_key = api_key or _get_stripe_api_key()
        self.currency = (currency or getattr(settings, "STRIPE_CURRENCY", "usd") or "usd").lower()
        self.api_version = api_version or getattr(settings, "STRIPE_API_VERSION", None)

    def _request_options(self, idempotency_key: str | None = None) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        return options

    def find_customer_id(self, email: str) -> str | None:
        if not email:
            return None
        try:
            customers = stripe.Customer.list(email=email, limit=1, **self._request_options())
        except stripe.StripeError as exc:
            handle_stripe_error(exc)
        data = _object_value(customers, "data", []) or []
        if not data:
            return None
        return _object_value(data[0], "id") or None

    def create_checkout_session(
        self,
        *,
        line_items,
        customer_id,
        customer_email,
        payment_intent_metadata,
        metadata,
        success_url,
        cancel_url,
        idempotency_key,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": list(
                getattr(settings, "STRIPE_CHECKOUT_PAYMENT_METHOD_TYPES", ["card"])
            ),
            "automatic_tax": {"enabled": True},
            "billing_address_collection": "required",
            "line_items": line_items,
            # Authorize only; no transfer_data so funds stay on the platform until settlement.
            "payment_intent_data": {
                "capture_method": "manual",
                "metadata": payment_intent_metadata,
            },
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
            params["customer_update"] = {"address": "auto"}
        else:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(
                **params, **self._request_options(idempotency_key)
            )
        except stripe.StripeError as exc:
            handle_stripe_error(exc)

        session_id = _object_value(session, "id", "")
        session_url = _object_value(session, "url", "")
        if not session_id or not session_url:
            raise StripeConfigurationError("Stripe did not return a checkout session URL.")
        return CheckoutSession(id=session_id, url=session_url)

    def create_transfer(
        self,
        *,
        amount_cents,
        destination,
        metadata,
        idempotency_key,
        description="",
    ) -> str:
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "destination": destination,
            "metadata": {
                "env": getattr(settings, "STRIPE_ENV", "dev") or "dev",
                **metadata,
            },
        }
        if description:
            params["description"] = description
        try:
            transfer = stripe.Transfer.create(**params, **self._request_options(idempotency_key))
        except stripe.StripeError as exc:
            handle_stripe_error(exc)

        transfer_id = _object_value(transfer, "id", "")
        if not transfer_id:
            raise StripePaymentError("Stripe did not return a transfer id.")
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
    ) -> RefundResult:
        if not payment_intent and not charge:
            raise StripePaymentError("A payment intent or charge is required to refund.")
        params: dict[str, Any] = {}
        if payment_intent:
            params["payment_intent"] = payment_intent
        else:
            params["charge"] = charge
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason:
            params["reason"] = reason
        if metadata:
            params["metadata"] = metadata
        try:
            refund = stripe.Refund.create(**params, **self._request_options(idempotency_key))
        except stripe.StripeError as exc:
            handle_stripe_error(exc)

        return RefundResult(
            id=_object_value(refund, "id", ""),
            status=_object_value(refund, "status", ""),
            amount_cents=int(_object_value(refund, "amount", amount_cents or 0) or 0),
        )

    def available_balance_cents(self) -> int:
        try:
            balance = stripe.Balance.retrieve(**self._request_options())
        except stripe.StripeError as exc:
            handle_stripe_error(exc)

        for entry in _object_value(balance, "available", []) or []:
            currency = (_object_value(entry, "currency", "") or "").lower()
            if currency == self.currency:
                return int(_object_value(entry, "amount", 0) or 0)
        return 0

    def _intent_result(self, intent) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=_object_value(intent, "id", ""),
            status=_object_value(intent, "status", ""),
            amount_received_cents=int(_object_value(intent, "amount_received", 0) or 0),
        )

    def retrieve_payment_intent(self, payment_intent) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent, **self._request_options())
        except stripe.StripeError as exc:
            handle_stripe_error(exc)
        return self._intent_result(intent)

    def capture_payment_intent(self, payment_intent, *, idempotency_key) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.capture(
                payment_intent, **self._request_options(idempotency_key)
            )
        except stripe.StripeError as exc:
            handle_stripe_error(exc)
        return self._intent_result(intent)

    def cancel_payment_intent(self, payment_intent, *, idempotency_key) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.cancel(
                payment_intent, **self._request_options(idempotency_key)
            )
        except stripe.StripeError as exc:
            handle_stripe_error(exc)
        return self._intent_result(intent)


def get_payment_gateway() -> PaymentGateway:
    """Build the default gateway from settings."""
    return StripeGateway()
