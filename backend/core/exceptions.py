"""Error taxonomy shared by the settlement handlers and its JSON rendering."""

from __future__ import annotations

import logging

from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class SettlementError(Exception):
    """Base class for errors surfaced to API callers as ``{"error": ...}``."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(SettlementError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request."


class InvalidAmount(ValidationFailed):
    default_message = "Amount must be greater than zero."


class Unauthenticated(SettlementError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "User not authenticated."


class NotAuthorized(SettlementError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized."


class ResourceNotFound(SettlementError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found."


class ListingNotFound(ResourceNotFound):
    default_message = "Listing not found"


class BookingNotFound(ResourceNotFound):
    default_message = "Booking not found"


class InvalidState(SettlementError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not allowed in the current state."


class InvalidBookingState(InvalidState):
    pass


class HostNotPayable(SettlementError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Host has not completed Stripe onboarding"


class SellerNotPayable(SettlementError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Seller has no connected Stripe account"


class PaymentProviderError(SettlementError):
    """A payment processor call failed; the provider message is passed through."""

    default_message = "Payment provider request failed."


class InsufficientBalance(SettlementError):
    default_message = "Insufficient platform balance."


def _drf_message(exc: drf_exceptions.APIException) -> str:
    detail = exc.detail
    if isinstance(detail, dict):
        parts = []
        for field, value in detail.items():
            values = value if isinstance(value, list) else [value]
            text = " ".join(str(item) for item in values)
            parts.append(text if field in ("detail", "non_field_errors") else f"{field}: {text}")
        return "; ".join(parts)
    if isinstance(detail, list):
        return " ".join(str(item) for item in detail)
    return str(detail)


def json_error_handler(exc, context):
    """
    Render every failure as ``{"error": "<message>"}``.

    Settlement errors keep their own status codes; DRF errors keep theirs;
    anything else becomes a 500 carrying the exception text.
    """
    view = context.get("view") if context else None
    view_name = view.__class__.__name__ if view is not None else "unknown"

    if isinstance(exc, SettlementError):
        logger.warning(
            "request failed: %s",
            exc.message,
            extra={"view": view_name, "error_type": exc.__class__.__name__},
        )
        return Response({"error": exc.message}, status=exc.status_code)

    if isinstance(exc, drf_exceptions.APIException):
        response = Response({"error": _drf_message(exc)}, status=exc.status_code)
        auth_header = getattr(exc, "auth_header", None)
        if auth_header:
            response["WWW-Authenticate"] = auth_header
        return response

    logger.exception("unhandled error", extra={"view": view_name})
    return Response(
        {"error": str(exc) or exc.__class__.__name__},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
