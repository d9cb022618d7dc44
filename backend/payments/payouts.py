"""Money-moving calls shared by the settlement jobs and admin overrides.

Every call carries a deterministic idempotency key derived from the row id and
the action, so a retried job or a second admin click cannot double-submit.

Transfer keys also carry the row's ``payout_attempts``. The processor replays
a cached rejection for a reused key, so a definitive rejection bumps the
counter and the next try goes out as a new request.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from django.db.models import F

from bookings.models import BookingRequest
from sales.models import SaleTransaction

from .fees import settlement_payout_cents, to_cents
from .stripe_api import PaymentGateway, RefundResult, StripePaymentError

logger = logging.getLogger(__name__)


def booking_payout_key(booking: BookingRequest) -> str:
    return f"booking:{booking.pk}:payout:{booking.payout_attempts}"


def booking_deposit_refund_key(booking: BookingRequest, amount_cents: int) -> str:
    return f"booking:{booking.pk}:deposit_refund:{amount_cents}"


def booking_refund_key(booking: BookingRequest, amount_cents: int | None) -> str:
    suffix = "full" if amount_cents is None else str(amount_cents)
    return f"booking:{booking.pk}:refund:{suffix}"


def booking_capture_key(booking: BookingRequest) -> str:
    return f"booking:{booking.pk}:capture"


def booking_release_hold_key(booking: BookingRequest) -> str:
    return f"booking:{booking.pk}:release_hold"


def sale_payout_key(sale: SaleTransaction) -> str:
    return f"sale:{sale.pk}:payout:{sale.payout_attempts}"


def _bump_attempts(row) -> None:
    type(row).objects.filter(pk=row.pk).update(payout_attempts=F("payout_attempts") + 1)
    row.payout_attempts += 1
    logger.info(
        "payout attempt rejected; next key uses attempt %s",
        row.payout_attempts,
        extra={"model": type(row).__name__, "row_id": row.pk},
    )


def transfer_booking_payout(
    booking: BookingRequest,
    *,
    destination: str,
    gateway: PaymentGateway,
    payout_type: str,
    extra_metadata: dict[str, str] | None = None,
) -> tuple[str, int]:
    """
    Transfer the host's settlement payout for a booking.

    Returns ``(transfer_id, amount_cents)``.
    """
    amount_cents = settlement_payout_cents(booking.total_price)
    if amount_cents <= 0:
        raise StripePaymentError(f"Booking {booking.pk} has no payable total_price.")

    metadata = {
        "booking_id": str(booking.pk),
        "listing_id": str(booking.listing_id),
        "type": payout_type,
    }
    if extra_metadata:
        metadata.update(extra_metadata)

    try:
        transfer_id = gateway.create_transfer(
            amount_cents=amount_cents,
            destination=destination,
            metadata=metadata,
            idempotency_key=booking_payout_key(booking),
            description=f"Host payout for booking #{booking.pk}",
        )
    except StripePaymentError:
        _bump_attempts(booking)
        raise
    return transfer_id, amount_cents


def refund_booking_deposit(
    booking: BookingRequest,
    *,
    gateway: PaymentGateway,
    amount_cents: int | None = None,
) -> RefundResult | None:
    """
    Refund the security deposit charge of a booking.

    ``amount_cents`` defaults to the whole deposit. Returns None when no
    deposit charge reference exists; the deposit is then released on record
    only.
    """
    charge_id = (booking.deposit_charge_id or "").strip()
    if not charge_id:
        logger.info(
            "deposit refund without charge reference",
            extra={"booking_id": booking.pk},
        )
        return None
    if amount_cents is None:
        amount_cents = to_cents(booking.deposit_amount or Decimal("0"))
    return gateway.create_refund(
        charge=charge_id,
        amount_cents=amount_cents,
        reason="requested_by_customer",
        metadata={"booking_id": str(booking.pk), "type": "deposit_refund"},
        idempotency_key=booking_deposit_refund_key(booking, amount_cents),
    )


def transfer_sale_payout(
    sale: SaleTransaction,
    *,
    destination: str,
    gateway: PaymentGateway,
    extra_metadata: dict[str, str] | None = None,
) -> str:
    """Transfer the pre-split seller payout of a sale; returns the transfer id."""
    amount_cents = sale.seller_payout_cents
    if amount_cents <= 0:
        raise StripePaymentError(f"Sale {sale.pk} has no payable seller_payout.")

    metadata = {
        "transaction_id": str(sale.pk),
        "listing_id": str(sale.listing_id),
    }
    if extra_metadata:
        metadata.update(extra_metadata)

    try:
        return gateway.create_transfer(
            amount_cents=amount_cents,
            destination=destination,
            metadata=metadata,
            idempotency_key=sale_payout_key(sale),
            description=f"Seller payout for sale #{sale.pk}",
        )
    except StripePaymentError:
        _bump_attempts(sale)
        raise
