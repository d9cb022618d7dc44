"""Fee math for rental authorizations and payouts.

Amounts are dollars (``Decimal``) for display and storage and integer cents
for the payment processor. Rounding is always half-up to the nearest cent.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings

from core.exceptions import InvalidAmount, ValidationFailed

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")

# Largest single USD charge Stripe accepts; well inside the max_digits=10 columns.
MAX_AMOUNT = Decimal("999999.99")


def to_cents(amount: Decimal | int | str) -> int:
    """Convert Decimal dollars to integer cents, rounding half-up."""
    try:
        cents = (Decimal(str(amount)) * _HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(f"Amount is out of range: {amount}")
    return int(cents)


def cents_to_dollars(cents: int) -> Decimal:
    return (Decimal(cents) / _HUNDRED).quantize(_CENT)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def parse_amount(
    value,
    field_name: str,
    *,
    required: bool = False,
    allow_zero: bool = True,
) -> Decimal:
    """
    Parse a request amount (dollars) into a Decimal.

    Missing optional values (including an explicit null) parse as zero. Values
    above ``MAX_AMOUNT`` are rejected before any fee math runs.
    """
    if value in (None, ""):
        if required:
            raise ValidationFailed(f"Missing required field: {field_name}")
        return Decimal("0")
    if isinstance(value, bool):
        raise InvalidAmount(f"{field_name} must be a number.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"{field_name} must be a number.")
    if not amount.is_finite():
        raise InvalidAmount(f"{field_name} must be a number.")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(f"{field_name} must be greater than zero.")
    if amount > MAX_AMOUNT:
        raise InvalidAmount(f"{field_name} must be at most {MAX_AMOUNT}.")
    return amount


@dataclass(frozen=True)
class FeeBreakdown:
    subtotal: Decimal
    renter_fee: Decimal
    host_fee: Decimal
    deposit: Decimal
    customer_total_cents: int
    platform_fee_cents: int
    host_receives_cents: int

    @property
    def subtotal_cents(self) -> int:
        return to_cents(self.subtotal)

    @property
    def renter_fee_cents(self) -> int:
        return to_cents(self.renter_fee)

    @property
    def host_fee_cents(self) -> int:
        # Complement of the rounded host payout, not the host fee rounded on its
        # own: on a half-cent split such as $5.00 at 12.9% the two roundings
        # would give 65 + 436 = 501 cents against a 500 cent subtotal.
        return self.subtotal_cents - self.host_receives_cents

    @property
    def deposit_cents(self) -> int:
        return to_cents(self.deposit)

    def as_display(self) -> dict[str, float]:
        """Dollar figures for UI display."""
        return {
            "subtotal": float(quantize_money(self.subtotal)),
            "renter_fee": float(cents_to_dollars(self.renter_fee_cents)),
            "host_fee": float(cents_to_dollars(self.host_fee_cents)),
            "deposit_amount": float(quantize_money(self.deposit)),
            "customer_total": float(cents_to_dollars(self.customer_total_cents)),
            "platform_fee": float(cents_to_dollars(self.platform_fee_cents)),
            "host_receives": float(cents_to_dollars(self.host_receives_cents)),
        }


def calculate_rental_fees(
    *,
    base_price: Decimal,
    delivery_fee: Decimal = Decimal("0"),
    deposit_amount: Decimal = Decimal("0"),
    host_fee_percent: Decimal | None = None,
    renter_fee_percent: Decimal | None = None,
) -> FeeBreakdown:
    """Compute the authorization-time fee split for a rental."""
    if host_fee_percent is None:
        host_fee_percent = Decimal(str(settings.RENTAL_HOST_FEE_PERCENT))
    if renter_fee_percent is None:
        renter_fee_percent = Decimal(str(settings.RENTAL_RENTER_FEE_PERCENT))

    base_price = Decimal(str(base_price))
    delivery_fee = Decimal(str(delivery_fee or 0))
    deposit_amount = Decimal(str(deposit_amount or 0))

    subtotal = base_price + delivery_fee
    renter_fee = subtotal * renter_fee_percent / _HUNDRED
    host_fee = subtotal * host_fee_percent / _HUNDRED

    return FeeBreakdown(
        subtotal=subtotal,
        renter_fee=renter_fee,
        host_fee=host_fee,
        deposit=deposit_amount,
        customer_total_cents=to_cents(subtotal + renter_fee + deposit_amount),
        platform_fee_cents=to_cents(renter_fee + host_fee),
        host_receives_cents=to_cents(subtotal - host_fee),
    )


def settlement_payout_cents(total_price: Decimal | None, fee_rate: Decimal | None = None) -> int:
    """
    Host payout at settlement time: total_price less the flat platform fee.

    Returns 0 when no price is recorded.
    """
    if total_price is None:
        return 0
    if fee_rate is None:
        fee_rate = Decimal(str(settings.SETTLEMENT_PLATFORM_FEE_RATE))
    return to_cents(Decimal(str(total_price)) * (Decimal("1") - fee_rate))
