"""
Money helpers. All amounts are integer cents; percentages and basis points
are applied through Decimal and rounded half-up to the cent.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

BPS_DENOMINATOR = 10_000


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def derive_sell_price_cents(unit_cost_cents: int, margin_percent: float) -> int:
    """sell = cost * (1 + margin / 100), nearest cent."""
    factor = Decimal(1) + Decimal(str(margin_percent)) / Decimal(100)
    return round_half_up(Decimal(unit_cost_cents) * factor)


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    return round_half_up(Decimal(subtotal_cents) * Decimal(tax_rate_bps) / Decimal(BPS_DENOMINATOR))


def to_cents(amount) -> int:
    """Convert a currency amount (int, float or numeric string) to cents."""
    if isinstance(amount, bool):
        raise ValidationError("amount must be numeric")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValidationError(f"invalid amount: {amount!r}")
    return round_half_up(value * 100)


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"
