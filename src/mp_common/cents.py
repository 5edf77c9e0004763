"""Minor-unit money helpers.

Order prices are stored as Decimal major units (what the client sees);
everything that crosses the payment port is an int in minor units (cents).
No float anywhere.
"""

from decimal import ROUND_HALF_UP, Decimal

_CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Convert a major-unit Decimal to integer cents: Decimal('115.00') -> 11500."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def has_at_most_two_places(amount: Decimal) -> bool:
    return amount == amount.quantize(_CENT)


def cents_to_display(cents: int, currency: str = "USD") -> str:
    """Convert cents to display string: 6500 -> '$65.00', -1200 -> '-$12.00'."""
    symbol = "$" if currency.upper() == "USD" else f"{currency.upper()} "
    if cents < 0:
        abs_cents = -cents
        return f"-{symbol}{abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"{symbol}{cents // 100:,}.{cents % 100:02d}"


def calculate_fee(amount: int, fee_rate_bps: int) -> int:
    """Calculate fee with ceiling division (platform never loses).

    fee = ceil(amount * fee_rate_bps / 10000)
    Using integer ceiling: (a + b - 1) // b
    """
    if amount == 0 or fee_rate_bps == 0:
        return 0
    return (amount * fee_rate_bps + 9999) // 10000
