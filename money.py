from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
# keeps minor units inside a signed 64-bit column
MAX_AMOUNT = Decimal("1000000000000")


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def has_cent_precision(amount: Decimal) -> bool:
    return amount == amount.quantize(CENT)
