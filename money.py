from decimal import Decimal

CENTS_PER_UNIT = Decimal("100")


def cents_to_reais(cents: int) -> Decimal:
    return (Decimal(int(cents)) / CENTS_PER_UNIT).quantize(Decimal("0.01"))
