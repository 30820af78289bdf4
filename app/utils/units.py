"""Unit handling at the service boundary.

Everything past the API schemas works in miles and dollars held as Decimal.
"""
from decimal import Decimal, ROUND_HALF_UP

KM_PER_MILE = Decimal("1.609344")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps the shortest repr, so 4.25 stays 4.25 instead of its binary expansion
        return Decimal(str(value))
    return Decimal(value)


def km_to_miles(km) -> Decimal:
    return to_decimal(km) / KM_PER_MILE


def miles_to_km(miles) -> Decimal:
    return to_decimal(miles) * KM_PER_MILE


def round_money(amount) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def dollars_to_cents(amount) -> int:
    return int(round_money(amount) * 100)
