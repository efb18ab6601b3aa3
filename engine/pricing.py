"""
Booking price helpers shared by the state machine and the revenue reports.

Effective price is the price frozen on the booking (price_at_booking) when
present, otherwise the live service price, otherwise 0.
"""

from decimal import ROUND_CEILING, Decimal
from typing import Any


def to_decimal(value: Any) -> Decimal:
    """Coerce money-like values to Decimal; None becomes 0."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def effective_price(booking: Any) -> Decimal:
    """Price a booking is worth; never raises for missing data."""
    frozen = getattr(booking, "price_at_booking", None)
    if frozen is not None:
        return to_decimal(frozen)

    service = getattr(booking, "service", None)
    if service is not None and getattr(service, "price", None) is not None:
        return to_decimal(service.price)

    return Decimal("0")


def commission_split(price: Decimal, rate: float) -> tuple[Decimal, Decimal]:
    """
    Split a service price into (commission, house revenue).

    Commission is rounded up to the whole currency unit.

    Example:
        >>> commission_split(Decimal("1500"), 0.30)
        (Decimal('450'), Decimal('1050'))
        >>> commission_split(Decimal("999"), 0.30)
        (Decimal('300'), Decimal('699'))
    """
    commission = (price * Decimal(str(rate))).to_integral_value(rounding=ROUND_CEILING)
    return commission, price - commission
