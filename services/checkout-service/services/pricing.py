"""Checkout pricing for GST-inclusive catalog prices."""
import math
from typing import Iterable

from config import FREE_SHIPPING_THRESHOLD, GST_DIVISOR, SHIPPING_FLAT_FEE
from schemas import PriceBreakdown, ReservationLine


def round_half_up(value: float) -> int:
    # Matches the rounding used when reconciling with the payment gateway;
    # the builtin round() rounds halves to even.
    return int(math.floor(value + 0.5))


def price_breakdown(subtotal: float, discount: float = 0) -> PriceBreakdown:
    """
    Split a GST-inclusive subtotal into base and tax, and add shipping.

    Tax is already part of the subtotal, so the total is the subtotal plus
    shipping.
    """
    base_subtotal = round_half_up(subtotal / GST_DIVISOR)
    tax = subtotal - base_subtotal
    shipping = 0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FLAT_FEE
    return PriceBreakdown(
        subtotal=base_subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        totalAmount=subtotal + shipping
    )


def cart_subtotal(lines: Iterable[ReservationLine]) -> float:
    return sum(line.price * line.quantity for line in lines)
