"""Decimal helpers for monetary amounts and rates."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .exceptions import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_money(value) -> Decimal:
    """Coerce ``value`` to a Decimal rounded half-up to cents."""
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'Invalid monetary amount: {value!r}')


def to_rate(value, percent=None) -> Decimal:
    """
    Coerce a commission rate to a Decimal fraction in [0, 1).

    ``percent`` says how to read ``value``:

    - ``True``: always a percentage, so ``'0.5'`` is 0.5% and ``10`` is 10%
    - ``False``: always a fraction, so ``'0.5'`` is 50%
    - ``None`` (default): a fraction below 1, a percentage from 1 upwards.
      ``1`` therefore means 1%, and percentages below 1% need ``percent=True``.
    """
    if isinstance(value, float):
        value = repr(value)
    try:
        rate = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f'Invalid commission rate: {value!r}')
    if percent or (percent is None and rate >= 1):
        rate = rate / Decimal('100')
    if rate < 0 or rate >= 1:
        raise ValidationError(f'Commission rate out of range: {value!r}')
    return rate


def line_total(quantity: int, unit_price: Decimal) -> Decimal:
    return to_money(Decimal(quantity) * unit_price)
