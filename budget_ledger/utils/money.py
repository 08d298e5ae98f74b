"""
Fixed-point money helpers.

Every amount entering the ledger passes through ``parse_amount`` so that
user-entered strings are never coerced implicitly and floats never reach
the balance columns.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from budget_ledger.errors import InvalidAmountError
from budget_ledger.utils.constants import MONEY_MAX_DIGITS, MONEY_PLACES

CENT = Decimal(1).scaleb(-MONEY_PLACES)
ZERO = Decimal("0.00")


def parse_amount(value: Any) -> Decimal:
    """Parse *value* into a positive two-place ``Decimal``.

    Accepts ``Decimal``, ``int`` and numeric strings (surrounding whitespace
    and thousands separators are tolerated).  Floats are rejected because
    their binary representation cannot be trusted for money; ``bool`` is
    rejected because it is an ``int`` subclass.

    Args:
        value: Raw amount from a request body, form field or caller.

    Returns:
        The amount quantized to two decimal places.

    Raises:
        InvalidAmountError: If the value is malformed, non-finite, has more
            than two fractional digits, exceeds the column precision, or is
            not strictly positive.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(
            f"Amount must be a decimal string or integer, got {type(value).__name__}."
        )

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        if not cleaned:
            raise InvalidAmountError("Amount is required.")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            raise InvalidAmountError(f"Amount {value!r} is not a number.") from None
    else:
        raise InvalidAmountError(f"Amount {value!r} is not a number.")

    if not amount.is_finite():
        raise InvalidAmountError(f"Amount {value!r} is not a finite number.")

    if amount.adjusted() >= MONEY_MAX_DIGITS - MONEY_PLACES:
        raise InvalidAmountError(f"Amount {value!r} exceeds the supported precision.")

    if amount.as_tuple().exponent < -MONEY_PLACES and amount != amount.quantize(CENT):
        raise InvalidAmountError(
            f"Amount {value!r} has more than {MONEY_PLACES} decimal places."
        )

    amount = amount.quantize(CENT)

    if amount <= 0:
        raise InvalidAmountError(f"Amount must be greater than zero, got {amount}.")

    return amount


def to_money(value: Any) -> Decimal:
    """Normalise a stored numeric value (possibly ``None``) to two places."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT)


def utilization_pct(utilized: Decimal, total: Decimal) -> float:
    """Return utilized / total × 100 rounded to two places, 0.0 when total is zero."""
    if total == 0:
        return 0.0
    return round(float(utilized / total * 100), 2)
