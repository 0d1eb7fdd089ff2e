# Overview: Decimal helpers for money and quantities.

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from .errors import ValidationError


QUANTITY_PLACES = 6
QUANTITY_QUANTUM = Decimal(1).scaleb(-QUANTITY_PLACES)
ZERO = Decimal("0")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    try:
        # str() first so floats keep their printed value
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", details={"field": field}) from exc


def to_quantity(value: Any, field: str = "qty") -> Decimal:
    return to_decimal(value, field).quantize(QUANTITY_QUANTUM, rounding=ROUND_HALF_EVEN)


def round_money(value: Any, places: int = 2) -> Decimal:
    """Round half-up to the configured number of decimal places."""
    return to_decimal(value, "amount").quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def db_decimal(value: Any) -> Decimal:
    """Normalize a value read back from the database (SQLite may hand back floats)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def decimal_str(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    return str(db_decimal(value))
