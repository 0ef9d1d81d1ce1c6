"""
Arithmétique monétaire en virgule fixe (Decimal).

Tous les montants stockés ou comparés passent par ``round_money``.
Arrondi : demi-unité loin de zéro (ROUND_HALF_UP sur Decimal).
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from invoicing.errors import InvariantViolation, ValidationError

# nombre de décimales de l'unité mineure, par devise
MINOR_UNITS = {"USD": 2, "EUR": 2, "GBP": 2, "CAD": 2, "AUD": 2, "INR": 2}
DEFAULT_MINOR_UNITS = 2


def to_money(value: Any, field: str = "amount") -> Decimal:
    if value is None or value == "":
        return Decimal(0)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field, actual=value)
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # passage par str : 0.1 reste 0.1 et pas 0.1000000000000000055...
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"{field} must be a number", field=field, actual=value) from e
    # NaN / Infinity : toute comparaison lèverait InvalidOperation plus loin
    if not d.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field, actual=value)
    return d


def _quantum(currency: Optional[str]) -> Decimal:
    places = MINOR_UNITS.get((currency or "").upper(), DEFAULT_MINOR_UNITS)
    return Decimal(1).scaleb(-places)


def round_money(amount: Any, currency: Optional[str] = None, field: str = "amount") -> Decimal:
    value = to_money(amount, field)
    try:
        return value.quantize(_quantum(currency), rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        # plus de chiffres que la précision du contexte
        raise ValidationError(f"{field} is out of range", field=field, actual=amount) from e


def add(*values: Any, currency: Optional[str] = None) -> Decimal:
    total = Decimal(0)
    for v in values:
        total += to_money(v)
    return round_money(total, currency)


def multiply(a: Any, b: Any, *, currency: Optional[str] = None, rounded: bool = True) -> Decimal:
    product = to_money(a) * to_money(b)
    return round_money(product, currency) if rounded else product


def ensure_non_negative(field: str, value: Decimal) -> Decimal:
    if value < 0:
        raise InvariantViolation(
            f"{field} became negative",
            field=field,
            expected=">= 0",
            actual=value,
        )
    return value
