"""
Arithmétique monétaire : Decimal arrondi au centime à chaque étape
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from constants import DEFAULT_CURRENCY_SYMBOL

Number = Union[int, float, str, Decimal]

CENT = Decimal("0.01")


def to_decimal(value: Optional[Number], default: Decimal = Decimal("0")) -> Decimal:
    """Convertit une valeur (float compris) en Decimal sans dérive binaire"""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Number) -> str:
    """Montant affiché, ex. ¥1500.00"""
    return f"{DEFAULT_CURRENCY_SYMBOL}{round_money(amount)}"


def format_plain(value: Number) -> str:
    """
    Nombre sans zéros inutiles pour les libellés (50.00 -> 50, 2.50 -> 2.5)
    """
    normalized = to_decimal(value).normalize()
    if normalized == normalized.to_integral():
        return str(normalized.quantize(Decimal("1")))
    return format(normalized, "f")
