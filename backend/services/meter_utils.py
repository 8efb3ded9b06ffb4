"""
Utilitaires de compteurs : consommation, montant, détection d'anomalies et libellés
"""
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence
import random
import time

from constants import (
    METER_BUSINESS_RULES, METER_TYPE_LABELS, METER_DEFAULT_UNITS, FALLBACK_UNIT,
    METER_NUMBER_PREFIXES, METER_PRICE_KEYS, FALLBACK_BILLING_SETTINGS
)
from enums import MeterType
from services.money import Number, to_decimal, round_money


def calculate_usage(current: Number, previous: Optional[Number]) -> Decimal:
    """
    Consommation entre deux relevés.
    Sans relevé précédent la consommation est nulle, une régression donne 0.
    """
    if previous is None:
        return Decimal("0")
    return max(Decimal("0"), to_decimal(current) - to_decimal(previous))


def calculate_amount(usage: Number, unit_price: Number) -> Decimal:
    return round_money(to_decimal(usage) * to_decimal(unit_price))


def detect_abnormal_reading(
    current: Number,
    previous: Optional[Number],
    recent_readings: Sequence[Number] = ()
) -> bool:
    """
    Détecte un relevé anormal

    Args:
        current: relevé courant
        previous: relevé précédent (None pour un premier relevé)
        recent_readings: derniers relevés connus, du plus récent au plus ancien

    Un relevé est anormal s'il dépasse la valeur maximale, régresse, dépasse le
    plafond de consommation par période, ou dépasse la consommation moyenne
    historique multipliée par le seuil (au moins 3 relevés requis).
    """
    rules = METER_BUSINESS_RULES
    current = to_decimal(current)

    if current > rules["max_reading_value"]:
        return True

    if previous is None:
        return False

    previous = to_decimal(previous)
    if current < previous:
        return True

    usage = current - previous
    if usage > rules["max_usage_per_period"]:
        return True

    recent = [to_decimal(value) for value in recent_readings]
    if len(recent) >= rules["min_history_samples"]:
        # Moyenne des écarts entre relevés consécutifs
        deltas = [recent[i - 1] - recent[i] for i in range(1, len(recent))]
        average_usage = sum(deltas, Decimal("0")) / len(deltas)
        # Historique plat : toute consommation positive est anormale
        if usage > average_usage * rules["abnormal_usage_multiplier"]:
            return True

    return False


# ==================== LIBELLÉS ====================

def format_meter_type(meter_type: MeterType) -> str:
    return METER_TYPE_LABELS.get(MeterType(meter_type), str(meter_type))


def get_default_unit(meter_type: MeterType) -> str:
    return METER_DEFAULT_UNITS.get(MeterType(meter_type), FALLBACK_UNIT)


def get_default_unit_price(meter_type: MeterType) -> Decimal:
    """Prix de secours du type de compteur"""
    return FALLBACK_BILLING_SETTINGS[METER_PRICE_KEYS[MeterType(meter_type)]]


def generate_period_description(reading_date: date) -> str:
    """Période lisible d'un relevé, ex. 2024年3月"""
    return f"{reading_date.year}年{reading_date.month}月"


def generate_meter_number(meter_type: MeterType, room_number: str) -> str:
    """
    Numéro de compteur : préfixe du type, numéro de chambre, suffixe horodaté
    """
    prefix = METER_NUMBER_PREFIXES.get(MeterType(meter_type), "MT")
    suffix = f"{int(time.time() * 1000) % 10000:04d}{random.randint(0, 99):02d}"
    return f"{prefix}{room_number}{suffix}"
