"""
Calculs de factures : charges, loyers par cycle et rappels d'échéance
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from constants import (
    RENT_CYCLE_MULTIPLIERS, PAYMENT_CYCLE_LABELS, DEFAULT_KEY_DEPOSIT,
    DEFAULT_REMINDER_DAYS, URGENT_REMINDER_DAYS, METER_PRICE_KEYS
)
from enums import MeterType, ReminderLevel
from services.global_settings import BillingSettings, LiveSettingsProvider, CachedSettingsProvider
from services.money import Number, to_decimal, round_money


@dataclass
class UnitPrices:
    electricity: Decimal
    water: Decimal
    gas: Decimal


@dataclass
class UtilityBillResult:
    electricity_cost: Decimal
    water_cost: Decimal
    total_cost: Decimal
    electricity_usage: Decimal
    water_usage: Decimal
    electricity_price: Decimal
    water_price: Decimal
    # Absents (None) quand il n'y a pas de gaz, à distinguer d'une consommation nulle
    gas_cost: Optional[Decimal] = None
    gas_usage: Optional[Decimal] = None
    gas_price: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "electricity_cost": self.electricity_cost,
            "water_cost": self.water_cost,
            "total_cost": self.total_cost,
            "electricity_usage": self.electricity_usage,
            "water_usage": self.water_usage,
            "electricity_price": self.electricity_price,
            "water_price": self.water_price,
        }
        if self.gas_usage is not None:
            data.update(gas_cost=self.gas_cost, gas_usage=self.gas_usage, gas_price=self.gas_price)
        return data


@dataclass
class RentCalculationResult:
    monthly_rent: Decimal
    payment_cycle: str
    cycle_multiplier: int
    total_rent: Decimal
    deposit: Decimal
    key_deposit: Decimal
    cleaning_fee: Decimal
    total_amount: Decimal


@dataclass
class ReminderStatus:
    should_remind: bool
    days_left: int
    status: ReminderLevel
    message: str


def resolve_unit_prices(
    overrides: Optional[Dict[str, Number]],
    billing_settings: Optional[BillingSettings]
) -> UnitPrices:
    """
    Prix effectifs : surcharge du compteur > paramètre global > valeur de secours.
    billing_settings à None signifie que le store est injoignable.
    """
    settings = billing_settings or BillingSettings.fallback()
    overrides = overrides or {}

    def pick(name: str, setting_value: Decimal) -> Decimal:
        value = overrides.get(name)
        return to_decimal(value) if value is not None else setting_value

    return UnitPrices(
        electricity=pick("electricity", settings.electricity_price),
        water=pick("water", settings.water_price),
        gas=pick("gas", settings.gas_price),
    )


def resolve_meter_unit_price(meter, billing_settings: Optional[BillingSettings]) -> Decimal:
    """Prix d'un compteur : sa surcharge, sinon le prix global de son type"""
    if meter.unit_price:
        return to_decimal(meter.unit_price)
    settings = billing_settings or BillingSettings.fallback()
    return getattr(settings, METER_PRICE_KEYS[MeterType(meter.meter_type)])


def _compute_utility_bill(
    electricity_usage: Number,
    water_usage: Number,
    gas_usage: Number,
    prices: UnitPrices
) -> UtilityBillResult:
    electricity_usage = to_decimal(electricity_usage)
    water_usage = to_decimal(water_usage)
    gas_usage = to_decimal(gas_usage)

    electricity_cost = round_money(electricity_usage * prices.electricity)
    water_cost = round_money(water_usage * prices.water)
    gas_cost = round_money(gas_usage * prices.gas) if gas_usage > 0 else Decimal("0")

    result = UtilityBillResult(
        electricity_cost=electricity_cost,
        water_cost=water_cost,
        total_cost=round_money(electricity_cost + water_cost + gas_cost),
        electricity_usage=electricity_usage,
        water_usage=water_usage,
        electricity_price=prices.electricity,
        water_price=prices.water,
    )
    if gas_usage > 0:
        result.gas_cost = gas_cost
        result.gas_usage = gas_usage
        result.gas_price = prices.gas
    return result


def calculate_utility_bill(
    db: Session,
    electricity_usage: Number,
    water_usage: Number,
    gas_usage: Number = 0,
    overrides: Optional[Dict[str, Number]] = None
) -> UtilityBillResult:
    """Calcul des charges avec les paramètres lus en base"""
    settings = LiveSettingsProvider(db).get_billing_settings()
    return _compute_utility_bill(electricity_usage, water_usage, gas_usage, resolve_unit_prices(overrides, settings))


def calculate_utility_bill_cached(
    electricity_usage: Number,
    water_usage: Number,
    gas_usage: Number = 0,
    overrides: Optional[Dict[str, Number]] = None,
    snapshot: Optional[Dict[str, Any]] = None
) -> UtilityBillResult:
    """
    Calcul des charges sans accès au store, sur l'instantané local des paramètres.
    Même résultat que calculate_utility_bill pour les mêmes paramètres.
    """
    settings = CachedSettingsProvider(snapshot).get_billing_settings()
    return _compute_utility_bill(electricity_usage, water_usage, gas_usage, resolve_unit_prices(overrides, settings))


def calculate_rent_bill(
    monthly_rent: Number,
    payment_cycle: str,
    deposit_months: int = 1,
    key_deposit: Number = DEFAULT_KEY_DEPOSIT,
    cleaning_fee: Number = 0
) -> RentCalculationResult:
    """
    Loyer d'un cycle et total à l'entrée. Cycle inconnu : mensuel.
    """
    monthly_rent = to_decimal(monthly_rent)
    multiplier = RENT_CYCLE_MULTIPLIERS.get(payment_cycle, 1)

    total_rent = round_money(monthly_rent * multiplier)
    deposit = round_money(monthly_rent * deposit_months)
    key_deposit = round_money(key_deposit)
    cleaning_fee = round_money(cleaning_fee)

    return RentCalculationResult(
        monthly_rent=round_money(monthly_rent),
        payment_cycle=payment_cycle,
        cycle_multiplier=multiplier,
        total_rent=total_rent,
        deposit=deposit,
        key_deposit=key_deposit,
        cleaning_fee=cleaning_fee,
        total_amount=round_money(total_rent + deposit + key_deposit + cleaning_fee),
    )


def get_reminder_status(
    due_date: date,
    today: Optional[date] = None,
    reminder_days: int = DEFAULT_REMINDER_DAYS
) -> ReminderStatus:
    """
    Niveau de rappel d'une échéance
    """
    today = today or date.today()
    days_left = (due_date - today).days

    if days_left < 0:
        status, message = ReminderLevel.OVERDUE, f"已逾期 {abs(days_left)} 天"
    elif days_left == 0:
        status, message = ReminderLevel.URGENT, "今日到期"
    elif days_left <= URGENT_REMINDER_DAYS:
        status, message = ReminderLevel.URGENT, f"{days_left} 天后到期"
    elif days_left <= DEFAULT_REMINDER_DAYS:
        status, message = ReminderLevel.WARNING, f"{days_left} 天后到期"
    else:
        status, message = ReminderLevel.NORMAL, f"{days_left} 天后到期"

    return ReminderStatus(
        should_remind=0 <= days_left <= reminder_days,
        days_left=days_left,
        status=status,
        message=message,
    )


def format_payment_cycle(cycle: str) -> str:
    return PAYMENT_CYCLE_LABELS.get(cycle, cycle)
