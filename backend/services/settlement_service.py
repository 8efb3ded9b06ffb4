"""
Calcul du solde de départ d'un contrat (prorata du loyer, dépôt, dégâts)
"""
from dataclasses import dataclass, asdict, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from constants import DAYS_PER_MONTH
from enums import SettlementType
from models import Bill, Contract
from services.money import Number, to_decimal, round_money, format_amount

ZERO = Decimal("0.00")


@dataclass
class CheckoutSettlement:
    actual_days: int
    total_days: int
    daily_rent: Decimal
    should_pay_rent: Decimal
    paid_rent: Decimal
    rent_difference: Decimal
    deposit_refund: Decimal
    refund_amount: Decimal
    additional_amount: Decimal
    damage_assessment: Decimal
    settlement_type: SettlementType
    description: str

    @property
    def net_amount(self) -> Decimal:
        """Positif : remboursement au locataire, négatif : somme due"""
        return round_money(self.refund_amount - self.additional_amount)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SettlementLine:
    label: str
    amount: Decimal
    bill_id: Optional[int] = None


@dataclass
class DetailedSettlement:
    refund_items: Dict[str, Decimal]
    charge_items: Dict[str, Decimal]
    unpaid_bill_items: List[SettlementLine] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def settlement_type_for(refund_amount: Decimal, additional_amount: Decimal) -> SettlementType:
    if refund_amount > additional_amount:
        return SettlementType.REFUND
    if refund_amount < additional_amount:
        return SettlementType.CHARGE
    return SettlementType.BALANCED


def calculate_checkout_settlement(
    contract: Contract,
    checkout_date: date,
    damage_assessment: Number = 0,
    paid_rent: Optional[Number] = None
) -> CheckoutSettlement:
    """
    Solde de départ

    Args:
        contract: contrat (dates, loyer mensuel, loyer total, dépôt)
        checkout_date: date de départ
        damage_assessment: montant des dégâts retenu sur le dépôt
        paid_rent: loyer effectivement perçu, loyer total du contrat par défaut

    Le loyer dû est proratisé sur une base fixe de 30 jours par mois, le jour
    de début étant compté.
    """
    monthly_rent = to_decimal(contract.monthly_rent)
    deposit = to_decimal(contract.deposit)
    damage = round_money(damage_assessment)

    actual_days = (checkout_date - contract.start_date).days + 1
    total_days = (contract.end_date - contract.start_date).days + 1

    daily_rent = monthly_rent / DAYS_PER_MONTH
    should_pay_rent = round_money(actual_days * daily_rent)
    paid = round_money(contract.total_rent if paid_rent is None else paid_rent)
    rent_difference = round_money(paid - should_pay_rent)
    deposit_refund = round_money(max(Decimal("0"), deposit - damage))

    refund_amount = ZERO
    additional_amount = ZERO

    if rent_difference > 0:
        refund_amount = round_money(rent_difference + deposit_refund)
        description = f"多付租金退还: {format_amount(rent_difference)}, 押金退还: {format_amount(deposit_refund)}"
    elif rent_difference < 0:
        need_pay = abs(rent_difference)
        if deposit_refund >= need_pay:
            refund_amount = round_money(deposit_refund - need_pay)
            description = f"押金抵扣欠缴租金: {format_amount(need_pay)}, 押金退还: {format_amount(refund_amount)}"
        else:
            additional_amount = round_money(need_pay - deposit_refund)
            description = f"押金全部抵扣: {format_amount(deposit_refund)}, 需补缴: {format_amount(additional_amount)}"
    else:
        refund_amount = deposit_refund
        description = f"押金退还: {format_amount(deposit_refund)}"

    if damage > 0:
        description += f", 扣除损坏赔偿: {format_amount(damage)}"

    return CheckoutSettlement(
        actual_days=actual_days,
        total_days=total_days,
        daily_rent=round_money(daily_rent),
        should_pay_rent=should_pay_rent,
        paid_rent=paid,
        rent_difference=rent_difference,
        deposit_refund=deposit_refund,
        refund_amount=refund_amount,
        additional_amount=additional_amount,
        damage_assessment=damage,
        settlement_type=settlement_type_for(refund_amount, additional_amount),
        description=description,
    )


def calculate_detailed_settlement(
    contract: Contract,
    checkout_date: date,
    damage_assessment: Number = 0,
    unpaid_bills: Iterable[Bill] = (),
    overrides: Optional[Dict[str, Number]] = None,
    paid_rent: Optional[Number] = None
) -> DetailedSettlement:
    """
    Vue détaillée pour la revue avant départ.
    L'opérateur peut corriger chaque ligne, les sous-totaux sont recalculés.
    """
    settlement = calculate_checkout_settlement(contract, checkout_date, damage_assessment, paid_rent)

    refund_items = {
        "rent_refund": round_money(max(Decimal("0"), settlement.rent_difference)),
        "deposit_refund": settlement.deposit_refund,
        "key_deposit_refund": round_money(contract.key_deposit or 0),
    }
    charge_items = {
        "rent_charge": round_money(max(Decimal("0"), -settlement.rent_difference)),
        "damage_charge": settlement.damage_assessment,
        "cleaning_charge": ZERO,
    }

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key in refund_items:
            refund_items[key] = round_money(value)
        elif key in charge_items:
            charge_items[key] = round_money(value)

    unpaid_lines = [
        SettlementLine(
            label=f"{bill.bill_type.value} {bill.period or bill.bill_number}",
            amount=round_money(bill.pending_amount),
            bill_id=bill.id,
        )
        for bill in unpaid_bills
        if to_decimal(bill.pending_amount) != 0
    ]

    refund_subtotal = round_money(sum(refund_items.values(), Decimal("0")))
    charge_subtotal = round_money(
        sum(charge_items.values(), Decimal("0")) + sum((line.amount for line in unpaid_lines), Decimal("0"))
    )
    refund_items["subtotal"] = refund_subtotal
    charge_items["subtotal"] = charge_subtotal

    net_amount = round_money(refund_subtotal - charge_subtotal)

    return DetailedSettlement(
        refund_items=refund_items,
        charge_items=charge_items,
        unpaid_bill_items=unpaid_lines,
        summary={
            "total_refund": refund_subtotal,
            "total_charge": charge_subtotal,
            "net_amount": net_amount,
            "settlement_type": settlement_type_for(refund_subtotal, charge_subtotal),
        },
    )
