"""
Génération automatique des factures à la signature d'un contrat

Toutes les factures connues à la signature sont créées d'un coup :
    1. dépôt de garantie (DEPOSIT), dû au début du contrat
    2. dépôt pour les clés et frais de ménage (OTHER), s'ils sont non nuls
    3. loyers de chaque période selon le cycle de paiement
"""
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from constants import RENT_CYCLE_MULTIPLIERS, PAYMENT_CYCLE_LABELS, SYSTEM_OPERATOR, DEFAULT_PAYMENT_METHOD
from enums import BillType, PaymentCycle
from models import Bill, Contract
from schemas import RentBillMetadata
from services.bill_calculations import calculate_rent_bill
from services.bill_service import create_bill
from services.money import to_decimal

logger = logging.getLogger(__name__)


@dataclass
class BillPeriod:
    period_start: date
    period_end: date
    due_date: date

    @property
    def label(self) -> str:
        return f"{self.period_start.isoformat()} 至 {self.period_end.isoformat()}"


def parse_payment_cycle(payment_method: Optional[str]) -> PaymentCycle:
    """
    Déduit le cycle du libellé libre du mode de paiement (月付, 季付, 半年付, 年付...).
    L'ordre compte : 半年 contient 年.
    """
    text = payment_method or ""
    if "季" in text or "3个月" in text:
        return PaymentCycle.QUARTERLY
    if "半年" in text or "6个月" in text:
        return PaymentCycle.SEMI_ANNUALLY
    if "年" in text or "12个月" in text:
        return PaymentCycle.ANNUALLY
    return PaymentCycle.MONTHLY


def add_months(day: date, months: int) -> date:
    """Même jour n mois plus tard, ramené au dernier jour du mois si besoin"""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, monthrange(year, month)[1]))


def calculate_all_bill_periods(start_date: date, end_date: date, cycle: PaymentCycle) -> List[BillPeriod]:
    """
    Découpe le contrat en périodes de facturation à partir de la date de début.
    La dernière période est tronquée à la date de fin.
    """
    months = RENT_CYCLE_MULTIPLIERS.get(cycle.value, 1)
    periods = []
    index = 0
    current = start_date

    while current <= end_date:
        index += 1
        next_start = add_months(start_date, months * index)
        period_end = min(next_start - timedelta(days=1), end_date)
        periods.append(BillPeriod(period_start=current, period_end=period_end, due_date=current))

        if period_end >= end_date:
            break
        current = next_start

    return periods


def _one_off_bills(db: Session, contract: Contract) -> List[Bill]:
    period = f"{contract.start_date.isoformat()} 至 {contract.end_date.isoformat()}"
    payment_method = contract.payment_method or DEFAULT_PAYMENT_METHOD
    bills = []

    one_offs = [
        (BillType.DEPOSIT, contract.deposit, f"押金账单 - 合同{contract.contract_number}"),
        (BillType.OTHER, contract.key_deposit, f"钥匙押金 - 合同{contract.contract_number}"),
        (BillType.OTHER, contract.cleaning_fee, f"清洁费 - 合同{contract.contract_number}"),
    ]
    for bill_type, amount, remarks in one_offs:
        if to_decimal(amount) <= 0:
            continue
        bills.append(create_bill(
            db,
            contract=contract,
            bill_type=bill_type,
            amount=amount,
            due_date=contract.start_date,
            period=period,
            remarks=remarks,
            payment_method=payment_method,
            operator=SYSTEM_OPERATOR
        ))
    return bills


def _rent_bill(db: Session, contract: Contract, cycle: PaymentCycle, period: BillPeriod) -> Bill:
    rent = calculate_rent_bill(contract.monthly_rent, cycle.value)
    return create_bill(
        db,
        contract=contract,
        bill_type=BillType.RENT,
        amount=rent.total_rent,
        due_date=period.due_date,
        period=period.label,
        remarks=f"{PAYMENT_CYCLE_LABELS[cycle.value]}租金 - 合同{contract.contract_number}",
        metadata=RentBillMetadata(
            payment_cycle=cycle.value,
            period_start=period.period_start,
            period_end=period.period_end,
            months=rent.cycle_multiplier,
        ),
        payment_method=contract.payment_method or DEFAULT_PAYMENT_METHOD,
        operator=SYSTEM_OPERATOR
    )


def generate_bills_on_contract_signed(db: Session, contract: Contract) -> List[Bill]:
    """
    Génère toutes les factures d'un contrat signé et valide la transaction.
    Sans effet si le contrat a déjà des factures.
    """
    existing = db.query(Bill).filter(Bill.contract_id == contract.id).count()
    if existing:
        logger.info(f"Contrat {contract.contract_number}: {existing} factures existantes, génération ignorée")
        return []

    cycle = parse_payment_cycle(contract.payment_method)
    try:
        bills = _one_off_bills(db, contract)
        for period in calculate_all_bill_periods(contract.start_date, contract.end_date, cycle):
            bills.append(_rent_bill(db, contract, cycle, period))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Échec de la génération des factures du contrat {contract.contract_number}")
        raise

    logger.info(f"Contrat {contract.contract_number}: {len(bills)} factures générées (cycle {cycle.value})")
    return bills


def check_missing_rent_bills(db: Session, contract: Contract) -> List[BillPeriod]:
    """Périodes de loyer attendues pour lesquelles aucune facture n'existe"""
    cycle = parse_payment_cycle(contract.payment_method)
    existing_periods = {
        period for (period,) in db.query(Bill.period).filter(
            Bill.contract_id == contract.id,
            Bill.bill_type == BillType.RENT
        ).all()
    }
    return [
        period for period in calculate_all_bill_periods(contract.start_date, contract.end_date, cycle)
        if period.label not in existing_periods
    ]
