"""
Agrégation des relevés de compteurs en factures de charges

Deux stratégies :
    SINGLE      une facture par relevé, liée directement au relevé
    AGGREGATED  une facture par contrat avec une ligne de détail par relevé,
                les relevés passent BILLED dans la même transaction
"""
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union
import logging

from sqlalchemy.orm import Session

from constants import (
    METER_FEE_LABELS, DEFAULT_FEE_LABEL, METER_TYPE_LABELS, FALLBACK_UNIT,
    UTILITY_BILL_DUE_DAYS, SYSTEM_OPERATOR, ERROR_MESSAGES
)
from enums import AggregationStrategy, BillType, MeterType, PriceSource, ReadingStatus
from error_handlers import DomainValidationError
from models import Bill, BillDetail, Contract, MeterReading
from schemas import UtilityLine, UtilitySingleMetadata, UtilityBreakdownMetadata
from services.bill_service import create_bill
from services.money import to_decimal, round_money, format_plain

logger = logging.getLogger(__name__)


@dataclass
class MeterReadingData:
    """Forme canonique d'un relevé prêt à facturer"""
    meter_id: int
    meter_reading_id: int
    meter_type: MeterType
    meter_name: str
    usage: Decimal
    unit_price: Decimal
    amount: Decimal
    unit: str
    previous_reading: Decimal
    current_reading: Decimal
    reading_date: date
    price_source: PriceSource

    def to_line(self) -> UtilityLine:
        return UtilityLine(
            meter_id=self.meter_id,
            meter_reading_id=self.meter_reading_id,
            meter_type=self.meter_type,
            meter_name=self.meter_name,
            usage=self.usage,
            unit=self.unit,
            unit_price=self.unit_price,
            amount=self.amount,
            price_source=self.price_source,
        )


def _normalize_reading(reading: MeterReading) -> MeterReadingData:
    meter = reading.meter
    meter_type = MeterType(meter.meter_type)

    usage = to_decimal(reading.usage)
    unit_price = to_decimal(reading.unit_price) if reading.unit_price else to_decimal(meter.unit_price)
    amount = to_decimal(reading.amount)

    # Montant enregistré à 0 alors que consommation et prix sont connus : on le recalcule
    if amount == 0 and usage > 0 and unit_price > 0:
        amount = usage * unit_price
        logger.info(f"Montant du relevé {reading.id} recalculé: {round_money(amount)}")

    return MeterReadingData(
        meter_id=meter.id,
        meter_reading_id=reading.id,
        meter_type=meter_type,
        meter_name=meter.display_name or METER_TYPE_LABELS.get(meter_type, f"{meter_type.value}表"),
        usage=usage,
        unit_price=unit_price,
        amount=round_money(amount),
        unit=meter.unit or FALLBACK_UNIT,
        previous_reading=to_decimal(reading.previous_reading),
        current_reading=to_decimal(reading.current_reading),
        reading_date=reading.reading_date,
        price_source=PriceSource.METER_CONFIG if meter.unit_price else PriceSource.GLOBAL_SETTING,
    )


def group_readings_by_contract(readings: Iterable[MeterReading]) -> Dict[int, List[MeterReadingData]]:
    """
    Regroupe les relevés par contrat.
    Un relevé sans contrat ou sans compteur est ignoré (journalisé, jamais levé).
    """
    groups: Dict[int, List[MeterReadingData]] = {}

    for reading in readings:
        if not reading.contract_id:
            logger.warning(f"Relevé {reading.id} sans contrat, ignoré")
            continue
        if reading.meter is None:
            logger.warning(f"Relevé {reading.id} sans compteur, ignoré")
            continue

        groups.setdefault(reading.contract_id, []).append(_normalize_reading(reading))

    return groups


def parse_strategy(preference: Union[str, AggregationStrategy, None]) -> Optional[AggregationStrategy]:
    """
    Normalise une préférence de stratégie (insensible à la casse).
    Une valeur inconnue est rejetée.
    """
    if preference is None or preference == "":
        return None
    if isinstance(preference, AggregationStrategy):
        return preference

    normalized = str(preference).strip().upper()
    try:
        return AggregationStrategy(normalized)
    except ValueError:
        raise DomainValidationError(
            ERROR_MESSAGES["INVALID_STRATEGY"],
            error_code="INVALID_AGGREGATION_STRATEGY",
            details={"value": str(preference)}
        )


def select_aggregation_strategy(
    reading_list: List[MeterReadingData],
    user_preference: Union[str, AggregationStrategy, None] = None
) -> AggregationStrategy:
    """
    La préférence explicite l'emporte, sinon plusieurs compteurs : AGGREGATED
    """
    strategy = parse_strategy(user_preference)
    if strategy is not None:
        return strategy

    meter_ids = {data.meter_id for data in reading_list}
    return AggregationStrategy.AGGREGATED if len(meter_ids) > 1 else AggregationStrategy.SINGLE


def fee_label(meter_type: MeterType) -> str:
    return METER_FEE_LABELS.get(meter_type, DEFAULT_FEE_LABEL)


def describe_line(data: MeterReadingData) -> str:
    """Ex. 电费30.00元(50度)"""
    return f"{fee_label(data.meter_type)}{data.amount}元({format_plain(data.usage)}{data.unit})"


def single_bill_remarks(data: MeterReadingData) -> str:
    return f"{fee_label(data.meter_type)}账单 - {data.amount}元({format_plain(data.usage)}{data.unit})"


def aggregated_bill_remarks(reading_list: List[MeterReadingData]) -> str:
    return f"{DEFAULT_FEE_LABEL}账单 - " + "，".join(describe_line(data) for data in reading_list)


def calculate_due_date(reading_date: date) -> date:
    return reading_date + timedelta(days=UTILITY_BILL_DUE_DAYS)


def period_for(day: date) -> str:
    """Mois civil du jour donné, ex. 2024-03-01 至 2024-03-31"""
    last_day = monthrange(day.year, day.month)[1]
    start = day.replace(day=1)
    end = day.replace(day=last_day)
    return f"{start.isoformat()} 至 {end.isoformat()}"


def _generate_single_bills(
    db: Session,
    contract: Contract,
    reading_list: List[MeterReadingData],
    period: Optional[str],
    operator: str
) -> List[Bill]:
    bills = []
    for data in reading_list:
        bill = create_bill(
            db,
            contract=contract,
            bill_type=BillType.UTILITIES,
            amount=data.amount,
            due_date=calculate_due_date(data.reading_date),
            period=period or period_for(data.reading_date),
            remarks=single_bill_remarks(data),
            metadata=UtilitySingleMetadata(generated_at=datetime.utcnow(), line=data.to_line()),
            meter_reading_id=data.meter_reading_id,
            operator=operator
        )
        bills.append(bill)
    return bills


def _generate_aggregated_bill(
    db: Session,
    contract: Contract,
    reading_list: List[MeterReadingData],
    period: Optional[str],
    operator: str
) -> Bill:
    total_amount = round_money(sum((data.amount for data in reading_list), Decimal("0")))
    total_usage = sum((data.usage for data in reading_list), Decimal("0"))
    first_date = reading_list[0].reading_date

    metadata = UtilityBreakdownMetadata(
        generated_at=datetime.utcnow(),
        meter_count=len(reading_list),
        total_usage=total_usage,
        total_amount=total_amount,
        breakdown=[data.to_line() for data in reading_list],
    )

    bill = create_bill(
        db,
        contract=contract,
        bill_type=BillType.UTILITIES,
        amount=total_amount,
        due_date=calculate_due_date(first_date),
        period=period or period_for(first_date),
        remarks=aggregated_bill_remarks(reading_list),
        metadata=metadata,
        operator=operator
    )

    for data in reading_list:
        db.add(BillDetail(
            bill_id=bill.id,
            meter_reading_id=data.meter_reading_id,
            meter_type=data.meter_type,
            meter_name=data.meter_name,
            usage=data.usage,
            unit=data.unit,
            unit_price=data.unit_price,
            amount=data.amount,
            previous_reading=data.previous_reading or Decimal("0"),
            current_reading=data.current_reading,
            reading_date=data.reading_date,
            price_source=data.price_source,
        ))

    reading_ids = [data.meter_reading_id for data in reading_list]
    db.query(MeterReading).filter(MeterReading.id.in_(reading_ids)).update(
        {MeterReading.is_billed: True, MeterReading.status: ReadingStatus.BILLED},
        synchronize_session="fetch"
    )
    db.flush()
    return bill


def generate_aggregated_utility_bill(
    db: Session,
    contract: Contract,
    reading_list: List[MeterReadingData],
    strategy: Union[str, AggregationStrategy, None] = None,
    period: Optional[str] = None,
    operator: str = SYSTEM_OPERATOR
) -> List[Bill]:
    """
    Génère les factures de charges d'un contrat

    Args:
        db: Session de base de données
        contract: contrat facturé
        reading_list: relevés normalisés du contrat
        strategy: SINGLE, AGGREGATED ou None pour le choix automatique
        period: libellé de période, mois civil du relevé par défaut
        operator: opérateur inscrit sur les factures

    Returns:
        Les factures créées (une seule pour la stratégie AGGREGATED)

    Tout est écrit dans une seule transaction : en cas d'erreur aucun relevé
    n'est facturé partiellement.
    """
    if not reading_list:
        return []

    selected = select_aggregation_strategy(reading_list, strategy)
    logger.info(f"Contrat {contract.contract_number}: {len(reading_list)} relevés, stratégie {selected.value}")

    try:
        if selected == AggregationStrategy.AGGREGATED:
            bills = [_generate_aggregated_bill(db, contract, reading_list, period, operator)]
        else:
            bills = _generate_single_bills(db, contract, reading_list, period, operator)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(f"Échec de la facturation des charges du contrat {contract.contract_number}, rollback")
        raise

    for bill in bills:
        db.refresh(bill)
    return bills
