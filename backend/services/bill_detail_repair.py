"""
Réparation des lignes de facture de charges

Une facture agrégée garde dans ses métadonnées la ventilation par compteur.
Si ses lignes (BillDetail) ont disparu, elles sont reconstruites depuis cette
ventilation et les relevés concernés repassent BILLED.
Les factures SINGLE référencent directement leur relevé et n'ont pas de lignes.
"""
from decimal import Decimal
from typing import Any, Dict, List
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from audit_logger import AuditLogger
from enums import ActionType, BillType, EntityType, ReadingStatus
from models import Bill, BillDetail, MeterReading
from schemas import UtilityBreakdownMetadata
from services.bill_service import parse_metadata

logger = logging.getLogger(__name__)


def _missing_details_query(db: Session):
    """Factures de charges agrégées sans aucune ligne"""
    return db.query(Bill).filter(
        Bill.bill_type == BillType.UTILITIES,
        Bill.meter_reading_id.is_(None),
        ~Bill.details.any()
    )


def validate_bill_details_integrity(db: Session) -> Dict[str, int]:
    total_bills = db.query(func.count(Bill.id)).scalar() or 0
    bills_with_details = db.query(func.count(Bill.id)).filter(Bill.details.any()).scalar() or 0
    utility_bills_without_details = _missing_details_query(db).count()

    if utility_bills_without_details:
        logger.warning(f"{utility_bills_without_details} factures de charges sans lignes")

    return {
        "total_bills": total_bills,
        "bills_with_details": bills_with_details,
        "bills_without_details": total_bills - bills_with_details,
        "utility_bills_without_details": utility_bills_without_details,
    }


def repair_single_bill_details(db: Session, bill: Bill) -> bool:
    """
    Reconstruit les lignes d'une facture depuis sa ventilation.
    Retourne False si la facture a déjà des lignes ou n'a pas de ventilation.
    """
    if db.query(BillDetail).filter(BillDetail.bill_id == bill.id).count():
        return False

    metadata = parse_metadata(bill)
    if not isinstance(metadata, UtilityBreakdownMetadata) or not metadata.breakdown:
        return False

    reading_ids = [line.meter_reading_id for line in metadata.breakdown]
    readings = {
        reading.id: reading
        for reading in db.query(MeterReading).filter(MeterReading.id.in_(reading_ids)).all()
    }
    missing = [reading_id for reading_id in reading_ids if reading_id not in readings]
    if missing:
        raise LookupError(f"relevés introuvables: {missing}")

    for line in metadata.breakdown:
        reading = readings[line.meter_reading_id]
        db.add(BillDetail(
            bill_id=bill.id,
            meter_reading_id=reading.id,
            meter_type=line.meter_type,
            meter_name=line.meter_name,
            usage=line.usage,
            unit=line.unit,
            unit_price=line.unit_price,
            amount=line.amount,
            previous_reading=reading.previous_reading or Decimal("0"),
            current_reading=reading.current_reading,
            reading_date=reading.reading_date,
            price_source=line.price_source,
        ))

    db.query(MeterReading).filter(MeterReading.id.in_(reading_ids)).update(
        {MeterReading.is_billed: True, MeterReading.status: ReadingStatus.BILLED},
        synchronize_session="fetch"
    )
    db.flush()
    return True


def repair_all_utility_bill_details(db: Session) -> Dict[str, Any]:
    """
    Répare toutes les factures agrégées sans lignes en une transaction.
    Chaque facture passe dans un savepoint : un échec est noté sans bloquer les autres.
    """
    repaired: List[str] = []
    skipped: List[str] = []
    errors: List[str] = []

    bills = _missing_details_query(db).order_by(Bill.id).all()
    logger.info(f"{len(bills)} factures de charges à réparer")

    try:
        for bill in bills:
            try:
                with db.begin_nested():
                    fixed = repair_single_bill_details(db, bill)
            except Exception as e:
                logger.error(f"Réparation de la facture {bill.bill_number} en échec: {e}")
                errors.append(f"修复账单 {bill.bill_number} 失败: {e}")
                continue
            (repaired if fixed else skipped).append(bill.bill_number)

        if repaired:
            AuditLogger.log_action(
                db, ActionType.REPAIR, EntityType.BILL,
                f"Lignes de facture reconstruites pour {len(repaired)} factures",
                details={"repaired": repaired, "skipped": skipped},
                commit=False
            )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("Échec de la réparation des lignes de facture")
        return {
            "success": False,
            "repaired_count": 0,
            "skipped_count": 0,
            "errors": errors + [f"修复过程失败: {e}"],
            "repaired_bills": [],
        }

    logger.info(f"Réparation terminée: {len(repaired)} réparées, {len(skipped)} ignorées, {len(errors)} erreurs")
    return {
        "success": True,
        "repaired_count": len(repaired),
        "skipped_count": len(skipped),
        "errors": errors,
        "repaired_bills": repaired,
    }


def cleanup_duplicate_details(db: Session) -> int:
    """Supprime les lignes en double (même facture, type et relevé), garde la plus ancienne"""
    details = db.query(BillDetail).order_by(BillDetail.bill_id, BillDetail.id).all()

    seen = set()
    duplicates = []
    for detail in details:
        key = (detail.bill_id, detail.meter_type, detail.meter_reading_id)
        if key in seen:
            duplicates.append(detail)
        else:
            seen.add(key)

    for detail in duplicates:
        db.delete(detail)
    db.commit()

    if duplicates:
        logger.info(f"{len(duplicates)} lignes de facture en double supprimées")
    return len(duplicates)
