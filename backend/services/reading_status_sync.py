"""
Cohérence entre relevés et lignes de facture

Un relevé est facturé (is_billed, statut BILLED) si et seulement si une ligne
de facture (BillDetail) le référence. Les écarts sont détectés puis réparés
en redérivant le statut depuis la présence des lignes.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List
import logging

from sqlalchemy import func, or_, and_
from sqlalchemy.orm import Session

from audit_logger import AuditLogger
from enums import ActionType, EntityType, ReadingStatus
from models import MeterReading

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 20


def _orphaned_filter():
    """Marqué facturé sans aucune ligne de facture"""
    return and_(
        or_(MeterReading.status == ReadingStatus.BILLED, MeterReading.is_billed == True),
        ~MeterReading.bill_details.any()
    )


def _inconsistent_filter():
    """Référencé par une ligne de facture sans être marqué facturé"""
    return and_(
        MeterReading.bill_details.any(),
        or_(MeterReading.status != ReadingStatus.BILLED, MeterReading.is_billed == False)
    )


def _sample(readings: List[MeterReading]) -> List[Dict[str, Any]]:
    return [
        {
            "id": reading.id,
            "meter_id": reading.meter_id,
            "contract_id": reading.contract_id,
            "status": reading.status.value,
            "is_billed": reading.is_billed,
            "reading_date": reading.reading_date.isoformat(),
        }
        for reading in readings
    ]


def validate_reading_bill_consistency(db: Session) -> Dict[str, Any]:
    orphaned_query = db.query(MeterReading).filter(_orphaned_filter())
    inconsistent_query = db.query(MeterReading).filter(_inconsistent_filter())

    orphaned_count = orphaned_query.count()
    inconsistent_count = inconsistent_query.count()

    if orphaned_count or inconsistent_count:
        logger.warning(f"Incohérences relevés/factures: {orphaned_count} orphelins, {inconsistent_count} non marqués")

    return {
        "orphaned_count": orphaned_count,
        "inconsistent_count": inconsistent_count,
        "total_inconsistencies": orphaned_count + inconsistent_count,
        "orphaned_readings": _sample(orphaned_query.order_by(MeterReading.id).limit(SAMPLE_SIZE).all()),
        "inconsistent_readings": _sample(inconsistent_query.order_by(MeterReading.id).limit(SAMPLE_SIZE).all()),
    }


def repair_reading_status_inconsistencies(db: Session) -> Dict[str, Any]:
    """
    Orphelins : repassent PENDING non facturés.
    Non marqués : passent BILLED facturés.
    """
    before = validate_reading_bill_consistency(db)
    errors = []
    repaired_orphaned = 0
    repaired_inconsistent = 0

    try:
        orphaned_ids = [r_id for (r_id,) in db.query(MeterReading.id).filter(_orphaned_filter()).all()]
        inconsistent_ids = [r_id for (r_id,) in db.query(MeterReading.id).filter(_inconsistent_filter()).all()]

        if orphaned_ids:
            repaired_orphaned = db.query(MeterReading).filter(MeterReading.id.in_(orphaned_ids)).update(
                {MeterReading.status: ReadingStatus.PENDING, MeterReading.is_billed: False},
                synchronize_session=False
            )
        if inconsistent_ids:
            repaired_inconsistent = db.query(MeterReading).filter(MeterReading.id.in_(inconsistent_ids)).update(
                {MeterReading.status: ReadingStatus.BILLED, MeterReading.is_billed: True},
                synchronize_session=False
            )

        AuditLogger.log_action(
            db, ActionType.REPAIR, EntityType.METER_READING,
            f"Réparation des statuts de relevés: {repaired_orphaned} orphelins, {repaired_inconsistent} non marqués",
            details={"orphaned_ids": orphaned_ids, "inconsistent_ids": inconsistent_ids},
            commit=False
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("Échec de la réparation des statuts de relevés")
        errors.append(str(e))
        repaired_orphaned = repaired_inconsistent = 0

    db.expire_all()
    after = validate_reading_bill_consistency(db)
    logger.info(f"Statuts de relevés réparés: {repaired_orphaned} orphelins, {repaired_inconsistent} non marqués")

    return {
        "repaired_orphaned": repaired_orphaned,
        "repaired_inconsistent": repaired_inconsistent,
        "errors": errors,
        "before": {
            "orphaned_count": before["orphaned_count"],
            "inconsistent_count": before["inconsistent_count"],
        },
        "after": {
            "orphaned_count": after["orphaned_count"],
            "inconsistent_count": after["inconsistent_count"],
        },
        "fully_repaired": after["total_inconsistencies"] == 0,
    }


def get_reading_status_stats(db: Session) -> Dict[str, Any]:
    status_rows = db.query(MeterReading.status, func.count(MeterReading.id)).group_by(MeterReading.status).all()
    billed_rows = db.query(MeterReading.is_billed, func.count(MeterReading.id)).group_by(MeterReading.is_billed).all()

    total_readings = db.query(func.count(MeterReading.id)).scalar() or 0
    total_billed = db.query(func.count(MeterReading.id)).filter(MeterReading.is_billed == True).scalar() or 0
    recent_changes = db.query(func.count(MeterReading.id)).filter(
        MeterReading.updated_at >= datetime.utcnow() - timedelta(days=7)
    ).scalar() or 0

    return {
        "status_distribution": [{"status": status.value, "count": count} for status, count in status_rows],
        "billed_distribution": [{"is_billed": bool(is_billed), "count": count} for is_billed, count in billed_rows],
        "summary": {
            "total_readings": total_readings,
            "total_billed": total_billed,
            "billed_percentage": round(total_billed * 100 / total_readings) if total_readings else 0,
            "recent_changes": recent_changes,
        },
    }
