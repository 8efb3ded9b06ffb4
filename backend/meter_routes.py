"""
Routes API des relevés de compteurs et de leur cohérence avec les factures
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas import MeterReadingBatch, MeterReadingBatchResult
from services.meter_service import MeterService
from services.reading_status_sync import (
    validate_reading_bill_consistency, repair_reading_status_inconsistencies, get_reading_status_stats
)

router = APIRouter(prefix="/api/meter-readings", tags=["meter-readings"])


@router.post("/", response_model=MeterReadingBatchResult)
async def submit_meter_readings(batch: MeterReadingBatch, db: Session = Depends(get_db)):
    """
    Saisie d'un lot de relevés, avec génération des factures de charges
    selon la stratégie demandée (automatique si absente)
    """
    return MeterService.submit_readings(db, batch)


@router.get("/status-check")
async def check_reading_status(db: Session = Depends(get_db)):
    return validate_reading_bill_consistency(db)


@router.post("/repair-status")
async def repair_reading_status(db: Session = Depends(get_db)):
    """Réaligne le statut des relevés sur la présence de lignes de facture"""
    return repair_reading_status_inconsistencies(db)


@router.get("/stats")
async def reading_status_stats(db: Session = Depends(get_db)):
    return get_reading_status_stats(db)
