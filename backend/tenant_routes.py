"""
Routes API pour la gestion des locataires
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from database import get_db
from models import Renter, Contract
from schemas import RenterCreate, RenterOut, ContractOut
from audit_logger import AuditLogger, get_model_data
from enums import ActionType, EntityType
from error_handlers import BusinessLogicErrorHandler

router = APIRouter(prefix="/api/renters", tags=["renters"])


def get_renter_or_404(renter_id: int, db: Session) -> Renter:
    renter = db.query(Renter).filter(Renter.id == renter_id).first()
    if not renter:
        raise BusinessLogicErrorHandler.not_found("RENTER_NOT_FOUND", "Renter", renter_id)
    return renter


@router.post("/", response_model=RenterOut)
async def create_renter(renter_data: RenterCreate, db: Session = Depends(get_db)):
    """Enregistre un nouveau locataire"""
    renter = Renter(**renter_data.model_dump())
    db.add(renter)
    db.commit()
    db.refresh(renter)

    AuditLogger.log_crud_action(
        db, ActionType.CREATE, EntityType.RENTER, renter.id,
        f"Locataire {renter.name} créé", after_data=get_model_data(renter)
    )
    return renter


@router.get("/{renter_id}", response_model=RenterOut)
async def get_renter(renter_id: int, db: Session = Depends(get_db)):
    return get_renter_or_404(renter_id, db)


@router.get("/{renter_id}/contracts", response_model=List[ContractOut])
async def get_renter_contracts(renter_id: int, db: Session = Depends(get_db)):
    """Historique des contrats du locataire, le plus récent d'abord"""
    get_renter_or_404(renter_id, db)
    return db.query(Contract).filter(Contract.renter_id == renter_id).order_by(
        Contract.start_date.desc(), Contract.id.desc()
    ).all()
