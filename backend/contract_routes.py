"""
Routes API du cycle de vie des contrats
"""
from datetime import date
from decimal import Decimal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional

from database import get_db
from models import Bill
from enums import BillStatus
from schemas import (
    ContractCreate, ContractOut, ContractCreateResult, ContractCheckout, CheckoutResult,
    ContractRenew, RenewalDefaults, BillOut, SettlementLineOverride
)
from services.auto_bill_generator import generate_bills_on_contract_signed, check_missing_rent_bills
from services.contract_service import ContractService
from services.settlement_service import calculate_detailed_settlement

router = APIRouter(prefix="/api/contracts", tags=["contracts"])


@router.post("/", response_model=ContractCreateResult)
async def create_contract(contract_data: ContractCreate, db: Session = Depends(get_db)):
    """
    Crée un contrat et génère ses factures.
    La facturation ne bloque pas la création au-delà du délai configuré.
    """
    return await ContractService.create_contract_with_billing(db, contract_data)


# Routes à chemin fixe avant /{contract_id}
@router.post("/activate-pending")
async def activate_pending_contracts(
    today: Optional[date] = Query(None, description="Date de référence, aujourd'hui par défaut"),
    db: Session = Depends(get_db)
):
    """Active les contrats en attente arrivés à leur date de début"""
    return ContractService.activate_pending_contracts(db, today)


@router.post("/expire")
async def expire_contracts(
    today: Optional[date] = Query(None, description="Date de référence, aujourd'hui par défaut"),
    db: Session = Depends(get_db)
):
    expired = ContractService.expire_contracts(db, today)
    return {"expired": expired}


@router.get("/{contract_id}", response_model=ContractOut)
async def get_contract(contract_id: int, db: Session = Depends(get_db)):
    return ContractService.get_contract(db, contract_id)


@router.get("/{contract_id}/bills", response_model=List[BillOut])
async def get_contract_bills(contract_id: int, db: Session = Depends(get_db)):
    """Factures du contrat par échéance"""
    ContractService.get_contract(db, contract_id)
    return db.query(Bill).filter(Bill.contract_id == contract_id).order_by(Bill.due_date, Bill.id).all()


@router.post("/{contract_id}/generate-bills", response_model=List[BillOut])
async def generate_contract_bills(contract_id: int, db: Session = Depends(get_db)):
    """
    Relance la génération des factures initiales.
    Sans effet si le contrat a déjà des factures.
    """
    contract = ContractService.get_contract(db, contract_id)
    return generate_bills_on_contract_signed(db, contract)


@router.get("/{contract_id}/missing-rent-bills")
async def get_missing_rent_bills(contract_id: int, db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    contract = ContractService.get_contract(db, contract_id)
    return [
        {
            "period_start": period.period_start,
            "period_end": period.period_end,
            "due_date": period.due_date,
            "period": period.label,
        }
        for period in check_missing_rent_bills(db, contract)
    ]


@router.post("/{contract_id}/activate", response_model=ContractOut)
async def activate_contract(contract_id: int, db: Session = Depends(get_db)):
    return ContractService.activate_contract(db, contract_id)


# ==================== DÉPART ====================

@router.get("/{contract_id}/checkout/preview")
async def preview_checkout(
    contract_id: int,
    checkout_date: date,
    damage_assessment: Decimal = Query(Decimal("0"), ge=0),
    paid_rent: Optional[Decimal] = Query(None, ge=0),
    overrides: SettlementLineOverride = Depends(),
    db: Session = Depends(get_db)
):
    """
    Solde détaillé avant départ, avec corrections ligne par ligne.
    Rien n'est écrit en base.
    """
    contract = ContractService.get_contract(db, contract_id)
    unpaid_bills = db.query(Bill).filter(
        Bill.contract_id == contract.id,
        Bill.status.in_([BillStatus.PENDING, BillStatus.OVERDUE])
    ).order_by(Bill.due_date, Bill.id).all()

    detailed = calculate_detailed_settlement(
        contract, checkout_date, damage_assessment,
        unpaid_bills=unpaid_bills,
        overrides=overrides.model_dump(exclude_none=True),
        paid_rent=paid_rent
    )
    return detailed.to_dict()


@router.post("/{contract_id}/checkout", response_model=CheckoutResult)
async def checkout_contract(contract_id: int, checkout_data: ContractCheckout, db: Session = Depends(get_db)):
    return ContractService.checkout_contract(db, contract_id, checkout_data)


# ==================== RENOUVELLEMENT ====================

@router.get("/{contract_id}/renew", response_model=RenewalDefaults)
async def get_renewal_defaults(contract_id: int, db: Session = Depends(get_db)):
    """Conditions proposées pour le renouvellement"""
    return ContractService.get_renewal_defaults(db, contract_id)


@router.post("/{contract_id}/renew", response_model=ContractCreateResult)
async def renew_contract(contract_id: int, renewal_data: ContractRenew, db: Session = Depends(get_db)):
    return await ContractService.renew_contract(db, contract_id, renewal_data)
