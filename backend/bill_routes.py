"""
Routes API des factures : consultation, paiements, retards, rappels
et maintenance des lignes de charges
"""
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from database import get_db
from audit_logger import AuditLogger
from enums import ActionType, EntityType
from schemas import BillOut, BillWithDetails, BillPaymentUpdate, BillDetailRepairRequest, ReminderOut
from services import bill_service
from services.bill_detail_repair import (
    validate_bill_details_integrity, repair_all_utility_bill_details, cleanup_duplicate_details
)
from services.bill_calculations import get_reminder_status
from services.global_settings import GlobalSettingsService
from constants import DEFAULT_REMINDER_DAYS

router = APIRouter(prefix="/api/bills", tags=["bills"])


@router.post("/mark-overdue")
async def mark_overdue_bills(
    today: Optional[date] = Query(None, description="Date de référence, aujourd'hui par défaut"),
    db: Session = Depends(get_db)
):
    """Passe en retard les factures échues non réglées"""
    bills = bill_service.mark_overdue_bills(db, today)
    return {"marked": [bill.id for bill in bills]}


@router.get("/repair-details")
async def get_bill_details_status(db: Session = Depends(get_db)):
    integrity = validate_bill_details_integrity(db)
    missing = integrity["utility_bills_without_details"]
    return {
        "integrity": integrity,
        "needs_repair": missing > 0,
        "message": f"发现 {missing} 个水电费账单缺失明细，建议执行修复操作" if missing else "所有账单明细数据完整",
    }


@router.post("/repair-details")
async def repair_bill_details(request: Optional[BillDetailRepairRequest] = None, db: Session = Depends(get_db)):
    """
    Maintenance des lignes de facture de charges
    repair : reconstruit les lignes manquantes, validate : contrôle seul,
    cleanup : supprime les lignes en double
    """
    action = request.action if request else "repair"
    if action == "validate":
        result = validate_bill_details_integrity(db)
        message = (
            f"验证完成: 总账单 {result['total_bills']} 个, 有明细 {result['bills_with_details']} 个, "
            f"缺失明细 {result['bills_without_details']} 个"
        )
    elif action == "cleanup":
        result = {"cleaned_count": cleanup_duplicate_details(db)}
        message = f"清理完成: 删除了 {result['cleaned_count']} 条重复记录"
    else:
        result = repair_all_utility_bill_details(db)
        message = (
            f"修复完成: 成功 {result['repaired_count']} 个, 跳过 {result['skipped_count']} 个, "
            f"错误 {len(result['errors'])} 个"
        )
    return {"action": action, "result": result, "message": message}


@router.get("/{bill_id}", response_model=BillWithDetails)
async def get_bill(bill_id: int, db: Session = Depends(get_db)):
    """Facture avec ses lignes de charges et ses métadonnées"""
    bill = bill_service.get_bill(db, bill_id)
    result = BillWithDetails.model_validate(bill)
    result.bill_metadata = bill_service.parse_metadata(bill)
    return result


@router.patch("/{bill_id}/payment", response_model=BillOut)
async def update_bill_payment(bill_id: int, payment: BillPaymentUpdate, db: Session = Depends(get_db)):
    bill = bill_service.record_payment(
        db, bill_id,
        received_amount=payment.received_amount,
        status=payment.status,
        paid_date=payment.paid_date,
        payment_method=payment.payment_method,
        operator=payment.operator
    )
    AuditLogger.log_action(
        db, ActionType.UPDATE, EntityType.BILL,
        f"Paiement enregistré sur {bill.bill_number}",
        entity_id=bill.id,
        details={"received_amount": bill.received_amount, "pending_amount": bill.pending_amount}
    )
    db.refresh(bill)
    return bill


@router.get("/{bill_id}/reminder", response_model=ReminderOut)
async def get_bill_reminder(
    bill_id: int,
    today: Optional[date] = Query(None),
    db: Session = Depends(get_db)
):
    bill = bill_service.get_bill(db, bill_id)
    reminder_days = GlobalSettingsService.get_setting(db, "reminderDays")
    reminder = get_reminder_status(
        bill.due_date, today,
        int(reminder_days) if reminder_days is not None else DEFAULT_REMINDER_DAYS
    )
    return {
        "should_remind": reminder.should_remind,
        "days_left": reminder.days_left,
        "status": reminder.status.value,
        "message": reminder.message,
    }
