"""
Création et paiement des factures
Toutes les écritures maintiennent amount == received_amount + pending_amount.
"""
from datetime import date
from typing import List, Optional
import logging
import random
import time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from constants import BILL_TYPE_LETTERS, BILL_NUMBER_MAX_ATTEMPTS, ERROR_MESSAGES
from enums import BillType, BillStatus
from error_handlers import BusinessLogicErrorHandler, DomainValidationError, StateConflictError
from models import Bill, Contract
from schemas import BillMetadata, bill_metadata_adapter
from services.money import Number, to_decimal, round_money

logger = logging.getLogger(__name__)


def generate_bill_number(contract_number: str, bill_type: BillType) -> str:
    """
    BILL + 3 derniers caractères du contrat + lettre du type + suffixe à 6 chiffres.
    Le suffixe dérive de l'horodatage, une collision reste possible.
    """
    letter = BILL_TYPE_LETTERS.get(BillType(bill_type), "O")
    suffix = (int(time.time() * 1000) + random.randint(0, 999999)) % 1000000
    return f"BILL{contract_number[-3:]}{letter}{suffix:06d}"


def _is_bill_number_collision(error: IntegrityError) -> bool:
    return "bill_number" in str(error.orig).lower()


def create_bill(
    db: Session,
    contract: Contract,
    bill_type: BillType,
    amount: Number,
    due_date: date,
    period: Optional[str] = None,
    remarks: Optional[str] = None,
    metadata: Optional[BillMetadata] = None,
    meter_reading_id: Optional[int] = None,
    payment_method: Optional[str] = None,
    operator: Optional[str] = None,
    status: BillStatus = BillStatus.PENDING,
    received_amount: Number = 0,
    paid_date: Optional[date] = None
) -> Bill:
    """
    Ajoute une facture dans la transaction courante (flush, pas de commit).
    Un numéro en collision est régénéré dans un savepoint.
    """
    amount = round_money(amount)
    received_amount = round_money(received_amount)

    last_error = None
    for attempt in range(1, BILL_NUMBER_MAX_ATTEMPTS + 1):
        bill = Bill(
            bill_number=generate_bill_number(contract.contract_number, bill_type),
            bill_type=bill_type,
            amount=amount,
            received_amount=received_amount,
            pending_amount=round_money(amount - received_amount),
            due_date=due_date,
            paid_date=paid_date,
            period=period,
            status=status,
            contract_id=contract.id,
            meter_reading_id=meter_reading_id,
            payment_method=payment_method,
            operator=operator,
            remarks=remarks
        )
        if metadata is not None:
            bill.set_metadata(bill_metadata_adapter.dump_python(metadata, mode="json"))

        try:
            with db.begin_nested():
                db.add(bill)
                db.flush()
            return bill
        except IntegrityError as e:
            if not _is_bill_number_collision(e):
                raise
            last_error = e
            logger.warning(f"Collision de numéro de facture {bill.bill_number} (tentative {attempt})")

    raise StateConflictError(ERROR_MESSAGES["BILL_NUMBER_EXHAUSTED"], error_code="BILL_NUMBER_COLLISION") from last_error


def parse_metadata(bill: Bill) -> Optional[BillMetadata]:
    """Relit les métadonnées typées d'une facture"""
    raw = bill.get_metadata()
    if not raw:
        return None
    return bill_metadata_adapter.validate_python(raw)


def get_bill(db: Session, bill_id: int) -> Bill:
    bill = db.query(Bill).filter(Bill.id == bill_id).first()
    if not bill:
        raise BusinessLogicErrorHandler.not_found("BILL_NOT_FOUND", "Bill", bill_id)
    return bill


def record_payment(
    db: Session,
    bill_id: int,
    received_amount: Number,
    status: Optional[BillStatus] = None,
    paid_date: Optional[date] = None,
    payment_method: Optional[str] = None,
    operator: Optional[str] = None
) -> Bill:
    """
    Enregistre le montant reçu cumulé d'une facture.
    Le solde est recalculé, la facture passe PAID quand elle est soldée.
    """
    bill = get_bill(db, bill_id)
    received = round_money(received_amount)
    if received < 0:
        raise DomainValidationError(ERROR_MESSAGES["NEGATIVE_RECEIVED"])

    bill.received_amount = received
    bill.pending_amount = round_money(to_decimal(bill.amount) - received)

    if status is not None:
        bill.status = status
    elif bill.pending_amount == 0:
        bill.status = BillStatus.PAID

    if bill.status in (BillStatus.PAID, BillStatus.COMPLETED):
        bill.paid_date = paid_date or bill.paid_date or date.today()
    if payment_method:
        bill.payment_method = payment_method
    if operator:
        bill.operator = operator

    db.commit()
    db.refresh(bill)
    logger.info(f"Paiement enregistré sur {bill.bill_number}: reçu {received}, reste {bill.pending_amount}")
    return bill


def settle_in_full(bill: Bill, paid_date: date, payment_method: str, operator: str, remarks: Optional[str] = None):
    """Solde une facture : reçu = montant, reste 0"""
    bill.status = BillStatus.PAID
    bill.received_amount = bill.amount
    bill.pending_amount = round_money(0)
    bill.paid_date = paid_date
    bill.payment_method = payment_method
    bill.operator = operator
    if remarks:
        bill.remarks = f"{bill.remarks}\n{remarks}" if bill.remarks else remarks


def mark_overdue_bills(db: Session, today: Optional[date] = None) -> List[Bill]:
    """Passe en OVERDUE les factures en attente dont l'échéance est dépassée"""
    today = today or date.today()
    bills = db.query(Bill).filter(
        Bill.status == BillStatus.PENDING,
        Bill.due_date < today,
        Bill.pending_amount > 0
    ).all()

    for bill in bills:
        bill.status = BillStatus.OVERDUE

    if bills:
        db.commit()
        logger.info(f"{len(bills)} factures passées en retard")
    return bills
