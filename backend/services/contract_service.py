"""
Cycle de vie des contrats : création, activation, expiration, départ et renouvellement

Les transitions de statut relisent leurs préconditions dans la transaction qui
les écrit. La colonne active_room_guard garantit en base qu'une chambre n'a
qu'un seul contrat ACTIVE.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
import asyncio
import logging
import math
import random
import time

from sqlalchemy.orm import Session

from audit_logger import AuditLogger, get_model_data
from constants import (
    ERROR_MESSAGES, SUCCESS_MESSAGES, CHECKOUT_OPERATOR, CHECKOUT_PAYMENT_METHOD,
    CHECKOUT_READING_OPERATOR
)
from database import SessionLocal, transaction, BILL_GENERATION_TIMEOUT_SECONDS
from enums import (
    ActionType, EntityType, BillingStatus, BillStatus, BillType, BusinessStatus,
    ContractStatus, MeterType, PriceSource, ReadingStatus, RoomStatus
)
from error_handlers import BusinessLogicErrorHandler, DomainValidationError, StateConflictError
from models import Bill, Contract, Meter, MeterReading, Renter, Room
from schemas import (
    ContractCheckout, ContractCreate, ContractRenew, ContractTerms,
    SettlementMetadata, UtilitySingleMetadata, UtilityLine
)
from services.auto_bill_generator import generate_bills_on_contract_signed
from services.bill_calculations import resolve_meter_unit_price
from services.bill_service import create_bill, settle_in_full
from services.global_settings import LiveSettingsProvider
from services.meter_utils import calculate_usage, calculate_amount, generate_period_description
from services.money import round_money, format_plain
from services.settlement_service import CheckoutSettlement, calculate_checkout_settlement

logger = logging.getLogger(__name__)

CONTRACT_NUMBER_MAX_ATTEMPTS = 5


class ContractService:
    """Service du cycle de vie des contrats"""

    # ==================== CALCULS ====================

    @staticmethod
    def calculate_term_months(start_date: date, end_date: date) -> int:
        """
        Nombre de mois facturés : années pleines au-delà d'un an,
        tranches de 30 jours entamées sinon, un mois minimum.
        """
        days = (end_date - start_date).days + 1
        if days >= 365:
            return (days // 365) * 12
        if days >= 30:
            return math.ceil(days / 30)
        return 1

    @staticmethod
    def generate_contract_number(db: Session, today: Optional[date] = None) -> str:
        """CT + année + mois + 6 derniers chiffres de l'horodatage"""
        today = today or date.today()
        for _ in range(CONTRACT_NUMBER_MAX_ATTEMPTS):
            suffix = (int(time.time() * 1000) + random.randint(0, 999)) % 1000000
            number = f"CT{today.year}{today.month:02d}{suffix:06d}"
            if not db.query(Contract.id).filter(Contract.contract_number == number).first():
                return number
        raise StateConflictError("合同编号生成失败，请重试", error_code="CONTRACT_NUMBER_COLLISION")

    @staticmethod
    def validate_terms(terms: ContractTerms):
        if terms.end_date <= terms.start_date:
            raise DomainValidationError(ERROR_MESSAGES["END_BEFORE_START"], error_code="INVALID_DATES")
        if terms.monthly_rent <= 0 or terms.deposit <= 0:
            raise DomainValidationError(ERROR_MESSAGES["NON_POSITIVE_AMOUNTS"], error_code="INVALID_AMOUNTS")

    @staticmethod
    def get_contract(db: Session, contract_id: int) -> Contract:
        contract = db.query(Contract).filter(Contract.id == contract_id).first()
        if not contract:
            raise BusinessLogicErrorHandler.not_found("CONTRACT_NOT_FOUND", "Contract", contract_id)
        return contract

    # ==================== CRÉATION ====================

    @staticmethod
    def _check_availability(db: Session, room: Room, renter: Renter, renewed_from: Optional[Contract]):
        """
        Chambre libre et locataire sans autre contrat actif.
        Un renouvellement ignore son contrat d'origine encore actif (même chambre, même locataire).
        """
        same_pair = (
            renewed_from is not None
            and renewed_from.status == ContractStatus.ACTIVE
            and renewed_from.room_id == room.id
            and renewed_from.renter_id == renter.id
        )

        if room.status != RoomStatus.VACANT and not same_pair:
            raise BusinessLogicErrorHandler.room_not_available(room.status.value)

        active_query = db.query(Contract).filter(
            Contract.renter_id == renter.id,
            Contract.status == ContractStatus.ACTIVE
        )
        if same_pair:
            active_query = active_query.filter(Contract.id != renewed_from.id)
        if active_query.first():
            raise BusinessLogicErrorHandler.renter_has_active_contract(renter.id)

    @staticmethod
    def _record_initial_readings(db: Session, contract: Contract, readings: Dict[int, Any], reading_date: date):
        """Relevés d'entrée dans les lieux : base de consommation, rien à facturer"""
        for meter_id, value in readings.items():
            meter = db.query(Meter).filter(Meter.id == int(meter_id)).first()
            if not meter:
                raise BusinessLogicErrorHandler.not_found("METER_NOT_FOUND", "Meter", meter_id)
            if meter.room_id != contract.room_id:
                raise DomainValidationError(ERROR_MESSAGES["ROOM_METER_MISMATCH"], details={"meter_id": meter.id})

            db.add(MeterReading(
                meter_id=meter.id,
                contract_id=contract.id,
                previous_reading=value,
                current_reading=value,
                usage=0,
                unit_price=meter.unit_price or 0,
                amount=0,
                reading_date=reading_date,
                period=generate_period_description(reading_date),
                status=ReadingStatus.CONFIRMED,
                is_billed=False,
                operator=contract.signed_by,
                remarks="入住初始读数"
            ))

    @staticmethod
    def create_contract(
        db: Session,
        data: ContractCreate,
        today: Optional[date] = None,
        renewed_from: Optional[Contract] = None
    ) -> Contract:
        """
        Crée un contrat dans une transaction bornée.
        Les factures ne sont PAS générées ici.
        """
        today = today or date.today()
        ContractService.validate_terms(data)

        with transaction(db):
            room = db.query(Room).filter(Room.id == data.room_id).first()
            if not room:
                raise BusinessLogicErrorHandler.not_found("ROOM_NOT_FOUND", "Room", data.room_id)
            renter = db.query(Renter).filter(Renter.id == data.renter_id).first()
            if not renter:
                raise BusinessLogicErrorHandler.not_found("RENTER_NOT_FOUND", "Renter", data.renter_id)

            ContractService._check_availability(db, room, renter, renewed_from)

            status = ContractStatus.ACTIVE if data.start_date <= today else ContractStatus.PENDING
            if renewed_from is not None and status == ContractStatus.ACTIVE and renewed_from.status == ContractStatus.ACTIVE:
                raise StateConflictError(ERROR_MESSAGES["RENEWAL_OVERLAP"], error_code="RENEWAL_OVERLAP")

            months = ContractService.calculate_term_months(data.start_date, data.end_date)
            contract = Contract(
                contract_number=ContractService.generate_contract_number(db, today),
                room_id=room.id,
                renter_id=renter.id,
                renewed_from_id=renewed_from.id if renewed_from else None,
                start_date=data.start_date,
                end_date=data.end_date,
                monthly_rent=round_money(data.monthly_rent),
                total_rent=round_money(data.monthly_rent * months),
                deposit=round_money(data.deposit),
                key_deposit=round_money(data.key_deposit),
                cleaning_fee=round_money(data.cleaning_fee),
                business_status=(BusinessStatus.RENEWED if renewed_from else BusinessStatus.NORMAL).value,
                payment_method=data.payment_method,
                payment_timing=data.payment_timing,
                signed_by=data.signed_by,
                signed_date=data.signed_date or today,
            )
            contract.set_status(status)

            if renewed_from is not None:
                contract.append_remark(f"续租自合同{renewed_from.contract_number}", [data.remarks])
            elif data.remarks:
                contract.append_remark(None, [data.remarks])

            db.add(contract)
            db.flush()

            if status == ContractStatus.ACTIVE:
                room.status = RoomStatus.OCCUPIED
                room.current_renter = renter.name

            initial_readings = getattr(data, "initial_meter_readings", None)
            if initial_readings:
                ContractService._record_initial_readings(db, contract, initial_readings, data.start_date)

            AuditLogger.log_crud_action(
                db=db,
                action=ActionType.RENEW if renewed_from else ActionType.CREATE,
                entity_type=EntityType.CONTRACT,
                entity_id=contract.id,
                description=f"Contrat {contract.contract_number} créé ({status.value})",
                after_data=get_model_data(contract),
                commit=False
            )

        db.refresh(contract)
        logger.info(f"Contrat {contract.contract_number} créé, statut {contract.status.value}, {months} mois")
        return contract

    @staticmethod
    def _generate_bills_in_own_session(contract_id: int) -> List[int]:
        """Génération des factures dans une session dédiée (thread de travail)"""
        db = SessionLocal()
        try:
            contract = db.query(Contract).filter(Contract.id == contract_id).first()
            bills = generate_bills_on_contract_signed(db, contract)
            return [bill.id for bill in bills]
        except Exception as e:
            logger.error(f"Génération des factures du contrat {contract_id} en échec: {e}")
            AuditLogger.log_error(db, "Génération des factures en échec", entity_id=contract_id, error_details=str(e))
            raise
        finally:
            db.close()

    @staticmethod
    async def create_contract_with_billing(
        db: Session,
        data: ContractCreate,
        today: Optional[date] = None,
        renewed_from: Optional[Contract] = None
    ) -> Dict[str, Any]:
        """
        Crée le contrat puis génère ses factures dans le délai imparti.
        Délai dépassé : la génération continue en arrière-plan, statut "pending".
        Un échec de facturation n'annule jamais le contrat.
        """
        contract = ContractService.create_contract(db, data, today, renewed_from)

        if not data.generate_bills:
            return ContractService._creation_result(db, contract, [], BillingStatus.SKIPPED, renewed_from)

        try:
            bill_ids = await asyncio.wait_for(
                asyncio.to_thread(ContractService._generate_bills_in_own_session, contract.id),
                timeout=BILL_GENERATION_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            logger.warning(f"Facturation du contrat {contract.contract_number} toujours en cours, poursuivie en arrière-plan")
            return ContractService._creation_result(db, contract, [], BillingStatus.PENDING, renewed_from)
        except Exception:
            return ContractService._creation_result(db, contract, [], BillingStatus.FAILED, renewed_from)

        # Nouvelle transaction : les factures ont été validées par une autre session
        db.commit()
        bills = db.query(Bill).filter(Bill.id.in_(bill_ids)).order_by(Bill.due_date, Bill.id).all() if bill_ids else []
        return ContractService._creation_result(db, contract, bills, BillingStatus.COMPLETED, renewed_from)

    @staticmethod
    def _creation_result(db: Session, contract: Contract, bills: List[Bill], billing_status: BillingStatus,
                         renewed_from: Optional[Contract]) -> Dict[str, Any]:
        db.refresh(contract)
        if renewed_from is not None:
            message = SUCCESS_MESSAGES["CONTRACT_RENEWED"]
        elif billing_status == BillingStatus.COMPLETED:
            message = SUCCESS_MESSAGES["CONTRACT_CREATED"].format(count=len(bills))
        elif billing_status == BillingStatus.PENDING:
            message = SUCCESS_MESSAGES["CONTRACT_CREATED_BILLING_PENDING"]
        else:
            message = SUCCESS_MESSAGES["CONTRACT_CREATED_NO_BILLS"]

        return {
            "contract": contract,
            "bills": bills,
            "billing_status": billing_status,
            "message": message,
        }

    # ==================== ACTIVATION / EXPIRATION ====================

    @staticmethod
    def _activate(db: Session, contract: Contract, today: date):
        room = db.query(Room).filter(Room.id == contract.room_id).first()
        if room.status != RoomStatus.VACANT:
            raise BusinessLogicErrorHandler.room_not_available(room.status.value)

        contract.set_status(ContractStatus.ACTIVE)
        room.status = RoomStatus.OCCUPIED
        room.current_renter = contract.renter.name
        contract.append_remark(f"合同激活 {today.isoformat()}")

    @staticmethod
    def activate_contract(db: Session, contract_id: int) -> Contract:
        """Activation manuelle d'un contrat en attente"""
        with transaction(db):
            contract = ContractService.get_contract(db, contract_id)
            if contract.status != ContractStatus.PENDING:
                raise BusinessLogicErrorHandler.invalid_contract_status(contract.status.value, "激活")
            ContractService._activate(db, contract, date.today())
            AuditLogger.log_action(
                db, ActionType.ACTIVATE, EntityType.CONTRACT,
                f"Contrat {contract.contract_number} activé", entity_id=contract.id, commit=False
            )

        db.refresh(contract)
        return contract

    @staticmethod
    def activate_pending_contracts(db: Session, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Active les contrats en attente dont la date de début est arrivée.
        Les contrats échus sont expirés d'abord pour libérer leur chambre.
        """
        today = today or date.today()
        ContractService.expire_contracts(db, today)

        pending = db.query(Contract).filter(
            Contract.status == ContractStatus.PENDING,
            Contract.start_date <= today
        ).order_by(Contract.start_date, Contract.id).all()

        activated, skipped = [], []
        for contract in pending:
            try:
                with transaction(db):
                    ContractService._activate(db, contract, today)
                activated.append(contract.id)
            except StateConflictError as e:
                logger.warning(f"Contrat {contract.contract_number} non activé: {e.message}")
                skipped.append({"contract_id": contract.id, "reason": e.message})

        if activated:
            logger.info(f"{len(activated)} contrats activés")
        return {"activated": activated, "skipped": skipped}

    @staticmethod
    def expire_contracts(db: Session, today: Optional[date] = None) -> List[int]:
        """Passe EXPIRED les contrats actifs dont la date de fin est dépassée, chambre libérée"""
        today = today or date.today()
        with transaction(db):
            contracts = db.query(Contract).filter(
                Contract.status == ContractStatus.ACTIVE,
                Contract.end_date < today
            ).all()

            for contract in contracts:
                contract.set_status(ContractStatus.EXPIRED)
                contract.append_remark(f"合同到期 {today.isoformat()}")
                room = contract.room
                if room.status != RoomStatus.MAINTENANCE:
                    room.status = RoomStatus.VACANT
                room.current_renter = None
                room.overdue_days = None

        if contracts:
            logger.info(f"{len(contracts)} contrats expirés")
        return [contract.id for contract in contracts]

    # ==================== DÉPART ====================

    @staticmethod
    def validate_checkout(contract: Contract, data: ContractCheckout, today: Optional[date] = None):
        today = today or date.today()
        if contract.status != ContractStatus.ACTIVE:
            raise BusinessLogicErrorHandler.invalid_contract_status(contract.status.value, "退租")
        if data.checkout_date < today:
            raise StateConflictError(ERROR_MESSAGES["CHECKOUT_BEFORE_TODAY"], error_code="INVALID_CHECKOUT_DATE")
        if data.checkout_date > contract.end_date:
            raise StateConflictError(ERROR_MESSAGES["CHECKOUT_AFTER_END"], error_code="INVALID_CHECKOUT_DATE")
        if data.damage_assessment < 0:
            raise DomainValidationError(ERROR_MESSAGES["NEGATIVE_DAMAGE"])
        if not data.checkout_reason or not data.checkout_reason.strip():
            raise DomainValidationError(ERROR_MESSAGES["CHECKOUT_REASON_REQUIRED"])

    @staticmethod
    def _settlement_bill(db: Session, contract: Contract, settlement: CheckoutSettlement,
                         data: ContractCheckout) -> Optional[Bill]:
        if settlement.refund_amount > 0:
            amount = -settlement.refund_amount
        elif settlement.additional_amount > 0:
            amount = settlement.additional_amount
        else:
            return None

        checkout_day = data.checkout_date.isoformat()
        return create_bill(
            db,
            contract=contract,
            bill_type=BillType.OTHER,
            amount=amount,
            due_date=data.checkout_date,
            period=f"退租结算-{checkout_day}",
            remarks=f"退租结算：{settlement.description}",
            metadata=SettlementMetadata(
                checkout_date=data.checkout_date,
                checkout_reason=data.checkout_reason,
                actual_days=settlement.actual_days,
                should_pay_rent=settlement.should_pay_rent,
                paid_rent=settlement.paid_rent,
                rent_difference=settlement.rent_difference,
                deposit_refund=settlement.deposit_refund,
                damage_assessment=settlement.damage_assessment,
                refund_amount=settlement.refund_amount,
                additional_amount=settlement.additional_amount,
                settlement_type=settlement.settlement_type,
                description=settlement.description,
            ),
            operator=CHECKOUT_OPERATOR
        )

    @staticmethod
    def _final_readings(db: Session, contract: Contract, data: ContractCheckout, billing_settings):
        """
        Relevés de sortie par type de compteur.
        Une consommation positive donne une facture de charges déjà réglée.
        """
        final_values = {key.lower(): value for key, value in (data.final_meter_readings or {}).items()}
        readings, bills = [], []
        if not final_values:
            return readings, bills

        checkout_day = data.checkout_date.isoformat()
        meters = db.query(Meter).filter(Meter.room_id == contract.room_id, Meter.is_active == True).all()

        for meter in meters:
            final_value = final_values.get(MeterType(meter.meter_type).value.lower())
            if final_value is None or final_value <= 0:
                continue

            latest = db.query(MeterReading).filter(MeterReading.meter_id == meter.id).order_by(
                MeterReading.reading_date.desc(), MeterReading.id.desc()
            ).first()
            previous = latest.current_reading if latest else 0
            unit_price = resolve_meter_unit_price(meter, billing_settings)
            usage = calculate_usage(final_value, previous)
            amount = calculate_amount(usage, unit_price)

            reading = MeterReading(
                meter_id=meter.id,
                contract_id=contract.id,
                previous_reading=previous,
                current_reading=final_value,
                usage=usage,
                unit_price=unit_price,
                amount=amount,
                reading_date=data.checkout_date,
                period=f"退租结算-{checkout_day}",
                status=ReadingStatus.CONFIRMED,
                operator=CHECKOUT_READING_OPERATOR,
                remarks="退租时最终读数"
            )
            db.add(reading)
            db.flush()
            readings.append(reading)

            if usage > 0 and amount > 0:
                line = UtilityLine(
                    meter_id=meter.id,
                    meter_reading_id=reading.id,
                    meter_type=meter.meter_type,
                    meter_name=meter.display_name,
                    usage=usage,
                    unit=meter.unit,
                    unit_price=unit_price,
                    amount=amount,
                    price_source=PriceSource.METER_CONFIG if meter.unit_price else PriceSource.GLOBAL_SETTING,
                )
                bills.append(create_bill(
                    db,
                    contract=contract,
                    bill_type=BillType.UTILITIES,
                    amount=amount,
                    due_date=data.checkout_date,
                    period=f"退租结算-{meter.display_name}-{checkout_day}",
                    remarks=f"退租时{meter.display_name}用量结算：{format_plain(usage)}{meter.unit}",
                    metadata=UtilitySingleMetadata(generated_at=datetime.utcnow(), line=line),
                    meter_reading_id=reading.id,
                    payment_method=CHECKOUT_PAYMENT_METHOD,
                    operator=CHECKOUT_OPERATOR,
                    status=BillStatus.PAID,
                    received_amount=amount,
                    paid_date=data.checkout_date
                ))

        return readings, bills

    @staticmethod
    def checkout_contract(db: Session, contract_id: int, data: ContractCheckout,
                          today: Optional[date] = None) -> Dict[str, Any]:
        """
        Départ du locataire en une seule transaction

        Étapes : solde de départ, facture de solde, apurement des factures
        ouvertes, contrat TERMINATED, chambre libérée, relevés de sortie,
        note au dossier du locataire. Tout échec annule l'ensemble.
        """
        contract = ContractService.get_contract(db, contract_id)
        ContractService.validate_checkout(contract, data, today)
        billing_settings = LiveSettingsProvider(db).get_billing_settings()
        checkout_day = data.checkout_date.isoformat()

        with transaction(db):
            db.refresh(contract)
            if contract.status != ContractStatus.ACTIVE:
                raise BusinessLogicErrorHandler.invalid_contract_status(contract.status.value, "退租")

            settlement = calculate_checkout_settlement(
                contract, data.checkout_date, data.damage_assessment, data.paid_rent
            )
            settlement_bill = ContractService._settlement_bill(db, contract, settlement, data)

            open_bills = db.query(Bill).filter(
                Bill.contract_id == contract.id,
                Bill.status.in_([BillStatus.PENDING, BillStatus.OVERDUE])
            ).all()
            for bill in open_bills:
                settle_in_full(bill, data.checkout_date, CHECKOUT_PAYMENT_METHOD, CHECKOUT_OPERATOR, "退租时自动结清")

            contract.set_status(ContractStatus.TERMINATED)
            contract.business_status = BusinessStatus.CHECKED_OUT.value
            contract.append_remark(f"退租记录 {checkout_day}", [f"退租原因: {data.checkout_reason}", data.remarks])

            room = contract.room
            room.status = RoomStatus.VACANT
            room.current_renter = None
            room.overdue_days = None

            final_readings, utility_bills = ContractService._final_readings(db, contract, data, billing_settings)

            contract.renter.append_remark(f"退租记录 {checkout_day}", [f"合同{contract.contract_number}正常退租"])

            AuditLogger.log_action(
                db, ActionType.CHECKOUT, EntityType.CONTRACT,
                f"Départ du contrat {contract.contract_number}",
                entity_id=contract.id,
                details={
                    "settlement": settlement.to_dict(),
                    "settled_bills": len(open_bills),
                    "final_readings": len(final_readings),
                },
                commit=False
            )

        db.refresh(contract)
        if settlement_bill is not None:
            db.refresh(settlement_bill)
        logger.info(
            f"Contrat {contract.contract_number} résilié: {settlement.settlement_type.value}, "
            f"{len(open_bills)} factures apurées, {len(final_readings)} relevés de sortie"
        )

        return {
            "contract": contract,
            "settlement": settlement.to_dict(),
            "settlement_bill": settlement_bill,
            "settled_bills": len(open_bills),
            "final_readings": final_readings,
            "utility_bills": utility_bills,
            "message": SUCCESS_MESSAGES["CHECKOUT_SUCCESS"],
        }

    # ==================== RENOUVELLEMENT ====================

    @staticmethod
    def _check_renewable(contract: Contract):
        if contract.status not in (ContractStatus.ACTIVE, ContractStatus.EXPIRED):
            raise BusinessLogicErrorHandler.invalid_contract_status(contract.status.value, "续租")

    @staticmethod
    def get_renewal_defaults(db: Session, contract_id: int) -> Dict[str, Any]:
        """Conditions proposées : un an à partir du lendemain de la fin, mêmes montants"""
        contract = ContractService.get_contract(db, contract_id)
        ContractService._check_renewable(contract)

        start_date = contract.end_date + timedelta(days=1)
        try:
            next_year = start_date.replace(year=start_date.year + 1)
        except ValueError:
            # 29 février
            next_year = start_date.replace(year=start_date.year + 1, day=28)

        return {
            "source_contract_id": contract.id,
            "renter_id": contract.renter_id,
            "room_id": contract.room_id,
            "start_date": start_date,
            "end_date": next_year - timedelta(days=1),
            "monthly_rent": contract.monthly_rent,
            "deposit": contract.deposit,
            "key_deposit": contract.key_deposit or 0,
            "cleaning_fee": contract.cleaning_fee or 0,
            "payment_method": contract.payment_method,
            "payment_timing": contract.payment_timing,
        }

    @staticmethod
    async def renew_contract(db: Session, contract_id: int, data: ContractRenew,
                             today: Optional[date] = None) -> Dict[str, Any]:
        """
        Nouveau contrat pour la même chambre et le même locataire.
        Le contrat d'origine n'est pas modifié.
        """
        source = ContractService.get_contract(db, contract_id)
        ContractService._check_renewable(source)

        create_data = ContractCreate(
            renter_id=source.renter_id,
            room_id=source.room_id,
            **data.model_dump()
        )
        return await ContractService.create_contract_with_billing(db, create_data, today, renewed_from=source)
