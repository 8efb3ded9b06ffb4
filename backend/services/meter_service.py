"""
Compteurs d'une chambre et saisie des relevés par lot
"""
from datetime import date
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from audit_logger import AuditLogger, get_model_data
from constants import ERROR_MESSAGES, SYSTEM_OPERATOR
from enums import ActionType, ContractStatus, EntityType, MeterType, ReadingStatus
from error_handlers import BusinessLogicErrorHandler, DomainValidationError
from models import Contract, Meter, MeterReading, Room
from schemas import MeterCreate, MeterReadingBatch, MeterReadingInput
from services.bill_aggregation import group_readings_by_contract, generate_aggregated_utility_bill
from services.bill_calculations import resolve_meter_unit_price
from services.global_settings import GlobalSettingsService
from services.meter_utils import (
    calculate_usage, calculate_amount, detect_abnormal_reading, generate_meter_number,
    generate_period_description, get_default_unit
)
from validators import MeterValidators

logger = logging.getLogger(__name__)

RECENT_READINGS_WINDOW = 6


class MeterService:

    @staticmethod
    def register_meter(db: Session, room_id: int, data: MeterCreate) -> Meter:
        """
        Ajoute un compteur à une chambre après contrôle de la configuration
        et des plafonds par chambre
        """
        room = db.query(Room).filter(Room.id == room_id).first()
        if not room:
            raise BusinessLogicErrorHandler.not_found("ROOM_NOT_FOUND", "Room", room_id)

        config = data.model_dump()
        config["meter_type"] = (data.meter_type or "").upper()
        if not config.get("unit") and config["meter_type"] in {t.value for t in MeterType}:
            config["unit"] = get_default_unit(MeterType(config["meter_type"]))

        validation = MeterValidators.validate_meter_config_data(config)
        if not validation["is_valid"]:
            raise DomainValidationError(validation["errors"][0], details={"errors": validation["errors"]})

        existing = db.query(Meter).filter(Meter.room_id == room_id).all()
        limits = MeterValidators.check_meter_limits(existing, config["meter_type"], config["display_name"].strip())
        if not limits["is_valid"]:
            raise DomainValidationError(limits["errors"][0], error_code="METER_LIMIT", details={"errors": limits["errors"]})

        meter_type = MeterType(config["meter_type"])
        meter = Meter(
            room_id=room_id,
            meter_number=generate_meter_number(meter_type, room.room_number),
            meter_type=meter_type,
            display_name=config["display_name"].strip(),
            unit_price=config.get("unit_price"),
            unit=config["unit"].strip(),
            location=config.get("location"),
            remarks=config.get("remarks"),
            is_active=True
        )
        db.add(meter)
        db.commit()
        db.refresh(meter)

        AuditLogger.log_crud_action(
            db, ActionType.CREATE, EntityType.METER, meter.id,
            f"Compteur {meter.display_name} ajouté à la chambre {room.room_number}",
            after_data=get_model_data(meter)
        )
        return meter

    @staticmethod
    def _latest_readings(db: Session, meter_id: int) -> List[MeterReading]:
        return db.query(MeterReading).filter(
            MeterReading.meter_id == meter_id,
            MeterReading.status != ReadingStatus.CANCELLED
        ).order_by(MeterReading.reading_date.desc(), MeterReading.id.desc()).limit(RECENT_READINGS_WINDOW).all()

    @staticmethod
    def _active_contract(db: Session, room_id: int) -> Optional[Contract]:
        return db.query(Contract).filter(
            Contract.room_id == room_id,
            Contract.status == ContractStatus.ACTIVE
        ).first()

    @staticmethod
    def _record_reading(
        db: Session,
        item: MeterReadingInput,
        batch: MeterReadingBatch,
        billing_settings,
        today: date,
        warnings: List[Dict[str, Any]],
        errors: List[Dict[str, Any]]
    ) -> Optional[MeterReading]:
        meter = db.query(Meter).filter(Meter.id == item.meter_id).first()
        if not meter:
            errors.append({"meter_id": item.meter_id, "error": ERROR_MESSAGES["METER_NOT_FOUND"]})
            return None
        if not meter.is_active:
            errors.append({"meter_id": item.meter_id, "error": ERROR_MESSAGES["METER_INACTIVE"]})
            return None

        duplicate = db.query(MeterReading).filter(
            MeterReading.meter_id == meter.id,
            MeterReading.reading_date == item.reading_date,
            MeterReading.status != ReadingStatus.CANCELLED
        ).first()
        if duplicate:
            warnings.append({
                "meter_id": meter.id,
                "warning": f"{ERROR_MESSAGES['READING_ALREADY_TODAY']}，当前读数: {duplicate.current_reading}"
            })
            return None

        recent = MeterService._latest_readings(db, meter.id)
        previous = recent[0].current_reading if recent else None

        validation = MeterValidators.validate_meter_reading_data({
            "current_reading": item.current_reading,
            "previous_reading": previous,
            "reading_date": item.reading_date,
        }, today)
        if not validation["is_valid"]:
            errors.append({"meter_id": meter.id, "error": "；".join(validation["errors"])})
            return None

        if detect_abnormal_reading(item.current_reading, previous, [r.current_reading for r in recent]):
            if not batch.confirm_abnormal:
                warnings.append({"meter_id": meter.id, "warning": "用量异常，请确认后重新提交", "abnormal": True})
                return None
            warnings.append({"meter_id": meter.id, "warning": "用量异常，已确认提交", "abnormal": True})

        contract = MeterService._active_contract(db, meter.room_id)
        if contract is None:
            warnings.append({"meter_id": meter.id, "warning": "房间无生效合同，读数仅作为基准"})

        unit_price = resolve_meter_unit_price(meter, billing_settings)
        usage = calculate_usage(item.current_reading, previous)

        reading = MeterReading(
            meter_id=meter.id,
            contract_id=contract.id if contract else None,
            previous_reading=previous if previous is not None else item.current_reading,
            current_reading=item.current_reading,
            usage=usage,
            unit_price=unit_price,
            amount=calculate_amount(usage, unit_price),
            reading_date=item.reading_date,
            period=generate_period_description(item.reading_date),
            status=ReadingStatus.PENDING,
            is_billed=False,
            operator=item.operator or SYSTEM_OPERATOR,
            remarks=item.remarks
        )
        db.add(reading)
        db.flush()
        return reading

    @staticmethod
    def submit_readings(db: Session, batch: MeterReadingBatch, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Enregistre un lot de relevés puis génère les factures de charges par contrat

        Les relevés invalides ou en double sont écartés (errors / warnings) sans
        bloquer le reste du lot. Un échec de facturation laisse les relevés
        enregistrés en attente.
        """
        today = today or date.today()
        billing_settings = GlobalSettingsService.get_billing_settings(db)
        warnings: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        readings = []
        for item in batch.readings:
            reading = MeterService._record_reading(db, item, batch, billing_settings, today, warnings, errors)
            if reading is not None:
                readings.append(reading)

        if readings:
            db.commit()
            for reading in readings:
                db.refresh(reading)
            logger.info(f"{len(readings)} relevés enregistrés")

        bills = []
        auto_generate = GlobalSettingsService.get_setting(db, "autoGenerateBills")
        if batch.generate_bills and auto_generate is not False and readings:
            operators = {reading.id: reading.operator for reading in readings}
            for contract_id, reading_list in group_readings_by_contract(readings).items():
                contract = db.query(Contract).filter(Contract.id == contract_id).first()
                operator = operators.get(reading_list[0].meter_reading_id, SYSTEM_OPERATOR)
                try:
                    bills.extend(generate_aggregated_utility_bill(
                        db, contract, reading_list,
                        strategy=batch.aggregation_strategy,
                        operator=operator
                    ))
                except Exception as e:
                    warnings.append({"contract_id": contract_id, "warning": f"合同{contract.contract_number}账单生成失败: {e}"})

            for reading in readings:
                db.refresh(reading)

        message = f"成功处理 {len(readings)} 个抄表记录"
        if bills:
            message += f"，生成 {len(bills)} 个账单"
        if warnings:
            message += f"，{len(warnings)} 个警告"
        if errors:
            message += f"，{len(errors)} 个错误"

        return {
            "readings": readings,
            "bills": bills,
            "warnings": warnings,
            "errors": errors,
            "summary": {
                "total": len(batch.readings),
                "success": len(readings),
                "warnings": len(warnings),
                "errors": len(errors),
                "bills_generated": len(bills),
            },
            "message": message,
        }
