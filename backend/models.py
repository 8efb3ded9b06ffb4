from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Enum, Date, DateTime, Text, Numeric, Index
from sqlalchemy.orm import relationship
from database import Base
import datetime

# Import centralisé des enums
from enums import (
    RoomType, RoomStatus, ContractStatus, BusinessStatus, MeterType,
    ReadingStatus, BillType, BillStatus, PriceSource, ActionType, EntityType
)
from model_mixins import TimestampMixin, RemarksLogMixin, MetadataMixin


class Building(Base):
    __tablename__ = "buildings"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)
    total_rooms = Column(Integer, default=0)  # Maintenu à l'ajout des chambres
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    rooms = relationship("Room", back_populates="building", cascade="all, delete-orphan")


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(50), nullable=False)
    floor_number = Column(Integer, default=1)
    building_id = Column(Integer, ForeignKey("buildings.id"), nullable=False)
    room_type = Column(Enum(RoomType), default=RoomType.SINGLE)
    area = Column(Numeric(8, 2), nullable=True)  # Surface en m²
    rent = Column(Numeric(10, 2), nullable=False)  # Loyer affiché
    status = Column(Enum(RoomStatus), default=RoomStatus.VACANT, nullable=False)
    current_renter = Column(String(100), nullable=True)  # Nom dénormalisé du locataire actif
    overdue_days = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    building = relationship("Building", back_populates="rooms")
    contracts = relationship("Contract", back_populates="room")
    meters = relationship("Meter", back_populates="room", cascade="all, delete-orphan")


class Renter(Base, RemarksLogMixin):
    __tablename__ = "renters"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    gender = Column(String(10), nullable=True)
    phone = Column(String(50), nullable=True)
    id_card = Column(String(50), nullable=True)
    emergency_contact = Column(String(100), nullable=True)
    emergency_phone = Column(String(50), nullable=True)
    move_in_date = Column(Date, nullable=True)
    tenant_count = Column(Integer, default=1)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    contracts = relationship("Contract", back_populates="renter")


class Contract(Base, RemarksLogMixin):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    contract_number = Column(String(50), unique=True, nullable=False, index=True)

    # Relations
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    renter_id = Column(Integer, ForeignKey("renters.id"), nullable=False)
    renewed_from_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)

    # Informations du contrat
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    monthly_rent = Column(Numeric(10, 2), nullable=False)
    total_rent = Column(Numeric(12, 2), nullable=False)  # Loyer mensuel x nombre de mois
    deposit = Column(Numeric(10, 2), nullable=False)
    key_deposit = Column(Numeric(10, 2), default=0)
    cleaning_fee = Column(Numeric(10, 2), default=0)

    # Statut
    status = Column(Enum(ContractStatus), default=ContractStatus.PENDING, nullable=False)
    business_status = Column(String(50), default=BusinessStatus.NORMAL.value)
    # Vaut room_id tant que le contrat est ACTIVE, NULL sinon : une seule location active par chambre
    active_room_guard = Column(Integer, unique=True, nullable=True)

    # Conditions de paiement et signature
    payment_method = Column(String(50), nullable=True)
    payment_timing = Column(String(50), nullable=True)
    signed_by = Column(String(100), nullable=True)
    signed_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    room = relationship("Room", back_populates="contracts")
    renter = relationship("Renter", back_populates="contracts")
    bills = relationship("Bill", back_populates="contract", cascade="all, delete-orphan")
    meter_readings = relationship("MeterReading", back_populates="contract")
    renewed_from = relationship("Contract", remote_side=[id])

    def set_status(self, status: ContractStatus):
        """Change le statut et maintient la garde d'unicité sur la chambre"""
        self.status = status
        self.active_room_guard = self.room_id if status == ContractStatus.ACTIVE else None


class Meter(Base, TimestampMixin):
    __tablename__ = "meters"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    meter_number = Column(String(50), nullable=True)
    meter_type = Column(Enum(MeterType), nullable=False)
    display_name = Column(String(50), nullable=False)  # Unique par chambre (validé, pas contraint)
    unit_price = Column(Numeric(10, 4), nullable=True)  # Surcharge du prix global
    unit = Column(String(10), nullable=False)
    location = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True)
    remarks = Column(String(200), nullable=True)

    room = relationship("Room", back_populates="meters")
    readings = relationship("MeterReading", back_populates="meter", cascade="all, delete-orphan")


class MeterReading(Base, TimestampMixin):
    __tablename__ = "meter_readings"

    id = Column(Integer, primary_key=True, index=True)
    meter_id = Column(Integer, ForeignKey("meters.id"), nullable=False)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=True)  # NULL pour un relevé de base

    previous_reading = Column(Numeric(12, 2), default=0)
    current_reading = Column(Numeric(12, 2), nullable=False)
    usage = Column(Numeric(12, 2), default=0)
    unit_price = Column(Numeric(10, 4), default=0)  # Prix figé au moment du relevé
    amount = Column(Numeric(10, 2), default=0)
    reading_date = Column(Date, nullable=False)
    period = Column(String(50), nullable=True)

    status = Column(Enum(ReadingStatus), default=ReadingStatus.PENDING, nullable=False)
    is_billed = Column(Boolean, default=False, nullable=False)
    operator = Column(String(100), nullable=True)
    remarks = Column(String(500), nullable=True)

    meter = relationship("Meter", back_populates="readings")
    contract = relationship("Contract", back_populates="meter_readings")
    bill_details = relationship("BillDetail", back_populates="meter_reading")

    __table_args__ = (
        Index("ix_meter_readings_meter_date", "meter_id", "reading_date"),
    )


class Bill(Base, TimestampMixin, MetadataMixin):
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True)
    bill_number = Column(String(50), unique=True, nullable=False, index=True)
    bill_type = Column(Enum(BillType), nullable=False)

    # Montants : amount == received_amount + pending_amount, un montant négatif est un remboursement
    amount = Column(Numeric(10, 2), nullable=False)
    received_amount = Column(Numeric(10, 2), default=0, nullable=False)
    pending_amount = Column(Numeric(10, 2), nullable=False)

    due_date = Column(Date, nullable=False)
    paid_date = Column(Date, nullable=True)
    period = Column(String(100), nullable=True)
    status = Column(Enum(BillStatus), default=BillStatus.PENDING, nullable=False)

    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False)
    meter_reading_id = Column(Integer, ForeignKey("meter_readings.id"), nullable=True)  # Lien direct (stratégie SINGLE)

    payment_method = Column(String(50), nullable=True)
    operator = Column(String(100), nullable=True)
    remarks = Column(Text, nullable=True)

    contract = relationship("Contract", back_populates="bills")
    meter_reading = relationship("MeterReading")
    details = relationship("BillDetail", back_populates="bill", cascade="all, delete-orphan")


class BillDetail(Base):
    __tablename__ = "bill_details"

    id = Column(Integer, primary_key=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=False)
    meter_reading_id = Column(Integer, ForeignKey("meter_readings.id"), nullable=False)

    meter_type = Column(Enum(MeterType), nullable=False)
    meter_name = Column(String(50), nullable=False)
    usage = Column(Numeric(12, 2), nullable=False)
    unit = Column(String(10), nullable=True)
    unit_price = Column(Numeric(10, 4), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    previous_reading = Column(Numeric(12, 2), default=0)
    current_reading = Column(Numeric(12, 2), nullable=False)
    reading_date = Column(Date, nullable=False)
    price_source = Column(Enum(PriceSource), default=PriceSource.GLOBAL_SETTING)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    bill = relationship("Bill", back_populates="details")
    meter_reading = relationship("MeterReading", back_populates="bill_details")


class GlobalSetting(Base, TimestampMixin):
    __tablename__ = "global_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)  # Valeur sérialisée en JSON
    type = Column(String(20), default="string")
    category = Column(String(50), default="system")
    description = Column(String(255), nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(Enum(ActionType))  # Type d'action effectuée
    entity_type = Column(Enum(EntityType))  # Type d'entité concernée
    entity_id = Column(Integer, nullable=True)  # ID de l'entité concernée
    description = Column(String(500))  # Description de l'action
    details = Column(Text, nullable=True)  # Détails JSON de l'action (données avant/après)
    endpoint = Column(String(200), nullable=True)  # Endpoint API appelé
    method = Column(String(10), nullable=True)  # GET, POST, PUT, DELETE
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
