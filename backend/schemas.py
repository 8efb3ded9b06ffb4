from pydantic import BaseModel, Field, TypeAdapter, field_validator
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from datetime import date, datetime
from decimal import Decimal

# Import centralisé des enums
from enums import (
    RoomType, RoomStatus, ContractStatus, MeterType, ReadingStatus,
    BillType, BillStatus, PriceSource, AggregationStrategy, SettlementType, BillingStatus
)
from validators import FinancialValidators

# ---------------------- BUILDING / ROOM / RENTER SCHEMAS ----------------------

class BuildingCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Nom de l'immeuble")
    address: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None

class BuildingOut(BuildingCreate):
    id: int
    total_rooms: int

    model_config = {"from_attributes": True}

class RoomCreate(BaseModel):
    room_number: str = Field(..., min_length=1, max_length=50, description="Numéro de chambre")
    floor_number: int = Field(1, ge=-5, le=200)
    building_id: int
    room_type: RoomType = RoomType.SINGLE
    area: Optional[Decimal] = Field(None, ge=0)
    rent: Decimal = Field(..., gt=0, description="Loyer affiché")

class RoomOut(RoomCreate):
    id: int
    status: RoomStatus
    current_renter: Optional[str] = None
    overdue_days: Optional[int] = None

    model_config = {"from_attributes": True}

class RenterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    gender: Optional[str] = Field(None, max_length=10)
    phone: Optional[str] = Field(None, max_length=50)
    id_card: Optional[str] = Field(None, max_length=50)
    emergency_contact: Optional[str] = Field(None, max_length=100)
    emergency_phone: Optional[str] = Field(None, max_length=50)
    move_in_date: Optional[date] = None
    tenant_count: int = Field(1, ge=1)

class RenterOut(RenterCreate):
    id: int
    remarks_log: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {"from_attributes": True}

# ---------------------- METER SCHEMAS ----------------------

class MeterCreate(BaseModel):
    meter_type: str = Field(..., description="ELECTRICITY, COLD_WATER, HOT_WATER ou GAS")
    display_name: str
    unit_price: Optional[Decimal] = None
    unit: Optional[str] = None
    location: Optional[str] = None
    remarks: Optional[str] = None

class MeterOut(BaseModel):
    id: int
    room_id: int
    meter_number: Optional[str] = None
    meter_type: MeterType
    display_name: str
    unit_price: Optional[Decimal] = None
    unit: str
    location: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}

class MeterReadingInput(BaseModel):
    meter_id: int
    current_reading: Decimal
    reading_date: date = Field(default_factory=date.today)
    operator: Optional[str] = Field(None, max_length=100)
    remarks: Optional[str] = Field(None, max_length=500)

class MeterReadingBatch(BaseModel):
    readings: List[MeterReadingInput] = Field(..., min_length=1)
    aggregation_strategy: Optional[str] = Field(None, description="SINGLE ou AGGREGATED")
    confirm_abnormal: bool = Field(False, description="Accepter les relevés anormaux")
    generate_bills: bool = True

    @field_validator('aggregation_strategy')
    @classmethod
    def validate_strategy(cls, v):
        if v is None:
            return v
        normalized = v.strip().upper()
        if normalized not in {s.value for s in AggregationStrategy}:
            raise ValueError('聚合策略无效')
        return normalized

class MeterReadingOut(BaseModel):
    id: int
    meter_id: int
    contract_id: Optional[int] = None
    previous_reading: Decimal
    current_reading: Decimal
    usage: Decimal
    unit_price: Decimal
    amount: Decimal
    reading_date: date
    period: Optional[str] = None
    status: ReadingStatus
    is_billed: bool
    operator: Optional[str] = None

    model_config = {"from_attributes": True}

# ---------------------- BILL METADATA (union typée) ----------------------

class RentBillMetadata(BaseModel):
    kind: Literal["RENT"] = "RENT"
    trigger_type: str = "CONTRACT_SIGNED"
    payment_cycle: str
    period_start: date
    period_end: date
    months: int

class UtilityLine(BaseModel):
    meter_id: int
    meter_reading_id: int
    meter_type: MeterType
    meter_name: str
    usage: Decimal
    unit: str
    unit_price: Decimal
    amount: Decimal
    price_source: PriceSource

class UtilitySingleMetadata(BaseModel):
    kind: Literal["UTILITY_SINGLE"] = "UTILITY_SINGLE"
    trigger_type: str = "UTILITY_READING"
    generated_at: datetime
    line: UtilityLine

class UtilityBreakdownMetadata(BaseModel):
    kind: Literal["UTILITY_BREAKDOWN"] = "UTILITY_BREAKDOWN"
    trigger_type: str = "UTILITY_READING"
    generated_at: datetime
    aggregation_strategy: AggregationStrategy = AggregationStrategy.AGGREGATED
    meter_count: int
    total_usage: Decimal
    total_amount: Decimal
    breakdown: List[UtilityLine]

class SettlementMetadata(BaseModel):
    kind: Literal["SETTLEMENT"] = "SETTLEMENT"
    trigger_type: str = "CHECKOUT"
    checkout_date: date
    checkout_reason: str
    actual_days: int
    should_pay_rent: Decimal
    paid_rent: Decimal
    rent_difference: Decimal
    deposit_refund: Decimal
    damage_assessment: Decimal
    refund_amount: Decimal
    additional_amount: Decimal
    settlement_type: SettlementType
    description: str

BillMetadata = Annotated[
    Union[RentBillMetadata, UtilitySingleMetadata, UtilityBreakdownMetadata, SettlementMetadata],
    Field(discriminator="kind")
]
bill_metadata_adapter = TypeAdapter(BillMetadata)

# ---------------------- BILL SCHEMAS ----------------------

class BillDetailOut(BaseModel):
    id: int
    meter_reading_id: int
    meter_type: MeterType
    meter_name: str
    usage: Decimal
    unit: Optional[str] = None
    unit_price: Decimal
    amount: Decimal
    previous_reading: Decimal
    current_reading: Decimal
    reading_date: date
    price_source: PriceSource

    model_config = {"from_attributes": True}

class BillOut(BaseModel):
    id: int
    bill_number: str
    bill_type: BillType
    amount: Decimal
    received_amount: Decimal
    pending_amount: Decimal
    due_date: date
    paid_date: Optional[date] = None
    period: Optional[str] = None
    status: BillStatus
    contract_id: int
    meter_reading_id: Optional[int] = None
    payment_method: Optional[str] = None
    operator: Optional[str] = None
    remarks: Optional[str] = None

    model_config = {"from_attributes": True}

class BillWithDetails(BillOut):
    details: List[BillDetailOut] = Field(default_factory=list)
    bill_metadata: Optional[BillMetadata] = None

class ReminderOut(BaseModel):
    should_remind: bool
    days_left: int
    status: str
    message: str

class MeterReadingBatchResult(BaseModel):
    readings: List[MeterReadingOut] = Field(default_factory=list)
    bills: List[BillOut] = Field(default_factory=list)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Dict[str, int]
    message: str

class BillPaymentUpdate(BaseModel):
    received_amount: Decimal = Field(..., description="Montant reçu cumulé")
    status: Optional[BillStatus] = None
    paid_date: Optional[date] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    operator: Optional[str] = Field(None, max_length=100)

    @field_validator('received_amount')
    @classmethod
    def validate_received_amount(cls, v):
        if v < 0:
            raise ValueError('实收金额不能为负数')
        return FinancialValidators.validate_amount(v, "montant reçu")

class BillDetailRepairRequest(BaseModel):
    action: Literal["repair", "validate", "cleanup"] = "repair"

# ---------------------- CONTRACT SCHEMAS ----------------------

class ContractTerms(BaseModel):
    start_date: date = Field(..., description="Date de début")
    end_date: date = Field(..., description="Date de fin")
    monthly_rent: Decimal = Field(..., description="Loyer mensuel")
    deposit: Decimal = Field(..., description="Dépôt de garantie")
    key_deposit: Decimal = Field(Decimal("0"), ge=0)
    cleaning_fee: Decimal = Field(Decimal("0"), ge=0)
    payment_method: Optional[str] = Field(None, max_length=50, description="月付, 季付, 半年付, 年付")
    payment_timing: Optional[str] = Field(None, max_length=50)
    signed_by: Optional[str] = Field(None, max_length=100)
    signed_date: Optional[date] = None
    remarks: Optional[str] = Field(None, max_length=2000)
    generate_bills: bool = True

class ContractCreate(ContractTerms):
    renter_id: int
    room_id: int
    # Relevés d'entrée par id de compteur
    initial_meter_readings: Optional[Dict[int, Decimal]] = None

class ContractRenew(ContractTerms):
    pass

class ContractOut(BaseModel):
    id: int
    contract_number: str
    room_id: int
    renter_id: int
    renewed_from_id: Optional[int] = None
    start_date: date
    end_date: date
    monthly_rent: Decimal
    total_rent: Decimal
    deposit: Decimal
    key_deposit: Decimal
    cleaning_fee: Decimal
    status: ContractStatus
    business_status: Optional[str] = None
    payment_method: Optional[str] = None
    payment_timing: Optional[str] = None
    signed_by: Optional[str] = None
    signed_date: Optional[date] = None
    remarks_log: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = {"from_attributes": True}

class ContractCreateResult(BaseModel):
    contract: ContractOut
    bills: List[BillOut] = Field(default_factory=list)
    billing_status: BillingStatus
    message: str

class RenewalDefaults(BaseModel):
    source_contract_id: int
    renter_id: int
    room_id: int
    start_date: date
    end_date: date
    monthly_rent: Decimal
    deposit: Decimal
    key_deposit: Decimal
    cleaning_fee: Decimal
    payment_method: Optional[str] = None
    payment_timing: Optional[str] = None

class ContractCheckout(BaseModel):
    checkout_date: date
    checkout_reason: str = Field(..., min_length=1, max_length=200)
    damage_assessment: Decimal = Decimal("0")
    # Loyer réellement perçu, loyer total du contrat par défaut
    paid_rent: Optional[Decimal] = Field(None, ge=0)
    # Relevés finaux par type de compteur en minuscules (electricity, cold_water, ...)
    final_meter_readings: Optional[Dict[str, Decimal]] = None
    remarks: Optional[str] = Field(None, max_length=2000)

class SettlementOut(BaseModel):
    actual_days: int
    total_days: int
    daily_rent: Decimal
    should_pay_rent: Decimal
    paid_rent: Decimal
    rent_difference: Decimal
    deposit_refund: Decimal
    refund_amount: Decimal
    additional_amount: Decimal
    damage_assessment: Decimal
    settlement_type: SettlementType
    description: str

class CheckoutResult(BaseModel):
    contract: ContractOut
    settlement: SettlementOut
    settlement_bill: Optional[BillOut] = None
    settled_bills: int
    final_readings: List[MeterReadingOut] = Field(default_factory=list)
    utility_bills: List[BillOut] = Field(default_factory=list)
    message: str

class SettlementLineOverride(BaseModel):
    rent_refund: Optional[Decimal] = None
    deposit_refund: Optional[Decimal] = None
    key_deposit_refund: Optional[Decimal] = None
    rent_charge: Optional[Decimal] = None
    damage_charge: Optional[Decimal] = None
    cleaning_charge: Optional[Decimal] = None

# ---------------------- SETTINGS SCHEMAS ----------------------

class GlobalSettingOut(BaseModel):
    key: str
    value: Any
    type: str
    category: str
    description: Optional[str] = None

class SettingUpdate(BaseModel):
    value: Any

class BillingSettingsOut(BaseModel):
    electricity_price: Decimal
    water_price: Decimal
    gas_price: Decimal
    default_rent_cycle: str
