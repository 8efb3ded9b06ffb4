"""
Enums partagés pour l'application de gestion locative
Centralisation de toutes les énumérations pour éviter la duplication
"""
import enum


class RoomType(str, enum.Enum):
    """Types de location d'une chambre"""
    SHARED = "SHARED"    # Colocation
    WHOLE = "WHOLE"      # Logement entier
    SINGLE = "SINGLE"    # Chambre individuelle


class RoomStatus(str, enum.Enum):
    """Statuts d'occupation d'une chambre"""
    VACANT = "VACANT"
    OCCUPIED = "OCCUPIED"
    OVERDUE = "OVERDUE"
    MAINTENANCE = "MAINTENANCE"


class ContractStatus(str, enum.Enum):
    """Cycle de vie d'un contrat"""
    PENDING = "PENDING"         # Date de début future
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"         # Terminal
    TERMINATED = "TERMINATED"   # Terminal, uniquement via le départ


class BusinessStatus(str, enum.Enum):
    """Libellés opérationnels des contrats"""
    NORMAL = "NORMAL"
    WAITING = "WAITING"
    RENEWED = "RENEWED"
    CHECKED_OUT = "CHECKED_OUT"


class MeterType(str, enum.Enum):
    """Types de compteurs"""
    ELECTRICITY = "ELECTRICITY"
    COLD_WATER = "COLD_WATER"
    HOT_WATER = "HOT_WATER"
    GAS = "GAS"


class ReadingStatus(str, enum.Enum):
    """Statuts d'un relevé de compteur"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    BILLED = "BILLED"
    CANCELLED = "CANCELLED"


class BillType(str, enum.Enum):
    """Types de factures"""
    RENT = "RENT"
    DEPOSIT = "DEPOSIT"
    UTILITIES = "UTILITIES"
    OTHER = "OTHER"


class BillStatus(str, enum.Enum):
    """Statuts de paiement d'une facture"""
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    COMPLETED = "COMPLETED"


class PriceSource(str, enum.Enum):
    """Origine du prix unitaire d'un relevé"""
    METER_CONFIG = "METER_CONFIG"
    GLOBAL_SETTING = "GLOBAL_SETTING"


class AggregationStrategy(str, enum.Enum):
    """Stratégie de génération des factures de charges"""
    SINGLE = "SINGLE"            # Une facture par compteur
    AGGREGATED = "AGGREGATED"    # Une facture par contrat avec détails


class PaymentCycle(str, enum.Enum):
    """Cycles de paiement du loyer"""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    ANNUALLY = "annually"


class SettingType(str, enum.Enum):
    """Types de valeurs des paramètres globaux"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


class SettingCategory(str, enum.Enum):
    """Catégories des paramètres globaux"""
    SYSTEM = "system"
    BILLING = "billing"
    NOTIFICATION = "notification"
    READING = "reading"


class SettlementType(str, enum.Enum):
    """Sens du solde de départ"""
    REFUND = "REFUND"
    CHARGE = "CHARGE"
    BALANCED = "BALANCED"


class ReminderLevel(str, enum.Enum):
    """Niveaux de rappel d'échéance"""
    OVERDUE = "overdue"
    URGENT = "urgent"
    WARNING = "warning"
    NORMAL = "normal"


class BillingStatus(str, enum.Enum):
    """Avancement de la facturation après création d'un contrat"""
    COMPLETED = "completed"
    PENDING = "pending"
    SKIPPED = "skipped"
    FAILED = "failed"


class ActionType(str, enum.Enum):
    """Types d'actions pour l'audit logging"""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ACTIVATE = "ACTIVATE"
    RENEW = "RENEW"
    CHECKOUT = "CHECKOUT"
    REPAIR = "REPAIR"
    ERROR = "ERROR"


class EntityType(str, enum.Enum):
    """Types d'entités dans l'application"""
    BUILDING = "BUILDING"
    ROOM = "ROOM"
    RENTER = "RENTER"
    CONTRACT = "CONTRACT"
    METER = "METER"
    METER_READING = "METER_READING"
    BILL = "BILL"
    SETTING = "SETTING"
