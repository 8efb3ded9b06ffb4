"""
Constantes centralisées pour l'application de gestion locative
Standardisation des valeurs et conventions utilisées dans l'application
"""
from decimal import Decimal

from enums import MeterType, BillType, PaymentCycle

# ==================== CONFIGURATION GÉNÉRALE ====================

APP_NAME = "Gestion Locative"
APP_VERSION = "1.0.0"
APP_DESCRIPTION = "Back-office de gestion locative : contrats, relevés et facturation"

# ==================== RÈGLES MÉTIER DES COMPTEURS ====================

METER_BUSINESS_RULES = {
    "max_meters_per_room": 10,
    "max_same_type_per_room": 5,
    "min_unit_price": Decimal("0.01"),
    "max_unit_price": Decimal("100"),
    "display_name_max_length": 50,
    "display_name_pattern": r'^[\u4e00-\u9fa5a-zA-Z0-9\-_\s]+$',
    "unit_max_length": 10,
    "location_max_length": 100,
    "remarks_max_length": 200,
    "max_reading_value": Decimal("999999"),
    "max_usage_per_period": Decimal("10000"),
    "abnormal_usage_multiplier": Decimal("3"),
    "min_history_samples": 3,
}

METER_TYPE_LABELS = {
    MeterType.ELECTRICITY: "电表",
    MeterType.COLD_WATER: "冷水表",
    MeterType.HOT_WATER: "热水表",
    MeterType.GAS: "燃气表",
}

# Libellés utilisés dans les remarques des factures
METER_FEE_LABELS = {
    MeterType.ELECTRICITY: "电费",
    MeterType.COLD_WATER: "冷水费",
    MeterType.HOT_WATER: "热水费",
    MeterType.GAS: "燃气费",
}
DEFAULT_FEE_LABEL = "水电费"

METER_DEFAULT_UNITS = {
    MeterType.ELECTRICITY: "度",
    MeterType.COLD_WATER: "吨",
    MeterType.HOT_WATER: "吨",
    MeterType.GAS: "立方米",
}
FALLBACK_UNIT = "度"

METER_NUMBER_PREFIXES = {
    MeterType.ELECTRICITY: "EL",
    MeterType.COLD_WATER: "CW",
    MeterType.HOT_WATER: "HW",
    MeterType.GAS: "GS",
}

# ==================== PRIX DE SECOURS ====================

# Table unique partagée par le calcul en direct et le calcul sur cache
FALLBACK_BILLING_SETTINGS = {
    "electricity_price": Decimal("0.6"),
    "water_price": Decimal("3.5"),
    "gas_price": Decimal("2.5"),
    "default_rent_cycle": PaymentCycle.MONTHLY.value,
}

# Clé de paramètre global -> clé de la configuration de facturation
BILLING_SETTING_KEYS = {
    "electricityPrice": "electricity_price",
    "waterPrice": "water_price",
    "gasPrice": "gas_price",
    "defaultRentCycle": "default_rent_cycle",
}

# Type de compteur -> prix de facturation applicable
METER_PRICE_KEYS = {
    MeterType.ELECTRICITY: "electricity_price",
    MeterType.COLD_WATER: "water_price",
    MeterType.HOT_WATER: "water_price",
    MeterType.GAS: "gas_price",
}

# ==================== PARAMÈTRES GLOBAUX PAR DÉFAUT ====================

# (clé, valeur, type, catégorie, description)
DEFAULT_SETTINGS = [
    ("electricityPrice", 0.6, "number", "billing", "电费单价（元/度）"),
    ("waterPrice", 3.5, "number", "billing", "水费单价（元/吨）"),
    ("gasPrice", 2.5, "number", "billing", "燃气费单价（元/立方米）"),
    ("defaultRentCycle", "monthly", "string", "billing", "默认租金周期"),
    ("autoBackup", True, "boolean", "system", "自动备份"),
    ("theme", "light", "string", "system", "界面主题"),
    ("enableNotifications", True, "boolean", "notification", "启用通知"),
    ("reminderDays", 7, "number", "notification", "到期提醒天数"),
    ("readingCycle", "monthly", "string", "reading", "抄表周期"),
    ("customReadingDays", 30, "number", "reading", "自定义抄表天数"),
    ("readingReminderDays", 3, "number", "reading", "抄表提醒天数"),
    ("usageAnomalyThreshold", 3.0, "number", "reading", "用量异常倍数阈值"),
    ("autoGenerateBills", True, "boolean", "reading", "抄表后自动生成账单"),
    ("requireReadingApproval", False, "boolean", "reading", "抄表需要审核"),
]

# ==================== FACTURATION ====================

RENT_CYCLE_MULTIPLIERS = {
    PaymentCycle.MONTHLY.value: 1,
    PaymentCycle.QUARTERLY.value: 3,
    PaymentCycle.SEMI_ANNUALLY.value: 6,
    PaymentCycle.ANNUALLY.value: 12,
}

PAYMENT_CYCLE_LABELS = {
    PaymentCycle.MONTHLY.value: "月付",
    PaymentCycle.QUARTERLY.value: "季付",
    PaymentCycle.SEMI_ANNUALLY.value: "半年付",
    PaymentCycle.ANNUALLY.value: "年付",
}

BILL_TYPE_LETTERS = {
    BillType.RENT: "R",
    BillType.DEPOSIT: "D",
    BillType.UTILITIES: "U",
    BillType.OTHER: "O",
}

UTILITY_BILL_DUE_DAYS = 10
DEFAULT_REMINDER_DAYS = 7
URGENT_REMINDER_DAYS = 3
DEFAULT_KEY_DEPOSIT = Decimal("100")
BILL_NUMBER_MAX_ATTEMPTS = 5

# Convention fixe de 30 jours par mois pour le prorata
DAYS_PER_MONTH = 30

SYSTEM_OPERATOR = "SYSTEM"
CHECKOUT_OPERATOR = "系统自动"
CHECKOUT_PAYMENT_METHOD = "退租结算"
CHECKOUT_READING_OPERATOR = "退租结算"
DEFAULT_PAYMENT_METHOD = "待确定"

# ==================== MESSAGES MÉTIER ====================

ERROR_MESSAGES = {
    # Contrats
    "END_BEFORE_START": "结束日期必须晚于开始日期",
    "NON_POSITIVE_AMOUNTS": "租金和押金必须大于0",
    "ROOM_NOT_FOUND": "房间不存在",
    "RENTER_NOT_FOUND": "租客不存在",
    "CONTRACT_NOT_FOUND": "合同不存在",
    "RENTER_HAS_ACTIVE_CONTRACT": "该租客已有活跃合同",
    "CHECKOUT_BEFORE_TODAY": "退租日期不能早于当前日期",
    "CHECKOUT_AFTER_END": "退租日期不能晚于合同结束日期",
    "NEGATIVE_DAMAGE": "损坏赔偿金额不能为负数",
    "CHECKOUT_REASON_REQUIRED": "退租日期和退租原因为必填项",
    "RENEWAL_OVERLAP": "原合同仍在生效中，续租合同须在原合同结束后开始",
    "ROOM_METER_MISMATCH": "仪表不属于该房间",

    # Compteurs et relevés
    "METER_NOT_FOUND": "仪表不存在",
    "METER_INACTIVE": "仪表已停用",
    "READING_ALREADY_TODAY": "该仪表今日已抄表",

    # Factures
    "BILL_NOT_FOUND": "账单不存在",
    "NEGATIVE_RECEIVED": "实收金额不能为负数",
    "BILL_NUMBER_EXHAUSTED": "账单编号生成失败，请重试",

    # Paramètres
    "SETTING_NOT_FOUND": "设置项不存在",
    "INVALID_STRATEGY": "聚合策略无效",
}

SUCCESS_MESSAGES = {
    "CONTRACT_CREATED": "合同创建成功，已自动生成 {count} 个账单",
    "CONTRACT_CREATED_BILLING_PENDING": "合同创建成功，账单正在后台生成",
    "CONTRACT_CREATED_NO_BILLS": "合同创建成功",
    "CONTRACT_ACTIVATED": "合同激活成功",
    "CONTRACT_RENEWED": "续租成功",
    "CHECKOUT_SUCCESS": "退租成功",
}

# ==================== CONFIGURATION RÉGIONALE ====================

DATE_FORMAT = "%Y-%m-%d"
DEFAULT_CURRENCY_SYMBOL = "¥"
