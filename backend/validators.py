"""
Validateurs réutilisables pour la gestion locative
Les validateurs de compteurs renvoient une liste d'erreurs au lieu de lever,
l'appelant décide de bloquer ou d'avertir.
"""
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from constants import METER_BUSINESS_RULES
from enums import MeterType
from services.money import to_decimal, round_money


def _result(errors: List[str]) -> Dict[str, Any]:
    return {"is_valid": not errors, "errors": errors}


def _get(item: Any, name: str, default=None):
    """Lit un champ sur un dict ou sur un objet (modèle, schéma)"""
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


class MeterValidators:
    """Validateurs de configuration et de relevés de compteurs"""

    @staticmethod
    def validate_meter_config_data(data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Valide la configuration d'un compteur (nom, type, prix, unité, emplacement, remarques)
        """
        rules = METER_BUSINESS_RULES
        errors = []

        display_name = (data.get("display_name") or "").strip()
        if (not display_name
                or len(display_name) > rules["display_name_max_length"]
                or not re.match(rules["display_name_pattern"], display_name)):
            errors.append("显示名称格式不正确，最多50字符，支持中文、英文、数字、横线、下划线")

        meter_type = data.get("meter_type")
        if meter_type not in {t.value for t in MeterType}:
            errors.append("仪表类型无效")

        unit_price = data.get("unit_price")
        if unit_price is not None:
            try:
                price = to_decimal(unit_price)
            except (InvalidOperation, ValueError, TypeError):
                price = None
            if price is None or not (rules["min_unit_price"] <= price <= rules["max_unit_price"]):
                errors.append(f"单价必须在{rules['min_unit_price']}-{rules['max_unit_price']}元之间")

        unit = (data.get("unit") or "").strip()
        if not unit or len(unit) > rules["unit_max_length"]:
            errors.append("计量单位不能为空且最多10个字符")

        location = data.get("location")
        if location and len(location) > rules["location_max_length"]:
            errors.append("安装位置最多100个字符")

        remarks = data.get("remarks")
        if remarks and len(remarks) > rules["remarks_max_length"]:
            errors.append("备注信息最多200个字符")

        return _result(errors)

    @staticmethod
    def check_meter_limits(
        existing_meters: Iterable[Any],
        new_meter_type: str,
        new_display_name: str,
        exclude_meter_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Plafonds par chambre (total et par type) et unicité du nom affiché
        """
        rules = METER_BUSINESS_RULES
        errors = []

        meters = [m for m in existing_meters if exclude_meter_id is None or _get(m, "id") != exclude_meter_id]

        if len(meters) >= rules["max_meters_per_room"]:
            errors.append(f"单个房间最多只能配置{rules['max_meters_per_room']}个仪表")

        same_type = [m for m in meters if MeterType(_get(m, "meter_type")) == MeterType(new_meter_type)]
        if len(same_type) >= rules["max_same_type_per_room"]:
            errors.append(f"单个房间同类型仪表最多只能配置{rules['max_same_type_per_room']}个")

        if any(_get(m, "display_name") == new_display_name for m in meters):
            errors.append("显示名称在该房间内已存在，请使用不同的名称")

        return _result(errors)

    @staticmethod
    def validate_meter_reading_data(data: Mapping[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
        """
        Point d'entrée unique avant l'enregistrement d'un relevé
        """
        rules = METER_BUSINESS_RULES
        errors = []
        today = today or date.today()

        current = to_decimal(data.get("current_reading"))
        previous = data.get("previous_reading")

        if current < 0:
            errors.append("读数不能为负数")
        if current > rules["max_reading_value"]:
            errors.append(f"读数不能超过 {rules['max_reading_value']}")

        if previous is not None:
            previous = to_decimal(previous)
            if current < previous:
                errors.append("本次读数不能小于上次读数")
            elif current - previous > rules["max_usage_per_period"]:
                errors.append(f"单期用量不能超过 {rules['max_usage_per_period']}")

        reading_date = data.get("reading_date")
        if reading_date is not None and reading_date > today:
            errors.append("抄表日期不能是未来时间")

        return _result(errors)


class FinancialValidators:
    """Validateurs spécifiques aux données financières"""

    @staticmethod
    def validate_amount(amount: Decimal, field_name: str = "montant") -> Decimal:
        """
        Valide un montant financier
        """
        if amount < 0:
            raise ValueError(f'Le {field_name} ne peut pas être négatif')

        # Limiter à 2 décimales pour les montants financiers
        return round_money(amount)
