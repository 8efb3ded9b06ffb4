"""
Tests des utilitaires et validateurs de compteurs
"""
from datetime import date, timedelta
from decimal import Decimal

from enums import MeterType
from services.meter_utils import (
    calculate_usage, calculate_amount, detect_abnormal_reading, format_meter_type,
    get_default_unit, get_default_unit_price, generate_period_description, generate_meter_number
)
from validators import MeterValidators


class TestUsageAndAmount:
    """Consommation et montant d'un relevé"""

    def test_first_reading_has_no_usage(self):
        assert calculate_usage(100, None) == 0

    def test_regression_is_floored_at_zero(self):
        assert calculate_usage(100, 150) == 0

    def test_usage_is_difference(self):
        assert calculate_usage(150, 100) == 50

    def test_amount_rounded_half_up(self):
        assert calculate_amount(Decimal("3.333"), Decimal("1.5")) == Decimal("5.00")
        assert calculate_amount(Decimal("0.005"), 1) == Decimal("0.01")
        assert calculate_amount(50, Decimal("0.6")) == Decimal("30.00")


class TestAbnormalReading:

    def test_first_reading_within_bounds_is_normal(self):
        assert detect_abnormal_reading(500, None) is False

    def test_value_above_maximum(self):
        assert detect_abnormal_reading(1000000, None) is True

    def test_regression(self):
        assert detect_abnormal_reading(90, 100) is True

    def test_usage_above_period_cap(self):
        assert detect_abnormal_reading(10200, 100) is True

    def test_usage_far_above_history(self):
        # Écarts historiques de 10, moyenne 10 : 40 > 3 x 10
        assert detect_abnormal_reading(170, 130, [130, 120, 110, 100]) is True

    def test_usage_in_line_with_history(self):
        assert detect_abnormal_reading(145, 130, [130, 120, 110, 100]) is False

    def test_history_needs_three_samples(self):
        assert detect_abnormal_reading(200, 110, [110, 100]) is False

    def test_any_usage_after_flat_history(self):
        assert detect_abnormal_reading(105, 100, [100, 100, 100]) is True
        assert detect_abnormal_reading(100, 100, [100, 100, 100]) is False


class TestMeterConfigValidation:

    def test_valid_config(self):
        result = MeterValidators.validate_meter_config_data({
            "meter_type": "ELECTRICITY", "display_name": "电表-1", "unit": "度", "unit_price": Decimal("0.8")
        })
        assert result == {"is_valid": True, "errors": []}

    def test_invalid_fields_are_all_reported(self):
        result = MeterValidators.validate_meter_config_data({
            "meter_type": "STEAM",
            "display_name": "电表!",
            "unit": "",
            "unit_price": Decimal("150"),
            "location": "x" * 101,
        })
        assert result["is_valid"] is False
        assert len(result["errors"]) == 5

    def test_limits_per_room(self):
        existing = [{"id": i, "meter_type": "ELECTRICITY", "display_name": f"电表{i}"} for i in range(5)]
        result = MeterValidators.check_meter_limits(existing, "ELECTRICITY", "电表9")
        assert result["is_valid"] is False
        assert "同类型" in result["errors"][0]

        # Le compteur modifié n'est pas compté
        result = MeterValidators.check_meter_limits(existing, "ELECTRICITY", "电表9", exclude_meter_id=0)
        assert result["is_valid"] is True

    def test_duplicate_display_name(self):
        existing = [{"id": 1, "meter_type": "COLD_WATER", "display_name": "冷水表"}]
        result = MeterValidators.check_meter_limits(existing, "HOT_WATER", "冷水表")
        assert result["errors"] == ["显示名称在该房间内已存在，请使用不同的名称"]


class TestReadingValidation:

    def test_valid_reading(self):
        today = date(2024, 3, 15)
        result = MeterValidators.validate_meter_reading_data(
            {"current_reading": 150, "previous_reading": 100, "reading_date": today}, today
        )
        assert result["is_valid"] is True

    def test_negative_regression_and_future_date(self):
        today = date(2024, 3, 15)
        result = MeterValidators.validate_meter_reading_data(
            {"current_reading": -1, "previous_reading": 100, "reading_date": today + timedelta(days=1)}, today
        )
        assert "读数不能为负数" in result["errors"]
        assert "本次读数不能小于上次读数" in result["errors"]
        assert "抄表日期不能是未来时间" in result["errors"]

    def test_usage_above_cap(self):
        result = MeterValidators.validate_meter_reading_data({"current_reading": 20001, "previous_reading": 10000})
        assert result["errors"] == ["单期用量不能超过 10000"]


class TestLabels:

    def test_labels_and_defaults(self):
        assert format_meter_type(MeterType.GAS) == "燃气表"
        assert get_default_unit(MeterType.COLD_WATER) == "吨"
        assert get_default_unit_price(MeterType.HOT_WATER) == Decimal("3.5")
        assert generate_period_description(date(2024, 3, 5)) == "2024年3月"

    def test_meter_number_prefix(self):
        number = generate_meter_number(MeterType.COLD_WATER, "101")
        assert number.startswith("CW101")
        assert len(number) == len("CW101") + 6
