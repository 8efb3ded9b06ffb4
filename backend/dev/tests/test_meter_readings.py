"""
Tests de la saisie des relevés par lot et de l'enregistrement des compteurs
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from enums import ReadingStatus
from models import MeterReading

TODAY = date.today()
START = TODAY - timedelta(days=30)


def money(value) -> Decimal:
    return Decimal(str(value))


@pytest.fixture
def contract(client, room, renter, meters, contract_terms):
    """Bail en cours, relevés d'entrée 100 (électricité) et 20 (eau) au début du bail"""
    terms = contract_terms(START, initial_meter_readings={
        str(meters["electricity"].id): "100", str(meters["water"].id): "20"
    })
    response = client.post("/api/contracts/", json={"room_id": room.id, "renter_id": renter.id, **terms})
    assert response.status_code == 200, response.text
    return response.json()["contract"]


@pytest.fixture
def meter_ids(meters):
    return {name: meter.id for name, meter in meters.items()}


def submit(client, *readings, **options):
    payload = {"readings": [{"meter_id": meter_id, "current_reading": value} for meter_id, value in readings]}
    payload.update(options)
    response = client.post("/api/meter-readings/", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


class TestBatchSubmission:

    def test_readings_aggregated_into_one_bill(self, client, contract, meter_ids):
        result = submit(client, (meter_ids["electricity"], "150"), (meter_ids["water"], "25"))

        assert result["summary"] == {"total": 2, "success": 2, "warnings": 0, "errors": 0, "bills_generated": 1}
        assert result["message"] == "成功处理 2 个抄表记录，生成 1 个账单"

        readings = result["readings"]
        assert [money(r["usage"]) for r in readings] == [Decimal("50"), Decimal("5")]
        assert [money(r["amount"]) for r in readings] == [Decimal("30"), Decimal("17.5")]
        assert {r["status"] for r in readings} == {"BILLED"}
        assert all(r["contract_id"] == contract["id"] for r in readings)

        bill = result["bills"][0]
        assert bill["bill_type"] == "UTILITIES"
        assert money(bill["amount"]) == Decimal("47.50")
        assert bill["due_date"] == (TODAY + timedelta(days=10)).isoformat()

        detailed = client.get(f"/api/bills/{bill['id']}").json()
        assert [d["meter_name"] for d in detailed["details"]] == ["电表", "冷水表"]
        assert detailed["bill_metadata"]["kind"] == "UTILITY_BREAKDOWN"
        assert detailed["bill_metadata"]["meter_count"] == 2
        assert [line["meter_type"] for line in detailed["bill_metadata"]["breakdown"]] == ["ELECTRICITY", "COLD_WATER"]

    def test_single_strategy(self, client, contract, meter_ids):
        result = submit(
            client, (meter_ids["electricity"], "150"), (meter_ids["water"], "25"),
            aggregation_strategy="single"
        )

        assert len(result["bills"]) == 2
        assert {bill["meter_reading_id"] for bill in result["bills"]} == {r["id"] for r in result["readings"]}
        assert {r["status"] for r in result["readings"]} == {"PENDING"}

    def test_invalid_strategy_rejected(self, client, contract, meter_ids):
        response = client.post("/api/meter-readings/", json={
            "readings": [{"meter_id": meter_ids["electricity"], "current_reading": "150"}],
            "aggregation_strategy": "monthly"
        })
        assert response.status_code == 422

    def test_meter_price_override(self, client, db, contract, room):
        meter = client.post(f"/api/rooms/{room.id}/meters", json={
            "meter_type": "gas", "display_name": "燃气表", "unit_price": "3"
        }).json()
        assert meter["unit"] == "立方米"

        db.rollback()
        db.add(MeterReading(meter_id=meter["id"], contract_id=contract["id"], previous_reading=10,
                            current_reading=10, usage=0, reading_date=START, status=ReadingStatus.CONFIRMED))
        db.commit()

        result = submit(client, (meter["id"], "14"))
        assert money(result["readings"][0]["unit_price"]) == Decimal("3")
        bill = result["bills"][0]
        assert money(bill["amount"]) == Decimal("12")
        assert bill["remarks"] == "燃气费账单 - 12.00元(4立方米)"

    def test_generation_disabled_by_setting(self, client, contract, meter_ids):
        client.put("/api/settings/autoGenerateBills", json={"value": False})

        result = submit(client, (meter_ids["electricity"], "150"))
        assert result["bills"] == []
        assert result["readings"][0]["status"] == "PENDING"


class TestRejectedReadings:

    def test_duplicate_day_is_a_warning(self, client, contract, meter_ids):
        submit(client, (meter_ids["electricity"], "150"))

        result = submit(client, (meter_ids["electricity"], "160"), (meter_ids["water"], "25"))
        assert result["summary"]["success"] == 1
        assert len(result["warnings"]) == 1
        assert result["warnings"][0]["meter_id"] == meter_ids["electricity"]
        assert result["warnings"][0]["warning"].startswith("该仪表今日已抄表，当前读数: 150")

    def test_regression_is_an_error(self, client, contract, meter_ids):
        result = submit(client, (meter_ids["electricity"], "90"))
        assert result["readings"] == []
        assert result["errors"] == [{"meter_id": meter_ids["electricity"], "error": "本次读数不能小于上次读数"}]

    def test_future_date_is_an_error(self, client, contract, meter_ids):
        response = client.post("/api/meter-readings/", json={"readings": [{
            "meter_id": meter_ids["electricity"], "current_reading": "150",
            "reading_date": (TODAY + timedelta(days=1)).isoformat()
        }]})
        assert response.json()["errors"][0]["error"] == "抄表日期不能是未来时间"

    def test_unknown_meter(self, client, contract):
        result = submit(client, (999, "10"))
        assert result["errors"] == [{"meter_id": 999, "error": "仪表不存在"}]

    def test_room_without_contract_records_baseline(self, client, meter_ids):
        result = submit(client, (meter_ids["electricity"], "100"))

        assert result["readings"][0]["contract_id"] is None
        assert result["bills"] == []
        assert result["warnings"][0]["warning"] == "房间无生效合同，读数仅作为基准"


class TestAbnormalReadings:
    """Historique régulier de 10 par relevé, puis un saut de 80"""

    @pytest.fixture
    def history(self, db, contract, meter_ids):
        db.rollback()
        for offset, value in ((10, 110), (20, 120)):
            db.add(MeterReading(
                meter_id=meter_ids["electricity"], contract_id=contract["id"],
                previous_reading=value - 10, current_reading=value, usage=10,
                unit_price=Decimal("0.6"), amount=Decimal("6.00"),
                reading_date=START + timedelta(days=offset), status=ReadingStatus.BILLED, is_billed=True
            ))
        db.commit()

    def test_abnormal_reading_needs_confirmation(self, client, history, meter_ids):
        result = submit(client, (meter_ids["electricity"], "200"))

        assert result["readings"] == []
        assert result["warnings"][0]["abnormal"] is True
        assert result["warnings"][0]["warning"] == "用量异常，请确认后重新提交"

    def test_confirmed_abnormal_reading_is_recorded(self, client, history, meter_ids):
        result = submit(client, (meter_ids["electricity"], "200"), confirm_abnormal=True)

        assert money(result["readings"][0]["usage"]) == Decimal("80")
        assert result["warnings"][0]["warning"] == "用量异常，已确认提交"
        assert len(result["bills"]) == 1


class TestMeterRegistration:

    def test_register_with_default_unit(self, client, room):
        response = client.post(f"/api/rooms/{room.id}/meters", json={"meter_type": "hot_water", "display_name": "热水表"})

        assert response.status_code == 200
        meter = response.json()
        assert meter["meter_type"] == "HOT_WATER"
        assert meter["unit"] == "吨"
        assert meter["meter_number"].startswith("HW101")

    def test_invalid_configuration(self, client, room):
        response = client.post(f"/api/rooms/{room.id}/meters", json={
            "meter_type": "steam", "display_name": "蒸汽表", "unit": "吨"
        })
        assert response.status_code == 400
        assert response.json()["message"] == "仪表类型无效"

    def test_duplicate_display_name(self, client, room, meters):
        response = client.post(f"/api/rooms/{room.id}/meters", json={"meter_type": "electricity", "display_name": "电表"})
        assert response.status_code == 400
        assert response.json()["message"] == "显示名称在该房间内已存在，请使用不同的名称"

    def test_unknown_room(self, client):
        response = client.post("/api/rooms/999/meters", json={"meter_type": "gas", "display_name": "燃气表"})
        assert response.status_code == 404
