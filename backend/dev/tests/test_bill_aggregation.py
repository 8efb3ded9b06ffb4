"""
Tests de l'agrégation des relevés en factures de charges
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from enums import AggregationStrategy, BillType, ContractStatus, MeterType, PriceSource, ReadingStatus
from error_handlers import DomainValidationError
from models import Bill, BillDetail, Contract, Meter, MeterReading
from schemas import UtilityBreakdownMetadata
from services.bill_service import parse_metadata
from services.bill_aggregation import (
    group_readings_by_contract, select_aggregation_strategy, generate_aggregated_utility_bill, period_for
)

READING_DATE = date(2024, 3, 5)


@pytest.fixture
def contract(db, room, renter):
    contract = Contract(
        contract_number="CT202403000123",
        room_id=room.id,
        renter_id=renter.id,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        monthly_rent=Decimal("1500"),
        total_rent=Decimal("18000"),
        deposit=Decimal("1500"),
    )
    contract.set_status(ContractStatus.ACTIVE)
    db.add(contract)
    db.commit()
    db.refresh(contract)
    return contract


@pytest.fixture
def readings(db, contract, meters):
    electricity = MeterReading(
        meter_id=meters["electricity"].id, contract_id=contract.id,
        previous_reading=100, current_reading=150, usage=50,
        unit_price=Decimal("0.6"), amount=Decimal("30.00"), reading_date=READING_DATE
    )
    water = MeterReading(
        meter_id=meters["water"].id, contract_id=contract.id,
        previous_reading=20, current_reading=25, usage=5,
        unit_price=Decimal("3.5"), amount=Decimal("17.50"), reading_date=READING_DATE
    )
    db.add_all([electricity, water])
    db.commit()
    return [electricity, water]


class TestGrouping:

    def test_groups_by_contract_and_skips_baselines(self, db, contract, readings, meters):
        baseline = MeterReading(meter_id=meters["electricity"].id, current_reading=100, reading_date=READING_DATE)
        db.add(baseline)
        db.commit()

        groups = group_readings_by_contract(readings + [baseline])
        assert list(groups) == [contract.id]
        assert [data.meter_name for data in groups[contract.id]] == ["电表", "冷水表"]
        assert groups[contract.id][0].price_source == PriceSource.GLOBAL_SETTING

    def test_amount_recomputed_when_missing(self, db, contract, meters):
        reading = MeterReading(
            meter_id=meters["electricity"].id, contract_id=contract.id,
            previous_reading=0, current_reading=10, usage=10,
            unit_price=Decimal("0.6"), amount=0, reading_date=READING_DATE
        )
        db.add(reading)
        db.commit()
        data = group_readings_by_contract([reading])[contract.id][0]
        assert data.amount == Decimal("6.00")

    def test_meter_override_is_price_source(self, db, contract, room):
        meter = Meter(room_id=room.id, meter_type=MeterType.GAS, display_name="燃气表", unit="立方米",
                      unit_price=Decimal("3"))
        db.add(meter)
        db.flush()
        reading = MeterReading(meter_id=meter.id, contract_id=contract.id, current_reading=4, usage=4,
                               reading_date=READING_DATE)
        db.add(reading)
        db.commit()
        data = group_readings_by_contract([reading])[contract.id][0]
        assert data.unit_price == Decimal("3")
        assert data.amount == Decimal("12.00")
        assert data.price_source == PriceSource.METER_CONFIG


class TestStrategySelection:

    def test_preference_is_case_insensitive(self, readings):
        groups = group_readings_by_contract(readings)
        reading_list = next(iter(groups.values()))
        assert select_aggregation_strategy(reading_list, "single") == AggregationStrategy.SINGLE

    def test_automatic_choice(self, readings):
        reading_list = next(iter(group_readings_by_contract(readings).values()))
        assert select_aggregation_strategy(reading_list) == AggregationStrategy.AGGREGATED
        assert select_aggregation_strategy(reading_list[:1]) == AggregationStrategy.SINGLE

    def test_unknown_preference_rejected(self, readings):
        reading_list = next(iter(group_readings_by_contract(readings).values()))
        with pytest.raises(DomainValidationError):
            select_aggregation_strategy(reading_list, "monthly")


class TestAggregatedBill:
    """Deux relevés, électricité 30.00 et eau 17.50"""

    def test_one_bill_with_details(self, db, contract, readings):
        reading_list = group_readings_by_contract(readings)[contract.id]
        bills = generate_aggregated_utility_bill(db, contract, reading_list, strategy="AGGREGATED")

        assert len(bills) == 1
        bill = bills[0]
        assert bill.bill_type == BillType.UTILITIES
        assert bill.amount == Decimal("47.50")
        assert bill.pending_amount == Decimal("47.50")
        assert bill.due_date == READING_DATE + timedelta(days=10)
        assert bill.period == period_for(READING_DATE) == "2024-03-01 至 2024-03-31"
        assert bill.remarks == "水电费账单 - 电费30.00元(50度)，冷水费17.50元(5吨)"
        assert bill.bill_number.startswith("BILL123U")

        details = db.query(BillDetail).filter(BillDetail.bill_id == bill.id).all()
        assert len(details) == 2
        assert sum(detail.amount for detail in details) == Decimal("47.50")

        for reading in readings:
            db.refresh(reading)
            assert reading.is_billed is True
            assert reading.status == ReadingStatus.BILLED

        metadata = parse_metadata(bill)
        assert isinstance(metadata, UtilityBreakdownMetadata)
        assert metadata.meter_count == 2
        assert metadata.total_amount == Decimal("47.50")

    def test_single_strategy(self, db, contract, readings):
        reading_list = group_readings_by_contract(readings)[contract.id]
        bills = generate_aggregated_utility_bill(db, contract, reading_list, strategy=AggregationStrategy.SINGLE)

        assert sorted(bill.amount for bill in bills) == [Decimal("17.50"), Decimal("30.00")]
        assert {bill.meter_reading_id for bill in bills} == {reading.id for reading in readings}
        assert db.query(BillDetail).count() == 0
        assert bills[0].remarks == "电费账单 - 30.00元(50度)"

        for reading in readings:
            db.refresh(reading)
            assert reading.is_billed is False

    def test_failure_rolls_back_everything(self, db, contract, readings, monkeypatch):
        import services.bill_aggregation as aggregation

        def broken_detail(*args, **kwargs):
            raise RuntimeError("bill_details unavailable")

        reading_list = group_readings_by_contract(readings)[contract.id]
        monkeypatch.setattr(aggregation, "BillDetail", broken_detail)
        with pytest.raises(RuntimeError):
            generate_aggregated_utility_bill(db, contract, reading_list, strategy="AGGREGATED")

        assert db.query(Bill).count() == 0
        assert db.query(MeterReading).filter(MeterReading.is_billed == True).count() == 0
