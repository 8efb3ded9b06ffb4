"""
Tests du cycle de vie des contrats via l'API : création, facturation, départ,
renouvellement et activation
"""
from datetime import date, timedelta
from decimal import Decimal
import time

import pytest
from sqlalchemy.exc import IntegrityError

from enums import BillStatus, ContractStatus, RoomStatus
from models import Bill, Contract, Renter
from schemas import ContractCheckout
from services.auto_bill_generator import add_months
from services.contract_service import ContractService


def money(value) -> Decimal:
    return Decimal(str(value))


@pytest.fixture
def ids(room, renter):
    return {"room_id": room.id, "renter_id": renter.id}


def create_contract(client, ids, terms):
    response = client.post("/api/contracts/", json={**ids, **terms})
    assert response.status_code == 200, response.text
    return response.json()


class TestContractCreation:

    def test_active_contract_occupies_room(self, client, ids, contract_terms):
        result = create_contract(client, ids, contract_terms(date.today()))

        contract = result["contract"]
        assert contract["status"] == "ACTIVE"
        assert contract["contract_number"].startswith(f"CT{date.today().year}{date.today().month:02d}")
        assert money(contract["total_rent"]) == Decimal("18000")
        assert result["billing_status"] == "completed"
        assert result["message"] == "合同创建成功，已自动生成 13 个账单"

        room = client.get(f"/api/rooms/{ids['room_id']}").json()
        assert room["status"] == "OCCUPIED"
        assert room["current_renter"] == "张三"

    def test_future_contract_is_pending(self, client, ids, contract_terms):
        result = create_contract(client, ids, contract_terms(date.today() + timedelta(days=10)))

        assert result["contract"]["status"] == "PENDING"
        assert client.get(f"/api/rooms/{ids['room_id']}").json()["status"] == "VACANT"

    def test_end_before_start_rejected(self, client, ids, contract_terms):
        terms = contract_terms(date.today(), end_date=(date.today() - timedelta(days=1)).isoformat())
        response = client.post("/api/contracts/", json={**ids, **terms})

        assert response.status_code == 400
        assert response.json()["message"] == "结束日期必须晚于开始日期"

    def test_occupied_room_rejected(self, client, ids, contract_terms):
        create_contract(client, ids, contract_terms(date.today()))
        other = client.post("/api/renters/", json={"name": "王五"}).json()

        response = client.post("/api/contracts/", json={**ids, "renter_id": other["id"], **contract_terms(date.today())})
        assert response.status_code == 409
        assert response.json()["message"] == "房间不可用，当前状态：OCCUPIED"

    def test_renter_limited_to_one_active_contract(self, client, ids, contract_terms):
        create_contract(client, ids, contract_terms(date.today()))
        building_id = client.get(f"/api/rooms/{ids['room_id']}").json()["building_id"]
        second_room = client.post("/api/rooms/", json={
            "room_number": "102", "building_id": building_id, "rent": "1800"
        }).json()

        response = client.post("/api/contracts/", json={
            "room_id": second_room["id"], "renter_id": ids["renter_id"], **contract_terms(date.today())
        })
        assert response.status_code == 409
        assert response.json()["message"] == "该租客已有活跃合同"

    def test_unknown_room(self, client, ids, contract_terms):
        response = client.post("/api/contracts/", json={**ids, "room_id": 999, **contract_terms(date.today())})
        assert response.status_code == 404
        assert response.json()["message"] == "房间不存在"

    def test_initial_readings_recorded(self, client, ids, meters, contract_terms):
        meter_id = meters["electricity"].id
        terms = contract_terms(date.today(), initial_meter_readings={str(meter_id): "100"})
        result = create_contract(client, ids, terms)

        status = client.get("/api/meter-readings/stats").json()
        assert status["summary"]["total_readings"] == 1
        assert result["contract"]["status"] == "ACTIVE"


class TestSigningBills:

    def test_monthly_bills(self, client, ids, contract_terms):
        start = date.today()
        contract = create_contract(client, ids, contract_terms(start, key_deposit="100"))["contract"]

        bills = client.get(f"/api/contracts/{contract['id']}/bills").json()
        deposit = [bill for bill in bills if bill["bill_type"] == "DEPOSIT"]
        others = [bill for bill in bills if bill["bill_type"] == "OTHER"]
        rents = [bill for bill in bills if bill["bill_type"] == "RENT"]

        assert len(deposit) == 1 and money(deposit[0]["amount"]) == Decimal("1500")
        assert deposit[0]["remarks"] == f"押金账单 - 合同{contract['contract_number']}"
        assert [bill["remarks"] for bill in others] == [f"钥匙押金 - 合同{contract['contract_number']}"]
        assert len(rents) == 12
        assert rents[0]["due_date"] == start.isoformat()
        assert rents[0]["remarks"] == f"月付租金 - 合同{contract['contract_number']}"
        assert rents[-1]["period"].endswith(contract["end_date"])
        assert all(money(bill["amount"]) == money(bill["received_amount"]) + money(bill["pending_amount"])
                   for bill in bills)

    def test_quarterly_bills(self, client, ids, contract_terms):
        contract = create_contract(client, ids, contract_terms(date.today(), payment_method="季付"))["contract"]

        rents = [bill for bill in client.get(f"/api/contracts/{contract['id']}/bills").json()
                 if bill["bill_type"] == "RENT"]
        assert len(rents) == 4
        assert {money(bill["amount"]) for bill in rents} == {Decimal("4500")}

    def test_skipped_then_generated_once(self, client, ids, contract_terms):
        result = create_contract(client, ids, contract_terms(date.today(), generate_bills=False))
        contract_id = result["contract"]["id"]
        assert result["billing_status"] == "skipped"
        assert len(client.get(f"/api/contracts/{contract_id}/missing-rent-bills").json()) == 12

        generated = client.post(f"/api/contracts/{contract_id}/generate-bills").json()
        assert len(generated) == 13
        assert client.post(f"/api/contracts/{contract_id}/generate-bills").json() == []
        assert client.get(f"/api/contracts/{contract_id}/missing-rent-bills").json() == []

    def test_slow_billing_continues_in_background(self, client, ids, contract_terms, monkeypatch):
        import services.contract_service as contract_service

        generate = contract_service.generate_bills_on_contract_signed

        def slow_generate(db, contract):
            time.sleep(0.5)
            return generate(db, contract)

        monkeypatch.setattr(contract_service, "BILL_GENERATION_TIMEOUT_SECONDS", 0.1)
        monkeypatch.setattr(contract_service, "generate_bills_on_contract_signed", slow_generate)

        result = create_contract(client, ids, contract_terms(date.today()))
        assert result["billing_status"] == "pending"
        assert result["message"] == "合同创建成功，账单正在后台生成"
        assert result["bills"] == []
        assert result["contract"]["status"] == "ACTIVE"

        contract_id = result["contract"]["id"]
        deadline = time.monotonic() + 10
        bills = []
        while time.monotonic() < deadline:
            bills = client.get(f"/api/contracts/{contract_id}/bills").json()
            if len(bills) == 13:
                break
            time.sleep(0.1)
        assert len(bills) == 13


class TestCheckout:
    """Bail d'un an, loyer 1500, départ au 180e jour"""

    @pytest.fixture
    def contract(self, client, ids, meters, contract_terms):
        start = date.today() - timedelta(days=179)
        terms = contract_terms(start, initial_meter_readings={
            str(meters["electricity"].id): "100", str(meters["water"].id): "20"
        })
        return create_contract(client, ids, terms)["contract"]

    def test_preview_does_not_write(self, client, contract):
        response = client.get(
            f"/api/contracts/{contract['id']}/checkout/preview",
            params={"checkout_date": date.today().isoformat(), "cleaning_charge": "50"}
        )
        assert response.status_code == 200
        summary = response.json()["summary"]
        assert money(summary["total_refund"]) == Decimal("10500")
        # Loyers et dépôt encore ouverts : 12 x 1500 + 1500 + ménage 50
        assert money(summary["total_charge"]) == Decimal("19550")
        assert money(summary["net_amount"]) == Decimal("-9050")
        assert summary["settlement_type"] == "CHARGE"

        assert client.get(f"/api/contracts/{contract['id']}").json()["status"] == "ACTIVE"

    def test_overpaid_checkout(self, client, ids, contract):
        response = client.post(f"/api/contracts/{contract['id']}/checkout", json={
            "checkout_date": date.today().isoformat(),
            "checkout_reason": "工作调动",
            "final_meter_readings": {"electricity": "150", "COLD_WATER": "20"},
        })
        assert response.status_code == 200, response.text
        result = response.json()

        settlement = result["settlement"]
        assert settlement["actual_days"] == 180
        assert money(settlement["should_pay_rent"]) == Decimal("9000")
        assert money(settlement["refund_amount"]) == Decimal("10500")
        assert settlement["settlement_type"] == "REFUND"

        settlement_bill = result["settlement_bill"]
        assert settlement_bill["bill_type"] == "OTHER"
        assert money(settlement_bill["amount"]) == Decimal("-10500")
        assert settlement_bill["period"] == f"退租结算-{date.today().isoformat()}"
        assert settlement_bill["remarks"].startswith("退租结算：多付租金退还: ¥9000.00")

        # 12 loyers, le dépôt et la facture de solde
        assert result["settled_bills"] == 14
        assert result["contract"]["status"] == "TERMINATED"
        assert result["contract"]["business_status"] == "CHECKED_OUT"
        assert result["contract"]["remarks_log"][-1]["lines"][0] == "退租原因: 工作调动"

        # Eau sans consommation : relevé sans facture
        assert len(result["final_readings"]) == 2
        assert len(result["utility_bills"]) == 1
        utility = result["utility_bills"][0]
        assert money(utility["amount"]) == Decimal("30")
        assert utility["status"] == "PAID"
        assert utility["remarks"] == "退租时电表用量结算：50度"

        bills = client.get(f"/api/contracts/{contract['id']}/bills").json()
        assert {bill["status"] for bill in bills} == {"PAID"}
        assert all(money(bill["pending_amount"]) == 0 for bill in bills)

        room = client.get(f"/api/rooms/{ids['room_id']}").json()
        assert room["status"] == "VACANT"
        assert room["current_renter"] is None

        renter = client.get(f"/api/renters/{ids['renter_id']}").json()
        assert renter["remarks_log"][-1]["lines"] == [f"合同{contract['contract_number']}正常退租"]

    def test_underpaid_checkout(self, client, contract):
        result = client.post(f"/api/contracts/{contract['id']}/checkout", json={
            "checkout_date": date.today().isoformat(),
            "checkout_reason": "个人原因",
            "paid_rent": "4000",
        }).json()

        assert money(result["settlement"]["additional_amount"]) == Decimal("3500")
        assert result["settlement"]["settlement_type"] == "CHARGE"
        assert money(result["settlement_bill"]["amount"]) == Decimal("3500")

    def test_checkout_date_in_past_rejected(self, client, contract):
        response = client.post(f"/api/contracts/{contract['id']}/checkout", json={
            "checkout_date": (date.today() - timedelta(days=1)).isoformat(),
            "checkout_reason": "个人原因",
        })
        assert response.status_code == 409
        assert response.json()["message"] == "退租日期不能早于当前日期"

    def test_checkout_after_end_rejected(self, client, contract):
        response = client.post(f"/api/contracts/{contract['id']}/checkout", json={
            "checkout_date": (date.fromisoformat(contract["end_date"]) + timedelta(days=1)).isoformat(),
            "checkout_reason": "个人原因",
        })
        assert response.status_code == 409
        assert response.json()["message"] == "退租日期不能晚于合同结束日期"

    def test_second_checkout_rejected(self, client, contract):
        payload = {"checkout_date": date.today().isoformat(), "checkout_reason": "个人原因"}
        assert client.post(f"/api/contracts/{contract['id']}/checkout", json=payload).status_code == 200

        response = client.post(f"/api/contracts/{contract['id']}/checkout", json=payload)
        assert response.status_code == 409
        assert response.json()["message"] == "合同状态不允许退租，当前状态：TERMINATED"

    def test_failure_rolls_back_everything(self, db, contract, monkeypatch):
        def broken_final_readings(*args, **kwargs):
            raise RuntimeError("meter_readings unavailable")

        db.rollback()
        bills_before = {bill.id: bill.status for bill in db.query(Bill).filter(Bill.contract_id == contract["id"])}
        assert set(bills_before.values()) == {BillStatus.PENDING}

        monkeypatch.setattr(ContractService, "_final_readings", staticmethod(broken_final_readings))
        with pytest.raises(RuntimeError):
            ContractService.checkout_contract(
                db, contract["id"], ContractCheckout(checkout_date=date.today(), checkout_reason="个人原因")
            )

        stored = db.get(Contract, contract["id"])
        assert stored.status == ContractStatus.ACTIVE
        assert stored.active_room_guard == stored.room_id
        assert stored.room.status == RoomStatus.OCCUPIED
        assert stored.room.current_renter == "张三"

        bills_after = {bill.id: bill.status for bill in db.query(Bill).filter(Bill.contract_id == contract["id"])}
        assert bills_after == bills_before
        assert db.query(Bill).filter(Bill.period == f"退租结算-{date.today().isoformat()}").count() == 0


class TestRenewal:

    @pytest.fixture
    def contract(self, client, ids, contract_terms):
        return create_contract(client, ids, contract_terms(date.today() - timedelta(days=100)))["contract"]

    def test_defaults(self, client, contract):
        defaults = client.get(f"/api/contracts/{contract['id']}/renew").json()

        start = date.fromisoformat(contract["end_date"]) + timedelta(days=1)
        assert defaults["start_date"] == start.isoformat()
        assert defaults["end_date"] == (add_months(start, 12) - timedelta(days=1)).isoformat()
        assert money(defaults["monthly_rent"]) == Decimal("1500")

    def test_renewal_creates_pending_contract(self, client, ids, contract):
        defaults = client.get(f"/api/contracts/{contract['id']}/renew").json()
        terms = {key: defaults[key] for key in ("start_date", "end_date", "monthly_rent", "deposit", "payment_method")}

        response = client.post(f"/api/contracts/{contract['id']}/renew", json=terms)
        assert response.status_code == 200, response.text
        result = response.json()

        renewed = result["contract"]
        assert result["message"] == "续租成功"
        assert renewed["status"] == "PENDING"
        assert renewed["renewed_from_id"] == contract["id"]
        assert renewed["business_status"] == "RENEWED"
        assert renewed["remarks_log"][0]["title"] == f"续租自合同{contract['contract_number']}"

        source = client.get(f"/api/contracts/{contract['id']}").json()
        assert source["status"] == "ACTIVE"
        assert source["remarks_log"] == contract["remarks_log"]
        assert client.get(f"/api/rooms/{ids['room_id']}").json()["status"] == "OCCUPIED"

    def test_overlapping_renewal_rejected(self, client, contract, contract_terms):
        response = client.post(f"/api/contracts/{contract['id']}/renew", json=contract_terms(date.today()))
        assert response.status_code == 409
        assert response.json()["error_code"] == "RENEWAL_OVERLAP"

    def test_terminated_contract_cannot_be_renewed(self, client, contract, contract_terms):
        client.post(f"/api/contracts/{contract['id']}/checkout", json={
            "checkout_date": date.today().isoformat(), "checkout_reason": "个人原因"
        })
        response = client.get(f"/api/contracts/{contract['id']}/renew")
        assert response.status_code == 409
        assert response.json()["message"] == "合同状态不允许续租，当前状态：TERMINATED"


class TestActivation:

    def test_renewal_takes_over_room_when_source_ends(self, client, ids, contract_terms):
        source = create_contract(client, ids, contract_terms(date.today() - timedelta(days=100)))["contract"]
        defaults = client.get(f"/api/contracts/{source['id']}/renew").json()
        terms = {key: defaults[key] for key in ("start_date", "end_date", "monthly_rent", "deposit")}
        renewed = client.post(f"/api/contracts/{source['id']}/renew", json=terms).json()["contract"]

        # Avant la date de début : rien à activer
        result = client.post("/api/contracts/activate-pending").json()
        assert result == {"activated": [], "skipped": []}

        result = client.post("/api/contracts/activate-pending", params={"today": defaults["start_date"]}).json()
        assert result["activated"] == [renewed["id"]]

        assert client.get(f"/api/contracts/{source['id']}").json()["status"] == "EXPIRED"
        assert client.get(f"/api/contracts/{renewed['id']}").json()["status"] == "ACTIVE"
        room = client.get(f"/api/rooms/{ids['room_id']}").json()
        assert room["status"] == "OCCUPIED"
        assert room["current_renter"] == "张三"

    def test_manual_activation(self, client, ids, contract_terms):
        contract = create_contract(client, ids, contract_terms(date.today() + timedelta(days=10)))["contract"]

        response = client.post(f"/api/contracts/{contract['id']}/activate")
        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"
        assert client.get(f"/api/rooms/{ids['room_id']}").json()["status"] == "OCCUPIED"

        response = client.post(f"/api/contracts/{contract['id']}/activate")
        assert response.status_code == 409
        assert response.json()["message"] == "合同状态不允许激活，当前状态：ACTIVE"

    def test_expire_frees_room(self, client, ids, contract_terms):
        contract = create_contract(client, ids, contract_terms(date.today()))["contract"]
        after_end = (date.fromisoformat(contract["end_date"]) + timedelta(days=1)).isoformat()

        assert client.post("/api/contracts/expire", params={"today": after_end}).json() == {"expired": [contract["id"]]}
        assert client.get(f"/api/rooms/{ids['room_id']}").json()["status"] == "VACANT"
        assert client.get(f"/api/contracts/{contract['id']}").json()["status"] == "EXPIRED"


class TestRemarksLog:

    def test_entries_are_appended(self):
        renter = Renter(name="张三", remarks="旧备注")
        renter.append_remark("退租记录 2024-06-28", ["合同CT202401000001正常退租", None])

        entries = renter.get_remarks()
        assert entries[0] == {"at": None, "title": None, "lines": ["旧备注"]}
        assert entries[1]["lines"] == ["合同CT202401000001正常退租"]
        assert renter.remarks_text() == "旧备注\n\n[退租记录 2024-06-28]\n合同CT202401000001正常退租"


class TestActiveRoomGuard:

    def test_store_rejects_second_active_contract(self, db, room, renter):
        for number in ("CT202401000001", "CT202401000002"):
            contract = Contract(
                contract_number=number, room_id=room.id, renter_id=renter.id,
                start_date=date(2024, 1, 1), end_date=date(2024, 12, 31),
                monthly_rent=Decimal("1500"), total_rent=Decimal("18000"), deposit=Decimal("1500"),
            )
            contract.set_status(ContractStatus.ACTIVE)
            db.add(contract)

        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_guard_released_when_contract_ends(self, db, room, renter):
        contract = Contract(
            contract_number="CT202401000003", room_id=room.id, renter_id=renter.id,
            start_date=date(2024, 1, 1), end_date=date(2024, 12, 31),
            monthly_rent=Decimal("1500"), total_rent=Decimal("18000"), deposit=Decimal("1500"),
        )
        contract.set_status(ContractStatus.ACTIVE)
        assert contract.active_room_guard == room.id

        contract.set_status(ContractStatus.TERMINATED)
        assert contract.active_room_guard is None
