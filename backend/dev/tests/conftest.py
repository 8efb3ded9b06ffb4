"""
Fixtures partagées : base SQLite temporaire, session et client HTTP
"""
import os
import tempfile
from datetime import date, timedelta
from decimal import Decimal

import pytest

# La base doit être choisie avant l'import de database.py
_TEST_DIR = tempfile.mkdtemp(prefix="gestion_locative_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ.setdefault("BILL_GENERATION_TIMEOUT_SECONDS", "30")

from fastapi.testclient import TestClient

from database import Base, SessionLocal, engine
from enums import MeterType
from models import Building, Meter, Renter, Room
from services.auto_bill_generator import add_months
from services.global_settings import GlobalSettingsService, settings_cache
from main import app


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    settings_cache.clear()
    db = SessionLocal()
    try:
        GlobalSettingsService.initialize_default_settings(db)
    finally:
        db.close()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def room(db):
    building = Building(name="Résidence des Lilas", address="12 rue des Lilas", total_rooms=1)
    db.add(building)
    db.flush()
    room = Room(room_number="101", floor_number=1, building_id=building.id, rent=Decimal("1500"))
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


@pytest.fixture
def renter(db):
    renter = Renter(name="张三", phone="13800000000")
    db.add(renter)
    db.commit()
    db.refresh(renter)
    return renter


@pytest.fixture
def meters(db, room):
    """Compteur d'électricité et d'eau froide sans surcharge de prix"""
    electricity = Meter(room_id=room.id, meter_type=MeterType.ELECTRICITY, display_name="电表", unit="度")
    water = Meter(room_id=room.id, meter_type=MeterType.COLD_WATER, display_name="冷水表", unit="吨")
    db.add_all([electricity, water])
    db.commit()
    return {"electricity": electricity, "water": water}


def one_year_terms(start: date, **overrides) -> dict:
    """Conditions d'un bail d'un an : loyer 1500, 12 mois, dépôt 1500"""
    end = add_months(start, 12) - timedelta(days=1)
    terms = {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "monthly_rent": "1500",
        "deposit": "1500",
        "payment_method": "月付",
        "signed_by": "李四",
    }
    terms.update(overrides)
    return terms


@pytest.fixture
def contract_terms():
    return one_year_terms
