"""
Routes API pour les immeubles, les chambres et leurs compteurs
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from database import get_db
from models import Building, Room, Meter
from schemas import BuildingCreate, BuildingOut, RoomCreate, RoomOut, MeterCreate, MeterOut
from audit_logger import AuditLogger, get_model_data
from enums import ActionType, EntityType, RoomStatus
from error_handlers import ResourceNotFoundError, BusinessLogicErrorHandler
from services.meter_service import MeterService

building_router = APIRouter(prefix="/api/buildings", tags=["buildings"])
router = APIRouter(prefix="/api/rooms", tags=["rooms"])


def get_room_or_404(room_id: int, db: Session) -> Room:
    room = db.query(Room).filter(Room.id == room_id).first()
    if not room:
        raise BusinessLogicErrorHandler.not_found("ROOM_NOT_FOUND", "Room", room_id)
    return room


# ==================== IMMEUBLES ====================

@building_router.post("/", response_model=BuildingOut)
async def create_building(building_data: BuildingCreate, db: Session = Depends(get_db)):
    """Crée un immeuble"""
    building = Building(**building_data.model_dump(), total_rooms=0)
    db.add(building)
    db.commit()
    db.refresh(building)

    AuditLogger.log_crud_action(
        db, ActionType.CREATE, EntityType.BUILDING, building.id,
        f"Immeuble {building.name} créé", after_data=get_model_data(building)
    )
    return building


@building_router.get("/{building_id}", response_model=BuildingOut)
async def get_building(building_id: int, db: Session = Depends(get_db)):
    building = db.query(Building).filter(Building.id == building_id).first()
    if not building:
        raise ResourceNotFoundError("Immeuble introuvable", "Building", building_id)
    return building


@building_router.get("/{building_id}/rooms", response_model=List[RoomOut])
async def get_building_rooms(building_id: int, db: Session = Depends(get_db)):
    """Chambres d'un immeuble, par étage puis numéro"""
    return db.query(Room).filter(Room.building_id == building_id).order_by(
        Room.floor_number, Room.room_number
    ).all()


# ==================== CHAMBRES ====================

@router.post("/", response_model=RoomOut)
async def create_room(room_data: RoomCreate, db: Session = Depends(get_db)):
    """Crée une chambre libre et met à jour le compteur de l'immeuble"""
    building = db.query(Building).filter(Building.id == room_data.building_id).first()
    if not building:
        raise ResourceNotFoundError("Immeuble introuvable", "Building", room_data.building_id)

    room = Room(**room_data.model_dump(), status=RoomStatus.VACANT)
    db.add(room)
    building.total_rooms = (building.total_rooms or 0) + 1
    db.commit()
    db.refresh(room)

    AuditLogger.log_crud_action(
        db, ActionType.CREATE, EntityType.ROOM, room.id,
        f"Chambre {room.room_number} créée dans {building.name}", after_data=get_model_data(room)
    )
    return room


@router.get("/{room_id}", response_model=RoomOut)
async def get_room(room_id: int, db: Session = Depends(get_db)):
    return get_room_or_404(room_id, db)


@router.post("/{room_id}/meters", response_model=MeterOut)
async def create_room_meter(room_id: int, meter_data: MeterCreate, db: Session = Depends(get_db)):
    """Ajoute un compteur à la chambre"""
    return MeterService.register_meter(db, room_id, meter_data)


@router.get("/{room_id}/meters", response_model=List[MeterOut])
async def get_room_meters(room_id: int, db: Session = Depends(get_db)):
    get_room_or_404(room_id, db)
    return db.query(Meter).filter(Meter.room_id == room_id).order_by(Meter.meter_type, Meter.id).all()
