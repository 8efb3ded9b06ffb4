"""
Routes API des paramètres globaux
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Any, Dict, List

from database import get_db
from audit_logger import AuditLogger
from enums import ActionType, EntityType
from error_handlers import BusinessLogicErrorHandler
from schemas import GlobalSettingOut, SettingUpdate, BillingSettingsOut
from services.global_settings import GlobalSettingsService

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=List[GlobalSettingOut])
async def list_settings(db: Session = Depends(get_db)):
    """Tous les paramètres, triés par catégorie"""
    settings = GlobalSettingsService.list_settings(db)
    return [GlobalSettingsService.describe(setting) for setting in settings]


@router.get("/billing", response_model=BillingSettingsOut)
async def get_billing_settings(db: Session = Depends(get_db)):
    return GlobalSettingsService.get_billing_settings(db).to_dict()


@router.get("/category/{category}")
async def get_settings_by_category(category: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return GlobalSettingsService.get_settings_by_category(db, category)


@router.put("/{key}", response_model=GlobalSettingOut)
async def update_setting(key: str, payload: SettingUpdate, db: Session = Depends(get_db)):
    setting = GlobalSettingsService.update_setting(db, key, payload.value)
    AuditLogger.log_action(
        db, ActionType.UPDATE, EntityType.SETTING, f"Paramètre {key} mis à jour",
        entity_id=setting.id, details={"value": payload.value}
    )
    return GlobalSettingsService.describe(setting)


@router.put("")
async def update_settings(values: Dict[str, Any], db: Session = Depends(get_db)):
    """Mise à jour groupée clé -> valeur"""
    count = GlobalSettingsService.update_settings(db, values)
    return {"updated": count}


@router.post("/initialize")
async def initialize_settings(db: Session = Depends(get_db)):
    created = GlobalSettingsService.initialize_default_settings(db)
    return {"created": created}


@router.post("/reset")
async def reset_settings(db: Session = Depends(get_db)):
    created = GlobalSettingsService.reset_to_defaults(db)
    AuditLogger.log_action(db, ActionType.UPDATE, EntityType.SETTING, "Paramètres réinitialisés")
    return {"created": created}


@router.delete("/{key}")
async def delete_setting(key: str, db: Session = Depends(get_db)):
    if not GlobalSettingsService.delete_setting(db, key):
        raise BusinessLogicErrorHandler.not_found("SETTING_NOT_FOUND", "GlobalSetting", key)
    return {"deleted": key}
