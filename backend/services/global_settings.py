"""
Paramètres globaux de l'application (table clé/valeur, valeurs sérialisées en JSON)
"""
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Dict, Optional
import json
import logging
import threading

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from constants import DEFAULT_SETTINGS, FALLBACK_BILLING_SETTINGS, BILLING_SETTING_KEYS
from enums import SettingType, SettingCategory
from models import GlobalSetting
from services.money import to_decimal

logger = logging.getLogger(__name__)

DEFAULTS_BY_KEY = {entry[0]: entry for entry in DEFAULT_SETTINGS}


@dataclass
class BillingSettings:
    """Prix unitaires et cycle de loyer utilisés par le calcul des factures"""
    electricity_price: Decimal
    water_price: Decimal
    gas_price: Decimal
    default_rent_cycle: str

    @classmethod
    def fallback(cls) -> "BillingSettings":
        return cls(**FALLBACK_BILLING_SETTINGS)

    @classmethod
    def from_settings(cls, values: Dict[str, Any]) -> "BillingSettings":
        """
        Construit la configuration depuis des paramètres bruts (clés camelCase).
        Chaque clé absente retombe sur la table de secours.
        """
        data = dict(FALLBACK_BILLING_SETTINGS)
        for setting_key, field_name in BILLING_SETTING_KEYS.items():
            value = values.get(setting_key)
            if value is None:
                continue
            data[field_name] = value if field_name == "default_rent_cycle" else to_decimal(value)
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SettingsCache:
    """
    Dernier instantané des paramètres lus en base.
    Alimente les calculs synchrones qui n'ont pas accès au store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._values: Dict[str, Any] = {}

    def store(self, values: Dict[str, Any]):
        with self._lock:
            self._values = dict(values)

    def update(self, key: str, value: Any):
        with self._lock:
            self._values[key] = value

    def discard(self, key: str):
        with self._lock:
            self._values.pop(key, None)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._values)

    def clear(self):
        with self._lock:
            self._values = {}


settings_cache = SettingsCache()


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


def _deserialize(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


class GlobalSettingsService:
    """Lecture et écriture des paramètres globaux"""

    @staticmethod
    def initialize_default_settings(db: Session) -> int:
        """
        Crée les paramètres par défaut manquants.
        Idempotent : une clé existante n'est jamais écrasée.
        """
        existing = {key for (key,) in db.query(GlobalSetting.key).all()}
        created = 0

        for key, value, value_type, category, description in DEFAULT_SETTINGS:
            if key in existing:
                continue
            db.add(GlobalSetting(
                key=key,
                value=_serialize(value),
                type=value_type,
                category=category,
                description=description
            ))
            created += 1

        if created:
            db.commit()
            logger.info(f"{created} paramètres par défaut initialisés")

        GlobalSettingsService.get_all_settings(db)
        return created

    @staticmethod
    def get_setting(db: Session, key: str) -> Any:
        setting = db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
        if not setting:
            return None
        return _deserialize(setting.value)

    @staticmethod
    def get_all_settings(db: Session) -> Dict[str, Any]:
        """Tous les paramètres, le cache est rafraîchi au passage"""
        values = {s.key: _deserialize(s.value) for s in db.query(GlobalSetting).all()}
        settings_cache.store(values)
        return values

    @staticmethod
    def get_settings_by_category(db: Session, category: str) -> Dict[str, Any]:
        settings = db.query(GlobalSetting).filter(GlobalSetting.category == category).all()
        return {s.key: _deserialize(s.value) for s in settings}

    @staticmethod
    def list_settings(db: Session):
        return db.query(GlobalSetting).order_by(GlobalSetting.category, GlobalSetting.key).all()

    @staticmethod
    def describe(setting: GlobalSetting) -> Dict[str, Any]:
        """Paramètre avec sa valeur désérialisée, pour l'API"""
        return {
            "key": setting.key,
            "value": _deserialize(setting.value),
            "type": setting.type,
            "category": setting.category,
            "description": setting.description,
        }

    @staticmethod
    def _upsert(db: Session, key: str, value: Any) -> GlobalSetting:
        setting = db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
        if setting:
            setting.value = _serialize(value)
            return setting

        default = DEFAULTS_BY_KEY.get(key)
        setting = GlobalSetting(
            key=key,
            value=_serialize(value),
            type=default[2] if default else SettingType.STRING.value,
            category=default[3] if default else SettingCategory.SYSTEM.value,
            description=default[4] if default else None
        )
        db.add(setting)
        return setting

    @staticmethod
    def update_setting(db: Session, key: str, value: Any) -> GlobalSetting:
        """
        Met à jour un paramètre (dernier écrivain gagnant), le crée s'il n'existe pas
        """
        setting = GlobalSettingsService._upsert(db, key, value)
        db.commit()
        db.refresh(setting)
        settings_cache.update(key, value)
        return setting

    @staticmethod
    def update_settings(db: Session, values: Dict[str, Any]) -> int:
        for key, value in values.items():
            GlobalSettingsService._upsert(db, key, value)
        db.commit()
        for key, value in values.items():
            settings_cache.update(key, value)
        return len(values)

    @staticmethod
    def delete_setting(db: Session, key: str) -> bool:
        setting = db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
        if not setting:
            return False
        db.delete(setting)
        db.commit()
        settings_cache.discard(key)
        return True

    @staticmethod
    def reset_to_defaults(db: Session) -> int:
        """
        Supprime tous les paramètres puis recrée la table par défaut
        """
        db.query(GlobalSetting).delete()
        db.commit()
        settings_cache.clear()
        logger.info("Paramètres globaux réinitialisés")
        return GlobalSettingsService.initialize_default_settings(db)

    @staticmethod
    def get_billing_settings(db: Optional[Session]) -> BillingSettings:
        """
        Configuration de facturation du store.
        Store injoignable : table de secours codée en dur.
        """
        if db is None:
            return BillingSettings.fallback()

        try:
            keys = list(BILLING_SETTING_KEYS)
            settings = db.query(GlobalSetting).filter(GlobalSetting.key.in_(keys)).all()
        except SQLAlchemyError as e:
            logger.warning(f"Paramètres globaux indisponibles, prix de secours utilisés: {e}")
            db.rollback()
            return BillingSettings.fallback()

        values = {s.key: _deserialize(s.value) for s in settings}
        for key, value in values.items():
            settings_cache.update(key, value)
        return BillingSettings.from_settings(values)


class LiveSettingsProvider:
    """Fournisseur de paramètres adossé à la base"""

    def __init__(self, db: Session):
        self.db = db

    def get_billing_settings(self) -> BillingSettings:
        return GlobalSettingsService.get_billing_settings(self.db)


class CachedSettingsProvider:
    """Fournisseur de paramètres adossé à un instantané local"""

    def __init__(self, snapshot: Optional[Dict[str, Any]] = None):
        self.snapshot = snapshot

    def get_billing_settings(self) -> BillingSettings:
        values = self.snapshot if self.snapshot is not None else settings_cache.snapshot()
        return BillingSettings.from_settings(values)
