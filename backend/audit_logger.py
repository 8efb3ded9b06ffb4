from sqlalchemy import inspect
from sqlalchemy.orm import Session
from fastapi import Request
import models
import json
import logging
from decimal import Decimal
from typing import Optional, Dict, Any
from datetime import date, datetime

logger = logging.getLogger(__name__)


class AuditLogger:
    """Service de logging pour auditer les actions du cycle de vie des contrats"""

    @staticmethod
    def log_action(
        db: Session,
        action: models.ActionType,
        entity_type: models.EntityType,
        description: str,
        entity_id: Optional[int] = None,
        details: Optional[Dict[Any, Any]] = None,
        request: Optional[Request] = None,
        commit: bool = True
    ):
        """
        Log une action dans la base de données

        Args:
            db: Session de base de données
            action: Type d'action (CREATE, CHECKOUT, etc.)
            entity_type: Type d'entité concernée (CONTRACT, BILL, etc.)
            description: Description de l'action
            entity_id: ID de l'entité concernée
            details: Détails supplémentaires (avant/après, montants, erreurs)
            request: Objet Request FastAPI pour récupérer l'endpoint
            commit: False pour inscrire le log dans la transaction en cours
        """
        endpoint = None
        method = None

        if request:
            endpoint = str(request.url.path)
            method = request.method

        # Convertir les détails en JSON
        details_json = None
        if details:
            try:
                details_json = json.dumps(details, default=str, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                details_json = f"Erreur de sérialisation: {str(e)}"

        audit_log = models.AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description[:500],
            details=details_json,
            endpoint=endpoint,
            method=method
        )

        db.add(audit_log)
        if not commit:
            return

        try:
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Erreur lors de l'enregistrement du log: {e}")

    @staticmethod
    def log_crud_action(db: Session, action: models.ActionType, entity_type: models.EntityType,
                        entity_id: int, description: str,
                        before_data: Dict = None, after_data: Dict = None,
                        request: Request = None, commit: bool = True):
        """Log spécialisé pour les actions CRUD"""
        details = {}
        if before_data:
            details["before"] = before_data
        if after_data:
            details["after"] = after_data

        AuditLogger.log_action(
            db=db,
            action=action,
            entity_type=entity_type,
            description=description,
            entity_id=entity_id,
            details=details,
            request=request,
            commit=commit
        )

    @staticmethod
    def log_error(db: Session, description: str, entity_type: models.EntityType = models.EntityType.CONTRACT,
                  entity_id: int = None, error_details: str = None):
        """Log spécialisé pour les erreurs (transaction propre)"""
        details = {"error": error_details} if error_details else None

        AuditLogger.log_action(
            db=db,
            action=models.ActionType.ERROR,
            entity_type=entity_type,
            description=description,
            entity_id=entity_id,
            details=details
        )


def get_model_data(obj) -> Dict:
    """
    Convertit un objet SQLAlchemy en dictionnaire pour le logging
    """
    if obj is None:
        return {}

    data = {}
    for attr in inspect(obj).mapper.column_attrs:
        value = getattr(obj, attr.key)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = str(value)
        data[attr.key] = value
    return data
