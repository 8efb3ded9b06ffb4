"""
Gestionnaires d'erreurs centralisés pour la gestion locative
Standardisation de la gestion et du format des erreurs métier
"""
from typing import Dict, Any, Optional, Union
from fastapi import status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, DataError
from pydantic import ValidationError

from constants import ERROR_MESSAGES


class ErrorResponse:
    """Structure standardisée pour les réponses d'erreur"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        status_code: int = 400
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dictionnaire pour la réponse JSON"""
        response = {
            "error": True,
            "message": self.message
        }

        if self.error_code:
            response["error_code"] = self.error_code

        if self.details:
            response["details"] = self.details

        return response

    def to_json_response(self) -> JSONResponse:
        """Retourne une JSONResponse FastAPI"""
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict()
        )


# ==================== EXCEPTIONS MÉTIER ====================

class BusinessError(Exception):
    """
    Erreur métier portant sa réponse standardisée.
    Levée par les services, convertie en JSON par le gestionnaire d'exceptions.
    """

    def __init__(self, error_response: ErrorResponse):
        super().__init__(error_response.message)
        self.error_response = error_response

    @property
    def message(self) -> str:
        return self.error_response.message


class DomainValidationError(BusinessError):
    """Entrée invalide corrigeable par l'utilisateur (dates, montants, configuration)"""

    def __init__(self, message: str, error_code: str = "VALIDATION_ERROR", details: Dict[str, Any] = None):
        super().__init__(ErrorResponse(message, error_code, details, status.HTTP_400_BAD_REQUEST))


class StateConflictError(BusinessError):
    """Règle métier violée par l'état courant (chambre occupée, statut de contrat)"""

    def __init__(self, message: str, error_code: str = "STATE_CONFLICT", details: Dict[str, Any] = None):
        super().__init__(ErrorResponse(message, error_code, details, status.HTTP_409_CONFLICT))


class ResourceNotFoundError(BusinessError):
    """Entité introuvable"""

    def __init__(self, message: str, resource: str = None, resource_id: Union[int, str] = None):
        details = {"resource_type": resource, "resource_id": resource_id} if resource else None
        super().__init__(ErrorResponse(message, "RESOURCE_NOT_FOUND", details, status.HTTP_404_NOT_FOUND))


class DatabaseErrorHandler:
    """Gestionnaire pour les erreurs de base de données"""

    @staticmethod
    def handle_integrity_error(error: IntegrityError) -> ErrorResponse:
        """
        Gère les erreurs d'intégrité de la base de données
        """
        error_message = str(error.orig)
        lowered = error_message.lower()

        if "active_room_guard" in lowered:
            return ErrorResponse(
                message="该房间已有生效中的合同",
                error_code="ROOM_ALREADY_RENTED",
                status_code=status.HTTP_409_CONFLICT
            )

        if "duplicate entry" in lowered or "unique constraint" in lowered:
            return ErrorResponse(
                message="Cette valeur existe déjà dans la base de données",
                error_code="DUPLICATE_ENTRY",
                status_code=status.HTTP_409_CONFLICT
            )

        if "foreign key" in lowered:
            return ErrorResponse(
                message="Référence invalide: l'élément lié n'existe pas",
                error_code="FOREIGN_KEY_VIOLATION",
                status_code=status.HTTP_400_BAD_REQUEST
            )

        return ErrorResponse(
            message="Erreur de contrainte de base de données",
            error_code="INTEGRITY_ERROR",
            details={"technical_message": error_message},
            status_code=status.HTTP_400_BAD_REQUEST
        )

    @staticmethod
    def handle_data_error(error: DataError) -> ErrorResponse:
        """
        Gère les erreurs de données de la base de données
        """
        error_message = str(error.orig)

        if "Data too long" in error_message:
            return ErrorResponse(
                message="Données trop longues pour le champ spécifié",
                error_code="DATA_TOO_LONG",
                status_code=status.HTTP_400_BAD_REQUEST
            )

        return ErrorResponse(
            message="Erreur de format de données",
            error_code="DATA_ERROR",
            details={"technical_message": error_message},
            status_code=status.HTTP_400_BAD_REQUEST
        )


class ValidationErrorHandler:
    """Gestionnaire pour les erreurs de validation Pydantic"""

    @staticmethod
    def handle_validation_error(error: ValidationError) -> ErrorResponse:
        """
        Formate les erreurs de validation Pydantic
        """
        validation_errors = []

        for error_detail in error.errors():
            field_path = " -> ".join(str(loc) for loc in error_detail["loc"])

            validation_errors.append({
                "field": field_path,
                "message": error_detail["msg"],
                "type": error_detail["type"]
            })

        return ErrorResponse(
            message="Erreurs de validation des données",
            error_code="VALIDATION_ERROR",
            details={
                "validation_errors": validation_errors,
                "error_count": len(validation_errors)
            },
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY
        )


class BusinessLogicErrorHandler:
    """Fabrique des erreurs de logique métier avec messages qualifiés par le statut"""

    @staticmethod
    def room_not_available(room_status: str) -> StateConflictError:
        return StateConflictError(
            f"房间不可用，当前状态：{room_status}",
            error_code="ROOM_NOT_AVAILABLE",
            details={"room_status": room_status}
        )

    @staticmethod
    def renter_has_active_contract(renter_id: int) -> StateConflictError:
        return StateConflictError(
            ERROR_MESSAGES["RENTER_HAS_ACTIVE_CONTRACT"],
            error_code="RENTER_HAS_ACTIVE_CONTRACT",
            details={"renter_id": renter_id}
        )

    @staticmethod
    def invalid_contract_status(contract_status: str, operation: str) -> StateConflictError:
        """
        Statut de contrat incompatible avec l'opération demandée
        """
        return StateConflictError(
            f"合同状态不允许{operation}，当前状态：{contract_status}",
            error_code="INVALID_CONTRACT_STATUS",
            details={"contract_status": contract_status, "operation": operation}
        )

    @staticmethod
    def not_found(message_key: str, resource: str, resource_id: Optional[Union[int, str]] = None) -> ResourceNotFoundError:
        return ResourceNotFoundError(ERROR_MESSAGES[message_key], resource, resource_id)
