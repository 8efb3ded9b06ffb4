#!/usr/bin/env python3
"""
Gestionnaires d'exceptions FastAPI : erreurs métier, validation et base de données
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, DataError
import logging

from error_handlers import (
    BusinessError, DatabaseErrorHandler, ValidationErrorHandler, ErrorResponse
)

logger = logging.getLogger(__name__)

# Noms de champs affichés dans les erreurs de validation
FIELD_TRANSLATIONS = {
    'renter_id': '租客',
    'room_id': '房间',
    'start_date': '开始日期',
    'end_date': '结束日期',
    'monthly_rent': '月租金',
    'deposit': '押金',
    'key_deposit': '钥匙押金',
    'cleaning_fee': '清洁费',
    'checkout_date': '退租日期',
    'checkout_reason': '退租原因',
    'damage_assessment': '损坏赔偿',
    'current_reading': '本次读数',
    'reading_date': '抄表日期',
    'received_amount': '实收金额',
}


def _translate_fields(error_response: ErrorResponse) -> ErrorResponse:
    for item in error_response.details.get("validation_errors", []):
        last = item["field"].split(" -> ")[-1]
        item["label"] = FIELD_TRANSLATIONS.get(last, last)
    return error_response


async def business_exception_handler(request: Request, exc: BusinessError):
    """
    Gestionnaire des erreurs métier levées par les services
    """
    logger.info(f"Business rule rejected on {request.url.path}: {exc.message}")
    return exc.error_response.to_json_response()


async def validation_exception_handler(request: Request, exc: ValidationError):
    """
    Gestionnaire d'exceptions pour les erreurs de validation Pydantic
    """
    logger.warning(f"Validation error on {request.url}: {exc}")
    return _translate_fields(ValidationErrorHandler.handle_validation_error(exc)).to_json_response()


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Gestionnaire d'exceptions pour les erreurs de validation de requête FastAPI
    """
    logger.warning(f"Request validation error on {request.url}: {exc}")
    validation_errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    error_response = ErrorResponse(
        message="Erreurs de validation des données",
        error_code="VALIDATION_ERROR",
        details={"validation_errors": validation_errors, "error_count": len(validation_errors)},
        status_code=422
    )
    return _translate_fields(error_response).to_json_response()


async def database_exception_handler(request: Request, exc: Exception):
    """
    Gestionnaire des erreurs SQLAlchemy remontées jusqu'à la route
    """
    if isinstance(exc, IntegrityError):
        error_response = DatabaseErrorHandler.handle_integrity_error(exc)
    elif isinstance(exc, DataError):
        error_response = DatabaseErrorHandler.handle_data_error(exc)
    else:
        logger.exception(f"Unhandled error on {request.url}: {exc}")
        return JSONResponse(
            status_code=500,
            content={'error': True, 'message': 'Erreur interne du serveur'}
        )

    logger.error(f"Database error on {request.url}: {exc}")
    return error_response.to_json_response()
