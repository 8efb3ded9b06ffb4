"""
Configuration centralisée de l'application de gestion locative
Organisation des routes, middleware et configuration
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError, DataError, SQLAlchemyError
from pydantic import ValidationError
import logging
import os

# Import des modules de configuration
from database import engine, SessionLocal
import models

# Import des middlewares
from middleware import RequestLoggingMiddleware
from error_handlers import BusinessError
from validation_middleware import (
    business_exception_handler, validation_exception_handler,
    request_validation_exception_handler, database_exception_handler
)

# Import des routes
import room_routes
import tenant_routes
import contract_routes
import meter_routes
import bill_routes
import settings_routes

from services.global_settings import GlobalSettingsService

# Import des constantes
from constants import APP_NAME, APP_VERSION, APP_DESCRIPTION

logger = logging.getLogger(__name__)


# Configuration CORS détaillée
CORS_CONFIG = {
    "allow_origins": os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    ).split(","),
    "allow_credentials": True,
    "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    "allow_headers": ["*"],
}


class AppConfigurator:
    """
    Configurateur centralisé pour l'application FastAPI
    """

    @staticmethod
    def create_app() -> FastAPI:
        """
        Crée et configure l'application FastAPI
        """
        AppConfigurator._configure_logging()

        # Créer les tables
        models.Base.metadata.create_all(bind=engine)

        # Paramètres globaux par défaut
        AppConfigurator._initialize_settings()

        # Créer l'application
        app = FastAPI(
            title=APP_NAME,
            version=APP_VERSION,
            description=APP_DESCRIPTION
        )

        AppConfigurator._configure_middlewares(app)
        AppConfigurator._configure_exception_handlers(app)
        AppConfigurator._configure_routes(app)

        return app

    @staticmethod
    def _configure_logging():
        logging.basicConfig(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )

    @staticmethod
    def _initialize_settings():
        db = SessionLocal()
        try:
            GlobalSettingsService.initialize_default_settings(db)
        except SQLAlchemyError as e:
            # Base injoignable au démarrage : les prix de secours prennent le relais
            logger.warning(f"Initialisation des paramètres globaux impossible: {e}")
        finally:
            db.close()

    @staticmethod
    def _configure_middlewares(app: FastAPI):
        """
        Configure tous les middlewares
        """
        app.add_middleware(CORSMiddleware, **CORS_CONFIG)
        app.add_middleware(RequestLoggingMiddleware)

    @staticmethod
    def _configure_exception_handlers(app: FastAPI):
        """
        Configure tous les gestionnaires d'exceptions
        """
        app.add_exception_handler(BusinessError, business_exception_handler)
        app.add_exception_handler(ValidationError, validation_exception_handler)
        app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
        app.add_exception_handler(IntegrityError, database_exception_handler)
        app.add_exception_handler(DataError, database_exception_handler)

    @staticmethod
    def _configure_routes(app: FastAPI):
        """
        Configure toutes les routes de l'application
        """
        app.include_router(room_routes.building_router)
        app.include_router(room_routes.router)
        app.include_router(tenant_routes.router)
        app.include_router(contract_routes.router)
        app.include_router(meter_routes.router)
        app.include_router(bill_routes.router)
        app.include_router(settings_routes.router)
