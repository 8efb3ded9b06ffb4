#!/usr/bin/env python3
"""
Crée les tables manquantes et les paramètres globaux par défaut
"""
import logging

from sqlalchemy import inspect

from database import engine, SessionLocal
import models
from services.global_settings import GlobalSettingsService

logger = logging.getLogger("create_tables")


def create_all_tables():
    """Crée toutes les tables définies dans models.py puis initialise les paramètres"""
    logger.info("Création des tables...")
    models.Base.metadata.create_all(bind=engine)

    tables = inspect(engine).get_table_names()
    logger.info(f"Tables disponibles ({len(tables)}): {', '.join(sorted(tables))}")

    db = SessionLocal()
    try:
        created = GlobalSettingsService.initialize_default_settings(db)
        logger.info(f"{created} paramètres globaux créés")
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    create_all_tables()
