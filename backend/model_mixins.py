"""
Mixins pour les modèles SQLAlchemy
Séparation des responsabilités et réutilisabilité des fonctionnalités communes
"""
from sqlalchemy import Column, DateTime, Text
from sqlalchemy.sql import func
from datetime import datetime
from typing import List, Optional
import json


class TimestampMixin:
    """
    Mixin pour ajouter des timestamps automatiques
    """
    created_at = Column(DateTime, default=func.now(), nullable=False, comment="Date de création")
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False, comment="Date de dernière modification")


class RemarksLogMixin:
    """
    Mixin pour un journal de remarques en ajout seul.
    Stocké en JSON : liste d'entrées {"at", "title", "lines"}.
    """
    remarks = Column(Text, nullable=True, comment="Journal des remarques (JSON)")

    def get_remarks(self) -> List[dict]:
        """
        Récupère les entrées du journal.
        Un ancien texte libre est repris comme une entrée sans date.
        """
        if not self.remarks:
            return []

        try:
            entries = json.loads(self.remarks)
        except (json.JSONDecodeError, TypeError):
            return [{"at": None, "title": None, "lines": [self.remarks]}]

        if not isinstance(entries, list):
            return [{"at": None, "title": None, "lines": [str(entries)]}]
        return entries

    def append_remark(self, title: Optional[str], lines: List[str] = None, at: datetime = None):
        """
        Ajoute une entrée au journal sans jamais réécrire les précédentes
        """
        entries = self.get_remarks()
        entries.append({
            "at": (at or datetime.utcnow()).isoformat(),
            "title": title,
            "lines": [line for line in (lines or []) if line],
        })
        self.remarks = json.dumps(entries, ensure_ascii=False)

    @property
    def remarks_log(self) -> List[dict]:
        return self.get_remarks()

    def remarks_text(self) -> str:
        """
        Rendu texte du journal pour l'affichage
        """
        blocks = []
        for entry in self.get_remarks():
            parts = []
            if entry.get("title"):
                parts.append(f"[{entry['title']}]")
            parts.extend(entry.get("lines") or [])
            blocks.append("\n".join(parts))
        return "\n\n".join(blocks)


class MetadataMixin:
    """
    Mixin pour les métadonnées JSON
    L'attribut `metadata` est réservé par SQLAlchemy, la colonne garde ce nom en base.
    """
    metadata_json = Column("metadata", Text, nullable=True, comment="Métadonnées JSON")

    def get_metadata(self) -> dict:
        """
        Récupère les métadonnées sous forme de dictionnaire
        """
        if not self.metadata_json:
            return {}

        try:
            return json.loads(self.metadata_json)
        except (json.JSONDecodeError, TypeError):
            return {}

    def set_metadata(self, metadata: dict):
        """
        Définit les métadonnées
        """
        self.metadata_json = json.dumps(metadata, default=str, ensure_ascii=False) if metadata else None
