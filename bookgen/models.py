from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from .extensions import db


class SavedBook(db.Model):
    __tablename__ = "books"

    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.Text, nullable=False)
    synopsis = db.Column(db.Text, nullable=False)
    configuration = db.Column(db.JSON, nullable=False)
    outline = db.Column(db.JSON, nullable=False)
    chapters = db.Column(db.JSON, nullable=False)
    total_words = db.Column(db.Integer, nullable=False, default=0)
    model = db.Column(db.String(120), nullable=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    cover = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SavedBook {self.title} ({self.total_words} words)>"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "titulo": self.title,
            "sinopsis": self.synopsis,
            "configuracion": self.configuration,
            "outline": self.outline,
            "capitulos": self.chapters,
            "fechaCreacion": self.created_at.isoformat() if self.created_at else None,
            "fechaModificacion": self.updated_at.isoformat() if self.updated_at else None,
            "palabrasTotales": self.total_words,
            "modelo": self.model,
            "portada": self.cover,
        }
