# studio_app/models/photo.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime, timezone
from ..extensions import db

EVENT_TYPES = (
    "Wedding", "Birthday", "Baby Showers", "Elopement", "Birthdays",
    "Ceremonies", "Anniversaries", "Engagements", "Graduation", "Other",
)

def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Photo(db.Model):
    __tablename__ = "photos"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False, default="")
    object_path = db.Column(db.String(512), nullable=False)   # key in the object store
    url = db.Column(db.String(1024), nullable=False)
    size_bytes = db.Column(db.BigInteger, nullable=False, default=0)
    event_type = db.Column(db.String(40), nullable=False, default="Other", index=True)
    is_favorite = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "eventType": self.event_type,
            "isFavorite": bool(self.is_favorite),
            "createdAt": self.created_at.isoformat() + "Z" if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() + "Z" if self.updated_at else None,
        }
