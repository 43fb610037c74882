from __future__ import annotations

from datetime import datetime

from .extensions import db


class StoredProject(db.Model):
    """One project snapshot document per key."""

    __tablename__ = "project_snapshots"

    key = db.Column(db.String(120), primary_key=True)
    payload = db.Column(db.Text, nullable=False, default="{}")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<StoredProject {self.key}>"
