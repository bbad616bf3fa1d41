from __future__ import annotations
from typing import Any, Callable, Dict, Optional
from sqlalchemy.orm import Session
from wizardflow.db.models import WizardSnapshot
from wizardflow.db.session import SessionLocal


class SnapshotSlot:
    """A single keyed row in ``wizard_snapshots``; each write replaces it."""

    def __init__(self, key: str, session_factory: Callable[[], Session] = SessionLocal):
        self.key = key
        self._session_factory = session_factory

    def read(self) -> Optional[Dict[str, Any]]:
        db = self._session_factory()
        try:
            row = db.get(WizardSnapshot, self.key)
            return dict(row.payload) if row else None
        finally:
            db.close()

    def write(self, payload: Dict[str, Any], *, stage: str | None = None, topic: str | None = None) -> None:
        db = self._session_factory()
        try:
            row = db.get(WizardSnapshot, self.key)
            if row is None:
                row = WizardSnapshot(key=self.key)
                db.add(row)
            row.payload = payload
            row.stage = stage
            row.topic = topic
            db.commit()
        finally:
            db.close()

    def delete(self) -> None:
        db = self._session_factory()
        try:
            row = db.get(WizardSnapshot, self.key)
            if row is not None:
                db.delete(row)
                db.commit()
        finally:
            db.close()
