from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .clock import Clock, as_utc, utcnow
from .db import SessionLocal
from .errors import RecordStoreError
from .models import ChatSessionModel

logger = logging.getLogger(__name__)


class SessionStore:
    """Authenticated-until timestamps per identity, persisted in ``sessions``."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] = SessionLocal,
        clock: Clock = utcnow,
        duration: timedelta = timedelta(hours=5),
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._duration = duration

    def authenticate(self, identity: str) -> datetime:
        expires_at = self._clock() + self._duration
        try:
            with self._session_factory() as db:
                row = db.get(ChatSessionModel, identity)
                if row is None:
                    db.add(ChatSessionModel(identity=identity, authenticated_until=expires_at))
                else:
                    row.authenticated_until = expires_at
                db.commit()
        except SQLAlchemyError as exc:
            raise RecordStoreError("could not start session") from exc
        logger.info("Session for %s valid until %s", identity, expires_at.isoformat())
        return expires_at

    def is_valid(self, identity: str) -> bool:
        """True while ``now < authenticated_until``; an expired row is dropped."""
        now = self._clock()
        try:
            with self._session_factory() as db:
                row = db.get(ChatSessionModel, identity)
                if row is None:
                    return False
                if now < as_utc(row.authenticated_until):
                    return True
                db.delete(row)
                db.commit()
                return False
        except SQLAlchemyError as exc:
            raise RecordStoreError("could not read session") from exc

    def expires_at(self, identity: str) -> datetime | None:
        try:
            with self._session_factory() as db:
                row = db.get(ChatSessionModel, identity)
                return as_utc(row.authenticated_until) if row else None
        except SQLAlchemyError as exc:
            raise RecordStoreError("could not read session") from exc
