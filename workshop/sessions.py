"""In-memory bearer sessions for signed-in administrators."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional


@dataclass
class _SessionRecord:
    admin_id: int
    expires_at: datetime


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime


class SessionManager:
    """Issue, validate, and revoke admin bearer tokens.

    Tokens slide: every successful :meth:`resolve` pushes the expiry out by
    the configured TTL.
    """

    def __init__(self, *, ttl: timedelta = timedelta(hours=8)) -> None:
        self._ttl = ttl
        self._sessions: Dict[str, _SessionRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def create(self, admin_id: int) -> IssuedSession:
        token = secrets.token_urlsafe(32)
        record = _SessionRecord(admin_id=admin_id, expires_at=self._now() + self._ttl)
        with self._lock:
            self._sessions[token] = record
        return IssuedSession(token=token, expires_at=record.expires_at)

    def resolve(self, token: str) -> Optional[int]:
        now = self._now()
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            if record.expires_at <= now:
                self._sessions.pop(token, None)
                return None
            record.expires_at = now + self._ttl
            return record.admin_id

    def destroy(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["IssuedSession", "SessionManager"]
