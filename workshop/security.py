"""Security helpers for the admin API."""
from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from typing import Iterable, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .sessions import SessionManager


@dataclass(frozen=True)
class AdminPrincipal:
    """Who an authenticated admin request is acting as.

    ``admin_id`` is ``None`` when a static deployment token was used.
    """

    token: str
    admin_id: Optional[int]


class AdminAuth:
    """Bearer token authentication for admin routes.

    Accepts tokens issued by :class:`SessionManager` at login, plus any static
    deployment tokens, compared in constant time.
    """

    def __init__(self, session_manager: SessionManager, static_tokens: Iterable[str] = ()):
        self._sessions = session_manager
        self._static_tokens: List[str] = [token.strip() for token in static_tokens if token.strip()]
        self._bearer = HTTPBearer(auto_error=False)

    @property
    def session_manager(self) -> SessionManager:
        return self._sessions

    async def __call__(self, request: Request) -> AdminPrincipal:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing admin bearer token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        provided = credentials.credentials
        admin_id = self._sessions.resolve(provided)
        if admin_id is not None:
            return AdminPrincipal(token=provided, admin_id=admin_id)

        for token in self._static_tokens:
            if secrets.compare_digest(provided, token):
                return AdminPrincipal(token=provided, admin_id=None)

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def load_tokens_from_env() -> List[str]:
    raw = os.getenv("WORKSHOP_ADMIN_TOKENS", "")
    return [token.strip() for token in raw.split(",") if token.strip()]


__all__ = ["AdminAuth", "AdminPrincipal", "load_tokens_from_env"]
