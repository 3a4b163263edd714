"""Application factory that serves both the JSON API and the web pages."""
from __future__ import annotations

import os
from typing import List, Optional

from fastapi import FastAPI

from .api import create_app as create_api_app
from .config import EventSettings, load_event_settings, resolve_config_path
from .database import Database, resolve_database_path
from .security import AdminAuth, load_tokens_from_env
from .sessions import SessionManager
from .web import create_app as create_web_app


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _resolve_api_url() -> Optional[str]:
    raw = os.getenv("WORKSHOP_API_URL")
    if not raw:
        return None
    cleaned = raw.strip().rstrip("/")
    return cleaned or None


def _resolve_cors_origins() -> Optional[List[str]]:
    raw = os.getenv("WORKSHOP_CORS_ORIGINS")
    if raw is None:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


def create_application(
    *,
    database_path: Optional[str] = None,
    session_secret: Optional[str] = None,
    settings: Optional[EventSettings] = None,
) -> FastAPI:
    """Create the combined ASGI application."""

    db_path = resolve_database_path(database_path or os.getenv("WORKSHOP_DB_PATH"))
    database = Database(db_path)
    database.initialize()

    if settings is None:
        settings = load_event_settings(resolve_config_path(os.getenv("WORKSHOP_CONFIG")))

    admin_auth = AdminAuth(SessionManager(), load_tokens_from_env())
    api_app = create_api_app(
        database=database,
        auth=admin_auth,
        cors_origins=_resolve_cors_origins(),
    )

    api_url = _resolve_api_url()
    web_app = create_web_app(
        api_app=None if api_url else api_app,
        api_base_url=api_url,
        session_secret=session_secret or os.getenv("WORKSHOP_SESSION_SECRET"),
        settings=settings,
    )

    app = FastAPI(
        title="Workshop Registration",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.database = database
    app.state.api = api_app
    app.state.web = web_app

    app.mount("/api", api_app)
    app.mount("/", web_app)

    return app


__all__ = ["create_application"]
