"""Server-rendered pages for attendees and event administrators."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
from fastapi import FastAPI, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.datastructures import FormData
from starlette.middleware.sessions import SessionMiddleware

from .client import AdminAuthenticationError, AdminCredential, EventAPIError, EventClient
from .config import EventSettings, load_event_settings, resolve_config_path
from .flows import (
    AdminGate,
    AnalyticsView,
    CollectionView,
    RegistrationFlow,
    ResourceFlow,
    SessionForm,
    SpeakerForm,
    attendee_resource,
    session_resource,
    speaker_resource,
)


PACKAGE_DIR = Path(__file__).resolve().parent
TEMPLATE_DIR = PACKAGE_DIR / "templates"
STATIC_DIR = PACKAGE_DIR / "static"

IN_PROCESS_BASE_URL = "http://workshop-api"

ADMIN_TABS = ("attendees", "speakers", "sessions", "analytics")

logger = logging.getLogger("workshop.web")


def _speaker_form_from(data: FormData) -> SpeakerForm:
    return SpeakerForm(
        name=str(data.get("name", "")),
        bio=str(data.get("bio", "")),
        photo_url=str(data.get("photo_url", "")),
    )


def _session_form_from(data: FormData) -> SessionForm:
    form = SessionForm(
        title=str(data.get("title", "")),
        description=str(data.get("description", "")),
        time=str(data.get("time", "")),
        capacity=str(data.get("capacity", "")),
    )
    for speaker_id in data.getlist("speaker_ids"):
        if speaker_id not in form.speaker_ids:
            form.toggle_speaker(str(speaker_id))
    return form


# kind -> (binding, form factory, request parser, template, singular label)
_EDITABLE: Dict[str, tuple] = {
    "speakers": (speaker_resource, SpeakerForm.from_entity, _speaker_form_from, "speaker_form.html", "Speaker"),
    "sessions": (session_resource, SessionForm.from_entity, _session_form_from, "session_form.html", "Session"),
}

_DELETABLE: Dict[str, tuple] = {
    "attendees": (attendee_resource, "Attendee"),
    "speakers": (speaker_resource, "Speaker"),
    "sessions": (session_resource, "Session"),
}


def create_app(
    *,
    api_app: Optional[FastAPI] = None,
    api_base_url: Optional[str] = None,
    api_transport: Optional[httpx.AsyncBaseTransport] = None,
    session_secret: Optional[str] = None,
    settings: Optional[EventSettings] = None,
) -> FastAPI:
    """Create the public registration page and the admin console.

    All data goes through :class:`~workshop.client.EventClient`, either to
    ``api_base_url`` or to ``api_app`` in-process.
    """

    if session_secret is None:
        session_secret = os.getenv("WORKSHOP_SESSION_SECRET")
    if not session_secret:
        raise RuntimeError("WORKSHOP_SESSION_SECRET must be configured to use the web interface")

    if api_transport is None and api_base_url is None:
        if api_app is None:
            raise RuntimeError("Either an API URL or an in-process API application is required")
        api_transport = httpx.ASGITransport(app=api_app, raise_app_exceptions=False)

    if settings is None:
        settings = load_event_settings(resolve_config_path(os.getenv("WORKSHOP_CONFIG")))

    app = FastAPI(
        title="Workshop Registration",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings

    secure_cookie_setting = os.getenv("WORKSHOP_SESSION_SECURE")
    if secure_cookie_setting is None:
        secure_cookie = False
    else:
        secure_cookie = secure_cookie_setting.strip().lower() not in {"0", "false", "no"}

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie="workshop_session",
        https_only=secure_cookie,
        same_site="lax",
        max_age=60 * 60 * 8,
    )
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.globals["event"] = settings

    def _open_client() -> EventClient:
        return EventClient(api_base_url or IN_PROCESS_BASE_URL, transport=api_transport)

    def _flash(request: Request, message: str, *, category: str = "info", dismiss_after: int | None = None) -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        entry: Dict[str, Any] = {"message": message, "category": category}
        if dismiss_after is not None:
            entry["dismiss_after"] = dismiss_after
        messages.append(entry)
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, Any]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _redirect(request: Request, name: str, **params: Any) -> RedirectResponse:
        query = params.pop("query", None)
        url = request.url_for(name, **params)
        if query:
            url = url.include_query_params(**query)
        return RedirectResponse(str(url), status_code=status.HTTP_303_SEE_OTHER)

    def _to_dashboard(request: Request, tab: str) -> RedirectResponse:
        return _redirect(request, "admin_dashboard", query={"tab": tab})

    def _session_expired(request: Request, gate: AdminGate) -> RedirectResponse:
        gate.expire()
        _flash(request, "Your admin session has expired. Please sign in again.", category="error")
        return _redirect(request, "admin_login")

    # ------------------------------------------------------------------
    # Public page
    # ------------------------------------------------------------------
    async def _render_home(
        request: Request,
        client: EventClient,
        flow: RegistrationFlow,
        *,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        sessions = CollectionView(client.list_sessions, name="sessions")
        speakers = CollectionView(client.list_speakers, name="speakers")
        try:
            await sessions.load()
            await speakers.load()
            if flow.count is None:
                await flow.load()
        finally:
            sessions.close()
            speakers.close()
        return templates.TemplateResponse(
            request,
            "home.html",
            {
                "messages": _consume_flash(request),
                "sessions": sessions,
                "speakers": speakers,
                "registration": flow,
                "form": flow.form,
            },
            status_code=status_code,
        )

    @app.get("/", response_class=HTMLResponse, name="home")
    async def home(request: Request):
        async with _open_client() as client:
            flow = RegistrationFlow(client)
            try:
                return await _render_home(request, client, flow)
            finally:
                flow.close()

    @app.post("/register", name="register")
    async def register(
        request: Request,
        name: str = Form(""),
        email: str = Form(""),
        designation: str = Form(""),
    ):
        async with _open_client() as client:
            flow = RegistrationFlow(client)
            try:
                flow.edit(name=name, email=email, designation=designation)
                if await flow.submit():
                    _flash(
                        request,
                        "Registration successful! See you at the workshop.",
                        category="success",
                        dismiss_after=int(RegistrationFlow.SUCCESS_DISPLAY_SECONDS * 1000),
                    )
                    return _redirect(request, "home")

                if flow.form.missing_fields():
                    status_code = status.HTTP_400_BAD_REQUEST
                elif flow.last_status is not None and flow.last_status < 500:
                    status_code = status.HTTP_400_BAD_REQUEST
                else:
                    status_code = status.HTTP_502_BAD_GATEWAY
                return await _render_home(request, client, flow, status_code=status_code)
            finally:
                flow.close()

    # ------------------------------------------------------------------
    # Admin sign-in
    # ------------------------------------------------------------------
    @app.get("/admin/login", response_class=HTMLResponse, name="admin_login")
    async def admin_login(request: Request):
        if request.session.get(AdminGate.STORAGE_KEY):
            return _redirect(request, "admin_dashboard")
        return templates.TemplateResponse(
            request,
            "admin_login.html",
            {"messages": _consume_flash(request)},
        )

    @app.post("/admin/login", name="process_admin_login")
    async def process_admin_login(request: Request, email: str = Form(...), password: str = Form(...)):
        async with _open_client() as client:
            gate = AdminGate(client, request.session)
            try:
                await gate.login(email, password)
            except AdminAuthenticationError:
                _flash(request, "Invalid email or password.", category="error")
                return _redirect(request, "admin_login")
            except EventAPIError as exc:
                logger.warning("Admin login failed: %s", exc.message)
                _flash(request, exc.message, category="error")
                return _redirect(request, "admin_login")
        return _redirect(request, "admin_dashboard")

    @app.get("/admin/logout", name="admin_logout")
    async def admin_logout(request: Request):
        async with _open_client() as client:
            await AdminGate(client, request.session).logout()
        _flash(request, "You have been signed out.", category="info")
        return _redirect(request, "home")

    # ------------------------------------------------------------------
    # Admin console
    # ------------------------------------------------------------------
    @app.get("/admin", response_class=HTMLResponse, name="admin_dashboard")
    async def admin_dashboard(request: Request, tab: str = "attendees"):
        if tab not in ADMIN_TABS:
            tab = "attendees"

        async with _open_client() as client:
            gate = AdminGate(client, request.session)
            credential = gate.enter()
            if credential is None:
                return _redirect(request, "home")

            context: Dict[str, Any] = {"tab": tab}
            closers: List[Callable[[], None]] = []
            try:
                if tab == "analytics":
                    analytics = AnalyticsView(client, credential)
                    closers.append(analytics.close)
                    await analytics.load()
                    context["analytics"] = analytics
                else:
                    binding = _DELETABLE[tab][0]
                    flow = ResourceFlow(binding(client, credential))
                    closers.append(flow.close)
                    await flow.reload()
                    context["flow"] = flow
            except AdminAuthenticationError:
                return _session_expired(request, gate)
            finally:
                for close in closers:
                    close()

        context["messages"] = _consume_flash(request)
        return templates.TemplateResponse(request, "admin.html", context)

    async def _speaker_choices(client: EventClient, credential: AdminCredential) -> CollectionView:
        choices = CollectionView(lambda: client.list_admin_speakers(credential), name="speakers")
        try:
            await choices.load()
        finally:
            choices.close()
        return choices

    async def _render_form(
        request: Request,
        client: EventClient,
        credential: AdminCredential,
        kind: str,
        flow: ResourceFlow,
        *,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        template, label = _EDITABLE[kind][3], _EDITABLE[kind][4]
        context: Dict[str, Any] = {
            "kind": kind,
            "label": label,
            "flow": flow,
            "form": flow.form,
            "messages": _consume_flash(request),
        }
        if kind == "sessions":
            context["speaker_choices"] = await _speaker_choices(client, credential)
        return templates.TemplateResponse(request, template, context, status_code=status_code)

    @app.get("/admin/{kind}/new", response_class=HTMLResponse, name="new_entity")
    async def new_entity(request: Request, kind: str):
        entry = _EDITABLE.get(kind)
        if entry is None:
            return HTMLResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)
        async with _open_client() as client:
            gate = AdminGate(client, request.session)
            credential = gate.enter()
            if credential is None:
                return _redirect(request, "home")
            flow = ResourceFlow(entry[0](client, credential), entry[1])
            try:
                flow.open_create()
                return await _render_form(request, client, credential, kind, flow)
            except AdminAuthenticationError:
                return _session_expired(request, gate)
            finally:
                flow.close()

    @app.get("/admin/{kind}/{entity_id}/edit", response_class=HTMLResponse, name="edit_entity")
    async def edit_entity(request: Request, kind: str, entity_id: str):
        entry = _EDITABLE.get(kind)
        if entry is None:
            return HTMLResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)
        async with _open_client() as client:
            gate = AdminGate(client, request.session)
            credential = gate.enter()
            if credential is None:
                return _redirect(request, "home")
            flow = ResourceFlow(entry[0](client, credential), entry[1])
            try:
                await flow.reload()
                entity = flow.find(entity_id)
                if entity is None:
                    _flash(request, f"{entry[4]} not found.", category="error")
                    return _to_dashboard(request, kind)
                flow.open_edit(entity)
                return await _render_form(request, client, credential, kind, flow)
            except AdminAuthenticationError:
                return _session_expired(request, gate)
            finally:
                flow.close()

    async def _save_entity(request: Request, kind: str, entity_id: Optional[str]):
        entry = _EDITABLE.get(kind)
        if entry is None:
            return HTMLResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)
        binding, form_factory, parse_form, _, label = entry
        data = await request.form()
        async with _open_client() as client:
            gate = AdminGate(client, request.session)
            credential = gate.enter()
            if credential is None:
                return _redirect(request, "home")
            flow = ResourceFlow(binding(client, credential), form_factory)
            try:
                if entity_id is None:
                    flow.open_create()
                else:
                    await flow.reload()
                    entity = flow.find(entity_id)
                    if entity is None:
                        _flash(request, f"{label} not found.", category="error")
                        return _to_dashboard(request, kind)
                    flow.open_edit(entity)
                flow.form = parse_form(data)
                if await flow.submit():
                    verb = "created" if entity_id is None else "updated"
                    _flash(request, f"{label} {verb} successfully.", category="success")
                    return _to_dashboard(request, kind)
                return await _render_form(
                    request,
                    client,
                    credential,
                    kind,
                    flow,
                    status_code=status.HTTP_400_BAD_REQUEST,
                )
            except AdminAuthenticationError:
                return _session_expired(request, gate)
            finally:
                flow.close()

    @app.post("/admin/{kind}", name="create_entity")
    async def create_entity(request: Request, kind: str):
        return await _save_entity(request, kind, None)

    @app.post("/admin/{kind}/{entity_id}", name="update_entity")
    async def update_entity(request: Request, kind: str, entity_id: str):
        return await _save_entity(request, kind, entity_id)

    @app.get("/admin/{kind}/{entity_id}/delete", response_class=HTMLResponse, name="confirm_delete")
    async def confirm_delete(request: Request, kind: str, entity_id: str):
        entry = _DELETABLE.get(kind)
        if entry is None:
            return HTMLResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)
        async with _open_client() as client:
            gate = AdminGate(client, request.session)
            credential = gate.enter()
            if credential is None:
                return _redirect(request, "home")
            flow = ResourceFlow(entry[0](client, credential))
            try:
                await flow.reload()
            except AdminAuthenticationError:
                return _session_expired(request, gate)
            finally:
                flow.close()
        entity = flow.find(entity_id)
        if entity is None:
            _flash(request, f"{entry[1]} not found.", category="error")
            return _to_dashboard(request, kind)
        return templates.TemplateResponse(
            request,
            "confirm_delete.html",
            {
                "kind": kind,
                "label": entry[1],
                "entity": entity,
                "display_name": getattr(entity, "name", None) or getattr(entity, "title", entity_id),
            },
        )

    @app.post("/admin/{kind}/{entity_id}/delete", name="delete_entity")
    async def delete_entity(request: Request, kind: str, entity_id: str, confirm: str = Form("")):
        entry = _DELETABLE.get(kind)
        if entry is None:
            return HTMLResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)
        async with _open_client() as client:
            gate = AdminGate(client, request.session)
            credential = gate.enter()
            if credential is None:
                return _redirect(request, "home")
            flow = ResourceFlow(entry[0](client, credential))
            try:
                deleted = await flow.delete(entity_id, confirm.strip().lower() == "yes")
            except AdminAuthenticationError:
                return _session_expired(request, gate)
            finally:
                flow.close()

        if deleted:
            _flash(request, f"{entry[1]} deleted.", category="success")
        elif flow.error:
            _flash(request, flow.error, category="error")
        else:
            _flash(request, "Deletion cancelled.", category="info")
        return _to_dashboard(request, kind)

    return app


__all__ = ["create_app"]
