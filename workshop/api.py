"""FastAPI application that exposes the event registration JSON API."""
from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .database import Database, resolve_database_path
from .models import MAX_SESSION_CAPACITY, Attendee, DesignationCount, Session, SessionDraft, Speaker, SpeakerDraft
from .security import AdminAuth, AdminPrincipal, load_tokens_from_env
from .sessions import SessionManager

logger = logging.getLogger("workshop.api")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DEFAULT_CORS_ORIGINS = ("http://localhost:3000",)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


def _strip_required(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be empty")
    return stripped


class RegisterAttendeeRequest(_WireModel):
    name: str = Field(..., max_length=200)
    email: str = Field(..., max_length=320)
    designation: str = Field(..., max_length=100)

    @field_validator("name", "designation")
    @classmethod
    def _require_text(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        stripped = _strip_required(value)
        if not _EMAIL_PATTERN.match(stripped):
            raise ValueError("must be a valid email address")
        return stripped.lower()


class SpeakerRequest(_WireModel):
    name: str = Field(..., max_length=200)
    bio: str = Field(..., max_length=5000)
    photo_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("name", "bio")
    @classmethod
    def _require_text(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("photo_url")
    @classmethod
    def _normalize_photo(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    def to_draft(self) -> SpeakerDraft:
        return SpeakerDraft(name=self.name, bio=self.bio, photo_url=self.photo_url)


class SessionRequest(_WireModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=5000)
    time: str = Field(..., max_length=100)
    speaker_ids: List[str] = Field(default_factory=list)
    capacity: Optional[int] = Field(default=None, ge=1, le=MAX_SESSION_CAPACITY)

    @field_validator("title", "description", "time")
    @classmethod
    def _require_text(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("speaker_ids", mode="before")
    @classmethod
    def _normalize_speaker_ids(cls, value: object) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("speakerIds must be a list of strings")
        normalized: List[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("speakerIds must contain only strings")
            stripped = item.strip()
            if stripped and stripped not in normalized:
                normalized.append(stripped)
        return normalized

    def to_draft(self) -> SessionDraft:
        return SessionDraft(
            title=self.title,
            description=self.description,
            time=self.time,
            speaker_ids=tuple(self.speaker_ids),
            capacity=self.capacity,
        )


class LoginRequest(_WireModel):
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1)


class LoginResponse(_WireModel):
    token: str
    expires_at: datetime


class AttendeeResponse(_WireModel):
    id: str
    name: str
    email: str
    designation: str
    registered_at: datetime


class SpeakerResponse(_WireModel):
    id: str
    name: str
    bio: str
    photo_url: Optional[str] = None
    sessions: List[str] = Field(default_factory=list)


class SessionResponse(_WireModel):
    id: str
    title: str
    description: str
    time: str
    speaker_ids: List[str]
    capacity: Optional[int] = None


class SessionWithSpeakersResponse(SessionResponse):
    speakers: List[SpeakerResponse] = Field(default_factory=list)


class DesignationCountResponse(_WireModel):
    designation: str
    count: int


class CountResponse(_WireModel):
    count: int


class MessageResponse(_WireModel):
    message: str


def attendee_to_response(attendee: Attendee) -> AttendeeResponse:
    return AttendeeResponse(
        id=attendee.id,
        name=attendee.name,
        email=attendee.email,
        designation=attendee.designation,
        registered_at=attendee.registered_at,
    )


def speaker_to_response(speaker: Speaker) -> SpeakerResponse:
    return SpeakerResponse(
        id=speaker.id,
        name=speaker.name,
        bio=speaker.bio,
        photo_url=speaker.photo_url,
        sessions=list(speaker.session_ids),
    )


def session_to_response(session: Session) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        title=session.title,
        description=session.description,
        time=session.time,
        speaker_ids=list(session.speaker_ids),
        capacity=session.capacity,
    )


def session_to_listing(session: Session) -> SessionWithSpeakersResponse:
    return SessionWithSpeakersResponse(
        **session_to_response(session).model_dump(),
        speakers=[speaker_to_response(speaker) for speaker in session.speakers],
    )


def breakdown_to_response(entries: Sequence[DesignationCount]) -> List[DesignationCountResponse]:
    return [DesignationCountResponse(designation=entry.designation, count=entry.count) for entry in entries]


def _trusted_proxy_hosts() -> list[str] | str:
    raw = os.getenv("WORKSHOP_TRUSTED_PROXIES")
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


def _cors_origins() -> List[str]:
    raw = os.getenv("WORKSHOP_CORS_ORIGINS")
    if not raw:
        return list(DEFAULT_CORS_ORIGINS)
    return [item.strip() for item in raw.split(",") if item.strip()]


def create_app(
    *,
    database: Database | None = None,
    auth: AdminAuth | None = None,
    initialize_database: bool = False,
    cors_origins: Sequence[str] | None = None,
) -> FastAPI:
    """Create the JSON API application."""

    if database is None:
        db_path = resolve_database_path(os.getenv("WORKSHOP_DB_PATH"))
        database = Database(db_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if auth is None:
        auth = AdminAuth(SessionManager(), load_tokens_from_env())

    app = FastAPI(
        title="Workshop Registration API",
        description="Registration, speakers, sessions and analytics for the workshop",
        version="1.0.0",
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins) if cors_origins is not None else _cors_origins(),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Accept", "Authorization"],
        allow_credentials=True,
    )
    app.state.database = database
    app.state.auth = auth

    def get_db() -> Database:
        return database

    async def require_admin(principal: AdminPrincipal = Depends(auth)) -> AdminPrincipal:
        return principal

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Public routes
    # ------------------------------------------------------------------
    @app.get("/sessions", response_model=List[SessionWithSpeakersResponse])
    async def list_sessions(db: Database = Depends(get_db)) -> List[SessionWithSpeakersResponse]:
        return [session_to_listing(session) for session in db.list_sessions(resolve_speakers=True)]

    @app.get("/sessions/{session_id}", response_model=SessionWithSpeakersResponse)
    async def read_session(session_id: str, db: Database = Depends(get_db)) -> SessionWithSpeakersResponse:
        session = db.get_session(session_id, resolve_speakers=True)
        if session is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        return session_to_listing(session)

    @app.get("/speakers", response_model=List[SpeakerResponse])
    async def list_speakers(db: Database = Depends(get_db)) -> List[SpeakerResponse]:
        return [speaker_to_response(speaker) for speaker in db.list_speakers()]

    @app.get("/speakers/{speaker_id}", response_model=SpeakerResponse)
    async def read_speaker(speaker_id: str, db: Database = Depends(get_db)) -> SpeakerResponse:
        speaker = db.get_speaker(speaker_id)
        if speaker is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Speaker not found")
        return speaker_to_response(speaker)

    @app.get("/attendees/count", response_model=CountResponse)
    async def attendee_count(db: Database = Depends(get_db)) -> CountResponse:
        return CountResponse(count=db.count_attendees())

    @app.post("/attendees", response_model=AttendeeResponse, status_code=status.HTTP_201_CREATED)
    async def register_attendee(
        payload: RegisterAttendeeRequest,
        db: Database = Depends(get_db),
    ) -> AttendeeResponse:
        try:
            attendee = db.register_attendee(payload.name, payload.email, payload.designation)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        logger.info("Registered attendee %s (%s)", attendee.id, attendee.designation)
        return attendee_to_response(attendee)

    # ------------------------------------------------------------------
    # Admin sign-in
    # ------------------------------------------------------------------
    @app.post("/admin/session", response_model=LoginResponse)
    async def admin_login(payload: LoginRequest, db: Database = Depends(get_db)) -> LoginResponse:
        admin = db.authenticate_admin(payload.email, payload.password)
        if admin is None:
            logger.warning("Failed admin login attempt for %s", payload.email)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
            )
        issued = auth.session_manager.create(admin.id)
        logger.info("Admin %s signed in", admin.id)
        return LoginResponse(token=issued.token, expires_at=issued.expires_at)

    @app.delete("/admin/session", response_model=MessageResponse)
    async def admin_logout(principal: AdminPrincipal = Depends(require_admin)) -> MessageResponse:
        auth.session_manager.destroy(principal.token)
        logger.info("Admin %s signed out", principal.admin_id)
        return MessageResponse(message="Signed out")

    # ------------------------------------------------------------------
    # Admin routes
    # ------------------------------------------------------------------
    admin_router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])

    @admin_router.get("/attendees", response_model=List[AttendeeResponse])
    async def list_attendees(db: Database = Depends(get_db)) -> List[AttendeeResponse]:
        return [attendee_to_response(attendee) for attendee in db.list_attendees()]

    @admin_router.get("/attendees/{attendee_id}", response_model=AttendeeResponse)
    async def read_attendee(attendee_id: str, db: Database = Depends(get_db)) -> AttendeeResponse:
        attendee = db.get_attendee(attendee_id)
        if attendee is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendee not found")
        return attendee_to_response(attendee)

    @admin_router.delete("/attendees/{attendee_id}", response_model=MessageResponse)
    async def delete_attendee(attendee_id: str, db: Database = Depends(get_db)) -> MessageResponse:
        if not db.delete_attendee(attendee_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendee not found")
        logger.info("Deleted attendee %s", attendee_id)
        return MessageResponse(message="Attendee deleted successfully")

    @admin_router.get("/speakers", response_model=List[SpeakerResponse])
    async def admin_list_speakers(db: Database = Depends(get_db)) -> List[SpeakerResponse]:
        return [speaker_to_response(speaker) for speaker in db.list_speakers()]

    @admin_router.post("/speakers", response_model=SpeakerResponse, status_code=status.HTTP_201_CREATED)
    async def create_speaker(payload: SpeakerRequest, db: Database = Depends(get_db)) -> SpeakerResponse:
        try:
            speaker = db.create_speaker(payload.to_draft())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        logger.info("Created speaker %s", speaker.id)
        return speaker_to_response(speaker)

    @admin_router.put("/speakers/{speaker_id}", response_model=SpeakerResponse)
    async def update_speaker(
        speaker_id: str,
        payload: SpeakerRequest,
        db: Database = Depends(get_db),
    ) -> SpeakerResponse:
        try:
            speaker = db.update_speaker(speaker_id, payload.to_draft())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        if speaker is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Speaker not found")
        logger.info("Updated speaker %s", speaker.id)
        return speaker_to_response(speaker)

    @admin_router.delete("/speakers/{speaker_id}", response_model=MessageResponse)
    async def delete_speaker(speaker_id: str, db: Database = Depends(get_db)) -> MessageResponse:
        speaker = db.get_speaker(speaker_id)
        if speaker is None or not db.delete_speaker(speaker_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Speaker not found")
        if speaker.session_ids:
            logger.info(
                "Deleted speaker %s and removed it from %d session(s)",
                speaker_id,
                len(speaker.session_ids),
            )
        else:
            logger.info("Deleted speaker %s", speaker_id)
        return MessageResponse(message="Speaker deleted successfully")

    @admin_router.get("/sessions", response_model=List[SessionResponse])
    async def admin_list_sessions(db: Database = Depends(get_db)) -> List[SessionResponse]:
        return [session_to_response(session) for session in db.list_sessions()]

    @admin_router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
    async def create_session(payload: SessionRequest, db: Database = Depends(get_db)) -> SessionResponse:
        try:
            session = db.create_session(payload.to_draft())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        logger.info("Created session %s with %d speaker(s)", session.id, len(session.speaker_ids))
        return session_to_response(session)

    @admin_router.put("/sessions/{session_id}", response_model=SessionResponse)
    async def update_session(
        session_id: str,
        payload: SessionRequest,
        db: Database = Depends(get_db),
    ) -> SessionResponse:
        try:
            session = db.update_session(session_id, payload.to_draft())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        if session is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        logger.info("Updated session %s", session.id)
        return session_to_response(session)

    @admin_router.delete("/sessions/{session_id}", response_model=MessageResponse)
    async def delete_session(session_id: str, db: Database = Depends(get_db)) -> MessageResponse:
        if not db.delete_session(session_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        logger.info("Deleted session %s", session_id)
        return MessageResponse(message="Session deleted successfully")

    @admin_router.get("/analytics/designation", response_model=List[DesignationCountResponse])
    async def designation_breakdown(db: Database = Depends(get_db)) -> List[DesignationCountResponse]:
        return breakdown_to_response(db.designation_breakdown())

    app.include_router(admin_router)

    return app


__all__ = ["create_app"]
