"""Async HTTP client for the workshop JSON API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .models import Attendee, DesignationCount, Session, SessionDraft, Speaker, SpeakerDraft


class EventAPIError(Exception):
    """Raised when the API answers with an error status.

    ``server_message`` holds the text the API itself supplied, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        server_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.server_message = server_message


class EventTransportError(EventAPIError):
    """Raised when the API could not be reached at all."""


class AdminAuthenticationError(EventAPIError):
    """Raised when the API rejects admin credentials or tokens."""


@dataclass(frozen=True)
class AdminCredential:
    """Bearer token proving admin access. Passed explicitly to each admin call."""

    token: str
    expires_at: Optional[datetime] = None

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("API base URL must not be empty")
    return cleaned.rstrip("/")


def _extract_error_message(payload: object, default: Optional[str] = None) -> Optional[str]:
    if isinstance(payload, dict):
        for key in ("detail", "message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, list) and value:
                return _extract_error_message(value[0], default)
        msg = payload.get("msg")
        if isinstance(msg, str) and msg.strip():
            loc = payload.get("loc")
            if isinstance(loc, list) and loc:
                return f"{loc[-1]}: {msg.strip()}"
            return msg.strip()
    return default


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _parse_datetime(value: Any) -> datetime:
    if not isinstance(value, str):
        raise EventAPIError("API returned an invalid timestamp")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _parse_attendee(data: Dict[str, Any]) -> Attendee:
    return Attendee(
        id=str(data["id"]),
        name=str(data["name"]),
        email=str(data["email"]),
        designation=str(data["designation"]),
        registered_at=_parse_datetime(data.get("registeredAt")),
    )


def _parse_speaker(data: Dict[str, Any]) -> Speaker:
    return Speaker(
        id=str(data["id"]),
        name=str(data["name"]),
        bio=str(data.get("bio") or ""),
        photo_url=data.get("photoUrl") or None,
        session_ids=tuple(str(item) for item in data.get("sessions") or ()),
    )


def _parse_session(data: Dict[str, Any]) -> Session:
    capacity = data.get("capacity")
    return Session(
        id=str(data["id"]),
        title=str(data["title"]),
        description=str(data.get("description") or ""),
        time=str(data.get("time") or ""),
        speaker_ids=tuple(str(item) for item in data.get("speakerIds") or ()),
        capacity=int(capacity) if capacity is not None else None,
        speakers=tuple(_parse_speaker(item) for item in data.get("speakers") or ()),
    )


def _speaker_payload(draft: SpeakerDraft) -> Dict[str, Any]:
    return {"name": draft.name, "bio": draft.bio, "photoUrl": draft.photo_url}


def _session_payload(draft: SessionDraft) -> Dict[str, Any]:
    return {
        "title": draft.title,
        "description": draft.description,
        "time": draft.time,
        "speakerIds": list(draft.speaker_ids),
        "capacity": draft.capacity,
    }


class EventClient:
    """Typed access to every API resource.

    Pass ``transport=httpx.ASGITransport(app=...)`` to talk to an in-process
    API application instead of the network.
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=_normalize_base_url(base_url),
            transport=transport,
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "EventClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        credential: AdminCredential | None = None,
        json: Any = None,
    ) -> Any:
        headers = credential.headers() if credential is not None else None
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.RequestError as exc:
            raise EventTransportError(f"Failed to contact the event API: {exc}") from exc

        if response.status_code >= 400:
            try:
                server_message = _extract_error_message(response.json())
            except ValueError:
                server_message = None
            message = server_message or f"Event API request failed with status {response.status_code}"
            error_class = AdminAuthenticationError if response.status_code == 401 else EventAPIError
            raise error_class(message, response.status_code, server_message=server_message)

        try:
            return response.json()
        except ValueError as exc:
            raise EventAPIError("Event API returned invalid JSON", response.status_code) from exc

    # ------------------------------------------------------------------
    # Public resources
    # ------------------------------------------------------------------
    async def list_sessions(self) -> List[Session]:
        payload = await self._request("GET", "/sessions")
        return [_parse_session(item) for item in payload]

    async def get_session(self, session_id: str) -> Session:
        return _parse_session(await self._request("GET", f"/sessions/{_segment(session_id)}"))

    async def list_speakers(self) -> List[Speaker]:
        payload = await self._request("GET", "/speakers")
        return [_parse_speaker(item) for item in payload]

    async def get_speaker(self, speaker_id: str) -> Speaker:
        return _parse_speaker(await self._request("GET", f"/speakers/{_segment(speaker_id)}"))

    async def attendee_count(self) -> int:
        payload = await self._request("GET", "/attendees/count")
        return int(payload["count"])

    async def register_attendee(self, name: str, email: str, designation: str) -> Attendee:
        payload = await self._request(
            "POST",
            "/attendees",
            json={"name": name, "email": email, "designation": designation},
        )
        return _parse_attendee(payload)

    # ------------------------------------------------------------------
    # Admin session
    # ------------------------------------------------------------------
    async def login(self, email: str, password: str) -> AdminCredential:
        payload = await self._request("POST", "/admin/session", json={"email": email, "password": password})
        expires_at = payload.get("expiresAt")
        return AdminCredential(
            token=str(payload["token"]),
            expires_at=_parse_datetime(expires_at) if expires_at else None,
        )

    async def logout(self, credential: AdminCredential) -> None:
        await self._request("DELETE", "/admin/session", credential=credential)

    # ------------------------------------------------------------------
    # Admin resources
    # ------------------------------------------------------------------
    async def list_attendees(self, credential: AdminCredential) -> List[Attendee]:
        payload = await self._request("GET", "/admin/attendees", credential=credential)
        return [_parse_attendee(item) for item in payload]

    async def get_attendee(self, credential: AdminCredential, attendee_id: str) -> Attendee:
        payload = await self._request("GET", f"/admin/attendees/{_segment(attendee_id)}", credential=credential)
        return _parse_attendee(payload)

    async def delete_attendee(self, credential: AdminCredential, attendee_id: str) -> None:
        await self._request("DELETE", f"/admin/attendees/{_segment(attendee_id)}", credential=credential)

    async def list_admin_speakers(self, credential: AdminCredential) -> List[Speaker]:
        payload = await self._request("GET", "/admin/speakers", credential=credential)
        return [_parse_speaker(item) for item in payload]

    async def create_speaker(self, credential: AdminCredential, draft: SpeakerDraft) -> Speaker:
        payload = await self._request(
            "POST", "/admin/speakers", credential=credential, json=_speaker_payload(draft)
        )
        return _parse_speaker(payload)

    async def update_speaker(self, credential: AdminCredential, speaker_id: str, draft: SpeakerDraft) -> Speaker:
        payload = await self._request(
            "PUT", f"/admin/speakers/{_segment(speaker_id)}", credential=credential, json=_speaker_payload(draft)
        )
        return _parse_speaker(payload)

    async def delete_speaker(self, credential: AdminCredential, speaker_id: str) -> None:
        await self._request("DELETE", f"/admin/speakers/{_segment(speaker_id)}", credential=credential)

    async def list_admin_sessions(self, credential: AdminCredential) -> List[Session]:
        payload = await self._request("GET", "/admin/sessions", credential=credential)
        return [_parse_session(item) for item in payload]

    async def create_session(self, credential: AdminCredential, draft: SessionDraft) -> Session:
        payload = await self._request(
            "POST", "/admin/sessions", credential=credential, json=_session_payload(draft)
        )
        return _parse_session(payload)

    async def update_session(self, credential: AdminCredential, session_id: str, draft: SessionDraft) -> Session:
        payload = await self._request(
            "PUT", f"/admin/sessions/{_segment(session_id)}", credential=credential, json=_session_payload(draft)
        )
        return _parse_session(payload)

    async def delete_session(self, credential: AdminCredential, session_id: str) -> None:
        await self._request("DELETE", f"/admin/sessions/{_segment(session_id)}", credential=credential)

    async def designation_breakdown(self, credential: AdminCredential) -> List[DesignationCount]:
        payload = await self._request("GET", "/admin/analytics/designation", credential=credential)
        return [DesignationCount(designation=str(item["designation"]), count=int(item["count"])) for item in payload]


__all__ = [
    "AdminAuthenticationError",
    "AdminCredential",
    "EventAPIError",
    "EventClient",
    "EventTransportError",
]
