"""Domain models shared by the API, the client and the web flows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

# Largest seat count a session may declare.
MAX_SESSION_CAPACITY = 100_000


@dataclass(frozen=True)
class AdminAccount:
    """An administrator allowed to manage the event."""

    id: int
    name: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class Attendee:
    """A person who registered for the event."""

    id: str
    name: str
    email: str
    designation: str
    registered_at: datetime


@dataclass(frozen=True)
class Speaker:
    """A presenter. ``session_ids`` lists the sessions referencing the speaker."""

    id: str
    name: str
    bio: str
    photo_url: Optional[str] = None
    session_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Session:
    """A scheduled talk or workshop slot.

    ``speaker_ids`` is the ordered relation to :class:`Speaker`. ``speakers``
    is only populated on listings that resolve the relation; ids that no
    longer resolve are skipped there.
    """

    id: str
    title: str
    description: str
    time: str
    speaker_ids: Tuple[str, ...] = ()
    capacity: Optional[int] = None
    speakers: Tuple[Speaker, ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class DesignationCount:
    designation: str
    count: int


@dataclass(frozen=True)
class SpeakerDraft:
    """Writable speaker fields, used for both create and update."""

    name: str
    bio: str
    photo_url: Optional[str] = None


@dataclass(frozen=True)
class SessionDraft:
    """Writable session fields, used for both create and update."""

    title: str
    description: str
    time: str
    speaker_ids: Tuple[str, ...] = ()
    capacity: Optional[int] = None


__all__ = [
    "AdminAccount",
    "Attendee",
    "DesignationCount",
    "Session",
    "SessionDraft",
    "Speaker",
    "SpeakerDraft",
]
