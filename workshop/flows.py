"""Stateful user flows that sit between the web pages and the API client.

Each flow owns a :class:`FlowLifetime`. Every network call is awaited inside
``lifetime.guard()``; closing the lifetime cancels whatever is still in flight
and any result that arrives afterwards is dropped instead of being applied.
"""

from __future__ import annotations

import enum
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterator,
    List,
    MutableMapping,
    Optional,
    Protocol,
    Set,
    Tuple,
    TypeVar,
)

import anyio

from .client import AdminCredential, EventAPIError, EventClient
from .models import MAX_SESSION_CAPACITY, DesignationCount, Session, SessionDraft, Speaker, SpeakerDraft

logger = logging.getLogger("workshop.flows")

E = TypeVar("E")
D = TypeVar("D")

MISSING_FIELDS_MESSAGE = "Please fill in all fields"
REGISTRATION_FAILED_MESSAGE = "Registration failed. Please try again."


class ValidationError(ValueError):
    """Raised when user input is rejected before any request is made."""


class FlowClosedError(RuntimeError):
    """Raised when an operation is started on a flow that has been closed."""


class UnsupportedOperationError(TypeError):
    """Raised when a resource does not offer the requested operation."""


class FlowState(enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ListState(enum.Enum):
    LOADING = "loading"
    EMPTY = "empty"
    POPULATED = "populated"


class FormMode(enum.Enum):
    LIST = "list"
    CREATE = "create"
    EDIT = "edit"


class AnalyticsState(enum.Enum):
    LOADING = "loading"
    POPULATED = "populated"
    EMPTY = "empty"
    FAILED = "failed"


def _list_state(items: Optional[List[Any]]) -> ListState:
    if items is None:
        return ListState.LOADING
    return ListState.POPULATED if items else ListState.EMPTY


class FlowLifetime:
    """Tracks the cancel scopes of in-flight operations for one flow."""

    def __init__(self) -> None:
        self._scopes: Set[anyio.CancelScope] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def guard(self) -> Iterator[anyio.CancelScope]:
        if self._closed:
            raise FlowClosedError("This flow has been closed")
        scope = anyio.CancelScope()
        self._scopes.add(scope)
        try:
            with scope:
                yield scope
        finally:
            self._scopes.discard(scope)

    def close(self) -> None:
        self._closed = True
        for scope in list(self._scopes):
            scope.cancel()


# ----------------------------------------------------------------------
# Attendee registration
# ----------------------------------------------------------------------
@dataclass
class RegistrationForm:
    name: str = ""
    email: str = ""
    designation: str = ""

    def missing_fields(self) -> List[str]:
        return [label for label in ("name", "email", "designation") if not getattr(self, label).strip()]

    def clear(self) -> None:
        self.name = ""
        self.email = ""
        self.designation = ""


class RegistrationFlow:
    """Submit a registration and keep the live attendee count current."""

    SUCCESS_DISPLAY_SECONDS = 3.0

    def __init__(
        self,
        client: EventClient,
        *,
        clock: Callable[[], float] = time.monotonic,
        lifetime: FlowLifetime | None = None,
    ) -> None:
        self._client = client
        self._clock = clock
        self._lifetime = lifetime or FlowLifetime()
        self._success_at: Optional[float] = None
        self.form = RegistrationForm()
        self.state = FlowState.IDLE
        self.error: Optional[str] = None
        self.count: Optional[int] = None
        self.last_status: Optional[int] = None

    async def load(self) -> Optional[int]:
        return await self.refresh_count()

    def edit(self, **fields: str) -> None:
        """Update form fields. A failed submission goes back to idle."""
        for name, value in fields.items():
            if not hasattr(self.form, name):
                raise AttributeError(f"Unknown registration field: {name}")
            setattr(self.form, name, value)
        if self.state is FlowState.FAILED:
            self.state = FlowState.IDLE
            self.error = None

    async def refresh_count(self) -> Optional[int]:
        with self._lifetime.guard() as scope:
            try:
                count = await self._client.attendee_count()
            except EventAPIError as exc:
                logger.warning("Unable to fetch attendee count: %s", exc.message)
                return self.count
        if scope.cancel_called:
            return self.count
        self.count = count
        return count

    async def submit(self) -> bool:
        if self.state is FlowState.SUBMITTING:
            return False

        if self.form.missing_fields():
            self.state = FlowState.FAILED
            self.error = MISSING_FIELDS_MESSAGE
            return False

        self.state = FlowState.SUBMITTING
        self.error = None
        self.last_status = None
        self._success_at = None
        with self._lifetime.guard() as scope:
            try:
                attendee = await self._client.register_attendee(
                    self.form.name.strip(),
                    self.form.email.strip(),
                    self.form.designation.strip(),
                )
            except EventAPIError as exc:
                self.state = FlowState.FAILED
                self.error = exc.server_message or REGISTRATION_FAILED_MESSAGE
                self.last_status = exc.status_code
                logger.info("Registration rejected: %s", self.error)
                return False
        if scope.cancel_called:
            return False

        logger.info("Registered attendee %s", attendee.id)
        self.form.clear()
        self.state = FlowState.SUCCEEDED
        self._success_at = self._clock()
        await self.refresh_count()
        return True

    def success_visible(self) -> bool:
        if self.state is not FlowState.SUCCEEDED or self._success_at is None:
            return False
        if self._clock() - self._success_at >= self.SUCCESS_DISPLAY_SECONDS:
            self.dismiss_success()
            return False
        return True

    def dismiss_success(self) -> None:
        if self.state is FlowState.SUCCEEDED:
            self.state = FlowState.IDLE
        self._success_at = None

    def close(self) -> None:
        self._lifetime.close()


# ----------------------------------------------------------------------
# Admin gate
# ----------------------------------------------------------------------
class AdminGate:
    """Keeps the admin bearer token in the caller's session storage."""

    STORAGE_KEY = "admin_token"

    def __init__(self, client: EventClient, storage: MutableMapping[str, Any]) -> None:
        self._client = client
        self._storage = storage

    def enter(self) -> Optional[AdminCredential]:
        token = self._storage.get(self.STORAGE_KEY)
        if not isinstance(token, str) or not token:
            return None
        return AdminCredential(token=token)

    async def login(self, email: str, password: str) -> AdminCredential:
        credential = await self._client.login(email.strip(), password)
        self._storage[self.STORAGE_KEY] = credential.token
        return credential

    async def logout(self) -> None:
        credential = self.enter()
        self._storage.pop(self.STORAGE_KEY, None)
        if credential is None:
            return
        try:
            await self._client.logout(credential)
        except EventAPIError as exc:
            logger.warning("Failed to revoke admin token: %s", exc.message)

    def expire(self) -> None:
        self._storage.pop(self.STORAGE_KEY, None)


# ----------------------------------------------------------------------
# Resource CRUD
# ----------------------------------------------------------------------
class ResourceCapability(Protocol[E, D]):
    name: str

    async def list(self) -> List[E]: ...

    async def create(self, draft: D) -> E: ...

    async def update(self, entity_id: str, draft: D) -> E: ...

    async def delete(self, entity_id: str) -> None: ...


@dataclass(frozen=True)
class BoundResource(Generic[E, D]):
    """A resource whose operations are bound to a client and credential."""

    name: str
    lister: Callable[[], Awaitable[List[E]]]
    deleter: Callable[[str], Awaitable[None]]
    creator: Optional[Callable[[D], Awaitable[E]]] = None
    updater: Optional[Callable[[str, D], Awaitable[E]]] = None

    @property
    def editable(self) -> bool:
        return self.creator is not None and self.updater is not None

    async def list(self) -> List[E]:
        return await self.lister()

    async def create(self, draft: D) -> E:
        if self.creator is None:
            raise UnsupportedOperationError(f"{self.name} cannot be created")
        return await self.creator(draft)

    async def update(self, entity_id: str, draft: D) -> E:
        if self.updater is None:
            raise UnsupportedOperationError(f"{self.name} cannot be updated")
        return await self.updater(entity_id, draft)

    async def delete(self, entity_id: str) -> None:
        await self.deleter(entity_id)


def speaker_resource(client: EventClient, credential: AdminCredential) -> BoundResource[Speaker, SpeakerDraft]:
    return BoundResource(
        name="speakers",
        lister=partial(client.list_admin_speakers, credential),
        deleter=partial(client.delete_speaker, credential),
        creator=partial(client.create_speaker, credential),
        updater=partial(client.update_speaker, credential),
    )


def session_resource(client: EventClient, credential: AdminCredential) -> BoundResource[Session, SessionDraft]:
    return BoundResource(
        name="sessions",
        lister=partial(client.list_admin_sessions, credential),
        deleter=partial(client.delete_session, credential),
        creator=partial(client.create_session, credential),
        updater=partial(client.update_session, credential),
    )


def attendee_resource(client: EventClient, credential: AdminCredential) -> BoundResource[Any, Any]:
    return BoundResource(
        name="attendees",
        lister=partial(client.list_attendees, credential),
        deleter=partial(client.delete_attendee, credential),
    )


@dataclass
class SpeakerForm:
    name: str = ""
    bio: str = ""
    photo_url: str = ""

    @classmethod
    def from_entity(cls, speaker: Optional[Speaker] = None) -> "SpeakerForm":
        if speaker is None:
            return cls()
        return cls(name=speaker.name, bio=speaker.bio, photo_url=speaker.photo_url or "")

    def to_draft(self) -> SpeakerDraft:
        if not self.name.strip() or not self.bio.strip():
            raise ValidationError("Name and bio are required")
        return SpeakerDraft(
            name=self.name.strip(),
            bio=self.bio.strip(),
            photo_url=self.photo_url.strip() or None,
        )


@dataclass
class SessionForm:
    title: str = ""
    description: str = ""
    time: str = ""
    speaker_ids: List[str] = field(default_factory=list)
    capacity: str = ""

    @classmethod
    def from_entity(cls, session: Optional[Session] = None) -> "SessionForm":
        if session is None:
            return cls()
        return cls(
            title=session.title,
            description=session.description,
            time=session.time,
            speaker_ids=list(session.speaker_ids),
            capacity="" if session.capacity is None else str(session.capacity),
        )

    def toggle_speaker(self, speaker_id: str) -> None:
        if speaker_id in self.speaker_ids:
            self.speaker_ids = [item for item in self.speaker_ids if item != speaker_id]
        else:
            self.speaker_ids = [*self.speaker_ids, speaker_id]

    def parsed_capacity(self) -> Optional[int]:
        raw = self.capacity.strip()
        if not raw:
            return None
        try:
            value = int(raw)
        except ValueError as exc:
            raise ValidationError("Capacity must be a positive whole number") from exc
        if value <= 0:
            raise ValidationError("Capacity must be a positive whole number")
        if value > MAX_SESSION_CAPACITY:
            raise ValidationError(f"Capacity cannot exceed {MAX_SESSION_CAPACITY}")
        return value

    def to_draft(self) -> SessionDraft:
        if not self.title.strip() or not self.description.strip() or not self.time.strip():
            raise ValidationError("Title, description and time are required")
        return SessionDraft(
            title=self.title.strip(),
            description=self.description.strip(),
            time=self.time.strip(),
            speaker_ids=tuple(self.speaker_ids),
            capacity=self.parsed_capacity(),
        )


class ResourceFlow(Generic[E, D]):
    """List, create, edit and delete one kind of entity.

    :class:`~workshop.client.AdminAuthenticationError` is not handled here so
    that callers can drop the rejected credential.
    """

    def __init__(
        self,
        resource: ResourceCapability[E, D],
        form_factory: Optional[Callable[[Optional[E]], Any]] = None,
        *,
        lifetime: FlowLifetime | None = None,
    ) -> None:
        self._resource = resource
        self._form_factory = form_factory
        self._lifetime = lifetime or FlowLifetime()
        self.mode = FormMode.LIST
        self.items: Optional[List[E]] = None
        self.form: Any = None
        self.editing: Optional[E] = None
        self.error: Optional[str] = None

    @property
    def list_state(self) -> ListState:
        return _list_state(self.items)

    def find(self, entity_id: str) -> Optional[E]:
        for item in self.items or ():
            if getattr(item, "id") == entity_id:
                return item
        return None

    async def reload(self) -> bool:
        with self._lifetime.guard() as scope:
            try:
                items = await self._resource.list()
            except EventAPIError as exc:
                if exc.status_code == 401:
                    raise
                logger.warning("Failed to load %s: %s", self._resource.name, exc.message)
                self.error = exc.message
                return False
        if scope.cancel_called:
            return False
        self.items = list(items)
        return True

    def _new_form(self, entity: Optional[E]) -> Any:
        if self._form_factory is None:
            raise UnsupportedOperationError(f"{self._resource.name} cannot be edited")
        return self._form_factory(entity)

    def open_create(self) -> None:
        self.form = self._new_form(None)
        self.editing = None
        self.mode = FormMode.CREATE
        self.error = None

    def open_edit(self, entity: E) -> None:
        self.form = self._new_form(entity)
        self.editing = entity
        self.mode = FormMode.EDIT
        self.error = None

    def cancel(self) -> None:
        self.form = None
        self.editing = None
        self.mode = FormMode.LIST
        self.error = None

    async def submit(self) -> bool:
        if self.mode is FormMode.LIST or self.form is None:
            return False
        try:
            draft = self.form.to_draft()
        except ValidationError as exc:
            self.error = str(exc)
            return False

        with self._lifetime.guard() as scope:
            try:
                if self.editing is not None:
                    saved = await self._resource.update(getattr(self.editing, "id"), draft)
                else:
                    saved = await self._resource.create(draft)
            except EventAPIError as exc:
                if exc.status_code == 401:
                    raise
                self.error = exc.message
                return False
        if scope.cancel_called:
            return False

        logger.info("Saved %s %s", self._resource.name, getattr(saved, "id"))
        self.cancel()
        await self.reload()
        return True

    async def delete(self, entity_id: str, confirmed: bool) -> bool:
        if not confirmed:
            return False
        with self._lifetime.guard() as scope:
            try:
                await self._resource.delete(entity_id)
            except EventAPIError as exc:
                if exc.status_code == 401:
                    raise
                self.error = exc.message
                return False
        if scope.cancel_called:
            return False

        logger.info("Deleted %s %s", self._resource.name, entity_id)
        if self.items is not None:
            self.items = [item for item in self.items if getattr(item, "id") != entity_id]
        return True

    def close(self) -> None:
        self._lifetime.close()


# ----------------------------------------------------------------------
# Read-only views
# ----------------------------------------------------------------------
class AnalyticsView:
    """Designation breakdown for the analytics tab."""

    def __init__(
        self,
        client: EventClient,
        credential: AdminCredential,
        *,
        lifetime: FlowLifetime | None = None,
    ) -> None:
        self._client = client
        self._credential = credential
        self._lifetime = lifetime or FlowLifetime()
        self.state = AnalyticsState.LOADING
        self.entries: List[DesignationCount] = []
        self.error: Optional[str] = None

    @property
    def total(self) -> int:
        return sum(entry.count for entry in self.entries)

    async def load(self) -> AnalyticsState:
        with self._lifetime.guard() as scope:
            try:
                entries = await self._client.designation_breakdown(self._credential)
            except EventAPIError as exc:
                if exc.status_code == 401:
                    raise
                logger.warning("Failed to load designation breakdown: %s", exc.message)
                self.error = exc.message
                self.state = AnalyticsState.FAILED
                return self.state
        if scope.cancel_called:
            return self.state
        self.entries = list(entries)
        self.state = AnalyticsState.POPULATED if self.entries else AnalyticsState.EMPTY
        return self.state

    def slices(self) -> List[Tuple[str, int, int]]:
        total = self.total
        if not total:
            return []
        return [(entry.designation, entry.count, round(entry.count * 100 / total)) for entry in self.entries]

    def close(self) -> None:
        self._lifetime.close()


class CollectionView(Generic[E]):
    """A read-only list that remembers whether it has ever loaded."""

    def __init__(
        self,
        loader: Callable[[], Awaitable[List[E]]],
        *,
        name: str = "items",
        lifetime: FlowLifetime | None = None,
    ) -> None:
        self._loader = loader
        self._name = name
        self._lifetime = lifetime or FlowLifetime()
        self.items: Optional[List[E]] = None

    @property
    def state(self) -> ListState:
        return _list_state(self.items)

    async def load(self) -> ListState:
        with self._lifetime.guard() as scope:
            try:
                items = await self._loader()
            except EventAPIError as exc:
                logger.warning("Failed to load %s: %s", self._name, exc.message)
                return self.state
        if scope.cancel_called:
            return self.state
        self.items = list(items)
        return self.state

    def close(self) -> None:
        self._lifetime.close()


__all__ = [
    "AdminGate",
    "AnalyticsState",
    "AnalyticsView",
    "BoundResource",
    "CollectionView",
    "FlowClosedError",
    "FlowLifetime",
    "FlowState",
    "FormMode",
    "ListState",
    "RegistrationFlow",
    "RegistrationForm",
    "ResourceCapability",
    "ResourceFlow",
    "SessionForm",
    "SpeakerForm",
    "UnsupportedOperationError",
    "ValidationError",
    "attendee_resource",
    "session_resource",
    "speaker_resource",
]
