from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

import anyio
import httpx
import pytest

from workshop.client import AdminAuthenticationError, AdminCredential, EventAPIError, EventClient, EventTransportError
from workshop.flows import (
    AdminGate,
    AnalyticsState,
    AnalyticsView,
    BoundResource,
    CollectionView,
    FlowClosedError,
    FlowState,
    FormMode,
    ListState,
    RegistrationFlow,
    ResourceFlow,
    SessionForm,
    SpeakerForm,
    UnsupportedOperationError,
    ValidationError,
)
from workshop.models import Attendee, DesignationCount, Session, SessionDraft, Speaker


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class FakeRegistrationClient:
    def __init__(self, count: int = 0) -> None:
        self.count = count
        self.calls: List[str] = []
        self.register_error: Optional[EventAPIError] = None
        self.count_error: Optional[EventAPIError] = None

    async def attendee_count(self) -> int:
        self.calls.append("count")
        if self.count_error is not None:
            raise self.count_error
        return self.count

    async def register_attendee(self, name: str, email: str, designation: str) -> Attendee:
        self.calls.append("register")
        if self.register_error is not None:
            raise self.register_error
        self.count += 1
        return Attendee(
            id=f"attendee-{self.count}",
            name=name,
            email=email,
            designation=designation,
            registered_at=datetime.now(timezone.utc),
        )


class BlockingCountClient:
    def __init__(self) -> None:
        self.started = anyio.Event()
        self.release = anyio.Event()

    async def attendee_count(self) -> int:
        self.started.set()
        await self.release.wait()
        return 99


class FakeGateClient:
    def __init__(self, *, logout_error: Optional[EventAPIError] = None) -> None:
        self.calls: List[str] = []
        self.logout_error = logout_error

    async def login(self, email: str, password: str) -> AdminCredential:
        self.calls.append("login")
        if password != "secret":
            raise AdminAuthenticationError("Invalid email or password", 401)
        return AdminCredential(token="token-123")

    async def logout(self, credential: AdminCredential) -> None:
        self.calls.append("logout")
        if self.logout_error is not None:
            raise self.logout_error


def _attendee(attendee_id: str) -> Attendee:
    return Attendee(
        id=attendee_id,
        name=attendee_id.title(),
        email=f"{attendee_id}@example.com",
        designation="Developer",
        registered_at=datetime.now(timezone.utc),
    )


class FakeStore:
    """In-memory stand-in for a bound resource."""

    def __init__(self, items: List[object]) -> None:
        self.items = list(items)
        self.calls: List[str] = []
        self.fail_with: Optional[EventAPIError] = None

    async def list(self) -> List[object]:
        self.calls.append("list")
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.items)

    async def delete(self, entity_id: str) -> None:
        self.calls.append(f"delete:{entity_id}")
        if self.fail_with is not None:
            raise self.fail_with
        self.items = [item for item in self.items if item.id != entity_id]

    async def create(self, draft: SessionDraft) -> Session:
        self.calls.append("create")
        if self.fail_with is not None:
            raise self.fail_with
        session = Session(
            id=f"session-{len(self.items) + 1}",
            title=draft.title,
            description=draft.description,
            time=draft.time,
            speaker_ids=draft.speaker_ids,
            capacity=draft.capacity,
        )
        self.items.append(session)
        return session

    async def update(self, entity_id: str, draft: SessionDraft) -> Session:
        self.calls.append(f"update:{entity_id}")
        updated = Session(
            id=entity_id,
            title=draft.title,
            description=draft.description,
            time=draft.time,
            speaker_ids=draft.speaker_ids,
            capacity=draft.capacity,
        )
        self.items = [updated if item.id == entity_id else item for item in self.items]
        return updated

    def bind(self, name: str = "sessions", *, editable: bool = True) -> BoundResource:
        return BoundResource(
            name=name,
            lister=self.list,
            deleter=self.delete,
            creator=self.create if editable else None,
            updater=self.update if editable else None,
        )


# ----------------------------------------------------------------------
# Registration
# ----------------------------------------------------------------------
@pytest.mark.anyio
async def test_valid_registration_increments_count_and_auto_dismisses() -> None:
    client = FakeRegistrationClient(count=5)
    clock = FakeClock()
    flow = RegistrationFlow(client, clock=clock)
    await flow.load()
    assert flow.count == 5

    flow.form.name = "Asha Rao"
    flow.form.email = "asha@example.com"
    flow.form.designation = "Developer"

    assert await flow.submit() is True
    assert flow.count == 6
    assert flow.state is FlowState.SUCCEEDED
    assert (flow.form.name, flow.form.email, flow.form.designation) == ("", "", "")
    assert flow.success_visible() is True

    clock.now = 102.9
    assert flow.success_visible() is True

    clock.now = 103.0
    assert flow.success_visible() is False
    assert flow.state is FlowState.IDLE


@pytest.mark.anyio
async def test_missing_field_makes_no_call() -> None:
    client = FakeRegistrationClient(count=3)
    flow = RegistrationFlow(client)
    await flow.load()
    client.calls.clear()

    flow.form.name = "Asha Rao"
    flow.form.designation = "Developer"

    assert await flow.submit() is False
    assert client.calls == []
    assert flow.count == 3
    assert flow.state is FlowState.FAILED
    assert flow.error == "Please fill in all fields"
    assert flow.form.name == "Asha Rao"


@pytest.mark.anyio
async def test_server_error_is_shown_verbatim_and_form_kept() -> None:
    client = FakeRegistrationClient()
    client.register_error = EventAPIError(
        "An attendee with that email is already registered",
        409,
        server_message="An attendee with that email is already registered",
    )
    flow = RegistrationFlow(client)
    flow.form.name = "Asha Rao"
    flow.form.email = "asha@example.com"
    flow.form.designation = "Developer"

    assert await flow.submit() is False
    assert flow.error == "An attendee with that email is already registered"
    assert flow.last_status == 409
    assert flow.form.email == "asha@example.com"
    assert flow.success_visible() is False


@pytest.mark.anyio
async def test_transport_error_uses_generic_message() -> None:
    client = FakeRegistrationClient()
    client.register_error = EventTransportError("Failed to contact the event API")
    flow = RegistrationFlow(client)
    flow.form.name = "Asha Rao"
    flow.form.email = "asha@example.com"
    flow.form.designation = "Developer"

    assert await flow.submit() is False
    assert flow.error == "Registration failed. Please try again."


@pytest.mark.anyio
async def test_server_error_without_message_uses_generic_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/attendees/count":
            return httpx.Response(200, json={"count": 2})
        return httpx.Response(500, content=b"")

    async with EventClient("http://workshop.test", transport=httpx.MockTransport(handler)) as client:
        flow = RegistrationFlow(client)
        flow.edit(name="Asha Rao", email="asha@example.com", designation="Developer")

        assert await flow.submit() is False

    assert flow.error == "Registration failed. Please try again."
    assert flow.last_status == 500
    assert flow.state is FlowState.FAILED


@pytest.mark.anyio
async def test_server_error_field_is_shown_from_real_client() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "Registrations are closed"})

    async with EventClient("http://workshop.test", transport=httpx.MockTransport(handler)) as client:
        flow = RegistrationFlow(client)
        flow.edit(name="Asha Rao", email="asha@example.com", designation="Developer")

        assert await flow.submit() is False

    assert flow.error == "Registrations are closed"


@pytest.mark.anyio
async def test_editing_after_failure_returns_to_idle() -> None:
    client = FakeRegistrationClient()
    flow = RegistrationFlow(client)
    flow.edit(name="Asha Rao", designation="Developer")

    assert await flow.submit() is False
    assert flow.state is FlowState.FAILED

    flow.edit(email="asha@example.com")

    assert flow.state is FlowState.IDLE
    assert flow.error is None
    assert flow.form.email == "asha@example.com"
    assert await flow.submit() is True


def test_edit_rejects_unknown_field() -> None:
    flow = RegistrationFlow(FakeRegistrationClient())
    with pytest.raises(AttributeError):
        flow.edit(phone="555-0100")


@pytest.mark.anyio
async def test_count_failure_keeps_previous_value() -> None:
    client = FakeRegistrationClient(count=4)
    flow = RegistrationFlow(client)
    await flow.load()

    client.count_error = EventAPIError("boom", 500)
    assert await flow.refresh_count() == 4
    assert flow.count == 4


def test_dismiss_success_closes_indicator_early() -> None:
    flow = RegistrationFlow(FakeRegistrationClient())
    flow.state = FlowState.SUCCEEDED
    flow.dismiss_success()

    assert flow.state is FlowState.IDLE
    assert flow.success_visible() is False


@pytest.mark.anyio
async def test_close_discards_in_flight_results() -> None:
    client = BlockingCountClient()
    flow = RegistrationFlow(client)

    async with anyio.create_task_group() as tg:
        tg.start_soon(flow.refresh_count)
        await client.started.wait()
        flow.close()

    assert flow.count is None
    with pytest.raises(FlowClosedError):
        await flow.refresh_count()


# ----------------------------------------------------------------------
# Admin gate
# ----------------------------------------------------------------------
@pytest.mark.anyio
async def test_gate_without_token_makes_no_call() -> None:
    client = FakeGateClient()
    gate = AdminGate(client, {})

    assert gate.enter() is None
    assert client.calls == []


@pytest.mark.anyio
async def test_gate_login_and_logout() -> None:
    client = FakeGateClient()
    storage: Dict[str, object] = {}
    gate = AdminGate(client, storage)

    credential = await gate.login(" admin@example.com ", "secret")

    assert storage[AdminGate.STORAGE_KEY] == "token-123"
    assert gate.enter() == credential

    await gate.logout()
    assert AdminGate.STORAGE_KEY not in storage
    assert client.calls == ["login", "logout"]


@pytest.mark.anyio
async def test_gate_rejects_bad_credentials() -> None:
    storage: Dict[str, object] = {}
    gate = AdminGate(FakeGateClient(), storage)

    with pytest.raises(AdminAuthenticationError):
        await gate.login("admin@example.com", "wrong")
    assert storage == {}


@pytest.mark.anyio
async def test_gate_logout_ignores_revoke_failure() -> None:
    storage: Dict[str, object] = {AdminGate.STORAGE_KEY: "token-123"}
    gate = AdminGate(FakeGateClient(logout_error=EventTransportError("down")), storage)

    await gate.logout()

    assert storage == {}


def test_gate_expire_drops_token() -> None:
    storage: Dict[str, object] = {AdminGate.STORAGE_KEY: "token-123"}
    gate = AdminGate(FakeGateClient(), storage)
    gate.expire()

    assert gate.enter() is None


# ----------------------------------------------------------------------
# Forms
# ----------------------------------------------------------------------
def test_toggle_speaker_twice_is_idempotent() -> None:
    form = SessionForm(speaker_ids=["a"])

    form.toggle_speaker("b")
    assert form.speaker_ids == ["a", "b"]
    form.toggle_speaker("b")
    assert form.speaker_ids == ["a"]


@pytest.mark.parametrize(
    "raw, expected",
    [("", None), ("  ", None), ("25", 25), (" 3 ", 3)],
)
def test_capacity_parsing(raw: str, expected: Optional[int]) -> None:
    form = SessionForm(title="Talk", description="About", time="10:00", capacity=raw)
    assert form.to_draft().capacity == expected


@pytest.mark.parametrize("raw", ["0", "-4", "ten", "2.5", "100001", "100000000000000000000"])
def test_capacity_rejects_invalid_values(raw: str) -> None:
    form = SessionForm(title="Talk", description="About", time="10:00", capacity=raw)
    with pytest.raises(ValidationError):
        form.to_draft()


def test_session_form_allows_no_speakers() -> None:
    draft = SessionForm(title="Talk", description="About", time="10:00").to_draft()
    assert draft.speaker_ids == ()


def test_speaker_form_requires_name_and_bio() -> None:
    with pytest.raises(ValidationError):
        SpeakerForm(name="Ada").to_draft()

    draft = SpeakerForm(name=" Ada ", bio="Engines", photo_url=" ").to_draft()
    assert draft.name == "Ada"
    assert draft.photo_url is None


def test_forms_prefill_from_entity() -> None:
    speaker = Speaker(id="s1", name="Ada", bio="Engines", photo_url="https://example.com/a.png")
    session = Session(id="x", title="Talk", description="About", time="10:00", speaker_ids=("s1",), capacity=12)

    assert SpeakerForm.from_entity(speaker).photo_url == "https://example.com/a.png"
    prefilled = SessionForm.from_entity(session)
    assert prefilled.speaker_ids == ["s1"]
    assert prefilled.capacity == "12"
    assert SessionForm.from_entity(None) == SessionForm()


# ----------------------------------------------------------------------
# Resource CRUD
# ----------------------------------------------------------------------
@pytest.mark.anyio
async def test_deleting_attendee_removes_exactly_that_id() -> None:
    store = FakeStore([_attendee("alice"), _attendee("bob"), _attendee("carol")])
    flow = ResourceFlow(store.bind("attendees", editable=False))
    await flow.reload()

    assert await flow.delete("bob", confirmed=True) is True
    assert [item.id for item in flow.items] == ["alice", "carol"]


@pytest.mark.anyio
async def test_unconfirmed_delete_does_nothing() -> None:
    store = FakeStore([_attendee("alice")])
    flow = ResourceFlow(store.bind("attendees", editable=False))
    await flow.reload()
    store.calls.clear()

    assert await flow.delete("alice", confirmed=False) is False
    assert store.calls == []
    assert [item.id for item in flow.items] == ["alice"]


@pytest.mark.anyio
async def test_failed_delete_keeps_list_and_sets_error() -> None:
    store = FakeStore([_attendee("alice")])
    flow = ResourceFlow(store.bind("attendees", editable=False))
    await flow.reload()
    store.fail_with = EventAPIError("Attendee not found", 404)

    assert await flow.delete("alice", confirmed=True) is False
    assert flow.error == "Attendee not found"
    assert [item.id for item in flow.items] == ["alice"]


@pytest.mark.anyio
async def test_unauthorised_delete_propagates() -> None:
    store = FakeStore([_attendee("alice")])
    flow = ResourceFlow(store.bind("attendees", editable=False))
    store.fail_with = AdminAuthenticationError("Invalid or expired admin token", 401)

    with pytest.raises(AdminAuthenticationError):
        await flow.delete("alice", confirmed=True)


@pytest.mark.anyio
async def test_create_session_with_no_speakers_reloads_list() -> None:
    store = FakeStore([])
    flow = ResourceFlow(store.bind(), SessionForm.from_entity)
    await flow.reload()
    assert flow.list_state is ListState.EMPTY

    flow.open_create()
    assert flow.mode is FormMode.CREATE
    flow.form.title = "Keynote"
    flow.form.description = "Opening"
    flow.form.time = "09:00"

    assert await flow.submit() is True
    assert flow.mode is FormMode.LIST
    assert flow.form is None
    assert store.calls == ["list", "create", "list"]
    assert flow.list_state is ListState.POPULATED
    assert flow.items[0].speaker_ids == ()


@pytest.mark.anyio
async def test_edit_session_updates_existing_entity() -> None:
    existing = Session(id="session-1", title="Talk", description="About", time="10:00")
    store = FakeStore([existing])
    flow = ResourceFlow(store.bind(), SessionForm.from_entity)
    await flow.reload()

    flow.open_edit(existing)
    assert flow.mode is FormMode.EDIT
    assert flow.form.title == "Talk"
    flow.form.title = "Better talk"

    assert await flow.submit() is True
    assert "update:session-1" in store.calls
    assert flow.find("session-1").title == "Better talk"


@pytest.mark.anyio
async def test_invalid_form_makes_no_call() -> None:
    store = FakeStore([])
    flow = ResourceFlow(store.bind(), SessionForm.from_entity)
    flow.open_create()
    flow.form.title = "Talk"

    assert await flow.submit() is False
    assert store.calls == []
    assert flow.mode is FormMode.CREATE
    assert flow.error


@pytest.mark.anyio
async def test_server_failure_keeps_form_open() -> None:
    store = FakeStore([])
    flow = ResourceFlow(store.bind(), SessionForm.from_entity)
    flow.open_create()
    flow.form = SessionForm(title="Talk", description="About", time="10:00", speaker_ids=["ghost"])
    store.fail_with = EventAPIError("Unknown speaker id(s): ghost", 400)

    assert await flow.submit() is False
    assert flow.mode is FormMode.CREATE
    assert flow.form.speaker_ids == ["ghost"]
    assert flow.error == "Unknown speaker id(s): ghost"


def test_cancel_returns_to_list() -> None:
    flow = ResourceFlow(FakeStore([]).bind(), SessionForm.from_entity)
    flow.open_create()
    flow.cancel()

    assert flow.mode is FormMode.LIST
    assert flow.form is None


def test_attendees_cannot_be_edited() -> None:
    flow = ResourceFlow(FakeStore([]).bind("attendees", editable=False))
    with pytest.raises(UnsupportedOperationError):
        flow.open_create()


@pytest.mark.anyio
async def test_reload_failure_keeps_previous_items() -> None:
    store = FakeStore([_attendee("alice")])
    flow = ResourceFlow(store.bind("attendees", editable=False))
    await flow.reload()

    store.fail_with = EventAPIError("boom", 500)
    assert await flow.reload() is False
    assert [item.id for item in flow.items] == ["alice"]


# ----------------------------------------------------------------------
# Read-only views
# ----------------------------------------------------------------------
class FakeAnalyticsClient:
    def __init__(self, entries: List[DesignationCount], error: Optional[EventAPIError] = None) -> None:
        self.entries = entries
        self.error = error

    async def designation_breakdown(self, credential: AdminCredential) -> List[DesignationCount]:
        if self.error is not None:
            raise self.error
        return self.entries


@pytest.mark.anyio
async def test_empty_breakdown_is_distinct_from_failure() -> None:
    credential = AdminCredential(token="t")

    empty = AnalyticsView(FakeAnalyticsClient([]), credential)
    assert await empty.load() is AnalyticsState.EMPTY
    assert empty.slices() == []

    failed = AnalyticsView(FakeAnalyticsClient([], EventAPIError("boom", 500)), credential)
    assert await failed.load() is AnalyticsState.FAILED
    assert failed.error == "boom"


@pytest.mark.anyio
async def test_breakdown_slices_have_percentages() -> None:
    view = AnalyticsView(
        FakeAnalyticsClient([DesignationCount("Developer", 3), DesignationCount("Manager", 1)]),
        AdminCredential(token="t"),
    )

    assert await view.load() is AnalyticsState.POPULATED
    assert view.total == 4
    assert view.slices() == [("Developer", 3, 75), ("Manager", 1, 25)]


@pytest.mark.anyio
async def test_collection_view_stays_loading_until_first_success() -> None:
    results: List[object] = [EventAPIError("down", 503), [], ["x"], EventAPIError("down", 503)]

    async def loader() -> List[str]:
        result = results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    view = CollectionView(loader, name="sessions")
    assert view.state is ListState.LOADING
    assert await view.load() is ListState.LOADING
    assert await view.load() is ListState.EMPTY
    assert await view.load() is ListState.POPULATED
    assert await view.load() is ListState.POPULATED
    assert view.items == ["x"]
