"""SQLite-backed persistence for admins, attendees, speakers and sessions."""
from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from passlib.context import CryptContext

from .models import (
    MAX_SESSION_CAPACITY,
    AdminAccount,
    Attendee,
    DesignationCount,
    Session,
    SessionDraft,
    Speaker,
    SpeakerDraft,
)


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "workshop.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_id() -> str:
    return str(uuid.uuid4())


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _require_text(value: str, label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{label} must not be empty")
    return cleaned


def _dedupe(ids: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for raw in ids:
        cleaned = str(raw).strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        ordered.append(cleaned)
    return ordered


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


class Database:
    """Simple wrapper around SQLite for persisting the event data model."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS admins (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS attendees (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    designation TEXT NOT NULL,
                    registered_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS speakers (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    bio TEXT NOT NULL,
                    photo_url TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    time_label TEXT NOT NULL,
                    capacity INTEGER CHECK (capacity IS NULL OR capacity > 0),
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS session_speakers (
                    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                    speaker_id TEXT NOT NULL REFERENCES speakers(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (session_id, speaker_id)
                );

                CREATE INDEX IF NOT EXISTS idx_session_speakers_speaker ON session_speakers(speaker_id);
                CREATE INDEX IF NOT EXISTS idx_attendees_designation ON attendees(designation);
                """
            )

    # ------------------------------------------------------------------
    # Admin accounts
    # ------------------------------------------------------------------
    def create_admin(self, name: str, email: str, password: str) -> AdminAccount:
        """Create a new admin account with a hashed password."""

        if not password:
            raise ValueError("Password must not be empty")

        cleaned_name = _require_text(name, "Name")
        normalized_email = _normalize_email(_require_text(email, "Email"))
        created_at = _current_timestamp()

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO admins (name, email, password_hash, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        cleaned_name,
                        normalized_email,
                        _hash_password(password),
                        _serialize_datetime(created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("An admin with that email already exists") from exc
            admin_id = cursor.lastrowid

        return AdminAccount(id=admin_id, name=cleaned_name, email=normalized_email, created_at=created_at)

    def get_admin(self, admin_id: int) -> Optional[AdminAccount]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM admins WHERE id = ?", (admin_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_admin(row)

    def list_admins(self) -> List[AdminAccount]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM admins ORDER BY id").fetchall()
        return [self._row_to_admin(row) for row in rows]

    def authenticate_admin(self, email: str, password: str) -> Optional[AdminAccount]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM admins WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        if not _verify_password(password, str(row["password_hash"])):
            return None
        return self._row_to_admin(row)

    def set_admin_password(self, admin_id: int, password: str) -> None:
        if not password:
            raise ValueError("Password must not be empty")
        with self._connect() as conn:
            conn.execute(
                "UPDATE admins SET password_hash = ? WHERE id = ?",
                (_hash_password(password), admin_id),
            )

    # ------------------------------------------------------------------
    # Attendees
    # ------------------------------------------------------------------
    def register_attendee(self, name: str, email: str, designation: str) -> Attendee:
        """Persist a public registration. Emails are unique, case-insensitively."""

        attendee = Attendee(
            id=_generate_id(),
            name=_require_text(name, "Name"),
            email=_normalize_email(_require_text(email, "Email")),
            designation=_require_text(designation, "Designation"),
            registered_at=_current_timestamp(),
        )

        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO attendees (id, name, email, designation, registered_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        attendee.id,
                        attendee.name,
                        attendee.email,
                        attendee.designation,
                        _serialize_datetime(attendee.registered_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("An attendee with that email is already registered") from exc

        return attendee

    def get_attendee(self, attendee_id: str) -> Optional[Attendee]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM attendees WHERE id = ?", (attendee_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_attendee(row)

    def list_attendees(self) -> List[Attendee]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM attendees ORDER BY registered_at, name").fetchall()
        return [self._row_to_attendee(row) for row in rows]

    def count_attendees(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM attendees").fetchone()
        return int(row["total"])

    def delete_attendee(self, attendee_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM attendees WHERE id = ?", (attendee_id,))
            return cursor.rowcount > 0

    def designation_breakdown(self) -> List[DesignationCount]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT designation, COUNT(*) AS total
                  FROM attendees
                 GROUP BY designation
                 ORDER BY total DESC, designation
                """
            ).fetchall()
        return [DesignationCount(designation=str(row["designation"]), count=int(row["total"])) for row in rows]

    # ------------------------------------------------------------------
    # Speakers
    # ------------------------------------------------------------------
    def create_speaker(self, draft: SpeakerDraft) -> Speaker:
        speaker_id = _generate_id()
        name, bio, photo_url = self._clean_speaker(draft)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO speakers (id, name, bio, photo_url, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (speaker_id, name, bio, photo_url, _serialize_datetime(_current_timestamp())),
            )

        speaker = self.get_speaker(speaker_id)
        if speaker is None:
            raise RuntimeError("Failed to load speaker after creation")
        return speaker

    def get_speaker(self, speaker_id: str) -> Optional[Speaker]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM speakers WHERE id = ?", (speaker_id,)).fetchone()
            if row is None:
                return None
            session_ids = self._session_ids_for_speakers(conn, [speaker_id])
        return self._row_to_speaker(row, session_ids.get(speaker_id, ()))

    def list_speakers(self) -> List[Speaker]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM speakers ORDER BY name, created_at").fetchall()
            session_ids = self._session_ids_for_speakers(conn, [str(row["id"]) for row in rows])
        return [self._row_to_speaker(row, session_ids.get(str(row["id"]), ())) for row in rows]

    def update_speaker(self, speaker_id: str, draft: SpeakerDraft) -> Optional[Speaker]:
        name, bio, photo_url = self._clean_speaker(draft)
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE speakers SET name = ?, bio = ?, photo_url = ? WHERE id = ?",
                (name, bio, photo_url, speaker_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_speaker(speaker_id)

    def delete_speaker(self, speaker_id: str) -> bool:
        """Delete a speaker. References held by sessions are removed as well."""

        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM speakers WHERE id = ?", (speaker_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def create_session(self, draft: SessionDraft) -> Session:
        session_id = _generate_id()
        title, description, time_label, capacity = self._clean_session(draft)
        speaker_ids = _dedupe(draft.speaker_ids)

        with self._connect() as conn:
            self._require_speakers(conn, speaker_ids)
            conn.execute(
                """
                INSERT INTO sessions (id, title, description, time_label, capacity, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    title,
                    description,
                    time_label,
                    capacity,
                    _serialize_datetime(_current_timestamp()),
                ),
            )
            self._replace_session_speakers(conn, session_id, speaker_ids)

        session = self.get_session(session_id)
        if session is None:
            raise RuntimeError("Failed to load session after creation")
        return session

    def get_session(self, session_id: str, *, resolve_speakers: bool = False) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                return None
            speaker_ids = self._speaker_ids_for_sessions(conn, [session_id])
            speakers = self._speaker_lookup(conn) if resolve_speakers else None
        return self._row_to_session(row, speaker_ids.get(session_id, ()), speakers)

    def list_sessions(self, *, resolve_speakers: bool = False) -> List[Session]:
        """Return all sessions in creation order, optionally with resolved speakers."""

        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM sessions ORDER BY created_at, title").fetchall()
            speaker_ids = self._speaker_ids_for_sessions(conn, [str(row["id"]) for row in rows])
            speakers = self._speaker_lookup(conn) if resolve_speakers else None
        return [
            self._row_to_session(row, speaker_ids.get(str(row["id"]), ()), speakers)
            for row in rows
        ]

    def update_session(self, session_id: str, draft: SessionDraft) -> Optional[Session]:
        title, description, time_label, capacity = self._clean_session(draft)
        speaker_ids = _dedupe(draft.speaker_ids)

        with self._connect() as conn:
            self._require_speakers(conn, speaker_ids)
            cursor = conn.execute(
                """
                UPDATE sessions
                   SET title = ?, description = ?, time_label = ?, capacity = ?
                 WHERE id = ?
                """,
                (title, description, time_label, capacity, session_id),
            )
            if cursor.rowcount == 0:
                return None
            self._replace_session_speakers(conn, session_id, speaker_ids)

        return self.get_session(session_id)

    def delete_session(self, session_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _clean_speaker(draft: SpeakerDraft) -> Tuple[str, str, Optional[str]]:
        photo_url = (draft.photo_url or "").strip() or None
        return _require_text(draft.name, "Name"), _require_text(draft.bio, "Bio"), photo_url

    @staticmethod
    def _clean_session(draft: SessionDraft) -> Tuple[str, str, str, Optional[int]]:
        if draft.capacity is not None and not 0 < draft.capacity <= MAX_SESSION_CAPACITY:
            raise ValueError(f"Capacity must be between 1 and {MAX_SESSION_CAPACITY}")
        return (
            _require_text(draft.title, "Title"),
            _require_text(draft.description, "Description"),
            _require_text(draft.time, "Time"),
            draft.capacity,
        )

    @staticmethod
    def _require_speakers(conn: sqlite3.Connection, speaker_ids: Sequence[str]) -> None:
        if not speaker_ids:
            return
        placeholders = ", ".join("?" for _ in speaker_ids)
        rows = conn.execute(
            f"SELECT id FROM speakers WHERE id IN ({placeholders})",
            tuple(speaker_ids),
        ).fetchall()
        known = {str(row["id"]) for row in rows}
        missing = [speaker_id for speaker_id in speaker_ids if speaker_id not in known]
        if missing:
            raise ValueError(f"Unknown speaker id(s): {', '.join(missing)}")

    @staticmethod
    def _replace_session_speakers(
        conn: sqlite3.Connection, session_id: str, speaker_ids: Sequence[str]
    ) -> None:
        conn.execute("DELETE FROM session_speakers WHERE session_id = ?", (session_id,))
        conn.executemany(
            "INSERT INTO session_speakers (session_id, speaker_id, position) VALUES (?, ?, ?)",
            [(session_id, speaker_id, position) for position, speaker_id in enumerate(speaker_ids)],
        )

    @staticmethod
    def _speaker_ids_for_sessions(
        conn: sqlite3.Connection, session_ids: Sequence[str]
    ) -> Dict[str, Tuple[str, ...]]:
        if not session_ids:
            return {}
        placeholders = ", ".join("?" for _ in session_ids)
        rows = conn.execute(
            f"""
            SELECT session_id, speaker_id
              FROM session_speakers
             WHERE session_id IN ({placeholders})
             ORDER BY session_id, position
            """,
            tuple(session_ids),
        ).fetchall()
        grouped: Dict[str, List[str]] = {}
        for row in rows:
            grouped.setdefault(str(row["session_id"]), []).append(str(row["speaker_id"]))
        return {key: tuple(value) for key, value in grouped.items()}

    @staticmethod
    def _session_ids_for_speakers(
        conn: sqlite3.Connection, speaker_ids: Sequence[str]
    ) -> Dict[str, Tuple[str, ...]]:
        if not speaker_ids:
            return {}
        placeholders = ", ".join("?" for _ in speaker_ids)
        rows = conn.execute(
            f"""
            SELECT ss.speaker_id, ss.session_id
              FROM session_speakers ss
              JOIN sessions s ON s.id = ss.session_id
             WHERE ss.speaker_id IN ({placeholders})
             ORDER BY ss.speaker_id, s.created_at
            """,
            tuple(speaker_ids),
        ).fetchall()
        grouped: Dict[str, List[str]] = {}
        for row in rows:
            grouped.setdefault(str(row["speaker_id"]), []).append(str(row["session_id"]))
        return {key: tuple(value) for key, value in grouped.items()}

    def _speaker_lookup(self, conn: sqlite3.Connection) -> Dict[str, Speaker]:
        rows = conn.execute("SELECT * FROM speakers").fetchall()
        session_ids = self._session_ids_for_speakers(conn, [str(row["id"]) for row in rows])
        return {
            str(row["id"]): self._row_to_speaker(row, session_ids.get(str(row["id"]), ()))
            for row in rows
        }

    def _row_to_admin(self, row: sqlite3.Row) -> AdminAccount:
        return AdminAccount(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_attendee(self, row: sqlite3.Row) -> Attendee:
        return Attendee(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            designation=str(row["designation"]),
            registered_at=_parse_datetime(str(row["registered_at"])),
        )

    def _row_to_speaker(self, row: sqlite3.Row, session_ids: Tuple[str, ...]) -> Speaker:
        return Speaker(
            id=str(row["id"]),
            name=str(row["name"]),
            bio=str(row["bio"]),
            photo_url=row["photo_url"],
            session_ids=tuple(session_ids),
        )

    def _row_to_session(
        self,
        row: sqlite3.Row,
        speaker_ids: Tuple[str, ...],
        speakers: Optional[Dict[str, Speaker]],
    ) -> Session:
        resolved: Tuple[Speaker, ...] = ()
        if speakers is not None:
            resolved = tuple(speakers[speaker_id] for speaker_id in speaker_ids if speaker_id in speakers)
        capacity = row["capacity"]
        return Session(
            id=str(row["id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            time=str(row["time_label"]),
            speaker_ids=tuple(speaker_ids),
            capacity=int(capacity) if capacity is not None else None,
            speakers=resolved,
        )


__all__ = ["Database", "resolve_database_path"]
