from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("WORKSHOP_SESSION_SECRET", "tests-secret-key")
os.environ.setdefault(
    "WORKSHOP_DB_PATH",
    str(Path(tempfile.gettempdir()) / "workshop-tests.sqlite3"),
)

from workshop.database import Database


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "workshop.sqlite3")
    db.initialize()
    return db
