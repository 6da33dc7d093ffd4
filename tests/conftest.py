from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from skillswap.database import Database


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "skillswap.sqlite3")
    db.initialize()
    return db
