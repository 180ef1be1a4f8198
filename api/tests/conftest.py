from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Iterable, Sequence

# Settings are read at import time; point them at throwaway locations first.
_BOOT_ROOT = Path(tempfile.mkdtemp(prefix="ean-intake-tests-"))
os.environ.setdefault("EAN_DATA_ROOT", str(_BOOT_ROOT / "data"))
os.environ.setdefault("DB_URL", f"sqlite+aiosqlite:///{(_BOOT_ROOT / 'boot.db').as_posix()}")
os.environ["DB_CREATE_SCHEMA"] = "true"
os.environ["AUTO_DRAIN"] = "false"

import pytest
from fastapi.testclient import TestClient

from ean_intake.settings import settings
from ean_intake.storage import get_blob_store

DEFAULT_HEADER = ("EAN", "Merk", "Kleur", "Maat", "Omschrijving")


def ean(n: int) -> str:
    return str(8712345000000 + n)


def csv_bytes(header: Sequence[str], rows: Iterable[Sequence[str]], delimiter: str = ",") -> bytes:
    lines = [delimiter.join(header)]
    lines += [delimiter.join(r) for r in rows]
    return ("\n".join(lines) + "\n").encode("utf-8")


def product_rows(start: int, count: int, brand: str = "Gazelle", tag: str = "") -> list:
    colors = ["Rood", "Blauw", "Zwart"]
    return [
        [ean(start + i), brand, colors[i % 3], str(50 + i), f"Citybike {start + i}{tag}"]
        for i in range(count)
    ]


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """App with a fresh SQLite database and blob bucket per test."""
    monkeypatch.setattr(settings, "EAN_DATA_ROOT", tmp_path / "data")
    monkeypatch.setattr(settings, "DB_URL", f"sqlite+aiosqlite:///{(tmp_path / 'test.db').as_posix()}")
    monkeypatch.setattr(settings, "DB_CREATE_SCHEMA", True)
    monkeypatch.setattr(settings, "AUTO_DRAIN", False)
    get_blob_store.cache_clear()

    from ean_intake.main import app

    with TestClient(app) as c:
        yield c
    get_blob_store.cache_clear()


@pytest.fixture()
def store(client):
    return get_blob_store()


def upload(client: TestClient, file_name: str, data: bytes):
    return client.post("/uploads", files={"file": (file_name, data, "text/csv")})


def drain(client: TestClient, queue: str) -> dict:
    res = client.post(f"/queue/{queue}")
    assert res.status_code == 200, res.text
    return res.json()


def session_status(client: TestClient, session_id: int) -> str:
    res = client.get(f"/sessions/{session_id}")
    assert res.status_code == 200, res.text
    return res.json()["session"]["status"]


def ready_session(client: TestClient, file_name: str, data: bytes) -> int:
    """Upload and drive a file through parsing, analysis and conversion."""
    res = upload(client, file_name, data)
    assert res.status_code == 201, res.text
    session_id = res.json()["session_id"]
    assert drain(client, "parsing")["session_id"] == session_id
    assert drain(client, "analysis")["status"] == "approved"
    assert drain(client, "conversion")["status"] == "ready_for_activation"
    return session_id


def run_in_app_loop(client: TestClient, fn, *args):
    """Await `fn(*args)` on the app's event loop, where the engine lives."""
    return client.portal.call(fn, *args)


def approved_session(client: TestClient, file_name: str, data: bytes) -> int:
    res = upload(client, file_name, data)
    assert res.status_code == 201, res.text
    session_id = res.json()["session_id"]
    drain(client, "parsing")
    assert drain(client, "analysis")["status"] == "approved"
    return session_id
