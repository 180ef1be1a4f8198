from __future__ import annotations

import pytest

from conftest import DEFAULT_HEADER, csv_bytes, drain, product_rows, run_in_app_loop, session_status, upload
from ean_intake.database import get_session_context
from ean_intake.db_models import ImportStatus as S
from ean_intake.errors import BlobNotFound, StageFailed, StageSuperseded
from ean_intake.pipeline import queue as queue_mod
from ean_intake.pipeline.processing import _run_analysis, process_ean_analysis
from ean_intake.pipeline.transitions import failing_stage, get_import_session, mark_failed


def _parsed_session(client) -> int:
    session_id = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6))).json()["session_id"]
    assert drain(client, "parsing")["status"] == "analyzing_ean"
    return session_id


def test_late_analysis_error_does_not_fail_an_approved_session(client, store) -> None:
    session_id = _parsed_session(client)

    async def analyse_twice() -> None:
        async with get_session_context() as db:
            stale = await get_import_session(db, session_id)
        async with get_session_context() as db:
            await process_ean_analysis(db, store, session_id)
        # the stale copy still points at processing/, which has moved to approved/
        async with get_session_context() as db:
            await _run_analysis(db, store, stale)

    with pytest.raises(StageSuperseded) as exc_info:
        run_in_app_loop(client, analyse_twice)
    assert exc_info.value.code == "SESSION_ALREADY_MOVED"
    assert exc_info.value.status_code == 409

    s = client.get(f"/sessions/{session_id}").json()["session"]
    assert s["status"] == "approved"
    assert s["error_message"] is None
    assert store.exists(s["file_storage_path"])


def test_stage_error_only_fails_the_stage_status(client) -> None:
    session_id = _parsed_session(client)

    async def fail_parsing_after_it_moved_on() -> None:
        async with get_session_context() as db:
            async with failing_stage(db, session_id, "parsing", [S.parsing]):
                raise BlobNotFound("Object not found: incoming/a.csv")

    with pytest.raises(StageSuperseded):
        run_in_app_loop(client, fail_parsing_after_it_moved_on)
    assert session_status(client, session_id) == "analyzing_ean"

    async def fail_analysis() -> None:
        async with get_session_context() as db:
            async with failing_stage(db, session_id, "ean_analysis", [S.analyzing_ean]):
                raise BlobNotFound("Object not found: processing/a.csv")

    with pytest.raises(StageFailed):
        run_in_app_loop(client, fail_analysis)
    s = client.get(f"/sessions/{session_id}").json()["session"]
    assert s["status"] == "failed"
    assert s["error_message"] == "Object not found: processing/a.csv"


def test_failure_write_is_skipped_once_the_session_moved_on(client) -> None:
    session_id = _parsed_session(client)

    async def late_failure() -> bool:
        async with get_session_context() as db:
            return await mark_failed(db, session_id, "Storage upload failed", [S.uploading])

    assert run_in_app_loop(client, late_failure) is False
    assert session_status(client, session_id) == "analyzing_ean"


def test_drain_that_lost_the_race_reports_nothing_processed(client, monkeypatch) -> None:
    session_id = _parsed_session(client)

    async def superseded(db, store, sid):
        raise StageSuperseded(sid, "ean_analysis", "Object not found: processing/a.csv")

    monkeypatch.setattr(queue_mod, "process_ean_analysis", superseded)
    res = client.post("/queue/analysis")
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["processed"] == 0
    assert body["session_id"] == session_id
    assert body["details"]["stage"] == "ean_analysis"
    assert session_status(client, session_id) == "analyzing_ean"
