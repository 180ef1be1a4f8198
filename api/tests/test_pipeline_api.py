from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from conftest import (
    DEFAULT_HEADER, approved_session, csv_bytes, drain, ean, product_rows, run_in_app_loop, session_status, upload,
)
from ean_intake.database import get_session_context
from ean_intake.db_models import ImportStatus as S
from ean_intake.pipeline import conversion
from ean_intake.pipeline.transitions import transition
from ean_intake.settings import settings


def _session(client, session_id: int) -> dict:
    return client.get(f"/sessions/{session_id}").json()["session"]


def test_idle_queues_are_a_successful_no_op(client) -> None:
    for queue in ("parsing", "analysis", "conversion"):
        body = drain(client, queue)
        assert body["success"] is True
        assert body["processed"] == 0
        assert body["session_id"] is None


def test_single_ean_column_runs_to_ready_for_activation(client, store) -> None:
    session_id = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6))).json()["session_id"]

    parsed = drain(client, "parsing")
    assert parsed["processed"] == 1
    assert parsed["status"] == "analyzing_ean"
    assert parsed["details"]["row_count"] == 6
    assert parsed["details"]["next_queue"] == "analysis"
    assert drain(client, "parsing")["processed"] == 0

    s = _session(client, session_id)
    assert s["total_rows_in_file"] == 6
    assert s["columns_count"] == 5
    assert s["file_storage_path"].startswith("processing/")
    assert s["parsed_at"]

    analysed = drain(client, "analysis")
    assert analysed["status"] == "approved"
    assert analysed["details"]["next_queue"] == "conversion"
    s = _session(client, session_id)
    assert s["detected_ean_column"] == "EAN"
    assert s["unique_ean_count"] == 6
    assert s["error_message"] is None
    assert s["file_storage_path"].startswith("approved/")

    converted = drain(client, "conversion")
    assert converted["status"] == "ready_for_activation"
    assert converted["details"]["row_count"] == 6
    s = _session(client, session_id)
    assert s["status"] == "ready_for_activation"
    assert s["display_status"] == "ready"
    assert s["json_storage_path"] == f"approved/{session_id}-data.json.gz"
    assert store.exists(s["json_storage_path"])


def test_queue_takes_oldest_session_first(client) -> None:
    first = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6))).json()["session_id"]
    second = upload(client, "b.csv", csv_bytes(DEFAULT_HEADER, product_rows(20, 6))).json()["session_id"]
    assert drain(client, "parsing")["session_id"] == first
    assert drain(client, "parsing")["session_id"] == second


def test_file_without_ean_column_is_rejected(client, store) -> None:
    rows = [[f"SKU-{i}", "Gazelle", "Rood", "M", "Fiets"] for i in range(6)]
    session_id = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, rows)).json()["session_id"]
    drain(client, "parsing")
    body = drain(client, "analysis")
    assert body["status"] == "rejected"

    s = _session(client, session_id)
    assert s["status"] == "rejected"
    assert s["display_status"] == "error"
    assert s["error_message"] == "No EAN/GTIN-13 column found in file. File cannot proceed without EAN codes."
    assert s["file_storage_path"].startswith("rejected/")
    assert store.exists(s["file_storage_path"])
    assert drain(client, "conversion")["processed"] == 0


def test_header_only_file_is_rejected_as_empty(client) -> None:
    session_id = upload(client, "leeg.csv", b"EAN,Merk,Kleur,Maat\n").json()["session_id"]
    drain(client, "parsing")
    drain(client, "analysis")
    s = _session(client, session_id)
    assert s["status"] == "rejected"
    assert s["error_message"] == "No data rows found in file."
    assert s["total_rows_in_file"] == 0


def test_94_percent_valid_eans_is_rejected(client) -> None:
    rows = [[ean(i), "Gazelle", "Rood", "M", f"Fiets {i}"] for i in range(94)]
    rows += [["onbekend", "Gazelle", "Rood", "M", f"Fiets x{i}"] for i in range(6)]
    session_id = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, rows)).json()["session_id"]
    drain(client, "parsing")
    drain(client, "analysis")
    s = _session(client, session_id)
    assert s["status"] == "rejected"
    assert s["error_message"].startswith("Insufficient valid EAN codes: 94 of 100 rows")
    assert "Minimum 95% required." in s["error_message"]


def test_95_percent_valid_eans_is_approved(client) -> None:
    rows = [[ean(i), "Gazelle", "Rood", "M", f"Fiets {i}"] for i in range(95)]
    rows += [["onbekend", "Gazelle", "Rood", "M", f"Fiets x{i}"] for i in range(5)]
    session_id = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, rows)).json()["session_id"]
    drain(client, "parsing")
    drain(client, "analysis")
    assert session_status(client, session_id) == "approved"


def test_two_ean_columns_wait_for_operator_choice(client) -> None:
    header = ("EAN", "GTIN", "Merk", "Kleur", "Maat")
    rows = [[ean(i), ean(500 + i), "Gazelle", "Rood", "M"] for i in range(6)]
    session_id = upload(client, "a.csv", csv_bytes(header, rows)).json()["session_id"]
    drain(client, "parsing")
    body = drain(client, "analysis")
    assert body["status"] == "waiting_column_selection"
    assert body["details"]["next_queue"] is None

    s = _session(client, session_id)
    assert s["display_status"] == "action_required"
    assert s["ean_candidate_columns"] == ["EAN", "GTIN"]
    assert "EAN, GTIN" in s["error_message"]

    res = client.post(f"/sessions/{session_id}/select-ean-column", json={"column": "Kleurcode"})
    assert res.status_code == 400
    assert res.json()["error"] == "COLUMN_NOT_FOUND"
    assert session_status(client, session_id) == "waiting_column_selection"

    res = client.post(f"/sessions/{session_id}/select-ean-column", json={"column": "GTIN"})
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "approved"
    s = _session(client, session_id)
    assert s["detected_ean_column"] == "GTIN"
    assert s["error_message"] is None

    res = client.post(f"/sessions/{session_id}/select-ean-column", json={"column": "EAN"})
    assert res.status_code == 409
    assert res.json()["error"] == "INVALID_STATUS"


def test_chosen_column_still_has_to_pass_the_gate(client) -> None:
    header = ("EAN", "GTIN", "Merk")
    rows = [[ean(i), ean(500 + i) if i < 8 else "", "Gazelle"] for i in range(10)]
    session_id = upload(client, "a.csv", csv_bytes(header, rows)).json()["session_id"]
    drain(client, "parsing")
    drain(client, "analysis")
    assert session_status(client, session_id) == "waiting_column_selection"

    res = client.post(f"/sessions/{session_id}/select-ean-column", json={"column": "GTIN"})
    assert res.json()["status"] == "rejected"
    assert _session(client, session_id)["error_message"].startswith("Insufficient valid EAN codes: 8 of 10 rows")


def test_missing_blob_fails_the_stage_and_retry_recovers(client, store) -> None:
    data = csv_bytes(DEFAULT_HEADER, product_rows(1, 6))
    session_id = upload(client, "a.csv", data).json()["session_id"]
    drain(client, "parsing")
    path = _session(client, session_id)["file_storage_path"]
    store.delete(path)

    res = client.post("/queue/analysis")
    assert res.status_code == 500
    assert res.json()["error"] == "PROCESSING_ERROR"
    s = _session(client, session_id)
    assert s["status"] == "failed"
    assert "Object not found" in s["error_message"]

    store.upload(path, data)
    res = client.post(f"/sessions/{session_id}/retry-analysis")
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "approved"


def test_retry_refuses_sessions_that_never_parsed(client, store) -> None:
    session_id = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6))).json()["session_id"]
    store.delete(_session(client, session_id)["file_storage_path"])
    assert client.post("/queue/parsing").status_code == 500
    assert session_status(client, session_id) == "failed"

    res = client.post(f"/sessions/{session_id}/retry-analysis")
    assert res.status_code == 409
    assert res.json()["error"] == "INVALID_STATUS"


def test_stuck_analysis_sessions_are_listed(client) -> None:
    session_id = upload(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6))).json()["session_id"]
    drain(client, "parsing")

    assert client.get("/sessions/stuck").json()["count"] == 0
    stuck = client.get("/sessions/stuck", params={"older_than_minutes": 0}).json()
    assert [s["id"] for s in stuck["sessions"]] == [session_id]

    res = client.post(f"/sessions/{session_id}/retry-analysis")
    assert res.json()["status"] == "approved"


def test_oversized_json_fails_conversion_without_writing_it(client, store, monkeypatch) -> None:
    session_id = approved_session(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6)))
    monkeypatch.setattr(settings, "MAX_JSON_BYTES", 16)

    res = client.post("/queue/conversion")
    assert res.status_code == 500
    body = res.json()
    assert body["error"] == "PROCESSING_ERROR"
    assert body["stage"] == "conversion"
    assert "maximum is" in body["message"]

    s = _session(client, session_id)
    assert s["status"] == "failed"
    assert s["json_storage_path"] is None
    assert not store.exists(f"approved/{session_id}-data.json.gz")


def test_interrupted_conversion_is_resumed(client, store) -> None:
    session_id = approved_session(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6)))

    async def park_in_converting() -> bool:
        async with get_session_context() as db:
            return await transition(db, session_id, S.converting, expected=[S.approved])

    assert run_in_app_loop(client, park_in_converting) is True
    assert session_status(client, session_id) == "converting"

    converted = drain(client, "conversion")
    assert converted["processed"] == 1
    assert converted["session_id"] == session_id
    assert converted["status"] == "ready_for_activation"
    assert session_status(client, session_id) == "ready_for_activation"
    assert store.exists(f"approved/{session_id}-data.json.gz")


def _flaky_final_write(monkeypatch, failures: int) -> list:
    calls = []

    async def flaky(db, session_id, to_status, **kwargs):
        if to_status == S.ready_for_activation:
            calls.append(to_status)
            if len(calls) <= failures:
                raise SQLAlchemyError("connection reset")
        return await transition(db, session_id, to_status, **kwargs)

    monkeypatch.setattr(conversion, "transition", flaky)
    return calls


def test_final_conversion_write_is_retried_once(client, monkeypatch) -> None:
    session_id = approved_session(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6)))
    calls = _flaky_final_write(monkeypatch, failures=1)

    converted = drain(client, "conversion")
    assert len(calls) == 2
    assert converted["status"] == "ready_for_activation"
    assert converted["details"]["status_updated"] is True
    assert session_status(client, session_id) == "ready_for_activation"


def test_final_conversion_write_failing_twice_is_only_logged(client, store, monkeypatch) -> None:
    session_id = approved_session(client, "a.csv", csv_bytes(DEFAULT_HEADER, product_rows(1, 6)))
    calls = _flaky_final_write(monkeypatch, failures=2)

    converted = drain(client, "conversion")
    assert len(calls) == 2
    assert converted["processed"] == 1
    assert converted["status"] == "converting"
    assert converted["details"]["status_updated"] is False
    assert session_status(client, session_id) == "converting"
    assert store.exists(f"approved/{session_id}-data.json.gz")
