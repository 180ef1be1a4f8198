# ean_intake/pipeline/processing.py
"""
Parsing and EAN analysis stages.

parsing:        download, metadata (rows/columns), move to processing/,
                -> analyzing_ean
analyzing_ean:  detect EAN columns on a sample, then
                  none     -> rejected (blob to rejected/)
                  one      -> 95% gate -> approved (blob to approved/) | rejected
                  several  -> waiting_column_selection (operator picks one)
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.settings import settings
from ean_intake.db_models import ImportSession, ImportStatus as S
from ean_intake.errors import TabularParseError, ColumnNotFound, InvalidSessionStatus
from ean_intake.storage import BlobStore, relocate_blob, stage_path
from ean_intake.services.tabular import TabularFile, load_table, read_metadata
from ean_intake.services.ean_detection import detect_ean_columns
from ean_intake.services.ean_analyzer import EanStats, analyze_ean_values, passes_acceptance
from ean_intake.pipeline.transitions import (
    transition, failing_stage, get_import_session, require_status, utcnow,
)

logger = logging.getLogger(__name__)

NO_EAN_COLUMN_MESSAGE = "No EAN/GTIN-13 column found in file. File cannot proceed without EAN codes."
NO_DATA_ROWS_MESSAGE = "No data rows found in file."


def insufficient_eans_message(stats: EanStats, min_percent: float) -> str:
    return (
        f"Insufficient valid EAN codes: {stats.total_eans} of {stats.total_rows} rows "
        f"have a valid EAN code ({stats.valid_ean_percentage:.1f}%). "
        f"Minimum {min_percent:g}% required."
    )


def multiple_columns_message(columns: List[str]) -> str:
    return f"Multiple EAN columns detected: {', '.join(columns)}. Please select the correct column."


@dataclass
class StageOutcome:
    session_id: int
    status: S
    message: Optional[str] = None
    ean_columns: List[str] = field(default_factory=list)
    stats: Optional[Dict[str, Any]] = None
    # False when another invocation moved the session first
    applied: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "message": self.message,
            "ean_columns": self.ean_columns,
            "stats": self.stats,
            "applied": self.applied,
        }


# ============================================================================
# Parsing
# ============================================================================

async def process_parsing(db: AsyncSession, store: BlobStore, session_id: int) -> StageOutcome:
    session = await get_import_session(db, session_id)
    require_status(session, S.parsing)
    path = session.file_storage_path
    file_type = session.file_type
    storage_key = session.storage_key

    async with failing_stage(db, session_id, "parsing", [S.parsing]):
        if not path:
            raise TabularParseError("Session has no stored file")
        data = store.download(path)
        meta = read_metadata(data, file_type)
        logger.info("Session %s: %d rows, %d columns", session_id, meta.row_count, meta.column_count)

        moved = relocate_blob(store, path, stage_path(path, "processing", storage_key))
        applied = await transition(
            db, session_id, S.analyzing_ean,
            expected=[S.parsing],
            total_rows_in_file=meta.row_count,
            columns_count=meta.column_count,
            file_storage_path=moved.path,
            parsed_at=utcnow(),
            error_message=None,
        )

    return StageOutcome(
        session_id=session_id,
        status=S.analyzing_ean,
        stats={"row_count": meta.row_count, "column_count": meta.column_count},
        applied=applied,
    )


# ============================================================================
# EAN analysis
# ============================================================================

@dataclass
class _Snapshot:
    id: int
    path: str
    storage_key: str


def _snapshot(session: ImportSession) -> _Snapshot:
    return _Snapshot(id=session.id, path=session.file_storage_path or "", storage_key=session.storage_key)


async def _reject(
    db: AsyncSession, store: BlobStore, session: _Snapshot, message: str, expected: S, **values: Any,
) -> bool:
    moved = relocate_blob(store, session.path, stage_path(session.path, "rejected", session.storage_key))
    return await transition(
        db, session.id, S.rejected,
        expected=[expected],
        error_message=message,
        file_storage_path=moved.path,
        ean_analysis_at=utcnow(),
        **values,
    )


async def _apply_acceptance_gate(
    db: AsyncSession,
    store: BlobStore,
    snap: _Snapshot,
    table: TabularFile,
    column: str,
    expected: S,
) -> StageOutcome:
    stats = analyze_ean_values(column, table.column_values(column))
    min_percent = settings.EAN_ACCEPT_PERCENT
    common = dict(
        detected_ean_column=column,
        unique_ean_count=stats.unique_count,
        duplicate_ean_count=stats.duplicate_count,
        total_rows_in_file=stats.total_rows,
    )

    if stats.total_rows == 0 or not passes_acceptance(stats, min_percent):
        message = NO_DATA_ROWS_MESSAGE if stats.total_rows == 0 else insufficient_eans_message(stats, min_percent)
        applied = await _reject(db, store, snap, message, expected, **common)
        return StageOutcome(snap.id, S.rejected, message, [column], stats.to_dict(), applied)

    moved = relocate_blob(store, snap.path, stage_path(snap.path, "approved", snap.storage_key))
    applied = await transition(
        db, snap.id, S.approved,
        expected=[expected],
        file_storage_path=moved.path,
        ean_analysis_at=utcnow(),
        error_message=None,
        **common,
    )
    logger.info(
        "Session %s approved on column %r: %d/%d valid (%.1f%%)",
        snap.id, column, stats.total_eans, stats.total_rows, stats.valid_ean_percentage,
    )
    return StageOutcome(snap.id, S.approved, None, [column], stats.to_dict(), applied)


async def _run_analysis(db: AsyncSession, store: BlobStore, session: ImportSession) -> StageOutcome:
    snap = _snapshot(session)
    file_type = session.file_type

    async with failing_stage(db, snap.id, "ean_analysis", [S.analyzing_ean]):
        if not snap.path:
            raise TabularParseError("Session has no stored file")
        # one download and one parse serve detection and the full analysis
        table = load_table(store.download(snap.path), file_type)
        if not table.headers:
            raise TabularParseError("No headers found in file")

        if table.row_count == 0:
            applied = await _reject(db, store, snap, NO_DATA_ROWS_MESSAGE, S.analyzing_ean, total_rows_in_file=0)
            return StageOutcome(snap.id, S.rejected, NO_DATA_ROWS_MESSAGE, applied=applied)

        candidates = detect_ean_columns(table.headers, table.rows(settings.EAN_SAMPLE_ROWS))
        logger.info("Session %s EAN candidates: %s", snap.id, candidates)

        if not candidates:
            applied = await _reject(db, store, snap, NO_EAN_COLUMN_MESSAGE, S.analyzing_ean)
            return StageOutcome(snap.id, S.rejected, NO_EAN_COLUMN_MESSAGE, applied=applied)

        if len(candidates) > 1:
            message = multiple_columns_message(candidates)
            applied = await transition(
                db, snap.id, S.waiting_column_selection,
                expected=[S.analyzing_ean],
                error_message=message,
                ean_candidate_columns=candidates,
                ean_analysis_at=utcnow(),
            )
            return StageOutcome(snap.id, S.waiting_column_selection, message, candidates, applied=applied)

        return await _apply_acceptance_gate(db, store, snap, table, candidates[0], S.analyzing_ean)


async def process_ean_analysis(db: AsyncSession, store: BlobStore, session_id: int) -> StageOutcome:
    session = await get_import_session(db, session_id)
    require_status(session, S.analyzing_ean)
    return await _run_analysis(db, store, session)


async def select_ean_column(db: AsyncSession, store: BlobStore, session_id: int, column: str) -> StageOutcome:
    """Operator's pick among the detected candidates; re-applies the gate."""
    session = await get_import_session(db, session_id)
    require_status(session, S.waiting_column_selection)
    snap = _snapshot(session)
    column = (column or "").strip()

    async with failing_stage(db, snap.id, "column_selection", [S.waiting_column_selection]):
        table = load_table(store.download(snap.path), session.file_type)

    # an unknown column is an input error, the session stays where it is
    if column not in table.headers:
        raise ColumnNotFound(column)

    async with failing_stage(db, snap.id, "column_selection", [S.waiting_column_selection]):
        return await _apply_acceptance_gate(db, store, snap, table, column, S.waiting_column_selection)


async def retry_ean_analysis(db: AsyncSession, store: BlobStore, session_id: int) -> StageOutcome:
    """
    Re-drive analysis for a stuck `analyzing_ean` session or a `failed`
    session that got past parsing.
    """
    session = await get_import_session(db, session_id)
    if session.status == S.failed and session.parsed_at is None:
        raise InvalidSessionStatus(
            f"Session {session_id} failed before parsing completed; upload the file again",
            details={"session_id": session_id, "status": session.status.value},
        )
    require_status(session, S.analyzing_ean, S.failed)

    claimed = await transition(
        db, session_id, S.analyzing_ean,
        expected=[session.status],
        parsed_at=utcnow(),
        error_message=None,
    )
    if not claimed:
        raise InvalidSessionStatus(
            f"Session {session_id} changed status while retrying",
            details={"session_id": session_id},
        )
    session = await get_import_session(db, session_id, fresh=True)
    return await _run_analysis(db, store, session)


async def find_stuck_sessions(db: AsyncSession, older_than_minutes: Optional[int] = None) -> List[ImportSession]:
    minutes = settings.STUCK_ANALYSIS_MINUTES if older_than_minutes is None else older_than_minutes
    cutoff = utcnow() - timedelta(minutes=minutes)
    result = await db.execute(
        select(ImportSession)
        .where(ImportSession.status == S.analyzing_ean, ImportSession.parsed_at < cutoff)
        .order_by(ImportSession.parsed_at)
    )
    return list(result.scalars().all())
