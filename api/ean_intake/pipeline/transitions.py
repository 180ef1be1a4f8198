# ean_intake/pipeline/transitions.py
"""
Import session state machine - transition table and guarded updates.

Every status change goes through `transition()`: a single UPDATE that only
matches while the row is still in one of the expected statuses. A stage that
loses the race gets False back and must not write anything else.

    pending -> uploading -> parsing -> analyzing_ean
    analyzing_ean -> approved | rejected | waiting_column_selection
    waiting_column_selection -> approved | rejected
    approved -> converting -> ready_for_activation
    ready_for_activation -> activating -> activated
    non-terminal -> failed                           (only from the stage's own status)
    failed | analyzing_ean -> analyzing_ean          (analysis retry)
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.db_models import ImportSession, ImportStatus as S
from ean_intake.errors import (
    IntakeError, SessionNotFound, InvalidSessionStatus, StageFailed, StageSuperseded,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: FrozenSet[S] = frozenset({S.rejected, S.failed, S.activated})
NON_TERMINAL_STATUSES: FrozenSet[S] = frozenset(set(S) - TERMINAL_STATUSES)

ALLOWED_TRANSITIONS: Dict[S, FrozenSet[S]] = {
    S.pending: frozenset({S.uploading, S.failed}),
    S.uploading: frozenset({S.parsing, S.failed}),
    S.parsing: frozenset({S.analyzing_ean, S.failed}),
    S.analyzing_ean: frozenset({S.approved, S.rejected, S.waiting_column_selection, S.analyzing_ean, S.failed}),
    S.waiting_column_selection: frozenset({S.approved, S.rejected, S.failed}),
    S.approved: frozenset({S.converting, S.failed}),
    S.converting: frozenset({S.ready_for_activation, S.failed}),
    S.ready_for_activation: frozenset({S.activating, S.failed}),
    S.activating: frozenset({S.activated, S.failed}),
    S.failed: frozenset({S.analyzing_ean}),
    S.rejected: frozenset(),
    S.activated: frozenset(),
}

# Coarse status for list views
DISPLAY_STATUS: Dict[S, str] = {
    S.pending: "processing",
    S.uploading: "processing",
    S.parsing: "processing",
    S.analyzing_ean: "processing",
    S.approved: "processing",
    S.converting: "processing",
    S.waiting_column_selection: "action_required",
    S.ready_for_activation: "ready",
    S.activating: "activating",
    S.activated: "completed",
    S.rejected: "error",
    S.failed: "error",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def display_status(status: S) -> str:
    return DISPLAY_STATUS.get(status, "processing")


def can_transition(src: S, dst: S) -> bool:
    return dst in ALLOWED_TRANSITIONS.get(src, frozenset())


# ============================================================================
# Lookups
# ============================================================================

async def get_import_session(db: AsyncSession, session_id: int, *, fresh: bool = False) -> ImportSession:
    stmt = select(ImportSession).where(ImportSession.id == session_id)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    session = result.scalar_one_or_none()
    if session is None:
        raise SessionNotFound(session_id)
    return session


def require_status(session: ImportSession, *allowed: S) -> None:
    if session.status not in allowed:
        raise InvalidSessionStatus(
            f"Session {session.id} is '{session.status.value}', "
            f"expected {' or '.join(s.value for s in allowed)}",
            details={"session_id": session.id, "status": session.status.value},
        )


# ============================================================================
# Guarded update
# ============================================================================

async def transition(
    db: AsyncSession,
    session_id: int,
    to_status: S,
    *,
    expected: Iterable[S],
    **values: Any,
) -> bool:
    """
    Compare-and-swap status update, committed immediately.

    Returns True when the row was still in one of `expected` and has been
    moved to `to_status` (with `values` written in the same UPDATE).
    """
    expected = tuple(expected)
    for src in expected:
        if not can_transition(src, to_status):
            raise ValueError(f"Transition {src.value} -> {to_status.value} is not allowed")

    stmt = (
        update(ImportSession)
        .where(ImportSession.id == session_id, ImportSession.status.in_(expected))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()

    if result.rowcount == 1:
        logger.info("Session %s -> %s", session_id, to_status.value)
        return True
    logger.warning(
        "Session %s not moved to %s: no longer in %s",
        session_id, to_status.value, ", ".join(s.value for s in expected),
    )
    return False


async def mark_failed(
    db: AsyncSession,
    session_id: int,
    message: str,
    expected: Iterable[S] = NON_TERMINAL_STATUSES,
) -> bool:
    """
    Record a stage failure while the session is still in `expected`.

    False when the session already left those statuses or the write itself
    failed; the latter is only logged.
    """
    try:
        await db.rollback()
        return await transition(
            db, session_id, S.failed,
            expected=expected,
            error_message=message[:4000],
        )
    except Exception:
        logger.exception("Could not mark session %s as failed", session_id)
        return False


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, IntakeError):
        return exc.message
    return str(exc) or exc.__class__.__name__


async def _current_status(db: AsyncSession, session_id: int) -> Optional[S]:
    try:
        await db.rollback()
        result = await db.execute(select(ImportSession.status).where(ImportSession.id == session_id))
        return result.scalar_one_or_none()
    except Exception:
        logger.exception("Could not read status of session %s", session_id)
        return None


@asynccontextmanager
async def failing_stage(
    db: AsyncSession,
    session_id: int,
    stage: str,
    expected: Iterable[S],
) -> AsyncIterator[None]:
    """
    Stage boundary: any exception inside flips the session from one of the
    stage's `expected` statuses to `failed` and is re-raised as StageFailed.

    When the session is no longer in `expected` another invocation finished
    the stage first; its result stands and StageSuperseded is raised instead.

    Usage:
        async with failing_stage(db, session.id, "parsing", [S.parsing]):
            data = store.download(path)
            ...
    """
    expected = tuple(expected)
    try:
        yield
    except (StageFailed, StageSuperseded):
        raise
    except Exception as e:
        message = _error_text(e)
        if await mark_failed(db, session_id, message, expected):
            logger.exception("Stage %s failed for session %s: %s", stage, session_id, message)
            raise StageFailed(session_id, stage, message) from e

        status = await _current_status(db, session_id)
        if status is not None and status not in expected:
            logger.warning(
                "Stage %s for session %s lost the race (now %s): %s",
                stage, session_id, status.value, message,
            )
            raise StageSuperseded(session_id, stage, message) from e
        logger.exception("Stage %s failed for session %s: %s", stage, session_id, message)
        raise StageFailed(session_id, stage, message) from e


def session_to_dict(s: ImportSession) -> Dict[str, Optional[Any]]:
    def ts(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    return {
        "id": s.id,
        "file_name": s.file_name,
        "file_type": s.file_type.value if s.file_type else None,
        "file_size_bytes": s.file_size_bytes,
        "file_hash": s.file_hash,
        "file_storage_path": s.file_storage_path,
        "status": s.status.value,
        "display_status": display_status(s.status),
        "error_message": s.error_message,
        "total_rows_in_file": s.total_rows_in_file,
        "columns_count": s.columns_count,
        "processed_rows": s.processed_rows,
        "detected_ean_column": s.detected_ean_column,
        "ean_candidate_columns": s.ean_candidate_columns or [],
        "unique_ean_count": s.unique_ean_count,
        "duplicate_ean_count": s.duplicate_ean_count,
        "json_storage_path": s.json_storage_path,
        "conflicts_count": s.conflicts_count,
        "activated_variants_count": s.activated_variants_count,
        "activated_duplicates_count": s.activated_duplicates_count,
        "uploaded_at": ts(s.uploaded_at),
        "parsed_at": ts(s.parsed_at),
        "ean_analysis_at": ts(s.ean_analysis_at),
        "converted_at": ts(s.converted_at),
        "activated_at": ts(s.activated_at),
        "created_at": ts(s.created_at),
        "updated_at": ts(s.updated_at),
    }
