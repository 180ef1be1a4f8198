# ean_intake/routers/sessions.py
"""
Sessions Router - import session listing, column selection, retries,
deletion and access to the converted JSON.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.database import get_session
from ean_intake.db_models import ImportSession, ImportStatus as S
from ean_intake.errors import JsonNotFound
from ean_intake.models import SelectColumnIn
from ean_intake.storage import BlobStore, get_blob_store
from ean_intake.pipeline.transitions import get_import_session, session_to_dict
from ean_intake.pipeline.intake import delete_session
from ean_intake.pipeline.processing import (
    select_ean_column, retry_ean_analysis, find_stuck_sessions,
)
from ean_intake.pipeline.conversion import (
    convert_to_json, find_json_blob, load_session_rows, json_columns, paginate_rows,
)
from ean_intake.pipeline.queue import QUEUE_CONVERSION, schedule_follow_up

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get("")
async def list_sessions(
    status: Optional[S] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    stmt = (
        select(ImportSession)
        .order_by(ImportSession.created_at.desc(), ImportSession.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if status is not None:
        stmt = stmt.where(ImportSession.status == status)
    result = await db.execute(stmt)
    sessions = result.scalars().all()
    return {"success": True, "count": len(sessions), "sessions": [session_to_dict(s) for s in sessions]}


@router.get("/stuck")
async def list_stuck_sessions(
    older_than_minutes: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_session),
):
    sessions = await find_stuck_sessions(db, older_than_minutes)
    return {"success": True, "count": len(sessions), "sessions": [session_to_dict(s) for s in sessions]}


@router.get("/{session_id}")
async def get_session_detail(session_id: int, db: AsyncSession = Depends(get_session)):
    session = await get_import_session(db, session_id)
    return {"success": True, "session": session_to_dict(session)}


@router.delete("/{session_id}")
async def remove_session(
    session_id: int,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    result = await delete_session(db, store, session_id)
    return {
        "success": True,
        "session_id": result.session_id,
        "storage_deleted": result.storage_deleted,
        "storage_error": result.storage_error,
    }


# ============================================================================
# Stage re-entry
# ============================================================================

@router.post("/{session_id}/select-ean-column")
async def choose_ean_column(
    session_id: int,
    body: SelectColumnIn,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    outcome = await select_ean_column(db, store, session_id, body.column)
    if outcome.applied and outcome.status == S.approved:
        schedule_follow_up(background, QUEUE_CONVERSION)
    return {"success": True, **outcome.to_dict()}


@router.post("/{session_id}/retry-analysis")
async def retry_analysis(
    session_id: int,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    outcome = await retry_ean_analysis(db, store, session_id)
    if outcome.applied and outcome.status == S.approved:
        schedule_follow_up(background, QUEUE_CONVERSION)
    return {"success": True, **outcome.to_dict()}


# ============================================================================
# Converted JSON
# ============================================================================

@router.get("/{session_id}/json")
async def get_session_json(
    session_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    session = await get_import_session(db, session_id)
    status = session.status

    if find_json_blob(store, session_id) is None:
        if status != S.approved:
            raise JsonNotFound(
                f"No converted JSON for session {session_id} (status {status.value})",
                details={"session_id": session_id, "status": status.value},
            )
        await convert_to_json(db, store, session_id)

    rows = load_session_rows(store, session_id)
    return {
        "success": True,
        "session_id": session_id,
        "columns": json_columns(rows),
        **paginate_rows(rows, page=page, limit=limit, search=search),
    }


@router.get("/{session_id}/json/exists")
async def session_json_exists(
    session_id: int,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    await get_import_session(db, session_id)
    path = find_json_blob(store, session_id)
    return {"success": True, "exists": path is not None, "path": path}


@router.get("/{session_id}/json/raw")
async def session_json_raw(
    session_id: int,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    await get_import_session(db, session_id)
    path = find_json_blob(store, session_id)
    if path is None:
        raise JsonNotFound(f"No converted JSON for session {session_id}", details={"session_id": session_id})
    media_type = "application/gzip" if path.endswith(".gz") else "application/json"
    return Response(
        content=store.download(path),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{path.rsplit("/", 1)[-1]}"'},
    )
