# ean_intake/routers/queue.py
"""
Queue Router - pull-one drain endpoints, safe to call when idle.
"""
from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.database import get_session
from ean_intake.models import DrainOut
from ean_intake.storage import BlobStore, get_blob_store
from ean_intake.pipeline.queue import (
    drain_parsing, drain_analysis, drain_conversion, schedule_follow_up,
)

router = APIRouter(prefix="/queue", tags=["Queue"])


def _follow_up(background: BackgroundTasks, out: DrainOut) -> DrainOut:
    if out.processed:
        schedule_follow_up(background, out.details.get("next_queue"))
    return out


@router.post("/parsing", response_model=DrainOut)
async def drain_parsing_queue(
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    return _follow_up(background, await drain_parsing(db, store))


@router.post("/analysis", response_model=DrainOut)
async def drain_analysis_queue(
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    return _follow_up(background, await drain_analysis(db, store))


@router.post("/conversion", response_model=DrainOut)
async def drain_conversion_queue(
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    return await drain_conversion(db, store)
