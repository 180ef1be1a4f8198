# ean_intake/pipeline/queue.py
"""
Queue drains: each call processes the oldest session waiting in one stage.

parsing        -> process_parsing        -> next: analysis
analyzing_ean  -> process_ean_analysis   -> next: conversion (when approved)
approved       -> convert_to_json        -> next: none

The follow-up drain runs as a background task when AUTO_DRAIN is on;
its failures are logged and never reach the caller.
"""
from __future__ import annotations
from typing import Dict, Optional, Sequence
import logging

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.settings import settings
from ean_intake.db_models import ImportSession, ImportStatus as S
from ean_intake.database import get_session_context
from ean_intake.errors import IntakeError, StageSuperseded
from ean_intake.models import DrainOut
from ean_intake.storage import BlobStore, get_blob_store
from ean_intake.pipeline.processing import process_parsing, process_ean_analysis
from ean_intake.pipeline.conversion import convert_to_json

logger = logging.getLogger(__name__)

QUEUE_PARSING = "parsing"
QUEUE_ANALYSIS = "analysis"
QUEUE_CONVERSION = "conversion"

QUEUE_STATUSES: Dict[str, Sequence[S]] = {
    QUEUE_PARSING: (S.parsing,),
    QUEUE_ANALYSIS: (S.analyzing_ean,),
    # `converting` is picked up again so an interrupted conversion resumes
    QUEUE_CONVERSION: (S.approved, S.converting),
}


async def next_in_queue(db: AsyncSession, queue: str) -> Optional[int]:
    statuses = QUEUE_STATUSES[queue]
    result = await db.execute(
        select(ImportSession.id)
        .where(ImportSession.status.in_(statuses))
        .order_by(ImportSession.created_at, ImportSession.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


def _idle(queue: str) -> DrainOut:
    return DrainOut(processed=0, message=f"No sessions waiting in the {queue} queue")


def _superseded(session_id: int, exc: StageSuperseded) -> DrainOut:
    return DrainOut(processed=0, session_id=session_id, message=exc.message, details={"stage": exc.stage})


async def drain_parsing(db: AsyncSession, store: BlobStore) -> DrainOut:
    session_id = await next_in_queue(db, QUEUE_PARSING)
    if session_id is None:
        return _idle(QUEUE_PARSING)

    try:
        outcome = await process_parsing(db, store, session_id)
    except StageSuperseded as e:
        return _superseded(session_id, e)
    return DrainOut(
        processed=1 if outcome.applied else 0,
        session_id=session_id,
        status=outcome.status.value,
        message=f"Parsed session {session_id}",
        details={**(outcome.stats or {}), "next_queue": QUEUE_ANALYSIS if outcome.applied else None},
    )


async def drain_analysis(db: AsyncSession, store: BlobStore) -> DrainOut:
    session_id = await next_in_queue(db, QUEUE_ANALYSIS)
    if session_id is None:
        return _idle(QUEUE_ANALYSIS)

    try:
        outcome = await process_ean_analysis(db, store, session_id)
    except StageSuperseded as e:
        return _superseded(session_id, e)
    next_queue = QUEUE_CONVERSION if outcome.applied and outcome.status == S.approved else None
    return DrainOut(
        processed=1 if outcome.applied else 0,
        session_id=session_id,
        status=outcome.status.value,
        message=outcome.message or f"EAN analysis finished for session {session_id}",
        details={
            "ean_columns": outcome.ean_columns,
            "stats": outcome.stats,
            "next_queue": next_queue,
        },
    )


async def drain_conversion(db: AsyncSession, store: BlobStore) -> DrainOut:
    session_id = await next_in_queue(db, QUEUE_CONVERSION)
    if session_id is None:
        return _idle(QUEUE_CONVERSION)

    try:
        result = await convert_to_json(db, store, session_id)
    except StageSuperseded as e:
        return _superseded(session_id, e)
    if not result.claimed:
        return DrainOut(processed=0, session_id=session_id, message="Conversion already in progress")
    return DrainOut(
        processed=1,
        session_id=session_id,
        status=S.ready_for_activation.value if result.status_updated else S.converting.value,
        message=f"Converted {result.row_count} rows to JSON",
        details={**result.to_dict(), "next_queue": None},
    )


DRAINS = {
    QUEUE_PARSING: drain_parsing,
    QUEUE_ANALYSIS: drain_analysis,
    QUEUE_CONVERSION: drain_conversion,
}


async def run_queue_chain(queue: Optional[str]) -> None:
    """
    Background follow-up: drain `queue` and keep following `next_queue`
    until a stage has nothing more to hand on.
    """
    while queue:
        try:
            async with get_session_context() as db:
                out = await DRAINS[queue](db, get_blob_store())
        except IntakeError as e:
            logger.warning("Background %s drain failed: %s", queue, e.message)
            return
        except Exception:
            logger.exception("Background %s drain crashed", queue)
            return
        logger.info("Background %s drain: %s", queue, out.message)
        queue = out.details.get("next_queue") if out.processed else None


def schedule_follow_up(background: BackgroundTasks, queue: Optional[str]) -> None:
    """Queue the next drain behind the response; no-op when AUTO_DRAIN is off."""
    if queue and settings.AUTO_DRAIN:
        background.add_task(run_queue_chain, queue)
