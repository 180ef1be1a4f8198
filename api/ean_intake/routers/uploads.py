# ean_intake/routers/uploads.py
"""
Upload Router - supplier files into the intake pipeline.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.database import get_session
from ean_intake.storage import BlobStore, get_blob_store
from ean_intake.errors import UploadRejected
from ean_intake.pipeline.intake import UploadErrorCode, error_message, register_upload
from ean_intake.pipeline.queue import QUEUE_PARSING, schedule_follow_up
from ean_intake.pipeline.transitions import session_to_dict

router = APIRouter(prefix="/uploads", tags=["Uploads"])


@router.post("", status_code=201)
async def upload_supplier_file(
    background: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    if file is None or not file.filename:
        code = UploadErrorCode.FILE_NOT_PROVIDED
        raise UploadRejected(error_message(code), code=code)

    data = await file.read()
    session = await register_upload(db, store, file.filename, data)
    schedule_follow_up(background, QUEUE_PARSING)

    return {
        "success": True,
        "session_id": session.id,
        "status": session.status.value,
        "file_storage_path": session.file_storage_path,
        "session": session_to_dict(session),
    }
