# ean_intake/routers/storage.py
"""
Storage Router - maintenance of raw uploads left in the bucket.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ean_intake.storage import BlobStore, get_blob_store
from ean_intake.pipeline.intake import cleanup_incoming_blob

router = APIRouter(prefix="/storage", tags=["Storage"])


@router.delete("/cleanup")
def storage_cleanup(path: str = Query(...), store: BlobStore = Depends(get_blob_store)):
    """Remove an orphaned object under incoming/."""
    existed = cleanup_incoming_blob(store, path)
    return {"success": True, "path": path, "deleted": existed}
