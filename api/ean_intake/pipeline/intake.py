# ean_intake/pipeline/intake.py
"""
Upload intake and session deletion.

Upload order: extension + size checks, SHA-256 of the full content,
duplicate-hash check, session row (pending), blob upload (uploading),
then parsing with the storage path recorded.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import hashlib, logging, uuid

from sqlalchemy import select, delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.settings import settings
from ean_intake.db_models import ImportSession, ImportStatus as S, FileType, EanConflict, EanVariant
from ean_intake.errors import UploadRejected, StorageError, IntakeError
from ean_intake.storage import BlobStore, construct_storage_path, json_blob_candidates
from ean_intake.services.tabular import ALLOWED_EXTENSIONS, file_extension, file_type_for
from ean_intake.pipeline.transitions import (
    transition, mark_failed, get_import_session, utcnow,
)

logger = logging.getLogger(__name__)


class UploadErrorCode:
    FILE_NOT_PROVIDED = "FILE_NOT_PROVIDED"
    FILE_EXTENSION_INVALID = "FILE_EXTENSION_INVALID"
    FILE_SIZE_EXCEEDED = "FILE_SIZE_EXCEEDED"
    FILE_INVALID = "FILE_INVALID"
    DUPLICATE_FILE = "DUPLICATE_FILE"
    STORAGE_UPLOAD_FAILED = "STORAGE_UPLOAD_FAILED"
    STORAGE_BUCKET_ERROR = "STORAGE_BUCKET_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    HASH_CALCULATION_FAILED = "HASH_CALCULATION_FAILED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    STORAGE_DELETE_FAILED = "STORAGE_DELETE_FAILED"
    SESSION_DELETE_FAILED = "SESSION_DELETE_FAILED"


def error_message(code: str) -> str:
    messages = {
        UploadErrorCode.FILE_NOT_PROVIDED: "No file provided in request",
        UploadErrorCode.FILE_EXTENSION_INVALID: f"Invalid file extension. Allowed extensions: {', '.join(ALLOWED_EXTENSIONS)}",
        UploadErrorCode.FILE_SIZE_EXCEEDED: f"File size exceeds maximum of {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
        UploadErrorCode.FILE_INVALID: "File is invalid or empty",
        UploadErrorCode.DUPLICATE_FILE: "This exact file has already been uploaded",
        UploadErrorCode.STORAGE_UPLOAD_FAILED: "Failed to upload file to storage",
        UploadErrorCode.STORAGE_BUCKET_ERROR: "Storage bucket error occurred",
        UploadErrorCode.DATABASE_ERROR: "Database operation failed",
        UploadErrorCode.HASH_CALCULATION_FAILED: "Failed to calculate file hash",
        UploadErrorCode.SESSION_NOT_FOUND: "Import session not found",
        UploadErrorCode.STORAGE_DELETE_FAILED: "Failed to delete file from storage",
        UploadErrorCode.SESSION_DELETE_FAILED: "Failed to delete import session",
    }
    return messages.get(code, "An unknown error occurred")


def _reject(code: str, status_code: int = 400, message: Optional[str] = None, **details) -> UploadRejected:
    return UploadRejected(message or error_message(code), code=code, status_code=status_code, details=details)


# ============================================================================
# Upload
# ============================================================================

def validate_upload(file_name: Optional[str], size: int) -> FileType:
    if not file_name:
        raise _reject(UploadErrorCode.FILE_NOT_PROVIDED)
    if file_extension(file_name) not in ALLOWED_EXTENSIONS:
        raise _reject(UploadErrorCode.FILE_EXTENSION_INVALID)
    if size <= 0:
        raise _reject(UploadErrorCode.FILE_INVALID, message="File is empty")
    if size > settings.MAX_UPLOAD_BYTES:
        raise _reject(UploadErrorCode.FILE_SIZE_EXCEEDED)
    return file_type_for(file_name)


def calculate_file_hash(data: bytes) -> str:
    try:
        return hashlib.sha256(data).hexdigest()
    except (TypeError, ValueError) as e:
        raise _reject(UploadErrorCode.HASH_CALCULATION_FAILED, 500) from e


async def find_session_by_hash(db: AsyncSession, file_hash: str) -> Optional[ImportSession]:
    result = await db.execute(select(ImportSession).where(ImportSession.file_hash == file_hash))
    return result.scalar_one_or_none()


def _duplicate(existing: ImportSession) -> UploadRejected:
    return _reject(
        UploadErrorCode.DUPLICATE_FILE, 409,
        existing_session_id=existing.id,
        uploaded_at=existing.uploaded_at.isoformat() if existing.uploaded_at else None,
    )


async def register_upload(db: AsyncSession, store: BlobStore, file_name: str, data: bytes) -> ImportSession:
    """Validate, dedup and store an upload; returns the session (status `parsing`)."""
    file_type = validate_upload(file_name, len(data))
    file_hash = calculate_file_hash(data)

    try:
        existing = await find_session_by_hash(db, file_hash)
    except SQLAlchemyError as e:
        raise _reject(UploadErrorCode.DATABASE_ERROR, 500,
                      message=f"Database error while checking for duplicates: {e}") from e
    if existing is not None:
        logger.info("Duplicate upload of %s (session %s)", file_name, existing.id)
        raise _duplicate(existing)

    storage_key = str(uuid.uuid4())
    session = ImportSession(
        file_name=file_name,
        file_type=file_type,
        file_hash=file_hash,
        file_size_bytes=len(data),
        storage_key=storage_key,
        status=S.pending,
    )
    db.add(session)
    try:
        await db.commit()
    except IntegrityError:
        # same content uploaded concurrently; the other request won
        await db.rollback()
        existing = await find_session_by_hash(db, file_hash)
        if existing is not None:
            raise _duplicate(existing)
        raise _reject(UploadErrorCode.DATABASE_ERROR, 500)
    except SQLAlchemyError as e:
        await db.rollback()
        raise _reject(UploadErrorCode.DATABASE_ERROR, 500,
                      message=f"Failed to create import session: {e}") from e

    session_id = session.id
    logger.info("Session %s created for %s (%d bytes)", session_id, file_name, len(data))

    await transition(db, session_id, S.uploading, expected=[S.pending])

    path = construct_storage_path("incoming", storage_key, file_name)
    try:
        store.upload(path, data)
    except StorageError as e:
        logger.error("Upload of session %s to %s failed: %s", session_id, path, e)
        await mark_failed(db, session_id, f"Storage upload failed: {e.message}", [S.uploading])
        raise _reject(UploadErrorCode.STORAGE_UPLOAD_FAILED, 500,
                      message=f"Failed to upload file to storage: {e.message}",
                      session_id=session_id) from e

    try:
        await transition(
            db, session_id, S.parsing,
            expected=[S.uploading],
            file_storage_path=path,
            uploaded_at=utcnow(),
        )
    except SQLAlchemyError:
        # blob is stored; the session can still be found and re-driven
        logger.exception("Session %s uploaded but status update failed", session_id)
        await db.rollback()

    return await get_import_session(db, session_id, fresh=True)


# ============================================================================
# Delete
# ============================================================================

@dataclass
class DeleteResult:
    session_id: int
    storage_deleted: bool
    storage_error: Optional[str] = None


async def delete_session(db: AsyncSession, store: BlobStore, session_id: int) -> DeleteResult:
    """
    Remove the session, its conflicts and its blobs. Activated variants stay
    in the catalog, detached from the session. Blob failures never block the
    row deletion; they are reported in the result.
    """
    session = await get_import_session(db, session_id)
    paths = [p for p in [session.file_storage_path] if p]
    paths += [p for p in json_blob_candidates(session_id) if store.exists(p)]

    storage_errors = []
    for path in paths:
        try:
            store.delete(path)
        except StorageError as e:
            logger.warning("Could not delete blob %s of session %s: %s", path, session_id, e)
            storage_errors.append(f"{path}: {e.message}")

    try:
        await db.execute(delete(EanConflict).where(EanConflict.session_id == session_id))
        await db.execute(
            update(EanVariant)
            .where(EanVariant.import_session_id == session_id)
            .values(import_session_id=None)
        )
        await db.execute(delete(ImportSession).where(ImportSession.id == session_id))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise IntakeError(
            f"{error_message(UploadErrorCode.SESSION_DELETE_FAILED)}: {e}",
            code=UploadErrorCode.SESSION_DELETE_FAILED,
            details={"session_id": session_id},
        ) from e

    logger.info("Session %s deleted (storage errors: %d)", session_id, len(storage_errors))
    return DeleteResult(
        session_id=session_id,
        storage_deleted=not storage_errors,
        storage_error="; ".join(storage_errors) or None,
    )


def cleanup_incoming_blob(store: BlobStore, path: str) -> bool:
    """Delete an orphaned upload; a missing object counts as done."""
    if not path:
        raise IntakeError("Path is required", code="INVALID_PATH", status_code=400)
    if not path.startswith("incoming/"):
        raise IntakeError("Only paths under incoming/ can be cleaned up", code="INVALID_PATH", status_code=400)
    try:
        existed = store.delete(path)
    except StorageError as e:
        raise IntakeError(
            f"{error_message(UploadErrorCode.STORAGE_DELETE_FAILED)}: {e.message}",
            code=UploadErrorCode.STORAGE_DELETE_FAILED,
        ) from e
    logger.info("Storage cleanup %s (%s)", path, "deleted" if existed else "already gone")
    return existed
