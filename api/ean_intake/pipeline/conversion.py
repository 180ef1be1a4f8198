# ean_intake/pipeline/conversion.py
"""
JSON conversion stage: approved raw file -> gzip'd compact JSON array of
row objects at approved/<session_id>-data.json.gz, then ready_for_activation.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import gzip, json, logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.settings import settings
from ean_intake.db_models import ImportStatus as S
from ean_intake.errors import ConversionError, JsonNotFound
from ean_intake.storage import BlobStore, json_blob_path, json_blob_candidates
from ean_intake.services.tabular import load_table
from ean_intake.pipeline.transitions import (
    transition, failing_stage, get_import_session, require_status, utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    session_id: int
    row_count: int
    column_count: int
    json_path: str
    compressed_bytes: int
    warnings: List[str]
    status_updated: bool
    # False when another invocation already claimed the session
    claimed: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "row_count": self.row_count,
            "column_count": self.column_count,
            "json_path": self.json_path,
            "compressed_bytes": self.compressed_bytes,
            "warnings": self.warnings,
            "status_updated": self.status_updated,
        }


def validate_rows(rows: List[Dict[str, Any]]) -> List[str]:
    """Hard failure without rows or columns; ragged rows are only warnings."""
    if not rows:
        raise ConversionError("No data rows to convert")
    headers = list(rows[0].keys())
    if not headers:
        raise ConversionError("No columns to convert")

    warnings = []
    width = len(headers)
    ragged = sum(1 for r in rows if len(r) != width)
    if ragged:
        warnings.append(f"{ragged} rows have a column count different from the header ({width})")
    return warnings


def encode_rows(rows: List[Dict[str, Any]]) -> bytes:
    payload = json.dumps(rows, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return gzip.compress(payload)


async def convert_to_json(db: AsyncSession, store: BlobStore, session_id: int) -> ConversionResult:
    session = await get_import_session(db, session_id)
    require_status(session, S.approved, S.converting)
    path = session.file_storage_path
    file_type = session.file_type

    if session.status == S.approved:
        claimed = await transition(db, session_id, S.converting, expected=[S.approved])
        if not claimed:
            logger.info("Session %s conversion already claimed elsewhere", session_id)
            return ConversionResult(session_id, 0, 0, "", 0, [], False, claimed=False)
    else:
        logger.info("Session %s resuming interrupted conversion", session_id)

    async with failing_stage(db, session_id, "conversion", [S.converting]):
        if not path:
            raise ConversionError("Session has no stored file")
        table = load_table(store.download(path), file_type)
        rows = table.records()
        warnings = validate_rows(rows)

        blob = encode_rows(rows)
        if len(blob) > settings.MAX_JSON_BYTES:
            raise ConversionError(
                f"Compressed JSON is {len(blob) / 1024 / 1024:.1f}MB, "
                f"maximum is {settings.MAX_JSON_BYTES / 1024 / 1024:.0f}MB"
            )
        json_path = store.upload(json_blob_path(session_id), blob, upsert=True)
        logger.info("Session %s converted: %d rows, %d bytes gzip", session_id, len(rows), len(blob))

    status_updated = False
    for attempt in (1, 2):
        try:
            status_updated = await transition(
                db, session_id, S.ready_for_activation,
                expected=[S.converting],
                json_storage_path=json_path,
                converted_at=utcnow(),
                processed_rows=len(rows),
                error_message=None,
            )
            break
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Session %s: ready_for_activation update failed (attempt %d)", session_id, attempt)

    return ConversionResult(
        session_id=session_id,
        row_count=len(rows),
        column_count=table.column_count,
        json_path=json_path,
        compressed_bytes=len(blob),
        warnings=warnings,
        status_updated=status_updated,
    )


# ============================================================================
# Reading converted data
# ============================================================================

def find_json_blob(store: BlobStore, session_id: int) -> Optional[str]:
    for path in json_blob_candidates(session_id):
        if store.exists(path):
            return path
    return None


def load_session_rows(store: BlobStore, session_id: int) -> List[Dict[str, Any]]:
    path = find_json_blob(store, session_id)
    if path is None:
        raise JsonNotFound(f"No converted JSON for session {session_id}", details={"session_id": session_id})
    raw = store.download(path)
    if path.endswith(".gz"):
        raw = gzip.decompress(raw)
    data = json.loads(raw.decode("utf-8"))
    if not isinstance(data, list):
        raise ConversionError(f"Converted JSON for session {session_id} is not a list of rows")
    return data


def json_columns(rows: List[Dict[str, Any]]) -> List[str]:
    return list(rows[0].keys()) if rows else []


def paginate_rows(
    rows: List[Dict[str, Any]],
    *,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    """Case-insensitive substring search over all values, then one page."""
    needle = (search or "").strip().lower()
    if needle:
        rows = [r for r in rows if any(needle in str(v).lower() for v in r.values() if v is not None)]

    total = len(rows)
    start = (page - 1) * limit
    return {
        "data": rows[start:start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit if total else 0,
        },
    }
