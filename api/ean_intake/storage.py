# ean_intake/storage.py
"""
Blob store for supplier uploads.

A bucket directory under EAN_DATA_ROOT with logical folders as path prefixes:

    incoming/<storage_key>/<sanitized_name>     just uploaded
    processing/<storage_key>/<sanitized_name>   metadata extracted
    approved/<storage_key>/<sanitized_name>     EAN analysis passed
    rejected/<storage_key>/<sanitized_name>     EAN analysis rejected
    approved/<session_id>-data.json.gz          converted rows (canonical)
"""
from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional
import logging, os, re

from ean_intake.settings import settings
from ean_intake.errors import StorageError, BlobNotFound

logger = logging.getLogger(__name__)

STAGE_FOLDERS = ("incoming", "processing", "approved", "rejected")

_UNSAFE_CHARS = re.compile(r'[/\\?%*:|"<>@#$()]')


# ============================================================================
# Path helpers
# ============================================================================

def sanitize_file_name(file_name: str) -> str:
    """
    Make an uploaded file name safe for a storage path.

    Special characters and path separators are removed, whitespace becomes
    "-", ".." sequences are dropped and the result is lower-cased. The
    extension is kept (lower-cased); an empty stem becomes "file".
    """
    name = file_name or ""
    dot = name.rfind(".")
    if dot > 0:
        stem, ext = name[:dot], name[dot:].lower()
    else:
        stem, ext = name, ""

    stem = _UNSAFE_CHARS.sub("", stem)
    stem = re.sub(r"\s+", "-", stem)
    stem = stem.replace("..", "")
    stem = stem.strip("-").lower()
    return f"{stem or 'file'}{ext}"


def construct_storage_path(stage: str, storage_key: str, file_name: str) -> str:
    if stage not in STAGE_FOLDERS:
        raise ValueError(f"Unknown storage stage '{stage}'")
    return f"{stage}/{storage_key}/{sanitize_file_name(file_name)}"


def stage_path(current_path: str, stage: str, fallback_key: str) -> str:
    """Same key and file name as `current_path`, under another stage folder."""
    parts = (current_path or "").split("/")
    key = parts[1] if len(parts) > 2 and parts[1] else fallback_key
    name = parts[-1] if parts and parts[-1] else "file"
    return f"{stage}/{key}/{name}"


def json_blob_path(session_id: int) -> str:
    return f"approved/{session_id}-data.json.gz"


def json_blob_candidates(session_id: int) -> List[str]:
    """Canonical converted-JSON path first, then the older layouts."""
    return [
        json_blob_path(session_id),
        f"approved/{session_id}/data.json.gz",
        f"approved/{session_id}-data.json",
        f"approved/{session_id}/data.json",
    ]


# ============================================================================
# Blob store
# ============================================================================

class BlobStore:
    """Key/blob store over a local bucket directory."""

    def __init__(self, root: Path, bucket: str = "supplier-uploads"):
        self.bucket = bucket
        self.root = (Path(root).expanduser() / bucket).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _target(self, path: str) -> Path:
        rel = (path or "").replace("\\", "/").lstrip("/")
        if not rel:
            raise StorageError("Empty storage path", code="INVALID_PATH", status_code=400)
        target = (self.root / rel).resolve()
        try:
            target.relative_to(self.root)
        except ValueError:
            raise StorageError(f"Invalid storage path: {path}", code="INVALID_PATH", status_code=400)
        return target

    def exists(self, path: str) -> bool:
        return self._target(path).is_file()

    def upload(self, path: str, data: bytes, *, upsert: bool = False) -> str:
        target = self._target(path)
        if target.exists() and not upsert:
            raise StorageError(f"Object already exists: {path}", code="STORAGE_UPLOAD_FAILED")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as e:
            raise StorageError(f"Upload failed for {path}: {e}", code="STORAGE_UPLOAD_FAILED") from e
        return path

    def download(self, path: str) -> bytes:
        target = self._target(path)
        if not target.is_file():
            raise BlobNotFound(f"Object not found: {path}")
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Download failed for {path}: {e}") from e

    def delete(self, path: str) -> bool:
        """Remove an object; returns False when it did not exist."""
        target = self._target(path)
        if not target.exists():
            return False
        try:
            target.unlink()
        except OSError as e:
            raise StorageError(f"Delete failed for {path}: {e}", code="STORAGE_DELETE_FAILED") from e
        self._prune_empty_dirs(target.parent)
        return True

    def copy(self, src: str, dst: str) -> str:
        return self.upload(dst, self.download(src), upsert=True)

    def list(self, prefix: str = "") -> List[str]:
        base = self._target(prefix) if prefix else self.root
        if not base.exists():
            return []
        return sorted(
            p.relative_to(self.root).as_posix()
            for p in base.rglob("*")
            if p.is_file() and not p.name.endswith(".tmp")
        )

    def _prune_empty_dirs(self, folder: Path) -> None:
        while folder != self.root and folder.is_dir() and not any(folder.iterdir()):
            folder.rmdir()
            folder = folder.parent


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    """Process-wide store; FastAPI dependency."""
    return BlobStore(settings.EAN_DATA_ROOT, settings.STORAGE_BUCKET)


# ============================================================================
# Relocation
# ============================================================================

@dataclass
class MoveResult:
    ok: bool
    path: str
    error: Optional[str] = None


def relocate_blob(store: BlobStore, old_path: str, new_path: str) -> MoveResult:
    """
    Copy-then-delete move. Never raises: on failure the blob stays where it
    was and `path` is the old path. A failed delete of the source after a
    successful copy still counts as moved.
    """
    if old_path == new_path:
        return MoveResult(ok=True, path=old_path)

    try:
        store.copy(old_path, new_path)
    except StorageError as e:
        logger.warning("Blob move %s -> %s failed: %s", old_path, new_path, e)
        return MoveResult(ok=False, path=old_path, error=str(e))

    try:
        store.delete(old_path)
    except StorageError as e:
        logger.warning("Blob copied to %s but old %s not deleted: %s", new_path, old_path, e)

    logger.info("Blob moved %s -> %s", old_path, new_path)
    return MoveResult(ok=True, path=new_path)
