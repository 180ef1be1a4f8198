# ean_intake/errors.py
"""
Typed errors raised by parsers, storage and pipeline stages.

`IntakeError` subclasses carry an API error code and HTTP status; the app
renders them as {"success": false, "error": code, "message": ..., **details}.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class IntakeError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


# ============================================================================
# Upload
# ============================================================================

class UploadRejected(IntakeError):
    """Upload refused before or during storage (see UploadErrorCode)."""
    status_code = 400


# ============================================================================
# Parsing / conversion
# ============================================================================

class TabularParseError(IntakeError):
    code = "PARSE_ERROR"
    status_code = 422


class UnsupportedFileType(TabularParseError):
    code = "FILE_EXTENSION_INVALID"
    status_code = 400


class ConversionError(IntakeError):
    code = "CONVERSION_ERROR"


# ============================================================================
# Storage
# ============================================================================

class StorageError(IntakeError):
    code = "STORAGE_ERROR"


class BlobNotFound(StorageError):
    code = "BLOB_NOT_FOUND"
    status_code = 404


# ============================================================================
# Sessions / pipeline
# ============================================================================

class SessionNotFound(IntakeError):
    code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: int) -> None:
        super().__init__(f"Import session {session_id} not found", details={"session_id": session_id})


class InvalidSessionStatus(IntakeError):
    code = "INVALID_STATUS"
    status_code = 409


class ActivationInputError(IntakeError):
    code = "ACTIVATION_INPUT_INVALID"
    status_code = 400


class StageFailed(IntakeError):
    """A pipeline stage failed and the session was flipped to `failed`."""
    code = "PROCESSING_ERROR"

    def __init__(self, session_id: int, stage: str, message: str) -> None:
        super().__init__(message, details={"session_id": session_id, "stage": stage})
        self.session_id = session_id
        self.stage = stage


class StageSuperseded(InvalidSessionStatus):
    """A stage errored after another invocation had already moved the session on."""
    code = "SESSION_ALREADY_MOVED"

    def __init__(self, session_id: int, stage: str, message: str) -> None:
        super().__init__(
            f"Session {session_id} was moved on by another worker during {stage}: {message}",
            details={"session_id": session_id, "stage": stage},
        )
        self.session_id = session_id
        self.stage = stage


class ColumnNotFound(IntakeError):
    code = "COLUMN_NOT_FOUND"
    status_code = 400

    def __init__(self, column: str) -> None:
        super().__init__(f"Column '{column}' not found in file", details={"column": column})


class ConflictNotFound(IntakeError):
    code = "CONFLICT_NOT_FOUND"
    status_code = 404


class ConflictAlreadyResolved(IntakeError):
    code = "CONFLICT_ALREADY_RESOLVED"
    status_code = 409


class JsonNotFound(IntakeError):
    code = "JSON_NOT_FOUND"
    status_code = 404
