# ean_intake/db_models.py
"""
SQLAlchemy ORM Models for EAN Intake.

Import sessions (pipeline state), brands, EAN variants (the catalog) and
EAN conflicts awaiting operator review.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, DateTime,
    ForeignKey, Index, Enum as SQLEnum, JSON, func, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from ean_intake.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer(), "sqlite")
JsonType = JSON().with_variant(JSONB(), "postgresql")

# ============================================================================
# ENUMS
# ============================================================================

class ImportStatus(str, enum.Enum):
    pending = "pending"
    uploading = "uploading"
    parsing = "parsing"
    analyzing_ean = "analyzing_ean"
    waiting_column_selection = "waiting_column_selection"
    approved = "approved"
    rejected = "rejected"
    converting = "converting"
    ready_for_activation = "ready_for_activation"
    activating = "activating"
    activated = "activated"
    failed = "failed"


class FileType(str, enum.Enum):
    csv = "csv"
    xlsx = "xlsx"


class ConflictResolution(str, enum.Enum):
    keep_existing = "keep_existing"
    use_new = "use_new"
    skip = "skip"


# ============================================================================
# MIXINS
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# 1. IMPORT SESSIONS
# ============================================================================

class ImportSession(TimestampMixin, Base):
    __tablename__ = "import_sessions"

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[FileType] = mapped_column(SQLEnum(FileType, name="import_file_type"), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(36), nullable=False)
    file_storage_path: Mapped[Optional[str]] = mapped_column(String(1000))

    status: Mapped[ImportStatus] = mapped_column(
        SQLEnum(ImportStatus, name="import_status"),
        default=ImportStatus.pending,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Parsing
    total_rows_in_file: Mapped[Optional[int]] = mapped_column(Integer)
    columns_count: Mapped[Optional[int]] = mapped_column(Integer)
    processed_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # EAN analysis
    detected_ean_column: Mapped[Optional[str]] = mapped_column(String(255))
    ean_candidate_columns: Mapped[Optional[list]] = mapped_column(JsonType)
    unique_ean_count: Mapped[Optional[int]] = mapped_column(Integer)
    duplicate_ean_count: Mapped[Optional[int]] = mapped_column(Integer)

    # Conversion / activation
    json_storage_path: Mapped[Optional[str]] = mapped_column(String(1000))
    conflicts_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    activated_variants_count: Mapped[Optional[int]] = mapped_column(Integer)
    activated_duplicates_count: Mapped[Optional[int]] = mapped_column(Integer)

    # Stage timestamps
    uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    parsed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ean_analysis_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Relationships
    conflicts: Mapped[List["EanConflict"]] = relationship(
        back_populates="session", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_import_sessions_status_created", "status", "created_at"),
    )


# ============================================================================
# 2. CATALOG (brands, EAN variants)
# ============================================================================

class Brand(Base):
    __tablename__ = "brands"

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # lower(trim(name)); case-insensitive uniqueness
    name_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )


class EanVariant(TimestampMixin, Base):
    __tablename__ = "ean_variants"

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    ean: Mapped[str] = mapped_column(String(64), nullable=False)
    brand_id: Mapped[int] = mapped_column(ForeignKey("brands.id"), nullable=False)
    color: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    import_session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("import_sessions.id", ondelete="SET NULL")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    brand: Mapped["Brand"] = relationship()

    __table_args__ = (
        Index("idx_ean_variants_ean", "ean"),
        Index("idx_ean_variants_session", "import_session_id"),
        Index("uq_ean_variants_active_ean", "ean", unique=True,
              postgresql_where=text("is_active = true"), sqlite_where=text("is_active = 1")),
    )


# ============================================================================
# 3. EAN CONFLICTS
# ============================================================================

class EanConflict(TimestampMixin, Base):
    __tablename__ = "ean_conflicts"

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("import_sessions.id", ondelete="CASCADE"), nullable=False
    )
    ean: Mapped[str] = mapped_column(String(64), nullable=False)
    existing_product: Mapped[dict] = mapped_column(JsonType, nullable=False)
    new_product: Mapped[dict] = mapped_column(JsonType, nullable=False)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolution: Mapped[Optional[ConflictResolution]] = mapped_column(
        SQLEnum(ConflictResolution, name="conflict_resolution")
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    session: Mapped["ImportSession"] = relationship(back_populates="conflicts")

    __table_args__ = (
        Index("idx_ean_conflicts_session", "session_id"),
        Index("idx_ean_conflicts_unresolved", "resolved", postgresql_where=text("resolved = false")),
    )
