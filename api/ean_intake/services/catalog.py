# ean_intake/services/catalog.py
"""
Catalog Service - brands and EAN variants.

Handles:
- Brand lookup (case-insensitive) and on-demand creation (first insert wins)
- Batch lookup of active variants by EAN, duplicate detection with name check
- Deactivation of superseded variants and batched variant inserts
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import select, update, insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.db_models import Brand, EanVariant
from ean_intake.services.matching import fuzzy_match, name_difference_warning

logger = logging.getLogger(__name__)

# Keeps IN (...) lists well below driver parameter limits
LOOKUP_CHUNK = 500


def brand_key(name: str) -> str:
    return (name or "").strip().lower()


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class DuplicateResult:
    ean: str
    existing: Optional[EanVariant]
    name_similarity: float = 0.0
    warning: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.existing is not None


class CatalogService:
    """Brand and EAN variant persistence."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Brands
    # =========================================================================

    async def get_all_brands(self) -> List[Brand]:
        result = await self.db.execute(select(Brand).order_by(Brand.name))
        return list(result.scalars().all())

    async def get_brand(self, brand_id: int) -> Optional[Brand]:
        return await self.db.get(Brand, brand_id)

    async def find_brand_by_name(self, name: str) -> Optional[Brand]:
        result = await self.db.execute(select(Brand).where(Brand.name_key == brand_key(name)))
        return result.scalar_one_or_none()

    async def get_or_create_brand(self, name: str) -> Brand:
        """
        Commits the new brand immediately. On a concurrent insert of the same
        name the other writer wins and its row is returned.
        """
        clean = (name or "").strip()
        if not clean:
            raise ValueError("Brand name must not be empty")

        brand = await self.find_brand_by_name(clean)
        if brand is not None:
            return brand

        brand = Brand(name=clean, name_key=brand_key(clean))
        self.db.add(brand)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            brand = await self.find_brand_by_name(clean)
            if brand is None:
                raise
            return brand
        logger.info("Created brand %r (id=%s)", clean, brand.id)
        return brand

    # =========================================================================
    # Variants
    # =========================================================================

    async def find_active_variants(self, eans: Iterable[str]) -> Dict[str, EanVariant]:
        unique = sorted({e for e in eans if e})
        found: Dict[str, EanVariant] = {}
        for chunk in _chunks(unique, LOOKUP_CHUNK):
            result = await self.db.execute(
                select(EanVariant).where(
                    EanVariant.ean.in_(chunk),
                    EanVariant.is_active == True,
                )
            )
            for variant in result.scalars().all():
                found[variant.ean] = variant
        return found

    async def detect_duplicates(self, items: Sequence[Tuple[str, str]]) -> Dict[str, DuplicateResult]:
        """
        items: (ean, generated_name) pairs. Every EAN gets a result; EANs with
        an active variant carry it plus the name similarity and, below 0.5,
        an advisory warning.
        """
        existing = await self.find_active_variants(ean for ean, _ in items)
        results: Dict[str, DuplicateResult] = {}
        for ean, name in items:
            if ean in results:
                continue
            variant = existing.get(ean)
            if variant is None:
                results[ean] = DuplicateResult(ean=ean, existing=None)
                continue
            results[ean] = DuplicateResult(
                ean=ean,
                existing=variant,
                name_similarity=fuzzy_match(name, variant.name),
                warning=name_difference_warning(ean, variant.name, name),
            )
        return results

    async def deactivate_variants(self, variant_ids: Sequence[int]) -> int:
        count = 0
        for chunk in _chunks(list(variant_ids), LOOKUP_CHUNK):
            result = await self.db.execute(
                update(EanVariant)
                .where(EanVariant.id.in_(chunk), EanVariant.is_active == True)
                .values(is_active=False)
            )
            count += result.rowcount or 0
        return count

    async def insert_variants(self, rows: Sequence[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        await self.db.execute(insert(EanVariant), list(rows))
        return len(rows)

    async def list_variants(
        self,
        *,
        ean: Optional[str] = None,
        session_id: Optional[int] = None,
        active_only: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> List[EanVariant]:
        stmt = select(EanVariant).order_by(EanVariant.id.desc()).limit(limit).offset(offset)
        if ean:
            stmt = stmt.where(EanVariant.ean == ean.strip())
        if session_id is not None:
            stmt = stmt.where(EanVariant.import_session_id == session_id)
        if active_only:
            stmt = stmt.where(EanVariant.is_active == True)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())


def variant_to_dict(v: EanVariant) -> Dict[str, Any]:
    return {
        "id": v.id,
        "ean": v.ean,
        "brand_id": v.brand_id,
        "color": v.color,
        "size": v.size,
        "name": v.name,
        "import_session_id": v.import_session_id,
        "is_active": v.is_active,
        "created_at": v.created_at.isoformat() if v.created_at else None,
    }


def brand_to_dict(b: Brand) -> Dict[str, Any]:
    return {"id": b.id, "name": b.name}
