# ean_intake/services/conflicts.py
"""
EAN conflicts: an inbound row whose EAN already has an active variant,
parked for an operator decision instead of being written.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, update, insert
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.db_models import EanConflict, EanVariant, ConflictResolution
from ean_intake.errors import ConflictNotFound, ConflictAlreadyResolved

logger = logging.getLogger(__name__)


class ConflictService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        session_id: int,
        ean: str,
        existing_product: Dict[str, Any],
        new_product: Dict[str, Any],
    ) -> EanConflict:
        conflict = EanConflict(
            session_id=session_id,
            ean=ean,
            existing_product=existing_product,
            new_product=new_product,
            resolved=False,
        )
        self.db.add(conflict)
        return conflict

    async def list_conflicts(
        self,
        *,
        session_id: Optional[int] = None,
        resolved: Optional[bool] = False,
    ) -> List[EanConflict]:
        stmt = select(EanConflict).order_by(EanConflict.created_at, EanConflict.id)
        if session_id is not None:
            stmt = stmt.where(EanConflict.session_id == session_id)
        if resolved is not None:
            stmt = stmt.where(EanConflict.resolved == resolved)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def resolve(self, conflict_id: int, resolution: ConflictResolution) -> EanConflict:
        """
        Resolve once. `use_new` deactivates the current active variant for the
        EAN and inserts the new product as the active one.
        """
        conflict = await self.db.get(EanConflict, conflict_id)
        if conflict is None:
            raise ConflictNotFound(f"Conflict {conflict_id} not found")
        if conflict.resolved:
            raise ConflictAlreadyResolved(
                f"Conflict {conflict_id} already resolved ({conflict.resolution.value})",
                details={"conflict_id": conflict_id},
            )

        if resolution == ConflictResolution.use_new:
            new = conflict.new_product or {}
            await self.db.execute(
                update(EanVariant)
                .where(EanVariant.ean == conflict.ean, EanVariant.is_active == True)
                .values(is_active=False)
            )
            await self.db.execute(
                insert(EanVariant).values(
                    ean=conflict.ean,
                    brand_id=new["brand_id"],
                    color=new.get("color", ""),
                    size=new.get("size", ""),
                    name=new.get("name", ""),
                    import_session_id=conflict.session_id,
                    is_active=True,
                )
            )

        conflict.resolved = True
        conflict.resolution = resolution
        conflict.resolved_at = datetime.now(timezone.utc)
        await self.db.flush()
        logger.info("Conflict %s for EAN %s resolved: %s", conflict_id, conflict.ean, resolution.value)
        return conflict


def conflict_to_dict(c: EanConflict) -> Dict[str, Any]:
    return {
        "id": c.id,
        "session_id": c.session_id,
        "ean": c.ean,
        "existing_product": c.existing_product,
        "new_product": c.new_product,
        "resolved": c.resolved,
        "resolution": c.resolution.value if c.resolution else None,
        "resolved_at": c.resolved_at.isoformat() if c.resolved_at else None,
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }
