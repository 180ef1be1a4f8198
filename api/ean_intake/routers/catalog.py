# ean_intake/routers/catalog.py
"""
Catalog Router - brands, EAN variants and activation conflicts.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.database import get_session
from ean_intake.db_models import ConflictResolution
from ean_intake.models import ResolveConflictIn
from ean_intake.services import CatalogService, ConflictService
from ean_intake.services.catalog import brand_to_dict, variant_to_dict
from ean_intake.services.conflicts import conflict_to_dict

router = APIRouter(tags=["Catalog"])


@router.get("/brands")
async def list_brands(db: AsyncSession = Depends(get_session)):
    brands = await CatalogService(db).get_all_brands()
    return {"success": True, "count": len(brands), "brands": [brand_to_dict(b) for b in brands]}


@router.get("/variants")
async def list_variants(
    ean: Optional[str] = None,
    session_id: Optional[int] = None,
    active_only: bool = True,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
):
    variants = await CatalogService(db).list_variants(
        ean=ean, session_id=session_id, active_only=active_only, limit=limit, offset=offset,
    )
    return {"success": True, "count": len(variants), "variants": [variant_to_dict(v) for v in variants]}


@router.get("/conflicts")
async def list_conflicts(
    session_id: Optional[int] = None,
    resolved: Optional[bool] = False,
    db: AsyncSession = Depends(get_session),
):
    conflicts = await ConflictService(db).list_conflicts(session_id=session_id, resolved=resolved)
    return {"success": True, "count": len(conflicts), "conflicts": [conflict_to_dict(c) for c in conflicts]}


@router.post("/conflicts/{conflict_id}/resolve")
async def resolve_conflict(
    conflict_id: int,
    body: ResolveConflictIn,
    db: AsyncSession = Depends(get_session),
):
    conflict = await ConflictService(db).resolve(conflict_id, ConflictResolution(body.resolution))
    out = conflict_to_dict(conflict)
    await db.commit()
    return {"success": True, "conflict": out}
