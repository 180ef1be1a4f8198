# ean_intake/routers/activation.py
"""
Activation Router - brand, columns and name template checks, then the
single write step that creates catalog variants.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.database import get_session
from ean_intake.models import (
    ActivateIn, ActivationResultOut, BrandSelectionIn, ColumnMappingIn, TemplateConfigIn,
)
from ean_intake.storage import BlobStore, get_blob_store
from ean_intake.pipeline.activation import (
    prepare_activation, check_brand_selection, check_column_mapping,
    preview_template, activate_session,
)

router = APIRouter(prefix="/activation", tags=["Activation"])


@router.get("/{session_id}")
async def activation_data(
    session_id: int,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    return {"success": True, **await prepare_activation(db, store, session_id)}


@router.post("/{session_id}/brand")
async def activation_brand(
    session_id: int,
    body: BrandSelectionIn,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    return {"success": True, **await check_brand_selection(db, store, session_id, body)}


@router.post("/{session_id}/columns")
async def activation_columns(
    session_id: int,
    body: ColumnMappingIn,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    return {"success": True, **await check_column_mapping(db, store, session_id, body)}


@router.post("/{session_id}/template")
async def activation_template(
    session_id: int,
    body: TemplateConfigIn,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    return {"success": True, **await preview_template(db, store, session_id, body)}


@router.post("/{session_id}/activate", response_model=ActivationResultOut)
async def activation_activate(
    session_id: int,
    body: ActivateIn,
    db: AsyncSession = Depends(get_session),
    store: BlobStore = Depends(get_blob_store),
):
    result = await activate_session(db, store, session_id, body)
    return result.to_dict()
