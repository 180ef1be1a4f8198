# ean_intake/pipeline/activation.py
"""
Activation: turn a converted session into EAN variant catalog rows.

Steps 1-4 (prepare, brand, columns, template) only read the converted JSON
and never change session status. Step 5 (activate) is the single write:
ready_for_activation -> activating -> activated.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ean_intake.settings import settings
from ean_intake.db_models import ImportStatus as S
from ean_intake.errors import ActivationInputError, ColumnNotFound, InvalidSessionStatus
from ean_intake.models import (
    ActivateIn, BrandSelectionIn, ColumnMappingIn, TemplateConfigIn, NameTemplate,
)
from ean_intake.storage import BlobStore
from ean_intake.services.catalog import CatalogService, brand_to_dict, variant_to_dict
from ean_intake.services.conflicts import ConflictService
from ean_intake.services.ean_detection import normalize_ean
from ean_intake.services.matching import (
    detect_brand_column, extract_distinct_brand_values, match_brand_to_existing,
)
from ean_intake.services.name_generator import (
    generate_names, validate_template, missing_template_columns, check_name_uniqueness,
    parse_template_string, format_template_string, create_default_template,
)
from ean_intake.pipeline.conversion import load_session_rows, json_columns, find_json_blob
from ean_intake.pipeline.transitions import (
    transition, failing_stage, get_import_session, require_status, session_to_dict, utcnow,
)

logger = logging.getLogger(__name__)

PREVIEW_ROWS = 5
MAX_REPORTED_ERRORS = 10


def _require_columns(columns: Sequence[str], *wanted: Optional[str]) -> None:
    available = set(columns)
    for col in wanted:
        if col and col not in available:
            raise ColumnNotFound(col)


def _cell(row: Dict[str, Any], column: Optional[str]) -> str:
    if not column:
        return ""
    value = row.get(column)
    return "" if value is None else str(value).strip()


# ============================================================================
# Step 1: prepare
# ============================================================================

async def prepare_activation(db: AsyncSession, store: BlobStore, session_id: int) -> Dict[str, Any]:
    session = await get_import_session(db, session_id)
    has_json = find_json_blob(store, session_id) is not None
    rows = load_session_rows(store, session_id) if has_json else []
    columns = json_columns(rows)
    default_template = create_default_template(columns)
    brands = await CatalogService(db).get_all_brands()

    return {
        "session": session_to_dict(session),
        "has_json_data": has_json,
        "row_count": len(rows),
        "columns": columns,
        "detected_ean_column": session.detected_ean_column,
        "detected_brand_column": detect_brand_column(columns),
        "default_template": default_template.model_dump() if default_template else None,
        "default_template_string": format_template_string(default_template) if default_template else None,
        "brands": [brand_to_dict(b) for b in brands],
    }


# ============================================================================
# Step 2: brand
# ============================================================================

async def check_brand_selection(
    db: AsyncSession, store: BlobStore, session_id: int, body: BrandSelectionIn,
) -> Dict[str, Any]:
    await get_import_session(db, session_id)
    catalog = CatalogService(db)

    if body.brand_id is not None:
        brand = await catalog.get_brand(body.brand_id)
        if brand is None:
            raise ActivationInputError(f"Brand {body.brand_id} not found", details={"brand_id": body.brand_id})
        return {"mode": "brand_id", "brand": brand_to_dict(brand)}

    if body.manual_brand and body.manual_brand.strip():
        match = match_brand_to_existing(body.manual_brand, await catalog.get_all_brands())
        return {
            "mode": "manual_brand",
            "manual_brand": body.manual_brand.strip(),
            "existing_brand": brand_to_dict(match) if match else None,
            "will_create": match is None,
        }

    if not body.brand_column:
        raise ActivationInputError("Either brand_column, manual_brand or brand_id is required")

    rows = load_session_rows(store, session_id)
    _require_columns(json_columns(rows), body.brand_column)
    values = extract_distinct_brand_values(rows, body.brand_column)
    brands = await catalog.get_all_brands()

    existing, missing = [], []
    for value in values:
        match = match_brand_to_existing(value, brands)
        if match is not None:
            existing.append({"value": value, "brand_id": match.id, "brand_name": match.name})
        else:
            missing.append(value)

    return {
        "mode": "brand_column",
        "brand_column": body.brand_column,
        "values": values,
        "existing": existing,
        "missing": missing,
    }


# ============================================================================
# Step 3: color / size columns
# ============================================================================

async def check_column_mapping(
    db: AsyncSession, store: BlobStore, session_id: int, body: ColumnMappingIn,
) -> Dict[str, Any]:
    await get_import_session(db, session_id)
    rows = load_session_rows(store, session_id)
    _require_columns(json_columns(rows), body.color_column, body.size_column)

    def summary(column: str) -> Dict[str, Any]:
        values = [_cell(r, column) for r in rows]
        return {
            "column": column,
            "distinct_values": len({v for v in values if v}),
            "empty_rows": sum(1 for v in values if not v),
        }

    return {"color": summary(body.color_column), "size": summary(body.size_column)}


# ============================================================================
# Step 4: name template
# ============================================================================

def resolve_template(
    template: Optional[NameTemplate], template_string: Optional[str], columns: Sequence[str],
) -> NameTemplate:
    if template is None and template_string:
        template = parse_template_string(template_string, columns)
    if template is None:
        raise ActivationInputError("A name template is required", code="TEMPLATE_INVALID")

    errors = validate_template(template)
    errors += [f"Column '{c}' not found in file" for c in missing_template_columns(template, columns)]
    if errors:
        raise ActivationInputError(
            "Invalid name template: " + "; ".join(errors),
            code="TEMPLATE_INVALID",
            details={"errors": errors},
        )
    return template


async def preview_template(
    db: AsyncSession, store: BlobStore, session_id: int, body: TemplateConfigIn,
) -> Dict[str, Any]:
    await get_import_session(db, session_id)
    rows = load_session_rows(store, session_id)
    template = resolve_template(body.template, body.template_string, json_columns(rows))

    names = generate_names(template, rows)
    uniqueness = check_name_uniqueness(names)
    return {
        "template": template.model_dump(),
        "template_string": format_template_string(template),
        "preview": [
            {"row": i + 1, "name": names[i], "data": rows[i]}
            for i in range(min(PREVIEW_ROWS, len(rows)))
        ],
        "uniqueness": {
            "total": len(names),
            "unique": uniqueness.unique,
            "duplicates": uniqueness.duplicates,
            "duplicate_names": uniqueness.duplicate_names[:20],
            "empty_names": uniqueness.empty_names,
        },
    }


# ============================================================================
# Step 5: activate
# ============================================================================

@dataclass
class ActivationResult:
    session_id: int
    inserted: int = 0
    duplicates: int = 0
    conflicts: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "session_id": self.session_id,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "conflicts": self.conflicts,
            "warnings": self.warnings,
            "errors": self.errors[:MAX_REPORTED_ERRORS],
            "total_errors": len(self.errors),
        }


def _missing_activation_fields(body: ActivateIn, ean_column: Optional[str]) -> List[str]:
    missing = []
    if body.brand_id is None and not (body.manual_brand or "").strip() and not body.brand_column:
        missing.append("brand_id, manual_brand or brand_column")
    if not body.color_column:
        missing.append("color_column")
    if not body.size_column:
        missing.append("size_column")
    if body.template is None:
        missing.append("template")
    if not ean_column:
        missing.append("ean_column")
    return missing


async def _resolve_brands(
    catalog: CatalogService, body: ActivateIn, rows: List[Dict[str, Any]],
) -> Dict[str, int]:
    """
    Brand id per brand cell value; the key "" holds the single brand when
    the whole file has one. Unknown brands are created.
    """
    if body.brand_id is not None:
        return {"": body.brand_id}

    brands = await catalog.get_all_brands()
    if body.manual_brand and body.manual_brand.strip():
        brand = match_brand_to_existing(body.manual_brand, brands)
        if brand is None:
            brand = await catalog.get_or_create_brand(body.manual_brand)
        return {"": brand.id}

    mapping: Dict[str, int] = {}
    for value in extract_distinct_brand_values(rows, body.brand_column):
        brand = match_brand_to_existing(value, brands)
        if brand is None:
            brand = await catalog.get_or_create_brand(value)
            brands.append(brand)
        mapping[value] = brand.id
    return mapping


async def activate_session(
    db: AsyncSession, store: BlobStore, session_id: int, body: ActivateIn,
) -> ActivationResult:
    session = await get_import_session(db, session_id)
    require_status(session, S.ready_for_activation)
    ean_column = body.ean_column or session.detected_ean_column

    missing = _missing_activation_fields(body, ean_column)
    if missing:
        raise ActivationInputError(
            f"Missing required fields: {', '.join(missing)}", details={"missing": missing},
        )

    catalog = CatalogService(db)
    if body.brand_id is not None and await catalog.get_brand(body.brand_id) is None:
        raise ActivationInputError(f"Brand {body.brand_id} not found", details={"brand_id": body.brand_id})

    rows = load_session_rows(store, session_id)
    columns = json_columns(rows)
    _require_columns(columns, ean_column, body.color_column, body.size_column, body.brand_column)
    template = resolve_template(body.template, None, columns)

    claimed = await transition(db, session_id, S.activating, expected=[S.ready_for_activation])
    if not claimed:
        raise InvalidSessionStatus(
            f"Session {session_id} is no longer ready for activation",
            details={"session_id": session_id},
        )

    result = ActivationResult(session_id=session_id)
    async with failing_stage(db, session_id, "activation", [S.activating]):
        brand_ids = await _resolve_brands(catalog, body, rows)
        single_brand = brand_ids.get("") if len(brand_ids) == 1 and "" in brand_ids else None
        names = generate_names(template, rows)

        candidates: List[Dict[str, Any]] = []
        seen_eans = set()
        for index, row in enumerate(rows, start=1):
            ean = normalize_ean(row.get(ean_column))
            brand_id = single_brand if single_brand is not None else brand_ids.get(_cell(row, body.brand_column))
            color = _cell(row, body.color_column)
            size = _cell(row, body.size_column)

            if not ean:
                result.errors.append(f"Row {index}: EAN is empty")
            elif brand_id is None:
                result.errors.append(f"Row {index}: Brand is empty")
            elif not color:
                result.errors.append(f"Row {index}: Color is empty")
            elif not size:
                result.errors.append(f"Row {index}: Size is empty")
            elif ean in seen_eans:
                result.errors.append(f"Row {index}: EAN {ean} appears earlier in the file, row skipped")
            else:
                seen_eans.add(ean)
                candidates.append({
                    "ean": ean, "brand_id": brand_id, "color": color, "size": size, "name": names[index - 1],
                })

        # every row with an EAN counts towards duplicates, valid or not
        row_eans = [(normalize_ean(row.get(ean_column)), names[i]) for i, row in enumerate(rows)]
        duplicates = await catalog.detect_duplicates([(e, name) for e, name in row_eans if e])
        result.duplicates = sum(1 for e, _ in row_eans if e and duplicates[e].is_duplicate)
        duplicate_rows = [c for c in candidates if duplicates[c["ean"]].is_duplicate]
        result.warnings.extend(d.warning for d in duplicates.values() if d.warning)

        if body.duplicate_strategy == "review":
            conflicts = ConflictService(db)
            for c in duplicate_rows:
                await conflicts.record(
                    session_id, c["ean"],
                    existing_product=variant_to_dict(duplicates[c["ean"]].existing),
                    new_product=dict(c),
                )
            result.conflicts = len(duplicate_rows)
            to_insert = [c for c in candidates if not duplicates[c["ean"]].is_duplicate]
        else:
            superseded = [duplicates[c["ean"]].existing.id for c in duplicate_rows]
            deactivated = await catalog.deactivate_variants(superseded)
            logger.info("Session %s: %d superseded variants deactivated", session_id, deactivated)
            to_insert = candidates
        await db.commit()

        batch_size = settings.ACTIVATION_BATCH_SIZE
        for start in range(0, len(to_insert), batch_size):
            batch = [dict(c, import_session_id=session_id, is_active=True) for c in to_insert[start:start + batch_size]]
            try:
                await catalog.insert_variants(batch)
                await db.commit()
                result.inserted += len(batch)
            except IntegrityError as e:
                await db.rollback()
                message = f"Batch starting at candidate {start + 1} ({len(batch)} rows) skipped: EAN already active"
                logger.warning("Session %s: %s (%s)", session_id, message, e.orig)
                result.warnings.append(message)

        await transition(
            db, session_id, S.activated,
            expected=[S.activating],
            activated_variants_count=result.inserted,
            activated_duplicates_count=result.duplicates,
            conflicts_count=result.conflicts,
            processed_rows=len(rows),
            activated_at=utcnow(),
            error_message=None,
        )

    logger.info(
        "Session %s activated: %d inserted, %d duplicates, %d row errors",
        session_id, result.inserted, result.duplicates, len(result.errors),
    )
    return result
