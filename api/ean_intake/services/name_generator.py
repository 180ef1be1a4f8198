# ean_intake/services/name_generator.py
"""
Product display names from a name template.

A template is an ordered list of parts, each a column reference or literal
text, joined with one separator:

    {modelnr} | {merk} | {kleur}   ->   "AX-200 | Gazelle | Red"
"""
from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import re

from ean_intake.models import NameTemplate, TemplatePart, DEFAULT_SEPARATOR

PART_TYPES = ("column", "text")

TEMPLATE_SEPARATORS = [' | ', ' |', '| ', '|', ' - ', ' -', '- ', '-', ' ', '  ']

# Preferred order for the suggested template (Dutch and English supplier headers)
PREFERRED_NAME_COLUMNS = [
    "modelnr", "modelnummer", "artikelnummer", "sku",
    "merk", "brand", "fabrikant",
    "modelomschrijving", "omschrijving", "naam", "name",
    "kleur", "color",
    "maat", "size",
]

_COLUMN_TOKEN = re.compile(r"^\{([^}]+)\}$")


# =========================================================================
# Generation
# =========================================================================

def generate_name(template: NameTemplate, row: Dict[str, Any]) -> str:
    pieces: List[str] = []
    for part in template.parts:
        if part.type == "column":
            value = row.get(part.value)
            if value is not None and str(value).strip() != "":
                pieces.append(str(value).strip())
        elif part.type == "text":
            pieces.append(part.value.strip())
    return (template.separator or DEFAULT_SEPARATOR).join(pieces).strip()


def generate_names(template: NameTemplate, rows: Sequence[Dict[str, Any]]) -> List[str]:
    return [generate_name(template, row) for row in rows]


# =========================================================================
# Validation / uniqueness
# =========================================================================

def validate_template(template: NameTemplate) -> List[str]:
    """All problems found; an empty list means the template is usable."""
    errors: List[str] = []
    if not template.parts:
        errors.append("Template must have at least one part")
    for part in template.parts:
        if part.type not in PART_TYPES:
            errors.append('Template part must have type "column" or "text"')
        if not part.value or not part.value.strip():
            errors.append("Template part must have a non-empty value")
    return errors


def missing_template_columns(template: NameTemplate, columns: Sequence[str]) -> List[str]:
    available = set(columns)
    return [p.value for p in template.parts if p.type == "column" and p.value not in available]


@dataclass
class NameUniqueness:
    unique: int
    duplicates: int
    empty_names: int
    duplicate_names: List[str] = field(default_factory=list)


def check_name_uniqueness(names: Sequence[str]) -> NameUniqueness:
    """
    unique: distinct non-empty names occurring exactly once.
    duplicates: distinct names occurring more than once (not occurrences).
    """
    empty = sum(1 for n in names if not n or not n.strip())
    counts = Counter(n for n in names if n and n.strip())
    duplicate_names = [n for n, c in counts.items() if c > 1]
    return NameUniqueness(
        unique=len(counts) - len(duplicate_names),
        duplicates=len(duplicate_names),
        empty_names=empty,
        duplicate_names=duplicate_names,
    )


# =========================================================================
# Template strings
# =========================================================================

def parse_template_string(template_string: str, available_columns: Sequence[str]) -> Optional[NameTemplate]:
    """
    "{modelnr} | {merk} | Sale" -> structured template.

    The separator is the first known separator found in the text. `{name}`
    tokens that are not a known column stay literal text.
    """
    if not template_string or not template_string.strip():
        return None

    separator = DEFAULT_SEPARATOR
    for sep in TEMPLATE_SEPARATORS:
        if sep in template_string:
            separator = sep
            break

    columns = set(available_columns)
    parts: List[TemplatePart] = []
    for segment in template_string.split(separator):
        token = segment.strip()
        if not token:
            continue
        m = _COLUMN_TOKEN.match(token)
        if m and m.group(1) in columns:
            parts.append(TemplatePart(type="column", value=m.group(1)))
        else:
            parts.append(TemplatePart(type="text", value=token))

    if not parts:
        return None
    return NameTemplate(parts=parts, separator=separator)


def format_template_string(template: NameTemplate) -> str:
    rendered = [f"{{{p.value}}}" if p.type == "column" else p.value for p in template.parts]
    return (template.separator or DEFAULT_SEPARATOR).join(rendered)


def create_default_template(available_columns: Sequence[str]) -> Optional[NameTemplate]:
    by_lower = {}
    for col in available_columns:
        by_lower.setdefault(col.lower(), col)

    parts: List[TemplatePart] = []
    seen = set()
    for preferred in PREFERRED_NAME_COLUMNS:
        col = by_lower.get(preferred)
        if col and col not in seen:
            parts.append(TemplatePart(type="column", value=col))
            seen.add(col)

    if not parts:
        return None
    return NameTemplate(parts=parts, separator=DEFAULT_SEPARATOR)
