# ean_intake/services/ean_detection.py
"""
EAN / GTIN-13 detection.

Only the format is checked (13 digits); the check digit is not validated,
supplier files routinely carry internal 13-digit codes with bad checksums.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List
import re

from ean_intake.settings import settings

_SURROUNDING_QUOTES = re.compile(r"""^["']+|["']+$""")


def normalize_ean(value: Any) -> str:
    """Trim whitespace and surrounding quotes."""
    if value is None:
        return ""
    s = str(value).strip()
    return _SURROUNDING_QUOTES.sub("", s).strip()


def validate_gtin13(value: Any) -> bool:
    code = normalize_ean(value)
    return len(code) == 13 and code.isascii() and code.isdigit()


def detect_ean_columns(
    headers: List[str],
    rows: Iterable[Dict[str, Any]],
    *,
    sample_size: int | None = None,
    min_values: int | None = None,
    min_ratio: float | None = None,
) -> List[str]:
    """
    Columns that look like EAN columns, in header order.

    A column qualifies when the sampled rows hold at least `min_values`
    non-empty values and at least `min_ratio` of them are valid GTIN-13.
    Defaults come from settings (100 rows, 5 values, 80%).
    """
    sample_size = settings.EAN_SAMPLE_ROWS if sample_size is None else sample_size
    min_values = settings.EAN_COLUMN_MIN_VALUES if min_values is None else min_values
    min_ratio = settings.EAN_COLUMN_MIN_RATIO if min_ratio is None else min_ratio

    sampled = []
    for i, row in enumerate(rows):
        if i >= sample_size:
            break
        sampled.append(row)

    candidates: List[str] = []
    for header in headers:
        total = 0
        valid = 0
        for row in sampled:
            value = row.get(header)
            if value is None or str(value).strip() == "":
                continue
            total += 1
            if validate_gtin13(value):
                valid += 1
        if total >= min_values and valid > 0 and valid / total >= min_ratio:
            candidates.append(header)
    return candidates
