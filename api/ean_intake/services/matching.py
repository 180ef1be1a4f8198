# ean_intake/services/matching.py
"""
Fuzzy matching for brand columns, brand values and product names.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")

# Column header names that usually carry the brand (NL, EN, ES, FR)
BRAND_COLUMN_PATTERNS = [
    "merk",
    "brand",
    "fabrikant",
    "manufacturer",
    "producent",
    "leverancier",
    "supplier",
    "marca",
    "marque",
]

BRAND_COLUMN_THRESHOLD = 0.6
BRAND_VALUE_THRESHOLD = 0.7
NAME_SIMILARITY_THRESHOLD = 0.5


def fuzzy_match(a: str, b: str) -> float:
    """
    Similarity in [0, 1].

    1.0 for a case-insensitive exact match, 0.8 when one contains the other,
    otherwise 0.7 * word-set Jaccard + 0.3 * character-set Jaccard.
    """
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()
    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return 0.8

    words1, words2 = set(s1.split()), set(s2.split())
    word_union = words1 | words2
    if not word_union:
        return 0.0
    word_sim = len(words1 & words2) / len(word_union)

    chars1, chars2 = set(s1), set(s2)
    char_union = chars1 | chars2
    char_sim = len(chars1 & chars2) / len(char_union) if char_union else 0.0

    return word_sim * 0.7 + char_sim * 0.3


def detect_brand_column(columns: Sequence[str]) -> Optional[str]:
    """Exact pattern match first, then the best fuzzy match >= 0.6."""
    normalized = [(c, c.lower().strip()) for c in columns or []]

    for pattern in BRAND_COLUMN_PATTERNS:
        for original, norm in normalized:
            if norm == pattern:
                return original

    best: Optional[str] = None
    best_score = 0.0
    for pattern in BRAND_COLUMN_PATTERNS:
        for original, norm in normalized:
            score = fuzzy_match(norm, pattern)
            if score >= BRAND_COLUMN_THRESHOLD and score > best_score:
                best, best_score = original, score
    return best


def extract_distinct_brand_values(rows: Iterable[Dict[str, Any]], column: str) -> List[str]:
    values = set()
    for row in rows:
        value = row.get(column)
        if value is not None and str(value).strip():
            values.add(str(value).strip())
    return sorted(values)


def match_brand_to_existing(value: str, brands: Sequence[T]) -> Optional[T]:
    """
    Brand (anything with a `name`) matching `value`: exact case-insensitive
    first, then the best fuzzy match >= 0.7.
    """
    needle = (value or "").lower().strip()
    if not needle or not brands:
        return None

    for brand in brands:
        if brand.name.lower().strip() == needle:
            return brand

    best = None
    best_score = 0.0
    for brand in brands:
        score = fuzzy_match(needle, brand.name)
        if score >= BRAND_VALUE_THRESHOLD and score > best_score:
            best, best_score = brand, score
    return best


def name_difference_warning(ean: str, existing_name: str, new_name: str) -> Optional[str]:
    """Advisory warning when a re-imported EAN gets a very different name."""
    old, new = (existing_name or "").strip(), (new_name or "").strip()
    # "" is contained in every name, so a blank side is only similar to another blank
    similar = old == new if not (old and new) else fuzzy_match(new, old) >= NAME_SIMILARITY_THRESHOLD
    if similar:
        return None
    return (
        f"EAN {ean} exists but name differs substantially. "
        f'Existing name: "{existing_name}", new name: "{new_name}"'
    )
