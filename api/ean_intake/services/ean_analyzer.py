# ean_intake/services/ean_analyzer.py
"""
EAN statistics for one chosen column over the whole file.
"""
from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Sequence

from ean_intake.services.ean_detection import normalize_ean, validate_gtin13


@dataclass
class EanStats:
    column: str
    total_rows: int
    total_eans: int
    unique_count: int
    duplicate_count: int
    valid_ean_percentage: float
    duplicate_eans: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def analyze_ean_values(column: str, values: Sequence[Any]) -> EanStats:
    """
    `values` holds one entry per data row (empty strings included), so
    total_rows is the acceptance denominator.
    """
    eans = [normalize_ean(v) for v in values if validate_gtin13(v)]
    counts = Counter(eans)
    duplicates = sorted(ean for ean, n in counts.items() if n > 1)
    total_rows = len(values)
    pct = (len(eans) * 100 / total_rows) if total_rows else 0.0

    return EanStats(
        column=column,
        total_rows=total_rows,
        total_eans=len(eans),
        unique_count=len(counts),
        duplicate_count=len(duplicates),
        valid_ean_percentage=pct,
        duplicate_eans=duplicates,
    )


def passes_acceptance(stats: EanStats, min_percent: float) -> bool:
    return stats.total_rows > 0 and stats.valid_ean_percentage >= min_percent
