from __future__ import annotations

from types import SimpleNamespace

from ean_intake.services.matching import (
    detect_brand_column,
    extract_distinct_brand_values,
    fuzzy_match,
    match_brand_to_existing,
    name_difference_warning,
)


def test_fuzzy_match_exact_and_containment() -> None:
    assert fuzzy_match("Nike", "Nike") == 1.0
    assert fuzzy_match("nike ", "NIKE") == 1.0
    assert fuzzy_match("Nike Air", "Nike") == 0.8


def test_fuzzy_match_unrelated_strings_score_low_but_not_zero() -> None:
    score = fuzzy_match("Gazelle", "Nike")
    assert 0.0 < score < 0.8


def test_detect_brand_column_exact_first() -> None:
    assert detect_brand_column(["EAN", "Brand", "Merk"]) == "Merk"
    assert detect_brand_column(["EAN", "Kleur"]) is None


def test_detect_brand_column_fuzzy() -> None:
    assert detect_brand_column(["EAN", "Merknaam"]) == "Merknaam"


def test_extract_distinct_brand_values_sorted_and_trimmed() -> None:
    rows = [{"Merk": " Gazelle"}, {"Merk": "Batavus"}, {"Merk": ""}, {"Merk": "Gazelle "}, {}]
    assert extract_distinct_brand_values(rows, "Merk") == ["Batavus", "Gazelle"]


def test_match_brand_to_existing_prefers_exact_then_fuzzy() -> None:
    brands = [SimpleNamespace(id=1, name="Gazelle"), SimpleNamespace(id=2, name="Gazelle Bikes")]
    assert match_brand_to_existing("gazelle", brands).id == 1
    assert match_brand_to_existing("Gazelle Bikes", brands).id == 2
    assert match_brand_to_existing("Cortina", brands) is None
    assert match_brand_to_existing("", brands) is None


def test_name_difference_warning_only_for_dissimilar_names() -> None:
    assert name_difference_warning("8712345000001", "Gazelle Citybike", "Gazelle Citybike 2024") is None
    warning = name_difference_warning("8712345000001", "Gazelle Citybike", "Shimano Deore")
    assert warning.startswith("EAN 8712345000001 exists but name differs substantially.")


def test_name_difference_warning_treats_blank_name_as_different() -> None:
    assert name_difference_warning("8712345000001", "Gazelle Citybike", "") is not None
    assert name_difference_warning("8712345000001", "", "Gazelle Citybike") is not None
    assert name_difference_warning("8712345000001", "", "  ") is None
