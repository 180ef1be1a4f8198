from __future__ import annotations

from ean_intake.models import NameTemplate, TemplatePart
from ean_intake.services.name_generator import (
    check_name_uniqueness,
    create_default_template,
    format_template_string,
    generate_name,
    generate_names,
    missing_template_columns,
    parse_template_string,
    validate_template,
)


def _template(*parts, separator: str = " | ") -> NameTemplate:
    return NameTemplate(parts=[TemplatePart(type=t, value=v) for t, v in parts], separator=separator)


def test_empty_column_value_is_skipped_but_literal_text_is_kept() -> None:
    template = _template(("column", "brand"), ("text", "-"), ("column", "size"))
    assert generate_name(template, {"brand": "Nike", "size": ""}) == "Nike | -"
    assert generate_name(template, {"brand": "Nike", "size": "42"}) == "Nike | - | 42"


def test_whitespace_only_column_value_counts_as_empty() -> None:
    template = _template(("column", "brand"), ("column", "color"))
    assert generate_name(template, {"brand": " Gazelle ", "color": "   "}) == "Gazelle"


def test_missing_column_contributes_nothing() -> None:
    template = _template(("column", "brand"), ("column", "nope"))
    assert generate_name(template, {"brand": "Batavus"}) == "Batavus"


def test_generate_names_preserves_row_order() -> None:
    template = _template(("column", "m"))
    assert generate_names(template, [{"m": "b"}, {"m": "a"}, {"m": "c"}]) == ["b", "a", "c"]


def test_uniqueness_counts_distinct_duplicates_and_empty_names() -> None:
    result = check_name_uniqueness(["A", "A", "B", "", ""])
    assert result.unique == 1
    assert result.duplicates == 1
    assert result.empty_names == 2
    assert result.duplicate_names == ["A"]


def test_validate_template_reports_every_problem() -> None:
    assert validate_template(_template(("column", "brand"))) == []
    assert validate_template(NameTemplate(parts=[])) == ["Template must have at least one part"]
    errors = validate_template(_template(("image", "x"), ("text", " ")))
    assert 'Template part must have type "column" or "text"' in errors
    assert "Template part must have a non-empty value" in errors


def test_missing_template_columns() -> None:
    template = _template(("column", "Merk"), ("text", "Sale"), ("column", "Kleur"))
    assert missing_template_columns(template, ["Merk", "Maat"]) == ["Kleur"]


def test_parse_template_string_detects_separator_and_columns() -> None:
    template = parse_template_string("{Merk} | {Kleur} | Sale", ["Merk", "Kleur"])
    assert template.separator == " | "
    assert [(p.type, p.value) for p in template.parts] == [
        ("column", "Merk"), ("column", "Kleur"), ("text", "Sale"),
    ]


def test_parse_template_string_keeps_unknown_columns_as_text() -> None:
    template = parse_template_string("{Merk} - {Onbekend}", ["Merk"])
    assert template.separator == " - "
    assert [(p.type, p.value) for p in template.parts] == [("column", "Merk"), ("text", "{Onbekend}")]


def test_parse_template_string_blank_input() -> None:
    assert parse_template_string("   ", ["Merk"]) is None


def test_format_template_string() -> None:
    template = _template(("column", "Merk"), ("text", "Sale"), separator=" - ")
    assert format_template_string(template) == "{Merk} - Sale"


def test_default_template_follows_preferred_column_order() -> None:
    template = create_default_template(["EAN", "Maat", "Kleur", "Omschrijving", "Merk", "Prijs"])
    assert [p.value for p in template.parts] == ["Merk", "Omschrijving", "Kleur", "Maat"]
    assert template.separator == " | "


def test_default_template_without_known_columns() -> None:
    assert create_default_template(["EAN", "Prijs"]) is None
