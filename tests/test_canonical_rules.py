"""
Unit tests for description, unit and currency canonicalization.
"""
import pytest

from invoice_canon.models.canonical import UnitCategory
from invoice_canon.services.canonical.currency import is_valid_currency_code, normalize_currency_code
from invoice_canon.services.canonical.normalize import normalize_description, normalize_unit_label
from invoice_canon.services.canonical.units import (
    UNIT_SYNONYMS,
    canonicalize_unit_label,
    extract_unit_label_from_description,
    extract_unit_label_from_text,
    map_unit_category,
)


class TestNormalizeDescription:
    """Tests for normalize_description."""

    def test_trims_lowercases_and_collapses(self):
        assert normalize_description("  Ham   Leg\t2kg  ") == "ham leg 2kg"

    def test_strips_light_punctuation(self):
        assert normalize_description("Tomatoes (Roma), 5kg; [box] <A|B>") == "tomatoes roma 5kg box ab"

    def test_empty_and_none(self):
        assert normalize_description(None) == ""
        assert normalize_description("   ") == ""

    @pytest.mark.parametrize("raw", [
        "  Ham Leg 2kg  ",
        "a . b",
        "Beef ( mince ) ,  5 kg",
        "Milk 2L | Full Cream",
        "...",
        "",
    ])
    def test_idempotent(self, raw: str):
        once = normalize_description(raw)
        assert normalize_description(once) == once

    def test_unit_label_normalization(self):
        assert normalize_unit_label("  kg ") == "KG"
        assert normalize_unit_label("per   kilo") == "PER KILO"
        assert normalize_unit_label("") is None
        assert normalize_unit_label(None) is None


class TestUnitCanonicalization:
    """Tests for unit label resolution and category mapping."""

    @pytest.mark.parametrize("label,expected", [
        ("kilogram", "KG"),
        ("Kilos", "KG"),
        ("gr", "G"),
        ("GRAMS", "G"),
        ("litre", "L"),
        ("Liters", "L"),
        ("millilitre", "ML"),
        ("ea", "EACH"),
        ("units", "UNIT"),
        ("CTN", "CTN"),
    ])
    def test_explicit_label_synonyms(self, label: str, expected: str):
        assert canonicalize_unit_label(label) == expected

    def test_explicit_label_wins_over_description(self):
        assert canonicalize_unit_label("EA", "Ham Leg 2kg") == "EACH"

    def test_description_fallback(self):
        assert canonicalize_unit_label(None, "Ham Leg 2kg") == "KG"
        assert canonicalize_unit_label("", "Cream 500 ml") == "ML"

    def test_glued_unit_token(self):
        assert extract_unit_label_from_description("Chicken thigh 12KILO") == "KILO"
        assert canonicalize_unit_label(None, "Chicken thigh 12KILO") == "KG"

    @pytest.mark.parametrize("description", [
        "Chicken 2 x 2.5kg",
        "Flour 4x5KG",
        "Cream 6 × 500ml",
        "Chicken 2 x 2,5kg",
        "Box10x2kg",
        "Oil 2 x 1,5L",
    ])
    def test_pack_notation_yields_no_unit(self, description: str):
        assert extract_unit_label_from_description(description) is None
        assert canonicalize_unit_label(None, description) is None

    def test_no_numeric_token(self):
        assert extract_unit_label_from_description("Milk") is None
        assert extract_unit_label_from_description("kg of stuff") is None

    def test_unit_must_end_at_word_boundary(self):
        assert extract_unit_label_from_description("Size 2 large") is None

    @pytest.mark.parametrize("label,category", [
        ("KG", UnitCategory.WEIGHT),
        ("g", UnitCategory.WEIGHT),
        ("kilos", UnitCategory.WEIGHT),
        ("L", UnitCategory.VOLUME),
        ("ml", UnitCategory.VOLUME),
        ("EACH", UnitCategory.UNIT),
        ("CTN", UnitCategory.UNIT),
        (None, UnitCategory.UNKNOWN),
        ("", UnitCategory.UNKNOWN),
    ])
    def test_map_unit_category(self, label, category):
        assert map_unit_category(label) == category

    def test_synonym_table_is_read_only(self):
        with pytest.raises(TypeError):
            UNIT_SYNONYMS["TONNE"] = "KG"

    def test_cell_unit_tokens(self):
        assert extract_unit_label_from_text("8.42 KILO") == "KILO"
        assert extract_unit_label_from_text("2 unit") == "UNIT"
        assert extract_unit_label_from_text("3,5 kg") == "KG"
        assert extract_unit_label_from_text("2 apples") is None
        assert extract_unit_label_from_text("KILO") is None
        assert extract_unit_label_from_text(None) is None


class TestCurrency:
    """Tests for currency normalization and validity."""

    def test_normalize(self):
        assert normalize_currency_code(" aud ") == "AUD"
        assert normalize_currency_code("") is None
        assert normalize_currency_code(None) is None

    def test_valid(self):
        assert is_valid_currency_code("AUD") is True
        assert is_valid_currency_code("aud") is True

    @pytest.mark.parametrize("code", ["AU$", "AUDD", "A1D", "", None])
    def test_invalid(self, code):
        assert is_valid_currency_code(code) is False
