"""
Unit tests for sector name matching.
"""
from core.analytics import SECTOR_AVERAGE_INTENSITY
from core.matching import calculate_similarity, match_sector, normalize_string

SECTORS = list(SECTOR_AVERAGE_INTENSITY.keys())


def test_normalize_string():
    assert normalize_string("  Financial_Services-EU ") == "financial services eu"
    assert normalize_string(None) == ""


def test_calculate_similarity():
    assert calculate_similarity("Retail", "retail") == 1.0
    assert calculate_similarity("", "retail") == 0.0
    assert 0.8 < calculate_similarity("manufacturng", "manufacturing") < 1.0


def test_exact_match_is_case_insensitive():
    result = match_sector("Technology", SECTORS)
    assert result == {"value": "technology", "score": 1.0, "matched": True}


def test_substring_match():
    result = match_sector("Energy & Utilities", SECTORS)
    assert result["value"] == "energy"
    assert result["matched"]


def test_typo_match():
    assert match_sector("helthcare", SECTORS)["value"] == "healthcare"


def test_unknown_sector_resolves_to_default():
    result = match_sector("space tourism", SECTORS)
    assert result["value"] == "default"
    assert not result["matched"]


def test_blank_sector():
    assert match_sector("", SECTORS)["value"] == "default"
