"""
Fuzzy matching of free-text industry sector names against the benchmark table.
Uses substring and Levenshtein similarity for short tokens.
"""
from typing import Any, Dict, Iterable, Optional

import Levenshtein

from core.config import get_settings
from core.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_SECTOR = "default"


def normalize_string(text: Optional[str]) -> str:
    """
    Normalize string for matching: lowercase, trim, collapse spaces,
    treat '_' and '-' as spaces.

    Args:
        text: Input string

    Returns:
        Normalized string
    """
    if not text or not isinstance(text, str):
        return ""

    return " ".join(text.lower().replace("_", " ").replace("-", " ").split())


def calculate_similarity(s1: str, s2: str) -> float:
    """
    Calculate Levenshtein similarity ratio between two strings.

    Args:
        s1: First string
        s2: Second string

    Returns:
        Similarity score (0.0 to 1.0)
    """
    s1_norm = normalize_string(s1)
    s2_norm = normalize_string(s2)

    if not s1_norm or not s2_norm:
        return 0.0

    try:
        return Levenshtein.ratio(s1_norm, s2_norm)
    except Exception as e:
        logger.warning(f"Levenshtein calculation failed for '{s1}' vs '{s2}': {e}")
        return 0.0


def match_sector(
    sector: Optional[str],
    known_sectors: Iterable[str],
    threshold: Optional[float] = None
) -> Dict[str, Any]:
    """
    Match a sector name against known benchmark sectors.

    Exact match first, then substring, then Levenshtein ratio for short
    names. Unmatched names resolve to the default sector.

    Args:
        sector: Sector name as supplied by the caller
        known_sectors: Sector keys of the benchmark table
        threshold: Minimum similarity threshold

    Returns:
        Match result with value and score
    """
    threshold = threshold or get_settings().fuzzy_match_threshold
    candidates = [s for s in known_sectors if s != DEFAULT_SECTOR]

    result = {
        "value": DEFAULT_SECTOR,
        "score": None,
        "matched": False
    }

    sector_norm = normalize_string(sector)
    if not sector_norm:
        return result

    if sector_norm in candidates:
        result.update(value=sector_norm, score=1.0, matched=True)
        return result

    best_name, best_score = None, 0.0
    for candidate in candidates:
        if len(sector_norm) >= 3 and (sector_norm in candidate or candidate in sector_norm):
            similarity = 1.0
        elif len(sector_norm) < 20:
            similarity = calculate_similarity(sector_norm, candidate)
        else:
            similarity = 0.0

        if similarity > best_score:
            best_name, best_score = candidate, similarity

    if best_name and best_score >= threshold:
        result.update(value=best_name, score=best_score, matched=True)
        logger.debug(f"Sector '{sector}' matched '{best_name}' (score={best_score:.2f})")
    else:
        logger.debug(f"Sector '{sector}' not matched, using default benchmark")

    return result
