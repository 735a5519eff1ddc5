"""
Deterministic keyword rules used when the remote classifier is unavailable.
"""
import re
from typing import List, NamedTuple, Optional, Pattern, Tuple

from core.logger import setup_logger
from core.schema import ClassificationResult

logger = setup_logger(__name__)


class KeywordRule(NamedTuple):
    keywords: Tuple[str, ...]
    category: str
    subcategory: str
    scope: int
    confidence: float
    # (keywords, subcategory) pairs that refine the default subcategory
    refinements: Tuple[Tuple[Tuple[str, ...], str], ...] = ()


# Checked in order; the first rule with a matching keyword wins
KEYWORD_RULES: List[KeywordRule] = [
    KeywordRule(
        ("fuel", "diesel", "petrol", "gasoline", "shell", "bp", "total"),
        "Fuel and Energy", "Vehicle Fuel", 1, 0.9,
    ),
    KeywordRule(
        ("electricity", "gas", "energy", "british gas", "edf", "sse", "enel", "heating"),
        "Energy", "Electricity", 2, 0.85,
        refinements=((("gas", "heating"), "Natural Gas"),),
    ),
    KeywordRule(
        ("flight", "airline", "ryanair", "lufthansa", "easyjet", "eurostar"),
        "Business Travel", "Air Travel", 3, 0.9,
    ),
    KeywordRule(
        ("hotel", "hilton", "marriott"),
        "Business Travel", "Accommodation", 3, 0.85,
    ),
    KeywordRule(
        ("uber", "taxi"),
        "Business Travel", "Ground Transport", 3, 0.8,
    ),
    KeywordRule(
        ("office space", "rent", "wework"),
        "Facilities", "Office Space", 3, 0.7,
    ),
    KeywordRule(
        ("office", "depot", "paper", "supplies"),
        "Purchased Goods", "Office Supplies", 3, 0.75,
    ),
    KeywordRule(
        ("microsoft", "google", "aws", "workspace", "cloud"),
        "Purchased Services", "IT Services", 3, 0.8,
    ),
    KeywordRule(
        ("waste", "management"),
        "Waste", "Waste Treatment", 3, 0.85,
    ),
    KeywordRule(
        ("shipping", "dhl", "delivery"),
        "Transportation", "Freight", 3, 0.8,
    ),
]

DEFAULT_RULE_RESULT = {
    "category": "Other",
    "subcategory": "Miscellaneous",
    "scope": 3,
    "confidence": 0.5,
}


def _keyword_pattern(keywords: Tuple[str, ...]) -> Pattern:
    # Whole words plus a plural suffix: "airlines" matches, "gasket" and "rental" do not
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})(?:s|es)?\b", re.IGNORECASE)


class RuleBasedClassifier:
    """Keyword-table classifier. Pure and deterministic."""

    def __init__(self, rules: Optional[List[KeywordRule]] = None):
        self.rules = rules if rules is not None else KEYWORD_RULES
        self._compiled = [
            (rule, _keyword_pattern(rule.keywords),
             [(_keyword_pattern(words), sub) for words, sub in rule.refinements])
            for rule in self.rules
        ]

    def classify(self, description: str, amount: float) -> ClassificationResult:
        """
        Classify by the first rule whose keywords occur in the description.

        Args:
            description: Transaction description or merchant name
            amount: Transaction amount (unused by the rules)

        Returns:
            ClassificationResult with ai_classified=False
        """
        text = description or ""
        for rule, pattern, refinements in self._compiled:
            match = pattern.search(text)
            if not match:
                continue

            subcategory = rule.subcategory
            for refinement_pattern, refined in refinements:
                if refinement_pattern.search(text):
                    subcategory = refined
                    break

            return ClassificationResult(
                category=rule.category,
                subcategory=subcategory,
                scope=rule.scope,
                confidence=rule.confidence,
                reasoning=f"Rule-based classification (matched '{match.group(0).lower()}')",
                ai_classified=False,
            )

        logger.debug(f"No keyword rule matched '{text}'")
        return ClassificationResult(
            **DEFAULT_RULE_RESULT,
            reasoning="Rule-based classification (no keyword matched)",
            ai_classified=False,
        )
