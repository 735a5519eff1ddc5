"""
Unit tests for keyword rules, the remote classifier adapter and the fallback chain.
"""
import pytest

from core.exceptions import LLMError
from core.schema import ClassificationResult
from llm.classify import LLMClassifier, ResilientClassifier, get_classifier
from llm.client import extract_message_content, strip_code_fences
from llm.fallback import RuleBasedClassifier
from llm.prompts import build_user_message


class StubClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def call_json(self, system_prompt, user_message, temperature=0.1):
        self.calls.append(user_message)
        if self.error:
            raise self.error
        return self.response


class StubClassifier:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def classify(self, description, amount):
        if self.error:
            raise self.error
        return self.result


@pytest.mark.parametrize("description, category, subcategory, scope", [
    ("Shell Fuel", "Fuel and Energy", "Vehicle Fuel", 1),
    ("EDF Energy", "Energy", "Electricity", 2),
    ("British Gas heating", "Energy", "Natural Gas", 2),
    ("Ryanair", "Business Travel", "Air Travel", 3),
    ("Hilton London", "Business Travel", "Accommodation", 3),
    ("Uber trip", "Business Travel", "Ground Transport", 3),
    ("WeWork office space", "Facilities", "Office Space", 3),
    ("Office Depot", "Purchased Goods", "Office Supplies", 3),
    ("AWS invoice", "Purchased Services", "IT Services", 3),
    ("DHL Express", "Transportation", "Freight", 3),
])
def test_keyword_rules(description, category, subcategory, scope):
    result = RuleBasedClassifier().classify(description, 10.0)

    assert result.category == category
    assert result.subcategory == subcategory
    assert result.scope == scope
    assert result.ai_classified is False
    assert "Rule-based classification" in result.reasoning


def test_unmatched_description_gets_default_rule():
    result = RuleBasedClassifier().classify("Zephyr Consulting Ltd", 10.0)

    assert result.category == "Other"
    assert result.subcategory == "Miscellaneous"
    assert result.scope == 3
    assert result.confidence == 0.5


def test_rules_require_word_start():
    """'bp' must not match inside another word."""
    result = RuleBasedClassifier().classify("Xbpm Widgets", 10.0)
    assert result.category == "Other"


@pytest.mark.parametrize("description", ["Gasket replacement", "Car rental Milan", "Hoteliers guild dues"])
def test_rules_require_whole_words(description):
    assert RuleBasedClassifier().classify(description, 10.0).category == "Other"


def test_rules_accept_plurals():
    result = RuleBasedClassifier().classify("Budget airlines booking", 80.0)
    assert result.subcategory == "Air Travel"
    assert "airlines" in result.reasoning


def test_remote_result_is_normalized():
    """Partial responses keep the usable fields and default the rest."""
    client = StubClient(response={"category": "Business Travel", "scope": "7", "confidence": 1.7})
    result = LLMClassifier(client=client).classify("Ryanair", 150.0)

    assert result.category == "Business Travel"
    assert result.subcategory is None
    assert result.scope == 3
    assert result.confidence == 1.0
    assert result.ai_classified is True
    assert '"amount": 150.0' in client.calls[0]


def test_remote_non_object_response_raises():
    with pytest.raises(LLMError):
        LLMClassifier(client=StubClient(response=["Energy"])).classify("EDF", 1.0)


def test_resilient_falls_back_on_remote_error():
    classifier = ResilientClassifier(primary=LLMClassifier(client=StubClient(error=LLMError("timeout"))))
    result = classifier.classify("Shell Fuel", 45.0)

    assert result.category == "Fuel and Energy"
    assert result.ai_classified is False


def test_resilient_falls_back_on_missing_category():
    client = StubClient(response={"category": "", "scope": 1})
    result = ResilientClassifier(primary=LLMClassifier(client=client)).classify("Hilton", 180.0)

    assert result.subcategory == "Accommodation"
    assert result.ai_classified is False


def test_resilient_prefers_remote_result():
    remote = ClassificationResult(category="Energy", subcategory="Electricity", scope=2, ai_classified=True)
    result = ResilientClassifier(primary=StubClassifier(result=remote)).classify("Shell", 10.0)
    assert result is remote


def test_resilient_never_raises():
    classifier = ResilientClassifier(
        primary=StubClassifier(error=RuntimeError("boom")),
        fallback=StubClassifier(error=RuntimeError("boom")),
    )
    result = classifier.classify("anything", 1.0)

    assert result.category == "Unknown"
    assert result.confidence == 0.1


def test_get_classifier_without_key_uses_rules_only():
    classifier = get_classifier()
    assert classifier.primary is None
    assert get_classifier() is classifier


def test_get_classifier_with_key_uses_remote(monkeypatch):
    from core.config import reset_settings
    from llm.classify import reset_classifier

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    reset_settings()
    reset_classifier()

    assert isinstance(get_classifier().primary, LLMClassifier)


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"scope": 1}\n```') == '{"scope": 1}'
    assert strip_code_fences(' {"scope": 1} ') == '{"scope": 1}'


def test_extract_message_content():
    assert extract_message_content({"choices": [{"message": {"content": "{}"}}]}) == "{}"
    with pytest.raises(ValueError):
        extract_message_content({"choices": []})


def test_user_message_carries_transaction():
    message = build_user_message("Café Nero", 4.5)
    assert "Café Nero" in message
    assert "4.5" in message
