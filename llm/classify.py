"""
Transaction classification with a remote model and a local rule fallback.

Any object with `classify(description, amount) -> ClassificationResult`
is a classifier. ResilientClassifier composes a remote classifier with the
rule-based one and never raises.
"""
from typing import Optional, Protocol

from core.config import get_settings
from core.exceptions import LLMError
from core.logger import setup_logger
from core.schema import DEFAULT_CATEGORY, ClassificationResult
from llm.client import OpenAIClient, get_client
from llm.fallback import RuleBasedClassifier
from llm.prompts import build_system_prompt, build_user_message

logger = setup_logger(__name__)


class Classifier(Protocol):
    def classify(self, description: str, amount: float) -> ClassificationResult:
        ...


class LLMClassifier:
    """Remote chat-completions classifier."""

    def __init__(self, client: Optional[OpenAIClient] = None, temperature: float = 0.1):
        self.client = client or get_client()
        self.temperature = temperature

    def classify(self, description: str, amount: float) -> ClassificationResult:
        """
        Classify one transaction with the remote model.

        Partial responses are normalized field by field.

        Raises:
            LLMError: If the call fails or the response is not a JSON object
        """
        response = self.client.call_json(
            system_prompt=build_system_prompt(),
            user_message=build_user_message(description, amount),
            temperature=self.temperature,
        )
        if not isinstance(response, dict):
            raise LLMError(
                "Classifier response is not an object",
                details={"response": repr(response)}
            )
        response.pop("ai_classified", None)
        return ClassificationResult(**response, ai_classified=True)


class ResilientClassifier:
    """
    Remote classifier with a rule-based fallback.

    Falls back when the remote classifier is absent, raises, or cannot
    name a category. Never raises.
    """

    def __init__(
        self,
        primary: Optional[Classifier] = None,
        fallback: Optional[Classifier] = None
    ):
        self.primary = primary
        self.fallback = fallback or RuleBasedClassifier()

    def classify(self, description: str, amount: float) -> ClassificationResult:
        if self.primary is not None:
            try:
                result = self.primary.classify(description, amount)
                if result.category != DEFAULT_CATEGORY:
                    return result
                logger.warning(f"Remote classifier returned no category for '{description}', using rules")
            except Exception as e:
                logger.warning(f"Remote classification failed for '{description}', using rules: {e}")

        try:
            return self.fallback.classify(description, amount)
        except Exception as e:
            logger.error(f"Fallback classification failed for '{description}': {e}", exc_info=True)
            return ClassificationResult(
                confidence=0.1,
                reasoning="Classification unavailable, manual review required",
            )


# Singleton classifier instance
_classifier: Optional[ResilientClassifier] = None


def get_classifier() -> ResilientClassifier:
    """
    Get or create the classifier singleton.
    Without an API key only the rules are used.
    """
    global _classifier
    if _classifier is None:
        primary = None
        if get_settings().remote_classifier_enabled:
            primary = LLMClassifier()
        else:
            logger.info("OPENAI_API_KEY not set, using rule-based classification only")
        _classifier = ResilientClassifier(primary=primary)
    return _classifier


def reset_classifier() -> None:
    """Reset classifier singleton (useful for testing)."""
    global _classifier
    _classifier = None
