"""
OpenAI-compatible chat completions client using direct REST API calls.
Handles API calls with retries and JSON-object output.
"""
import json
from typing import Any, Dict, Optional

import requests
import urllib3
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import ConfigurationError, LLMError
from core.logger import setup_logger

logger = setup_logger(__name__)

# Transport failures worth retrying; HTTP and payload errors are not
RETRYABLE_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```) if present."""
    stripped = content.strip()
    if not stripped.startswith("```"):
        return stripped

    lines = stripped.split("\n")
    if lines[0].startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip() == "```":
        lines = lines[:-1]
    return "\n".join(lines).strip()


def extract_message_content(completion_data: Dict[str, Any]) -> str:
    """
    Pull the assistant message text out of a chat completions response.

    Raises:
        ValueError: If the response has no message content
    """
    try:
        content = completion_data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        content = None

    if not content:
        raise ValueError("Unexpected response structure: no content in 'choices'")
    return content


class OpenAIClient:
    """Wrapper for the chat completions REST API with retry logic."""

    def __init__(self):
        """Initialize REST API client."""
        settings = get_settings()
        if not settings.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY environment variable not set",
                details={"required_key": "OPENAI_API_KEY"}
            )

        self.api_url = settings.openai_api_url
        self.api_key = settings.openai_api_key
        self.model = settings.openai_model
        self.timeout = settings.openai_timeout
        self.verify_ssl = settings.openai_verify_ssl

        if not self.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        logger.info(f"Initialized OpenAI REST client with model: {self.model}, url: {self.api_url}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True
    )
    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }
        response = requests.post(
            self.api_url,
            headers=headers,
            data=json.dumps(payload),
            verify=self.verify_ssl,
            timeout=self.timeout
        )
        response.raise_for_status()
        return response

    def call_json(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = 0.1,
    ) -> Dict[str, Any]:
        """
        Call the chat completions API requesting a JSON object response.

        Args:
            system_prompt: System instruction
            user_message: User message with transaction data
            temperature: Model temperature (0.0-1.0)

        Returns:
            Parsed JSON object

        Raises:
            LLMError: If the call fails after retries or the reply is not JSON
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }

        response = None
        try:
            response = self._post(payload)
            completion_data = response.json()
            content = extract_message_content(completion_data)
            result = json.loads(strip_code_fences(content))

            if "usage" in completion_data:
                usage = completion_data["usage"]
                logger.debug(
                    f"Token usage - Input: {usage.get('prompt_tokens', 'N/A')}, "
                    f"Output: {usage.get('completion_tokens', 'N/A')}"
                )

            if not isinstance(result, dict):
                raise ValueError(f"Expected a JSON object, got {type(result).__name__}")

            return result

        except requests.exceptions.Timeout as e:
            logger.error(f"Classifier request timeout after {self.timeout}s: {e}")
            raise LLMError(
                f"Classifier request timeout after {self.timeout}s",
                details={"api_url": self.api_url, "timeout": self.timeout}
            )

        except requests.exceptions.HTTPError as e:
            logger.error(f"Classifier HTTP error: {e}")
            raise LLMError(
                f"Classifier returned HTTP error: {e}",
                details={
                    "api_url": self.api_url,
                    "status_code": getattr(e.response, "status_code", None),
                    "response_text": getattr(e.response, "text", None),
                }
            )

        except requests.exceptions.RequestException as e:
            logger.error(f"Classifier request failed: {e}")
            raise LLMError(
                f"Failed to connect to classifier: {str(e)}",
                details={"api_url": self.api_url, "error": str(e)}
            )

        except json.JSONDecodeError as e:
            raw_response = response.text if response is not None else "N/A"
            logger.error(f"Failed to parse classifier response as JSON: {e}")
            raise LLMError(
                f"Classifier returned invalid JSON: {e}",
                details={"raw_response": raw_response}
            )

        except ValueError as e:
            logger.error(f"Error parsing classifier response: {e}")
            raise LLMError(
                f"Classifier response parsing error: {str(e)}",
                details={"error": str(e)}
            )


# Singleton client instance
_client: Optional[OpenAIClient] = None


def get_client() -> OpenAIClient:
    """
    Get or create the client singleton.

    Raises:
        ConfigurationError: If no API key is configured
    """
    global _client
    if _client is None:
        _client = OpenAIClient()
    return _client


def reset_client() -> None:
    """Reset client singleton (useful for testing)."""
    global _client
    _client = None
