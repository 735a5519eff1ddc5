"""
Climatiq emission factor database client.
Searches remote factors over REST with retries; used ahead of the local tables
when CLIMATIQ_API_KEY is set.
"""
from typing import Any, Dict, List, Optional, Tuple

import requests
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import ConfigurationError, FactorDatabaseError
from core.logger import setup_logger
from core.schema import RemoteEmissionFactor

logger = setup_logger(__name__)

RETRYABLE_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)

SEARCH_LIMIT = 5


def parse_search_results(payload: Dict[str, Any]) -> List[RemoteEmissionFactor]:
    """
    Map a search response body onto factor records.

    Raises:
        ValueError: If the body has no results list or a record is malformed
    """
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        raise ValueError("Unexpected response structure: no 'results' list")
    try:
        return [RemoteEmissionFactor.model_validate(item) for item in results]
    except PydanticValidationError as e:
        raise ValueError(f"Malformed factor record: {e}")


def pick_best_factor(
    factors: List[RemoteEmissionFactor],
    category: str,
    subcategory: Optional[str] = None
) -> Optional[RemoteEmissionFactor]:
    """Prefer a factor whose category (and subcategory, if given) contains ours; else the first."""
    if not factors:
        return None

    cat = category.lower()
    sub = (subcategory or "").lower()
    for factor in factors:
        if cat not in factor.category.lower():
            continue
        if not sub or sub in (factor.subcategory or "").lower():
            return factor
    return factors[0]


class ClimatiqClient:
    """REST client for emission factor search."""

    def __init__(self):
        settings = get_settings()
        if not settings.climatiq_api_key:
            raise ConfigurationError(
                "CLIMATIQ_API_KEY environment variable not set",
                details={"required_key": "CLIMATIQ_API_KEY"}
            )

        self.api_url = settings.climatiq_api_url.rstrip("/")
        self.api_key = settings.climatiq_api_key
        self.region = settings.climatiq_region
        self.year = settings.climatiq_year
        self.timeout = settings.climatiq_timeout
        self._best: Dict[Tuple[str, Optional[str]], Optional[RemoteEmissionFactor]] = {}

        logger.info(f"Initialized Climatiq client, url: {self.api_url}, region: {self.region}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True
    )
    def _get(self, path: str, params: Dict[str, Any]) -> requests.Response:
        response = requests.get(
            f"{self.api_url}{path}",
            headers={"Authorization": f"Bearer {self.api_key}"},
            params=params,
            timeout=self.timeout
        )
        response.raise_for_status()
        return response

    def search_emission_factors(
        self,
        query: Optional[str] = None,
        category: Optional[str] = None,
        region: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = SEARCH_LIMIT
    ) -> List[RemoteEmissionFactor]:
        """
        Search the remote factor database.

        Raises:
            FactorDatabaseError: If the call fails after retries or the body is malformed
        """
        params = {
            "query": query,
            "category": category,
            "region": region or self.region,
            "year": year or self.year,
            "limit": limit,
        }
        params = {k: v for k, v in params.items() if v not in (None, "")}

        try:
            response = self._get("/emission-factors", params)
            return parse_search_results(response.json())

        except requests.exceptions.Timeout as e:
            logger.error(f"Factor search timeout after {self.timeout}s: {e}")
            raise FactorDatabaseError(
                f"Factor search timeout after {self.timeout}s",
                details={"api_url": self.api_url, "timeout": self.timeout}
            )

        except requests.exceptions.HTTPError as e:
            logger.error(f"Factor search HTTP error: {e}")
            raise FactorDatabaseError(
                f"Factor database returned HTTP error: {e}",
                details={
                    "api_url": self.api_url,
                    "status_code": getattr(e.response, "status_code", None),
                }
            )

        except requests.exceptions.RequestException as e:
            logger.error(f"Factor search failed: {e}")
            raise FactorDatabaseError(
                f"Failed to connect to factor database: {e}",
                details={"api_url": self.api_url, "error": str(e)}
            )

        except ValueError as e:
            logger.error(f"Error parsing factor search response: {e}")
            raise FactorDatabaseError(
                f"Factor search response parsing error: {e}",
                details={"error": str(e)}
            )

    def find_best_emission_factor(
        self,
        category: str,
        subcategory: Optional[str] = None
    ) -> Optional[RemoteEmissionFactor]:
        """
        Search by "category subcategory", then by category alone.
        Successful lookups, including empty ones, are cached per key.

        Raises:
            FactorDatabaseError: If a search call fails
        """
        key = (category, subcategory)
        if key in self._best:
            return self._best[key]

        queries = [f"{category} {subcategory or ''}".strip(), category]
        best = None
        for query in dict.fromkeys(queries):
            factors = self.search_emission_factors(query=query)
            if factors:
                best = pick_best_factor(factors, category, subcategory)
                break

        self._best[key] = best
        return best


# Singleton client instance; None when no API key is configured
_client: Optional[ClimatiqClient] = None


def get_factor_client() -> Optional[ClimatiqClient]:
    global _client
    if _client is None and get_settings().remote_factors_enabled:
        _client = ClimatiqClient()
    return _client


def reset_factor_client() -> None:
    """Reset client singleton (useful for testing)."""
    global _client
    _client = None
