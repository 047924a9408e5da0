"""Google Autocomplete integration for keyword suggestions."""

import logging
from typing import Any

import httpx

from keywordscope.config import settings
from keywordscope.core.exceptions import ExternalAPIError, RateLimitExceededError

logger = logging.getLogger(__name__)


class GoogleAutocompleteClient:
    """Client for the public Google suggest endpoint.

    The ``chrome`` client returns ``[query, suggestions, descriptions, ?, metadata]``
    where ``metadata["google:suggestrelevance"]`` scores each suggestion.
    """

    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        min_relevance: int | None = None,
    ) -> None:
        self.base_url = base_url or settings.autocomplete_url
        self.timeout = timeout or settings.autocomplete_timeout_seconds
        self.min_relevance = (
            settings.autocomplete_min_relevance if min_relevance is None else min_relevance
        )
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GoogleAutocompleteClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.USER_AGENT},
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client must be used as async context manager")
        return self._client

    async def lookup(self, query: str, region: str, language: str) -> list[str]:
        """Fetch autocomplete suggestions for a query.

        Args:
            query: Text typed into the search box
            region: Country code (gl parameter), e.g. "TW"
            language: Interface language (hl parameter), e.g. "zh-TW"

        Returns:
            Suggestions, filtered by relevance when scores are available
        """
        params = {"client": "chrome", "q": query, "gl": region, "hl": language}

        try:
            response = await self.client.get(self.base_url, params=params)

            if response.status_code == 429:
                logger.warning("Autocomplete rate limit hit", extra={"query": query})
                raise RateLimitExceededError("Google Autocomplete")

            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning("Autocomplete HTTP error", extra={"query": query, "error": str(e)})
            raise ExternalAPIError("Google Autocomplete", str(e)) from e
        except ValueError as e:
            raise ExternalAPIError("Google Autocomplete", f"Invalid JSON: {e}") from e

        return self._parse_suggestions(data, query)

    def _parse_suggestions(self, data: Any, query: str) -> list[str]:
        if not isinstance(data, list) or len(data) < 2 or not isinstance(data[1], list):
            logger.info("No valid suggestions found", extra={"query": query})
            return []

        suggestions = [str(item) for item in data[1] if isinstance(item, str)]

        metadata = data[4] if len(data) > 4 and isinstance(data[4], dict) else {}
        scores = metadata.get("google:suggestrelevance")
        if not isinstance(scores, list):
            return suggestions

        if len(scores) != len(suggestions):
            logger.warning(
                "Suggestion and relevance lengths differ",
                extra={"query": query, "suggestions": len(suggestions), "scores": len(scores)},
            )
            return suggestions

        return [
            suggestion
            for suggestion, score in zip(suggestions, scores)
            if isinstance(score, int | float) and score >= self.min_relevance
        ]
