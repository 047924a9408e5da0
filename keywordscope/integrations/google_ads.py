"""Google Ads keyword planner integration for search volume metrics."""

import asyncio
import logging
import re
from typing import Any

import httpx

from keywordscope.config import settings
from keywordscope.core.exceptions import (
    APIKeyMissingError,
    ExternalAPIError,
    InvalidInputError,
    RateLimitExceededError,
)
from keywordscope.services.volume_enrichment import RawVolumeRow

logger = logging.getLogger(__name__)

# Geo target constants for supported regions
LOCATION_CODES = {
    "TW": 2158,
    "HK": 2344,
    "US": 2840,
    "JP": 2392,
    "UK": 2826,
    "CN": 2156,
    "AU": 2036,
    "CA": 2124,
    "SG": 2702,
    "MY": 2458,
    "DE": 2276,
    "FR": 2250,
    "KR": 2410,
    "IN": 2356,
}

# Region names as shown in the UI
LOCATION_NAME_TO_CODE = {
    "台灣": "TW",
    "臺灣": "TW",
    "香港": "HK",
    "中國": "CN",
    "美國": "US",
    "日本": "JP",
    "英國": "UK",
    "澳洲": "AU",
    "加拿大": "CA",
    "新加坡": "SG",
    "馬來西亞": "MY",
    "德國": "DE",
    "法國": "FR",
    "韓國": "KR",
    "印度": "IN",
}

LANGUAGE_CODES = {
    "zh_TW": 1018,
    "zh_CN": 1017,
    "en": 1000,
    "ja": 1005,
    "ko": 1012,
    "ms": 1102,
    "fr": 1002,
    "de": 1001,
    "es": 1003,
}

# Google Ads competition level names mapped to the ordinal scale used downstream
COMPETITION_ORDINALS = {
    "UNSPECIFIED": 0,
    "UNKNOWN": 0,
    "LOW": 1,
    "MEDIUM": 2,
    "HIGH": 3,
}

_RETRY_HINT = re.compile(r"retry in (\d+) seconds?", re.IGNORECASE)


def get_location_code(region: str) -> int:
    """Convert a region code or display name to a Google Ads geo target id."""
    code = LOCATION_NAME_TO_CODE.get(region, region).upper()
    location = LOCATION_CODES.get(code)
    if location is None:
        raise InvalidInputError(f"Unsupported region: {region}", {"region": region})
    return location


def get_language_code(language: str) -> int:
    """Convert a language tag (e.g. "zh-TW", "en-US") to a Google Ads language id."""
    normalized = language.replace("-", "_")
    if normalized in LANGUAGE_CODES:
        return LANGUAGE_CODES[normalized]
    base = normalized.split("_")[0].lower()
    return LANGUAGE_CODES.get(base, LANGUAGE_CODES["en"])


class GoogleAdsClient:
    """Client for the Google Ads ``generateKeywordIdeas`` endpoint.

    Exchanges the configured refresh token for an access token on entry and
    retries rate-limited requests a bounded number of times.
    """

    TOKEN_URL = "https://oauth2.googleapis.com/token"
    BASE_URL = "https://googleads.googleapis.com"
    DEFAULT_RETRY_DELAY = 5.0

    def __init__(
        self,
        developer_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        customer_id: str | None = None,
        login_customer_id: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.developer_token = developer_token or settings.google_ads_developer_token
        self.client_id = client_id or settings.google_ads_client_id
        self.client_secret = client_secret or settings.google_ads_client_secret
        self.refresh_token = refresh_token or settings.google_ads_refresh_token
        self.customer_id = customer_id or settings.google_ads_customer_id
        self.login_customer_id = login_customer_id or settings.google_ads_login_customer_id
        self.timeout = timeout or settings.google_ads_timeout_seconds
        self.max_retries = max_retries or settings.google_ads_max_retries
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None

        if not all(
            (
                self.developer_token,
                self.client_id,
                self.client_secret,
                self.refresh_token,
                self.customer_id,
            )
        ):
            raise APIKeyMissingError("Google Ads")

    async def __aenter__(self) -> "GoogleAdsClient":
        self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client must be used as async context manager")
        return self._client

    @property
    def ideas_url(self) -> str:
        return (
            f"{self.BASE_URL}/{settings.google_ads_api_version}"
            f"/customers/{self.customer_id}:generateKeywordIdeas"
        )

    async def _get_access_token(self) -> str:
        if self._access_token:
            return self._access_token

        try:
            response = await self.client.post(
                self.TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            response.raise_for_status()
            token = response.json().get("access_token")
        except httpx.HTTPError as e:
            logger.warning("Google OAuth token exchange failed", extra={"error": str(e)})
            raise ExternalAPIError("Google OAuth", str(e)) from e

        if not token:
            raise ExternalAPIError("Google OAuth", "Token response had no access_token")
        self._access_token = str(token)
        return self._access_token

    async def _post_ideas(self, payload: dict[str, Any]) -> dict[str, Any]:
        access_token = await self._get_access_token()
        headers = {
            "Authorization": f"Bearer {access_token}",
            "developer-token": str(self.developer_token),
            "Content-Type": "application/json",
        }
        if self.login_customer_id:
            headers["login-customer-id"] = str(self.login_customer_id)

        try:
            response = await self.client.post(self.ideas_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Google Ads HTTP error", extra={"error": str(e)})
            raise ExternalAPIError("Google Ads", str(e)) from e

        if response.status_code == 429:
            match = _RETRY_HINT.search(response.text)
            retry_after = float(match.group(1)) + 0.5 if match else None
            raise RateLimitExceededError("Google Ads", retry_after_seconds=retry_after)

        if response.status_code >= 400:
            logger.warning(
                "Google Ads API error",
                extra={"status": response.status_code, "body": response.text[:500]},
            )
            raise ExternalAPIError(
                "Google Ads",
                f"API error: {response.status_code} - {response.text[:500]}",
            )

        return response.json()

    async def fetch_batch(
        self,
        keywords: list[str],
        region: str,
        language: str,
    ) -> list[RawVolumeRow]:
        """Fetch keyword ideas (with metrics) for one batch of seed keywords.

        Args:
            keywords: Seed keywords for this batch
            region: Region code or display name
            language: Language tag

        Returns:
            Raw rows; the caller normalizes and filters them
        """
        if not keywords:
            return []

        location_code = get_location_code(region)
        language_code = get_language_code(language)
        payload = {
            "language": f"languageConstants/{language_code}",
            "geoTargetConstants": [f"geoTargetConstants/{location_code}"],
            "includeAdultKeywords": False,
            "keywordPlanNetwork": "GOOGLE_SEARCH",
            "keywordSeed": {"keywords": keywords},
        }

        logger.info(
            "Google Ads keyword ideas request",
            extra={"keyword_count": len(keywords), "location": location_code, "language": language_code},
        )

        for attempt in range(1, self.max_retries + 1):
            try:
                data = await self._post_ideas(payload)
                break
            except RateLimitExceededError as e:
                if attempt == self.max_retries:
                    raise
                delay = e.retry_after_seconds or self.DEFAULT_RETRY_DELAY
                logger.warning(
                    "Google Ads rate limited; retrying",
                    extra={"attempt": attempt, "max_attempts": self.max_retries, "delay_s": delay},
                )
                await asyncio.sleep(delay)
        else:
            raise RuntimeError("Retry loop exhausted unexpectedly for Google Ads request")

        return [self._to_row(idea) for idea in data.get("results", []) if idea.get("text")]

    @staticmethod
    def _to_row(idea: dict[str, Any]) -> RawVolumeRow:
        metrics = idea.get("keywordIdeaMetrics") or {}
        competition = metrics.get("competition")
        if isinstance(competition, str):
            competition = COMPETITION_ORDINALS.get(competition.upper(), 0)

        return RawVolumeRow(
            text=str(idea.get("text", "")),
            raw_competition=competition,
            raw_competition_index=metrics.get("competitionIndex"),
            raw_cpc_micros=metrics.get("lowTopOfPageBidMicros"),
            raw_volume=metrics.get("avgMonthlySearches"),
        )
