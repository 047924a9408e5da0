"""Suggestion fan-out: expand a seed query into candidate keyword phrases.

One base lookup, then optional alphabet and symbol suffix lookups issued
concurrently per option. Results are merged in a fixed order, simplified
Chinese entries are removed, and duplicates are dropped keeping the first hit.
"""

import asyncio
import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import urlparse

from keywordscope.core.exceptions import InvalidInputError, UpstreamUnavailableError
from keywordscope.schemas.research import CandidateKeyword, CandidateSource
from keywordscope.services.script_classifier import filter_simplified

logger = logging.getLogger(__name__)

ALPHABET: tuple[str, ...] = tuple("abcdefghijklmnopqrstuvwxyz")
SYMBOLS: tuple[str, ...] = ("?", "!", "@", "#", "$", "%", "&", "*", "+", "-")

URL_SEED_LIMIT = 5
_IGNORED_HOST_LABELS = {"www", "com", "org", "net", "edu", "gov", "io", "co"}


class AutocompleteService(Protocol):
    """Collaborator returning autocomplete suggestions for one query."""

    async def lookup(self, query: str, region: str, language: str) -> list[str]: ...


@dataclass(frozen=True)
class ExpansionOptions:
    """Which suffix sets to fan out over."""

    use_alphabet: bool = True
    use_symbols: bool = False


@dataclass
class ExpansionResult:
    """Merged, filtered, deduplicated suggestions with provenance."""

    candidates: list[CandidateKeyword] = field(default_factory=list)
    lookups_made: int = 0
    lookups_failed: int = 0
    estimated_processing_seconds: int = 0

    @property
    def suggestions(self) -> list[str]:
        return [candidate.text for candidate in self.candidates]


def estimate_processing_time(keywords: Sequence[str], with_volume: bool = False) -> int:
    """Rough seconds needed to enrich ``keywords``, shown to users before they wait."""
    count = len(keywords)
    estimate = 1.0 + count * 0.1
    if with_volume:
        estimate += count * 0.5 + math.ceil(count / 20) * 2
    return math.ceil(estimate)


def merge_candidates(
    groups: Iterable[tuple[CandidateSource, Iterable[str]]],
) -> list[CandidateKeyword]:
    """Flatten suggestion groups in order, drop simplified and duplicate entries."""
    merged: list[CandidateKeyword] = []
    seen: set[str] = set()

    for source, texts in groups:
        stripped = [text.strip() for text in texts if isinstance(text, str)]
        for text in filter_simplified(stripped):
            if not text or text in seen:
                continue
            seen.add(text)
            merged.append(CandidateKeyword(text=text, source=source))

    return merged


async def _soft_lookup(
    autocomplete: AutocompleteService,
    query: str,
    region: str,
    language: str,
) -> list[str] | None:
    """Run one expansion lookup; failures yield None instead of raising."""
    try:
        return list(await autocomplete.lookup(query, region, language))
    except Exception as e:
        logger.warning("Expansion lookup failed", extra={"query": query, "error": str(e)})
        return None


async def _fan_out(
    autocomplete: AutocompleteService,
    seed: str,
    suffixes: Sequence[str],
    region: str,
    language: str,
) -> list[list[str] | None]:
    return list(
        await asyncio.gather(
            *(
                _soft_lookup(autocomplete, f"{seed} {suffix}", region, language)
                for suffix in suffixes
            )
        )
    )


async def expand_suggestions(
    seed: str,
    region: str,
    language: str,
    options: ExpansionOptions | None = None,
    *,
    autocomplete: AutocompleteService,
) -> ExpansionResult:
    """Expand a seed query into candidate keywords.

    Args:
        seed: User-supplied seed query
        region: Country code passed to the autocomplete service
        language: Language code passed to the autocomplete service
        options: Alphabet / symbol fan-out switches
        autocomplete: Suggestion collaborator

    Returns:
        Expansion result; an empty candidate list is a valid outcome

    Raises:
        InvalidInputError: Seed is blank
        UpstreamUnavailableError: The base lookup failed
    """
    options = options or ExpansionOptions()
    seed = (seed or "").strip()
    if not seed:
        raise InvalidInputError("Seed query must not be empty")

    logger.info(
        "Expanding seed query",
        extra={
            "seed": seed,
            "region": region,
            "language": language,
            "use_alphabet": options.use_alphabet,
            "use_symbols": options.use_symbols,
        },
    )

    try:
        base_results = list(await autocomplete.lookup(seed, region, language))
    except Exception as e:
        logger.warning("Base autocomplete lookup failed", extra={"seed": seed, "error": str(e)})
        raise UpstreamUnavailableError("Autocomplete", str(e)) from e

    groups: list[tuple[CandidateSource, list[str]]] = [("base", base_results)]
    lookups_made = 1
    lookups_failed = 0

    if options.use_alphabet:
        alphabet_results = await _fan_out(autocomplete, seed, ALPHABET, region, language)
        lookups_made += len(alphabet_results)
        lookups_failed += sum(1 for result in alphabet_results if result is None)
        groups.extend(("alphabet", result or []) for result in alphabet_results)

    if options.use_symbols:
        symbol_results = await _fan_out(autocomplete, seed, SYMBOLS, region, language)
        lookups_made += len(symbol_results)
        lookups_failed += sum(1 for result in symbol_results if result is None)
        groups.extend(("symbol", result or []) for result in symbol_results)

    candidates = merge_candidates(groups)
    result = ExpansionResult(
        candidates=candidates,
        lookups_made=lookups_made,
        lookups_failed=lookups_failed,
        estimated_processing_seconds=estimate_processing_time(
            [candidate.text for candidate in candidates],
            with_volume=True,
        ),
    )

    logger.info(
        "Seed expansion complete",
        extra={
            "seed": seed,
            "suggestions": len(candidates),
            "lookups_made": lookups_made,
            "lookups_failed": lookups_failed,
        },
    )
    return result


def extract_url_seeds(url: str, limit: int = URL_SEED_LIMIT) -> list[str]:
    """Derive seed phrases from a page URL's host labels and path segments."""
    parsed = urlparse(url.strip())
    hostname = (parsed.hostname or "").lower()

    domain_parts = [
        part for part in hostname.split(".") if part and part not in _IGNORED_HOST_LABELS
    ]
    path_parts = [
        segment.replace("-", " ").replace("_", " ").strip()
        for segment in parsed.path.split("/")
        if len(segment) > 2
    ]

    seeds: list[str] = []
    for part in [*domain_parts, *path_parts]:
        if part and part not in seeds:
            seeds.append(part)
    return seeds[:limit]


async def expand_url_suggestions(
    url: str,
    region: str,
    language: str,
    *,
    autocomplete: AutocompleteService,
) -> ExpansionResult:
    """Collect suggestions for the phrases found in a URL.

    Lookups run one after another; individual failures are absorbed.

    Raises:
        InvalidInputError: URL is blank or yields no seed phrases
    """
    if not url or not url.strip():
        raise InvalidInputError("URL must not be empty")

    seeds = extract_url_seeds(url)
    if not seeds:
        raise InvalidInputError("Could not extract keywords from URL", {"url": url})

    logger.info("Expanding URL seeds", extra={"url": url, "seeds": seeds})

    groups: list[tuple[CandidateSource, list[str]]] = []
    lookups_failed = 0
    for seed in seeds:
        results = await _soft_lookup(autocomplete, seed, region, language)
        if results is None:
            lookups_failed += 1
        groups.append(("url", results or []))

    candidates = merge_candidates(groups)
    return ExpansionResult(
        candidates=candidates,
        lookups_made=len(seeds),
        lookups_failed=lookups_failed,
        estimated_processing_seconds=estimate_processing_time(
            [candidate.text for candidate in candidates],
            with_volume=True,
        ),
    )
