"""Volume enrichment: batched, paced search-volume lookups.

Candidates are capped, split into fixed-size batches and sent to the volume
data service one batch at a time. Upstream rows are normalized into
``VolumeItem`` objects and deduplicated across batches.
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from keywordscope.core.exceptions import VolumeEnrichmentError
from keywordscope.schemas.research import Competition, VolumeItem
from keywordscope.services.script_classifier import is_simplified

logger = logging.getLogger(__name__)

DEFAULT_MAX_COUNT = 60
BATCH_SIZE = 20
MIN_PACING_SECONDS = 0.1
DEFAULT_PACING_SECONDS = 0.25
MICROS_PER_UNIT = 1_000_000

COMPETITION_BY_ORDINAL: dict[int, Competition] = {
    0: Competition.UNKNOWN,
    1: Competition.LOW,
    2: Competition.MEDIUM,
    3: Competition.HIGH,
    4: Competition.VERY_HIGH,
}


@dataclass(frozen=True)
class RawVolumeRow:
    """One keyword row as returned by a volume data service."""

    text: str
    raw_competition: Any = None
    raw_competition_index: Any = None
    raw_cpc_micros: Any = None
    raw_volume: Any = None


class VolumeDataService(Protocol):
    """Collaborator returning raw volume rows for one batch of keywords."""

    async def fetch_batch(
        self,
        keywords: list[str],
        region: str,
        language: str,
    ) -> list[RawVolumeRow]: ...


@dataclass(frozen=True)
class BatchError:
    """A volume batch whose service call failed."""

    batch_index: int
    keywords: list[str]
    error: str

    def __str__(self) -> str:
        return f"batch {self.batch_index}: {self.error}"


@dataclass
class VolumeEnrichmentResult:
    """Enriched items plus any batch-level failures."""

    items: list[VolumeItem] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    batches_total: int = 0
    duration_seconds: float = 0.0

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def normalize_competition(raw: Any) -> Competition:
    """Map an ordinal competition signal (0-4) to the canonical enum."""
    number = _to_number(raw)
    if number is None or not number.is_integer():
        return Competition.UNKNOWN
    return COMPETITION_BY_ORDINAL.get(int(number), Competition.UNKNOWN)


def normalize_competition_index(raw: Any) -> int:
    number = _to_number(raw)
    if number is None:
        return 0
    return min(100, max(0, round(number)))


def normalize_cpc(raw_micros: Any) -> float | None:
    """Convert micro-currency CPC to currency units, rounded to cents."""
    number = _to_number(raw_micros)
    if number is None:
        return None
    return round(number / MICROS_PER_UNIT, 2)


def normalize_volume(raw: Any) -> int:
    """Coerce a volume metric to a non-negative int; absent means 0."""
    number = _to_number(raw)
    if number is None:
        return 0
    return max(0, int(number))


def normalize_row(row: RawVolumeRow) -> VolumeItem:
    return VolumeItem(
        text=row.text.strip(),
        search_volume=normalize_volume(row.raw_volume),
        competition=normalize_competition(row.raw_competition),
        competition_index=normalize_competition_index(row.raw_competition_index),
        cpc=normalize_cpc(row.raw_cpc_micros),
    )


def prepare_candidates(candidates: Sequence[str], max_count: int) -> list[str]:
    """Deduplicate (exact match after trimming) and cap, preserving order."""
    prepared: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        text = candidate.strip() if isinstance(candidate, str) else ""
        if not text or text in seen:
            continue
        seen.add(text)
        prepared.append(text)
        if len(prepared) >= max_count:
            break
    return prepared


def partition(keywords: Sequence[str], batch_size: int) -> list[list[str]]:
    return [list(keywords[i : i + batch_size]) for i in range(0, len(keywords), batch_size)]


async def enrich_volumes(
    candidates: Sequence[str],
    region: str,
    language: str,
    *,
    volume_service: VolumeDataService,
    max_count: int = DEFAULT_MAX_COUNT,
    batch_size: int = BATCH_SIZE,
    pacing_seconds: float = DEFAULT_PACING_SECONDS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> VolumeEnrichmentResult:
    """Fetch volume metrics for at most ``max_count`` candidates.

    Args:
        candidates: Keyword texts in priority order
        region: Region code for the volume service
        language: Language code for the volume service
        volume_service: Batch volume collaborator
        max_count: Cost cap on the number of keywords enriched
        batch_size: Keywords per service call
        pacing_seconds: Delay before every batch after the first
        sleep: Awaitable delay, replaceable in tests

    Returns:
        Result with items and per-batch errors (partial when errors is non-empty)

    Raises:
        VolumeEnrichmentError: Every batch failed
    """
    if max_count < 1:
        raise ValueError("max_count must be >= 1")
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    pacing_seconds = max(pacing_seconds, MIN_PACING_SECONDS)

    keywords = prepare_candidates(candidates, max_count)
    if not keywords:
        return VolumeEnrichmentResult()

    allowed = set(keywords)
    batches = partition(keywords, batch_size)
    result = VolumeEnrichmentResult(batches_total=len(batches))
    emitted: set[str] = set()

    logger.info(
        "Volume enrichment starting",
        extra={
            "candidates": len(candidates),
            "keywords": len(keywords),
            "batches": len(batches),
            "region": region,
            "language": language,
        },
    )

    started = time.perf_counter()
    for batch_index, batch in enumerate(batches):
        if batch_index > 0:
            await sleep(pacing_seconds)

        try:
            rows = await volume_service.fetch_batch(batch, region, language)
        except Exception as e:
            logger.warning(
                "Volume batch failed",
                extra={"batch_num": batch_index + 1, "batch_size": len(batch), "error": str(e)},
            )
            result.errors.append(BatchError(batch_index=batch_index, keywords=batch, error=str(e)))
            continue

        for row in rows:
            text = (row.text or "").strip()
            if not text or text in emitted or text not in allowed:
                continue
            if is_simplified(text):
                continue
            result.items.append(normalize_row(row))
            emitted.add(text)

    result.duration_seconds = round(time.perf_counter() - started, 3)

    if len(result.errors) == len(batches):
        logger.error(
            "All volume batches failed",
            extra={"batches": len(batches), "duration_s": result.duration_seconds},
        )
        raise VolumeEnrichmentError(result.errors)

    logger.info(
        "Volume enrichment complete",
        extra={
            "enriched": len(result.items),
            "failed_batches": len(result.errors),
            "batches": len(batches),
            "duration_s": result.duration_seconds,
        },
    )
    return result
