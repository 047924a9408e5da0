"""Research record schemas."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

CandidateSource = Literal["base", "alphabet", "symbol", "url", "manual"]

ClusterMap = dict[str, list[str]]


class Competition(str, Enum):
    """Canonical advertiser competition level."""

    UNKNOWN = "UNKNOWN"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class CandidateKeyword(BaseModel):
    """Keyword phrase discovered during suggestion fan-out."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    source: CandidateSource = "manual"

    @field_validator("text", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class VolumeItem(BaseModel):
    """Keyword with normalized market-volume metrics."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    search_volume: int = Field(default=0, ge=0)
    competition: Competition = Competition.UNKNOWN
    competition_index: int = Field(default=0, ge=0, le=100)
    cpc: float | None = None


class ClusterPayload(BaseModel):
    """Expected JSON shape of a clustering response."""

    model_config = ConfigDict(strict=True)

    clusters: dict[str, list[str]]


class ClusterVolume(BaseModel):
    """One topic with its keywords' metrics and their summed search volume."""

    name: str
    keywords: list[VolumeItem]
    total_volume: int


class ResearchRecord(BaseModel):
    """Aggregate tying one seed query to its candidates, volumes, and clusters."""

    id: str
    seed_query: str
    region: str
    language: str
    candidates: list[CandidateKeyword] = Field(default_factory=list)
    volumes: list[VolumeItem] = Field(default_factory=list)
    clusters: ClusterMap | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def candidate_texts(self) -> list[str]:
        return [candidate.text for candidate in self.candidates]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def clusters_with_volume(self) -> list[ClusterVolume] | None:
        """Clusters joined with stored volumes; keywords without metrics count as 0."""
        if self.clusters is None:
            return None
        by_text = {item.text.strip().casefold(): item for item in self.volumes}
        grouped: list[ClusterVolume] = []
        for name, texts in self.clusters.items():
            items = [by_text.get(text.strip().casefold()) or VolumeItem(text=text) for text in texts]
            grouped.append(
                ClusterVolume(
                    name=name,
                    keywords=items,
                    total_volume=sum(item.search_volume for item in items),
                )
            )
        return grouped


class ResearchListItem(BaseModel):
    """Lightweight research summary for list views."""

    id: str
    seed_query: str
    region: str
    language: str
    candidate_count: int
    volume_count: int
    cluster_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ResearchRecord) -> "ResearchListItem":
        return cls(
            id=record.id,
            seed_query=record.seed_query,
            region=record.region,
            language=record.language,
            candidate_count=len(record.candidates),
            volume_count=len(record.volumes),
            cluster_count=len(record.clusters or {}),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


# API request / response schemas


class ResearchCreateRequest(BaseModel):
    """Start a research record from a seed query or a URL."""

    seed_query: str | None = Field(default=None, max_length=200)
    url: str | None = None
    region: str = "TW"
    language: str = "zh-TW"
    use_alphabet: bool = True
    use_symbols: bool = False


class VolumeEnrichRequest(BaseModel):
    """Enrich the record's candidates with volume metrics."""

    max_count: int | None = Field(default=None, ge=1, le=1000)


class ClusterRequest(BaseModel):
    """Cluster the record's enriched keywords."""

    model: str | None = None
    max_keywords: int | None = Field(default=None, ge=1, le=200)
    clear_on_failure: bool = False


class BatchErrorResponse(BaseModel):
    """Failure of one volume batch."""

    batch_index: int
    keywords: list[str]
    error: str


class ResearchResponse(BaseModel):
    """Research record plus stage diagnostics."""

    research: ResearchRecord
    estimated_processing_seconds: int | None = None
    batch_errors: list[BatchErrorResponse] = Field(default_factory=list)
