"""
Domain models for history reconstruction.

Candidates and scores are rebuilt on every run; synthesized events are the
only records that reach durable storage, and pending batches are the only
state carried between invocations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum


class EvidenceTier(IntEnum):
    """Evidence fidelity, higher value wins when the same item shows up twice."""

    RANKED_ONLY = 1
    CURATED_YEAR = 2
    SAVED_DATE = 3
    EXACT_PLAY = 4


class RecencyBucket(str, Enum):
    RECENT = "recent"
    MID_TERM = "mid_term"
    LONG_TERM = "long_term"
    UNKNOWN = "unknown"

    @classmethod
    def from_time_range(cls, time_range: str | None) -> "RecencyBucket":
        return {
            "short_term": cls.RECENT,
            "medium_term": cls.MID_TERM,
            "long_term": cls.LONG_TERM,
        }.get(time_range or "", cls.UNKNOWN)


class SynthesisStrategy(str, Enum):
    EXACT_PASSTHROUGH = "exact_passthrough"
    DATE_CLUSTERED = "date_clustered"
    YEAR_UNIFORM = "year_uniform"
    RECENCY_BIASED = "recency_biased"

    @classmethod
    def for_tier(cls, tier: EvidenceTier) -> "SynthesisStrategy":
        return {
            EvidenceTier.EXACT_PLAY: cls.EXACT_PASSTHROUGH,
            EvidenceTier.SAVED_DATE: cls.DATE_CLUSTERED,
            EvidenceTier.CURATED_YEAR: cls.YEAR_UNIFORM,
            EvidenceTier.RANKED_ONLY: cls.RECENCY_BIASED,
        }[tier]


@dataclass(slots=True)
class EvidenceRecord:
    """One raw observation of an item from a single evidence source."""

    external_id: str | None
    title: str
    artists: list[str]
    duration_ms: int
    tier: EvidenceTier
    source: str
    timestamp: datetime | None = None
    year: int | None = None
    rank: int | None = None
    recency_bucket: RecencyBucket | None = None
    tags: list[str] = field(default_factory=list)
    album: str | None = None
    image_url: str | None = None


@dataclass(slots=True)
class CandidateItem:
    """An externally identified item after priority resolution."""

    external_id: str
    title: str
    artists: list[str]
    duration_ms: int
    tier: EvidenceTier
    timestamp: datetime | None = None
    year: int | None = None
    rank: int | None = None
    recency_bucket: RecencyBucket = RecencyBucket.UNKNOWN
    tags: list[str] = field(default_factory=list)
    exact_play_timestamps: list[datetime] = field(default_factory=list)
    album: str | None = None
    image_url: str | None = None

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else "Unknown Artist"

    @property
    def artist_display(self) -> str:
        return ", ".join(self.artists) if self.artists else "Unknown Artist"


@dataclass(slots=True, frozen=True)
class GenerationWindow:
    """Bounds and source tag shared by every event synthesized in one run."""

    start: datetime
    end: datetime
    source: str

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(
                f"Generation window start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp <= self.end

    def clamp(self, start: datetime, end: datetime) -> tuple[datetime, datetime] | None:
        """Intersect [start, end] with the window; None when nothing is left."""
        effective_start = max(start, self.start)
        effective_end = min(end, self.end)
        if effective_start >= effective_end:
            return None
        return effective_start, effective_end


@dataclass(slots=True)
class ScoredCandidate:
    item_id: int
    candidate: CandidateItem
    affinity: float


@dataclass(slots=True)
class SynthesizedEvent:
    item_id: int
    timestamp: datetime
    play_duration_ms: int
    completion_percentage: int
    source: str
    session_id: str | None
    strategy: SynthesisStrategy


@dataclass(slots=True)
class InsertResult:
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False

    def merge(self, other: "InsertResult") -> None:
        self.inserted += other.inserted
        self.skipped += other.skipped
        self.failed += other.failed
        self.cancelled = self.cancelled or other.cancelled


@dataclass(slots=True)
class PendingBatch:
    """Deferred curated-list work picked up by a later continuation call."""

    identifier: str
    year: int | None
    label: str


@dataclass(slots=True)
class CanonicalItem:
    id: int | None
    external_id: str | None
    title: str
    artist: str
    duration_ms: int | None = None
    album: str | None = None
    image_url: str | None = None


@dataclass(slots=True)
class DescriptiveMetadata:
    item_id: int
    external_id: str | None
    genres: list[str] = field(default_factory=list)
    album: str | None = None
    image_url: str | None = None
    source: str | None = None


@dataclass(slots=True)
class MaterializedItem:
    item_id: int
    created: bool
    artists_created: int = 0


@dataclass(slots=True)
class ReconstructionResult:
    items_materialized: int = 0
    items_created: int = 0
    artists_created: int = 0
    events_inserted: int = 0
    events_skipped: int = 0
    exact_plays_found: int = 0
    saved_items_found: int = 0
    curated_lists_processed: int = 0
    ranked_items_found: int = 0
    records_dropped: int = 0
    events_by_tier: dict[str, int] = field(default_factory=dict)
    pending_batches: list[PendingBatch] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    connected: bool = True
    fatal_error: str | None = None

    @classmethod
    def not_connected(cls) -> "ReconstructionResult":
        return cls(connected=False, errors=["Spotify account is not connected"])

    @classmethod
    def error(cls, message: str) -> "ReconstructionResult":
        return cls(fatal_error=message, errors=[message])

    @property
    def is_success(self) -> bool:
        return self.connected and self.fatal_error is None

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_batches)

    def count_event(self, tier: EvidenceTier, amount: int = 1) -> None:
        self.events_by_tier[tier.name] = self.events_by_tier.get(tier.name, 0) + amount


@dataclass(slots=True)
class PendingProcessResult:
    items_created: int = 0
    events_created: int = 0
    events_skipped: int = 0
    batches_processed: int = 0
    remaining: list[PendingBatch] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
