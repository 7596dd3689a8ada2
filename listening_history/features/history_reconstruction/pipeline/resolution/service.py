"""
Candidate resolution - merges raw evidence records into one candidate per item.
"""

from collections.abc import Iterable

from listening_history.features.history_reconstruction.domain.models import (
    CandidateItem,
    EvidenceRecord,
    EvidenceTier,
    RecencyBucket,
)
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def effective_tier(record: EvidenceRecord) -> EvidenceTier | None:
    """
    The tier a record can actually support.

    Timestamp tiers without a usable timestamp fall back to whatever year
    or rank evidence the record still carries; None means nothing is left.
    """
    tier = record.tier
    if tier in (EvidenceTier.EXACT_PLAY, EvidenceTier.SAVED_DATE) and record.timestamp is None:
        tier = EvidenceTier.CURATED_YEAR
    if tier == EvidenceTier.CURATED_YEAR and record.year is None:
        tier = EvidenceTier.RANKED_ONLY
    demoted_to_rank = tier == EvidenceTier.RANKED_ONLY and record.tier != EvidenceTier.RANKED_ONLY
    if demoted_to_rank and record.rank is None:
        return None
    return tier


class CandidateResolver:
    """
    Keeps exactly one CandidateItem per external id.

    The highest tier wins and ties keep the first record seen. Rank and
    recency bucket are tracked independently of the tier decision: the
    best rank is always kept and the bucket is set once.
    """

    def __init__(self):
        self._candidates: dict[str, CandidateItem] = {}
        self.dropped = 0
        self.demoted = 0

    @property
    def candidates(self) -> dict[str, CandidateItem]:
        return self._candidates

    @property
    def total_ranked_items(self) -> int:
        return sum(1 for candidate in self._candidates.values() if candidate.rank is not None)

    def __len__(self) -> int:
        return len(self._candidates)

    def add(self, record: EvidenceRecord) -> CandidateItem | None:
        external_id = (record.external_id or "").strip()
        if not external_id:
            self.dropped += 1
            logger.debug("Dropping record without identifier", source=record.source, title=record.title)
            return None

        tier = effective_tier(record)
        if tier is None:
            self.dropped += 1
            logger.debug(
                "Dropping record without usable evidence",
                source=record.source,
                external_id=external_id,
            )
            return None
        if tier != record.tier:
            self.demoted += 1

        existing = self._candidates.get(external_id)
        if existing is None:
            candidate = self._build(external_id, record, tier)
            self._candidates[external_id] = candidate
        elif tier > existing.tier:
            candidate = self._build(external_id, record, tier)
            candidate.rank = existing.rank
            candidate.recency_bucket = existing.recency_bucket
            if not candidate.tags:
                candidate.tags = list(existing.tags)
            self._candidates[external_id] = candidate
        else:
            candidate = existing
            if tier == existing.tier == EvidenceTier.EXACT_PLAY:
                if record.timestamp not in candidate.exact_play_timestamps:
                    candidate.exact_play_timestamps.append(record.timestamp)

        self._absorb_side_evidence(candidate, record)
        return candidate

    def add_all(self, records: Iterable[EvidenceRecord]) -> int:
        added = 0
        for record in records:
            if self.add(record) is not None:
                added += 1
        return added

    def _build(self, external_id: str, record: EvidenceRecord, tier: EvidenceTier) -> CandidateItem:
        candidate = CandidateItem(
            external_id=external_id,
            title=record.title,
            artists=list(record.artists),
            duration_ms=record.duration_ms,
            tier=tier,
            tags=list(record.tags),
            album=record.album,
            image_url=record.image_url,
        )
        # Exact timestamp and year context are mutually exclusive per candidate
        if tier in (EvidenceTier.EXACT_PLAY, EvidenceTier.SAVED_DATE):
            candidate.timestamp = record.timestamp
        elif tier == EvidenceTier.CURATED_YEAR:
            candidate.year = record.year
        if tier == EvidenceTier.EXACT_PLAY:
            candidate.exact_play_timestamps.append(record.timestamp)
        return candidate

    @staticmethod
    def _absorb_side_evidence(candidate: CandidateItem, record: EvidenceRecord) -> None:
        if record.rank is not None and (candidate.rank is None or record.rank < candidate.rank):
            candidate.rank = record.rank

        if (
            candidate.recency_bucket == RecencyBucket.UNKNOWN
            and record.recency_bucket is not None
            and record.recency_bucket != RecencyBucket.UNKNOWN
        ):
            candidate.recency_bucket = record.recency_bucket

        if not candidate.tags and record.tags:
            candidate.tags = list(record.tags)


def resolve(records: Iterable[EvidenceRecord]) -> dict[str, CandidateItem]:
    """Resolve a stream of raw records from any sources into candidates."""
    resolver = CandidateResolver()
    resolver.add_all(records)
    return resolver.candidates
