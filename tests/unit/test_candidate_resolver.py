from datetime import UTC, datetime

from listening_history.features.history_reconstruction.domain.models import (
    EvidenceRecord,
    EvidenceTier,
    RecencyBucket,
)
from listening_history.features.history_reconstruction.pipeline.resolution.service import (
    CandidateResolver,
    effective_tier,
    resolve,
)

T0 = datetime(2024, 5, 1, 8, 30, tzinfo=UTC)


def _record(external_id="track-1", tier=EvidenceTier.RANKED_ONLY, **overrides):
    fields = {
        "external_id": external_id,
        "title": "Song",
        "artists": ["Artist"],
        "duration_ms": 200_000,
        "tier": tier,
        "source": tier.name.lower(),
    }
    fields.update(overrides)
    return EvidenceRecord(**fields)


def test_higher_tier_wins_even_when_seen_last():
    candidates = resolve(
        [
            _record(tier=EvidenceTier.CURATED_YEAR, year=2021),
            _record(tier=EvidenceTier.SAVED_DATE, timestamp=T0),
        ]
    )

    candidate = candidates["track-1"]
    assert candidate.tier == EvidenceTier.SAVED_DATE
    assert candidate.timestamp == T0
    assert candidate.year is None


def test_lower_tier_never_replaces_higher():
    candidates = resolve(
        [
            _record(tier=EvidenceTier.EXACT_PLAY, timestamp=T0),
            _record(tier=EvidenceTier.CURATED_YEAR, year=2019),
        ]
    )

    candidate = candidates["track-1"]
    assert candidate.tier == EvidenceTier.EXACT_PLAY
    assert candidate.year is None
    assert candidate.exact_play_timestamps == [T0]


def test_tie_keeps_first_record():
    candidates = resolve(
        [
            _record(tier=EvidenceTier.CURATED_YEAR, year=2022, title="First"),
            _record(tier=EvidenceTier.CURATED_YEAR, year=2020, title="Second"),
        ]
    )

    assert candidates["track-1"].year == 2022
    assert candidates["track-1"].title == "First"


def test_exact_plays_accumulate_timestamps():
    later = datetime(2024, 5, 2, 9, 0, tzinfo=UTC)
    candidates = resolve(
        [
            _record(tier=EvidenceTier.EXACT_PLAY, timestamp=T0),
            _record(tier=EvidenceTier.EXACT_PLAY, timestamp=later),
            _record(tier=EvidenceTier.EXACT_PLAY, timestamp=T0),
        ]
    )

    assert candidates["track-1"].exact_play_timestamps == [T0, later]


def test_rank_attaches_without_demoting_tier():
    candidates = resolve(
        [
            _record(tier=EvidenceTier.EXACT_PLAY, timestamp=T0),
            _record(rank=7, recency_bucket=RecencyBucket.RECENT),
        ]
    )

    candidate = candidates["track-1"]
    assert candidate.tier == EvidenceTier.EXACT_PLAY
    assert candidate.rank == 7
    assert candidate.recency_bucket == RecencyBucket.RECENT


def test_best_rank_survives_tier_upgrade():
    candidates = resolve(
        [
            _record(rank=3, recency_bucket=RecencyBucket.MID_TERM),
            _record(rank=12, recency_bucket=RecencyBucket.LONG_TERM),
            _record(tier=EvidenceTier.SAVED_DATE, timestamp=T0),
        ]
    )

    candidate = candidates["track-1"]
    assert candidate.tier == EvidenceTier.SAVED_DATE
    assert candidate.rank == 3
    assert candidate.recency_bucket == RecencyBucket.MID_TERM


def test_recency_bucket_is_set_once():
    candidates = resolve(
        [
            _record(rank=40, recency_bucket=RecencyBucket.LONG_TERM),
            _record(rank=2, recency_bucket=RecencyBucket.RECENT),
        ]
    )

    assert candidates["track-1"].rank == 2
    assert candidates["track-1"].recency_bucket == RecencyBucket.LONG_TERM


def test_missing_identifier_is_dropped_and_counted():
    resolver = CandidateResolver()

    assert resolver.add(_record(external_id=None, rank=1)) is None
    assert resolver.add(_record(external_id="  ", rank=1)) is None
    assert resolver.dropped == 2
    assert len(resolver) == 0


def test_unparseable_timestamp_demotes_to_remaining_evidence():
    assert effective_tier(_record(tier=EvidenceTier.SAVED_DATE, year=2020)) == EvidenceTier.CURATED_YEAR
    assert effective_tier(_record(tier=EvidenceTier.EXACT_PLAY, rank=4)) == EvidenceTier.RANKED_ONLY
    assert effective_tier(_record(tier=EvidenceTier.EXACT_PLAY)) is None


def test_demoted_record_is_kept_and_evidence_less_record_dropped():
    resolver = CandidateResolver()
    resolver.add(_record("a", tier=EvidenceTier.SAVED_DATE, rank=5))
    resolver.add(_record("b", tier=EvidenceTier.EXACT_PLAY))

    assert resolver.candidates["a"].tier == EvidenceTier.RANKED_ONLY
    assert resolver.candidates["a"].timestamp is None
    assert "b" not in resolver.candidates
    assert resolver.demoted == 1
    assert resolver.dropped == 1


def test_tags_filled_from_later_record_when_empty():
    candidates = resolve(
        [
            _record(tier=EvidenceTier.SAVED_DATE, timestamp=T0, tags=[]),
            _record(rank=1, tags=["indie"]),
        ]
    )

    assert candidates["track-1"].tags == ["indie"]


def test_total_ranked_items_counts_distinct_ranked_candidates():
    resolver = CandidateResolver()
    resolver.add_all(
        [
            _record("a", rank=1),
            _record("b", rank=2),
            _record("a", rank=3),
            _record("c", tier=EvidenceTier.CURATED_YEAR, year=2020),
        ]
    )

    assert resolver.total_ranked_items == 2
