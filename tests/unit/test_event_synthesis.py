import random
import statistics
from datetime import UTC, datetime, timedelta

import pytest

from listening_history.features.history_reconstruction.domain.models import (
    CandidateItem,
    EvidenceTier,
    GenerationWindow,
    RecencyBucket,
    ScoredCandidate,
    SynthesisStrategy,
)
from listening_history.features.history_reconstruction.pipeline.synthesis import (
    EventSynthesisEngine,
    tier_of,
)
from listening_history.features.history_reconstruction.pipeline.synthesis.service import (
    biased_position,
    recency_event_count,
)

SOURCE = "com.spotify.music.import.reconstructed"
T = datetime(2024, 3, 10, 18, 0, tzinfo=UTC)


def _scored(tier, affinity=1.0, item_id=1, **fields):
    candidate = CandidateItem(
        external_id=fields.pop("external_id", "track-1"),
        title="Song",
        artists=["Artist"],
        duration_ms=fields.pop("duration_ms", 200_000),
        tier=tier,
        **fields,
    )
    return ScoredCandidate(item_id=item_id, candidate=candidate, affinity=affinity)


@pytest.fixture
def engine():
    return EventSynthesisEngine(random.Random(42))


def test_exact_passthrough_emits_one_event_per_play(engine):
    window = GenerationWindow(T - timedelta(days=1), T + timedelta(days=1), SOURCE)
    scored = _scored(EvidenceTier.EXACT_PLAY, timestamp=T, exact_play_timestamps=[T])

    events = engine.synthesize(scored, window)

    assert len(events) == 1
    assert events[0].timestamp == T
    assert events[0].completion_percentage == 100
    assert events[0].play_duration_ms == 200_000
    assert events[0].session_id is None
    assert events[0].source == SOURCE


def test_exact_passthrough_drops_plays_outside_window(engine):
    window = GenerationWindow(T - timedelta(days=1), T + timedelta(days=1), SOURCE)
    outside = T - timedelta(days=3)
    scored = _scored(EvidenceTier.EXACT_PLAY, timestamp=T, exact_play_timestamps=[outside, T])

    events = engine.synthesize(scored, window)

    assert [event.timestamp for event in events] == [T]


def test_saved_date_clusters_after_save(engine):
    window = GenerationWindow(T, T + timedelta(days=30), SOURCE)
    scored = _scored(EvidenceTier.SAVED_DATE, affinity=0.9, timestamp=T)

    events = engine.synthesize(scored, window)

    assert len(events) == 5
    assert events[0].timestamp == T
    for event in events[1:]:
        assert T < event.timestamp <= T + timedelta(days=14)
    assert len({event.session_id for event in events}) == 1
    assert events[0].session_id.startswith("tm-track-1-")
    assert all(80 <= event.completion_percentage <= 95 for event in events)


@pytest.mark.parametrize(
    "affinity,expected",
    [(0.95, 5), (0.7, 3), (0.5, 2), (0.2, 1)],
)
def test_saved_date_count_follows_affinity(affinity, expected):
    engine = EventSynthesisEngine(random.Random(1))
    window = GenerationWindow(T, T + timedelta(days=30), SOURCE)

    events = engine.synthesize(_scored(EvidenceTier.SAVED_DATE, affinity, timestamp=T), window)

    assert len(events) == expected


def test_saved_date_near_window_end_keeps_only_contained_events(engine):
    window = GenerationWindow(T - timedelta(days=10), T + timedelta(days=2), SOURCE)
    scored = _scored(EvidenceTier.SAVED_DATE, affinity=0.9, timestamp=T)

    events = engine.synthesize(scored, window)

    assert events[0].timestamp == T
    assert all(window.contains(event.timestamp) for event in events)
    assert len(events) <= 5


def test_year_uniform_with_no_overlap_yields_nothing(engine):
    window = GenerationWindow(
        datetime(2022, 1, 1, tzinfo=UTC), datetime(2024, 1, 1, tzinfo=UTC), SOURCE
    )
    scored = _scored(EvidenceTier.CURATED_YEAR, affinity=0.9, year=2019)

    assert engine.synthesize(scored, window) == []


def test_year_uniform_spreads_inside_year_and_window(engine):
    window = GenerationWindow(
        datetime(2020, 7, 1, tzinfo=UTC), datetime(2024, 1, 1, tzinfo=UTC), SOURCE
    )
    scored = _scored(EvidenceTier.CURATED_YEAR, affinity=0.9, year=2020)

    events = engine.synthesize(scored, window)

    assert len(events) == 6
    for event in events:
        assert datetime(2020, 7, 1, tzinfo=UTC) <= event.timestamp < datetime(2021, 1, 1, tzinfo=UTC)
    assert events[0].session_id.startswith("yr-2020-")


def test_year_sessions_are_shared_across_candidates(engine):
    window = GenerationWindow(
        datetime(2019, 1, 1, tzinfo=UTC), datetime(2024, 1, 1, tzinfo=UTC), SOURCE
    )
    first = _scored(EvidenceTier.CURATED_YEAR, 0.9, item_id=1, year=2021, external_id="a")
    second = _scored(EvidenceTier.CURATED_YEAR, 0.9, item_id=2, year=2021, external_id="b")
    other = _scored(EvidenceTier.CURATED_YEAR, 0.9, item_id=3, year=2020, external_id="c")

    events = engine.synthesize_all([first, second, other], window)

    sessions_2021 = {e.session_id for e in events if e.item_id in (1, 2)}
    sessions_2020 = {e.session_id for e in events if e.item_id == 3}
    assert len(sessions_2021) == 1
    assert len(sessions_2020) == 1
    assert sessions_2021 != sessions_2020


def test_recency_biased_marks_events_as_estimated(engine):
    window = GenerationWindow(T - timedelta(days=365), T, SOURCE)
    scored = _scored(
        EvidenceTier.RANKED_ONLY, affinity=1.0, rank=1, recency_bucket=RecencyBucket.RECENT
    )

    events = engine.synthesize(scored, window)

    assert len(events) == 11
    for event in events:
        assert event.source == f"{SOURCE}.estimated"
        assert T - timedelta(days=28) <= event.timestamp <= T
        assert 75 <= event.completion_percentage <= 95
        assert event.strategy == SynthesisStrategy.RECENCY_BIASED
    assert events[0].session_id.startswith("est-track-1-")


def test_recency_event_count_is_capped():
    assert recency_event_count(1.0, 1) == 11
    assert recency_event_count(0.2, None) == 1
    assert recency_event_count(0.95, 15) == 9
    assert recency_event_count(0.95, 50) == 8
    assert recency_event_count(2.0, 1) <= 12


def test_recency_lookback_is_clipped_by_window_start(engine):
    window = GenerationWindow(T - timedelta(days=3), T, SOURCE)
    scored = _scored(
        EvidenceTier.RANKED_ONLY, affinity=0.8, rank=30, recency_bucket=RecencyBucket.LONG_TERM
    )

    events = engine.synthesize(scored, window)

    assert all(T - timedelta(days=3) <= event.timestamp <= T for event in events)


def test_biased_position_stays_in_unit_interval():
    assert biased_position(0.0, 3.1) == 0.0
    assert biased_position(1.0, 3.1) == 1.0
    assert 0.0 < biased_position(0.5, 1.9) < 1.0


def _median_offset(bucket, window, seed):
    engine = EventSynthesisEngine(random.Random(seed))
    scored = _scored(EvidenceTier.RANKED_ONLY, affinity=0.2, recency_bucket=bucket)
    offsets = []
    for _ in range(10_000):
        for event in engine.recency_biased(scored, window):
            offsets.append((event.timestamp - window.start).total_seconds())
    return statistics.median(offsets)


def test_recent_bucket_skews_toward_window_end():
    window = GenerationWindow(T - timedelta(days=28), T, SOURCE)
    span = timedelta(days=28).total_seconds()

    recent = _median_offset(RecencyBucket.RECENT, window, seed=7)

    assert recent > span / 2
    # Median lands in the last week of the 28 day window
    assert recent > span - timedelta(days=7).total_seconds()


def test_recent_bucket_is_more_skewed_than_long_term():
    recent = GenerationWindow(T - timedelta(days=28), T, SOURCE)
    long_term = GenerationWindow(T - timedelta(days=730), T, SOURCE)

    recent_position = _median_offset(RecencyBucket.RECENT, recent, seed=7) / (
        timedelta(days=28).total_seconds()
    )
    long_position = _median_offset(RecencyBucket.LONG_TERM, long_term, seed=8) / (
        timedelta(days=730).total_seconds()
    )

    assert recent_position > long_position > 0.5


def test_missing_duration_uses_default():
    engine = EventSynthesisEngine(random.Random(3), default_duration_ms=180_000)
    window = GenerationWindow(T - timedelta(days=1), T + timedelta(days=1), SOURCE)
    scored = _scored(EvidenceTier.EXACT_PLAY, duration_ms=0, exact_play_timestamps=[T])

    events = engine.synthesize(scored, window)

    assert events[0].play_duration_ms == 180_000


def test_same_seed_reproduces_events():
    window = GenerationWindow(T - timedelta(days=400), T, SOURCE)
    scored = _scored(
        EvidenceTier.RANKED_ONLY, affinity=0.75, rank=8, recency_bucket=RecencyBucket.MID_TERM
    )

    first = EventSynthesisEngine(random.Random(99)).synthesize(scored, window)
    second = EventSynthesisEngine(random.Random(99)).synthesize(scored, window)

    assert first == second


def test_tier_of_maps_strategy_back_to_tier(engine):
    window = GenerationWindow(T - timedelta(days=1), T + timedelta(days=1), SOURCE)
    events = engine.synthesize(
        _scored(EvidenceTier.EXACT_PLAY, exact_play_timestamps=[T]), window
    )

    assert tier_of(events[0]) == EvidenceTier.EXACT_PLAY


class _TopOfRangeRandom(random.Random):
    """Always returns the upper bound from randint."""

    def randint(self, a, b):
        return b


def test_recency_completion_never_exceeds_95_at_top_of_range():
    engine = EventSynthesisEngine(_TopOfRangeRandom(3))
    window = GenerationWindow(T - timedelta(days=365), T, SOURCE)
    scored = _scored(EvidenceTier.RANKED_ONLY, affinity=0.2)

    events = engine.synthesize(scored, window)

    # 80 + 15 lands on 95 without needing the clamp
    assert [event.completion_percentage for event in events] == [95]


def test_recency_completion_reaches_every_value_from_75_to_95():
    engine = EventSynthesisEngine(random.Random(11))
    window = GenerationWindow(T - timedelta(days=365), T, SOURCE)
    scored = _scored(EvidenceTier.RANKED_ONLY, affinity=1.0, rank=1)

    seen = set()
    for _ in range(400):
        seen.update(event.completion_percentage for event in engine.synthesize(scored, window))

    assert seen == set(range(75, 96))


def test_calendar_years_draws_do_not_depend_on_the_window():
    scored = _scored(EvidenceTier.CURATED_YEAR, affinity=0.5, year=2009)
    first_window = GenerationWindow(
        datetime(2009, 6, 1, tzinfo=UTC), datetime(2024, 6, 1, tzinfo=UTC), SOURCE
    )
    later_window = GenerationWindow(
        first_window.start + timedelta(seconds=1), first_window.end + timedelta(seconds=1), SOURCE
    )

    first = EventSynthesisEngine(random.Random(7), calendar_years=True).synthesize(scored, first_window)
    later = EventSynthesisEngine(random.Random(7), calendar_years=True).synthesize(scored, later_window)
    full_year = EventSynthesisEngine(random.Random(7), calendar_years=True).synthesize(
        scored,
        GenerationWindow(datetime(2000, 1, 1, tzinfo=UTC), datetime(2024, 6, 1, tzinfo=UTC), SOURCE),
    )

    assert len(full_year) == 3
    expected = [e.timestamp for e in full_year if first_window.contains(e.timestamp)]
    assert [e.timestamp for e in first] == expected
    assert [e.timestamp for e in later] == [
        t for t in expected if later_window.contains(t)
    ]
    assert all(first_window.contains(e.timestamp) for e in first)
