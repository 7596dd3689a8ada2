"""
Event synthesis - turns scored candidates into listening events.

One strategy per evidence tier:

- exact passthrough: republishes known play timestamps, nothing invented
- date clustered: a burst of plays in the two weeks after an item was saved
- year uniform: plays spread evenly over the year a curated list covers
- recency biased: plays drawn from a look-back window, skewed toward now

Any event that lands outside the generation window is discarded, never
clamped.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from listening_history.features.history_reconstruction.domain.interfaces import RandomSource
from listening_history.features.history_reconstruction.domain.models import (
    EvidenceTier,
    GenerationWindow,
    RecencyBucket,
    ScoredCandidate,
    SynthesisStrategy,
    SynthesizedEvent,
)
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DURATION_MS = 180_000
ESTIMATED_SOURCE_SUFFIX = ".estimated"

MAX_RECENCY_EVENTS = 12
HONEYMOON_MIN_DAYS = 1
HONEYMOON_MAX_DAYS = 14


@dataclass(slots=True, frozen=True)
class RecencyProfile:
    lookback: timedelta
    bias: float

    @property
    def lam(self) -> float:
        return 1.0 + 3.0 * self.bias


RECENCY_PROFILES = {
    RecencyBucket.RECENT: RecencyProfile(timedelta(days=28), 0.7),
    RecencyBucket.MID_TERM: RecencyProfile(timedelta(days=180), 0.5),
    RecencyBucket.LONG_TERM: RecencyProfile(timedelta(days=730), 0.3),
    RecencyBucket.UNKNOWN: RecencyProfile(timedelta(days=180), 0.4),
}


def date_clustered_count(affinity: float) -> int:
    if affinity > 0.8:
        return 5
    if affinity > 0.6:
        return 3
    if affinity > 0.4:
        return 2
    return 1


def year_uniform_count(affinity: float) -> int:
    if affinity > 0.8:
        return 6
    if affinity > 0.6:
        return 4
    if affinity > 0.4:
        return 3
    return 2


def recency_base_count(affinity: float) -> int:
    if affinity > 0.9:
        return 8
    if affinity > 0.7:
        return 5
    if affinity > 0.5:
        return 3
    if affinity > 0.3:
        return 2
    return 1


def rank_bonus(rank: int | None) -> int:
    if rank is None:
        return 0
    if 1 <= rank <= 5:
        return 3
    if 6 <= rank <= 10:
        return 2
    if 11 <= rank <= 20:
        return 1
    return 0


def recency_event_count(affinity: float, rank: int | None) -> int:
    return min(MAX_RECENCY_EVENTS, recency_base_count(affinity) + rank_bonus(rank))


def biased_position(u: float, lam: float) -> float:
    """
    Inverse-transform sample of Beta(lam, 1) on [0, 1].

    The density is lam * x ** (lam - 1), so larger lam pushes mass toward
    1, the end of the window.
    """
    return u ** (1.0 / lam)


def year_bounds(year: int) -> tuple[datetime, datetime]:
    return datetime(year, 1, 1, tzinfo=UTC), datetime(year + 1, 1, 1, tzinfo=UTC)


class EventSynthesisEngine:
    """
    Draws events for scored candidates from an injected random source.

    With calendar_years=True, year-uniform positions are drawn over the
    whole calendar year and only then filtered by the window, so a seeded
    engine reproduces the same timestamps whenever it runs.
    """

    def __init__(
        self,
        rng: RandomSource,
        default_duration_ms: int = DEFAULT_DURATION_MS,
        *,
        calendar_years: bool = False,
    ):
        self._rng = rng
        self._default_duration_ms = default_duration_ms
        self._calendar_years = calendar_years

    def _session_suffix(self) -> str:
        return f"{self._rng.getrandbits(32):08x}"

    def _duration(self, scored: ScoredCandidate) -> int:
        return scored.candidate.duration_ms or self._default_duration_ms

    def _event(
        self,
        scored: ScoredCandidate,
        timestamp: datetime,
        completion: int,
        source: str,
        session_id: str | None,
        strategy: SynthesisStrategy,
    ) -> SynthesizedEvent:
        completion = max(0, min(100, completion))
        return SynthesizedEvent(
            item_id=scored.item_id,
            timestamp=timestamp,
            play_duration_ms=self._duration(scored) * completion // 100,
            completion_percentage=completion,
            source=source,
            session_id=session_id,
            strategy=strategy,
        )

    def synthesize(
        self,
        scored: ScoredCandidate,
        window: GenerationWindow,
        year_sessions: dict[int, str] | None = None,
    ) -> list[SynthesizedEvent]:
        strategy = SynthesisStrategy.for_tier(scored.candidate.tier)
        if strategy == SynthesisStrategy.EXACT_PASSTHROUGH:
            events = self.exact_passthrough(scored, window)
        elif strategy == SynthesisStrategy.DATE_CLUSTERED:
            events = self.date_clustered(scored, window)
        elif strategy == SynthesisStrategy.YEAR_UNIFORM:
            events = self.year_uniform(scored, window, year_sessions)
        else:
            events = self.recency_biased(scored, window)

        return [event for event in events if window.contains(event.timestamp)]

    def synthesize_all(
        self, scored_candidates: Iterable[ScoredCandidate], window: GenerationWindow
    ) -> list[SynthesizedEvent]:
        year_sessions: dict[int, str] = {}
        events: list[SynthesizedEvent] = []
        for scored in scored_candidates:
            events.extend(self.synthesize(scored, window, year_sessions))

        logger.debug("Events synthesized", event_count=len(events))
        return events

    def exact_passthrough(
        self, scored: ScoredCandidate, window: GenerationWindow
    ) -> list[SynthesizedEvent]:
        candidate = scored.candidate
        timestamps = candidate.exact_play_timestamps or (
            [candidate.timestamp] if candidate.timestamp else []
        )
        return [
            self._event(
                scored, timestamp, 100, window.source, None, SynthesisStrategy.EXACT_PASSTHROUGH
            )
            for timestamp in timestamps
        ]

    def date_clustered(
        self, scored: ScoredCandidate, window: GenerationWindow
    ) -> list[SynthesizedEvent]:
        saved_at = scored.candidate.timestamp
        if saved_at is None:
            return []

        session_id = f"tm-{scored.candidate.external_id}-{self._session_suffix()}"
        events = []
        for index in range(date_clustered_count(scored.affinity)):
            if index == 0:
                timestamp = saved_at
            else:
                offset_days = self._rng.uniform(HONEYMOON_MIN_DAYS, HONEYMOON_MAX_DAYS)
                timestamp = saved_at + timedelta(days=offset_days)
            completion = 85 + self._rng.randint(-5, 9)
            events.append(
                self._event(
                    scored,
                    timestamp,
                    completion,
                    window.source,
                    session_id,
                    SynthesisStrategy.DATE_CLUSTERED,
                )
            )
        return events

    def year_uniform(
        self,
        scored: ScoredCandidate,
        window: GenerationWindow,
        year_sessions: dict[int, str] | None = None,
    ) -> list[SynthesizedEvent]:
        year = scored.candidate.year
        if year is None:
            return []

        if self._calendar_years:
            effective_start, effective_end = year_bounds(year)
        else:
            bounds = window.clamp(*year_bounds(year))
            if bounds is None:
                return []
            effective_start, effective_end = bounds
        span = effective_end - effective_start

        if year_sessions is None:
            year_sessions = {}
        if year not in year_sessions:
            year_sessions[year] = f"yr-{year}-{self._session_suffix()}"
        session_id = year_sessions[year]

        events = []
        for _ in range(year_uniform_count(scored.affinity)):
            timestamp = effective_start + span * self._rng.random()
            completion = 85 + self._rng.randint(-5, 9)
            events.append(
                self._event(
                    scored,
                    timestamp,
                    completion,
                    window.source,
                    session_id,
                    SynthesisStrategy.YEAR_UNIFORM,
                )
            )
        return events

    def recency_biased(
        self, scored: ScoredCandidate, window: GenerationWindow
    ) -> list[SynthesizedEvent]:
        candidate = scored.candidate
        profile = RECENCY_PROFILES[candidate.recency_bucket]

        bounds = window.clamp(window.end - profile.lookback, window.end)
        if bounds is None:
            return []
        window_start, window_end = bounds
        span = window_end - window_start

        session_id = f"est-{candidate.external_id}-{self._session_suffix()}"
        source = f"{window.source}{ESTIMATED_SOURCE_SUFFIX}"

        events = []
        for _ in range(recency_event_count(scored.affinity, candidate.rank)):
            timestamp = window_start + span * biased_position(self._rng.random(), profile.lam)
            completion = max(75, min(95, 80 + self._rng.randint(-5, 15)))
            events.append(
                self._event(
                    scored,
                    timestamp,
                    completion,
                    source,
                    session_id,
                    SynthesisStrategy.RECENCY_BIASED,
                )
            )
        return events


def tier_of(event: SynthesizedEvent) -> EvidenceTier:
    return {
        SynthesisStrategy.EXACT_PASSTHROUGH: EvidenceTier.EXACT_PLAY,
        SynthesisStrategy.DATE_CLUSTERED: EvidenceTier.SAVED_DATE,
        SynthesisStrategy.YEAR_UNIFORM: EvidenceTier.CURATED_YEAR,
        SynthesisStrategy.RECENCY_BIASED: EvidenceTier.RANKED_ONLY,
    }[event.strategy]
