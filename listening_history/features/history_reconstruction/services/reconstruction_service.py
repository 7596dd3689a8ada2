"""
History reconstruction service - orchestrates the whole pipeline.

Phases run strictly in order so higher-tier evidence reaches the resolver
before lower tiers: artist genres, recently played, saved tracks, curated
year lists, top tracks, then materialize, synthesize and insert. A failing
phase is recorded and the run moves on; only a missing account or token
stops it.
"""

import asyncio
import random
import time
import uuid
import zlib
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from listening_history.config import Settings, settings as default_settings
from listening_history.features.history_reconstruction.domain.interfaces import (
    AccessTokenProvider,
    CanonicalItemStore,
    CancellationToken,
    EventStore,
    ProgressCallback,
    RandomSource,
)
from listening_history.features.history_reconstruction.domain.models import (
    GenerationWindow,
    PendingBatch,
    PendingProcessResult,
    ReconstructionResult,
    ScoredCandidate,
    SynthesisStrategy,
    SynthesizedEvent,
)
from listening_history.features.history_reconstruction.pipeline.affinity import (
    AffinityEstimator,
    affinity_estimator,
)
from listening_history.features.history_reconstruction.pipeline.insertion import (
    IdempotentInserter,
)
from listening_history.features.history_reconstruction.pipeline.materialization import (
    LibraryMaterializer,
    MaterializationError,
)
from listening_history.features.history_reconstruction.pipeline.resolution import (
    CandidateResolver,
)
from listening_history.features.history_reconstruction.pipeline.synthesis import (
    EventSynthesisEngine,
    tier_of,
)
from listening_history.features.history_reconstruction.sources import (
    ArtistGenreIndex,
    EvidenceSourceAdapter,
    SpotifyClient,
)
from listening_history.infrastructure.observability.logging import get_logger, log_phase


def years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return moment.replace(year=moment.year - years, day=28)


def batch_seed(batch: PendingBatch) -> int:
    """Stable seed so re-processing a batch regenerates identical events."""
    return zlib.crc32(f"{batch.identifier}:{batch.year}".encode())


@dataclass(slots=True)
class _RunContext:
    adapter: EvidenceSourceAdapter
    log: Any
    progress: ProgressCallback | None
    cancellation: CancellationToken | None
    result: ReconstructionResult = field(default_factory=ReconstructionResult)
    resolver: CandidateResolver = field(default_factory=CandidateResolver)
    genres: ArtistGenreIndex = field(default_factory=ArtistGenreIndex)
    scored: list[ScoredCandidate] = field(default_factory=list)
    events: list[SynthesizedEvent] = field(default_factory=list)


class HistoryReconstructionService:
    """
    Rebuilds a listening timeline from Spotify evidence.

    Collaborators are injected: the API client, the token provider, both
    stores, the random source, the logger, the sleep used for rate limiting
    and the clock that anchors the generation window.
    """

    def __init__(
        self,
        api: SpotifyClient,
        token_provider: AccessTokenProvider,
        item_store: CanonicalItemStore,
        event_store: EventStore,
        *,
        settings: Settings | None = None,
        rng: RandomSource | None = None,
        rng_factory: Callable[[int], RandomSource] = random.Random,
        logger=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
        affinity: AffinityEstimator | None = None,
    ):
        self._api = api
        self._token_provider = token_provider
        self._event_store = event_store
        self._settings = settings or default_settings
        self._rng = rng if rng is not None else random.Random(self._settings.RANDOM_SEED)
        self._rng_factory = rng_factory
        self._logger = logger or get_logger(__name__)
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(UTC))
        self._affinity = affinity or affinity_estimator
        self._materializer = LibraryMaterializer(item_store)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def generation_window(self) -> GenerationWindow:
        now = self._clock()
        return GenerationWindow(
            start=years_before(now, self._settings.MAX_HISTORY_YEARS),
            end=now,
            source=self._settings.IMPORT_SOURCE,
        )

    def _adapter(
        self, access_token: str, cancellation: CancellationToken | None
    ) -> EvidenceSourceAdapter:
        return EvidenceSourceAdapter(
            self._api,
            access_token,
            settings=self._settings,
            sleep=self._sleep,
            cancellation=cancellation,
        )

    def _inserter(self, chunk_size: int, cancellation: CancellationToken | None) -> IdempotentInserter:
        return IdempotentInserter(
            self._event_store,
            chunk_size=chunk_size,
            chunk_delay_seconds=self._settings.chunk_delay_seconds(),
            sleep=self._sleep,
            cancellation=cancellation,
        )

    @staticmethod
    def _is_cancelled(cancellation: CancellationToken | None) -> bool:
        return cancellation is not None and cancellation.is_cancelled

    @staticmethod
    def _report(
        progress: ProgressCallback | None, log, current: int, total: int, phase: str, message: str
    ) -> None:
        if progress is None:
            return
        try:
            progress(current, total, phase, message)
        except Exception as e:
            log.warning("Progress callback failed", progress_phase=phase, error=str(e))

    # ------------------------------------------------------------------
    # Full reconstruction
    # ------------------------------------------------------------------

    async def reconstruct(
        self,
        progress_callback: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> ReconstructionResult:
        log = self._logger.bind(run_id=uuid.uuid4().hex[:12])

        if not self._token_provider.is_connected():
            log.warning("Reconstruction requested without a connected account")
            return ReconstructionResult.not_connected()

        access_token = await self._token_provider.get_valid_access_token()
        if not access_token:
            log.error("Could not obtain a valid access token")
            return ReconstructionResult.error("Failed to get access token")

        ctx = _RunContext(
            adapter=self._adapter(access_token, cancellation),
            log=log,
            progress=progress_callback,
            cancellation=cancellation,
        )

        phases = (
            ("artists", "Artists", self._phase_artist_genres),
            ("recent_history", "Recently played", self._phase_recent_plays),
            ("saved_items", "Saved tracks", self._phase_saved_items),
            ("curated_lists", "Yearly playlists", self._phase_curated_lists),
            ("ranked_lists", "Top tracks", self._phase_ranked_lists),
            ("materialize", "Materialize", self._phase_materialize),
            ("synthesize", "Event generation", self._phase_synthesize),
            ("insert", "Event insertion", self._phase_insert),
        )

        log.info("Starting history reconstruction")
        for name, label, phase in phases:
            if self._is_cancelled(cancellation) or ctx.result.cancelled:
                ctx.result.cancelled = True
                log.info("Reconstruction cancelled", next_phase=name)
                break
            await self._run_phase(ctx, name, label, phase)

        result = ctx.result
        result.records_dropped = ctx.resolver.dropped

        if not result.cancelled:
            self._report(ctx.progress, log, 100, 100, "Complete", "History reconstruction complete!")

        log.info(
            "History reconstruction finished",
            items_created=result.items_created,
            artists_created=result.artists_created,
            events_inserted=result.events_inserted,
            events_skipped=result.events_skipped,
            exact_plays_found=result.exact_plays_found,
            saved_items_found=result.saved_items_found,
            curated_lists_processed=result.curated_lists_processed,
            ranked_items_found=result.ranked_items_found,
            pending_batches=len(result.pending_batches),
            error_count=len(result.errors),
            cancelled=result.cancelled,
        )
        return result

    async def _run_phase(self, ctx: _RunContext, name: str, label: str, phase) -> None:
        phase_log = ctx.log.bind(phase=name)
        started = time.monotonic()
        try:
            await phase(ctx, phase_log)
        except Exception as e:
            ctx.result.errors.append(f"{label}: {e}")
            log_phase(
                phase_log,
                name,
                completed=False,
                duration_ms=(time.monotonic() - started) * 1000,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        log_phase(phase_log, name, completed=True, duration_ms=(time.monotonic() - started) * 1000)

    async def _phase_artist_genres(self, ctx: _RunContext, log) -> None:
        self._report(ctx.progress, log, 0, 100, "Preparation", "Fetching artist data...")
        outcome = await ctx.adapter.fetch_artist_genres()
        ctx.genres = outcome.value
        ctx.result.errors.extend(outcome.errors)
        log.info("Artist genres ready", artist_count=len(ctx.genres))

    async def _phase_recent_plays(self, ctx: _RunContext, log) -> None:
        self._report(ctx.progress, log, 2, 100, "Recent History", "Fetching recently played tracks...")
        outcome = await ctx.adapter.fetch_recently_played(ctx.genres)
        ctx.result.errors.extend(outcome.errors)
        ctx.result.exact_plays_found = len(outcome.value)
        ctx.resolver.add_all(outcome.value)
        self._report(
            ctx.progress,
            log,
            5,
            100,
            "Recent History",
            f"Found {len(outcome.value)} tracks with exact play times",
        )

    async def _phase_saved_items(self, ctx: _RunContext, log) -> None:
        self._report(ctx.progress, log, 5, 100, "Time Machine", "Analyzing saved tracks...")
        outcome = await ctx.adapter.fetch_saved_tracks(ctx.genres)
        ctx.result.errors.extend(outcome.errors)
        ctx.result.saved_items_found = len(outcome.value)
        ctx.resolver.add_all(outcome.value)
        self._report(
            ctx.progress,
            log,
            25,
            100,
            "Time Machine",
            f"Found {len(outcome.value)} saved tracks with dates",
        )

    async def _phase_curated_lists(self, ctx: _RunContext, log) -> None:
        self._report(ctx.progress, log, 30, 100, "Artifact Hunter", "Searching for yearly playlists...")
        outcome = await ctx.adapter.find_curated_lists()
        ctx.result.errors.extend(outcome.errors)

        lists = outcome.value
        immediate = lists[: self._settings.INITIAL_CURATED_LISTS]
        deferred = lists[self._settings.INITIAL_CURATED_LISTS :]
        pending = [
            PendingBatch(identifier=playlist.id, year=playlist.year_from_name, label=playlist.name)
            for playlist in deferred
        ]

        for index, playlist in enumerate(immediate):
            if self._is_cancelled(ctx.cancellation):
                pending.extend(
                    PendingBatch(identifier=p.id, year=p.year_from_name, label=p.name)
                    for p in immediate[index:]
                )
                break

            self._report(
                ctx.progress,
                log,
                30 + index * 20 // max(1, len(immediate)),
                100,
                "Artifact Hunter",
                f"Processing {playlist.name}...",
            )
            records = await ctx.adapter.fetch_curated_list_records(
                playlist.id, playlist.year_from_name, ctx.genres
            )
            ctx.result.errors.extend(records.errors)
            if self._is_cancelled(ctx.cancellation):
                # Partial lists are discarded and fetched again later
                pending.extend(
                    PendingBatch(identifier=p.id, year=p.year_from_name, label=p.name)
                    for p in immediate[index:]
                )
                break
            if records.errors and not records.value:
                pending.append(
                    PendingBatch(
                        identifier=playlist.id, year=playlist.year_from_name, label=playlist.name
                    )
                )
                continue

            ctx.resolver.add_all(records.value)
            ctx.result.curated_lists_processed += 1

        ctx.result.pending_batches = pending
        if pending:
            log.info(
                "Curated lists deferred",
                processed=ctx.result.curated_lists_processed,
                deferred=len(pending),
            )

        queued = f" ({len(pending)} more queued)" if pending else ""
        self._report(
            ctx.progress,
            log,
            50,
            100,
            "Artifact Hunter",
            f"Processed {ctx.result.curated_lists_processed} recent playlists{queued}",
        )

    async def _phase_ranked_lists(self, ctx: _RunContext, log) -> None:
        self._report(ctx.progress, log, 55, 100, "Smart Mixer", "Fetching top tracks...")
        outcome = await ctx.adapter.fetch_ranked_records(ctx.genres)
        ctx.result.errors.extend(outcome.errors)
        ctx.result.ranked_items_found = len(outcome.value)
        ctx.resolver.add_all(outcome.value)
        self._report(
            ctx.progress,
            log,
            70,
            100,
            "Smart Mixer",
            f"Collected affinity data for {len(outcome.value)} tracks",
        )

    async def _phase_materialize(self, ctx: _RunContext, log) -> None:
        self._report(ctx.progress, log, 75, 100, "Processing", "Creating tracks and metadata...")

        candidates = list(ctx.resolver.candidates.values())
        total_ranked = ctx.resolver.total_ranked_items
        chunk_size = max(1, self._settings.MATERIALIZE_CHUNK_SIZE)
        chunks = [candidates[i : i + chunk_size] for i in range(0, len(candidates), chunk_size)]
        failed = 0

        for index, chunk in enumerate(chunks):
            if self._is_cancelled(ctx.cancellation):
                ctx.result.cancelled = True
                log.info("Materialization cancelled", chunks_done=index, chunks_total=len(chunks))
                break

            for candidate in chunk:
                try:
                    materialized = await self._materializer.materialize(candidate)
                except MaterializationError as e:
                    failed += 1
                    log.warning(
                        "Skipping candidate", external_id=candidate.external_id, error=str(e)
                    )
                    continue

                ctx.result.items_materialized += 1
                if materialized.created:
                    ctx.result.items_created += 1
                ctx.result.artists_created += materialized.artists_created
                ctx.scored.append(
                    ScoredCandidate(
                        item_id=materialized.item_id,
                        candidate=candidate,
                        affinity=self._affinity.score_candidate(candidate, total_ranked),
                    )
                )

            self._report(
                ctx.progress,
                log,
                min(85, 75 + index * 10 // max(1, len(chunks))),
                100,
                "Processing",
                f"Created {ctx.result.items_created} tracks...",
            )
            if index < len(chunks) - 1:
                await self._sleep(self._settings.chunk_delay_seconds())

        if failed:
            ctx.result.errors.append(f"Materialize: {failed} tracks could not be stored")

    async def _phase_synthesize(self, ctx: _RunContext, log) -> None:
        self._report(ctx.progress, log, 85, 100, "Generating History", "Creating listening events...")
        engine = EventSynthesisEngine(self._rng, self._settings.DEFAULT_TRACK_DURATION_MS)
        ctx.events = engine.synthesize_all(ctx.scored, self.generation_window())
        for event in ctx.events:
            ctx.result.count_event(tier_of(event))
        log.info("Events synthesized", event_count=len(ctx.events), by_tier=ctx.result.events_by_tier)

    async def _phase_insert(self, ctx: _RunContext, log) -> None:
        exact = [e for e in ctx.events if e.strategy == SynthesisStrategy.EXACT_PASSTHROUGH]
        synthesized = [e for e in ctx.events if e.strategy != SynthesisStrategy.EXACT_PASSTHROUGH]

        self._report(
            ctx.progress, log, 90, 100, "Generating History", f"Inserting {len(synthesized)} events..."
        )

        def on_chunk(index, count, running):
            self._report(
                ctx.progress,
                log,
                min(95, 90 + index * 6 // max(1, count)),
                100,
                "Generating History",
                f"Inserted {running.inserted} events ({running.skipped} duplicates skipped)...",
            )

        totals = await self._inserter(self._settings.INSERT_CHUNK_SIZE, ctx.cancellation).insert(
            synthesized, self._settings.SYNTHESIZED_DUPLICATE_TOLERANCE_SECONDS, on_chunk=on_chunk
        )

        if exact and not totals.cancelled:
            self._report(
                ctx.progress,
                log,
                96,
                100,
                "Recent History",
                f"Inserting {len(exact)} recent play events...",
            )
            totals.merge(
                await self._inserter(self._settings.EXACT_INSERT_CHUNK_SIZE, ctx.cancellation).insert(
                    exact, self._settings.EXACT_DUPLICATE_TOLERANCE_SECONDS
                )
            )

        ctx.result.events_inserted += totals.inserted
        ctx.result.events_skipped += totals.skipped
        ctx.result.cancelled = ctx.result.cancelled or totals.cancelled
        if totals.failed:
            ctx.result.errors.append(f"Event insertion: {totals.failed} events could not be written")

        log.info(
            "Events inserted",
            inserted=totals.inserted,
            skipped=totals.skipped,
            failed=totals.failed,
            exact_events=len(exact),
        )

    # ------------------------------------------------------------------
    # Pending continuation
    # ------------------------------------------------------------------

    async def process_pending(
        self,
        pending_batches: Sequence[PendingBatch],
        progress_callback: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> PendingProcessResult:
        """
        Process deferred curated lists with the materialize, synthesize and
        insert logic of a full run.

        Each batch draws from a random source seeded by its identifier and
        places events over the whole calendar year before the window filter,
        so overlapping or repeated calls regenerate the same timestamps even
        when the clock has moved, and the duplicate check skips them.

        Returns:
            PendingProcessResult; batches that were cancelled, failed, or had
            none of their tracks stored are listed in `remaining`
        """
        result = PendingProcessResult()
        batches = list(pending_batches)
        if not batches:
            return result

        log = self._logger.bind(run_id=uuid.uuid4().hex[:12], phase="pending")
        log.info("Processing pending batches", batch_count=len(batches))

        access_token = None
        if self._token_provider.is_connected():
            access_token = await self._token_provider.get_valid_access_token()
        if not access_token:
            log.error("Could not obtain a valid access token for pending batches")
            result.errors.append("Failed to get access token")
            result.remaining = batches
            return result

        adapter = self._adapter(access_token, cancellation)
        genre_outcome = await adapter.fetch_artist_genres()
        if genre_outcome.errors:
            log.warning("Artist genres incomplete", errors=genre_outcome.errors)

        window = self.generation_window()
        inserter = self._inserter(self._settings.INSERT_CHUNK_SIZE, cancellation)

        for index, batch in enumerate(batches):
            if self._is_cancelled(cancellation):
                result.cancelled = True
                result.remaining.extend(batches[index:])
                log.info("Pending processing cancelled", processed=index, remaining=len(result.remaining))
                break

            self._report(
                progress_callback,
                log,
                index,
                len(batches),
                "Background Import",
                f"Processing {batch.label}...",
            )

            try:
                completed = await self._process_batch(
                    adapter,
                    genre_outcome.value,
                    batch,
                    window,
                    inserter,
                    result,
                    log,
                    cancellation,
                )
            except Exception as e:
                log.error("Pending batch failed", batch_id=batch.identifier, error=str(e))
                result.errors.append(f"Playlist {batch.label}: {e}")
                result.remaining.append(batch)
                continue

            if completed:
                result.batches_processed += 1
            else:
                result.remaining.append(batch)
                if result.cancelled:
                    result.remaining.extend(batches[index + 1 :])
                    break

            await self._sleep(self._settings.api_delay_seconds())

        if not result.cancelled:
            self._report(
                progress_callback,
                log,
                len(batches),
                len(batches),
                "Background Import",
                f"Processed {result.batches_processed} playlists",
            )

        log.info(
            "Pending batches finished",
            batches_processed=result.batches_processed,
            remaining=len(result.remaining),
            items_created=result.items_created,
            events_created=result.events_created,
            events_skipped=result.events_skipped,
            error_count=len(result.errors),
        )
        return result

    async def _process_batch(
        self,
        adapter: EvidenceSourceAdapter,
        genres: ArtistGenreIndex,
        batch: PendingBatch,
        window: GenerationWindow,
        inserter: IdempotentInserter,
        result: PendingProcessResult,
        log,
        cancellation: CancellationToken | None = None,
    ) -> bool:
        outcome = await adapter.fetch_curated_list_records(batch.identifier, batch.year, genres)
        result.errors.extend(outcome.errors)
        if self._is_cancelled(cancellation):
            result.cancelled = True
            return False
        if outcome.errors and not outcome.value:
            return False

        resolver = CandidateResolver()
        resolver.add_all(outcome.value)

        scored: list[ScoredCandidate] = []
        for candidate in resolver.candidates.values():
            try:
                materialized = await self._materializer.materialize(candidate)
            except MaterializationError as e:
                result.errors.append(f"Playlist {batch.label}: {e}")
                continue
            if materialized.created:
                result.items_created += 1
            scored.append(
                ScoredCandidate(
                    item_id=materialized.item_id,
                    candidate=candidate,
                    affinity=self._settings.PENDING_BATCH_AFFINITY,
                )
            )

        if resolver.candidates and not scored:
            log.warning(
                "No tracks of pending batch could be stored, keeping it queued",
                batch_id=batch.identifier,
                candidates=len(resolver.candidates),
            )
            return False

        engine = EventSynthesisEngine(
            self._rng_factory(batch_seed(batch)),
            self._settings.DEFAULT_TRACK_DURATION_MS,
            calendar_years=True,
        )
        events = engine.synthesize_all(scored, window)
        inserted = await inserter.insert(events, self._settings.SYNTHESIZED_DUPLICATE_TOLERANCE_SECONDS)

        result.events_created += inserted.inserted
        result.events_skipped += inserted.skipped
        if inserted.cancelled:
            result.cancelled = True
            return False

        log.debug(
            "Pending batch processed",
            batch_id=batch.identifier,
            year=batch.year,
            candidates=len(scored),
            events_inserted=inserted.inserted,
        )
        return True
