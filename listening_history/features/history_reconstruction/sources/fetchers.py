"""
Evidence source adapter.

Pages through each Spotify evidence source under a fixed inter-call delay
and turns what it finds into EvidenceRecords. Fetches never raise for API
failures: partial data is returned together with the errors that stopped
the loop.
"""

import asyncio
from collections.abc import Awaitable, Callable

from listening_history.config import Settings, settings as default_settings
from listening_history.features.history_reconstruction.domain.interfaces import CancellationToken
from listening_history.features.history_reconstruction.domain.models import (
    EvidenceRecord,
    EvidenceTier,
    RecencyBucket,
)
from listening_history.infrastructure.observability.logging import get_logger

from .results import FetchOutcome, SourceError, SourceNotFound, SourceSuccess
from .spotify_client import SpotifyClient
from .spotify_models import PlaylistSummary, SpotifyTrack

logger = get_logger(__name__)

# Ranked items are merged in this order, so recent ranks come first
RANKED_TIME_RANGES = ("short_term", "medium_term", "long_term")
GENRE_TIME_RANGES = ("long_term", "medium_term", "short_term")

# Stop scanning playlists once enough yearly lists are found past this many
PLAYLIST_SCAN_EARLY_EXIT = 100


class ArtistGenreIndex:
    """Lowercased artist name -> genre tags, first sighting wins."""

    def __init__(self, genres: dict[str, list[str]] | None = None):
        self._genres: dict[str, list[str]] = {}
        for name, tags in (genres or {}).items():
            self.add(name, tags)

    def add(self, artist_name: str, genres: list[str]) -> None:
        key = artist_name.strip().lower()
        if key and key not in self._genres:
            self._genres[key] = list(genres)

    def lookup(self, artist_name: str) -> list[str]:
        return list(self._genres.get(artist_name.strip().lower(), []))

    def __len__(self) -> int:
        return len(self._genres)


def _describe(result: SourceError | SourceNotFound) -> str:
    if isinstance(result, SourceNotFound):
        return f"not found: {result.resource}"
    if result.status_code:
        return f"{result.message} (HTTP {result.status_code})"
    return result.message


class EvidenceSourceAdapter:
    def __init__(
        self,
        api: SpotifyClient,
        access_token: str,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cancellation: CancellationToken | None = None,
    ):
        self._api = api
        self._access_token = access_token
        self._settings = settings or default_settings
        self._sleep = sleep
        self._cancellation = cancellation

    def _cancelled(self) -> bool:
        return self._cancellation is not None and self._cancellation.is_cancelled

    async def _pause(self) -> None:
        await self._sleep(self._settings.api_delay_seconds())

    def _record(
        self,
        track: SpotifyTrack,
        tier: EvidenceTier,
        source: str,
        genres: ArtistGenreIndex,
        **evidence,
    ) -> EvidenceRecord:
        return EvidenceRecord(
            external_id=track.id,
            title=track.name,
            artists=track.artist_names,
            duration_ms=track.duration_ms,
            tier=tier,
            source=source,
            tags=genres.lookup(track.primary_artist_name),
            album=track.album_name,
            image_url=track.image_url,
            **evidence,
        )

    async def fetch_artist_genres(self) -> FetchOutcome[ArtistGenreIndex]:
        """Collect genres of the user's top artists across every time range."""
        index = ArtistGenreIndex()
        outcome = FetchOutcome(value=index)
        page_size = self._settings.SPOTIFY_PAGE_SIZE

        for time_range in GENRE_TIME_RANGES:
            offset = 0
            for _ in range(self._settings.MAX_API_PAGES):
                if self._cancelled():
                    return outcome

                result = await self._api.get_top_artists(
                    self._access_token, time_range, page_size, offset
                )
                outcome.pages += 1
                if not isinstance(result, SourceSuccess):
                    outcome.errors.append(f"Top artists ({time_range}): {_describe(result)}")
                    break

                for artist in result.value.items:
                    index.add(artist.name, artist.genres)

                await self._pause()
                if not result.value.has_next or not result.value.items:
                    break
                offset += page_size

        logger.info("Artist genres collected", artist_count=len(index), pages=outcome.pages)
        return outcome

    async def fetch_recently_played(
        self, genres: ArtistGenreIndex
    ) -> FetchOutcome[list[EvidenceRecord]]:
        """Exact play timestamps; a single call, the API caps it at 50."""
        outcome: FetchOutcome[list[EvidenceRecord]] = FetchOutcome(value=[])

        result = await self._api.get_recently_played(
            self._access_token, self._settings.RECENTLY_PLAYED_LIMIT
        )
        outcome.pages = 1
        if not isinstance(result, SourceSuccess):
            outcome.errors.append(f"Recently played: {_describe(result)}")
            return outcome

        for play in result.value:
            if play.played_at is None:
                logger.warning(
                    "Recently played entry has unusable timestamp",
                    track=play.track.name,
                    played_at=play.played_at_raw,
                )
            outcome.value.append(
                self._record(
                    play.track,
                    EvidenceTier.EXACT_PLAY,
                    "recently_played",
                    genres,
                    timestamp=play.played_at,
                )
            )

        await self._pause()
        return outcome

    async def fetch_saved_tracks(self, genres: ArtistGenreIndex) -> FetchOutcome[list[EvidenceRecord]]:
        outcome: FetchOutcome[list[EvidenceRecord]] = FetchOutcome(value=[])
        page_size = self._settings.SPOTIFY_PAGE_SIZE
        offset = 0

        for _ in range(self._settings.MAX_API_PAGES):
            if self._cancelled():
                break

            result = await self._api.get_saved_tracks(self._access_token, page_size, offset)
            outcome.pages += 1
            if not isinstance(result, SourceSuccess):
                outcome.errors.append(f"Saved tracks: {_describe(result)}")
                break

            for saved in result.value.items:
                outcome.value.append(
                    self._record(
                        saved.track,
                        EvidenceTier.SAVED_DATE,
                        "saved_tracks",
                        genres,
                        timestamp=saved.added_at,
                    )
                )

            await self._pause()
            if not result.value.has_next or not result.value.items:
                break
            offset += page_size

        logger.info("Saved tracks fetched", record_count=len(outcome.value), pages=outcome.pages)
        return outcome

    async def find_curated_lists(self) -> FetchOutcome[list[PlaylistSummary]]:
        """Yearly "Your Top Songs" playlists, newest year first."""
        outcome: FetchOutcome[list[PlaylistSummary]] = FetchOutcome(value=[])
        page_size = self._settings.SPOTIFY_PAGE_SIZE
        max_lists = self._settings.MAX_CURATED_LISTS
        found: list[PlaylistSummary] = []
        searched = 0
        offset = 0

        for _ in range(self._settings.MAX_API_PAGES):
            if self._cancelled():
                break

            result = await self._api.get_user_playlists(self._access_token, page_size, offset)
            outcome.pages += 1
            if not isinstance(result, SourceSuccess):
                outcome.errors.append(f"Playlists: {_describe(result)}")
                break

            for playlist in result.value.items:
                searched += 1
                if playlist.id and playlist.is_yearly_top_songs and playlist.year_from_name:
                    found.append(playlist)

            await self._pause()
            if len(found) >= max_lists and searched > PLAYLIST_SCAN_EARLY_EXIT:
                break
            if not result.value.has_next or not result.value.items:
                break
            offset += page_size

        found.sort(key=lambda playlist: playlist.year_from_name, reverse=True)
        outcome.value = found[:max_lists]

        logger.info(
            "Curated year lists located",
            found=len(found),
            kept=len(outcome.value),
            playlists_searched=searched,
        )
        return outcome

    async def fetch_curated_list_records(
        self, playlist_id: str, year: int | None, genres: ArtistGenreIndex
    ) -> FetchOutcome[list[EvidenceRecord]]:
        outcome: FetchOutcome[list[EvidenceRecord]] = FetchOutcome(value=[])
        page_size = self._settings.PLAYLIST_PAGE_SIZE
        offset = 0

        for _ in range(self._settings.MAX_API_PAGES):
            if self._cancelled():
                break

            result = await self._api.get_playlist_tracks(
                self._access_token, playlist_id, page_size, offset
            )
            outcome.pages += 1
            if not isinstance(result, SourceSuccess):
                outcome.errors.append(f"Playlist {playlist_id}: {_describe(result)}")
                break

            for entry in result.value.items:
                if entry.track is None:
                    continue
                outcome.value.append(
                    self._record(
                        entry.track, EvidenceTier.CURATED_YEAR, "curated_year", genres, year=year
                    )
                )

            await self._pause()
            if not result.value.has_next or not result.value.items:
                break
            offset += page_size

        return outcome

    async def fetch_ranked_records(self, genres: ArtistGenreIndex) -> FetchOutcome[list[EvidenceRecord]]:
        """
        Top tracks from every time range, de-duplicated in range order.

        Rank is the 1-based position in the de-duplicated list and the
        recency bucket comes from the first range an item appeared in.
        """
        outcome: FetchOutcome[list[EvidenceRecord]] = FetchOutcome(value=[])
        page_size = self._settings.SPOTIFY_PAGE_SIZE
        seen: set[str] = set()

        for time_range in RANKED_TIME_RANGES:
            bucket = RecencyBucket.from_time_range(time_range)
            offset = 0
            for _ in range(self._settings.MAX_API_PAGES):
                if self._cancelled():
                    return outcome

                result = await self._api.get_top_tracks(
                    self._access_token, time_range, page_size, offset
                )
                outcome.pages += 1
                if not isinstance(result, SourceSuccess):
                    outcome.errors.append(f"Top tracks ({time_range}): {_describe(result)}")
                    break

                for track in result.value.items:
                    if not track.id or track.id in seen:
                        continue
                    seen.add(track.id)
                    outcome.value.append(
                        self._record(
                            track,
                            EvidenceTier.RANKED_ONLY,
                            f"top_tracks.{time_range}",
                            genres,
                            rank=len(seen),
                            recency_bucket=bucket,
                        )
                    )

                await self._pause()
                if not result.value.has_next or not result.value.items:
                    break
                offset += page_size

        logger.info("Ranked tracks fetched", record_count=len(outcome.value), pages=outcome.pages)
        return outcome
