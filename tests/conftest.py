from datetime import UTC, datetime

import pytest

from listening_history.config import Settings
from listening_history.features.history_reconstruction.sources.results import (
    Page,
    SourceSuccess,
)
from listening_history.features.history_reconstruction.sources.spotify_models import (
    PlayHistoryItem,
    PlaylistSummary,
    PlaylistTrackItem,
    SavedTrackItem,
    SpotifyArtist,
    SpotifyTrack,
)
from listening_history.infrastructure.redis_client import RedisUnavailableError

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def track_json(track_id, name=None, artist="Artist", duration_ms=200_000, album="Album"):
    artists = artist if isinstance(artist, list) else [artist]
    return {
        "id": track_id,
        "name": name or f"Song {track_id}",
        "duration_ms": duration_ms,
        "artists": [{"id": f"artist-{a}", "name": a} for a in artists],
        "album": {"name": album, "images": [{"url": f"https://img/{track_id}.jpg"}]},
    }


def iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%S.000Z")


class FakeSpotifyApi:
    """Serves canned wire payloads through the SpotifyClient method surface."""

    def __init__(
        self,
        recently_played=None,
        saved=None,
        playlists=None,
        playlist_tracks=None,
        top_tracks=None,
        top_artists=None,
        failures=None,
    ):
        self.recently_played = recently_played or []
        self.saved = saved or []
        self.playlists = playlists or []
        self.playlist_tracks = playlist_tracks or {}
        self.top_tracks = top_tracks or {}
        self.top_artists = top_artists or {}
        self.failures = failures or {}
        self.calls: list[tuple] = []

    def _page(self, items, limit, offset, parse):
        chunk = items[offset : offset + limit]
        return SourceSuccess(
            Page(
                items=[parse(item) for item in chunk],
                total=len(items),
                has_next=offset + limit < len(items),
            )
        )

    def _fail(self, operation):
        return self.failures.get(operation)

    async def get_recently_played(self, access_token, limit=50):
        self.calls.append(("recently_played", limit))
        if failure := self._fail("recently_played"):
            return failure
        return SourceSuccess([PlayHistoryItem(item) for item in self.recently_played[:limit]])

    async def get_saved_tracks(self, access_token, limit, offset):
        self.calls.append(("saved_tracks", limit, offset))
        if failure := self._fail("saved_tracks"):
            return failure
        return self._page(self.saved, limit, offset, SavedTrackItem)

    async def get_user_playlists(self, access_token, limit, offset):
        self.calls.append(("playlists", limit, offset))
        if failure := self._fail("playlists"):
            return failure
        return self._page(self.playlists, limit, offset, PlaylistSummary)

    async def get_playlist_tracks(self, access_token, playlist_id, limit, offset):
        self.calls.append(("playlist_tracks", playlist_id, limit, offset))
        if failure := self._fail(f"playlist_tracks:{playlist_id}"):
            return failure
        return self._page(self.playlist_tracks.get(playlist_id, []), limit, offset, PlaylistTrackItem)

    async def get_top_tracks(self, access_token, time_range, limit, offset):
        self.calls.append(("top_tracks", time_range, limit, offset))
        if failure := self._fail(f"top_tracks:{time_range}"):
            return failure
        return self._page(self.top_tracks.get(time_range, []), limit, offset, SpotifyTrack)

    async def get_top_artists(self, access_token, time_range, limit, offset):
        self.calls.append(("top_artists", time_range, limit, offset))
        if failure := self._fail(f"top_artists:{time_range}"):
            return failure
        return self._page(self.top_artists.get(time_range, []), limit, offset, SpotifyArtist)


class FakeTokenProvider:
    def __init__(self, token="token-123", connected=True):
        self.token = token
        self.connected = connected

    def is_connected(self) -> bool:
        return self.connected

    async def get_valid_access_token(self) -> str | None:
        return self.token


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.closed = False

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if self.fail_writes:
            return False
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def get(self, key: str, *, strict: bool = False) -> str | None:
        if self.fail_reads:
            if strict:
                raise RedisUnavailableError("Connection refused")
            return None
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def close(self) -> None:
        self.closed = True


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def test_settings():
    return Settings(API_DELAY_MS=0, CHUNK_DELAY_MS=0, RANDOM_SEED=None)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
