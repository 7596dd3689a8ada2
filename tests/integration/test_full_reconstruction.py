"""
End-to-end reconstruction over the real Spotify client.

HTTP is served by httpx.MockTransport, stores are in memory and the pending
queue goes through the Redis-backed store with a fake client.
"""

import random
from datetime import timedelta

import httpx
import pytest

from listening_history.config import Settings
from listening_history.features.history_reconstruction.domain.models import SynthesisStrategy
from listening_history.features.history_reconstruction.jobs.pending_history_job import (
    PendingHistoryJob,
)
from listening_history.features.history_reconstruction.repository.memory import (
    InMemoryCanonicalItemStore,
    InMemoryEventStore,
)
from listening_history.features.history_reconstruction.repository.pending_store import (
    RedisPendingBatchStore,
)
from listening_history.features.history_reconstruction.services import (
    HistoryReconstructionService,
)
from listening_history.features.history_reconstruction.sources import SpotifyClient

from conftest import FIXED_NOW, FakeTokenProvider, iso, no_sleep, track_json

pytestmark = pytest.mark.integration

PLAYLIST_YEARS = (2023, 2022, 2021, 2020, 2019)


def _page(items):
    return {"items": items, "total": len(items), "next": None}


def spotify_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path.removeprefix("/v1")
    time_range = request.url.params.get("time_range")

    if path == "/me/top/artists":
        artists = {"long_term": [{"name": "Daft Punk", "genres": ["french house"]}]}
        return httpx.Response(200, json=_page(artists.get(time_range, [])))
    if path == "/me/player/recently-played":
        played = [
            {"track": track_json("one-more-time", artist="Daft Punk"), "played_at": iso(FIXED_NOW - timedelta(minutes=30))},
            {"track": track_json("one-more-time", artist="Daft Punk"), "played_at": iso(FIXED_NOW - timedelta(hours=5))},
        ]
        return httpx.Response(200, json={"items": played})
    if path == "/me/tracks":
        saved = [{"added_at": "2023-11-02T20:15:00Z", "track": track_json("around-the-world")}]
        return httpx.Response(200, json=_page(saved))
    if path == "/me/playlists":
        playlists = [
            {"id": f"top-{year}", "name": f"Your Top Songs {year}", "owner": {"id": "spotify"}}
            for year in PLAYLIST_YEARS
        ]
        playlists.append({"id": "gym", "name": "Gym", "owner": {"id": "me"}})
        return httpx.Response(200, json=_page(playlists))
    if path.startswith("/playlists/"):
        playlist_id = path.split("/")[2]
        year = playlist_id.removeprefix("top-")
        return httpx.Response(200, json=_page([{"track": track_json(f"hit-{year}")}]))
    if path == "/me/top/tracks":
        tracks = {
            "short_term": [track_json("digital-love"), track_json("one-more-time", artist="Daft Punk")],
            "long_term": [track_json("veridis-quo")],
        }
        return httpx.Response(200, json=_page(tracks.get(time_range, [])))
    return httpx.Response(404, json={"error": {"status": 404, "message": "Not found"}})


@pytest.fixture
def settings():
    return Settings(
        SPOTIFY_API_BASE_URL="https://api.spotify.test/v1",
        API_DELAY_MS=0,
        CHUNK_DELAY_MS=0,
        INITIAL_CURATED_LISTS=3,
    )


@pytest.mark.asyncio
async def test_reconstruction_then_background_continuation(settings, fake_redis, fixed_clock):
    client = SpotifyClient(
        settings, transport=httpx.MockTransport(spotify_handler), sleep=no_sleep
    )
    items = InMemoryCanonicalItemStore()
    events = InMemoryEventStore()
    service = HistoryReconstructionService(
        client,
        FakeTokenProvider(),
        items,
        events,
        settings=settings,
        rng=random.Random(2024),
        sleep=no_sleep,
        clock=fixed_clock,
    )
    pending_store = RedisPendingBatchStore(fake_redis, ttl_seconds=600)

    result = await service.reconstruct()

    assert result.is_success
    assert result.errors == []
    assert result.exact_plays_found == 2
    assert result.curated_lists_processed == 3
    assert [batch.identifier for batch in result.pending_batches] == ["top-2020", "top-2019"]

    exact = [e for e in events.events if e.strategy == SynthesisStrategy.EXACT_PASSTHROUGH]
    assert sorted(e.timestamp for e in exact) == [
        FIXED_NOW - timedelta(hours=5),
        FIXED_NOW - timedelta(minutes=30),
    ]
    estimated = [e for e in events.events if e.strategy == SynthesisStrategy.RECENCY_BIASED]
    assert estimated
    assert all(e.source.endswith(".estimated") for e in estimated)

    await pending_store.save("listener", result.pending_batches)
    metrics = await PendingHistoryJob(service, pending_store).run_once("listener")

    assert metrics["batches_processed"] == 2
    assert metrics["items_created"] == 2
    assert await pending_store.load("listener") == []
    for year in (2019, 2020):
        hit = await items.find_by_external_id(f"hit-{year}")
        assert {e.timestamp.year for e in events.events_for(hit.id)} == {year}

    before = len(events.events)
    rerun = await service.process_pending(result.pending_batches)

    assert rerun.events_created == 0
    assert len(events.events) == before
    await client.close()
