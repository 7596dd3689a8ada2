"""
In-process canonical item and event stores.

Used by tests and by hosts that keep their library in memory. Semantics
match the PostgreSQL repositories.
"""

import bisect
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from listening_history.features.history_reconstruction.domain.models import (
    CanonicalItem,
    DescriptiveMetadata,
    InsertResult,
    SynthesizedEvent,
)


class InMemoryCanonicalItemStore:
    def __init__(self):
        self.items: dict[int, CanonicalItem] = {}
        self.metadata: dict[int, DescriptiveMetadata] = {}
        self.artists: dict[str, int] = {}
        self.item_artists: dict[int, list[int]] = {}
        self._next_item_id = 1

    async def find_by_external_id(self, external_id: str) -> CanonicalItem | None:
        for item in self.items.values():
            if item.external_id == external_id:
                return replace(item)
        return None

    async def find_by_title_artist(self, title: str, artist: str) -> CanonicalItem | None:
        for item in self.items.values():
            if item.title == title and item.artist == artist:
                return replace(item)
        return None

    async def insert(self, item: CanonicalItem) -> int:
        item_id = self._next_item_id
        self._next_item_id += 1
        self.items[item_id] = replace(item, id=item_id)
        return item_id

    async def update(self, item: CanonicalItem) -> None:
        if item.id not in self.items:
            raise KeyError(f"Unknown item {item.id}")
        self.items[item.id] = replace(item)

    async def get_descriptive_metadata(self, item_id: int) -> DescriptiveMetadata | None:
        metadata = self.metadata.get(item_id)
        return replace(metadata, genres=list(metadata.genres)) if metadata else None

    async def upsert_descriptive_metadata(self, metadata: DescriptiveMetadata) -> None:
        self.metadata[metadata.item_id] = replace(metadata, genres=list(metadata.genres))

    async def link_artists(self, item_id: int, artist_names: Sequence[str]) -> int:
        created = 0
        linked = self.item_artists.setdefault(item_id, [])
        for name in artist_names:
            if name not in self.artists:
                self.artists[name] = len(self.artists) + 1
                created += 1
            artist_id = self.artists[name]
            if artist_id not in linked:
                linked.append(artist_id)
        return created

    async def has_artist_links(self, item_id: int) -> bool:
        return bool(self.item_artists.get(item_id))

    async def create_item(
        self,
        item: CanonicalItem,
        artist_names: Sequence[str],
        metadata: DescriptiveMetadata | None = None,
    ) -> tuple[int, int]:
        item_id = await self.insert(item)
        try:
            artists_created = await self.link_artists(item_id, artist_names)
            if metadata is not None:
                await self.upsert_descriptive_metadata(replace(metadata, item_id=item_id))
        except Exception:
            # Roll back everything written for this item
            self.items.pop(item_id, None)
            self.item_artists.pop(item_id, None)
            self.metadata.pop(item_id, None)
            raise
        return item_id, artists_created


class InMemoryEventStore:
    def __init__(self):
        self.events: list[SynthesizedEvent] = []
        self._timestamps: dict[int, list[datetime]] = {}

    def _has_duplicate(self, item_id: int, timestamp: datetime, tolerance_seconds: float) -> bool:
        stored = self._timestamps.get(item_id, [])
        if tolerance_seconds <= 0:
            index = bisect.bisect_left(stored, timestamp)
            return index < len(stored) and stored[index] == timestamp

        tolerance = timedelta(seconds=tolerance_seconds)
        index = bisect.bisect_right(stored, timestamp - tolerance)
        return index < len(stored) and stored[index] < timestamp + tolerance

    async def insert_batch_with_dedup(
        self, events: Sequence[SynthesizedEvent], tolerance_seconds: float
    ) -> InsertResult:
        result = InsertResult()
        for event in events:
            if self._has_duplicate(event.item_id, event.timestamp, tolerance_seconds):
                result.skipped += 1
                continue
            bisect.insort(self._timestamps.setdefault(event.item_id, []), event.timestamp)
            self.events.append(event)
            result.inserted += 1
        return result

    def events_for(self, item_id: int) -> list[SynthesizedEvent]:
        return [event for event in self.events if event.item_id == item_id]
