"""
Contracts for the collaborators the reconstruction engine consumes.

Stores and token providers live outside the engine; anything satisfying
these protocols can be wired in.
"""

from collections.abc import Callable, Sequence
from typing import Protocol

from .models import CanonicalItem, DescriptiveMetadata, InsertResult, SynthesizedEvent

# onProgress(current, total, phase, message)
ProgressCallback = Callable[[int, int, str, str], None]


class AccessTokenProvider(Protocol):
    def is_connected(self) -> bool: ...

    async def get_valid_access_token(self) -> str | None: ...


class RandomSource(Protocol):
    """Subset of random.Random the synthesis engine draws from."""

    def random(self) -> float: ...

    def uniform(self, a: float, b: float) -> float: ...

    def randint(self, a: int, b: int) -> int: ...

    def getrandbits(self, k: int) -> int: ...


class CanonicalItemStore(Protocol):
    async def find_by_external_id(self, external_id: str) -> CanonicalItem | None: ...

    async def find_by_title_artist(self, title: str, artist: str) -> CanonicalItem | None: ...

    async def insert(self, item: CanonicalItem) -> int: ...

    async def update(self, item: CanonicalItem) -> None: ...

    async def get_descriptive_metadata(self, item_id: int) -> DescriptiveMetadata | None: ...

    async def upsert_descriptive_metadata(self, metadata: DescriptiveMetadata) -> None: ...

    async def link_artists(self, item_id: int, artist_names: Sequence[str]) -> int:
        """Link contributing artists, returning how many artist rows were created."""
        ...

    async def has_artist_links(self, item_id: int) -> bool: ...

    async def create_item(
        self,
        item: CanonicalItem,
        artist_names: Sequence[str],
        metadata: DescriptiveMetadata | None = None,
    ) -> tuple[int, int]:
        """
        Insert the item, link its artists and store its metadata as one unit.

        Either everything is written or nothing is. metadata.item_id is
        replaced with the new id. Returns (item_id, artists_created).
        """
        ...


class EventStore(Protocol):
    async def insert_batch_with_dedup(
        self, events: Sequence[SynthesizedEvent], tolerance_seconds: float
    ) -> InsertResult:
        """
        Insert events that have no stored duplicate.

        A duplicate references the same item with a timestamp less than
        tolerance_seconds away, or exactly equal when the tolerance is 0.
        """
        ...


class CancellationToken:
    """Cooperative cancellation flag polled between phases, pages and chunks."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled
