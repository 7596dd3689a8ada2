"""
Library materialization - ensures each candidate exists as a canonical item.

Lookups go by external id first and fall back to an exact title + artist
match. Existing items only gain data that is missing; nothing populated is
overwritten, so materializing the same candidate twice is a no-op. A new item
is written together with its artist links and metadata, or not at all;
an existing item that has no artist links gets them here.
"""

from listening_history.features.history_reconstruction.domain.interfaces import CanonicalItemStore
from listening_history.features.history_reconstruction.domain.models import (
    CandidateItem,
    CanonicalItem,
    DescriptiveMetadata,
    MaterializedItem,
)
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MaterializationError(Exception):
    """Raised when a candidate cannot be turned into a canonical item."""

    def __init__(self, message: str, external_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.external_id = external_id
        self.recoverable = recoverable


class LibraryMaterializer:
    def __init__(self, store: CanonicalItemStore, metadata_source: str = "spotify"):
        self._store = store
        self._metadata_source = metadata_source

    async def materialize(self, candidate: CandidateItem) -> MaterializedItem:
        try:
            existing = await self._store.find_by_external_id(candidate.external_id)
            if existing is None:
                existing = await self._store.find_by_title_artist(
                    candidate.title, candidate.artist_display
                )

            if existing is not None:
                artists_created = await self._merge_existing(existing, candidate)
                return MaterializedItem(
                    item_id=existing.id, created=False, artists_created=artists_created
                )

            item_id, artists_created = await self._store.create_item(
                CanonicalItem(
                    id=None,
                    external_id=candidate.external_id,
                    title=candidate.title,
                    artist=candidate.artist_display,
                    duration_ms=candidate.duration_ms or None,
                    album=candidate.album,
                    image_url=candidate.image_url,
                ),
                candidate.artists,
                self._metadata_for(0, candidate),
            )

        except MaterializationError:
            raise
        except Exception as e:
            logger.warning(
                "Failed to materialize candidate",
                external_id=candidate.external_id,
                title=candidate.title,
                error=str(e),
            )
            raise MaterializationError(
                f"Failed to materialize {candidate.title!r}: {e}", external_id=candidate.external_id
            ) from e

        logger.debug(
            "Canonical item created",
            item_id=item_id,
            external_id=candidate.external_id,
            artists_created=artists_created,
        )
        return MaterializedItem(item_id=item_id, created=True, artists_created=artists_created)

    async def _merge_existing(self, existing: CanonicalItem, candidate: CandidateItem) -> int:
        changed = False
        if not existing.external_id:
            existing.external_id = candidate.external_id
            changed = True
        if not existing.album and candidate.album:
            existing.album = candidate.album
            changed = True
        if not existing.image_url and candidate.image_url:
            existing.image_url = candidate.image_url
            changed = True
        if not existing.duration_ms and candidate.duration_ms:
            existing.duration_ms = candidate.duration_ms
            changed = True

        if changed:
            await self._store.update(existing)

        artists_created = 0
        if candidate.artists and not await self._store.has_artist_links(existing.id):
            artists_created = await self._store.link_artists(existing.id, candidate.artists)

        if not candidate.tags:
            return artists_created

        try:
            metadata = await self._store.get_descriptive_metadata(existing.id)
            if metadata is None:
                await self._store.upsert_descriptive_metadata(self._metadata_for(existing.id, candidate))
            elif not metadata.genres:
                metadata.genres = list(candidate.tags)
                await self._store.upsert_descriptive_metadata(metadata)
        except Exception as e:
            logger.warning(
                "Failed to merge genres into existing item",
                item_id=existing.id,
                error=str(e),
            )
        return artists_created

    def _metadata_for(self, item_id: int, candidate: CandidateItem) -> DescriptiveMetadata:
        return DescriptiveMetadata(
            item_id=item_id,
            external_id=candidate.external_id,
            genres=list(candidate.tags),
            album=candidate.album,
            image_url=candidate.image_url,
            source=self._metadata_source,
        )
