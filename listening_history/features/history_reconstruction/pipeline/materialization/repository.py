"""
Repository helpers for canonical tracks.

Reads and writes the tracks, artists, track_artists and enriched_metadata
tables that back the local library.
"""

from collections.abc import Sequence
from dataclasses import replace

import psycopg

from listening_history.db.helpers import DatabaseError, execute_query, fetch_one
from listening_history.db.pool import get_db_transaction
from listening_history.features.history_reconstruction.domain.models import (
    CanonicalItem,
    DescriptiveMetadata,
)
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_TRACK_COLUMNS = "id, spotify_id, title, artist, duration_ms, album, image_url"


def _track_from_row(row: dict) -> CanonicalItem:
    return CanonicalItem(
        id=row["id"],
        external_id=row.get("spotify_id"),
        title=row["title"],
        artist=row["artist"],
        duration_ms=row.get("duration_ms"),
        album=row.get("album"),
        image_url=row.get("image_url"),
    )


class TrackRepository:
    """Raw SQL canonical item store."""

    @classmethod
    async def find_by_external_id(cls, external_id: str) -> CanonicalItem | None:
        query = f"SELECT {_TRACK_COLUMNS} FROM tracks WHERE spotify_id = %s LIMIT 1"
        row = await fetch_one(query, (external_id,))
        return _track_from_row(row) if row else None

    @classmethod
    async def find_by_title_artist(cls, title: str, artist: str) -> CanonicalItem | None:
        query = f"""
            SELECT {_TRACK_COLUMNS}
            FROM tracks
            WHERE title = %s AND artist = %s
            ORDER BY id
            LIMIT 1
        """
        row = await fetch_one(query, (title, artist))
        return _track_from_row(row) if row else None

    @classmethod
    async def insert(
        cls, item: CanonicalItem, *, connection: psycopg.AsyncConnection | None = None
    ) -> int:
        query = """
            INSERT INTO tracks (spotify_id, title, artist, duration_ms, album, image_url)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id
        """
        row = await fetch_one(
            query,
            (
                item.external_id,
                item.title,
                item.artist,
                item.duration_ms,
                item.album,
                item.image_url,
            ),
            connection=connection,
        )
        if not row:
            raise DatabaseError("Track insert returned no id", operation="insert_track")
        return row["id"]

    @classmethod
    async def update(cls, item: CanonicalItem) -> None:
        query = """
            UPDATE tracks
            SET spotify_id = %s,
                duration_ms = %s,
                album = %s,
                image_url = %s,
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(
            query, (item.external_id, item.duration_ms, item.album, item.image_url, item.id)
        )

    @classmethod
    async def get_descriptive_metadata(cls, item_id: int) -> DescriptiveMetadata | None:
        query = """
            SELECT track_id, spotify_id, genres, album, image_url, source
            FROM enriched_metadata
            WHERE track_id = %s
        """
        row = await fetch_one(query, (item_id,))
        if not row:
            return None
        return DescriptiveMetadata(
            item_id=row["track_id"],
            external_id=row.get("spotify_id"),
            genres=list(row.get("genres") or []),
            album=row.get("album"),
            image_url=row.get("image_url"),
            source=row.get("source"),
        )

    @classmethod
    async def upsert_descriptive_metadata(
        cls, metadata: DescriptiveMetadata, *, connection: psycopg.AsyncConnection | None = None
    ) -> None:
        query = """
            INSERT INTO enriched_metadata (track_id, spotify_id, genres, album, image_url, source)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (track_id) DO UPDATE SET
                spotify_id = COALESCE(enriched_metadata.spotify_id, EXCLUDED.spotify_id),
                genres = CASE
                    WHEN cardinality(enriched_metadata.genres) = 0 THEN EXCLUDED.genres
                    ELSE enriched_metadata.genres
                END,
                album = COALESCE(enriched_metadata.album, EXCLUDED.album),
                image_url = COALESCE(enriched_metadata.image_url, EXCLUDED.image_url),
                source = COALESCE(enriched_metadata.source, EXCLUDED.source),
                updated_at = NOW()
        """
        await execute_query(
            query,
            (
                metadata.item_id,
                metadata.external_id,
                list(metadata.genres),
                metadata.album,
                metadata.image_url,
                metadata.source,
            ),
            connection=connection,
        )

    @classmethod
    async def has_artist_links(cls, item_id: int) -> bool:
        row = await fetch_one("SELECT 1 FROM track_artists WHERE track_id = %s LIMIT 1", (item_id,))
        return row is not None

    @classmethod
    async def _link_artists(
        cls, conn: psycopg.AsyncConnection, item_id: int, artist_names: Sequence[str]
    ) -> int:
        created = 0
        for position, name in enumerate(artist_names):
            inserted = await fetch_one(
                """
                INSERT INTO artists (name) VALUES (%s)
                ON CONFLICT (name) DO NOTHING
                RETURNING id
                """,
                (name,),
                connection=conn,
            )
            if inserted:
                created += 1
                artist_id = inserted["id"]
            else:
                existing = await fetch_one(
                    "SELECT id FROM artists WHERE name = %s", (name,), connection=conn
                )
                artist_id = existing["id"]

            await execute_query(
                """
                INSERT INTO track_artists (track_id, artist_id, position)
                VALUES (%s, %s, %s)
                ON CONFLICT (track_id, artist_id) DO NOTHING
                """,
                (item_id, artist_id, position),
                connection=conn,
            )
        return created

    @classmethod
    async def link_artists(cls, item_id: int, artist_names: Sequence[str]) -> int:
        """Create missing artists and link them in credit order."""
        try:
            async with await get_db_transaction() as conn:
                return await cls._link_artists(conn, item_id, artist_names)
        except DatabaseError:
            raise
        except Exception as e:
            logger.error("Failed to link artists", item_id=item_id, error=str(e))
            raise DatabaseError(f"Artist linking failed: {e}", operation="link_artists") from e

    @classmethod
    async def create_item(
        cls,
        item: CanonicalItem,
        artist_names: Sequence[str],
        metadata: DescriptiveMetadata | None = None,
    ) -> tuple[int, int]:
        """Insert a track with its artist links and metadata in one transaction."""
        try:
            async with await get_db_transaction() as conn:
                item_id = await cls.insert(item, connection=conn)
                artists_created = await cls._link_artists(conn, item_id, artist_names)
                if metadata is not None:
                    await cls.upsert_descriptive_metadata(
                        replace(metadata, item_id=item_id), connection=conn
                    )
        except DatabaseError:
            raise
        except Exception as e:
            logger.error("Failed to create track", external_id=item.external_id, error=str(e))
            raise DatabaseError(f"Track creation failed: {e}", operation="create_item") from e

        return item_id, artists_created
