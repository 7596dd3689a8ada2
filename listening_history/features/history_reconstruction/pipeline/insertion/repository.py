"""
Repository helpers for listening events.

Each chunk is written in one transaction; every row is guarded by a
NOT EXISTS check against stored events of the same track.
"""

from collections.abc import Sequence

from listening_history.db.helpers import DatabaseError
from listening_history.db.pool import get_db_transaction
from listening_history.features.history_reconstruction.domain.models import (
    InsertResult,
    SynthesizedEvent,
)
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_INSERT_COLUMNS = """
    INSERT INTO listening_events (
        track_id, timestamp, play_duration_ms, completion_percentage, source, session_id
    )
    SELECT %s, %s, %s, %s, %s, %s
"""

INSERT_IF_ABSENT_EXACT = (
    _INSERT_COLUMNS
    + """
    WHERE NOT EXISTS (
        SELECT 1 FROM listening_events
        WHERE track_id = %s AND timestamp = %s
    )
"""
)

INSERT_IF_ABSENT_WITHIN = (
    _INSERT_COLUMNS
    + """
    WHERE NOT EXISTS (
        SELECT 1 FROM listening_events
        WHERE track_id = %s
          AND timestamp > %s - make_interval(secs => %s)
          AND timestamp < %s + make_interval(secs => %s)
    )
"""
)


def _params(event: SynthesizedEvent, tolerance_seconds: float) -> tuple:
    row = (
        event.item_id,
        event.timestamp,
        event.play_duration_ms,
        event.completion_percentage,
        event.source,
        event.session_id,
    )
    if tolerance_seconds <= 0:
        return row + (event.item_id, event.timestamp)
    return row + (
        event.item_id,
        event.timestamp,
        tolerance_seconds,
        event.timestamp,
        tolerance_seconds,
    )


class ListeningEventRepository:
    """Raw SQL event store for idempotent inserts."""

    @classmethod
    async def insert_batch_with_dedup(
        cls, events: Sequence[SynthesizedEvent], tolerance_seconds: float
    ) -> InsertResult:
        if not events:
            return InsertResult()

        query = INSERT_IF_ABSENT_EXACT if tolerance_seconds <= 0 else INSERT_IF_ABSENT_WITHIN
        result = InsertResult()

        try:
            async with await get_db_transaction() as conn:
                for event in events:
                    cursor = await conn.execute(query, _params(event, tolerance_seconds))
                    if cursor.rowcount > 0:
                        result.inserted += 1
                    else:
                        result.skipped += 1
        except Exception as e:
            logger.error("Listening event batch insert failed", batch_size=len(events), error=str(e))
            raise DatabaseError(
                f"Event batch insert failed: {e}", operation="insert_batch_with_dedup"
            ) from e

        return result
