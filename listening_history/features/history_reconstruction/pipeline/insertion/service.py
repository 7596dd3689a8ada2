"""
Idempotent insertion of synthesized events.

Events are validated, chunked and handed to the event store, which skips
anything that already has a stored duplicate. A failing chunk is retried
event by event so one bad row never costs its siblings.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from listening_history.features.history_reconstruction.domain.interfaces import (
    CancellationToken,
    EventStore,
)
from listening_history.features.history_reconstruction.domain.models import (
    InsertResult,
    SynthesizedEvent,
)
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def validation_error(event: SynthesizedEvent) -> str | None:
    """Reason an event cannot be written, None when it is well formed."""
    if event.item_id is None:
        return "missing item id"
    if event.timestamp is None or event.timestamp.tzinfo is None:
        return "timestamp must be timezone-aware"
    if not 0 <= event.completion_percentage <= 100:
        return f"completion {event.completion_percentage} outside [0, 100]"
    if event.play_duration_ms < 0:
        return "negative play duration"
    if not event.source:
        return "missing source tag"
    return None


class IdempotentInserter:
    def __init__(
        self,
        store: EventStore,
        chunk_size: int = 100,
        chunk_delay_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cancellation: CancellationToken | None = None,
    ):
        self._store = store
        self._chunk_size = max(1, chunk_size)
        self._chunk_delay_seconds = chunk_delay_seconds
        self._sleep = sleep
        self._cancellation = cancellation

    async def insert(
        self,
        events: Sequence[SynthesizedEvent],
        tolerance_seconds: float,
        on_chunk: Callable[[int, int, InsertResult], None] | None = None,
    ) -> InsertResult:
        """
        Insert events that are not already stored.

        Args:
            events: Events to insert
            tolerance_seconds: Duplicate window, 0 for exact timestamp match
            on_chunk: Optional hook called as (chunk_index, chunk_count, running_total)

        Returns:
            InsertResult with inserted, skipped and failed counts
        """
        total = InsertResult()

        valid: list[SynthesizedEvent] = []
        for event in events:
            reason = validation_error(event)
            if reason:
                total.failed += 1
                logger.warning("Rejecting malformed event", item_id=event.item_id, reason=reason)
            else:
                valid.append(event)

        chunks = [valid[i : i + self._chunk_size] for i in range(0, len(valid), self._chunk_size)]

        for index, chunk in enumerate(chunks):
            if self._cancellation is not None and self._cancellation.is_cancelled:
                total.cancelled = True
                logger.info(
                    "Event insertion cancelled", chunks_done=index, chunks_total=len(chunks)
                )
                break

            total.merge(await self._insert_chunk(chunk, tolerance_seconds))

            if on_chunk is not None:
                on_chunk(index, len(chunks), total)

            if index < len(chunks) - 1 and self._chunk_delay_seconds > 0:
                await self._sleep(self._chunk_delay_seconds)

        logger.debug(
            "Event insertion finished",
            inserted=total.inserted,
            skipped=total.skipped,
            failed=total.failed,
            tolerance_seconds=tolerance_seconds,
        )
        return total

    async def _insert_chunk(
        self, chunk: list[SynthesizedEvent], tolerance_seconds: float
    ) -> InsertResult:
        try:
            return await self._store.insert_batch_with_dedup(chunk, tolerance_seconds)
        except Exception as e:
            logger.warning(
                "Chunk insert failed, retrying per event", chunk_size=len(chunk), error=str(e)
            )

        result = InsertResult()
        for event in chunk:
            try:
                result.merge(await self._store.insert_batch_with_dedup([event], tolerance_seconds))
            except Exception as e:
                result.failed += 1
                logger.warning(
                    "Event insert failed",
                    item_id=event.item_id,
                    timestamp=event.timestamp.isoformat(),
                    error=str(e),
                )
        return result
