"""
Persistence for the pending-work queue.

Pending batches are the only state that outlives a reconstruction run.
They are stored per owner key as a JSON list with a TTL.
"""

from typing import Protocol

from pydantic import BaseModel, TypeAdapter, ValidationError

from listening_history.config import settings
from listening_history.features.history_reconstruction.domain.models import PendingBatch
from listening_history.infrastructure.observability.logging import get_logger
from listening_history.infrastructure.redis_client import RedisUnavailableError

logger = get_logger(__name__)

KEY_PREFIX = "listening_history:pending"


class PendingStoreError(Exception):
    """Raised when the pending queue cannot be read or written."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class PendingBatchPayload(BaseModel):
    identifier: str
    year: int | None = None
    label: str = ""

    @classmethod
    def from_domain(cls, batch: PendingBatch) -> "PendingBatchPayload":
        return cls(identifier=batch.identifier, year=batch.year, label=batch.label)

    def to_domain(self) -> PendingBatch:
        return PendingBatch(identifier=self.identifier, year=self.year, label=self.label)


_payload_list = TypeAdapter(list[PendingBatchPayload])


def encode_batches(batches: list[PendingBatch]) -> str:
    return _payload_list.dump_json([PendingBatchPayload.from_domain(b) for b in batches]).decode()


def decode_batches(raw: str) -> list[PendingBatch]:
    return [payload.to_domain() for payload in _payload_list.validate_json(raw)]


class PendingBatchStore(Protocol):
    async def load(self, owner_key: str) -> list[PendingBatch]: ...

    async def save(self, owner_key: str, batches: list[PendingBatch]) -> None: ...

    async def clear(self, owner_key: str) -> None: ...


class KeyValueClient(Protocol):
    async def get(self, key: str, *, strict: bool = False) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...


class RedisPendingBatchStore:
    """Pending queue kept in Redis through the pooled client."""

    def __init__(self, client: KeyValueClient, ttl_seconds: int | None = None):
        self._client = client
        self._ttl_seconds = ttl_seconds or settings.PENDING_BATCH_TTL_SECONDS

    @staticmethod
    def key_for(owner_key: str) -> str:
        return f"{KEY_PREFIX}:{owner_key}"

    async def load(self, owner_key: str) -> list[PendingBatch]:
        try:
            raw = await self._client.get(self.key_for(owner_key), strict=True)
        except RedisUnavailableError as e:
            logger.error("Pending queue unreachable", owner_key=owner_key, error=str(e))
            raise PendingStoreError(f"Pending queue unreachable: {e}", operation="load") from e
        if not raw:
            return []
        try:
            return decode_batches(raw)
        except ValidationError as e:
            logger.error("Stored pending batches are unreadable", owner_key=owner_key, error=str(e))
            raise PendingStoreError(
                f"Corrupt pending batch payload: {e}", operation="load", recoverable=False
            ) from e

    async def save(self, owner_key: str, batches: list[PendingBatch]) -> None:
        if not batches:
            await self.clear(owner_key)
            return

        stored = await self._client.set_with_ttl(
            self.key_for(owner_key), encode_batches(batches), self._ttl_seconds
        )
        if not stored:
            raise PendingStoreError("Failed to persist pending batches", operation="save")

        logger.info("Pending batches saved", owner_key=owner_key, batch_count=len(batches))

    async def clear(self, owner_key: str) -> None:
        await self._client.delete(self.key_for(owner_key))


class InMemoryPendingBatchStore:
    def __init__(self):
        self._batches: dict[str, list[PendingBatch]] = {}

    async def load(self, owner_key: str) -> list[PendingBatch]:
        return list(self._batches.get(owner_key, []))

    async def save(self, owner_key: str, batches: list[PendingBatch]) -> None:
        if batches:
            self._batches[owner_key] = list(batches)
        else:
            self._batches.pop(owner_key, None)

    async def clear(self, owner_key: str) -> None:
        self._batches.pop(owner_key, None)
