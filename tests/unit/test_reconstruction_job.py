from unittest.mock import AsyncMock, MagicMock

import pytest

from listening_history.features.history_reconstruction.domain.models import (
    PendingBatch,
    ReconstructionResult,
)
from listening_history.features.history_reconstruction.jobs import reconstruction_job
from listening_history.features.history_reconstruction.repository.pending_store import (
    RedisPendingBatchStore,
)
from listening_history.features.history_reconstruction.services import StaticTokenProvider


@pytest.fixture
def wired(monkeypatch, fake_redis):
    api = MagicMock()
    api.close = AsyncMock()
    service = MagicMock()
    service.reconstruct = AsyncMock()

    monkeypatch.setattr(reconstruction_job, "SpotifyClient", lambda settings: api)
    monkeypatch.setattr(reconstruction_job, "build_reconstruction_service", lambda client: service)
    monkeypatch.setattr(reconstruction_job, "redis_client", fake_redis)
    return api, service


@pytest.mark.asyncio
async def test_reconstruction_job_queues_pending_batches(wired, fake_redis):
    api, service = wired
    batch = PendingBatch("p2019", 2019, "Your Top Songs 2019")
    service.reconstruct.return_value = ReconstructionResult(pending_batches=[batch])

    await reconstruction_job.run_history_reconstruction()

    owner = reconstruction_job.settings.PENDING_OWNER_KEY
    assert await RedisPendingBatchStore(fake_redis).load(owner) == [batch]
    api.close.assert_awaited_once()
    # Shared connections stay open for whatever runs next
    assert fake_redis.closed is False


@pytest.mark.asyncio
async def test_reconstruction_job_leaves_queue_alone_when_not_connected(wired, fake_redis):
    api, service = wired
    service.reconstruct.return_value = ReconstructionResult.not_connected()

    await reconstruction_job.run_history_reconstruction()

    assert fake_redis.store == {}
    api.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_reconstruction_job_does_not_close_a_borrowed_client(wired):
    api, service = wired
    service.reconstruct.return_value = ReconstructionResult()
    borrowed = MagicMock()
    borrowed.close = AsyncMock()

    await reconstruction_job.run_history_reconstruction(borrowed)

    borrowed.close.assert_not_awaited()
    api.close.assert_not_awaited()


@pytest.mark.asyncio
async def test_static_token_provider():
    connected = StaticTokenProvider("abc")
    empty = StaticTokenProvider("")

    assert connected.is_connected() is True
    assert await connected.get_valid_access_token() == "abc"
    assert empty.is_connected() is False
    assert await empty.get_valid_access_token() is None
