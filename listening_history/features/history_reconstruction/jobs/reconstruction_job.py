"""
Worker entry points for history reconstruction.

Wire the production collaborators from settings: Spotify client, static
token provider, PostgreSQL stores and the Redis pending queue. The shared
Redis client and database pool are closed by the worker once its job is
done, never here, so jobs can run back to back.
"""

from listening_history.config import settings
from listening_history.features.history_reconstruction.pipeline.insertion import (
    ListeningEventRepository,
)
from listening_history.features.history_reconstruction.pipeline.materialization import (
    TrackRepository,
)
from listening_history.features.history_reconstruction.repository.pending_store import (
    RedisPendingBatchStore,
)
from listening_history.features.history_reconstruction.services.reconstruction_service import (
    HistoryReconstructionService,
)
from listening_history.features.history_reconstruction.services.token_provider import (
    StaticTokenProvider,
)
from listening_history.features.history_reconstruction.sources import SpotifyClient
from listening_history.infrastructure.observability.logging import get_logger
from listening_history.infrastructure.redis_client import redis_client

from .pending_history_job import PendingHistoryJob

logger = get_logger(__name__)


def build_reconstruction_service(api: SpotifyClient) -> HistoryReconstructionService:
    return HistoryReconstructionService(
        api,
        StaticTokenProvider(),
        TrackRepository,
        ListeningEventRepository,
        settings=settings,
    )


async def run_history_reconstruction(api: SpotifyClient | None = None) -> None:
    """Run a full reconstruction and queue the deferred curated lists."""
    owns_api = api is None
    api = api or SpotifyClient(settings)
    pending_store = RedisPendingBatchStore(redis_client)
    try:
        result = await build_reconstruction_service(api).reconstruct()
        if not result.is_success:
            logger.error(
                "History reconstruction did not run",
                connected=result.connected,
                error=result.fatal_error,
            )
            return

        await pending_store.save(settings.PENDING_OWNER_KEY, result.pending_batches)
        logger.info(
            "History reconstruction stored",
            owner_key=settings.PENDING_OWNER_KEY,
            items_created=result.items_created,
            events_inserted=result.events_inserted,
            pending_batches=len(result.pending_batches),
            errors=result.errors,
        )
    finally:
        if owns_api:
            await api.close()


async def run_pending_history(api: SpotifyClient | None = None) -> None:
    """Process the queued curated lists for the configured owner."""
    owns_api = api is None
    api = api or SpotifyClient(settings)
    try:
        job = PendingHistoryJob(
            build_reconstruction_service(api), RedisPendingBatchStore(redis_client)
        )
        await job.run_once(settings.PENDING_OWNER_KEY)
    finally:
        if owns_api:
            await api.close()


async def run_full_history() -> None:
    """Reconstruct, then drain the queue it left, over one API client."""
    api = SpotifyClient(settings)
    try:
        await run_history_reconstruction(api)
        await run_pending_history(api)
    finally:
        await api.close()
