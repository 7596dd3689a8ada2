"""
Pending History Job for resumable background continuation.
Loads an owner's deferred curated lists, processes them and stores back
whatever could not be finished.
"""

import time
from datetime import UTC, datetime

from listening_history.features.history_reconstruction.domain.interfaces import CancellationToken
from listening_history.features.history_reconstruction.repository.pending_store import (
    PendingBatchStore,
    PendingStoreError,
)
from listening_history.features.history_reconstruction.services.reconstruction_service import (
    HistoryReconstructionService,
)
from listening_history.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PendingHistoryJobError(Exception):
    """Custom exception for pending history job operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class PendingHistoryMetrics:
    """Metrics tracking for one pending history run."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.batches_loaded = 0
        self.batches_processed = 0
        self.batches_remaining = 0
        self.items_created = 0
        self.events_created = 0
        self.events_skipped = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_result(self, result) -> None:
        self.batches_processed += result.batches_processed
        self.batches_remaining = len(result.remaining)
        self.items_created += result.items_created
        self.events_created += result.events_created
        self.events_skipped += result.events_skipped
        for error in result.errors:
            self.record_failure(error)

    def record_failure(self, error: str) -> None:
        self.errors.append({"error": error, "timestamp": datetime.now(UTC).isoformat()})
        logger.warning("Pending history error", error=error, job_run="pending_history")

    def finalize(self):
        """Finalize metrics and calculate totals."""
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        """Convert metrics to dictionary for logging."""
        return {
            "job_run": "pending_history",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "batches_loaded": self.batches_loaded,
            "batches_processed": self.batches_processed,
            "batches_remaining": self.batches_remaining,
            "items_created": self.items_created,
            "events_created": self.events_created,
            "events_skipped": self.events_skipped,
            "errors_count": len(self.errors),
        }


class PendingHistoryJob:
    """
    Background continuation for curated lists deferred by the first run.

    Batches that finish are dropped from the queue; cancelled or failed
    ones are written back for the next run.
    """

    def __init__(self, service: HistoryReconstructionService, store: PendingBatchStore):
        self.service = service
        self.store = store
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = PendingHistoryMetrics()

    async def run_once(
        self, owner_key: str, cancellation: CancellationToken | None = None
    ) -> dict:
        """
        Run a single pass over the owner's pending batches.

        Returns:
            Dict: Job execution metrics

        Raises:
            PendingHistoryJobError: If the pending queue cannot be read or written
        """
        if self.is_running:
            logger.warning("Pending history job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        started = time.monotonic()
        try:
            self.is_running = True
            self.job_metrics.reset()

            batches = await self.store.load(owner_key)
            self.job_metrics.batches_loaded = len(batches)

            if not batches:
                logger.info("No pending batches to process", owner_key=owner_key)
                self.job_metrics.finalize()
                return self.job_metrics.to_dict()

            logger.info("Starting pending history job", owner_key=owner_key, batch_count=len(batches))

            result = await self.service.process_pending(batches, cancellation=cancellation)
            self.job_metrics.record_result(result)

            await self.store.save(owner_key, result.remaining)

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            metrics = self.job_metrics.to_dict()
            logger.info(
                "Pending history job completed",
                owner_key=owner_key,
                elapsed_ms=round((time.monotonic() - started) * 1000, 2),
                **metrics,
            )
            return metrics

        except PendingStoreError as e:
            logger.error("Pending queue unavailable", owner_key=owner_key, error=str(e))
            raise PendingHistoryJobError(
                f"Pending queue unavailable: {e}", operation="run_once", recoverable=e.recoverable
            ) from e
        except Exception as e:
            logger.error("Pending history job failed", error=str(e), error_type=type(e).__name__)
            self.job_metrics.finalize()
            raise PendingHistoryJobError(
                f"Pending history job failed: {e}", operation="run_once"
            ) from e

        finally:
            self.is_running = False
