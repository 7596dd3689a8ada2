"""
Background worker entrypoint for the reconstruction jobs.

`listening-history-worker <job>` or WORKER_JOB=<job> picks what runs:

- reconstruct_history: full run, deferred curated lists go to the queue
- pending_history: drain the queue left by an earlier run
- full_history: both, one after the other

The Redis client and database pool are shared by every job and closed
once, after the job returns.
"""

import asyncio
import os
import sys
import time
from collections.abc import Awaitable, Callable, Sequence

from listening_history.config import settings
from listening_history.db.pool import db_pool
from listening_history.features.history_reconstruction.jobs.reconstruction_job import (
    run_full_history,
    run_history_reconstruction,
    run_pending_history,
)
from listening_history.infrastructure.observability.logging import get_logger, setup_logging
from listening_history.infrastructure.redis_client import redis_client

logger = get_logger(__name__)

DEFAULT_JOB = "reconstruct_history"

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "reconstruct_history": run_history_reconstruction,
    "pending_history": run_pending_history,
    "full_history": run_full_history,
}


def _resolve_job_name(argv: Sequence[str] | None = None) -> str:
    args = sys.argv[1:] if argv is None else argv
    raw = args[0] if args else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return raw.strip().lower()


async def shutdown_resources() -> None:
    await redis_client.close()
    await db_pool.close()


async def run_worker(job_name: str | None = None) -> None:
    """Run one registered job; unknown names raise ValueError."""
    name = (job_name or _resolve_job_name()).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        known = ", ".join(sorted(JOB_REGISTRY))
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {known}")

    started = time.monotonic()
    logger.info("Worker job starting", job=name, environment=settings.environment)
    try:
        await job()
    finally:
        await shutdown_resources()
    logger.info(
        "Worker job finished", job=name, elapsed_ms=round((time.monotonic() - started) * 1000, 2)
    )


def main() -> None:
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
