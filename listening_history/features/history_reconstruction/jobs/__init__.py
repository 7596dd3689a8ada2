"""
Job runners for the history reconstruction feature.
"""

from .pending_history_job import PendingHistoryJob, PendingHistoryJobError, PendingHistoryMetrics
from .reconstruction_job import run_full_history, run_history_reconstruction, run_pending_history

__all__ = [
    "PendingHistoryJob",
    "PendingHistoryJobError",
    "PendingHistoryMetrics",
    "run_full_history",
    "run_history_reconstruction",
    "run_pending_history",
]
