"""
History reconstruction feature package.

This vertical slice keeps every layer of listening-history reconstruction
co-located (domain models, evidence sources, pipeline stages, repositories,
services and jobs) so the whole flow can be read in one place.
"""

# Re-export the primary building blocks for easy access.
from .domain.models import (  # noqa: F401
    CandidateItem,
    EvidenceTier,
    GenerationWindow,
    PendingBatch,
    ReconstructionResult,
    SynthesizedEvent,
)
from .services.reconstruction_service import HistoryReconstructionService  # noqa: F401
