"""
Domain subpackage for history reconstruction.
"""

from .interfaces import (
    AccessTokenProvider,
    CanonicalItemStore,
    CancellationToken,
    EventStore,
    ProgressCallback,
    RandomSource,
)
from .models import (
    CandidateItem,
    CanonicalItem,
    DescriptiveMetadata,
    EvidenceRecord,
    EvidenceTier,
    GenerationWindow,
    InsertResult,
    MaterializedItem,
    PendingBatch,
    PendingProcessResult,
    RecencyBucket,
    ReconstructionResult,
    ScoredCandidate,
    SynthesisStrategy,
    SynthesizedEvent,
)

__all__ = [
    "AccessTokenProvider",
    "CanonicalItemStore",
    "CancellationToken",
    "EventStore",
    "ProgressCallback",
    "RandomSource",
    "CandidateItem",
    "CanonicalItem",
    "DescriptiveMetadata",
    "EvidenceRecord",
    "EvidenceTier",
    "GenerationWindow",
    "InsertResult",
    "MaterializedItem",
    "PendingBatch",
    "PendingProcessResult",
    "RecencyBucket",
    "ReconstructionResult",
    "ScoredCandidate",
    "SynthesisStrategy",
    "SynthesizedEvent",
]
