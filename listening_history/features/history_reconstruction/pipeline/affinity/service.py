"""
Affinity estimation - tier plus normalized rank to a score in [0.1, 1.0].

Tiers are scored independently, so a poorly ranked saved item can score
below a well ranked ranked-only item.
"""

from listening_history.features.history_reconstruction.domain.models import (
    CandidateItem,
    EvidenceTier,
)

MIN_AFFINITY = 0.1
MAX_AFFINITY = 1.0
NEUTRAL_RANK = 0.5


class AffinityEstimator:
    # tier -> (base, spread applied to 1 - normalized rank)
    TIER_CURVES = {
        EvidenceTier.SAVED_DATE: (0.8, 0.2),
        EvidenceTier.CURATED_YEAR: (0.6, 0.3),
        EvidenceTier.RANKED_ONLY: (0.0, 1.0),
    }

    @staticmethod
    def normalized_rank(rank: int | None, total_ranked_items: int) -> float:
        if rank is None:
            return NEUTRAL_RANK
        normalized = (rank - 1) / max(1, total_ranked_items - 1)
        return min(1.0, max(0.0, normalized))

    def score(self, tier: EvidenceTier, normalized_rank: float) -> float:
        if tier == EvidenceTier.EXACT_PLAY:
            raw = 1.0
        else:
            base, spread = self.TIER_CURVES[tier]
            raw = base + spread * (1.0 - normalized_rank)
        return min(MAX_AFFINITY, max(MIN_AFFINITY, raw))

    def score_candidate(self, candidate: CandidateItem, total_ranked_items: int) -> float:
        return self.score(
            candidate.tier, self.normalized_rank(candidate.rank, total_ranked_items)
        )


affinity_estimator = AffinityEstimator()
