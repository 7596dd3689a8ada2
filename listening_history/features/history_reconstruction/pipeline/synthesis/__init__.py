"""
Event synthesis package.

One generation strategy per evidence tier, drawing from an injected random source.
"""

from .service import EventSynthesisEngine, RECENCY_PROFILES, tier_of

__all__ = ["EventSynthesisEngine", "RECENCY_PROFILES", "tier_of"]
