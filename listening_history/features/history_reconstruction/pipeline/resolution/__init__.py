"""
Candidate resolution package.

Merges raw evidence records into one candidate per external id by tier priority.
"""

from .service import CandidateResolver, effective_tier, resolve

__all__ = ["CandidateResolver", "effective_tier", "resolve"]
