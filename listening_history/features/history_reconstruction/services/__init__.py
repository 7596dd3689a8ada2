"""
Service layer for history reconstruction.
"""

from .reconstruction_service import HistoryReconstructionService
from .token_provider import StaticTokenProvider

__all__ = ["HistoryReconstructionService", "StaticTokenProvider"]
