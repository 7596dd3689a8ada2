"""
Idempotent event insertion package.
"""

from .repository import ListeningEventRepository
from .service import IdempotentInserter, validation_error

__all__ = ["IdempotentInserter", "ListeningEventRepository", "validation_error"]
