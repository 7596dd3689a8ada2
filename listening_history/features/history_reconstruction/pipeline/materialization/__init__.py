"""
Library materialization package.

Create-or-update of canonical items plus their artists and descriptive metadata.
"""

from .repository import TrackRepository
from .service import LibraryMaterializer, MaterializationError

__all__ = ["LibraryMaterializer", "MaterializationError", "TrackRepository"]
