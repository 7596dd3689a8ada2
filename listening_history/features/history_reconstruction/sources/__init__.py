"""
Evidence sources: the Spotify client, its wire models and the paginated fetchers.
"""

from .fetchers import ArtistGenreIndex, EvidenceSourceAdapter
from .results import FetchOutcome, Page, SourceError, SourceNotFound, SourceResult, SourceSuccess
from .spotify_client import SpotifyApiError, SpotifyClient

__all__ = [
    "ArtistGenreIndex",
    "EvidenceSourceAdapter",
    "FetchOutcome",
    "Page",
    "SourceError",
    "SourceNotFound",
    "SourceResult",
    "SourceSuccess",
    "SpotifyApiError",
    "SpotifyClient",
]
