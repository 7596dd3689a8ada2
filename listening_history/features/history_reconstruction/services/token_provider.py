"""
Access token providers for hosts that manage OAuth elsewhere.
"""

from listening_history.config import settings


class StaticTokenProvider:
    """Serves a token the host already holds; empty means not connected."""

    def __init__(self, access_token: str | None = None):
        self._access_token = access_token if access_token is not None else settings.SPOTIFY_ACCESS_TOKEN

    def is_connected(self) -> bool:
        return bool(self._access_token)

    async def get_valid_access_token(self) -> str | None:
        return self._access_token or None
