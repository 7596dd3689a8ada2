"""
Spotify Web API client for the evidence sources used by reconstruction.
Low-level transport: retries, auth headers, error mapping, wire parsing.
"""

import asyncio
from collections.abc import Awaitable, Callable

import httpx

from listening_history.config import Settings, settings as default_settings
from listening_history.infrastructure.observability.logging import get_logger

from .results import Page, SourceError, SourceNotFound, SourceResult, SourceSuccess
from .spotify_models import (
    PlayHistoryItem,
    PlaylistSummary,
    PlaylistTrackItem,
    SavedTrackItem,
    SpotifyArtist,
    SpotifyTrack,
)

logger = get_logger(__name__)

MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
MAX_RETRY_AFTER_SECONDS = 30


class SpotifyApiError(Exception):
    """Custom exception for Spotify Web API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class SpotifyClient:
    """
    Async client for the read-only Spotify endpoints reconstruction needs.

    Public methods never raise for API failures; they return a tagged
    SourceResult so each fetch loop can keep its partial data.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings or default_settings
        self._base_url = self._settings.SPOTIFY_API_BASE_URL.rstrip("/")
        self._sleep = sleep
        self._client = self._create_client(transport)

    def _create_client(self, transport: httpx.AsyncBaseTransport | None) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._settings.SPOTIFY_REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(timeout=timeout, limits=limits, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = self._backoff_seconds(attempt, response)
                    logger.debug(
                        "Spotify API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await self._sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    "Spotify API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await self._sleep(backoff)
        raise RuntimeError("Spotify API retry loop exhausted")

    def _backoff_seconds(self, attempt: int, response: httpx.Response) -> float:
        retry_after = response.headers.get("Retry-After")
        if response.status_code == 429 and retry_after and retry_after.isdigit():
            return min(float(retry_after), MAX_RETRY_AFTER_SECONDS)
        return BACKOFF_FACTOR * (2 ** (attempt - 1))

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate a Spotify API response.

        Args:
            response: HTTP response from the Web API
            operation: Operation name for logging

        Returns:
            dict: Parsed response data

        Raises:
            SpotifyApiError: If the response is an error or not JSON
        """
        logger.debug(
            f"Spotify API {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as e:
                logger.error(f"Failed to parse Spotify API {operation} response", error=str(e))
                raise SpotifyApiError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.content else {}
        except ValueError:
            logger.error(
                f"Spotify API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise SpotifyApiError(
                f"Spotify API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {})
        if isinstance(error_info, str):
            error_message = error_data.get("error_description", error_info)
        else:
            error_message = error_info.get("message", "Unknown Spotify API error")

        logger.error(
            f"Spotify API {operation} failed",
            status_code=response.status_code,
            error_message=error_message,
        )

        raise SpotifyApiError(
            self._map_spotify_error(response.status_code, error_message),
            error_code=str(response.status_code),
            status_code=response.status_code,
            response_data=error_data,
        )

    def _map_spotify_error(self, status_code: int, error_message: str) -> str:
        """Map Spotify status codes to readable messages."""
        error_mappings = {
            400: "Invalid Spotify request.",
            401: "Spotify authorization expired. Please reconnect.",
            403: "Spotify access denied. Missing scope?",
            404: "Spotify resource not found.",
            429: "Spotify rate limit exceeded.",
            500: "Spotify service temporarily unavailable.",
            502: "Spotify service temporarily unavailable.",
            503: "Spotify service temporarily unavailable.",
        }

        return error_mappings.get(status_code, f"Spotify error: {error_message}")

    async def _get(
        self, access_token: str, path: str, operation: str, params: dict | None = None
    ) -> SourceResult[dict]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._request_with_retry(
                "GET", url, headers=self._get_auth_headers(access_token), params=params
            )
            return SourceSuccess(self._handle_api_response(response, operation))

        except SpotifyApiError as e:
            if e.status_code == 404:
                return SourceNotFound(path)
            return SourceError(
                str(e), status_code=e.status_code, retryable=e.status_code in RETRY_STATUS_CODES
            )
        except httpx.RequestError as e:
            logger.warning(f"Spotify API {operation} transport error", error=str(e))
            return SourceError(f"Network error: {e}", retryable=True)

    @staticmethod
    def _map_page(result: SourceResult[dict], parse) -> SourceResult[Page]:
        if isinstance(result, SourceSuccess):
            return SourceSuccess(Page.from_response(result.value, parse))
        return result

    async def get_recently_played(
        self, access_token: str, limit: int = 50
    ) -> SourceResult[list[PlayHistoryItem]]:
        result = await self._get(
            access_token,
            "/me/player/recently-played",
            "recently_played",
            params={"limit": max(1, min(limit, 50))},
        )
        if isinstance(result, SourceSuccess):
            items = result.value.get("items") or []
            return SourceSuccess([PlayHistoryItem(item) for item in items if item])
        return result

    async def get_saved_tracks(
        self, access_token: str, limit: int, offset: int
    ) -> SourceResult[Page[SavedTrackItem]]:
        result = await self._get(
            access_token, "/me/tracks", "saved_tracks", params={"limit": limit, "offset": offset}
        )
        return self._map_page(result, SavedTrackItem)

    async def get_user_playlists(
        self, access_token: str, limit: int, offset: int
    ) -> SourceResult[Page[PlaylistSummary]]:
        result = await self._get(
            access_token, "/me/playlists", "playlists", params={"limit": limit, "offset": offset}
        )
        return self._map_page(result, PlaylistSummary)

    async def get_playlist_tracks(
        self, access_token: str, playlist_id: str, limit: int, offset: int
    ) -> SourceResult[Page[PlaylistTrackItem]]:
        result = await self._get(
            access_token,
            f"/playlists/{playlist_id}/tracks",
            "playlist_tracks",
            params={"limit": limit, "offset": offset},
        )
        return self._map_page(result, PlaylistTrackItem)

    async def get_top_tracks(
        self, access_token: str, time_range: str, limit: int, offset: int
    ) -> SourceResult[Page[SpotifyTrack]]:
        result = await self._get(
            access_token,
            "/me/top/tracks",
            "top_tracks",
            params={"time_range": time_range, "limit": limit, "offset": offset},
        )
        return self._map_page(result, SpotifyTrack)

    async def get_top_artists(
        self, access_token: str, time_range: str, limit: int, offset: int
    ) -> SourceResult[Page[SpotifyArtist]]:
        result = await self._get(
            access_token,
            "/me/top/artists",
            "top_artists",
            params={"time_range": time_range, "limit": limit, "offset": offset},
        )
        return self._map_page(result, SpotifyArtist)
