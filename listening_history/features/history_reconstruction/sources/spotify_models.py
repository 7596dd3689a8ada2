"""
Spotify wire models.
Thin wrappers that read the Web API's JSON dicts into attribute access.
"""

import re
from datetime import UTC, datetime

YEARLY_PLAYLIST_PREFIX = "your top songs"
_YEAR_PATTERN = re.compile(r"\d{4}")


def parse_spotify_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, None when absent or malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class SpotifyArtist:
    def __init__(self, data: dict):
        self.id = data.get("id")
        self.name = data.get("name") or ""
        self.genres = list(data.get("genres") or [])
        self.popularity = data.get("popularity")


class SpotifyTrack:
    def __init__(self, data: dict):
        self.id = data.get("id")
        self.name = data.get("name") or ""
        self.duration_ms = data.get("duration_ms") or 0
        self.is_local = bool(data.get("is_local", False))
        self.artists = [SpotifyArtist(artist) for artist in data.get("artists") or [] if artist]

        album = data.get("album") or {}
        self.album_name = album.get("name")
        images = album.get("images") or []
        self.image_url = images[0].get("url") if images else None

        external_ids = data.get("external_ids") or {}
        self.isrc = external_ids.get("isrc")

    @property
    def artist_names(self) -> list[str]:
        return [artist.name for artist in self.artists if artist.name]

    @property
    def primary_artist_name(self) -> str:
        names = self.artist_names
        return names[0] if names else "Unknown Artist"


class PlayHistoryItem:
    def __init__(self, data: dict):
        self.track = SpotifyTrack(data.get("track") or {})
        self.played_at_raw = data.get("played_at")
        self.played_at = parse_spotify_timestamp(self.played_at_raw)


class SavedTrackItem:
    def __init__(self, data: dict):
        self.track = SpotifyTrack(data.get("track") or {})
        self.added_at = parse_spotify_timestamp(data.get("added_at"))


class PlaylistSummary:
    def __init__(self, data: dict):
        self.id = data.get("id")
        self.name = data.get("name") or ""
        owner = data.get("owner") or {}
        self.owner_id = owner.get("id")
        tracks = data.get("tracks") or {}
        self.tracks_total = tracks.get("total", 0)

    @property
    def is_yearly_top_songs(self) -> bool:
        return self.name.lower().startswith(YEARLY_PLAYLIST_PREFIX)

    @property
    def year_from_name(self) -> int | None:
        match = _YEAR_PATTERN.search(self.name)
        return int(match.group()) if match else None


class PlaylistTrackItem:
    def __init__(self, data: dict):
        raw_track = data.get("track")
        # Episodes and removed tracks come back without a usable track body
        if raw_track and raw_track.get("type", "track") == "track":
            self.track = SpotifyTrack(raw_track)
        else:
            self.track = None
        self.added_at = parse_spotify_timestamp(data.get("added_at"))
