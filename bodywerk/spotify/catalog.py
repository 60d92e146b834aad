"""
Playlist catalog: listing, lookup and enriched track streams

The catalog is the read side of the engine. All requests go through the
HTTP gateway; list endpoints are consumed lazily through Paginator so that
large libraries and playlists are never materialised by the catalog itself.

Page sizes:
- /me/playlists: 50 per page (the upstream maximum)
- /playlists/{id}/tracks: 20 per page, since every track is followed by a
  feature lookup and small pages keep the time to first output short
"""

import re
from typing import Any, Dict, Iterator, Optional

from ..config.settings import EngineConfig
from ..core.cancellation import CancellationToken
from ..utils.helpers import build_url, join_url
from ..utils.logger import get_logger
from .features import FeatureEnricher
from .gateway import HttpGateway
from .models import EnrichedTrack, PlaylistRef, ProgressCallback, TrackRef
from .paginator import Paginator


# Field selection keeps playlist pages small; total and next drive pagination
PLAYLIST_FIELDS = "id,name,description,public,snapshot_id,images,owner(id,display_name),tracks(total)"
TRACK_FIELDS = "items(track(id,name,uri,preview_url,is_local,artists(name),album(name,images))),next,total"

PLAYLIST_ID_PATTERN = re.compile(r'^[a-zA-Z0-9]{22}$')


def extract_playlist_id(url_or_id: str) -> str:
    """
    Extract a playlist ID from a Spotify URL, URI or bare ID

    Supported Formats:
    - Direct ID: 22-character alphanumeric string
    - Web URL: https://open.spotify.com/playlist/ID?si=...
    - Spotify URI: spotify:playlist:ID

    Args:
        url_or_id: Spotify playlist URL, URI or ID

    Returns:
        Playlist ID

    Raises:
        ValueError: If no playlist ID can be extracted

    Examples:
        extract_playlist_id("37i9dQZF1DXcBWIGoYBM5M")
        extract_playlist_id("https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M?si=abc123")
        extract_playlist_id("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M")
    """
    value = (url_or_id or "").strip()
    if PLAYLIST_ID_PATTERN.match(value):
        return value

    if 'spotify.com' in value:
        if 'playlist/' in value:
            playlist_id = value.split('playlist/')[-1].split('?')[0].split('/')[0]
            if PLAYLIST_ID_PATTERN.match(playlist_id):
                return playlist_id
    elif value.startswith('spotify:'):
        parts = value.split(':')
        if len(parts) >= 3 and parts[1] == 'playlist' and PLAYLIST_ID_PATTERN.match(parts[2]):
            return parts[2]

    raise ValueError(f"Invalid Spotify playlist URL or ID: {url_or_id}")


def _track_from_item(item: Any) -> Optional[TrackRef]:
    """Playlist item to TrackRef, None for null tracks and tracks without id"""
    track = TrackRef.from_playlist_item(item)
    if track is None or not track.has_id:
        return None
    return track


def _playlist_from_item(item: Any) -> Optional[PlaylistRef]:
    if not isinstance(item, dict) or not item.get('id'):
        return None
    return PlaylistRef.from_spotify_data(item)


class PlaylistCatalog:
    """
    Read access to the current user's playlists

    Search, sorting and slicing of listings are left to the caller.
    """

    def __init__(
        self,
        gateway: HttpGateway,
        enricher: FeatureEnricher,
        api_base_url: str = "https://api.spotify.com/v1",
        engine: Optional[EngineConfig] = None
    ):
        self.gateway = gateway
        self.enricher = enricher
        self.api_base_url = api_base_url
        self.engine = engine or EngineConfig()
        self.logger = get_logger(__name__)

    def _url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        return build_url(join_url(self.api_base_url, path), params)

    def get_current_user(
        self,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Profile of the authenticated user (GET /me)"""
        return self.gateway.get(self._url("me"), cancel_token=cancel_token, timeout=timeout).json()

    def list_user_playlists(
        self,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> Paginator[PlaylistRef]:
        """
        Lazily list the current user's playlists in upstream order

        Returns:
            Paginator yielding PlaylistRef
        """
        url = self._url("me/playlists", {'limit': self.engine.list_page_size})
        return Paginator(self.gateway, url, transform=_playlist_from_item, cancel_token=cancel_token, timeout=timeout)

    def get_playlist(
        self,
        playlist_id: str,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> PlaylistRef:
        """
        Fetch playlist metadata

        Raises:
            NotFound: If the playlist does not exist or is not visible to the user
        """
        url = self._url(f"playlists/{playlist_id}", {'fields': PLAYLIST_FIELDS})
        response = self.gateway.get(url, cancel_token=cancel_token, timeout=timeout)
        playlist = PlaylistRef.from_spotify_data(response.json())
        self.logger.debug(f"Fetched playlist '{playlist.name}' ({playlist.total_tracks} tracks)")
        return playlist

    def iter_playlist_tracks(
        self,
        playlist_id: str,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> Paginator[TrackRef]:
        """
        Lazily iterate the tracks of a playlist

        Items whose nested track is null (removed from the catalog) or has
        no id (local files) are filtered out.
        """
        url = self._url(
            f"playlists/{playlist_id}/tracks",
            {'limit': self.engine.batch_size, 'offset': 0, 'fields': TRACK_FIELDS}
        )
        return Paginator(self.gateway, url, transform=_track_from_item, cancel_token=cancel_token, timeout=timeout)

    def get_playlist_tracks_enriched(
        self,
        playlist_id: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> Iterator[EnrichedTrack]:
        """
        Stream a playlist's tracks joined with danceability

        The playlist metadata is fetched first, so a missing playlist raises
        NotFound immediately; tracks are then paged and enriched lazily.

        Args:
            playlist_id: Spotify playlist id
            on_progress: Callback receiving (current, total); total is the advertised track count
            cancel_token: Cancellation signal for the whole run
            timeout: Per-request deadline in seconds for every request of the run

        Returns:
            Iterator of EnrichedTrack in playlist order
        """
        playlist = self.get_playlist(playlist_id, cancel_token=cancel_token, timeout=timeout)
        self.logger.info(f"Enriching '{playlist.name}' ({playlist.total_tracks} tracks)")
        tracks = self.iter_playlist_tracks(playlist_id, cancel_token=cancel_token, timeout=timeout)
        return self.enricher.enrich(
            tracks,
            total=playlist.total_tracks,
            on_progress=on_progress,
            cancel_token=cancel_token,
            timeout=timeout,
        )
