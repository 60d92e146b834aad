"""
Data models for Spotify playlist and track information

This module defines the value types that flow through the engine. Every model
that wraps upstream data is built through a `from_spotify_data()` style factory
so that parsing of external JSON lives in one place and tolerates missing
fields.

Model overview:

1. **TrackRef**: one playable item of a playlist (id may be absent for local
   files or unavailable tracks)
2. **EnrichedTrack**: a TrackRef joined with its danceability score
3. **PlaylistRef**: playlist metadata as shown in a listing
4. **PaginationCursor**: position of a Paginator in a cursor chain
5. **PublishPlan**: everything the publish pipeline needs to write a new playlist

TrackRef, EnrichedTrack, PlaylistRef and PublishPlan are frozen dataclasses:
they are copied freely between layers and never mutated. PaginationCursor is
the only mutable model and is owned by a single Paginator.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..utils.helpers import coerce_score


ProgressCallback = Callable[[int, int], None]


class SortKey(Enum):
    """
    Orderings supported by the publish pipeline

    All orderings are stable: tracks with equal scores keep their
    upstream playlist order.

    Values:
        DANCEABILITY_DESC: Most danceable first (the default)
        DANCEABILITY_ASC: Least danceable first
        IDENTITY: Upstream order, unchanged
    """
    DANCEABILITY_DESC = "danceability_desc"
    DANCEABILITY_ASC = "danceability_asc"
    IDENTITY = "identity"


def best_image_url(images: Optional[List[Dict[str, Any]]], min_size: int = 300) -> Optional[str]:
    """
    Pick the most suitable cover image from a Spotify image array

    Prefers the largest image whose width or height reaches min_size,
    otherwise falls back to the largest available. Images without
    dimensions (common for user-uploaded playlist covers) count as size 0.

    Args:
        images: Spotify `images` array, may be None
        min_size: Minimum pixel dimension for the preferred selection

    Returns:
        URL of the chosen image, or None if no usable image exists
    """
    candidates = [img for img in (images or []) if isinstance(img, dict) and img.get('url')]
    if not candidates:
        return None

    def area(img: Dict[str, Any]) -> int:
        return (img.get('width') or 0) * (img.get('height') or 0)

    suitable = [img for img in candidates
                if (img.get('width') or 0) >= min_size or (img.get('height') or 0) >= min_size]
    if suitable:
        return max(suitable, key=area)['url']
    # Spotify lists images widest first; keep that order when sizes are unknown
    if not any(area(img) for img in candidates):
        return candidates[0]['url']
    return max(candidates, key=area)['url']


@dataclass(frozen=True)
class TrackRef:
    """
    Reference to a single track as it appears in a playlist

    Attributes:
        id: Spotify track id, None for local files and unavailable tracks
        uri: Spotify URI used when appending to a playlist (spotify:track:id)
        name: Track title
        artists: Artist names in credited order
        album_name: Name of the album the track belongs to
        album_image_url: Best available album cover URL
        preview_url: 30-second preview URL, often None
        is_local: True for user-uploaded local files
    """
    id: Optional[str]
    uri: str
    name: str
    artists: Tuple[str, ...] = ()
    album_name: str = ""
    album_image_url: Optional[str] = None
    preview_url: Optional[str] = None
    is_local: bool = False

    @classmethod
    def from_spotify_data(cls, data: Dict[str, Any]) -> 'TrackRef':
        """
        Build a TrackRef from a Spotify track object

        Args:
            data: The `track` object of a playlist item

        Returns:
            TrackRef with missing optional fields defaulted
        """
        album = data.get('album') or {}
        artists = tuple(
            artist.get('name', '')
            for artist in (data.get('artists') or [])
            if isinstance(artist, dict) and artist.get('name')
        )
        return cls(
            id=data.get('id') or None,
            uri=data.get('uri') or '',
            name=data.get('name') or '',
            artists=artists,
            album_name=album.get('name') or '',
            album_image_url=best_image_url(album.get('images')),
            preview_url=data.get('preview_url'),
            is_local=bool(data.get('is_local', False)),
        )

    @classmethod
    def from_playlist_item(cls, item: Optional[Dict[str, Any]]) -> Optional['TrackRef']:
        """
        Build a TrackRef from a playlist page item

        Returns None when the item or its nested track is null, which
        Spotify uses for tracks removed from the catalog.
        """
        if not isinstance(item, dict):
            return None
        track_data = item.get('track')
        if not isinstance(track_data, dict):
            return None
        return cls.from_spotify_data(track_data)

    @property
    def has_id(self) -> bool:
        return bool(self.id)

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else "Unknown Artist"

    @property
    def all_artists(self) -> str:
        return ", ".join(self.artists)


@dataclass(frozen=True)
class EnrichedTrack:
    """
    Track joined with its danceability score

    Danceability is always within [0, 1]. When the upstream has no
    features for the track the score is exactly 0 and missing_features
    is set, so callers can tell "not danceable" apart from "unknown".
    """
    track: TrackRef
    danceability: float = 0.0
    missing_features: bool = False

    @classmethod
    def from_features(cls, track: TrackRef, features: Optional[Dict[str, Any]]) -> 'EnrichedTrack':
        """
        Join a track with an audio-features object

        Args:
            track: Track the features were requested for
            features: Upstream audio-features JSON, None when unavailable

        Returns:
            EnrichedTrack with a clamped score, or a missing-features entry
        """
        score = coerce_score(features.get('danceability')) if isinstance(features, dict) else None
        if score is None:
            return cls.missing(track)
        return cls(track=track, danceability=score, missing_features=False)

    @classmethod
    def missing(cls, track: TrackRef) -> 'EnrichedTrack':
        return cls(track=track, danceability=0.0, missing_features=True)

    @property
    def id(self) -> Optional[str]:
        return self.track.id

    @property
    def uri(self) -> str:
        return self.track.uri

    @property
    def name(self) -> str:
        return self.track.name


@dataclass(frozen=True)
class PlaylistRef:
    """
    Playlist metadata as returned by listing and lookup endpoints

    Attributes:
        id: Spotify playlist id
        name: Playlist name
        image_url: Cover image URL if the playlist has one
        owner_name: Display name of the owner (falls back to the owner id)
        total_tracks: Advertised item count, including unavailable items
        owner_id: Spotify user id of the owner
        public: Visibility flag, None when the upstream does not say
        description: Playlist description
        snapshot_id: Version identifier of the playlist contents
    """
    id: str
    name: str
    image_url: Optional[str] = None
    owner_name: str = ""
    total_tracks: int = 0
    owner_id: str = ""
    public: Optional[bool] = None
    description: str = ""
    snapshot_id: Optional[str] = None

    @classmethod
    def from_spotify_data(cls, data: Dict[str, Any]) -> 'PlaylistRef':
        """
        Build a PlaylistRef from a simplified or full playlist object

        Args:
            data: Playlist JSON from /me/playlists, /playlists/{id} or playlist creation

        Returns:
            PlaylistRef with missing optional fields defaulted
        """
        owner = data.get('owner') or {}
        tracks = data.get('tracks') or {}
        total = tracks.get('total') if isinstance(tracks, dict) else None
        return cls(
            id=data.get('id') or '',
            name=data.get('name') or '',
            image_url=best_image_url(data.get('images')),
            owner_name=owner.get('display_name') or owner.get('id') or '',
            total_tracks=int(total or 0),
            owner_id=owner.get('id') or '',
            public=data.get('public'),
            description=data.get('description') or '',
            snapshot_id=data.get('snapshot_id'),
        )

    def with_total(self, total_tracks: int) -> 'PlaylistRef':
        return replace(self, total_tracks=total_tracks)


@dataclass
class PaginationCursor:
    """
    Position of a Paginator within an upstream cursor chain

    next_url is the opaque URL the upstream returned for the following
    page; None once the chain is exhausted.
    """
    next_url: Optional[str] = None
    item_count: int = 0
    page_count: int = 0
    total: Optional[int] = None
    seen_urls: List[str] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.page_count > 0 and self.next_url is None


@dataclass(frozen=True)
class PublishPlan:
    """
    Description of a playlist to create and fill

    Attributes:
        user_id: Spotify user id that will own the new playlist
        name: Name of the new playlist
        description: Description of the new playlist
        public: Visibility of the new playlist
        track_uris: URIs to append, in final order
    """
    user_id: str
    name: str
    description: str = ""
    public: bool = False
    track_uris: Tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return len(self.track_uris)
