"""
Sort-and-publish pipeline

Writes an ordered selection of tracks into a newly created playlist:

1. POST /users/{user_id}/playlists (private unless the plan says otherwise)
2. POST /playlists/{new_id}/tracks in chunks of at most 100 URIs, pausing
   between chunks

The pipeline is not idempotent: each run creates a new playlist. Upstream
writes are not transactional either, so once the playlist exists any
failure is reported as PartialWrite carrying the new playlist id and how
many URIs were confirmed, which is where a caller resumes. Nothing is
rolled back.
"""

from typing import Iterable, List, Optional

from ..config.settings import EngineConfig
from ..core.cancellation import CancellationToken, interruptible_sleep
from ..core.exceptions import Cancelled, EngineError, PartialWrite, UpstreamReject
from ..utils.helpers import chunked, join_url, ms_to_seconds
from ..utils.logger import get_logger
from .gateway import HttpGateway, Sleeper
from .models import EnrichedTrack, PlaylistRef, ProgressCallback, PublishPlan, SortKey


def sort_tracks(tracks: Iterable[EnrichedTrack], key: SortKey = SortKey.DANCEABILITY_DESC) -> List[EnrichedTrack]:
    """
    Order enriched tracks for publishing

    The sort is stable in both directions: tracks with equal danceability
    keep their playlist order, so sorting an already sorted list is a no-op.

    Args:
        tracks: Enriched tracks in playlist order
        key: Requested ordering

    Returns:
        New list in the requested order
    """
    if key is SortKey.DANCEABILITY_DESC:
        return sorted(tracks, key=lambda track: track.danceability, reverse=True)
    if key is SortKey.DANCEABILITY_ASC:
        return sorted(tracks, key=lambda track: track.danceability)
    return list(tracks)


class PublishPipeline:
    """Creates a playlist and fills it from a PublishPlan"""

    def __init__(
        self,
        gateway: HttpGateway,
        api_base_url: str = "https://api.spotify.com/v1",
        engine: Optional[EngineConfig] = None,
        sleeper: Sleeper = interruptible_sleep
    ):
        self.gateway = gateway
        self.api_base_url = api_base_url
        self.engine = engine or EngineConfig()
        self.sleeper = sleeper
        self.logger = get_logger(__name__)

        self.chunk_size = max(1, min(100, int(self.engine.append_chunk_size)))
        self.chunk_delay = ms_to_seconds(self.engine.append_delay_ms)

    def create_playlist(
        self,
        plan: PublishPlan,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> PlaylistRef:
        """
        Create the target playlist

        Raises:
            UpstreamReject: If the upstream refuses or returns no playlist id
        """
        url = join_url(self.api_base_url, f"users/{plan.user_id}/playlists")
        response = self.gateway.post(
            url,
            json_body={
                'name': plan.name,
                'description': plan.description,
                'public': bool(plan.public),
            },
            cancel_token=cancel_token,
            timeout=timeout,
        )
        playlist = PlaylistRef.from_spotify_data(response.json())
        if not playlist.id:
            raise UpstreamReject(
                "Playlist creation returned no playlist id",
                status=response.status,
                body=response.data,
                details={'url': url}
            )
        self.logger.info(f"Created playlist '{playlist.name}' ({playlist.id}, public={plan.public})")
        return playlist

    def publish(
        self,
        plan: PublishPlan,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> PlaylistRef:
        """
        Execute a plan: create the playlist, then append all URIs in order

        Args:
            plan: What to create and which URIs to write
            on_progress: Callback receiving (written, total) after each chunk
            cancel_token: Cancellation signal for the whole run
            timeout: Per-request deadline in seconds, the gateway default when None

        Returns:
            PlaylistRef of the new playlist, total_tracks set to the written count

        Raises:
            PartialWrite: If an append fails after the playlist was created
            Cancelled: If cancelled; after creation details carry new_playlist_id and written_count
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(details={'stage': 'create'})

        playlist = self.create_playlist(plan, cancel_token=cancel_token, timeout=timeout)
        total = plan.total
        written = 0
        append_url = join_url(self.api_base_url, f"playlists/{playlist.id}/tracks")

        for index, chunk in enumerate(chunked(plan.track_uris, self.chunk_size)):
            try:
                if index:
                    self.sleeper(self.chunk_delay, cancel_token)
                self.gateway.post(
                    append_url, json_body={'uris': chunk}, cancel_token=cancel_token, timeout=timeout
                )
            except Cancelled as e:
                self.logger.warning(f"Publishing cancelled after {written}/{total} tracks ({playlist.id})")
                raise Cancelled(
                    f"Publishing to {playlist.id} cancelled after {written}/{total} tracks",
                    details={
                        'new_playlist_id': playlist.id,
                        'written_count': written,
                        'total_count': total,
                    }
                ) from e
            except EngineError as e:
                self.logger.error(f"Append failed at {written}/{total} tracks for {playlist.id}: {e}")
                raise PartialWrite(
                    f"Playlist {playlist.id} was created but only {written} of {total} tracks were added: {e}",
                    new_playlist_id=playlist.id,
                    written_count=written,
                    total_count=total,
                    details={'cause': type(e).__name__}
                ) from e

            written += len(chunk)
            self.logger.debug(f"Appended chunk {index + 1} ({written}/{total}) to {playlist.id}")
            if on_progress is not None:
                on_progress(written, total)

        self.logger.info(f"Published {written} tracks to '{playlist.name}' ({playlist.id})")
        return playlist.with_total(written)
