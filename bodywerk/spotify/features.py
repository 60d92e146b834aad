"""
Audio feature enrichment

Joins playlist tracks with their danceability score from the Spotify
audio-features endpoints. Lookups are paced to stay well inside the
upstream rate limits: by default one request per track with a pause in
between, optionally batched (up to 50 ids per request) when enabled in
the engine configuration.

Permanent per-track failures never abort a pipeline run. A 404, a 403
from the deprecated endpoint, or a persisting 5xx yields the track with
danceability 0 and missing_features set. Rate limiting, network failures,
authentication failures and cancellation propagate to the caller.
"""

import time
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..config.settings import EngineConfig
from ..core.cancellation import CancellationToken, interruptible_sleep
from ..core.exceptions import UpstreamReject
from ..utils.helpers import build_url, join_url, ms_to_seconds
from ..utils.logger import get_logger
from .gateway import HttpGateway, Sleeper
from .models import EnrichedTrack, ProgressCallback, TrackRef


class FeatureEnricher:
    """
    Streams EnrichedTrack values for a sequence of TrackRef

    Output order always matches input order. Tracks without an id are
    dropped since they cannot be added to a new playlist.
    """

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

        self.request_delay = ms_to_seconds(self.engine.rate_limit_delay_ms)
        self.batch_delay = ms_to_seconds(self.engine.feature_batch_delay_ms)

    @property
    def batching(self) -> bool:
        return bool(self.engine.feature_batching)

    def enrich(
        self,
        tracks: Iterable[TrackRef],
        total: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> Iterator[EnrichedTrack]:
        """
        Enrich tracks with danceability, lazily

        Args:
            tracks: Tracks in playlist order; may be a lazy iterator
            total: Count reported to the progress callback; defaults to len(tracks) when available
            on_progress: Callback receiving (current, total) after each track or batch
            cancel_token: Cancellation signal for the whole run
            timeout: Per-request deadline in seconds, the gateway default when None

        Yields:
            EnrichedTrack for every input track that has an id, in input order

        Raises:
            RateLimited, NetworkError, AuthExpired, Cancelled: Propagated from the gateway
        """
        if total is None and hasattr(tracks, '__len__'):
            total = len(tracks)

        if self.batching:
            return self._enrich_batched(tracks, total, on_progress, cancel_token, timeout)
        return self._enrich_single(tracks, total, on_progress, cancel_token, timeout)

    def _enrich_single(
        self,
        tracks: Iterable[TrackRef],
        total: Optional[int],
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
        timeout: Optional[float]
    ) -> Iterator[EnrichedTrack]:
        current = 0
        missing = 0
        requested = False
        started = time.monotonic()

        for track in tracks:
            current += 1
            if not track.has_id:
                self.logger.debug(f"Skipping track without id: '{track.name}'")
                self._report(on_progress, current, total)
                continue

            if requested:
                self.sleeper(self.request_delay, cancel_token)
            requested = True

            enriched = self._lookup_single(track, cancel_token, timeout)
            if enriched.missing_features:
                missing += 1
            self._report(on_progress, current, total)
            yield enriched

        self.logger.info(
            f"Enriched {current} tracks ({missing} without features) "
            f"in {time.monotonic() - started:.1f}s"
        )

    def _lookup_single(
        self,
        track: TrackRef,
        cancel_token: Optional[CancellationToken],
        timeout: Optional[float] = None
    ) -> EnrichedTrack:
        url = join_url(self.api_base_url, f"audio-features/{track.id}")
        try:
            response = self.gateway.get(url, cancel_token=cancel_token, timeout=timeout)
        except UpstreamReject as e:
            self.logger.warning(
                f"No audio features for '{track.name}' ({track.id}): {e.status} {e.upstream_message or ''}".rstrip()
            )
            return EnrichedTrack.missing(track)

        enriched = EnrichedTrack.from_features(track, response.json())
        if enriched.missing_features:
            self.logger.warning(f"Audio features for '{track.name}' ({track.id}) carry no danceability")
        return enriched

    def _enrich_batched(
        self,
        tracks: Iterable[TrackRef],
        total: Optional[int],
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancellationToken],
        timeout: Optional[float]
    ) -> Iterator[EnrichedTrack]:
        batch_size = max(1, min(50, int(self.engine.feature_batch_size)))
        current = 0
        batches = 0
        pending: List[TrackRef] = []

        def flush() -> List[EnrichedTrack]:
            nonlocal batches
            if batches:
                self.sleeper(self.batch_delay, cancel_token)
            batches += 1
            return self._lookup_batch(pending, cancel_token, timeout)

        for track in tracks:
            current += 1
            if not track.has_id:
                self.logger.debug(f"Skipping track without id: '{track.name}'")
                continue
            pending.append(track)
            if len(pending) >= batch_size:
                results = flush()
                pending = []
                self._report(on_progress, current, total)
                yield from results

        if pending:
            results = flush()
            pending = []
            yield from results
        self._report(on_progress, current, total)
        self.logger.info(f"Enriched {current} tracks in {batches} batches")

    def _lookup_batch(
        self,
        batch: List[TrackRef],
        cancel_token: Optional[CancellationToken],
        timeout: Optional[float] = None
    ) -> List[EnrichedTrack]:
        url = build_url(
            join_url(self.api_base_url, "audio-features"),
            {'ids': ",".join(track.id for track in batch)}
        )
        try:
            response = self.gateway.get(url, cancel_token=cancel_token, timeout=timeout)
        except UpstreamReject as e:
            self.logger.warning(f"Batch feature lookup of {len(batch)} tracks rejected ({e.status})")
            return [EnrichedTrack.missing(track) for track in batch]

        entries = response.json().get('audio_features') or []
        by_id: Dict[str, Dict[str, Any]] = {
            entry['id']: entry for entry in entries
            if isinstance(entry, dict) and entry.get('id')
        }

        return [EnrichedTrack.from_features(track, by_id.get(track.id)) for track in batch]

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], current: int, total: Optional[int]) -> None:
        if on_progress is not None:
            on_progress(current, total if total is not None else current)
