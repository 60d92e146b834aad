"""
Caller facade for the danceability engine

DanceabilityEngine wires the token manager, HTTP gateway, feature enricher,
playlist catalog and publish pipeline together and is the only object a
caller (the CLI, a web handler, a notebook) needs:

    engine = DanceabilityEngine()
    url, state = engine.authorization_url()
    engine.complete_authorization(redirect_url, state)

    for playlist in engine.list_playlists():
        print(playlist.name)

    new_playlist = engine.publish_sorted(playlist_id)

Every operation accepts an optional operation handle (CancellationToken).
engine.cancel(handle) makes the operation stop at its next request or
delay with Cancelled. A timeout (seconds) overrides the 30 s request
deadline for every request the operation sends.
"""

import random
import threading
import time
import weakref
from typing import Any, Callable, Iterator, List, Mapping, Optional, Tuple, Union

import requests

from .config.auth import AuthorizationFlow, Credential, TokenManager
from .config.settings import Settings, get_settings
from .core.cancellation import CancellationToken, interruptible_sleep
from .core.exceptions import AuthExpired
from .spotify.catalog import PlaylistCatalog
from .spotify.features import FeatureEnricher
from .spotify.gateway import HttpGateway, Sleeper
from .spotify.models import EnrichedTrack, PlaylistRef, ProgressCallback, PublishPlan, SortKey
from .spotify.paginator import Paginator
from .spotify.publisher import PublishPipeline, sort_tracks
from .utils.logger import get_logger


logger = get_logger(__name__)

OperationHandle = Union[CancellationToken, str]


class DanceabilityEngine:
    """
    Facade over the Spotify playlist pipeline

    One engine holds one user session. The credential lives in memory only
    and is discarded by sign_out().
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        sleeper: Sleeper = interruptible_sleep,
        clock: Optional[Callable[[], float]] = None,
        uniform: Callable[[float, float], float] = random.uniform
    ):
        """
        Initialize the engine

        Args:
            settings: Engine settings, defaults to the global settings
            session: requests session shared by the gateway and the token endpoint
            sleeper: Delay function taking (seconds, cancel_token)
            clock: Time source for expiry and latency; wall clock and monotonic clock when None
            uniform: Random source for backoff jitter
        """
        self.settings = settings or get_settings()
        self.session = session or requests.Session()
        api_base_url = self.settings.spotify.api_base_url

        self.token_manager = TokenManager.from_settings(
            self.settings, session=self.session, clock=clock or time.time
        )
        self.gateway = HttpGateway(
            self.token_manager,
            network=self.settings.network,
            session=self.session,
            sleeper=sleeper,
            clock=clock or time.monotonic,
            uniform=uniform,
        )
        self.enricher = FeatureEnricher(self.gateway, api_base_url, self.settings.engine, sleeper=sleeper)
        self.catalog = PlaylistCatalog(self.gateway, self.enricher, api_base_url, self.settings.engine)
        self.publisher = PublishPipeline(self.gateway, api_base_url, self.settings.engine, sleeper=sleeper)

        self._flow: Optional[AuthorizationFlow] = None
        self._operations: 'weakref.WeakValueDictionary[str, CancellationToken]' = weakref.WeakValueDictionary()
        self._operations_lock = threading.Lock()

    # Authentication

    @property
    def authorization(self) -> AuthorizationFlow:
        """
        Authorization flow, created on first use

        Raises:
            ConfigError: If a bootstrap secret is missing
        """
        if self._flow is None:
            self._flow = AuthorizationFlow(self.settings)
        return self._flow

    @property
    def is_authenticated(self) -> bool:
        return self.token_manager.credential is not None

    @property
    def user_id(self) -> str:
        return self.token_manager.user_id

    def authorization_url(self) -> Tuple[str, str]:
        """URL the user must open to grant access, and the state embedded in it"""
        return self.authorization.authorize_url()

    def complete_authorization(self, redirect_url: str, expected_state: Optional[str] = None) -> Credential:
        """
        Finish the authorization code flow from the browser redirect URL

        Raises:
            AuthExpired: If access was denied, the state does not verify or the exchange fails
        """
        code = self.authorization.parse_redirect(redirect_url, expected_state)
        auth_result = self.token_manager.exchange_code(code)
        return self.bootstrap(auth_result)

    def bootstrap(self, auth_result: Mapping[str, Any], handle: Optional[OperationHandle] = None) -> Credential:
        """
        Seed the session credential from an authorization code exchange result

        When the result does not carry the user id, the profile is fetched
        from /me so that playlists can be created for the user later.

        Args:
            auth_result: Token endpoint JSON, optionally with user_id
            handle: Operation handle for the profile lookup

        Returns:
            The committed credential
        """
        credential = self.token_manager.bootstrap(auth_result)
        if not credential.user_id:
            credential = self._resolve_user_id(self._token(handle, "bootstrap"))
        logger.info(f"Authenticated as '{credential.user_id}'")
        return credential

    def sign_out(self) -> None:
        """Discard the credential and cancel running operations"""
        with self._operations_lock:
            tokens = list(self._operations.values())
        for token in tokens:
            token.cancel()
        self.token_manager.sign_out()

    # Cancellation

    def new_operation(self, name: Optional[str] = None) -> CancellationToken:
        """
        Create an operation handle to pass to an engine call

        Returns:
            CancellationToken registered with this engine
        """
        token = CancellationToken(name)
        with self._operations_lock:
            self._operations[token.id] = token
        return token

    def cancel(self, handle: OperationHandle) -> bool:
        """
        Cancel an operation

        Args:
            handle: CancellationToken or its id

        Returns:
            True if a matching live operation was signalled
        """
        if isinstance(handle, CancellationToken):
            handle.cancel()
            return True
        with self._operations_lock:
            token = self._operations.get(handle)
        if token is None:
            logger.debug(f"No live operation with id {handle}")
            return False
        token.cancel()
        return True

    def _token(self, handle: Optional[OperationHandle], name: str) -> CancellationToken:
        if isinstance(handle, CancellationToken):
            return handle
        if isinstance(handle, str):
            with self._operations_lock:
                token = self._operations.get(handle)
            if token is not None:
                return token
        return self.new_operation(name)

    # Catalog

    def list_playlists(
        self,
        handle: Optional[OperationHandle] = None,
        timeout: Optional[float] = None
    ) -> Paginator[PlaylistRef]:
        """Lazily list the user's playlists in upstream order"""
        return self.catalog.list_user_playlists(
            cancel_token=self._token(handle, "list_playlists"), timeout=timeout
        )

    def get_playlist(
        self,
        playlist_id: str,
        handle: Optional[OperationHandle] = None,
        timeout: Optional[float] = None
    ) -> PlaylistRef:
        """
        Fetch playlist metadata

        Raises:
            NotFound: If the playlist does not exist
        """
        return self.catalog.get_playlist(
            playlist_id, cancel_token=self._token(handle, "get_playlist"), timeout=timeout
        )

    def get_enriched_tracks(
        self,
        playlist_id: str,
        on_progress: Optional[ProgressCallback] = None,
        handle: Optional[OperationHandle] = None,
        timeout: Optional[float] = None
    ) -> Iterator[EnrichedTrack]:
        """
        Stream the playlist's tracks with danceability, in playlist order

        Args:
            playlist_id: Spotify playlist id
            on_progress: Callback receiving (current, total)
            handle: Operation handle
            timeout: Per-request deadline in seconds, overriding network.request_timeout_ms

        Returns:
            Lazy iterator of EnrichedTrack
        """
        return self.catalog.get_playlist_tracks_enriched(
            playlist_id,
            on_progress=on_progress,
            cancel_token=self._token(handle, "get_enriched_tracks"),
            timeout=timeout,
        )

    # Publishing

    def publish_sorted(
        self,
        playlist_id: str,
        sort_key: SortKey = SortKey.DANCEABILITY_DESC,
        new_name: Optional[str] = None,
        description: Optional[str] = None,
        public: Optional[bool] = None,
        on_progress: Optional[ProgressCallback] = None,
        handle: Optional[OperationHandle] = None,
        timeout: Optional[float] = None
    ) -> PlaylistRef:
        """
        Copy a playlist into a new playlist ordered by danceability

        Args:
            playlist_id: Source playlist id
            sort_key: Ordering of the new playlist
            new_name: Name of the new playlist, defaults to "<source> - Sorted by Danceability"
            description: Description, defaults to the configured sorted description
            public: Visibility, defaults to engine.default_new_playlist_public
            on_progress: Callback receiving (current, total) during enrichment
            handle: Operation handle covering the whole run
            timeout: Per-request deadline in seconds for every request of the run

        Returns:
            PlaylistRef of the new playlist

        Raises:
            PartialWrite: If appending fails after the new playlist was created
            Cancelled: If the operation is cancelled
        """
        token = self._token(handle, "publish_sorted")
        engine_config = self.settings.engine

        source = self.catalog.get_playlist(playlist_id, cancel_token=token, timeout=timeout)
        tracks: List[EnrichedTrack] = list(self.enricher.enrich(
            self.catalog.iter_playlist_tracks(playlist_id, cancel_token=token, timeout=timeout),
            total=source.total_tracks,
            on_progress=on_progress,
            cancel_token=token,
            timeout=timeout,
        ))
        ordered = sort_tracks(tracks, sort_key)

        user_id = self.token_manager.user_id or self._resolve_user_id(token, timeout).user_id
        plan = PublishPlan(
            user_id=user_id,
            name=new_name or f"{source.name}{engine_config.sorted_name_suffix}",
            description=description if description is not None else engine_config.sorted_description,
            public=engine_config.default_new_playlist_public if public is None else bool(public),
            track_uris=tuple(track.uri for track in ordered if track.uri),
        )
        logger.info(
            f"Publishing {plan.total} tracks from '{source.name}' as '{plan.name}' ({sort_key.value})"
        )
        return self.publisher.publish(plan, cancel_token=token, timeout=timeout)

    def _resolve_user_id(
        self,
        cancel_token: Optional[CancellationToken],
        timeout: Optional[float] = None
    ) -> Credential:
        profile = self.catalog.get_current_user(cancel_token=cancel_token, timeout=timeout)
        user_id = profile.get('id')
        if not user_id:
            raise AuthExpired("Could not determine the Spotify user id from /me")
        return self.token_manager.set_user_id(user_id)
