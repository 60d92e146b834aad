"""
OAuth2 authentication and token management for the Spotify API

This module owns the user's credential for the lifetime of a session. It
implements the Authorization Code flow used by the engine: building the
authorization URL, validating the redirect, exchanging the code, and keeping
the access token fresh through refresh-token grants.

Key features:
- Credential value type with expiry arithmetic and refresh skew
- TokenManager state machine: Uninitialized -> Authenticated -> Refreshing
  -> Authenticated | Failed
- At most one refresh in flight per credential; concurrent callers wait for
  the same result instead of spending the refresh token twice
- Atomic commit: readers see the previous credential until a refresh
  succeeds, and a failed refresh never leaves a half-updated credential
- HMAC-signed OAuth state tied to the session signing secret

The flow follows Spotify's OAuth2 specification:
1. Generate authorization URL with required scopes
2. User consents in the browser
3. Receive authorization code via the redirect URL
4. Exchange code for access/refresh tokens (HTTP Basic client auth)
5. Refresh the access token when it is about to expire

Tokens are never persisted and never logged in full.
"""

import base64
import hashlib
import hmac
import secrets
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

import requests
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from ..core.exceptions import AuthExpired
from ..utils.helpers import mask_token
from ..utils.logger import get_logger
from .settings import Settings


logger = get_logger(__name__)


class CredentialState(Enum):
    """
    Lifecycle of the credential held by the TokenManager

    State Transitions:
    UNINITIALIZED -> AUTHENTICATED (bootstrap)
    AUTHENTICATED -> REFRESHING (expiry within skew, or forced after a 401)
    REFRESHING -> AUTHENTICATED (refresh committed)
    REFRESHING -> FAILED (refresh denied or unreachable)
    any -> UNINITIALIZED (sign-out)
    """
    UNINITIALIZED = "uninitialized"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    FAILED = "failed"


@dataclass(frozen=True)
class Credential:
    """
    OAuth credential for one authenticated user

    Attributes:
        access_token: Short-lived bearer token
        refresh_token: Long-lived token used to mint new access tokens
        expires_at: Absolute expiry as a Unix timestamp
        user_id: Spotify user id of the account owner
        scopes: Scopes granted by the user
        token_type: Token type reported by the token endpoint
    """
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: float
    user_id: str = ""
    scopes: FrozenSet[str] = frozenset()
    token_type: str = "Bearer"

    def is_valid(self, now: float, skew: float = 30.0) -> bool:
        """True while now is earlier than expiry minus the refresh skew"""
        return now < self.expires_at - skew

    def expires_in(self, now: float) -> float:
        return self.expires_at - now

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        now: float,
        previous: Optional['Credential'] = None,
        user_id: Optional[str] = None
    ) -> 'Credential':
        """
        Build a credential from a token endpoint response

        Spotify returns access_token, token_type, expires_in (seconds),
        scope (space-delimited) and optionally refresh_token. When a refresh
        response omits refresh_token the previous one is retained.

        Args:
            payload: Token endpoint JSON, or an equivalent auth result
            now: Current Unix time used to compute the absolute expiry
            previous: Credential being refreshed, if any
            user_id: Explicit user id, overrides anything in the payload

        Returns:
            New Credential

        Raises:
            AuthExpired: If the payload carries no access token or no usable refresh token
        """
        access_token = payload.get('access_token')
        if not access_token:
            raise AuthExpired("Token response did not contain an access token")

        refresh_token = payload.get('refresh_token') or (previous.refresh_token if previous else None)
        if not refresh_token:
            raise AuthExpired("Token response did not contain a refresh token")

        if payload.get('expires_at') is not None:
            expires_at = float(payload['expires_at'])
            # Some session layers report expires_at in milliseconds
            if expires_at > 1e11:
                expires_at /= 1000.0
        else:
            expires_at = now + float(payload.get('expires_in', 3600))

        scope = payload.get('scope')
        if isinstance(scope, str):
            scopes = frozenset(scope.split())
        elif scope:
            scopes = frozenset(scope)
        else:
            scopes = previous.scopes if previous else frozenset()

        resolved_user = user_id or payload.get('user_id') or payload.get('id') or (previous.user_id if previous else "")

        return cls(
            access_token=str(access_token),
            refresh_token=str(refresh_token),
            expires_at=expires_at,
            user_id=str(resolved_user or ""),
            scopes=scopes,
            token_type=str(payload.get('token_type') or 'Bearer'),
        )


def basic_auth_header(client_id: str, client_secret: str) -> str:
    """Authorization header value for client authentication at the token endpoint"""
    raw = f"{client_id}:{client_secret}".encode('utf-8')
    return "Basic " + base64.b64encode(raw).decode('ascii')


class TokenManager:
    """
    Owner of the session credential

    Callers never read the access token directly; they call get_bearer()
    immediately before sending a request. The manager refreshes the token
    when it is within the refresh skew of expiry and serializes refreshes so
    that a burst of expired callers results in a single upstream call.

    Thread Safety:
        All state transitions happen under one condition variable. The token
        endpoint request runs outside the lock; waiters block on the condition
        until the refresher commits or fails.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = "https://accounts.spotify.com/api/token",
        redirect_uri: str = "",
        refresh_skew: float = 30.0,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize token manager

        Args:
            client_id: Spotify application client id
            client_secret: Spotify application client secret
            token_url: Token endpoint for code exchange and refresh
            redirect_uri: Redirect URI registered for the authorization code flow
            refresh_skew: Seconds before expiry at which the token counts as expired
            timeout: Timeout in seconds for token endpoint requests
            session: HTTP session for the token endpoint
            clock: Source of Unix time, injectable for tests
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.redirect_uri = redirect_uri
        self.refresh_skew = float(refresh_skew)
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock

        self._condition = threading.Condition()
        self._state = CredentialState.UNINITIALIZED
        self._credential: Optional[Credential] = None
        self.refresh_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time
    ) -> 'TokenManager':
        return cls(
            client_id=settings.spotify.client_id,
            client_secret=settings.spotify.client_secret,
            token_url=settings.spotify.token_url,
            redirect_uri=settings.spotify.redirect_url,
            refresh_skew=settings.network.refresh_skew_sec,
            timeout=settings.network.request_timeout_ms / 1000.0,
            session=session,
            clock=clock,
        )

    @property
    def state(self) -> CredentialState:
        return self._state

    @property
    def credential(self) -> Optional[Credential]:
        """
        Snapshot of the committed credential

        During a refresh this is still the previous credential; it only
        changes when the refresh commits.
        """
        return self._credential

    @property
    def user_id(self) -> str:
        credential = self._credential
        return credential.user_id if credential else ""

    def bootstrap(self, auth_result: Mapping[str, Any], user_id: Optional[str] = None) -> Credential:
        """
        Seed the manager with the result of an authorization code exchange

        Args:
            auth_result: Token endpoint JSON (access_token, refresh_token, expires_in,
                         scope), optionally with user_id/id or an absolute expires_at
            user_id: Spotify user id, when known separately

        Returns:
            The committed credential
        """
        credential = Credential.from_token_response(auth_result, self._clock(), user_id=user_id)
        with self._condition:
            self._credential = credential
            self._state = CredentialState.AUTHENTICATED
            self._condition.notify_all()

        logger.info(
            f"Credential bootstrapped for user '{credential.user_id or '?'}' "
            f"(access {mask_token(credential.access_token)}, expires in "
            f"{credential.expires_in(self._clock()):.0f}s)"
        )
        return credential

    def set_user_id(self, user_id: str) -> Credential:
        """Record the user id on the committed credential"""
        with self._condition:
            self._ensure_usable()
            self._credential = replace(self._credential, user_id=user_id)
            return self._credential

    def exchange_code(self, code: str, redirect_uri: Optional[str] = None) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens

        Args:
            code: Authorization code from the redirect URL
            redirect_uri: Redirect URI used in the authorization request

        Returns:
            Token endpoint JSON, suitable for bootstrap()

        Raises:
            AuthExpired: If the token endpoint rejects the code or cannot be reached
        """
        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': redirect_uri or self.redirect_uri,
        }
        return self._post_token_request(data, purpose="code exchange")

    def get_bearer(self) -> str:
        """
        Get an access token that is valid beyond the refresh skew

        Returns:
            Access token string for the Authorization header

        Raises:
            AuthExpired: If not authenticated, or if the required refresh fails
        """
        with self._condition:
            while self._state is CredentialState.REFRESHING:
                self._condition.wait()
            self._ensure_usable()
            current = self._credential
            if current.is_valid(self._clock(), self.refresh_skew):
                return current.access_token

        logger.debug(f"Access token {mask_token(current.access_token)} expired or within skew, refreshing")
        return self.refresh(stale_token=current.access_token).access_token

    def refresh(self, stale_token: Optional[str] = None) -> Credential:
        """
        Exchange the refresh token for a new access token

        Only one refresh runs at a time. When stale_token is given and the
        committed credential already carries a different access token, another
        caller has refreshed in the meantime and that result is returned
        without a new upstream request.

        Args:
            stale_token: Access token the caller considers unusable

        Returns:
            The committed credential after refresh

        Raises:
            AuthExpired: If the refresh is denied, fails, or grants a token that already
                         expires within the refresh skew; the manager enters FAILED
        """
        with self._condition:
            while self._state is CredentialState.REFRESHING:
                self._condition.wait()
            self._ensure_usable()
            current = self._credential
            if stale_token is not None and current.access_token != stale_token:
                return current
            self._state = CredentialState.REFRESHING

        # The manager leaves REFRESHING on every exit path, including
        # KeyboardInterrupt, so waiters never block on an abandoned refresh
        refreshed: Optional[Credential] = None
        try:
            payload = self._post_token_request(
                {
                    'grant_type': 'refresh_token',
                    'refresh_token': current.refresh_token,
                },
                purpose="refresh"
            )
            granted = Credential.from_token_response(payload, self._clock(), previous=current)
            if not granted.is_valid(self._clock(), self.refresh_skew):
                raise AuthExpired(
                    f"Refreshed token expires in {granted.expires_in(self._clock()):.0f}s, "
                    f"inside the {self.refresh_skew:.0f}s refresh skew",
                    details={'expires_in': granted.expires_in(self._clock())}
                )
            refreshed = granted
        except AuthExpired:
            raise
        except Exception as e:
            raise AuthExpired(f"Token refresh failed: {e}") from e
        finally:
            if refreshed is None:
                self._fail()

        with self._condition:
            self._credential = refreshed
            self._state = CredentialState.AUTHENTICATED
            self.refresh_count += 1
            self._condition.notify_all()

        rotated = refreshed.refresh_token != current.refresh_token
        logger.info(
            f"Access token refreshed ({mask_token(refreshed.access_token)}, "
            f"refresh token {'rotated' if rotated else 'retained'})"
        )
        return refreshed

    def sign_out(self) -> None:
        """Destroy the credential and return to UNINITIALIZED"""
        with self._condition:
            self._credential = None
            self._state = CredentialState.UNINITIALIZED
            self._condition.notify_all()
        logger.info("Signed out, credential discarded")

    def _ensure_usable(self) -> None:
        if self._state is CredentialState.FAILED:
            raise AuthExpired("Credential refresh failed earlier, re-authorization required")
        if self._credential is None:
            raise AuthExpired("Not authenticated, bootstrap a credential first")

    def _fail(self) -> None:
        with self._condition:
            self._credential = None
            self._state = CredentialState.FAILED
            self._condition.notify_all()
        logger.warning("Token refresh failed, re-authorization required")

    def _post_token_request(self, data: Dict[str, str], purpose: str) -> Dict[str, Any]:
        """
        POST a form-encoded grant to the token endpoint

        Raises:
            AuthExpired: For any non-2xx answer or transport failure
        """
        headers = {
            'Authorization': basic_auth_header(self.client_id, self.client_secret),
            'Content-Type': 'application/x-www-form-urlencoded',
        }
        try:
            response = self.session.post(self.token_url, headers=headers, data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise AuthExpired(
                f"Token {purpose} request failed: {e}",
                details={'url': self.token_url}
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not isinstance(body, dict):
            error = body.get('error') if isinstance(body, dict) else None
            description = body.get('error_description') if isinstance(body, dict) else None
            raise AuthExpired(
                f"Token {purpose} rejected ({response.status_code}): {description or error or 'unknown error'}",
                details={'status': response.status_code, 'error': error}
            )
        return body


class AuthorizationFlow:
    """
    Builds authorization URLs and validates redirects

    The state parameter is a random nonce followed by an HMAC signature
    made with the session signing secret, so a redirect can be verified
    without storing anything server-side.
    """

    def __init__(self, settings: Settings):
        """
        Args:
            settings: Settings carrying client credentials, redirect URL, scopes and session secret

        Raises:
            ConfigError: If a bootstrap secret is missing
        """
        settings.require_secrets()
        self.settings = settings
        self._secret = settings.security.session_secret.encode('utf-8')
        self._oauth = SpotifyOAuth(
            client_id=settings.spotify.client_id,
            client_secret=settings.spotify.client_secret,
            redirect_uri=settings.spotify.redirect_url,
            scope=settings.spotify.all_scopes,
            show_dialog=settings.spotify.show_dialog,
            open_browser=False,
            cache_handler=MemoryCacheHandler(),
        )

    def new_state(self) -> str:
        nonce = secrets.token_urlsafe(16)
        return f"{nonce}.{self._sign(nonce)}"

    def verify_state(self, state: Optional[str]) -> bool:
        if not state or '.' not in state:
            return False
        nonce, signature = state.rsplit('.', 1)
        return hmac.compare_digest(signature, self._sign(nonce))

    def authorize_url(self, state: Optional[str] = None) -> Tuple[str, str]:
        """
        Build the URL the user must visit to grant access

        Returns:
            Tuple of (authorization URL, state value embedded in it)
        """
        state = state or self.new_state()
        return self._oauth.get_authorize_url(state=state), state

    def parse_redirect(self, redirect_url: str, expected_state: Optional[str] = None) -> str:
        """
        Extract the authorization code from the redirect URL

        Args:
            redirect_url: Full URL the browser was redirected to
            expected_state: State returned by authorize_url(), when known

        Returns:
            Authorization code

        Raises:
            AuthExpired: If the user denied access or the state does not verify
        """
        try:
            state, code = SpotifyOAuth.parse_auth_response_url(redirect_url)
        except SpotifyOauthError as e:
            raise AuthExpired(f"Authorization was not granted: {e}") from e

        if not self.verify_state(state) or (expected_state and state != expected_state):
            raise AuthExpired("Authorization state mismatch, restart the sign-in")
        if not code:
            raise AuthExpired("No authorization code in redirect URL")
        return code

    def _sign(self, value: str) -> str:
        return hmac.new(self._secret, value.encode('utf-8'), hashlib.sha256).hexdigest()[:32]


__all__ = [
    'AuthorizationFlow',
    'Credential',
    'CredentialState',
    'TokenManager',
    'basic_auth_header',
]
