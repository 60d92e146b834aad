"""
Exception classes for bodywerk.

This module defines every typed error the engine raises. Each exception is
designed to carry enough context for a caller to decide between retrying,
re-authorizing the user, or resuming a half-finished write.

Exception Hierarchy:
    EngineError (base)
        ConfigError - Missing secrets or invalid settings
        AuthExpired - Refresh failed permanently, user must re-authorize
            Unauthorized - Upstream rejected the bearer after a forced refresh
        RateLimited - HTTP 429 retries exhausted
        NetworkError - Transport failure after retries
        UpstreamReject - Non-retryable upstream response
            NotFound - 404
            ServerError - 5xx retries exhausted
        Cancelled - Cooperative cancellation
        PartialWrite - Sort-and-publish failed mid-append

Recovery policy:
    The HTTP gateway recovers transient conditions locally (429, 5xx,
    connection errors) and the token manager recovers expiry locally.
    Everything listed here is what remains once those layers give up.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """
    Base exception for all bodywerk errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch every engine failure with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (status code, URL, ids).

    Example:
        try:
            engine.list_playlists()
        except EngineError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'url': URL of the request that failed
                     - 'status': HTTP status code of the last response
                     - 'attempts': number of attempts made for the logical request
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(EngineError):
    """
    Raised when required configuration is missing or invalid.

    Common causes:
        - SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET not set
        - Redirect URL or session signing secret missing
        - Page or chunk sizes outside the upstream limits
    """
    pass


class AuthExpired(EngineError):
    """
    Raised when the credential can no longer be refreshed.

    The token manager enters its Failed state before raising this. The only
    way forward is a fresh user authorization followed by bootstrap().

    Common causes:
        - Refresh token revoked (invalid_grant)
        - Token endpoint unreachable during refresh
        - Engine used before bootstrap() or after sign_out()
    """
    pass


class Unauthorized(AuthExpired):
    """
    Raised when the upstream rejects the bearer even after a forced refresh.

    Subclasses AuthExpired so that callers handling re-authorization
    catch both conditions with one clause.
    """
    pass


class RateLimited(EngineError):
    """
    Raised when HTTP 429 persists past the configured retry cap.

    Attributes:
        retry_after: Seconds requested by the last Retry-After header, if any.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None
    ) -> None:
        super().__init__(message, details)
        self.retry_after = retry_after


class NetworkError(EngineError):
    """Raised when connection errors or timeouts persist past the retry cap."""
    pass


class UpstreamReject(EngineError):
    """
    Raised for a non-retryable upstream response.

    Attributes:
        status: HTTP status code returned by the upstream API.
        body: Decoded response body (dict for JSON errors, str otherwise).

    Example:
        raise UpstreamReject(
            "Spotify rejected the request (403)",
            status=403,
            body={'error': {'status': 403, 'message': 'Forbidden'}},
            details={'url': url}
        )
    """

    def __init__(
        self,
        message: str,
        status: int,
        body: Any = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        details = dict(details or {})
        details.setdefault('status', status)
        super().__init__(message, details)
        self.status = status
        self.body = body

    @property
    def upstream_message(self) -> Optional[str]:
        """Message field of a Spotify error envelope, when present."""
        if isinstance(self.body, dict):
            error = self.body.get('error')
            if isinstance(error, dict):
                return error.get('message')
            if isinstance(error, str):
                return self.body.get('error_description') or error
        return None


class NotFound(UpstreamReject):
    """Raised when the upstream answers 404."""
    pass


class ServerError(UpstreamReject):
    """Raised when 5xx responses persist past the retry cap."""
    pass


class Cancelled(EngineError):
    """
    Raised when an operation observes its cancellation signal.

    Upstream state written before cancellation (for example a freshly
    created playlist) is not rolled back; details carry what is known.
    """
    pass


class PartialWrite(EngineError):
    """
    Raised when appending tracks fails after the new playlist was created.

    The partially filled playlist is left in place upstream. The caller may
    resume from written_count or delete the playlist.

    Attributes:
        new_playlist_id: Id of the playlist created by the pipeline.
        written_count: Number of URIs confirmed appended.
        total_count: Number of URIs the plan intended to append.
    """

    def __init__(
        self,
        message: str,
        new_playlist_id: str,
        written_count: int,
        total_count: int,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        details = dict(details or {})
        details.update({
            'new_playlist_id': new_playlist_id,
            'written_count': written_count,
            'total_count': total_count,
        })
        super().__init__(message, details)
        self.new_playlist_id = new_playlist_id
        self.written_count = written_count
        self.total_count = total_count
