"""
HTTP gateway for the Spotify Web API

Every outbound API request of the engine goes through HttpGateway.request().
The gateway is the single place where authentication headers are applied and
where retry, rate-limit and error-classification policy lives, so that the
catalog, enricher and publish pipeline stay declarative.

Request lifecycle:

1. **Cancellation check**: the operation's CancellationToken is consulted
   before every attempt and every delay waits on it
2. **Bearer injection**: the TokenManager is asked for a bearer immediately
   before sending; callers never pass Authorization themselves
3. **Send**: requests.Session with a per-request deadline (default 30 s)
4. **Classification** of the response:
   - 2xx: success, JSON body decoded
   - 429: wait Retry-After (default 1 s) + 1 s and retry, at most 6 times;
     the 7th 429 raises RateLimited
   - 5xx: exponential backoff from 500 ms with +/-20% jitter, at most 3
     retries, then ServerError
   - 401: one forced refresh and one retry; a second 401 raises Unauthorized
   - 404: NotFound
   - other 4xx: UpstreamReject with the decoded error body
   - connection errors, timeouts and truncated bodies: backoff as for 5xx,
     then NetworkError

Logging:
One DEBUG record per attempt with url, method, status, latency and attempt
number in `extra`. Retry decisions are WARNING records. Tokens only ever
appear masked.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

import requests
from requests.structures import CaseInsensitiveDict

from ..config.auth import TokenManager
from ..config.settings import NetworkConfig
from ..core.cancellation import CancellationToken, interruptible_sleep
from ..core.exceptions import (
    NetworkError,
    NotFound,
    RateLimited,
    ServerError,
    Unauthorized,
    UpstreamReject,
)
from ..utils.helpers import backoff_delay, mask_token, ms_to_seconds, parse_retry_after
from ..utils.logger import get_logger


Sleeper = Callable[[float, Optional[CancellationToken]], None]

# Transport failures retried under the network budget; ChunkedEncodingError
# covers a connection dropped while the body is read
TRANSIENT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


@dataclass
class GatewayResponse:
    """
    Successful upstream response

    Attributes:
        status: HTTP status code (2xx)
        data: Decoded JSON body, None for empty bodies
        headers: Response headers
        url: URL the request was sent to
        attempts: Number of attempts the logical request needed
    """
    status: int
    data: Any = None
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    url: str = ""
    attempts: int = 1

    def json(self) -> Dict[str, Any]:
        """Decoded body as a dict, empty when the body was not a JSON object"""
        return self.data if isinstance(self.data, dict) else {}


@dataclass
class _RetryBudget:
    """Per-logical-request retry counters"""
    rate_limited: int = 0
    server_errors: int = 0
    network_errors: int = 0
    refreshed: bool = False


def decode_body(response: requests.Response) -> Any:
    """Decode a response body as JSON, falling back to text"""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpGateway:
    """
    Single point of egress for Spotify Web API requests

    The gateway configuration is fixed at construction time. The session is
    shared by all operations; the only mutable state consulted per request
    is the credential owned by the TokenManager.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        network: Optional[NetworkConfig] = None,
        session: Optional[requests.Session] = None,
        sleeper: Sleeper = interruptible_sleep,
        clock: Callable[[], float] = time.monotonic,
        uniform: Callable[[float, float], float] = random.uniform
    ):
        """
        Initialize the gateway

        Args:
            token_manager: Provider of bearer tokens and forced refreshes
            network: Timeouts and retry budgets, defaults to NetworkConfig()
            session: requests session used for API calls
            sleeper: Delay function taking (seconds, cancel_token)
            clock: Monotonic clock used for latency measurement
            uniform: Random source for backoff jitter
        """
        self.token_manager = token_manager
        self.network = network or NetworkConfig()
        self.session = session or requests.Session()
        self.sleeper = sleeper
        self.clock = clock
        self.uniform = uniform
        self.logger = get_logger(__name__)

        self.default_timeout = ms_to_seconds(self.network.request_timeout_ms)
        self.backoff_base = ms_to_seconds(self.network.backoff_base_ms)

    def get(self, url: str, **kwargs) -> GatewayResponse:
        return self.request('GET', url, **kwargs)

    def post(self, url: str, **kwargs) -> GatewayResponse:
        return self.request('POST', url, **kwargs)

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
        data: Any = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ) -> GatewayResponse:
        """
        Send one logical request, retrying transient failures

        Args:
            method: HTTP method
            url: Absolute URL; upstream-provided cursor URLs are used verbatim
            headers: Extra headers; Authorization is always set by the gateway
            json_body: JSON payload for POST/PUT
            data: Raw or form payload
            cancel_token: Cancellation signal of the calling operation
            timeout: Per-request deadline in seconds, defaults to the configured 30 s

        Returns:
            GatewayResponse for the first 2xx answer

        Raises:
            Cancelled: If cancel_token fires before an attempt or during a delay
            AuthExpired: If the credential cannot be refreshed
            Unauthorized: If the upstream answers 401 again after a forced refresh
            RateLimited: On the 429 following the last allowed retry
            ServerError: When 5xx persists past the retry budget
            NetworkError: When transport errors persist past the retry budget
            NotFound: On 404
            UpstreamReject: On any other non-retryable 4xx
        """
        method = method.upper()
        timeout = timeout if timeout is not None else self.default_timeout
        budget = _RetryBudget()
        attempt = 0

        while True:
            attempt += 1
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(details={'url': url, 'method': method})

            bearer = self.token_manager.get_bearer()
            send_headers = {
                'Accept': 'application/json',
                'User-Agent': self.network.user_agent,
            }
            send_headers.update({k: v for k, v in (headers or {}).items() if k.lower() != 'authorization'})
            send_headers['Authorization'] = f"Bearer {bearer}"

            started = self.clock()
            try:
                response = self.session.request(
                    method,
                    url,
                    headers=send_headers,
                    json=json_body,
                    data=data,
                    timeout=timeout,
                )
            except TRANSIENT_ERRORS as e:
                latency_ms = (self.clock() - started) * 1000.0
                self._log_attempt(method, url, None, latency_ms, attempt)
                budget.network_errors += 1
                if budget.network_errors > self.network.max_network_retries:
                    raise NetworkError(
                        f"{method} {url} failed after {attempt} attempts: {e}",
                        details={'url': url, 'attempts': attempt}
                    ) from e
                delay = backoff_delay(budget.network_errors, self.backoff_base,
                                      self.network.backoff_jitter, self.uniform)
                self.logger.warning(
                    f"Network error on {method} {url} ({type(e).__name__}), "
                    f"retry {budget.network_errors}/{self.network.max_network_retries} in {delay:.2f}s"
                )
                self.sleeper(delay, cancel_token)
                continue

            latency_ms = (self.clock() - started) * 1000.0
            status = response.status_code
            self._log_attempt(method, url, status, latency_ms, attempt)

            if 200 <= status < 300:
                return GatewayResponse(
                    status=status,
                    data=decode_body(response),
                    headers=response.headers,
                    url=url,
                    attempts=attempt,
                )

            if status == 429:
                budget.rate_limited += 1
                retry_after = parse_retry_after(response.headers.get('Retry-After'))
                if budget.rate_limited > self.network.max_rate_limit_retries:
                    raise RateLimited(
                        f"Rate limited on {method} {url} after {budget.rate_limited} attempts",
                        details={'url': url, 'attempts': attempt, 'status': status},
                        retry_after=retry_after,
                    )
                delay = retry_after + 1.0
                self.logger.warning(
                    f"Rate limited (429), waiting {delay:.1f}s before retry "
                    f"{budget.rate_limited}/{self.network.max_rate_limit_retries}"
                )
                self.sleeper(delay, cancel_token)
                continue

            if status == 401:
                if budget.refreshed:
                    raise Unauthorized(
                        f"Spotify rejected the refreshed token on {method} {url}",
                        details={'url': url, 'status': status, 'attempts': attempt}
                    )
                budget.refreshed = True
                self.logger.warning(f"401 for token {mask_token(bearer)}, forcing refresh")
                self.token_manager.refresh(stale_token=bearer)
                continue

            if status >= 500:
                budget.server_errors += 1
                if budget.server_errors > self.network.max_5xx_retries:
                    raise ServerError(
                        f"Spotify error {status} on {method} {url} after {attempt} attempts",
                        status=status,
                        body=decode_body(response),
                        details={'url': url, 'attempts': attempt}
                    )
                delay = backoff_delay(budget.server_errors, self.backoff_base,
                                      self.network.backoff_jitter, self.uniform)
                self.logger.warning(
                    f"Server error {status} on {method} {url}, "
                    f"retry {budget.server_errors}/{self.network.max_5xx_retries} in {delay:.2f}s"
                )
                self.sleeper(delay, cancel_token)
                continue

            body = decode_body(response)
            error_class = NotFound if status == 404 else UpstreamReject
            raise error_class(
                f"Spotify rejected {method} {url} ({status})",
                status=status,
                body=body,
                details={'url': url, 'attempts': attempt}
            )

    def _log_attempt(self, method: str, url: str, status: Optional[int], latency_ms: float, attempt: int) -> None:
        self.logger.debug(
            f"{method} {url} -> {status if status is not None else 'error'} "
            f"in {latency_ms:.0f}ms (attempt {attempt})",
            extra={
                'method': method,
                'url': url,
                'status': status,
                'latency_ms': round(latency_ms, 1),
                'attempt': attempt,
            }
        )
