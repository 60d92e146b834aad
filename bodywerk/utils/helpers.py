"""
Utility helper functions for bodywerk
Small pure helpers shared by the gateway, the token manager and the pipeline
"""

import math
import random
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, TypeVar, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

T = TypeVar('T')


def mask_token(token: Optional[str], visible: int = 10) -> str:
    """
    Mask an opaque credential for logging

    Args:
        token: Access or refresh token
        visible: Number of trailing characters to keep

    Returns:
        Masked representation showing only the last characters
    """
    if not token:
        return "<none>"
    return f"...{token[-visible:]}"


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """
    Split a sequence into consecutive chunks

    Args:
        items: Sequence to split
        size: Maximum chunk length, must be positive

    Yields:
        Lists of at most size items, in order
    """
    if size <= 0:
        raise ValueError(f"Chunk size must be positive: {size}")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]"""
    return max(low, min(high, value))


def coerce_score(value: Any) -> Optional[float]:
    """
    Convert an upstream feature value to a float in [0, 1]

    Args:
        value: Raw JSON value

    Returns:
        Clamped float, or None when the value is absent or not a finite number
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(score) or math.isinf(score):
        return None
    return clamp(score)


def build_url(base: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Append query parameters to a URL, dropping None values

    Args:
        base: Absolute URL, may already carry a query string
        params: Parameters to encode

    Returns:
        Absolute URL with the encoded query
    """
    clean = {k: v for k, v in (params or {}).items() if v is not None}
    if not clean:
        return base
    scheme, netloc, path, query, fragment = urlsplit(base)
    encoded = urlencode(clean, safe='(),')
    query = f"{query}&{encoded}" if query else encoded
    return urlunsplit((scheme, netloc, path, query, fragment))


def join_url(base: str, path: str) -> str:
    """Join an API base URL and a path without doubling slashes"""
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def parse_retry_after(value: Optional[str], default: float = 1.0) -> float:
    """
    Parse a Retry-After header expressed in seconds

    Args:
        value: Raw header value
        default: Seconds to use when the header is absent or malformed

    Returns:
        Non-negative number of seconds
    """
    if value is None:
        return default
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return default
    if math.isnan(seconds) or seconds < 0:
        return default
    return seconds


def backoff_delay(
    attempt: int,
    base: float = 0.5,
    jitter: float = 0.2,
    uniform: Callable[[float, float], float] = random.uniform
) -> float:
    """
    Exponential backoff with proportional jitter

    Args:
        attempt: 1-based retry number
        base: Delay in seconds for the first retry
        jitter: Fractional jitter, 0.2 means +/-20%
        uniform: Random source, injectable for tests

    Returns:
        Delay in seconds for this retry
    """
    delay = base * (2 ** max(0, attempt - 1))
    if jitter:
        delay *= uniform(1.0 - jitter, 1.0 + jitter)
    return max(0.0, delay)


def ms_to_seconds(value: Union[int, float]) -> float:
    """Convert a millisecond setting to seconds"""
    return float(value) / 1000.0
