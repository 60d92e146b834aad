"""
Core module for bodywerk.

Foundational pieces shared by every layer of the engine:
    - exceptions: Typed error model
    - cancellation: Operation handles and interruptible sleeps

Usage:
    from bodywerk.core import (
        CancellationToken,
        EngineError, AuthExpired, PartialWrite
    )
"""

from bodywerk.core.cancellation import CancellationToken, interruptible_sleep
from bodywerk.core.exceptions import (
    AuthExpired,
    Cancelled,
    ConfigError,
    EngineError,
    NetworkError,
    NotFound,
    PartialWrite,
    RateLimited,
    ServerError,
    Unauthorized,
    UpstreamReject,
)

__all__ = [
    # Cancellation
    "CancellationToken",
    "interruptible_sleep",
    # Exceptions
    "EngineError",
    "ConfigError",
    "AuthExpired",
    "Unauthorized",
    "RateLimited",
    "NetworkError",
    "UpstreamReject",
    "NotFound",
    "ServerError",
    "Cancelled",
    "PartialWrite",
]
