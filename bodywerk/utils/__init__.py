"""
Utility modules for bodywerk
Logging setup and small pure helpers used across the engine
"""

from .logger import (
    get_logger,
    configure_from_settings,
    setup_logging,
    parse_size,
    OperationLogger,
    create_operation_logger,
)

from .helpers import (
    mask_token,
    chunked,
    clamp,
    coerce_score,
    build_url,
    join_url,
    parse_retry_after,
    backoff_delay,
    ms_to_seconds,
)

__all__ = [
    # Logger exports
    'get_logger',
    'configure_from_settings',
    'setup_logging',
    'parse_size',
    'OperationLogger',
    'create_operation_logger',

    # Helper exports
    'mask_token',
    'chunked',
    'clamp',
    'coerce_score',
    'build_url',
    'join_url',
    'parse_retry_after',
    'backoff_delay',
    'ms_to_seconds',
]
