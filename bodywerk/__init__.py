"""
bodywerk: Sort Spotify playlists by danceability

bodywerk reads a user's Spotify playlists, joins every track with its
danceability score from the audio-features API and publishes sorted copies
as new playlists.

## Architecture

**Configuration (`bodywerk/config/`)**
- Dataclass settings loaded from YAML and environment variables
- OAuth2 authorization flow and in-memory token management

**Spotify Integration (`bodywerk/spotify/`)**
- HTTP gateway with centralized retry, rate-limit and auth policy
- Lazy pagination, feature enrichment, catalog and publish pipeline

**Core (`bodywerk/core/`)**
- Typed error model and cooperative cancellation

**Utilities (`bodywerk/utils/`)**
- Colored console and rotating file logging, small pure helpers

The `DanceabilityEngine` facade in `bodywerk.engine` is the entry point for
callers; `bodywerk.main` is a click CLI built on it.
"""

__version__ = "0.3.0"

__author__ = "bodywerk contributors"

__description__ = "Sort Spotify playlists by danceability"

__all__ = [
    "__version__",
    "__author__",
    "__description__",
]
