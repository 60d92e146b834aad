"""
Spotify integration package - Web API access for the danceability engine

Components:

1. Gateway (gateway.py):
   - Single point of egress; injects the bearer, retries 429/5xx/network
     failures and classifies everything else into typed errors

2. Paginator (paginator.py):
   - Lazy iteration over `{items, next, total}` cursor chains

3. Models (models.py):
   - TrackRef, EnrichedTrack, PlaylistRef, PaginationCursor, PublishPlan

4. Features (features.py):
   - Danceability lookups, single-track or batched

5. Catalog (catalog.py):
   - Playlist listing and lookup, enriched track streams

6. Publisher (publisher.py):
   - Stable sorting and the create-then-append publish pipeline

Usage Example:

    from bodywerk.spotify import PlaylistCatalog, sort_tracks

    tracks = list(catalog.get_playlist_tracks_enriched(playlist_id))
    for track in sort_tracks(tracks):
        print(f"{track.danceability:.2f}  {track.name}")
"""

# Request layer: authentication, retries and pagination
from .gateway import GatewayResponse, HttpGateway
from .paginator import Page, Paginator, decode_page

# Value types shared by every layer
from .models import (
    EnrichedTrack,
    PaginationCursor,
    PlaylistRef,
    ProgressCallback,
    PublishPlan,
    SortKey,
    TrackRef,
    best_image_url,
)

# Pipeline components
from .features import FeatureEnricher
from .catalog import PlaylistCatalog, extract_playlist_id
from .publisher import PublishPipeline, sort_tracks

__all__ = [
    # === REQUEST LAYER ===
    'HttpGateway',
    'GatewayResponse',
    'Paginator',
    'Page',
    'decode_page',

    # === MODELS ===
    'TrackRef',
    'EnrichedTrack',
    'PlaylistRef',
    'PaginationCursor',
    'PublishPlan',
    'SortKey',
    'ProgressCallback',
    'best_image_url',

    # === PIPELINE ===
    'FeatureEnricher',
    'PlaylistCatalog',
    'extract_playlist_id',
    'PublishPipeline',
    'sort_tracks',
]
