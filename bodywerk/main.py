"""
Main CLI interface for bodywerk

Thin command-line caller of the DanceabilityEngine facade. Every command
authenticates in-process through the OAuth authorization code flow: the
authorization URL is printed (and opened in a browser unless --no-browser
is given) and the user pastes back the URL Spotify redirected to. Nothing
is persisted between runs.

Commands:
- login: authenticate and show the Spotify user id
- playlists: list the user's playlists
- tracks: show a playlist's tracks with danceability
- sort: publish a copy of a playlist sorted by danceability
"""

import sys
import click
import functools
import itertools
import webbrowser

from . import __version__
from .config.settings import get_settings, reload_settings
from .core.exceptions import ConfigError, EngineError, PartialWrite
from .engine import DanceabilityEngine
from .spotify.catalog import extract_playlist_id
from .spotify.models import SortKey
from .spotify.publisher import sort_tracks
from .utils.logger import configure_from_settings, create_operation_logger, get_logger


logger = get_logger(__name__)

# Engine of the running command, cancelled on Ctrl-C
_active_engine = None


def handle_error(func):
    """
    Decorator to handle common CLI errors gracefully

    Engine errors are shown without a traceback; Ctrl-C cancels the running
    operation and exits with the standard SIGINT code.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            if _active_engine is not None:
                _active_engine.sign_out()
            click.echo(click.style("\n\nOperation cancelled by user", fg='yellow'))
            sys.exit(130)
        except PartialWrite as e:
            logger.error(f"Publishing incomplete: {e}")
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            click.echo(
                f"Playlist {e.new_playlist_id} holds {e.written_count}/{e.total_count} tracks; "
                f"resume from track {e.written_count + 1} or delete it.",
                err=True
            )
            sys.exit(1)
        except (EngineError, ValueError) as e:
            logger.error(f"Command failed: {e}")
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            sys.exit(1)
    return wrapper


def authenticated_engine(ctx) -> DanceabilityEngine:
    """
    Build an engine and run the interactive authorization

    Raises:
        ConfigError: If the configuration is incomplete or invalid
    """
    global _active_engine

    settings = get_settings()
    problems = settings.validate()
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems), details={'problems': problems})

    engine = DanceabilityEngine(settings)
    _active_engine = engine

    url, state = engine.authorization_url()
    click.echo("Open this URL to authorize bodywerk:")
    click.echo(click.style(url, fg='cyan'))
    if not ctx.obj.get('no_browser'):
        webbrowser.open(url)

    redirect_url = click.prompt("Paste the URL you were redirected to").strip()
    engine.complete_authorization(redirect_url, state)
    return engine


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', type=click.Path(), help='Path to config file')
@click.option('--no-browser', is_flag=True, help='Do not open the authorization URL in a browser')
@click.pass_context
def cli(ctx, version, verbose, config, no_browser):
    """
    bodywerk - Sort Spotify playlists by danceability

    Reads your playlists, looks up the danceability of every track and
    publishes sorted copies as new playlists.
    """
    ctx.ensure_object(dict)

    if version:
        click.echo(f"bodywerk v{__version__}")
        return

    settings = reload_settings(config) if config else get_settings()
    if verbose:
        settings.logging.level = "DEBUG"
    configure_from_settings(settings)

    ctx.obj['verbose'] = verbose
    ctx.obj['no_browser'] = no_browser

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.pass_context
@handle_error
def login(ctx):
    """Authenticate with Spotify and show the account id"""
    engine = authenticated_engine(ctx)
    click.echo(click.style(f"Authenticated as: {engine.user_id}", fg='green'))


@cli.command()
@click.option('--search', '-s', help='Only show playlists whose name contains TEXT')
@click.option('--limit', '-n', type=int, help='Maximum number of playlists to show')
@click.pass_context
@handle_error
def playlists(ctx, search, limit):
    """List your playlists"""
    engine = authenticated_engine(ctx)

    found = iter(engine.list_playlists())
    if search:
        needle = search.casefold()
        found = (playlist for playlist in found if needle in playlist.name.casefold())
    if limit is not None:
        found = itertools.islice(found, max(0, limit))

    count = 0
    for count, playlist in enumerate(found, 1):
        click.echo(f"{count:3d}. {playlist.name}  [{playlist.id}]  {playlist.total_tracks} tracks")

    if count == 0:
        click.echo("No playlists found")


@cli.command()
@click.argument('playlist')
@click.option('--sort/--no-sort', default=True, help='Order by danceability (default) or keep playlist order')
@click.pass_context
@handle_error
def tracks(ctx, playlist, sort):
    """Show the tracks of PLAYLIST (URL, URI or ID) with their danceability"""
    playlist_id = extract_playlist_id(playlist)
    engine = authenticated_engine(ctx)

    info = engine.get_playlist(playlist_id)
    progress = create_operation_logger(__name__, "Analyzing danceability")
    progress.start(f"Analyzing '{info.name}' ({info.total_tracks} tracks)")
    try:
        enriched = list(engine.get_enriched_tracks(playlist_id, on_progress=progress))
    except EngineError as e:
        progress.error(str(e))
        raise
    progress.complete(f"Analyzed {len(enriched)} tracks")

    if sort:
        enriched = sort_tracks(enriched)

    for index, track in enumerate(enriched, 1):
        marker = click.style("  missing", fg='yellow') if track.missing_features else ""
        click.echo(
            f"{index:3d}. {track.danceability:.3f}  "
            f"{track.track.primary_artist} - {track.name}{marker}"
        )


@cli.command()
@click.argument('playlist')
@click.option('--name', help='Name of the new playlist')
@click.option('--description', help='Description of the new playlist')
@click.option('--public', is_flag=True, help='Make the new playlist public')
@click.option('--ascending', is_flag=True, help='Least danceable tracks first')
@click.option('--batch-features', is_flag=True, help='Look up features for up to 50 tracks per request')
@click.pass_context
@handle_error
def sort(ctx, playlist, name, description, public, ascending, batch_features):
    """Publish a copy of PLAYLIST sorted by danceability"""
    playlist_id = extract_playlist_id(playlist)
    if batch_features:
        get_settings().engine.feature_batching = True
    engine = authenticated_engine(ctx)

    progress = create_operation_logger(__name__, "Analyzing danceability")
    progress.start()
    try:
        new_playlist = engine.publish_sorted(
            playlist_id,
            sort_key=SortKey.DANCEABILITY_ASC if ascending else SortKey.DANCEABILITY_DESC,
            new_name=name,
            description=description,
            public=public or None,
            on_progress=progress,
        )
    except EngineError as e:
        progress.error(str(e))
        raise
    progress.complete()

    click.echo(click.style(f"Created '{new_playlist.name}' with {new_playlist.total_tracks} tracks", fg='green'))
    click.echo(f"https://open.spotify.com/playlist/{new_playlist.id}")


if __name__ == '__main__':
    cli()
