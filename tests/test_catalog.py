# tests/test_catalog.py
"""Test playlist listing, lookup and enriched track streams"""

import pytest

from bodywerk.core.exceptions import NotFound
from bodywerk.spotify.catalog import TRACK_FIELDS, PlaylistCatalog, extract_playlist_id
from bodywerk.spotify.features import FeatureEnricher

from conftest import API, page, playlist_data, response, track_item


@pytest.fixture
def catalog(gateway, settings, clock):
    enricher = FeatureEnricher(gateway, API, settings.engine, sleeper=clock.sleep)
    return PlaylistCatalog(gateway, enricher, API, settings.engine)


def danceability(call):
    track_id = call.path.rsplit('/', 1)[-1]
    return response(200, {'id': track_id, 'danceability': {'t1': 0.3, 't2': 0.6, 't3': 0.9}[track_id]})


class TestPlaylistCatalog:
    """Test PlaylistCatalog operations"""

    def test_list_user_playlists(self, catalog, fake_session):
        """Two pages of 50 and 7 playlists yield 57 refs in upstream order"""
        first = [playlist_data(f"p{i}", f"List {i}") for i in range(50)]
        second = [playlist_data(f"p{i}", f"List {i}") for i in range(50, 57)]
        fake_session.add(
            'GET', r'/me/playlists$',
            response(200, page(first, next_url=f"{API}/me/playlists?offset=50&limit=50", total=57)),
            response(200, page(second, total=57)),
        )

        playlists = list(catalog.list_user_playlists())

        assert len(playlists) == 57
        assert [playlist.id for playlist in playlists] == [f"p{i}" for i in range(57)]
        assert fake_session.calls[0].query['limit'] == ['50']

    def test_get_playlist(self, catalog, fake_session):
        fake_session.add('GET', r'/playlists/pl1$', response(200, playlist_data("pl1", "Party", total=3)))

        playlist = catalog.get_playlist("pl1")

        assert playlist.name == "Party"
        assert playlist.total_tracks == 3
        assert 'tracks(total)' in fake_session.calls[0].query['fields'][0]

    def test_get_playlist_not_found(self, catalog, fake_session):
        fake_session.add('GET', r'/playlists/gone$', response(404, {'error': {'status': 404, 'message': 'Not found'}}))

        with pytest.raises(NotFound):
            catalog.get_playlist("gone")

    def test_tracks_filtered(self, catalog, fake_session):
        """Null tracks and tracks without id are filtered at ingestion"""
        fake_session.add('GET', r'/playlists/pl1/tracks$', response(200, page([
            track_item("t1"),
            {'track': None},
            track_item(None, "Local Song"),
            track_item("t2"),
        ])))

        tracks = list(catalog.iter_playlist_tracks("pl1"))

        assert [track.id for track in tracks] == ["t1", "t2"]
        query = fake_session.calls[0].query
        assert query['limit'] == ['20']
        assert query['offset'] == ['0']
        assert query['fields'] == [TRACK_FIELDS]

    def test_tracks_enriched(self, catalog, fake_session):
        """Enriched tracks keep playlist order and report progress against the playlist total"""
        fake_session.add('GET', r'/playlists/pl1$', response(200, playlist_data("pl1", total=4)))
        fake_session.add(
            'GET', r'/playlists/pl1/tracks$',
            response(200, page([track_item("t1"), track_item("t2")],
                               next_url=f"{API}/playlists/pl1/tracks?offset=2&limit=2", total=4)),
            response(200, page([{'track': None}, track_item("t3")], total=4)),
        )
        fake_session.add('GET', r'/audio-features/\w+$', danceability)
        progress = []

        result = list(catalog.get_playlist_tracks_enriched("pl1", on_progress=lambda c, t: progress.append((c, t))))

        assert [(track.id, track.danceability) for track in result] == [("t1", 0.3), ("t2", 0.6), ("t3", 0.9)]
        assert all(track.id and 0 <= track.danceability <= 1 for track in result)
        assert progress == [(1, 4), (2, 4), (3, 4)]

    def test_enriched_missing_playlist_raises_eagerly(self, catalog, fake_session):
        fake_session.add('GET', r'/playlists/gone$', response(404))

        with pytest.raises(NotFound):
            catalog.get_playlist_tracks_enriched("gone")

    def test_get_current_user(self, catalog, fake_session):
        fake_session.add('GET', r'/me$', response(200, {'id': 'user1', 'display_name': 'User One'}))

        assert catalog.get_current_user()['id'] == 'user1'


class TestExtractPlaylistId:
    """Test playlist id extraction"""

    PLAYLIST_ID = "37i9dQZF1DXcBWIGoYBM5M"

    @pytest.mark.parametrize("value", [
        "37i9dQZF1DXcBWIGoYBM5M",
        "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M",
        "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M?si=abc123",
        "spotify:playlist:37i9dQZF1DXcBWIGoYBM5M",
        "  37i9dQZF1DXcBWIGoYBM5M  ",
    ])
    def test_valid(self, value):
        assert extract_playlist_id(value) == self.PLAYLIST_ID

    @pytest.mark.parametrize("value", [
        "",
        "not a playlist",
        "https://open.spotify.com/album/37i9dQZF1DXcBWIGoYBM5M",
        "spotify:track:37i9dQZF1DXcBWIGoYBM5M",
    ])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            extract_playlist_id(value)
