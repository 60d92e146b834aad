# tests/test_publisher.py
"""Test sorting and the publish pipeline"""

import pytest

from bodywerk.core.cancellation import CancellationToken
from bodywerk.core.exceptions import Cancelled, PartialWrite, ServerError, UpstreamReject
from bodywerk.spotify.models import EnrichedTrack, PublishPlan, SortKey, TrackRef
from bodywerk.spotify.publisher import PublishPipeline, sort_tracks

from conftest import API, playlist_data, response


def enriched(track_id, score, missing=False):
    track = TrackRef(id=track_id, uri=f"spotify:track:{track_id}", name=track_id)
    return EnrichedTrack(track=track, danceability=score, missing_features=missing)


@pytest.fixture
def pipeline(gateway, settings, clock):
    return PublishPipeline(gateway, API, settings.engine, sleeper=clock.sleep)


def created(call):
    return response(201, playlist_data("new1", call.json['name'], total=0))


class TestSortTracks:
    """Test stable ordering"""

    def test_descending(self):
        tracks = [enriched("t1", 0.2), enriched("t2", 0.9), enriched("t3", 0.5)]

        assert [t.id for t in sort_tracks(tracks)] == ["t2", "t3", "t1"]

    def test_ties_keep_playlist_order(self):
        tracks = [enriched("a", 0.5), enriched("b", 0.7), enriched("c", 0.5), enriched("d", 0.0, missing=True),
                  enriched("e", 0.7)]

        assert [t.id for t in sort_tracks(tracks)] == ["b", "e", "a", "c", "d"]
        assert [t.id for t in sort_tracks(tracks, SortKey.DANCEABILITY_ASC)] == ["d", "a", "c", "b", "e"]

    def test_idempotent(self):
        tracks = [enriched(str(i), score) for i, score in enumerate([0.3, 0.3, 0.9, 0.1, 0.9, 0.3])]

        once = sort_tracks(tracks)
        assert sort_tracks(once) == once

    def test_identity(self):
        tracks = [enriched("x", 0.1), enriched("y", 0.9)]

        assert sort_tracks(tracks, SortKey.IDENTITY) == tracks


class TestPublishPipeline:
    """Test playlist creation and chunked appends"""

    def test_happy_path(self, pipeline, fake_session):
        """A 3-track plan creates a private playlist and appends in order"""
        fake_session.add('POST', r'/users/user1/playlists$', created)
        fake_session.add('POST', r'/playlists/new1/tracks$', response(201, {'snapshot_id': 's'}))
        ordered = sort_tracks([enriched("t1", 0.2), enriched("t2", 0.9), enriched("t3", 0.5)])
        plan = PublishPlan(
            user_id="user1",
            name="Party - Sorted by Danceability",
            description="Tracks sorted by danceability score",
            track_uris=tuple(track.uri for track in ordered),
        )

        result = pipeline.publish(plan)

        create_call, append_call = fake_session.calls
        assert create_call.json == {
            'name': "Party - Sorted by Danceability",
            'description': "Tracks sorted by danceability score",
            'public': False,
        }
        assert append_call.json == {'uris': ["spotify:track:t2", "spotify:track:t3", "spotify:track:t1"]}
        assert result.id == "new1"
        assert result.total_tracks == 3

    def test_chunks_of_100(self, pipeline, fake_session, clock):
        fake_session.add('POST', r'/users/user1/playlists$', created)
        fake_session.add('POST', r'/playlists/new1/tracks$', response(201, {'snapshot_id': 's'}))
        uris = tuple(f"spotify:track:{i}" for i in range(250))
        progress = []

        pipeline.publish(PublishPlan(user_id="user1", name="Big", track_uris=uris),
                         on_progress=lambda c, t: progress.append((c, t)))

        appends = fake_session.calls_to(r'/playlists/new1/tracks$')
        assert [len(call.json['uris']) for call in appends] == [100, 100, 50]
        assert [uri for call in appends for uri in call.json['uris']] == list(uris)
        assert clock.sleeps == [0.1, 0.1]
        assert progress == [(100, 250), (200, 250), (250, 250)]

    def test_partial_write(self, pipeline, fake_session):
        """Chunk 2 failing with 500 after retries reports 100 of 150 written"""
        fake_session.add('POST', r'/users/user1/playlists$', created)
        fake_session.add('POST', r'/playlists/new1/tracks$', response(201, {'snapshot_id': 's'}), response(500))
        uris = tuple(f"spotify:track:{i}" for i in range(150))

        with pytest.raises(PartialWrite) as exc_info:
            pipeline.publish(PublishPlan(user_id="user1", name="Half", track_uris=uris))

        error = exc_info.value
        assert error.new_playlist_id == "new1"
        assert error.written_count == 100
        assert error.total_count == 150
        assert isinstance(error.__cause__, ServerError)
        # 1 successful chunk + 1 failing chunk with 3 retries
        assert len(fake_session.calls_to(r'/playlists/new1/tracks$')) == 5

    def test_creation_failure_is_not_partial(self, pipeline, fake_session):
        fake_session.add('POST', r'/users/user1/playlists$', response(403, {'error': {'status': 403, 'message': 'Forbidden'}}))

        with pytest.raises(UpstreamReject) as exc_info:
            pipeline.publish(PublishPlan(user_id="user1", name="Nope", track_uris=("spotify:track:1",)))

        assert not isinstance(exc_info.value, PartialWrite)

    def test_public_flag(self, pipeline, fake_session):
        fake_session.add('POST', r'/users/user1/playlists$', created)

        pipeline.publish(PublishPlan(user_id="user1", name="Open", public=True))

        assert fake_session.calls[0].json['public'] is True
        assert len(fake_session.calls) == 1

    def test_cancel_during_append(self, pipeline, fake_session):
        """Cancellation after creation keeps the playlist and reports progress"""
        token = CancellationToken("publish")

        def append(call):
            token.cancel()
            return response(201, {'snapshot_id': 's'})

        fake_session.add('POST', r'/users/user1/playlists$', created)
        fake_session.add('POST', r'/playlists/new1/tracks$', append)
        uris = tuple(f"spotify:track:{i}" for i in range(150))

        with pytest.raises(Cancelled) as exc_info:
            pipeline.publish(PublishPlan(user_id="user1", name="Stop", track_uris=uris), cancel_token=token)

        assert exc_info.value.details['new_playlist_id'] == "new1"
        assert exc_info.value.details['written_count'] == 100
