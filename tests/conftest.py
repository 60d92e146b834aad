"""Test configuration and fixtures"""

import json
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import pytest
from requests.structures import CaseInsensitiveDict

from bodywerk.config.auth import TokenManager
from bodywerk.config.settings import Settings
from bodywerk.engine import DanceabilityEngine
from bodywerk.spotify.gateway import HttpGateway


API = "https://api.spotify.com/v1"
TOKEN_URL = "https://accounts.spotify.com/api/token"
REDIRECT_URL = "http://localhost:8080/callback"
START_TIME = 1_700_000_000.0


class FakeResponse:
    """Minimal stand-in for requests.Response"""

    def __init__(self, status_code: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        if body is None:
            self.text = ""
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = json.dumps(body)
        self.content = self.text.encode('utf-8')

    def json(self):
        return json.loads(self.text)


def response(status_code: int = 200, body: Any = None, **headers) -> FakeResponse:
    """Shorthand used by tests: response(429, {'error': ...}, **{'Retry-After': '2'})"""
    return FakeResponse(status_code, body, {k.replace('_', '-'): v for k, v in headers.items()})


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: Any = None
    timeout: Optional[float] = None
    at: Optional[float] = None

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def query(self) -> Dict[str, List[str]]:
        return parse_qs(urlsplit(self.url).query)


class FakeSession:
    """
    Scripted replacement for requests.Session

    Routes match the request method and a regex searched in the URL path.
    Each route holds a queue of outcomes (FakeResponse, exception instance,
    or callable(call) -> FakeResponse); the last outcome repeats once the
    queue is drained.
    """

    def __init__(self, clock=None):
        self.clock = clock
        self.routes = []
        self.calls: List[RecordedCall] = []

    def add(self, method: str, pattern: str, *outcomes) -> 'FakeSession':
        self.routes.append((method.upper(), re.compile(pattern), deque(outcomes)))
        return self

    def request(self, method, url, headers=None, json=None, data=None, timeout=None, **kwargs):
        call = RecordedCall(
            method=method.upper(),
            url=url,
            headers=dict(headers or {}),
            json=json,
            data=data,
            timeout=timeout,
            at=self.clock() if self.clock else None,
        )
        self.calls.append(call)

        for route_method, pattern, outcomes in self.routes:
            if route_method == call.method and pattern.search(call.path):
                outcome = outcomes.popleft() if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, BaseException):
                    raise outcome
                if callable(outcome):
                    return outcome(call)
                return outcome
        raise AssertionError(f"Unexpected request: {call.method} {url}")

    def post(self, url, **kwargs):
        return self.request('POST', url, **kwargs)

    def get(self, url, **kwargs):
        return self.request('GET', url, **kwargs)

    def calls_to(self, pattern: str, method: Optional[str] = None) -> List[RecordedCall]:
        regex = re.compile(pattern)
        return [
            call for call in self.calls
            if regex.search(call.path) and (method is None or call.method == method.upper())
        ]


class FakeClock:
    """Clock whose sleep advances time instantly and records the delay"""

    def __init__(self, start: float = START_TIME):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float, token=None) -> None:
        if token is not None:
            token.raise_if_cancelled()
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        if token is not None:
            token.raise_if_cancelled()


def token_payload(access: str = "access-token-0001", refresh: str = "refresh-token-0001",
                  expires_in: int = 3600, **extra) -> Dict[str, Any]:
    payload = {
        'access_token': access,
        'token_type': 'Bearer',
        'expires_in': expires_in,
        'scope': 'playlist-read-private playlist-modify-private',
    }
    if refresh is not None:
        payload['refresh_token'] = refresh
    payload.update(extra)
    return payload


def track_item(track_id: Optional[str], name: Optional[str] = None, artist: str = "Test Artist") -> Dict[str, Any]:
    """Playlist page item wrapping a track object"""
    return {
        'added_at': '2024-01-01T00:00:00Z',
        'track': {
            'id': track_id,
            'name': name or f"Song {track_id}",
            'uri': f"spotify:track:{track_id}" if track_id else "spotify:local:Some+Artist::Local+Song:200",
            'preview_url': None,
            'is_local': track_id is None,
            'artists': [{'name': artist}],
            'album': {
                'name': 'Test Album',
                'images': [
                    {'url': 'https://i.scdn.co/image/large', 'width': 640, 'height': 640},
                    {'url': 'https://i.scdn.co/image/small', 'width': 64, 'height': 64},
                ],
            },
        },
    }


def playlist_data(playlist_id: str = "pl1", name: str = "Party", total: int = 3, owner: str = "user1") -> Dict[str, Any]:
    return {
        'id': playlist_id,
        'name': name,
        'description': '',
        'public': False,
        'snapshot_id': 'snap',
        'images': [{'url': f'https://mosaic.scdn.co/{playlist_id}', 'width': 640, 'height': 640}],
        'owner': {'id': owner, 'display_name': owner.title()},
        'tracks': {'total': total},
    }


def page(items: List[Any], next_url: Optional[str] = None, total: Optional[int] = None) -> Dict[str, Any]:
    return {
        'items': items,
        'next': next_url,
        'total': len(items) if total is None else total,
    }


@pytest.fixture
def clock():
    """Fake clock shared by the session, gateway and token manager"""
    return FakeClock()


@pytest.fixture
def fake_session(clock):
    """Scripted HTTP session recording every call"""
    return FakeSession(clock)


@pytest.fixture
def make_settings():
    """Factory for settings without file/env sources, no backoff jitter"""
    def factory(**sections) -> Settings:
        settings = Settings(load_sources=False)
        settings.spotify.client_id = "client-id"
        settings.spotify.client_secret = "client-secret"
        settings.spotify.redirect_url = REDIRECT_URL
        settings.security.session_secret = "session-signing-secret"
        settings.network.backoff_jitter = 0.0
        settings.apply(sections)
        return settings
    return factory


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def token_manager(settings, fake_session, clock):
    """Token manager bootstrapped with a fresh credential"""
    manager = TokenManager.from_settings(settings, session=fake_session, clock=clock)
    manager.bootstrap(token_payload(), user_id="user1")
    return manager


@pytest.fixture
def gateway(token_manager, settings, fake_session, clock):
    return HttpGateway(
        token_manager,
        network=settings.network,
        session=fake_session,
        sleeper=clock.sleep,
        clock=clock,
        uniform=lambda low, high: 1.0,
    )


@pytest.fixture
def engine(settings, fake_session, clock):
    """Engine with an authenticated session for user1"""
    engine = DanceabilityEngine(
        settings,
        session=fake_session,
        sleeper=clock.sleep,
        clock=clock,
        uniform=lambda low, high: 1.0,
    )
    engine.bootstrap(token_payload(user_id="user1"))
    return engine
