# tests/test_token_manager.py
"""Test credential handling and token refresh"""

import base64
import threading
import time

import pytest
import requests

from bodywerk.config.auth import Credential, CredentialState, TokenManager, basic_auth_header
from bodywerk.core.exceptions import AuthExpired

from conftest import START_TIME, FakeSession, response, token_payload


@pytest.fixture
def manager(settings, fake_session, clock):
    return TokenManager.from_settings(settings, session=fake_session, clock=clock)


class TestCredential:
    """Test Credential construction and validity"""

    def test_expiry_from_expires_in(self):
        credential = Credential.from_token_response(token_payload(expires_in=3600), now=START_TIME)

        assert credential.expires_at == START_TIME + 3600
        assert credential.scopes == frozenset({'playlist-read-private', 'playlist-modify-private'})

    def test_validity_respects_skew(self):
        credential = Credential(access_token="a", refresh_token="r", expires_at=START_TIME + 100)

        assert credential.is_valid(START_TIME, skew=30)
        assert credential.is_valid(START_TIME + 69.9, skew=30)
        assert not credential.is_valid(START_TIME + 70, skew=30)

    def test_refresh_token_retained(self):
        """A refresh response without refresh_token keeps the previous one"""
        previous = Credential(access_token="old", refresh_token="keep-me", expires_at=START_TIME, user_id="u1")
        refreshed = Credential.from_token_response(token_payload("new", refresh=None), START_TIME, previous=previous)

        assert refreshed.access_token == "new"
        assert refreshed.refresh_token == "keep-me"
        assert refreshed.user_id == "u1"

    def test_expires_at_in_milliseconds(self):
        payload = token_payload(expires_at=(START_TIME + 600) * 1000)
        credential = Credential.from_token_response(payload, now=START_TIME)

        assert credential.expires_at == pytest.approx(START_TIME + 600)

    def test_missing_access_token(self):
        with pytest.raises(AuthExpired):
            Credential.from_token_response({'refresh_token': 'r'}, now=START_TIME)

    def test_tokens_hidden_from_repr(self):
        credential = Credential(access_token="secret-access", refresh_token="secret-refresh", expires_at=0)

        assert "secret-access" not in repr(credential)
        assert "secret-refresh" not in repr(credential)


class TestTokenManager:
    """Test the TokenManager state machine"""

    def test_uninitialized(self, manager):
        assert manager.state is CredentialState.UNINITIALIZED
        with pytest.raises(AuthExpired):
            manager.get_bearer()

    def test_bootstrap_and_bearer(self, manager, fake_session):
        manager.bootstrap(token_payload("access-1"), user_id="user1")

        assert manager.state is CredentialState.AUTHENTICATED
        assert manager.user_id == "user1"
        assert manager.get_bearer() == "access-1"
        assert fake_session.calls == []

    def test_refresh_within_skew(self, manager, fake_session, clock):
        """A token expiring within 30 s is refreshed before use"""
        fake_session.add('POST', r'/api/token$', response(200, token_payload("access-2", refresh="refresh-2")))
        manager.bootstrap(token_payload("access-1", expires_in=3600))

        clock.advance(3600 - 29)
        bearer = manager.get_bearer()

        assert bearer == "access-2"
        assert manager.credential.refresh_token == "refresh-2"
        assert manager.credential.expires_at == clock() + 3600
        assert manager.refresh_count == 1

        call = fake_session.calls[0]
        assert call.data == {'grant_type': 'refresh_token', 'refresh_token': 'refresh-token-0001'}
        assert call.headers['Authorization'] == basic_auth_header("client-id", "client-secret")
        assert call.headers['Content-Type'] == 'application/x-www-form-urlencoded'

    def test_bearer_never_within_skew(self, manager, fake_session, clock):
        fake_session.add('POST', r'/api/token$', response(200, token_payload("access-2", expires_in=3600)))
        manager.bootstrap(token_payload("access-1", expires_in=60))

        for _ in range(5):
            manager.get_bearer()
            assert manager.credential.expires_at - clock() > manager.refresh_skew
            clock.advance(20)

    def test_invalid_grant_fails(self, manager, fake_session, clock):
        """invalid_grant moves the manager to FAILED and raises AuthExpired"""
        fake_session.add('POST', r'/api/token$', response(400, {
            'error': 'invalid_grant',
            'error_description': 'Refresh token revoked',
        }))
        manager.bootstrap(token_payload(expires_in=10))

        with pytest.raises(AuthExpired) as exc_info:
            manager.get_bearer()

        assert 'Refresh token revoked' in str(exc_info.value)
        assert manager.state is CredentialState.FAILED
        assert manager.credential is None
        with pytest.raises(AuthExpired):
            manager.get_bearer()

    def test_network_failure_fails(self, manager, fake_session):
        fake_session.add('POST', r'/api/token$', requests.exceptions.ConnectionError("down"))
        manager.bootstrap(token_payload(expires_in=10))

        with pytest.raises(AuthExpired):
            manager.refresh()
        assert manager.state is CredentialState.FAILED

    def test_short_lived_grant_rejected(self, manager, fake_session, clock):
        """A refreshed token that already expires within the skew is never handed out"""
        fake_session.add('POST', r'/api/token$', response(200, token_payload("access-2", expires_in=20)))
        manager.bootstrap(token_payload("access-1", expires_in=3600))
        clock.advance(3600)

        with pytest.raises(AuthExpired) as exc_info:
            manager.get_bearer()

        assert "refresh skew" in str(exc_info.value)
        assert manager.state is CredentialState.FAILED
        assert manager.credential is None

    def test_interrupted_refresh_does_not_block(self, manager, fake_session):
        """Ctrl-C during the token request leaves the manager FAILED, not REFRESHING"""
        fake_session.add('POST', r'/api/token$', KeyboardInterrupt())
        manager.bootstrap(token_payload(expires_in=10))

        with pytest.raises(KeyboardInterrupt):
            manager.get_bearer()

        assert manager.state is CredentialState.FAILED
        with pytest.raises(AuthExpired):
            manager.get_bearer()

    def test_stale_token_refresh_is_shared(self, manager, fake_session):
        """A forced refresh for an already replaced token does not call upstream again"""
        fake_session.add('POST', r'/api/token$', response(200, token_payload("access-2")))
        manager.bootstrap(token_payload("access-1"))

        manager.refresh(stale_token="access-1")
        credential = manager.refresh(stale_token="access-1")

        assert credential.access_token == "access-2"
        assert len(fake_session.calls) == 1

    def test_exchange_code(self, manager, fake_session):
        fake_session.add('POST', r'/api/token$', response(200, token_payload("access-1")))

        payload = manager.exchange_code("the-code")

        assert payload['access_token'] == "access-1"
        assert fake_session.calls[0].data == {
            'grant_type': 'authorization_code',
            'code': 'the-code',
            'redirect_uri': 'http://localhost:8080/callback',
        }

    def test_sign_out(self, manager):
        manager.bootstrap(token_payload())
        manager.sign_out()

        assert manager.state is CredentialState.UNINITIALIZED
        assert manager.credential is None

    def test_concurrent_bearers_refresh_once(self, settings):
        """Concurrent get_bearer() calls during expiry trigger exactly one refresh"""
        now = [START_TIME]
        release = threading.Event()
        session = FakeSession()

        def slow_refresh(call):
            release.wait(2)
            now[0] += 1
            return response(200, token_payload("access-2"))

        session.add('POST', r'/api/token$', slow_refresh)
        manager = TokenManager.from_settings(settings, session=session, clock=lambda: now[0])
        manager.bootstrap(token_payload("access-1", expires_in=10))

        results = []
        errors = []

        def worker():
            try:
                results.append(manager.get_bearer())
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        time.sleep(0.05)
        release.set()
        for thread in threads:
            thread.join(5)

        assert errors == []
        assert results == ["access-2"] * 8
        assert len(session.calls) == 1
        assert manager.refresh_count == 1


def test_basic_auth_header():
    """Test client authentication header"""
    header = basic_auth_header("id", "secret")

    assert header == "Basic " + base64.b64encode(b"id:secret").decode('ascii')
