"""
Tests for SessionState.

Tests: init/teardown, bearer headers, unauthorized broadcast, JWT expiry.
"""
import os, sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import time

import jwt
import pytest

from services.session_state import SessionState, get_session_state


class TestSessionState:

    @pytest.mark.unit
    def test_headers_follow_token(self):
        session = SessionState()
        assert session.authorization_headers() == {}
        session.init("abc")
        assert session.is_authenticated is True
        assert session.authorization_headers() == {"Authorization": "Bearer abc"}
        session.teardown()
        assert session.authorization_headers() == {}

    @pytest.mark.unit
    def test_unauthorized_notifies_once(self):
        session = SessionState()
        session.init("abc")
        calls = []
        session.on_unauthorized(lambda: calls.append(1))
        session.mark_unauthorized()
        session.mark_unauthorized()
        assert calls == [1]
        assert session.token is None

    @pytest.mark.unit
    def test_reinit_rearms_signal(self):
        session = SessionState()
        calls = []
        session.on_unauthorized(lambda: calls.append(1))
        session.init("abc")
        session.mark_unauthorized()
        session.init("def")
        session.mark_unauthorized()
        assert calls == [1, 1]

    @pytest.mark.unit
    def test_unsubscribe(self):
        session = SessionState()
        calls = []
        unsubscribe = session.on_unauthorized(lambda: calls.append(1))
        unsubscribe()
        unsubscribe()
        session.mark_unauthorized()
        assert calls == []

    @pytest.mark.unit
    def test_failing_listener_does_not_block_others(self):
        session = SessionState()
        calls = []

        def broken():
            raise RuntimeError("boom")

        session.on_unauthorized(broken)
        session.on_unauthorized(lambda: calls.append(1))
        session.mark_unauthorized()
        assert calls == [1]

    @pytest.mark.unit
    def test_expired_jwt(self):
        session = SessionState()
        session.init(jwt.encode({"sub": "u1", "exp": int(time.time()) - 60}, "secret", algorithm="HS256"))
        assert session.is_expired() is True

    @pytest.mark.unit
    def test_valid_jwt(self):
        session = SessionState()
        session.init(jwt.encode({"sub": "u1", "exp": int(time.time()) + 3600}, "secret", algorithm="HS256"))
        assert session.is_expired() is False

    @pytest.mark.unit
    def test_opaque_token_never_expired(self):
        session = SessionState()
        session.init("not-a-jwt")
        assert session.is_expired() is False

    @pytest.mark.unit
    def test_singleton(self):
        assert get_session_state() is get_session_state()
