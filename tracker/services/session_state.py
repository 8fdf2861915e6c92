"""
Process-wide session state.

Holds the bearer token used for every order API call and broadcasts the
"unauthorized" signal (HTTP 401 from upstream, or an expired token) to the
components that registered for it. Lifetime is explicit: init() on sign-in,
teardown() on sign-out or app shutdown.
"""
import logging
import time
from typing import Callable, Optional

import jwt

logger = logging.getLogger(__name__)


class SessionState:
    """Bearer token holder with an explicit unauthorized broadcast."""

    def __init__(self):
        self._token: Optional[str] = None
        self._listeners: list[Callable[[], None]] = []
        self._unauthorized_signalled = False

    # ── Lifetime ────────────────────────────────────────────────────

    def init(self, token: Optional[str]) -> None:
        """Start a session with the given token (None = anonymous)."""
        self._token = token or None
        self._unauthorized_signalled = False
        logger.info(f"Session initialized ({'authenticated' if self._token else 'anonymous'})")

    def teardown(self) -> None:
        """End the session. Listeners are dropped; nothing is notified."""
        self._token = None
        self._listeners.clear()
        self._unauthorized_signalled = False
        logger.info("Session torn down")

    # ── Token ───────────────────────────────────────────────────────

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def authorization_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    def is_expired(self, leeway_seconds: int = 0) -> bool:
        """
        Check the JWT `exp` claim without verifying the signature.

        The client never holds the signing key; the server stays the judge.
        Opaque (non-JWT) tokens and tokens without `exp` are never "expired".
        """
        if not self._token:
            return False
        try:
            claims = jwt.decode(self._token, options={"verify_signature": False})
        except jwt.DecodeError:
            return False
        exp = claims.get("exp")
        if exp is None:
            return False
        return float(exp) <= time.time() - leeway_seconds

    # ── Unauthorized signal ─────────────────────────────────────────

    def on_unauthorized(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a listener. Returns an unsubscribe callable."""
        self._listeners.append(callback)

        def _unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def mark_unauthorized(self) -> None:
        """Clear the token and notify listeners once per session."""
        self._token = None
        if self._unauthorized_signalled:
            return
        self._unauthorized_signalled = True
        logger.warning(f"Session unauthorized: notifying {len(self._listeners)} listener(s)")
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error(f"Unauthorized listener failed: {e}", exc_info=True)


# Singleton session instance
_session: SessionState | None = None


def get_session_state() -> SessionState:
    global _session
    if _session is None:
        _session = SessionState()
    return _session
