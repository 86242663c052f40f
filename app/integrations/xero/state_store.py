"""
OAuth State Store
Holds the anti-CSRF state token for the authorization attempt in flight.

Only one attempt exists per session, so only one token is kept. It is
cleared when the callback arrives (success or failure) or on disconnect.
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional


class OAuthStateStore:
    """
    Single-slot store for the pending OAuth state token.

    Tokens expire after the configured lifetime (OAuth flow timeout).
    """

    def __init__(self, lifetime: timedelta = timedelta(minutes=10)):
        self.lifetime = lifetime
        self._state: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    def save_state(self, state: str) -> None:
        """
        Remember the state for the attempt being started.

        A previous pending token is replaced.

        Args:
            state: OAuth state token
        """
        self._state = state
        self._expires_at = datetime.now(timezone.utc) + self.lifetime

    @property
    def has_pending_state(self) -> bool:
        return self._current() is not None

    def _current(self) -> Optional[str]:
        if self._state is None:
            return None

        # Check expiration
        if self._expires_at and datetime.now(timezone.utc) > self._expires_at:
            self.clear()
            return None

        return self._state

    def consume_state(self, state: Optional[str]) -> bool:
        """
        Verify a returned state against the pending one (one-time use).

        The pending token is cleared whatever the outcome.

        Args:
            state: State token echoed by the redirect

        Returns:
            True if it matches the pending, unexpired token
        """
        expected = self._current()
        self.clear()

        if expected is None or not state:
            return False

        return hmac.compare_digest(expected.encode(), state.encode())

    def clear(self) -> None:
        """Forget the pending token."""
        self._state = None
        self._expires_at = None

