"""
In-memory session holder for the Challenger session client.

The TokenStore is the single place the current access token, refresh token and
user live during a run. Every mutation replaces the whole session at once, so
a reader never observes tokens from one session next to a user from another.
"""

import logging
from datetime import datetime
from typing import Optional, Callable, List

from jose import jwt, JWTError

from challenger_shared.models import Session, UserSummary, EMPTY_SESSION

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Holds the current session and notifies listeners when it changes.

    Mutations are synchronous and therefore atomic with respect to the event
    loop: they never straddle an await point.
    """

    def __init__(self):
        self._session: Session = EMPTY_SESSION

        # Callbacks for authentication state changes
        self._session_callbacks: List[Callable[[bool], None]] = []

    def add_session_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for session changes.

        Args:
            callback: Function called with the authenticated flag after every mutation
        """
        self._session_callbacks.append(callback)

    def _notify_session_change(self) -> None:
        """Notify callbacks of a session change."""
        is_authenticated = self._session.is_authenticated
        for callback in self._session_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in session callback: {e}")

    @property
    def session(self) -> Session:
        """Immutable snapshot of the current session."""
        return self._session

    def set_session(
        self,
        access_token: str,
        refresh_token: str,
        user: Optional[UserSummary]
    ) -> None:
        """
        Replace the whole session.

        Args:
            access_token: New access token
            refresh_token: New refresh token
            user: Signed-in user
        """
        self._session = Session(
            access_token=access_token,
            refresh_token=refresh_token,
            user=user
        )
        logger.debug(f"Session set for user {user.username if user else '<unknown>'}")
        self._notify_session_change()

    def clear_session(self) -> None:
        """Forget the session. Safe to call when already cleared."""
        was_authenticated = self._session.is_authenticated
        self._session = EMPTY_SESSION

        if was_authenticated:
            logger.debug("Session cleared")
            self._notify_session_change()

    def update_user(self, user: UserSummary) -> bool:
        """
        Replace the user while keeping the tokens.

        Args:
            user: Updated user data

        Returns:
            True if a session was active and updated
        """
        if not self._session.is_authenticated:
            logger.debug("Ignoring user update: no active session")
            return False

        self._session = Session(
            access_token=self._session.access_token,
            refresh_token=self._session.refresh_token,
            user=user
        )
        self._notify_session_change()
        return True

    def current_access_token(self) -> Optional[str]:
        return self._session.access_token

    def current_refresh_token(self) -> Optional[str]:
        return self._session.refresh_token

    def current_user(self) -> Optional[UserSummary]:
        return self._session.user

    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    def access_token_expiry(self) -> Optional[datetime]:
        """
        Expiration of the current access token.

        The token is decoded without verification; only the backend can
        validate it. Opaque (non-JWT) tokens and tokens without an ``exp``
        claim yield None.

        Returns:
            Expiration datetime or None if not available
        """
        token = self._session.access_token
        if not token:
            return None

        try:
            payload = jwt.get_unverified_claims(token)
        except JWTError as e:
            logger.debug(f"Access token is not a decodable JWT: {e}")
            return None

        expires_at_timestamp = payload.get('exp')
        if isinstance(expires_at_timestamp, (int, float)):
            try:
                return datetime.fromtimestamp(expires_at_timestamp)
            except (OverflowError, OSError, ValueError) as e:
                logger.debug(f"Access token expiry is out of range: {e}")
                return None

        return None

    def is_access_token_expired(self) -> bool:
        """True only when the token carries an expiry that has passed."""
        expires_at = self.access_token_expiry()
        return expires_at is not None and datetime.now() >= expires_at
