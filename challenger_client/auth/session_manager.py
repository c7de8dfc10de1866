"""
Session lifecycle management for the Challenger session client.

This module restores the session from secure storage at startup, activates new
sessions after sign in or refresh, and tears sessions down on logout.
"""

import logging
from typing import Any, Dict

from challenger_client.auth.token_store import TokenStore
from challenger_shared.exceptions import StorageError
from challenger_shared.interfaces import ISessionLifecycle, ITokenPersistence
from challenger_shared.logging_config import AuditLogger
from challenger_shared.models import CredentialBundle, UserSummary, ApiResponse

logger = logging.getLogger(__name__)


class SessionLifecycleManager(ISessionLifecycle):
    """
    Keeps the in-memory TokenStore and the secure storage in step.

    Storage writes are best effort: the in-memory session is authoritative for
    the running process, so a failed write or delete is logged and does not
    fail the surrounding operation.
    """

    def __init__(self, token_store: TokenStore, token_storage: ITokenPersistence):
        self.token_store = token_store
        self.token_storage = token_storage
        self._audit_logger = AuditLogger()

    async def restore_session(self) -> bool:
        """
        Load the persisted session into the TokenStore.

        Returns:
            True if a session was restored
        """
        try:
            bundle = self.token_storage.load()
        except Exception as e:
            logger.error(f"Failed to load stored session: {e}")
            bundle = None

        if bundle is None or bundle.user is None:
            if bundle is not None:
                logger.warning("Ignoring stored session without user data")
            logger.info("No stored session to restore")
            self._audit_logger.log_session_restore(False)
            return False

        self.token_store.set_session(bundle.access_token, bundle.refresh_token, bundle.user)

        try:
            if self.token_store.is_access_token_expired():
                logger.info("Restored access token is expired; it will be refreshed on first use")
        except Exception as e:
            logger.debug(f"Could not check restored token expiry: {e}")

        username = bundle.user.username
        logger.info(f"Restored session for {username}")
        self._audit_logger.log_session_restore(True, username=username)
        return True

    def establish_session(self, bundle: CredentialBundle) -> None:
        """
        Persist a new session and make it current.

        Args:
            bundle: Credentials returned by sign in, sign up or refresh
        """
        self._persist(bundle)
        self.token_store.set_session(bundle.access_token, bundle.refresh_token, bundle.user)

    def logout(self, reason: str = "user_request") -> None:
        """
        Remove the stored session and clear the TokenStore. Idempotent.

        Args:
            reason: Why the session ends, recorded in the audit log
        """
        user = self.token_store.current_user()

        try:
            self.token_storage.delete()
        except StorageError as e:
            logger.warning(f"Stored session could not be removed: {e}")

        self.token_store.clear_session()
        self._audit_logger.log_logout(username=user.username if user else None, reason=reason)

    def update_user(self, user: UserSummary) -> bool:
        """
        Replace the signed-in user and persist the change.

        Args:
            user: Updated user data

        Returns:
            True if a session was active and updated
        """
        if not self.token_store.update_user(user):
            return False

        self._persist(CredentialBundle.from_session(self.token_store.session))
        return True

    def merge_user(self, changes: Dict[str, Any]) -> bool:
        """
        Apply a partial user update on top of the signed-in user.

        Fields missing from ``changes`` keep their current values. An update
        that would leave the user invalid (for example an empty username) is
        rejected and the session is left unchanged.

        Args:
            changes: Changed user fields, in the server's wire shape

        Returns:
            True if the session user was updated
        """
        current = self.token_store.current_user()
        if current is None:
            return False

        if 'id' in changes and str(changes['id']) != current.id:
            logger.debug("Ignoring user update for a different user")
            return False

        merged = current.to_dict()
        merged.update(changes)
        try:
            user = UserSummary.from_dict(merged)
        except ValueError as e:
            logger.debug(f"Ignoring response without usable user data: {e}")
            return False

        return self.update_user(user)

    def handle_profile_update(self, response: ApiResponse) -> None:
        """
        Post-commit handler that picks up user data from a mutation response.

        A ``{"user": {...}}`` payload is merged into the signed-in user, so a
        response carrying only the changed fields keeps the rest. A bare object
        is treated as a user only when its ``id`` matches the signed-in user.
        Anything else is ignored.
        """
        data = response.data
        if not isinstance(data, dict):
            return

        if isinstance(data.get('user'), dict):
            self.merge_user(data['user'])
            return

        current = self.token_store.current_user()
        if current is not None and 'id' in data and str(data['id']) == current.id:
            self.merge_user(data)

    def _persist(self, bundle: CredentialBundle) -> bool:
        try:
            self.token_storage.save(bundle)
            return True
        except StorageError as e:
            logger.warning(f"Session could not be persisted: {e}")
            return False
