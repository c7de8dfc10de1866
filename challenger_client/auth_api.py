"""
Authentication API client for the Challenger session client.

Sign in, sign up and sign out against the backend's /auth endpoints. Successful
sign in and sign up establish the session through the SessionLifecycleManager;
sign out always clears the local session, whatever the server answers.
"""

import logging
from typing import Any

from challenger_client.auth.session_manager import SessionLifecycleManager
from challenger_client.request_pipeline import ResilientRequestPipeline
from challenger_shared.exceptions import RequestError, ResponseParseError
from challenger_shared.logging_config import AuditLogger
from challenger_shared.models import CredentialBundle, RequestAttempt, Session

logger = logging.getLogger(__name__)

SIGNIN_PATH = '/auth/signin'
SIGNUP_PATH = '/auth/signup'
LOGOUT_PATH = '/auth/logout'


class AuthAPIClient:
    """Domain API client for the authentication endpoints."""

    def __init__(self, pipeline: ResilientRequestPipeline, session_manager: SessionLifecycleManager):
        self.pipeline = pipeline
        self.session_manager = session_manager
        self._audit_logger = AuditLogger()

    async def login(self, username: str, password: str) -> Session:
        """
        Sign in with username and password.

        Args:
            username: Account name
            password: Account password

        Returns:
            The new session

        Raises:
            RequestError: If the server rejects the credentials or cannot be reached
        """
        return await self._authenticate(
            SIGNIN_PATH,
            {'username': username, 'password': password},
            username=username,
            action="signin"
        )

    async def signup(self, username: str, email: str, password: str) -> Session:
        """
        Create an account and sign in to it.

        Args:
            username: Requested account name
            email: Contact email
            password: Account password

        Returns:
            The new session
        """
        return await self._authenticate(
            SIGNUP_PATH,
            {'username': username, 'email': email, 'password': password},
            username=username,
            action="signup"
        )

    async def logout_user(self) -> None:
        """
        Sign out on the server, then clear the local session.

        A failed server call is logged; the local session is cleared regardless.
        """
        try:
            if self.pipeline.token_store.is_authenticated():
                await self.pipeline.post(LOGOUT_PATH)
        except RequestError as e:
            logger.warning(f"Server logout failed, clearing local session anyway: {e.message}")
        finally:
            self.session_manager.logout(reason="user_request")

    async def _authenticate(self, path: str, body: Any, username: str, action: str) -> Session:
        attempt = RequestAttempt(
            url=path,
            method='POST',
            body=body,
            timeout_ms=self.pipeline.timeout_ms,
            authenticated=False
        )

        try:
            response = await self.pipeline.request(attempt)
        except RequestError as e:
            self._audit_logger.log_authentication(
                username, action=action, success=False, failure_reason=e.error_code.name
            )
            raise

        try:
            bundle = CredentialBundle.from_dict(response.data)
            if bundle.user is None:
                raise ValueError("user is missing")
        except ValueError as e:
            self._audit_logger.log_authentication(
                username, action=action, success=False, failure_reason="invalid_response"
            )
            raise ResponseParseError(f"Invalid {action} response: {e}", cause=e)

        self.session_manager.establish_session(bundle)

        logger.info(f"{action.capitalize()} successful for user: {username}")
        self._audit_logger.log_authentication(username, action=action, success=True)
        return self.pipeline.token_store.session
