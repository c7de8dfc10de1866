"""
Resilient request pipeline for the Challenger session client.

Every domain API call goes through ResilientRequestPipeline.request, which:

1. issues the request through the RequestExecutor,
2. retries transient failures (network errors, timeouts, configured
   connectivity statuses) with linear backoff,
3. answers a 401 with a single refresh-token exchange followed by exactly one
   reissue of the original request,
4. logs the user out when the session cannot be recovered.

Concurrent 401s share one refresh call.
"""

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, List, Awaitable, Union

from challenger_client.auth.session_manager import SessionLifecycleManager
from challenger_client.auth.token_store import TokenStore
from challenger_shared.exceptions import AuthExpiredError, HTTPStatusError, RequestError
from challenger_shared.interfaces import IRequestExecutor
from challenger_shared.logging_config import AuditLogger, OperationLogger
from challenger_shared.models import (
    ApiResponse, CredentialBundle, RequestAttempt, RetryPolicy, DEFAULT_TIMEOUT_MS
)

logger = logging.getLogger(__name__)

REFRESH_PATH = '/auth/refresh-token'

PostCommitHandler = Callable[[ApiResponse], Union[None, Awaitable[None]]]


@dataclass
class _AttemptTrace:
    """What was sent for one pipeline run."""
    attempts: int = 0
    sent_token: Optional[str] = None


class ResilientRequestPipeline:
    """
    Retry and refresh state machine wrapped around a RequestExecutor.

    One instance is shared by all API clients of a session so that the
    refresh-in-flight task is shared too.
    """

    def __init__(
        self,
        executor: IRequestExecutor,
        token_store: TokenStore,
        session_manager: SessionLifecycleManager,
        retry_policy: Optional[RetryPolicy] = None,
        refresh_path: str = REFRESH_PATH,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.executor = executor
        self.token_store = token_store
        self.session_manager = session_manager
        self.retry_policy = retry_policy or RetryPolicy()
        self.refresh_path = refresh_path
        self.timeout_ms = timeout_ms
        self._sleep = sleep

        self._refresh_task: Optional[asyncio.Task] = None
        self._post_commit_handlers: List[PostCommitHandler] = []

        self._audit_logger = AuditLogger()
        self._operation_logger = OperationLogger()

    def add_post_commit_handler(self, handler: PostCommitHandler) -> None:
        """
        Register a handler run after every successful mutating request.

        Handlers run in registration order and receive the ApiResponse. They
        may be plain functions or coroutines.
        """
        self._post_commit_handlers.append(handler)

    def remove_post_commit_handler(self, handler: PostCommitHandler) -> None:
        if handler in self._post_commit_handlers:
            self._post_commit_handlers.remove(handler)

    async def request(self, attempt: RequestAttempt) -> ApiResponse:
        """
        Run a request through retry and refresh handling.

        Args:
            attempt: Description of the request

        Returns:
            The successful response

        Raises:
            RequestError: The classified failure when the request could not be
                completed (after retries, or after a failed session recovery)
        """
        operation_id = uuid.uuid4().hex[:12]
        self._operation_logger.log_operation_start(
            operation_type="http_request",
            operation_id=operation_id,
            context={'method': attempt.method, 'url': attempt.url}
        )
        start_time = time.monotonic()

        try:
            response = await self._run(attempt)
        except RequestError as e:
            self._operation_logger.log_operation_complete(
                operation_id=operation_id,
                success=False,
                duration_seconds=time.monotonic() - start_time,
                result_summary=e.error_code.name
            )
            raise

        self._operation_logger.log_operation_complete(
            operation_id=operation_id,
            success=True,
            duration_seconds=time.monotonic() - start_time,
            result_summary=str(response.status)
        )

        if attempt.is_mutation:
            await self._run_post_commit_handlers(response)

        return response

    async def _run(self, attempt: RequestAttempt) -> ApiResponse:
        trace = _AttemptTrace()
        try:
            return await self._issue_with_retry(attempt, trace)
        except AuthExpiredError as e:
            if not attempt.authenticated:
                # Credentials rejected on an unauthenticated call (e.g. sign in)
                raise
            return await self._recover_session(attempt, e, trace)

    async def _issue_with_retry(self, attempt: RequestAttempt, trace: _AttemptTrace) -> ApiResponse:
        """
        Issue a request, retrying while the outcome is transient.

        With ``retry_attempts = k`` the request is sent at most ``k + 1``
        times; retry ``n`` waits ``retry_delay_ms * n`` first.
        """
        while True:
            trace.attempts += 1
            trace.sent_token = self.token_store.current_access_token()
            try:
                response = await self.executor.execute(attempt)
                response.attempts = trace.attempts
                return response
            except RequestError as e:
                retries_done = trace.attempts - 1
                if not self._is_transient(e):
                    raise
                if retries_done >= self.retry_policy.retry_attempts:
                    logger.warning(
                        f"{attempt.method} {attempt.url} failed after "
                        f"{trace.attempts} attempts: {e.message}"
                    )
                    raise

                delay = self.retry_policy.delay_for(retries_done + 1)
                logger.info(
                    f"Transient failure ({e.error_code.name}) for {attempt.method} {attempt.url}, "
                    f"retry {retries_done + 1}/{self.retry_policy.retry_attempts} in {delay:.1f}s"
                )
                await self._sleep(delay)

    def _is_transient(self, error: RequestError) -> bool:
        if isinstance(error, HTTPStatusError):
            return error.status in self.retry_policy.retry_on_status
        return error.is_transient

    async def _recover_session(
        self,
        attempt: RequestAttempt,
        auth_error: AuthExpiredError,
        trace: _AttemptTrace
    ) -> ApiResponse:
        """
        Handle a 401: refresh once, then reissue the original request once.

        A request that was sent with a token that has since been replaced by
        another request's refresh is reissued without refreshing again.
        """
        current_token = self.token_store.current_access_token()
        if current_token and current_token != trace.sent_token:
            logger.info("Access token was rotated while the request was in flight, reissuing")
            return await self._reissue(attempt, trace)

        refresh_token = self.token_store.current_refresh_token()
        if not refresh_token:
            logger.warning("Access token expired and no refresh token is available, logging out")
            self.session_manager.logout(reason="no_refresh_token")
            raise auth_error

        if not await self._shared_refresh(refresh_token):
            logger.warning("Token refresh failed, logging out")
            self.session_manager.logout(reason="refresh_failed")
            raise auth_error

        return await self._reissue(attempt, trace)

    async def _reissue(self, attempt: RequestAttempt, trace: _AttemptTrace) -> ApiResponse:
        # Exactly one more attempt, no retry loop
        trace.attempts += 1
        response = await self.executor.execute(attempt)
        response.attempts = trace.attempts
        return response

    async def _shared_refresh(self, refresh_token: str) -> bool:
        """
        Join the refresh in flight or start one.

        Returns:
            True if the session was refreshed
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh_session(refresh_token))
            self._refresh_task.add_done_callback(self._log_refresh_outcome)
        else:
            logger.debug("Joining token refresh already in flight")

        return await asyncio.shield(self._refresh_task)

    async def _refresh_session(self, refresh_token: str) -> bool:
        """
        Exchange the refresh token for a new session.

        The call goes straight to the executor so it is neither retried nor
        able to trigger another refresh.
        """
        user = self.token_store.current_user()
        username = user.username if user else None

        refresh_attempt = RequestAttempt(
            url=self.refresh_path,
            method='POST',
            body={'refreshToken': refresh_token},
            timeout_ms=self.timeout_ms,
            authenticated=False
        )

        try:
            response = await self.executor.execute(refresh_attempt)
            bundle = CredentialBundle.from_dict(response.data)
        except RequestError as e:
            logger.error(f"Token refresh request failed: {e.message}")
            self._audit_logger.log_token_refresh(False, username=username, failure_reason=e.error_code.name)
            return False
        except ValueError as e:
            logger.error(f"Token refresh returned unusable credentials: {e}")
            self._audit_logger.log_token_refresh(False, username=username, failure_reason="invalid_response")
            return False

        if bundle.user is None:
            if user is None:
                logger.error("Token refresh returned no user and no user is signed in")
                self._audit_logger.log_token_refresh(False, username=username, failure_reason="invalid_response")
                return False
            # Refresh responses may omit the user; it has not changed
            bundle = CredentialBundle(bundle.access_token, bundle.refresh_token, user)

        self.session_manager.establish_session(bundle)

        logger.info("Token refresh successful")
        self._audit_logger.log_token_refresh(True, username=bundle.user.username)
        return True

    @staticmethod
    def _log_refresh_outcome(task: 'asyncio.Future[bool]') -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Token refresh crashed: {error!r}")

    async def _run_post_commit_handlers(self, response: ApiResponse) -> None:
        for handler in list(self._post_commit_handlers):
            try:
                result = handler(response)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in post-commit handler: {e}")

    # Convenience methods for domain API clients

    def build_attempt(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> RequestAttempt:
        return RequestAttempt(
            url=path,
            method=method,
            headers=headers or {},
            body=body,
            params=params,
            timeout_ms=self.timeout_ms
        )

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> ApiResponse:
        return await self.request(self.build_attempt('GET', path, params=params, **kwargs))

    async def post(self, path: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(self.build_attempt('POST', path, body=body, **kwargs))

    async def put(self, path: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(self.build_attempt('PUT', path, body=body, **kwargs))

    async def patch(self, path: str, body: Any = None, **kwargs) -> ApiResponse:
        return await self.request(self.build_attempt('PATCH', path, body=body, **kwargs))

    async def delete(self, path: str, **kwargs) -> ApiResponse:
        return await self.request(self.build_attempt('DELETE', path, **kwargs))
