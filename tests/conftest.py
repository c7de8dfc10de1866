"""
Shared fixtures for the Challenger session client tests.
"""

import pytest
from typing import Any, Callable, List, Union

from challenger_client.auth.session_manager import SessionLifecycleManager
from challenger_client.auth.token_storage import SecureTokenStorage
from challenger_client.auth.token_store import TokenStore
from challenger_shared.interfaces import IRequestExecutor
from challenger_shared.models import ApiResponse, RequestAttempt, UserSummary


class ScriptedExecutor(IRequestExecutor):
    """
    Executor double that answers from a script.

    Each script entry is an ApiResponse, an exception instance to raise, or a
    callable taking the attempt and the bearer token that returns either.
    Every call is recorded with the token that would have been sent.
    """

    def __init__(self, token_store: TokenStore):
        self.token_store = token_store
        self.script: List[Union[ApiResponse, Exception, Callable]] = []
        self.calls: List[RequestAttempt] = []
        self.sent_tokens: List[Any] = []

    def queue(self, *outcomes) -> None:
        self.script.extend(outcomes)

    def calls_to(self, path: str) -> List[RequestAttempt]:
        return [call for call in self.calls if call.url == path]

    async def execute(self, attempt: RequestAttempt) -> ApiResponse:
        token = self.token_store.current_access_token() if attempt.authenticated else None
        self.calls.append(attempt)
        self.sent_tokens.append(token)

        outcome = self.script.pop(0)
        if callable(outcome):
            outcome = outcome(attempt, token)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def user():
    return UserSummary(id="42", username="bob", email="bob@example.com")


@pytest.fixture
def token_store():
    return TokenStore()


@pytest.fixture
def file_storage(tmp_path):
    """Encrypted-file storage in a temporary directory."""
    return SecureTokenStorage(storage_path=tmp_path / "auth_tokens.enc", use_keyring=False)


@pytest.fixture
def session_manager(token_store, file_storage):
    return SessionLifecycleManager(token_store, file_storage)


@pytest.fixture
def executor(token_store):
    return ScriptedExecutor(token_store)
