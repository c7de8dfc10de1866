"""
Unit tests for AuthAPIClient.

Tests sign in, sign up and sign out on top of the request pipeline and the
session lifecycle manager.
"""

import json

import pytest

from challenger_client.auth_api import AuthAPIClient, SIGNIN_PATH, SIGNUP_PATH, LOGOUT_PATH
from challenger_client.request_pipeline import ResilientRequestPipeline
from challenger_shared.exceptions import (
    AuthExpiredError, ClientHTTPError, NetworkError, ResponseParseError
)
from challenger_shared.models import ApiResponse, CredentialBundle, RetryPolicy, EMPTY_SESSION


def auth_response(access="A1", refresh="R1"):
    return ApiResponse(status=200, data={
        'accessToken': access,
        'refreshToken': refresh,
        'user': {'id': '42', 'username': 'bob', 'email': 'bob@example.com'}
    })


async def no_sleep(delay):
    pass


@pytest.fixture
def pipeline(executor, token_store, session_manager):
    return ResilientRequestPipeline(
        executor, token_store, session_manager,
        retry_policy=RetryPolicy(retry_attempts=1, retry_delay_ms=10),
        sleep=no_sleep
    )


@pytest.fixture
def auth_api(pipeline, session_manager):
    return AuthAPIClient(pipeline, session_manager)


class TestLogin:
    """Test sign in."""

    @pytest.mark.asyncio
    async def test_login_establishes_and_persists_session(self, auth_api, executor, token_store, file_storage):
        executor.queue(auth_response())

        session = await auth_api.login("bob", "pw")

        assert session.access_token == "A1"
        assert session.refresh_token == "R1"
        assert session.user.username == "bob"
        assert token_store.session == session

        stored = file_storage.load()
        assert stored == CredentialBundle.from_session(session)
        assert json.loads(file_storage._decrypt_data(file_storage.storage_path.read_bytes())) == {
            'accessToken': 'A1',
            'refreshToken': 'R1',
            'user': {'id': '42', 'username': 'bob', 'email': 'bob@example.com'}
        }

    @pytest.mark.asyncio
    async def test_login_request_shape(self, auth_api, executor):
        executor.queue(auth_response())

        await auth_api.login("bob", "pw")

        call = executor.calls[0]
        assert call.url == SIGNIN_PATH
        assert call.method == 'POST'
        assert call.body == {'username': 'bob', 'password': 'pw'}
        assert call.authenticated is False

    @pytest.mark.asyncio
    async def test_wrong_password_is_surfaced(self, auth_api, executor, token_store):
        executor.queue(AuthExpiredError({'message': 'Invalid credentials'}))

        with pytest.raises(AuthExpiredError) as exc_info:
            await auth_api.login("bob", "wrong")

        assert exc_info.value.server_message == 'Invalid credentials'
        assert len(executor.calls) == 1
        assert token_store.session == EMPTY_SESSION

    @pytest.mark.asyncio
    async def test_response_without_tokens(self, auth_api, executor, token_store):
        executor.queue(ApiResponse(status=200, data={'user': {'id': '42', 'username': 'bob'}}))

        with pytest.raises(ResponseParseError):
            await auth_api.login("bob", "pw")

        assert not token_store.is_authenticated()

    @pytest.mark.asyncio
    async def test_response_without_user(self, auth_api, executor, token_store, file_storage):
        executor.queue(ApiResponse(status=200, data={'accessToken': 'A1', 'refreshToken': 'R1'}))

        with pytest.raises(ResponseParseError):
            await auth_api.login("bob", "pw")

        assert token_store.session == EMPTY_SESSION
        assert not file_storage.exists()

    @pytest.mark.asyncio
    async def test_login_retries_network_errors(self, auth_api, executor, token_store):
        executor.queue(NetworkError("reset"), auth_response())

        await auth_api.login("bob", "pw")

        assert token_store.current_access_token() == "A1"


class TestSignup:
    """Test account creation."""

    @pytest.mark.asyncio
    async def test_signup(self, auth_api, executor, token_store):
        executor.queue(auth_response())

        session = await auth_api.signup("bob", "bob@example.com", "pw")

        call = executor.calls[0]
        assert call.url == SIGNUP_PATH
        assert call.body == {'username': 'bob', 'email': 'bob@example.com', 'password': 'pw'}
        assert session.user.email == "bob@example.com"
        assert token_store.is_authenticated()

    @pytest.mark.asyncio
    async def test_signup_conflict(self, auth_api, executor, token_store):
        executor.queue(ClientHTTPError(409, {'message': 'Username already taken'}))

        with pytest.raises(ClientHTTPError):
            await auth_api.signup("bob", "bob@example.com", "pw")

        assert not token_store.is_authenticated()


class TestLogoutUser:
    """Test sign out."""

    @pytest.mark.asyncio
    async def test_logout_calls_server_and_clears_session(self, auth_api, executor, token_store, file_storage):
        executor.queue(auth_response(), ApiResponse(status=204))
        await auth_api.login("bob", "pw")

        await auth_api.logout_user()

        assert executor.calls[-1].url == LOGOUT_PATH
        assert executor.sent_tokens[-1] == "A1"
        assert token_store.session == EMPTY_SESSION
        assert not file_storage.exists()

    @pytest.mark.asyncio
    async def test_logout_clears_session_when_server_fails(self, auth_api, executor, token_store, file_storage):
        executor.queue(auth_response(), NetworkError("down"), NetworkError("down"))
        await auth_api.login("bob", "pw")

        await auth_api.logout_user()

        assert token_store.session == EMPTY_SESSION
        assert not file_storage.exists()

    @pytest.mark.asyncio
    async def test_logout_when_signed_out_skips_server(self, auth_api, executor, token_store):
        await auth_api.logout_user()

        assert executor.calls == []
        assert token_store.session == EMPTY_SESSION
