"""
HTTP request executor for the Challenger session client.

This module performs single HTTP attempts against the backend, attaching the
bearer token from the TokenStore and classifying every failure into the
client's error taxonomy. Retrying and token refresh live one layer up, in
the request pipeline.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from challenger_client.auth.token_store import TokenStore
from challenger_shared.exceptions import (
    HTTPStatusError, NetworkError, RequestTimeoutError, ResponseParseError
)
from challenger_shared.interfaces import IRequestExecutor
from challenger_shared.models import ApiResponse, RequestAttempt, DEFAULT_TIMEOUT_MS

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = 'application/json'


class RequestExecutor(IRequestExecutor):
    """
    Performs exactly one HTTP call per ``execute``.

    Owns a lazily created aiohttp session unless one is injected, and can be
    used as an async context manager to close it.
    """

    def __init__(
        self,
        base_url: str,
        token_store: TokenStore,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        session: Optional[ClientSession] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.token_store = token_store
        self.timeout_ms = timeout_ms

        self._owns_session = session is None
        self._session: Optional[ClientSession] = session

        logger.info(f"Request executor initialized for server: {self.base_url}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                headers={'User-Agent': 'ChallengerClient/1.0'}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this executor created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_url(self, url: str) -> str:
        """Resolve a path against the base URL; absolute URLs pass through."""
        if url.startswith(('http://', 'https://')):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    def build_headers(self, attempt: RequestAttempt) -> Dict[str, str]:
        """
        Headers for one attempt.

        The bearer token is read from the TokenStore at call time so a token
        rotated by a concurrent refresh is picked up by the next attempt.
        Multipart bodies keep the content type aiohttp generates for them.
        """
        headers = dict(attempt.headers)

        if attempt.authenticated:
            token = self.token_store.current_access_token()
            if token:
                headers['Authorization'] = f'Bearer {token}'

        if not attempt.is_multipart:
            headers.setdefault('Content-Type', JSON_CONTENT_TYPE)
            headers.setdefault('Accept', JSON_CONTENT_TYPE)

        return headers

    async def execute(self, attempt: RequestAttempt) -> ApiResponse:
        """
        Perform a single HTTP request.

        Args:
            attempt: Description of the request

        Returns:
            ApiResponse with the decoded JSON payload (None for empty bodies)

        Raises:
            NetworkError: The request did not produce a response
            RequestTimeoutError: The request exceeded its timeout
            HTTPStatusError: The server answered with status >= 400
            ResponseParseError: A successful response body was not valid JSON
        """
        session = await self._ensure_session()

        url = self.build_url(attempt.url)
        headers = self.build_headers(attempt)
        timeout_ms = attempt.timeout_ms or self.timeout_ms

        request_kwargs: Dict[str, Any] = {
            'headers': headers,
            'params': attempt.params,
            'timeout': ClientTimeout(total=timeout_ms / 1000.0)
        }
        if attempt.is_multipart:
            request_kwargs['data'] = attempt.body
        elif attempt.body is not None:
            request_kwargs['data'] = json.dumps(attempt.body)

        logger.debug(f"Making {attempt.method} request to {url}")

        try:
            async with session.request(attempt.method, url, **request_kwargs) as response:
                status = response.status
                response_headers = dict(response.headers)
                charset = response.charset or 'utf-8'
                body = await response.read()

        except asyncio.TimeoutError as e:
            logger.warning(f"Request to {url} timed out after {timeout_ms}ms")
            raise RequestTimeoutError(
                f"Request timed out after {timeout_ms}ms", timeout_ms=timeout_ms, cause=e
            )
        except (ClientError, OSError) as e:
            logger.warning(f"Network error for {attempt.method} {url}: {e}")
            raise NetworkError(f"Network request failed: {e}", cause=e)

        if status >= 400:
            error_body = self._decode_error_body(body, charset)
            logger.debug(f"{attempt.method} {url} failed with status {status}")
            raise HTTPStatusError.for_status(status, error_body)

        return ApiResponse(
            status=status,
            data=self._decode_payload(body, charset, url),
            headers=response_headers
        )

    def _decode_payload(self, body: bytes, charset: str, url: str) -> Any:
        try:
            text = body.decode(charset)
        except (UnicodeDecodeError, LookupError) as e:
            raise ResponseParseError(
                f"Undecodable response body from {url}: {e}",
                context={'url': url, 'charset': charset},
                cause=e
            )

        if not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ResponseParseError(
                f"Invalid JSON in response from {url}: {e}",
                context={'url': url},
                cause=e
            )

    def _decode_error_body(self, body: bytes, charset: str) -> Any:
        """Extract error information from a failed response."""
        try:
            text = body.decode(charset, errors='replace')
        except LookupError:
            text = body.decode('utf-8', errors='replace')

        if not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
