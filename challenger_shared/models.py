"""
Core data models for the Challenger session client.

This module defines the data structures shared by the request pipeline, the
token store and the secure token storage.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, FrozenSet

import aiohttp


DEFAULT_TIMEOUT_MS = 30000

MUTATING_METHODS = frozenset({'POST', 'PUT', 'PATCH', 'DELETE'})


@dataclass(frozen=True)
class UserSummary:
    """The signed-in user as returned by the auth endpoints."""
    id: str
    username: str
    email: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            raise ValueError("User ID cannot be empty")
        if not self.username:
            raise ValueError("Username cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserSummary':
        """
        Build a user from the server's ``user`` object.

        Unknown fields (avatar, bio, stats...) are kept in ``extra`` so they
        survive a round trip through storage.
        """
        if not isinstance(data, dict):
            raise ValueError("User data must be an object")

        known = {'id', 'username', 'email'}
        user_id = data.get('id')
        return cls(
            id=str(user_id) if user_id is not None else '',
            username=data.get('username') or '',
            email=data.get('email'),
            extra={k: v for k, v in data.items() if k not in known}
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data['id'] = self.id
        data['username'] = self.username
        if self.email is not None:
            data['email'] = self.email
        return data


@dataclass(frozen=True)
class Session:
    """
    Snapshot of the authenticated identity.

    Either all three fields are set or all three are None.
    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: Optional[UserSummary] = None

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None


EMPTY_SESSION = Session()


@dataclass(frozen=True)
class CredentialBundle:
    """The session as persisted in secure storage."""
    access_token: str
    refresh_token: str
    user: Optional[UserSummary] = None

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Access token cannot be empty")
        if not self.refresh_token:
            raise ValueError("Refresh token cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CredentialBundle':
        """
        Decode the ``{accessToken, refreshToken, user}`` wire shape.

        Raises:
            ValueError: If the data is not an object or a token is missing
        """
        if not isinstance(data, dict):
            raise ValueError("Credential data must be an object")

        user_data = data.get('user')
        return cls(
            access_token=data.get('accessToken') or '',
            refresh_token=data.get('refreshToken') or '',
            user=UserSummary.from_dict(user_data) if user_data else None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accessToken': self.access_token,
            'refreshToken': self.refresh_token,
            'user': self.user.to_dict() if self.user else None
        }

    @classmethod
    def from_session(cls, session: Session) -> 'CredentialBundle':
        return cls(
            access_token=session.access_token or '',
            refresh_token=session.refresh_token or '',
            user=session.user
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule for transient failures."""
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    retry_on_status: FrozenSet[int] = frozenset()

    def __post_init__(self):
        if self.retry_attempts < 0:
            raise ValueError("Retry attempts cannot be negative")
        if self.retry_delay_ms < 0:
            raise ValueError("Retry delay cannot be negative")

    def delay_for(self, attempt_number: int) -> float:
        """Seconds to wait before retry number ``attempt_number`` (1-based)."""
        return self.retry_delay_ms * attempt_number / 1000.0


@dataclass
class RequestAttempt:
    """Description of one outgoing call. Built per request, never shared."""
    url: str
    method: str = 'GET'
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    params: Optional[Dict[str, Any]] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    authenticated: bool = True

    def __post_init__(self):
        if not self.url:
            raise ValueError("Request URL cannot be empty")
        self.method = self.method.upper()

    @property
    def is_multipart(self) -> bool:
        return isinstance(self.body, aiohttp.FormData)

    @property
    def is_mutation(self) -> bool:
        return self.method in MUTATING_METHODS


@dataclass
class ApiResponse:
    """Successful outcome of a request."""
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    attempts: int = 1

