"""
Core interfaces for the Challenger session client.

This module defines the abstract interfaces that components must implement
so that the pipeline, storage and configuration can be swapped independently.
"""

from abc import ABC, abstractmethod
from typing import Optional, Any

from .models import ApiResponse, CredentialBundle, RequestAttempt, RetryPolicy


class ITokenPersistence(ABC):
    """Interface for secure storage of the credential bundle."""

    @abstractmethod
    def save(self, bundle: CredentialBundle) -> None:
        """Overwrite the stored bundle."""
        pass

    @abstractmethod
    def load(self) -> Optional[CredentialBundle]:
        """Read the stored bundle, None if missing or unreadable."""
        pass

    @abstractmethod
    def delete(self) -> None:
        """Remove the stored bundle."""
        pass


class IRequestExecutor(ABC):
    """Interface for single-attempt HTTP execution."""

    @abstractmethod
    async def execute(self, attempt: RequestAttempt) -> ApiResponse:
        """Perform exactly one HTTP call."""
        pass


class ISessionLifecycle(ABC):
    """Interface for session restore and teardown."""

    @abstractmethod
    async def restore_session(self) -> bool:
        """Restore the persisted session into memory."""
        pass

    @abstractmethod
    def establish_session(self, bundle: CredentialBundle) -> None:
        """Persist and activate a new session."""
        pass

    @abstractmethod
    def logout(self) -> None:
        """Forget the session everywhere."""
        pass


class IConfigurationManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get_server_url(self) -> str:
        """Get server URL."""
        pass

    @abstractmethod
    def get_retry_policy(self) -> RetryPolicy:
        """Get retry policy."""
        pass

    @abstractmethod
    def get_timeout_ms(self) -> int:
        """Get per-call timeout in milliseconds."""
        pass

    @abstractmethod
    def set_config(self, key: str, value: Any) -> None:
        """Set configuration value."""
        pass

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass
