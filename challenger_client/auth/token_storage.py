"""
Secure Token Storage for the Challenger session client.

This module persists the credential bundle using the system keyring, or an
encrypted file as fallback when no keyring backend is usable.
"""

import os
import json
import logging
from typing import Optional, Dict, Any
from pathlib import Path

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken

from challenger_shared.exceptions import StorageError
from challenger_shared.interfaces import ITokenPersistence
from challenger_shared.models import CredentialBundle

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "com.challenger.auth"
ENTRY_USERNAME = "authTokens"


class SecureTokenStorage(ITokenPersistence):
    """
    Secure storage for the credential bundle.

    One generic-password entry under a fixed service identifier holds the
    JSON serialized ``{accessToken, refreshToken, user}`` bundle. When the
    system keyring is not usable the same JSON is kept in a Fernet encrypted
    file readable only by the current user.
    """

    def __init__(
        self,
        service_name: str = DEFAULT_SERVICE_NAME,
        storage_path: Optional[Path] = None,
        use_keyring: Optional[bool] = None
    ):
        self.service_name = service_name
        self.storage_path = Path(storage_path) if storage_path else self._get_storage_path()
        self.keyring_available = (
            self._check_keyring_availability() if use_keyring is None else use_keyring
        )

        # Encryption key for file storage
        self._encryption_key: Optional[bytes] = None

        logger.info(f"Token storage initialized (keyring: {self.keyring_available})")

    def _check_keyring_availability(self) -> bool:
        """Check if system keyring is available."""
        try:
            test_key = f"{ENTRY_USERNAME}_test"
            keyring.set_password(self.service_name, test_key, "test")
            result = keyring.get_password(self.service_name, test_key)
            keyring.delete_password(self.service_name, test_key)
            return result == "test"
        except Exception as e:
            logger.debug(f"Keyring not available: {e}")
            return False

    def _get_storage_path(self) -> Path:
        """Get path for encrypted file storage."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'challenger'
        else:
            config_dir = Path.home() / '.config' / 'challenger'

        return config_dir / 'auth_tokens.enc'

    @property
    def key_path(self) -> Path:
        return self.storage_path.with_suffix('.key')

    def _get_encryption_key(self) -> bytes:
        """Get or create the Fernet key for file storage."""
        if self._encryption_key:
            return self._encryption_key

        if self.key_path.exists():
            self._encryption_key = self.key_path.read_bytes().strip()
            return self._encryption_key

        key = Fernet.generate_key()
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_path.write_bytes(key)
        os.chmod(self.key_path, 0o600)

        self._encryption_key = key
        return key

    def _encrypt_data(self, data: str) -> bytes:
        """Encrypt data for file storage."""
        fernet = Fernet(self._get_encryption_key())
        return fernet.encrypt(data.encode())

    def _decrypt_data(self, encrypted_data: bytes) -> str:
        """Decrypt data from file storage."""
        fernet = Fernet(self._get_encryption_key())
        return fernet.decrypt(encrypted_data).decode()

    def save(self, bundle: CredentialBundle) -> None:
        """
        Store the credential bundle, replacing any previous one.

        Args:
            bundle: Credentials to persist

        Raises:
            StorageError: If the underlying store rejects the write
        """
        value = json.dumps(bundle.to_dict())

        try:
            if self.keyring_available:
                keyring.set_password(self.service_name, ENTRY_USERNAME, value)
            else:
                self._write_file(value)

            logger.info("Credentials stored securely")

        except (KeyringError, OSError) as e:
            logger.error(f"Failed to store credentials: {e}")
            raise StorageError(f"Failed to store credentials: {e}", cause=e)

    def _write_file(self, value: str) -> None:
        """Store the bundle in the encrypted file."""
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_path.write_bytes(self._encrypt_data(value))

        # Set restrictive permissions
        os.chmod(self.storage_path, 0o600)

    def load(self) -> Optional[CredentialBundle]:
        """
        Retrieve the stored credential bundle.

        A missing, undecryptable or malformed entry yields None; reading
        credentials must never prevent the application from starting.

        Returns:
            The stored bundle or None
        """
        try:
            raw = self._read_raw()
        except (KeyringError, OSError, InvalidToken, ValueError) as e:
            logger.warning(f"Failed to read stored credentials: {e}")
            return None

        if not raw:
            logger.info("No stored credentials found")
            return None

        try:
            return CredentialBundle.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Ignoring unreadable stored credentials: {e}")
            return None

    def _read_raw(self) -> Optional[str]:
        if self.keyring_available:
            return keyring.get_password(self.service_name, ENTRY_USERNAME)

        if not self.storage_path.exists():
            return None

        return self._decrypt_data(self.storage_path.read_bytes())

    def delete(self) -> None:
        """
        Remove the stored credential bundle. Removing a missing entry is not an error.

        Raises:
            StorageError: If the underlying store fails to remove an existing entry
        """
        try:
            if self.keyring_available:
                self._delete_keyring_entry()
            elif self.storage_path.exists():
                self.storage_path.unlink()

            logger.info("Stored credentials removed")

        except (KeyringError, OSError) as e:
            logger.error(f"Failed to remove credentials: {e}")
            raise StorageError(f"Failed to remove credentials: {e}", cause=e)

    def _delete_keyring_entry(self) -> None:
        try:
            keyring.delete_password(self.service_name, ENTRY_USERNAME)
        except PasswordDeleteError:
            # Entry did not exist
            logger.debug("No keyring entry to remove")

    def exists(self) -> bool:
        """Check if a credential entry is currently stored."""
        try:
            if self.keyring_available:
                return keyring.get_password(self.service_name, ENTRY_USERNAME) is not None
            return self.storage_path.exists()
        except KeyringError as e:
            logger.warning(f"Failed to check stored credentials: {e}")
            return False

    def get_storage_info(self) -> Dict[str, Any]:
        """Describe where credentials are kept, for diagnostics."""
        return {
            'backend': 'keyring' if self.keyring_available else 'encrypted_file',
            'service_name': self.service_name,
            'storage_path': None if self.keyring_available else str(self.storage_path)
        }
