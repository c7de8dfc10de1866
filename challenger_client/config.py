"""
Configuration Management for the Challenger session client.

This module handles client configuration including the server URL, retry
policy, per-call timeout and token storage settings, with support for an INI
configuration file and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from challenger_shared.exceptions import ConfigurationError
from challenger_shared.interfaces import IConfigurationManager
from challenger_shared.models import RetryPolicy, DEFAULT_TIMEOUT_MS

logger = logging.getLogger(__name__)


class ClientConfiguration(IConfigurationManager):
    """
    Configuration manager for the Challenger session client.

    Supports configuration from:
    1. Explicit overrides, e.g. command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        # Load configuration
        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path: ~/.challenger/client.conf"""
        return str(Path.home() / '.challenger' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        # Load from configuration file
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except ConfigParserError as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        # Load from environment variables
        self._load_from_environment()

        # Set defaults for missing values
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        # Convert ConfigParser to dictionary
        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for lists and numbers
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    # Keep as string if not valid JSON
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'CHALLENGER_SERVER_URL': ('server', 'url'),
            'CHALLENGER_RETRY_ATTEMPTS': ('server', 'retry_attempts'),
            'CHALLENGER_RETRY_DELAY_MS': ('server', 'retry_delay_ms'),
            'CHALLENGER_TIMEOUT_MS': ('server', 'timeout_ms'),
            'CHALLENGER_KEYRING_SERVICE': ('auth', 'keyring_service'),
            'CHALLENGER_TOKEN_FILE': ('auth', 'token_file'),
            'CHALLENGER_LOG_LEVEL': ('logging', 'level'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                # Convert numeric strings
                if value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'url': 'http://localhost:3000',
                'timeout_ms': DEFAULT_TIMEOUT_MS,
                'retry_attempts': 3,
                'retry_delay_ms': 1000,
                'retry_on_status': []
            },
            'auth': {
                'keyring_service': 'com.challenger.auth',
                'token_file': None,
                'refresh_path': '/auth/refresh-token'
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None
            }
        }

        # Merge defaults with existing configuration
        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            self._config_data[key] = value
            return

        section, config_key = key.split('.', 1)
        if section not in self._config_data:
            self._config_data[section] = {}
        self._config_data[section][config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key, e.g. 'server_url' or 'log_file'
            value: Override value
        """
        self._overrides[key] = value

    def get_server_url(self) -> str:
        """Get server URL."""
        return self._overrides.get('server_url') or self._config_data['server']['url']

    def get_timeout_ms(self) -> int:
        """Get per-call timeout in milliseconds."""
        value = self._overrides.get('timeout_ms') or self.get_config('server.timeout_ms', DEFAULT_TIMEOUT_MS)
        return self._as_int(value, 'server.timeout_ms', minimum=1)

    def get_retry_policy(self) -> RetryPolicy:
        """
        Build the retry policy from configuration.

        Raises:
            ConfigurationError: If a retry setting is not a valid number
        """
        attempts = self._as_int(self.get_config('server.retry_attempts', 3), 'server.retry_attempts')
        delay_ms = self._as_int(self.get_config('server.retry_delay_ms', 1000), 'server.retry_delay_ms')

        statuses = self.get_config('server.retry_on_status', [])
        if isinstance(statuses, int):
            statuses = [statuses]
        if not isinstance(statuses, list):
            raise ConfigurationError(
                f"Invalid retry_on_status value: {statuses!r}",
                config_key='server.retry_on_status'
            )

        return RetryPolicy(
            retry_attempts=attempts,
            retry_delay_ms=delay_ms,
            retry_on_status=frozenset(
                self._as_int(status, 'server.retry_on_status') for status in statuses
            )
        )

    def get_keyring_service(self) -> str:
        """Get the service identifier of the keyring entry."""
        return self.get_config('auth.keyring_service', 'com.challenger.auth')

    def get_token_file(self) -> Optional[str]:
        """Get the encrypted token file path (None for the default location)."""
        return self.get_config('auth.token_file')

    def get_refresh_path(self) -> str:
        """Get the refresh-token endpoint path."""
        return self.get_config('auth.refresh_path', '/auth/refresh-token')

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self._overrides.get('log_level') or self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        """Get logging format."""
        return self.get_config('logging.format', 'standard')

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self._overrides.get('log_file') or self.get_config('logging.file')

    @staticmethod
    def _as_int(value: Any, key: str, minimum: int = 0) -> int:
        if isinstance(value, bool):
            raise ConfigurationError(f"Invalid value for {key}: {value!r}", config_key=key)
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid value for {key}: {value!r}", config_key=key)

        if number < minimum:
            raise ConfigurationError(f"{key} must be at least {minimum}, got {number}", config_key=key)
        return number
