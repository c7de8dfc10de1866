"""
Unit tests for ClientConfiguration.

Tests defaults, file and environment layering, overrides and validation of the
retry policy.
"""

import pytest

from challenger_client.config import ClientConfiguration
from challenger_shared.exceptions import ConfigurationError, ErrorCode
from challenger_shared.models import RetryPolicy


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in (
        'CHALLENGER_SERVER_URL', 'CHALLENGER_RETRY_ATTEMPTS', 'CHALLENGER_RETRY_DELAY_MS',
        'CHALLENGER_TIMEOUT_MS', 'CHALLENGER_KEYRING_SERVICE', 'CHALLENGER_TOKEN_FILE',
        'CHALLENGER_LOG_LEVEL'
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "client.conf"
    path.write_text(
        "[server]\n"
        "url = https://api.challenger.test\n"
        "retry_attempts = 5\n"
        "retry_delay_ms = 200\n"
        "retry_on_status = [502, 503]\n"
        "\n"
        "[auth]\n"
        "keyring_service = com.challenger.staging\n"
        "\n"
        "[logging]\n"
        "level = DEBUG\n"
    )
    return str(path)


class TestDefaults:
    """Test values used without a configuration file."""

    def test_defaults(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "missing.conf"))

        assert config.get_server_url() == 'http://localhost:3000'
        assert config.get_timeout_ms() == 30000
        assert config.get_retry_policy() == RetryPolicy(retry_attempts=3, retry_delay_ms=1000)
        assert config.get_keyring_service() == 'com.challenger.auth'
        assert config.get_token_file() is None
        assert config.get_refresh_path() == '/auth/refresh-token'
        assert config.get_log_level() == 'INFO'

    def test_missing_file_is_not_created(self, tmp_path):
        path = tmp_path / "missing.conf"

        ClientConfiguration(str(path))

        assert not path.exists()


class TestLayering:
    """Test file, environment and override precedence."""

    def test_file_values(self, config_file):
        config = ClientConfiguration(config_file)

        assert config.get_server_url() == 'https://api.challenger.test'
        assert config.get_retry_policy() == RetryPolicy(
            retry_attempts=5, retry_delay_ms=200, retry_on_status=frozenset({502, 503})
        )
        assert config.get_keyring_service() == 'com.challenger.staging'
        assert config.get_log_level() == 'DEBUG'

    def test_environment_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv('CHALLENGER_SERVER_URL', 'https://env.challenger.test')
        monkeypatch.setenv('CHALLENGER_RETRY_ATTEMPTS', '1')
        monkeypatch.setenv('CHALLENGER_TOKEN_FILE', '/tmp/tokens.enc')

        config = ClientConfiguration(config_file)

        assert config.get_server_url() == 'https://env.challenger.test'
        assert config.get_retry_policy().retry_attempts == 1
        assert config.get_token_file() == '/tmp/tokens.enc'

    def test_override_beats_environment(self, config_file, monkeypatch):
        monkeypatch.setenv('CHALLENGER_SERVER_URL', 'https://env.challenger.test')
        config = ClientConfiguration(config_file)

        config.set_override('server_url', 'http://127.0.0.1:3000')

        assert config.get_server_url() == 'http://127.0.0.1:3000'

    def test_dot_notation(self, config_file):
        config = ClientConfiguration(config_file)

        config.set_config('server.timeout_ms', 5000)

        assert config.get_config('server.timeout_ms') == 5000
        assert config.get_timeout_ms() == 5000
        assert config.get_config('server.unknown', 'fallback') == 'fallback'


class TestValidation:
    """Test invalid configuration values."""

    @pytest.mark.parametrize("key,value", [
        ('server.retry_attempts', 'many'),
        ('server.retry_attempts', -1),
        ('server.retry_delay_ms', -5),
        ('server.retry_on_status', 'often'),
        ('server.retry_on_status', ['5xx']),
    ])
    def test_invalid_retry_settings(self, tmp_path, key, value):
        config = ClientConfiguration(str(tmp_path / "missing.conf"))
        config.set_config(key, value)

        with pytest.raises(ConfigurationError) as exc_info:
            config.get_retry_policy()

        assert exc_info.value.error_code == ErrorCode.CONFIG
        assert exc_info.value.context['config_key'] == key

    def test_invalid_timeout(self, tmp_path, monkeypatch):
        monkeypatch.setenv('CHALLENGER_TIMEOUT_MS', '0')
        config = ClientConfiguration(str(tmp_path / "missing.conf"))

        with pytest.raises(ConfigurationError):
            config.get_timeout_ms()
