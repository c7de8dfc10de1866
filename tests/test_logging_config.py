"""
Unit tests for logging configuration.

Tests formatter output, audit records and handler setup.
"""

import json
import logging

import pytest

from challenger_shared.exceptions import AuthExpiredError
from challenger_shared.logging_config import (
    AuditLogger, OperationLogger, StructuredFormatter, DetailedFormatter,
    LogFormat, LogLevel, setup_logging, log_structured_error
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def make_record(**extra):
    record = logging.LogRecord("audit", logging.INFO, __file__, 10, "Signin successful", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    """Test structured and detailed formatters."""

    def test_structured_formatter_outputs_json(self):
        record = make_record(audit_info={'event_type': 'authentication', 'result': 'success'})

        entry = json.loads(StructuredFormatter().format(record))

        assert entry['message'] == "Signin successful"
        assert entry['level'] == 'INFO'
        assert entry['audit'] == {'event_type': 'authentication', 'result': 'success'}

    def test_structured_formatter_includes_error(self):
        record = make_record(error_info=AuthExpiredError({'message': 'jwt expired'}))

        entry = json.loads(StructuredFormatter().format(record))

        assert entry['error']['code'] == 'HTTP_4001'
        assert entry['error']['user_message'] == 'jwt expired'

    def test_detailed_formatter_appends_context(self):
        record = make_record(operation_context={'operation_id': 'abc', 'stage': 'started'})

        formatted = DetailedFormatter().format(record)

        assert "Signin successful" in formatted
        assert "Operation:" in formatted
        assert '"operation_id": "abc"' in formatted


class TestAuditLogger:
    """Test audit records for session events."""

    def test_authentication_record(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            AuditLogger().log_authentication("bob", action="signup", success=False, failure_reason="HTTP_CLIENT")

        record = caplog.records[-1]
        assert record.audit_info['event_type'] == 'authentication'
        assert record.audit_info['username'] == 'bob'
        assert record.audit_info['result'] == 'failure'
        assert record.audit_info['context'] == {'action': 'signup', 'failure_reason': 'HTTP_CLIENT'}

    def test_logout_record_without_user(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            AuditLogger().log_logout(reason="refresh_failed")

        record = caplog.records[-1]
        assert 'username' not in record.audit_info
        assert record.audit_info['context'] == {'reason': 'refresh_failed'}

    def test_failed_operation_is_a_warning(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="operations"):
            OperationLogger().log_operation_complete("abc", success=False, result_summary="NETWORK")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.operation_context['success'] is False


class TestSetupLogging:
    """Test handler configuration."""

    def test_file_logging(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "client.log"

        loggers = setup_logging(
            log_level=LogLevel.INFO,
            log_format=LogFormat.JSON,
            log_file=str(log_file),
            enable_console=False
        )
        log_structured_error(logging.getLogger("challenger_client.test"), AuthExpiredError())
        for handler in loggers['root'].handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry['level'] == 'ERROR'
        assert entry['error']['code'] == 'HTTP_4001'
        assert loggers['root'].level == logging.INFO
