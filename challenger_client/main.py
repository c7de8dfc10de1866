"""
Main entry point for the Challenger session client.

Command-line interface to sign in and out, inspect the stored session and send
authenticated requests through the resilient request pipeline.
"""

import sys
import json
import asyncio
import getpass
import argparse
import logging
from typing import Optional, Dict, Any

from challenger_client.api_client import RequestExecutor
from challenger_client.auth.session_manager import SessionLifecycleManager
from challenger_client.auth.token_storage import SecureTokenStorage
from challenger_client.auth.token_store import TokenStore
from challenger_client.auth_api import AuthAPIClient
from challenger_client.config import ClientConfiguration
from challenger_client.request_pipeline import ResilientRequestPipeline
from challenger_shared.exceptions import ChallengerError, HTTPStatusError
from challenger_shared.logging_config import LogFormat, LogLevel, setup_logging, log_structured_error
from challenger_shared.models import Session

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="challenger-session",
        description="Challenger session client",
        epilog="""
Examples:
  %(prog)s login bob               # Sign in (prompts for the password)
  %(prog)s status --json           # Show the stored session as JSON
  %(prog)s request GET /users/me   # Authenticated request with retry and refresh
  %(prog)s logout                  # Sign out and remove stored credentials
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Configuration options
    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="Override server URL")

    # Output format options
    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results in JSON format")

    # Debug options
    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also log to file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show the current session")

    login_parser = subparsers.add_parser("login", help="Sign in")
    login_parser.add_argument("username")
    login_parser.add_argument("--password", help="Password (prompted when omitted)")

    signup_parser = subparsers.add_parser("signup", help="Create an account and sign in")
    signup_parser.add_argument("username")
    signup_parser.add_argument("email")
    signup_parser.add_argument("--password", help="Password (prompted when omitted)")

    subparsers.add_parser("logout", help="Sign out and remove stored credentials")

    request_parser = subparsers.add_parser("request", help="Send an authenticated request")
    request_parser.add_argument("method", type=str.upper,
                                choices=["GET", "POST", "PUT", "PATCH", "DELETE"])
    request_parser.add_argument("path")
    request_parser.add_argument("--data", type=str, metavar="JSON",
                                help="JSON request body")

    return parser.parse_args(argv)


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging based on command line arguments and configuration."""
    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.json:  # Quiet logging for JSON output
        log_level = LogLevel.ERROR
    else:
        try:
            log_level = LogLevel(config.get_log_level())
        except ValueError:
            log_level = LogLevel.WARNING

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD

    setup_logging(
        log_level=log_level,
        log_format=LogFormat.DETAILED if args.debug else log_format,
        log_file=config.get_log_file()
    )


class SessionClient:
    """Wires the session components together for one CLI run."""

    def __init__(self, config: ClientConfiguration):
        self.config = config

        self.token_store = TokenStore()
        self.token_storage = SecureTokenStorage(
            service_name=config.get_keyring_service(),
            storage_path=config.get_token_file()
        )
        self.session_manager = SessionLifecycleManager(self.token_store, self.token_storage)
        self.executor = RequestExecutor(
            config.get_server_url(),
            self.token_store,
            timeout_ms=config.get_timeout_ms()
        )
        self.pipeline = ResilientRequestPipeline(
            self.executor,
            self.token_store,
            self.session_manager,
            retry_policy=config.get_retry_policy(),
            refresh_path=config.get_refresh_path(),
            timeout_ms=config.get_timeout_ms()
        )
        self.pipeline.add_post_commit_handler(self.session_manager.handle_profile_update)
        self.auth_api = AuthAPIClient(self.pipeline, self.session_manager)

    async def __aenter__(self):
        await self.session_manager.restore_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.executor.close()


def session_summary(session: Session) -> Dict[str, Any]:
    """Describe a session without exposing its tokens."""
    return {
        'authenticated': session.is_authenticated,
        'user': session.user.to_dict() if session.user else None
    }


def emit(args, payload: Dict[str, Any], text: str) -> None:
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        print(text)


def _password(args) -> str:
    return args.password or getpass.getpass("Password: ")


async def run_command(args, config: ClientConfiguration) -> int:
    """
    Run one CLI command.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    async with SessionClient(config) as client:
        if args.command == "status":
            summary = session_summary(client.token_store.session)
            expiry = client.token_store.access_token_expiry()
            summary['access_token_expires'] = expiry.isoformat() if expiry else None
            summary['storage'] = client.token_storage.get_storage_info()

            if summary['authenticated']:
                user = client.token_store.current_user()
                text = f"Signed in as {user.username if user else 'unknown user'}"
            else:
                text = "Not signed in"
            emit(args, summary, text)
            return 0

        if args.command == "login":
            session = await client.auth_api.login(args.username, _password(args))
            emit(args, session_summary(session), f"Signed in as {args.username}")
            return 0

        if args.command == "signup":
            session = await client.auth_api.signup(args.username, args.email, _password(args))
            emit(args, session_summary(session), f"Account created, signed in as {args.username}")
            return 0

        if args.command == "logout":
            await client.auth_api.logout_user()
            emit(args, {'authenticated': False}, "Signed out")
            return 0

        if args.command == "request":
            body: Optional[Any] = json.loads(args.data) if args.data else None
            response = await client.pipeline.request(
                client.pipeline.build_attempt(args.method, args.path, body=body)
            )
            print(json.dumps({
                'status': response.status,
                'attempts': response.attempts,
                'data': response.data
            }, indent=2))
            return 0

    return 1


def report_error(args, error: ChallengerError) -> None:
    """Print a surfaced error to stderr (or stdout as JSON)."""
    if args.json:
        print(json.dumps(error.to_dict(), indent=2, default=str))
        return

    if isinstance(error, HTTPStatusError):
        print(f"Error ({error.status}): {error.user_message}", file=sys.stderr)
    else:
        print(f"Error: {error.user_message}", file=sys.stderr)


def main(argv=None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)

    try:
        config = ClientConfiguration(args.config)

        # Override configuration with command line arguments
        if args.server_url:
            config.set_override('server_url', args.server_url)
        if args.log_file:
            config.set_override('log_file', args.log_file)

        configure_logging(args, config)
        return asyncio.run(run_command(args, config))

    except ChallengerError as e:
        log_structured_error(logger, e)
        report_error(args, e)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: --data is not valid JSON: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
