"""
Tests for the challenger-session command line interface.

Runs commands against a local aiohttp server with credentials kept in an
encrypted file in a temporary directory.
"""

import json
import logging

import pytest
from unittest.mock import patch
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from challenger_client.auth.token_storage import SecureTokenStorage
from challenger_client.config import ClientConfiguration
from challenger_client.main import main, parse_arguments, run_command


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    monkeypatch.setenv('CHALLENGER_TOKEN_FILE', str(tmp_path / "auth_tokens.enc"))
    monkeypatch.setenv('CHALLENGER_RETRY_ATTEMPTS', '0')
    monkeypatch.delenv('CHALLENGER_SERVER_URL', raising=False)

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    with patch.object(SecureTokenStorage, '_check_keyring_availability', return_value=False):
        yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def config(tmp_path):
    return ClientConfiguration(str(tmp_path / "client.conf"))


@pytest.fixture
async def server():
    async def signin(request):
        body = await request.json()
        if body.get('password') != 'pw':
            return web.json_response({'message': 'Invalid credentials'}, status=401)
        return web.json_response({
            'accessToken': 'A1',
            'refreshToken': 'R1',
            'user': {'id': '42', 'username': body['username']}
        })

    async def me(request):
        if request.headers.get('Authorization') != 'Bearer A1':
            return web.json_response({'message': 'Unauthorized'}, status=401)
        return web.json_response({'id': '42', 'username': 'bob'})

    app = web.Application()
    app.router.add_post('/auth/signin', signin)
    app.router.add_get('/users/me', me)

    test_server = TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


class TestArguments:
    """Test argument parsing."""

    def test_request_method_is_uppercased(self):
        args = parse_arguments(['request', 'get', '/users/me'])

        assert args.method == 'GET'
        assert args.path == '/users/me'

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])


class TestCommands:
    """Test commands end to end."""

    @pytest.mark.asyncio
    async def test_login_then_request_uses_stored_session(self, server, config, capsys):
        config.set_override('server_url', str(server.make_url('/')))

        assert await run_command(parse_arguments(['--json', 'login', 'bob', '--password', 'pw']), config) == 0
        login_output = json.loads(capsys.readouterr().out)
        assert login_output == {'authenticated': True, 'user': {'id': '42', 'username': 'bob'}}

        # A new run restores the session from storage
        assert await run_command(parse_arguments(['request', 'GET', '/users/me']), config) == 0
        request_output = json.loads(capsys.readouterr().out)
        assert request_output['status'] == 200
        assert request_output['data'] == {'id': '42', 'username': 'bob'}

    @pytest.mark.asyncio
    async def test_status_never_prints_tokens(self, server, config, capsys):
        config.set_override('server_url', str(server.make_url('/')))
        await run_command(parse_arguments(['login', 'bob', '--password', 'pw']), config)
        capsys.readouterr()

        await run_command(parse_arguments(['--json', 'status']), config)

        output = capsys.readouterr().out
        assert json.loads(output)['authenticated'] is True
        assert 'A1' not in output
        assert 'R1' not in output

    def test_status_when_signed_out(self, capsys):
        assert main(['status']) == 0

        assert "Not signed in" in capsys.readouterr().out

    def test_surfaced_error_exits_with_one(self, capsys):
        exit_code = main([
            '--server-url', f'http://127.0.0.1:{unused_port()}',
            '--json', 'request', 'GET', '/users/me'
        ])

        assert exit_code == 1
        assert json.loads(capsys.readouterr().out)['error']['code'] == 'NETWORK_2001'

    def test_invalid_data_exits_with_one(self, capsys):
        assert main(['request', 'POST', '/challenges', '--data', '{oops']) == 1
