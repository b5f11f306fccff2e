"""Tests for SSH connections and auto-reconnecting remote sessions."""

from unittest.mock import Mock

import paramiko
import pytest

from sitedeploy.exceptions import (
    DeployAuthenticationError,
    DeployConnectionError,
    DeployTransferError,
    RemoteCommandError,
)
from sitedeploy.profile import ConnectionSettings
from sitedeploy.retry import InteractiveFailurePolicy, RetryPolicy
from sitedeploy.session import (
    CommandResult,
    RemoteSession,
    SessionFactory,
    SessionState,
    SSHConnection,
)
from sitedeploy.utils import KEEPALIVE_INTERVAL, READY_TIMEOUT


@pytest.fixture
def settings():
    """Provide connection settings."""
    return ConnectionSettings(
        host="example.com", port=2222, username="deploy", key_path="/keys/id"
    )


def make_connection(exec_results=None):
    """Create a mocked SSHConnection."""
    connection = Mock(spec=SSHConnection)
    connection.sftp = Mock()
    if exec_results is not None:
        connection.exec.side_effect = exec_results
    return connection


class ConnectionPool:
    """Connection factory handing out prepared mock connections in order."""

    def __init__(self, *connections):
        self.connections = list(connections)
        self.created = []

    def __call__(self, settings):
        connection = self.connections.pop(0)
        self.created.append(connection)
        return connection


def make_session(settings, *connections, policy=None):
    pool = ConnectionPool(*connections)
    session = RemoteSession(
        settings,
        policy=policy or RetryPolicy(sleep=Mock()),
        connection_factory=pool,
    )
    return session, pool


class TestSSHConnection:
    """Tests for the paramiko wrapper."""

    def test_open_connects_with_keepalive_and_timeouts(self, settings):
        client = Mock()
        transport = client.get_transport.return_value
        connection = SSHConnection(settings, client_factory=lambda: client)

        connection.open()

        client.set_missing_host_key_policy.assert_called_once()
        kwargs = client.connect.call_args.kwargs
        assert kwargs["hostname"] == "example.com"
        assert kwargs["port"] == 2222
        assert kwargs["username"] == "deploy"
        assert kwargs["key_filename"] == "/keys/id"
        assert kwargs["timeout"] == READY_TIMEOUT
        assert kwargs["banner_timeout"] == READY_TIMEOUT
        assert "password" not in kwargs
        transport.set_keepalive.assert_called_once_with(KEEPALIVE_INTERVAL)
        assert connection.sftp is client.open_sftp.return_value

    def test_open_with_password(self):
        client = Mock()
        connection = SSHConnection(
            ConnectionSettings(host="h", password="secret"),
            client_factory=lambda: client,
        )

        connection.open()

        kwargs = client.connect.call_args.kwargs
        assert kwargs["password"] == "secret"
        assert "key_filename" not in kwargs

    def test_exec_returns_output_and_status(self, settings):
        client = Mock()
        stdout = Mock()
        stdout.read.return_value = b"hello\n"
        stdout.channel.recv_exit_status.return_value = 3
        stderr = Mock()
        stderr.read.return_value = b"oops"
        client.exec_command.return_value = (Mock(), stdout, stderr)
        connection = SSHConnection(settings, client_factory=lambda: client)
        connection.open()

        result = connection.exec("ls")

        assert result == CommandResult(
            command="ls", stdout="hello\n", stderr="oops", exit_status=3
        )
        assert not result.ok

    def test_sftp_before_open_raises(self, settings):
        with pytest.raises(DeployConnectionError, match="Not connected"):
            SSHConnection(settings).sftp

    def test_close_closes_client_and_sftp(self, settings):
        client = Mock()
        connection = SSHConnection(settings, client_factory=lambda: client)
        connection.open()
        sftp = client.open_sftp.return_value

        connection.close()

        sftp.close.assert_called_once()
        client.close.assert_called_once()
        assert not connection.is_active


class TestRemoteSessionLifecycle:
    """Tests for connecting, reconnecting and closing."""

    def test_connect_sets_ready(self, settings):
        session, pool = make_session(settings, make_connection())

        session.connect()

        assert session.state == SessionState.READY
        pool.created[0].open.assert_called_once()

    def test_connect_retries_transient_failures(self, settings):
        broken = make_connection()
        broken.open.side_effect = OSError("Connection reset by peer")
        session, pool = make_session(settings, broken, make_connection())

        session.connect()

        assert session.state == SessionState.READY
        assert len(pool.created) == 2
        broken.close.assert_called_once()

    def test_authentication_failure_not_retried(self, settings):
        rejected = make_connection()
        rejected.open.side_effect = paramiko.AuthenticationException(
            "Authentication failed."
        )
        session, pool = make_session(settings, rejected, make_connection())

        with pytest.raises(DeployAuthenticationError):
            session.connect()

        assert len(pool.created) == 1
        assert session.state == SessionState.FAILED

    def test_unreachable_host_raises_connection_error(self, settings):
        connections = []
        for _ in range(3):
            connection = make_connection()
            connection.open.side_effect = OSError("timed out")
            connections.append(connection)
        session, _ = make_session(
            settings, *connections, policy=RetryPolicy(max_attempts=3, sleep=Mock())
        )

        with pytest.raises(DeployConnectionError, match="timed out"):
            session.connect()

    def test_context_manager_connects_and_closes(self, settings):
        connection = make_connection()
        session, _ = make_session(settings, connection)

        with session as active:
            assert active.state == SessionState.READY

        connection.close.assert_called_once()
        assert session.state == SessionState.DISCONNECTED

    def test_operation_before_connect_raises(self, settings):
        session, _ = make_session(settings, make_connection())

        with pytest.raises(DeployConnectionError, match="is not open"):
            session.run("true")


class TestRemoteSessionCommands:
    """Tests for command execution through the failure policy."""

    def test_run_returns_result(self, settings):
        connection = make_connection([CommandResult("uptime", stdout="up")])
        session, _ = make_session(settings, connection)
        session.connect()

        result = session.run("uptime")

        assert result.stdout == "up"
        connection.exec.assert_called_once_with("uptime", timeout=None)

    def test_non_zero_exit_raises_without_retry(self, settings):
        connection = make_connection(
            [CommandResult("false", exit_status=1, stderr="nope")]
        )
        session, _ = make_session(settings, connection)
        session.connect()

        with pytest.raises(RemoteCommandError) as exc_info:
            session.run("false")

        assert exc_info.value.exit_status == 1
        assert connection.exec.call_count == 1

    def test_non_zero_exit_allowed_without_check(self, settings):
        connection = make_connection([CommandResult("test -d x", exit_status=1)])
        session, _ = make_session(settings, connection)
        session.connect()

        assert session.run("test -d x", check=False).exit_status == 1

    def test_dropped_connection_reconnects_and_retries(self, settings):
        first = make_connection([EOFError("Socket is closed")])
        second = make_connection([CommandResult("ls", stdout="ok")])
        session, pool = make_session(settings, first, second)
        session.connect()

        result = session.run("ls")

        assert result.stdout == "ok"
        assert session.reconnects == 1
        assert pool.created == [first, second]
        first.close.assert_called_once()
        assert session.state == SessionState.READY

    def test_skipped_command_returns_skipped_result(self, settings):
        connection = make_connection([CommandResult("false", exit_status=1)])
        policy = InteractiveFailurePolicy(prompt=Mock(return_value="skip"))
        session, _ = make_session(settings, connection, policy=policy)
        session.connect()

        result = session.run("false")

        assert result.skipped

    def test_makedirs_quotes_path(self, settings):
        connection = make_connection([CommandResult("mkdir")])
        session, _ = make_session(settings, connection)
        session.connect()

        session.makedirs("/srv/my $site")

        connection.exec.assert_called_once_with(
            'mkdir -p -- "/srv/my \\$site"', timeout=None
        )

    def test_resolve_link(self, settings):
        connection = make_connection(
            [
                CommandResult("readlink", stdout="/srv/releases/20240101000000\n"),
                CommandResult("readlink", stdout=""),
            ]
        )
        session, _ = make_session(settings, connection)
        session.connect()

        assert session.resolve_link("/srv/site") == "/srv/releases/20240101000000"
        assert session.resolve_link("/srv/missing") is None


class TestRemoteSessionSftp:
    """Tests for SFTP operations."""

    def test_put_uploads_file(self, settings, tmp_path):
        local = tmp_path / "a.txt"
        local.write_text("hello")
        connection = make_connection()
        session, _ = make_session(settings, connection)
        session.connect()

        session.put(local, "/srv/site/a.txt")

        connection.sftp.put.assert_called_once_with(
            str(local), "/srv/site/a.txt", callback=None
        )

    def test_put_permanent_failure_raises_transfer_error(self, settings, tmp_path):
        connection = make_connection()
        connection.sftp.put.side_effect = PermissionError("Permission denied")
        session, _ = make_session(settings, connection)
        session.connect()

        with pytest.raises(DeployTransferError, match="Permission denied"):
            session.put(tmp_path / "a.txt", "/root/a.txt")

    def test_put_retries_on_new_connection(self, settings, tmp_path):
        first = make_connection()
        first.sftp.put.side_effect = OSError("Failure")
        second = make_connection()
        session, _ = make_session(settings, first, second)
        session.connect()

        session.put(tmp_path / "a.txt", "/srv/a.txt")

        second.sftp.put.assert_called_once()

    def test_exists(self, settings):
        connection = make_connection()
        connection.sftp.stat.side_effect = [Mock(), FileNotFoundError()]
        session, _ = make_session(settings, connection)
        session.connect()

        assert session.exists("/srv/site") is True
        assert session.exists("/srv/missing") is False

    def test_listdir_attr(self, settings):
        connection = make_connection()
        entries = [paramiko.SFTPAttributes()]
        connection.sftp.listdir_attr.return_value = entries
        session, _ = make_session(settings, connection)
        session.connect()

        assert session.listdir_attr("/srv") == entries


class TestSessionFactory:
    """Tests for opening independent sessions."""

    def test_open_returns_connected_session(self, settings):
        pool = ConnectionPool(make_connection(), make_connection())
        factory = SessionFactory(settings, connection_factory=pool)

        first = factory.open()
        second = factory.open()

        assert first is not second
        assert first.state == SessionState.READY
        assert pool.created[0] is not pool.created[1]
        assert first.policy is factory.policy
