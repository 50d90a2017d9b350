"""Tests for brokerlink.cli — command line interface."""

from unittest.mock import MagicMock, patch

from brokerlink.cli import _find_migration_sql, main
from brokerlink.connections import ConnectionStatus
from brokerlink.errors import SessionExpiredError


class TestCli:
    def test_version(self, capsys):
        rc = main(["version"])
        assert rc == 0
        out = capsys.readouterr().out
        assert "brokerlink" in out
        assert "0.1.0" in out

    def test_version_flag(self, capsys):
        rc = main(["--version"])
        assert rc == 0
        assert "brokerlink" in capsys.readouterr().out

    def test_no_args(self, capsys):
        assert main([]) == 0

    def test_keygen(self, capsys):
        assert main(["keygen"]) == 0
        key = capsys.readouterr().out.strip()
        assert len(key) == 64
        bytes.fromhex(key)


class TestCheckKey:
    def test_valid(self, capsys, encryption_key):
        assert main(["check-key"]) == 0
        assert "valid" in capsys.readouterr().out

    def test_missing(self, capsys, clean_env):
        assert main(["check-key"]) == 1
        out = capsys.readouterr().out
        assert "ENCRYPTION_KEY" in out
        assert "keygen" in out

    def test_malformed(self, capsys, clean_env, monkeypatch):
        monkeypatch.setenv("ENCRYPTION_KEY", "abc123")
        assert main(["check-key"]) == 1


class TestBudget:
    def test_fresh_budget(self, capsys, clean_env):
        assert main(["budget"]) == 0
        out = capsys.readouterr().out
        assert "0/25" in out
        assert "no API key" in out

    def test_configured_limit(self, capsys, clean_env, monkeypatch):
        monkeypatch.setenv("ALPHAVANTAGE_API_KEY", "demo")
        monkeypatch.setenv("ALPHAVANTAGE_DAILY_LIMIT", "75")
        assert main(["budget"]) == 0
        out = capsys.readouterr().out
        assert "0/75" in out
        assert "configured" in out


class TestStatus:
    def test_connected(self, capsys):
        service = MagicMock()
        service.status.return_value = ConnectionStatus.CONNECTED
        with patch("brokerlink.connections.ConnectionService", return_value=service):
            assert main(["status", "IOL", "user-1"]) == 0
        service.status.assert_called_once_with("IOL", "user-1")
        assert "iol / user-1: connected" in capsys.readouterr().out

    def test_error(self, capsys):
        service = MagicMock()
        service.status.side_effect = SessionExpiredError("iol")
        with patch("brokerlink.connections.ConnectionService", return_value=service):
            assert main(["status", "iol", "user-1"]) == 1
        assert "Error" in capsys.readouterr().out


class TestMigrate:
    def test_find_migration_sql(self):
        sql = _find_migration_sql()
        assert sql is not None
        assert "CREATE TABLE IF NOT EXISTS user_connections" in sql
        assert "UNIQUE (user_id, provider)" in sql

    def test_dry_run(self, capsys):
        assert main(["migrate", "--dry-run"]) == 0
        assert "user_connections" in capsys.readouterr().out

    def test_executes_sql(self, capsys):
        conn = MagicMock()
        cursor = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor
        with patch("psycopg2.connect", return_value=conn):
            assert main(["migrate"]) == 0
        assert "user_connections" in cursor.execute.call_args[0][0]
        conn.close.assert_called_once()

    def test_connection_failure(self, capsys):
        import psycopg2

        with patch("psycopg2.connect", side_effect=psycopg2.OperationalError("refused")):
            assert main(["migrate"]) == 1
        assert "Migration failed" in capsys.readouterr().out
