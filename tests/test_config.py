"""Tests for brokerlink.config — environment-driven configuration."""

import pytest

from brokerlink.config import AlphaVantageConfig, Config, DatabaseConfig, get_config, reset_config


class TestDatabaseConfig:
    def test_defaults(self):
        db = DatabaseConfig()
        assert db.host == ""
        assert db.port == 5432
        assert db.name == "brokerlink"

    def test_dict(self):
        db = DatabaseConfig(host="localhost", port=5432, name="test", user="u")
        d = db.dict
        assert d["dbname"] == "test"
        assert d["host"] == "localhost"
        assert d["port"] == 5432
        assert d["user"] == "u"
        assert "password" not in d

    def test_dict_unix_socket(self):
        assert "host" not in DatabaseConfig(host="").dict

    def test_frozen(self):
        db = DatabaseConfig()
        with pytest.raises(AttributeError):
            db.host = "other"  # type: ignore[misc]


class TestDefaults:
    def test_config_defaults(self):
        cfg = Config()
        assert cfg.http_timeout == 15.0
        assert cfg.refresh_buffer_seconds == 300
        assert cfg.iol.base_url == "https://api.invertironline.com"

    def test_alphavantage_free_tier(self):
        av = AlphaVantageConfig()
        assert av.daily_limit == 25
        assert av.reserve == 1
        assert av.warning_threshold == 5
        assert av.api_key == ""


class TestFromEnv:
    def test_singleton(self, clean_env):
        assert get_config() is get_config()

    def test_reset(self, clean_env):
        first = get_config()
        reset_config()
        assert get_config() is not first

    def test_env_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("BROKERLINK_DB_HOST", "db.internal")
        monkeypatch.setenv("BROKERLINK_DB_PORT", "6543")
        monkeypatch.setenv("IOL_API_URL", "https://iol.test")
        monkeypatch.setenv("PPI_API_URL", "https://ppi.test")
        monkeypatch.setenv("ALPHAVANTAGE_API_KEY", "demo")
        monkeypatch.setenv("ALPHAVANTAGE_DAILY_LIMIT", "500")
        monkeypatch.setenv("BROKERLINK_INSIGHTS_MODEL", "openrouter/test/model")
        monkeypatch.setenv("BROKERLINK_HTTP_TIMEOUT", "5")
        monkeypatch.setenv("BROKERLINK_REFRESH_BUFFER_SECONDS", "120")

        cfg = get_config()
        assert cfg.db.host == "db.internal"
        assert cfg.db.port == 6543
        assert cfg.iol.base_url == "https://iol.test"
        assert cfg.ppi.base_url == "https://ppi.test"
        assert cfg.alphavantage.api_key == "demo"
        assert cfg.alphavantage.daily_limit == 500
        assert cfg.insights.model == "openrouter/test/model"
        assert cfg.http_timeout == 5.0
        assert cfg.refresh_buffer_seconds == 120

    def test_encryption_key_not_in_config(self, encryption_key):
        cfg = get_config()
        assert encryption_key not in repr(cfg)
