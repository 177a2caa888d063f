"""Tests for configuration loading and validation."""

from datetime import time, timedelta, timezone

import pytest

from settlement_engine.config import PollerConfig, Settings, parse_windows, resolve_timezone

from conftest import make_settings


class TestPollerConfig:
    """Test poller configuration validation."""

    def test_defaults(self):
        config = PollerConfig()
        assert config.windows == (time(8, 30), time(13, 30), time(16, 30))
        assert config.hold_duration == timedelta(hours=24)
        assert config.tick_interval == timedelta(minutes=1)
        assert config.call_timeout == 15.0

    def test_requires_windows(self):
        with pytest.raises(ValueError, match="poll window"):
            PollerConfig(windows=())

    def test_window_must_cover_a_tick(self):
        with pytest.raises(ValueError, match="window_length"):
            PollerConfig(tick_interval=timedelta(minutes=5), window_length=timedelta(minutes=1))

    @pytest.mark.parametrize("timeout", [5.0, 25.0])
    def test_call_timeout_bounds(self, timeout):
        with pytest.raises(ValueError, match="call_timeout"):
            PollerConfig(call_timeout=timeout)

    def test_negative_hold_rejected(self):
        with pytest.raises(ValueError, match="hold_duration"):
            PollerConfig(hold_duration=timedelta(hours=-1))


class TestParsing:
    """Test environment value parsing helpers."""

    def test_parse_windows(self):
        assert parse_windows("08:30, 13:30,16:30") == (time(8, 30), time(13, 30), time(16, 30))

    def test_parse_windows_hour_only(self):
        assert parse_windows("9") == (time(9, 0),)

    def test_resolve_utc(self):
        assert resolve_timezone("utc") is timezone.utc

    def test_resolve_named_zone(self):
        tz = resolve_timezone("America/Chicago")
        assert str(tz) == "America/Chicago"


class TestSettings:
    """Test settings loading."""

    def test_from_env_defaults(self, monkeypatch):
        for name in (
            "DATABASE_URL",
            "PORT",
            "STORE_NAME",
            "ACH_GATEWAY_TAGS",
            "CARD_GATEWAY_TAGS",
            "ACH_CLIENT_ID",
            "ACH_API_PASSWORD",
            "POLL_WINDOWS",
            "POLL_TIMEZONE",
            "HOLD_HOURS",
            "ACH_CALLBACK_ENFORCES_HOLD",
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr("settlement_engine.config.load_dotenv", lambda: None)

        settings = Settings.from_env()

        assert settings.port == 8081
        assert settings.store_name == "Online Store"
        assert settings.ach_gateway_tags == ("ACH Bank Transfer",)
        assert settings.card_gateway_tags == ("Credit/Debit Card",)
        assert settings.ach_configured is False
        assert settings.ach_callback_enforces_hold is False
        assert settings.poll_timezone == "America/Chicago"

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setattr("settlement_engine.config.load_dotenv", lambda: None)
        monkeypatch.setenv("ACH_GATEWAY_TAGS", "ACH, eCheck ")
        monkeypatch.setenv("ACH_CLIENT_ID", "abc")
        monkeypatch.setenv("ACH_API_PASSWORD", "pw")
        monkeypatch.setenv("HOLD_HOURS", "48")
        monkeypatch.setenv("ACH_CALLBACK_ENFORCES_HOLD", "TRUE")

        settings = Settings.from_env()

        assert settings.ach_gateway_tags == ("ACH", "eCheck")
        assert settings.ach_configured is True
        assert settings.hold_hours == 48
        assert settings.ach_callback_enforces_hold is True

    def test_poller_config_from_settings(self):
        settings = make_settings(poll_interval_seconds=30, hold_hours=12, poll_windows="09:00")
        config = settings.poller_config()

        assert config.windows == (time(9, 0),)
        assert config.tick_interval == timedelta(seconds=30)
        assert config.window_length == timedelta(minutes=5)
        assert config.hold_duration == timedelta(hours=12)
        assert config.tz is timezone.utc

    def test_window_spans_several_ticks(self):
        config = make_settings(poll_interval_seconds=120).poller_config()

        assert config.window_length == timedelta(minutes=10)
        assert config.window_length >= config.tick_interval * 5

    def test_configured_flags(self):
        settings = make_settings(card_api_secret="", commerce_access_token="")
        assert settings.ach_configured is True
        assert settings.card_configured is False
        assert settings.commerce_configured is False
