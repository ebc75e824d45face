"""Tests for hostfleet/config.py."""
from __future__ import annotations

import pytest

from hostfleet.config import Settings


def test_defaults():
    s = Settings(_env_file=None)
    assert s.cloud_status_interval == 30
    assert s.cloud_status_excluded_providers == ["static"]
    assert s.cloud_status_lock_ttl > s.cloud_status_pass_timeout
    assert s.log_forward_url is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("HOSTFLEET_CLOUD_STATUS_INTERVAL", "15")
    monkeypatch.setenv("HOSTFLEET_CLOUD_STATUS_EXCLUDED_PROVIDERS", '["static", "docker"]')
    monkeypatch.setenv("HOSTFLEET_LOG_FORMAT", "text")

    s = Settings(_env_file=None)

    assert s.cloud_status_interval == 15
    assert s.cloud_status_excluded_providers == ["static", "docker"]
    assert s.log_format == "text"


class TestGetInterval:

    def test_falls_back_to_named_setting(self):
        assert Settings(_env_file=None, cloud_status_interval=45).get_interval("cloud_status") == 45

    def test_override_wins(self, monkeypatch):
        monkeypatch.setenv("HOSTFLEET_INTERVAL_OVERRIDES", '{"cloud_status": 5}')
        assert Settings(_env_file=None).get_interval("cloud_status") == 5

    def test_unknown_monitor(self):
        with pytest.raises(AttributeError):
            Settings(_env_file=None).get_interval("nonexistent")
