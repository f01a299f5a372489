"""
tests/test_durations.py -- Unit tests for core/durations.py and the Settings
validators built on it.

Coverage:
  - Each unit (s, m, h, d) converts to the right number of seconds
  - Malformed expressions raise ValueError
  - expires_at() adds the window to the given instant
  - Settings rejects a malformed duration and an out-of-range bcrypt cost
  - Settings rejects short or identical signing keys
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from core.durations import duration_seconds, expires_at, parse_duration


class TestParseDuration:
    @pytest.mark.parametrize(
        ("expr", "seconds"),
        [("30s", 30), ("15m", 900), ("1h", 3600), ("7d", 604800)],
    )
    def test_units(self, expr: str, seconds: int) -> None:
        assert parse_duration(expr) == timedelta(seconds=seconds)
        assert duration_seconds(expr) == seconds

    @pytest.mark.parametrize("expr", ["", "15", "m", "1h30m", "15 m", "-5m", "2w", "1.5h"])
    def test_malformed_rejected(self, expr: str) -> None:
        with pytest.raises(ValueError):
            parse_duration(expr)

    def test_expires_at(self) -> None:
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert expires_at("1h", now) == datetime(2026, 1, 1, 13, 0, tzinfo=timezone.utc)


class TestSettingsValidation:
    """Configuration mistakes are caught when Settings is built, not at first use."""

    def test_malformed_window_rejected(self, settings_factory) -> None:
        with pytest.raises(ValidationError):
            settings_factory(access_token_expires_in="fifteen minutes")

    def test_bcrypt_rounds_range(self, settings_factory) -> None:
        with pytest.raises(ValidationError):
            settings_factory(bcrypt_rounds=3)

    def test_short_key_rejected(self, settings_factory) -> None:
        with pytest.raises(ValidationError):
            settings_factory(secret_key="too-short")

    def test_identical_keys_rejected(self, settings_factory) -> None:
        key = "k" * 40
        with pytest.raises(ValidationError):
            settings_factory(secret_key=key, refresh_secret_key=key)

    def test_debug_generates_missing_keys(self, settings_factory) -> None:
        s = settings_factory(secret_key="", refresh_secret_key="")
        assert len(s.secret_key) >= 32
        assert s.secret_key != s.refresh_secret_key

    def test_production_requires_keys(self, settings_factory) -> None:
        with pytest.raises(ValidationError):
            settings_factory(debug=False, secret_key="")
