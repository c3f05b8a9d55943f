"""Tests for time utilities."""

from datetime import datetime, timezone
from unittest.mock import patch


class TestUtcNow:
    """Tests for utc_now()."""

    def test_returns_utc_datetime(self):
        from ispbot.infra.time import utc_now

        now = utc_now()
        assert now.tzinfo == timezone.utc

    def test_returns_current_time(self):
        from ispbot.infra.time import utc_now

        before = datetime.now(timezone.utc)
        now = utc_now()
        after = datetime.now(timezone.utc)

        assert before <= now <= after


class TestEpoch:
    def test_millis_from_time(self):
        from ispbot.infra.time import epoch_millis, epoch_seconds

        with patch("ispbot.infra.time.time.time", return_value=1_700_000_000.25):
            assert epoch_seconds() == 1_700_000_000.25
            assert epoch_millis() == 1_700_000_000_250


class TestLocalToday:
    def test_uses_business_timezone(self, monkeypatch):
        from ispbot.infra.time import local_today

        # 01:30 UTC is still the previous day in Sao Paulo (UTC-3)
        fixed = datetime(2026, 3, 15, 1, 30, tzinfo=timezone.utc)

        class FixedDatetime(datetime):
            @classmethod
            def now(cls, tz=None):
                return fixed.astimezone(tz)

        monkeypatch.delenv("BOT_TIMEZONE", raising=False)
        with patch("ispbot.infra.time.datetime", FixedDatetime):
            assert local_today().isoformat() == "2026-03-14"

    def test_timezone_override(self, monkeypatch):
        from ispbot.infra.time import local_today

        fixed = datetime(2026, 3, 15, 1, 30, tzinfo=timezone.utc)

        class FixedDatetime(datetime):
            @classmethod
            def now(cls, tz=None):
                return fixed.astimezone(tz)

        monkeypatch.setenv("BOT_TIMEZONE", "UTC")
        with patch("ispbot.infra.time.datetime", FixedDatetime):
            assert local_today().isoformat() == "2026-03-15"
