"""
Tests for flexible date parsing.
"""

from datetime import date, datetime, timezone

import pytest

from app.core.config import settings
from app.utils.date import looks_like_datetime, parse_flexible_datetime


class TestParseFlexibleDatetime:
    @pytest.mark.parametrize("value, expected", [
        ("2025-10-20", datetime(2025, 10, 20)),
        ("2024-09-04T23:09:18Z", datetime(2024, 9, 4, 23, 9, 18)),
        ("2024-09-04T23:09:18+02:00", datetime(2024, 9, 4, 21, 9, 18)),
        ("20/10/2025", datetime(2025, 10, 20)),
        ("10/20/2025", datetime(2025, 10, 20)),
        (date(2025, 1, 2), datetime(2025, 1, 2)),
        (datetime(2025, 1, 2, 3, 4, tzinfo=timezone.utc), datetime(2025, 1, 2, 3, 4)),
    ])
    def test_supported_formats_become_naive_utc(self, value, expected):
        assert parse_flexible_datetime(value) == expected

    def test_ambiguous_dates_follow_the_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "date_default_dayfirst", False)
        assert parse_flexible_datetime("03/04/2025") == datetime(2025, 3, 4)

        monkeypatch.setattr(settings, "date_default_dayfirst", True)
        assert parse_flexible_datetime("03/04/2025") == datetime(2025, 4, 3)

    @pytest.mark.parametrize("value", [None, "", "   ", "soon", True, float("nan")])
    def test_unparseable_values(self, value):
        assert parse_flexible_datetime(value, log_context="ExpirationDate") is None


class TestLooksLikeDatetime:
    @pytest.mark.parametrize("value, expected", [
        ("2025-10-20", True),
        ("20/10/2025", True),
        (date(2025, 10, 20), True),
        ("20251020", False),
        ("42", False),
        ("next tuesday", False),
        (None, False),
    ])
    def test_looks_like_datetime(self, value, expected):
        assert looks_like_datetime(value) is expected
