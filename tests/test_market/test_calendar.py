"""Tests for the market date resolver."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from tootoo.config import MarketConfig
from tootoo.errors import InvalidDate
from tootoo.market.calendar import (
    is_trading_day,
    previous_trading_day,
    resolve_as_of_date,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestExplicitDate:
    def test_string_parsed_literally(self):
        assert resolve_as_of_date("2026-01-15") == date(2026, 1, 15)

    def test_weekend_backfill_not_rolled(self):
        # 2026-01-17 is a Saturday.
        assert resolve_as_of_date("2026-01-17") == date(2026, 1, 17)

    def test_date_object_passthrough(self):
        assert resolve_as_of_date(date(2026, 1, 15)) == date(2026, 1, 15)

    @pytest.mark.parametrize(
        "value", ["2026-1-15", "20260115", "2026/01/15", "2026-02-30", "yesterday", ""]
    )
    def test_malformed_raises_invalid_date(self, value):
        with pytest.raises(InvalidDate):
            resolve_as_of_date(value)

    def test_datetime_rejected(self):
        with pytest.raises(InvalidDate):
            resolve_as_of_date(datetime(2026, 1, 15, 12, 0))


class TestImplicitDate:
    def test_after_close_is_today_local(self):
        # 08:00 UTC = 17:00 KST on Thursday 2026-01-15.
        assert resolve_as_of_date(now_utc=_utc(2026, 1, 15, 8, 0)) == date(2026, 1, 15)

    def test_before_close_is_previous_day(self):
        # 03:00 UTC = 12:00 KST → today's data not final yet.
        assert resolve_as_of_date(now_utc=_utc(2026, 1, 15, 3, 0)) == date(2026, 1, 14)

    def test_utc_evening_is_next_local_day(self):
        # 2026-01-14 20:00 UTC = 2026-01-15 05:00 KST → before close → 2026-01-14.
        assert resolve_as_of_date(now_utc=_utc(2026, 1, 14, 20, 0)) == date(2026, 1, 14)

    def test_calendar_policy_keeps_weekend(self):
        # Saturday 2026-01-17 18:00 KST.
        resolved = resolve_as_of_date(now_utc=_utc(2026, 1, 17, 9, 0))
        assert resolved == date(2026, 1, 17)

    def test_previous_policy_rolls_back_over_weekend(self):
        market = MarketConfig(non_trading_day_policy="previous")
        resolved = resolve_as_of_date(now_utc=_utc(2026, 1, 17, 9, 0), market=market)
        assert resolved == date(2026, 1, 16)

    def test_previous_policy_skips_configured_holiday(self):
        market = MarketConfig(
            non_trading_day_policy="previous", holidays=[date(2026, 1, 16)]
        )
        resolved = resolve_as_of_date(now_utc=_utc(2026, 1, 17, 9, 0), market=market)
        assert resolved == date(2026, 1, 15)

    def test_naive_now_treated_as_utc(self):
        assert resolve_as_of_date(now_utc=datetime(2026, 1, 15, 8, 0)) == date(2026, 1, 15)

    def test_custom_cutoff(self):
        market = MarketConfig(close_cutoff="11:00")
        # 03:00 UTC = 12:00 KST → after an 11:00 cutoff.
        assert resolve_as_of_date(now_utc=_utc(2026, 1, 15, 3, 0), market=market) == date(2026, 1, 15)


class TestTradingDays:
    def test_weekday_trades(self):
        assert is_trading_day(date(2026, 1, 15))

    def test_weekend_does_not_trade(self):
        assert not is_trading_day(date(2026, 1, 18))

    def test_holiday_does_not_trade(self):
        assert not is_trading_day(date(2026, 1, 15), holidays=[date(2026, 1, 15)])

    def test_previous_trading_day_over_new_year(self):
        # 2027-01-01 is a Friday holiday; previous trading day is Thursday 2026-12-31.
        assert previous_trading_day(date(2027, 1, 1), holidays=[date(2027, 1, 1)]) == date(2026, 12, 31)
