"""
Market date resolver — the canonical as-of date for an EOD run.

Resolution rules
----------------
Explicit request (``--as-of-date 2026-01-15``):
    Parsed strictly as ``YYYY-MM-DD`` and returned literally. Backfills of
    weekends or holidays are allowed; the feature store decides whether
    there is anything to rank.

No request ("today"):
    1. Convert the current UTC time to exchange local time (fixed offset,
       KST +09:00 by default).
    2. Before the close cutoff (16:00 local by default) today's EOD data is
       not authoritative yet, so the candidate is the previous calendar day.
    3. Apply ``non_trading_day_policy``:
         ``calendar`` — return the candidate date as-is. A weekend or
                        holiday then yields no feature rows and the run is
                        recorded as a failed snapshot.
         ``previous`` — roll back over weekends and holidays to the most
                        recent trading day.

Holidays are the built-in fixed-date closures (Jan 1, Dec 25) plus
``MarketConfig.holidays`` (which also receives ``KR_MARKET_HOLIDAYS``).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Union

from tootoo.config import MarketConfig
from tootoo.errors import InvalidDate
from tootoo.utils.time_utils import parse_iso_date, utcnow

logger = logging.getLogger(__name__)

_BUILTIN_HOLIDAY_YEARS = range(2024, 2031)


def builtin_holidays() -> set[date]:
    """Widely observed fixed-date closures for 2024-2030."""
    out: set[date] = set()
    for year in _BUILTIN_HOLIDAY_YEARS:
        out.add(date(year, 1, 1))
        out.add(date(year, 12, 25))
    return out


def configured_holidays(extra: Iterable[date] = ()) -> frozenset[date]:
    """Built-in holidays merged with configured ones."""
    return frozenset(builtin_holidays() | set(extra))


def is_weekend(d: date) -> bool:
    return d.weekday() >= 5


def is_trading_day(d: date, holidays: Iterable[date] = ()) -> bool:
    """``True`` if ``d`` is a weekday and not a holiday."""
    return not is_weekend(d) and d not in set(holidays)


def previous_trading_day(d: date, holidays: Iterable[date] = ()) -> date:
    """Return ``d`` itself if it trades, otherwise the most recent trading day before it."""
    closed = set(holidays)
    current = d
    while is_weekend(current) or current in closed:
        current -= timedelta(days=1)
    return current


def _parse_cutoff(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def resolve_as_of_date(
    requested: Union[str, date, None] = None,
    now_utc: Optional[datetime] = None,
    market: Optional[MarketConfig] = None,
) -> date:
    """Resolve the as-of date for an EOD run.

    Args:
        requested: Explicit date (``date`` or ``YYYY-MM-DD`` string), or
            ``None`` for "the most recent authoritative date".
        now_utc: Clock override for tests. Defaults to the current UTC time.
        market: Exchange calendar settings. Defaults to ``MarketConfig()``.

    Returns:
        The resolved as-of date.

    Raises:
        InvalidDate: If ``requested`` is a malformed string.
    """
    market = market or MarketConfig()

    if isinstance(requested, datetime):
        raise InvalidDate(requested)
    if isinstance(requested, date):
        return requested
    if requested is not None:
        try:
            return parse_iso_date(requested)
        except (ValueError, TypeError, AttributeError, IndexError) as exc:
            raise InvalidDate(requested) from exc

    now_utc = now_utc or utcnow()
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    local_tz = timezone(timedelta(hours=market.utc_offset_hours))
    now_local = now_utc.astimezone(local_tz)

    candidate = now_local.date()
    if now_local.time() < _parse_cutoff(market.close_cutoff):
        candidate -= timedelta(days=1)

    holidays = configured_holidays(market.holidays)
    if market.non_trading_day_policy == "previous":
        resolved = previous_trading_day(candidate, holidays)
    else:
        resolved = candidate

    if not is_trading_day(resolved, holidays):
        logger.warning(
            "Resolved as_of_date=%s is not a trading day (policy=%s).",
            resolved, market.non_trading_day_policy,
        )
    return resolved
