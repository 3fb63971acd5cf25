"""
Exchange-local market hours and session helpers

Every check converts wall-clock time into the exchange time zone
explicitly, so results never depend on the host's TZ setting.
Naive datetimes are interpreted as UTC.
"""

from datetime import datetime, time, timedelta
from enum import Enum
from typing import Callable, Optional

import pytz

from ..config import get_config


class MarketSession(Enum):
    """Named time-of-day buckets used as part of the cache key"""
    MARKET_OPEN = "market_open"
    MARKET_CLOSE = "market_close"
    INTRADAY = "intraday"
    AFTER_HOURS = "after_hours"


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


class MarketClock:
    """Wall-clock view of one exchange (default NYSE, America/New_York)"""

    def __init__(
        self,
        timezone: Optional[str] = None,
        market_open: Optional[time] = None,
        market_close: Optional[time] = None,
        now_fn: Optional[Callable[[], datetime]] = None
    ):
        timing = get_config().timing
        self.tz = pytz.timezone(timezone or timing.exchange_timezone)
        self.market_open = market_open or timing.get_market_open()
        self.market_close = market_close or timing.get_market_close()
        self._now_fn = now_fn or utc_now

    def now(self) -> datetime:
        """Current time in the exchange zone"""
        return self.to_local(self._now_fn())

    def to_local(self, moment: datetime) -> datetime:
        """Convert any datetime to exchange-local time"""
        if moment.tzinfo is None:
            moment = pytz.utc.localize(moment)
        return moment.astimezone(self.tz)

    def localize(self, day, at: time) -> datetime:
        """Build an exchange-local datetime for a calendar day and wall time"""
        return self.tz.localize(datetime.combine(day, at))

    @staticmethod
    def is_weekday(local: datetime) -> bool:
        return local.weekday() < 5

    def is_market_hours(self, moment: Optional[datetime] = None) -> bool:
        """Mon-Fri between the open and close times (both inclusive)"""
        local = self.to_local(moment) if moment is not None else self.now()
        if not self.is_weekday(local):
            return False
        current = local.time().replace(second=0, microsecond=0)
        return self.market_open <= current <= self.market_close

    def current_session(self, moment: Optional[datetime] = None) -> MarketSession:
        """Morning reads belong to the open session, afternoon to the close"""
        local = self.to_local(moment) if moment is not None else self.now()
        if local.hour < 12:
            return MarketSession.MARKET_OPEN
        if local.hour < 17:
            return MarketSession.MARKET_CLOSE
        return MarketSession.AFTER_HOURS

    def is_update_required(self, moment: Optional[datetime] = None) -> bool:
        """True on weekdays within the windows around the open and the close"""
        local = self.to_local(moment) if moment is not None else self.now()
        if not self.is_weekday(local):
            return False

        minutes = local.hour * 60 + local.minute
        open_minutes = self.market_open.hour * 60 + self.market_open.minute
        close_minutes = self.market_close.hour * 60 + self.market_close.minute

        near_open = open_minutes - 5 <= minutes <= open_minutes + 35
        near_close = close_minutes - 5 <= minutes <= close_minutes + 10
        return near_open or near_close

    def next_update_time(self, moment: Optional[datetime] = None) -> datetime:
        """Next scheduled open/close refresh, skipping weekends"""
        local = self.to_local(moment) if moment is not None else self.now()
        today = local.date()

        if self.is_weekday(local):
            open_at = self.localize(today, self.market_open)
            close_at = self.localize(today, self.market_close)
            if local < open_at:
                return open_at
            if local < close_at:
                return close_at

        day = today + timedelta(days=1)
        while day.weekday() >= 5:
            day += timedelta(days=1)
        return self.localize(day, self.market_open)


_default_clock: Optional[MarketClock] = None


def get_market_clock() -> MarketClock:
    """Get or create the configured exchange clock"""
    global _default_clock
    if _default_clock is None:
        _default_clock = MarketClock()
    return _default_clock


def to_exchange_time(moment: datetime) -> datetime:
    return get_market_clock().to_local(moment)


def is_market_hours(moment: Optional[datetime] = None) -> bool:
    return get_market_clock().is_market_hours(moment)


def current_market_session(moment: Optional[datetime] = None) -> MarketSession:
    return get_market_clock().current_session(moment)


def is_update_required(moment: Optional[datetime] = None) -> bool:
    return get_market_clock().is_update_required(moment)


def next_update_time(moment: Optional[datetime] = None) -> datetime:
    return get_market_clock().next_update_time(moment)
