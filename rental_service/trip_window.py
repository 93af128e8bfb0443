"""
Trip windows: a calendar date plus a loosely formatted time-of-day string,
combined into one instant.

Accepted time encodings:

  - ``HH:MM`` / ``H:MM``         24-hour clock
  - ``h:mm AM`` / ``h:mm pm``    12-hour clock, case-insensitive

Anything else (including no time at all) keeps the time already carried by
the date value, which for stored trip dates is midnight.
"""
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional, Union

from dateutil import parser

from .errors import InvalidInput

_CLOCK_24 = re.compile(r"^(\d{1,2}):(\d{2})$")
_MERIDIEM = re.compile(r"^(\d{1,2}):(\d{2})\s*([ap]m)$", re.IGNORECASE)
_DAY_FIRST = re.compile(r"^\d{1,2}[-/]\d{1,2}[-/]\d{4}")


@dataclass(frozen=True)
class Clock24:
    hour: int
    minute: int

    def to_time(self) -> time:
        return time(self.hour, self.minute)


@dataclass(frozen=True)
class Meridiem:
    hour: int
    minute: int
    pm: bool

    def to_time(self) -> time:
        hour = self.hour
        if self.pm and hour != 12:
            hour += 12
        elif not self.pm and hour == 12:
            hour = 0
        return time(hour, self.minute)


@dataclass(frozen=True)
class NoTime:
    raw: Optional[str] = None

    def to_time(self) -> None:
        return None


TimeOfDay = Union[Clock24, Meridiem, NoTime]


def parse_time_of_day(raw: Optional[str]) -> TimeOfDay:
    if raw is None:
        return NoTime()

    text = raw.strip()
    match = _CLOCK_24.match(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour <= 23 and minute <= 59:
            return Clock24(hour, minute)
        return NoTime(raw)

    match = _MERIDIEM.match(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour <= 12 and minute <= 59:
            return Meridiem(hour, minute, pm=match.group(3).lower() == "pm")
        return NoTime(raw)

    return NoTime(raw)


def combine(date_value: datetime, raw_time: Optional[str]) -> datetime:
    """Pure: never raises on a bad time string, the date's own time wins instead."""
    clock = parse_time_of_day(raw_time).to_time()
    if clock is None:
        return date_value
    return date_value.replace(hour=clock.hour, minute=clock.minute, second=0, microsecond=0)


@dataclass(frozen=True)
class TripWindow:
    start: datetime
    end: datetime

    @classmethod
    def from_parts(cls, start_date, start_time, end_date, end_time) -> "TripWindow":
        return cls(combine(start_date, start_time), combine(end_date, end_time))

    def first_day(self) -> datetime:
        return start_of_day(self.start)

    def last_day_end(self) -> datetime:
        return end_of_day(self.end)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime) -> datetime:
    return start_of_day(value) + timedelta(days=1) - timedelta(microseconds=1)


def parse_calendar_date(raw) -> datetime:
    """
    Search and checkout dates arrive either as ISO strings or as DD-MM-YYYY.
    Aware values keep their wall-clock reading; nothing is converted.
    """
    if isinstance(raw, datetime):
        value = raw
    else:
        text = (raw or "").strip()
        if not text:
            raise InvalidInput("Date is required")
        try:
            if _DAY_FIRST.match(text):
                value = parser.parse(text, dayfirst=True)
            else:
                value = parser.isoparse(text)
        except (ValueError, OverflowError):
            raise InvalidInput(f"Invalid date format: {text}")

    if value.tzinfo is not None:
        value = value.replace(tzinfo=None)
    return value
