"""Shared parsing/validation utilities for recurrence input"""

import re
from datetime import date, datetime, time, timezone
from typing import Union

from dateutil.parser import isoparse

from ..domain.recurrence.entities import Frequency, RuleStatus, ServiceType

# .NET TimeSpan ticks sent by the dashboard API (1 tick = 100 nanoseconds)
TICKS_PER_SECOND = 10_000_000
TICKS_PER_DAY = 24 * 3600 * TICKS_PER_SECOND

# Numeric codes used by the dashboard API
FREQUENCY_CODES = {
    1: Frequency.WEEKLY,
    2: Frequency.BIWEEKLY,
    3: Frequency.MONTHLY,
    4: Frequency.QUARTERLY,
    5: Frequency.YEARLY,
}

SERVICE_TYPE_CODES = {
    1: ServiceType.REGULAR,
    2: ServiceType.DEEP,
    3: ServiceType.SPECIALIZED,
}

# The dashboard only knows active (1) and inactive (0); inactive rules are paused
STATUS_CODES = {
    0: RuleStatus.PAUSED,
    1: RuleStatus.ACTIVE,
}

FREQUENCY_ALIASES = {
    "bi-weekly": Frequency.BIWEEKLY,
    "fortnightly": Frequency.BIWEEKLY,
}

TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_time_of_day(value: Union[str, dict, time]) -> time:
    """
    Parse a time of day.

    Accepts "HH:MM", "HH:MM:SS", a `time`, or a TimeSpan payload {"ticks": n}.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        if value.tzinfo is not None:
            raise ValueError("Time of day must not carry a timezone")
        return value

    if isinstance(value, dict):
        ticks = value.get("ticks")
        if not isinstance(ticks, int) or isinstance(ticks, bool) or not 0 <= ticks < TICKS_PER_DAY:
            raise ValueError("TimeSpan ticks must be an integer within one day")
        total_seconds, remainder = divmod(ticks, TICKS_PER_SECOND)
        hours, rest = divmod(total_seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        return time(hours, minutes, seconds, remainder // 10)

    if isinstance(value, str):
        match = TIME_PATTERN.match(value.strip())
        if not match:
            raise ValueError(f"Invalid time format: {value!r} (expected HH:MM)")
        hours, minutes = int(match.group(1)), int(match.group(2))
        seconds = int(match.group(3) or 0)
        if hours > 23 or minutes > 59 or seconds > 59:
            raise ValueError(f"Invalid time of day: {value!r}")
        return time(hours, minutes, seconds)

    raise ValueError(f"Unsupported time value: {value!r}")


def time_to_ticks(value: time) -> int:
    seconds = value.hour * 3600 + value.minute * 60 + value.second
    return seconds * TICKS_PER_SECOND + value.microsecond * 10


def _parse_choice(value, enum_cls, codes: dict, aliases: dict, label: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid {label}: {value!r}")
    if isinstance(value, int):
        if value in codes:
            return codes[value]
        raise ValueError(f"Unknown {label} code: {value}")
    if isinstance(value, str):
        key = value.strip().lower()
        if key.isdigit():
            return _parse_choice(int(key), enum_cls, codes, aliases, label)
        if key in aliases:
            return aliases[key]
        try:
            return enum_cls(key)
        except ValueError:
            choices = ", ".join(member.value for member in enum_cls)
            raise ValueError(f"{label.capitalize()} must be one of: {choices}") from None
    raise ValueError(f"Invalid {label}: {value!r}")


def parse_frequency(value: Union[str, int, Frequency]) -> Frequency:
    """Frequency from its name or dashboard code (1 weekly .. 5 yearly)"""
    return _parse_choice(value, Frequency, FREQUENCY_CODES, FREQUENCY_ALIASES, "frequency")


def parse_service_type(value: Union[str, int, ServiceType]) -> ServiceType:
    return _parse_choice(value, ServiceType, SERVICE_TYPE_CODES, {}, "service type")


def parse_status(value: Union[str, int, RuleStatus]) -> RuleStatus:
    return _parse_choice(value, RuleStatus, STATUS_CODES, {"inactive": RuleStatus.PAUSED}, "status")


def clean_text(value, max_length: int = None):
    """Strip free text; empty strings become None"""
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if max_length is not None and len(value) > max_length:
        raise ValueError(f"Text exceeds maximum length of {max_length} characters")
    return value


DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_window_bound(value: str) -> Union[date, datetime]:
    """
    Parse a window bound from a query string.

    Only a bare YYYY-MM-DD is a date (a whole day); anything with a time
    part is an instant, even at midnight. Offsets are converted to naive UTC.

    Raises:
        ValueError: If the value is not an ISO date or datetime
    """
    value = value.strip()
    if DATE_PATTERN.match(value):
        return date.fromisoformat(value)
    parsed = isoparse(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
