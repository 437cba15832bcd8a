"""
Display formatting for note times and date groups.

Formatting always flows from an aware datetime to a string. Nothing here
parses a display string back into a time.
"""

from datetime import date, datetime, tzinfo

DAY_NAMES = [
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]
MONTH_NAMES = [
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
]


def format_time(dt: datetime, tz: tzinfo) -> str:
    """Format as a 12-hour time of day, e.g. "8:30 AM"."""
    local = dt.astimezone(tz)
    hours = local.hour % 12 or 12
    ampm = "PM" if local.hour >= 12 else "AM"
    return f"{hours}:{local.minute:02d} {ampm}"


def date_key(dt: datetime, tz: tzinfo) -> str:
    return dt.astimezone(tz).date().isoformat()


def epoch_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _short_date(day: date, today: date) -> str:
    label = f"{MONTH_NAMES[day.month - 1]} {day.day}"
    if day.year != today.year:
        label = f"{label}, {day.year}"
    return label


def format_date_label(key: str, today: date) -> str:
    """
    Relative label for a date group: "Yesterday", a weekday name within the
    last week, or a short date.
    """
    day = date.fromisoformat(key)
    days_ago = (today - day).days
    if days_ago == 1:
        return "Yesterday"
    if 2 <= days_ago <= 7:
        return DAY_NAMES[day.weekday()]
    return _short_date(day, today)


def format_date_with_day(key: str, today: date) -> str:
    day = date.fromisoformat(key)
    return f"{DAY_NAMES[day.weekday()]}, {_short_date(day, today)}"
