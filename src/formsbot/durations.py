"""Human-friendly duration parsing and formatting (``15days 2min 2s``)."""

import re
from datetime import timedelta

from .errors import UserFriendlyError


_UNITS: dict[str, float] = {}

for _names, _seconds in (
    (("nsec", "ns"), 1e-9),
    (("usec", "us"), 1e-6),
    (("msec", "ms"), 1e-3),
    (("seconds", "second", "sec", "s"), 1),
    (("minutes", "minute", "min", "m"), 60),
    (("hours", "hour", "hr", "h"), 3600),
    (("days", "day", "d"), 86400),
    (("weeks", "week", "w"), 7 * 86400),
    (("months", "month", "M"), 30.44 * 86400),
    (("years", "year", "y"), 365.25 * 86400),
):
    for _name in _names:
        _UNITS[_name] = _seconds

_TOKEN = re.compile(r"\s*(\d+)\s*([A-Za-z]+)\s*")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``1h 30min`` or ``15days 2min 2s``.

    Raises:
        UserFriendlyError: if the text is empty, contains an unknown unit or is
            out of range
    """
    text = text.strip()
    if not text:
        raise UserFriendlyError("Cooldown was not formatted correctly: value was empty")

    total = 0.0
    position = 0
    while position < len(text):
        match = _TOKEN.match(text, position)
        if match is None:
            raise UserFriendlyError(
                f"Cooldown was not formatted correctly: expected a number and a unit at `{text[position:]}`"
            )
        number, unit = match.groups()
        if unit not in _UNITS:
            raise UserFriendlyError(f"Cooldown was not formatted correctly: unknown time unit `{unit}`")
        try:
            total += int(number) * _UNITS[unit]
        except (ValueError, OverflowError) as e:
            raise UserFriendlyError(f"Cooldown was not formatted correctly: {e}") from e
        position = match.end()

    try:
        return timedelta(seconds=total)
    except OverflowError as e:
        raise UserFriendlyError(f"Cooldown was not formatted correctly: {e}") from e


def format_duration(duration: timedelta) -> str:
    """Format a duration to whole seconds, e.g. ``1day 2h 3m 4s``."""
    seconds = int(duration.total_seconds())
    if seconds <= 0:
        return "0s"

    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    parts = []
    if days:
        parts.append(f"{days}day" if days == 1 else f"{days}days")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds:
        parts.append(f"{seconds}s")
    return " ".join(parts)
