"""Durations in nanoseconds with the textual form used in config files."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

_NANOSECOND = 1
_MICROSECOND = 1000 * _NANOSECOND
_MILLISECOND = 1000 * _MICROSECOND
_SECOND = 1000 * _MILLISECOND
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE

_UNITS = {
    "ns": _NANOSECOND,
    "us": _MICROSECOND,
    "\u00b5s": _MICROSECOND,
    "\u03bcs": _MICROSECOND,
    "ms": _MILLISECOND,
    "s": _SECOND,
    "m": _MINUTE,
    "h": _HOUR,
}

_MAX_DURATION = 2**63 - 1
_COMPONENT = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")


def parse_duration(text: str) -> int:
    """Parse a duration such as ``"1h30m"`` or ``"1.5s"`` into nanoseconds."""
    rest = text
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise ValueError(f'invalid duration "{text}"')

    total = 0
    while rest:
        match = _COMPONENT.match(rest)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ValueError(f'invalid duration "{text}"')
        if not unit:
            raise ValueError(f'missing unit in duration "{text}"')
        factor = _UNITS.get(unit)
        if factor is None:
            raise ValueError(f'unknown unit "{unit}" in duration "{text}"')
        value = int(whole or "0") * factor
        if fraction:
            value += int(fraction) * factor // 10 ** len(fraction)
        total += value
        rest = rest[match.end():]

    limit = _MAX_DURATION + 1 if negative else _MAX_DURATION
    if total > limit:
        raise ValueError(f'invalid duration "{text}"')
    return -total if negative else total


def _with_fraction(value: int, precision: int) -> str:
    whole, fraction = divmod(value, 10**precision)
    digits = str(fraction).rjust(precision, "0").rstrip("0")
    return f"{whole}.{digits}" if digits else str(whole)


def format_duration(nanoseconds: int) -> str:
    """Render nanoseconds in the compact form, e.g. ``"1h2m3.5s"``."""
    magnitude = abs(nanoseconds)
    if magnitude == 0:
        return "0s"
    if magnitude < _SECOND:
        if magnitude < _MICROSECOND:
            text = f"{magnitude}ns"
        elif magnitude < _MILLISECOND:
            text = _with_fraction(magnitude, 3) + "\u00b5s"
        else:
            text = _with_fraction(magnitude, 6) + "ms"
    else:
        seconds, remainder = divmod(magnitude, _SECOND)
        text = _with_fraction((seconds % 60) * _SECOND + remainder, 9) + "s"
        minutes = seconds // 60
        if minutes:
            text = f"{minutes % 60}m{text}"
            hours = minutes // 60
            if hours:
                text = f"{hours}h{text}"
    return f"-{text}" if nanoseconds < 0 else text


@dataclass(frozen=True, order=True)
class Duration:
    """A span of time held in nanoseconds."""

    nanoseconds: int = 0

    @property
    def seconds(self) -> float:
        return self.nanoseconds / _SECOND

    @classmethod
    def from_obj(cls, obj: Any) -> Duration:
        """Build from a decoded JSON/YAML value: a number of nanoseconds or a string."""
        if isinstance(obj, bool):
            raise ValueError("invalid duration")
        if isinstance(obj, (int, float)):
            return cls(int(obj))
        if isinstance(obj, str):
            return cls(parse_duration(obj))
        raise ValueError("invalid duration")

    def to_obj(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return format_duration(self.nanoseconds)