# influx_datasource/interval.py
import re
from typing import NamedTuple, Optional

from .errors import QueryParseError

DEFAULT_RESOLUTION = 1500
DEFAULT_MIN_INTERVAL_MS = 1

SECOND = 1000
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY
YEAR = 365 * DAY

_UNITS = {
    "ms": 1,
    "s": SECOND,
    "m": MINUTE,
    "h": HOUR,
    "d": DAY,
    "w": WEEK,
    "M": 30 * DAY,
    "y": YEAR,
}
_INTERVAL_RE = re.compile(r"^(\d+)(ms|s|m|h|d|w|M|y)?$")

# (upper bound, rounded value) pairs in milliseconds
_ROUNDING = [
    (15, 10),
    (35, 20),
    (75, 50),
    (150, 100),
    (350, 200),
    (750, 500),
    (1500, SECOND),
    (3500, 2 * SECOND),
    (7500, 5 * SECOND),
    (12500, 10 * SECOND),
    (17500, 15 * SECOND),
    (25000, 20 * SECOND),
    (45000, 30 * SECOND),
    (90000, MINUTE),
    (210000, 2 * MINUTE),
    (450000, 5 * MINUTE),
    (750000, 10 * MINUTE),
    (1050000, 15 * MINUTE),
    (1500000, 20 * MINUTE),
    (2700000, 30 * MINUTE),
    (5400000, HOUR),
    (9000000, 2 * HOUR),
    (16200000, 3 * HOUR),
    (32400000, 6 * HOUR),
    (86400000, 12 * HOUR),
    (172800000, DAY),
    (604800000, DAY),
    (1814400000, WEEK),
]


class Interval(NamedTuple):
    text: str
    milliseconds: int


def parse_interval(value: str) -> int:
    """Parse '10s', '>1m', '500ms' or a bare number of seconds into milliseconds."""
    text = (value or "").strip().lstrip(">").strip()
    match = _INTERVAL_RE.match(text)
    if not match:
        raise QueryParseError(f"invalid interval: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _UNITS[unit or "s"]


def round_interval(ms: float) -> int:
    for bound, rounded in _ROUNDING:
        if ms <= bound:
            return rounded
    if ms < 3628800000:
        return 30 * DAY
    return YEAR


def format_duration(ms: int) -> str:
    for unit, size in (("y", YEAR), ("d", DAY), ("h", HOUR), ("m", MINUTE), ("s", SECOND), ("ms", 1)):
        if ms >= size:
            return f"{ms // size}{unit}"
    return "1ms"


def calculate(
    time_range=None,
    interval_ms: int = 0,
    max_data_points: int = 0,
    min_interval: Optional[str] = None,
) -> Interval:
    """
    Pick the $__interval for a query.

    A host supplied `interval_ms` wins; otherwise the time range is split into
    `max_data_points` buckets and rounded to a friendly value. The result is
    never smaller than `min_interval`.
    """
    minimum = parse_interval(min_interval) if min_interval else DEFAULT_MIN_INTERVAL_MS

    if interval_ms:
        candidate = int(interval_ms)
    elif time_range is not None:
        resolution = max_data_points or DEFAULT_RESOLUTION
        span_ms = time_range.duration().total_seconds() * 1000
        candidate = round_interval(span_ms / resolution)
    else:
        candidate = minimum

    candidate = max(candidate, minimum)
    return Interval(format_duration(candidate), candidate)
