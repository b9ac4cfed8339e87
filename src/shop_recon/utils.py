"""Shared utilities for the reconciliation pipeline.

Date parsing, local-date conversion, money parsing and rounding, and
small helpers for platform identifiers.

Examples:
    >>> from shop_recon.utils import parse_date, iter_dates
    >>> list(iter_dates(parse_date("2024-03-01"), parse_date("2024-03-03")))
    [datetime.date(2024, 3, 1), datetime.date(2024, 3, 2), datetime.date(2024, 3, 3)]

"""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

CENT = Decimal("0.01")

# Two-decimal tolerance used by every identity check
TOLERANCE = Decimal("0.01")

_GID_RE = re.compile(r"^gid://[^/]+/[^/]+/(?P<id>[^/?]+)")
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def parse_date(s: str) -> date:
    """Parse a date string in YYYY-MM-DD format.

    Args:
        s: Date string in ISO format (YYYY-MM-DD).

    Returns:
        Parsed date object.

    Raises:
        ValueError: If the date string is not in YYYY-MM-DD format.

    Examples:
        >>> parse_date("2023-01-15")
        datetime.date(2023, 1, 15)

    """
    return datetime.strptime(s, "%Y-%m-%d").date()


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive timestamps are taken to be UTC. A trailing ``Z`` is accepted.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        ValueError: If the name is not a known timezone.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone '{name}'") from None


def to_local_date(ts: datetime, tz: str | ZoneInfo) -> date:
    """Return the calendar date of ``ts`` in timezone ``tz``.

    Examples:
        >>> ts = parse_timestamp("2024-03-01T23:30:00Z")
        >>> to_local_date(ts, "Europe/Stockholm")
        datetime.date(2024, 3, 2)

    """
    zone = get_timezone(tz) if isinstance(tz, str) else tz
    return ts.astimezone(zone).date()


def local_day_bounds(day: date, tz: str | ZoneInfo) -> tuple[datetime, datetime]:
    """Return the UTC instants of the start and end of ``day`` in ``tz``."""
    zone = get_timezone(tz) if isinstance(tz, str) else tz
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day, time.max, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def to_decimal(value: Any) -> Decimal:
    """Convert a source amount to Decimal without passing through float.

    Raises:
        ValueError: If the value is missing or is not a number.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not an amount: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round to two decimal places, half up.

    Examples:
        >>> round_money(Decimal("10.005"))
        Decimal('10.01')

    """
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(a: Decimal, b: Decimal, tolerance: Decimal = TOLERANCE) -> bool:
    """Check that two amounts differ by no more than ``tolerance``."""
    return abs(a - b) <= tolerance


def gid_tail(value: Any) -> str | None:
    """Reduce a GraphQL global id to its numeric tail.

    Examples:
        >>> gid_tail("gid://shopify/Order/5512")
        '5512'
        >>> gid_tail(5512)
        '5512'

    """
    if value is None or value == "":
        return None
    text = str(value)
    match = _GID_RE.match(text)
    return match.group("id") if match else text


def normalize_shop_domain(shop: str) -> str:
    """Normalize a shop identifier to its bare ``*.myshopify.com`` host.

    Strips the scheme, a leading ``www.`` and any path, lowercases the
    host, and appends ``.myshopify.com`` to a bare shop handle.

    Examples:
        >>> normalize_shop_domain("https://www.My-Shop.myshopify.com/")
        'my-shop.myshopify.com'
        >>> normalize_shop_domain("my-shop")
        'my-shop.myshopify.com'

    """
    host = _SCHEME_RE.sub("", shop.strip()).split("/", 1)[0].lower()
    if host.startswith("www."):
        host = host[4:]
    if host and "." not in host:
        host = f"{host}.myshopify.com"
    return host


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as a human-readable string.

    Args:
        seconds: Duration in seconds (can be fractional).

    Returns:
        Formatted string like "5m 30.5s" or "45.2s".

    Examples:
        >>> format_duration(90.5)
        '1m 30.5s'
        >>> format_duration(45.2)
        '45.2s'

    """
    mins, secs = divmod(seconds, 60.0)
    if mins >= 1:
        return f"{int(mins)}m {secs:04.1f}s"
    else:
        return f"{secs:.1f}s"
