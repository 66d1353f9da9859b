"""Utilities for working with timestamps in UTC."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Optional, Union

Number = Union[int, float]
Scalar = Union[Number, str]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware ``datetime`` in UTC."""

    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalise ``dt`` to a timezone-aware UTC ``datetime``."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_epoch_seconds(value: Optional[Scalar]) -> Optional[datetime]:
    """Convert ``value`` representing epoch seconds to a UTC ``datetime``."""

    if value in (None, "", b""):
        return None
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_epoch_seconds(dt: Optional[datetime]) -> Optional[float]:
    """Return the epoch seconds for ``dt`` normalised to UTC."""

    if dt is None:
        return None
    dt_utc = ensure_utc(dt)
    return dt_utc.timestamp()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Return a UTC ``datetime`` for ISO 8601 text, dates or epoch seconds.

    Appointment and invoice documents carry timestamps written by several
    clients, so a trailing ``Z``, a bare date and numeric epochs are all
    accepted.  Unparseable input yields ``None``.
    """

    if value in (None, "", b""):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch_seconds(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return from_epoch_seconds(text)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Return ISO 8601 text for ``dt`` using a ``Z`` suffix for UTC."""

    if dt is None:
        return None
    text = ensure_utc(dt).isoformat()
    if text.endswith("+00:00"):
        return text[:-6] + "Z"
    return text


__all__ = [
    "utc_now",
    "ensure_utc",
    "from_epoch_seconds",
    "to_epoch_seconds",
    "parse_timestamp",
    "to_iso",
]
