"""Timestamp helpers shared by the aggregation modules."""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from dateutil import parser as date_parser

LOGGER = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59, 999999)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an API timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. Anything that cannot be parsed yields
    ``None`` so callers can treat it as absent.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = date_parser.isoparse(value.strip())
        except (ValueError, TypeError):
            try:
                dt = date_parser.parse(value)
            except (ValueError, TypeError, OverflowError):
                LOGGER.debug("Ignoring unparsable timestamp %r", value)
                return None
    else:
        LOGGER.debug("Ignoring non-string timestamp %r", value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_filter_date(value: Any, *, end_of_day: bool = False) -> Optional[datetime]:
    """Expand a filter date to the start or end of its UTC day.

    ``2024-03-01`` becomes midnight for a range start and 23:59:59.999999
    for a range end. Values carrying a time component are used as given.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return parse_timestamp(value)
    if isinstance(value, date):
        day = value
    else:
        text = str(value).strip()
        if len(text) == 10:
            try:
                day = date.fromisoformat(text)
            except ValueError:
                LOGGER.debug("Ignoring unparsable filter date %r", value)
                return None
        else:
            return parse_timestamp(text)
    moment = END_OF_DAY if end_of_day else time.min
    return datetime.combine(day, moment, tzinfo=timezone.utc)


def hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    """Return ``end - start`` in hours rounded to two decimals."""
    if start is None or end is None:
        return None
    return round((end - start).total_seconds() / 3600.0, 2)


def days_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 86400.0
