"""Conversion between helpdesk duration text and numeric units.

The helpdesk reports durations as free text such as ``"20 days 04:40 hrs"``,
``"04:40 hrs"`` or ``"5 hrs"``. Patterns are tried in that order; the first
match wins.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)

_DAYS_PATTERN = re.compile(r"(\d+)\s*days?\s+(\d{1,2}):(\d{2})(?:\s*hrs?)?", re.IGNORECASE)
_CLOCK_PATTERN = re.compile(r"(\d+):(\d{2})(?:\s*hrs?)?", re.IGNORECASE)
_NUMBER_PATTERN = re.compile(r"(\d+(?:\.\d+)?)")
_STRICT_CLOCK_PATTERN = re.compile(r"^(\d+):(\d{2})\s*hrs$", re.IGNORECASE)

PLACEHOLDER = "-"


def _match_hours(text: Any) -> Optional[float]:
    if not isinstance(text, str):
        return None
    cleaned = text.strip()
    if not cleaned:
        return None
    match = _DAYS_PATTERN.search(cleaned)
    if match:
        days, hours, minutes = (int(group) for group in match.groups())
        return days * 24 + hours + minutes / 60.0
    match = _CLOCK_PATTERN.search(cleaned)
    if match:
        hours, minutes = (int(group) for group in match.groups())
        return hours + minutes / 60.0
    match = _NUMBER_PATTERN.search(cleaned)
    if match:
        return float(match.group(1))
    return None


def parse_duration_to_hours(text: Any) -> float:
    """Return the duration in decimal hours, or ``0.0`` when unparsable."""
    hours = _match_hours(text)
    if hours is None:
        if text not in (None, ""):
            LOGGER.debug("Unparsable duration %r treated as zero hours", text)
        return 0.0
    return hours


def minutes_from_duration_text(text: Any) -> Optional[int]:
    """Return whole minutes for a duration, or ``None`` when absent.

    Accepts the ``"H:MM"`` strings produced by :func:`format_minutes_as_hm`
    as well as the raw API formats.
    """
    hours = _match_hours(text)
    if hours is None:
        return None
    return int(round(hours * 60))


def format_minutes_as_hm(minutes: Optional[float], placeholder: str = PLACEHOLDER) -> str:
    """Render minutes as ``"H:MM"``.

    ``None`` means no measurement and renders as ``placeholder``; a measured
    zero renders as ``"0:00"``.
    """
    if minutes is None:
        return placeholder
    total = max(int(round(minutes)), 0)
    hours, remainder = divmod(total, 60)
    return f"{hours}:{remainder:02d}"


def format_hours_as_hm(hours: Optional[float], placeholder: str = PLACEHOLDER) -> str:
    if hours is None:
        return placeholder
    return format_minutes_as_hm(hours * 60, placeholder)


def add_duration(start: Optional[datetime], text: Any) -> Optional[datetime]:
    """Offset ``start`` by a strict ``"H:MM hrs"`` duration.

    Used to derive the first response timestamp from the created time.
    """
    if start is None or not isinstance(text, str):
        return None
    match = _STRICT_CLOCK_PATTERN.match(text.strip())
    if not match:
        return None
    hours, minutes = (int(group) for group in match.groups())
    return start + timedelta(hours=hours, minutes=minutes)
