"""Canonical ticket status vocabulary."""
from __future__ import annotations

from typing import Any, Dict, FrozenSet, Optional, Tuple

OPEN = "open"
HOLD = "hold"
IN_PROGRESS = "inProgress"
ESCALATED = "escalated"
CLOSED = "closed"
UNASSIGNED = "unassigned"

STATUS_MAP: Dict[str, str] = {
    "open": OPEN,
    "on hold": HOLD,
    "hold": HOLD,
    "closed": CLOSED,
    "in progress": IN_PROGRESS,
    "inprogress": IN_PROGRESS,
    "in_progress": IN_PROGRESS,
    "escalated": ESCALATED,
    "unassigned": UNASSIGNED,
    "": UNASSIGNED,
}

# Statuses that participate in aging buckets, in display order.
AGEABLE_STATUSES: Tuple[str, ...] = (OPEN, HOLD, IN_PROGRESS, ESCALATED)

# Ordering used by the pending ticket table.
STATUS_SORT_ORDER: Dict[str, int] = {
    OPEN: 0,
    HOLD: 1,
    IN_PROGRESS: 2,
    ESCALATED: 3,
    UNASSIGNED: 4,
    CLOSED: 5,
}

RESOLVED_STATUSES: FrozenSet[str] = frozenset({"resolved", "closed", "archived", "completed"})

_UNASSIGNED_MARKERS = frozenset({"", "none", "null"})


def normalize_status(raw: Any) -> str:
    """Map a raw API status onto the canonical vocabulary.

    Unknown values are passed through lowercased so they remain visible in
    detail tables.
    """
    text = "" if raw is None else str(raw).strip().lower()
    return STATUS_MAP.get(text, text)


def is_resolved_like(raw: Any) -> bool:
    text = "" if raw is None else str(raw).strip().lower()
    return text in RESOLVED_STATUSES


def is_escalated_flag(is_escalated: Any = None, escalated: Any = None) -> bool:
    """Interpret the two escalation fields the API may send."""
    return is_escalated is True or str(escalated).lower() == "true"


def status_bucket(raw: Any, escalated: bool = False) -> str:
    """Return the single counting bucket for a ticket.

    The escalation flag overrides the base status. The raw status should
    still be shown wherever the ticket is displayed individually.
    """
    canonical = normalize_status(raw)
    if escalated or canonical == ESCALATED:
        return ESCALATED
    return canonical


def is_unassigned(assignee_id: Optional[Any]) -> bool:
    if assignee_id is None:
        return True
    return str(assignee_id).strip().lower() in _UNASSIGNED_MARKERS
