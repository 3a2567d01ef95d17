"""Filtering, ordering and pagination of result rows for display."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Collection, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .dates import parse_filter_date, parse_timestamp
from .reconcile import TicketRecord, name_sort_key
from .statuses import normalize_status

RowT = TypeVar("RowT")

DEFAULT_PAGE_SIZES = {
    "metrics": 200,
    "closed": 500,
    "performance": 100,
}


def field_value(row: Any, name: str) -> Any:
    """Read ``name`` from a mapping row or an attribute-style row."""
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


@dataclass
class ViewFilter:
    """Optional filter clauses; an unset or empty clause matches everything."""

    agent_names: Optional[Collection[str]] = None
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    statuses: Optional[Collection[str]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    query: Optional[str] = None
    date_field: str = "created_time"
    agent_field: str = "agent_name"
    department_id_field: str = "department_id"
    department_name_field: str = "department_name"
    status_field: str = "status"
    ticket_field: str = "ticket_number"
    text_fields: Tuple[str, ...] = field(default_factory=lambda: ("agent_name",))

    @property
    def start(self) -> Optional[datetime]:
        return parse_filter_date(self.start_date)

    @property
    def end(self) -> Optional[datetime]:
        return parse_filter_date(self.end_date, end_of_day=True)


def _matches_department(row: Any, view_filter: ViewFilter) -> bool:
    wanted_id = (view_filter.department_id or "").strip()
    wanted_name = (view_filter.department_name or "").strip()
    if not wanted_id and not wanted_name:
        return True
    row_id = str(field_value(row, view_filter.department_id_field) or "")
    row_name = str(field_value(row, view_filter.department_name_field) or "")
    if wanted_id and row_id == wanted_id:
        return True
    if wanted_name and row_name == wanted_name:
        return True
    return False


def _matches_dates(row: Any, start: Optional[datetime], end: Optional[datetime], date_field: str) -> bool:
    if start is None and end is None:
        return True
    moment = parse_timestamp(field_value(row, date_field))
    if moment is None:
        return False
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def matches_query(row: Any, query: Optional[str], *, ticket_field: str, text_fields: Sequence[str]) -> bool:
    """Numeric queries match a ticket number exactly; others match word prefixes."""
    needle = (query or "").strip().lower()
    if not needle:
        return True
    if needle.isdigit():
        return str(field_value(row, ticket_field) or "").strip() == needle
    for name in text_fields:
        words = str(field_value(row, name) or "").lower().split()
        if any(word.startswith(needle) for word in words):
            return True
    return False


def filter_rows(rows: Iterable[RowT], view_filter: Optional[ViewFilter]) -> List[RowT]:
    if view_filter is None:
        return list(rows)
    agents = {name for name in view_filter.agent_names or () if name}
    statuses = {normalize_status(status) for status in view_filter.statuses or () if status}
    start = view_filter.start
    end = view_filter.end

    selected: List[RowT] = []
    for row in rows:
        if agents and field_value(row, view_filter.agent_field) not in agents:
            continue
        if not _matches_department(row, view_filter):
            continue
        if statuses and normalize_status(field_value(row, view_filter.status_field)) not in statuses:
            continue
        if not _matches_dates(row, start, end, view_filter.date_field):
            continue
        if not matches_query(
            row,
            view_filter.query,
            ticket_field=view_filter.ticket_field,
            text_fields=view_filter.text_fields,
        ):
            continue
        selected.append(row)
    return selected


def activity_in_range(ticket: TicketRecord, start: Optional[datetime], end: Optional[datetime]) -> bool:
    """True when the ticket was created or closed inside the range."""
    if start is None and end is None:
        return True

    def within(moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        if start is not None and moment < start:
            return False
        if end is not None and moment > end:
            return False
        return True

    return within(ticket.created_time) or within(ticket.closed_time)


def _name_key(row: Any, name_field: str) -> str:
    return name_sort_key(field_value(row, name_field))


def _secondary_key(value: Any) -> Tuple[int, Any]:
    if value is None:
        return (1, "")
    if isinstance(value, str):
        return (0, name_sort_key(value))
    return (0, value)


def sort_rows(
    rows: Iterable[RowT],
    *,
    name_field: str = "agent_name",
    metric: Optional[str] = None,
    then: Sequence[str] = (),
) -> List[RowT]:
    """Order rows by name, or as a leaderboard when ``metric`` is given.

    Leaderboard order is the metric descending with ties broken by name.
    Rows missing the metric go last. The sort is stable.
    """
    ordered = sorted(
        rows,
        key=lambda row: (_name_key(row, name_field),)
        + tuple(_secondary_key(field_value(row, name)) for name in then),
    )
    if metric is None:
        return ordered

    def metric_key(row: Any) -> Tuple[int, float]:
        value = field_value(row, metric)
        if value is None:
            return (1, 0.0)
        return (0, -float(value))

    return sorted(ordered, key=metric_key)


@dataclass(frozen=True)
class Page(Generic[RowT]):
    rows: List[RowT]
    page: int
    page_size: int
    total_pages: int
    total_rows: int


def paginate(rows: Sequence[RowT], page: int, page_size: int) -> Page[RowT]:
    """Slice one page out of ``rows``; out-of-range pages are clamped."""
    if page_size < 1:
        raise ValueError(f"page_size must be at least 1, got {page_size}")
    total_rows = len(rows)
    total_pages = max(1, math.ceil(total_rows / page_size))
    current = min(max(int(page), 1), total_pages)
    start = (current - 1) * page_size
    return Page(
        rows=list(rows[start:start + page_size]),
        page=current,
        page_size=page_size,
        total_pages=total_pages,
        total_rows=total_rows,
    )
