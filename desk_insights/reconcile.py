"""Ticket records, metric records and the active/archived merge."""
from __future__ import annotations

import locale
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .dates import hours_between, parse_timestamp
from .statuses import is_escalated_flag, is_resolved_like, is_unassigned, normalize_status

LOGGER = logging.getLogger(__name__)

SOURCE_ARCHIVED = "archived"
SOURCE_ACTIVE_CLOSED = "activeClosed"
SOURCE_ACTIVE = "active"

UNASSIGNED_AGENT_NAME = "Unassigned"
ALL_DEPARTMENTS = "All Departments"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_count(value: Any) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def _as_sequence(value: Any) -> Tuple[Any, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return ()


def name_sort_key(name: Any) -> str:
    """Case-insensitive collation key for display names under the active locale."""
    return locale.strxfrm(_text(name).casefold())


def _embedded_name(assignee: Any) -> str:
    if not isinstance(assignee, dict):
        return ""
    for key in ("displayName", "fullName", "name", "email"):
        value = _text(assignee.get(key))
        if value:
            return value
    return ""


@dataclass(frozen=True)
class Department:
    id: str
    name: str


@dataclass(frozen=True)
class TicketRecord:
    """Normalised view of a helpdesk ticket payload."""

    id: str
    ticket_number: str
    status: str
    created_time: Optional[datetime]
    closed_time: Optional[datetime]
    assignee_id: Optional[str]
    embedded_assignee_name: str
    assignee_name: str
    department_id: str
    subject: str
    is_escalated: bool
    source: str

    @classmethod
    def from_api(cls, payload: Dict[str, Any], source: Optional[str] = None) -> "TicketRecord":
        status = _text(payload.get("status"))
        resolved = is_resolved_like(status)
        if source is None:
            source = SOURCE_ACTIVE_CLOSED if resolved else SOURCE_ACTIVE
        closed_time = parse_timestamp(payload.get("closedTime"))
        if closed_time is None and resolved:
            closed_time = parse_timestamp(payload.get("lastModifiedTime"))
        # Without an id the ticket number is the only stable identity.
        ticket_id = _text(payload.get("id")) or _text(payload.get("ticketNumber"))
        assignee_id = payload.get("assigneeId")
        return cls(
            id=ticket_id,
            ticket_number=_text(payload.get("ticketNumber")) or ticket_id,
            status=status,
            created_time=parse_timestamp(payload.get("createdTime")),
            closed_time=closed_time,
            assignee_id=None if is_unassigned(assignee_id) else _text(assignee_id),
            embedded_assignee_name=_embedded_name(payload.get("assignee")),
            assignee_name=_text(payload.get("assigneeName")),
            department_id=_text(payload.get("departmentId")),
            subject=_text(payload.get("subject")),
            is_escalated=is_escalated_flag(payload.get("isEscalated"), payload.get("escalated")),
            source=source,
        )

    @property
    def canonical_status(self) -> str:
        return normalize_status(self.status)

    @property
    def is_resolved(self) -> bool:
        return is_resolved_like(self.status)

    @property
    def is_unassigned(self) -> bool:
        return self.assignee_id is None


@dataclass(frozen=True)
class TicketMetrics:
    """Per-ticket metrics as returned by ``/tickets/{id}/metrics``."""

    ticket_number: str
    first_response_time: Optional[str]
    resolution_time: Optional[str]
    total_response_time: Optional[str]
    thread_count: int = 0
    response_count: int = 0
    outgoing_count: int = 0
    reopen_count: int = 0
    reassign_count: int = 0
    staging_data: Tuple[Any, ...] = ()
    agents_handled: Tuple[Any, ...] = ()

    @classmethod
    def from_api(cls, payload: Dict[str, Any], ticket_number: Optional[str] = None) -> "TicketMetrics":
        number = _text(ticket_number) or _text(payload.get("ticketNumber")) or _text(payload.get("id"))
        return cls(
            ticket_number=number,
            first_response_time=_text(payload.get("firstResponseTime")) or None,
            resolution_time=_text(payload.get("resolutionTime")) or None,
            total_response_time=_text(payload.get("totalResponseTime")) or None,
            thread_count=_as_count(payload.get("threadCount")),
            response_count=_as_count(payload.get("responseCount")),
            outgoing_count=_as_count(payload.get("outgoingCount")),
            reopen_count=_as_count(payload.get("reopenCount")),
            reassign_count=_as_count(payload.get("reassignCount")),
            staging_data=_as_sequence(payload.get("stagingData")),
            agents_handled=_as_sequence(payload.get("agentsHandled")),
        )


TicketInput = Union[TicketRecord, Dict[str, Any]]


def _coerce(item: TicketInput, source: Optional[str]) -> TicketRecord:
    if isinstance(item, TicketRecord):
        return item
    return TicketRecord.from_api(item, source=source)


def reconcile(
    active: Iterable[TicketInput],
    archived: Iterable[TicketInput],
    *,
    resolved_only: bool = False,
) -> List[TicketRecord]:
    """Merge archived and active tickets into one deduplicated list.

    Archived entries are placed first so they win when both sources carry
    the same ticket id. With ``resolved_only`` only resolved-like tickets are
    kept, which is the shape of the closed ticket table.
    """
    candidates = [_coerce(item, SOURCE_ARCHIVED) for item in archived]
    candidates.extend(_coerce(item, None) for item in active)
    if resolved_only:
        candidates = [ticket for ticket in candidates if ticket.is_resolved]

    seen = set()
    merged: List[TicketRecord] = []
    for ticket in candidates:
        if not ticket.id:
            LOGGER.warning("Skipping ticket payload without an id or ticket number")
            continue
        if ticket.id in seen:
            continue
        seen.add(ticket.id)
        merged.append(ticket)
    assert len({ticket.id for ticket in merged}) == len(merged), "duplicate ticket ids after reconcile"
    LOGGER.debug(
        "Reconciled %s candidate tickets into %s unique tickets", len(candidates), len(merged)
    )
    return merged


def build_agent_name_map(users: Iterable[Dict[str, Any]]) -> Dict[str, str]:
    """Map user ids to the best available display name."""
    name_map: Dict[str, str] = {}
    for user in users:
        user_id = _text(user.get("id"))
        if not user_id:
            continue
        name_map[user_id] = _embedded_name(user) or "Unknown"
    return name_map


def resolve_agent_name(ticket: TicketRecord, name_map: Mapping[str, str]) -> str:
    """Resolve the display name used for a ticket's assignee.

    Tries the name map first, then the embedded assignee object, then the
    flat ``assigneeName`` field before falling back to ``"Unassigned"``.
    """
    if ticket.assignee_id:
        mapped = name_map.get(ticket.assignee_id)
        if mapped:
            return mapped
    return ticket.embedded_assignee_name or ticket.assignee_name or UNASSIGNED_AGENT_NAME


def department_names(departments: Iterable[Department]) -> Dict[str, str]:
    return {department.id: department.name for department in departments}


def resolve_department_name(department_id: Optional[str], departments: Iterable[Department]) -> str:
    """Return the department name for ``department_id`` or ``""`` when unknown."""
    if not department_id:
        return ""
    return department_names(departments).get(str(department_id), "")


@dataclass(frozen=True)
class ClosedTicketRow:
    id: str
    ticket_number: str
    status: str
    agent_id: str
    agent_name: str
    department_id: str
    department_name: str
    subject: str
    created_time: Optional[datetime]
    closed_time: Optional[datetime]
    resolution_hours: Optional[float]
    first_response_time: str
    source: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def index_metrics(metrics: Iterable[TicketMetrics]) -> Dict[str, TicketMetrics]:
    return {item.ticket_number: item for item in metrics if item.ticket_number}


def build_closed_rows(
    tickets: Sequence[TicketRecord],
    metrics: Iterable[TicketMetrics],
    name_map: Mapping[str, str],
    departments: Iterable[Department],
) -> List[ClosedTicketRow]:
    """Project reconciled closed tickets into the closed ticket table.

    Rows carry calendar resolution hours and the first response text from
    the metrics records. The latest closure comes first; rows without a
    closure time go last.
    """
    metrics_by_number = index_metrics(metrics)
    names = department_names(departments)
    rows: List[ClosedTicketRow] = []
    for ticket in tickets:
        ticket_metrics = metrics_by_number.get(ticket.ticket_number)
        rows.append(
            ClosedTicketRow(
                id=ticket.id,
                ticket_number=ticket.ticket_number,
                status=ticket.status or "closed",
                agent_id=ticket.assignee_id or "",
                agent_name=resolve_agent_name(ticket, name_map),
                department_id=ticket.department_id,
                department_name=names.get(ticket.department_id, ""),
                subject=ticket.subject,
                created_time=ticket.created_time,
                closed_time=ticket.closed_time,
                resolution_hours=hours_between(ticket.created_time, ticket.closed_time),
                first_response_time=(ticket_metrics.first_response_time or "") if ticket_metrics else "",
                source=ticket.source,
            )
        )
    rows.sort(
        key=lambda row: row.closed_time.timestamp() if row.closed_time else float("-inf"),
        reverse=True,
    )
    return rows
