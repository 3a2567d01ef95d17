"""Open ticket aging, status totals and the pending ticket table."""
from __future__ import annotations

import logging
import math
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .dates import days_between
from .reconcile import Department, TicketRecord, department_names, name_sort_key, resolve_agent_name
from .statuses import (
    AGEABLE_STATUSES,
    CLOSED,
    ESCALATED,
    HOLD,
    IN_PROGRESS,
    OPEN,
    STATUS_SORT_ORDER,
    UNASSIGNED,
    status_bucket,
)

LOGGER = logging.getLogger(__name__)

FINE = "fine"
COARSE = "coarse"

BUCKET_LABELS: Dict[str, Tuple[str, str, str]] = {
    FINE: ("1-7", "8-15", "15+"),
    COARSE: ("1-15", "16-30", "30+"),
}

UNASSIGNED_AGENT_ID = "unassigned"
NO_DEPARTMENT_ID = "no_department"


def age_in_days(created_time: Optional[datetime], now: datetime) -> Optional[float]:
    return days_between(created_time, now)


def bucket_for_age(age_days: Optional[float], granularity: str) -> Optional[str]:
    """Return the bucket label for an age, or ``None`` when it falls outside.

    The boundaries are evaluated as an if/elif chain. With the coarse
    granularity an age in ``[30, 31)`` therefore lands in ``16-30``.
    """
    try:
        first, second, third = BUCKET_LABELS[granularity]
    except KeyError:
        raise ValueError(f"Unknown aging granularity: {granularity!r}") from None
    if age_days is None or age_days < 0:
        return None
    if granularity == FINE:
        if age_days < 8:
            return first
        if age_days < 16:
            return second
        return third
    if age_days < 16:
        return first
    if 16 <= age_days < 31:
        return second
    if age_days > 30:
        return third
    return None


class BucketKey(NamedTuple):
    agent_id: str
    department_id: str
    granularity: str
    bucket: str
    status: str


class BucketEntry:
    """Ticket numbers collected for one bucket key."""

    __slots__ = ("_ticket_numbers",)

    def __init__(self) -> None:
        self._ticket_numbers: List[str] = []

    def accumulate(self, ticket_number: str) -> None:
        self._ticket_numbers.append(ticket_number)

    @property
    def ticket_numbers(self) -> Tuple[str, ...]:
        return tuple(self._ticket_numbers)

    @property
    def count(self) -> int:
        return len(self._ticket_numbers)

    def __repr__(self) -> str:
        return f"BucketEntry(count={self.count}, ticket_numbers={self._ticket_numbers!r})"


def _union(groups: Iterable[Iterable[str]]) -> Tuple[str, ...]:
    merged: "OrderedDict[str, None]" = OrderedDict()
    for group in groups:
        for number in group:
            merged.setdefault(number, None)
    return tuple(merged)


class AgingTable:
    """Bucketed ticket numbers keyed by agent, department, bucket and status."""

    def __init__(self) -> None:
        self._entries: Dict[BucketKey, BucketEntry] = {}
        self._agent_names: Dict[str, str] = {}

    def accumulate(self, key: BucketKey, ticket_number: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = BucketEntry()
        entry.accumulate(ticket_number)

    def register_agent(self, agent_id: str, name: str) -> None:
        self._agent_names.setdefault(agent_id, name)

    def agent_name(self, agent_id: str) -> str:
        return self._agent_names.get(agent_id, agent_id)

    def entries(self) -> Iterator[Tuple[BucketKey, BucketEntry]]:
        return iter(self._entries.items())

    def agent_ids(self) -> List[str]:
        return list(OrderedDict.fromkeys(key.agent_id for key in self._entries))

    def tickets(
        self,
        agent_id: str,
        granularity: str,
        bucket: str,
        status: str,
        department_id: Optional[str] = None,
    ) -> Tuple[str, ...]:
        """Tickets for an agent; without a department, the union across all of them."""
        if department_id is not None:
            entry = self._entries.get(BucketKey(agent_id, department_id, granularity, bucket, status))
            return entry.ticket_numbers if entry else ()
        return _union(
            entry.ticket_numbers
            for key, entry in self._entries.items()
            if key.agent_id == agent_id
            and key.granularity == granularity
            and key.bucket == bucket
            and key.status == status
        )

    def count(
        self,
        agent_id: str,
        granularity: str,
        bucket: str,
        status: str,
        department_id: Optional[str] = None,
    ) -> int:
        return len(self.tickets(agent_id, granularity, bucket, status, department_id))

    def department_tickets(
        self, department_id: str, granularity: str, bucket: str, status: str
    ) -> Tuple[str, ...]:
        """Tickets in a department bucket, unioned across agents."""
        return _union(
            entry.ticket_numbers
            for key, entry in self._entries.items()
            if key.department_id == department_id
            and key.granularity == granularity
            and key.bucket == bucket
            and key.status == status
        )

    def __len__(self) -> int:
        return len(self._entries)


def _agent_key(ticket: TicketRecord) -> str:
    return ticket.assignee_id or UNASSIGNED_AGENT_ID


def build_aging_table(
    tickets: Iterable[TicketRecord],
    now: datetime,
    name_map: Optional[Mapping[str, str]] = None,
) -> AgingTable:
    """Bucket every ageable ticket under both granularities."""
    name_map = name_map or {}
    table = AgingTable()
    skipped = 0
    for ticket in tickets:
        status = ticket.canonical_status
        if status not in AGEABLE_STATUSES:
            continue
        age = age_in_days(ticket.created_time, now)
        if age is None:
            skipped += 1
            continue
        agent_id = _agent_key(ticket)
        table.register_agent(agent_id, resolve_agent_name(ticket, name_map))
        department_id = ticket.department_id or NO_DEPARTMENT_ID
        for granularity in (FINE, COARSE):
            bucket = bucket_for_age(age, granularity)
            if bucket is None:
                continue
            table.accumulate(
                BucketKey(agent_id, department_id, granularity, bucket, status),
                ticket.ticket_number,
            )
    if skipped:
        LOGGER.debug("Skipped %s ageable tickets without a usable created time", skipped)
    return table


@dataclass(frozen=True)
class AgeRow:
    """One line of an agent or department aging table."""

    key: str
    name: str
    granularity: str
    tickets: Dict[str, Dict[str, Tuple[str, ...]]] = field(default_factory=dict)

    def count(self, status: str, bucket: str) -> int:
        return len(self.tickets.get(status, {}).get(bucket, ()))

    def status_total(self, status: str) -> int:
        return sum(len(numbers) for numbers in self.tickets.get(status, {}).values())

    def bucket_total(self, bucket: str) -> int:
        return sum(len(by_bucket.get(bucket, ())) for by_bucket in self.tickets.values())

    @property
    def total(self) -> int:
        return sum(self.status_total(status) for status in self.tickets)

    def as_dict(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "name": self.name,
            "granularity": self.granularity,
            "counts": {
                status: {bucket: len(numbers) for bucket, numbers in by_bucket.items()}
                for status, by_bucket in self.tickets.items()
            },
            "tickets": {
                status: {bucket: list(numbers) for bucket, numbers in by_bucket.items()}
                for status, by_bucket in self.tickets.items()
            },
            "total": self.total,
        }


def agent_age_rows(
    table: AgingTable,
    granularity: str,
    department_id: Optional[str] = None,
) -> List[AgeRow]:
    """Agent-wise aging rows; agents with nothing in scope are omitted."""
    labels = BUCKET_LABELS[granularity]
    rows: List[AgeRow] = []
    for agent_id in table.agent_ids():
        tickets = {
            status: {
                bucket: table.tickets(agent_id, granularity, bucket, status, department_id)
                for bucket in labels
            }
            for status in AGEABLE_STATUSES
        }
        row = AgeRow(key=agent_id, name=table.agent_name(agent_id), granularity=granularity, tickets=tickets)
        if row.total:
            rows.append(row)
    rows.sort(key=lambda row: name_sort_key(row.name))
    return rows


def department_age_rows(
    table: AgingTable,
    departments: Sequence[Department],
    granularity: str,
) -> List[AgeRow]:
    labels = BUCKET_LABELS[granularity]
    return [
        AgeRow(
            key=department.id,
            name=department.name,
            granularity=granularity,
            tickets={
                status: {
                    bucket: table.department_tickets(department.id, granularity, bucket, status)
                    for bucket in labels
                }
                for status in AGEABLE_STATUSES
            },
        )
        for department in departments
    ]


@dataclass(frozen=True)
class StatusTotals:
    open: int = 0
    hold: int = 0
    in_progress: int = 0
    escalated: int = 0
    closed: int = 0
    unassigned: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            OPEN: self.open,
            HOLD: self.hold,
            IN_PROGRESS: self.in_progress,
            ESCALATED: self.escalated,
            CLOSED: self.closed,
            UNASSIGNED: self.unassigned,
        }


_TOTALS_FIELDS = {
    OPEN: "open",
    HOLD: "hold",
    IN_PROGRESS: "in_progress",
    ESCALATED: "escalated",
    CLOSED: "closed",
    UNASSIGNED: "unassigned",
}


def _count_status(counters: Dict[str, Counter], group: str, ticket: TicketRecord) -> None:
    if ticket.is_unassigned:
        if ticket.canonical_status == CLOSED:
            return
        counters.setdefault(group, Counter())[UNASSIGNED] += 1
        return
    bucket = status_bucket(ticket.status, ticket.is_escalated)
    counter = counters.setdefault(group, Counter())
    if bucket in (ESCALATED, OPEN, HOLD, CLOSED, IN_PROGRESS):
        counter[bucket] += 1


def _freeze_totals(counters: Dict[str, Counter]) -> Dict[str, StatusTotals]:
    return {
        group: StatusTotals(**{_TOTALS_FIELDS[status]: count for status, count in counter.items()})
        for group, counter in counters.items()
    }


def status_totals(tickets: Iterable[TicketRecord]) -> Dict[str, StatusTotals]:
    """Per-agent status counters.

    Unassigned tickets are counted under the ``unassigned`` pseudo agent,
    except closed ones which are not counted at all. For assigned tickets
    the escalation flag takes precedence over the base status.
    """
    counters: Dict[str, Counter] = {}
    for ticket in tickets:
        _count_status(counters, _agent_key(ticket), ticket)
    return _freeze_totals(counters)


def department_status_totals(
    tickets: Iterable[TicketRecord],
    departments: Sequence[Department],
) -> Dict[str, StatusTotals]:
    known = {department.id for department in departments}
    counters: Dict[str, Counter] = {department.id: Counter() for department in departments}
    for ticket in tickets:
        if ticket.department_id not in known:
            continue
        _count_status(counters, ticket.department_id, ticket)
    return _freeze_totals(counters)


@dataclass(frozen=True)
class PendingTicketRow:
    agent_id: str
    agent_name: str
    department_id: str
    department_name: str
    status: str
    status_rank: int
    ticket_number: str
    created_time: Optional[datetime]
    days_open: Optional[int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "department_id": self.department_id,
            "department_name": self.department_name,
            "status": self.status,
            "ticket_number": self.ticket_number,
            "created_time": self.created_time,
            "days_open": self.days_open,
        }


def _days_open(created_time: Optional[datetime], now: datetime) -> Optional[int]:
    days = days_between(created_time, now)
    if days is None:
        return None
    if days < 1:
        return 0
    return int(math.floor(days))


def build_pending_rows(
    tickets: Iterable[TicketRecord],
    now: datetime,
    name_map: Mapping[str, str],
    departments: Sequence[Department],
) -> List[PendingTicketRow]:
    """Assigned tickets that are not resolved, ordered by agent then status."""
    names = department_names(departments)
    rows: List[PendingTicketRow] = []
    for ticket in tickets:
        if ticket.is_unassigned or ticket.is_resolved:
            continue
        status = ticket.canonical_status
        rows.append(
            PendingTicketRow(
                agent_id=ticket.assignee_id or "",
                agent_name=resolve_agent_name(ticket, name_map),
                department_id=ticket.department_id,
                department_name=names.get(ticket.department_id, ""),
                status=ticket.status,
                status_rank=STATUS_SORT_ORDER.get(status, 99),
                ticket_number=ticket.ticket_number,
                created_time=ticket.created_time,
                days_open=_days_open(ticket.created_time, now),
            )
        )
    rows.sort(key=lambda row: (name_sort_key(row.agent_name), row.status_rank))
    return rows


def pending_counts(rows: Iterable[PendingTicketRow]) -> Dict[str, int]:
    """Distinct pending tickets per agent name."""
    seen: Dict[str, set] = {}
    for row in rows:
        seen.setdefault(row.agent_name, set()).add(row.ticket_number)
    return {name: len(numbers) for name, numbers in seen.items()}


def unassigned_ticket_numbers(tickets: Iterable[TicketRecord]) -> List[str]:
    return [
        ticket.ticket_number
        for ticket in tickets
        if ticket.is_unassigned and ticket.canonical_status != CLOSED and ticket.ticket_number
    ]
