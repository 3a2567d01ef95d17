"""Per-agent performance rollups built from metrics and closed tickets."""
from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .durations import add_duration, format_hours_as_hm, format_minutes_as_hm, minutes_from_duration_text
from .reconcile import (
    ALL_DEPARTMENTS,
    ClosedTicketRow,
    Department,
    TicketMetrics,
    TicketRecord,
    department_names,
    index_metrics,
    name_sort_key,
    resolve_agent_name,
)
from .statuses import ESCALATED, HOLD, IN_PROGRESS, OPEN, is_resolved_like, status_bucket

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricRow:
    """A ticket joined with its metrics record."""

    ticket_number: str
    status: str
    is_escalated: bool
    agent_name: str
    department_id: str
    department_name: str
    created_time: Optional[datetime]
    first_response_time: Optional[str]
    resolution_time: Optional[str]
    total_response_time: Optional[str]
    first_response_at: Optional[datetime]
    thread_count: int = 0
    response_count: int = 0
    outgoing_count: int = 0
    reopen_count: int = 0
    reassign_count: int = 0
    staging_data: Tuple[Any, ...] = ()
    agents_handled: Tuple[Any, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return is_resolved_like(self.status)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ticket_number": self.ticket_number,
            "status": self.status,
            "agent_name": self.agent_name,
            "department_id": self.department_id,
            "department_name": self.department_name,
            "created_time": self.created_time,
            "first_response_time": self.first_response_time or "-",
            "first_response_at": self.first_response_at,
            "resolution_time": self.resolution_time or "-",
            "total_response_time": self.total_response_time or "-",
            "thread_count": self.thread_count,
            "response_count": self.response_count,
            "outgoing_count": self.outgoing_count,
            "reopen_count": self.reopen_count,
            "reassign_count": self.reassign_count,
        }


def join_metrics(
    tickets: Iterable[TicketRecord],
    metrics: Iterable[TicketMetrics],
    name_map: Mapping[str, str],
    departments: Sequence[Department],
) -> List[MetricRow]:
    """Join tickets with their metrics; tickets without metrics are left out."""
    by_number = index_metrics(metrics)
    names = department_names(departments)
    rows: List[MetricRow] = []
    for ticket in tickets:
        record = by_number.get(ticket.ticket_number)
        if record is None:
            continue
        rows.append(
            MetricRow(
                ticket_number=ticket.ticket_number,
                status=ticket.status,
                is_escalated=ticket.is_escalated,
                agent_name=resolve_agent_name(ticket, name_map),
                department_id=ticket.department_id,
                department_name=names.get(ticket.department_id, ""),
                created_time=ticket.created_time,
                first_response_time=record.first_response_time,
                resolution_time=record.resolution_time,
                total_response_time=record.total_response_time,
                first_response_at=add_duration(ticket.created_time, record.first_response_time),
                thread_count=record.thread_count,
                response_count=record.response_count,
                outgoing_count=record.outgoing_count,
                reopen_count=record.reopen_count,
                reassign_count=record.reassign_count,
                staging_data=record.staging_data,
                agents_handled=record.agents_handled,
            )
        )
    return rows


def _average(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)


@dataclass(frozen=True)
class AgentRollup:
    agent_name: str
    tickets_created: int
    tickets_resolved: int
    pending_count: int
    open_count: int
    hold_count: int
    in_progress_count: int
    escalated_count: int
    single_touch_count: int
    avg_first_response_minutes: Optional[float]
    avg_resolution_hours: Optional[float]
    avg_sla_resolution_minutes: Optional[float]
    avg_threads: Optional[float]
    resolution_samples: int = 0
    departments: Tuple[str, ...] = ()

    @property
    def department_name(self) -> str:
        return self.departments[0] if self.departments else ALL_DEPARTMENTS

    @property
    def avg_first_response_text(self) -> str:
        return format_minutes_as_hm(self.avg_first_response_minutes)

    @property
    def avg_resolution_text(self) -> str:
        return format_hours_as_hm(self.avg_resolution_hours)

    @property
    def avg_sla_resolution_text(self) -> str:
        return format_minutes_as_hm(self.avg_sla_resolution_minutes)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "department_name": self.department_name,
            "departments": list(self.departments),
            "tickets_created": self.tickets_created,
            "tickets_resolved": self.tickets_resolved,
            "pending_count": self.pending_count,
            "open_count": self.open_count,
            "hold_count": self.hold_count,
            "in_progress_count": self.in_progress_count,
            "escalated_count": self.escalated_count,
            "single_touch_count": self.single_touch_count,
            "avg_first_response_minutes": self.avg_first_response_minutes,
            "avg_first_response_text": self.avg_first_response_text,
            "avg_resolution_hours": (
                round(self.avg_resolution_hours, 2) if self.avg_resolution_hours is not None else None
            ),
            "avg_resolution_text": self.avg_resolution_text,
            "avg_sla_resolution_text": self.avg_sla_resolution_text,
            "avg_threads": round(self.avg_threads, 2) if self.avg_threads is not None else None,
        }


@dataclass
class _AgentAccumulator:
    departments: "OrderedDict[str, None]" = field(default_factory=OrderedDict)
    resolved: set = field(default_factory=set)
    unresolved: set = field(default_factory=set)
    statuses: Dict[str, set] = field(default_factory=dict)
    first_response: Dict[str, int] = field(default_factory=dict)
    resolution_hours: Dict[str, float] = field(default_factory=dict)
    sla_resolution: Dict[str, int] = field(default_factory=dict)
    threads: Dict[str, int] = field(default_factory=dict)
    single_touch: set = field(default_factory=set)

    def add_department(self, name: str) -> None:
        if name:
            self.departments.setdefault(name, None)

    def count(self, status: str) -> int:
        return len(self.statuses.get(status, ()))


def build_agent_rollups(
    metric_rows: Iterable[MetricRow],
    pending_counts: Optional[Mapping[str, int]] = None,
    closed_rows: Iterable[ClosedTicketRow] = (),
) -> List[AgentRollup]:
    """Aggregate per-agent performance in a single pass over each input.

    Every ticket contributes at most once to each counter and average, even
    when it appears both in the metrics rows and in the closed ticket rows.
    Average resolution is calendar time taken from ``closed_rows``; the SLA
    resolution figure from the metrics records is reported separately.
    ``tickets_created`` is always resolved plus pending.
    """
    agents: Dict[str, _AgentAccumulator] = {}

    def ensure(name: str) -> _AgentAccumulator:
        return agents.setdefault(name or "Unknown", _AgentAccumulator())

    for row in metric_rows:
        acc = ensure(row.agent_name)
        acc.add_department(row.department_name)
        number = row.ticket_number
        if row.is_resolved:
            acc.resolved.add(number)
        else:
            acc.unresolved.add(number)
        bucket = status_bucket(row.status, row.is_escalated)
        if bucket in (OPEN, HOLD, IN_PROGRESS, ESCALATED):
            acc.statuses.setdefault(bucket, set()).add(number)
        minutes = minutes_from_duration_text(row.first_response_time)
        if minutes is not None:
            acc.first_response.setdefault(number, minutes)
        sla_minutes = minutes_from_duration_text(row.resolution_time)
        if sla_minutes is not None:
            acc.sla_resolution.setdefault(number, sla_minutes)
        if row.thread_count > 0:
            acc.threads.setdefault(number, row.thread_count)
        if row.outgoing_count == 1:
            acc.single_touch.add(number)

    for row in closed_rows:
        acc = ensure(row.agent_name)
        acc.add_department(row.department_name)
        number = row.ticket_number
        if is_resolved_like(row.status):
            acc.resolved.add(number)
            acc.unresolved.discard(number)
        minutes = minutes_from_duration_text(row.first_response_time)
        if minutes is not None:
            acc.first_response.setdefault(number, minutes)
        if row.resolution_hours is not None:
            acc.resolution_hours.setdefault(number, row.resolution_hours)

    if pending_counts is not None:
        for name in pending_counts:
            ensure(name)

    rollups: List[AgentRollup] = []
    for name, acc in agents.items():
        if pending_counts is not None:
            pending = int(pending_counts.get(name, 0))
        else:
            pending = len(acc.unresolved)
        resolved = len(acc.resolved)
        rollups.append(
            AgentRollup(
                agent_name=name,
                tickets_created=resolved + pending,
                tickets_resolved=resolved,
                pending_count=pending,
                open_count=acc.count(OPEN),
                hold_count=acc.count(HOLD),
                in_progress_count=acc.count(IN_PROGRESS),
                escalated_count=acc.count(ESCALATED),
                single_touch_count=len(acc.single_touch),
                avg_first_response_minutes=_average(acc.first_response.values()),
                avg_resolution_hours=_average(acc.resolution_hours.values()),
                avg_sla_resolution_minutes=_average(acc.sla_resolution.values()),
                avg_threads=_average(acc.threads.values()),
                resolution_samples=len(acc.resolution_hours),
                departments=tuple(acc.departments),
            )
        )
    rollups.sort(key=lambda rollup: name_sort_key(rollup.agent_name))
    LOGGER.debug("Built performance rollups for %s agents", len(rollups))
    return rollups


@dataclass(frozen=True)
class PerformanceSummary:
    total_created: int
    total_resolved: int
    total_pending: int
    avg_resolution_hours: Optional[float]

    @property
    def avg_resolution_text(self) -> str:
        return format_hours_as_hm(self.avg_resolution_hours)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_created": self.total_created,
            "total_resolved": self.total_resolved,
            "total_pending": self.total_pending,
            "avg_resolution_hours": self.avg_resolution_hours,
            "avg_resolution_text": self.avg_resolution_text,
        }


def summarize_rollups(rollups: Iterable[AgentRollup]) -> PerformanceSummary:
    """Totals across agents; the resolution average is weighted by sample size."""
    total_resolved = 0
    total_pending = 0
    weighted_hours = 0.0
    samples = 0
    for rollup in rollups:
        total_resolved += rollup.tickets_resolved
        total_pending += rollup.pending_count
        if rollup.avg_resolution_hours is not None and rollup.resolution_samples:
            weighted_hours += rollup.avg_resolution_hours * rollup.resolution_samples
            samples += rollup.resolution_samples
    return PerformanceSummary(
        total_created=total_resolved + total_pending,
        total_resolved=total_resolved,
        total_pending=total_pending,
        avg_resolution_hours=round(weighted_hours / samples, 2) if samples else None,
    )
