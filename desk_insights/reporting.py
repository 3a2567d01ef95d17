"""Write dashboard tables to CSV."""
from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Sequence

from .aging import PendingTicketRow
from .performance import AgentRollup
from .reconcile import ClosedTicketRow

LOGGER = logging.getLogger(__name__)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class DashboardTableWriter:
    """Persist the agent performance, pending and closed ticket tables."""

    PERFORMANCE_HEADERS: Sequence[str] = (
        "agent_name",
        "department_name",
        "tickets_created",
        "tickets_resolved",
        "pending_count",
        "open_count",
        "hold_count",
        "in_progress_count",
        "escalated_count",
        "single_touch_count",
        "avg_first_response",
        "avg_resolution",
        "avg_sla_resolution",
        "avg_threads",
    )

    PENDING_HEADERS: Sequence[str] = (
        "agent_name",
        "department_name",
        "status",
        "ticket_number",
        "created_time",
        "days_open",
    )

    CLOSED_HEADERS: Sequence[str] = (
        "ticket_number",
        "agent_name",
        "department_name",
        "subject",
        "status",
        "created_time",
        "closed_time",
        "resolution_hours",
        "first_response_time",
        "source",
    )

    def __init__(self, *, output_directory: Path) -> None:
        self.output_directory = output_directory
        self.output_directory.mkdir(parents=True, exist_ok=True)

    def _write(self, name: str, headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> Path:
        path = self.output_directory / name
        LOGGER.info("Writing %s", path)
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(headers)
            for row in rows:
                writer.writerow([_cell(value) for value in row])
        return path

    def write_performance(self, rollups: Iterable[AgentRollup], name: str = "agent_performance.csv") -> Path:
        return self._write(
            name,
            self.PERFORMANCE_HEADERS,
            (
                [
                    rollup.agent_name,
                    rollup.department_name,
                    rollup.tickets_created,
                    rollup.tickets_resolved,
                    rollup.pending_count,
                    rollup.open_count,
                    rollup.hold_count,
                    rollup.in_progress_count,
                    rollup.escalated_count,
                    rollup.single_touch_count,
                    rollup.avg_first_response_text,
                    rollup.avg_resolution_text,
                    rollup.avg_sla_resolution_text,
                    round(rollup.avg_threads, 2) if rollup.avg_threads is not None else "-",
                ]
                for rollup in rollups
            ),
        )

    def write_pending(self, rows: Iterable[PendingTicketRow], name: str = "pending_tickets.csv") -> Path:
        return self._write(
            name,
            self.PENDING_HEADERS,
            (
                [
                    row.agent_name,
                    row.department_name,
                    row.status,
                    row.ticket_number,
                    row.created_time,
                    row.days_open,
                ]
                for row in rows
            ),
        )

    def write_closed(self, rows: Iterable[ClosedTicketRow], name: str = "closed_tickets.csv") -> Path:
        return self._write(
            name,
            self.CLOSED_HEADERS,
            (
                [
                    row.ticket_number,
                    row.agent_name,
                    row.department_name,
                    row.subject,
                    row.status,
                    row.created_time,
                    row.closed_time,
                    row.resolution_hours,
                    row.first_response_time or "-",
                    row.source,
                ]
                for row in rows
            ),
        )
