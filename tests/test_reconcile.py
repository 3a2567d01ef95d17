from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from desk_insights.reconcile import (
    SOURCE_ACTIVE,
    SOURCE_ACTIVE_CLOSED,
    SOURCE_ARCHIVED,
    Department,
    TicketMetrics,
    TicketRecord,
    build_agent_name_map,
    build_closed_rows,
    reconcile,
    resolve_agent_name,
    resolve_department_name,
)

DEPARTMENTS = [Department("10", "Service Desk"), Department("20", "Network")]


def _ticket(ticket_id, status="Open", **extra):
    payload = {
        "id": ticket_id,
        "ticketNumber": extra.pop("number", f"T{ticket_id}"),
        "status": status,
        "createdTime": "2024-03-01T08:00:00.000Z",
        "assigneeId": extra.pop("assignee_id", "a1"),
        "departmentId": "10",
        "subject": f"Ticket {ticket_id}",
    }
    payload.update(extra)
    return payload


def test_from_api_normalises_payload():
    record = TicketRecord.from_api(
        _ticket(
            "1",
            status="Closed",
            closedTime="2024-03-01T10:30:00Z",
            assignee={"displayName": "Jane Doe"},
            isEscalated=True,
        )
    )

    assert record.ticket_number == "T1"
    assert record.created_time == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
    assert record.closed_time == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
    assert record.embedded_assignee_name == "Jane Doe"
    assert record.is_escalated is True
    assert record.is_resolved is True
    assert record.source == SOURCE_ACTIVE_CLOSED


def test_from_api_falls_back_to_last_modified_for_resolved_tickets():
    record = TicketRecord.from_api(
        _ticket("2", status="Resolved", lastModifiedTime="2024-03-05T12:00:00Z")
    )
    assert record.closed_time == datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)

    still_open = TicketRecord.from_api(_ticket("3", lastModifiedTime="2024-03-05T12:00:00Z"))
    assert still_open.closed_time is None
    assert still_open.source == SOURCE_ACTIVE


def test_from_api_treats_blank_assignee_as_unassigned():
    record = TicketRecord.from_api(_ticket("4", assignee_id=""))
    assert record.assignee_id is None
    assert record.is_unassigned


def test_reconcile_prefers_archived_copy():
    archived = [_ticket("1", status="Closed", subject="archived copy")]
    active = [_ticket("1", status="Closed", subject="active copy"), _ticket("2")]

    merged = reconcile(active, archived)

    assert [ticket.id for ticket in merged] == ["1", "2"]
    assert merged[0].subject == "archived copy"
    assert merged[0].source == SOURCE_ARCHIVED


def test_reconcile_is_idempotent():
    archived = [_ticket("1", status="Closed"), _ticket("5", status="Closed")]
    active = [_ticket("1", status="Closed"), _ticket("2"), _ticket("2")]

    first = reconcile(active, archived)
    second = reconcile(first, first)

    assert [ticket.id for ticket in second] == [ticket.id for ticket in first]
    assert len({ticket.id for ticket in first}) == len(first)


def test_reconcile_resolved_only_drops_open_tickets():
    merged = reconcile([_ticket("1"), _ticket("2", status="Closed")], [], resolved_only=True)
    assert [ticket.id for ticket in merged] == ["2"]


def test_archived_closed_copy_replaces_active_open_copy():
    active = [_ticket("7", status="Open")]
    archived = [_ticket("7", status="Closed", closedTime="2024-03-02T09:00:00Z")]

    merged = reconcile(active, archived)

    assert len(merged) == 1
    ticket = merged[0]
    assert ticket.status == "Closed"
    assert ticket.source == SOURCE_ARCHIVED
    assert ticket.created_time == datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
    assert ticket.closed_time == datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_reconcile_of_nothing_is_empty():
    assert reconcile([], []) == []


def test_payloads_without_id_fall_back_to_ticket_number():
    first = _ticket(None, number="100")
    second = _ticket(None, number="101")
    anonymous = _ticket(None, number=None)

    merged = reconcile([first, second, anonymous], [])

    assert [ticket.id for ticket in merged] == ["100", "101"]
    assert [ticket.ticket_number for ticket in merged] == ["100", "101"]


def test_agent_name_resolution_order():
    name_map = build_agent_name_map(
        [{"id": "a1", "displayName": "Mapped Name"}, {"id": "a2", "email": "x@example.com"}, {"name": "no id"}]
    )
    assert name_map == {"a1": "Mapped Name", "a2": "x@example.com"}

    mapped = TicketRecord.from_api(_ticket("1", assignee={"displayName": "Embedded"}))
    assert resolve_agent_name(mapped, name_map) == "Mapped Name"

    embedded = TicketRecord.from_api(
        _ticket("2", assignee_id="a9", assignee={"displayName": "Embedded"}, assigneeName="Flat Name")
    )
    assert resolve_agent_name(embedded, name_map) == "Embedded"

    fallback = TicketRecord.from_api(_ticket("3", assignee_id="a9", assigneeName="Flat Name"))
    assert resolve_agent_name(fallback, name_map) == "Flat Name"
    assert resolve_agent_name(TicketRecord.from_api(_ticket("4", assignee_id=None)), {}) == "Unassigned"


def test_resolve_department_name():
    assert resolve_department_name("20", DEPARTMENTS) == "Network"
    assert resolve_department_name("99", DEPARTMENTS) == ""
    assert resolve_department_name(None, DEPARTMENTS) == ""


def test_build_closed_rows_sorts_latest_first_and_joins_metrics():
    tickets = reconcile(
        [],
        [
            _ticket("1", status="Closed", closedTime="2024-03-01T09:00:00Z"),
            _ticket("2", status="Closed", closedTime="2024-03-03T08:00:00Z"),
            _ticket("3", status="Closed"),
        ],
    )
    metrics = [TicketMetrics.from_api({"firstResponseTime": "00:15 hrs"}, ticket_number="T2")]

    rows = build_closed_rows(tickets, metrics, {"a1": "Agent One"}, DEPARTMENTS)

    assert [row.ticket_number for row in rows] == ["T2", "T1", "T3"]
    assert rows[0].resolution_hours == 48.0
    assert rows[0].first_response_time == "00:15 hrs"
    assert rows[1].resolution_hours == 1.0
    assert rows[1].first_response_time == ""
    assert rows[2].closed_time is None
    assert rows[2].resolution_hours is None
    assert all(row.agent_name == "Agent One" for row in rows)
    assert rows[0].department_name == "Service Desk"
