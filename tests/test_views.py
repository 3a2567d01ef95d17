from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from desk_insights.reconcile import TicketRecord, name_sort_key
from desk_insights.views import (
    ViewFilter,
    activity_in_range,
    filter_rows,
    matches_query,
    paginate,
    sort_rows,
)


def _row(number, agent, *, status="Open", created="2024-03-10T10:00:00Z", department="10", **extra):
    row = {
        "ticket_number": number,
        "agent_name": agent,
        "status": status,
        "created_time": created,
        "department_id": department,
        "department_name": "Service Desk" if department == "10" else "Network",
    }
    row.update(extra)
    return row


def test_paginate_clamps_out_of_range_page():
    rows = list(range(45))

    page = paginate(rows, 99, 20)

    assert page.total_pages == 3
    assert page.page == 3
    assert page.rows == list(range(40, 45))
    assert page.total_rows == 45


def test_paginate_first_page_and_empty_input():
    assert paginate(list(range(45)), 0, 20).rows == list(range(20))
    empty = paginate([], 5, 20)
    assert empty.total_pages == 1
    assert empty.page == 1
    assert empty.rows == []


def test_paginate_rejects_non_positive_page_size():
    with pytest.raises(ValueError):
        paginate([1, 2], 1, 0)


def test_numeric_query_matches_ticket_number_exactly():
    rows = [_row("123", "Alice"), _row("1234", "Bob"), _row("9", "Carl 123")]
    selected = filter_rows(rows, ViewFilter(query="123"))
    assert [row["ticket_number"] for row in selected] == ["123"]


def test_text_query_matches_word_prefixes():
    row = _row("1", "Mary Ann Smith")
    assert matches_query(row, "smi", ticket_field="ticket_number", text_fields=("agent_name",))
    assert matches_query(row, "ANN", ticket_field="ticket_number", text_fields=("agent_name",))
    assert not matches_query(row, "mith", ticket_field="ticket_number", text_fields=("agent_name",))
    assert matches_query(row, "  ", ticket_field="ticket_number", text_fields=("agent_name",))


def test_date_range_is_inclusive_of_whole_days():
    rows = [
        _row("1", "A", created="2024-03-01T00:00:00Z"),
        _row("2", "A", created="2024-03-05T23:59:59Z"),
        _row("3", "A", created="2024-03-06T00:00:00Z"),
        _row("4", "A", created="2024-02-29T23:59:59Z"),
        _row("5", "A", created=None),
    ]

    selected = filter_rows(rows, ViewFilter(start_date="2024-03-01", end_date="2024-03-05"))

    assert [row["ticket_number"] for row in selected] == ["1", "2"]


def test_filter_by_agent_department_and_status():
    rows = [
        _row("1", "Alice", status="On Hold"),
        _row("2", "Alice", status="Open", department="20"),
        _row("3", "Bob", status="hold"),
        _row("4", "Alice", status="Closed"),
    ]

    selected = filter_rows(
        rows,
        ViewFilter(agent_names=["Alice"], department_id="10", statuses=["hold", "closed"]),
    )
    assert [row["ticket_number"] for row in selected] == ["1", "4"]

    by_name = filter_rows(rows, ViewFilter(department_name="Network"))
    assert [row["ticket_number"] for row in by_name] == ["2"]


def test_empty_filter_matches_everything():
    rows = [_row("1", "A"), _row("2", "B", created=None)]
    assert filter_rows(rows, ViewFilter()) == rows
    assert filter_rows(rows, None) == rows


def test_leaderboard_sort_breaks_ties_by_name():
    rows = [
        {"agent_name": "carol", "resolved": 5},
        {"agent_name": "Bob", "resolved": 9},
        {"agent_name": "alice", "resolved": 5},
        {"agent_name": "Dan", "resolved": None},
    ]

    ordered = sort_rows(rows, metric="resolved")

    assert [row["agent_name"] for row in ordered] == ["Bob", "alice", "carol", "Dan"]


def test_sort_by_name_then_secondary_fields():
    rows = [
        {"agent_name": "Bob", "status_rank": 2},
        {"agent_name": "alice", "status_rank": 1},
        {"agent_name": "Bob", "status_rank": 0},
    ]
    ordered = sort_rows(rows, then=("status_rank",))
    assert [(row["agent_name"], row["status_rank"]) for row in ordered] == [
        ("alice", 1),
        ("Bob", 0),
        ("Bob", 2),
    ]


def test_name_sort_ignores_case():
    rows = [{"agent_name": "carol"}, {"agent_name": "Bob"}, {"agent_name": "alice"}]

    ordered = sort_rows(rows)

    assert [row["agent_name"] for row in ordered] == ["alice", "Bob", "carol"]
    assert name_sort_key("Bob") == name_sort_key("bob")


def test_activity_in_range_accepts_creation_or_closure():
    start = datetime(2024, 3, 1, tzinfo=timezone.utc)
    end = datetime(2024, 3, 31, 23, 59, 59, tzinfo=timezone.utc)
    closed_in_range = TicketRecord.from_api(
        {"id": "1", "status": "Closed", "createdTime": "2024-01-15T00:00:00Z", "closedTime": "2024-03-02T00:00:00Z"}
    )
    outside = TicketRecord.from_api({"id": "2", "status": "Open", "createdTime": "2024-01-15T00:00:00Z"})

    assert activity_in_range(closed_in_range, start, end)
    assert not activity_in_range(outside, start, end)
    assert activity_in_range(outside, None, None)
