"""Dashboard assembly and HTML, PDF, image and JSON rendering."""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime
from importlib import import_module
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from fpdf import FPDF, XPos, YPos
from fpdf.errors import FPDFException
from jinja2 import Template

from .aging import (
    BUCKET_LABELS,
    COARSE,
    FINE,
    UNASSIGNED_AGENT_ID,
    PendingTicketRow,
    agent_age_rows,
    build_aging_table,
    build_pending_rows,
    department_age_rows,
    department_status_totals,
    pending_counts,
    status_totals,
    unassigned_ticket_numbers,
)
from .dates import utc_now
from .performance import AgentRollup, MetricRow, build_agent_rollups, join_metrics, summarize_rollups
from .reconcile import (
    UNASSIGNED_AGENT_NAME,
    ClosedTicketRow,
    Department,
    TicketMetrics,
    TicketRecord,
    build_closed_rows,
    name_sort_key,
)
from .statuses import AGEABLE_STATUSES
from .trends import build_yearly_trend
from .views import DEFAULT_PAGE_SIZES, ViewFilter, activity_in_range, filter_rows, paginate, sort_rows

LOGGER = logging.getLogger(__name__)

LEADERBOARD_METRICS = {
    "resolved": "tickets_resolved",
    "created": "tickets_created",
    "pending": "pending_count",
}


class DashboardReportBuilder:
    """Run the aggregation pipeline and collect every dashboard table."""

    def __init__(
        self,
        tickets: Sequence[TicketRecord],
        metrics: Iterable[TicketMetrics],
        *,
        name_map: Mapping[str, str],
        departments: Sequence[Department],
        view_filter: Optional[ViewFilter] = None,
        now: Optional[datetime] = None,
        trend_years: Optional[Iterable[int]] = None,
        page: int = 1,
        page_sizes: Optional[Mapping[str, int]] = None,
        sort_by: Optional[str] = None,
    ) -> None:
        self.view_filter = view_filter or ViewFilter()
        # Tickets created or closed in the period are in scope; rows built from
        # them are not filtered on created_time again.
        start, end = self.view_filter.start, self.view_filter.end
        self.tickets = [ticket for ticket in tickets if activity_in_range(ticket, start, end)]
        self.row_filter = replace(self.view_filter, start_date=None, end_date=None)
        self.metrics = list(metrics)
        self.name_map = dict(name_map)
        self.departments = list(departments)
        self.now = now or utc_now()
        self.trend_years = list(trend_years) if trend_years is not None else None
        self.page = page
        self.page_sizes = {**DEFAULT_PAGE_SIZES, **(page_sizes or {})}
        if sort_by is not None and sort_by not in LEADERBOARD_METRICS:
            raise ValueError(f"Unknown leaderboard metric: {sort_by!r}")
        self.sort_by = sort_by

        self.open_tickets = [ticket for ticket in self.tickets if not ticket.is_resolved]
        self.resolved_tickets = [ticket for ticket in self.tickets if ticket.is_resolved]

    # -- Rows --------------------------------------------------------------------
    def pending_rows(self) -> List[PendingTicketRow]:
        rows = build_pending_rows(self.open_tickets, self.now, self.name_map, self.departments)
        return filter_rows(rows, self.row_filter)

    def closed_rows(self) -> List[ClosedTicketRow]:
        rows = build_closed_rows(self.resolved_tickets, self.metrics, self.name_map, self.departments)
        # Status selections target open work; closed rows ignore them.
        return filter_rows(rows, replace(self.row_filter, statuses=None))

    def metric_rows(self) -> List[MetricRow]:
        rows = join_metrics(self.tickets, self.metrics, self.name_map, self.departments)
        return sort_rows(filter_rows(rows, self.row_filter), name_field="agent_name")

    def agent_performance(
        self,
        pending: Optional[List[PendingTicketRow]] = None,
        closed: Optional[List[ClosedTicketRow]] = None,
        metric_rows: Optional[List[MetricRow]] = None,
    ) -> List[AgentRollup]:
        pending = self.pending_rows() if pending is None else pending
        closed = self.closed_rows() if closed is None else closed
        metric_rows = self.metric_rows() if metric_rows is None else metric_rows
        rollups = build_agent_rollups(metric_rows, pending_counts(pending), closed)
        metric = LEADERBOARD_METRICS.get(self.sort_by) if self.sort_by else None
        return sort_rows(rollups, name_field="agent_name", metric=metric)

    # -- Aging & totals -------------------------------------------------------------
    def aging(self) -> Dict[str, Any]:
        table = build_aging_table(self.open_tickets, self.now, self.name_map)
        department_id = self.view_filter.department_id or None
        agent_rows = {
            granularity: agent_age_rows(table, granularity, department_id)
            for granularity in (FINE, COARSE)
        }
        if self.view_filter.agent_names:
            wanted = set(self.view_filter.agent_names)
            agent_rows = {
                granularity: [row for row in rows if row.name in wanted]
                for granularity, rows in agent_rows.items()
            }
        return {
            "buckets": {granularity: list(labels) for granularity, labels in BUCKET_LABELS.items()},
            "statuses": list(AGEABLE_STATUSES),
            "agents": {
                granularity: [row.as_dict() for row in rows] for granularity, rows in agent_rows.items()
            },
            "departments": {
                granularity: [
                    row.as_dict() for row in department_age_rows(table, self.departments, granularity)
                ]
                for granularity in (FINE, COARSE)
            },
        }

    def status_totals(self) -> Dict[str, Any]:
        per_agent = status_totals(self.tickets)
        per_department = department_status_totals(self.tickets, self.departments)
        return {
            "agents": [
                {"agent_id": agent_id, "agent_name": self._agent_label(agent_id), **totals.as_dict()}
                for agent_id, totals in sorted(
                    per_agent.items(), key=lambda item: name_sort_key(self._agent_label(item[0]))
                )
            ],
            "departments": [
                {
                    "department_id": department.id,
                    "department_name": department.name,
                    **per_department[department.id].as_dict(),
                }
                for department in self.departments
            ],
            "unassigned_tickets": unassigned_ticket_numbers(self.tickets),
        }

    def _agent_label(self, agent_id: str) -> str:
        if agent_id == UNASSIGNED_AGENT_ID:
            return UNASSIGNED_AGENT_NAME
        return self.name_map.get(agent_id, agent_id)

    def yearly_trend(self) -> List[Dict[str, int]]:
        trend = build_yearly_trend(self.tickets, self.trend_years)
        return [bucket.as_dict() for bucket in trend.values()]

    # -- Assembly ------------------------------------------------------------------
    def _page(self, rows: Sequence[Any], table: str) -> Dict[str, Any]:
        page = paginate(rows, self.page, self.page_sizes[table])
        return {
            "rows": [row.as_dict() for row in page.rows],
            "page": page.page,
            "page_size": page.page_size,
            "total_pages": page.total_pages,
            "total_rows": page.total_rows,
        }

    def build(self) -> Dict[str, Any]:
        pending = self.pending_rows()
        closed = self.closed_rows()
        metric_rows = self.metric_rows()
        rollups = self.agent_performance(pending, closed, metric_rows)
        summary = summarize_rollups(rollups)
        LOGGER.info(
            "Dashboard covers %s agents, %s pending and %s closed tickets",
            len(rollups),
            len(pending),
            len(closed),
        )
        return {
            "generated_at": self.now.isoformat(),
            "summary": summary.as_dict(),
            "agent_performance": self._page(rollups, "performance"),
            "metrics": self._page(metric_rows, "metrics"),
            "closed_tickets": self._page(closed, "closed"),
            "pending_tickets": [row.as_dict() for row in pending],
            "aging": self.aging(),
            "status_totals": self.status_totals(),
            "yearly_trend": self.yearly_trend(),
        }


HTML_TEMPLATE = Template(
    """
<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>Helpdesk Agent Dashboard</title>
    <style>
      body { font-family: Arial, sans-serif; margin: 2rem; }
      h1, h2, h3 { color: #1f3b4d; }
      table { border-collapse: collapse; width: 100%; margin-bottom: 1.5rem; }
      th, td { border: 1px solid #ccc; padding: 0.4rem 0.6rem; text-align: left; }
      th { background-color: #f0f6fb; }
      .meta { font-size: 0.9rem; color: #555; margin-bottom: 2rem; }
      .section { margin-bottom: 2.5rem; }
      .pager { font-size: 0.85rem; color: #555; }
    </style>
  </head>
  <body>
    <h1>Helpdesk Agent Dashboard</h1>
    <div class="meta">
      <strong>Generated:</strong> {{ metrics.generated_at }}<br />
      {% if filters.department %}<strong>Department:</strong> {{ filters.department }}<br />{% endif %}
      {% if filters.agents %}<strong>Agents:</strong> {{ filters.agents|join(', ') }}<br />{% endif %}
      {% if filters.statuses %}<strong>Statuses:</strong> {{ filters.statuses|join(', ') }}<br />{% endif %}
      {% if filters.start_date %}<strong>Start:</strong> {{ filters.start_date }}<br />{% endif %}
      {% if filters.end_date %}<strong>End:</strong> {{ filters.end_date }}<br />{% endif %}
      {% if filters.search %}<strong>Search:</strong> {{ filters.search }}<br />{% endif %}
    </div>

    <div class="section">
      <h2>Summary</h2>
      <p>Created: {{ metrics.summary.total_created }} | Resolved: {{ metrics.summary.total_resolved }} | Pending: {{ metrics.summary.total_pending }} | Avg Resolution: {{ metrics.summary.avg_resolution_text }}</p>
    </div>

    <div class="section">
      <h2>Agent Performance</h2>
      <table>
        <thead><tr><th>Agent</th><th>Department</th><th>Created</th><th>Resolved</th><th>Pending</th><th>Open</th><th>Hold</th><th>In Progress</th><th>Escalated</th><th>Single Touch</th><th>Avg First Response</th><th>Avg Resolution</th><th>Avg Threads</th></tr></thead>
        <tbody>
          {% for row in metrics.agent_performance.rows %}
          <tr>
            <td>{{ row.agent_name }}</td>
            <td>{{ row.department_name }}</td>
            <td>{{ row.tickets_created }}</td>
            <td>{{ row.tickets_resolved }}</td>
            <td>{{ row.pending_count }}</td>
            <td>{{ row.open_count }}</td>
            <td>{{ row.hold_count }}</td>
            <td>{{ row.in_progress_count }}</td>
            <td>{{ row.escalated_count }}</td>
            <td>{{ row.single_touch_count }}</td>
            <td>{{ row.avg_first_response_text }}</td>
            <td>{{ row.avg_resolution_text }}</td>
            <td>{{ row.avg_threads if row.avg_threads is not none else '-' }}</td>
          </tr>
          {% endfor %}
        </tbody>
      </table>
      <p class="pager">Page {{ metrics.agent_performance.page }} of {{ metrics.agent_performance.total_pages }} ({{ metrics.agent_performance.total_rows }} agents)</p>
    </div>

    {% for granularity in ['coarse', 'fine'] %}
    <div class="section">
      <h2>Agent-wise Ticket Age ({{ metrics.aging.buckets[granularity]|join(' / ') }} days)</h2>
      <table>
        <thead>
          <tr><th>Agent</th>{% for status in metrics.aging.statuses %}{% for bucket in metrics.aging.buckets[granularity] %}<th>{{ status }} {{ bucket }}</th>{% endfor %}{% endfor %}<th>Total</th></tr>
        </thead>
        <tbody>
          {% for row in metrics.aging.agents[granularity] %}
          <tr>
            <td>{{ row.name }}</td>
            {% for status in metrics.aging.statuses %}{% for bucket in metrics.aging.buckets[granularity] %}<td>{{ row.counts[status][bucket] }}</td>{% endfor %}{% endfor %}
            <td>{{ row.total }}</td>
          </tr>
          {% endfor %}
        </tbody>
      </table>
    </div>
    {% endfor %}

    <div class="section">
      <h2>Department-wise Ticket Age</h2>
      <table>
        <thead>
          <tr><th>Department</th>{% for status in metrics.aging.statuses %}{% for bucket in metrics.aging.buckets['coarse'] %}<th>{{ status }} {{ bucket }}</th>{% endfor %}{% endfor %}<th>Total</th></tr>
        </thead>
        <tbody>
          {% for row in metrics.aging.departments['coarse'] %}
          <tr>
            <td>{{ row.name }}</td>
            {% for status in metrics.aging.statuses %}{% for bucket in metrics.aging.buckets['coarse'] %}<td>{{ row.counts[status][bucket] }}</td>{% endfor %}{% endfor %}
            <td>{{ row.total }}</td>
          </tr>
          {% endfor %}
        </tbody>
      </table>
    </div>

    <div class="section">
      <h2>Pending Status Tickets</h2>
      <table>
        <thead><tr><th>Agent</th><th>Department</th><th>Status</th><th>Ticket</th><th>Created</th><th>Ticket Age Days</th></tr></thead>
        <tbody>
          {% for row in metrics.pending_tickets %}
          <tr>
            <td>{{ row.agent_name }}</td>
            <td>{{ row.department_name }}</td>
            <td>{{ row.status }}</td>
            <td>{{ row.ticket_number }}</td>
            <td>{{ row.created_time or '' }}</td>
            <td>{{ row.days_open if row.days_open is not none else '' }}</td>
          </tr>
          {% else %}
          <tr><td colspan="6">No pending status tickets found.</td></tr>
          {% endfor %}
        </tbody>
      </table>
    </div>

    <div class="section">
      <h2>Closed Tickets</h2>
      <table>
        <thead><tr><th>Ticket</th><th>Agent</th><th>Department</th><th>Subject</th><th>Created</th><th>Closed</th><th>Resolution (h)</th><th>First Response</th><th>Source</th></tr></thead>
        <tbody>
          {% for row in metrics.closed_tickets.rows %}
          <tr>
            <td>{{ row.ticket_number }}</td>
            <td>{{ row.agent_name }}</td>
            <td>{{ row.department_name }}</td>
            <td>{{ row.subject }}</td>
            <td>{{ row.created_time or '' }}</td>
            <td>{{ row.closed_time or '' }}</td>
            <td>{{ row.resolution_hours if row.resolution_hours is not none else '-' }}</td>
            <td>{{ row.first_response_time or '-' }}</td>
            <td>{{ row.source }}</td>
          </tr>
          {% endfor %}
        </tbody>
      </table>
      <p class="pager">Page {{ metrics.closed_tickets.page }} of {{ metrics.closed_tickets.total_pages }} ({{ metrics.closed_tickets.total_rows }} tickets)</p>
    </div>

    <div class="section">
      <h2>Yearly Trend</h2>
      <table>
        <thead><tr><th>Year</th><th>Created</th><th>Resolved</th></tr></thead>
        <tbody>
          {% for row in metrics.yearly_trend %}
          <tr><td>{{ row.year }}</td><td>{{ row.created }}</td><td>{{ row.resolved }}</td></tr>
          {% endfor %}
        </tbody>
      </table>
    </div>
  </body>
</html>
""",
    autoescape=True,
)


def render_html(metrics: Dict[str, Any], filters: Dict[str, Any], output_path: Path) -> None:
    html = HTML_TEMPLATE.render(metrics=metrics, filters=filters)
    output_path.write_text(html, encoding="utf-8")


def _pdf_text(value: Any) -> str:
    # Core PDF fonts only cover latin-1.
    return str(value).encode("latin-1", "replace").decode("latin-1")


class _PDFReport(FPDF):
    def header(self) -> None:  # pragma: no cover - simple layout call
        self.set_font("Helvetica", "B", 14)
        self.cell(0, 10, "Helpdesk Agent Dashboard", new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
        self.ln(5)


def render_pdf(metrics: Dict[str, Any], filters: Dict[str, Any], output_path: Path) -> None:
    pdf = _PDFReport()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()
    pdf.set_font("Helvetica", size=10)

    pdf.multi_cell(0, 6, f"Generated: {metrics['generated_at']}", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    for label, key in (("Department", "department"), ("Start Date", "start_date"), ("End Date", "end_date")):
        if filters.get(key):
            pdf.multi_cell(0, 6, _pdf_text(f"{label}: {filters[key]}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    def _section(title: str, body: Iterable[str]) -> None:
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(0, 8, title, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.set_font("Helvetica", size=10)
        for line in body:
            line = _pdf_text(line)
            try:
                pdf.cell(0, 5, line, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
            except FPDFException:
                trimmed = line if len(line) < 120 else line[:117] + "..."
                pdf.cell(0, 5, trimmed, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(2)

    summary = metrics["summary"]
    _section(
        "Summary",
        [
            f"Tickets created: {summary['total_created']}",
            f"Tickets resolved: {summary['total_resolved']}",
            f"Tickets pending: {summary['total_pending']}",
            f"Average resolution: {summary['avg_resolution_text']}",
        ],
    )

    top_agents = metrics["agent_performance"]["rows"][:10]
    _section(
        "Agent Performance",
        [
            f"{row['agent_name']}: {row['tickets_resolved']} resolved / {row['pending_count']} pending"
            f" / first response {row['avg_first_response_text']}"
            for row in top_agents
        ]
        or ["No agent activity recorded."],
    )

    _section(
        "Department Aging (open work)",
        [
            f"{row['name']}: {row['total']} tickets"
            for row in metrics["aging"]["departments"][COARSE]
        ]
        or ["No departments configured."],
    )

    _section(
        "Yearly Trend",
        [f"{row['year']}: {row['created']} created / {row['resolved']} resolved" for row in metrics["yearly_trend"]]
        or ["No dated tickets."],
    )

    pdf.output(str(output_path))


def _get_pyplot():  # pragma: no cover - thin wrapper around matplotlib import
    matplotlib = import_module("matplotlib")
    matplotlib.use("Agg")
    return import_module("matplotlib.pyplot")


def _plot_bar_chart(labels: List[str], values: List[float], output_path: Path, title: str) -> None:
    if not labels:
        return
    plt = _get_pyplot()
    plt.figure(figsize=(10, 4))
    plt.bar(labels, values, color="#1f77b4")
    plt.xticks(rotation=45, ha="right")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(output_path)
    plt.close()


def _plot_yearly_trend(data: List[Dict[str, int]], output_path: Path) -> None:
    if not data:
        return
    plt = _get_pyplot()
    years = [row["year"] for row in data]
    plt.figure(figsize=(10, 4))
    plt.plot(years, [row["created"] for row in data], label="Created", marker="o")
    plt.plot(years, [row["resolved"] for row in data], label="Resolved", marker="o")
    plt.xticks(years, [str(year) for year in years])
    plt.xlabel("Year")
    plt.ylabel("Tickets")
    plt.title("Created vs Resolved by Year")
    plt.legend()
    plt.tight_layout()
    plt.savefig(output_path)
    plt.close()


def _plot_department_aging(rows: List[Dict[str, Any]], buckets: List[str], output_path: Path) -> None:
    if not rows:
        return
    plt = _get_pyplot()
    names = [row["name"] for row in rows]
    positions = list(range(len(rows)))
    width = 0.8 / max(len(buckets), 1)
    plt.figure(figsize=(10, 4))
    for index, bucket in enumerate(buckets):
        values = [sum(by_bucket.get(bucket, 0) for by_bucket in row["counts"].values()) for row in rows]
        plt.bar([pos + index * width for pos in positions], values, width=width, label=f"{bucket} days")
    plt.xticks([pos + width * (len(buckets) - 1) / 2 for pos in positions], names, rotation=45, ha="right")
    plt.title("Open Ticket Age by Department")
    plt.legend()
    plt.tight_layout()
    plt.savefig(output_path)
    plt.close()


def render_images(metrics: Dict[str, Any], output_dir: Path) -> List[Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    generated: List[Path] = []

    agents = sorted(
        metrics["agent_performance"]["rows"], key=lambda row: row["tickets_resolved"], reverse=True
    )[:10]
    agents_path = output_dir / "top_agents_resolved.png"
    _plot_bar_chart(
        [row["agent_name"] for row in agents],
        [row["tickets_resolved"] for row in agents],
        agents_path,
        "Tickets Resolved by Agent",
    )

    aging_path = output_dir / "department_aging.png"
    _plot_department_aging(
        metrics["aging"]["departments"][COARSE], metrics["aging"]["buckets"][COARSE], aging_path
    )

    trend_path = output_dir / "yearly_trend.png"
    _plot_yearly_trend(metrics["yearly_trend"], trend_path)

    for path in (agents_path, aging_path, trend_path):
        if path.exists():
            generated.append(path)
    return generated


def _normalise_for_json(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _normalise_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise_for_json(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return value


def save_metrics_json(metrics: Dict[str, Any], output_path: Path) -> None:
    serialisable = _normalise_for_json(metrics)
    output_path.write_text(json.dumps(serialisable, indent=2), encoding="utf-8")
