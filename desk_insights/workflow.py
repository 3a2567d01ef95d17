"""Higher level workflows used by the command line entry points."""
from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .cache import TTLCache
from .config import load_config, load_departments, resolve_path
from .dates import utc_now
from .desk_client import DeskAPIError, DeskAuth, DeskClient
from .logging_setup import configure_logging
from .performance import AgentRollup
from .reconcile import Department, TicketMetrics, TicketRecord, build_agent_name_map, reconcile
from .report_generation import (
    DashboardReportBuilder,
    render_html,
    render_images,
    render_pdf,
    save_metrics_json,
)
from .reporting import DashboardTableWriter
from .views import ViewFilter, activity_in_range

LOGGER = logging.getLogger(__name__)

DEFAULT_FORMATS = ("html", "pdf", "images", "json", "csv")
ACTIVE_CACHE_TTL = 7 * 60
ARCHIVED_CACHE_TTL = 5 * 60


def _current_utc_timestamp() -> str:
    """Return a compact UTC timestamp for report directory names."""

    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


@dataclass
class DashboardOptions:
    config_path: Optional[str]
    output_directory: Optional[str] = None
    department: Optional[str] = None
    agents: Optional[List[str]] = None
    statuses: Optional[List[str]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    search: Optional[str] = None
    formats: Optional[List[str]] = None
    page: int = 1
    sort_by: Optional[str] = None
    disable_console: bool = False
    simple_console: bool = False
    console_level: Optional[str] = None
    show_console_log: bool = False


@dataclass
class LeaderboardOptions:
    config_path: Optional[str]
    department: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    top: int = 10
    sort_by: str = "resolved"
    disable_console: bool = False
    simple_console: bool = False
    console_level: Optional[str] = None
    show_console_log: bool = False


class _ProgressTask:
    """Lightweight textual progress indicator."""

    _BAR_WIDTH = 30

    def __init__(self, description: str, enabled: bool) -> None:
        self.description = description
        self.enabled = enabled
        self.start_time = time.monotonic()
        self.total: Optional[int] = None
        self.count = 0

    def update(self, count: int, total: Optional[int] = None) -> None:
        if not self.enabled:
            return
        if total is not None and total >= 0:
            self.total = total
        self.count = max(count, 0)
        elapsed = max(time.monotonic() - self.start_time, 0.0)
        rate = self.count / elapsed if elapsed > 0 and self.count > 0 else 0.0

        parts = [self.description]
        if self.total and self.total > 0:
            fraction = min(max(self.count / self.total, 0.0), 1.0)
            filled = min(int(round(fraction * self._BAR_WIDTH)), self._BAR_WIDTH)
            parts.append(f"[{'#' * filled}{'-' * (self._BAR_WIDTH - filled)}]")
            parts.append(f"{self.count}/{self.total} ({fraction * 100:5.1f}%)")
        else:
            parts.append(f"{self.count}")
        parts.append(f"elapsed {elapsed:6.1f}s")
        parts.append(f"rate {rate:6.2f}/s" if rate > 0 else "rate --")
        sys.stdout.write("\r" + " ".join(parts))
        sys.stdout.flush()

    def done(self) -> None:
        if not self.enabled:
            return
        self.update(self.count, self.total)
        sys.stdout.write("\n")
        sys.stdout.flush()


def _prepare_logging(config: dict, options: DashboardOptions | LeaderboardOptions, *, base_dir: Path) -> None:
    logging_config = config.setdefault("logging", {})
    console_cfg = logging_config.setdefault("console", {})
    if options.disable_console:
        console_cfg["enabled"] = False
    if options.simple_console:
        console_cfg["rich_format"] = False
    if options.console_level:
        console_cfg["level"] = options.console_level
    configure_logging(config, base_dir=base_dir)


def _create_client(config: dict) -> DeskClient:
    desk_cfg = config.get("desk")
    if not isinstance(desk_cfg, dict):
        raise ValueError("Configuration missing desk section")
    auth = DeskAuth(
        accounts_url=desk_cfg.get("accounts_url", "https://accounts.zoho.com"),
        client_id=desk_cfg.get("client_id"),
        client_secret=desk_cfg.get("client_secret"),
        refresh_token=desk_cfg.get("refresh_token"),
        access_token=desk_cfg.get("access_token"),
    )
    return DeskClient(
        auth=auth,
        base_url=desk_cfg.get("base_url", "https://desk.zoho.com"),
        org_id=desk_cfg.get("org_id"),
        verify_ssl=desk_cfg.get("verify_ssl", True),
        timeout=int(desk_cfg.get("timeout", 30)),
        per_page=int(desk_cfg.get("per_page", 100)),
        rate_limit_per_minute=desk_cfg.get("rate_limit_per_minute"),
        min_request_interval=float(desk_cfg.get("min_request_interval", 0.2)),
        max_concurrent_requests=int(desk_cfg.get("max_concurrent_requests", 3)),
        max_retries=int(desk_cfg.get("max_retries", 4)),
        backoff_factor=float(desk_cfg.get("backoff_factor", 0.5)),
        metrics_ticket_limit=int(desk_cfg.get("metrics_ticket_limit", 300)),
        archived_ticket_cap=int(desk_cfg.get("archived_ticket_cap", 4900)),
    )


class DeskDataSource:
    """Raw fetches behind short-lived single-flight caches."""

    def __init__(
        self,
        client: Any,
        *,
        active_ttl: float = ACTIVE_CACHE_TTL,
        archived_ttl: float = ARCHIVED_CACHE_TTL,
        show_progress: bool = False,
    ) -> None:
        self.client = client
        self.show_progress = show_progress
        self._cache = TTLCache(active_ttl)
        self._archived_cache = TTLCache(archived_ttl)

    def _with_progress(
        self, description: str, fetch: Callable[[Callable[[int, Optional[int]], None]], Any]
    ) -> Any:
        progress = _ProgressTask(description, self.show_progress)
        try:
            return fetch(progress.update)
        finally:
            progress.done()

    def active_tickets(self, department_id: Optional[str] = None) -> List[Dict[str, Any]]:
        def fetch() -> List[Dict[str, Any]]:
            return self._with_progress(
                "Fetching active tickets",
                lambda callback: list(
                    self.client.iter_tickets(department_id=department_id, progress_callback=callback)
                ),
            )

        return self._cache.get_or_compute(("active", department_id), fetch)

    def archived_tickets(self, department_ids: Iterable[str]) -> List[Dict[str, Any]]:
        tickets: List[Dict[str, Any]] = []
        for department_id in department_ids:

            def fetch(department_id: str = department_id) -> List[Dict[str, Any]]:
                return self._with_progress(
                    f"Fetching archived tickets ({department_id})",
                    lambda callback: list(
                        self.client.iter_archived_tickets(department_id, progress_callback=callback)
                    ),
                )

            tickets.extend(self._archived_cache.get_or_compute(("archived", department_id), fetch))
        return tickets

    def agent_names(self, assignee_ids: Iterable[str]) -> Dict[str, str]:
        users = self._cache.get_or_compute("users", lambda: list(self.client.iter_users()))
        name_map = build_agent_name_map(users)
        missing = sorted({agent_id for agent_id in assignee_ids if agent_id and agent_id not in name_map})
        if missing:
            LOGGER.info("Looking up %s assignees missing from the user list", len(missing))
            name_map.update(build_agent_name_map(self.client.get_users(missing)))
        return name_map

    def metrics(self, tickets: Sequence[TicketRecord]) -> List[TicketMetrics]:
        key = ("metrics", tuple(sorted(ticket.id for ticket in tickets)))
        return self._cache.get_or_compute(
            key,
            lambda: self._with_progress(
                "Fetching ticket metrics",
                lambda callback: self.client.fetch_metrics_for_tickets(tickets, progress_callback=callback),
            ),
        )


def _resolve_department(departments: Sequence[Department], value: Optional[str]) -> Optional[Department]:
    if not value:
        return None
    wanted = value.strip()
    for department in departments:
        if department.id == wanted or department.name.casefold() == wanted.casefold():
            return department
    raise ValueError(f"Unknown department {value!r}; expected one of the configured ids or names")


def _trend_years(dashboard_cfg: Dict[str, Any]) -> Optional[range]:
    years = dashboard_cfg.get("trend_years")
    if not years:
        return None
    first, last = int(years[0]), int(years[-1])
    return range(first, last + 1)


def _build_dashboard(
    config: dict,
    source: DeskDataSource,
    *,
    department_value: Optional[str],
    view_filter: ViewFilter,
    page: int = 1,
    sort_by: Optional[str] = None,
) -> DashboardReportBuilder:
    departments = load_departments(config)
    department = _resolve_department(departments, department_value)
    if department is not None:
        view_filter.department_id = department.id
        view_filter.department_name = department.name
    scope = [department.id] if department else [dept.id for dept in departments]

    try:
        active = source.active_tickets(department.id if department else None)
        archived = source.archived_tickets(scope)
        tickets = reconcile(active, archived)
        LOGGER.info(
            "Reconciled %s active and %s archived tickets into %s tickets",
            len(active),
            len(archived),
            len(tickets),
        )
        start, end = view_filter.start, view_filter.end
        tickets = [ticket for ticket in tickets if activity_in_range(ticket, start, end)]
        name_map = source.agent_names(ticket.assignee_id for ticket in tickets if ticket.assignee_id)
        metrics = source.metrics(tickets)
    except DeskAPIError as exc:
        LOGGER.error("Unable to collect helpdesk data: %s", exc)
        raise

    dashboard_cfg = config.get("dashboard", {})
    return DashboardReportBuilder(
        tickets,
        metrics,
        name_map=name_map,
        departments=departments,
        view_filter=view_filter,
        now=utc_now(),
        trend_years=_trend_years(dashboard_cfg),
        page=page,
        page_sizes=dashboard_cfg.get("page_sizes"),
        sort_by=sort_by,
    )


def _create_source(config: dict, show_progress: bool) -> DeskDataSource:
    desk_cfg = config.get("desk", {})
    return DeskDataSource(
        _create_client(config),
        active_ttl=float(desk_cfg.get("cache_ttl_seconds", ACTIVE_CACHE_TTL)),
        archived_ttl=float(desk_cfg.get("archived_cache_ttl_seconds", ARCHIVED_CACHE_TTL)),
        show_progress=show_progress,
    )


def generate_dashboard(options: DashboardOptions, *, base_dir: Optional[Path] = None) -> Path:
    base_dir = base_dir or Path.cwd()
    config = load_config(options.config_path)
    _prepare_logging(config, options, base_dir=base_dir)

    source = _create_source(config, not options.show_console_log)
    view_filter = ViewFilter(
        agent_names=options.agents,
        statuses=options.statuses,
        start_date=options.start_date,
        end_date=options.end_date,
        query=options.search,
    )
    builder = _build_dashboard(
        config,
        source,
        department_value=options.department,
        view_filter=view_filter,
        page=options.page,
        sort_by=options.sort_by,
    )
    metrics = builder.build()

    dashboard_cfg = config.get("dashboard", {})
    output_directory = resolve_path(
        options.output_directory or dashboard_cfg.get("output_directory", "reports"), base=base_dir
    )
    report_root = output_directory / f"dashboard_{_current_utc_timestamp()}"
    report_root.mkdir(parents=True, exist_ok=True)

    filters = {
        "department": view_filter.department_name,
        "agents": sorted(options.agents or []),
        "statuses": sorted(options.statuses or []),
        "start_date": options.start_date,
        "end_date": options.end_date,
        "search": options.search,
    }

    formats = [fmt.lower() for fmt in options.formats or dashboard_cfg.get("formats", DEFAULT_FORMATS)]

    if "html" in formats:
        html_path = report_root / "dashboard.html"
        render_html(metrics, filters, html_path)
        LOGGER.info("HTML dashboard written to %s", html_path)

    if "pdf" in formats:
        pdf_path = report_root / "dashboard.pdf"
        render_pdf(metrics, filters, pdf_path)
        LOGGER.info("PDF dashboard written to %s", pdf_path)

    if "images" in formats:
        generated = render_images(metrics, report_root / "images")
        if generated:
            LOGGER.info("Generated %s chart images", len(generated))

    if "json" in formats:
        json_path = report_root / "metrics.json"
        save_metrics_json(metrics, json_path)
        LOGGER.info("Metrics JSON written to %s", json_path)

    if "csv" in formats:
        writer = DashboardTableWriter(output_directory=report_root)
        pending = builder.pending_rows()
        closed = builder.closed_rows()
        writer.write_performance(builder.agent_performance(pending, closed))
        writer.write_pending(pending)
        writer.write_closed(closed)

    return report_root


def agent_leaderboard(options: LeaderboardOptions, *, base_dir: Optional[Path] = None) -> List[AgentRollup]:
    """Return the top agents ordered by the requested metric."""
    base_dir = base_dir or Path.cwd()
    config = load_config(options.config_path)
    _prepare_logging(config, options, base_dir=base_dir)

    source = _create_source(config, not options.show_console_log)
    builder = _build_dashboard(
        config,
        source,
        department_value=options.department,
        view_filter=ViewFilter(start_date=options.start_date, end_date=options.end_date),
        sort_by=options.sort_by,
    )
    rollups = builder.agent_performance()
    return rollups[: max(options.top, 0)]
