"""Agent and department reporting for Zoho Desk helpdesks."""

from .config import ConfigError, load_config, load_departments, resolve_path
from .logging_setup import configure_logging
from .desk_client import DeskAPIError, DeskAuth, DeskClient
from .cache import TTLCache
from .reconcile import Department, TicketMetrics, TicketRecord, reconcile, resolve_agent_name
from .aging import AgingTable, build_aging_table, bucket_for_age
from .performance import AgentRollup, build_agent_rollups, summarize_rollups
from .trends import build_yearly_trend
from .views import ViewFilter, filter_rows, paginate, sort_rows
from .report_generation import DashboardReportBuilder
from .reporting import DashboardTableWriter

__all__ = [
    "ConfigError",
    "load_config",
    "load_departments",
    "resolve_path",
    "configure_logging",
    "DeskAPIError",
    "DeskAuth",
    "DeskClient",
    "TTLCache",
    "Department",
    "TicketMetrics",
    "TicketRecord",
    "reconcile",
    "resolve_agent_name",
    "AgingTable",
    "build_aging_table",
    "bucket_for_age",
    "AgentRollup",
    "build_agent_rollups",
    "summarize_rollups",
    "build_yearly_trend",
    "ViewFilter",
    "filter_rows",
    "paginate",
    "sort_rows",
    "DashboardReportBuilder",
    "DashboardTableWriter",
]
