"""YAML settings for the dashboard: desk credentials, output locations and the
department table."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .reconcile import Department

LOGGER = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


PACKAGE_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_CONFIG_LOCATIONS = (
    PACKAGE_ROOT / "config" / "config.yaml",
    PACKAGE_ROOT / "config" / "config.yml",
    PACKAGE_ROOT / "config" / "config.json",
    Path("./config/config.yaml"),
    Path("./config/config.yml"),
    Path("./config/config.json"),
    Path.home() / ".desk_insights" / "config.yaml",
)


def resolve_path(path_str: str | None, *, base: Path | None = None) -> Path:
    """Turn a configured path into a ``Path``, anchoring relative ones at ``base``.

    An empty value yields ``base`` itself (the working directory by default).
    """
    base_path = base or Path.cwd()
    if not path_str:
        return base_path
    path = Path(path_str)
    if not path.is_absolute():
        path = base_path / path
    return path


def load_config(path: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    """Read the dashboard settings mapping.

    An explicit ``path`` (the tools' ``--config`` flag) is the only file tried.
    Otherwise the first existing entry of ``DEFAULT_CONFIG_LOCATIONS`` wins. An
    empty file yields ``{}``; unreadable YAML or no file at all raises
    ``ConfigError``.
    """
    if path:
        candidate_paths = [Path(path)]
    else:
        candidate_paths = list(DEFAULT_CONFIG_LOCATIONS)

    for candidate in candidate_paths:
        if candidate.exists():
            with candidate.open("r", encoding="utf-8") as handle:
                try:
                    return yaml.safe_load(handle) or {}
                except yaml.YAMLError as exc:
                    raise ConfigError(f"Settings file {candidate} is not valid YAML") from exc
    raise ConfigError(
        "No dashboard settings found. Pass --config or copy "
        "config/config.example.yaml to config/config.yaml."
    )


def load_departments(config: Dict[str, Any]) -> List[Department]:
    """Return the static department table declared under ``departments``.

    Identifiers are kept as strings, matching the API payloads.
    """
    departments: List[Department] = []
    for entry in config.get("departments") or []:
        if not isinstance(entry, dict):
            LOGGER.warning("Ignoring malformed department entry %r", entry)
            continue
        dept_id = entry.get("id")
        if dept_id in (None, ""):
            LOGGER.warning("Ignoring department without an id: %r", entry)
            continue
        departments.append(Department(id=str(dept_id), name=str(entry.get("name") or "")))
    return departments
