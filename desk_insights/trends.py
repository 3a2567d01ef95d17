"""Created versus resolved ticket counts per calendar year."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from .reconcile import TicketRecord


@dataclass(frozen=True)
class YearlyBucket:
    year: int
    created: int = 0
    resolved: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"year": self.year, "created": self.created, "resolved": self.resolved}


def build_yearly_trend(
    tickets: Iterable[TicketRecord],
    years: Optional[Iterable[int]] = None,
) -> Dict[int, YearlyBucket]:
    """Count creations by creation year and resolutions by closure year.

    Without ``years`` only years with activity appear. With ``years`` the
    result covers exactly those years, zero-filled, and activity outside the
    range is ignored. Keys are returned in ascending order.
    """
    created: Counter = Counter()
    resolved: Counter = Counter()
    for ticket in tickets:
        if ticket.created_time is not None:
            created[ticket.created_time.year] += 1
        if ticket.is_resolved and ticket.closed_time is not None:
            resolved[ticket.closed_time.year] += 1

    if years is None:
        span = set(created) | set(resolved)
    else:
        span = set(years)
    return {
        year: YearlyBucket(year, created=created[year], resolved=resolved[year])
        for year in sorted(span)
    }
