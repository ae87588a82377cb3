"""Dashboard metrics computed over a set of tickets."""

from datetime import datetime, timedelta
from typing import Optional

from .models import Ticket, utcnow
from .ticket_rules import (
    ACTIVE_STATUSES,
    CATEGORIES,
    CATEGORY_LABELS,
    STATUSES,
    STATUS_LABELS,
    is_overdue,
)

VARIATION_WINDOW = timedelta(days=7)


def compute_metrics(tickets: list[Ticket], now: Optional[datetime] = None) -> dict:
    """Summary numbers and chart series for the dashboard.

    ``ticket_variation`` compares tickets opened in the last 7 days with the
    7 days before, as a percentage (0 when the previous period was empty).
    """
    now = now or utcnow()

    total = len(tickets)
    open_count = sum(1 for t in tickets if t.status == "open")
    resolved = [t for t in tickets if t.status == "resolved"]

    resolution_seconds = sum(
        (t.updated_at - t.created_at).total_seconds()
        for t in resolved
        if t.updated_at and t.created_at
    )
    avg_resolution = resolution_seconds / (len(resolved) or 1)

    recent_start = now - VARIATION_WINDOW
    previous_start = now - 2 * VARIATION_WINDOW
    recent = sum(1 for t in tickets if t.created_at and t.created_at >= recent_start)
    previous = sum(
        1
        for t in tickets
        if t.created_at and previous_start <= t.created_at < recent_start
    )
    variation = ((recent - previous) / previous) * 100 if previous else 0.0

    overdue = sum(
        1 for t in tickets if t.status in ACTIVE_STATUSES and is_overdue(t, now)
    )

    return {
        "total_tickets": total,
        "open_tickets": open_count,
        "resolved_tickets": len(resolved),
        "avg_resolution_time": avg_resolution,
        "ticket_variation": variation,
        "overdue_tickets": overdue,
        "status_data": [
            {
                "status": status,
                "name": STATUS_LABELS[status],
                "value": sum(1 for t in tickets if t.status == status),
            }
            for status in STATUSES
        ],
        "category_data": [
            {
                "category": category,
                "name": CATEGORY_LABELS[category],
                "count": sum(1 for t in tickets if t.category == category),
            }
            for category in CATEGORIES
        ],
    }
