"""Tests for dashboard metrics."""

from datetime import datetime, timedelta

from helpdesk.dashboard import compute_metrics
from helpdesk.models import Ticket

NOW = datetime(2026, 3, 10, 12, 0)


def _ticket(status="open", category="software", created_days_ago=1, **kwargs):
    created = NOW - timedelta(days=created_days_ago)
    return Ticket(
        status=status,
        category=category,
        priority="medium",
        created_at=created,
        updated_at=kwargs.pop("updated_at", created),
        deadline=kwargs.pop("deadline", NOW + timedelta(days=1)),
        **kwargs,
    )


class TestComputeMetrics:
    def test_empty(self):
        metrics = compute_metrics([], NOW)
        assert metrics["total_tickets"] == 0
        assert metrics["avg_resolution_time"] == 0
        assert metrics["ticket_variation"] == 0.0
        assert [s["value"] for s in metrics["status_data"]] == [0, 0, 0, 0]

    def test_counts(self):
        tickets = [
            _ticket(),
            _ticket(category="network"),
            _ticket(status="closed", category="network"),
            _ticket(deadline=NOW - timedelta(hours=1)),
        ]
        metrics = compute_metrics(tickets, NOW)

        assert metrics["total_tickets"] == 4
        assert metrics["open_tickets"] == 3
        assert metrics["overdue_tickets"] == 1
        network = next(c for c in metrics["category_data"] if c["category"] == "network")
        assert network == {"category": "network", "name": "Rede", "count": 2}

    def test_average_resolution(self):
        tickets = [
            _ticket(
                status="resolved",
                created_days_ago=2,
                updated_at=NOW - timedelta(days=2) + timedelta(hours=2),
            ),
            _ticket(
                status="resolved",
                created_days_ago=2,
                updated_at=NOW - timedelta(days=2) + timedelta(hours=4),
            ),
        ]
        assert compute_metrics(tickets, NOW)["avg_resolution_time"] == 3 * 3600

    def test_resolved_not_overdue(self):
        ticket = _ticket(status="resolved", deadline=NOW - timedelta(days=1))
        assert compute_metrics([ticket], NOW)["overdue_tickets"] == 0

    def test_weekly_variation(self):
        tickets = [_ticket(created_days_ago=d) for d in (1, 2, 3, 10)]
        # 3 this week against 1 the week before
        assert compute_metrics(tickets, NOW)["ticket_variation"] == 200.0
