"""Deadline monitor for the notification system.

Detects approaching and missed deadlines on active tickets and records what
was already notified in each ticket's notification_state.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .events import Event, EventType
from .models import Ticket, utcnow
from .notifier import TicketNotifier
from .ticket_rules import ACTIVE_STATUSES, PRIORITY_DEADLINES

logger = logging.getLogger(__name__)

# Warn once the remaining time drops below this share of the priority window
WARNING_FRACTION = 0.25
MAX_DEDUPE_KEYS = 50


class DeadlineDetector:
    """Detects deadline events from a ticket and its notification_state."""

    def detect(self, ticket: Ticket, now: datetime) -> list[Event]:
        events = []
        state = ticket.notification_state or {}

        warning = self._check_deadline_warning(ticket, state, now)
        if warning:
            events.append(warning)

        overdue = self._check_overdue(ticket, state, now)
        if overdue:
            events.append(overdue)

        return events

    def _check_deadline_warning(
        self, ticket: Ticket, state: dict, now: datetime
    ) -> Optional[Event]:
        if not ticket.deadline or ticket.deadline <= now:
            return None

        window = PRIORITY_DEADLINES.get(ticket.priority)
        if window is None:
            return None

        remaining = ticket.deadline - now
        if remaining > window * WARNING_FRACTION:
            return None

        # One warning per deadline value
        fingerprint = ticket.deadline.isoformat()
        if state.get("last_deadline_notified") == fingerprint:
            return None

        return Event(
            trigger=EventType.DEADLINE_WARNING,
            ticket_id=ticket.id,
            fingerprint=fingerprint,
            context={"now": now, "remaining_seconds": int(remaining.total_seconds())},
        )

    def _check_overdue(
        self, ticket: Ticket, state: dict, now: datetime
    ) -> Optional[Event]:
        if not ticket.deadline or ticket.deadline >= now:
            return None

        # Only notify once per day
        today = str(now.date())
        if state.get("last_overdue_notified") == today:
            return None

        return Event(
            trigger=EventType.OVERDUE,
            ticket_id=ticket.id,
            fingerprint=f"overdue:{today}",
            context={"now": now, "days_overdue": (now - ticket.deadline).days},
        )


def update_notification_state(ticket: Ticket, event: Event, now: datetime) -> None:
    """Record a sent deadline event on the ticket."""
    state = dict(ticket.notification_state or {})

    dedupe_keys = list(state.get("dedupe_keys", []))
    dedupe_keys.append(event.dedupe_key)
    state["dedupe_keys"] = dedupe_keys[-MAX_DEDUPE_KEYS:]

    if event.trigger == EventType.DEADLINE_WARNING:
        state["last_deadline_notified"] = event.fingerprint
    elif event.trigger == EventType.OVERDUE:
        state["last_overdue_notified"] = str(now.date())

    ticket.notification_state = state


async def check_deadlines(
    db: Session,
    notifier: Optional[TicketNotifier] = None,
    now: Optional[datetime] = None,
) -> int:
    """Scan active tickets and send deadline notifications.

    Returns the number of events that were notified.
    """
    now = now or utcnow()
    notifier = notifier or TicketNotifier(db)
    detector = DeadlineDetector()

    tickets = (
        db.query(Ticket)
        .filter(Ticket.status.in_(ACTIVE_STATUSES), Ticket.deadline.isnot(None))
        .all()
    )

    sent = 0
    for ticket in tickets:
        for event in detector.detect(ticket, now):
            if await notifier.notify(event, ticket):
                sent += 1
            # Recorded even when rules blocked it, so it is not re-evaluated
            update_notification_state(ticket, event, now)
        db.commit()  # Commit after each ticket for atomicity

    if sent:
        logger.info(f"Deadline check sent {sent} notifications")
    return sent
