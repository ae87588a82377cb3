"""Event data classes for the notification system."""

from dataclasses import dataclass, field
from enum import Enum


class EventType(Enum):
    """Ticket events that can trigger user notifications."""

    TICKET_CREATED = "ticket_created"
    STATUS_CHANGED = "status_changed"
    COMMENT_ADDED = "comment_added"
    ASSIGNED = "assigned"
    DEADLINE_WARNING = "deadline_warning"
    OVERDUE = "overdue"


@dataclass
class Event:
    """Represents a notification event.

    Attributes:
        trigger: The type of event (from EventType enum)
        ticket_id: The ticket this event relates to
        fingerprint: Unique identifier for this specific event instance
        context: Additional data for message formatting
    """

    trigger: EventType
    ticket_id: str
    fingerprint: str
    context: dict = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        """Generate deduplication key for this event."""
        return f"{self.trigger.value}:{self.ticket_id}:{self.fingerprint}"
