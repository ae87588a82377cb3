"""Tests for event data classes."""

from helpdesk.events import Event, EventType


class TestEvent:
    """Tests for Event class."""

    def test_event_creation(self):
        """Event should store trigger, ticket_id, and context."""
        event = Event(
            trigger=EventType.DEADLINE_WARNING,
            ticket_id="ticket-1",
            fingerprint="2026-03-10T12:00:00",
            context={"now": None},
        )
        assert event.trigger == EventType.DEADLINE_WARNING
        assert event.ticket_id == "ticket-1"
        assert event.context == {"now": None}

    def test_dedupe_key_format(self):
        """dedupe_key should be {trigger}:{ticket_id}:{fingerprint}."""
        event = Event(
            trigger=EventType.ASSIGNED,
            ticket_id="ticket-9",
            fingerprint="assignee=user-2",
        )
        assert event.dedupe_key == "assigned:ticket-9:assignee=user-2"

    def test_event_type_values(self):
        """EventType values match the trigger names in notifications.yaml."""
        assert EventType.TICKET_CREATED.value == "ticket_created"
        assert EventType.COMMENT_ADDED.value == "comment_added"
        assert EventType.OVERDUE.value == "overdue"
