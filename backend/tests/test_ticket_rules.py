"""Tests for ticket vocabulary and validation rules."""

import pytest
from datetime import datetime, timedelta

from helpdesk.errors import ValidationError
from helpdesk.models import Comment, Ticket, User
from helpdesk.ticket_rules import (
    CLICKUP_PRIORITY_MAP,
    CLICKUP_PRIORITY_REVERSE_MAP,
    CLICKUP_STATUS_MAP,
    CLICKUP_STATUS_REVERSE_MAP,
    can_delete_comment,
    can_edit_ticket,
    compute_deadline,
    format_file_size,
    format_time_remaining,
    is_overdue,
    is_valid_deadline,
    is_valid_description,
    is_valid_email,
    is_valid_title,
    label_for,
    validate_choice,
)

NOW = datetime(2026, 3, 10, 12, 0)


class TestComputeDeadline:
    """Deadline windows by priority."""

    @pytest.mark.parametrize(
        "priority,expected",
        [
            ("low", timedelta(days=7)),
            ("medium", timedelta(days=3)),
            ("high", timedelta(hours=24)),
            ("critical", timedelta(hours=4)),
        ],
    )
    def test_window(self, priority, expected):
        assert compute_deadline(priority, NOW) == NOW + expected


class TestValidators:
    def test_title_bounds(self):
        assert not is_valid_title("ab")
        assert is_valid_title("abc")
        assert is_valid_title("x" * 100)
        assert not is_valid_title("x" * 101)

    def test_description_bounds(self):
        assert not is_valid_description("too short")
        assert is_valid_description("ten chars!")
        assert not is_valid_description("x" * 1001)

    def test_deadline_must_be_future(self):
        assert is_valid_deadline(NOW + timedelta(minutes=1), NOW)
        assert not is_valid_deadline(NOW, NOW)
        assert not is_valid_deadline(NOW - timedelta(hours=1), NOW)

    def test_email(self):
        assert is_valid_email("ana@empresa.com.br")
        assert not is_valid_email("ana@empresa")
        assert not is_valid_email("ana empresa@x.com")

    def test_validate_choice_rejects_unknown(self):
        validate_choice("status", "in_progress")
        with pytest.raises(ValidationError, match="Invalid priority"):
            validate_choice("priority", "urgent")


class TestOverdue:
    def test_past_deadline_is_overdue(self):
        ticket = Ticket(deadline=NOW - timedelta(minutes=1))
        assert is_overdue(ticket, NOW)

    def test_no_deadline_never_overdue(self):
        assert not is_overdue(Ticket(deadline=None), NOW)


class TestPermissions:
    def test_owner_can_edit(self):
        user = User(id="u1", role="user")
        assert can_edit_ticket(Ticket(user_id="u1"), user)
        assert not can_edit_ticket(Ticket(user_id="u2"), user)

    def test_admin_can_edit_anything(self):
        assert can_edit_ticket(Ticket(user_id="u2"), User(id="a", role="admin"))

    def test_comment_author_can_delete(self):
        comment = Comment(user_id="u1")
        assert can_delete_comment(comment, User(id="u1", role="user"))
        assert not can_delete_comment(comment, User(id="u2", role="user"))
        assert can_delete_comment(comment, User(id="a", role="admin"))


class TestFormatting:
    def test_time_remaining_days_and_hours(self):
        assert format_time_remaining(NOW + timedelta(days=2, hours=5), NOW) == "2d 5h"

    def test_time_remaining_hours(self):
        assert format_time_remaining(NOW + timedelta(hours=3, minutes=30), NOW) == "3h"

    def test_time_remaining_under_an_hour(self):
        assert format_time_remaining(NOW + timedelta(minutes=20), NOW) == "<1h"

    def test_time_remaining_late(self):
        assert format_time_remaining(NOW - timedelta(seconds=1), NOW) == "Atrasado"

    def test_file_size(self):
        assert format_file_size(0) == "0 Bytes"
        assert format_file_size(500) == "500 Bytes"
        assert format_file_size(1536) == "1.5 KB"
        assert format_file_size(5 * 1024 * 1024) == "5 MB"

    def test_labels(self):
        assert label_for("status", "in_progress") == "Em Andamento"
        assert label_for("priority", "critical") == "Urgente"
        assert label_for("category", "network") == "Rede"
        assert label_for("category", "unknown") == "unknown"


class TestClickUpMaps:
    def test_status_map_round_trips(self):
        for status, clickup in CLICKUP_STATUS_MAP.items():
            assert CLICKUP_STATUS_REVERSE_MAP[clickup] == status

    def test_priority_levels(self):
        assert CLICKUP_PRIORITY_MAP["critical"] == 1
        assert CLICKUP_PRIORITY_MAP["low"] == 4
        assert CLICKUP_PRIORITY_REVERSE_MAP[2] == "high"
