"""Tests for the n8n integration helpers."""

import hashlib
import hmac

import pytest
from datetime import datetime

from helpdesk.errors import ValidationError
from helpdesk.n8n import generate_webhook_payload, parse_ticket_data, verify_n8n_signature


class TestSignature:
    def test_header_required(self):
        assert verify_n8n_signature(b"{}", None, "") is False

    def test_any_signature_without_secret(self):
        assert verify_n8n_signature(b"{}", "anything", "") is True

    def test_hmac_checked_with_secret(self):
        body = b'{"title": "x"}'
        good = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        assert verify_n8n_signature(body, good, "s3cret") is True
        assert verify_n8n_signature(body, "bad", "s3cret") is False


class TestParseTicketData:
    def test_defaults(self):
        data = parse_ticket_data({"title": "Email fora", "description": "Outlook sem sync"})
        assert data["category"] == "other"
        assert data["priority"] == "medium"
        assert data["deadline"] is None

    def test_camel_case_assignee_and_deadline(self):
        data = parse_ticket_data(
            {"assignedToId": "user-2", "deadline": "2026-03-10T09:00:00-03:00"}
        )
        assert data["assigned_to_id"] == "user-2"
        assert data["deadline"] == datetime(2026, 3, 10, 12, 0)

    def test_bad_deadline(self):
        with pytest.raises(ValidationError):
            parse_ticket_data({"deadline": "amanhã"})

    def test_body_must_be_object(self):
        with pytest.raises(ValidationError):
            parse_ticket_data(["x"])


class TestPayload:
    def test_flat_ticket_payload(self, sample_ticket):
        payload = generate_webhook_payload(sample_ticket, "ticket.created")
        assert payload["event"] == "ticket.created"
        assert payload["ticket"]["id"] == "ticket-1"
        assert payload["ticket"]["deadline"] == sample_ticket.deadline.isoformat()
        assert payload["timestamp"].endswith("Z")
