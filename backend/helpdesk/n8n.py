"""n8n workflow integration.

n8n creates tickets through ``POST /webhooks/n8n/tickets`` and can consume
the flat payload built by ``generate_webhook_payload``.
"""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Optional

from .errors import ValidationError
from .models import Ticket, utcnow


def verify_n8n_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """Check the X-N8N-Signature header.

    The header must always be present; it is HMAC-SHA256 verified only when a
    secret is configured.
    """
    if not signature:
        return False
    if not secret:
        return True
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _parse_deadline(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid deadline: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_ticket_data(body: dict) -> dict:
    """Map an n8n request body onto ticket creation fields."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    return {
        "title": body.get("title") or "",
        "description": body.get("description") or "",
        "category": body.get("category") or "other",
        "priority": body.get("priority") or "medium",
        "status": body.get("status"),
        "assigned_to_id": body.get("assigned_to_id") or body.get("assignedToId"),
        "deadline": _parse_deadline(body.get("deadline")),
    }


def generate_webhook_payload(ticket: Ticket, event: str) -> dict:
    return {
        "event": event,
        "ticket": {
            "id": ticket.id,
            "title": ticket.title,
            "description": ticket.description,
            "category": ticket.category,
            "priority": ticket.priority,
            "status": ticket.status,
            "created_at": ticket.created_at.isoformat() if ticket.created_at else None,
            "updated_at": ticket.updated_at.isoformat() if ticket.updated_at else None,
            "deadline": ticket.deadline.isoformat() if ticket.deadline else None,
            "assigned_to_id": ticket.assigned_to_id,
            "assigned_to_name": ticket.assigned_to_name,
        },
        "timestamp": utcnow().isoformat() + "Z",
    }
