"""Ticket vocabulary, deadline policy and validation rules."""

import re
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from .errors import ValidationError

if TYPE_CHECKING:
    from .models import Comment, Ticket, User

STATUSES = ("open", "in_progress", "resolved", "closed")
PRIORITIES = ("low", "medium", "high", "critical")
CATEGORIES = ("software", "hardware", "network", "other")

# Tickets still waiting on the helpdesk
ACTIVE_STATUSES = {"open", "in_progress"}

STATUS_LABELS = {
    "open": "Aberto",
    "in_progress": "Em Andamento",
    "resolved": "Resolvido",
    "closed": "Fechado",
}

PRIORITY_LABELS = {
    "low": "Baixa",
    "medium": "Normal",
    "high": "Alta",
    "critical": "Urgente",
}

CATEGORY_LABELS = {
    "software": "Software",
    "hardware": "Hardware",
    "network": "Rede",
    "other": "Outro",
}

# Time allowed to resolve a ticket, by priority
PRIORITY_DEADLINES = {
    "low": timedelta(days=7),
    "medium": timedelta(days=3),
    "high": timedelta(hours=24),
    "critical": timedelta(hours=4),
}

# ClickUp list statuses and priority levels (1 = urgent ... 4 = low)
CLICKUP_STATUS_MAP = {
    "open": "ABERTO",
    "in_progress": "EM ANDAMENTO",
    "resolved": "RESOLVIDO",
    "closed": "FECHADO",
}
CLICKUP_STATUS_REVERSE_MAP = {v: k for k, v in CLICKUP_STATUS_MAP.items()}

CLICKUP_PRIORITY_MAP = {
    "critical": 1,
    "high": 2,
    "medium": 3,
    "low": 4,
}
CLICKUP_PRIORITY_REVERSE_MAP = {v: k for k, v in CLICKUP_PRIORITY_MAP.items()}

TITLE_MIN, TITLE_MAX = 3, 100
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 1000

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def compute_deadline(priority: str, start: datetime) -> datetime:
    """Deadline for a ticket of the given priority opened (or re-prioritised) at start."""
    return start + PRIORITY_DEADLINES[priority]


def is_valid_title(title: str) -> bool:
    return TITLE_MIN <= len(title) <= TITLE_MAX


def is_valid_description(description: str) -> bool:
    return DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX


def is_valid_deadline(deadline: datetime, now: datetime) -> bool:
    return deadline > now


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def is_overdue(ticket: "Ticket", now: datetime) -> bool:
    return ticket.deadline is not None and now > ticket.deadline


def can_edit_ticket(ticket: "Ticket", user: "User") -> bool:
    return user.is_admin or ticket.user_id == user.id


def can_delete_comment(comment: "Comment", user: "User") -> bool:
    return user.is_admin or comment.user_id == user.id


def format_time_remaining(deadline: datetime, now: datetime) -> str:
    """Compact countdown shown next to a ticket ("2d 5h", "3h", "<1h")."""
    diff = deadline - now
    if diff.total_seconds() < 0:
        return "Atrasado"

    days = diff.days
    hours = diff.seconds // 3600

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h"
    return "<1h"


def format_file_size(size: int) -> str:
    if size == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = 0
    value = float(size)
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def label_for(kind: str, value: str) -> str:
    """Display label for a status, priority or category value."""
    labels = {
        "status": STATUS_LABELS,
        "priority": PRIORITY_LABELS,
        "category": CATEGORY_LABELS,
    }[kind]
    return labels.get(value, value)


def validate_choice(kind: str, value: Optional[str]) -> None:
    """Raise ValidationError if value is not a known status/priority/category."""
    allowed = {"status": STATUSES, "priority": PRIORITIES, "category": CATEGORIES}[
        kind
    ]
    if value not in allowed:
        raise ValidationError(f"Invalid {kind}: {value}")
