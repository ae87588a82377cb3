"""Apply inbound ClickUp webhook events to the mirrored tickets.

Changes arriving from ClickUp are written straight to the ticket and do not
fire outbound webhooks, so a mirror automation cannot loop back on itself.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import NotFoundError
from ..models import Comment, User
from ..ticket_rules import CLICKUP_PRIORITY_REVERSE_MAP, CLICKUP_STATUS_REVERSE_MAP
from ..tickets import TicketService, comment_dict

logger = logging.getLogger(__name__)


def _first_history_item(payload: dict) -> dict:
    items = payload.get("history_items") or [{}]
    return items[0] or {}


def _parse_priority(value) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("priority") or value.get("id")
    try:
        return CLICKUP_PRIORITY_REVERSE_MAP.get(int(value))
    except (TypeError, ValueError):
        return None


def _parse_due_date(value) -> Optional[datetime]:
    try:
        stamp = datetime.fromtimestamp(int(value) / 1000, timezone.utc)
    except (TypeError, ValueError):
        return None
    return stamp.replace(tzinfo=None)


def task_update_changes(payload: dict) -> dict:
    """Translate taskUpdated history items into ticket field changes."""
    changes = {}
    for item in payload.get("history_items") or []:
        field = item.get("field")
        after = item.get("after")
        if field == "name" and after:
            changes["title"] = after
        elif field == "description" and after is not None:
            changes["description"] = after
        elif field == "priority":
            priority = _parse_priority(after)
            if priority:
                changes["priority"] = priority
        elif field == "due_date":
            deadline = _parse_due_date(after)
            if deadline:
                changes["deadline"] = deadline
                changes["deadline_reason"] = "ClickUp due date"
    return changes


class ClickUpEventHandler:
    """Handles ClickUp webhook payloads for tickets linked by task id."""

    def __init__(self, service: TicketService):
        self.service = service
        self.db = service.db

    async def handle(self, payload: dict) -> dict:
        event = payload.get("event") or payload.get("event_type") or ""
        task_id = payload.get("task_id") or (payload.get("task") or {}).get("id")

        if not task_id:
            return {"status": "ok", "event": event, "message": "No task data"}

        ticket = self.service.find_by_task_id(str(task_id))
        if not ticket:
            raise NotFoundError(f"No ticket linked to ClickUp task '{task_id}'")

        logger.info(f"ClickUp webhook: {event} for task {task_id} (ticket {ticket.id})")
        result = {"status": "ok", "event": event, "ticket_id": ticket.id}

        if event == "taskStatusUpdated":
            await self._status_updated(ticket.id, payload)
        elif event == "taskDeleted":
            await self.service.delete_ticket(ticket.id, None, dispatch_webhooks=False)
        elif event == "taskUpdated":
            changes = task_update_changes(payload)
            if changes:
                await self.service.update_ticket(
                    ticket.id, changes, None, dispatch_webhooks=False
                )
        elif event == "taskCommentPosted":
            comment = await self._comment_posted(ticket.id, payload)
            if comment is not None:
                result["comment"] = comment_dict(comment)
        elif event == "taskAssigned":
            await self._assigned(ticket.id, payload)
        else:
            logger.debug(f"Ignoring ClickUp event {event}")

        return result

    async def _status_updated(self, ticket_id: str, payload: dict):
        after = _first_history_item(payload).get("after") or {}
        new_status = after.get("status") if isinstance(after, dict) else after
        status = CLICKUP_STATUS_REVERSE_MAP.get((new_status or "").upper())
        if not status:
            logger.warning(f"Unmapped ClickUp status {new_status!r}")
            return
        await self.service.update_ticket(
            ticket_id, {"status": status}, None, dispatch_webhooks=False
        )

    async def _comment_posted(self, ticket_id: str, payload: dict) -> Optional[Comment]:
        comment = _first_history_item(payload).get("comment") or {}
        text = comment.get("text_content")
        if not text:
            return None
        author = (comment.get("user") or {}).get("username")
        return await self.service.add_comment(
            ticket_id, text, None, author_name=author, dispatch_webhooks=False
        )

    async def _assigned(self, ticket_id: str, payload: dict):
        after = _first_history_item(payload).get("after") or {}
        assignees = after.get("assignees") if isinstance(after, dict) else None
        if not assignees:
            return
        assignee = assignees[0]

        # Prefer the helpdesk account with the same email
        user = None
        if assignee.get("email"):
            user = (
                self.db.query(User)
                .filter(User.email == assignee["email"].lower())
                .first()
            )
        if user:
            await self.service.update_ticket(
                ticket_id, {"assigned_to_id": user.id}, None, dispatch_webhooks=False
            )
            return

        ticket = self.service.get_ticket(ticket_id)
        ticket.assigned_to_id = str(assignee.get("id"))
        ticket.assigned_to_name = assignee.get("username")
        self.db.commit()
