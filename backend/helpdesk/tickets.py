"""Ticket lifecycle.

Every mutation goes through ``TicketService`` so that outbound webhooks and
user notifications stay consistent with what is stored.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .events import Event, EventType
from .models import (
    Attachment,
    Comment,
    CommentThread,
    DeadlineHistory,
    Ticket,
    User,
    utcnow,
)
from .notifier import TicketNotifier
from .ticket_rules import (
    can_delete_comment,
    can_edit_ticket,
    compute_deadline,
    is_valid_deadline,
    is_valid_description,
    is_valid_title,
    validate_choice,
    DESCRIPTION_MAX,
    DESCRIPTION_MIN,
    TITLE_MAX,
    TITLE_MIN,
)
from .webhooks import WebhookDispatcher, WebhookResponse

logger = logging.getLogger(__name__)

# Creator id for tickets opened by integrations (n8n, ClickUp)
SYSTEM_USER_ID = "system"
SYSTEM_USER_NAME = "Sistema"

EDITABLE_FIELDS = ("title", "description", "category", "priority", "status")


def can_view_ticket(ticket: Ticket, user: User) -> bool:
    return (
        user.is_admin
        or ticket.user_id == user.id
        or ticket.assigned_to_id == user.id
    )


def _validate_text(title: Optional[str], description: Optional[str]) -> None:
    if title is not None and not is_valid_title(title):
        raise ValidationError(
            f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters"
        )
    if description is not None and not is_valid_description(description):
        raise ValidationError(
            f"Description must be between {DESCRIPTION_MIN} and "
            f"{DESCRIPTION_MAX} characters"
        )


class TicketService:
    """Create, change and query tickets.

    ``user=None`` on a mutation means the change comes from an integration:
    permission checks are skipped and the user is recorded as ``system``.
    """

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[WebhookDispatcher] = None,
        notifier: Optional[TicketNotifier] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher or WebhookDispatcher(db)
        self.notifier = notifier or TicketNotifier(db)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.db.query(Ticket).filter(Ticket.id == ticket_id).first()
        if not ticket:
            raise NotFoundError(f"Ticket '{ticket_id}' not found")
        return ticket

    def get_visible_ticket(self, ticket_id: str, user: User) -> Ticket:
        ticket = self.get_ticket(ticket_id)
        if not can_view_ticket(ticket, user):
            raise PermissionDeniedError("You do not have access to this ticket")
        return ticket

    def list_tickets(
        self,
        user: User,
        search: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Ticket]:
        """Tickets visible to the user, newest first.

        Filters accept ``"all"`` (or None) to mean no filter.
        """
        query = self.db.query(Ticket)
        if not user.is_admin:
            query = query.filter(
                or_(Ticket.user_id == user.id, Ticket.assigned_to_id == user.id)
            )
        if status and status != "all":
            query = query.filter(Ticket.status == status)
        if priority and priority != "all":
            query = query.filter(Ticket.priority == priority)
        if category and category != "all":
            query = query.filter(Ticket.category == category)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(Ticket.title.ilike(pattern), Ticket.description.ilike(pattern))
            )
        return query.order_by(Ticket.created_at.desc()).all()

    def find_by_title(self, prefix: str, limit: int = 10) -> list[Ticket]:
        return (
            self.db.query(Ticket)
            .filter(Ticket.title.like(f"{prefix}%"))
            .order_by(Ticket.title)
            .limit(limit)
            .all()
        )

    def find_by_task_id(self, task_id: str) -> Optional[Ticket]:
        return self.db.query(Ticket).filter(Ticket.task_id == str(task_id)).first()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_can_edit(self, ticket: Ticket, user: Optional[User]) -> None:
        if user is None:
            return
        if not (can_edit_ticket(ticket, user) or ticket.assigned_to_id == user.id):
            raise PermissionDeniedError("You cannot change this ticket")

    def _apply_webhook_response(
        self,
        ticket: Ticket,
        response: Optional[WebhookResponse],
        overwrite: bool,
    ) -> None:
        """Store ids returned by webhook receivers on the ticket."""
        if not response:
            return
        changed = False
        if response.task_id and (overwrite or not ticket.task_id):
            ticket.task_id = response.task_id
            changed = True
        if response.gmail_id and (overwrite or not ticket.gmail_id):
            ticket.gmail_id = response.gmail_id
            changed = True
        if changed:
            self.db.commit()
            logger.info(
                f"Ticket {ticket.id} linked to task={ticket.task_id} "
                f"gmail={ticket.gmail_id}"
            )

    async def _notify(
        self, trigger: EventType, ticket: Ticket, fingerprint: str, **context
    ) -> None:
        event = Event(
            trigger=trigger,
            ticket_id=ticket.id,
            fingerprint=fingerprint,
            context=context,
        )
        await self.notifier.notify(event, ticket)

    def _resolve_assignee(self, assignee_id: Optional[str]) -> Optional[User]:
        if not assignee_id:
            return None
        assignee = self.db.query(User).filter(User.id == assignee_id).first()
        if not assignee:
            raise ValidationError(f"Unknown assignee '{assignee_id}'")
        return assignee

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_ticket(self, data: dict, user: Optional[User]) -> Ticket:
        """Open a ticket.

        ``data`` holds title, description, category and priority, plus the
        optional status, deadline and assigned_to_id used by integrations.
        """
        title = data.get("title") or ""
        description = data.get("description") or ""
        _validate_text(title, description)
        validate_choice("category", data.get("category"))
        validate_choice("priority", data.get("priority"))
        status = data.get("status") or "open"
        validate_choice("status", status)

        now = utcnow()
        deadline = data.get("deadline")
        if deadline is not None:
            if not is_valid_deadline(deadline, now):
                raise ValidationError("Deadline must be in the future")
        else:
            deadline = compute_deadline(data["priority"], now)

        assignee = self._resolve_assignee(data.get("assigned_to_id"))

        ticket = Ticket(
            title=title,
            description=description,
            category=data["category"],
            priority=data["priority"],
            status=status,
            deadline=deadline,
            user_id=user.id if user else SYSTEM_USER_ID,
            assigned_to_id=assignee.id if assignee else None,
            assigned_to_name=assignee.name if assignee else None,
            created_at=now,
            updated_at=now,
        )
        self.db.add(ticket)
        self.db.commit()
        self.db.refresh(ticket)
        logger.info(f"Ticket {ticket.id} created: {ticket.title} ({ticket.priority})")

        response = await self.dispatcher.dispatch("ticket.created", ticket)
        self._apply_webhook_response(ticket, response, overwrite=True)

        await self._notify(
            EventType.TICKET_CREATED,
            ticket,
            "created",
            actor_id=ticket.user_id,
        )
        if assignee:
            await self._notify(
                EventType.ASSIGNED,
                ticket,
                f"assignee={assignee.id}",
                actor_id=ticket.user_id,
            )
        return ticket

    async def update_ticket(
        self,
        ticket_id: str,
        changes: dict,
        user: Optional[User],
        dispatch_webhooks: bool = True,
    ) -> Ticket:
        """Apply field changes to a ticket.

        Supported keys: title, description, category, priority (with an
        optional ``priority_reason``), status, assigned_to_id and deadline
        (with an optional ``deadline_reason``). A priority change resets the
        deadline from the new priority; an explicit deadline must be in the
        future and is recorded in the deadline history.
        """
        ticket = self.get_ticket(ticket_id)
        self._check_can_edit(ticket, user)

        _validate_text(changes.get("title"), changes.get("description"))
        for kind in ("category", "priority", "status"):
            if changes.get(kind) is not None:
                validate_choice(kind, changes[kind])

        reassign = (
            "assigned_to_id" in changes
            and changes["assigned_to_id"] != ticket.assigned_to_id
        )
        assignee = None
        if reassign:
            if user is not None and not user.is_admin:
                raise PermissionDeniedError("Only administrators can assign tickets")
            assignee = self._resolve_assignee(changes["assigned_to_id"])

        now = utcnow()
        new_deadline = changes.get("deadline")
        if new_deadline is not None and not is_valid_deadline(new_deadline, now):
            raise ValidationError("Deadline must be in the future")

        previous_status = ticket.status
        previous_assignee = ticket.assigned_to_id

        for field in EDITABLE_FIELDS:
            value = changes.get(field)
            if value is None or value == getattr(ticket, field):
                continue
            if field == "priority":
                ticket.priority_locked_by = user.id if user else SYSTEM_USER_ID
                ticket.priority_locked_at = now
                ticket.priority_reason = changes.get("priority_reason")
                ticket.deadline = compute_deadline(value, now)
            setattr(ticket, field, value)

        if new_deadline is not None and new_deadline != ticket.deadline:
            ticket.deadline_history.append(
                DeadlineHistory(
                    old_deadline=ticket.deadline,
                    new_deadline=new_deadline,
                    reason=changes.get("deadline_reason") or "Prazo alterado",
                    extended_by=user.id if user else SYSTEM_USER_ID,
                    extended_at=now,
                )
            )
            ticket.deadline = new_deadline
            state = dict(ticket.notification_state or {})
            state.pop("last_deadline_notified", None)
            ticket.notification_state = state

        if reassign:
            ticket.assigned_to_id = assignee.id if assignee else None
            ticket.assigned_to_name = assignee.name if assignee else None

        ticket.updated_at = now
        self.db.commit()
        self.db.refresh(ticket)

        status_changed = ticket.status != previous_status
        assignee_changed = ticket.assigned_to_id != previous_assignee
        actor_id = user.id if user else SYSTEM_USER_ID

        if dispatch_webhooks:
            response = await self.dispatcher.dispatch("ticket.updated", ticket)
            self._apply_webhook_response(ticket, response, overwrite=False)
            if status_changed:
                await self.dispatcher.dispatch(
                    "ticket.status_changed",
                    ticket,
                    extra={"previous_status": previous_status},
                )
            if assignee_changed:
                await self.dispatcher.dispatch(
                    "ticket.assigned",
                    ticket,
                    extra={"previous_assignee": previous_assignee},
                )

        if status_changed:
            await self._notify(
                EventType.STATUS_CHANGED,
                ticket,
                f"status={ticket.status}:{now.isoformat()}",
                actor_id=actor_id,
                previous_status=previous_status,
            )
        if assignee_changed and ticket.assigned_to_id:
            await self._notify(
                EventType.ASSIGNED,
                ticket,
                f"assignee={ticket.assigned_to_id}",
                actor_id=actor_id,
            )

        logger.info(f"Ticket {ticket.id} updated by {actor_id}")
        return ticket

    async def update_status(
        self, ticket_id: str, status: str, user: Optional[User]
    ) -> Ticket:
        return await self.update_ticket(ticket_id, {"status": status}, user)

    async def update_priority(
        self,
        ticket_id: str,
        priority: str,
        user: Optional[User],
        reason: Optional[str] = None,
    ) -> Ticket:
        return await self.update_ticket(
            ticket_id, {"priority": priority, "priority_reason": reason}, user
        )

    async def assign(
        self, ticket_id: str, assignee_id: Optional[str], user: Optional[User]
    ) -> Ticket:
        return await self.update_ticket(
            ticket_id, {"assigned_to_id": assignee_id}, user
        )

    async def extend_deadline(
        self,
        ticket_id: str,
        new_deadline: datetime,
        reason: str,
        user: User,
    ) -> Ticket:
        ticket = self.get_ticket(ticket_id)
        self._check_can_edit(ticket, user)

        now = utcnow()
        if not is_valid_deadline(new_deadline, now):
            raise ValidationError("Deadline must be in the future")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to extend the deadline")

        ticket.deadline_history.append(
            DeadlineHistory(
                old_deadline=ticket.deadline,
                new_deadline=new_deadline,
                reason=reason.strip(),
                extended_by=user.id,
                extended_at=now,
            )
        )
        ticket.deadline = new_deadline
        ticket.updated_at = now
        # A new deadline re-arms the deadline reminders
        state = dict(ticket.notification_state or {})
        state.pop("last_deadline_notified", None)
        ticket.notification_state = state
        self.db.commit()
        self.db.refresh(ticket)

        logger.info(f"Ticket {ticket.id} deadline extended to {new_deadline}")
        await self.dispatcher.dispatch(
            "ticket.updated",
            ticket,
            extra={"deadline_extension": {"reason": reason.strip(), "by": user.id}},
        )
        return ticket

    async def delete_ticket(
        self, ticket_id: str, user: Optional[User], dispatch_webhooks: bool = True
    ) -> None:
        ticket = self.get_ticket(ticket_id)
        if user is not None and not can_edit_ticket(ticket, user):
            raise PermissionDeniedError("You cannot delete this ticket")

        if dispatch_webhooks:
            await self.dispatcher.dispatch("ticket.deleted", ticket)

        thread = (
            self.db.query(CommentThread)
            .filter(CommentThread.ticket_id == ticket.id)
            .first()
        )
        if thread:
            self.db.delete(thread)
        self.db.delete(ticket)
        self.db.commit()
        logger.info(f"Ticket {ticket_id} deleted")

    async def add_comment(
        self,
        ticket_id: str,
        content: str,
        user: Optional[User],
        author_name: Optional[str] = None,
        comment_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        dispatch_webhooks: bool = True,
    ) -> Comment:
        """Add a comment to a ticket.

        ``comment_id``/``created_at`` let the collaborative thread keep the ids
        and times its peers assigned.
        """
        ticket = self.get_ticket(ticket_id)
        if user is not None and not can_view_ticket(ticket, user):
            raise PermissionDeniedError("You do not have access to this ticket")
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment cannot be empty")

        comment = Comment(
            user_id=user.id if user else SYSTEM_USER_ID,
            user_name=author_name or (user.name if user else SYSTEM_USER_NAME),
            content=content,
            created_at=created_at or utcnow(),
        )
        if comment_id:
            comment.id = comment_id
        ticket.comments.append(comment)
        ticket.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(comment)

        if dispatch_webhooks:
            await self.dispatcher.dispatch(
                "ticket.comment_added",
                ticket,
                extra={"comment": comment_dict(comment)},
            )
        await self._notify(
            EventType.COMMENT_ADDED,
            ticket,
            f"comment_id={comment.id}",
            actor_id=comment.user_id,
            author_name=comment.user_name,
        )
        return comment

    async def delete_comment(
        self, ticket_id: str, comment_id: str, user: User
    ) -> None:
        ticket = self.get_ticket(ticket_id)
        comment = next((c for c in ticket.comments if c.id == comment_id), None)
        if not comment:
            raise NotFoundError(f"Comment '{comment_id}' not found")
        if not can_delete_comment(comment, user):
            raise PermissionDeniedError("You cannot delete this comment")

        payload = comment_dict(comment)
        ticket.comments.remove(comment)
        ticket.updated_at = utcnow()
        self.db.commit()

        await self.dispatcher.dispatch(
            "ticket.comment_deleted", ticket, extra={"comment": payload}
        )

    def add_attachment(self, ticket_id: str, data: dict, user: User) -> Attachment:
        ticket = self.get_ticket(ticket_id)
        self._check_can_edit(ticket, user)
        if not data.get("file_name") or not data.get("file_url"):
            raise ValidationError("Attachments need a file name and URL")

        attachment = Attachment(
            file_name=data["file_name"],
            file_url=data["file_url"],
            file_type=data.get("file_type") or "application/octet-stream",
        )
        ticket.attachments.append(attachment)
        ticket.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(attachment)
        return attachment

    def remove_attachment(self, ticket_id: str, attachment_id: str, user: User) -> None:
        ticket = self.get_ticket(ticket_id)
        self._check_can_edit(ticket, user)
        attachment = next(
            (a for a in ticket.attachments if a.id == attachment_id), None
        )
        if not attachment:
            raise NotFoundError(f"Attachment '{attachment_id}' not found")
        ticket.attachments.remove(attachment)
        ticket.updated_at = utcnow()
        self.db.commit()


def comment_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "ticket_id": comment.ticket_id,
        "user_id": comment.user_id,
        "user_name": comment.user_name,
        "content": comment.content,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }
