"""Ticket notification fan-out.

Handles:
- In-app notifications for the people involved in a ticket
- Emails for new tickets and status updates
- Slack channel messages (respecting quiet hours)
"""

import logging
from datetime import datetime, time
from typing import Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .events import Event, EventType
from .mailer import EmailNotifier
from .models import Notification, Ticket, User, utcnow
from .notification_config import NotificationConfig, get_notification_config
from .ticket_rules import format_time_remaining, label_for
from .webhooks import ticket_url

settings = get_settings()
logger = logging.getLogger(__name__)

# Slack icons per trigger
EVENT_ICONS = {
    EventType.TICKET_CREATED: "🎫",
    EventType.STATUS_CHANGED: "🔄",
    EventType.COMMENT_ADDED: "💬",
    EventType.ASSIGNED: "👤",
    EventType.DEADLINE_WARNING: "⏰",
    EventType.OVERDUE: "🔴",
}


def format_event_message(event: Event, ticket: Ticket) -> str:
    """Short, human readable line describing the event."""
    ctx = event.context
    title = ticket.title

    if event.trigger == EventType.TICKET_CREATED:
        return (
            f"Novo chamado \"{title}\" "
            f"({label_for('priority', ticket.priority)})"
        )
    if event.trigger == EventType.STATUS_CHANGED:
        return (
            f"Status do chamado \"{title}\" alterado para "
            f"{label_for('status', ticket.status)}"
        )
    if event.trigger == EventType.COMMENT_ADDED:
        author = ctx.get("author_name") or "Alguém"
        return f"{author} comentou no chamado \"{title}\""
    if event.trigger == EventType.ASSIGNED:
        return f"Chamado \"{title}\" atribuído a {ticket.assigned_to_name or 'você'}"
    if event.trigger == EventType.DEADLINE_WARNING:
        now = ctx.get("now") or utcnow()
        remaining = format_time_remaining(ticket.deadline, now)
        return f"Prazo do chamado \"{title}\" termina em {remaining}"
    if event.trigger == EventType.OVERDUE:
        return f"Chamado \"{title}\" está atrasado"
    return f"Atualização no chamado \"{title}\""


class SlackNotifier:
    """Send ticket alerts to a Slack channel."""

    def __init__(self):
        self.client = WebClient(token=settings.slack_bot_token)
        self.channel = settings.slack_channel

    @property
    def enabled(self) -> bool:
        return bool(settings.slack_bot_token and self.channel)

    def is_quiet_hours(self, now: Optional[time] = None) -> bool:
        """Check if current time is within quiet hours."""
        now = now or datetime.now().time()
        start = time.fromisoformat(settings.quiet_hours_start)
        end = time.fromisoformat(settings.quiet_hours_end)

        # Handle overnight quiet hours (e.g., 22:00 - 07:00)
        if start > end:
            return now >= start or now <= end
        else:
            return start <= now <= end

    async def send_message(self, text: str, urgent: bool = False) -> bool:
        """Post a message to the helpdesk channel.

        Urgent messages (critical tickets, overdue alerts) ignore quiet hours.
        """
        if not self.enabled:
            return False
        if self.is_quiet_hours() and not urgent:
            logger.debug("Skipping Slack message during quiet hours")
            return False

        try:
            self.client.chat_postMessage(channel=self.channel, text=text, mrkdwn=True)
            return True
        except SlackApiError as e:
            logger.error(f"Failed to send Slack message: {e}")
            return False


class TicketNotifier:
    """Routes ticket events to in-app, email and Slack channels."""

    def __init__(
        self,
        db: Session,
        config: Optional[NotificationConfig] = None,
        email: Optional[EmailNotifier] = None,
        slack: Optional[SlackNotifier] = None,
    ):
        self.db = db
        self.config = config or get_notification_config()
        self.email = email or EmailNotifier()
        self.slack = slack or SlackNotifier()

    def _recipients(self, event: Event, ticket: Ticket) -> list[User]:
        """Users who should hear about the event, minus whoever caused it."""
        ids: list[str] = []

        if event.trigger == EventType.TICKET_CREATED:
            admins = (
                self.db.query(User)
                .filter(User.role == "admin", User.active.is_(True))
                .all()
            )
            ids.extend(a.id for a in admins)
        elif event.trigger == EventType.ASSIGNED:
            if ticket.assigned_to_id:
                ids.append(ticket.assigned_to_id)
        else:
            ids.append(ticket.user_id)
            if ticket.assigned_to_id:
                ids.append(ticket.assigned_to_id)

        actor_id = event.context.get("actor_id")
        unique_ids = [i for i in dict.fromkeys(ids) if i != actor_id]
        if not unique_ids:
            return []

        return (
            self.db.query(User)
            .filter(User.id.in_(unique_ids), User.active.is_(True))
            .all()
        )

    def _send_in_app(self, recipients: list[User], ticket: Ticket, message: str):
        try:
            for user in recipients:
                self.db.add(
                    Notification(user_id=user.id, ticket_id=ticket.id, message=message)
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store in-app notifications for {ticket.id}: {e}")

    def _send_email(self, event: Event, recipients: list[User], ticket: Ticket):
        for user in recipients:
            if event.trigger == EventType.TICKET_CREATED:
                self.email.send_ticket_notification(user.email, ticket)
            elif event.trigger == EventType.STATUS_CHANGED:
                self.email.send_status_update_notification(user.email, ticket)

    async def notify(self, event: Event, ticket: Ticket) -> bool:
        """Send an event through every enabled channel.

        Returns True if the event passed the configured rules. Channel
        failures are logged and never raised.
        """
        trigger = event.trigger.value
        if not self.config.should_notify(trigger, ticket.priority):
            logger.debug(f"Blocked {trigger} for {ticket.id} by notification rules")
            return False

        message = format_event_message(event, ticket)
        recipients = self._recipients(event, ticket)

        if self.config.is_channel_enabled("in_app") and recipients:
            self._send_in_app(recipients, ticket, message)

        if self.config.is_channel_enabled("email") and self.email.enabled:
            self._send_email(event, recipients, ticket)

        if self.config.is_channel_enabled("slack"):
            urgent = ticket.priority == "critical" or event.trigger == EventType.OVERDUE
            icon = EVENT_ICONS.get(event.trigger, "")
            await self.slack.send_message(
                f"{icon} {message}\n<{ticket_url(ticket.id)}|Abrir chamado>",
                urgent=urgent,
            )

        logger.info(f"Notified {trigger} for {ticket.id} to {len(recipients)} users")
        return True
