"""Email notifications over SMTP."""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

from .config import get_settings
from .ticket_rules import label_for
from .webhooks import ticket_url

if TYPE_CHECKING:
    from .models import Ticket

settings = get_settings()
logger = logging.getLogger(__name__)


class EmailNotifier:
    """Send ticket emails through the configured SMTP server."""

    def __init__(self):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.sender = settings.smtp_sender
        self.use_tls = settings.smtp_use_tls

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def send(self, to: str, subject: str, body: str) -> bool:
        """Send a plain-text email. Returns False if not sent."""
        if not self.enabled:
            logger.debug("SMTP host not configured, skipping email")
            return False

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = f"Helpdesk <{self.sender}>"
        msg["To"] = to

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
            logger.info(f"Email sent to {to}: {subject}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False

    def send_ticket_notification(self, email: str, ticket: "Ticket") -> bool:
        subject = f"[Helpdesk] Novo chamado: {ticket.title}"
        body = (
            f"Um novo chamado foi aberto.\n\n"
            f"Título: {ticket.title}\n"
            f"Categoria: {label_for('category', ticket.category)}\n"
            f"Prioridade: {label_for('priority', ticket.priority)}\n"
            f"Prazo: {ticket.deadline:%d/%m/%Y %H:%M} UTC\n\n"
            f"{ticket.description}\n\n"
            f"{ticket_url(ticket.id)}\n"
        )
        return self.send(email, subject, body)

    def send_status_update_notification(self, email: str, ticket: "Ticket") -> bool:
        subject = f"[Helpdesk] Chamado atualizado: {ticket.title}"
        body = (
            f"O status do chamado foi atualizado para "
            f"{label_for('status', ticket.status)}.\n\n"
            f"Título: {ticket.title}\n"
            f"Prioridade: {label_for('priority', ticket.priority)}\n\n"
            f"{ticket_url(ticket.id)}\n"
        )
        return self.send(email, subject, body)
