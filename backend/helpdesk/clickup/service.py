"""Mirror helpdesk tickets to ClickUp tasks."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import get_settings
from ..errors import NotFoundError
from ..models import ClickUpConfig, Comment, Ticket, User, utcnow
from ..ticket_rules import (
    CLICKUP_PRIORITY_MAP,
    CLICKUP_STATUS_MAP,
    label_for,
)
from ..webhooks import ticket_url, to_epoch_ms
from .api import ClickUpAPI, ClickUpError

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Result of a write operation to ClickUp.

    Attributes:
        success: Whether the operation completed successfully
        message: Human-readable result message
        source_id: ClickUp task id (for create operations)
        conflict: Whether a state conflict was detected
        current_state: Actual state in ClickUp (if conflict)
    """

    success: bool
    message: str
    source_id: Optional[str] = None
    conflict: bool = False
    current_state: Optional[str] = None


# =============================================================================
# Config store
# =============================================================================


def get_config(db: Session, user: User) -> Optional[ClickUpConfig]:
    return db.query(ClickUpConfig).filter(ClickUpConfig.user_id == user.id).first()


def get_active_config(db: Session) -> Optional[ClickUpConfig]:
    return (
        db.query(ClickUpConfig)
        .filter(ClickUpConfig.active.is_(True))
        .order_by(ClickUpConfig.updated_at.desc())
        .first()
    )


def save_config(db: Session, user: User, data: dict) -> ClickUpConfig:
    """Create or replace the user's ClickUp config."""
    config = get_config(db, user)
    if config is None:
        config = ClickUpConfig(user_id=user.id)
        db.add(config)

    config.api_key = data["api_key"]
    config.list_id = data["list_id"]
    config.workspace_id = data.get("workspace_id")
    config.space_id = data.get("space_id")
    config.active = data.get("active", True)
    config.updated_at = utcnow()
    db.commit()
    db.refresh(config)
    logger.info(f"ClickUp config saved for {user.email}")
    return config


def update_config(db: Session, user: User, changes: dict) -> ClickUpConfig:
    config = get_config(db, user)
    if config is None:
        raise NotFoundError("ClickUp is not configured")
    for field in ("api_key", "workspace_id", "space_id", "list_id", "active"):
        if changes.get(field) is not None:
            setattr(config, field, changes[field])
    config.updated_at = utcnow()
    db.commit()
    db.refresh(config)
    return config


def delete_config(db: Session, user: User) -> None:
    config = get_config(db, user)
    if config is None:
        raise NotFoundError("ClickUp is not configured")
    db.delete(config)
    db.commit()


# =============================================================================
# Sync
# =============================================================================


def format_task_description(ticket: Ticket) -> str:
    """Markdown task description with the ticket details and a link back."""
    created = ticket.created_at.strftime("%d/%m/%Y %H:%M") if ticket.created_at else "-"
    deadline = ticket.deadline.strftime("%d/%m/%Y %H:%M") if ticket.deadline else "-"
    return (
        f"# Ticket #{ticket.id}\n\n"
        f"{ticket.description}\n\n"
        f"## Detalhes\n"
        f"- **Prioridade**: {label_for('priority', ticket.priority)}\n"
        f"- **Categoria**: {label_for('category', ticket.category)}\n"
        f"- **Status**: {label_for('status', ticket.status)}\n"
        f"- **Criado em**: {created}\n"
        f"- **Prazo**: {deadline}\n\n"
        f"[Ver ticket no sistema]({ticket_url(ticket.id)})"
    )


class ClickUpSync:
    """Pushes ticket changes to the configured ClickUp list."""

    def __init__(
        self, db: Session, api_factory: Callable[[str], ClickUpAPI] = ClickUpAPI
    ):
        self.db = db
        self.api_factory = api_factory

    def _credentials(self) -> Optional[tuple[str, str]]:
        """(api_key, list_id) from the active stored config or the env fallback."""
        config = get_active_config(self.db)
        if config and config.api_key and config.list_id:
            return config.api_key, config.list_id
        if settings.clickup_api_token and settings.clickup_list_id:
            return settings.clickup_api_token, settings.clickup_list_id
        return None

    def _api(self) -> Optional[tuple[ClickUpAPI, str]]:
        credentials = self._credentials()
        if credentials is None:
            logger.warning("ClickUp not configured - skipping sync")
            return None
        api_key, list_id = credentials
        return self.api_factory(api_key), list_id

    async def is_configured(self) -> bool:
        """Config present and the API key is accepted."""
        resolved = self._api()
        if resolved is None:
            return False
        api, _ = resolved
        try:
            await api.get_workspaces()
            return True
        except ClickUpError as e:
            logger.warning(f"ClickUp configuration check failed: {e}")
            return False
        finally:
            await api.close()

    async def create_task_from_ticket(self, ticket: Ticket) -> WriteResult:
        if ticket.task_id:
            return WriteResult(
                success=False,
                message="Ticket already has a ClickUp task",
                source_id=ticket.task_id,
                conflict=True,
            )

        resolved = self._api()
        if resolved is None:
            return WriteResult(success=False, message="ClickUp is not configured")
        api, list_id = resolved

        task = {
            "name": ticket.title,
            "description": format_task_description(ticket),
            "status": CLICKUP_STATUS_MAP.get(ticket.status),
            "priority": CLICKUP_PRIORITY_MAP.get(ticket.priority),
        }
        if ticket.deadline:
            task["due_date"] = to_epoch_ms(ticket.deadline)
            task["due_date_time"] = True

        try:
            data = await api.create_task(list_id, task)
        except ClickUpError as e:
            logger.error(f"ClickUp task creation failed for {ticket.id}: {e}")
            return WriteResult(success=False, message=f"ClickUp error: {e}")
        finally:
            await api.close()

        ticket.task_id = str(data["id"])
        self.db.commit()
        logger.info(f"Ticket {ticket.id} mirrored to ClickUp task {ticket.task_id}")
        return WriteResult(
            success=True,
            message="Task created in ClickUp",
            source_id=ticket.task_id,
        )

    async def update_task_status(self, ticket: Ticket) -> WriteResult:
        if not ticket.task_id:
            return WriteResult(success=False, message="Ticket has no ClickUp task")

        resolved = self._api()
        if resolved is None:
            return WriteResult(success=False, message="ClickUp is not configured")
        api, _ = resolved
        target = CLICKUP_STATUS_MAP[ticket.status]

        try:
            # Check current state (conflict detection)
            task = await api.get_task(ticket.task_id)
            current = (task.get("status") or {}).get("status", "")
            if current.upper() == target:
                return WriteResult(
                    success=True,
                    message="Task already has this status in ClickUp",
                    conflict=True,
                    current_state=current,
                )
            await api.update_task_status(ticket.task_id, target)
        except ClickUpError as e:
            if e.kind == "not_found":
                return WriteResult(success=False, message="Task not found in ClickUp")
            return WriteResult(success=False, message=f"ClickUp error: {e}")
        finally:
            await api.close()

        return WriteResult(success=True, message=f"Task status set to {target}")

    async def delete_task(self, ticket: Ticket) -> WriteResult:
        """Delete the mirrored task. A task that no longer exists counts as deleted."""
        if not ticket.task_id:
            return WriteResult(success=True, message="Ticket has no ClickUp task")

        resolved = self._api()
        if resolved is None:
            return WriteResult(success=False, message="ClickUp is not configured")
        api, _ = resolved

        try:
            await api.delete_task(ticket.task_id)
        except ClickUpError as e:
            if e.kind != "not_found":
                return WriteResult(success=False, message=f"ClickUp error: {e}")
        finally:
            await api.close()

        return WriteResult(success=True, message="Task deleted in ClickUp")

    async def add_comment(self, ticket: Ticket, comment: Comment) -> WriteResult:
        if not ticket.task_id:
            return WriteResult(success=False, message="Ticket has no ClickUp task")

        resolved = self._api()
        if resolved is None:
            return WriteResult(success=False, message="ClickUp is not configured")
        api, _ = resolved

        text = f"{comment.user_name or comment.user_id}: {comment.content}"
        try:
            await api.add_comment(ticket.task_id, text)
        except ClickUpError as e:
            if e.kind == "not_found":
                return WriteResult(success=False, message="Task not found in ClickUp")
            return WriteResult(success=False, message=f"ClickUp error: {e}")
        finally:
            await api.close()

        return WriteResult(success=True, message="Comment added to ClickUp")
