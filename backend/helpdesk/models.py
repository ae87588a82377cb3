"""SQLAlchemy models for the helpdesk service."""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    create_engine,
    Column,
    String,
    Boolean,
    Integer,
    DateTime,
    ForeignKey,
    JSON,
    LargeBinary,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .config import get_settings

settings = get_settings()
engine = create_engine(
    settings.database_url,
    connect_args=(
        {"check_same_thread": False}
        if settings.database_url.startswith("sqlite")
        else {}
    ),
    echo=settings.env == "development" and settings.log_level == "DEBUG",
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """Helpdesk account. Identity comes from an issued API key."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="user")  # "admin" | "user"
    active = Column(Boolean, default=True)
    last_login = Column(DateTime, nullable=True)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class ApiKey(Base):
    """API key used by the UI, the CLI and external integrations."""

    __tablename__ = "api_keys"

    id = Column(String, primary_key=True, default=new_id)
    key = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False, default="default")
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"))
    active = Column(Boolean, default=True)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User")


class Ticket(Base):
    """Support request."""

    __tablename__ = "tickets"

    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False)  # software | hardware | network | other
    priority = Column(String, nullable=False)  # low | medium | high | critical
    status = Column(String, nullable=False, default="open")
    deadline = Column(DateTime, nullable=True)

    user_id = Column(String, nullable=False)  # creator ("system" for integrations)
    assigned_to_id = Column(String, nullable=True)
    assigned_to_name = Column(String, nullable=True)

    # External references returned by webhook receivers
    task_id = Column(String, nullable=True, index=True)  # ClickUp task
    gmail_id = Column(String, nullable=True)

    # Who last changed the priority, and why
    priority_locked_by = Column(String, nullable=True)
    priority_locked_at = Column(DateTime, nullable=True)
    priority_reason = Column(Text, nullable=True)

    # Dedupe keys for deadline/overdue notifications
    notification_state = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    comments = relationship(
        "Comment",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="Comment.created_at",
    )
    attachments = relationship(
        "Attachment",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="Attachment.created_at",
    )
    deadline_history = relationship(
        "DeadlineHistory",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="DeadlineHistory.extended_at",
    )


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=new_id)
    ticket_id = Column(String, ForeignKey("tickets.id", ondelete="CASCADE"))
    user_id = Column(String, nullable=False)
    user_name = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    ticket = relationship("Ticket", back_populates="comments")


class Attachment(Base):
    """Attachment metadata. File bytes live in external object storage."""

    __tablename__ = "attachments"

    id = Column(String, primary_key=True, default=new_id)
    ticket_id = Column(String, ForeignKey("tickets.id", ondelete="CASCADE"))
    file_name = Column(String, nullable=False)
    file_url = Column(String, nullable=False)
    file_type = Column(String, nullable=False, default="application/octet-stream")
    created_at = Column(DateTime, default=utcnow)

    ticket = relationship("Ticket", back_populates="attachments")


class DeadlineHistory(Base):
    __tablename__ = "deadline_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(String, ForeignKey("tickets.id", ondelete="CASCADE"))
    old_deadline = Column(DateTime, nullable=True)
    new_deadline = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=False)
    extended_by = Column(String, nullable=False)
    extended_at = Column(DateTime, default=utcnow)

    ticket = relationship("Ticket", back_populates="deadline_history")


class Notification(Base):
    """In-app notification shown in a user's notification tray."""

    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_id)
    ticket_id = Column(String, nullable=True)
    user_id = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)


class WebhookConfig(Base):
    """User-configured outbound webhook."""

    __tablename__ = "webhooks"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    test_url = Column(String, nullable=True)
    events = Column(JSON, default=list)  # ["ticket.created", ...]
    headers = Column(JSON, default=dict)
    user_id = Column(String, nullable=False, index=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class WebhookQueueItem(Base):
    """Failed webhook delivery waiting for a scheduled retry."""

    __tablename__ = "webhook_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(String, nullable=True)
    url = Column(String, nullable=False)
    headers = Column(JSON, default=dict)
    event = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String, default="pending")  # pending | completed | failed
    attempts = Column(Integer, default=0)
    max_attempts = Column(Integer, default=3)
    error = Column(JSON, nullable=True)
    next_attempt = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class ClickUpConfig(Base):
    """Per-user ClickUp connection settings."""

    __tablename__ = "clickup_configs"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    api_key = Column(String, nullable=False)
    workspace_id = Column(String, nullable=True)
    space_id = Column(String, nullable=True)
    list_id = Column(String, nullable=False)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DiaryEntry(Base):
    __tablename__ = "diary_entries"

    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")  # rich-text HTML
    user_id = Column(String, nullable=False, index=True)
    shared_with = Column(JSON, default=list)
    tags = Column(JSON, default=list)
    is_public = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)


class CommentThread(Base):
    """Persisted CRDT state of a ticket's collaborative comment thread."""

    __tablename__ = "comment_threads"

    ticket_id = Column(String, primary_key=True)
    state = Column(LargeBinary, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


def init_db():
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
