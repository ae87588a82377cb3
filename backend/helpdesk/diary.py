"""Personal rich-text diary."""

import logging

from sqlalchemy.orm import Session

from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .models import DiaryEntry, User, utcnow

logger = logging.getLogger(__name__)


def _get_entry(db: Session, entry_id: str) -> DiaryEntry:
    entry = db.query(DiaryEntry).filter(DiaryEntry.id == entry_id).first()
    if not entry:
        raise NotFoundError(f"Diary entry '{entry_id}' not found")
    return entry


def _get_owned(db: Session, entry_id: str, user: User) -> DiaryEntry:
    entry = _get_entry(db, entry_id)
    if entry.user_id != user.id:
        raise PermissionDeniedError("Only the author can change this entry")
    return entry


def can_read_entry(entry: DiaryEntry, user: User) -> bool:
    return (
        entry.user_id == user.id
        or entry.is_public
        or user.id in (entry.shared_with or [])
    )


def create_entry(db: Session, user: User, data: dict) -> DiaryEntry:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Title is required")

    now = utcnow()
    entry = DiaryEntry(
        title=title,
        content=data.get("content") or "",
        tags=list(data.get("tags") or []),
        shared_with=list(data.get("shared_with") or []),
        is_public=bool(data.get("is_public", False)),
        user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def update_entry(db: Session, entry_id: str, user: User, changes: dict) -> DiaryEntry:
    entry = _get_owned(db, entry_id, user)

    if changes.get("title") is not None:
        title = changes["title"].strip()
        if not title:
            raise ValidationError("Title is required")
        entry.title = title
    for field in ("content", "tags", "shared_with", "is_public"):
        if changes.get(field) is not None:
            setattr(entry, field, changes[field])

    entry.updated_at = utcnow()
    db.commit()
    db.refresh(entry)
    return entry


def delete_entry(db: Session, entry_id: str, user: User) -> None:
    entry = _get_owned(db, entry_id, user)
    db.delete(entry)
    db.commit()


def list_entries(db: Session, user: User) -> list[DiaryEntry]:
    """The user's own entries, most recently updated first."""
    return (
        db.query(DiaryEntry)
        .filter(DiaryEntry.user_id == user.id)
        .order_by(DiaryEntry.updated_at.desc())
        .all()
    )


def get_entry(db: Session, entry_id: str, user: User) -> DiaryEntry:
    entry = _get_entry(db, entry_id)
    if not can_read_entry(entry, user):
        raise PermissionDeniedError("This entry is private")
    return entry


def share_entry(
    db: Session, entry_id: str, user: User, user_ids: list[str]
) -> DiaryEntry:
    """Replace the list of users the entry is shared with."""
    entry = _get_owned(db, entry_id, user)
    known = {
        u.id for u in db.query(User).filter(User.id.in_(user_ids)).all()
    }
    unknown = [uid for uid in user_ids if uid not in known]
    if unknown:
        raise ValidationError(f"Unknown users: {', '.join(unknown)}")

    entry.shared_with = list(dict.fromkeys(user_ids))
    entry.updated_at = utcnow()
    db.commit()
    db.refresh(entry)
    logger.info(f"Diary entry {entry.id} shared with {len(entry.shared_with)} users")
    return entry
