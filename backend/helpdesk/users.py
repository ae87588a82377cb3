"""User accounts and API keys."""

import logging
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from .config import get_settings
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from .models import ApiKey, User, utcnow
from .ticket_rules import is_valid_email

settings = get_settings()
logger = logging.getLogger(__name__)

ROLES = ("admin", "user")
API_KEY_PREFIX = "hd_"


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(32)


def mask_api_key(key: str) -> str:
    """Show only the prefix and first characters of a key, for logs."""
    return key[: len(API_KEY_PREFIX) + 4] + "..."


def is_primary_admin(user: User) -> bool:
    return user.email.lower() == settings.admin_email.lower()


def _require_admin(actor: User) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError("Only administrators can manage users")


def _get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"User '{user_id}' not found")
    return user


def _protect_primary_admin(user: User, action: str) -> None:
    if is_primary_admin(user):
        raise PermissionDeniedError(f"The primary administrator cannot be {action}")


def issue_api_key(db: Session, user: User, name: str = "default") -> ApiKey:
    api_key = ApiKey(key=generate_api_key(), name=name, user_id=user.id)
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    return api_key


def ensure_admin_user(db: Session) -> Optional[ApiKey]:
    """Create the primary administrator on first start.

    Returns the freshly issued key when the admin was created, else None.
    """
    admin = db.query(User).filter(User.email == settings.admin_email).first()
    if admin:
        if admin.role != "admin" or not admin.active:
            admin.role = "admin"
            admin.active = True
            db.commit()
        return None

    admin = User(email=settings.admin_email, name=settings.admin_name, role="admin")
    db.add(admin)
    db.commit()
    key = issue_api_key(db, admin, name="bootstrap")
    logger.warning(
        f"Created primary administrator {admin.email}; API key {mask_api_key(key.key)}"
    )
    return key


def authenticate(db: Session, key: str) -> Optional[User]:
    """Resolve an API key to its active user, recording the login time."""
    if not key:
        return None

    api_key = (
        db.query(ApiKey).filter(ApiKey.key == key, ApiKey.active.is_(True)).first()
    )
    if not api_key or not api_key.user or not api_key.user.active:
        return None

    now = utcnow()
    api_key.last_used_at = now
    api_key.user.last_login = now
    db.commit()
    return api_key.user


def list_users(db: Session, actor: User) -> list[User]:
    _require_admin(actor)
    return db.query(User).order_by(User.name).all()


def create_user(db: Session, actor: User, data: dict) -> tuple[User, ApiKey]:
    _require_admin(actor)

    email = (data.get("email") or "").strip().lower()
    if not is_valid_email(email):
        raise ValidationError(f"Invalid email: {email}")
    if db.query(User).filter(User.email == email).first():
        raise ConflictError(f"A user with email {email} already exists")

    role = data.get("role") or "user"
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role}")

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Name is required")

    user = User(email=email, name=name, role=role, updated_by=actor.id)
    db.add(user)
    db.commit()
    db.refresh(user)
    key = issue_api_key(db, user)
    logger.info(f"User {email} created by {actor.email}")
    return user, key


def update_user(db: Session, actor: User, user_id: str, changes: dict) -> User:
    _require_admin(actor)
    user = _get_user(db, user_id)
    _protect_primary_admin(user, "edited")

    if changes.get("email") is not None:
        email = changes["email"].strip().lower()
        if not is_valid_email(email):
            raise ValidationError(f"Invalid email: {email}")
        clash = db.query(User).filter(User.email == email, User.id != user.id).first()
        if clash:
            raise ConflictError(f"A user with email {email} already exists")
        user.email = email
    if changes.get("name") is not None:
        user.name = changes["name"].strip()
    if changes.get("role") is not None:
        if changes["role"] not in ROLES:
            raise ValidationError(f"Invalid role: {changes['role']}")
        user.role = changes["role"]

    user.updated_by = actor.id
    db.commit()
    db.refresh(user)
    return user


def set_active(db: Session, actor: User, user_id: str, active: bool) -> User:
    _require_admin(actor)
    user = _get_user(db, user_id)
    _protect_primary_admin(user, "deactivated")
    user.active = active
    user.updated_by = actor.id
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, actor: User, user_id: str) -> None:
    _require_admin(actor)
    user = _get_user(db, user_id)
    _protect_primary_admin(user, "deleted")

    db.query(ApiKey).filter(ApiKey.user_id == user.id).delete(
        synchronize_session=False
    )
    db.delete(user)
    db.commit()
    logger.info(f"User {user.email} deleted by {actor.email}")


def create_key_for_user(
    db: Session, actor: User, user_id: str, name: str = "default"
) -> ApiKey:
    _require_admin(actor)
    return issue_api_key(db, _get_user(db, user_id), name=name)


def list_keys(db: Session, actor: User, user_id: str) -> list[ApiKey]:
    _require_admin(actor)
    _get_user(db, user_id)
    return (
        db.query(ApiKey)
        .filter(ApiKey.user_id == user_id)
        .order_by(ApiKey.created_at)
        .all()
    )


def revoke_key(db: Session, actor: User, key_id: str) -> ApiKey:
    _require_admin(actor)
    api_key = db.query(ApiKey).filter(ApiKey.id == key_id).first()
    if not api_key:
        raise NotFoundError(f"API key '{key_id}' not found")
    api_key.active = False
    db.commit()
    return api_key
