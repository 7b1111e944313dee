"""User accounts: registration, credential checks and profiles."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from .auth import hash_password, verify_password
from .constants import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH
from .db import get_user_by_email, get_user_by_id, get_user_by_username
from .db_helpers import session_scope, unit_of_work
from .errors import ConflictError, NotFoundError, UnauthenticatedError, ValidationError
from .models import User

logger = logging.getLogger(__name__)


def register(engine, username: Optional[str], email: Optional[str], password: Optional[str], display_name: Optional[str] = None) -> Dict[str, Any]:
    username = (username or "").strip()
    email = (email or "").strip()
    if not username or not email or not password:
        raise ValidationError("Username, email, and password are required")

    try:
        with unit_of_work(engine) as s:
            if get_user_by_username(s, username):
                raise ValidationError("Username already exists")
            if get_user_by_email(s, email):
                raise ValidationError("Email already exists")
            if len(password) < MIN_PASSWORD_LENGTH:
                raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
            if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
                raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

            user = User(
                username=username,
                email=email,
                password=hash_password(password),
                display_name=(display_name or "").strip() or username,
            )
            s.add(user)
            s.flush()
            data = user.public_dict()
    except IntegrityError as exc:
        # Same username/email registered concurrently
        raise ConflictError("Username or email already exists") from exc

    logger.info("Registered user %s (%s)", data['id'], username)
    return data


def authenticate(engine, username: Optional[str], password: Optional[str]) -> Dict[str, Any]:
    if not username or not password:
        raise ValidationError("Username and password are required")

    with session_scope(engine) as s:
        user = get_user_by_username(s, username)
        if not user or not verify_password(password, user.password):
            logger.info("Failed login for %r", username)
            raise UnauthenticatedError("Invalid username or password")
        return user.public_dict()


def get_user(engine, user_id: str) -> Dict[str, Any]:
    with session_scope(engine) as s:
        user = get_user_by_id(s, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user.public_dict()


def update_profile(
    engine,
    user_id: str,
    display_name: Optional[str] = None,
    bio: Optional[str] = None,
    profile_image: Optional[str] = None,
) -> Dict[str, Any]:
    """Update profile fields. Only provided fields are updated."""
    with unit_of_work(engine) as s:
        user = get_user_by_id(s, user_id)
        if not user:
            raise NotFoundError("User not found")
        if display_name is not None:
            user.display_name = display_name.strip() or user.username
        if bio is not None:
            user.bio = bio.strip()
        if profile_image is not None:
            user.profile_image = profile_image.strip() or None
        s.add(user)
        s.flush()
        data = user.public_dict()

    logger.info("Updated profile of user %s", user_id)
    return data


def list_users(engine) -> List[Dict[str, Any]]:
    with session_scope(engine) as s:
        rows = s.exec(select(User).order_by(User.created_at.desc())).all()
        return [
            {"id": u.id, "username": u.username, "display_name": u.display_name, "created_at": u.created_at}
            for u in rows
        ]


def count_users(engine) -> int:
    with session_scope(engine) as s:
        return int(s.exec(select(func.count()).select_from(User)).one())
