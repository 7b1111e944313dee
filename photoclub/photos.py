"""Photos, likes and comments."""
import asyncio
import functools
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .clubs import adjust_counter
from .constants import (
    ANONYMOUS_USER_ID,
    ANONYMOUS_USERNAME,
    MAX_COMMENT_LENGTH,
    UPLOADS_URL_PREFIX,
    sanitize_filename,
)
from .db import get_photo_by_id
from .db_helpers import session_scope, unit_of_work
from .errors import ForbiddenError, InternalError, NotFoundError, ValidationError
from .media import MediaLimits, async_process_and_store
from .models import ClubPhoto, Comment, Like, Photo
from .storage_helpers import async_remove_files, remove_files

logger = logging.getLogger(__name__)


def photo_dict(photo: Photo) -> Dict[str, Any]:
    data = photo.model_dump()
    data['url'] = f"{UPLOADS_URL_PREFIX}/{photo.filename}"
    data['thumbnail_url'] = f"{UPLOADS_URL_PREFIX}/{photo.thumbnail_filename}"
    return data


def _require_photo(session: Session, photo_id: str) -> Photo:
    photo = get_photo_by_id(session, photo_id)
    if not photo:
        raise NotFoundError("Photo not found")
    return photo


def _original_name(name: Optional[str]) -> str:
    try:
        return sanitize_filename(name or "photo.jpg")
    except ValueError:
        return "photo.jpg"


def create_photo(
    engine,
    photo_id: str,
    owner_id: str,
    filename: str,
    thumbnail_filename: str,
    original_name: str,
    file_size: int,
    mime_type: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    tags: Optional[str] = None,
    featured_stream: bool = False,
) -> Dict[str, Any]:
    """Insert the row for an already stored upload."""
    with unit_of_work(engine) as s:
        photo = Photo(
            id=photo_id,
            title=(title or "").strip() or original_name,
            description=(description or "").strip(),
            tags=(tags or "").strip(),
            featured_stream=bool(featured_stream),
            filename=filename,
            thumbnail_filename=thumbnail_filename,
            original_name=original_name,
            file_size=file_size,
            mime_type=mime_type,
            owner_id=owner_id,
        )
        s.add(photo)
        s.flush()
        data = photo_dict(photo)
    logger.info("Photo %s uploaded by %s", photo_id, owner_id)
    return data


async def upload_photo(
    engine,
    storage: Any,
    limits: MediaLimits,
    owner_id: str,
    data: bytes,
    content_type: Optional[str],
    original_name: Optional[str],
    title: Optional[str] = None,
    description: Optional[str] = None,
    tags: Optional[str] = None,
    featured_stream: bool = False,
) -> Dict[str, Any]:
    """Run an upload through the media pipeline and record it.

    Files written for the upload are removed again if the database insert fails.
    """
    photo_id = str(uuid.uuid4())
    filename, thumbnail_filename = await async_process_and_store(storage, photo_id, data, content_type, limits)
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, functools.partial(
            create_photo,
            engine,
            photo_id,
            owner_id,
            filename,
            thumbnail_filename,
            _original_name(original_name),
            len(data),
            content_type,
            title=title,
            description=description,
            tags=tags,
            featured_stream=featured_stream,
        ))
    except Exception:
        logger.exception("Failed to record photo %s; removing stored files", photo_id)
        await async_remove_files(storage, (filename, thumbnail_filename))
        raise


def list_photos(engine, featured_only: bool = False) -> List[Dict[str, Any]]:
    with session_scope(engine) as s:
        q = select(Photo).order_by(Photo.upload_date.desc())
        if featured_only:
            q = q.where(Photo.featured_stream == True)  # noqa: E712
        return [photo_dict(p) for p in s.exec(q).all()]


def get_photo(engine, photo_id: str) -> Dict[str, Any]:
    with session_scope(engine) as s:
        return photo_dict(_require_photo(s, photo_id))


def update_photo(
    engine,
    photo_id: str,
    user_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    with unit_of_work(engine) as s:
        photo = _require_photo(s, photo_id)
        if photo.owner_id != user_id:
            raise ForbiddenError("You can only edit your own photos")
        if title is not None:
            if not title.strip():
                raise ValidationError("Title cannot be empty")
            photo.title = title.strip()
        if description is not None:
            photo.description = description.strip()
        s.add(photo)
        s.flush()
        data = photo_dict(photo)
    logger.info("Photo %s updated by %s", photo_id, user_id)
    return data


def delete_photo(engine, storage: Any, photo_id: str, user_id: str) -> Dict[str, Any]:
    """Delete a photo owned by `user_id`, keeping club photo counts in step.

    Rows go in one transaction; the files are removed afterwards and a failure
    there is only logged.
    """
    with unit_of_work(engine) as s:
        photo = _require_photo(s, photo_id)
        if photo.owner_id != user_id:
            raise ForbiddenError("You can only delete your own photos")
        files = (photo.filename, photo.thumbnail_filename)

        club_ids = s.exec(select(ClubPhoto.club_id).where(ClubPhoto.photo_id == photo_id)).all()
        for club_id in club_ids:
            adjust_counter(s, club_id, 'photo_count', -1)
        s.exec(delete(ClubPhoto).where(ClubPhoto.photo_id == photo_id))
        s.exec(delete(Like).where(Like.photo_id == photo_id))
        s.exec(delete(Comment).where(Comment.photo_id == photo_id))
        s.delete(photo)

    remove_files(storage, files)
    logger.info("Photo %s deleted by %s (was in %d clubs)", photo_id, user_id, len(club_ids))
    return {"message": "Photo deleted successfully"}


def _like_count(s: Session, photo_id: str) -> int:
    return int(s.exec(select(func.count()).select_from(Like).where(Like.photo_id == photo_id)).one())


def _like_row(s: Session, photo_id: str, user_id: str, user_ip: str) -> Optional[Like]:
    return s.exec(
        select(Like).where(Like.photo_id == photo_id, Like.user_id == user_id, Like.user_ip == user_ip)
    ).first()


def toggle_like(engine, photo_id: str, user_id: Optional[str], user_ip: str) -> Dict[str, Any]:
    """Like or unlike a photo for the (user, ip) identity."""
    user_id = user_id or ANONYMOUS_USER_ID
    try:
        with unit_of_work(engine) as s:
            _require_photo(s, photo_id)
            existing = _like_row(s, photo_id, user_id, user_ip)
            if existing:
                s.delete(existing)
                liked = False
            else:
                s.add(Like(photo_id=photo_id, user_id=user_id, user_ip=user_ip))
                liked = True
            s.flush()
            count = _like_count(s, photo_id)
    except IntegrityError:
        # A concurrent toggle inserted the same like first
        logger.info("Duplicate like of photo %s by %s/%s rejected by constraint", photo_id, user_id, user_ip)
        with session_scope(engine) as s:
            return {"liked": True, "like_count": _like_count(s, photo_id)}

    return {"liked": liked, "like_count": count}


def get_like_status(engine, photo_id: str, user_id: Optional[str], user_ip: str) -> Dict[str, Any]:
    with session_scope(engine) as s:
        _require_photo(s, photo_id)
        return {
            "like_count": _like_count(s, photo_id),
            "user_liked": _like_row(s, photo_id, user_id or ANONYMOUS_USER_ID, user_ip) is not None,
        }


def add_comment(engine, photo_id: str, comment: Optional[str], username: Optional[str] = None, user_ip: Optional[str] = None) -> Dict[str, Any]:
    text = (comment or "").strip()
    if not text:
        raise ValidationError("Comment cannot be empty")
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment too long (max {MAX_COMMENT_LENGTH} characters)")

    try:
        with unit_of_work(engine) as s:
            _require_photo(s, photo_id)
            row = Comment(
                photo_id=photo_id,
                username=(username or "").strip() or ANONYMOUS_USERNAME,
                comment=text,
                user_ip=user_ip,
            )
            s.add(row)
            s.flush()
            data = row.model_dump(exclude={"user_ip"})
    except IntegrityError as exc:
        logger.exception("Failed to add comment to photo %s", photo_id)
        raise InternalError("Failed to add comment") from exc
    return data


def list_comments(engine, photo_id: str) -> List[Dict[str, Any]]:
    """Comments on a photo, oldest first."""
    with session_scope(engine) as s:
        _require_photo(s, photo_id)
        rows = s.exec(
            select(Comment).where(Comment.photo_id == photo_id).order_by(Comment.created_at.asc())
        ).all()
        return [c.model_dump(exclude={"user_ip"}) for c in rows]


def count_comments(engine, photo_id: str) -> int:
    with session_scope(engine) as s:
        _require_photo(s, photo_id)
        return int(s.exec(select(func.count()).select_from(Comment).where(Comment.photo_id == photo_id)).one())
