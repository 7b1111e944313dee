"""Photo contests, site-wide or run by a club.

A contest's status is never stored: it is derived from its start and end
dates each time the contest is read.
"""
import asyncio
import datetime
import functools
import json
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func
from sqlmodel import Session, select

from . import policy
from .clubs import get_membership
from .constants import (
    CONTEST_ACTIVE,
    CONTEST_ENDED,
    CONTEST_STATUSES,
    CONTEST_UPCOMING,
    DEFAULT_CONTEST_CATEGORY,
    DEFAULT_CONTEST_MAX_ENTRIES,
    days_until,
)
from .db import get_club_by_id
from .db_helpers import session_scope, unit_of_work
from .errors import ForbiddenError, NotFoundError, ValidationError
from .media import MediaLimits, async_process_and_store
from .models import Club, Contest, ContestEntry, User
from .storage_helpers import async_remove_files

logger = logging.getLogger(__name__)

DateLike = Union[datetime.datetime, str]


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _parse_date(value: Optional[DateLike], field: str) -> datetime.datetime:
    if value is None or value == "":
        raise ValidationError("Missing required fields")
    if isinstance(value, str):
        try:
            value = datetime.datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError as exc:
            raise ValidationError(f"Invalid {field}: expected an ISO 8601 date") from exc
    return _as_utc(value)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def contest_status(contest: Contest, now: Optional[datetime.datetime] = None) -> str:
    now = now or _now()
    if now < _as_utc(contest.start_date):
        return CONTEST_UPCOMING
    if now <= _as_utc(contest.end_date):
        return CONTEST_ACTIVE
    return CONTEST_ENDED


def days_left(contest: Contest, now: Optional[datetime.datetime] = None) -> Optional[int]:
    """Days until the end of an active contest, rounded up; None otherwise."""
    now = now or _now()
    if contest_status(contest, now) != CONTEST_ACTIVE:
        return None
    return days_until((_as_utc(contest.end_date) - now).total_seconds())


def _decode_prizes(raw: Optional[str]) -> List[str]:
    try:
        prizes = json.loads(raw or "[]")
    except ValueError:
        logger.warning("Contest has malformed prizes JSON: %r", raw)
        return []
    return [str(p) for p in prizes] if isinstance(prizes, list) else []


def _contest_dict(contest: Contest, total_entries: int = 0, club_name: Optional[str] = None, now=None) -> Dict[str, Any]:
    now = now or _now()
    data = contest.model_dump()
    data['start_date'] = _as_utc(contest.start_date)
    data['end_date'] = _as_utc(contest.end_date)
    data['prizes'] = _decode_prizes(contest.prizes)
    data['status'] = contest_status(contest, now)
    data['days_left'] = days_left(contest, now)
    data['total_entries'] = int(total_entries or 0)
    data['club_name'] = club_name
    return data


def _contest_summary_query():
    """Contests with their entry count and club name."""
    return (
        select(Contest, func.count(ContestEntry.id), Club.name)
        .join(ContestEntry, ContestEntry.contest_id == Contest.id, isouter=True)
        .join(Club, Contest.club_id == Club.id, isouter=True)
        .group_by(Contest.id)
    )


def create_contest(
    engine,
    user_id: str,
    title: Optional[str],
    description: Optional[str],
    start_date: Optional[DateLike],
    end_date: Optional[DateLike],
    category: Optional[str] = None,
    entry_fee: float = 0.0,
    max_entries: Optional[int] = None,
    prizes: Optional[Iterable[str]] = None,
    club_id: Optional[str] = None,
    is_public: bool = True,
) -> Dict[str, Any]:
    title = (title or "").strip()
    description = (description or "").strip()
    if not title or not description:
        raise ValidationError("Missing required fields")
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    if end <= start:
        raise ValidationError("Contest end date must be after its start date")
    entry_fee = float(entry_fee or 0)
    if entry_fee < 0:
        raise ValidationError("Entry fee cannot be negative")
    max_entries = DEFAULT_CONTEST_MAX_ENTRIES if max_entries is None else int(max_entries)
    if max_entries < 1:
        raise ValidationError("max_entries must be at least 1")

    with unit_of_work(engine) as s:
        if club_id:
            if not get_club_by_id(s, club_id):
                raise NotFoundError("Club not found")
            if not policy.can_manage_contests(get_membership(s, club_id, user_id)):
                raise ForbiddenError("Only club admins can create club contests")
        contest = Contest(
            title=title,
            description=description,
            category=(category or "").strip() or DEFAULT_CONTEST_CATEGORY,
            start_date=start,
            end_date=end,
            entry_fee=entry_fee,
            max_entries=max_entries,
            prizes=json.dumps([str(p) for p in (prizes or [])]),
            club_id=club_id or None,
            is_public=bool(is_public),
            created_by=user_id,
        )
        s.add(contest)
        s.flush()
        data = _contest_dict(contest)

    logger.info("Contest %s (%r) created by %s%s", data['id'], title, user_id, f" for club {club_id}" if club_id else "")
    return data


def list_public_contests(engine, status: Optional[str] = None, category: Optional[str] = None) -> List[Dict[str, Any]]:
    if status and status not in CONTEST_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    now = _now()
    with session_scope(engine) as s:
        q = _contest_summary_query().where(Contest.is_public == True)  # noqa: E712
        if category:
            q = q.where(Contest.category == category)
        q = q.order_by(Contest.created_at.desc())
        result = [_contest_dict(c, total, club_name, now) for c, total, club_name in s.exec(q).all()]
    if status:
        result = [c for c in result if c['status'] == status]
    return result


def _viewer_membership(s: Session, contest: Contest, user_id: Optional[str]):
    if contest.club_id is None:
        return policy.NOT_A_MEMBER
    return get_membership(s, contest.club_id, user_id)


def get_contest(engine, contest_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Contest details with its entries, newest first."""
    with session_scope(engine) as s:
        row = s.exec(_contest_summary_query().where(Contest.id == contest_id)).first()
        if not row:
            raise NotFoundError("Contest not found")
        contest, total, club_name = row
        if not policy.can_view_contest(contest, _viewer_membership(s, contest, user_id)):
            # Hidden contests look absent to outsiders
            raise NotFoundError("Contest not found")
        data = _contest_dict(contest, total, club_name)
        entries = s.exec(
            select(ContestEntry, User)
            .join(User, ContestEntry.user_id == User.id)
            .where(ContestEntry.contest_id == contest_id)
            .order_by(ContestEntry.created_at.desc())
        ).all()
        data['entries'] = [
            {
                'id': entry.id,
                'title': entry.title,
                'created_at': entry.created_at,
                'username': user.username,
                'display_name': user.display_name,
            }
            for entry, user in entries
        ]
        return data


def _entry_count(s: Session, contest_id: str, user_id: str) -> int:
    return int(s.exec(
        select(func.count()).select_from(ContestEntry)
        .where(ContestEntry.contest_id == contest_id, ContestEntry.user_id == user_id)
    ).one())


def check_can_enter(engine, contest_id: str, user_id: str, title: Optional[str]) -> None:
    """Reject an entry before any image work is done."""
    with session_scope(engine) as s:
        _check_entry(s, contest_id, user_id, title)


def _check_entry(s: Session, contest_id: str, user_id: str, title: Optional[str]) -> Contest:
    if not (title or "").strip():
        raise ValidationError("Title is required")
    contest = s.get(Contest, contest_id)
    if not contest or contest_status(contest) != CONTEST_ACTIVE:
        raise NotFoundError("Contest not found or not accepting entries")
    if _entry_count(s, contest_id, user_id) >= contest.max_entries:
        raise ValidationError(f"Maximum {contest.max_entries} entries allowed per user")
    if not policy.can_enter_contest(contest, _viewer_membership(s, contest, user_id)):
        raise ForbiddenError("You must be a club member to enter this contest")
    return contest


def record_entry(
    engine,
    entry_id: str,
    contest_id: str,
    user_id: str,
    title: str,
    description: Optional[str],
    filename: str,
    thumbnail_filename: str,
) -> Dict[str, Any]:
    """Insert an entry, re-checking the entry rules in the same transaction."""
    with unit_of_work(engine) as s:
        _check_entry(s, contest_id, user_id, title)
        entry = ContestEntry(
            id=entry_id,
            contest_id=contest_id,
            user_id=user_id,
            title=title.strip(),
            description=(description or "").strip(),
            filename=filename,
            thumbnail_filename=thumbnail_filename,
        )
        s.add(entry)
        s.flush()
        data = entry.model_dump()
        user = s.get(User, user_id)
        data['username'] = user.username if user else None
        data['display_name'] = user.display_name if user else None

    logger.info("User %s entered contest %s with entry %s", user_id, contest_id, entry_id)
    return data


async def enter_contest(
    engine,
    storage: Any,
    limits: MediaLimits,
    contest_id: str,
    user_id: str,
    title: Optional[str],
    description: Optional[str],
    data: bytes,
    content_type: Optional[str],
) -> Dict[str, Any]:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, check_can_enter, engine, contest_id, user_id, title)

    entry_id = str(uuid.uuid4())
    filename, thumbnail_filename = await async_process_and_store(storage, entry_id, data, content_type, limits)
    try:
        return await loop.run_in_executor(None, functools.partial(
            record_entry, engine, entry_id, contest_id, user_id, title, description, filename, thumbnail_filename,
        ))
    except Exception:
        await async_remove_files(storage, (filename, thumbnail_filename))
        raise


def list_user_entries(engine, user_id: str) -> List[Dict[str, Any]]:
    now = _now()
    with session_scope(engine) as s:
        rows = s.exec(
            select(ContestEntry, Contest, Club.name)
            .join(Contest, ContestEntry.contest_id == Contest.id)
            .join(Club, Contest.club_id == Club.id, isouter=True)
            .where(ContestEntry.user_id == user_id)
            .order_by(ContestEntry.created_at.desc())
        ).all()
        result = []
        for entry, contest, club_name in rows:
            data = entry.model_dump()
            data['contest'] = {
                'id': contest.id,
                'title': contest.title,
                'status': contest_status(contest, now),
                'end_date': _as_utc(contest.end_date),
                'club_id': contest.club_id,
                'club_name': club_name,
            }
            result.append(data)
        return result


def list_club_contests(engine, club_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Members see all of a club's contests, everyone else only the public ones."""
    now = _now()
    with session_scope(engine) as s:
        if not get_club_by_id(s, club_id):
            raise NotFoundError("Club not found")
        membership = get_membership(s, club_id, user_id)
        q = _contest_summary_query().where(Contest.club_id == club_id)
        if not membership.is_member:
            q = q.where(Contest.is_public == True)  # noqa: E712
        q = q.order_by(Contest.created_at.desc())
        result = []
        for contest, total, club_name in s.exec(q).all():
            data = _contest_dict(contest, total, club_name, now)
            data['can_enter'] = policy.can_enter_contest(contest, membership)
            result.append(data)
        return result
