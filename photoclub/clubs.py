"""Club membership lifecycle.

All writes that touch a membership or club-photo row also adjust the club's
denormalized counter inside the same `unit_of_work`, so a reader never sees a
counter that disagrees with the rows. Uniqueness violations raised by a racing
request surface as `ConflictError`.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case, delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import policy
from .constants import (
    MAX_CLUB_NAME_LENGTH,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_OWNER,
    ROLE_RANK,
    clamp_limit,
    clamp_offset,
)
from .db import get_club_by_id, get_photo_by_id, get_user_by_id
from .db_helpers import session_scope, unit_of_work
from .errors import ConflictError, InternalError, NotFoundError, ValidationError
from .models import Club, ClubMembership, ClubPhoto, Photo, User
from .policy import MembershipInfo

logger = logging.getLogger(__name__)


def _require_club(session: Session, club_id: str) -> Club:
    club = get_club_by_id(session, club_id)
    if not club:
        raise NotFoundError("Club not found")
    return club


def _membership_row(session: Session, club_id: str, user_id: Optional[str]) -> Optional[ClubMembership]:
    if not user_id:
        return None
    return session.exec(
        select(ClubMembership).where(ClubMembership.club_id == club_id, ClubMembership.user_id == user_id)
    ).first()


def get_membership(session: Session, club_id: str, user_id: Optional[str]) -> MembershipInfo:
    """Look up `user_id`'s role in a club; anonymous callers are never members."""
    row = _membership_row(session, club_id, user_id)
    if row is None:
        return policy.NOT_A_MEMBER
    return MembershipInfo(is_member=True, role=row.role)


def adjust_counter(session: Session, club_id: str, column: str, delta: int) -> bool:
    """Atomically add `delta` to a club counter without letting it drop below zero.

    Returns False when a decrement was refused because the counter was already 0.
    """
    col = getattr(Club, column)
    stmt = update(Club).where(Club.id == club_id)
    if delta < 0:
        stmt = stmt.where(col >= -delta)
    stmt = stmt.values({column: col + delta}).execution_options(synchronize_session=False)
    result = session.exec(stmt)
    if result.rowcount == 0:
        logger.error("Refused to drive %s of club %s below zero; counter has drifted", column, club_id)
        return False
    return True


def _validate_name(name: Optional[str], required: bool) -> Optional[str]:
    if name is None:
        if required:
            raise ValidationError("Club name is required")
        return None
    name = name.strip()
    if not name:
        raise ValidationError("Club name is required" if required else "Club name cannot be empty")
    if len(name) > MAX_CLUB_NAME_LENGTH:
        raise ValidationError(f"Club name must be {MAX_CLUB_NAME_LENGTH} characters or less")
    return name


def _club_dict(club: Club, creator: Optional[User]) -> Dict[str, Any]:
    data = club.model_dump()
    data['creator_username'] = creator.username if creator else None
    data['creator_display_name'] = creator.display_name if creator else None
    return data


def _club_with_creator_query():
    return select(Club, User).join(User, Club.creator_id == User.id, isouter=True)


def create_club(engine, name: str, description: Optional[str], creator_id: str, is_private: bool = False) -> Dict[str, Any]:
    """Create a club and its owner membership in one transaction."""
    clean_name = _validate_name(name, required=True)
    clean_description = (description or "").strip()

    try:
        with unit_of_work(engine) as s:
            if not get_user_by_id(s, creator_id):
                raise NotFoundError("User not found")
            club = Club(
                name=clean_name,
                description=clean_description,
                creator_id=creator_id,
                is_private=bool(is_private),
                member_count=1,
                photo_count=0,
            )
            s.add(club)
            s.flush()
            s.add(ClubMembership(club_id=club.id, user_id=creator_id, role=ROLE_OWNER))
            s.flush()
            club_id = club.id
    except IntegrityError as exc:
        logger.exception("Failed to create club %r for %s", clean_name, creator_id)
        raise InternalError("Failed to create club") from exc

    logger.info("Club %s (%r) created by %s", club_id, clean_name, creator_id)
    return get_club(engine, club_id, creator_id)


def get_club(engine, club_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Fetch a club the caller is allowed to see, with their membership attached."""
    with session_scope(engine) as s:
        row = s.exec(_club_with_creator_query().where(Club.id == club_id)).first()
        if not row:
            raise NotFoundError("Club not found")
        club, creator = row
        membership = get_membership(s, club_id, user_id)
        policy.ensure_can_view(club, user_id, membership)
        data = _club_dict(club, creator)
        if user_id:
            data['user_membership'] = membership.model_dump()
        return data


def list_public_clubs(engine, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
    with session_scope(engine) as s:
        q = (
            _club_with_creator_query()
            .where(Club.is_private == False)  # noqa: E712
            .order_by(Club.created_at.desc())
            .limit(clamp_limit(limit))
            .offset(clamp_offset(offset))
        )
        return [_club_dict(club, creator) for club, creator in s.exec(q).all()]


def list_user_clubs(engine, user_id: str) -> List[Dict[str, Any]]:
    """Clubs `user_id` belongs to, newest first, each with the user's role."""
    with session_scope(engine) as s:
        q = (
            select(Club, User, ClubMembership.role)
            .join(ClubMembership, ClubMembership.club_id == Club.id)
            .join(User, Club.creator_id == User.id, isouter=True)
            .where(ClubMembership.user_id == user_id)
            .order_by(Club.created_at.desc())
        )
        result = []
        for club, creator, role in s.exec(q).all():
            data = _club_dict(club, creator)
            data['role'] = role
            result.append(data)
        return result


def join_club(engine, club_id: str, user_id: str) -> Dict[str, Any]:
    try:
        with unit_of_work(engine) as s:
            _require_club(s, club_id)
            policy.ensure_can_join(get_membership(s, club_id, user_id))
            membership = ClubMembership(club_id=club_id, user_id=user_id, role=ROLE_MEMBER)
            s.add(membership)
            s.flush()
            adjust_counter(s, club_id, 'member_count', 1)
            membership_id = membership.id
    except IntegrityError as exc:
        # Lost a race with a concurrent join for the same user
        logger.info("Duplicate join of club %s by %s rejected by constraint", club_id, user_id)
        raise ConflictError("You are already a member of this club") from exc

    logger.info("User %s joined club %s", user_id, club_id)
    return {"success": True, "membership_id": membership_id}


def leave_club(engine, club_id: str, user_id: str) -> Dict[str, Any]:
    with unit_of_work(engine) as s:
        _require_club(s, club_id)
        row = _membership_row(s, club_id, user_id)
        info = MembershipInfo(is_member=True, role=row.role) if row else policy.NOT_A_MEMBER
        policy.ensure_can_leave(info)
        removed = s.exec(
            delete(ClubMembership).where(ClubMembership.id == row.id).execution_options(synchronize_session=False)
        )
        if removed.rowcount == 0:
            # A concurrent leave removed the row after the membership check
            logger.info("Duplicate leave of club %s by %s rejected", club_id, user_id)
            raise ConflictError("You are not a member of this club")
        adjust_counter(s, club_id, 'member_count', -1)

    logger.info("User %s left club %s", user_id, club_id)
    return {"success": True}


def list_members(engine, club_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Members ordered owner, admins, members; ties by join time."""
    with session_scope(engine) as s:
        club = _require_club(s, club_id)
        policy.ensure_can_view(club, user_id, get_membership(s, club_id, user_id))
        role_rank = case(ROLE_RANK, value=ClubMembership.role, else_=len(ROLE_RANK) + 1)
        q = (
            select(ClubMembership, User)
            .join(User, ClubMembership.user_id == User.id)
            .where(ClubMembership.club_id == club_id)
            .order_by(role_rank, ClubMembership.joined_at.asc())
        )
        result = []
        for membership, user in s.exec(q).all():
            data = membership.model_dump()
            data['username'] = user.username
            data['display_name'] = user.display_name
            data['profile_image'] = user.profile_image
            result.append(data)
        return result


def add_photo_to_club(engine, club_id: str, photo_id: Optional[str], poster_id: str) -> Dict[str, Any]:
    if not photo_id:
        raise ValidationError("Photo ID is required")

    duplicate_message = "This photo is already posted to this club"
    try:
        with unit_of_work(engine) as s:
            _require_club(s, club_id)
            policy.ensure_can_post_photo(get_membership(s, club_id, poster_id))
            if not get_photo_by_id(s, photo_id):
                raise NotFoundError("Photo not found")
            existing = s.exec(
                select(ClubPhoto).where(ClubPhoto.club_id == club_id, ClubPhoto.photo_id == photo_id)
            ).first()
            if existing:
                raise ConflictError(duplicate_message)
            club_photo = ClubPhoto(club_id=club_id, photo_id=photo_id, posted_by=poster_id)
            s.add(club_photo)
            s.flush()
            adjust_counter(s, club_id, 'photo_count', 1)
            club_photo_id = club_photo.id
    except IntegrityError as exc:
        logger.info("Duplicate post of photo %s to club %s rejected by constraint", photo_id, club_id)
        raise ConflictError(duplicate_message) from exc

    logger.info("Photo %s posted to club %s by %s", photo_id, club_id, poster_id)
    return {"success": True, "club_photo_id": club_photo_id}


def list_club_photos(engine, club_id: str, user_id: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
    """Club photo feed, most recently posted first."""
    with session_scope(engine) as s:
        club = _require_club(s, club_id)
        policy.ensure_can_view(club, user_id, get_membership(s, club_id, user_id))
        q = (
            select(Photo, ClubPhoto, User)
            .join(ClubPhoto, ClubPhoto.photo_id == Photo.id)
            .join(User, ClubPhoto.posted_by == User.id)
            .where(ClubPhoto.club_id == club_id)
            .order_by(ClubPhoto.posted_at.desc())
            .limit(clamp_limit(limit))
            .offset(clamp_offset(offset))
        )
        result = []
        for photo, club_photo, poster in s.exec(q).all():
            data = photo.model_dump()
            data['posted_at'] = club_photo.posted_at
            data['posted_by'] = club_photo.posted_by
            data['posted_by_username'] = poster.username
            data['posted_by_display_name'] = poster.display_name
            result.append(data)
        return result


def update_club(
    engine,
    club_id: str,
    user_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    is_private: Optional[bool] = None,
) -> Dict[str, Any]:
    """Change name/description/privacy. Only provided fields are updated."""
    with unit_of_work(engine) as s:
        club = _require_club(s, club_id)
        policy.ensure_can_update(get_membership(s, club_id, user_id))
        clean_name = _validate_name(name, required=False)
        if clean_name is not None:
            club.name = clean_name
        if description is not None:
            club.description = description.strip()
        if is_private is not None:
            club.is_private = bool(is_private)
        s.add(club)

    logger.info("Club %s updated by %s", club_id, user_id)
    return get_club(engine, club_id, user_id)


def delete_club(engine, club_id: str, user_id: str) -> Dict[str, Any]:
    with unit_of_work(engine) as s:
        club = _require_club(s, club_id)
        policy.ensure_can_delete(get_membership(s, club_id, user_id))
        s.exec(delete(ClubPhoto).where(ClubPhoto.club_id == club_id))
        s.exec(delete(ClubMembership).where(ClubMembership.club_id == club_id))
        # Contests and their entries go with the club through ON DELETE CASCADE
        s.delete(club)

    logger.info("Club %s deleted by %s", club_id, user_id)
    return {"success": True}


def _set_role(s: Session, club_id: str, user_id: str, role: str) -> None:
    row = _membership_row(s, club_id, user_id)
    row.role = role
    s.add(row)


def promote_to_admin(engine, club_id: str, owner_id: str, target_user_id: str) -> Dict[str, Any]:
    with unit_of_work(engine) as s:
        _require_club(s, club_id)
        policy.ensure_can_manage_roles(get_membership(s, club_id, owner_id))
        policy.ensure_promotable(get_membership(s, club_id, target_user_id))
        _set_role(s, club_id, target_user_id, ROLE_ADMIN)

    logger.info("User %s promoted to admin of club %s by %s", target_user_id, club_id, owner_id)
    return {"success": True, "user_id": target_user_id, "role": ROLE_ADMIN}


def demote_admin(engine, club_id: str, owner_id: str, target_user_id: str) -> Dict[str, Any]:
    with unit_of_work(engine) as s:
        _require_club(s, club_id)
        policy.ensure_can_manage_roles(get_membership(s, club_id, owner_id))
        policy.ensure_demotable(get_membership(s, club_id, target_user_id))
        _set_role(s, club_id, target_user_id, ROLE_MEMBER)

    logger.info("User %s demoted to member of club %s by %s", target_user_id, club_id, owner_id)
    return {"success": True, "user_id": target_user_id, "role": ROLE_MEMBER}


def transfer_ownership(engine, club_id: str, owner_id: str, new_owner_id: str) -> Dict[str, Any]:
    """Hand the owner role to another member; the previous owner stays on as admin."""
    with unit_of_work(engine) as s:
        _require_club(s, club_id)
        policy.ensure_can_manage_roles(get_membership(s, club_id, owner_id))
        policy.ensure_can_receive_ownership(get_membership(s, club_id, new_owner_id))
        _set_role(s, club_id, new_owner_id, ROLE_OWNER)
        _set_role(s, club_id, owner_id, ROLE_ADMIN)

    logger.info("Ownership of club %s transferred from %s to %s", club_id, owner_id, new_owner_id)
    return {"success": True, "owner_id": new_owner_id}


def recount_club_counters(engine) -> int:
    """Recompute member_count/photo_count from the rows they summarize.

    Returns the number of clubs whose stored counters had drifted.
    """
    fixed = 0
    with unit_of_work(engine) as s:
        member_counts = dict(s.exec(
            select(ClubMembership.club_id, func.count()).group_by(ClubMembership.club_id)
        ).all())
        photo_counts = dict(s.exec(
            select(ClubPhoto.club_id, func.count()).group_by(ClubPhoto.club_id)
        ).all())
        for club in s.exec(select(Club)).all():
            members = member_counts.get(club.id, 0)
            photos = photo_counts.get(club.id, 0)
            if club.member_count != members or club.photo_count != photos:
                logger.warning(
                    "Club %s counters drifted (members %s->%s, photos %s->%s)",
                    club.id, club.member_count, members, club.photo_count, photos,
                )
                club.member_count = members
                club.photo_count = photos
                s.add(club)
                fixed += 1
    return fixed
