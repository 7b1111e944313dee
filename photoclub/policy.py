"""Club authorization rules.

Every function here is pure: it looks at a club (or contest), the caller's
membership lookup result and the caller's identity, and either returns a
decision or raises the matching domain error. Nothing is read from or written
to the database; callers fetch the membership first and perform the mutation
afterwards.
"""
import logging
from typing import Optional

from pydantic import BaseModel

from .constants import ROLE_ADMIN, ROLE_MEMBER, ROLE_OWNER
from .errors import ConflictError, ForbiddenError
from .models import Club, Contest

logger = logging.getLogger(__name__)


class MembershipInfo(BaseModel):
    """Result of looking up a caller's membership in one club."""
    is_member: bool = False
    role: Optional[str] = None


NOT_A_MEMBER = MembershipInfo()

PRIVATE_CLUB_MESSAGE = "This club is private"


def can_view_club(club: Club, user_id: Optional[str], membership: MembershipInfo) -> bool:
    """Public clubs are visible to everyone, private ones only to signed-in members."""
    if not club.is_private:
        return True
    return bool(user_id) and membership.is_member


def ensure_can_view(club: Club, user_id: Optional[str], membership: MembershipInfo) -> None:
    # Same check guards the club page, the member list and the photo feed
    if not can_view_club(club, user_id, membership):
        logger.debug("Denied view of private club %s to %s", club.id, user_id or "anonymous")
        raise ForbiddenError(PRIVATE_CLUB_MESSAGE)


def ensure_can_join(membership: MembershipInfo) -> None:
    if membership.is_member:
        raise ConflictError("You are already a member of this club")


def ensure_can_leave(membership: MembershipInfo) -> None:
    if not membership.is_member:
        raise ConflictError("You are not a member of this club")
    if membership.role == ROLE_OWNER:
        raise ConflictError(
            "Club owners cannot leave their club. Transfer ownership or delete the club instead."
        )


def ensure_can_post_photo(membership: MembershipInfo) -> None:
    if not membership.is_member:
        raise ForbiddenError("You must be a member to post photos to this club")


def can_update_club(membership: MembershipInfo) -> bool:
    return membership.is_member and membership.role in (ROLE_OWNER, ROLE_ADMIN)


def ensure_can_update(membership: MembershipInfo) -> None:
    if not can_update_club(membership):
        raise ForbiddenError("Only club owners and admins can update club information")


def ensure_can_delete(membership: MembershipInfo) -> None:
    # Admins may edit the club but never delete it
    if not (membership.is_member and membership.role == ROLE_OWNER):
        raise ForbiddenError("Only the club owner can delete the club")


def ensure_can_manage_roles(membership: MembershipInfo) -> None:
    if not (membership.is_member and membership.role == ROLE_OWNER):
        raise ForbiddenError("Only the club owner can change member roles")


def ensure_promotable(target: MembershipInfo) -> None:
    if not target.is_member:
        raise ConflictError("User is not a member of this club")
    if target.role != ROLE_MEMBER:
        raise ConflictError(f"Only members can be promoted (current role: {target.role})")


def ensure_demotable(target: MembershipInfo) -> None:
    if not target.is_member:
        raise ConflictError("User is not a member of this club")
    if target.role != ROLE_ADMIN:
        raise ConflictError(f"Only admins can be demoted (current role: {target.role})")


def ensure_can_receive_ownership(target: MembershipInfo) -> None:
    if not target.is_member:
        raise ConflictError("Ownership can only be transferred to a club member")
    if target.role == ROLE_OWNER:
        raise ConflictError("User already owns this club")


def can_manage_contests(membership: MembershipInfo) -> bool:
    return membership.is_member and membership.role in (ROLE_OWNER, ROLE_ADMIN)


def can_enter_contest(contest: Contest, membership: MembershipInfo) -> bool:
    """Site-wide and public contests are open to all; private club contests to members."""
    if contest.club_id is None or contest.is_public:
        return True
    return membership.is_member


def can_view_contest(contest: Contest, membership: MembershipInfo) -> bool:
    return can_enter_contest(contest, membership)
