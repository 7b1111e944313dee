import datetime
import uuid
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from .constants import (
    ANONYMOUS_USER_ID,
    ANONYMOUS_USERNAME,
    DEFAULT_CONTEST_CATEGORY,
    DEFAULT_CONTEST_MAX_ENTRIES,
    ROLE_MEMBER,
)


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    password: str  # bcrypt hash, never the plain text
    display_name: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=_utcnow)

    def public_dict(self) -> dict:
        """Serializable view without the password hash."""
        return self.model_dump(exclude={"password"})


class Photo(SQLModel, table=True):
    __tablename__ = "photos"

    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    description: str = ""
    tags: str = ""  # free text, as typed by the uploader
    featured_stream: bool = Field(default=False, index=True)
    filename: str
    thumbnail_filename: str
    original_name: str
    file_size: int
    mime_type: str
    upload_date: datetime.datetime = Field(default_factory=_utcnow, index=True)
    owner_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")


class Club(SQLModel, table=True):
    """A named group of members sharing photos.

    `creator_id` is attribution only; who may manage the club is decided by
    the roles stored in `ClubMembership`. `member_count` and `photo_count` are
    denormalized and always written in the same transaction as the rows they
    count.
    """
    __tablename__ = "clubs"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str
    description: str = ""
    creator_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    cover_image: Optional[str] = None
    is_private: bool = Field(default=False, index=True)
    member_count: int = Field(default=1)
    photo_count: int = Field(default=0)
    created_at: datetime.datetime = Field(default_factory=_utcnow, index=True)


class ClubMembership(SQLModel, table=True):
    __tablename__ = "club_members"
    __table_args__ = (UniqueConstraint("club_id", "user_id", name="uq_club_member"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    club_id: str = Field(foreign_key="clubs.id", index=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    role: str = Field(default=ROLE_MEMBER)
    joined_at: datetime.datetime = Field(default_factory=_utcnow)


class ClubPhoto(SQLModel, table=True):
    """A photo posted into a club. A photo is posted to a given club at most once."""
    __tablename__ = "club_photos"
    __table_args__ = (UniqueConstraint("club_id", "photo_id", name="uq_club_photo"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    club_id: str = Field(foreign_key="clubs.id", index=True, ondelete="CASCADE")
    photo_id: str = Field(foreign_key="photos.id", index=True, ondelete="CASCADE")
    posted_by: str = Field(foreign_key="users.id", ondelete="CASCADE")
    posted_at: datetime.datetime = Field(default_factory=_utcnow)


class Like(SQLModel, table=True):
    __tablename__ = "likes"
    __table_args__ = (UniqueConstraint("photo_id", "user_id", "user_ip", name="uq_like_identity"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    photo_id: str = Field(foreign_key="photos.id", index=True, ondelete="CASCADE")
    user_id: str = Field(default=ANONYMOUS_USER_ID)
    user_ip: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=_utcnow)


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: str = Field(default_factory=_new_id, primary_key=True)
    photo_id: str = Field(foreign_key="photos.id", index=True, ondelete="CASCADE")
    username: str = Field(default=ANONYMOUS_USERNAME)
    comment: str
    user_ip: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=_utcnow)


class Contest(SQLModel, table=True):
    """Photo contest, either site-wide or attached to a club.

    Status is not stored; it is derived from `start_date`/`end_date`.
    """
    __tablename__ = "contests"

    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str
    description: str
    category: str = Field(default=DEFAULT_CONTEST_CATEGORY, index=True)
    start_date: datetime.datetime
    end_date: datetime.datetime
    entry_fee: float = 0.0
    max_entries: int = DEFAULT_CONTEST_MAX_ENTRIES
    prizes: str = "[]"  # JSON-encoded list of strings
    club_id: Optional[str] = Field(default=None, foreign_key="clubs.id", index=True, ondelete="CASCADE")
    is_public: bool = Field(default=True, index=True)
    created_by: str = Field(foreign_key="users.id", ondelete="CASCADE")
    created_at: datetime.datetime = Field(default_factory=_utcnow)


class ContestEntry(SQLModel, table=True):
    __tablename__ = "contest_entries"

    id: str = Field(default_factory=_new_id, primary_key=True)
    contest_id: str = Field(foreign_key="contests.id", index=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    title: str
    description: str = ""
    filename: str
    thumbnail_filename: str
    created_at: datetime.datetime = Field(default_factory=_utcnow)
