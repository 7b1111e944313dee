import os
from typing import Optional

from sqlalchemy import event, func, text
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine, select
import logging

logger = logging.getLogger(__name__)

from .models import Club, Comment, Like, Photo, User


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def _enable_foreign_keys(dbapi_connection, connection_record):
    # SQLite only honours ON DELETE CASCADE when enabled per connection
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def init_db(database_url: str = "sqlite:////data/photos.db"):
    """Create and return SQLAlchemy engine. Creates all tables on startup."""
    memory = _is_memory_url(database_url)
    try:
        if database_url.startswith("sqlite:///") and not memory:
            file_path = database_url[len("sqlite:///"):]
            dirpath = os.path.dirname(file_path)
            if dirpath and not os.path.exists(dirpath):
                os.makedirs(dirpath, exist_ok=True)
    except Exception as e:
        logger.debug("Unable to prepare database directory: %s", e)

    kwargs = {"echo": False, "connect_args": {"check_same_thread": False}}
    if memory:
        # One shared connection so every session sees the same in-memory database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    event.listen(engine, "connect", _enable_foreign_keys)

    if not memory:
        try:
            with engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.execute(text("PRAGMA synchronous=NORMAL"))
                conn.execute(text("PRAGMA temp_store=MEMORY"))
        except Exception as e:
            logger.debug("Unable to set SQLite pragmas: %s", e)

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready at %s", database_url)
    return engine


def get_user_by_id(session: Session, user_id: str) -> Optional[User]:
    return session.get(User, user_id)


def get_user_by_username(session: Session, username: str) -> Optional[User]:
    return session.exec(select(User).where(User.username == username)).first()


def get_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()


def get_photo_by_id(session: Session, photo_id: str) -> Optional[Photo]:
    return session.get(Photo, photo_id)


def get_club_by_id(session: Session, club_id: str) -> Optional[Club]:
    return session.get(Club, club_id)


def get_stats(session: Session) -> dict:
    """Get row counts for the main entities.

    Returns dict with keys: users, photos, featured_photos, clubs, likes, comments
    """
    def _count(model, *where) -> int:
        stmt = select(func.count()).select_from(model)
        for clause in where:
            stmt = stmt.where(clause)
        return int(session.exec(stmt).one())

    return {
        'users': _count(User),
        'photos': _count(Photo),
        'featured_photos': _count(Photo, Photo.featured_stream == True),  # noqa: E712
        'clubs': _count(Club),
        'likes': _count(Like),
        'comments': _count(Comment),
    }
