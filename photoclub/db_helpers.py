"""Database session helper utilities.

Provides two context managers so callers don't repeat
`with Session(engine) as session:` everywhere:

- `session_scope(engine)` for reads and single writes the caller commits.
- `unit_of_work(engine)` for multi-statement changes that must land together:
  it commits when the block finishes and rolls back if anything raises.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlmodel import Session
import logging

logger = logging.getLogger(__name__)


@contextmanager
def session_scope(engine) -> Iterator[Session]:
    """Yield a short-lived SQLModel `Session` bound to `engine`.

    Caller is responsible for committing when appropriate. Session is
    always closed on exit.
    """
    sess = Session(engine)
    logger.debug("Opening DB session %s", sess)
    try:
        yield sess
    finally:
        try:
            sess.close()
            logger.debug("Closed DB session %s", sess)
        except Exception as e:
            logger.exception("Failed to close DB session: %s", e)


@contextmanager
def unit_of_work(engine) -> Iterator[Session]:
    """Yield a session whose changes are committed atomically on success.

    Any exception raised inside the block rolls the transaction back and is
    re-raised unchanged.
    """
    with session_scope(engine) as sess:
        try:
            yield sess
            sess.commit()
        except Exception:
            logger.debug("Rolling back DB session %s", sess)
            sess.rollback()
            raise
