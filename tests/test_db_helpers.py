import logging
import pytest
from sqlmodel import Session, select

import photoclub.db_helpers as db_helpers
from photoclub.db_helpers import session_scope, unit_of_work
from photoclub.models import User


def _user(name):
    return User(username=name, email=f"{name}@example.com", password="x", display_name=name)


def test_session_scope_logs_open_and_close(caplog, engine):
    caplog.set_level(logging.DEBUG)

    with session_scope(engine) as sess:
        assert sess is not None

    messages = "\n".join(r.getMessage() for r in caplog.records)
    assert "Opening DB session" in messages
    assert "Closed DB session" in messages


def test_session_scope_closes_even_on_error(caplog, engine):
    caplog.set_level(logging.DEBUG)

    with pytest.raises(RuntimeError):
        with session_scope(engine):
            raise RuntimeError("boom")

    messages = "\n".join(r.getMessage() for r in caplog.records)
    assert "Opening DB session" in messages
    assert "Closed DB session" in messages


def test_session_scope_handles_close_exception(monkeypatch, caplog):
    caplog.set_level(logging.ERROR)

    class BadSession:
        def __init__(self, engine):
            self._engine = engine

        def close(self):
            raise RuntimeError("close failed")

    monkeypatch.setattr(db_helpers, "Session", BadSession)

    with session_scope(object()) as sess:
        assert isinstance(sess, BadSession)

    messages = "\n".join(r.getMessage() for r in caplog.records)
    assert "Failed to close DB session" in messages


def test_session_scope_does_not_persist_without_commit(engine):
    with pytest.raises(RuntimeError):
        with session_scope(engine) as sess:
            sess.add(_user("notpersisted"))
            sess.flush()
            raise RuntimeError("boom")

    with Session(engine) as s:
        assert s.exec(select(User)).all() == []


def test_unit_of_work_commits_on_success(engine):
    with unit_of_work(engine) as sess:
        sess.add(_user("alice"))
        sess.add(_user("bob"))

    with Session(engine) as s:
        names = sorted(u.username for u in s.exec(select(User)).all())
    assert names == ["alice", "bob"]


def test_unit_of_work_rolls_back_every_statement(engine, caplog):
    caplog.set_level(logging.DEBUG)

    with pytest.raises(ValueError):
        with unit_of_work(engine) as sess:
            sess.add(_user("alice"))
            sess.flush()
            raise ValueError("second step failed")

    with Session(engine) as s:
        assert s.exec(select(User)).all() == []
    assert any("Rolling back DB session" in r.getMessage() for r in caplog.records)
