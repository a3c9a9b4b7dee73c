import pytest
from sqlalchemy import select

from app.ums.db import build_sessionmaker
from app.ums.events import UserCreated, UserUpdated, emit, install_dispatch, pending_events
from app.ums.models import Base


@pytest.fixture()
def sm_and_seen(tmp_path):
    sm = build_sessionmaker(f"sqlite:///{tmp_path/'events.db'}")
    Base.metadata.create_all(bind=sm.kw["bind"])
    seen = []
    install_dispatch(sm, seen.append)
    return sm, seen


def test_events_delivered_after_commit_in_order(sm_and_seen):
    sm, seen = sm_and_seen
    s = sm()
    s.execute(select(1))
    emit(s, UserCreated(user_id=1, email="a@example.com", first_name="A"))
    emit(s, UserUpdated(user_id=1, email="a@example.com"))
    assert seen == []
    assert len(pending_events(s)) == 2

    s.commit()
    s.close()
    assert [type(e).__name__ for e in seen] == ["UserCreated", "UserUpdated"]


def test_rollback_discards_events(sm_and_seen):
    sm, seen = sm_and_seen
    s = sm()
    s.execute(select(1))
    emit(s, UserUpdated(user_id=1, email="a@example.com"))
    s.rollback()
    assert pending_events(s) == []

    # Nothing leaks into the next transaction on the same session.
    s.execute(select(1))
    s.commit()
    s.close()
    assert seen == []


def test_close_without_commit_discards_events(sm_and_seen):
    sm, seen = sm_and_seen
    s = sm()
    s.execute(select(1))
    emit(s, UserUpdated(user_id=1, email="a@example.com"))
    s.close()
    assert seen == []


def test_savepoint_rollback_keeps_outer_events(sm_and_seen):
    sm, seen = sm_and_seen
    s = sm()
    s.execute(select(1))
    emit(s, UserUpdated(user_id=1, email="a@example.com"))

    with pytest.raises(RuntimeError):
        with s.begin_nested():
            raise RuntimeError("boom")

    s.commit()
    s.close()
    assert len(seen) == 1


def test_handler_errors_are_contained(tmp_path):
    sm = build_sessionmaker(f"sqlite:///{tmp_path/'events.db'}")

    def explode(ev):
        raise ValueError("handler broke")

    install_dispatch(sm, explode)
    s = sm()
    s.execute(select(1))
    emit(s, UserUpdated(user_id=1, email="a@example.com"))
    s.commit()
    s.close()
