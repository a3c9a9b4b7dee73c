import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from app.ums.models import Base, User
from app.ums.security import PasswordHasher
from conftest import TEST_HASH_METHOD
from scripts import release, start


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'release.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()

    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("PASSWORD_HASH_METHOD", TEST_HASH_METHOD)
    monkeypatch.setenv("ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "root-pass-1")
    monkeypatch.delenv("ADMIN_FIRST_NAME", raising=False)
    monkeypatch.delenv("ADMIN_LAST_NAME", raising=False)
    return url


@pytest.fixture()
def migrations(monkeypatch):
    calls = []
    monkeypatch.setattr(release, "migrate", lambda url, revision="head": calls.append((url, revision)))
    return calls


def _users(url):
    engine = create_engine(url)
    try:
        with Session(engine) as s:
            return list(s.scalars(select(User)))
    finally:
        engine.dispose()


def test_release_migrates_then_seeds_admin_once(db_url, migrations):
    release.run_release()
    release.run_release()

    assert migrations == [(db_url, "head"), (db_url, "head")]
    users = _users(db_url)
    assert [(u.email, u.role) for u in users] == [("root@example.com", "ADMIN")]
    assert PasswordHasher(TEST_HASH_METHOD).verify(users[0].password_hash, "root-pass-1")


def test_release_skip_seed(db_url, migrations):
    release.run_release(revision="0001", seed=False)
    assert migrations == [(db_url, "0001")]
    assert _users(db_url) == []


def test_release_refuses_sqlite_in_production(db_url, migrations, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError, match="Postgres"):
        release.run_release()
    assert migrations == []


def test_gunicorn_argv_defaults_and_overrides():
    argv = start.gunicorn_argv({})
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:8000"
    assert argv[argv.index("--workers") + 1] == "2"
    assert argv[argv.index("--timeout") + 1] == "60"

    argv = start.gunicorn_argv({"PORT": "9090", "WEB_CONCURRENCY": "4", "GUNICORN_TIMEOUT": "30"})
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:9090"
    assert argv[argv.index("--workers") + 1] == "4"
    assert argv[argv.index("--timeout") + 1] == "30"


@pytest.mark.parametrize("port", ["0", "70000", "http"])
def test_gunicorn_argv_rejects_bad_port(port):
    with pytest.raises(ValueError, match="PORT"):
        start.gunicorn_argv({"PORT": port})


def test_start_aborts_before_exec_when_release_fails(monkeypatch):
    def boom():
        raise RuntimeError("migration failed")

    execs = []
    monkeypatch.setattr(start, "run_release", boom)
    monkeypatch.setattr(start.os, "execvp", lambda *a: execs.append(a))

    with pytest.raises(SystemExit):
        start.main([])
    assert execs == []


def test_start_without_release(monkeypatch):
    execs = []
    monkeypatch.setattr(start, "run_release", lambda: pytest.fail("release should be skipped"))
    monkeypatch.setattr(start.os, "execvp", lambda file, args: execs.append((file, args)))
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("WEB_CONCURRENCY", raising=False)
    monkeypatch.delenv("GUNICORN_TIMEOUT", raising=False)

    start.main(["--no-release"])
    assert execs == [("gunicorn", start.gunicorn_argv({}))]
