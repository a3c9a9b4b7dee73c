from __future__ import annotations

import pytest

from app.ums import create_app
from app.ums.constants import UserRole
from app.ums.db import session_scope
from app.ums.models import Base, User
from app.ums.security import PasswordHasher

# Cheap hash for tests; production default is scrypt.
TEST_HASH_METHOD = "pbkdf2:sha256:1000"


class FakeSender:
    """In-memory EmailSender. Addresses in `fail_for` return False, in `raise_for` raise."""

    def __init__(self, fail_for=(), raise_for=()):
        self.sent: list[dict] = []
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)

    def send(self, to, subject, text, html=None):
        if to in self.raise_for:
            raise ConnectionError(f"smtp down for {to}")
        if to in self.fail_for:
            return False
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return True

    def subjects_for(self, to):
        return [m["subject"] for m in self.sent if m["to"] == to]


@pytest.fixture()
def sender():
    return FakeSender()


@pytest.fixture()
def app(tmp_path, monkeypatch, sender):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("PASSWORD_HASH_METHOD", TEST_HASH_METHOD)
    for k in ("SMTP_SERVER", "SMTP_USERNAME", "SMTP_PASSWORD", "EMAIL_FROM", "AUTH_USER_HEADER"):
        monkeypatch.delenv(k, raising=False)

    app = create_app(email_sender=sender)
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


def add_user(app, email, password="password-1", *, role=UserRole.USER, first_name="Test", last_name="User") -> int:
    """Insert a user directly (no events, no notifications) and return its id."""
    with session_scope(app) as s:
        u = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password_hash=PasswordHasher(TEST_HASH_METHOD).hash(password),
            role=role.value,
        )
        s.add(u)
        s.flush()
        return u.id


def as_user(user_id: int) -> dict:
    return {"X-User-Id": str(user_id)}
