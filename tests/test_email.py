import logging
import smtplib

import pytest

from app.ums.modules.notifications import email as email_mod
from app.ums.modules.notifications.email import SMTPEmailSender, sender_from_config


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    fail_with: Exception | None = None

    def __init__(self, host, port, timeout=None):
        self.host, self.port, self.timeout = host, port, timeout
        self.calls = []
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))
        if isinstance(FakeSMTP.fail_with, smtplib.SMTPAuthenticationError):
            raise FakeSMTP.fail_with

    def send_message(self, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.messages.append(msg)


@pytest.fixture(autouse=True)
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(email_mod.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _sender(**kw):
    base = dict(server="smtp.example.com", port=2525, username="mailer", password="pw", email_from="noreply@example.com")
    base.update(kw)
    return SMTPEmailSender(**base)


def test_send_multipart_with_tls_and_login():
    assert _sender().send("to@example.com", "Subject", "plain body", "<p>html body</p>") is True

    smtp = FakeSMTP.instances[0]
    assert (smtp.host, smtp.port, smtp.timeout) == ("smtp.example.com", 2525, 10)
    assert smtp.calls == ["starttls", ("login", "mailer")]
    msg = smtp.messages[0]
    assert msg["To"] == "to@example.com"
    assert msg["From"] == "noreply@example.com"
    assert msg["Subject"] == "Subject"
    assert msg.get_content_subtype() == "alternative"


def test_plain_text_only_without_tls_or_credentials():
    assert _sender(use_tls=False, username="", password="").send("to@example.com", "S", "text") is True
    smtp = FakeSMTP.instances[0]
    assert smtp.calls == []
    assert smtp.messages[0].get_content_type() == "text/plain"


def test_unconfigured_sender_returns_false(caplog):
    with caplog.at_level(logging.WARNING):
        assert _sender(server="").send("to@example.com", "S", "t") is False
        assert _sender(email_from="").send("to@example.com", "S", "t") is False
    assert FakeSMTP.instances == []
    assert "SMTP_SERVER" in caplog.text


@pytest.mark.parametrize(
    "exc",
    [
        smtplib.SMTPAuthenticationError(535, b"bad credentials"),
        smtplib.SMTPServerDisconnected("gone"),
        ConnectionRefusedError("refused"),
    ],
)
def test_delivery_errors_return_false(exc):
    FakeSMTP.fail_with = exc
    assert _sender().send("to@example.com", "S", "t") is False


def test_sender_from_config():
    s = sender_from_config(
        {
            "SMTP_SERVER": " smtp.example.com ",
            "SMTP_PORT": 465,
            "SMTP_USE_TLS": False,
            "EMAIL_FROM": "noreply@example.com",
            "SMTP_TIMEOUT": 5,
        }
    )
    assert s.server == "smtp.example.com"
    assert s.port == 465
    assert s.use_tls is False
    assert s.timeout_seconds == 5
    assert s.configured
    assert not sender_from_config({}).configured
    assert sender_from_config({}).timeout_seconds == 10
