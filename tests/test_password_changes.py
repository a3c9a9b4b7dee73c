import pytest
from sqlalchemy import select

from app.ums.constants import PasswordChangeStatus, UserRole
from app.ums.db import session_scope
from app.ums.errors import ErrorKind, Failure, InfrastructureError, Ok
from app.ums.models import User
from app.ums.modules.notifications.models import Notification
from app.ums.modules.password_changes import service as pcr_service
from app.ums.modules.password_changes.models import PasswordChangeRequest
from app.ums.security import PasswordHasher
from conftest import TEST_HASH_METHOD, add_user, as_user

hasher = PasswordHasher(TEST_HASH_METHOD)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def people(app):
    return {
        "alice": add_user(app, "alice@example.com", "alice-pass-1", first_name="Alice", last_name="Smith"),
        "bob": add_user(app, "bob@example.com", "bob-pass-1", role=UserRole.ADMIN, first_name="Bob"),
        "carol": add_user(app, "carol@example.com", "carol-pass-1", first_name="Carol"),
    }


def _credential_matches(app, user_id, raw):
    with session_scope(app) as s:
        return hasher.verify(s.get(User, user_id).password_hash, raw)


def _requests_for(app, user_id):
    with session_scope(app) as s:
        return [
            (r.status, r.admin_id)
            for r in s.scalars(select(PasswordChangeRequest).where(PasswordChangeRequest.user_id == user_id))
        ]


def _request(client, user_id, old, new):
    return client.post(
        f"/api/users/{user_id}/change-password",
        json={"oldPassword": old, "newPassword": new},
        headers=as_user(user_id),
    )


def _resolve(client, user_id, admin_id, approved, caller=None):
    return client.put(
        f"/api/users/{user_id}/approve-password-change",
        json={"adminId": admin_id, "approved": approved},
        headers=as_user(caller or admin_id),
    )


def test_request_then_approve(client, app, people):
    alice, bob = people["alice"], people["bob"]

    r = _request(client, alice, "alice-pass-1", "alice-pass-2")
    assert r.status_code == 202
    assert r.json["status"] == "PENDING"
    assert r.json["adminId"] is None
    assert "newPasswordHash" not in r.json

    # Credential unchanged while pending.
    assert _credential_matches(app, alice, "alice-pass-1")
    assert _requests_for(app, alice) == [("PENDING", None)]

    r = _resolve(client, alice, bob, True)
    assert r.status_code == 200
    assert r.json["status"] == "APPROVED"
    assert r.json["adminId"] == bob
    assert r.json["updatedAt"] is not None

    assert _credential_matches(app, alice, "alice-pass-2")
    assert not _credential_matches(app, alice, "alice-pass-1")

    # A resolved request cannot be resolved again.
    r = _resolve(client, alice, bob, True)
    assert r.status_code == 404
    assert r.json["error"] == "not_found"


def test_non_admin_cannot_resolve(client, app, people):
    alice, bob, carol = people["alice"], people["bob"], people["carol"]
    assert _request(client, alice, "alice-pass-1", "alice-pass-2").status_code == 202

    # Acting as carol (role USER) is refused by the workflow itself.
    r = _resolve(client, alice, carol, True, caller=bob)
    assert r.status_code == 400
    assert r.json["error"] == "unauthorized"

    # Carol calling the admin route directly never reaches it.
    assert _resolve(client, alice, carol, True).status_code == 403

    assert _requests_for(app, alice) == [("PENDING", None)]
    assert _credential_matches(app, alice, "alice-pass-1")


def test_reject_leaves_credential(client, app, people):
    alice, bob = people["alice"], people["bob"]
    _request(client, alice, "alice-pass-1", "alice-pass-2")

    r = _resolve(client, alice, bob, False)
    assert r.status_code == 200
    assert r.json["status"] == "REJECTED"
    assert _credential_matches(app, alice, "alice-pass-1")

    # After a terminal state the user may ask again.
    assert _request(client, alice, "alice-pass-1", "alice-pass-3").status_code == 202
    assert sorted(_requests_for(app, alice)) == [("PENDING", None), ("REJECTED", bob)]


def test_bad_old_password(client, app, people):
    r = _request(client, people["alice"], "wrong-pass", "alice-pass-2")
    assert r.status_code == 400
    assert r.json["message"] == "Invalid old password"
    assert _requests_for(app, people["alice"]) == []


@pytest.mark.parametrize("new", ["alice-pass-1", "", 123456789, ["x"]])
def test_new_password_policy(client, app, people, new):
    r = _request(client, people["alice"], "alice-pass-1", new)
    assert r.status_code == 400
    assert r.json["fieldErrors"][0]["field"] == "new_password"
    assert _requests_for(app, people["alice"]) == []


def test_old_password_must_be_a_string(client, app, people):
    r = _request(client, people["alice"], 12345, "alice-pass-2")
    assert r.status_code == 400
    assert r.json["fieldErrors"][0]["field"] == "old_password"
    assert _requests_for(app, people["alice"]) == []


def test_short_passwords_round_trip(client, app):
    alice = add_user(app, "alice.short@example.com", "p1")
    bob = add_user(app, "bob.short@example.com", "bob-pass-1", role=UserRole.ADMIN)

    r = _request(client, alice, "p1", "p2")
    assert r.status_code == 202
    assert _credential_matches(app, alice, "p1")

    r = _resolve(client, alice, bob, True)
    assert r.status_code == 200
    assert r.json["status"] == "APPROVED"
    assert _credential_matches(app, alice, "p2")

    assert _resolve(client, alice, bob, True).status_code == 404
    assert _credential_matches(app, alice, "p2")


def test_second_pending_request_is_duplicate(client, app, people):
    alice = people["alice"]
    assert _request(client, alice, "alice-pass-1", "alice-pass-2").status_code == 202
    r = _request(client, alice, "alice-pass-1", "alice-pass-3")
    assert r.status_code == 409
    assert len(_requests_for(app, alice)) == 1


def test_unknown_user_admin_or_request(client, app, people):
    bob = people["bob"]
    assert _resolve(client, 999, bob, True).status_code == 404
    assert _resolve(client, people["alice"], 999, True, caller=bob).status_code == 404
    # No pending request for alice.
    assert _resolve(client, people["alice"], bob, True).status_code == 404
    # Unknown user asking for a change (admin acting on their behalf).
    r = client.post(
        "/api/users/999/change-password",
        json={"oldPassword": "x" * 8, "newPassword": "y" * 8},
        headers=as_user(bob),
    )
    assert r.status_code == 404


def test_approval_payload_validation(client, people):
    r = client.put(
        f"/api/users/{people['alice']}/approve-password-change",
        json={"adminId": "abc", "approved": "yes"},
        headers=as_user(people["bob"]),
    )
    assert r.status_code == 400
    assert {e["field"] for e in r.json["fieldErrors"]} == {"adminId", "approved"}


def test_pending_queue(client, app, people):
    _request(client, people["alice"], "alice-pass-1", "alice-pass-2")
    _request(client, people["carol"], "carol-pass-1", "carol-pass-2")

    r = client.get("/api/users/password-change-requests/pending", headers=as_user(people["bob"]))
    assert r.status_code == 200
    assert [p["userId"] for p in r.json] == [people["alice"], people["carol"]]

    assert client.get("/api/users/password-change-requests/pending", headers=as_user(people["alice"])).status_code == 403


def test_request_notifies_user_and_admins(client, app, people, sender):
    _request(client, people["alice"], "alice-pass-1", "alice-pass-2")

    assert sender.subjects_for("alice@example.com") == ["Password Change Request"]
    assert sender.subjects_for("bob@example.com") == ["New Password Change Request"]
    assert sender.subjects_for("carol@example.com") == []

    with session_scope(app) as s:
        n = s.scalars(select(Notification).where(Notification.user_id == people["bob"])).one()
        assert "Alice Smith" in n.message


def test_resolution_notifies_user(client, people, sender):
    _request(client, people["alice"], "alice-pass-1", "alice-pass-2")
    _resolve(client, people["alice"], people["bob"], True)
    assert sender.subjects_for("alice@example.com")[-1] == "Password Change Approved"

    _request(client, people["alice"], "alice-pass-2", "alice-pass-3")
    _resolve(client, people["alice"], people["bob"], False)
    assert sender.subjects_for("alice@example.com")[-1] == "Password Change Request Rejected"


def test_email_failure_does_not_undo_resolution(client, app, people, sender):
    _request(client, people["alice"], "alice-pass-1", "alice-pass-2")
    sender.raise_for.add("alice@example.com")

    r = _resolve(client, people["alice"], people["bob"], True)
    assert r.status_code == 200
    assert _credential_matches(app, people["alice"], "alice-pass-2")
    with session_scope(app) as s:
        titles = [n.title for n in s.scalars(select(Notification).where(Notification.user_id == people["alice"]))]
    assert "Password Change Approved" in titles


def test_concurrent_resolution_single_writer(app, people, monkeypatch):
    alice, bob = people["alice"], people["bob"]
    sm = app.extensions["sqlalchemy_sessionmaker"]

    with session_scope(app) as s:
        assert isinstance(pcr_service.request_change(s, alice, "alice-pass-1", "alice-pass-2", hasher=hasher), Ok)

    # Second resolver read the request while it was still PENDING...
    stale_session = sm()
    stale = pcr_service.get_pending_for_user(stale_session, alice).value

    # ...then the first resolver rejects it.
    with session_scope(app) as s:
        assert isinstance(pcr_service.resolve_change(s, alice, bob, False), Ok)

    monkeypatch.setattr(pcr_service, "_pending_for", lambda s, user_id: stale)
    try:
        result = pcr_service.resolve_change(stale_session, alice, bob, True)
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.NOT_FOUND
        stale_session.commit()
    finally:
        stale_session.close()

    # The loser never touched the credential or the request.
    assert _credential_matches(app, alice, "alice-pass-1")
    assert _requests_for(app, alice) == [(PasswordChangeStatus.REJECTED.value, bob)]


def test_admins_notified_when_requester_notification_fails(client, app, people, sender, monkeypatch):
    dispatcher = app.extensions["notification_dispatcher"]
    original = dispatcher.send_rendered

    def send_rendered(user_id, *args, **kwargs):
        if user_id == people["alice"]:
            raise InfrastructureError("Failed to record notification")
        return original(user_id, *args, **kwargs)

    monkeypatch.setattr(dispatcher, "send_rendered", send_rendered)

    assert _request(client, people["alice"], "alice-pass-1", "alice-pass-2").status_code == 202
    assert sender.subjects_for("alice@example.com") == []
    assert sender.subjects_for("bob@example.com") == ["New Password Change Request"]
    assert _requests_for(app, people["alice"]) == [("PENDING", None)]
