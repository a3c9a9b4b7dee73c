from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify

from app.ums.constants import UserRole
from app.ums.db import commit, db_session
from app.ums.errors import Failure, ValidationError, invalid
from app.ums.modules.password_changes.service import list_pending, request_change, resolve_change, to_dict
from app.ums.rbac import require_role, require_self_or_admin
from app.ums.responses import failure_response, json_body

bp = Blueprint("password_changes", __name__)


@bp.post("/users/<int:user_id>/change-password")
@require_self_or_admin()
def change_password(user_id: int):
    s = db_session()
    body = json_body()
    old_password, new_password = body.get("oldPassword"), body.get("newPassword")
    result = request_change(
        s,
        user_id,
        "" if old_password is None else old_password,
        "" if new_password is None else new_password,
        hasher=current_app.extensions["password_hasher"],
    )
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "create password change request")
    return jsonify(to_dict(result.value)), 202


@bp.put("/users/<int:user_id>/approve-password-change")
@require_role(UserRole.ADMIN)
def approve_password_change(user_id: int):
    s = db_session()
    body = json_body()

    errs: list[ValidationError] = []
    raw_admin_id = body.get("adminId", g.current_user.id)
    try:
        admin_id = int(raw_admin_id)
    except (TypeError, ValueError):
        errs.append(ValidationError("adminId", "Admin id must be an integer."))
        admin_id = 0
    approved = body.get("approved")
    if not isinstance(approved, bool):
        errs.append(ValidationError("approved", "Approved must be true or false."))
    if errs:
        return failure_response(invalid("Invalid approval request.", errs))

    result = resolve_change(s, user_id, admin_id, approved)
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "resolve password change request")
    return jsonify(to_dict(result.value))


@bp.get("/users/password-change-requests/pending")
@require_role(UserRole.ADMIN)
def pending_requests():
    return jsonify([to_dict(r) for r in list_pending(db_session())])
