from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify

from app.ums.constants import UserRole
from app.ums.db import commit, db_session
from app.ums.errors import Failure
from app.ums.modules.accounts.service import (
    address_to_dict,
    create_user,
    delete_address,
    delete_user,
    find_user_by_email,
    get_address,
    get_user,
    list_users,
    update_user,
    upsert_address,
    user_to_dict,
)
from app.ums.rbac import require_role, require_self_or_admin
from app.ums.responses import failure_response, json_body, pick

bp = Blueprint("accounts", __name__)

USER_JSON_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "password": "password",
    "dateOfBirth": "date_of_birth",
    "phoneNumber": "phone_number",
    "gender": "gender",
    "role": "role",
}
ADDRESS_JSON_FIELDS = {
    "street": "street",
    "city": "city",
    "state": "state",
    "zipCode": "zip_code",
    "country": "country",
}


def _user_payload(body: dict) -> dict:
    payload = pick(body, USER_JSON_FIELDS)
    address = body.get("address")
    if address is not None:
        payload["address"] = pick(address, ADDRESS_JSON_FIELDS) if isinstance(address, dict) else address
    return payload


# ---------- Users ----------
@bp.post("/users")
@require_role(UserRole.ADMIN)
def users_create():
    s = db_session()
    result = create_user(s, _user_payload(json_body()), hasher=current_app.extensions["password_hasher"])
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "create user")
    return jsonify(user_to_dict(result.value)), 201


@bp.get("/users")
@require_role(UserRole.ADMIN)
def users_list():
    s = db_session()
    return jsonify([user_to_dict(u) for u in list_users(s)])


@bp.get("/users/<int:user_id>")
@require_self_or_admin()
def users_get(user_id: int):
    result = get_user(db_session(), user_id)
    if isinstance(result, Failure):
        return failure_response(result)
    return jsonify(user_to_dict(result.value))


@bp.get("/users/email/<string:email>")
@require_role(UserRole.ADMIN)
def users_get_by_email(email: str):
    result = find_user_by_email(db_session(), email)
    if isinstance(result, Failure):
        return failure_response(result)
    return jsonify(user_to_dict(result.value))


@bp.put("/users/<int:user_id>")
@require_self_or_admin()
def users_update(user_id: int):
    s = db_session()
    payload = _user_payload(json_body())
    # Only admins may change roles.
    if "role" in payload and not g.current_user.is_admin:
        payload.pop("role")
    result = update_user(s, user_id, payload)
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "update user")
    return jsonify(user_to_dict(result.value))


@bp.delete("/users/<int:user_id>")
@require_self_or_admin()
def users_delete(user_id: int):
    s = db_session()
    result = delete_user(s, user_id)
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "delete user")
    return "", 204


# ---------- Address ----------
@bp.get("/users/<int:user_id>/address")
@require_self_or_admin()
def address_get(user_id: int):
    result = get_address(db_session(), user_id)
    if isinstance(result, Failure):
        return failure_response(result)
    return jsonify(address_to_dict(result.value))


@bp.put("/users/<int:user_id>/address")
@require_self_or_admin()
def address_put(user_id: int):
    s = db_session()
    result = upsert_address(s, user_id, pick(json_body(), ADDRESS_JSON_FIELDS))
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "save address")
    return jsonify(address_to_dict(result.value))


@bp.delete("/users/<int:user_id>/address")
@require_self_or_admin()
def address_delete(user_id: int):
    s = db_session()
    result = delete_address(s, user_id)
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "delete address")
    return "", 204
