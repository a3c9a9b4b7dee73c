from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify

from app.ums.constants import NotificationPriority, UserRole
from app.ums.db import commit, db_session
from app.ums.errors import Failure, invalid
from app.ums.modules.notifications.models import Notification
from app.ums.modules.notifications.service import (
    create_notification,
    delete_notification,
    get_notification,
    list_notifications,
    list_user_notifications,
    mark_read,
    normalize_priority,
    validate_notification_payload,
)
from app.ums.rbac import can_act_on, require_role, require_self_or_admin
from app.ums.responses import failure_response, json_body, pick
from app.ums.utils import clean_text, iso

bp = Blueprint("notifications", __name__)

NOTIFICATION_JSON_FIELDS = {
    "userId": "user_id",
    "title": "title",
    "message": "message",
    "priority": "priority",
}


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "userId": n.user_id,
        "title": n.title,
        "message": n.message,
        "priority": n.priority,
        "read": n.is_read,
        "createdAt": iso(n.created_at),
    }


def _owned_notification(notification_id: int):
    """Fetch a notification the caller may see (owner or admin)."""
    result = get_notification(db_session(), notification_id)
    if isinstance(result, Failure):
        return result
    if not can_act_on(g.current_user, result.value.user_id):
        abort(403)
    return result


@bp.post("/notifications")
@require_role(UserRole.ADMIN)
def notifications_create():
    s = db_session()
    result = create_notification(s, pick(json_body(), NOTIFICATION_JSON_FIELDS))
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "create notification")
    return jsonify(notification_to_dict(result.value)), 201


@bp.get("/notifications")
@require_role(UserRole.ADMIN)
def notifications_list():
    return jsonify([notification_to_dict(n) for n in list_notifications(db_session())])


@bp.get("/notifications/<int:notification_id>")
@require_role(UserRole.ADMIN, UserRole.USER)
def notifications_get(notification_id: int):
    result = _owned_notification(notification_id)
    if isinstance(result, Failure):
        return failure_response(result)
    return jsonify(notification_to_dict(result.value))


@bp.put("/notifications/<int:notification_id>")
@require_role(UserRole.ADMIN, UserRole.USER)
def notifications_mark_read(notification_id: int):
    s = db_session()
    found = _owned_notification(notification_id)
    if isinstance(found, Failure):
        return failure_response(found)
    read = json_body().get("read", True)
    if not isinstance(read, bool):
        return failure_response(invalid("Read must be true or false."))
    result = mark_read(s, notification_id, read)
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "update notification")
    return jsonify(notification_to_dict(result.value))


@bp.delete("/notifications/<int:notification_id>")
@require_role(UserRole.ADMIN, UserRole.USER)
def notifications_delete(notification_id: int):
    s = db_session()
    found = _owned_notification(notification_id)
    if isinstance(found, Failure):
        return failure_response(found)
    result = delete_notification(s, notification_id)
    if isinstance(result, Failure):
        return failure_response(result)
    commit(s, "delete notification")
    return "", 204


@bp.get("/notifications/user/<int:user_id>")
@require_self_or_admin()
def notifications_for_user(user_id: int):
    result = list_user_notifications(db_session(), user_id)
    if isinstance(result, Failure):
        return failure_response(result)
    return jsonify([notification_to_dict(n) for n in result.value])


@bp.get("/notifications/user/<int:user_id>/priority/<string:priority>")
@require_self_or_admin()
def notifications_for_user_by_priority(user_id: int, priority: str):
    result = list_user_notifications(db_session(), user_id, priority)
    if isinstance(result, Failure):
        return failure_response(result)
    return jsonify([notification_to_dict(n) for n in result.value])


@bp.post("/notifications/broadcast")
@require_role(UserRole.ADMIN)
def notifications_broadcast():
    body = json_body()
    payload = pick(body, NOTIFICATION_JSON_FIELDS)
    errs = validate_notification_payload(payload)
    if errs:
        return failure_response(invalid("Invalid broadcast.", errs))

    priority = normalize_priority(payload.get("priority")) or NotificationPriority.MEDIUM.value
    dispatcher = current_app.extensions["notification_dispatcher"]
    report = dispatcher.broadcast(clean_text(payload.get("title")), clean_text(payload.get("message")), priority)
    current_app.logger.info(
        "Broadcast by user_id=%s reached %d user(s) (request_id=%s)",
        g.current_user.id,
        len(report.notified),
        getattr(g, "request_id", None),
    )
    return jsonify(report.to_dict()), 202
