from __future__ import annotations

import uuid

from flask import current_app, g, request

from app.ums.db import db_session
from app.ums.models import User


def load_current_user() -> None:
    """
    Loads g.current_user from the trusted identity header set by the gateway.
    Also assigns a per-request request_id (for log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = (request.headers.get("X-Request-ID") or "").strip() or uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/health", "/healthz")):
        return

    header = current_app.config.get("AUTH_USER_HEADER") or "X-User-Id"
    raw = (request.headers.get(header) or "").strip()
    if not raw:
        return
    try:
        user_id = int(raw)
    except ValueError:
        current_app.logger.warning("Ignoring malformed %s header (request_id=%s)", header, g.request_id)
        return

    g.current_user = db_session().get(User, user_id)
    if g.current_user is None:
        current_app.logger.info("Unknown caller user_id=%s (request_id=%s)", user_id, g.request_id)
