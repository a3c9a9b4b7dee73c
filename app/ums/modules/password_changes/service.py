"""
Admin-mediated password change workflow.

A user proposes a new password (verified against the current one); the
request waits in PENDING until an administrator approves or rejects it.
Only approval touches the user's credential, and each request is resolved
exactly once even when several admins act on it concurrently.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ums.constants import PasswordChangeStatus
from app.ums.errors import Failure, Ok, ValidationError, duplicate, invalid, not_found, unauthorized, wraps_store_errors
from app.ums.events import PasswordChangeApproved, PasswordChangeRejected, PasswordChangeRequested, emit
from app.ums.models import User
from app.ums.security import PasswordHasher
from app.ums.utils import iso, utcnow

from .models import PasswordChangeRequest

logger = logging.getLogger(__name__)

PENDING = PasswordChangeStatus.PENDING.value


def validate_new_password(old_password: str, new_password: Any) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not isinstance(new_password, str):
        errs.append(ValidationError("new_password", "New password must be a string."))
    elif not new_password:
        errs.append(ValidationError("new_password", "New password is required."))
    elif new_password == old_password:
        errs.append(ValidationError("new_password", "New password must differ from the current password."))
    return errs


def _pending_for(s: Session, user_id: int) -> PasswordChangeRequest | None:
    return s.scalars(
        select(PasswordChangeRequest)
        .where(PasswordChangeRequest.user_id == user_id, PasswordChangeRequest.status == PENDING)
        .order_by(PasswordChangeRequest.id.desc())
        .limit(1)
    ).first()


@wraps_store_errors("create password change request")
def request_change(
    s: Session,
    user_id: int,
    old_password: Any,
    new_password: Any,
    *,
    hasher: PasswordHasher,
) -> Ok[PasswordChangeRequest] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")

    if not isinstance(old_password, str):
        return invalid("Invalid old password", [ValidationError("old_password", "Current password must be a string.")])

    if not hasher.verify(u.password_hash, old_password):
        logger.info("Password change rejected for user_id=%s: current password mismatch", user_id)
        return invalid("Invalid old password", [ValidationError("old_password", "Current password is incorrect.")])

    errs = validate_new_password(old_password, new_password)
    if errs:
        return invalid("Invalid new password.", errs)

    if _pending_for(s, user_id) is not None:
        return duplicate(f"A password change request is already pending for user id: {user_id}")

    req = PasswordChangeRequest(
        user_id=user_id,
        new_password_hash=hasher.hash(new_password),
        status=PENDING,
        created_at=utcnow(),
    )
    # The partial unique index closes the window between the lookup above and this insert.
    try:
        with s.begin_nested():
            s.add(req)
            s.flush()
    except IntegrityError:
        logger.info("Concurrent password change request for user_id=%s", user_id)
        return duplicate(f"A password change request is already pending for user id: {user_id}")

    emit(s, PasswordChangeRequested(user_id=u.id, email=u.email, request_id=req.id, full_name=u.full_name))
    logger.info("Password change request id=%s created for user_id=%s", req.id, user_id)
    return Ok(req)


@wraps_store_errors("resolve password change request")
def resolve_change(s: Session, user_id: int, admin_id: int, approve: bool) -> Ok[PasswordChangeRequest] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")
    admin = s.get(User, admin_id)
    if admin is None:
        return not_found(f"Admin not found with id: {admin_id}")
    if not admin.is_admin:
        logger.warning("User id=%s attempted to resolve a password change without ADMIN role", admin_id)
        return unauthorized("Only admins can approve password changes")

    req = _pending_for(s, user_id)
    if req is None:
        return not_found(f"No pending password change request found for user id: {user_id}")

    status = PasswordChangeStatus.APPROVED if approve else PasswordChangeStatus.REJECTED
    now = utcnow()

    # Single writer: only the resolver whose UPDATE still sees PENDING wins.
    result = s.execute(
        update(PasswordChangeRequest)
        .where(PasswordChangeRequest.id == req.id, PasswordChangeRequest.status == PENDING)
        .values(status=status.value, admin_id=admin.id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("Password change request id=%s was resolved concurrently", req.id)
        return not_found(f"No pending password change request found for user id: {user_id}")

    s.refresh(req)

    if approve:
        u.password_hash = req.new_password_hash
        u.updated_at = now
        s.flush()
        emit(s, PasswordChangeApproved(user_id=u.id, email=u.email, request_id=req.id, admin_id=admin.id))
    else:
        emit(s, PasswordChangeRejected(user_id=u.id, email=u.email, request_id=req.id, admin_id=admin.id))

    logger.info("Password change request id=%s %s by admin_id=%s", req.id, status.value, admin.id)
    return Ok(req)


@wraps_store_errors("fetch password change requests")
def list_pending(s: Session) -> list[PasswordChangeRequest]:
    return list(
        s.scalars(
            select(PasswordChangeRequest)
            .where(PasswordChangeRequest.status == PENDING)
            .order_by(PasswordChangeRequest.created_at.asc(), PasswordChangeRequest.id.asc())
        )
    )


@wraps_store_errors("fetch password change request")
def get_pending_for_user(s: Session, user_id: int) -> Ok[PasswordChangeRequest] | Failure:
    req = _pending_for(s, user_id)
    if req is None:
        return not_found(f"No pending password change request found for user id: {user_id}")
    return Ok(req)


def to_dict(req: PasswordChangeRequest) -> dict[str, Any]:
    # new_password_hash stays server-side.
    return {
        "id": req.id,
        "userId": req.user_id,
        "adminId": req.admin_id,
        "status": req.status,
        "createdAt": iso(req.created_at),
        "updatedAt": iso(req.updated_at),
    }
