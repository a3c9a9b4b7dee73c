"""
Notification log operations and the best-effort dispatcher.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.ums.constants import VALID_PRIORITIES, NotificationPriority, UserRole
from app.ums.errors import Failure, InfrastructureError, Ok, ValidationError, invalid, not_found, wraps_store_errors
from app.ums.events import (
    DomainEvent,
    PasswordChangeApproved,
    PasswordChangeRejected,
    PasswordChangeRequested,
    UserCreated,
    UserDeleted,
    UserUpdated,
)
from app.ums.models import User
from app.ums.utils import clean_text, utcnow

from . import templates
from .email import EmailSender
from .models import Notification

logger = logging.getLogger(__name__)


def normalize_priority(raw: Any) -> str | None:
    value = (clean_text(raw) or "").upper()
    return value if value in VALID_PRIORITIES else None


def validate_notification_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not clean_text(payload.get("title")):
        errs.append(ValidationError("title", "Title is required."))
    if not clean_text(payload.get("message")):
        errs.append(ValidationError("message", "Message is required."))
    raw_priority = payload.get("priority")
    if raw_priority not in (None, "") and normalize_priority(raw_priority) is None:
        errs.append(ValidationError("priority", f"Priority must be one of: {', '.join(sorted(VALID_PRIORITIES))}"))
    return errs


# ---------- Notification log ----------

def record_notification(s: Session, *, user_id: int, title: str, message: str, priority: str) -> Notification:
    n = Notification(
        user_id=user_id,
        title=title,
        message=message,
        priority=priority,
        is_read=False,
        created_at=utcnow(),
    )
    s.add(n)
    s.flush()
    return n


@wraps_store_errors("create notification")
def create_notification(s: Session, payload: dict[str, Any]) -> Ok[Notification] | Failure:
    errs = validate_notification_payload(payload)
    try:
        user_id = int(payload.get("user_id"))
    except (TypeError, ValueError):
        errs.append(ValidationError("user_id", "User id is required."))
        user_id = None
    if errs:
        return invalid("Invalid notification.", errs)

    if s.get(User, user_id) is None:
        return not_found(f"User not found with id: {user_id}")

    n = record_notification(
        s,
        user_id=user_id,
        title=clean_text(payload.get("title")) or "",
        message=clean_text(payload.get("message")) or "",
        priority=normalize_priority(payload.get("priority")) or NotificationPriority.MEDIUM.value,
    )
    return Ok(n)


@wraps_store_errors("fetch notifications")
def list_notifications(s: Session) -> list[Notification]:
    return list(s.scalars(select(Notification).order_by(Notification.created_at.desc(), Notification.id.desc())))


@wraps_store_errors("fetch notification")
def get_notification(s: Session, notification_id: int) -> Ok[Notification] | Failure:
    n = s.get(Notification, notification_id)
    if n is None:
        return not_found(f"Notification not found with id: {notification_id}")
    return Ok(n)


@wraps_store_errors("fetch notifications")
def list_user_notifications(s: Session, user_id: int, priority: str | None = None) -> Ok[list[Notification]] | Failure:
    if s.get(User, user_id) is None:
        return not_found(f"User not found with id: {user_id}")
    stmt = select(Notification).where(Notification.user_id == user_id)
    if priority is not None:
        p = normalize_priority(priority)
        if p is None:
            return invalid(f"Priority must be one of: {', '.join(sorted(VALID_PRIORITIES))}")
        stmt = stmt.where(Notification.priority == p)
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
    return Ok(list(s.scalars(stmt)))


@wraps_store_errors("update notification")
def mark_read(s: Session, notification_id: int, read: bool = True) -> Ok[Notification] | Failure:
    n = s.get(Notification, notification_id)
    if n is None:
        return not_found(f"Notification not found with id: {notification_id}")
    n.is_read = bool(read)
    return Ok(n)


@wraps_store_errors("delete notification")
def delete_notification(s: Session, notification_id: int) -> Ok[None] | Failure:
    n = s.get(Notification, notification_id)
    if n is None:
        return not_found(f"Notification not found with id: {notification_id}")
    s.delete(n)
    return Ok(None)


# ---------- Dispatcher ----------

@dataclass
class BroadcastReport:
    notified: list[int] = field(default_factory=list)
    email_failed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "notified": len(self.notified),
            "emailFailed": self.email_failed,
            "failed": self.failed,
        }


class NotificationDispatcher:
    """
    Fans domain events out to the notification log and the email sender.

    Each notification row is written in its own short transaction, then the
    email is attempted. Email problems are logged and swallowed; `handle`
    swallows everything so a dispatch problem never reaches the request that
    caused it.
    """

    def __init__(self, session_factory: sessionmaker, sender: EmailSender) -> None:
        self.session_factory = session_factory
        self.sender = sender
        self._handlers: dict[type[DomainEvent], Callable[[Any], None]] = {
            UserCreated: self._on_user_created,
            UserUpdated: self._on_user_updated,
            UserDeleted: self._on_user_deleted,
            PasswordChangeRequested: self._on_password_change_requested,
            PasswordChangeApproved: self._on_password_change_approved,
            PasswordChangeRejected: self._on_password_change_rejected,
        }

    def _deliver_email(self, user_id: int, to: str, subject: str, text: str, html: str | None) -> bool:
        try:
            ok = self.sender.send(to, subject, text, html)
        except Exception:
            logger.exception("Email delivery raised for user_id=%s (%s)", user_id, to)
            return False
        if not ok:
            logger.warning("Failed to deliver email '%s' to user_id=%s (%s)", subject, user_id, to)
        return bool(ok)

    def send(
        self,
        user_id: int,
        title: str,
        message: str,
        priority: str = NotificationPriority.MEDIUM.value,
        *,
        email: str | None = None,
        text: str | None = None,
        html: str | None = None,
    ) -> tuple[Notification, bool]:
        """
        Write the notification row, then try the email.
        Returns the row and whether the email went out.
        """
        s: Session = self.session_factory()
        try:
            n = record_notification(s, user_id=user_id, title=title, message=message, priority=priority)
            if email is None:
                user = s.get(User, user_id)
                email = user.email if user else None
            s.commit()
        except SQLAlchemyError as e:
            s.rollback()
            raise InfrastructureError("Failed to record notification") from e
        finally:
            s.close()

        if not email:
            logger.warning("No email address for user_id=%s; in-app notification only", user_id)
            return n, False
        if text is None:
            rendered = templates.broadcast(title, message)
            text, html = rendered.text, rendered.html
        return n, self._deliver_email(user_id, email, title, text, html)

    def send_rendered(
        self,
        user_id: int,
        rendered: templates.RenderedMessage,
        priority: str,
        *,
        email: str | None = None,
    ) -> tuple[Notification, bool]:
        return self.send(
            user_id,
            rendered.title,
            rendered.message,
            priority,
            email=email,
            text=rendered.text,
            html=rendered.html,
        )

    def broadcast(self, title: str, message: str, priority: str = NotificationPriority.MEDIUM.value) -> BroadcastReport:
        logger.info("Broadcasting notification: %s", title)
        s: Session = self.session_factory()
        try:
            recipients = [(u.id, u.email) for u in s.scalars(select(User).order_by(User.id.asc()))]
        finally:
            s.close()

        rendered = templates.broadcast(title, message)
        report = BroadcastReport()
        for user_id, email in recipients:
            try:
                _, delivered = self.send_rendered(user_id, rendered, priority, email=email)
            except Exception:
                logger.exception("Broadcast notification failed for user_id=%s", user_id)
                report.failed.append(user_id)
                continue
            report.notified.append(user_id)
            if not delivered:
                report.email_failed.append(user_id)

        logger.info(
            "Broadcast '%s' complete: notified=%d email_failed=%d failed=%d",
            title,
            len(report.notified),
            len(report.email_failed),
            len(report.failed),
        )
        return report

    def handle(self, ev: DomainEvent) -> None:
        handler = self._handlers.get(type(ev))
        if handler is None:
            logger.debug("No notification handler for %s", type(ev).__name__)
            return
        try:
            handler(ev)
        except Exception:
            logger.exception("Notification dispatch failed for %s (user_id=%s)", type(ev).__name__, ev.user_id)

    # ---------- event handlers ----------

    def _on_user_created(self, ev: UserCreated) -> None:
        self.send_rendered(ev.user_id, templates.welcome(ev.first_name), NotificationPriority.HIGH.value, email=ev.email)

    def _on_user_updated(self, ev: UserUpdated) -> None:
        self.send_rendered(ev.user_id, templates.account_updated(), NotificationPriority.MEDIUM.value, email=ev.email)

    def _on_user_deleted(self, ev: UserDeleted) -> None:
        # The account is already gone; the event carries the address captured before deletion.
        self.send_rendered(ev.user_id, templates.account_deleted(ev.first_name), NotificationPriority.HIGH.value, email=ev.email)

    def _on_password_change_requested(self, ev: PasswordChangeRequested) -> None:
        # Admins hear about the request even if the requester cannot be notified.
        try:
            self.send_rendered(ev.user_id, templates.password_change_requested(), NotificationPriority.HIGH.value, email=ev.email)
        except Exception:
            logger.exception("Failed to notify user_id=%s of password change request %s", ev.user_id, ev.request_id)

        s: Session = self.session_factory()
        try:
            admins = [
                (u.id, u.email)
                for u in s.scalars(select(User).where(User.role == UserRole.ADMIN.value).order_by(User.id.asc()))
            ]
        finally:
            s.close()

        review = templates.password_change_review(ev.user_id, ev.full_name, ev.email)
        for admin_id, admin_email in admins:
            try:
                self.send_rendered(admin_id, review, NotificationPriority.HIGH.value, email=admin_email)
            except Exception:
                logger.exception("Failed to notify admin_id=%s of password change request %s", admin_id, ev.request_id)

    def _on_password_change_approved(self, ev: PasswordChangeApproved) -> None:
        self.send_rendered(ev.user_id, templates.password_change_approved(), NotificationPriority.HIGH.value, email=ev.email)

    def _on_password_change_rejected(self, ev: PasswordChangeRejected) -> None:
        self.send_rendered(ev.user_id, templates.password_change_rejected(), NotificationPriority.HIGH.value, email=ev.email)
