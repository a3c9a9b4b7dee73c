"""
Notification and email content for each domain event.

The in-app notification gets a title and a one-line message; the email
gets the same title as subject plus text and HTML bodies rendered from
the shared layouts in ``app/ums/templates/email``.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "templates" / "email"

APP_NAME = "User Management System"
SUPPORT_FOOTER = "If you did not expect this message, please contact support immediately."

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class RenderedMessage:
    title: str
    message: str
    text: str
    html: str


def render(
    title: str,
    message: str,
    *,
    lines: list[str] | None = None,
    details: list[tuple[str, str]] | None = None,
    footer: str | None = None,
) -> RenderedMessage:
    ctx = {
        "title": title,
        "lines": lines or [message],
        "details": details or [],
        "footer": footer,
    }
    return RenderedMessage(
        title=title,
        message=message,
        text=_env.get_template("layout.txt").render(**ctx),
        html=_env.get_template("layout.html").render(**ctx),
    )


def welcome(first_name: str) -> RenderedMessage:
    # The initial password is never sent; it was chosen by the administrator
    # who created the account and must be changed through a change request.
    return render(
        f"Welcome to {APP_NAME}",
        "Your account has been created successfully.",
        lines=[
            f"Hello {first_name},",
            "Your account has been created successfully.",
            "Your administrator will share your temporary password separately. "
            "Please request a password change after your first login.",
        ],
    )


def account_updated() -> RenderedMessage:
    return render(
        "Account Updated",
        "Your account details have been updated.",
        footer=SUPPORT_FOOTER,
    )


def account_deleted(first_name: str) -> RenderedMessage:
    return render(
        "Account Deleted",
        "Your account has been deleted.",
        lines=[f"Hello {first_name},", "Your account has been deleted."],
        footer=SUPPORT_FOOTER,
    )


def password_change_requested() -> RenderedMessage:
    return render(
        "Password Change Request",
        "A password change has been requested for your account.",
        lines=[
            "A password change has been requested for your account.",
            "Please wait for admin approval.",
        ],
        footer=SUPPORT_FOOTER,
    )


def password_change_review(user_id: int, full_name: str, email: str) -> RenderedMessage:
    return render(
        "New Password Change Request",
        f"{full_name} ({email}) submitted a password change request.",
        lines=["A new password change request has been submitted by user:"],
        details=[("User ID", str(user_id)), ("User Name", full_name), ("User Email", email)],
        footer="Please review and take appropriate action.",
    )


def password_change_approved() -> RenderedMessage:
    return render(
        "Password Change Approved",
        "Your password change request has been approved.",
        lines=[
            "Your password change request has been approved.",
            "You can now sign in with your new password.",
        ],
        footer=SUPPORT_FOOTER,
    )


def password_change_rejected() -> RenderedMessage:
    return render(
        "Password Change Request Rejected",
        "Your password change request has been rejected by the administrator.",
        footer="If you believe this is an error, please contact support.",
    )


def broadcast(title: str, message: str) -> RenderedMessage:
    return render(title, message)
