from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.ums.constants import UserRole
from app.ums.models import User


def user_has_role(user: User | None, *roles: str) -> bool:
    if not user:
        return False
    return user.role in roles


def can_act_on(user: User | None, user_id: int) -> bool:
    """Admins may act on any account; everyone else only on their own."""
    if not user:
        return False
    return user.is_admin or user.id == user_id


def require_role(*roles: UserRole) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    wanted = tuple(r.value for r in roles)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401
            if not user:
                abort(401)
            # Authenticated but unauthorized -> 403
            if not user_has_role(user, *wanted):
                g.missing_role = "|".join(wanted)
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_self_or_admin(param: str = "user_id") -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Gate a route on the `param` URL argument matching the caller, unless the caller is an ADMIN."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user:
                abort(401)
            if not can_act_on(user, int(kwargs[param])):
                g.missing_role = UserRole.ADMIN.value
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
