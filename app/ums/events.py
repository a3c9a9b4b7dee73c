"""
Domain events raised by account and password-change mutations.

Events are queued on the SQLAlchemy session that performed the mutation and
handed to a handler only after that session commits. A rollback drops them,
so no notification is ever sent for a change that did not persist.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import event
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_QUEUE_KEY = "domain_events"


@dataclass(frozen=True)
class DomainEvent:
    user_id: int
    email: str


@dataclass(frozen=True)
class UserCreated(DomainEvent):
    first_name: str


@dataclass(frozen=True)
class UserUpdated(DomainEvent):
    pass


@dataclass(frozen=True)
class UserDeleted(DomainEvent):
    first_name: str


@dataclass(frozen=True)
class PasswordChangeRequested(DomainEvent):
    request_id: int
    full_name: str


@dataclass(frozen=True)
class PasswordChangeApproved(DomainEvent):
    request_id: int
    admin_id: int


@dataclass(frozen=True)
class PasswordChangeRejected(DomainEvent):
    request_id: int
    admin_id: int


def emit(s: Session, ev: DomainEvent) -> None:
    """Queue an event for dispatch once `s` commits."""
    s.info.setdefault(_QUEUE_KEY, []).append(ev)


def pending_events(s: Session) -> list[DomainEvent]:
    return list(s.info.get(_QUEUE_KEY, []))


def install_dispatch(sm: sessionmaker, handler: Callable[[DomainEvent], None]) -> None:
    """Deliver queued events to `handler` after each commit of a session made by `sm`."""

    @event.listens_for(sm, "after_commit")
    def _after_commit(session: Session) -> None:  # type: ignore[no-redef]
        queued = session.info.pop(_QUEUE_KEY, None)
        for ev in queued or ():
            try:
                handler(ev)
            except Exception:
                logger.exception("Domain event handler failed for %s (user_id=%s)", type(ev).__name__, ev.user_id)

    # Savepoint rollbacks keep the queue; only the end of the outermost
    # transaction without a commit drops it.
    @event.listens_for(sm, "after_transaction_end")
    def _after_transaction_end(session: Session, transaction) -> None:  # type: ignore[no-redef]
        if transaction.parent is not None:
            return
        dropped = session.info.pop(_QUEUE_KEY, None)
        if dropped:
            logger.info("Discarded %d domain event(s) from an uncommitted transaction", len(dropped))
