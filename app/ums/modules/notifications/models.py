from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.ums.constants import NotificationPriority
from app.ums.models import Base
from app.ums.utils import utcnow


class Notification(Base):
    """
    Append-only in-app notification.
    Only the read flag changes after insert.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_created", "user_id", "created_at"),
        Index("idx_notifications_user_priority", "user_id", "priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # By id only: a notification may outlive its user (account deletion notice).
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=NotificationPriority.MEDIUM.value)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
