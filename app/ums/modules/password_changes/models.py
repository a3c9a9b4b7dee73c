from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.ums.constants import PasswordChangeStatus
from app.ums.models import Base
from app.ums.utils import utcnow

_PENDING_ONLY = text("status = 'PENDING'")


class PasswordChangeRequest(Base):
    __tablename__ = "password_change_requests"
    __table_args__ = (
        Index("idx_password_change_requests_user_status", "user_id", "status"),
        # At most one PENDING request per user.
        Index(
            "uq_password_change_requests_one_pending",
            "user_id",
            unique=True,
            sqlite_where=_PENDING_ONLY,
            postgresql_where=_PENDING_ONLY,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Users are referenced by id only; resolution history survives account deletion.
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    admin_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    new_password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # PENDING -> APPROVED | REJECTED
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PasswordChangeStatus.PENDING.value)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
