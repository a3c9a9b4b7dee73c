import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ums.constants import UserRole
from app.ums.models import Base, User
from app.ums.security import PasswordHasher
from app.ums.utils import normalize_email, utcnow


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the bootstrap ADMIN account in an idempotent way.
    Does NOT overwrite an existing admin user's password; promotes it to ADMIN if needed.
    No notifications are sent for seeded accounts.
    """
    admin_email = normalize_email(os.environ.get("ADMIN_EMAIL") or "admin@example.com")
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me-now"
    first_name = (os.environ.get("ADMIN_FIRST_NAME") or "System").strip()
    last_name = (os.environ.get("ADMIN_LAST_NAME") or "Administrator").strip()
    hasher = PasswordHasher((os.environ.get("PASSWORD_HASH_METHOD") or "scrypt").strip())

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///ums.db").strip()

    with _session_scope(db_url) as s:
        user = s.scalars(select(User).where(func.lower(User.email) == admin_email)).first()
        if user is None:
            now = utcnow()
            user = User(
                first_name=first_name,
                last_name=last_name,
                email=admin_email,
                password_hash=hasher.hash(admin_password),
                role=UserRole.ADMIN.value,
                created_at=now,
                updated_at=now,
            )
            s.add(user)
            print(f"Created admin user {admin_email}", flush=True)
        elif user.role != UserRole.ADMIN.value:
            user.role = UserRole.ADMIN.value
            user.updated_at = utcnow()
            print(f"Promoted existing user {admin_email} to ADMIN", flush=True)
        else:
            print(f"Admin user {admin_email} already present", flush=True)


def main() -> None:
    """
    Local dev helper: create tables directly (no migrations) and seed.
    Use `alembic upgrade head` + seed_only() for real databases.
    """
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///ums.db").strip()
    engine = create_engine(db_url, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    seed_only(database_url=db_url)


if __name__ == "__main__":
    main()
