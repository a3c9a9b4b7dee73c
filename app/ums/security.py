from dataclasses import dataclass

from werkzeug.security import check_password_hash, generate_password_hash


@dataclass(frozen=True)
class PasswordHasher:
    """Hash and verify credentials. Raw passwords are never stored."""

    method: str = "scrypt"

    def hash(self, raw_password: str) -> str:
        return generate_password_hash(raw_password, method=self.method)

    def verify(self, password_hash: str, raw_password: str) -> bool:
        if not password_hash or raw_password is None:
            return False
        return check_password_hash(password_hash, raw_password)
