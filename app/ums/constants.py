"""
Central constants for the user management service.
"""
from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class PasswordChangeStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


VALID_ROLES = frozenset(r.value for r in UserRole)
VALID_GENDERS = frozenset(g.value for g in Gender)
VALID_PRIORITIES = frozenset(p.value for p in NotificationPriority)

DEFAULT_COUNTRY = "USA"
