from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ums.constants import DEFAULT_COUNTRY, VALID_GENDERS, VALID_ROLES, UserRole
from app.ums.errors import Failure, Ok, ValidationError, duplicate, invalid, not_found, wraps_store_errors
from app.ums.events import UserCreated, UserDeleted, UserUpdated, emit
from app.ums.models import Address, User
from app.ums.security import PasswordHasher
from app.ums.utils import clean_text, iso, is_valid_email, normalize_email, parse_date, utcnow

logger = logging.getLogger(__name__)

# Scalar columns a caller may set through create/update.
USER_FIELDS = ("first_name", "last_name", "email", "date_of_birth", "phone_number", "gender", "role")
# Keys that must arrive as JSON strings when present.
TEXT_FIELDS = USER_FIELDS + ("password",)


def _validate_date_of_birth(raw: Any, errs: list[ValidationError]) -> None:
    if raw in (None, ""):
        return
    try:
        parse_date(str(raw))
    except ValueError:
        errs.append(ValidationError("date_of_birth", "Date of birth must be YYYY-MM-DD."))


def validate_address_payload(payload: dict[str, Any] | None) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not isinstance(payload, dict):
        return [ValidationError("address", "Address must be an object.")]
    if not clean_text(payload.get("street")):
        errs.append(ValidationError("address.street", "Street is required."))
    if not clean_text(payload.get("city")):
        errs.append(ValidationError("address.city", "City is required."))
    return errs


def validate_user_payload(payload: dict[str, Any], *, partial: bool = False) -> list[ValidationError]:
    """
    Field-level validation for create (all required fields) or update
    (only the keys present in `payload`).
    """
    wrong_type = [k for k in TEXT_FIELDS if payload.get(k) is not None and not isinstance(payload[k], str)]
    if wrong_type:
        return [ValidationError(k, "Must be a string.") for k in wrong_type]

    errs: list[ValidationError] = []

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("first_name") and not clean_text(payload.get("first_name")):
        errs.append(ValidationError("first_name", "First name is required."))
    if present("last_name") and not clean_text(payload.get("last_name")):
        errs.append(ValidationError("last_name", "Last name is required."))

    if present("email"):
        email = normalize_email(payload.get("email"))
        if not email:
            errs.append(ValidationError("email", "Email is required."))
        elif not is_valid_email(email):
            errs.append(ValidationError("email", "Email is not valid."))

    if partial:
        if "password" in payload:
            errs.append(ValidationError("password", "Passwords can only be changed through a password change request."))
    else:
        if not payload.get("password"):
            errs.append(ValidationError("password", "Password is required."))

    if "date_of_birth" in payload:
        _validate_date_of_birth(payload.get("date_of_birth"), errs)

    gender = clean_text(payload.get("gender"))
    if gender and gender.upper() not in VALID_GENDERS:
        errs.append(ValidationError("gender", f"Gender must be one of: {', '.join(sorted(VALID_GENDERS))}"))

    if present("role"):
        role = clean_text(payload.get("role"))
        if role and role.upper() not in VALID_ROLES:
            errs.append(ValidationError("role", f"Role must be one of: {', '.join(sorted(VALID_ROLES))}"))
        elif partial and not role:
            errs.append(ValidationError("role", "Role cannot be blank."))

    if payload.get("address") is not None:
        errs.extend(validate_address_payload(payload.get("address")))

    return errs


def _apply_scalars(u: User, payload: dict[str, Any]) -> None:
    if "first_name" in payload:
        u.first_name = clean_text(payload.get("first_name")) or ""
    if "last_name" in payload:
        u.last_name = clean_text(payload.get("last_name")) or ""
    if "email" in payload:
        u.email = normalize_email(payload.get("email"))
    if "date_of_birth" in payload:
        raw = payload.get("date_of_birth")
        u.date_of_birth = parse_date(str(raw)) if raw else None
    if "phone_number" in payload:
        u.phone_number = clean_text(payload.get("phone_number"))
    if "gender" in payload:
        gender = clean_text(payload.get("gender"))
        u.gender = gender.upper() if gender else None
    if "role" in payload:
        role = clean_text(payload.get("role"))
        if role:
            u.role = role.upper()


def _apply_address(u: User, payload: dict[str, Any]) -> Address:
    """Create the user's address if absent, otherwise update it in place."""
    now = utcnow()
    a = u.address
    if a is None:
        a = Address(created_at=now)
        u.address = a
    a.street = clean_text(payload.get("street")) or ""
    a.city = clean_text(payload.get("city")) or ""
    a.state = clean_text(payload.get("state"))
    a.zip_code = clean_text(payload.get("zip_code"))
    a.country = clean_text(payload.get("country")) or DEFAULT_COUNTRY
    a.updated_at = now
    return a


def _email_taken(s: Session, email: str, *, exclude_user_id: int | None = None) -> bool:
    stmt = select(User.id).where(func.lower(User.email) == email)
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    return s.scalars(stmt.limit(1)).first() is not None


# ---------- Users ----------

@wraps_store_errors("create user")
def create_user(s: Session, payload: dict[str, Any], *, hasher: PasswordHasher) -> Ok[User] | Failure:
    errs = validate_user_payload(payload)
    if errs:
        return invalid("Invalid user.", errs)

    email = normalize_email(payload.get("email"))
    if _email_taken(s, email):
        return duplicate(f"Email already exists: {email}")

    now = utcnow()
    u = User(
        password_hash=hasher.hash(payload["password"]),
        role=UserRole.USER.value,
        created_at=now,
        updated_at=now,
    )
    _apply_scalars(u, {k: payload[k] for k in USER_FIELDS if k in payload})
    if payload.get("address") is not None:
        _apply_address(u, payload["address"])

    # Another request may register the same email between the check and the insert.
    try:
        with s.begin_nested():
            s.add(u)
            s.flush()
    except IntegrityError:
        logger.info("Duplicate email on insert (concurrent create): %s", email)
        return duplicate(f"Email already exists: {email}")

    emit(s, UserCreated(user_id=u.id, email=u.email, first_name=u.first_name))
    logger.info("Created user id=%s email=%s role=%s", u.id, u.email, u.role)
    return Ok(u)


@wraps_store_errors("fetch user")
def get_user(s: Session, user_id: int) -> Ok[User] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")
    return Ok(u)


@wraps_store_errors("fetch users")
def list_users(s: Session) -> list[User]:
    return list(s.scalars(select(User).order_by(User.id.asc())))


@wraps_store_errors("fetch user")
def find_user_by_email(s: Session, email: str) -> Ok[User] | Failure:
    e = normalize_email(email)
    u = s.scalars(select(User).where(func.lower(User.email) == e)).first()
    if u is None:
        return not_found(f"User not found with email: {e}")
    return Ok(u)


@wraps_store_errors("update user")
def update_user(s: Session, user_id: int, payload: dict[str, Any]) -> Ok[User] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")

    errs = validate_user_payload(payload, partial=True)
    if errs:
        return invalid("Invalid user.", errs)

    if "email" in payload:
        email = normalize_email(payload.get("email"))
        if email != u.email and _email_taken(s, email, exclude_user_id=u.id):
            return duplicate(f"Email already exists: {email}")

    _apply_scalars(u, {k: payload[k] for k in USER_FIELDS if k in payload})
    if payload.get("address") is not None:
        _apply_address(u, payload["address"])
    u.updated_at = utcnow()

    try:
        with s.begin_nested():
            s.flush()
    except IntegrityError:
        return duplicate(f"Email already exists: {u.email}")

    emit(s, UserUpdated(user_id=u.id, email=u.email))
    return Ok(u)


@wraps_store_errors("delete user")
def delete_user(s: Session, user_id: int) -> Ok[None] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")

    # Snapshot before the row goes away; the goodbye email needs it.
    ev = UserDeleted(user_id=u.id, email=u.email, first_name=u.first_name)
    s.delete(u)
    s.flush()

    emit(s, ev)
    logger.info("Deleted user id=%s", user_id)
    return Ok(None)


# ---------- Address ----------

@wraps_store_errors("fetch address")
def get_address(s: Session, user_id: int) -> Ok[Address] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")
    if u.address is None:
        return not_found(f"Address not found for user id: {user_id}")
    return Ok(u.address)


@wraps_store_errors("save address")
def upsert_address(s: Session, user_id: int, payload: dict[str, Any]) -> Ok[Address] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")
    errs = validate_address_payload(payload)
    if errs:
        return invalid("Invalid address.", errs)

    a = _apply_address(u, payload)
    u.updated_at = utcnow()
    s.flush()
    emit(s, UserUpdated(user_id=u.id, email=u.email))
    return Ok(a)


@wraps_store_errors("delete address")
def delete_address(s: Session, user_id: int) -> Ok[None] | Failure:
    u = s.get(User, user_id)
    if u is None:
        return not_found(f"User not found with id: {user_id}")
    if u.address is None:
        return not_found(f"Address not found for user id: {user_id}")

    # delete-orphan removes the addresses row.
    u.address = None
    u.updated_at = utcnow()
    s.flush()
    emit(s, UserUpdated(user_id=u.id, email=u.email))
    return Ok(None)


# ---------- Serialization ----------

def address_to_dict(a: Address | None) -> dict[str, Any] | None:
    if a is None:
        return None
    return {
        "id": a.id,
        "street": a.street,
        "city": a.city,
        "state": a.state,
        "zipCode": a.zip_code,
        "country": a.country,
    }


def user_to_dict(u: User) -> dict[str, Any]:
    # password_hash is never serialized.
    return {
        "id": u.id,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "email": u.email,
        "dateOfBirth": iso(u.date_of_birth),
        "phoneNumber": u.phone_number,
        "gender": u.gender,
        "role": u.role,
        "address": address_to_dict(u.address),
        "createdAt": iso(u.created_at),
        "updatedAt": iso(u.updated_at),
    }
