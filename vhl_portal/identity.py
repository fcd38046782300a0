"""Identity provider: sign-up, sign-in, sign-out and the session accessor.

The rest of the application only sees the profile id stored in the signed
session cookie; credentials never leave this module.
"""

import logging
from typing import MutableMapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from vhl_portal.auth_utils import hash_password, verify_password
from vhl_portal.errors import ValidationFailed
from vhl_portal.models import Credential, Profile, Role

logger = logging.getLogger(__name__)

SESSION_KEY = "user_id"
PASSWORD_MIN_LENGTH = 6


def _clean_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def sign_up(
    session: Session,
    email: str,
    password: str,
    full_name: str,
    phone: Optional[str] = None,
) -> Profile:
    """Register a new student account (credential + profile in one commit)."""
    errors: dict[str, str] = {}
    email_clean = _clean_email(email)
    name_clean = (full_name or "").strip()

    if not email_clean or "@" not in email_clean:
        errors["email"] = "A valid email address is required."
    if len(password or "") < PASSWORD_MIN_LENGTH:
        errors["password"] = (
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters."
        )
    if not name_clean:
        errors["full_name"] = "Full name is required."
    if errors:
        raise ValidationFailed(errors)

    existing = session.exec(
        select(Credential).where(Credential.email == email_clean)
    ).first()
    if existing:
        raise ValidationFailed({"email": "An account with this email already exists."})

    credential = Credential(email=email_clean, password_hash=hash_password(password))
    session.add(credential)
    try:
        session.flush()
        profile = Profile(
            id=credential.id,
            full_name=name_clean,
            email=email_clean,
            phone=(phone or "").strip() or None,
            role=Role.STUDENT.value,
        )
        session.add(profile)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationFailed({"email": "An account with this email already exists."})

    session.refresh(profile)
    logger.info("Registered student profile id=%s", profile.id)
    return profile


def create_admin(session: Session, email: str, password: str, full_name: str) -> Profile:
    """Create an admin account. Only reachable from the seed routine."""
    credential = Credential(email=_clean_email(email), password_hash=hash_password(password))
    session.add(credential)
    session.flush()
    profile = Profile(
        id=credential.id,
        full_name=full_name,
        email=credential.email,
        role=Role.ADMIN.value,
    )
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


def sign_in(session: Session, email: str, password: str) -> Optional[int]:
    """Return the user id for valid credentials, otherwise None."""
    credential = session.exec(
        select(Credential).where(Credential.email == _clean_email(email))
    ).first()
    if not credential or not verify_password(password or "", credential.password_hash):
        logger.info("Failed sign-in for %s", _clean_email(email))
        return None
    return credential.id


def start_session(session_data: MutableMapping, user_id: int) -> None:
    session_data.clear()
    session_data[SESSION_KEY] = user_id


def sign_out(session_data: MutableMapping) -> None:
    session_data.clear()


def current_user_id(session_data: MutableMapping) -> Optional[int]:
    value = session_data.get(SESSION_KEY)
    return value if isinstance(value, int) else None
