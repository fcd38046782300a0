"""Database initialization and seeding.

Run on application startup for the default admin and batch, and from the
command line to enroll students::

    python -m vhl_portal.seed --enroll alice@example.com --batch "Japan Batch 12" --days 90
"""

import argparse
import logging
import logging.config
from datetime import timedelta
from typing import Optional

from sqlmodel import Session, select

from vhl_portal import identity
from vhl_portal.config import (
    DEFAULT_ACCESS_DAYS,
    DEFAULT_ADMIN_EMAIL,
    DEFAULT_ADMIN_PASSWORD,
    DEFAULT_BATCH_NAME,
    LOGGING,
)
from vhl_portal.database import create_db_and_tables, new_session
from vhl_portal.errors import NotFound
from vhl_portal.models import Batch, BatchStudent, Profile, Role
from vhl_portal.services import admin_service
from vhl_portal.utils import utcnow

logger = logging.getLogger(__name__)


def seed_defaults(session: Session) -> Profile:
    """Ensure an admin profile and at least one batch exist. Safe to rerun."""
    admin = session.exec(select(Profile).where(Profile.role == Role.ADMIN.value)).first()
    if not admin:
        admin = identity.create_admin(
            session,
            email=DEFAULT_ADMIN_EMAIL,
            password=DEFAULT_ADMIN_PASSWORD,
            full_name="System Admin",
        )
        logger.info("Seeded default admin user: %s", DEFAULT_ADMIN_EMAIL)

    if not session.exec(select(Batch)).first():
        batch = admin_service.create_batch(session, admin, DEFAULT_BATCH_NAME)
        logger.info("Seeded default batch: %s", batch.name)

    return admin


def enroll_by_email(
    session: Session,
    email: str,
    batch_name: Optional[str] = None,
    days: int = DEFAULT_ACCESS_DAYS,
) -> BatchStudent:
    """Enroll the student with this email, creating the batch if it is new."""
    admin = seed_defaults(session)
    batch_name = batch_name or DEFAULT_BATCH_NAME

    student = session.exec(
        select(Profile).where(Profile.email == email.strip().lower())
    ).first()
    if not student:
        raise NotFound(f"No account registered for {email}")

    batch = session.exec(select(Batch).where(Batch.name == batch_name)).first()
    if not batch:
        batch = admin_service.create_batch(session, admin, batch_name)

    return admin_service.enroll_student(
        session, admin, batch.id, student.id, utcnow() + timedelta(days=days)
    )


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Initialize and seed the portal database.")
    parser.add_argument("--enroll", metavar="EMAIL", help="student account to enroll")
    parser.add_argument("--batch", help=f"batch name (default: {DEFAULT_BATCH_NAME})")
    parser.add_argument(
        "--days", type=int, default=DEFAULT_ACCESS_DAYS, help="days of access from today"
    )
    args = parser.parse_args(argv)

    logging.config.dictConfig(LOGGING)
    create_db_and_tables()
    with new_session() as session:
        seed_defaults(session)
        if args.enroll:
            try:
                enrollment = enroll_by_email(session, args.enroll, args.batch, args.days)
            except NotFound as exc:
                parser.exit(1, f"{exc.message}\n")
            logger.info(
                "Enrollment id=%s valid until %s", enrollment.id, enrollment.access_expiry
            )


if __name__ == "__main__":
    main()
