"""Writes to the users table: registration and role administration."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wonderland.auth.dependencies import normalize_email
from wonderland.core.errors import not_found
from wonderland.models.user import INSTRUCTOR_ROLE, STUDENT_ROLE, User

logger = logging.getLogger(__name__)


def register_user(db: Session, email: str, name: str | None = None,
                  photo_url: str | None = None) -> tuple[User, bool]:
    email = normalize_email(email)
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        return existing_user, False

    user = User(email=email, name=name, photo_url=photo_url, role=STUDENT_ROLE)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Registered concurrently by another request.
        db.rollback()
        return db.query(User).filter(User.email == email).one(), False

    db.refresh(user)
    logger.info('Registered user %s', email)
    return user, True


def set_user_role(db: Session, email: str, role: str) -> User:
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None:
        raise not_found('User not found.')

    user.role = role
    if role == INSTRUCTOR_ROLE and user.students is None:
        user.students = 0
    db.commit()
    db.refresh(user)
    logger.info('Changed role of %s to %s', user.email, role)
    return user
