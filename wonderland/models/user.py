"""User model definitions."""

from sqlalchemy import Column, Index, Integer, String
from wonderland.database import Base

STUDENT_ROLE = "student"
INSTRUCTOR_ROLE = "instructor"
ADMIN_ROLE = "admin"
USER_ROLES = (STUDENT_ROLE, INSTRUCTOR_ROLE, ADMIN_ROLE)


class User(Base):
    """Represents a registered student, instructor or admin."""
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_role_students", "role", "students"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    photo_url = Column(String)
    role = Column(String, nullable=False, default=STUDENT_ROLE)
    students = Column(Integer)  # instructors only
