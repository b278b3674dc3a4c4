import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from wonderland.database import Base  # noqa: E402
from wonderland.models.class_offering import APPROVED_STATUS, ClassOffering  # noqa: E402
from wonderland.models.selection import Selection  # noqa: E402
from wonderland.models.user import INSTRUCTOR_ROLE, STUDENT_ROLE, User  # noqa: E402


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "wonderland.db"}',
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(email: str, role: str = STUDENT_ROLE, students: int | None = None) -> User:
        user = User(email=email, name=email.split('@')[0], role=role, students=students)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_class(db):
    def _make_class(
        instructor_email: str = 'coach@example.com',
        price: float = 50.0,
        available_seats: int = 10,
        enrolled: int = 0,
        status: str = APPROVED_STATUS,
        name: str = 'Watercolor Basics',
    ) -> ClassOffering:
        offering = ClassOffering(
            name=name,
            instructor_email=instructor_email,
            instructor_name='Coach',
            price=price,
            available_seats=available_seats,
            enrolled=enrolled,
            status=status,
        )
        db.add(offering)
        db.commit()
        db.refresh(offering)
        return offering

    return _make_class


@pytest.fixture
def make_selection(db):
    def _make_selection(student_email: str, offering: ClassOffering) -> Selection:
        selection = Selection(
            student_email=student_email,
            class_id=offering.id,
            class_name=offering.name,
            price=offering.price,
        )
        db.add(selection)
        db.commit()
        db.refresh(selection)
        return selection

    return _make_selection


@pytest.fixture
def instructor(make_user):
    return make_user('coach@example.com', role=INSTRUCTOR_ROLE)


@pytest.fixture
def student(make_user):
    return make_user('student@example.com')
