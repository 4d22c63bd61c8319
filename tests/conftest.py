import os
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('RESEND_API_KEY', '')

from classroom.database import Base  # noqa: E402
from classroom.models.classroom_session import ClassroomSession  # noqa: E402
from classroom.models.organization import Organization, OrgMember  # noqa: E402
from classroom.models.user import User  # noqa: E402


@pytest.fixture
def classroom_db(monkeypatch: pytest.MonkeyPatch):
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr('classroom.routes.classroom_routes.ensure_database_ready', lambda: None)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def workspace(classroom_db):
    """An organization with an instructor, two learners and an outsider."""
    organization = Organization(name='Acme Compliance')
    other_organization = Organization(name='Other Corp')
    instructor = User(email='instructor@acme.test', full_name='Ada Instructor')
    student = User(email='student@acme.test', full_name='Sam Student')
    classmate = User(email='classmate@acme.test')
    manager = User(email='manager@acme.test', full_name='Morgan Manager')
    outsider = User(email='outsider@other.test', full_name='Olly Outsider')
    classroom_db.add_all([organization, other_organization, instructor, student, classmate, manager, outsider])
    classroom_db.flush()

    classroom_db.add_all([
        OrgMember(org_id=organization.id, user_id=instructor.id, role='admin'),
        OrgMember(org_id=organization.id, user_id=student.id, role='learner'),
        OrgMember(org_id=organization.id, user_id=classmate.id, role='learner'),
        OrgMember(org_id=organization.id, user_id=manager.id, role='manager'),
        OrgMember(org_id=other_organization.id, user_id=outsider.id, role='owner'),
    ])
    classroom_db.commit()

    return SimpleNamespace(
        db=classroom_db,
        organization=organization,
        other_organization=other_organization,
        instructor=instructor,
        student=student,
        classmate=classmate,
        manager=manager,
        outsider=outsider,
    )


@pytest.fixture
def add_session(classroom_db):
    def _add_session(org_id, instructor_id, student_id, start_time, end_time, status='scheduled'):
        session = ClassroomSession(
            org_id=org_id,
            instructor_id=instructor_id,
            student_id=student_id,
            start_time=start_time,
            end_time=end_time,
            status=status,
        )
        classroom_db.add(session)
        classroom_db.commit()
        classroom_db.refresh(session)
        return session

    return _add_session
