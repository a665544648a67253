import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('ZENZONE_LOG_LEVEL', 'WARNING')

from zenzone import database  # noqa: E402
from zenzone.auth.jwt_handler import create_access_token  # noqa: E402
from zenzone.models.analytics import ChatSessionAnalytics  # noqa: E402
from zenzone.models.appointment import APPROVED, Appointment  # noqa: E402
from zenzone.models.message import Message  # noqa: E402
from zenzone.models.user import PSYCHIATRIST_ROLE, STUDENT_ROLE, User, UserBlock  # noqa: E402
from zenzone.realtime import socket_routes  # noqa: E402
from zenzone.realtime.broker import RoomBroker  # noqa: E402

TABLES = [
    User.__table__,
    UserBlock.__table__,
    Appointment.__table__,
    Message.__table__,
    ChatSessionAnalytics.__table__,
]


@pytest.fixture(autouse=True)
def testing_session_local(monkeypatch: pytest.MonkeyPatch):
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    database.Base.metadata.create_all(bind=engine, tables=TABLES)

    monkeypatch.setattr(database, 'engine', engine)
    monkeypatch.setattr(database, 'SessionLocal', session_local)
    monkeypatch.setattr(database, '_message_schema_checked', False)
    try:
        yield session_local
    finally:
        database.Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture(autouse=True)
def fresh_broker(monkeypatch: pytest.MonkeyPatch) -> RoomBroker:
    broker = RoomBroker()
    monkeypatch.setattr(socket_routes, 'broker', broker)
    return broker


@pytest.fixture
def db(testing_session_local):
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(username: str, role: str = STUDENT_ROLE, college: str = 'Rhodes') -> User:
        user = User(username=username, hashed_password='x', role=role, college=college)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_appointment(db):
    def _make_appointment(student: User, psychiatrist: User, status: str = APPROVED) -> Appointment:
        appointment = Appointment(
            student_id=student.id,
            psychiatrist_id=psychiatrist.id,
            college=student.college,
            requested_date=datetime(2026, 1, 5, 10, 0),
            message='I would like to talk about exam stress.',
            status=status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make_appointment


@pytest.fixture
def student(make_user) -> User:
    return make_user('student_a')


@pytest.fixture
def psychiatrist(make_user) -> User:
    return make_user('dr_b', role=PSYCHIATRIST_ROLE)


@pytest.fixture
def approved_appointment(make_appointment, student, psychiatrist) -> Appointment:
    return make_appointment(student, psychiatrist)


def token_for(user: User) -> str:
    return create_access_token(user.id, role=user.role, college=user.college)


def auth_headers(user: User) -> dict[str, str]:
    return {'Authorization': f'Bearer {token_for(user)}'}
