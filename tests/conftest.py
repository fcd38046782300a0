import asyncio
import os
from datetime import timedelta

# Cheap hashes and an in-memory default engine; must be set before importing the app
os.environ.setdefault("VHL_BCRYPT_ROUNDS", "4")
os.environ.setdefault("VHL_DATABASE_URL", "sqlite://")

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from vhl_portal import identity
from vhl_portal.models import Batch, BatchStudent, Exam, Profile, Question
from vhl_portal.utils import utcnow

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool shares the same in-memory database across connections and threads
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

STUDENT_PASSWORD = "student123"
ADMIN_PASSWORD = "admin123"


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # Clean up in FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM result"))
        session.exec(text("DELETE FROM examattempt"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM batchstudent"))
        session.exec(text("DELETE FROM batch"))
        session.exec(text("DELETE FROM profile"))
        session.exec(text("DELETE FROM credential"))
        session.commit()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from vhl_portal.database import get_session  # noqa: E402
from vhl_portal.main import app  # noqa: E402
from vhl_portal.services.timer import AttemptTimers  # noqa: E402


class SyncClientWrapper:
    """Drive an httpx AsyncClient from synchronous tests on one event loop."""

    def __init__(self, async_client, loop):
        self.async_client = async_client
        self.loop = loop

    def get(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

    def post(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

    def login(self, email, password):
        return self.post("/login", data={"email": email, "password": password})


@pytest.fixture
def session_factory():
    return lambda: Session(test_engine)


@pytest.fixture
def timers(session_factory):
    return AttemptTimers(session_factory)


@pytest.fixture
def client(timers):
    """Test client bound to the in-memory database and a fresh timer registry."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.state.timers = timers

    loop = asyncio.new_event_loop()
    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    yield SyncClientWrapper(async_client, loop)

    timers.cancel_all()
    loop.run_until_complete(timers.join())
    loop.run_until_complete(async_client.aclose())
    loop.close()
    app.dependency_overrides.clear()


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


@pytest.fixture
def admin_user():
    """Create an admin profile."""
    with Session(test_engine) as session:
        admin = identity.create_admin(
            session, email="admin@vhlabroad.com", password=ADMIN_PASSWORD, full_name="Admin User"
        )
        admin_id = admin.id

    with Session(test_engine) as session:
        return session.get(Profile, admin_id)


def _make_student(email, full_name):
    with Session(test_engine) as session:
        student = identity.sign_up(session, email, STUDENT_PASSWORD, full_name, "+8801700000000")
        student_id = student.id

    with Session(test_engine) as session:
        return session.get(Profile, student_id)


@pytest.fixture
def student_user():
    """Create a student profile through sign-up."""
    return _make_student("alice@example.com", "Alice Student")


@pytest.fixture
def other_student():
    return _make_student("bob@example.com", "Bob Student")


@pytest.fixture
def batch():
    with Session(test_engine) as session:
        batch = Batch(name="Japan Batch 12", description="JLPT N5 preparation")
        session.add(batch)
        session.commit()
        session.refresh(batch)
        batch_id = batch.id

    with Session(test_engine) as session:
        return session.get(Batch, batch_id)


def _enroll(student, batch, days=30):
    with Session(test_engine) as session:
        enrollment = BatchStudent(
            batch_id=batch.id,
            student_id=student.id,
            access_expiry=utcnow() + timedelta(days=days),
        )
        session.add(enrollment)
        session.commit()


@pytest.fixture
def enroll():
    """Factory for enrollments; days may be negative for an expired one."""
    return _enroll


@pytest.fixture
def enrolled_student(student_user, batch):
    """Student with an active enrollment in the batch."""
    _enroll(student_user, batch)
    return student_user


@pytest.fixture
def exam(batch):
    """Published exam with two questions worth 1 and 2 marks; results hidden."""
    with Session(test_engine) as session:
        exam = Exam(
            batch_id=batch.id,
            title="Hiragana Basics",
            duration_minutes=30,
            total_marks=3,
            is_published=True,
            publish_result=False,
        )
        session.add(exam)
        session.commit()
        session.refresh(exam)
        exam_id = exam.id

        session.add(
            Question(
                exam_id=exam_id,
                question="Which character is 'a'?",
                option_a="あ",
                option_b="い",
                option_c="う",
                option_d="え",
                correct_option="A",
                marks=1,
                order_index=0,
            )
        )
        session.add(
            Question(
                exam_id=exam_id,
                question="Which character is 'u'?",
                option_a="あ",
                option_b="い",
                option_c="う",
                option_d="え",
                correct_option="C",
                marks=2,
                order_index=1,
            )
        )
        session.commit()

    with Session(test_engine) as session:
        return session.get(Exam, exam_id)


@pytest.fixture
def exam_questions(exam):
    """The exam's questions in display order."""
    from vhl_portal.services.exam_service import list_exam_questions

    with Session(test_engine) as session:
        return list_exam_questions(session, exam.id)
