import os

# Settings are read at import time, so the environment is fixed before any scrolls import
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CACHE_ENABLED"] = "false"
os.environ["JOB_STORE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ["RATE_LIMIT_PER_HOUR"] = "100000"
os.environ["QUIZ_GENERATION_WEBHOOK_URL"] = "http://generator.test/webhook"
os.environ["PUBLIC_BASE_URL"] = "http://quiz.test"

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from scrolls.database import Base, SessionLocal, engine
from scrolls.main import app
from scrolls.models import Enrollment, Question, Quiz
from scrolls.services.job_store import InMemoryJobStore, get_job_store
from scrolls.utils.cache import CacheService, get_cache

NOW = datetime(2025, 3, 2, 18, 0, 0, tzinfo=timezone.utc)
EDUCATOR_ID = "educator-1"
STUDENT_ID = "student-1"


class FakeClock:
    """Callable clock the job store can be driven with"""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db():
    import scrolls.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryJobStore(timeout_seconds=600, retention_seconds=7200, clock=clock)


@pytest.fixture
def client(db, store):
    app.dependency_overrides[get_job_store] = lambda: store
    app.dependency_overrides[get_cache] = lambda: CacheService(None)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def student_headers():
    return {"X-User-Id": STUDENT_ID, "X-User-Role": "student"}


@pytest.fixture
def educator_headers():
    return {"X-User-Id": EDUCATOR_ID, "X-User-Role": "educator"}


@pytest.fixture
def make_quiz(db):
    def _make_quiz(num_questions=5, status="published", start_time=NOW, duration=30, **kwargs):
        quiz = Quiz(
            id=uuid.uuid4(),
            educator_id=kwargs.pop("educator_id", EDUCATOR_ID),
            title=kwargs.pop("title", "Gospel of John"),
            duration=duration,
            total_questions=num_questions,
            start_time=start_time,
            status=status,
            configuration=kwargs.pop("configuration", {
                "topics": ["Love"],
                "books": ["John"],
                "chapters": ["3"],
                "difficulty": "easy",
                "bloomsLevels": ["comprehension"],
            }),
            **kwargs,
        )
        db.add(quiz)
        for i in range(num_questions):
            db.add(Question(
                id=uuid.uuid4(),
                quiz_id=quiz.id,
                question_text=f"Question {i}?",
                options=[{"id": "a", "text": "Yes"}, {"id": "b", "text": "No"}],
                correct_answer="a" if i % 2 == 0 else "b",
                explanation=f"Because {i}",
                difficulty="easy",
                blooms_level="knowledge",
                topic="Love",
                book="John",
                chapter="3",
                order_index=i,
            ))
        db.commit()
        return quiz

    return _make_quiz


@pytest.fixture
def enroll(db):
    def _enroll(quiz, student_id=STUDENT_ID, enrolled_at=None, **kwargs):
        enrollment = Enrollment(
            quiz_id=quiz.id,
            student_id=student_id,
            enrolled_at=enrolled_at or NOW - timedelta(days=1),
            status=kwargs.pop("status", "enrolled"),
            **kwargs,
        )
        db.add(enrollment)
        db.commit()
        return enrollment

    return _enroll
