from datetime import timedelta

from sqlalchemy import select

from scrolls import maintenance
from scrolls.models import AttemptStatus, QuizAttempt
from scrolls.services.attempt_service import attempt_service

from conftest import NOW, STUDENT_ID


def test_run_sweeps(db, store, clock, make_quiz):
    quiz = make_quiz()
    attempt_service.start_attempt(db, STUDENT_ID, quiz.id, now=NOW + timedelta(minutes=5))
    store.create("replace-stuck", str(quiz.id), {"questionIdToReplace": "q"})
    clock.advance(seconds=601)

    results = maintenance.run_sweeps(db, store)

    assert results == {"abandoned_attempts": 1, "expired_jobs": 1}
    assert db.scalars(select(QuizAttempt)).one().status == AttemptStatus.ABANDONED.value


def test_skip_flags(db, store, make_quiz):
    quiz = make_quiz()
    attempt_service.start_attempt(db, STUDENT_ID, quiz.id, now=NOW + timedelta(minutes=5))

    results = maintenance.run_sweeps(db, store, skip_attempts=True, skip_jobs=True)

    assert results == {"abandoned_attempts": 0, "expired_jobs": 0}
    assert db.scalars(select(QuizAttempt)).one().status == AttemptStatus.IN_PROGRESS.value


def test_main_prints_counts(db, make_quiz, capsys):
    quiz = make_quiz()
    attempt_service.start_attempt(db, STUDENT_ID, quiz.id, now=NOW + timedelta(minutes=5))

    assert maintenance.main(["--skip-jobs"]) == 0

    out = capsys.readouterr().out
    assert "Abandoned stale attempts: 1" in out
    assert "Expired generation jobs: 0" in out


def test_main_reports_failure(db, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(maintenance, "run_sweeps", explode)
    assert maintenance.main(["--skip-jobs"]) == 1
