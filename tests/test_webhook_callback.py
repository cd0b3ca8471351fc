import uuid

import fakeredis
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from scrolls.models import JobStatus, Question
from scrolls.services.attempt_service import attempt_service
from scrolls.services.callback_service import callback_service
from scrolls.utils.cache import CacheService

CALLBACK_URL = "/api/educator/quiz/webhook-callback-replace"

GENERATED = {
    "question": "What did Jesus turn water into?",
    "options": {"A": "Wine", "B": "Oil", "C": "Milk", "D": "Honey"},
    "correct_answer": "A",
    "explanation": "John 2:1-11",
    "question_type": "recall",
    "biblical_reference": "John 2 (wedding at Cana)",
    "difficulty": "easy",
}


@pytest.fixture
def target(db, make_quiz):
    quiz = make_quiz(num_questions=3)
    question = db.scalars(select(Question).where(Question.quiz_id == quiz.id, Question.order_index == 1)).one()
    return quiz, question


@pytest.fixture
def job(store, target):
    quiz, question = target
    return store.create("replace-abc", quiz.id, {
        "questionIdToReplace": str(question.id),
        "books": ["John"],
        "chapters": ["3"],
        "difficulty": "intermediate",
        "bloomsLevel": ["comprehension"],
    })


def success(job_id="replace-abc", **extra):
    return {"jobId": job_id, "status": "success", "questionsData": [dict(GENERATED)], **extra}


def test_success_replaces_question_and_completes_job(db, store, job, target):
    _, question = target

    status_code, body = callback_service.process_replacement_callback(db, store, success())

    assert status_code == 200
    assert body == {
        "success": True,
        "jobId": "replace-abc",
        "message": "Question replaced successfully",
        "questionId": str(question.id),
    }

    db.expire_all()
    updated = db.get(Question, question.id)
    assert updated.question_text == "What did Jesus turn water into?"
    assert updated.options[0] == {"id": "a", "text": "Wine"}
    assert updated.correct_answer == "a"
    assert updated.blooms_level == "knowledge"
    assert (updated.book, updated.chapter) == ("John", "2")
    assert updated.order_index == 1

    finished = store.get("replace-abc")
    assert finished.status == JobStatus.COMPLETED
    assert finished.progress == 100
    # Canonical persisted row, not the raw generator payload
    assert finished.questions_data[0]["questionText"] == "What did Jesus turn water into?"
    assert finished.questions_data[0]["id"] == str(question.id)
    assert "question_type" not in finished.questions_data[0]


def test_second_success_is_a_no_op(db, store, job, target):
    _, question = target
    callback_service.process_replacement_callback(db, store, success())

    again = success()
    again["questionsData"][0]["question"] = "Something else entirely?"
    status_code, body = callback_service.process_replacement_callback(db, store, again)

    assert status_code == 200
    assert body["message"] == "Job already completed"
    db.expire_all()
    assert db.get(Question, question.id).question_text == "What did Jesus turn water into?"


def test_success_invalidates_cached_projection(db, store, job, target):
    quiz, _ = target
    cache = CacheService(fakeredis.FakeRedis(decode_responses=True))
    attempt_service.load_questions(db, quiz.id, cache)
    assert cache.get_question_projection(quiz.id)

    callback_service.process_replacement_callback(db, store, success(), cache)

    assert cache.get_question_projection(quiz.id) is None


def test_invalid_question_fails_job_without_writing(db, store, job, target):
    _, question = target
    payload = success()
    payload["questionsData"][0]["options"] = []

    status_code, body = callback_service.process_replacement_callback(db, store, payload)

    assert status_code == 400
    assert body["error"] == "Invalid question data received"
    assert store.get("replace-abc").status == JobStatus.FAILED
    db.expire_all()
    assert db.get(Question, question.id).question_text == "Question 1?"


def test_single_question_object_is_accepted(db, store, job, target):
    _, question = target
    payload = success()
    payload["questionsData"] = dict(GENERATED)

    status_code, body = callback_service.process_replacement_callback(db, store, payload)

    assert status_code == 200
    assert body["questionId"] == str(question.id)
    assert store.get("replace-abc").status == JobStatus.COMPLETED
    db.expire_all()
    assert db.get(Question, question.id).question_text == "What did Jesus turn water into?"


@pytest.mark.parametrize("questions_data", [[], "", "not a question", ["not a question"], 42])
def test_unusable_questions_data_fails_job(db, store, job, target, questions_data):
    _, question = target

    status_code, body = callback_service.process_replacement_callback(
        db, store, {"jobId": "replace-abc", "status": "success", "questionsData": questions_data}
    )

    assert status_code == 400
    assert body["error"] == "Invalid question data received"
    assert store.get("replace-abc").status == JobStatus.FAILED
    db.expire_all()
    assert db.get(Question, question.id).question_text == "Question 1?"


def test_delivery_arriving_during_write_is_turned_away(db, store, job, target, monkeypatch):
    _, question = target
    persist = callback_service._persist
    overlapping = []

    def persist_with_redelivery(*args, **kwargs):
        again = success()
        again["questionsData"][0]["question"] = "Something else entirely?"
        overlapping.append(callback_service.process_replacement_callback(db, store, again))
        return persist(*args, **kwargs)

    monkeypatch.setattr(callback_service, "_persist", persist_with_redelivery)

    status_code, body = callback_service.process_replacement_callback(db, store, success())

    assert status_code == 200
    assert body["message"] == "Question replaced successfully"
    assert overlapping == [(200, {"success": True, "jobId": "replace-abc", "message": "Job already finalized"})]
    db.expire_all()
    assert db.get(Question, question.id).question_text == "What did Jesus turn water into?"
    assert store.get("replace-abc").status == JobStatus.COMPLETED


def test_error_after_claim_does_not_fail_the_job(db, store, job):
    store.claim("replace-abc")

    status_code, body = callback_service.process_replacement_callback(
        db, store, {"jobId": "replace-abc", "status": "error", "error": "LLM quota exceeded"}
    )

    assert status_code == 200
    assert body["message"] == "Job already finalized"
    assert store.get("replace-abc").status == JobStatus.PROCESSING


def test_progress_after_claim_is_ignored(db, store, job):
    store.claim("replace-abc")

    status_code, _ = callback_service.process_replacement_callback(db, store, {"jobId": "replace-abc", "progress": 20})

    assert status_code == 200
    assert store.get("replace-abc").progress == 90


def test_missing_question_row(db, store, target):
    quiz, _ = target
    store.create("replace-gone", quiz.id, {"questionIdToReplace": str(uuid.uuid4())})

    status_code, body = callback_service.process_replacement_callback(db, store, success("replace-gone"))

    assert status_code == 500
    assert body["error"] == "Failed to update question in database - question may not exist"
    assert store.get("replace-gone").status == JobStatus.FAILED


def test_database_error_is_reported_not_raised(db, store, job, monkeypatch):
    def explode(*args, **kwargs):
        raise OperationalError("UPDATE questions", {}, Exception("connection lost"))

    monkeypatch.setattr(db, "execute", explode)

    status_code, body = callback_service.process_replacement_callback(db, store, success())

    assert status_code == 500
    assert body["success"] is False
    assert body["error"] == "Database update failed"
    assert body["details"].startswith('Failed query: update "questions" set')
    assert "[options]" in body["details"]
    failed = store.get("replace-abc")
    assert failed.status == JobStatus.FAILED
    assert "connection lost" in failed.error


def test_error_callback_fails_job(db, store, job):
    status_code, body = callback_service.process_replacement_callback(
        db, store, {"jobId": "replace-abc", "status": "error", "error": "LLM quota exceeded"}
    )
    assert status_code == 200
    failed = store.get("replace-abc")
    assert failed.status == JobStatus.FAILED
    assert failed.error == "LLM quota exceeded"
    assert failed.progress == 0


def test_error_callback_for_unknown_job_is_acknowledged(db, store):
    status_code, body = callback_service.process_replacement_callback(
        db, store, {"jobId": "replace-expired", "status": "error", "error": "timeout"}
    )
    assert status_code == 200
    assert body["success"] is True
    assert "warning" in body


def test_success_callback_for_unknown_job_is_404(db, store):
    status_code, body = callback_service.process_replacement_callback(db, store, success("replace-expired"))
    assert status_code == 404
    assert body["error"] == "Job not found or expired"


def test_callback_after_failure_is_acknowledged_without_changes(db, store, job, target):
    _, question = target
    store.update("replace-abc", status="failed", error="Job timed out")

    status_code, body = callback_service.process_replacement_callback(db, store, success())

    assert status_code == 200
    assert body["message"] == "Job already failed"
    db.expire_all()
    assert db.get(Question, question.id).question_text == "Question 1?"


def test_progress_update(db, store, job):
    status_code, _ = callback_service.process_replacement_callback(
        db, store, {"jobId": "replace-abc", "progress": 70, "message": "Consulting commentaries"}
    )
    assert status_code == 200
    progressed = store.get("replace-abc")
    assert progressed.status == JobStatus.PROCESSING
    assert progressed.progress == 70
    assert progressed.message == "Consulting commentaries"


def test_progress_defaults_to_fifty(db, store, job):
    callback_service.process_replacement_callback(db, store, {"jobId": "replace-abc"})
    assert store.get("replace-abc").progress == 50


def test_job_without_target_question(db, store, target):
    quiz, _ = target
    store.create("replace-orphan", quiz.id, {})

    status_code, body = callback_service.process_replacement_callback(db, store, success("replace-orphan"))

    assert status_code == 400
    assert store.get("replace-orphan").status == JobStatus.FAILED


def test_error_callback_for_job_without_target_question(db, store, target):
    quiz, _ = target
    store.create("replace-orphan", quiz.id, {})

    status_code, body = callback_service.process_replacement_callback(
        db, store, {"jobId": "replace-orphan", "status": "error", "error": "LLM quota exceeded"}
    )

    assert status_code == 200
    assert body["success"] is True
    failed = store.get("replace-orphan")
    assert failed.status == JobStatus.FAILED
    assert failed.error == "LLM quota exceeded"


def test_non_replacement_job_id_rejected(db, store):
    status_code, body = callback_service.process_replacement_callback(db, store, success("quiz-123"))
    assert status_code == 400
    assert body["error"] == "This endpoint is only for replacement jobs"


def test_missing_job_id(db, store):
    status_code, body = callback_service.process_replacement_callback(db, store, {"status": "success"})
    assert status_code == 400
    assert body["error"] == "Job ID is required"


# ─── HTTP ──────────────────────────────────────────────────────────────────────

def test_callback_route(client, store, job):
    response = client.post(CALLBACK_URL, json=success())
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert store.get("replace-abc").status == JobStatus.COMPLETED


def test_callback_route_rejects_malformed_json(client):
    response = client.post(CALLBACK_URL, content=b"{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body"}
