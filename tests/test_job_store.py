import fakeredis
import pytest

from scrolls.models import IllegalTransition, JobStatus
from scrolls.services.job_store import (
    InMemoryJobStore,
    JobAlreadyClaimed,
    JobAlreadyExists,
    RedisJobStore,
    TIMEOUT_ERROR,
)

from conftest import FakeClock


@pytest.fixture(params=["memory", "redis"])
def job_store(request, clock):
    options = {"timeout_seconds": 600, "retention_seconds": 7200, "clock": clock}
    if request.param == "memory":
        return InMemoryJobStore(**options)
    return RedisJobStore(fakeredis.FakeRedis(decode_responses=True), **options)


def create(store, job_id="replace-1"):
    return store.create(job_id, "quiz-1", {"questionIdToReplace": "question-1", "books": ["John"]})


def test_create_and_get(job_store, clock):
    job = create(job_store)

    assert job.status == JobStatus.PENDING
    assert job.progress == 0
    assert (job.expires_at - job.created_at).total_seconds() == 600

    fetched = job_store.get("replace-1")
    assert fetched.job_id == "replace-1"
    assert fetched.quiz_id == "quiz-1"
    assert fetched.webhook_payload["questionIdToReplace"] == "question-1"


def test_unknown_job(job_store):
    assert job_store.get("replace-missing") is None
    assert job_store.update("replace-missing", progress=5) is None


def test_duplicate_create_rejected(job_store):
    create(job_store)
    with pytest.raises(JobAlreadyExists):
        create(job_store)


def test_update_merges_fields(job_store, clock):
    create(job_store)
    clock.advance(seconds=5)

    job_store.update("replace-1", status=JobStatus.PROCESSING, progress=40, message="Working")
    job = job_store.update("replace-1", progress=60)

    assert job.status == JobStatus.PROCESSING
    assert job.progress == 60
    assert job.message == "Working"
    assert job.webhook_payload["books"] == ["John"]
    assert job.updated_at > job.created_at
    assert job_store.get("replace-1").progress == 60


def test_terminal_jobs_do_not_move(job_store):
    create(job_store)
    job_store.update("replace-1", status="completed", progress=100, questions_data=[{"id": "q"}])

    with pytest.raises(IllegalTransition):
        job_store.update("replace-1", status="processing")
    with pytest.raises(IllegalTransition):
        job_store.update("replace-1", status="failed")

    assert job_store.get("replace-1").status == JobStatus.COMPLETED


def test_claim_is_granted_once(job_store, clock):
    create(job_store)
    clock.advance(seconds=5)

    claimed = job_store.claim("replace-1")
    assert claimed.status == JobStatus.PROCESSING
    assert claimed.claimed_at == clock.now

    with pytest.raises(JobAlreadyClaimed):
        job_store.claim("replace-1")

    # The holder still finalizes normally
    job_store.update("replace-1", status="completed", progress=100)
    assert job_store.get("replace-1").claimed_at == clock.now


def test_finished_jobs_cannot_be_claimed(job_store):
    create(job_store)
    job_store.update("replace-1", status="failed", error="boom")

    with pytest.raises(JobAlreadyClaimed):
        job_store.claim("replace-1")
    assert job_store.get("replace-1").status == JobStatus.FAILED


def test_claim_unknown_job(job_store):
    assert job_store.claim("replace-missing") is None


def test_unknown_fields_rejected(job_store):
    create(job_store)
    with pytest.raises(ValueError):
        job_store.update("replace-1", webhook_payload={})


def test_orphaned_job_fails_lazily_on_read(job_store, clock):
    create(job_store)
    job_store.update("replace-1", status="processing", progress=10)

    clock.advance(seconds=599)
    assert job_store.get("replace-1").status == JobStatus.PROCESSING

    clock.advance(seconds=2)
    job = job_store.get("replace-1")
    assert job.status == JobStatus.FAILED
    assert job.error == TIMEOUT_ERROR


def test_expire_stale_sweeps_only_orphans(job_store, clock):
    create(job_store, "replace-old")
    create(job_store, "replace-done")
    job_store.update("replace-done", status="completed", progress=100)
    clock.advance(seconds=300)
    create(job_store, "replace-new")

    clock.advance(seconds=301)
    assert job_store.expire_stale() == 1
    assert job_store.get("replace-old").status == JobStatus.FAILED
    assert job_store.get("replace-done").status == JobStatus.COMPLETED
    assert job_store.get("replace-new").status == JobStatus.PENDING

    # Already failed; a second sweep finds nothing new
    assert job_store.expire_stale() == 0


def test_delete(job_store):
    create(job_store)
    job_store.delete("replace-1")
    assert job_store.get("replace-1") is None


def test_memory_store_forgets_jobs_after_retention():
    clock = FakeClock()
    store = InMemoryJobStore(timeout_seconds=600, retention_seconds=3600, clock=clock)
    create(store)
    clock.advance(seconds=3601)
    assert store.get("replace-1") is None


def test_redis_store_layout():
    client = fakeredis.FakeRedis(decode_responses=True)
    store = RedisJobStore(client, timeout_seconds=600, retention_seconds=3600, clock=FakeClock())
    create(store)

    assert client.exists("scrolls:job:replace-1")
    assert 0 < client.ttl("scrolls:job:replace-1") <= 3600
    assert client.zscore(RedisJobStore.EXPIRY_INDEX, "replace-1") is not None

    store.update("replace-1", status="failed", error="boom")
    assert client.zscore(RedisJobStore.EXPIRY_INDEX, "replace-1") is None
    # Updates keep the original retention TTL
    assert 0 < client.ttl("scrolls:job:replace-1") <= 3600
