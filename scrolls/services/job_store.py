"""
Question-generation job store

Tracks replacement jobs between dispatch to the external generator and its
callback. Jobs live for JOB_RETENTION_SECONDS; a job still pending or
processing after JOB_TIMEOUT_SECONDS is considered orphaned and reads back
as failed.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import redis
from pydantic import BaseModel, Field

from scrolls.config import settings
from scrolls.models.status import JobStatus, ensure_transition, is_terminal_job_status
from scrolls.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "Job timed out"

UPDATABLE_FIELDS = {"status", "progress", "message", "error", "questions_data", "claimed_at"}


class JobAlreadyExists(Exception):
    """Raised when a job id is created twice"""


class JobAlreadyClaimed(Exception):
    """Raised when a finished or already claimed job is claimed again"""


class GenerationJob(BaseModel):
    """One question-generation job as seen by pollers and the callback processor"""
    job_id: str
    quiz_id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    message: Optional[str] = None
    error: Optional[str] = None
    webhook_payload: Dict[str, Any] = Field(default_factory=dict)
    questions_data: Optional[List[Dict[str, Any]]] = None
    # Set once by the single callback delivery allowed to write the result
    claimed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    @property
    def is_terminal(self) -> bool:
        return is_terminal_job_status(self.status)


class JobStore:
    """Storage-agnostic job bookkeeping; subclasses provide persistence"""

    def __init__(
        self,
        timeout_seconds: int = None,
        retention_seconds: int = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.timeout_seconds = timeout_seconds or settings.JOB_TIMEOUT_SECONDS
        self.retention_seconds = retention_seconds or settings.JOB_RETENTION_SECONDS
        self.clock = clock

    # Interface

    def create(
        self,
        job_id: str,
        quiz_id: Any,
        webhook_payload: Dict[str, Any],
        ttl: Optional[int] = None
    ) -> GenerationJob:
        raise NotImplementedError

    def get(self, job_id: str) -> Optional[GenerationJob]:
        raise NotImplementedError

    def update(self, job_id: str, **fields: Any) -> Optional[GenerationJob]:
        raise NotImplementedError

    def claim(self, job_id: str) -> Optional[GenerationJob]:
        """
        Reserve a job for the one caller that will finalize it

        Returns None for an unknown job.

        Raises:
            JobAlreadyClaimed: the job is finished or another caller holds it
        """
        raise NotImplementedError

    def delete(self, job_id: str) -> None:
        raise NotImplementedError

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        raise NotImplementedError

    # Shared logic

    def _new_job(self, job_id: str, quiz_id: Any, webhook_payload: Dict[str, Any], ttl: Optional[int]) -> GenerationJob:
        now = self.clock()
        return GenerationJob(
            job_id=job_id,
            quiz_id=str(quiz_id),
            status=JobStatus.PENDING,
            progress=0,
            message="Job created",
            webhook_payload=dict(webhook_payload or {}),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=ttl or self.timeout_seconds),
        )

    def _apply(self, job: GenerationJob, fields: Dict[str, Any]) -> GenerationJob:
        """
        Merge fields into a job

        Raises:
            ValueError: unknown field
            IllegalTransition: status change not allowed from the current state
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

        changes = dict(fields)
        if "status" in changes:
            changes["status"] = ensure_transition("job", job.status, changes["status"])
        changes["updated_at"] = self.clock()

        return job.model_copy(update=changes)

    def _claim(self, job: GenerationJob) -> GenerationJob:
        if job.is_terminal or job.claimed_at is not None:
            raise JobAlreadyClaimed(job.job_id)
        return self._apply(job, {
            "status": JobStatus.PROCESSING,
            "progress": 90,
            "message": "Saving replacement question...",
            "claimed_at": self.clock(),
        })

    def _is_orphaned(self, job: GenerationJob, now: datetime) -> bool:
        return not job.is_terminal and as_utc(now) > as_utc(job.expires_at)

    def _timeout_fields(self) -> Dict[str, Any]:
        return {
            "status": JobStatus.FAILED,
            "error": TIMEOUT_ERROR,
            "message": "No response from the question generator",
        }


class InMemoryJobStore(JobStore):
    """Process-local store; a lock makes each read-modify-write atomic"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._jobs: Dict[str, GenerationJob] = {}
        self._lock = threading.Lock()

    def _evict_if_retired(self, job_id: str, now: datetime) -> Optional[GenerationJob]:
        job = self._jobs.get(job_id)
        if job is not None and as_utc(now) > as_utc(job.created_at) + timedelta(seconds=self.retention_seconds):
            del self._jobs[job_id]
            return None
        return job

    def create(self, job_id, quiz_id, webhook_payload, ttl=None):
        with self._lock:
            if self._evict_if_retired(job_id, self.clock()) is not None:
                raise JobAlreadyExists(job_id)
            job = self._new_job(job_id, quiz_id, webhook_payload, ttl)
            self._jobs[job_id] = job
        logger.info(f"Created job {job_id} for quiz {quiz_id}")
        return job

    def get(self, job_id):
        with self._lock:
            now = self.clock()
            job = self._evict_if_retired(job_id, now)
            if job is not None and self._is_orphaned(job, now):
                job = self._apply(job, self._timeout_fields())
                self._jobs[job_id] = job
                logger.warning(f"Job {job_id} timed out")
            return job

    def update(self, job_id, **fields):
        with self._lock:
            job = self._evict_if_retired(job_id, self.clock())
            if job is None:
                return None
            job = self._apply(job, fields)
            self._jobs[job_id] = job
            return job

    def claim(self, job_id):
        with self._lock:
            job = self._evict_if_retired(job_id, self.clock())
            if job is None:
                return None
            job = self._claim(job)
            self._jobs[job_id] = job
            return job

    def delete(self, job_id):
        with self._lock:
            self._jobs.pop(job_id, None)

    def expire_stale(self, now=None):
        now = now or self.clock()
        count = 0
        with self._lock:
            for job_id in list(self._jobs):
                job = self._evict_if_retired(job_id, now)
                if job is not None and self._is_orphaned(job, now):
                    self._jobs[job_id] = self._apply(job, self._timeout_fields())
                    count += 1
        return count


class RedisJobStore(JobStore):
    """
    Redis-backed store shared by all workers

    Each job is one JSON document under scrolls:job:<id> whose key TTL is the
    retention period. Updates are optimistic compare-and-swap transactions
    (WATCH/MULTI/EXEC), retried when another writer got there first.
    """

    KEY_PREFIX = "scrolls:job:"
    EXPIRY_INDEX = "scrolls:jobs:expiry"

    def __init__(self, redis_client: redis.Redis, **kwargs):
        super().__init__(**kwargs)
        self.redis_client = redis_client

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisJobStore":
        client = redis.from_url(url, decode_responses=True, socket_connect_timeout=5)
        return cls(client, **kwargs)

    def _key(self, job_id: str) -> str:
        return f"{self.KEY_PREFIX}{job_id}"

    def create(self, job_id, quiz_id, webhook_payload, ttl=None):
        job = self._new_job(job_id, quiz_id, webhook_payload, ttl)
        stored = self.redis_client.set(
            self._key(job_id),
            job.model_dump_json(),
            ex=self.retention_seconds,
            nx=True,
        )
        if not stored:
            raise JobAlreadyExists(job_id)
        self.redis_client.zadd(self.EXPIRY_INDEX, {job_id: as_utc(job.expires_at).timestamp()})
        logger.info(f"Created job {job_id} for quiz {quiz_id}")
        return job

    def _load(self, raw: Optional[str]) -> Optional[GenerationJob]:
        if not raw:
            return None
        return GenerationJob.model_validate_json(raw)

    def _compare_and_swap(
        self,
        job_id: str,
        mutate: Callable[[GenerationJob], Optional[GenerationJob]]
    ) -> Optional[GenerationJob]:
        """
        Atomically read a job, compute its replacement and write it back

        mutate returns the new job, or None to leave the stored one as is.
        """
        key = self._key(job_id)
        with self.redis_client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    job = self._load(pipe.get(key))
                    if job is None:
                        pipe.unwatch()
                        return None
                    updated = mutate(job)
                    if updated is None:
                        pipe.unwatch()
                        return job
                    pipe.multi()
                    pipe.set(key, updated.model_dump_json(), keepttl=True)
                    if updated.is_terminal:
                        pipe.zrem(self.EXPIRY_INDEX, job_id)
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    logger.debug(f"Concurrent write on job {job_id}, retrying")
                    continue

    def _expire_if_orphaned(self, job_id: str, now: datetime, expired: Optional[List[str]] = None) -> Optional[GenerationJob]:
        def mutate(job: GenerationJob) -> Optional[GenerationJob]:
            if self._is_orphaned(job, now):
                logger.warning(f"Job {job_id} timed out")
                if expired is not None and job_id not in expired:
                    expired.append(job_id)
                return self._apply(job, self._timeout_fields())
            return None

        return self._compare_and_swap(job_id, mutate)

    def get(self, job_id):
        job = self._load(self.redis_client.get(self._key(job_id)))
        if job is None:
            return None
        now = self.clock()
        if self._is_orphaned(job, now):
            return self._expire_if_orphaned(job_id, now)
        return job

    def update(self, job_id, **fields):
        return self._compare_and_swap(job_id, lambda job: self._apply(job, fields))

    def claim(self, job_id):
        return self._compare_and_swap(job_id, self._claim)

    def delete(self, job_id):
        self.redis_client.delete(self._key(job_id))
        self.redis_client.zrem(self.EXPIRY_INDEX, job_id)

    def expire_stale(self, now=None):
        now = now or self.clock()
        expired: List[str] = []
        for job_id in self.redis_client.zrangebyscore(self.EXPIRY_INDEX, "-inf", as_utc(now).timestamp()):
            job = self._expire_if_orphaned(job_id, now, expired)
            if job is None or job.is_terminal:
                # Key already gone with its TTL, or finished
                self.redis_client.zrem(self.EXPIRY_INDEX, job_id)
        return len(expired)


_job_store: Optional[JobStore] = None


def build_job_store() -> JobStore:
    backend = settings.JOB_STORE_BACKEND.lower()
    if backend == "memory":
        logger.info("Using in-memory job store")
        return InMemoryJobStore()
    if backend == "redis":
        logger.info("Using Redis job store")
        return RedisJobStore.from_url(settings.REDIS_URL)
    raise ValueError(f"Unknown JOB_STORE_BACKEND: {settings.JOB_STORE_BACKEND}")


def get_job_store() -> JobStore:
    """FastAPI dependency; one store per process"""
    global _job_store
    if _job_store is None:
        _job_store = build_job_store()
    return _job_store
