"""
Status values and the legal transitions between them

Enrollments, attempts and generation jobs all carry a string status column.
Every write that changes one of them goes through ensure_transition so an
illegal move (e.g. completed -> in_progress) fails loudly instead of relying
on call-site discipline.
"""
import enum
from typing import Dict, FrozenSet, Union


class EnrollmentStatus(str, enum.Enum):
    ENROLLED = "enrolled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QuizStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class IllegalTransition(ValueError):
    """Raised when a status change is not allowed by the transition table"""

    def __init__(self, kind: str, current: str, target: str):
        self.kind = kind
        self.current = current
        self.target = target
        super().__init__(f"Illegal {kind} transition: {current} -> {target}")


ENROLLMENT_TRANSITIONS: Dict[EnrollmentStatus, FrozenSet[EnrollmentStatus]] = {
    EnrollmentStatus.ENROLLED: frozenset({EnrollmentStatus.IN_PROGRESS, EnrollmentStatus.COMPLETED}),
    EnrollmentStatus.IN_PROGRESS: frozenset({EnrollmentStatus.COMPLETED}),
    EnrollmentStatus.COMPLETED: frozenset(),
}

ATTEMPT_TRANSITIONS: Dict[AttemptStatus, FrozenSet[AttemptStatus]] = {
    AttemptStatus.IN_PROGRESS: frozenset({AttemptStatus.COMPLETED, AttemptStatus.ABANDONED}),
    AttemptStatus.COMPLETED: frozenset(),
    AttemptStatus.ABANDONED: frozenset(),
}

JOB_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    # processing -> processing carries intermediate progress updates
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

_TABLES = {
    "enrollment": (EnrollmentStatus, ENROLLMENT_TRANSITIONS),
    "attempt": (AttemptStatus, ATTEMPT_TRANSITIONS),
    "job": (JobStatus, JOB_TRANSITIONS),
}

TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


def ensure_transition(kind: str, current: Union[str, enum.Enum], target: Union[str, enum.Enum]):
    """
    Validate a status change

    Args:
        kind: "enrollment", "attempt" or "job"
        current: Current status value
        target: Requested status value

    Returns:
        The target as its enum member

    Raises:
        IllegalTransition: if the move is not in the transition table
    """
    enum_cls, table = _TABLES[kind]
    try:
        current_member = enum_cls(current)
        target_member = enum_cls(target)
    except ValueError:
        raise IllegalTransition(kind, str(current), str(target))

    if target_member not in table[current_member]:
        raise IllegalTransition(kind, current_member.value, target_member.value)

    return target_member


def is_terminal_job_status(status: Union[str, JobStatus]) -> bool:
    return JobStatus(status) in TERMINAL_JOB_STATUSES
