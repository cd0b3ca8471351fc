import pytest

from scrolls.models import AttemptStatus, EnrollmentStatus, IllegalTransition, JobStatus, ensure_transition
from scrolls.models.status import is_terminal_job_status


@pytest.mark.parametrize("kind, current, target", [
    ("enrollment", "enrolled", "in_progress"),
    ("enrollment", "enrolled", "completed"),
    ("enrollment", "in_progress", "completed"),
    ("attempt", "in_progress", "completed"),
    ("attempt", "in_progress", "abandoned"),
    ("job", "pending", "processing"),
    ("job", "processing", "processing"),
    ("job", "processing", "completed"),
    ("job", "pending", "failed"),
])
def test_allowed_transitions(kind, current, target):
    assert ensure_transition(kind, current, target).value == target


@pytest.mark.parametrize("kind, current, target", [
    ("enrollment", "completed", "in_progress"),
    ("enrollment", "in_progress", "enrolled"),
    ("attempt", "completed", "in_progress"),
    ("attempt", "abandoned", "completed"),
    ("job", "completed", "processing"),
    ("job", "failed", "completed"),
    ("job", "completed", "completed"),
])
def test_illegal_transitions(kind, current, target):
    with pytest.raises(IllegalTransition):
        ensure_transition(kind, current, target)


def test_unknown_status_is_illegal():
    with pytest.raises(IllegalTransition):
        ensure_transition("attempt", "timeout", "completed")


def test_enum_members_accepted():
    assert ensure_transition("attempt", AttemptStatus.IN_PROGRESS, AttemptStatus.COMPLETED) is AttemptStatus.COMPLETED
    assert ensure_transition("enrollment", EnrollmentStatus.ENROLLED, "in_progress") is EnrollmentStatus.IN_PROGRESS


def test_terminal_job_statuses():
    assert is_terminal_job_status(JobStatus.COMPLETED)
    assert is_terminal_job_status("failed")
    assert not is_terminal_job_status("processing")
