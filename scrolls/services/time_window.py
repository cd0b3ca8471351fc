"""
Time-window gate for quiz start/resume requests

Evaluated live on every start and resume call: a quiz's start_time can be
set or moved after students enrolled (deferred scheduling), so nothing about
the window is cached on the attempt.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from scrolls.exceptions import QuizEnded, QuizNotScheduled, QuizNotStarted
from scrolls.utils.timeutils import as_utc, isoformat_utc

logger = logging.getLogger(__name__)


class WindowState(str, enum.Enum):
    UNSCHEDULED = "unscheduled"
    NOT_STARTED = "not_started"
    OPEN = "open"
    ENDED = "ended"


@dataclass(frozen=True)
class TimeWindow:
    state: WindowState
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    ms_until_start: int = 0

    @property
    def is_open(self) -> bool:
        return self.state == WindowState.OPEN


def check_time_window(now: datetime, start_time: Optional[datetime], duration_minutes: int) -> TimeWindow:
    """
    Classify "now" against a quiz's scheduled window

    The window is closed on both ends: now == start and now == end are open.
    """
    if start_time is None:
        return TimeWindow(WindowState.UNSCHEDULED)

    now = as_utc(now)
    start = as_utc(start_time)
    end = start + timedelta(minutes=duration_minutes)

    if now < start:
        delta = start - now
        ms = delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000
        return TimeWindow(WindowState.NOT_STARTED, start, end, ms)

    if now > end:
        return TimeWindow(WindowState.ENDED, start, end)

    return TimeWindow(WindowState.OPEN, start, end)


def format_countdown(ms_until_start: int) -> str:
    """
    Coarse English countdown ("in 2h 5m", "in 7m", "starting soon")

    Kept for logs and server-rendered contexts only; API responses carry the
    raw ISO start time and timezone and let the client localize.
    """
    hours = ms_until_start // 3_600_000
    minutes = (ms_until_start % 3_600_000) // 60_000
    if hours > 0:
        return f"in {hours}h {minutes}m"
    if minutes > 0:
        return f"in {minutes}m"
    return "starting soon"


def enforce_time_window(quiz, now: datetime) -> TimeWindow:
    """
    Raise the matching QuizError unless the quiz window is open

    Raises:
        QuizNotScheduled: start_time not set yet (425)
        QuizNotStarted: before start_time (425)
        QuizEnded: after start_time + duration (410)
    """
    window = check_time_window(now, quiz.start_time, quiz.duration)

    if window.state == WindowState.UNSCHEDULED:
        raise QuizNotScheduled(quiz.scheduling_status)

    if window.state == WindowState.NOT_STARTED:
        logger.info(
            f"Quiz {quiz.id} not started yet, opens {format_countdown(window.ms_until_start)}"
        )
        raise QuizNotStarted(
            start_time=isoformat_utc(window.start_time),
            timezone=quiz.timezone or "UTC",
            ms_until_start=window.ms_until_start,
        )

    if window.state == WindowState.ENDED:
        raise QuizEnded(end_time=isoformat_utc(window.end_time))

    return window
