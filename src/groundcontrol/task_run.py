# groundcontrol/task_run.py
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import TaskActionError

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Possible states of a task within one schedule execution."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


def format_duration(duration: datetime.timedelta | None) -> str:
    """Human-readable duration (e.g. '452ms', '2.4s', '1m 23s', '2h 5m')."""
    if duration is None:
        return "—"
    secs = duration.total_seconds()
    if secs < 1:
        return f"{secs * 1000:.0f}ms"
    if secs < 60:
        return f"{secs:.1f}s"
    mins, secs = divmod(secs, 60)
    if mins < 60:
        return f"{int(mins)}m {secs:.0f}s"
    hrs, mins = divmod(mins, 60)
    return f"{int(hrs)}h {int(mins)}m"


@dataclass
class TaskRun:
    """
    Outcome of a single task within one Scheduler.run() call.

    Created by the Scheduler when the task's unit is dispatched and finalized
    when its action settles. Never shared between runs.
    """

    task_name: str
    state: RunState = RunState.PENDING
    error: TaskActionError | None = None

    start_time: datetime.datetime | None = None
    end_time: datetime.datetime | None = None
    duration: datetime.timedelta | None = None

    # ------------------------------------------------------------------ #
    # State transitions
    # ------------------------------------------------------------------ #
    def mark_running(self) -> None:
        if self.state is not RunState.PENDING:
            logger.warning(f"Task '{self.task_name}' marked running from invalid state {self.state}")
        self.state = RunState.RUNNING
        self.start_time = datetime.datetime.now()

    def mark_success(self) -> None:
        self.state = RunState.SUCCESS
        self._finalize()

    def mark_failed(self, error: TaskActionError) -> None:
        self.state = RunState.FAILED
        self.error = error
        self._finalize()

    def mark_skipped(self) -> None:
        """Aggregate tasks have no action; they finish the moment they are reached."""
        self.state = RunState.SKIPPED
        self._finalize()

    def _finalize(self) -> None:
        self.end_time = datetime.datetime.now()
        if self.start_time:
            self.duration = self.end_time - self.start_time
        else:
            self.duration = datetime.timedelta(0)

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #
    @property
    def duration_str(self) -> str:
        return format_duration(self.duration)

    @property
    def is_finished(self) -> bool:
        return self.state not in {RunState.PENDING, RunState.RUNNING}

    @property
    def succeeded(self) -> bool:
        return self.state in {RunState.SUCCESS, RunState.SKIPPED}

    def __repr__(self) -> str:
        return (
            f"TaskRun(task='{self.task_name}', state={self.state.value}, "
            f"dur={self.duration_str})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_name": self.task_name,
            "state": self.state.value,
            "error": str(self.error) if self.error else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_str": self.duration_str,
        }
