# groundcontrol/exceptions.py
"""
Custom exception hierarchy for groundcontrol.

All groundcontrol-specific exceptions inherit from GroundControlError to enable
catch-all error handling while still providing specific exception types
for different error conditions.

Startup errors (ConfigParseError, ConfigValidationError, DuplicateTaskError,
TaskNotFoundError, CyclicDependencyError) are raised before any task action
runs. TaskActionError is raised by (or on behalf of) a single task action and
PipelineError aggregates them for the top-level caller.
"""

from __future__ import annotations

from pathlib import Path


class GroundControlError(Exception):
    """
    Base exception for all groundcontrol errors.

    Catch this to handle any groundcontrol-specific error.
    """

    pass


class ConfigParseError(GroundControlError):
    """
    Raised when a configuration document cannot be parsed.

    Covers malformed JSON/TOML as well as placeholders left unresolved after
    variable substitution.

    Attributes:
        path: The document that failed to parse (None for in-memory text)
        reason: Human-readable description of the problem
        undefined: Variable names referenced by placeholders but never defined
    """

    def __init__(
        self,
        path: str | Path | None,
        reason: str,
        undefined: list[str] | None = None,
    ):
        self.path = Path(path) if path is not None else None
        self.reason = reason
        self.undefined = undefined or []
        location = f"'{self.path}'" if self.path is not None else "<text>"
        super().__init__(f"Cannot parse configuration {location}: {reason}")


class ConfigValidationError(GroundControlError):
    """
    Raised when a resolved configuration or a task declaration is invalid.

    Example:
        >>> config.require("dist.css")
        ConfigValidationError: Missing required configuration key 'dist.css'
    """

    pass


class TaskNotFoundError(GroundControlError):
    """
    Raised when looking up a task or group name that was never registered.

    Attributes:
        name: The unknown name
        known: Sorted list of registered names (for the error message)
    """

    def __init__(self, name: str, known: list[str] | None = None):
        self.name = name
        self.known = known or []
        available = ", ".join(self.known) or "(none)"
        super().__init__(f"Task '{name}' not found. Available: {available}")


class DuplicateTaskError(GroundControlError):
    """
    Raised when registering a task or group name that is already registered.

    The first registration stays active.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Task '{name}' is already registered")


class CyclicDependencyError(GroundControlError):
    """
    Raised when a task transitively depends on itself.

    Detected while planning, before any task action runs.

    Attributes:
        cycle_path: Ordered list of task names forming the cycle, first name
            repeated at the end
    """

    def __init__(self, cycle_path: list[str]):
        self.cycle_path = cycle_path
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle_path)}")


class TaskActionError(GroundControlError):
    """
    Raised when a single task's action fails.

    Actions may raise this directly to control the header shown by the
    ErrorReporter (e.g. "SASS Compilation Error"); any other exception raised
    by an action is wrapped into one by the Scheduler.

    Attributes:
        task_name: Task whose action failed
        header: Short title for the failure
        detail: Longer description (compiler output, exception message)
    """

    def __init__(self, task_name: str, header: str, detail: str = ""):
        self.task_name = task_name
        self.header = header
        self.detail = detail
        message = f"Task '{task_name}' failed: {header}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class ShellCommandError(TaskActionError):
    """
    Raised when an external command exits non-zero or times out.

    Attributes:
        command: The command line that was executed
        returncode: Process exit code (None on timeout)
        output: Captured stdout + stderr
    """

    def __init__(
        self,
        task_name: str,
        command: str,
        returncode: int | None,
        output: str = "",
        header: str | None = None,
    ):
        self.command = command
        self.returncode = returncode
        self.output = output
        if returncode is None:
            reason = f"'{command}' timed out"
        else:
            reason = f"'{command}' exited with code {returncode}"
        detail = output.strip() or reason
        super().__init__(task_name, header or f"Command failed: {reason}", detail)


class PipelineError(GroundControlError):
    """
    Raised when one or more tasks of a scheduled pipeline failed.

    Raised only after every in-flight task of the failing unit has settled, so
    it always carries the complete set of failures of that unit.

    Attributes:
        failed_tasks: Names of failed tasks, in completion order
        errors: The TaskActionError of each failed task
    """

    def __init__(self, errors: list[TaskActionError]):
        self.errors = errors
        self.failed_tasks = [e.task_name for e in errors]
        super().__init__(f"Pipeline failed: {', '.join(self.failed_tasks)}")
