from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from .exceptions import ConfigValidationError

if TYPE_CHECKING:
    from .build_tasks import BuildOptions
    from .config_resolver import Configuration

logger = logging.getLogger(__name__)

_TASK_NAME_RE = re.compile(r"^[\w\-\:]+$")


# ─────────────────────────────────────────────────────────────────────────────
# Name validation
# ─────────────────────────────────────────────────────────────────────────────
def validate_task_name(name: str) -> str:
    """
    Validate a task or group name.

    Raises:
        ConfigValidationError: If the name is empty or contains invalid characters

    Allowed characters:
        - Alphanumerics (a-z, A-Z, 0-9)
        - Underscores (_)
        - Hyphens (-)
        - Colons (:)
    """
    if not name or not isinstance(name, str):
        raise ConfigValidationError("Task name cannot be empty")
    if not _TASK_NAME_RE.match(name):
        raise ConfigValidationError(
            f"Invalid task name '{name}': must contain only "
            "alphanumerics, underscores, hyphens, and colons"
        )
    return name


# ─────────────────────────────────────────────────────────────────────────────
# Task context handed to actions
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class TaskContext:
    """Everything a task action may read. Nothing in it is mutable."""

    task_name: str
    config: Configuration
    options: BuildOptions | None = None


TaskAction = Callable[[TaskContext], Union[Awaitable[None], None]]


# ─────────────────────────────────────────────────────────────────────────────
# Groups and definitions
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class TaskGroup:
    """
    Tasks that run concurrently as one scheduling unit.

    Registered groups have a name and can be referenced from prerequisite
    lists and watch bindings. Groups written inline in a prerequisite list
    have name None.
    """

    members: tuple[str, ...]
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "members", tuple(self.members))
        if not self.members:
            raise ConfigValidationError(
                f"Task group '{self.name or '<inline>'}' must have at least one member"
            )
        if self.name is not None:
            validate_task_name(self.name)
        for member in self.members:
            validate_task_name(member)

    def __str__(self) -> str:
        return self.name or "[" + ", ".join(self.members) + "]"


Prerequisite = Union[str, TaskGroup]


def normalize_prerequisites(entries: Sequence[str | Sequence[str] | TaskGroup]) -> tuple[Prerequisite, ...]:
    """Turn a user-written prerequisite list into names and TaskGroups."""
    if isinstance(entries, str):
        raise ConfigValidationError(
            f"Prerequisites must be a list of task names, got the string '{entries}'"
        )
    normalized: list[Prerequisite] = []
    for entry in entries:
        if isinstance(entry, TaskGroup):
            normalized.append(entry)
        elif isinstance(entry, str):
            normalized.append(validate_task_name(entry))
        elif isinstance(entry, Sequence):
            normalized.append(TaskGroup(members=tuple(entry)))
        else:
            raise ConfigValidationError(f"Invalid prerequisite entry: {entry!r}")
    return tuple(normalized)


@dataclass(frozen=True)
class TaskDefinition:
    """
    Immutable definition of a single task.

    Registered once at startup and looked up by name at schedule time.
    """

    name: str
    """Unique name of the task. Used on the command line and in prerequisites."""

    prerequisites: tuple[Prerequisite, ...] = field(default_factory=tuple)
    """
    Units that must complete before this task's action starts, in order.
    A name runs on its own; a TaskGroup runs its members concurrently.
    Example: ("clean", TaskGroup(("styles", "images")), "styleguide")
    """

    action: TaskAction | None = None
    """
    Coroutine function or plain callable taking a TaskContext.
    None for aggregate tasks (pipelines) that only sequence their prerequisites.
    """

    description: str = ""

    def __post_init__(self) -> None:
        validate_task_name(self.name)
        object.__setattr__(self, "prerequisites", normalize_prerequisites(self.prerequisites))
        if self.action is not None and not callable(self.action):
            logger.warning(f"Invalid task '{self.name}': action is not callable")
            raise ConfigValidationError(f"Action for task '{self.name}' must be callable")

    @property
    def is_aggregate(self) -> bool:
        return self.action is None
