# groundcontrol/task_registry.py
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from .exceptions import DuplicateTaskError, TaskNotFoundError
from .task_definition import TaskAction, TaskDefinition, TaskGroup

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Name -> TaskDefinition / TaskGroup mapping, filled once at startup.

    Tasks and groups share one namespace. Registering a name twice raises
    DuplicateTaskError and leaves the first registration in place.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, TaskDefinition] = {}
        self._groups: dict[str, TaskGroup] = {}

    def _ensure_free(self, name: str) -> None:
        if name in self._tasks or name in self._groups:
            logger.warning(f"Rejecting duplicate registration of '{name}'")
            raise DuplicateTaskError(name)

    # Registration
    def register(
        self,
        name: str,
        prerequisites: Sequence[str | Sequence[str] | TaskGroup] = (),
        action: TaskAction | None = None,
        description: str = "",
    ) -> TaskDefinition:
        definition = TaskDefinition(
            name=name,
            prerequisites=tuple(prerequisites),
            action=action,
            description=description,
        )
        self._ensure_free(name)
        self._tasks[name] = definition
        logger.debug(
            f"Registered task '{name}' "
            f"(prerequisites={[str(p) for p in definition.prerequisites]}, "
            f"aggregate={definition.is_aggregate})"
        )
        return definition

    def register_group(self, name: str, members: Sequence[str]) -> TaskGroup:
        group = TaskGroup(members=tuple(members), name=name)
        self._ensure_free(name)
        self._groups[name] = group
        logger.debug(f"Registered group '{name}' with members {list(group.members)}")
        return group

    def task(
        self,
        name: str,
        prerequisites: Sequence[str | Sequence[str] | TaskGroup] = (),
        description: str = "",
    ) -> Callable[[TaskAction], TaskAction]:
        """Decorator form of register()."""

        def decorator(action: TaskAction) -> TaskAction:
            self.register(name, prerequisites, action, description or (action.__doc__ or "").strip())
            return action

        return decorator

    # Lookup
    def _known(self) -> list[str]:
        return sorted([*self._tasks, *self._groups])

    def get(self, name: str) -> TaskDefinition:
        try:
            return self._tasks[name]
        except KeyError:
            raise TaskNotFoundError(name, self._known()) from None

    def get_group(self, name: str) -> TaskGroup:
        try:
            return self._groups[name]
        except KeyError:
            raise TaskNotFoundError(name, self._known()) from None

    def has(self, name: str) -> bool:
        """True if `name` is a registered task or group."""
        return name in self._tasks or name in self._groups

    def is_group(self, name: str) -> bool:
        return name in self._groups

    def list_tasks(self) -> list[str]:
        return list(self._tasks)

    def list_groups(self) -> list[str]:
        return list(self._groups)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __len__(self) -> int:
        return len(self._tasks) + len(self._groups)

    def __repr__(self) -> str:
        return f"TaskRegistry(tasks={len(self._tasks)}, groups={len(self._groups)})"
