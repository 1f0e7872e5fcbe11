# groundcontrol/scheduler.py
"""
Scheduler - plans and executes a task graph on the running event loop.

Two entry points:
- run(request): execute an explicit ScheduleRequest. Units run strictly in
  order; a group's members (or a ParallelUnit's branches) run concurrently
  and the scheduler waits for all of them, successful or not, before moving on.
- run_with_prerequisites(name): plan() the prerequisite graph of a task (or
  group) into an equivalent ScheduleRequest, then run() it.

Planning is a dry run: unknown names and dependency cycles are reported
before any action executes. Each member of a concurrent group keeps its own
prerequisite chain as an independent branch, so one member failing never
stops a sibling's chain.

Failure policy: fail-soft inside a group, fail-fast between units. Every
failed action is reported through the ErrorReporter as it settles; once the
unit containing failures has settled, later units are skipped and
PipelineError is raised listing every failure.

Within one run() each task executes at most once: a task reached from
several branches is started by the first and awaited by the others.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from .error_reporter import ErrorRecord, ErrorReporter
from .exceptions import CyclicDependencyError, PipelineError, TaskActionError
from .task_definition import (
    Prerequisite,
    TaskContext,
    TaskDefinition,
    TaskGroup,
    normalize_prerequisites,
)
from .task_registry import TaskRegistry
from .task_run import RunState, TaskRun

if TYPE_CHECKING:
    from .build_tasks import BuildOptions
    from .config_resolver import Configuration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleRequest:
    """
    An ordered sequence of scheduling units.

    Each unit is a task name, a registered group name, a TaskGroup, or a
    ParallelUnit of sequential branches.
    """

    units: tuple[Unit, ...]

    def __post_init__(self) -> None:
        units = tuple(
            unit if isinstance(unit, ParallelUnit) else normalize_prerequisites([unit])[0]
            for unit in self.units
        )
        object.__setattr__(self, "units", units)

    def __iter__(self):
        return iter(self.units)

    def __len__(self) -> int:
        return len(self.units)

    def __str__(self) -> str:
        return " -> ".join(str(u) for u in self.units) or "(empty)"


@dataclass(frozen=True)
class ParallelUnit:
    """
    Concurrent branches, each a sequential ScheduleRequest of its own.

    plan() emits one for a group whose members have prerequisite chains: a
    branch stops at its own first failure while the other branches carry on.
    """

    branches: tuple[ScheduleRequest, ...]

    def __str__(self) -> str:
        return "{" + " | ".join(str(b) for b in self.branches) + "}"


Unit = Union[Prerequisite, ParallelUnit]

# Expanded chain: task names in order, or a list of concurrent sub-chains
Step = Union[str, list]


def _parallel(branches: list[list[Unit]]) -> list[Unit]:
    """Collapse concurrent branches into the simplest equivalent units."""
    if not branches:
        return []
    if len(branches) == 1:
        return branches[0]
    if all(len(b) == 1 and isinstance(b[0], str) for b in branches):
        return [TaskGroup(members=tuple(dict.fromkeys(b[0] for b in branches)))]
    return [ParallelUnit(tuple(ScheduleRequest(tuple(b)) for b in branches))]


def _is_async(action: object) -> bool:
    return inspect.iscoroutinefunction(action) or inspect.iscoroutinefunction(
        getattr(action, "__call__", None)
    )


class Scheduler:
    """
    Resolves and executes task graphs from a TaskRegistry.

    Holds no state between calls: every run() creates its own TaskRun records.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        config: Configuration,
        reporter: ErrorReporter | None = None,
        options: BuildOptions | None = None,
    ):
        self._registry = registry
        self._config = config
        self._reporter = reporter or ErrorReporter()
        self._options = options

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    # ------------------------------------------------------------------ #
    # Planning
    # ------------------------------------------------------------------ #
    def _as_group(self, entry: Prerequisite) -> TaskGroup | None:
        if isinstance(entry, TaskGroup):
            return entry
        if self._registry.is_group(entry):
            return self._registry.get_group(entry)
        return None

    def _member_names(self, entry: Prerequisite) -> list[str]:
        group = self._as_group(entry)
        return list(group.members) if group else [entry]

    def _children(self, definition: TaskDefinition) -> list[str]:
        names: list[str] = []
        for entry in definition.prerequisites:
            names.extend(self._member_names(entry))
        return names

    def _check_cycles(self, roots: list[str]) -> None:
        done: set[str] = set()
        path: list[str] = []

        def visit(name: str) -> None:
            if name in done:
                return
            if name in path:
                cycle = path[path.index(name):] + [name]
                logger.warning(f"Dependency cycle detected: {' -> '.join(cycle)}")
                raise CyclicDependencyError(cycle)
            definition = self._registry.get(name)
            path.append(name)
            for child in self._children(definition):
                visit(child)
            path.pop()
            done.add(name)

        for root in roots:
            visit(root)

    def _expand_entry(self, entry: Prerequisite, memo: dict[str, list[Step]]) -> list[Step]:
        group = self._as_group(entry)
        if group is None:
            return self._expand_task(entry, memo)
        return [[self._expand_task(m, memo) for m in group.members]]

    def _expand_task(self, name: str, memo: dict[str, list[Step]]) -> list[Step]:
        if name in memo:
            return memo[name]
        definition = self._registry.get(name)
        steps: list[Step] = []
        for entry in definition.prerequisites:
            steps.extend(self._expand_entry(entry, memo))
        steps.append(name)
        memo[name] = steps
        return steps

    def _build_units(self, steps: list[Step], seen: set[str]) -> list[Unit]:
        """Turn expanded steps into units, dropping tasks an earlier unit already covers."""
        units: list[Unit] = []
        for step in steps:
            if isinstance(step, str):
                if step not in seen:
                    seen.add(step)
                    units.append(step)
                continue

            # Branches only see what ran before the group, not each other
            reached = set(seen)
            branches: list[list[Unit]] = []
            for chain in step:
                branch_seen = set(seen)
                branch = self._build_units(chain, branch_seen)
                reached |= branch_seen
                if branch:
                    branches.append(branch)
            seen |= reached
            units.extend(_parallel(branches))
        return units

    def plan(self, target: str | Sequence[str] | TaskGroup) -> ScheduleRequest:
        """
        Build the ScheduleRequest that runs `target` after all of its prerequisites.

        `target` is a task name, a group name, a TaskGroup, or a list of names
        (treated as an inline group). Every task appears after all of its
        prerequisites. A group member with prerequisites becomes a branch of a
        ParallelUnit holding its own chain; a task shared by several branches
        is listed in each of them and still runs once.

        Raises:
            TaskNotFoundError: A reachable name is not registered
            CyclicDependencyError: A task transitively depends on itself
        """
        if isinstance(target, str):
            entry: Prerequisite = target
            if not self._registry.is_group(target):
                self._registry.get(target)
        elif isinstance(target, TaskGroup):
            entry = target
        else:
            entry = TaskGroup(members=tuple(target))

        self._check_cycles(self._member_names(entry))

        units = self._build_units(self._expand_entry(entry, {}), set())
        request = ScheduleRequest(tuple(units))
        logger.debug(f"Plan for '{entry}': {request}")
        return request

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    def _unit_names(self, units: Sequence[Unit]) -> Iterator[str]:
        for unit in units:
            if isinstance(unit, ParallelUnit):
                for branch in unit.branches:
                    yield from self._unit_names(branch.units)
            else:
                yield from self._member_names(unit)

    async def run(self, request: ScheduleRequest | Sequence[str | Sequence[str]]) -> list[TaskRun]:
        """
        Execute `request` unit by unit and return the TaskRun of every task that ran.

        Prerequisites are not expanded here; use run_with_prerequisites() for that.
        A name listed more than once runs the first time only.

        Raises:
            TaskNotFoundError: A unit names an unknown task (before anything runs)
            PipelineError: One or more actions failed (after their unit settled)
        """
        if not isinstance(request, ScheduleRequest):
            request = ScheduleRequest(tuple(request))

        for name in self._unit_names(request.units):
            self._registry.get(name)

        runs: list[TaskRun] = []
        started: dict[str, asyncio.Task] = {}
        if not await self._run_sequence(request.units, runs, started):
            failed = sorted(
                (r for r in runs if r.state is RunState.FAILED), key=lambda r: r.end_time
            )
            raise PipelineError([r.error for r in failed])
        return runs

    async def run_with_prerequisites(self, target: str | Sequence[str] | TaskGroup) -> list[TaskRun]:
        """Plan `target` with its prerequisites, then run the plan."""
        return await self.run(self.plan(target))

    async def _run_sequence(
        self, units: Sequence[Unit], runs: list[TaskRun], started: dict[str, asyncio.Task]
    ) -> bool:
        """Run units in order, stopping after the first unit with a failure."""
        for index, unit in enumerate(units):
            if not await self._run_unit(unit, runs, started):
                remaining = len(units) - index - 1
                if remaining:
                    logger.info(f"Skipping {remaining} remaining unit(s) after failure")
                return False
        return True

    async def _run_unit(
        self, unit: Unit, runs: list[TaskRun], started: dict[str, asyncio.Task]
    ) -> bool:
        if isinstance(unit, ParallelUnit):
            logger.debug(f"Running {len(unit.branches)} branches concurrently: {unit}")
            results = await asyncio.gather(
                *(self._run_sequence(b.units, runs, started) for b in unit.branches)
            )
        else:
            names = self._member_names(unit)
            if len(names) > 1:
                logger.debug(f"Running group {names} concurrently")
            results = await asyncio.gather(*(self._run_once(n, runs, started) for n in names))
        return all(results)

    async def _run_once(
        self, name: str, runs: list[TaskRun], started: dict[str, asyncio.Task]
    ) -> bool:
        task = started.get(name)
        if task is None:
            run = TaskRun(task_name=name)
            runs.append(run)
            task = asyncio.create_task(self._run_task(run))
            started[name] = task
        return await task

    async def _invoke(self, definition: TaskDefinition, context: TaskContext) -> None:
        action = definition.action
        if _is_async(action):
            await action(context)
            return
        # Sync actions run on a worker thread so group members overlap
        result = await asyncio.to_thread(action, context)
        if inspect.isawaitable(result):
            await result

    async def _run_task(self, run: TaskRun) -> bool:
        """Run one task's action. Failures are recorded on `run`, never raised."""
        name = run.task_name
        definition = self._registry.get(name)

        if definition.is_aggregate:
            run.mark_skipped()
            logger.debug(f"Task '{name}' has no action, nothing to run")
            return True

        run.mark_running()
        logger.info(f"Starting '{name}'...")
        context = TaskContext(task_name=name, config=self._config, options=self._options)

        try:
            await self._invoke(definition, context)
        except asyncio.CancelledError:
            logger.info(f"Task '{name}' was cancelled")
            run.mark_failed(TaskActionError(name, "Task cancelled"))
            raise
        except TaskActionError as exc:
            error = exc
            if exc.task_name != name:
                error = TaskActionError(name, exc.header, exc.detail)
        except Exception as exc:
            logger.debug(f"Task '{name}' raised", exc_info=True)
            error = TaskActionError(
                name, f"Task '{name}' failed", str(exc) or type(exc).__name__
            )
        else:
            run.mark_success()
            logger.info(f"Finished '{name}' after {run.duration_str}")
            return True

        run.mark_failed(error)
        self._reporter.report_record(ErrorRecord(name, error.header, error.detail))
        return False
