# groundcontrol/watcher.py
"""
Watcher - re-runs tasks when files matching a binding's patterns change.

watchdog delivers events on its observer thread; they are handed to the
event loop with call_soon_threadsafe and debounced per binding there. When a
binding's settle window passes without further events, its targets are run
through Scheduler.run_with_prerequisites().

stop() only prevents future triggers: runs already dispatched are awaited,
never cancelled.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .exceptions import ConfigValidationError, GroundControlError, TaskNotFoundError
from .globs import PatternSet
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 100


class LiveReloadSink(Protocol):
    def changed(self, paths: Sequence[str]) -> Any: ...


@dataclass(frozen=True)
class WatchBinding:
    """File patterns and the task(s) they trigger. Immutable once bound."""

    patterns: tuple[str, ...]
    targets: tuple[str, ...]
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    reload: bool = False
    """Also forward the changed paths to the live-reload sink."""

    def __post_init__(self) -> None:
        if not self.patterns:
            raise ConfigValidationError("Watch binding needs at least one pattern")
        if not self.targets:
            raise ConfigValidationError("Watch binding needs at least one task")
        if self.debounce_ms < 0:
            raise ConfigValidationError("debounce_ms cannot be negative")


class _ChangeHandler(FileSystemEventHandler):
    """Forward watchdog file events to the Watcher (runs on the observer thread)."""

    def __init__(self, watcher: Watcher):
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("created", "modified", "moved", "deleted"):
            return
        path = getattr(event, "dest_path", "") or event.src_path
        self.watcher.notify(path)


class Watcher:
    """Binds file patterns to tasks and triggers them on change, debounced per binding."""

    def __init__(
        self,
        scheduler: Scheduler,
        root: str | Path = ".",
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        live_reload: LiveReloadSink | None = None,
        observer_factory: Callable[[], Any] = Observer,
    ):
        self._scheduler = scheduler
        self.root = Path(root).resolve()
        self._default_debounce_ms = debounce_ms
        self._live_reload = live_reload
        self._observer_factory = observer_factory

        self._bindings: list[tuple[WatchBinding, PatternSet]] = []
        self._pending: dict[int, asyncio.TimerHandle] = {}
        self._changed: dict[int, list[str]] = {}
        self._in_flight: set[asyncio.Task] = set()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._observer: Any = None
        self._stopping = False

    @property
    def bindings(self) -> list[WatchBinding]:
        return [binding for binding, _ in self._bindings]

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stopping

    def bind(
        self,
        pattern: str | Sequence[str],
        task_or_group: str | Sequence[str],
        *,
        debounce_ms: int | None = None,
        reload: bool = False,
    ) -> WatchBinding:
        if self._loop is not None:
            raise ConfigValidationError("Cannot add watch bindings after start()")

        patterns = (pattern,) if isinstance(pattern, str) else tuple(pattern)
        targets = (task_or_group,) if isinstance(task_or_group, str) else tuple(task_or_group)
        registry = self._scheduler.registry
        for target in targets:
            if not registry.has(target):
                raise TaskNotFoundError(target, sorted(registry.list_tasks() + registry.list_groups()))

        binding = WatchBinding(
            patterns=patterns,
            targets=targets,
            debounce_ms=self._default_debounce_ms if debounce_ms is None else debounce_ms,
            reload=reload,
        )
        self._bindings.append((binding, PatternSet(patterns, root=self.root)))
        logger.debug(f"Bound {list(patterns)} -> {list(targets)} (debounce={binding.debounce_ms}ms)")
        return binding

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def start(self) -> None:
        """Watch until stop() is called (or the awaiting task is cancelled)."""
        if self._loop is not None:
            raise RuntimeError("Watcher already started")
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        if self._stopping:
            return

        handler = _ChangeHandler(self)
        self._observer = self._observer_factory()
        roots: list[Path] = []
        for _, patterns in self._bindings:
            for root in patterns.watch_roots():
                if root not in roots:
                    roots.append(root)
        for root in roots:
            self._observer.schedule(handler, str(root), recursive=True)
        self._observer.start()
        logger.info(f"Watching {len(self._bindings)} binding(s) in {len(roots)} directories")

        try:
            await self._stop_event.wait()
        finally:
            self._stopping = True
            self._cancel_pending()
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            if self._in_flight:
                logger.info(f"Waiting for {len(self._in_flight)} triggered run(s) to finish")
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            logger.info("Watcher stopped")

    def stop(self) -> None:
        """Stop scheduling new runs. Safe to call from any thread."""
        self._stopping = True
        if self._loop is None or self._stop_event is None:
            return
        self._loop.call_soon_threadsafe(self._stop_event.set)

    def _cancel_pending(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        self._changed.clear()

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #
    def notify(self, path: str | Path) -> None:
        """Report a changed file. Safe to call from any thread."""
        if self._loop is None or self._stopping:
            return
        self._loop.call_soon_threadsafe(self._on_change, str(path))

    def _on_change(self, path: str) -> None:
        if self._stopping:
            return
        for index, (binding, patterns) in enumerate(self._bindings):
            if not patterns.matches(path):
                continue
            logger.debug(f"{path} changed, matches {list(binding.patterns)}")
            self._changed.setdefault(index, []).append(path)
            handle = self._pending.pop(index, None)
            if handle is not None:
                handle.cancel()
            self._pending[index] = self._loop.call_later(
                binding.debounce_ms / 1000, self._fire, index
            )

    def _fire(self, index: int) -> None:
        self._pending.pop(index, None)
        paths = list(dict.fromkeys(self._changed.pop(index, [])))
        if self._stopping:
            return
        binding, _ = self._bindings[index]
        task = self._loop.create_task(self._trigger(binding, paths))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _trigger(self, binding: WatchBinding, paths: list[str]) -> None:
        targets = list(binding.targets)
        logger.info(f"{len(paths)} file(s) changed, running {targets}")

        if binding.reload and self._live_reload is not None:
            try:
                result = self._live_reload.changed(paths)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning(f"Live reload notification failed: {exc}")

        target: str | list[str] = targets[0] if len(targets) == 1 else targets
        try:
            await self._scheduler.run_with_prerequisites(target)
        except GroundControlError as exc:
            # Failures were already reported; watch mode keeps going
            logger.warning(f"Watch-triggered run of {targets} failed: {exc}")

    def __repr__(self) -> str:
        return f"Watcher(root={self.root}, bindings={len(self._bindings)}, running={self.is_running})"
