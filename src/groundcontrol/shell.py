# groundcontrol/shell.py
"""
External commands as task actions.

Every transform the pipeline does not implement itself (stylesheet compiler,
minifier, linter, image optimizer, style-guide generator) and every
maintenance task (cache clear, migrations, service restart) is an external
command run to completion with asyncio subprocesses:
- stdout + stderr merged
- optional timeout (process killed, ShellCommandError raised)
- cancellation kills the process and re-raises
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config_resolver import render_template
from .exceptions import ConfigValidationError, ShellCommandError
from .task_definition import TaskContext

logger = logging.getLogger(__name__)


async def _kill_process(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
        await process.wait()
    except ProcessLookupError:
        pass


async def run_shell(
    command: str,
    *,
    task_name: str = "shell",
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_secs: float | None = None,
    header: str | None = None,
    check: bool = True,
) -> str:
    """
    Run `command` through the shell and return its merged output.

    Raises:
        ShellCommandError: Non-zero exit (when `check`) or timeout
    """
    merged_env = {**os.environ, **env} if env else None
    logger.debug(f"[{task_name}] $ {command} (cwd={cwd or '.'})")

    process = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        cwd=str(cwd) if cwd is not None else None,
        env=merged_env,
    )

    try:
        if timeout_secs:
            try:
                stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout_secs)
            except asyncio.TimeoutError:
                logger.warning(f"[{task_name}] '{command}' timed out after {timeout_secs}s")
                await _kill_process(process)
                raise ShellCommandError(task_name, command, None, header=header) from None
        else:
            stdout, _ = await process.communicate()
    except asyncio.CancelledError:
        logger.debug(f"[{task_name}] cancelled, killing '{command}'")
        if process.returncode is None:
            await _kill_process(process)
        raise

    output = stdout.decode("utf-8", errors="replace") if stdout else ""
    if process.returncode != 0:
        if check:
            raise ShellCommandError(task_name, command, process.returncode, output, header=header)
        logger.warning(f"[{task_name}] '{command}' exited with code {process.returncode}\n{output}")
    elif output.strip():
        logger.debug(f"[{task_name}] output:\n{output}")
    return output


@dataclass(frozen=True)
class ShellStep:
    """
    Task action running one or more command templates in order.

    Templates use {{ dotted.name }} lookups into the task's configuration
    (plus `vars`, which take precedence). The first failing command fails
    the task; with check=False failures are only logged (lint steps).
    """

    commands: tuple[str, ...]
    cwd: str | None = None
    """Working directory template; relative paths are resolved from the process cwd."""

    env: dict[str, str] = field(default_factory=dict)
    timeout_secs: float | None = None
    header: str | None = None
    """Title shown by the ErrorReporter when a command fails."""

    check: bool = True
    vars: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        commands = (self.commands,) if isinstance(self.commands, str) else tuple(self.commands)
        object.__setattr__(self, "commands", commands)
        if not commands or not all(c.strip() for c in commands):
            raise ConfigValidationError("ShellStep commands cannot be empty")
        if self.timeout_secs is not None and self.timeout_secs <= 0:
            raise ConfigValidationError("timeout_secs must be positive")

    def render(self, context: TaskContext) -> tuple[list[str], str | None]:
        variables: dict[str, Any] = {**context.config.data, **self.vars}
        commands = [render_template(c, variables) for c in self.commands]
        cwd = render_template(self.cwd, variables) if self.cwd else None
        return commands, cwd

    async def __call__(self, context: TaskContext) -> None:
        commands, cwd = self.render(context)
        for command in commands:
            await run_shell(
                command,
                task_name=context.task_name,
                cwd=cwd,
                env=self.env,
                timeout_secs=self.timeout_secs,
                header=self.header,
                check=self.check,
            )

    def with_vars(self, **extra: Any) -> ShellStep:
        return ShellStep(
            commands=self.commands,
            cwd=self.cwd,
            env=self.env,
            timeout_secs=self.timeout_secs,
            header=self.header,
            check=self.check,
            vars={**self.vars, **extra},
        )


def shell_task(commands: str | Sequence[str], **kwargs: Any) -> ShellStep:
    """Shorthand: shell_task(['php app/console cache:clear', ...], cwd='...')."""
    return ShellStep(commands=(commands,) if isinstance(commands, str) else tuple(commands), **kwargs)
