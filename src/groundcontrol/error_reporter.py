# groundcontrol/error_reporter.py
"""
ErrorReporter - surfaces task failures on the console and, optionally, as a
desktop notification.

The console log always happens first. The notification channel is
fire-and-forget: any failure in it is logged at warning level and swallowed
so a broken notifier can never crash the task that reported the error.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorRecord:
    """A single task failure, produced when the action fails and consumed immediately."""

    task_name: str
    header: str
    detail: str = ""


@dataclass(frozen=True)
class ReporterOptions:
    """Startup-time reporter settings. Not visible to task actions."""

    show_notifications: bool = True
    """Push a desktop notification for every reported failure."""

    icon: str | None = None
    """Optional icon path passed to the notifier."""


def header_lines(message: str) -> str:
    """Border line for a header: '-' repeated len(message) + 4 times."""
    return "-" * (len(message) + 4)


def format_error(header: str, detail: str) -> str:
    """
    Bordered console block:

        ---------------------------
          SASS Compilation Error
        ---------------------------

          <detail>
    """
    border = header_lines(header)
    lines = [border, f"  {header}", border, ""]
    lines.extend(f"  {line}" for line in (detail or "").splitlines() or [""])
    return "\n".join(lines)


class Notifier(Protocol):
    def notify(self, title: str, message: str, icon: str | None = None) -> None: ...


class DesktopNotifier:
    """
    Fire-and-forget desktop notifications through the platform's CLI tool.

    - Linux: notify-send
    - macOS: osascript
    - anything else, or the tool is missing: debug log only
    """

    def __init__(self, app_name: str = "groundcontrol"):
        self.app_name = app_name

    def _command(self, title: str, message: str, icon: str | None) -> list[str] | None:
        if sys.platform == "darwin":
            if not shutil.which("osascript"):
                return None
            script = f"display notification {json.dumps(message)} with title {json.dumps(title)}"
            return ["osascript", "-e", script]
        if sys.platform.startswith("linux"):
            if not shutil.which("notify-send"):
                return None
            argv = ["notify-send", "-a", self.app_name]
            if icon:
                argv += ["-i", icon]
            return argv + [title, message]
        return None

    def notify(self, title: str, message: str, icon: str | None = None) -> None:
        argv = self._command(title, message, icon)
        if argv is None:
            logger.debug(f"No desktop notifier available on {sys.platform}, skipping '{title}'")
            return
        # Not waited on: the notification tool runs detached
        subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )


class ErrorReporter:
    """Formats task failures for the console and optional desktop notifications."""

    def __init__(
        self,
        options: ReporterOptions | None = None,
        notifier: Notifier | None = None,
    ):
        self.options = options or ReporterOptions()
        self._notifier = notifier or DesktopNotifier()

    def report(self, task_name: str, header: str, detail: str = "") -> None:
        """Log a failure and, if enabled, push a notification. Never raises."""
        logger.error(
            f"Task '{task_name}' failed\n{format_error(header, detail)}",
            extra={"task_name": task_name},
        )

        if not self.options.show_notifications:
            return

        try:
            self._notifier.notify(header, detail, icon=self.options.icon)
        except Exception as exc:
            logger.warning(f"Desktop notification for task '{task_name}' failed: {exc}")

    def report_record(self, record: ErrorRecord) -> None:
        self.report(record.task_name, record.header, record.detail)

    def __repr__(self) -> str:
        return f"ErrorReporter(show_notifications={self.options.show_notifications})"
