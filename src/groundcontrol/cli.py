# groundcontrol/cli.py
"""
Command line entry point.

    groundcontrol            # clean, development build, style guide, watch
    groundcontrol build      # one-shot production build
    groundcontrol watch      # only watch
    groundcontrol <task>     # any registered task, with its prerequisites

Configuration is read from fixed locations in the working directory:
.groundcontrollrc (base document and its `vars`) and .bowerrc (dependency
directory, exposed as the `bowerComponentsPath` variable).

Exit codes: 0 success, 1 a task failed, 2 startup/configuration error,
130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import time
from datetime import timedelta
from pathlib import Path

from .build_tasks import BuildOptions, register_build_tasks
from .config_resolver import ConfigResolver, read_dependency_directory
from .error_reporter import ErrorReporter, ReporterOptions
from .exceptions import GroundControlError, PipelineError
from .logging_config import setup_logging
from .scheduler import Scheduler
from .task_registry import TaskRegistry
from .task_run import format_duration

logger = logging.getLogger(__name__)

CONFIG_FILE = ".groundcontrollrc"
DEPENDENCY_RC_FILE = ".bowerrc"
ERROR_ICON_FILE = "gulp_error.png"
LOG_LEVEL_ENV = "GROUNDCONTROL_LOG_LEVEL"

EXIT_OK = 0
EXIT_TASK_FAILED = 1
EXIT_STARTUP_ERROR = 2
EXIT_INTERRUPTED = 130


def build_options(task_name: str) -> BuildOptions:
    """Startup switches selected by the root task name."""
    if task_name == "build-deploy":
        return BuildOptions(allow_chmod=False)
    return BuildOptions()


def create_scheduler(root: Path, options: BuildOptions) -> Scheduler:
    """Resolve the configuration and register the task catalogue."""
    bower_components = read_dependency_directory(root / DEPENDENCY_RC_FILE)
    config = ConfigResolver(
        root / CONFIG_FILE,
        root / CONFIG_FILE,
        extra_vars={"bowerComponentsPath": bower_components},
    ).resolve()

    icon = root / ERROR_ICON_FILE
    reporter = ErrorReporter(
        ReporterOptions(
            show_notifications=options.show_error_notifications,
            icon=str(icon) if icon.exists() else None,
        )
    )
    registry = TaskRegistry()
    scheduler = Scheduler(registry, config, reporter, options)
    register_build_tasks(registry, config, options, scheduler)
    return scheduler


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="groundcontrol",
        description="Front-end asset build runner",
    )
    parser.add_argument(
        "task",
        nargs="?",
        default="default",
        help="Task to run with its prerequisites (default, build, build-deploy, watch, ...)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None, root: Path | None = None) -> int:
    args = parse_args(argv)
    setup_logging(level=os.environ.get(LOG_LEVEL_ENV, "INFO"))
    root = root or Path.cwd()

    try:
        scheduler = create_scheduler(root, build_options(args.task))
        request = scheduler.plan(args.task)
    except GroundControlError as exc:
        logger.error(str(exc))
        return EXIT_STARTUP_ERROR

    logger.info(f"Using {root / CONFIG_FILE}")
    started = time.monotonic()
    try:
        asyncio.run(scheduler.run(request))
    except PipelineError as exc:
        logger.error(f"'{args.task}' failed: {', '.join(exc.failed_tasks)}")
        return EXIT_TASK_FAILED
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_INTERRUPTED

    elapsed = format_duration(timedelta(seconds=time.monotonic() - started))
    logger.info(f"Finished '{args.task}' after {elapsed}")
    return EXIT_OK
