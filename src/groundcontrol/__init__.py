__version__ = "0.1.0"

from .build_tasks import BuildOptions, register_build_tasks
from .config_resolver import (
    ConfigResolver,
    Configuration,
    read_dependency_directory,
    render_template,
    resolve,
)
from .error_reporter import DesktopNotifier, ErrorRecord, ErrorReporter, ReporterOptions
from .exceptions import (
    ConfigParseError,
    ConfigValidationError,
    CyclicDependencyError,
    DuplicateTaskError,
    GroundControlError,
    PipelineError,
    ShellCommandError,
    TaskActionError,
    TaskNotFoundError,
)
from .globs import PatternSet
from .live_reload import LiveReloadClient
from .logging_config import disable_logging, get_log_file_path, setup_logging
from .scheduler import ParallelUnit, ScheduleRequest, Scheduler
from .shell import ShellStep, run_shell, shell_task
from .task_definition import TaskContext, TaskDefinition, TaskGroup
from .task_registry import TaskRegistry
from .task_run import RunState, TaskRun, format_duration
from .watcher import WatchBinding, Watcher

__all__ = [
    # Version
    "__version__",
    # Core Components
    "ConfigResolver",
    "Configuration",
    "resolve",
    "read_dependency_directory",
    "render_template",
    "TaskContext",
    "TaskDefinition",
    "TaskGroup",
    "TaskRegistry",
    "ParallelUnit",
    "ScheduleRequest",
    "Scheduler",
    "TaskRun",
    "RunState",
    "WatchBinding",
    "Watcher",
    "ErrorRecord",
    "ErrorReporter",
    "ReporterOptions",
    # Build catalogue
    "BuildOptions",
    "register_build_tasks",
    # Collaborators
    "DesktopNotifier",
    "LiveReloadClient",
    "PatternSet",
    "ShellStep",
    "run_shell",
    "shell_task",
    # Logging
    "setup_logging",
    "disable_logging",
    "get_log_file_path",
    # Utilities
    "format_duration",
    # Exceptions
    "GroundControlError",
    "ConfigParseError",
    "ConfigValidationError",
    "CyclicDependencyError",
    "DuplicateTaskError",
    "PipelineError",
    "ShellCommandError",
    "TaskActionError",
    "TaskNotFoundError",
]
