# tests/conftest.py
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import asyncio
import json
import logging
from unittest.mock import AsyncMock, Mock

import pytest

from groundcontrol.config_resolver import Configuration
from groundcontrol.error_reporter import ErrorReporter, ReporterOptions
from groundcontrol.logging_config import setup_logging
from groundcontrol.scheduler import Scheduler
from groundcontrol.task_registry import TaskRegistry


PROJECT_RC = {
    "vars": {
        "resourcesPath": "src/Acme/WebBundle/Resources",
        "distPath": "web/frontend",
    },
    "project": {
        "name": "Acme",
        "mainBundle": "WebBundle",
        "mainJsInclude": {"folder": "Layout", "fileName": "_js_footer.html.twig"},
    },
    "scssFolder": "<%= resourcesPath %>/ui/scss",
    "scss": "<%= resourcesPath %>/ui/scss/**/*.scss",
    "js": {
        "app": [
            "<%= resourcesPath %>/ui/js/**/*.js",
            "!<%= resourcesPath %>/ui/js/vendors/**/*.js",
        ],
        "footer": [
            "<%= bowerComponentsPath %>/jquery/dist/jquery.js",
            "<%= resourcesPath %>/ui/js/app.js",
        ],
    },
    "img": "<%= resourcesPath %>/ui/img/**/*.{png,jpg}",
    "styleguideFolder": "<%= resourcesPath %>/ui/styleguide",
    "liveReloadFiles": ["<%= distPath %>/css/*.css"],
    "dist": {
        "css": "<%= distPath %>/css",
        "js": "<%= distPath %>/js",
        "img": "<%= distPath %>/img",
        "styleguide": "<%= distPath %>/styleguide",
    },
}

FOOTER_TEMPLATE = """<footer>
    <!-- inject:js -->
    <!-- endinject -->
</footer>
"""


@pytest.fixture
def project(tmp_path):
    """A small Symfony-style project on disk with a .groundcontrollrc."""
    (tmp_path / ".groundcontrollrc").write_text(json.dumps(PROJECT_RC, indent=2))
    (tmp_path / ".bowerrc").write_text(json.dumps({"directory": "web/vendor"}))

    resources = tmp_path / "src/Acme/WebBundle/Resources"
    (resources / "ui/scss").mkdir(parents=True)
    (resources / "ui/scss/style.scss").write_text("body { color: red; }")
    (resources / "ui/js/vendors").mkdir(parents=True)
    (resources / "ui/js/app.js").write_text("console.log('app');")
    (resources / "ui/js/vendors/lib.js").write_text("/* vendor */")
    (resources / "ui/img").mkdir(parents=True)
    (resources / "ui/img/logo.png").write_bytes(b"\x89PNG")
    (resources / "ui/styleguide").mkdir(parents=True)
    (resources / "views/Layout").mkdir(parents=True)
    (resources / "views/Layout/_js_footer.html.twig").write_text(FOOTER_TEMPLATE)

    jquery = tmp_path / "web/vendor/jquery/dist"
    jquery.mkdir(parents=True)
    (jquery / "jquery.js").write_text("/* jquery */")
    return tmp_path


@pytest.fixture
def config(tmp_path):
    return Configuration(data={"project": {"name": "Acme"}}, source_path=tmp_path / "rc.json")


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def reporter(notifier):
    return ErrorReporter(ReporterOptions(show_notifications=True), notifier=notifier)


@pytest.fixture
def registry():
    return TaskRegistry()


@pytest.fixture
def scheduler(registry, config, reporter):
    return Scheduler(registry, config, reporter)


@pytest.fixture
def recorder():
    """
    Factory for async actions that record start/finish events.

        calls, make = recorder
        registry.register("a", action=make("a", delay=0.01))
    """
    events = []

    def make(name, delay=0.0, fail=None):
        async def action(context):
            events.append(("start", name))
            if delay:
                await asyncio.sleep(delay)
            if fail is not None:
                events.append(("fail", name))
                raise fail
            events.append(("end", name))

        return action

    return events, make


@pytest.fixture
def create_proc():
    """
    Factory fixture that returns properly configured asyncio subprocess mocks.
    Use it like:
        proc = create_proc(stdout=b"hello\\n", returncode=0)
        with patch("asyncio.create_subprocess_shell", return_value=proc):
            ...
    """
    def _make(stdout=b"", returncode=0, delay=0.0):
        proc = AsyncMock()

        async def communicate():
            if delay:
                await asyncio.sleep(delay)
            return stdout, None

        proc.communicate = communicate
        proc.returncode = returncode
        proc.kill = Mock(side_effect=lambda: setattr(proc, "returncode", -9))
        proc.wait = AsyncMock(return_value=returncode)
        return proc

    return _make


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo handlers and levels installed by the CLI or logging tests."""
    yield
    setup_logging(level=logging.NOTSET, console=False)
