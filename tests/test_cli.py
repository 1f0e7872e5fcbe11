# tests/test_cli.py
import asyncio
from unittest.mock import patch

import pytest

from groundcontrol.cli import (
    EXIT_OK,
    EXIT_STARTUP_ERROR,
    EXIT_TASK_FAILED,
    build_options,
    create_scheduler,
    main,
)


def test_build_deploy_disables_chmod():
    assert build_options("build-deploy").allow_chmod is False
    assert build_options("build").allow_chmod is True


def test_create_scheduler_reads_bowerrc(project):
    scheduler = create_scheduler(project, build_options("default"))
    assert "default" in scheduler.registry
    assert scheduler.plan("scripts-dev").units == ("jshint", "scripts-dev")

    # js.footer points into the .bowerrc directory (web/vendor)
    asyncio.run(scheduler.run(["scripts-dev"]))
    assert (project / "web/frontend/js/jquery.js").exists()


def test_clean(project):
    dist = project / "web/frontend/css"
    dist.mkdir(parents=True)
    assert main(["clean"], root=project) == EXIT_OK
    assert not (project / "web/frontend").exists()


def test_missing_config(tmp_path):
    assert main(["build"], root=tmp_path) == EXIT_STARTUP_ERROR


def test_unknown_task(project):
    assert main(["deploy-everything"], root=project) == EXIT_STARTUP_ERROR


def test_undefined_variable(project):
    (project / ".groundcontrollrc").write_text('{"vars": {}, "scss": "<%= nope %>"}')
    assert main(["styles"], root=project) == EXIT_STARTUP_ERROR


def test_failing_task(project, create_proc):
    proc = create_proc(stdout=b"Error: Invalid CSS\n", returncode=1)
    with patch("asyncio.create_subprocess_shell", return_value=proc), \
         patch("groundcontrol.error_reporter.DesktopNotifier.notify") as notify:
        assert main(["styles"], root=project) == EXIT_TASK_FAILED
    notify.assert_called_once()
    assert notify.call_args.args[0] == "SASS Compilation Error"


def test_log_level_from_environment(project, monkeypatch, caplog):
    monkeypatch.setenv("GROUNDCONTROL_LOG_LEVEL", "debug")
    with caplog.at_level("DEBUG"):
        assert main(["clean"], root=project) == EXIT_OK
    assert "Registered task 'clean'" in caplog.text


def test_only_a_task_name_is_accepted(project):
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"], root=project)
    assert exc_info.value.code == 2

    with pytest.raises(SystemExit):
        main(["build", "styles"], root=project)
