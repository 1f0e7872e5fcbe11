# tests/test_build_tasks.py
import os
from unittest.mock import patch

import pytest

from groundcontrol import (
    BuildOptions,
    ConfigValidationError,
    Configuration,
    ErrorReporter,
    ParallelUnit,
    ReporterOptions,
    ScheduleRequest,
    Scheduler,
    ShellCommandError,
    TaskContext,
    TaskRegistry,
    register_build_tasks,
    resolve,
)
from groundcontrol import build_tasks
from groundcontrol.build_tasks import changed_files


@pytest.fixture
def project_config(project):
    rc = project / ".groundcontrollrc"
    return resolve(rc, rc, extra_vars={"bowerComponentsPath": "web/vendor"})


@pytest.fixture
def catalogue(project_config):
    registry = TaskRegistry()
    reporter = ErrorReporter(ReporterOptions(show_notifications=False))
    options = BuildOptions(live_reload=False)
    scheduler = Scheduler(registry, project_config, reporter, options)
    watcher = register_build_tasks(registry, project_config, options, scheduler)
    return registry, scheduler, watcher


def context(config, name="task", **options):
    return TaskContext(task_name=name, config=config, options=BuildOptions(**options))


# ─────────────────────────────────────────────────────────────────────────────
# Catalogue
# ─────────────────────────────────────────────────────────────────────────────
def test_catalogue_registers_every_task(catalogue):
    registry, _, _ = catalogue
    for name in [
        "styles", "jshint", "scripts-prod", "inject-prod-scripts", "scripts-dev",
        "inject-dev-scripts", "images", "styleguide", "styleguide-prod-js",
        "styleguide-dev-js", "clean", "watch", "build", "build-deploy", "default",
        "clear-symfony-cache", "migrate", "cc", "fixperms", "maintenance",
        "apachectl", "install_npm_bower",
    ]:
        assert name in registry
    assert registry.get("build").is_aggregate


def test_build_plan(catalogue):
    _, scheduler, _ = catalogue
    assert scheduler.plan("build").units == (
        "clean",
        ParallelUnit((
            ScheduleRequest(("clear-symfony-cache",)),
            ScheduleRequest(("styles",)),
            ScheduleRequest(("jshint", "scripts-prod", "inject-prod-scripts")),
            ScheduleRequest(("images",)),
        )),
        "styleguide",
        "styleguide-prod-js",
        "build",
    )
    assert scheduler.plan("build-deploy").units[-2:] == ("build", "build-deploy")


def test_default_plan_ends_with_watch(catalogue):
    _, scheduler, _ = catalogue
    units = scheduler.plan("default").units
    assert units[0] == "clean"
    assert units[1].branches[2] == ScheduleRequest(("jshint", "scripts-dev", "inject-dev-scripts"))
    assert units[-3:] == ("styleguide-dev-js", "watch", "default")


def test_watch_bindings(catalogue):
    _, _, watcher = catalogue
    bindings = {b.targets: b for b in watcher.bindings}
    assert set(bindings) == {("styleguide",), ("styles",), ("inject-dev-scripts",), ("images",)}
    assert bindings[("styleguide",)].reload
    assert bindings[("styles",)].patterns == ("src/Acme/WebBundle/Resources/ui/scss/**/*.scss",)
    assert not bindings[("images",)].reload


def test_missing_watch_keys_are_skipped(project):
    config = Configuration(data={"scss": "scss/*.scss"}, source_path=project / "rc.json")
    registry = TaskRegistry()
    scheduler = Scheduler(registry, config)
    registry.register("styles", action=lambda ctx: None)
    watcher = build_tasks.build_watcher(scheduler, config, BuildOptions(live_reload=False))
    assert [b.targets for b in watcher.bindings] == [("styles",)]


# ─────────────────────────────────────────────────────────────────────────────
# File tasks
# ─────────────────────────────────────────────────────────────────────────────
def test_clean_removes_dist_and_dev_template(project, project_config):
    css = project / "web/frontend/css/style.css"
    css.parent.mkdir(parents=True)
    css.write_text("")
    dev_template = project / "app/Resources/AcmeWebBundle/views/Layout/_js_footer.html.twig"
    dev_template.parent.mkdir(parents=True)
    dev_template.write_text("")

    build_tasks.clean(context(project_config))

    assert not (project / "web/frontend").exists()
    assert not dev_template.exists()
    assert (project / "web/vendor/jquery/dist/jquery.js").exists()


def test_clean_refuses_paths_outside_project(project):
    config = Configuration(
        data={"project": {}},
        vars={"distPath": "../elsewhere"},
        source_path=project / ".groundcontrollrc",
    )
    with pytest.raises(ConfigValidationError, match="Refusing to clean"):
        build_tasks.clean(context(config))


def test_inject_prod_scripts_in_place(project, project_config):
    build_tasks.inject_prod_scripts(context(project_config, allow_chmod=True))

    template = project / "src/Acme/WebBundle/Resources/views/Layout/_js_footer.html.twig"
    assert '<script src="/frontend/js/footer.min.js"></script>' in template.read_text()
    assert template.stat().st_mode & 0o777 == 0o777


def test_inject_prod_scripts_without_chmod(project, project_config):
    build_tasks.inject_prod_scripts(context(project_config, allow_chmod=False))

    template = project / "src/Acme/WebBundle/Resources/views/Layout/_js_footer.html.twig"
    assert template.stat().st_mode & 0o777 != 0o777


def test_scripts_dev_and_inject_dev_scripts(project, project_config):
    ctx = context(project_config)
    build_tasks.scripts_dev(ctx)
    build_tasks.inject_dev_scripts(ctx)

    assert (project / "web/frontend/js/jquery.js").exists()
    assert (project / "web/frontend/js/app.js").exists()
    dev_template = project / "app/Resources/AcmeWebBundle/views/Layout/_js_footer.html.twig"
    text = dev_template.read_text()
    assert text.index('src="/frontend/js/jquery.js"') < text.index('src="/frontend/js/app.js"')


def test_styleguide_dev_js_injects_into_pages(project, project_config):
    page = project / "web/frontend/styleguide/index.html"
    page.parent.mkdir(parents=True)
    page.write_text("<!-- inject:js --><!-- endinject -->")

    build_tasks.styleguide_dev_js(context(project_config))
    assert 'src="/frontend/js/app.js"' in page.read_text()


def test_changed_files(tmp_path):
    src = tmp_path / "src"
    dest = tmp_path / "dest"
    (src / "icons").mkdir(parents=True)
    (dest / "icons").mkdir(parents=True)
    fresh = src / "icons" / "new.png"
    stale = src / "old.png"
    same = src / "icons" / "same.png"
    for path in (fresh, stale, same):
        path.write_bytes(b"")
    (dest / "old.png").write_bytes(b"")
    os.utime(dest / "old.png", (1, 1))
    (dest / "icons" / "same.png").write_bytes(b"")
    os.utime(same, (1, 1))

    pairs = changed_files([(fresh, src), (stale, src), (same, src)], dest)
    assert pairs == [(fresh, dest / "icons" / "new.png"), (stale, dest / "old.png")]


# ─────────────────────────────────────────────────────────────────────────────
# Command tasks
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_styles_failure_has_sass_header(project_config, create_proc):
    proc = create_proc(stdout=b"Error: Invalid CSS\n", returncode=1)
    with patch("asyncio.create_subprocess_shell", return_value=proc) as mock_create:
        with pytest.raises(ShellCommandError) as exc_info:
            await build_tasks.styles(context(project_config, name="styles"))

    command = mock_create.call_args.args[0]
    assert command.endswith("src/Acme/WebBundle/Resources/ui/scss:web/frontend/css")
    assert exc_info.value.header == "SASS Compilation Error"
    assert exc_info.value.detail == "Error: Invalid CSS"


@pytest.mark.asyncio
async def test_jshint_never_fails(project, project_config, create_proc):
    proc = create_proc(stdout=b"app.js: Missing semicolon.\n", returncode=2)
    with patch("asyncio.create_subprocess_shell", return_value=proc) as mock_create:
        await build_tasks.jshint(context(project_config, name="jshint"))

    command = mock_create.call_args.args[0]
    assert "ui/js/app.js" in command
    assert "vendors" not in command


@pytest.mark.asyncio
async def test_configured_command_overrides_default(project, create_proc):
    config = Configuration(
        data={
            "commands": {"styles": "sassc {{ scssFolder }} {{ dist.css }}"},
            "scssFolder": "scss",
            "dist": {"css": "css"},
        },
        source_path=project / "rc.json",
    )
    with patch("asyncio.create_subprocess_shell", return_value=create_proc()) as mock_create:
        await build_tasks.styles(context(config, name="styles"))
    assert mock_create.call_args.args[0] == "sassc scss css"


@pytest.mark.asyncio
async def test_scripts_prod_uglifies_footer(project, project_config, create_proc):
    with patch("asyncio.create_subprocess_shell", return_value=create_proc()) as mock_create:
        await build_tasks.scripts_prod(context(project_config, name="scripts-prod"))

    command = mock_create.call_args.args[0]
    assert command.index("jquery.js") < command.index("app.js")
    assert command.endswith(f"--output {project / 'web/frontend/js/footer.min.js'}")


@pytest.mark.asyncio
async def test_scripts_prod_requires_footer_files(project):
    config = Configuration(data={"js": {"footer": ["nowhere/*.js"]}}, source_path=project / "rc.json")
    with pytest.raises(ConfigValidationError, match="No footer scripts"):
        await build_tasks.scripts_prod(context(config))


@pytest.mark.asyncio
async def test_images_only_changed(project, project_config, create_proc):
    with patch("asyncio.create_subprocess_shell", return_value=create_proc()) as mock_create:
        await build_tasks.images(context(project_config, name="images"))
    assert mock_create.call_count == 1
    assert mock_create.call_args.args[0].endswith(f"--out-dir={project / 'web/frontend/img'}")

    # Output now up to date
    optimized = project / "web/frontend/img/logo.png"
    optimized.write_bytes(b"")
    with patch("asyncio.create_subprocess_shell", return_value=create_proc()) as mock_create:
        await build_tasks.images(context(project_config, name="images"))
    mock_create.assert_not_called()


@pytest.mark.asyncio
async def test_images_mirror_each_pattern_base(project, create_proc):
    (project / "assets/icons").mkdir(parents=True)
    (project / "assets/icons/home.png").write_bytes(b"")
    (project / "media/photos").mkdir(parents=True)
    (project / "media/photos/team.jpg").write_bytes(b"")
    config = Configuration(
        data={
            "img": ["assets/**/*.png", "media/**/*.jpg"],
            "dist": {"img": "web/frontend/img"},
        },
        source_path=project / ".groundcontrollrc",
    )

    with patch("asyncio.create_subprocess_shell", return_value=create_proc()) as mock_create:
        await build_tasks.images(context(config, name="images"))

    out_dirs = [call.args[0].rsplit("--out-dir=", 1)[1] for call in mock_create.call_args_list]
    assert out_dirs == [
        str(project / "web/frontend/img/icons"),
        str(project / "web/frontend/img/photos"),
    ]


@pytest.mark.asyncio
async def test_fixperms_runs_in_tools_dir(project_config, create_proc, catalogue):
    registry, _, _ = catalogue
    action = registry.get("fixperms").action
    with patch("asyncio.create_subprocess_shell", return_value=create_proc()) as mock_create:
        await action(context(project_config, name="fixperms"))

    assert mock_create.call_args.args[0] == "sudo python fixperms.py Acme"
    assert mock_create.call_args.kwargs["cwd"] == "/opt/kDeploy/tools"
