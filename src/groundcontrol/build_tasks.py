# groundcontrol/build_tasks.py
"""
The front-end build task catalogue.

Development tasks:
    default       clean, build for development, generate the style guide, watch
    build         production build (minified, injected, style guide)
    build-deploy  production build without chmod (set at startup via BuildOptions)
    watch         rebuild on change

Maintenance tasks (external commands):
    clear-symfony-cache, migrate, cc, fixperms, maintenance, apachectl,
    install_npm_bower

External transforms are command templates from the configuration's
`commands` table ({{ dotted.name }} lookups into the configuration, plus
`files`/`output`/`out_dir` provided per run); DEFAULT_COMMANDS applies when a
command is not configured.
"""

from __future__ import annotations

import logging
import shutil
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path

from .config_resolver import Configuration
from .exceptions import ConfigValidationError
from .globs import PatternSet
from .inject import inject_file
from .live_reload import LiveReloadClient
from .scheduler import Scheduler
from .shell import ShellStep, shell_task
from .task_definition import TaskContext
from .task_registry import TaskRegistry
from .watcher import Watcher

logger = logging.getLogger(__name__)

DEFAULT_COMMANDS: dict[str, str] = {
    "styles": "bundle exec sass --load-path ./ --style compressed --update {{ scssFolder }}:{{ dist.css }}",
    "jshint": "jshint {{ files }}",
    "uglify": "uglifyjs {{ files }} --mangle \"reserved=['jQuery']\" --output {{ output }}",
    "imagemin": "imagemin {{ files }} --out-dir={{ out_dir }}",
    "styleguide": "bundle exec hologram",
}

DEFAULT_DEPLOY_TOOLS_PATH = "/opt/kDeploy/tools"
PROD_SCRIPT_NAME = "footer.min.js"
DEV_SCRIPT_REBASE = {r'(/[^"]*/)': "/frontend/js/"}


@dataclass(frozen=True)
class BuildOptions:
    """Process-wide switches, fixed at startup and read-only for task actions."""

    show_error_notifications: bool = True
    allow_chmod: bool = True
    """chmod 777 the injected production template (disabled by build-deploy)."""

    live_reload: bool = True
    debounce_ms: int = 100


# ─────────────────────────────────────────────────────────────────────────────
# Configuration helpers
# ─────────────────────────────────────────────────────────────────────────────
def project_root(config: Configuration) -> Path:
    return config.source_path.parent if config.source_path else Path.cwd()


def command_step(config: Configuration, key: str, **kwargs) -> ShellStep:
    template = config.get(f"commands.{key}", DEFAULT_COMMANDS.get(key))
    if not isinstance(template, str) or not template.strip():
        raise ConfigValidationError(f"No command configured for 'commands.{key}'")
    return ShellStep(commands=(template,), **kwargs)


def _main_template(config: Configuration) -> Path:
    """src/<name>/<bundle>/Resources/views/<folder>/<fileName>"""
    root = project_root(config)
    return (
        root / "src" / config.require("project.name") / config.require("project.mainBundle")
        / "Resources" / "views" / config.require("project.mainJsInclude.folder")
        / config.require("project.mainJsInclude.fileName")
    )


def _dev_template_dir(config: Configuration) -> Path:
    """app/Resources/<name><bundle>/views/<folder>"""
    root = project_root(config)
    bundle_dir = config.require("project.name") + config.require("project.mainBundle")
    return (
        root / "app" / "Resources" / bundle_dir / "views"
        / config.require("project.mainJsInclude.folder")
    )


def _sources(config: Configuration, key: str) -> PatternSet:
    return PatternSet(config.require_list(key), root=project_root(config))


def _dist(config: Configuration, key: str) -> Path:
    return project_root(config) / config.require(f"dist.{key}")


def changed_files(sources: list[tuple[Path, Path]], dest_dir: Path) -> list[tuple[Path, Path]]:
    """
    (source, destination) pairs whose destination is missing or older than the source.

    `sources` pairs each file with the static base of the pattern that found
    it; destinations mirror the source layout below that base.
    """
    pairs: list[tuple[Path, Path]] = []
    for source, source_base in sources:
        destination = dest_dir / source.relative_to(source_base)
        if destination.exists() and destination.stat().st_mtime >= source.stat().st_mtime:
            continue
        pairs.append((source, destination))
    return pairs


# ─────────────────────────────────────────────────────────────────────────────
# Task actions
# ─────────────────────────────────────────────────────────────────────────────
async def styles(context: TaskContext) -> None:
    """Compile, prefix and minify stylesheets."""
    step = command_step(context.config, "styles", cwd=str(project_root(context.config)),
                        header="SASS Compilation Error")
    await step(context)


async def jshint(context: TaskContext) -> None:
    """Lint application scripts. Findings are logged; the task never fails."""
    files = [str(p) for p in _sources(context.config, "js.app").expand()]
    if not files:
        logger.info("jshint: no application scripts found")
        return
    step = command_step(context.config, "jshint", check=False,
                        cwd=str(project_root(context.config)))
    await step.with_vars(files=files)(context)


async def scripts_prod(context: TaskContext) -> None:
    """Concatenate and minify footer scripts into footer.min.js."""
    config = context.config
    files = [str(p) for p in _sources(config, "js.footer").expand()]
    if not files:
        raise ConfigValidationError("No footer scripts matched 'js.footer'")
    output = _dist(config, "js") / PROD_SCRIPT_NAME
    output.parent.mkdir(parents=True, exist_ok=True)
    step = command_step(config, "uglify", cwd=str(project_root(config)), header="Javascript Error")
    await step.with_vars(files=files, output=str(output))(context)


def inject_prod_scripts(context: TaskContext) -> None:
    """Inject footer.min.js into the main template, in place."""
    config = context.config
    template = _main_template(config)
    mode = 0o777 if context.options is None or context.options.allow_chmod else None
    inject_file(
        template,
        [_dist(config, "js") / PROD_SCRIPT_NAME],
        template.parent,
        root=project_root(config),
        ignore_path="/web",
        mode=mode,
    )


def scripts_dev(context: TaskContext) -> None:
    """Copy unminified footer scripts to the dist folder."""
    config = context.config
    dest_dir = _dist(config, "js")
    dest_dir.mkdir(parents=True, exist_ok=True)
    for source in _sources(config, "js.footer").expand():
        shutil.copy2(source, dest_dir / source.name)


def inject_dev_scripts(context: TaskContext) -> None:
    """Inject the individual footer scripts (rebased to /frontend/js/) into the dev template."""
    config = context.config
    inject_file(
        _main_template(config),
        _sources(config, "js.footer").expand(),
        _dev_template_dir(config),
        root=project_root(config),
        rebase=DEV_SCRIPT_REBASE,
    )


async def images(context: TaskContext) -> None:
    """Optimize images that changed since their last optimized output."""
    config = context.config
    root = project_root(config)
    dest_dir = _dist(config, "img")

    pending = changed_files(_sources(config, "img").expand_with_bases(), dest_dir)
    if not pending:
        logger.info("images: nothing changed")
        return

    by_dir: dict[Path, list[str]] = defaultdict(list)
    for source, destination in pending:
        by_dir[destination.parent].append(str(source))

    step = command_step(config, "imagemin", cwd=str(root))
    for out_dir, files in by_dir.items():
        out_dir.mkdir(parents=True, exist_ok=True)
        await step.with_vars(files=files, out_dir=str(out_dir))(context)
    logger.info(f"images: optimized {len(pending)} file(s)")


async def styleguide(context: TaskContext) -> None:
    """Generate the static style guide with hologram."""
    config = context.config
    folder = project_root(config) / config.require("styleguideFolder")
    step = command_step(config, "styleguide", cwd=str(folder), header="Styleguide Error")
    await step(context)


def _styleguide_pages(config: Configuration) -> list[Path]:
    return sorted(_dist(config, "styleguide").glob("*.html"))


def styleguide_prod_js(context: TaskContext) -> None:
    config = context.config
    script = _dist(config, "js") / PROD_SCRIPT_NAME
    for page in _styleguide_pages(config):
        inject_file(page, [script], page.parent, root=project_root(config), ignore_path="/web")


def styleguide_dev_js(context: TaskContext) -> None:
    config = context.config
    scripts = _sources(config, "js.footer").expand()
    for page in _styleguide_pages(config):
        inject_file(page, scripts, page.parent, root=project_root(config), rebase=DEV_SCRIPT_REBASE)


def clean(context: TaskContext) -> None:
    """Remove the dist folder and the development template."""
    config = context.config
    root = project_root(config).resolve()
    dist = config.vars.get("distPath") or config.get("distPath")
    if dist:
        dist_path = (root / dist).resolve()
        if dist_path == root or root not in dist_path.parents:
            raise ConfigValidationError(f"Refusing to clean '{dist_path}': not inside {root}")
        if dist_path.exists():
            shutil.rmtree(dist_path)
            logger.debug(f"Removed {dist_path}")
    else:
        logger.warning("clean: no distPath configured, skipping dist folder")

    dev_template = _dev_template_dir(config) / config.require("project.mainJsInclude.fileName")
    dev_template.unlink(missing_ok=True)


# ─────────────────────────────────────────────────────────────────────────────
# Registration
# ─────────────────────────────────────────────────────────────────────────────
def build_watcher(
    scheduler: Scheduler,
    config: Configuration,
    options: BuildOptions,
) -> Watcher:
    """Watch bindings of the original pipeline, taken from the configuration."""
    live_reload = LiveReloadClient() if options.live_reload else None
    watcher = Watcher(
        scheduler,
        project_root(config),
        debounce_ms=options.debounce_ms,
        live_reload=live_reload,
    )
    bindings = [
        ("liveReloadFiles", "styleguide", True),
        ("scss", "styles", False),
        ("js.app", "inject-dev-scripts", False),
        ("img", "images", False),
    ]
    for key, target, reload in bindings:
        if key not in config:
            logger.debug(f"No '{key}' patterns configured, not watching them")
            continue
        watcher.bind(config.require_list(key), target, reload=reload)
    return watcher


def register_build_tasks(
    registry: TaskRegistry,
    config: Configuration,
    options: BuildOptions,
    scheduler: Scheduler,
) -> Watcher:
    """Register the whole catalogue. Returns the watcher behind the `watch` task."""
    tools = config.get("deployToolsPath", DEFAULT_DEPLOY_TOOLS_PATH)

    registry.register("styles", action=styles, description=styles.__doc__)
    registry.register("jshint", action=jshint, description=jshint.__doc__)
    registry.register("scripts-prod", ["jshint"], scripts_prod, scripts_prod.__doc__)
    registry.register("inject-prod-scripts", ["scripts-prod"], inject_prod_scripts, inject_prod_scripts.__doc__)
    registry.register("scripts-dev", ["jshint"], scripts_dev, scripts_dev.__doc__)
    registry.register("inject-dev-scripts", ["scripts-dev"], inject_dev_scripts, inject_dev_scripts.__doc__)
    registry.register("images", action=images, description=images.__doc__)
    registry.register("styleguide", action=styleguide, description=styleguide.__doc__)
    registry.register("styleguide-prod-js", action=styleguide_prod_js)
    registry.register("styleguide-dev-js", action=styleguide_dev_js)
    registry.register("clean", action=clean, description=clean.__doc__)

    registry.register("clear-symfony-cache", action=shell_task("rm -rf app/cache/*"))
    registry.register(
        "migrate", action=shell_task("app/console doctrine:migrations:migrate --no-interaction")
    )
    registry.register(
        "cc",
        action=shell_task([
            "php app/console cache:clear",
            "php app/console assetic:dump",
            "php app/console assets:install web --symlink",
        ]),
    )
    registry.register("fixperms", action=shell_task("sudo python fixperms.py {{ project.name }}", cwd=tools))
    registry.register("maintenance", action=shell_task("sudo python maintenance.py quick", cwd=tools))
    registry.register("apachectl", action=shell_task("sudo apachectl restart", cwd=tools))
    registry.register("install_npm_bower", action=shell_task(["npm install", "bower install"]))

    watcher = build_watcher(scheduler, config, options)

    async def watch(context: TaskContext) -> None:
        await watcher.start()

    registry.register("watch", action=watch, description="Rebuild on file changes")

    registry.register(
        "build",
        ["clean", ["clear-symfony-cache", "styles", "inject-prod-scripts", "images"],
         "styleguide", "styleguide-prod-js"],
        description="Production build",
    )
    registry.register("build-deploy", ["build"], description="Production build without chmod")
    registry.register(
        "default",
        ["clean", ["clear-symfony-cache", "styles", "inject-dev-scripts", "images"],
         "styleguide", "styleguide-dev-js", "watch"],
        description="Development build, then watch",
    )
    logger.debug(f"Registered build catalogue: {registry}")
    return watcher
