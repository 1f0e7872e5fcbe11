# groundcontrol/inject.py
"""
Asset injection into templates.

Templates mark where built assets go:

    <!-- inject:js -->
    <!-- endinject -->

inject_assets() replaces the block body with one tag per asset, keeping the
marker comments so the same template can be injected again.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

_BLOCK_RE = re.compile(
    r"(?P<start><!--\s*inject:(?P<tag>\w+)\s*-->)(?P<body>.*?)(?P<end><!--\s*endinject\s*-->)",
    re.DOTALL,
)
_SCRIPT_SRC_RE = re.compile(r'(<script\b[^>]*\bsrc=")([^"]*)(")', re.IGNORECASE)


def asset_url(path: str | Path, *, root: str | Path, ignore_path: str | None = None) -> str:
    """
    Site-absolute URL of an asset file.

    The path is made relative to `root` and prefixed with '/'; a leading
    `ignore_path` ('/web') is stripped afterwards.
    """
    asset = Path(path)
    root_path = Path(root).resolve()
    try:
        relative = asset.resolve().relative_to(root_path).as_posix()
    except ValueError:
        relative = asset.as_posix().lstrip("/")
    url = "/" + relative
    if ignore_path:
        prefix = "/" + ignore_path.strip("/")
        if url == prefix or url.startswith(prefix + "/"):
            url = url[len(prefix):] or "/"
    return url


def render_tag(url: str) -> str:
    if url.endswith(".css"):
        return f'<link rel="stylesheet" href="{url}">'
    return f'<script src="{url}"></script>'


def inject_assets(text: str, urls: Sequence[str], *, tag: str = "js") -> str:
    """Replace the body of every `inject:<tag>` block with tags for `urls`."""
    found = False

    def replace(match: re.Match[str]) -> str:
        nonlocal found
        if match.group("tag") != tag:
            return match.group(0)
        found = True
        line_start = text.rfind("\n", 0, match.start()) + 1
        indent = re.match(r"[ \t]*", text[line_start:match.start()]).group(0)
        lines = [match.group("start")]
        lines.extend(indent + render_tag(url) for url in urls)
        lines.append(indent + match.group("end"))
        return "\n".join(lines)

    result = _BLOCK_RE.sub(replace, text)
    if not found:
        logger.warning(f"No '<!-- inject:{tag} -->' block found, template left unchanged")
    return result


def rebase_scripts(text: str, rules: Mapping[str, str]) -> str:
    """Apply regex `rules` (pattern -> replacement) to every <script src="...">."""
    compiled = [(re.compile(pattern), replacement) for pattern, replacement in rules.items()]

    def replace(match: re.Match[str]) -> str:
        src = match.group(2)
        for pattern, replacement in compiled:
            src = pattern.sub(replacement, src, count=1)
        return match.group(1) + src + match.group(3)

    return _SCRIPT_SRC_RE.sub(replace, text)


def inject_file(
    template: str | Path,
    assets: Sequence[str | Path],
    dest_dir: str | Path,
    *,
    root: str | Path = ".",
    ignore_path: str | None = None,
    rebase: Mapping[str, str] | None = None,
    mode: int | None = None,
) -> Path:
    """
    Inject `assets` into `template` and write the result to `dest_dir`.

    Returns the written path. `mode` (e.g. 0o777) is applied with chmod.
    """
    template_path = Path(template)
    text = template_path.read_text(encoding="utf-8")

    tag = "css" if assets and all(str(a).endswith(".css") for a in assets) else "js"
    urls = [asset_url(a, root=root, ignore_path=ignore_path) for a in assets]
    text = inject_assets(text, urls, tag=tag)
    if rebase:
        text = rebase_scripts(text, rebase)

    destination = Path(dest_dir) / template_path.name
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(text, encoding="utf-8")
    if mode is not None:
        destination.chmod(mode)

    logger.debug(f"Injected {len(urls)} asset(s) into {destination}")
    return destination
