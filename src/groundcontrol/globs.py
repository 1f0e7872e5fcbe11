# groundcontrol/globs.py
"""
Gulp-style glob patterns.

Supported syntax:
    *       any characters except '/'
    **      any number of path segments ('a/**/b' also matches 'a/b')
    ?       one character except '/'
    [abc]   character class ([!abc] negates)
    {a,b}   alternatives
    !pat    exclusion (a leading '!' removes matches of the rest of the pattern)

Relative patterns match paths relative to the PatternSet root.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from functools import lru_cache
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

_GLOB_CHARS = set("*?[{")


def _closing_brace(pattern: str, start: int) -> int:
    """Index of the '}' closing the '{' at `start`, or -1."""
    depth = 0
    for j in range(start, len(pattern)):
        if pattern[j] == "{":
            depth += 1
        elif pattern[j] == "}":
            depth -= 1
            if depth == 0:
                return j
    return -1


def _split_alternatives(body: str) -> list[str]:
    """Split a brace body on its top-level commas."""
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    for c in body:
        if c == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
        current.append(c)
    parts.append("".join(current))
    return parts


def _translate(pattern: str) -> str:
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        elif c == "{":
            end = _closing_brace(pattern, i)
            if end == -1:
                out.append(re.escape(c))
            else:
                # Alternatives are globs themselves: {*.png,*.jpg}, {js,vendor/**}
                alternatives = _split_alternatives(pattern[i + 1 : end])
                out.append("(?:" + "|".join(_translate(a) for a in alternatives) + ")")
                i = end + 1
                continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a glob pattern into an anchored regular expression."""
    return re.compile("^" + _translate(pattern) + "$")


def _clean(pattern: str) -> str:
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern


def static_prefix(pattern: str) -> str:
    """Leading path segments of `pattern` that contain no glob characters."""
    parts = PurePosixPath(_clean(pattern)).parts
    static: list[str] = []
    for part in parts:
        if _GLOB_CHARS & set(part):
            break
        static.append(part)
    else:
        # No wildcards at all: the pattern names a single file
        static = static[:-1]
    return str(PurePosixPath(*static)) if static else "."


class PatternSet:
    """
    Ordered include patterns plus '!'-prefixed exclusions, anchored at `root`.

    Example:
        >>> ps = PatternSet(["src/js/**/*.js", "!src/js/vendors/**/*.js"], root="/project")
        >>> ps.matches("/project/src/js/app.js")
        True
    """

    def __init__(self, patterns: str | Iterable[str], root: str | Path = "."):
        if isinstance(patterns, str):
            patterns = [patterns]
        self.root = Path(root).resolve()
        self.includes: list[str] = []
        self.excludes: list[str] = []
        for pattern in patterns:
            if pattern.startswith("!"):
                self.excludes.append(_clean(pattern[1:]))
            else:
                self.includes.append(_clean(pattern))

    def _candidates(self, path: str | Path) -> tuple[str, str | None]:
        absolute = Path(path)
        if not absolute.is_absolute():
            absolute = self.root / absolute
        abs_posix = absolute.resolve().as_posix()
        try:
            rel_posix = absolute.resolve().relative_to(self.root).as_posix()
        except ValueError:
            rel_posix = None
        return abs_posix, rel_posix

    @staticmethod
    def _match_one(pattern: str, abs_posix: str, rel_posix: str | None) -> bool:
        target = abs_posix if pattern.startswith("/") else rel_posix
        return target is not None and glob_to_regex(pattern).match(target) is not None

    def matches(self, path: str | Path) -> bool:
        abs_posix, rel_posix = self._candidates(path)
        if not any(self._match_one(p, abs_posix, rel_posix) for p in self.includes):
            return False
        return not any(self._match_one(p, abs_posix, rel_posix) for p in self.excludes)

    def _base(self, pattern: str) -> Path:
        prefix = Path(static_prefix(pattern))
        return prefix if prefix.is_absolute() else self.root / prefix

    def watch_roots(self) -> list[Path]:
        """Existing directories that must be observed to see every matching file."""
        roots: list[Path] = []
        for pattern in self.includes:
            base = self._base(pattern)
            if not base.is_dir():
                logger.warning(f"Watch root {base} for pattern '{pattern}' does not exist")
                continue
            if base not in roots:
                roots.append(base)
        return roots

    def expand_with_bases(self) -> list[tuple[Path, Path]]:
        """
        Files matching the set, each paired with the static base directory of
        the include pattern that found it (gulp's per-glob `base`).

        Order matters for concatenation steps, so the first pattern's files
        come first (sorted within a pattern) and each file is listed once.
        """
        found: dict[Path, Path] = {}
        for pattern in self.includes:
            base = self._base(pattern)
            if not base.exists():
                continue
            candidates = [base] if base.is_file() else [
                Path(dirpath) / filename
                for dirpath, _dirnames, filenames in os.walk(base)
                for filename in filenames
            ]
            for path in sorted(candidates):
                abs_posix, rel_posix = self._candidates(path)
                if not self._match_one(pattern, abs_posix, rel_posix):
                    continue
                if any(self._match_one(p, abs_posix, rel_posix) for p in self.excludes):
                    continue
                found.setdefault(path.resolve(), base.resolve())
        return list(found.items())

    def expand(self) -> list[Path]:
        """Files matching the set, in include-pattern order."""
        return [path for path, _base in self.expand_with_bases()]

    def __repr__(self) -> str:
        return f"PatternSet(includes={self.includes}, excludes={self.excludes}, root={self.root})"
