# groundcontrol/config_resolver.py
"""
ConfigResolver - turns the templated project configuration into an immutable
Configuration value.

Resolution happens once at startup:
1. Parse the variables document (its `vars` table, or the whole document)
2. Deep-merge the file variables over caller-supplied defaults
3. Substitute every `<%= key %>` placeholder in the raw base text
4. Fail if any placeholder is left, then parse the substituted text

Command lines inside the configuration use a second, later template syntax
(`{{ dotted.name }}`), rendered per task run with render_template().
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .exceptions import ConfigParseError, ConfigValidationError

logger = logging.getLogger(__name__)

# Any placeholder left after substitution: <%= name %> (the % marks are optional)
_PLACEHOLDER_RE = re.compile(r"<%?=\s*([\w.\-]+)\s*%?>", re.IGNORECASE)

# {{ name }} command templates
_DOUBLE_BRACE_RE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

_MISSING = object()


# =====================================================================
#   Immutable configuration value
# =====================================================================
def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def lookup(data: Mapping[str, Any], path: str, default: Any = _MISSING) -> Any:
    """
    Look up a dotted path ("dist.css") in nested mappings.

    Raises KeyError if the path does not exist and no default is given.
    """
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif default is _MISSING:
            raise KeyError(path)
        else:
            return default
    return current


@dataclass(frozen=True, eq=False)
class Configuration:
    """
    Immutable, fully resolved project configuration.

    Shared read-only by every component. Nested tables are exposed as
    read-only mappings and arrays as tuples; use to_dict() for a mutable copy.
    """

    data: Mapping[str, Any]
    """Resolved configuration tree."""

    vars: Mapping[str, Any] = field(default_factory=dict)
    """The merged substitution variables the tree was resolved with."""

    source_path: Path | None = None
    """Base document the configuration was read from (None if built in memory)."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", _freeze(self.data))
        object.__setattr__(self, "vars", _freeze(self.vars))

    def get(self, path: str, default: Any = None) -> Any:
        """Dotted lookup returning `default` when the key is absent."""
        return lookup(self.data, path, default)

    def require(self, path: str) -> Any:
        """Dotted lookup that raises ConfigValidationError when the key is absent."""
        try:
            return lookup(self.data, path)
        except KeyError:
            raise ConfigValidationError(
                f"Missing required configuration key '{path}'"
                + (f" in '{self.source_path}'" if self.source_path else "")
            ) from None

    def require_list(self, path: str) -> list[str]:
        """Like require(), but always returns a list of strings (a bare string becomes [s])."""
        value = self.require(path)
        if isinstance(value, str):
            return [value]
        if isinstance(value, tuple) and all(isinstance(v, str) for v in value):
            return list(value)
        raise ConfigValidationError(
            f"Configuration key '{path}' must be a string or a list of strings"
        )

    def to_dict(self) -> dict[str, Any]:
        return _thaw(self.data)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and lookup(self.data, path, _MISSING) is not _MISSING

    def __repr__(self) -> str:
        return f"Configuration(source={self.source_path}, keys={sorted(self.data)})"


# =====================================================================
#   Parsing helpers
# =====================================================================
def parse_document(text: str, path: str | Path | None = None) -> Any:
    """Parse TOML (for *.toml paths) or JSON text, raising ConfigParseError."""
    is_toml = path is not None and Path(path).suffix == ".toml"
    try:
        if is_toml:
            return tomllib.loads(text)
        return json.loads(text)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigParseError(path, str(e)) from None


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigParseError(path, f"cannot read file ({e.strerror or e})") from None


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new dict with `override` merged recursively over `base`."""
    merged: dict[str, Any] = {k: _thaw(v) for k, v in base.items()}
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = _thaw(value)
    return merged


def read_dependency_directory(
    rc_path: str | Path, default: str = "bower_components"
) -> str:
    """
    Read the `directory` field of a package-manager rc file (e.g. `.bowerrc`).

    A missing file yields `default`; a malformed one raises ConfigParseError.
    """
    path = Path(rc_path)
    if not path.exists():
        logger.debug(f"No dependency rc file at {path}, using '{default}'")
        return default
    data = parse_document(_read_text(path), path)
    if not isinstance(data, dict):
        raise ConfigParseError(path, "expected an object at top level")
    directory = data.get("directory", default)
    if not isinstance(directory, str):
        raise ConfigParseError(path, "'directory' must be a string")
    return directory


# =====================================================================
#   Placeholder substitution
# =====================================================================
def _literal(value: Any) -> str | None:
    """Text substituted for a variable, or None when it is not substitutable."""
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return None


def substitute_placeholders(text: str, variables: Mapping[str, Any]) -> str:
    """
    Replace `<%= key %>` tokens (case-insensitive) with each variable's literal text.

    Variables are applied in insertion order. Mapping and list variables are
    skipped: they are only reachable through dotted lookups.
    """
    for key, value in variables.items():
        literal = _literal(value)
        if literal is None:
            logger.debug(f"Variable '{key}' is structured, skipping text substitution")
            continue
        pattern = re.compile(r"<%?=\s*" + re.escape(key) + r"\s*%?>", re.IGNORECASE)
        text = pattern.sub(lambda _m, s=literal: s, text)
    return text


def find_placeholders(text: str) -> list[str]:
    """Names of all placeholders still present in `text`, in order of first appearance."""
    return list(dict.fromkeys(_PLACEHOLDER_RE.findall(text)))


class ConfigResolver:
    """
    Resolves a base configuration document against a variables document.

    The result is computed on first use and cached for the lifetime of the
    resolver (the CLI builds exactly one at startup).

    Variable precedence: `extra_vars` are defaults; variables declared in the
    variables document are deep-merged over them, so a key declared in the
    file wins.
    """

    def __init__(
        self,
        base_config_path: str | Path,
        vars_config_path: str | Path,
        extra_vars: Mapping[str, Any] | None = None,
    ):
        self.base_config_path = Path(base_config_path)
        self.vars_config_path = Path(vars_config_path)
        self.extra_vars = dict(extra_vars or {})
        self._resolved: Configuration | None = None

    def load_variables(self) -> dict[str, Any]:
        """Parse the variables document and merge it over the extra vars."""
        data = parse_document(_read_text(self.vars_config_path), self.vars_config_path)
        if not isinstance(data, dict):
            raise ConfigParseError(self.vars_config_path, "expected an object at top level")
        file_vars = data.get("vars", data)
        if not isinstance(file_vars, dict):
            raise ConfigParseError(self.vars_config_path, "'vars' must be an object")
        return deep_merge(self.extra_vars, file_vars)

    def resolve(self) -> Configuration:
        if self._resolved is not None:
            return self._resolved

        variables = self.load_variables()
        raw = _read_text(self.base_config_path)
        text = substitute_placeholders(raw, variables)

        undefined = find_placeholders(text)
        if undefined:
            logger.warning(f"Unresolved placeholders in {self.base_config_path}: {undefined}")
            raise ConfigParseError(
                self.base_config_path,
                f"undefined variable(s): {', '.join(undefined)}",
                undefined=undefined,
            )

        data = parse_document(text, self.base_config_path)
        if not isinstance(data, dict):
            raise ConfigParseError(self.base_config_path, "expected an object at top level")

        logger.debug(
            f"Resolved {self.base_config_path} with {len(variables)} variables "
            f"({len(data)} top-level keys)"
        )
        self._resolved = Configuration(
            data=data, vars=variables, source_path=self.base_config_path
        )
        return self._resolved


def resolve(
    base_config_path: str | Path,
    vars_config_path: str | Path,
    extra_vars: Mapping[str, Any] | None = None,
) -> Configuration:
    """Resolve a configuration in one call. See ConfigResolver."""
    return ConfigResolver(base_config_path, vars_config_path, extra_vars).resolve()


# =====================================================================
#   {{ var }} command templates
# =====================================================================
def _template_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(shlex.quote(str(v)) for v in value)
    if isinstance(value, Mapping):
        raise ConfigValidationError("Cannot render a table into a command template")
    return str(value)


def render_template(
    template: str,
    variables: Mapping[str, Any],
    *,
    max_nested_depth: int = 10,
) -> str:
    """
    Resolve double-brace {{ var }} templates using dotted lookups into `variables`.

    Supports nested replacements up to `max_nested_depth`. Sequence values are
    rendered as shell-quoted, space-separated words.

    Raises:
        ConfigValidationError: Unknown variable, or expansion never settles (cycle)
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        try:
            return _template_text(lookup(variables, name))
        except KeyError:
            raise ConfigValidationError(
                f"Unknown template variable '{name}' in: {template}"
            ) from None

    current = template
    for _ in range(max_nested_depth):
        new = _DOUBLE_BRACE_RE.sub(replace, current)
        if new == current:
            return new
        current = new

    raise ConfigValidationError(
        f"Exceeded max template expansion depth ({max_nested_depth}), "
        f"possible cycle while resolving template: {template}"
    )
