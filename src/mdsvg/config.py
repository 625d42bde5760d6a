"""Preprocessor options read from the mdBook context."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigError
from .renderers import DEFAULT_TIMEOUT
from .theme import ThemeColor

DEFAULT_CSS_PATH = "css/svg.css"


@dataclass(frozen=True)
class PreprocessorSpec:
    name: str
    default_marker: str
    backend: str
    executable: Optional[str] = None
    arguments: Tuple[str, ...] = ()


GRAPHVIZ = PreprocessorSpec("graphviz", "dot process", "process", "dot", ("-Tsvg",))
D2 = PreprocessorSpec("d2-interactive", "d2", "native")
PREPROCESSORS = {spec.name: spec for spec in (GRAPHVIZ, D2)}


@dataclass
class OutputOptions:
    marker: str
    output_to_file: bool = False
    link_to_file: bool = False
    theme: Tuple[ThemeColor, ...] = ()
    executable: Optional[str] = None
    arguments: List[str] = field(default_factory=list)
    timeout: Optional[float] = DEFAULT_TIMEOUT
    library: Optional[str] = None
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    copy_css: Optional[Path] = None
    renderer: str = "html"


def load_options(context: Mapping[str, Any], spec: PreprocessorSpec) -> OutputOptions:
    """Build options for ``spec`` from ``context['config']['preprocessor'][name]``."""
    config = context.get("config") or {}
    table = (config.get("preprocessor") or {}).get(spec.name) or {}
    if not isinstance(table, Mapping):
        raise ConfigError(f"[preprocessor.{spec.name}] must be a table")

    options = OutputOptions(
        marker=spec.default_marker,
        executable=spec.executable,
        arguments=list(spec.arguments),
        renderer=str(context.get("renderer") or "html"),
    )

    if "info-string" in table:
        options.marker = _string(table, "info-string")
        if not options.marker.strip():
            raise ConfigError("info-string option must not be empty")
    if "output-to-file" in table:
        options.output_to_file = _boolean(table, "output-to-file")
    if "link-to-file" in table:
        options.link_to_file = _boolean(table, "link-to-file")
    if "copy-css" in table:
        value = table["copy-css"]
        if isinstance(value, bool):
            options.copy_css = Path(DEFAULT_CSS_PATH) if value else None
        elif isinstance(value, str):
            options.copy_css = Path(value)
        else:
            raise ConfigError("copy-css option is required to be a boolean or a string")
    if "executable" in table:
        options.executable = _string(table, "executable")
    if "arguments" in table:
        value = table["arguments"]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError("arguments option is required to be an array of strings")
        options.arguments = list(value)
    if "timeout" in table:
        value = table["timeout"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError("timeout option is required to be a positive number of seconds")
        options.timeout = float(value)
    if "library" in table:
        options.library = _string(table, "library")
    if "jobs" in table:
        value = table["jobs"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigError("jobs option is required to be a positive integer")
        options.jobs = value
    if "theme" in table:
        options.theme = _theme(table["theme"])

    return options


def _theme(raw: Any) -> Tuple[ThemeColor, ...]:
    if not isinstance(raw, Mapping):
        raise ConfigError("theme option is required to be a table")
    colors = []
    for token, entry in raw.items():
        if isinstance(entry, str):
            colors.append(ThemeColor(token, entry))
            continue
        if not isinstance(entry, Mapping) or not isinstance(entry.get("placeholder"), str):
            raise ConfigError(f"theme.{token} requires a placeholder string")
        reference = entry.get("reference", "")
        if not isinstance(reference, str):
            raise ConfigError(f"theme.{token}.reference is required to be a string")
        colors.append(ThemeColor(token, entry["placeholder"], reference))
    return tuple(colors)


def _string(table: Mapping[str, Any], key: str) -> str:
    value = table[key]
    if not isinstance(value, str):
        raise ConfigError(f"{key} option is required to be a string")
    return value


def _boolean(table: Mapping[str, Any], key: str) -> bool:
    value = table[key]
    if not isinstance(value, bool):
        raise ConfigError(f"{key} option is required to be a boolean")
    return value


def book_source_dir(context: Mapping[str, Any]) -> Path:
    config: Dict[str, Any] = context.get("config") or {}
    src = (config.get("book") or {}).get("src") or "src"
    return Path(context.get("root") or ".") / src
