"""Native D2 engine reached through a cgo shared library.

The library exports ``Render(GoString) *C.char`` and optionally
``Compile(GoString) *C.char`` and ``Free(*C.char)``. Every returned string is
either a JSON document or ``err:`` followed by a JSON error object::

    {"message": "...", "parse_error": {"errs": [{"range": "path,0:4:4-0:9:9", "errmsg": "..."}]}}

Each call hands one malloc'd buffer to the caller, which decodes it and frees
it exactly once.
"""
from __future__ import annotations

import ctypes
import ctypes.util
import json
import logging
import os
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

from .errors import DiagramParseError, RenderError
from .renderers import CHILD_KINDS, DiagramResult, Renderer

_log = logging.getLogger(__name__)

ERROR_PREFIX = "err:"
LIBRARY_ENV = "MDSVG_D2_LIBRARY"
_RANGE_RE = re.compile(r"^([^,]*),(\d+):(\d+):(\d+)-(\d+):(\d+):(\d+)$")


class GoString(ctypes.Structure):
    _fields_ = [("p", ctypes.c_char_p), ("n", ctypes.c_int64)]


@dataclass(frozen=True)
class ParseDiagnostic:
    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    end_line: Optional[int] = None

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        where = f"line {self.line}"
        if self.column is not None:
            where += f", column {self.column}"
        return f"{where}: {self.message}"


class NativeEngineRenderer(Renderer):
    """Render D2 source with the bundled engine library."""

    def __init__(self, library: Any, *, free: Optional[Callable[[int], None]] = None) -> None:
        self._render = _bind(library, "Render")
        if self._render is None:
            raise RenderError("D2 engine library does not export Render")
        self._compile = _bind(library, "Compile")
        self._free = free or _bind_free(library)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "NativeEngineRenderer":
        path = path or os.getenv(LIBRARY_ENV) or ctypes.util.find_library("d2")
        if not path:
            raise RenderError(
                f"no D2 engine library configured; set the library option or {LIBRARY_ENV}"
            )
        try:
            library = ctypes.CDLL(path)
        except OSError as exc:
            raise RenderError(f"failed to load D2 engine library {path}: {exc}") from exc
        _log.debug("loaded D2 engine from %s", path)
        return cls(library)

    def render(self, source: str) -> DiagramResult:
        payload = self._call(self._render, source)
        return _decode_node(payload, with_content=True)

    def describe(self, source: str) -> Optional[DiagramResult]:
        if self._compile is None:
            return None
        payload = self._call(self._compile, source)
        return _decode_node(payload, with_content=False)

    def _call(self, entry: Callable, source: str) -> Any:
        encoded = source.encode("utf-8")
        pointer = entry(GoString(encoded, len(encoded)))
        with self._owned_string(pointer) as raw:
            text = raw
        return decode_payload(text)

    @contextmanager
    def _owned_string(self, pointer: Optional[int]) -> Iterator[str]:
        try:
            if not pointer:
                raise RenderError("D2 engine returned a null result")
            try:
                yield ctypes.string_at(pointer).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise RenderError(f"D2 engine returned invalid UTF-8: {exc}") from exc
        finally:
            if pointer:
                self._free(pointer)


def decode_payload(text: str) -> Any:
    """Decode one engine string, raising for error payloads."""
    if text.startswith(ERROR_PREFIX):
        raise _decode_error(text[len(ERROR_PREFIX):])
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise RenderError(f"D2 engine returned malformed JSON: {exc}") from exc


def _decode_error(text: str) -> RenderError:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError:
        return RenderError(f"D2 engine error: {text.strip() or 'unknown error'}")
    if not isinstance(raw, dict):
        return RenderError(f"D2 engine error: {text.strip()}")

    parse_error = raw.get("parse_error")
    if isinstance(parse_error, dict):
        diagnostics = [_decode_diagnostic(err) for err in parse_error.get("errs") or []]
        if diagnostics:
            details = "\n".join(f"  {diag}" for diag in diagnostics)
            return DiagramParseError(f"D2 parse error\n{details}", diagnostics)
    return RenderError(str(raw.get("message") or "unknown D2 error"))


def _decode_diagnostic(raw: Any) -> ParseDiagnostic:
    if not isinstance(raw, dict):
        return ParseDiagnostic(str(raw))
    message = str(raw.get("errmsg") or raw.get("message") or "syntax error")
    match = _RANGE_RE.match(str(raw.get("range") or ""))
    if match is None:
        return ParseDiagnostic(message)
    # engine positions are 0-based
    return ParseDiagnostic(
        message,
        line=int(match.group(2)) + 1,
        column=int(match.group(3)) + 1,
        end_line=int(match.group(5)) + 1,
    )


def _decode_node(raw: Any, *, with_content: bool) -> DiagramResult:
    if not isinstance(raw, dict):
        raise RenderError(f"D2 engine returned an unexpected payload: {type(raw).__name__}")
    content = raw.get("content") if with_content else ""
    if with_content and not isinstance(content, str):
        raise RenderError("D2 engine payload is missing rendered content")
    node = DiagramResult(
        name=str(raw.get("name") or ""),
        content=content or "",
        is_folder_only=bool(raw.get("isFolderOnly", raw.get("is_folder_only", False))),
        title=_root_label(raw.get("root")),
    )
    for kind in CHILD_KINDS:
        children: List[Any] = raw.get(kind) or []
        if not isinstance(children, list):
            raise RenderError(f"D2 engine payload field {kind!r} is not a list")
        node.children(kind).extend(_decode_node(child, with_content=with_content) for child in children)
    return node


def _root_label(root: Any) -> Optional[str]:
    try:
        label = root["attributes"]["label"]["value"]
    except (KeyError, TypeError):
        return None
    return label or None


def _bind(library: Any, name: str) -> Optional[Callable]:
    entry = getattr(library, name, None)
    if entry is None:
        return None
    if hasattr(entry, "argtypes"):
        entry.argtypes = [GoString]
        entry.restype = ctypes.c_void_p
    return entry


def _bind_free(library: Any) -> Callable[[int], None]:
    entry = getattr(library, "Free", None)
    if entry is None:
        # C.CString allocates with malloc
        libc = ctypes.CDLL(ctypes.util.find_library("c"))
        entry = libc.free
    if hasattr(entry, "argtypes"):
        entry.argtypes = [ctypes.c_void_p]
        entry.restype = None
    return entry
