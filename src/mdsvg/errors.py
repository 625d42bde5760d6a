"""Error types raised while preprocessing diagram blocks."""
from __future__ import annotations

from typing import Optional


class DiagramError(Exception):
    """Structured error with a stable code and source location."""

    code = "E_DIAGRAM"

    def __init__(
        self,
        message: str,
        *,
        chapter: Optional[str] = None,
        block_index: Optional[int] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.chapter = chapter
        self.block_index = block_index
        self.line = line
        self.column = column

    def with_location(
        self,
        *,
        chapter: Optional[str] = None,
        block_index: Optional[int] = None,
        line: Optional[int] = None,
    ) -> "DiagramError":
        if self.chapter is None:
            self.chapter = chapter
        if self.block_index is None:
            self.block_index = block_index
        if self.line is None:
            self.line = line
        return self

    def location(self) -> str:
        parts = []
        if self.chapter is not None:
            parts.append(self.chapter if self.line is None else f"{self.chapter}({self.line})")
        elif self.line is not None:
            parts.append(f"line {self.line}")
        if self.block_index is not None:
            parts.append(f"block #{self.block_index}")
        return " ".join(parts)

    def __str__(self) -> str:
        location = self.location()
        return f"{location}: {self.message}" if location else self.message


class UnterminatedBlockError(DiagramError):
    code = "E_UNTERMINATED_BLOCK"


class RenderError(DiagramError):
    code = "E_RENDER"


class DiagramParseError(RenderError):
    """Renderer-reported syntax errors.

    ``diagnostics`` holds one entry per reported problem with a line number
    relative to the diagram source (1-based), not to the chapter.
    """

    code = "E_PARSE"

    def __init__(self, message: str, diagnostics=(), **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.diagnostics = list(diagnostics)
        if self.diagnostics and self.column is None:
            self.column = self.diagnostics[0].column


class ProcessSpawnError(RenderError):
    code = "E_PROCESS"


class StreamIOError(RenderError):
    code = "E_STREAM_IO"


class RenderTimeoutError(RenderError):
    code = "E_TIMEOUT"


class NameCollisionError(DiagramError):
    code = "E_NAME_COLLISION"


class StructuralMismatchError(DiagramError):
    code = "E_STRUCTURE"


class ConfigError(DiagramError):
    code = "E_CONFIG"
