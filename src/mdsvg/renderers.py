"""Renderer backends turning diagram source into SVG."""
from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .errors import ProcessSpawnError, RenderError, RenderTimeoutError, StreamIOError

_log = logging.getLogger(__name__)

CHILD_KINDS = ("layers", "scenarios", "steps")
DEFAULT_TIMEOUT = 30.0


@dataclass
class DiagramResult:
    """One rendered board; boards nest through layers, scenarios and steps."""

    name: str = ""
    content: str = ""
    is_folder_only: bool = False
    title: Optional[str] = None
    layers: List["DiagramResult"] = field(default_factory=list)
    scenarios: List["DiagramResult"] = field(default_factory=list)
    steps: List["DiagramResult"] = field(default_factory=list)

    def children(self, kind: str) -> List["DiagramResult"]:
        if kind not in CHILD_KINDS:
            raise ValueError(f"unknown child kind {kind!r}")
        return getattr(self, kind)


class Renderer(ABC):
    @abstractmethod
    def render(self, source: str) -> DiagramResult:
        """Render ``source``; raise ``RenderError`` on failure."""

    def describe(self, source: str) -> Optional[DiagramResult]:
        """Return a semantic tree parallel to ``render`` output, if the backend has one."""
        return None


class ProcessRenderer(Renderer):
    """Pipe diagram source through an external command such as ``dot -Tsvg``."""

    def __init__(
        self,
        executable: str = "dot",
        arguments: Sequence[str] = ("-Tsvg",),
        *,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
    ) -> None:
        self.executable = executable
        self.arguments = list(arguments)
        self.timeout = timeout

    def render(self, source: str) -> DiagramResult:
        command = [self.executable, *self.arguments]
        _log.debug("running %s", " ".join(command))
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise ProcessSpawnError(f"failed to execute {self.executable}: {exc}") from exc

        with proc:
            try:
                stdout, stderr = proc.communicate(source, timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                proc.kill()
                proc.communicate()
                raise RenderTimeoutError(
                    f"{self.executable} did not finish within {self.timeout:g}s"
                ) from exc
            except OSError as exc:
                proc.kill()
                raise StreamIOError(f"failed to exchange data with {self.executable}: {exc}") from exc

        detail = (stderr or "").strip()
        if proc.returncode != 0:
            raise ProcessSpawnError(
                f"{self.executable} exited with status {proc.returncode}: {detail or 'unknown error'}"
            )
        if detail:
            raise RenderError(f"{self.executable} reported: {detail}")
        return DiagramResult(content=stdout)
