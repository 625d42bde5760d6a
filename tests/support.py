from __future__ import annotations

import ctypes
import sys
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from mdsvg.renderers import DiagramResult, Renderer

# Stand-in for `dot -Tsvg`: echoes the source into an SVG, fails on "invalid".
FAKE_DOT_SCRIPT = r"""
import sys
source = sys.stdin.read()
if "invalid" in source:
    sys.stderr.write("Error: <stdin>: syntax error in line 1 near 'invalid'\n")
    sys.exit(1)
if "warn" in source:
    sys.stderr.write("Warning: node 'warn' redefined\n")
print('<?xml version="1.0" encoding="UTF-8" standalone="no"?>')
print('<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" "http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">')
print('<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">')
print('  <g id="graph0"><path fill="#010101" stroke="#010101" d="M0 0"/></g>')
print('  <text>%d lines</text>' % len(source.splitlines()))
print('</svg>')
"""

FAKE_DOT_ARGS = ["-c", FAKE_DOT_SCRIPT]


class StaticRenderer(Renderer):
    """Renderer returning canned results keyed by the stripped block source."""

    def __init__(self, results=None, outlines=None) -> None:
        self.results = results or {}
        self.outlines = outlines or {}
        self.calls = []

    def render(self, source: str) -> DiagramResult:
        self.calls.append(source)
        result = self.results.get(source.strip())
        if isinstance(result, Exception):
            raise result
        if result is None:
            return DiagramResult(content=f"<svg><text>{source.strip()}</text></svg>")
        return result

    def describe(self, source: str):
        return self.outlines.get(source.strip())


class FakeEngineLibrary:
    """In-process stand-in for the cgo D2 library.

    Returns real C buffers so the renderer's ``string_at`` and release logic
    run unchanged; ``freed`` records every released address.
    """

    def __init__(self, render_payload, compile_payload=None) -> None:
        self._render_payload = render_payload
        self._compile_payload = compile_payload
        self._buffers = {}
        self.sources = []
        self.freed = []
        if compile_payload is None:
            self.Compile = None

    def _hand_out(self, payload):
        if payload is None:
            return None
        buffer = ctypes.create_string_buffer(payload.encode("utf-8") if isinstance(payload, str) else payload)
        address = ctypes.addressof(buffer)
        self._buffers[address] = buffer
        return address

    def Render(self, go_string):
        self.sources.append(go_string.p[: go_string.n].decode("utf-8"))
        return self._hand_out(self._render_payload)

    def Compile(self, go_string):
        return self._hand_out(self._compile_payload)

    def Free(self, address):
        self.freed.append(address)
        self._buffers.pop(address)

    @property
    def outstanding(self) -> int:
        return len(self._buffers)
