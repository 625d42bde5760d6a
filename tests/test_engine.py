from __future__ import annotations

import ctypes
import json
import unittest
from types import SimpleNamespace

from support import FakeEngineLibrary

from mdsvg.engine import GoString, NativeEngineRenderer, decode_payload
from mdsvg.errors import DiagramParseError, RenderError


def _board(name="", content="", *, folder=False, label=None, layers=None, scenarios=None, steps=None):
    return {
        "name": name,
        "isFolderOnly": folder,
        "content": content,
        "root": {"id": "", "id_val": "", "attributes": {"label": {"value": label or ""}}},
        "layers": layers,
        "scenarios": scenarios,
        "steps": steps,
    }


class _TypedEntry:
    """Callable exposing the same signature attributes as a ctypes function."""

    argtypes = None
    restype = "unset"

    def __init__(self, func) -> None:
        self._func = func

    def __call__(self, *args):
        return self._func(*args)


class NativeEngineRendererTests(unittest.TestCase):
    def test_decodes_nested_boards_and_releases_buffer(self) -> None:
        payload = _board(
            "",
            "<svg>root</svg>",
            label="Plan",
            layers=[_board("core", "<svg>core</svg>")],
            steps=[_board("1", "<svg>one</svg>"), _board("2", "<svg>two</svg>")],
        )
        library = FakeEngineLibrary(json.dumps(payload))
        renderer = NativeEngineRenderer(library)

        result = renderer.render("x -> y")

        self.assertEqual(library.sources, ["x -> y"])
        self.assertEqual(result.content, "<svg>root</svg>")
        self.assertEqual(result.title, "Plan")
        self.assertEqual([child.name for child in result.layers], ["core"])
        self.assertEqual(result.scenarios, [])
        self.assertEqual([child.content for child in result.steps], ["<svg>one</svg>", "<svg>two</svg>"])
        self.assertEqual(len(library.freed), 1)
        self.assertEqual(library.outstanding, 0)

    def test_parse_error_payload(self) -> None:
        error = {
            "message": "",
            "parse_error": {
                "errs": [
                    {"range": "index.d2,1:4:12-1:9:17", "errmsg": "unexpected text after map key"},
                ]
            },
        }
        library = FakeEngineLibrary("err:" + json.dumps(error))
        renderer = NativeEngineRenderer(library)

        with self.assertRaises(DiagramParseError) as ctx:
            renderer.render("a: {\n  b c d\n")

        diagnostic = ctx.exception.diagnostics[0]
        self.assertEqual((diagnostic.line, diagnostic.column), (2, 5))
        self.assertIn("unexpected text after map key", str(ctx.exception))
        self.assertEqual(ctx.exception.column, 5)
        self.assertEqual(library.outstanding, 0)
        self.assertEqual(len(library.freed), 1)

    def test_plain_error_message(self) -> None:
        library = FakeEngineLibrary('err:{"message": "layers count mismatch", "parse_error": null}')
        with self.assertRaises(RenderError) as ctx:
            NativeEngineRenderer(library).render("x")
        self.assertNotIsInstance(ctx.exception, DiagramParseError)
        self.assertIn("layers count mismatch", str(ctx.exception))
        self.assertEqual(library.outstanding, 0)

    def test_null_result_is_an_error(self) -> None:
        library = FakeEngineLibrary(None)
        with self.assertRaises(RenderError) as ctx:
            NativeEngineRenderer(library).render("x")
        self.assertIn("null", str(ctx.exception))
        self.assertEqual(library.freed, [])

    def test_malformed_payload_is_an_error_and_still_released(self) -> None:
        library = FakeEngineLibrary("{not json")
        with self.assertRaises(RenderError):
            NativeEngineRenderer(library).render("x")
        self.assertEqual(library.outstanding, 0)

        library = FakeEngineLibrary(b"\xff\xfe")
        with self.assertRaises(RenderError):
            NativeEngineRenderer(library).render("x")
        self.assertEqual(library.outstanding, 0)

    def test_payload_without_content_is_an_error(self) -> None:
        library = FakeEngineLibrary(json.dumps({"name": "x", "layers": []}))
        with self.assertRaises(RenderError):
            NativeEngineRenderer(library).render("x")
        self.assertEqual(library.outstanding, 0)

    def test_describe_uses_compile_entry_point(self) -> None:
        graph = {
            "name": "",
            "isFolderOnly": False,
            "root": {"attributes": {"label": {"value": "Plan"}}},
            "layers": [{"name": "core", "isFolderOnly": False, "root": None}],
            "scenarios": None,
            "steps": None,
        }
        library = FakeEngineLibrary(json.dumps(_board(content="<svg/>")), json.dumps(graph))
        outline = NativeEngineRenderer(library).describe("x")
        self.assertEqual(outline.title, "Plan")
        self.assertEqual(outline.content, "")
        self.assertEqual(outline.layers[0].name, "core")
        self.assertEqual(library.outstanding, 0)

    def test_describe_without_compile_export(self) -> None:
        library = FakeEngineLibrary(json.dumps(_board(content="<svg/>")))
        self.assertIsNone(NativeEngineRenderer(library).describe("x"))

    def test_signatures_bound_on_entries_that_accept_them(self) -> None:
        library = FakeEngineLibrary(json.dumps(_board(content="<svg/>")))
        exports = SimpleNamespace(Render=_TypedEntry(library.Render), Free=_TypedEntry(library.Free))

        result = NativeEngineRenderer(exports).render("x")

        self.assertEqual(result.content, "<svg/>")
        self.assertEqual(exports.Render.argtypes, [GoString])
        self.assertIs(exports.Render.restype, ctypes.c_void_p)
        self.assertEqual(exports.Free.argtypes, [ctypes.c_void_p])
        self.assertIsNone(exports.Free.restype)
        self.assertEqual(library.outstanding, 0)

    def test_library_without_render_export(self) -> None:
        class Empty:
            pass

        with self.assertRaises(RenderError):
            NativeEngineRenderer(Empty(), free=lambda address: None)

    def test_load_without_configured_library(self) -> None:
        with self.assertRaises(RenderError):
            NativeEngineRenderer.load("/nonexistent/libd2-mdsvg-test.so")


class DecodePayloadTests(unittest.TestCase):
    def test_error_sentinel_with_unparseable_body(self) -> None:
        with self.assertRaises(RenderError) as ctx:
            decode_payload("err:boom")
        self.assertIn("boom", str(ctx.exception))

    def test_success_payload(self) -> None:
        self.assertEqual(decode_payload('{"name": "x"}'), {"name": "x"})


if __name__ == "__main__":
    unittest.main()
