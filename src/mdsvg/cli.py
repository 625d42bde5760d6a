"""Command-line interface speaking the mdBook preprocessor protocol."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from . import __version__
from .config import D2, GRAPHVIZ, PREPROCESSORS, PreprocessorSpec
from .errors import (
    ConfigError,
    DiagramError,
    DiagramParseError,
    ProcessSpawnError,
    RenderTimeoutError,
    StreamIOError,
    UnterminatedBlockError,
)
from .preprocessor import Preprocessor
from .resources import load_config_example

SUPPORTED_MDBOOK_VERSION = "0.4"

_log = logging.getLogger(__name__)


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser(default_preprocessor: str) -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="mdsvg",
        description="Render diagram code blocks in mdBook chapters to inline SVG.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--preprocessor",
        choices=sorted(PREPROCESSORS),
        default=default_preprocessor,
        help="Which diagram preprocessor to run",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")

    subparsers = parser.add_subparsers(dest="command")

    supports_parser = subparsers.add_parser("supports", help="Check whether a renderer is supported")
    supports_parser.add_argument("renderer")

    subparsers.add_parser("process", help="Preprocess [context, book] JSON from stdin (default)")

    chapter_parser = subparsers.add_parser("chapter", help="Preprocess a single markdown file")
    chapter_parser.add_argument("input", help="Markdown chapter file")
    chapter_parser.add_argument("--stdout", action="store_true", help="Write the chapter to stdout")
    chapter_parser.add_argument("-o", "--output", help="Output markdown path")
    chapter_parser.add_argument("--info-string", help="Marker opening diagram fences")
    chapter_parser.add_argument("--output-to-file", action="store_true", help="Write SVG files next to the chapter")
    chapter_parser.add_argument("--link-to-file", action="store_true", help="Wrap images in links to the SVG files")
    chapter_parser.add_argument("--executable", help="Renderer executable (graphviz)")
    chapter_parser.add_argument("--arguments", nargs="+", metavar="ARG", help="Renderer arguments (graphviz)")
    chapter_parser.add_argument("--timeout", type=float, help="Renderer timeout in seconds")
    chapter_parser.add_argument("--library", help="D2 engine shared library")

    subparsers.add_parser("config", help="Print an example book.toml section")

    return parser


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else os.getenv("MDSVG_LOG", "INFO").upper()
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(asctime)s [%(levelname)s] (%(name)s): %(message)s",
        force=True,
    )


def _read_protocol_input() -> tuple[dict, dict]:
    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no preprocessor input provided",
            hint="Run through mdbook, or pipe [context, book] JSON into stdin.",
            exit_code=2,
        )
    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_INPUT",
            "stdin was empty",
            hint="mdbook pipes [context, book] JSON into preprocessors.",
            exit_code=2,
        )
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise CliError(
            "E_INPUT",
            f"failed to parse preprocessor input: {exc}",
            exit_code=2,
            line=exc.lineno,
            column=exc.colno,
        )
    if not isinstance(payload, list) or len(payload) != 2 or not all(isinstance(p, dict) for p in payload):
        raise CliError(
            "E_INPUT",
            "preprocessor input must be a JSON array [context, book]",
            exit_code=2,
        )
    return payload[0], payload[1]


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


_HINTS = {
    UnterminatedBlockError: "Close the diagram fence with at least as many fence characters as it opened with.",
    DiagramParseError: "Fix the diagram source at the reported line.",
    ProcessSpawnError: "Check that the renderer executable is installed and on PATH.",
    RenderTimeoutError: "Simplify the diagram or raise the timeout option.",
    StreamIOError: "Check file permissions and free space in the book source directory.",
    ConfigError: "Check the [preprocessor] section of book.toml.",
}


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, DiagramError):
        hint = next((text for kind, text in _HINTS.items() if isinstance(exc, kind)), None)
        if isinstance(exc, ConfigError):
            exit_code = 2
        elif isinstance(exc, StreamIOError):
            exit_code = 4
        else:
            exit_code = 3
        return CliError(
            exc.code,
            str(exc),
            hint=hint,
            exit_code=exit_code,
            file=exc.chapter,
            line=exc.line,
            column=exc.column,
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "line": err.line,
            "column": err.column,
            "hint": err.hint,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_process(spec: PreprocessorSpec) -> int:
    context, book = _read_protocol_input()
    version = str(context.get("mdbook_version") or "")
    if not version.startswith(SUPPORTED_MDBOOK_VERSION):
        _log.warning(
            "The %s preprocessor was tested against mdbook %s.x, but is called from mdbook %s",
            spec.name,
            SUPPORTED_MDBOOK_VERSION,
            version or "unknown",
        )

    preprocessor = Preprocessor.from_context(context, spec)
    preprocessor.copy_stylesheet(Path(context.get("root") or "."))
    preprocessor.process_book(book)
    json.dump(book, sys.stdout)
    return 0


def _handle_chapter(args: argparse.Namespace, spec: PreprocessorSpec) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(
            "E_IO_READ",
            f"input file not found: {input_path}",
            exit_code=2,
            file=str(input_path),
        )
    try:
        text = input_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_READ",
            f"failed to read input file: {input_path}",
            hint=str(exc),
            exit_code=2,
            file=str(input_path),
        )

    table: dict[str, Any] = {}
    if args.info_string is not None:
        table["info-string"] = args.info_string
    if args.output_to_file:
        table["output-to-file"] = True
    if args.link_to_file:
        table["link-to-file"] = True
    if args.executable is not None:
        table["executable"] = args.executable
    if args.arguments is not None:
        table["arguments"] = list(args.arguments)
    if args.timeout is not None:
        table["timeout"] = args.timeout
    if args.library is not None:
        table["library"] = args.library
    context = {
        "root": str(input_path.parent),
        "config": {"book": {"src": "."}, "preprocessor": {spec.name: table}},
    }

    preprocessor = Preprocessor.from_context(context, spec)
    result = preprocessor.process_chapter(input_path.name, text)

    if args.stdout or not args.output:
        sys.stdout.write(result)
        return 0
    output_path = Path(args.output)
    _write_text(output_path, result)
    print(f"Wrote {output_path}")
    return 0


def main(argv: Optional[Iterable[str]] = None, *, preprocessor: str = GRAPHVIZ.name) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser(preprocessor)

    debug_enabled = "--debug" in raw_argv or os.getenv("MDSVG_DEBUG") == "1"
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format
        _configure_logging(debug_enabled)
        spec = PREPROCESSORS[args.preprocessor]

        if args.command == "supports":
            # output is markdown images or inline html, which every renderer accepts
            return 0
        if args.command in (None, "process"):
            return _handle_process(spec)
        if args.command == "chapter":
            return _handle_chapter(args, spec)
        if args.command == "config":
            print(load_config_example())
            return 0

        raise CliError(
            "E_ARGS",
            f"unknown command {args.command}",
            hint="Use one of: supports, process, chapter, config.",
            exit_code=2,
        )
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint="Use subcommands: supports, process, chapter, config.",
            exit_code=2,
        )
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


def graphviz_main() -> int:
    return main(preprocessor=GRAPHVIZ.name)


def d2_main() -> int:
    return main(preprocessor=D2.name)


if __name__ == "__main__":
    raise SystemExit(main())
