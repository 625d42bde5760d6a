"""Run the diagram pipeline over every chapter of an mdBook book."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Tuple

from . import __version__
from .blocks import DiagramBlock, extract_blocks
from .config import OutputOptions, PreprocessorSpec, book_source_dir, load_options
from .engine import NativeEngineRenderer
from .errors import DiagramError, DiagramParseError
from .flatten import RenderedView, flatten
from .names import NameTable
from .renderers import DiagramResult, ProcessRenderer, Renderer
from .resources import load_stylesheet
from .splice import remove_files, render_block_markup, splice, write_view_files

_log = logging.getLogger(__name__)

STYLESHEET_HEADER = f"/* mdsvg:{__version__} */"


@dataclass
class _PlannedBlock:
    block: DiagramBlock
    name: str


@dataclass
class _PlannedChapter:
    chapter: Dict[str, Any]
    path: str
    text: str
    blocks: List[_PlannedBlock]


class _PreparedChapter(NamedTuple):
    planned: _PlannedChapter
    replacements: List[Tuple[int, int, str]]
    outputs: List[Tuple[_PlannedBlock, Path, List[RenderedView]]]


def build_renderer(spec: PreprocessorSpec, options: OutputOptions) -> Renderer:
    if spec.backend == "native":
        return NativeEngineRenderer.load(options.library)
    return ProcessRenderer(
        options.executable or spec.executable or "dot",
        options.arguments,
        timeout=options.timeout,
    )


class Preprocessor:
    """One diagram preprocessor: a marker, a renderer and output options.

    ``names`` is the build's name table; pass a fresh one per build.
    """

    def __init__(
        self,
        renderer: Renderer,
        options: OutputOptions,
        *,
        src_dir: Path = Path("."),
        names: Optional[NameTable] = None,
    ) -> None:
        self.renderer = renderer
        self.options = options
        self.src_dir = Path(src_dir)
        self.names = names if names is not None else NameTable()

    @classmethod
    def from_context(cls, context: Mapping[str, Any], spec: PreprocessorSpec) -> "Preprocessor":
        options = load_options(context, spec)
        return cls(build_renderer(spec, options), options, src_dir=book_source_dir(context))

    def process_book(self, book: Dict[str, Any]) -> Dict[str, Any]:
        """Rewrite every chapter of ``book`` in place and return it."""
        self.process_chapters(list(iter_chapters(book)))
        return book

    def process_chapter(self, chapter_path: str, text: str) -> str:
        chapter = {"path": chapter_path, "content": text}
        self.process_chapters([chapter])
        return chapter["content"]

    def process_chapters(self, chapters: List[Dict[str, Any]]) -> None:
        planned = [self._plan(chapter) for chapter in chapters]
        pending = [(chapter, item) for chapter in planned for item in chapter.blocks]
        if not pending:
            return

        workers = max(1, min(self.options.jobs, len(pending)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mdsvg-render") as pool:
            futures = [(chapter, item, pool.submit(self._render, item.block)) for chapter, item in pending]
            # every render finishes before any file is written
            try:
                results = {id(item): _located(future, chapter, item) for chapter, item, future in futures}
            except DiagramError:
                pool.shutdown(wait=True, cancel_futures=True)
                raise

        # every replacement is built before the first file is written
        prepared = [self._prepare(chapter, results) for chapter in planned if chapter.blocks]
        self._write_outputs(prepared)
        for chapter, replacements, _outputs in prepared:
            chapter.chapter["content"] = splice(chapter.text, replacements)
            _log.info("%s: rendered %d diagram(s)", chapter.path, len(replacements))

    def _plan(self, chapter: Dict[str, Any]) -> _PlannedChapter:
        path = str(chapter.get("path") or "")
        text = chapter.get("content") or ""
        try:
            blocks = extract_blocks(text, self.options.marker)
        except DiagramError as exc:
            raise exc.with_location(chapter=path)
        planned = [
            _PlannedBlock(block, self.names.allocate(path, block.index, block.label))
            for block in blocks
        ]
        if planned:
            _log.debug("%s: found %d diagram block(s)", path, len(planned))
        return _PlannedChapter(chapter, path, text, planned)

    def _render(self, block: DiagramBlock) -> Tuple[DiagramResult, Optional[DiagramResult]]:
        result = self.renderer.render(block.source)
        return result, self.renderer.describe(block.source)

    def _prepare(
        self,
        chapter: _PlannedChapter,
        results: Dict[int, Tuple[DiagramResult, Optional[DiagramResult]]],
    ) -> _PreparedChapter:
        output_dir = self.src_dir / PurePosixPath(chapter.path).parent
        replacements = []
        outputs = []
        for item in chapter.blocks:
            result, outline = results[id(item)]
            try:
                views = flatten(result, item.name, names=self.names, outline=outline, label=item.block.label)
                markup = render_block_markup(
                    item.block,
                    item.name,
                    views,
                    output_to_file=self.options.output_to_file,
                    link_to_file=self.options.link_to_file,
                    theme=self.options.theme,
                )
            except DiagramError as exc:
                raise _locate(exc, chapter.path, item.block)
            replacements.append((item.block.start, item.block.end, markup))
            if self.options.output_to_file:
                outputs.append((item, output_dir, views))
        return _PreparedChapter(chapter, replacements, outputs)

    def _write_outputs(self, prepared: List[_PreparedChapter]) -> None:
        written: List[Path] = []
        for chapter, _replacements, outputs in prepared:
            for item, output_dir, views in outputs:
                try:
                    written.extend(write_view_files(views, output_dir))
                except DiagramError as exc:
                    remove_files(written)
                    raise _locate(exc, chapter.path, item.block)

    def copy_stylesheet(self, root: Path) -> Optional[Path]:
        if self.options.copy_css is None:
            return None
        target = Path(root) / self.options.copy_css
        if target.exists() and target.read_text(encoding="utf-8").startswith(STYLESHEET_HEADER):
            _log.debug("File already up to date %s", target)
            return target
        _log.info("Creating/Updating %s", target)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(STYLESHEET_HEADER + load_stylesheet(), encoding="utf-8")
        return target


def iter_chapters(book: Mapping[str, Any]) -> Iterator[Dict[str, Any]]:
    """Yield non-draft chapters in book order, parents before sub-chapters."""
    items = book.get("sections")
    if items is None:
        items = book.get("items") or []
    yield from _walk_items(items)


def _walk_items(items: List[Any]) -> Iterator[Dict[str, Any]]:
    for item in items:
        if not isinstance(item, dict) or "Chapter" not in item:
            continue
        chapter = item["Chapter"]
        if chapter.get("path") is not None:
            yield chapter
        yield from _walk_items(chapter.get("sub_items") or [])


def _located(future: Future, chapter: _PlannedChapter, item: _PlannedBlock):
    try:
        return future.result()
    except DiagramError as exc:
        raise _locate(exc, chapter.path, item.block)


def _locate(exc: DiagramError, chapter_path: str, block: DiagramBlock) -> DiagramError:
    line = block.line
    if isinstance(exc, DiagramParseError) and exc.diagnostics and exc.diagnostics[0].line is not None:
        line = block.line + exc.diagnostics[0].line
    return exc.with_location(chapter=chapter_path, block_index=block.index, line=line)
