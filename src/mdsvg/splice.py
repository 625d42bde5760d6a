"""Turn rendered views into replacement markup and splice it into chapters."""
from __future__ import annotations

import html
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional, Pattern, Sequence, Set, Tuple

from .blocks import DiagramBlock
from .errors import StreamIOError
from .flatten import RenderedView
from .svg import local_name, parse_svg, serialize_svg, strip_prolog
from .theme import ThemeColor, rewrite_theme_colors

_log = logging.getLogger(__name__)

CONTAINER_CLASS = "svg-container"
TAB_HEADER_ID_PREFIX = "svg-tabs"
TAB_CONTENT_CLASS = "svg-content"
GENERATED_SUFFIX = ".generated.svg"

_BETWEEN_TAGS_RE = re.compile(r">\s+<")
_NEWLINES_RE = re.compile(r"\s*[\r\n]+\s*")
_ID_ATTR_RE = re.compile(r"(\sid\s*=\s*)([\"'])([^\"']+)\2")
_INVALID_ID_CHAR_RE = re.compile(r"[^\w-]")
_LIST_MARKER_RE = re.compile(r"[^>\s]")


def sanitize_html_id(value: str) -> str:
    return _INVALID_ID_CHAR_RE.sub("_", value.replace(".", "-"))


def format_for_inline(svg: str, id_prefix: str) -> str:
    """Make an SVG document safe to drop into a single-line HTML block."""
    svg = strip_prolog(svg)
    root = parse_svg(svg)
    if root is None:
        svg = _scope_ids_in_text(svg, id_prefix)
    elif _scope_ids(root, id_prefix):
        svg = serialize_svg(root)
    svg = _BETWEEN_TAGS_RE.sub("><", svg)
    # a blank line would end the HTML block early
    svg = _NEWLINES_RE.sub(" ", svg)
    return svg.strip()


def _scope_ids(root: ET.Element, prefix: str) -> bool:
    ids = {node.get("id") for node in root.iter() if node.get("id")}
    if not ids:
        return False
    reference_re = _reference_re(ids)

    def _rename(match: re.Match) -> str:
        return f"#{prefix}-{match.group(1)}"

    for node in root.iter():
        for name, value in list(node.attrib.items()):
            if name == "id":
                node.set(name, f"{prefix}-{value}")
            elif "#" in value:
                node.set(name, reference_re.sub(_rename, value))
        if local_name(node.tag) == "style" and node.text:
            node.text = reference_re.sub(_rename, node.text)
    return True


def _scope_ids_in_text(svg: str, prefix: str) -> str:
    ids = {match.group(3) for match in _ID_ATTR_RE.finditer(svg)}
    if not ids:
        return svg
    svg = _ID_ATTR_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{prefix}-{m.group(3)}{m.group(2)}", svg)
    return _reference_re(ids).sub(lambda m: f"#{prefix}-{m.group(1)}", svg)


def _reference_re(ids: Set[str]) -> Pattern:
    return re.compile(r"#(" + "|".join(re.escape(i) for i in sorted(ids, key=len, reverse=True)) + r")(?![\w.:-])")


def render_inline_markup(
    block_name: str,
    views: Sequence[RenderedView],
    theme: Sequence[ThemeColor] = (),
) -> str:
    tabs = ""
    if len(views) > 1:
        items = []
        for position, view in enumerate(views):
            default = " data-tabby-default" if position == 0 else ""
            label = html.escape(" / ".join(view.path[1:]) or view.title)
            items.append(f'<li><a{default} href="#{_content_id(view)}">{label}</a></li>')
        tabs = f'<ul id="{sanitize_html_id(f"{TAB_HEADER_ID_PREFIX}-{block_name}")}">{"".join(items)}</ul>'

    contents = []
    for view in views:
        content_id = _content_id(view)
        svg = format_for_inline(rewrite_theme_colors(view.content, theme), content_id)
        contents.append(f'<div id="{content_id}" class="{TAB_CONTENT_CLASS}">{svg}</div>')

    return f'<div class="{CONTAINER_CLASS}">{tabs}{"".join(contents)}</div>'


def view_file_name(view: RenderedView) -> str:
    return f"{view.name}{GENERATED_SUFFIX}"


def render_file_markup(
    views: Sequence[RenderedView],
    *,
    link_to_file: bool = False,
    label: Optional[str] = None,
) -> str:
    """Reference each view's generated file as a markdown image."""
    references = []
    for view in views:
        file_name = view_file_name(view)
        alt = _escape_markdown_text(label or " / ".join(view.path[1:]) or view.title)
        image = f"![{alt}]({file_name})"
        references.append(f"[{image}]({file_name})" if link_to_file else image)
    return "\n\n".join(references)


def write_view_files(views: Sequence[RenderedView], output_dir: Path) -> List[Path]:
    """Write each view next to its chapter; returns the paths written."""
    written = []
    for view in views:
        output_path = output_dir / view_file_name(view)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(view.content, encoding="utf-8")
        except OSError as exc:
            remove_files(written)
            raise StreamIOError(f"failed to write {output_path}: {exc}") from exc
        written.append(output_path)
        _log.info("Wrote %s", output_path)
    return written


def remove_files(paths: Sequence[Path]) -> None:
    for path in paths:
        path.unlink(missing_ok=True)


def render_block_markup(
    block: DiagramBlock,
    block_name: str,
    views: Sequence[RenderedView],
    *,
    output_to_file: bool = False,
    link_to_file: bool = False,
    theme: Sequence[ThemeColor] = (),
) -> str:
    """Replacement text for ``block``, kept inside the container it opened in."""
    if output_to_file:
        body = render_file_markup(views, link_to_file=link_to_file, label=block.label)
    else:
        body = render_inline_markup(block_name, views, theme)
    return _frame(body, block.prefix)


def _frame(body: str, prefix: str) -> str:
    # blockquote markers repeat on every line; list markers become indentation
    continuation = _LIST_MARKER_RE.sub(" ", prefix)
    blank = continuation.rstrip()
    lines = [continuation + line if line else blank for line in body.split("\n")]
    return "\n" + "\n".join(lines) + "\n" + blank


def splice(text: str, replacements: Sequence[Tuple[int, int, str]]) -> str:
    """Replace each ``(start, end)`` span of ``text``; all other text is copied as is."""
    pieces: List[str] = []
    cursor = 0
    for start, end, replacement in sorted(replacements, key=lambda item: item[0]):
        if start < cursor or end < start or end > len(text):
            raise ValueError(f"invalid or overlapping span {start}:{end}")
        pieces.append(text[cursor:start])
        pieces.append(replacement)
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)


def _content_id(view: RenderedView) -> str:
    return sanitize_html_id(f"{TAB_CONTENT_CLASS}-{view.name}")


def _escape_markdown_text(value: str) -> str:
    return value.replace("\\", "\\\\").replace("[", "\\[").replace("]", "\\]")
