"""Locate diagram fences inside chapter markdown."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from markdown_it import MarkdownIt

from .errors import UnterminatedBlockError

# Block-level parsing only; inline rules cannot produce fences.
_PARSER = MarkdownIt("commonmark")
_CONTAINER_PREFIX_RE = re.compile(r"^[ \t>]*")
_LINE_RE = re.compile(r"[^\r\n]*(?:\r\n|\r|\n)|[^\r\n]+\Z")


@dataclass(frozen=True)
class DiagramBlock:
    start: int
    end: int
    marker: str
    label: Optional[str]
    source: str
    index: int
    line: int
    prefix: str = ""

    @property
    def span(self) -> Tuple[int, int]:
        return self.start, self.end


def extract_blocks(text: str, marker: str) -> List[DiagramBlock]:
    """Return the fences of ``text`` opened with ``marker``, in document order.

    Offsets are character offsets into ``text``. A block spans from the
    opening fence markup to the end of the closing fence line, excluding the
    line terminator, so list indentation and blockquote prefixes survive a
    splice untouched. ``prefix`` keeps the opening line's text before the
    fence so replacement lines can stay inside the same container.
    """
    if not marker:
        raise ValueError("diagram marker must not be empty")

    lines = _split_lines(text)
    offsets = _line_offsets(lines)
    blocks: List[DiagramBlock] = []

    for token in _PARSER.parse(text):
        if token.type != "fence" or not token.map:
            continue
        label = _match_marker(token.info, marker)
        if label is False:
            continue

        first, last = token.map
        line = first + 1
        opening = lines[first]
        column = opening.find(token.markup)
        if column < 0:  # pragma: no cover - markdown-it always keeps the markup verbatim
            column = len(_CONTAINER_PREFIX_RE.match(opening).group(0))

        closing_index = last - 1
        if closing_index <= first or not _is_closing_fence(lines[closing_index], token.markup):
            raise UnterminatedBlockError(
                f'"{marker}" block opened with {token.markup} is never closed',
                line=line,
            )

        closing = lines[closing_index]
        blocks.append(
            DiagramBlock(
                start=offsets[first] + column,
                end=offsets[closing_index] + len(closing.rstrip("\r\n")),
                marker=marker,
                label=label,
                source=token.content,
                index=len(blocks),
                line=line,
            )
        )

    return blocks


def _match_marker(info: str, marker: str):
    """Return the block label, ``None`` for no label, or ``False`` for no match."""
    info = info.strip()
    if not info.startswith(marker):
        return False
    rest = info[len(marker):]
    if rest and not rest[0].isspace():
        return False
    return rest.strip() or None


def _is_closing_fence(line: str, markup: str) -> bool:
    body = _CONTAINER_PREFIX_RE.sub("", line.rstrip("\r\n"), count=1)
    fence_char = markup[0]
    stripped = body.rstrip(" \t")
    return (
        len(stripped) >= len(markup)
        and stripped == fence_char * len(stripped)
    )


def _split_lines(text: str) -> List[str]:
    # Same line breaks as markdown-it: \r\n, \r and \n.
    return _LINE_RE.findall(text)


def _line_offsets(lines: List[str]) -> List[int]:
    offsets = []
    position = 0
    for line in lines:
        offsets.append(position)
        position += len(line)
    offsets.append(position)
    return offsets
