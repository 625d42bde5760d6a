"""Flatten nested diagram boards into an ordered list of views."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import StructuralMismatchError
from .names import NameTable
from .renderers import CHILD_KINDS, DiagramResult

DEFAULT_TITLE = "index"
_KIND_PREFIX = {"layers": "layer", "scenarios": "scenario", "steps": "step"}


@dataclass(frozen=True)
class RenderedView:
    name: str
    relative_id: Optional[str]
    title: str
    content: str
    path: Tuple[str, ...]


def flatten(
    result: DiagramResult,
    name: str,
    *,
    names: Optional[NameTable] = None,
    outline: Optional[DiagramResult] = None,
    label: Optional[str] = None,
) -> List[RenderedView]:
    """Walk ``result`` depth first, parent before children.

    Children are visited layers first, then scenarios, then steps. ``outline``
    is an optional semantic tree describing the same diagram; it supplies
    titles and must have exactly the same shape as ``result``.
    """
    views: List[RenderedView] = []

    def _walk(
        node: DiagramResult,
        shadow: Optional[DiagramResult],
        relative_id: Optional[str],
        path: Tuple[str, ...],
    ) -> None:
        title = _title(node, shadow, fallback=label if relative_id is None else None)
        path = path + (title,)
        if node.content and not node.is_folder_only:
            if relative_id is None:
                view_name = name
            else:
                base = f"{name}_{relative_id}"
                view_name = names.reserve(base) if names is not None else base
            views.append(RenderedView(view_name, relative_id, title, node.content, path))

        for kind in CHILD_KINDS:
            children = node.children(kind)
            shadow_children = shadow.children(kind) if shadow is not None else None
            if shadow_children is not None and len(shadow_children) != len(children):
                raise StructuralMismatchError(
                    f'{kind} count mismatch at "{relative_id or "root"}": '
                    f"{len(children)} rendered vs {len(shadow_children)} described"
                )
            for idx, child in enumerate(children):
                child_id = f"{_KIND_PREFIX[kind]}_{idx}"
                if relative_id is not None:
                    child_id = f"{relative_id}_{child_id}"
                _walk(
                    child,
                    shadow_children[idx] if shadow_children is not None else None,
                    child_id,
                    path,
                )

    _walk(result, outline, None, ())
    return views


def _title(node: DiagramResult, shadow: Optional[DiagramResult], fallback: Optional[str]) -> str:
    for candidate in (
        shadow.title if shadow is not None else None,
        node.title,
        node.name,
        fallback,
    ):
        if candidate:
            return candidate
    return DEFAULT_TITLE
