"""Build-wide table of generated diagram names."""
from __future__ import annotations

import re
import threading
from pathlib import PurePosixPath
from typing import Optional, Set

from .errors import NameCollisionError

_NON_ALNUM_RE = re.compile(r"[\W_]+")
FALLBACK_NAME = "diagram"


def slugify(value: str) -> str:
    return _NON_ALNUM_RE.sub("_", value.lower()).strip("_")


class NameTable:
    """Unique names for every diagram view of one build.

    Create one per build. Names are stable between builds as long as
    ``allocate`` is called in the same order, so callers allocate in book
    order and document order rather than in render completion order.
    """

    def __init__(self) -> None:
        self._names: Set[str] = set()
        self._lock = threading.Lock()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def allocate(self, chapter_path: str, index: int, label: Optional[str] = None) -> str:
        path = PurePosixPath(chapter_path.replace("\\", "/"))
        stem = slugify(str(path.with_suffix(""))) if path.name else ""
        suffix = (slugify(label) if label else "") or str(index)
        base = "_".join(part for part in (stem, suffix) if part) or FALLBACK_NAME
        return self.reserve(base)

    def reserve(self, base: str) -> str:
        base = base or FALLBACK_NAME
        with self._lock:
            candidate = base
            idx = 1
            while candidate in self._names:
                candidate = f"{base}_{idx}"
                idx += 1
            self._names.add(candidate)
            return candidate

    def claim(self, name: str) -> str:
        """Register ``name`` exactly as given; it must not be taken yet."""
        with self._lock:
            if name in self._names:
                raise NameCollisionError(f'diagram name "{name}" is already in use')
            self._names.add(name)
            return name
