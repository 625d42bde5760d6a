"""Public API for mdsvg."""
__version__ = "0.1.0"

from .blocks import DiagramBlock, extract_blocks
from .engine import NativeEngineRenderer
from .errors import (
    ConfigError,
    DiagramError,
    DiagramParseError,
    NameCollisionError,
    ProcessSpawnError,
    RenderError,
    RenderTimeoutError,
    StreamIOError,
    StructuralMismatchError,
    UnterminatedBlockError,
)
from .flatten import RenderedView, flatten
from .names import NameTable
from .preprocessor import Preprocessor
from .renderers import DiagramResult, ProcessRenderer, Renderer
from .theme import ThemeColor, rewrite_theme_colors

__all__ = [
    "ConfigError",
    "DiagramBlock",
    "DiagramError",
    "DiagramParseError",
    "DiagramResult",
    "NameCollisionError",
    "NameTable",
    "NativeEngineRenderer",
    "Preprocessor",
    "ProcessRenderer",
    "ProcessSpawnError",
    "RenderError",
    "RenderTimeoutError",
    "RenderedView",
    "Renderer",
    "StreamIOError",
    "StructuralMismatchError",
    "ThemeColor",
    "UnterminatedBlockError",
    "extract_blocks",
    "flatten",
    "rewrite_theme_colors",
]
