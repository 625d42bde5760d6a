"""Defer diagram colors to the document theme.

Renderers are configured to paint with placeholder colors (for example
``dot -Ncolor=#010101``). Those placeholders are swapped for CSS references
such as ``var(--fg)`` so the embedded SVG follows whatever theme the reader
picks. Only color-carrying attributes and CSS declarations are rewritten.
"""
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .svg import local_name, parse_svg, serialize_svg

COLOR_PROPERTIES = (
    "fill",
    "stroke",
    "color",
    "stop-color",
    "flood-color",
    "lighting-color",
)
DEFAULT_REFERENCES = {
    "foreground": "var(--fg)",
    "background": "var(--bg)",
}

_TAG_RE = re.compile(r"<([A-Za-z][\w:.-]*)((?:[^<>\"']|\"[^\"]*\"|'[^']*')*?)(/?)>")
_ATTR_RE = re.compile(r"(\s+)([A-Za-z_:][\w:.-]*)(\s*=\s*)(\"[^\"]*\"|'[^']*')")
_STYLE_ELEMENT_RE = re.compile(r"(<style\b[^>]*>)(.*?)(</style\s*>)", re.IGNORECASE | re.DOTALL)
_DECLARATION_RE = re.compile(
    r"(?<![\w-])(" + "|".join(re.escape(p) for p in COLOR_PROPERTIES) + r")(\s*:\s*)([^;}\"']*?)(\s*)(?=[;}\"']|$)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ThemeColor:
    token: str
    placeholder: str
    reference: str = ""

    @property
    def css_reference(self) -> str:
        return self.reference or DEFAULT_REFERENCES.get(self.token, f"var(--{self.token})")


def rewrite_theme_colors(content: str, theme: Sequence[ThemeColor]) -> str:
    """Return ``content`` with theme placeholders replaced.

    Content without any placeholder comes back unchanged, byte for byte.
    """
    if not theme:
        return content
    lookup = {color.placeholder.strip().lower(): color.css_reference for color in theme}

    root = parse_svg(content)
    if root is None:
        return _rewrite_markup(content, lookup)
    changed = False
    for node in root.iter():
        changed = _rewrite_element(node, lookup) or changed
    return serialize_svg(root) if changed else content


def _rewrite_element(node: ET.Element, lookup: Dict[str, str]) -> bool:
    if local_name(node.tag) == "style":
        if not node.text:
            return False
        text = _rewrite_declarations(node.text, lookup)
        if text == node.text:
            return False
        node.text = text
        return True

    moved: List[str] = []
    for name, value in list(node.attrib.items()):
        if name.lower() not in COLOR_PROPERTIES:
            continue
        reference = lookup.get(value.strip().lower())
        if reference is not None:
            moved.append(f"{name.lower()}:{reference}")
            del node.attrib[name]

    style = node.get("style")
    rewritten = _rewrite_declarations(style, lookup) if style is not None else None
    if moved:
        # inline declarations win over moved presentation attributes
        prefix = ";".join(moved)
        rewritten = f"{prefix};{rewritten}" if rewritten and rewritten.strip() else prefix
    if rewritten is None or rewritten == style:
        return bool(moved)
    node.set("style", rewritten)
    return True


def _rewrite_declarations(css: str, lookup: Dict[str, str]) -> str:
    def _swap(match: re.Match) -> str:
        reference = lookup.get(match.group(3).strip().lower())
        if reference is None:
            return match.group(0)
        return f"{match.group(1)}{match.group(2)}{reference}{match.group(4)}"

    return _DECLARATION_RE.sub(_swap, css)


def _rewrite_markup(content: str, lookup: Dict[str, str]) -> str:
    def _rewrite_style_element(match: re.Match) -> str:
        return match.group(1) + _rewrite_declarations(match.group(2), lookup) + match.group(3)

    def _rewrite_tag(match: re.Match) -> str:
        return _rewrite_tag_attributes(match, lookup)

    # <style> bodies first; the tag pass below never looks inside element text.
    content = _STYLE_ELEMENT_RE.sub(_rewrite_style_element, content)
    return _TAG_RE.sub(_rewrite_tag, content)


def _rewrite_tag_attributes(match: re.Match, lookup: Dict[str, str]) -> str:
    tag_name, attributes, self_closing = match.group(1), match.group(2), match.group(3)
    moved: List[Tuple[str, str]] = []
    has_style = False

    def _attr(attr: re.Match) -> str:
        nonlocal has_style
        name = attr.group(2)
        quoted = attr.group(4)
        value = quoted[1:-1]
        if name.lower() == "style":
            has_style = True
            return attr.group(0)
        if name.lower() in COLOR_PROPERTIES:
            reference = lookup.get(value.strip().lower())
            if reference is not None:
                moved.append((name.lower(), reference))
                return ""
        return attr.group(0)

    attributes = _ATTR_RE.sub(_attr, attributes)
    attributes = _ATTR_RE.sub(lambda attr: _rewrite_style_attribute(attr, lookup, moved), attributes)
    if moved and not has_style:
        declarations = ";".join(f"{prop}:{ref}" for prop, ref in moved)
        trailing = len(attributes) - len(attributes.rstrip())
        attributes = attributes[: len(attributes) - trailing] + f' style="{declarations}"' + attributes[len(attributes) - trailing:]
    return f"<{tag_name}{attributes}{self_closing}>"


def _rewrite_style_attribute(attr: re.Match, lookup: Dict[str, str], moved: List[Tuple[str, str]]) -> str:
    if attr.group(2).lower() != "style":
        return attr.group(0)
    quoted = attr.group(4)
    quote, value = quoted[0], quoted[1:-1]
    value = _rewrite_declarations(value, lookup)
    if moved:
        prefix = ";".join(f"{prop}:{ref}" for prop, ref in moved)
        value = f"{prefix};{value}" if value.strip() else prefix
    return f"{attr.group(1)}{attr.group(2)}{attr.group(3)}{quote}{value}{quote}"
