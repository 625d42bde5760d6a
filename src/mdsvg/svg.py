"""ElementTree helpers shared by the SVG rewriting passes."""
from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional

_log = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", XLINK_NS)

_XML_DECLARATION_RE = re.compile(r"<\?xml[^>]*\?>")
_DOCTYPE_RE = re.compile(r"<!DOCTYPE[^>]*>", re.IGNORECASE)


def strip_prolog(svg: str) -> str:
    svg = _XML_DECLARATION_RE.sub("", svg)
    return _DOCTYPE_RE.sub("", svg)


def parse_svg(svg: str) -> Optional[ET.Element]:
    """Parse renderer output, or return ``None`` when it is not well-formed XML.

    Callers fall back to text rewriting for ``None``; renderers are free to
    emit HTML-flavoured SVG that expat rejects.
    """
    try:
        return ET.fromstring(strip_prolog(svg).strip())
    except ET.ParseError as exc:
        _log.debug("SVG is not well-formed XML, rewriting as text: %s", exc)
        return None


def serialize_svg(root: ET.Element) -> str:
    return ET.tostring(root, encoding="unicode")


def local_name(tag) -> str:
    # comments and processing instructions carry a factory function as tag
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]
