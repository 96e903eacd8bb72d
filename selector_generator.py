"""
selector_generator.py

Robust CSS selectors from ElementSnapshot objects. Pure functions, no I/O.

Priority (most stable first):
  1. #id
  2. tag[data-*="..."]   (framework-generated data attributes dropped)
  3. tag.cls1.cls2       (transient-state and generated class names dropped)
  4. ancestor path, up to 3 levels, with :nth-of-type(n) where siblings share a tag

No attempt is made to check that the selector still matches after the page's
markup changes.
"""

from __future__ import annotations

import re
from typing import List, Sequence

from capture_models import ElementSnapshot, NodeSnapshot

_GENERATED_DATA_ATTR_MARKERS = ("react", "vue", "ng-")
_TRANSIENT_CLASS_MARKERS = ("active", "selected", "open", "hover", "dynamic")
_GENERATED_CLASS_RE = re.compile(r"^([a-f0-9]{4,}|ng-|react-|vue-)")
_MIN_CLASS_LEN = 3
_PATH_DEPTH = 3


def _quote(value: str) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def stable_data_attributes(node: NodeSnapshot) -> List[str]:
    out: List[str] = []
    for name, value in node.attributes.items():
        if not name.startswith("data-"):
            continue
        if any(marker in name for marker in _GENERATED_DATA_ATTR_MARKERS):
            continue
        out.append(f"[{name}={_quote(value)}]")
    return out


def stable_classes(classes: Sequence[str]) -> List[str]:
    out: List[str] = []
    for cls in classes:
        cls = (cls or "").strip()
        if len(cls) < _MIN_CLASS_LEN:
            continue
        if any(marker in cls for marker in _TRANSIENT_CLASS_MARKERS):
            continue
        if _GENERATED_CLASS_RE.match(cls):
            continue
        out.append(cls)
    return out


def _path_segment(node: NodeSnapshot) -> str:
    segment = node.tag or "*"
    aria_label = node.attr("aria-label")
    name = node.attr("name")
    type_attr = node.attr("type")
    if aria_label:
        segment += f"[aria-label={_quote(aria_label)}]"
    elif name:
        segment += f"[name={_quote(name)}]"
    elif type_attr is not None:
        segment += f"[type={_quote(type_attr)}]"

    if node.same_tag_count > 1:
        segment += f":nth-of-type({node.same_tag_index})"
    return segment


def generate_robust_selector(element: ElementSnapshot) -> str:
    tag = element.tag or "*"

    if element.id:
        return f"#{element.id}"

    data_attrs = stable_data_attributes(element)
    if data_attrs:
        return tag + "".join(data_attrs)

    classes = stable_classes(element.classes)
    if classes:
        return tag + "".join(f".{c}" for c in classes)

    chain: List[NodeSnapshot] = [element, *element.ancestors[: _PATH_DEPTH - 1]]
    return " > ".join(_path_segment(node) for node in reversed(chain))


def element_type(element: ElementSnapshot) -> str:
    """Semantic role used in element IDs and ElementRecord.type."""
    tag = element.tag
    input_type = (element.input_type or element.attr("type") or "").lower()
    role = (element.attr("role") or "").lower()

    if tag == "button" or (tag == "input" and input_type == "button") or role == "button":
        return "button"
    if tag == "a":
        return "link"
    if tag == "input":
        return input_type or "input"
    if tag == "select":
        return "select"
    return tag or "unknown"
