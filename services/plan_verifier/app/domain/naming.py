"""Identifier tokenizing and casing-style helpers.

Names are compared by their word sequence and casing style rather than by
literal identity, so ``UserAuth``, ``user_auth`` and ``user-auth`` all
tokenize to ``("user", "auth")`` and differ only in style.
"""
from __future__ import annotations

import re
from collections import Counter
from typing import Iterable

from .types import CaseStyle

_SEPARATOR_RE = re.compile(r"[-_.\s/\\]+")
_WORD_RE = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z0-9]+")

# Single lowercase words carry no separator, so they fit any lowercase-led style.
_FLAT_COMPATIBLE = {CaseStyle.snake, CaseStyle.kebab, CaseStyle.camel, CaseStyle.flat}
_SNAKE_FILE_EXTENSIONS = {".py", ".pyi", ".rb", ".rs", ".go", ".ex", ".exs", ".erl", ".sql", ".c", ".h"}


def split_words(name: str) -> tuple[str, ...]:
    words: list[str] = []
    for chunk in _SEPARATOR_RE.split(name):
        if chunk:
            words.extend(part.lower() for part in _WORD_RE.findall(chunk))
    return tuple(words)


def classify_style(name: str) -> CaseStyle:
    core = name.strip("_")
    if not core:
        return CaseStyle.mixed
    has_upper = any(ch.isupper() for ch in core)
    has_lower = any(ch.islower() for ch in core)
    if "-" in core and "_" not in core:
        return CaseStyle.mixed if has_upper else CaseStyle.kebab
    if "_" in core and "-" not in core:
        if not has_lower:
            return CaseStyle.upper_snake
        return CaseStyle.mixed if has_upper else CaseStyle.snake
    if "-" in core or "_" in core or not core.replace("$", "").isalnum():
        return CaseStyle.mixed
    if not has_upper:
        return CaseStyle.flat
    if not has_lower:
        return CaseStyle.upper_snake
    return CaseStyle.pascal if core[0].isupper() else CaseStyle.camel


def render(words: Iterable[str], style: CaseStyle) -> str:
    parts = [word.lower() for word in words if word]
    if style is CaseStyle.snake:
        return "_".join(parts)
    if style is CaseStyle.upper_snake:
        return "_".join(part.upper() for part in parts)
    if style is CaseStyle.pascal:
        return "".join(part.capitalize() for part in parts)
    if style is CaseStyle.camel:
        return parts[0] + "".join(part.capitalize() for part in parts[1:]) if parts else ""
    if style is CaseStyle.flat:
        return "".join(parts)
    return "-".join(parts)


def is_compatible(claimed: CaseStyle, observed: CaseStyle) -> bool:
    if claimed is observed:
        return True
    return claimed in _FLAT_COMPATIBLE and observed in _FLAT_COMPATIBLE and CaseStyle.flat in (claimed, observed)


def dominant_style(styles: Iterable[CaseStyle]) -> CaseStyle | None:
    """Most frequent multi-word style; ties resolve in declaration order."""
    counts = Counter(style for style in styles if style not in (CaseStyle.flat, CaseStyle.mixed))
    if not counts:
        return None
    order = list(CaseStyle)
    return min(counts, key=lambda style: (-counts[style], order.index(style)))


def default_file_style(extension: str) -> CaseStyle:
    return CaseStyle.snake if extension.lower() in _SNAKE_FILE_EXTENSIONS else CaseStyle.kebab


def split_file_name(name: str) -> tuple[str, str]:
    """Split ``user.service.ts`` into ``("user", ".service.ts")``."""
    leading = len(name) - len(name.lstrip("."))
    body = name[leading:]
    if "." not in body:
        return name, ""
    stem, _, rest = body.partition(".")
    return name[:leading] + stem, "." + rest


def restyle_file_name(name: str, style: CaseStyle) -> str:
    stem, suffix = split_file_name(name)
    leading = stem[: len(stem) - len(stem.lstrip("._"))]
    return leading + render(split_words(stem), style) + suffix


__all__ = [
    "classify_style",
    "default_file_style",
    "dominant_style",
    "is_compatible",
    "render",
    "restyle_file_name",
    "split_file_name",
    "split_words",
]
