"""Precedent lookup for plan claims."""
from __future__ import annotations

import os
from pathlib import PurePosixPath
from typing import Iterable, Sequence

from .indexer import CodebaseIndex, IndexedFile, Symbol, infer_kind, normalize_path
from .naming import classify_style, split_file_name, split_words
from .types import CaseStyle, ClaimKind, Evidence, SymbolKind


def path_distance(directory: str, other: str) -> int:
    """Number of directory hops between two root-relative directories."""
    left = [part for part in directory.split("/") if part]
    right = [part for part in other.split("/") if part]
    common = 0
    for a, b in zip(left, right):
        if a != b:
            break
        common += 1
    return len(left) + len(right) - 2 * common


def looks_like_file(hint: str) -> bool:
    name = PurePosixPath(normalize_path(hint)).name
    return "/" in hint or bool(os.path.splitext(name)[1])


def infer_symbol_kind(name: str) -> SymbolKind:
    if classify_style(name) is CaseStyle.pascal:
        return SymbolKind.type
    return SymbolKind.function


def file_evidence(item: IndexedFile) -> Evidence:
    return Evidence(path=item.path, snippet=item.name, style=item.style, words=item.words)


def symbol_evidence(symbol: Symbol) -> Evidence:
    return Evidence(
        path=symbol.path,
        snippet=symbol.name,
        style=classify_style(symbol.name),
        words=split_words(symbol.name),
        line=symbol.line,
    )


class ConventionExtractor:
    """Gathers precedent instances from an index for a claimed location or name."""

    def __init__(self, index: CodebaseIndex, evidence_cap: int = 10, minimum: int = 3) -> None:
        self._index = index
        self._cap = evidence_cap
        self._minimum = minimum

    @property
    def index(self) -> CodebaseIndex:
        return self._index

    def find_precedents(
        self,
        claim_kind: ClaimKind,
        scope_hint: str,
        *,
        near: str | None = None,
        symbol_kind: SymbolKind | None = None,
    ) -> tuple[Evidence, ...]:
        """Return evidence ordered by proximity to ``scope_hint``; never raises."""
        hint = scope_hint.strip().strip("`")
        if not hint:
            return ()
        if claim_kind is ClaimKind.reference:
            return self._reference_precedents(hint, near)
        if claim_kind is ClaimKind.structural:
            return self._symbol_precedents(hint, near, SymbolKind.config_key)
        if symbol_kind is SymbolKind.file or (symbol_kind is None and looks_like_file(hint)):
            return self._file_precedents(hint)
        return self._symbol_precedents(hint, near, symbol_kind or infer_symbol_kind(hint))

    def _file_precedents(self, hint: str) -> tuple[Evidence, ...]:
        claimed = PurePosixPath(normalize_path(hint))
        directory = "" if str(claimed.parent) == "." else str(claimed.parent)
        _, suffix = split_file_name(claimed.name)
        extension = os.path.splitext(claimed.name)[1].lower()
        claimed_kind = infer_kind(tuple(claimed.parts), claimed.name, extension)
        tiers = [
            lambda item: bool(suffix) and item.suffix == suffix,
            lambda item: bool(extension) and item.extension == extension,
            lambda item: item.directory == directory and item.kind is claimed_kind,
        ]

        chosen: list[IndexedFile] = []
        seen: set[str] = {str(claimed)}
        for tier in tiers:
            matches = [item for item in self._index.files if item.path not in seen and tier(item)]
            matches.sort(key=lambda item: (path_distance(directory, item.directory), item.path))
            for item in matches:
                seen.add(item.path)
                chosen.append(item)
            if len(chosen) >= self._minimum:
                break
        return tuple(file_evidence(item) for item in chosen[: self._cap])

    def _symbol_precedents(self, hint: str, near: str | None, kind: SymbolKind) -> tuple[Evidence, ...]:
        anchor = _anchor_directory(near)
        candidates = [symbol for symbol in self._index.symbols(kind) if symbol.name != hint]
        extension = os.path.splitext(normalize_path(near))[1].lower() if near else ""
        if extension:
            same_language = [symbol for symbol in candidates if symbol.path.lower().endswith(extension)]
            if len(same_language) >= self._minimum:
                candidates = same_language
        return self._closest(candidates, anchor)

    def _reference_precedents(self, hint: str, near: str | None) -> tuple[Evidence, ...]:
        """Exact definitions first, then word-equivalent spellings."""
        name = hint[:-2] if hint.endswith("()") else hint
        name = name.rsplit(".", 1)[-1] if "." in name and not looks_like_file(name) else name
        anchor = _anchor_directory(near)
        words = split_words(name)

        exact = list(self._index.symbols_named(name))
        exact_files = [item for item in self._index.files if name in (item.name, item.stem)]
        variants = [
            symbol
            for symbol in self._index.symbols()
            if symbol.name != name and words and split_words(symbol.name) == words
        ]
        variant_files = [
            item for item in self._index.files if item.stem != name and words and item.words == words
        ]

        ordered = self._closest(exact, anchor) + tuple(
            file_evidence(item) for item in _by_proximity(exact_files, anchor)
        )
        ordered += self._closest(variants, anchor) + tuple(
            file_evidence(item) for item in _by_proximity(variant_files, anchor)
        )
        return ordered[: self._cap]

    def _closest(self, symbols: Sequence[Symbol], anchor: str) -> tuple[Evidence, ...]:
        ranked = sorted(
            symbols,
            key=lambda symbol: (
                path_distance(anchor, _parent(symbol.path)),
                symbol.path,
                symbol.line,
            ),
        )
        unique: list[Symbol] = []
        names: set[str] = set()
        for symbol in ranked:
            if symbol.name in names:
                continue
            names.add(symbol.name)
            unique.append(symbol)
            if len(unique) >= self._cap:
                break
        return tuple(symbol_evidence(symbol) for symbol in unique)


def _parent(path: str) -> str:
    parent = str(PurePosixPath(path).parent)
    return "" if parent == "." else parent


def _anchor_directory(near: str | None) -> str:
    if not near:
        return ""
    normalized = normalize_path(near)
    if looks_like_file(normalized) and os.path.splitext(normalized)[1]:
        return _parent(normalized)
    return normalized


def _by_proximity(items: Iterable[IndexedFile], anchor: str) -> list[IndexedFile]:
    return sorted(items, key=lambda item: (path_distance(anchor, item.directory), item.path))


__all__ = ["ConventionExtractor", "infer_symbol_kind", "looks_like_file", "path_distance"]
