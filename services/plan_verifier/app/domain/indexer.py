"""Read-only codebase indexing.

The walk is split into one unit of work per top-level subdirectory and run on
a thread pool; results are merged and sorted by path so the index does not
depend on worker interleaving.
"""
from __future__ import annotations

import enum
import os
import re
import threading
import time
import warnings
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable

import structlog

from ..config import DEFAULT_EXCLUDE_DIRS
from ..errors import CodebaseIndexError, IndexCancelled, PermissionWarning
from .naming import classify_style, split_file_name, split_words
from .types import CaseStyle, SymbolKind

logger = structlog.get_logger(__name__)


class FileKind(enum.Enum):
    source = "source"
    test = "test"
    config = "config"
    docs = "docs"
    other = "other"


SOURCE_EXTENSIONS = {
    ".py", ".pyi", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".go", ".rs", ".java", ".kt",
    ".kts", ".scala", ".rb", ".php", ".cs", ".swift", ".c", ".h", ".cc", ".cpp", ".hpp", ".m",
    ".ex", ".exs", ".dart", ".lua", ".vue", ".svelte", ".sql", ".sh",
}
CONFIG_EXTENSIONS = {".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".env", ".properties"}
DOC_EXTENSIONS = {".md", ".rst", ".txt", ".adoc"}
_CONFIG_NAMES = {"dockerfile", "makefile", "procfile", ".env", ".gitignore", ".editorconfig"}
_CONFIG_DIRS = {"config", "configs", "conf", "settings", ".github"}
_TEST_DIRS = {"test", "tests", "__tests__", "spec", "specs", "testing", "e2e"}
_DOC_DIRS = {"doc", "docs", "documentation"}

_TYPE_PATTERNS = (
    re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+|sealed\s+|data\s+)?(?:public\s+|private\s+|internal\s+)?(?:final\s+)?(?:class|interface|enum|trait|struct|protocol)\s+([A-Za-z_$][\w$]*)"),
    re.compile(r"^\s*(?:export\s+)?type\s+([A-Z][\w$]*)\s*(?:<[^=]*>)?\s*="),
    re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:struct|enum|trait)\s+([A-Za-z_]\w*)"),
    re.compile(r"^\s*type\s+([A-Za-z_]\w*)\s+(?:struct|interface)\b"),
)
_FUNCTION_PATTERNS = (
    re.compile(r"^\s*(?:async\s+)?def\s+([A-Za-z_]\w*)\s*\("),
    re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*([A-Za-z_$][\w$]*)\s*[(<]"),
    re.compile(r"^\s*(?:export\s+)?(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*(?::[^=]+)?=\s*(?:async\s+)?(?:\([^)]*\)|[A-Za-z_$][\w$]*)\s*(?::[^=]+)?=>"),
    re.compile(r"^\s*func\s+(?:\([^)]*\)\s*)?([A-Za-z_]\w*)\s*\("),
    re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?fn\s+([A-Za-z_]\w*)"),
    re.compile(r"^\s*def\s+(?:self\.)?([a-z_]\w*[?!]?)"),
)
_CONFIG_KEY_PATTERNS = (
    re.compile(r"""^\s{0,2}["']?([A-Za-z_][\w.-]*)["']?\s*[:=]"""),
    re.compile(r"^\s*\[([A-Za-z_][\w.-]*)\]\s*$"),
)


@dataclass(frozen=True)
class Symbol:
    name: str
    kind: SymbolKind
    path: str
    line: int


@dataclass(frozen=True)
class IndexedFile:
    path: str
    parts: tuple[str, ...]
    directory: str
    name: str
    stem: str
    suffix: str
    extension: str
    kind: FileKind
    words: tuple[str, ...]
    style: CaseStyle
    symbols: tuple[Symbol, ...] = ()


@dataclass(frozen=True)
class CodebaseIndex:
    """Immutable snapshot of a codebase, passed explicitly to every stage."""

    root: str
    files: tuple[IndexedFile, ...]
    partial: bool = False
    timed_out: bool = False
    skipped: tuple[str, ...] = ()
    _by_path: dict[str, IndexedFile] = field(init=False, repr=False, compare=False)
    _directories: frozenset[str] = field(init=False, repr=False, compare=False)
    _symbols: dict[str, tuple[Symbol, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_path = {item.path: item for item in self.files}
        directories: set[str] = set()
        symbols: dict[str, list[Symbol]] = defaultdict(list)
        for item in self.files:
            parent = PurePosixPath(item.path).parent
            while str(parent) != ".":
                directories.add(str(parent))
                parent = parent.parent
            for symbol in item.symbols:
                symbols[symbol.name].append(symbol)
        object.__setattr__(self, "_by_path", by_path)
        object.__setattr__(self, "_directories", frozenset(directories))
        object.__setattr__(self, "_symbols", {name: tuple(found) for name, found in symbols.items()})

    def has_file(self, path: str) -> bool:
        return normalize_path(path) in self._by_path

    def has_directory(self, path: str) -> bool:
        normalized = normalize_path(path)
        return normalized in ("", ".") or normalized in self._directories

    def has_path(self, path: str) -> bool:
        return self.has_file(path) or self.has_directory(path)

    def get(self, path: str) -> IndexedFile | None:
        return self._by_path.get(normalize_path(path))

    def symbols_named(self, name: str) -> tuple[Symbol, ...]:
        return self._symbols.get(name, ())

    def symbols(self, kind: SymbolKind | None = None) -> Iterable[Symbol]:
        for item in self.files:
            for symbol in item.symbols:
                if kind is None or symbol.kind is kind:
                    yield symbol

    @property
    def directories(self) -> frozenset[str]:
        return self._directories


def normalize_path(path: str) -> str:
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.strip("/")


def infer_kind(parts: tuple[str, ...], name: str, extension: str) -> FileKind:
    lowered_dirs = {part.lower() for part in parts[:-1]}
    lowered = name.lower()
    if (
        lowered_dirs & _TEST_DIRS
        or lowered.startswith("test_")
        or re.search(r"(_test|\.test|\.spec|_spec)\.[^.]+$", lowered)
    ):
        return FileKind.test
    if extension in CONFIG_EXTENSIONS or lowered in _CONFIG_NAMES or lowered_dirs & _CONFIG_DIRS:
        return FileKind.config
    if extension in DOC_EXTENSIONS or lowered_dirs & _DOC_DIRS:
        return FileKind.docs
    if extension in SOURCE_EXTENSIONS:
        return FileKind.source
    return FileKind.other


def extract_symbols(text: str, path: str, extension: str) -> tuple[Symbol, ...]:
    found: list[Symbol] = []
    seen: set[tuple[str, SymbolKind]] = set()
    if extension in CONFIG_EXTENSIONS:
        groups = ((_CONFIG_KEY_PATTERNS, SymbolKind.config_key),)
    else:
        groups = ((_TYPE_PATTERNS, SymbolKind.type), (_FUNCTION_PATTERNS, SymbolKind.function))
    for line_no, line in enumerate(text.splitlines(), start=1):
        for patterns, kind in groups:
            for pattern in patterns:
                match = pattern.match(line)
                if not match:
                    continue
                name = match.group(1)
                if (name, kind) not in seen:
                    seen.add((name, kind))
                    found.append(Symbol(name=name, kind=kind, path=path, line=line_no))
                break
    return tuple(found)


class _WalkState:
    def __init__(self, deadline: float | None, clock: Callable[[], float], cancel_event: threading.Event | None) -> None:
        self._deadline = deadline
        self._clock = clock
        self._cancel_event = cancel_event
        self._lock = threading.Lock()
        self.timed_out = False

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def should_stop(self) -> bool:
        if self.cancelled:
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            with self._lock:
                self.timed_out = True
            return True
        return False


class _Indexer:
    def __init__(self, root: Path, excludes: set[str], max_file_bytes: int, state: _WalkState) -> None:
        self._root = root
        self._exclude_names = {entry for entry in excludes if "/" not in entry}
        self._exclude_prefixes = {normalize_path(entry) for entry in excludes if "/" in entry}
        self._max_file_bytes = max_file_bytes
        self._state = state

    def is_excluded(self, rel_path: str, name: str) -> bool:
        if name in self._exclude_names:
            return True
        return any(rel_path == prefix or rel_path.startswith(prefix + "/") for prefix in self._exclude_prefixes)

    def walk(self, rel_dir: str) -> tuple[list[IndexedFile], list[str]]:
        """Walk one subtree; returns indexed files and skipped directories."""
        files: list[IndexedFile] = []
        skipped: list[str] = []
        pending = [rel_dir]
        while pending:
            if self._state.should_stop():
                break
            current = pending.pop()
            try:
                with os.scandir(self._root / current if current else self._root) as entries:
                    listing = sorted(entries, key=lambda entry: entry.name)
            except PermissionError:
                logger.warning("indexer.subtree_skipped", path=current or ".", reason="permission denied")
                skipped.append(current or ".")
                continue
            except OSError as exc:
                logger.warning("indexer.subtree_skipped", path=current or ".", reason=str(exc))
                skipped.append(current or ".")
                continue
            for entry in listing:
                rel_path = f"{current}/{entry.name}" if current else entry.name
                if entry.is_dir(follow_symlinks=False):
                    if not self.is_excluded(rel_path, entry.name):
                        pending.append(rel_path)
                elif entry.is_file():
                    files.append(self.index_file(rel_path, entry))
        return files, skipped

    def index_file(self, rel_path: str, entry: os.DirEntry) -> IndexedFile:
        parts = tuple(rel_path.split("/"))
        name = parts[-1]
        stem, suffix = split_file_name(name)
        extension = os.path.splitext(name)[1].lower()
        symbols: tuple[Symbol, ...] = ()
        if extension in SOURCE_EXTENSIONS or extension in CONFIG_EXTENSIONS:
            symbols = self._read_symbols(rel_path, entry, extension)
        return IndexedFile(
            path=rel_path,
            parts=parts,
            directory="/".join(parts[:-1]),
            name=name,
            stem=stem,
            suffix=suffix,
            extension=extension,
            kind=infer_kind(parts, name, extension),
            words=split_words(stem),
            style=classify_style(stem),
            symbols=symbols,
        )

    def _read_symbols(self, rel_path: str, entry: os.DirEntry, extension: str) -> tuple[Symbol, ...]:
        try:
            if entry.stat().st_size > self._max_file_bytes:
                return ()
            text = Path(entry.path).read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            logger.debug("indexer.file_unreadable", path=rel_path, reason=str(exc))
            return ()
        return extract_symbols(text, rel_path, extension)


def build_index(
    root: str | os.PathLike[str],
    exclude_dirs: Iterable[str] | None = None,
    *,
    workers: int | None = None,
    timeout_ms: int = 0,
    cancel_event: threading.Event | None = None,
    max_file_bytes: int = 512_000,
    clock: Callable[[], float] = time.monotonic,
) -> CodebaseIndex:
    """Index ``root`` into an immutable :class:`CodebaseIndex`.

    Raises :class:`CodebaseIndexError` when the root is missing or unreadable
    and :class:`IndexCancelled` when ``cancel_event`` is set during the walk.
    Unreadable subtrees are skipped with a :class:`PermissionWarning` and mark
    the index partial, as does hitting the soft ``timeout_ms``.
    """
    root_path = Path(root)
    if not root_path.exists():
        raise CodebaseIndexError(f"Codebase root does not exist: {root_path}")
    if not root_path.is_dir():
        raise CodebaseIndexError(f"Codebase root is not a directory: {root_path}")
    if not os.access(root_path, os.R_OK | os.X_OK):
        raise CodebaseIndexError(f"Codebase root is not readable: {root_path}")

    excludes = set(DEFAULT_EXCLUDE_DIRS if exclude_dirs is None else exclude_dirs)
    deadline = clock() + timeout_ms / 1000 if timeout_ms > 0 else None
    state = _WalkState(deadline, clock, cancel_event)
    indexer = _Indexer(root_path, excludes, max_file_bytes, state)

    try:
        with os.scandir(root_path) as entries:
            top_level = sorted(entries, key=lambda entry: entry.name)
    except OSError as exc:
        raise CodebaseIndexError(f"Codebase root is not readable: {root_path}") from exc

    files: list[IndexedFile] = []
    subtrees: list[str] = []
    for entry in top_level:
        if entry.is_dir(follow_symlinks=False):
            if not indexer.is_excluded(entry.name, entry.name):
                subtrees.append(entry.name)
        elif entry.is_file():
            files.append(indexer.index_file(entry.name, entry))

    skipped: list[str] = []
    max_workers = workers or min(32, os.cpu_count() or 1)
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="plan-verifier-index") as pool:
        for subtree_files, subtree_skipped in pool.map(indexer.walk, subtrees):
            files.extend(subtree_files)
            skipped.extend(subtree_skipped)

    if state.cancelled:
        logger.info("indexer.cancelled", root=str(root_path), files_discarded=len(files))
        raise IndexCancelled(f"Indexing of {root_path} was cancelled")

    for path in sorted(skipped):
        warnings.warn(f"Skipped unreadable subtree: {path}", PermissionWarning, stacklevel=2)

    files.sort(key=lambda item: item.path)
    index = CodebaseIndex(
        root=str(root_path),
        files=tuple(files),
        partial=bool(skipped) or state.timed_out,
        timed_out=state.timed_out,
        skipped=tuple(sorted(skipped)),
    )
    logger.info(
        "indexer.completed",
        root=str(root_path),
        files=len(index.files),
        partial=index.partial,
        timed_out=index.timed_out,
    )
    return index


__all__ = [
    "CodebaseIndex",
    "FileKind",
    "IndexedFile",
    "Symbol",
    "build_index",
    "extract_symbols",
    "infer_kind",
    "normalize_path",
]
