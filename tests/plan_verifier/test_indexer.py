import itertools
import os
import threading
from pathlib import Path

import pytest

from services.plan_verifier.app.domain.indexer import FileKind, build_index
from services.plan_verifier.app.domain.types import CaseStyle, SymbolKind
from services.plan_verifier.app.errors import CodebaseIndexError, IndexCancelled, PermissionWarning


@pytest.fixture
def codebase(make_tree) -> Path:
    return make_tree(
        "repo",
        {
            "README.md": "# Repo\n",
            "pyproject.toml": "[tool.pytest]\nname = 'repo'\n",
            "src/app/user_service.py": "class UserService:\n    def find_user(self):\n        pass\n",
            "src/app/payment-client.ts": "export function createClient() {}\nexport const sendPayment = async (x) => x;\n",
            "tests/test_user_service.py": "def test_find_user():\n    pass\n",
            "node_modules/left-pad/index.js": "module.exports = 1;\n",
            "docs/guide.md": "Guide\n",
        },
    )


def test_build_index_is_sorted_and_classified(codebase):
    index = build_index(codebase, workers=4)

    paths = [item.path for item in index.files]
    assert paths == sorted(paths)
    assert "node_modules/left-pad/index.js" not in paths
    assert not index.partial

    service = index.get("src/app/user_service.py")
    assert service.kind is FileKind.source
    assert service.style is CaseStyle.snake
    assert service.words == ("user", "service")
    assert index.get("tests/test_user_service.py").kind is FileKind.test
    assert index.get("pyproject.toml").kind is FileKind.config
    assert index.get("docs/guide.md").kind is FileKind.docs
    assert index.has_directory("src/app")
    assert index.has_path("./src/app/user_service.py")


def test_build_index_extracts_symbols(codebase):
    index = build_index(codebase)

    assert [symbol.kind for symbol in index.symbols_named("UserService")] == [SymbolKind.type]
    assert index.symbols_named("find_user")[0].line == 2
    assert index.symbols_named("sendPayment")[0].kind is SymbolKind.function
    assert index.symbols_named("createClient")
    assert index.symbols_named("tool.pytest")[0].kind is SymbolKind.config_key


def test_build_index_is_stable_across_worker_counts(codebase):
    serial = build_index(codebase, workers=1)
    parallel = build_index(codebase, workers=8)

    assert serial.files == parallel.files


def test_custom_excludes_replace_defaults(codebase):
    index = build_index(codebase, exclude_dirs={"docs"})

    assert index.has_file("node_modules/left-pad/index.js")
    assert not index.has_file("docs/guide.md")


def test_missing_root_raises(tmp_path):
    with pytest.raises(CodebaseIndexError):
        build_index(tmp_path / "missing")


def test_file_root_raises(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(CodebaseIndexError):
        build_index(target)


def test_unreadable_subtree_is_skipped_with_warning(codebase, monkeypatch):
    real_scandir = os.scandir

    def guarded_scandir(path):
        if Path(path).name == "docs":
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", guarded_scandir)

    with pytest.warns(PermissionWarning, match="docs"):
        index = build_index(codebase)

    assert index.partial
    assert index.skipped == ("docs",)
    assert index.has_file("src/app/user_service.py")
    assert not index.has_file("docs/guide.md")


def test_timeout_returns_partial_index(codebase):
    ticks = itertools.chain([0.0], itertools.repeat(10.0))

    index = build_index(codebase, timeout_ms=5, workers=1, clock=lambda: next(ticks))

    assert index.partial
    assert index.timed_out
    # Top-level files are read before any subtree walk starts.
    assert index.has_file("README.md")
    assert not index.has_file("src/app/user_service.py")


def test_cancelled_walk_raises(codebase):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(IndexCancelled):
        build_index(codebase, cancel_event=cancel)


def test_large_files_are_indexed_without_symbols(codebase):
    index = build_index(codebase, max_file_bytes=10)

    assert index.has_file("src/app/user_service.py")
    assert index.get("src/app/user_service.py").symbols == ()
