"""Markdown implementation plan parser.

Supported structure:
- "Task N" headings start tasks; without them the shallowest heading level
  does (a lone leading H1 is the plan title).
- List items and bold "**Step N: ...**" lines become steps.
- "Depends on:" lines declare dependencies on other tasks.
- "Files:" blocks declare the files a task creates or modifies.
- "Run: `cmd`" lines and verification-style steps record verification commands.

Parsing is permissive: fragments that cannot be interpreted become structural
claims flagged for manual review instead of aborting the parse.
"""
from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import PlanParseError
from .indexer import CONFIG_EXTENSIONS, DOC_EXTENSIONS, SOURCE_EXTENSIONS
from .naming import classify_style
from .types import CaseStyle, Claim, ClaimKind, Plan, Step, SymbolKind, Task

HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
TASK_HEADING_RE = re.compile(r"^(?:task|phase|step|milestone)\s+#?(\d+)\b\s*[:.)\-–—]?\s*(.*)$", re.IGNORECASE)
LIST_ITEM_RE = re.compile(r"^(\s*)(?:[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?(.*\S)\s*$")
BOLD_STEP_RE = re.compile(r"^\s*(?:\*\*|__)(step\s+\d+\b.*?)(?:\*\*|__)\s*:?\s*$", re.IGNORECASE)
STEP_PREFIX_RE = re.compile(r"^step\s+\d+\s*[:.)\-–—]?\s*", re.IGNORECASE)
FENCE_RE = re.compile(r"^\s*(`{3,}|~{3,})\s*([\w+#.-]*)")
DEPENDS_RE = re.compile(
    r"^\s*(?:[-*+]\s+)?(?:\*\*|__)?(?:depends\s+on|dependencies|requires|blocked\s+by)(?:\*\*|__)?\s*:\s*(?:\*\*|__)?\s*(.*)$",
    re.IGNORECASE,
)
LABEL_RE = re.compile(r"^\s*(?:\*\*|__)?(files?|run|verify|verification|command|expected|output)(?:\*\*|__)?\s*:\s*(?:\*\*|__)?\s*(.*)$", re.IGNORECASE)
FILE_ACTION_RE = re.compile(r"^(create|new|modify|update|edit|delete|remove|test|tests)\s*:\s*(.*)$", re.IGNORECASE)
DEPENDENCY_REF_RE = re.compile(r"\b(?:task|phase|step)s?\s*#?\s*(\d+(?:\s*(?:,|&|and|or)\s*#?\s*\d+)*)", re.IGNORECASE)

CODE_SPAN_RE = re.compile(r"`([^`\n]+)`")
URL_RE = re.compile(r"\b[a-z][a-z0-9+.-]*://\S+", re.IGNORECASE)
LINE_ANCHOR_RE = re.compile(r"(?:#L\d+(?:-L?\d+)?|:\d+(?:[-:]\d+)?|::[\w\[\]:.-]+)$")
IDENT_RE = re.compile(r"^@?([A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*)(?:\(\))?$")
DECL_RE = re.compile(
    r"^\s*(?:export\s+)?(?:default\s+)?(?:pub\s+)?(?:async\s+)?(def|class|function|interface|fn|func|type|struct|enum)\s+([A-Za-z_$][\w$]*)"
)
CONFIG_ASSIGN_RE = re.compile(r"^([A-Za-z_][\w.-]*)\s*[:=]\s*\S")
NAMED_RE = re.compile(r"\b(?:named|called)\s+[\"']?([A-Za-z_$][\w$.-]*[\w$])", re.IGNORECASE)
BARE_PATH_RE = re.compile(
    r"(?<![\w/.@-])((?:\.{1,2}/)?(?:[\w@.-]+/)+(?:[\w@-]+(?:\.[\w-]+)*)?|[\w@-]+(?:\.[\w-]+)*\.[A-Za-z0-9]+)(?![\w/])"
)
PATH_SEGMENT_RE = re.compile(r"^[\w@.-]+$")
FRAMEWORK_NAME_RE = re.compile(r"^[A-Z][A-Za-z]*\.js$")

KNOWN_EXTENSIONS = (
    SOURCE_EXTENSIONS
    | CONFIG_EXTENSIONS
    | DOC_EXTENSIONS
    | {".html", ".css", ".scss", ".less", ".lock", ".xml", ".csv", ".graphql", ".proto", ".tf", ".ipynb"}
)
FENCE_EXTENSIONS = {
    "python": ".py", "py": ".py", "typescript": ".ts", "ts": ".ts", "tsx": ".tsx", "javascript": ".js",
    "js": ".js", "jsx": ".jsx", "go": ".go", "golang": ".go", "rust": ".rs", "rs": ".rs", "java": ".java",
    "kotlin": ".kt", "ruby": ".rb", "rb": ".rb", "php": ".php", "csharp": ".cs", "cs": ".cs", "swift": ".swift",
}
SHELL_FENCES = {"bash", "sh", "shell", "console", "zsh", "powershell", "ps1", "cmd"}
COMMAND_WORDS = {
    "npm", "npx", "pnpm", "yarn", "pip", "pip3", "python", "python3", "pytest", "go", "cargo", "make", "git",
    "docker", "kubectl", "bash", "sh", "node", "deno", "bun", "uv", "poetry", "tox", "nox", "ruff", "mypy",
    "tsc", "eslint", "jest", "vitest", "curl", "mvn", "gradle", "dotnet", "bundle", "rails", "rake",
    "alembic", "terraform", "helm", "cd", "ls", "cat", "rm", "mv", "cp", "mkdir", "chmod", "psql", "sqlite3",
}
# Commands that run a test or check suite count as verification wherever they appear.
TEST_COMMANDS = (
    "pytest", "python -m pytest", "npm test", "npm run test", "npm run lint", "npm run typecheck", "pnpm test",
    "pnpm run test", "yarn test", "npx jest", "npx vitest", "jest", "vitest", "go test", "go vet", "cargo test",
    "cargo check", "bundle exec rspec", "dotnet test", "mvn test", "gradle test", "make test", "make check",
    "tox", "nox", "ruff", "mypy", "tsc", "eslint",
)
IDENT_STOPWORDS = {
    "true", "false", "null", "none", "nil", "undefined", "self", "this", "cls", "super", "async", "await",
    "return", "yield", "import", "export", "from", "def", "class", "function", "const", "let", "var", "if",
    "else", "for", "while", "try", "except", "catch", "finally", "raise", "throw", "new", "str", "int",
    "float", "bool", "dict", "list", "set", "tuple", "bytes", "object", "any", "string", "number", "boolean",
    "void", "never", "unknown", "id", "main", "todo", "fixme", "pass", "fail", "warn", "ok", "yes", "no",
}

_VERIFY_VERB_RE = re.compile(r"^(?:run|verify|test|check|confirm|ensure|validate|execute|expect)\b", re.IGNORECASE)
_PATH_CREATE_RE = re.compile(
    r"\b(?:create[sd]?|creating|new|scaffold(?:s|ed)?|generate[sd]?|add(?:s|ed)?\s+(?:a\s+)?new)\b", re.IGNORECASE
)
_NAME_CREATE_RE = re.compile(
    r"\b(?:create[sd]?|creating|add(?:s|ed|ing)?|new|introduce[sd]?|define[sd]?|defining|implement(?:s|ed|ing)?"
    r"|write|writes|declare[sd]?|export(?:s|ed)?|extract(?:s|ed)?|named|called|scaffold)\b",
    re.IGNORECASE,
)
_NEW_MARKER_RE = re.compile(r"^\s*\((?:new|to be created|new file)\)", re.IGNORECASE)
_TO_BE_CREATED_RE = re.compile(r"\bto be created\b", re.IGNORECASE)
_CONFIG_CONTEXT_RE = re.compile(
    r"\b(?:config(?:uration)?|settings?|options?|env(?:ironment)?\s+var(?:iable)?s?|feature\s+flags?)\b", re.IGNORECASE
)
_TYPE_CONTEXT_RE = re.compile(r"\b(?:class|interface|type|component|model|enum|struct|schema)\b", re.IGNORECASE)
_FUNCTION_CONTEXT_RE = re.compile(r"\b(?:function|method|helper|hook|handler|endpoint|def)\b", re.IGNORECASE)
_CLAUSE_BREAK_RE = re.compile(
    r"[,;]|\b(?:and|to|in|into|inside|from|under|within|of|for|on|with|via|using|then)\b", re.IGNORECASE
)
_CONJUNCTIONS = {",", "and"}
_NO_DEPENDENCIES = {"none", "n/a", "na", "-", "nothing", "no dependencies", "no"}


@dataclass
class _StepDraft:
    text: str
    line: int
    raw_line: str
    verification: str | None = None
    wants_fence_command: bool = False


@dataclass
class _TaskDraft:
    ordinal: int
    title: str
    line: int
    label: int | None
    level: int
    steps: list[_StepDraft] = field(default_factory=list)
    dependencies: list[int] = field(default_factory=list)
    claims: list[Claim] = field(default_factory=list)
    fence_languages: dict[int, str] = field(default_factory=dict)


def parse_plan(text: str, source_path: str = "<memory>") -> Plan:
    """Parse Markdown plan text into tasks, steps and claims.

    Raises :class:`PlanParseError` when the text has no discernible task
    structure (no headings and no list items).
    """
    lines = text.splitlines()
    unclosed = _unclosed_fences(lines)
    headings = _collect_headings(lines, unclosed)
    boundaries = _task_boundaries(headings)
    title = next(
        (heading_text for index, level, heading_text in headings if level == 1 and index not in boundaries),
        None,
    )

    implicit: _TaskDraft | None = None
    if not boundaries:
        if not any(LIST_ITEM_RE.match(line) for line in lines):
            raise PlanParseError(f"No task structure found in plan {source_path}")
        implicit = _TaskDraft(ordinal=1, title=title or "General", line=1, label=None, level=7)

    drafts = _walk(lines, boundaries, implicit, unclosed)
    tasks = tuple(_finalize(draft) for draft in drafts)
    if not tasks:
        raise PlanParseError(f"No task structure found in plan {source_path}")

    return Plan(
        source_path=source_path,
        raw_text=text,
        digest=hashlib.sha256(text.encode("utf-8")).hexdigest(),
        title=title,
        tasks=tasks,
    )


def load_plan(path: str | os.PathLike[str]) -> Plan:
    plan_path = Path(path)
    try:
        text = plan_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise PlanParseError(f"Plan file is not readable: {plan_path}") from exc
    return parse_plan(text, source_path=str(plan_path))


def _unclosed_fences(lines: list[str]) -> set[int]:
    """Indexes of fence openers that are never closed; those lines are read as plain text."""
    unclosed: set[int] = set()
    while True:
        opener: int | None = None
        marker = ""
        for index, line in enumerate(lines):
            fence_match = FENCE_RE.match(line) if index not in unclosed else None
            if not fence_match:
                continue
            if opener is None:
                opener, marker = index, fence_match.group(1)[:3]
            elif fence_match.group(1)[:3] == marker:
                opener = None
        if opener is None:
            return unclosed
        unclosed.add(opener)


def _collect_headings(lines: list[str], unclosed: set[int]) -> list[tuple[int, int, str]]:
    headings: list[tuple[int, int, str]] = []
    fence: str | None = None
    for index, line in enumerate(lines):
        fence_match = FENCE_RE.match(line) if index not in unclosed else None
        if fence_match:
            marker = fence_match.group(1)[:3]
            fence = None if fence == marker else (fence or marker)
            continue
        if fence:
            continue
        match = HEADING_RE.match(line)
        if match and match.group(2):
            headings.append((index, len(match.group(1)), match.group(2).strip()))
    return headings


def _task_boundaries(headings: list[tuple[int, int, str]]) -> dict[int, tuple[str, int | None, int]]:
    """Map line index -> (title, declared number, heading level) for task headings."""
    explicit = [
        (index, level, TASK_HEADING_RE.match(_strip_emphasis(text_)))
        for index, level, text_ in headings
    ]
    labelled = [(index, level, match) for index, level, match in explicit if match]
    if labelled:
        # Deeper "Step N" headings nested inside tasks are steps, not tasks.
        top = min(level for _, level, _ in labelled)
        return {
            index: (match.group(2).strip() or f"Task {match.group(1)}", int(match.group(1)), level)
            for index, level, match in labelled
            if level == top
        }

    candidates = list(headings)
    if candidates and candidates[0][1] == 1 and sum(1 for _, level, _ in candidates if level == 1) == 1 and len(candidates) > 1:
        candidates = candidates[1:]
    if not candidates:
        return {}
    top = min(level for _, level, _ in candidates)
    return {index: (text_, None, level) for index, level, text_ in candidates if level == top}


def _walk(
    lines: list[str],
    boundaries: dict[int, tuple[str, int | None, int]],
    implicit: _TaskDraft | None = None,
    unclosed: set[int] | None = None,
) -> list[_TaskDraft]:
    drafts: list[_TaskDraft] = [implicit] if implicit else []
    current: _TaskDraft | None = implicit
    fence: str | None = None
    fence_language = ""
    fence_lines: list[tuple[int, str]] = []
    in_files_block = False

    for index, line in enumerate(lines):
        line_no = index + 1

        if unclosed and index in unclosed:
            if current is not None:
                current.claims.append(_manual_review(line.strip(), current.ordinal, line_no, len(current.steps) or None))
            continue

        fence_match = FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(1)[:3]
            if fence is None:
                fence, fence_language, fence_lines = marker, fence_match.group(2).lower(), []
            elif fence == marker:
                if current is not None:
                    _absorb_fence(current, fence_language, fence_lines)
                fence = None
            continue
        if fence is not None:
            fence_lines.append((line_no, line))
            continue

        if index in boundaries:
            heading_title, label, level = boundaries[index]
            current = _TaskDraft(ordinal=len(drafts) + 1, title=heading_title, line=line_no, label=label, level=level)
            drafts.append(current)
            in_files_block = False
            current.claims.extend(_line_claims(_heading_text(line), line_no, current.ordinal, None))
            continue

        heading = HEADING_RE.match(line)
        if heading:
            in_files_block = False
            if current is None:
                continue
            if len(heading.group(1)) <= current.level:
                current = None
                continue
            step_heading = TASK_HEADING_RE.match(_strip_emphasis(heading.group(2)))
            if step_heading and heading.group(2).lower().startswith("step"):
                _add_step(current, step_heading.group(2).strip() or heading.group(2), line_no, line)
            continue

        if current is None or not line.strip():
            continue

        depends = DEPENDS_RE.match(line)
        if depends:
            numbers, understood = _parse_dependencies(depends.group(1))
            current.dependencies.extend(numbers)
            if not understood:
                current.claims.append(_manual_review(line.strip(), current.ordinal, line_no, None))
            continue

        item = LIST_ITEM_RE.match(line)
        label_match = LABEL_RE.match(line) if not item else None
        if label_match:
            _handle_label(current, label_match.group(1).lower(), label_match.group(2), line, line_no)
            in_files_block = label_match.group(1).lower().startswith("file")
            continue

        if item:
            content = item.group(2)
            if in_files_block:
                _handle_file_entry(current, content, line_no)
                continue
            _add_step(current, _strip_emphasis(content), line_no, line)
            continue

        in_files_block = False
        bold_step = BOLD_STEP_RE.match(line)
        if bold_step:
            _add_step(current, STEP_PREFIX_RE.sub("", bold_step.group(1)).strip(), line_no, line)
            continue
        step_ordinal = len(current.steps) or None
        if line.count("`") % 2:
            current.claims.append(_manual_review(line.strip(), current.ordinal, line_no, step_ordinal))
            continue
        current.claims.extend(_line_claims(line, line_no, current.ordinal, None))

    return drafts


def _add_step(task: _TaskDraft, text: str, line_no: int, raw_line: str) -> None:
    step = _StepDraft(text=text, line=line_no, raw_line=raw_line)
    step.verification = _verification_command(text)
    step.wants_fence_command = step.verification is None and bool(_VERIFY_VERB_RE.match(text))
    task.steps.append(step)
    ordinal = len(task.steps)
    if text.count("`") % 2:
        task.claims.append(_manual_review(text, task.ordinal, line_no, ordinal))
        return
    skip = {step.verification} if step.verification else set()
    task.claims.extend(_line_claims(text, line_no, task.ordinal, ordinal, skip=skip))


def _handle_label(task: _TaskDraft, label: str, value: str, line: str, line_no: int) -> None:
    if label in ("run", "verify", "verification", "command"):
        command = _first_command(value) or _strip_emphasis(value).strip("` ")
        if not command:
            return
        if task.steps and task.steps[-1].verification is None:
            task.steps[-1].verification = command
            task.steps[-1].wants_fence_command = False
        else:
            task.steps.append(_StepDraft(text=_strip_emphasis(line.strip()), line=line_no, raw_line=line, verification=command))
        return
    if label.startswith("file") and value.strip():
        _handle_file_entry(task, value, line_no)


def _handle_file_entry(task: _TaskDraft, content: str, line_no: int) -> None:
    content = _strip_emphasis(content)
    action = FILE_ACTION_RE.match(content)
    verb = action.group(1).lower() if action else ""
    target = action.group(2) if action else content
    claims = _line_claims(target, line_no, task.ordinal, None)
    paths = [claim for claim in claims if claim.kind is ClaimKind.path]
    if not paths:
        task.claims.append(_manual_review(content, task.ordinal, line_no, None))
        return
    created = verb in ("create", "new", "test", "tests") or bool(_TO_BE_CREATED_RE.search(content))
    for claim in claims:
        if claim.kind is ClaimKind.path and created and not claim.to_be_created:
            claim = Claim(kind=claim.kind, text=claim.text, task_ordinal=claim.task_ordinal, line=claim.line, to_be_created=True)
        task.claims.append(claim)


def _absorb_fence(task: _TaskDraft, language: str, fence_lines: list[tuple[int, str]]) -> None:
    if language in SHELL_FENCES or not language:
        if task.steps and task.steps[-1].wants_fence_command:
            command = next((text_.strip().lstrip("$ ").strip() for _, text_ in fence_lines if text_.strip()), None)
            if command:
                task.steps[-1].verification = command
                task.steps[-1].wants_fence_command = False
        return
    step_ordinal = len(task.steps) or None
    for line_no, text_ in fence_lines:
        match = DECL_RE.match(text_)
        if not match:
            continue
        keyword, name = match.groups()
        if keyword in ("def", "function", "fn", "func"):
            kind = SymbolKind.function
        else:
            kind = SymbolKind.type
        if name.lower() in IDENT_STOPWORDS:
            continue
        task.claims.append(
            Claim(
                kind=ClaimKind.naming,
                text=name,
                task_ordinal=task.ordinal,
                line=line_no,
                step_ordinal=step_ordinal,
                to_be_created=True,
                symbol_kind=kind,
            )
        )
        if language in FENCE_EXTENSIONS:
            task.fence_languages[len(task.claims) - 1] = FENCE_EXTENSIONS[language]


def _line_claims(
    text: str,
    line_no: int,
    task_ordinal: int,
    step_ordinal: int | None,
    skip: set[str] | None = None,
) -> list[Claim]:
    """Extract path, naming, reference and config claims from one line."""
    claims: list[Claim] = []
    seen: set[tuple[ClaimKind, str]] = set()
    skip = skip or set()
    config_context = bool(_CONFIG_CONTEXT_RE.search(CODE_SPAN_RE.sub(" ", text)))

    def add(kind: ClaimKind, value: str, *, created: bool = False, symbol_kind: SymbolKind | None = None) -> None:
        if (kind, value) in seen:
            return
        seen.add((kind, value))
        claims.append(
            Claim(
                kind=kind,
                text=value,
                task_ordinal=task_ordinal,
                line=line_no,
                step_ordinal=step_ordinal,
                to_be_created=created,
                symbol_kind=symbol_kind,
            )
        )

    for match in CODE_SPAN_RE.finditer(text):
        span = match.group(1).strip()
        if not span or span in skip or _is_command(span):
            continue
        before = text[: match.start()]
        after = text[match.end() :]
        clause = _preceding_clause(before)
        path = _as_path(span, strict=False)
        if path:
            created = bool(_PATH_CREATE_RE.search(clause) or _NEW_MARKER_RE.match(after) or _TO_BE_CREATED_RE.search(text))
            add(ClaimKind.path, path, created=created)
            continue
        declaration = DECL_RE.match(span)
        if declaration:
            keyword, name = declaration.groups()
            kind = SymbolKind.function if keyword in ("def", "function", "fn", "func") else SymbolKind.type
            add(ClaimKind.naming, name, created=True, symbol_kind=kind)
            continue
        assignment = CONFIG_ASSIGN_RE.match(span)
        if assignment and " " in span:
            add(ClaimKind.structural, assignment.group(1), created=bool(_NAME_CREATE_RE.search(clause)), symbol_kind=SymbolKind.config_key)
            continue
        identifier = IDENT_RE.match(span)
        if not identifier or identifier.group(1).lower() in IDENT_STOPWORDS:
            continue
        name = identifier.group(1)
        created = bool(_NAME_CREATE_RE.search(clause))
        is_type = classify_style(name.rsplit(".", 1)[-1]) is CaseStyle.pascal
        if config_context and not is_type:
            add(ClaimKind.structural, name, created=created, symbol_kind=SymbolKind.config_key)
        elif created:
            add(ClaimKind.naming, name, created=True, symbol_kind=_symbol_kind_from_context(clause, name))
        else:
            add(ClaimKind.reference, name)

    # Spans leave a marker so "named `x`" is not read as "named <next word>".
    prose = URL_RE.sub(" ", CODE_SPAN_RE.sub(" `` ", text))
    for match in BARE_PATH_RE.finditer(prose):
        path = _as_path(match.group(1), strict=True)
        if path:
            created = bool(
                _PATH_CREATE_RE.search(_preceding_clause(prose[: match.start()]))
                or _NEW_MARKER_RE.match(prose[match.end() :])
                or _TO_BE_CREATED_RE.search(text)
            )
            add(ClaimKind.path, path, created=created)

    for match in NAMED_RE.finditer(prose):
        name = match.group(1)
        if name.lower() in IDENT_STOPWORDS or any(claim.text == name for claim in claims):
            continue
        named_path = _as_path(name, strict=True)
        if named_path:
            add(ClaimKind.path, named_path, created=True)
        else:
            add(ClaimKind.naming, name, created=True, symbol_kind=_symbol_kind_from_context(prose[: match.start()], name))
    return claims


def _as_path(token: str, *, strict: bool) -> str | None:
    """Return the normalized path for a path-like token, else None."""
    candidate = token.strip().strip("\"'").rstrip(".,;:)")
    if not candidate or any(ch.isspace() for ch in candidate) or "*" in candidate:
        return None
    if candidate.startswith(("/", "~", "$", "-")) or re.match(r"^[A-Za-z]:[\\/]", candidate):
        return None
    candidate = LINE_ANCHOR_RE.sub("", candidate)
    candidate = candidate[2:] if candidate.startswith("./") else candidate
    name = candidate.rstrip("/").rsplit("/", 1)[-1]
    extension = os.path.splitext(name)[1].lower()
    has_extension = extension in KNOWN_EXTENSIONS
    if "/" in candidate:
        segments = [segment for segment in candidate.split("/") if segment]
        if len(segments) < 1 or not all(PATH_SEGMENT_RE.match(segment) for segment in segments):
            return None
        if has_extension or candidate.endswith("/"):
            return candidate
        if strict or len(segments) < 2:
            return None
        first = segments[0]
        if first[:1].isupper() or first.isdigit():
            return None
        return candidate
    if not has_extension or FRAMEWORK_NAME_RE.match(candidate):
        return None
    return candidate if PATH_SEGMENT_RE.match(candidate) else None


def _is_command(span: str) -> bool:
    lowered = span.strip().lstrip("$ ").lower()
    if any(lowered == command or lowered.startswith(command + " ") for command in TEST_COMMANDS):
        return True
    parts = lowered.split()
    return len(parts) > 1 and parts[0] in COMMAND_WORDS


def _first_command(text: str) -> str | None:
    for match in CODE_SPAN_RE.finditer(text):
        span = match.group(1).strip().lstrip("$ ").strip()
        if _is_command(span):
            return span
    return None


def _verification_command(text: str) -> str | None:
    command = _first_command(text)
    if command is None:
        return None
    if _VERIFY_VERB_RE.match(text):
        return command
    lowered = command.lower()
    if any(lowered == test or lowered.startswith(test + " ") for test in TEST_COMMANDS):
        return command
    return None


def _preceding_clause(before: str) -> str:
    """Text of the clause a span belongs to, looking past conjunction-only gaps."""
    end = len(before)
    breaks = list(_CLAUSE_BREAK_RE.finditer(before))
    for brk in reversed(breaks):
        if brk.end() > end:
            continue
        clause = before[brk.end() : end]
        if re.search(r"[A-Za-z]", CODE_SPAN_RE.sub(" ", clause)):
            return clause
        if brk.group(0).lower() not in _CONJUNCTIONS:
            return ""
        end = brk.start()
    return before[:end]


def _symbol_kind_from_context(context: str, name: str) -> SymbolKind:
    words = context[-60:]
    if _TYPE_CONTEXT_RE.search(words):
        return SymbolKind.type
    if _FUNCTION_CONTEXT_RE.search(words) or name.endswith("()"):
        return SymbolKind.function
    return SymbolKind.type if classify_style(name) is CaseStyle.pascal else SymbolKind.function


def _parse_dependencies(raw: str) -> tuple[list[int], bool]:
    cleaned = _strip_emphasis(raw).strip().strip(".").lower()
    if not cleaned or cleaned in _NO_DEPENDENCIES:
        return [], True
    refs = DEPENDENCY_REF_RE.findall(cleaned)
    if refs:
        return [int(number) for ref in refs for number in re.findall(r"\d+", ref)], True
    if re.fullmatch(r"#?\d+(?:\s*(?:,|&|and)\s*#?\d+)*", cleaned):
        return [int(number) for number in re.findall(r"\d+", cleaned)], True
    return [], False


def _manual_review(fragment: str, task_ordinal: int, line_no: int, step_ordinal: int | None) -> Claim:
    return Claim(
        kind=ClaimKind.structural,
        text=fragment,
        task_ordinal=task_ordinal,
        line=line_no,
        step_ordinal=step_ordinal,
        needs_manual_review=True,
    )


def _strip_emphasis(text: str) -> str:
    return re.sub(r"(\*\*|__)", "", text).strip()


def _heading_text(line: str) -> str:
    match = HEADING_RE.match(line)
    return match.group(2) if match else line


def _finalize(draft: _TaskDraft) -> Task:
    steps = tuple(
        Step(ordinal=index, text=step.text, line=step.line, raw_line=step.raw_line, verification=step.verification)
        for index, step in enumerate(draft.steps, start=1)
    )
    paths = [claim for claim in draft.claims if claim.kind is ClaimKind.path and os.path.splitext(claim.text)[1]]
    claims: list[Claim] = []
    for position, claim in enumerate(draft.claims):
        if claim.kind in (ClaimKind.naming, ClaimKind.reference) and claim.scope is None:
            claim = _with_scope(claim, _scope_for(claim, paths, draft.fence_languages.get(position)))
        claims.append(claim)
    return Task(
        ordinal=draft.ordinal,
        title=draft.title,
        line=draft.line,
        label=draft.label,
        steps=steps,
        dependencies=tuple(draft.dependencies),
        claims=tuple(claims),
    )


def _scope_for(claim: Claim, paths: list[Claim], language_extension: str | None) -> str | None:
    if language_extension:
        matching = [path for path in paths if path.text.endswith(language_extension)]
        if matching:
            return matching[0].text
        return None
    same_step = [path for path in paths if claim.step_ordinal is not None and path.step_ordinal == claim.step_ordinal]
    if same_step:
        return same_step[0].text
    return paths[0].text if paths else None


def _with_scope(claim: Claim, scope: str | None) -> Claim:
    return Claim(
        kind=claim.kind,
        text=claim.text,
        task_ordinal=claim.task_ordinal,
        line=claim.line,
        step_ordinal=claim.step_ordinal,
        to_be_created=claim.to_be_created,
        symbol_kind=claim.symbol_kind,
        needs_manual_review=claim.needs_manual_review,
        scope=scope,
    )


__all__ = ["load_plan", "parse_plan"]
