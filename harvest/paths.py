"""Assign relative file paths to captured code blocks.

Resolution order, first match wins:
    1. Explicit marker inside the block (`// FILE: src/app.ts`) or a path in
       the fence info string.
    2. Explicit path in the text right before the block (marker lines,
       `inline code`, **emphasis**, path-only headings, "here is the file X").
    3. Content-shape signatures from heuristics.yaml.
    4. `file_<index>.<ext>` from the language hint, else UNRESOLVED_NAME.

Only explicit markers change the content (the marker line is removed).
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from harvest.config import Heuristics, SignatureRule, default_heuristics
from harvest.types import UNRESOLVED_NAME, RawBlock, ResolvedFile

ResolutionSource = Literal["marker", "context", "inferred", "language", "unresolved"]

GENERIC_NAME_RE = re.compile(r"^file_\d+(\.\w{1,10})?$", re.IGNORECASE)

_HEADING_RE = re.compile(r"^\s*#{1,6}\s+[*_`]*(?P<path>[^\s*`]+?)[*_`]*\s*:?\s*$")
_INLINE_CODE_RE = re.compile(r"`([^`\s]+)`")
_EMPHASIS_RE = re.compile(r"\*\*([^*\s]+)\*\*|__([^_\s]+?)__|\*([^*\s]+)\*")
_PATH_TOKEN_RE = re.compile(r"[\w@+\-./\\~]+\.[A-Za-z0-9]{1,10}\b")
_EXTENSION_RE = re.compile(r"\.([A-Za-z0-9]{1,10})$")


@dataclass
class MarkerMatch:
    """Explicit path marker found on one line of a block."""

    path: str
    line_index: int


@dataclass
class Resolution:
    file: ResolvedFile
    source: ResolutionSource


@dataclass
class _CompiledRule:
    name: str
    any_of: list[re.Pattern]
    all_of: list[re.Pattern]
    none_of: list[re.Pattern]
    every_line: re.Pattern | None

    @classmethod
    def from_rule(cls, rule: SignatureRule) -> _CompiledRule:
        def compile_all(patterns: Sequence[str]) -> list[re.Pattern]:
            return [re.compile(p, re.MULTILINE) for p in patterns]

        return cls(
            name=rule.name,
            any_of=compile_all(rule.any_of),
            all_of=compile_all(rule.all_of),
            none_of=compile_all(rule.none_of),
            every_line=re.compile(rule.every_line) if rule.every_line else None,
        )

    def matches(self, text: str) -> bool:
        if self.any_of and not any(p.search(text) for p in self.any_of):
            return False
        if not all(p.search(text) for p in self.all_of):
            return False
        if any(p.search(text) for p in self.none_of):
            return False
        if self.every_line is not None:
            lines = [line for line in text.splitlines() if line.strip()]
            if not lines or not all(self.every_line.match(line) for line in lines):
                return False
        return True


def clean_path(raw: str | None) -> str | None:
    """Normalize a candidate path; None when it is empty or escapes upward."""
    if not raw:
        return None
    path = raw.strip().strip("`'\"*").lstrip("(")
    path = path.rstrip(":;,.)").strip("`'\"*")
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    path = path.lstrip("/")
    if not path or "://" in raw:
        return None
    if any(part == ".." for part in path.split("/")):
        return None
    return path


def is_generic_name(name: str | None) -> bool:
    """True for placeholder names (file_N, file_N.ext, the unresolved sentinel)."""
    value = (name or "").strip()
    return value == UNRESOLVED_NAME or bool(GENERIC_NAME_RE.match(value))


class PathResolver:
    """Cascading filename inference driven by heuristics.yaml."""

    def __init__(self, heuristics: Heuristics | None = None) -> None:
        self.heuristics = heuristics or default_heuristics()
        self.limits = self.heuristics.limits
        self._extensions = {ext.lower().lstrip(".") for ext in self.heuristics.extensions}
        self._filenames = {name.lower() for name in self.heuristics.filenames}
        self._rules = [_CompiledRule.from_rule(rule) for rule in self.heuristics.signatures]

        labels = sorted(self.heuristics.labels, key=len, reverse=True)
        label_alt = "|".join(r"\s+".join(re.escape(word) for word in label.split()) for label in labels)
        self._marker_re = re.compile(
            r"^\s*(?:<!--|/\*+|//+|#+|--|-|;+|>)?\s*"
            rf"[*_]*(?:{label_alt})[*_]*\s*:[*_]*\s*"
            r"[`'\"]?(?P<path>[^\s`*'\"<>]+)[`'\"]?[*_]*"
            r"\s*(?:-->|\*/)?\s*$",
            re.IGNORECASE,
        )
        lead_alt = "|".join(self.heuristics.lead_ins)
        self._lead_in_re = re.compile(rf"(?<!\w)(?:{lead_alt})(?!\w)", re.IGNORECASE) if lead_alt else None

    # -- path predicates -------------------------------------------------

    def looks_like_path(self, path: str) -> bool:
        """Any extension or a known extension-less filename."""
        basename = path.rsplit("/", 1)[-1]
        return bool(_EXTENSION_RE.search(basename)) or basename.lower() in self._filenames

    def is_whitelisted(self, path: str) -> bool:
        """Extension (or bare filename) is on the configured whitelist."""
        basename = path.rsplit("/", 1)[-1]
        if basename.lower() in self._filenames:
            return True
        match = _EXTENSION_RE.search(basename)
        return bool(match) and match.group(1).lower() in self._extensions

    # -- case 1: in-block markers ----------------------------------------

    def match_marker_line(self, line: str) -> str | None:
        match = self._marker_re.match(line)
        if not match:
            return None
        path = clean_path(match.group("path"))
        if path and self.looks_like_path(path):
            return path
        return None

    def find_marker(self, content: str | None) -> MarkerMatch | None:
        """Search the head of the block first, then the rest of it."""
        lines = (content or "").split("\n")
        head = self.limits.marker_head_lines
        for start, stop in ((0, head), (head, len(lines))):
            for index in range(start, min(stop, len(lines))):
                path = self.match_marker_line(lines[index])
                if path:
                    return MarkerMatch(path=path, line_index=index)
        return None

    @staticmethod
    def strip_marker(content: str, marker: MarkerMatch | None) -> str:
        if marker is None:
            return content.strip()
        lines = content.split("\n")
        del lines[marker.line_index]
        return "\n".join(lines).strip()

    # -- case 2: preceding context ---------------------------------------

    def from_context(self, context: str | None) -> str | None:
        """Nearest whitelisted path among the last non-empty context lines."""
        lines = [line for line in (context or "").splitlines() if line.strip()]
        for line in reversed(lines[-self.limits.context_lines:]):
            path = self._path_from_context_line(line)
            if path:
                return path
        return None

    def _path_from_context_line(self, line: str) -> str | None:
        candidates: list[str] = []
        marker = self._marker_re.match(line)
        if marker:
            candidates.append(marker.group("path"))
        heading = _HEADING_RE.match(line)
        if heading:
            candidates.append(heading.group("path"))
        candidates.extend(_INLINE_CODE_RE.findall(line))
        for match in _EMPHASIS_RE.finditer(line):
            candidates.append(next(group for group in match.groups() if group))
        if self._lead_in_re is not None and self._lead_in_re.search(line):
            candidates.extend(_PATH_TOKEN_RE.findall(line))

        for raw in candidates:
            path = clean_path(raw)
            if path and self.is_whitelisted(path):
                return path
        return None

    # -- case 3 / 4 ------------------------------------------------------

    def infer_from_content(self, content: str | None) -> str | None:
        """First signature rule matching the head of the content."""
        text = (content or "").strip()[: self.limits.inference_window]
        if not text:
            return None
        for rule in self._rules:
            if rule.matches(text):
                return rule.name
        return None

    def from_language(self, hint: str | None, index: int) -> str | None:
        if not hint:
            return None
        ext = self.heuristics.languages.get(hint.strip().lower())
        return f"file_{index}.{ext}" if ext else None

    # -- cascade ---------------------------------------------------------

    def explain(self, block: RawBlock, index: int = 0) -> Resolution:
        """Resolve a block and report which rule named it."""
        content = block.content or ""
        marker = self.find_marker(content)

        hinted = clean_path(block.path_hint)
        if hinted:
            return Resolution(ResolvedFile(name=hinted, content=self.strip_marker(content, marker)), "marker")
        if marker:
            return Resolution(ResolvedFile(name=marker.path, content=self.strip_marker(content, marker)), "marker")

        text = content.strip()
        from_context = self.from_context(block.preceding_context)
        if from_context:
            return Resolution(ResolvedFile(name=from_context, content=text), "context")

        inferred = self.infer_from_content(text)
        if inferred:
            return Resolution(ResolvedFile(name=inferred, content=text), "inferred")

        generic = self.from_language(block.language_hint, index)
        if generic:
            return Resolution(ResolvedFile(name=generic, content=text), "language")

        return Resolution(ResolvedFile(name=UNRESOLVED_NAME, content=text), "unresolved")

    def resolve(self, block: RawBlock, index: int = 0) -> ResolvedFile:
        return self.explain(block, index).file


def resolve_blocks(
    blocks: Sequence[RawBlock],
    resolver: PathResolver | None = None,
) -> list[ResolvedFile]:
    """Name every block, using its position as the generic-name index."""
    resolver = resolver or PathResolver()
    return [resolver.resolve(block, index) for index, block in enumerate(blocks)]


__all__ = [
    "GENERIC_NAME_RE",
    "MarkerMatch",
    "Resolution",
    "PathResolver",
    "clean_path",
    "is_generic_name",
    "resolve_blocks",
]
