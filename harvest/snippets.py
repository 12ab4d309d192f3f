"""Classify short snippets and shell commands as non-file noise."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TypeVar

from harvest.paths import PathResolver
from harvest.types import RawBlock, ResolvedFile

T = TypeVar("T", RawBlock, ResolvedFile)


class SnippetFilter:
    """Drops blocks that are very likely not files to be saved.

    A block is noise when its trimmed content is shorter than
    ``min_content_length``, or when it is a single short line starting with an
    interactive command (``npm install``, ``cd``, ``git``...). Blocks that are
    explicitly marked with a documentation path from ``doc_exempt`` skip the
    length rule.
    """

    def __init__(self, resolver: PathResolver | None = None) -> None:
        self.resolver = resolver or PathResolver()
        heuristics = self.resolver.heuristics
        self.limits = heuristics.limits
        prefixes = sorted(heuristics.shell_prefixes, key=len, reverse=True)
        alternation = "|".join(re.escape(prefix) for prefix in prefixes)
        # "./" carries its own separator, the rest need whitespace or EOL
        self._command_re = re.compile(
            rf"^(?:\$\s*)?(?:(?:{alternation})(?:\s|$)|\./)", re.IGNORECASE
        )
        self._doc_patterns = [re.compile(pattern) for pattern in heuristics.doc_exempt]

    def is_doc_path(self, path: str | None) -> bool:
        return bool(path) and any(p.search(path) for p in self._doc_patterns)

    def is_command(self, line: str) -> bool:
        return bool(self._command_re.match(line.strip()))

    def is_snippet(self, content: str | None, name: str | None = None) -> bool:
        """True when the content should not become a file.

        Args:
            content: Block or file content.
            name: Already-resolved name, if any; otherwise the block's own
                marker is consulted for the documentation exemption.
        """
        trimmed = (content or "").strip()
        if not trimmed:
            return True

        marked = name
        if not marked:
            marker = self.resolver.find_marker(trimmed)
            marked = marker.path if marker else None
        if self.is_doc_path(marked):
            return False

        if len(trimmed) < self.limits.min_content_length:
            return True

        lines = [line for line in trimmed.splitlines() if line.strip()]
        if len(lines) == 1 and len(trimmed) < self.limits.min_single_line_length:
            return self.is_command(trimmed)
        return False

    def keep(self, items: Iterable[T]) -> list[T]:
        """Filter blocks or resolved files, preserving order."""
        kept: list[T] = []
        for item in items:
            if isinstance(item, ResolvedFile):
                if not self.is_snippet(item.content, item.name):
                    kept.append(item)
            elif not self.is_snippet(item.content, item.path_hint):
                kept.append(item)
        return kept


__all__ = ["SnippetFilter"]
