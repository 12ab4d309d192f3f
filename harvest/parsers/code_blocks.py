"""Extract code blocks from a snapshot of a producing surface.

Snapshots are either rendered HTML (what a browser surface returns) or
markdown text (what an API-style producer returns). Discovery order is kept:
generic names later use the block index.
"""

from __future__ import annotations

import re
from html.parser import HTMLParser

from harvest.config import Heuristics, default_heuristics
from harvest.paths import PathResolver, clean_path
from harvest.types import RawBlock

FENCE_PATTERN = re.compile(
    r"^[ \t]*(?P<fence>`{3,}|~{3,})[ \t]*(?P<info>[^\n`]*)\n(?P<content>.*?)(?:^[ \t]*(?P=fence)[ \t]*$|\Z)",
    re.DOTALL | re.MULTILINE,
)

# Common language identifiers that are NOT file paths
LANGUAGE_ONLY = frozenset({
    "python", "py", "javascript", "js", "typescript", "ts", "tsx", "jsx", "java", "go",
    "rust", "c", "cpp", "c++", "csharp", "cs", "ruby", "rb", "php", "swift",
    "kotlin", "scala", "bash", "sh", "shell", "zsh", "sql", "html", "css", "scss",
    "json", "yaml", "yml", "xml", "markdown", "md", "text", "txt", "diff", "toml",
})

_HTML_HINT = re.compile(r"<(?:pre|code|div|p|span|html|body|main|section|article)\b", re.IGNORECASE)
_LANG_CLASS = re.compile(r"(?:^|\s)(?:language|lang)-([\w+#-]+)")
_CONTAINER_CLASS = re.compile(r"code-block|markdown")

_BLOCK_TAGS = frozenset({
    "p", "div", "li", "ul", "ol", "tr", "table", "section", "article", "header",
    "footer", "blockquote", "h1", "h2", "h3", "h4", "h5", "h6", "br", "hr",
})
_SKIP_TAGS = frozenset({"script", "style", "noscript", "template", "svg"})
_VOID_TAGS = frozenset({"br", "hr", "img", "input", "meta", "link", "source", "wbr"})
_HEADINGS = {f"h{level}": "#" * level for level in range(1, 7)}


def split_info_string(info: str) -> tuple[str | None, str | None]:
    """Split a fence info string into (language, path).

    Accepts ``lang``, ``path/to/file.ext`` and ``lang:path``.
    """
    info = (info or "").strip().split()[0] if (info or "").strip() else ""
    if not info:
        return None, None
    if ":" in info:
        lang, _, raw_path = info.partition(":")
        return (lang or None), clean_path(raw_path)
    if info.lower() in LANGUAGE_ONLY:
        return info, None
    if "." in info or "/" in info:
        return None, clean_path(info)
    return info, None


def _context_tail(text: str, limit: int) -> str | None:
    tail = text[-limit:].strip("\n")
    return tail or None


def extract_markdown_blocks(text: str, heuristics: Heuristics | None = None) -> list[RawBlock]:
    """Parse fenced blocks from markdown text.

    Unclosed trailing fences are treated as complete (output still streaming).
    """
    heuristics = heuristics or default_heuristics()
    limit = heuristics.limits.max_context_chars
    blocks: list[RawBlock] = []
    last_end = 0
    for match in FENCE_PATTERN.finditer(text or ""):
        language, path_hint = split_info_string(match.group("info"))
        content = match.group("content").rstrip("`\n\r")
        if content.strip():
            blocks.append(
                RawBlock(
                    content=content,
                    language_hint=language,
                    preceding_context=_context_tail(text[last_end:match.start()], limit),
                    path_hint=path_hint,
                )
            )
        last_end = match.end()
    return blocks


def split_on_markers(
    text: str,
    resolver: PathResolver | None = None,
    min_length: int = 15,
) -> list[RawBlock]:
    """Last resort: cut plain text at explicit file-marker lines.

    Each part starts with its marker line, so path resolution finds it again
    and strips it.
    """
    resolver = resolver or PathResolver()
    lines = (text or "").split("\n")
    starts: list[int] = []
    for index, line in enumerate(lines):
        path = resolver.match_marker_line(line)
        if path and resolver.is_whitelisted(path):
            starts.append(index)

    blocks: list[RawBlock] = []
    for position, start in enumerate(starts):
        stop = starts[position + 1] if position + 1 < len(starts) else len(lines)
        part = "\n".join(lines[start:stop]).strip()
        if len(part) >= min_length:
            blocks.append(RawBlock(content=part))
    return blocks


class _SnapshotParser(HTMLParser):
    """Single pass over an HTML snapshot collecting every extraction tier."""

    def __init__(self, context_limit: int) -> None:
        super().__init__(convert_charrefs=True)
        self.context_limit = context_limit
        self.text: list[str] = []  # rendered text of the whole snapshot
        self.since_block: list[str] = []  # rendered text since the last <pre>
        self.pre: list[RawBlock] = []
        self.code: list[RawBlock] = []
        self.containers: list[str] = []
        self._pre_depth = 0
        self._pre_buf: list[str] = []
        self._pre_lang: str | None = None
        self._pre_context: str | None = None
        self._code_depth = 0
        self._code_buf: list[str] = []
        self._code_context: str | None = None
        self._skip_depth = 0
        # (tag, buffer) per open element; buffer only for code containers
        self._open: list[tuple[str, list[str] | None]] = []

    def _emit(self, chunk: str) -> None:
        self.text.append(chunk)
        if not self._pre_depth:
            self.since_block.append(chunk)
        for _, buf in self._open:
            if buf is not None:
                buf.append(chunk)

    def _close_element(self, tag: str) -> None:
        """Pop up to the matching open tag; stray end tags are ignored."""
        if not any(open_tag == tag for open_tag, _ in self._open):
            return
        while self._open:
            open_tag, buf = self._open.pop()
            if buf is not None:
                self.containers.append("".join(buf))
            if open_tag == tag:
                return

    def _context(self) -> str | None:
        return _context_tail("".join(self.since_block), self.context_limit)

    @staticmethod
    def _language(attrs: dict[str, str | None]) -> str | None:
        if attrs.get("data-language"):
            return attrs["data-language"]
        match = _LANG_CLASS.search(attrs.get("class") or "")
        return match.group(1) if match else None

    def handle_starttag(self, tag: str, attr_list: list[tuple[str, str | None]]) -> None:
        attrs = dict(attr_list)
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
            return
        if self._skip_depth:
            return
        if tag not in _VOID_TAGS:
            is_container = bool(
                _CONTAINER_CLASS.search(attrs.get("class") or "") or "data-code-block" in attrs
            )
            self._open.append((tag, [] if is_container else None))

        if tag == "pre":
            if not self._pre_depth:
                self._pre_buf = []
                self._pre_lang = self._language(attrs)
                self._pre_context = self._context()
            self._pre_depth += 1
            self._emit("\n")
        elif tag == "code":
            if self._pre_depth:
                self._pre_lang = self._pre_lang or self._language(attrs)
            else:
                if not self._code_depth:
                    self._code_buf = []
                    self._code_context = self._context()
                self._code_depth += 1
                self._emit("`")
        elif tag in _HEADINGS and not self._pre_depth:
            self._emit(f"\n{_HEADINGS[tag]} ")
        elif tag in ("strong", "b") and not self._pre_depth:
            self._emit("**")
        elif tag in ("em", "i") and not self._pre_depth:
            self._emit("*")
        elif tag in _BLOCK_TAGS and not self._pre_depth:
            self._emit("\n")

    def handle_endtag(self, tag: str) -> None:
        if tag in _SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if self._skip_depth:
            return
        if tag not in _VOID_TAGS:
            self._close_element(tag)

        if tag == "pre" and self._pre_depth:
            self._pre_depth -= 1
            if not self._pre_depth:
                self.pre.append(
                    RawBlock(
                        content="".join(self._pre_buf),
                        language_hint=self._pre_lang,
                        preceding_context=self._pre_context,
                    )
                )
                self.since_block = []
                self._emit("\n")
        elif tag == "code" and self._code_depth and not self._pre_depth:
            self._code_depth -= 1
            self._emit("`")
            if not self._code_depth:
                self.code.append(RawBlock(content="".join(self._code_buf), preceding_context=self._code_context))
        elif tag in ("strong", "b") and not self._pre_depth:
            self._emit("**")
        elif tag in ("em", "i") and not self._pre_depth:
            self._emit("*")
        elif tag in _BLOCK_TAGS and not self._pre_depth:
            self._emit("\n")

    def handle_data(self, data: str) -> None:
        if self._skip_depth:
            return
        if self._pre_depth:
            self._pre_buf.append(data)
        elif self._code_depth:
            self._code_buf.append(data)
        self._emit(data)


def extract_html_blocks(html: str, heuristics: Heuristics | None = None) -> list[RawBlock]:
    """Extract blocks from rendered HTML, falling through tiers until one yields.

    Tiers: <pre> elements, stand-alone <code>, code-block/markdown containers,
    fenced notation in the rendered text, explicit file markers in the text.
    """
    heuristics = heuristics or default_heuristics()
    limits = heuristics.limits
    parser = _SnapshotParser(limits.max_context_chars)
    parser.feed(html or "")
    parser.close()

    blocks = [b for b in parser.pre if len(b.content.strip()) > limits.min_pre_length]
    if blocks:
        return blocks

    blocks = [b for b in parser.code if len(b.content.strip()) > limits.min_code_length]
    if blocks:
        return blocks

    blocks = [
        RawBlock(content=text.strip())
        for text in parser.containers
        if len(text.strip()) > limits.min_code_length
    ]
    if blocks:
        return blocks

    rendered = "".join(parser.text)
    blocks = [
        b for b in extract_markdown_blocks(rendered, heuristics)
        if len(b.content.strip()) > limits.min_code_length
    ]
    if blocks:
        return blocks

    return split_on_markers(rendered, PathResolver(heuristics))


def looks_like_html(snapshot: str) -> bool:
    """Rendered markup starts with a tag; markdown may merely quote tags in fences."""
    text = (snapshot or "").lstrip()
    return text.startswith("<") and bool(_HTML_HINT.search(text))


def extract_blocks(snapshot: str, heuristics: Heuristics | None = None) -> list[RawBlock]:
    """Extract RawBlocks from an HTML or markdown snapshot.

    Pure function of its input: the same snapshot always yields the same list.
    """
    if looks_like_html(snapshot):
        return extract_html_blocks(snapshot, heuristics)
    blocks = extract_markdown_blocks(snapshot, heuristics)
    if blocks:
        return blocks
    resolver = PathResolver(heuristics) if heuristics else None
    return split_on_markers(snapshot, resolver)


__all__ = [
    "FENCE_PATTERN",
    "LANGUAGE_ONLY",
    "extract_blocks",
    "extract_html_blocks",
    "extract_markdown_blocks",
    "looks_like_html",
    "split_info_string",
    "split_on_markers",
]
