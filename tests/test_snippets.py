"""Tests for snippets.py - non-file noise classification."""

import pytest

from harvest.snippets import SnippetFilter
from harvest.types import RawBlock, ResolvedFile

LONG_CODE = """function greet(name) {
  const message = `Hello, ${name}!`;
  console.log(message);
  return message;
}"""


@pytest.fixture
def snippets():
    return SnippetFilter()


class TestShortContent:
    """Test the minimum length rule."""

    def test_npm_install_is_excluded(self, snippets):
        """Scenario: one-line package install never becomes a file."""
        assert snippets.is_snippet("npm install lodash")
        assert snippets.keep([RawBlock(content="npm install lodash")]) == []

    @pytest.mark.parametrize("length", [1, 30, 59])
    def test_below_threshold(self, snippets, length):
        assert snippets.is_snippet("x" * length)

    def test_whitespace_only(self, snippets):
        assert snippets.is_snippet("   \n\t  ")

    def test_long_multiline_kept(self, snippets):
        assert not snippets.is_snippet(LONG_CODE)


class TestCommands:
    """Test single-line interactive command detection."""

    def test_long_command_line(self, snippets):
        line = "npm install react react-dom react-router-dom @types/react typescript"
        assert 60 <= len(line) < 100
        assert snippets.is_snippet(line)

    def test_long_code_line_kept(self, snippets):
        line = "const greeting = 'Hello there, this line is long enough to pass the filter';"
        assert 60 <= len(line) < 100
        assert not snippets.is_snippet(line)

    def test_very_long_single_line_kept(self, snippets):
        """Single lines past the short limit are kept even if they look like commands."""
        line = "git clone " + "https://example.com/some/really/long/path/" * 3
        assert len(line) >= 100
        assert not snippets.is_snippet(line)

    @pytest.mark.parametrize(
        "line",
        ["$ git status", "cd my-app", "./run.sh --fast", "pip install -r requirements.txt", "NPX create-vite"],
    )
    def test_command_prefixes(self, snippets, line):
        assert snippets.is_command(line)

    @pytest.mark.parametrize("line", ["github_token = read()", "cdn.load()", "const x = 1"])
    def test_not_commands(self, snippets, line):
        assert not snippets.is_command(line)


class TestDocumentationExemption:
    """Test the explicitly-marked documentation exemption."""

    def test_marked_doc_kept(self, snippets):
        content = "<!-- FILE: docs/setup.md -->\n# Setup\nRun it."
        assert len(content.strip()) > 0
        assert not snippets.is_snippet(content)

    @pytest.mark.parametrize("name", ["checklist.md", "phase-2.md", "fase-1.md", "docs/api.mdx", "README.md"])
    def test_doc_names(self, snippets, name):
        assert snippets.is_doc_path(name)

    def test_short_non_doc_marker_excluded(self, snippets):
        assert snippets.is_snippet("// FILE: a.js\nx()")

    def test_unmarked_short_markdown_excluded(self, snippets):
        """The exemption needs an explicit path, not just markdown-looking text."""
        assert snippets.is_snippet("# Setup\nRun it.")

    def test_resolved_file_name_used(self, snippets):
        files = [ResolvedFile(name="checklist.md", content="- [ ] ship")]
        assert snippets.keep(files) == files

    def test_fence_path_hint_used(self, snippets):
        block = RawBlock(content="- [x] done", path_hint="docs/todo.md")
        assert snippets.keep([block]) == [block]


class TestKeep:
    """Test order-preserving filtering."""

    def test_order_preserved(self, snippets):
        blocks = [
            RawBlock(content=LONG_CODE),
            RawBlock(content="cd app"),
            RawBlock(content=LONG_CODE.replace("greet", "wave")),
        ]
        kept = snippets.keep(blocks)
        assert [b.content for b in kept] == [blocks[0].content, blocks[2].content]
