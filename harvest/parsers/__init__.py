"""Snapshot parsers."""

from .code_blocks import (
    extract_blocks,
    extract_html_blocks,
    extract_markdown_blocks,
    split_info_string,
    split_on_markers,
)

__all__ = [
    "extract_blocks",
    "extract_html_blocks",
    "extract_markdown_blocks",
    "split_info_string",
    "split_on_markers",
]
