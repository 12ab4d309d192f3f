"""Reduce the historical result shapes to one canonical file list.

Accepted shapes, checked in this order:
    files  - [{name, content}] already named upstream
    blocks - [{code, language?}] needing the full pipeline
    code   - one inline {code, filename?, language?}

The snippet filter runs again whatever the shape.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from harvest.config import Heuristics, default_heuristics
from harvest.parsers import extract_markdown_blocks
from harvest.parsers.code_blocks import FENCE_PATTERN
from harvest.paths import PathResolver, clean_path, is_generic_name
from harvest.session import BlockCollector, unique_files
from harvest.snippets import SnippetFilter
from harvest.types import UNRESOLVED_NAME, RawBlock, ResolvedFile


class PayloadError(Exception):
    """Payload reports a failure and carries nothing to recover."""


class PayloadBlock(BaseModel):
    code: str = Field(validation_alias=AliasChoices("code", "content"))
    language: str | None = None


class PayloadFile(BaseModel):
    name: str = Field("", validation_alias=AliasChoices("name", "filename", "path"))
    content: str = Field(validation_alias=AliasChoices("content", "code"))


class CapturePayload(BaseModel):
    """Any of the wire shapes a capture result has travelled in."""

    code: str | None = None
    filename: str | None = None
    language: str | None = None
    blocks: list[PayloadBlock] | None = None
    files: list[PayloadFile] | None = None
    error: str | None = None

    model_config = ConfigDict(extra="ignore")


class PayloadNormalizer:
    def __init__(self, heuristics: Heuristics | None = None) -> None:
        self.heuristics = heuristics or default_heuristics()
        self.resolver = PathResolver(self.heuristics)
        self.snippets = SnippetFilter(self.resolver)

    def normalize(self, payload: CapturePayload) -> list[ResolvedFile]:
        if payload.files:
            return self.from_files(payload.files)
        if payload.blocks:
            return self.from_blocks(payload.blocks)
        if payload.code and payload.code.strip():
            return self.from_code(payload.code, payload.filename, payload.language)
        if payload.error:
            raise PayloadError(payload.error)
        return []

    def from_files(self, files: list[PayloadFile]) -> list[ResolvedFile]:
        """Improve placeholder names, strip leftover markers, filter again.

        The snippet filter sees only explicit names (a marker or a real
        upstream name); names inferred here never earn the doc exemption.
        """
        resolved: list[ResolvedFile] = []
        for item in files:
            name = clean_path(item.name) or UNRESOLVED_NAME
            content = item.content
            marker = self.resolver.find_marker(content)
            if marker:
                name = marker.path
                content = self.resolver.strip_marker(content, marker)
            else:
                content = content.strip()

            explicit = name if marker or not is_generic_name(name) else None
            if self.snippets.is_snippet(content, explicit):
                continue
            if explicit is None:
                name = self.resolver.infer_from_content(content) or name
            resolved.append(ResolvedFile(name=name, content=content))
        return unique_files(resolved)

    def from_blocks(self, blocks: list[PayloadBlock]) -> list[ResolvedFile]:
        collector = BlockCollector(self.heuristics)
        collector.add(RawBlock(content=block.code, language_hint=block.language) for block in blocks)
        return collector.resolve()

    def from_code(self, code: str, filename: str | None, language: str | None) -> list[ResolvedFile]:
        explicit = clean_path(filename)
        if FENCE_PATTERN.search(code):
            collector = BlockCollector(self.heuristics)
            collector.add(extract_markdown_blocks(code, self.heuristics))
            files = collector.resolve()
            if len(files) == 1 and explicit and is_generic_name(files[0].name):
                files[0] = ResolvedFile(name=explicit, content=files[0].content)
            return files

        named = explicit if explicit and not is_generic_name(explicit) else None
        if self.snippets.is_snippet(code, named):
            return []

        marker = self.resolver.find_marker(code)
        if marker:
            return [ResolvedFile(name=marker.path, content=self.resolver.strip_marker(code, marker))]

        content = code.strip()
        name = (
            named
            or self.resolver.infer_from_content(content)
            or self.resolver.from_language(language, 0)
            or explicit
            or UNRESOLVED_NAME
        )
        return [ResolvedFile(name=name, content=content)]


def normalize_payload(
    payload: CapturePayload | dict,
    heuristics: Heuristics | None = None,
) -> list[ResolvedFile]:
    """Canonical ``ResolvedFile`` list for any accepted payload shape.

    Raises:
        PayloadError: The payload is an error with no files attached.
        pydantic.ValidationError: The payload matches none of the shapes.
    """
    if not isinstance(payload, CapturePayload):
        payload = CapturePayload.model_validate(payload)
    return PayloadNormalizer(heuristics).normalize(payload)


__all__ = [
    "CapturePayload",
    "PayloadBlock",
    "PayloadError",
    "PayloadFile",
    "PayloadNormalizer",
    "normalize_payload",
]
