"""Core types for Harvest - Pydantic models for captured blocks and files.

Blocks are ephemeral per snapshot; resolved files are handed straight to the
downstream workflow and carry no reference back to the session.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Filename returned when no path evidence exists; the caller must ask an
# external authority for a name before persisting.
UNRESOLVED_NAME = "__ASK_NAME__"


class FailureReason(str, Enum):
    """Terminal failure reasons reported by a capture session."""

    PRODUCER_UNREACHABLE = "producer-unreachable"
    INPUT_NOT_FOUND = "input-element-not-found"
    SUBMIT_NOT_FOUND = "submit-control-not-found"
    TIMEOUT = "timeout"


class RawBlock(BaseModel):
    """One code region discovered in a snapshot."""

    content: str
    language_hint: str | None = None
    preceding_context: str | None = None
    # Path carried by a fence info string (```lang:path or ```path)
    path_hint: str | None = None

    model_config = ConfigDict(frozen=True)


class ResolvedFile(BaseModel):
    """Final named artifact handed to the downstream workflow."""

    name: str = Field(min_length=1)
    content: str

    @property
    def unresolved(self) -> bool:
        return self.name == UNRESOLVED_NAME


class ImageAttachment(BaseModel):
    """Image pasted into the producing surface alongside the prompt."""

    base64: str
    mime_type: str = "image/png"


class PromptRequest(BaseModel):
    """Outbound instruction delivered to a producing surface."""

    prompt: str = ""
    images: list[ImageAttachment] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.prompt.strip() and not self.images


class CaptureResult(BaseModel):
    """Terminal outcome of one capture session.

    Exactly one of two shapes: ``ok=True`` with files (possibly empty), or
    ``ok=False`` with a reason. Timeouts keep whatever partial files exist.
    """

    ok: bool
    files: list[ResolvedFile] = Field(default_factory=list)
    reason: FailureReason | None = None
    message: str | None = None
    cancelled: bool = False
    completion: str | None = None  # detector completion reason

    @classmethod
    def success(
        cls,
        files: list[ResolvedFile],
        *,
        completion: str | None = None,
        cancelled: bool = False,
    ) -> CaptureResult:
        return cls(ok=True, files=files, completion=completion, cancelled=cancelled)

    @classmethod
    def failure(
        cls,
        reason: FailureReason,
        message: str | None = None,
        files: list[ResolvedFile] | None = None,
        *,
        completion: str | None = None,
    ) -> CaptureResult:
        return cls(
            ok=False,
            reason=reason,
            message=message or reason.value,
            files=files or [],
            completion=completion,
        )

    def to_payload(self) -> dict:
        """Build the wire shape consumed by the IDE workflow.

        A single file also travels as the ``code``/``filename`` shorthand.
        """
        if not self.ok:
            payload: dict = {"error": self.message, "reason": self.reason.value}
            if self.files:
                payload["files"] = [f.model_dump() for f in self.files]
            return payload

        files = [f.model_dump() for f in self.files]
        if not files:
            return {"code": "", "files": []}
        if len(files) == 1:
            return {"code": files[0]["content"], "filename": files[0]["name"], "files": files}
        return {"files": files}


__all__ = [
    "UNRESOLVED_NAME",
    "FailureReason",
    "RawBlock",
    "ResolvedFile",
    "ImageAttachment",
    "PromptRequest",
    "CaptureResult",
]
