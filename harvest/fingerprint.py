"""Content fingerprints for intra-session block deduplication."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable

from harvest.types import RawBlock


def fingerprint(content: str) -> str:
    """Digest of the full trimmed content.

    Hashing only a prefix collapses blocks that share an opening and diverge
    later, so the whole text goes through the hash.
    """
    return hashlib.blake2b((content or "").strip().encode("utf-8"), digest_size=16).hexdigest()


class Fingerprinter:
    """Set of fingerprints seen during one capture session."""

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def __contains__(self, content: str) -> bool:
        return fingerprint(content) in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def admit(self, content: str) -> bool:
        """Record content; False when identical trimmed content was already seen."""
        key = fingerprint(content)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def seed(self, blocks: Iterable[RawBlock]) -> None:
        """Mark blocks as seen without emitting them (e.g. a pre-submit baseline)."""
        for block in blocks:
            self._seen.add(fingerprint(block.content))

    def dedupe(self, blocks: Iterable[RawBlock]) -> list[RawBlock]:
        """Keep first occurrences, preserving order."""
        return [block for block in blocks if self.admit(block.content)]


__all__ = ["Fingerprinter", "fingerprint"]
