"""Apply span replacements to a source buffer.

Patches address the original buffer, never a partially patched one, so they
can be collected in any order during a tree walk and applied at the end.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .errors import OverlappingPatch


@dataclass(frozen=True)
class TextPatch:
    """Replace ``source[start:end]`` with ``text``."""

    start: int
    end: int
    text: str

    def __post_init__(self):
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid patch span {self.start}..{self.end}")


def apply_patches(source: str, patches: Iterable[TextPatch]) -> str:
    """Materialize ``patches`` against ``source``; text outside every span is copied unchanged."""
    ordered = sorted(patches, key=lambda p: (p.start, p.end))
    out: List[str] = []
    cursor = 0

    for patch in ordered:
        if patch.start < cursor:
            raise OverlappingPatch(
                f"Replacement at {patch.start}..{patch.end} overlaps a previous one ending at {cursor}",
                source[patch.start:patch.end],
            )
        if patch.end > len(source):
            raise ValueError(f"Patch span {patch.start}..{patch.end} is outside the buffer")

        out.append(source[cursor:patch.start])
        out.append(patch.text)
        cursor = patch.end

    out.append(source[cursor:])
    return ''.join(out)
