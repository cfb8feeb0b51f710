"""Error taxonomy shared by the parser, the rewriter and the CLI.

Every error here is fatal for the file being processed: nothing is emitted
for a file once one of them is raised.
"""

from __future__ import annotations

from typing import Optional


class ParseFailure(Exception):
    """Source text could not be turned into a tree."""


class RewriteError(Exception):
    """A matched call could not be converted."""

    def __init__(self, message: str, source: Optional[str] = None, line: Optional[int] = None):
        self.message = message
        self.source = source
        self.line = line

        text = message
        if line is not None:
            text = f"{text} (line {line})"
        if source:
            text = f"{text}:\n\n    {source}"
        super().__init__(text)


class AlreadyMigrated(RewriteError):
    """The xhr call already passes ``params:``/``headers:`` keywords."""


class UnsupportedArity(RewriteError):
    """The xhr call has more trailing arguments than params and headers."""


class UnsupportedCall(RewriteError):
    """The xhr call has no literal verb symbol or no path argument."""


class OverlappingPatch(RewriteError):
    """Two replacements cover the same source text."""
