from __future__ import annotations

import argparse
import difflib
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .errors import ParseFailure, RewriteError
from .xhr_rewrite import rewrite_source

logger = logging.getLogger("rails5_xhr_update")


def _build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="rails5-xhr-update",
        description="Convert pre-Rails 5 `xhr :verb, path, params, headers` test calls to keyword style.",
    )
    ap.add_argument("files", nargs="+", type=Path, metavar="FILE")
    ap.add_argument("-w", "--write", action="store_true", help="Write changes back to files")
    ap.add_argument("--diff", action="store_true", help="Print a unified diff instead of the converted source")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log every converted call")
    return ap


def _diff(old_text: str, new_text: str, path: Path) -> str:
    diff = difflib.unified_diff(
        old_text.splitlines(keepends=True),
        new_text.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
    )
    return "".join(diff)


def process_file(path: Path, write: bool = False, show_diff: bool = False) -> None:
    """Convert one file and emit the result; raises on any failure, leaving the file untouched."""
    with path.open(encoding="utf-8", newline="") as fh:
        old_text = fh.read()
    new_text = rewrite_source(old_text, str(path))

    if show_diff:
        sys.stdout.write(_diff(old_text, new_text, path))
    elif not write:
        sys.stdout.write(new_text)

    if write:
        if new_text == old_text:
            logger.debug("%s: unchanged", path)
            return
        path.write_text(new_text, encoding="utf-8", newline="")
        logger.info("%s: updated", path)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    failed = 0
    for path in args.files:
        try:
            process_file(path, write=args.write, show_diff=args.diff)
        except (ParseFailure, RewriteError, OSError, UnicodeDecodeError) as exc:
            logger.error("%s: %s", path, exc)
            failed += 1

    if failed:
        logger.error("%d of %d file(s) failed", failed, len(args.files))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
