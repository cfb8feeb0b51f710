from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Iterable, List

from lark import Token, Tree

BASE_DIR = Path(__file__).resolve().parent.parent.parent
SRC_DIR = (BASE_DIR / "src").resolve()

if str(BASE_DIR) not in sys.path:
    sys.path.append(str(BASE_DIR))
if str(SRC_DIR) not in sys.path:
    sys.path.append(str(SRC_DIR))

from rails5_xhr_update.lexer_rd import LexError, tokenize
from rails5_xhr_update.parser_rd import ParseError, parse_source
from rails5_xhr_update.token_types import TT, Tok
from rails5_xhr_update.unparse import unparse


def sexp(node: Any) -> Any:
    """Nested tuples for a tree: (kind, *children), tokens as their text."""
    if node is None:
        return None
    if isinstance(node, Token):
        return str(node)
    assert isinstance(node, Tree)
    return (node.data, *[sexp(child) for child in node.children])


def find_trees(node: Any, labels: Iterable[str]) -> List[Tree]:
    """All subtrees with one of the given labels, in source order."""
    lookup = set(labels)
    if not isinstance(node, Tree):
        return []
    return [t for t in node.iter_subtrees_topdown() if t.data in lookup]


def parse_statements(source: str) -> List[Tree]:
    tree = parse_source(source)
    assert tree.data == "program"
    return list(tree.children)


def parse_stmt(source: str) -> Tree:
    """Last top-level statement of ``source``."""
    stmts = parse_statements(source)
    assert stmts, f"no statements parsed from {source!r}"
    return stmts[-1]


def non_eof_tokens(source: str) -> List[Tok]:
    return [token for token in tokenize(source) if token.type is not TT.EOF]


def reprint(source: str) -> str:
    return unparse(parse_stmt(source))


__all__ = [
    "LexError",
    "ParseError",
    "TT",
    "Tok",
    "find_trees",
    "non_eof_tokens",
    "parse_statements",
    "parse_stmt",
    "reprint",
    "sexp",
]
