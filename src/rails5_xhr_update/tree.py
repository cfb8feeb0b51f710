"""Shared helpers for working with the lark Tree/Token nodes the parser emits.

Parsed nodes carry a populated ``lark.tree.Meta`` (``start_pos``/``end_pos``
are offsets into the source string). Nodes built by the rewriter get an empty
Meta and therefore no span.
"""
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, TypeGuard, Union

from lark import Token, Tree
from lark.tree import Meta
from typing_extensions import TypeAlias

Node: TypeAlias = Union[Tree, Token, None]
Span: TypeAlias = Tuple[int, int]


def is_tree(node: Node) -> TypeGuard[Tree]:
    return isinstance(node, Tree)


def is_token(node: Node) -> TypeGuard[Token]:
    return isinstance(node, Token)


def tree_children(node: Node) -> List[Node]:
    if not is_tree(node):
        return []

    return list(node.children)


def is_kind(node: Node, *labels: str) -> bool:
    return is_tree(node) and node.data in labels


def make_meta(line: int, column: int, start_pos: int, end_line: int, end_column: int, end_pos: int) -> Meta:
    meta = Meta()
    meta.empty = False
    meta.line = line
    meta.column = column
    meta.start_pos = start_pos
    meta.end_line = end_line
    meta.end_column = end_column
    meta.end_pos = end_pos
    return meta


def node_span(node: Node) -> Optional[Span]:
    """Source span of a parsed node, None for synthesized ones."""
    if is_token(node):
        if node.start_pos is None or node.end_pos is None:
            return None
        return (node.start_pos, node.end_pos)

    if not is_tree(node):
        return None

    meta = node.meta
    if meta.empty:
        return None
    return (meta.start_pos, meta.end_pos)


def node_line(node: Node) -> Optional[int]:
    if is_token(node):
        return node.line
    if is_tree(node) and not node.meta.empty:
        return node.meta.line
    return None


def synth(label: str, children: Sequence[Node]) -> Tree:
    """Build a node that has no position in any source buffer."""
    return Tree(label, list(children))


def sym(name: str) -> Tree:
    return synth('sym', [Token('IDENT', name)])


def sym_name(node: Node) -> Optional[str]:
    """Name of a symbol literal, for both :name and :"name" forms."""
    if not is_kind(node, 'sym') or not node.children:
        return None

    tok = node.children[0]
    if not is_token(tok):
        return None
    if tok.type == 'STRING':
        body = tok.value[1:-1]
        return None if '#{' in body else body
    return str(tok.value)
