"""Convert calls of the pre-Rails 5 ``xhr`` test helper to keyword style.

Prior to Rails 5 one might write::

    xhr :get, images_path, limit: 10, sort: 'new'

which is converted into::

    get images_path, params: { limit: 10, sort: 'new' }, xhr: true

Headers, given as a fourth argument, are supported too::

    xhr :get, root_path, {}, { Accept: 'application/json' }
    # becomes
    get root_path, headers: { Accept: 'application/json' }, xhr: true

Only the text of each matched call changes; everything else in the file,
comments and formatting included, is copied through untouched.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Set

from lark import Token, Tree, Visitor

from .errors import AlreadyMigrated, UnsupportedArity, UnsupportedCall
from .parser_rd import parse_source
from .patch import TextPatch, apply_patches
from .tree import Node, is_kind, is_token, node_line, node_span, sym, sym_name, synth
from .unparse import unparse

logger = logging.getLogger(__name__)

LEGACY_METHOD = 'xhr'

# keys that mark a call as already written in keyword style
MIGRATED_KEYS = ('params', 'headers')

# ---------------- Matching ----------------

def is_legacy_xhr(node: Node) -> bool:
    """True for any ``call`` node whose method name is ``xhr``."""
    if not is_kind(node, 'call') or len(node.children) < 2:
        return False

    name = node.children[1]
    return is_token(name) and str(name) == LEGACY_METHOD


# ---------------- Validation ----------------

def _first_key(node: Node) -> Optional[str]:
    if not is_kind(node, 'hash') or not node.children:
        return None

    pair = node.children[0]
    if not is_kind(pair, 'pair'):
        return None
    return sym_name(pair.children[0])


def _block_pass(call: Tree) -> Optional[Tree]:
    last = call.children[-1]
    if len(call.children) > 2 and is_kind(last, 'block_pass'):
        return last
    return None


def _heredoc_body_inside(call: Tree) -> bool:
    """True when a heredoc opened by ``call`` has its body before the call ends."""
    end_line = call.meta.end_line
    for node in call.iter_subtrees():
        if node.data != 'str':
            continue
        tok = node.children[0]
        if is_token(tok) and tok.value.startswith('<<') and tok.line < end_line:
            return True
    return False


def extract_and_validate_arguments(call: Tree) -> List[Node]:
    """
    Trailing arguments of an xhr call (everything after verb and path).

    A trailing ``&block`` argument is not part of the result; it is carried
    over by build_replacement_call.

    Raises AlreadyMigrated when the only trailing argument already uses
    ``params:``/``headers:`` keys, UnsupportedArity for more than two trailing
    arguments, and UnsupportedCall when no verb-named call can be built.
    """
    arguments = list(call.children[4:])
    if _block_pass(call) is not None:
        arguments = arguments[:-1]
    line = node_line(call)

    def text() -> str:
        return unparse(call, command_style=True)

    if len(arguments) == 1 and _first_key(arguments[0]) in MIGRATED_KEYS:
        raise AlreadyMigrated("Call already uses keyword arguments", text(), line)

    if len(arguments) > 2:
        raise UnsupportedArity(
            f"Expected at most params and headers, got {len(arguments)} trailing arguments",
            text(),
            line,
        )

    verb = sym_name(call.children[2]) if len(call.children) >= 4 else None
    if verb is None or not verb.isidentifier() or is_kind(call.children[3], 'splat', 'block_pass'):
        raise UnsupportedCall("Expected a literal HTTP verb symbol and a path", text(), line)

    if any(is_kind(arg, 'splat', 'block_pass') for arg in arguments):
        raise UnsupportedCall("Splatted params or headers cannot be split into keywords", text(), line)

    if not call.meta.empty and _heredoc_body_inside(call):
        raise UnsupportedCall("Heredoc body inside the call would be lost", text(), line)

    return arguments


# ---------------- Synthesis ----------------

def _pair(name: str, value: Node) -> Tree:
    return synth('pair', [sym(name), value])


def build_xhr_hash(params: Node = None, headers: Node = None) -> Tree:
    """``headers:``, ``params:`` (unless empty) and ``xhr: true``, in that order."""
    pairs: List[Tree] = []

    if headers is not None:
        pairs.append(_pair('headers', headers))
    if params is not None and params.children:
        pairs.append(_pair('params', params))
    pairs.append(_pair('xhr', synth('true', [])))

    return synth('hash', pairs)


def build_replacement_call(call: Tree, arguments: List[Node]) -> Tree:
    verb = sym_name(call.children[2])
    path = call.children[3]
    children = [None, Token('IDENT', verb), path, build_xhr_hash(*arguments)]

    block = _block_pass(call)
    if block is not None:
        children.append(block)
    return synth('call', children)


# ---------------- Driver ----------------

# parents whose children are whole statements
STATEMENT_LISTS = ('program', 'body')


class XhrToRails5(Visitor):
    """Walk a parsed file and collect one text patch per legacy xhr call."""

    def __init__(self, source: str):
        self.source = source
        self.patches: List[TextPatch] = []
        self.statements: Set[int] = set()

    def had_parens(self, node: Tree) -> bool:
        name = node.children[1]
        return name.end_pos is not None and self.source.startswith('(', name.end_pos)

    def call(self, node: Tree):
        if not is_legacy_xhr(node):
            return

        arguments = extract_and_validate_arguments(node)

        # `xhr(...)` inside an expression keeps its parentheses
        command_style = id(node) in self.statements or not self.had_parens(node)
        replacement = unparse(build_replacement_call(node, arguments), command_style=command_style)

        span = node_span(node)
        if span is None:
            raise UnsupportedCall("Matched call has no position in the source", replacement)

        start, end = span
        logger.debug("line %s: %r -> %r", node_line(node), self.source[start:end], replacement)
        self.patches.append(TextPatch(start, end, replacement))

    def rewrite(self, tree: Tree) -> str:
        self.patches = []
        self.statements = {
            id(child)
            for parent in tree.iter_subtrees()
            if parent.data in STATEMENT_LISTS
            for child in parent.children
        }
        self.visit_topdown(tree)
        return apply_patches(self.source, self.patches)


def rewrite(buffer: str, tree: Tree) -> str:
    """Source text of ``buffer`` with every legacy xhr call in ``tree`` converted."""
    return XhrToRails5(buffer).rewrite(tree)


def rewrite_source(buffer: str, path: str = "(string)") -> str:
    return rewrite(buffer, parse_source(buffer, path))
