"""Turn parsed or synthesized trees back into Ruby source.

Literal tokens keep their original text, so strings, numbers and regexes come
out exactly as written. Grouping parentheses survive as ``paren`` nodes, which
means the printer never has to insert parentheses for precedence itself.

Calls with arguments always print with parentheses, except the outermost call
when ``command_style`` is requested (``get path, xhr: true``). A non-empty hash
in last argument position prints without braces.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Optional

from lark import Tree

from .tree import Node, is_kind, is_token, node_span, sym_name, tree_children

INDENT = '  '

LABEL_SAFE_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*[?!]?$')

# ---------------- Entry point ----------------

def unparse(node: Node, command_style: bool = False) -> str:
    """Render ``node`` as Ruby source; multi-line constructs indent by two spaces."""
    if command_style and is_kind(node, 'call', 'csend'):
        return _call(node, 0, parens=False)
    return _emit(node, 0)


def _emit(node: Node, level: int) -> str:
    if node is None:
        return ''

    if is_token(node):
        return str(node)

    d = node.data
    handler = _NODE_DISPATCH.get(d)
    if handler is not None:
        return handler(node, level)

    kids = node.children

    match d:
        case 'int' | 'float' | 'str' | 'xstr' | 'regexp' | 'words':
            return str(kids[0])
        case 'ivar' | 'gvar' | 'cvar' | 'lvar':
            return str(kids[0])
        case 'nil' | 'true' | 'false' | 'self' | 'redo' | 'retry' | 'zsuper':
            return 'super' if d == 'zsuper' else d
        case 'cbase':
            return ''
        case 'dstr':
            return ' '.join(_emit(k, level) for k in kids)
        case 'splat':
            return '*' + (_emit(kids[0], level) if kids else '')
        case 'kwsplat':
            return '**' + _emit(kids[0], level)
        case 'block_pass':
            return '&' + (_emit(kids[0], level) if kids else '')
        case 'defined':
            return f"defined?({_emit(kids[0], level)})"
        case 'paren':
            return '(' + '; '.join(_emit(k, level) for k in kids) + ')'
        case 'array':
            return '[' + ', '.join(_emit(k, level) for k in kids) + ']'
        case 'mlhs':
            return '(' + ', '.join(_emit(k, level) for k in kids) + ')'
        case 'return' | 'break' | 'next':
            return f"{d} {_arguments(kids, level)}" if kids else d
        case 'yield' | 'super':
            return f"{d}({_arguments(kids, level)})" if kids else d
        case 'alias':
            return f"alias {_alias_name(kids[0])} {_alias_name(kids[1])}"
        case 'program' | 'body':
            return _statements(kids, level)
        case _:
            raise ValueError(f"Cannot print node kind {d!r}")


def _statements(stmts: List[Node], level: int) -> str:
    pad = INDENT * level
    return '\n'.join(pad + _emit(s, level) for s in stmts)


def _block_body(node: Node, level: int) -> str:
    """Body of a multi-line construct, each line indented one step deeper."""
    text = _emit(node, level + 1)
    return text + '\n' if text else ''


# ---------------- Sends ----------------

def _call(n: Tree, level: int, parens: bool = True) -> str:
    recv, name, *args = n.children
    dot = '&.' if n.data == 'csend' else '.'

    head = str(name)
    if recv is not None:
        if head.endswith('=') and head[:-1].isidentifier() and len(args) == 1:
            return f"{_emit(recv, level)}{dot}{head[:-1]} = {_emit(args[0], level)}"
        head = _emit(recv, level) + dot + head

    if not args:
        return head
    if parens:
        return f"{head}({_arguments(args, level)})"
    return f"{head} {_arguments(args, level)}"


def _arguments(args: List[Node], level: int) -> str:
    # a trailing hash stays braceless even when a block argument follows it
    last = len(args) - 1
    while last > 0 and is_kind(args[last], 'block_pass'):
        last -= 1

    parts: List[str] = []
    for i, arg in enumerate(args):
        if i == last and is_kind(arg, 'hash') and arg.children:
            parts.append(_pairs(arg.children, level))
        else:
            parts.append(_emit(arg, level))
    return ', '.join(parts)


def _index(n: Tree, level: int) -> str:
    recv, *args = n.children
    return f"{_emit(recv, level)}[{_arguments(args, level)}]"


def _block(n: Tree, level: int) -> str:
    call, params, body, style = n.children
    head = _emit(call, level)
    bars = f" |{_params(params.children, level)}|" if params is not None else ''

    if str(style) == '{':
        stmts = tree_children(body)
        if len(stmts) <= 1:
            inner = _emit(stmts[0], level) + ' ' if stmts else ''
            return f"{head} {{{bars} {inner}}}"
        return f"{head} {{{bars}\n{_block_body(body, level)}{INDENT * level}}}"

    return f"{head} do{bars}\n{_block_body(body, level)}{INDENT * level}end"


def _lambda(n: Tree, level: int) -> str:
    params, body, style = n.children
    sig = f"({_params(params.children, level)})" if params is not None else ''

    if str(style) == '{':
        stmts = tree_children(body)
        inner = ' ' + '; '.join(_emit(s, level) for s in stmts) + ' ' if stmts else ' '
        return f"->{sig} {{{inner}}}"
    return f"->{sig} do\n{_block_body(body, level)}{INDENT * level}end"


# ---------------- Hashes ----------------

def _hash(n: Tree, level: int) -> str:
    if not n.children:
        return '{}'
    return '{ ' + _pairs(n.children, level) + ' }'


def _pairs(pairs: List[Node], level: int) -> str:
    return ', '.join(_emit(p, level) for p in pairs)


def _pair(n: Tree, level: int) -> str:
    key, value = n.children
    label = _label(key)
    if label is not None:
        return f"{label} {_emit(value, level)}"
    return f"{_emit(key, level)} => {_emit(value, level)}"


def _label(key: Node) -> Optional[str]:
    """``name:`` / ``"name":`` form for symbol keys, None when a symbol key can't be written that way."""
    if not is_kind(key, 'sym'):
        return None

    tok = key.children[0]
    if tok.type == 'STRING':
        return f"{tok}:"

    name = sym_name(key)
    if name is not None and LABEL_SAFE_RE.match(name):
        return f"{name}:"
    return None


def _sym(n: Tree, level: int) -> str:
    return ':' + str(n.children[0])


def _alias_name(node: Node) -> str:
    if is_kind(node, 'sym'):
        return str(node.children[0])
    return _emit(node, 0)


# ---------------- Operators ----------------

def _binop(n: Tree, level: int) -> str:
    left, op, right = n.children
    return f"{_emit(left, level)} {op} {_emit(right, level)}"


def _unop(n: Tree, level: int) -> str:
    op, operand = n.children
    sep = ' ' if str(op) == 'not' else ''
    return f"{op}{sep}{_emit(operand, level)}"


def _asgn(n: Tree, level: int) -> str:
    target, op, value = n.children
    return f"{_emit(target, level)} {op} {_emit(value, level)}"


def _masgn(n: Tree, level: int) -> str:
    mlhs, value = n.children
    targets = ', '.join(_emit(t, level) for t in mlhs.children)
    if is_kind(value, 'array') and _bare_array(value):
        rhs = ', '.join(_emit(v, level) for v in value.children)
    else:
        rhs = _emit(value, level)
    return f"{targets} = {rhs}"


def _bare_array(value: Tree) -> bool:
    """`a, b = 1, 2` parses its right side as an array without brackets"""
    if not value.children:
        return False
    span, first = node_span(value), node_span(value.children[0])
    return span is not None and first is not None and span[0] == first[0]


def _ternary(n: Tree, level: int) -> str:
    cond, then_branch, else_branch = n.children
    return f"{_emit(cond, level)} ? {_emit(then_branch, level)} : {_emit(else_branch, level)}"


def _range(n: Tree, level: int) -> str:
    lo, op, hi = n.children
    return f"{_emit(lo, level)}{op}{_emit(hi, level)}"


def _const(n: Tree, level: int) -> str:
    scope, name = n.children
    if scope is None:
        return str(name)
    return f"{_emit(scope, level)}::{name}"


def _modifier(n: Tree, level: int) -> str:
    kw, stmt, cond = n.children
    return f"{_emit(stmt, level)} {kw} {_emit(cond, level)}"


def _rescue_mod(n: Tree, level: int) -> str:
    stmt, fallback = n.children
    return f"{_emit(stmt, level)} rescue {_emit(fallback, level)}"


# ---------------- Definitions ----------------

def _params(params: List[Node], level: int) -> str:
    plain: List[str] = []
    shadow: List[str] = []

    for p in params:
        kids = p.children
        name = str(kids[0]) if kids and is_token(kids[0]) else ''
        match p.data:
            case 'arg':
                plain.append(name)
            case 'optarg':
                plain.append(f"{name} = {_emit(kids[1], level)}")
            case 'restarg':
                plain.append('*' + name)
            case 'kwarg':
                plain.append(name + ':')
            case 'kwoptarg':
                plain.append(f"{name}: {_emit(kids[1], level)}")
            case 'kwrestarg':
                plain.append('**' + name)
            case 'blockarg':
                plain.append('&' + name)
            case 'shadowarg':
                shadow.append(name)
            case 'mlhs':
                plain.append(f"({_params(kids, level)})")

    text = ', '.join(plain)
    if shadow:
        text += '; ' + ', '.join(shadow)
    return text


def _def(n: Tree, level: int) -> str:
    singleton, name, args, body = n.children
    head = f"def {_emit(singleton, level) + '.' if singleton is not None else ''}{name}"
    if args.children:
        head += f"({_params(args.children, level)})"
    return f"{head}\n{_block_body(body, level)}{INDENT * level}end"


def _class(n: Tree, level: int) -> str:
    cpath, superclass, body = n.children
    head = f"class {_emit(cpath, level)}"
    if superclass is not None:
        head += f" < {_emit(superclass, level)}"
    return f"{head}\n{_block_body(body, level)}{INDENT * level}end"


def _sclass(n: Tree, level: int) -> str:
    target, body = n.children
    return f"class << {_emit(target, level)}\n{_block_body(body, level)}{INDENT * level}end"


def _module(n: Tree, level: int) -> str:
    cpath, body = n.children
    return f"module {_emit(cpath, level)}\n{_block_body(body, level)}{INDENT * level}end"


# ---------------- Control flow ----------------

def _if(n: Tree, level: int) -> str:
    pad = INDENT * level
    return _if_chain(n, level) + f"{pad}end"


def _if_chain(n: Tree, level: int, keyword: Optional[str] = None) -> str:
    kw, cond, body, else_part = n.children
    pad = INDENT * level
    text = f"{keyword or kw} {_emit(cond, level)}\n{_block_body(body, level)}"

    if is_kind(else_part, 'if'):
        return text + pad + _if_chain(else_part, level, 'elsif')
    if else_part is not None:
        text += f"{pad}else\n{_block_body(else_part, level)}"
    return text


def _while(n: Tree, level: int) -> str:
    kw, cond, body = n.children
    return f"{kw} {_emit(cond, level)}\n{_block_body(body, level)}{INDENT * level}end"


def _for(n: Tree, level: int) -> str:
    var, iterable, body = n.children
    names = ', '.join(_emit(v, level) for v in var.children) if is_kind(var, 'mlhs') else _emit(var, level)
    return f"for {names} in {_emit(iterable, level)}\n{_block_body(body, level)}{INDENT * level}end"


def _case(n: Tree, level: int) -> str:
    subject, *whens, else_body = n.children
    pad = INDENT * level
    text = 'case' + (f" {_emit(subject, level)}" if subject is not None else '') + '\n'

    for w in whens:
        *conds, body = w.children
        text += f"{pad}when {', '.join(_emit(c, level) for c in conds)}\n{_block_body(body, level)}"
    if else_body is not None:
        text += f"{pad}else\n{_block_body(else_body, level)}"
    return text + f"{pad}end"


def _kwbegin(n: Tree, level: int) -> str:
    return f"begin\n{_bodystmt_text(n.children[0], level)}{INDENT * level}end"


def _bodystmt_text(node: Node, level: int) -> str:
    if not is_kind(node, 'bodystmt'):
        return _block_body(node, level)

    pad = INDENT * level
    body, *clauses = node.children
    text = _block_body(body, level)

    for clause in clauses:
        match clause.data:
            case 'resbody':
                exc_list, var, rbody = clause.children
                line = 'rescue'
                if exc_list.children:
                    line += ' ' + ', '.join(_emit(c, level) for c in exc_list.children)
                if var is not None:
                    line += f" => {_emit(var, level)}"
                text += f"{pad}{line}\n{_block_body(rbody, level)}"
            case 'else':
                text += f"{pad}else\n{_block_body(clause.children[0], level)}"
            case 'ensure':
                text += f"{pad}ensure\n{_block_body(clause.children[0], level)}"
    return text


def _bodystmt(n: Tree, level: int) -> str:
    # reached only through blocks/defs, which indent the result themselves
    return _bodystmt_text(n, level - 1).rstrip('\n')


_NODE_DISPATCH: Dict[str, Callable[[Tree, int], str]] = {
    'call': _call,
    'csend': _call,
    'index': _index,
    'block': _block,
    'lambda': _lambda,
    'hash': _hash,
    'pair': _pair,
    'sym': _sym,
    'binop': _binop,
    'unop': _unop,
    'asgn': _asgn,
    'masgn': _masgn,
    'ternary': _ternary,
    'range': _range,
    'const': _const,
    'if_mod': _modifier,
    'while_mod': _modifier,
    'rescue_mod': _rescue_mod,
    'def': _def,
    'class': _class,
    'sclass': _sclass,
    'module': _module,
    'if': _if,
    'while': _while,
    'for': _for,
    'case': _case,
    'kwbegin': _kwbegin,
    'bodystmt': _bodystmt,
}
