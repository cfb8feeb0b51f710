"""
Recursive Descent Parser for Ruby

Parses the Ruby found in Rails applications and test suites into lark Trees.
Node kinds follow the usual Ruby AST vocabulary (call, hash, pair, sym, lvar,
block, def, ...); every node carries its source span in ``meta`` so callers
can patch the original text instead of regenerating it.

Structure:
- Lexer: Token stream from source (lexer_rd)
- Parser: Recursive descent, one method per precedence level
- AST: lark Tree/Token

Call nodes have the layout ``call(receiver | None, name, *arguments)``.
Trailing ``key: value`` arguments written without braces are collected into a
single ``hash`` argument, the same kind as a braced literal.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Set, Tuple, Union

from lark import Token, Tree

from .errors import ParseFailure
from .lexer_rd import tokenize
from .token_types import TT, Tok
from .tree import Node, is_kind, make_meta

logger = logging.getLogger(__name__)

# ============================================================================
# Parser
# ============================================================================

class ParseError(ParseFailure):
    """Parse error with position info"""
    def __init__(self, message: str, token: Optional[Tok] = None):
        self.message = message
        self.token = token
        self.line = token.line if token else None
        self.column = token.column if token else None
        super().__init__(
            f"{message} at line {token.line}, col {token.column}" if token else message
        )


# Tokens that begin an argument of a parenthesis-free call (`puts x`)
ARG_START = frozenset({
    TT.INT, TT.FLOAT, TT.STRING, TT.XSTRING, TT.SYMBOL, TT.DSYM, TT.REGEX,
    TT.WORDS, TT.LABEL, TT.STRING_LABEL, TT.IDENT, TT.CONST, TT.IVAR,
    TT.GVAR, TT.CVAR, TT.NIL, TT.TRUE, TT.FALSE, TT.SELF, TT.ARROW,
    TT.DEFINED, TT.BANG, TT.TILDE, TT.LBRACK, TT.LPAR, TT.DEF, TT.SUPER,
    TT.YIELD,
})

# Operators that begin an argument when glued to it (`foo *args`, `puts -1`)
GLUED_ARG_START = frozenset({
    TT.MINUS, TT.PLUS, TT.STAR, TT.POW, TT.AMP, TT.COLON2,
})

# Tokens after `return`/`break`/`next` that mean "no value"
VALUE_STOP = frozenset({
    TT.NEWLINE, TT.SEMI, TT.EOF, TT.END, TT.RBRACE, TT.RPAR, TT.RBRACK,
    TT.IF, TT.UNLESS, TT.WHILE, TT.UNTIL, TT.RESCUE, TT.THEN, TT.DO,
    TT.AND, TT.OR, TT.COMMA, TT.COLON, TT.ELSE, TT.ELSIF, TT.WHEN,
    TT.ENSURE,
})

# after a label, if/unless/while/until open the value instead of ending it
LABEL_VALUE_STOP = VALUE_STOP - {TT.IF, TT.UNLESS, TT.WHILE, TT.UNTIL}

# Binary operators, lowest precedence first
BINARY_LEVELS: List[Tuple[TT, ...]] = [
    (TT.OROR,),
    (TT.ANDAND,),
    (TT.CMP, TT.EQ, TT.EQQ, TT.NEQ, TT.MATCH, TT.NMATCH),
    (TT.LT, TT.LTE, TT.GT, TT.GTE),
    (TT.PIPE, TT.CARET),
    (TT.AMP,),
    (TT.LSHIFT, TT.RSHIFT),
    (TT.PLUS, TT.MINUS),
    (TT.STAR, TT.SLASH, TT.PERCENT),
]

# Token types usable as method names in `def`
OPERATOR_METHODS = frozenset({
    TT.PLUS, TT.MINUS, TT.STAR, TT.POW, TT.SLASH, TT.PERCENT, TT.EQ,
    TT.EQQ, TT.NEQ, TT.MATCH, TT.NMATCH, TT.CMP, TT.LT, TT.LTE, TT.GT,
    TT.GTE, TT.BANG, TT.TILDE, TT.AMP, TT.PIPE, TT.CARET, TT.LSHIFT,
    TT.RSHIFT,
})

ASSIGNABLE = ('lvar', 'ivar', 'gvar', 'cvar', 'const', 'index')

Start = Union[Tok, Tree]


class Parser:
    """
    Recursive descent parser for Ruby.

    Expression precedence (lowest to highest):
    1. statement modifiers (if, unless, while, until, rescue)
    2. and / or
    3. not
    4. assignment (=, op=)
    5. ternary (? :)
    6. range (.., ...)
    7. || then &&
    8. equality, comparison, bitwise, shift, additive, multiplicative
    9. unary minus
    10. pow (**)
    11. unary (!, ~, +), defined?
    12. postfix (.meth, &.meth, ::Const, [index], blocks)
    13. primary (literals, variables, calls, keyword constructs)

    Ruby decides between a local variable and a method call by whether the
    name was assigned earlier in the scope, so the parser tracks locals.
    Parenthesis-free calls (`get :index, id: 1`) are recognised when a
    non-local identifier is followed by a spaced argument start.
    """

    def __init__(self, tokens: List[Tok]):
        self.tokens = tokens
        self.pos = 0
        self.current = tokens[0] if tokens else Tok(TT.EOF, None, 0, 0)
        self.prev = Tok(TT.EOF, None, 1, 1, 0, 0, False, 1, 1)
        self.scopes: List[Set[str]] = [set()]
        # > 0 while parsing arguments of a parenthesis-free call, where
        # `do` belongs to the outer call
        self.no_do = 0

    # ========================================================================
    # Token Navigation
    # ========================================================================

    def peek(self, offset: int = 0) -> Tok:
        """Look ahead at token"""
        idx = self.pos + offset
        if idx < len(self.tokens):
            return self.tokens[idx]
        return self.tokens[-1]

    def advance(self) -> Tok:
        """Consume current token and move to next"""
        prev = self.current
        self.prev = prev
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        self.current = self.tokens[self.pos]
        return prev

    def check(self, *types: TT) -> bool:
        """Check if current token matches any of the given types"""
        return self.current.type in types

    def match(self, *types: TT) -> bool:
        """Check and consume if current token matches"""
        if self.check(*types):
            self.advance()
            return True
        return False

    def expect(self, token_type: TT, message: Optional[str] = None) -> Tok:
        """Consume token of expected type or raise error"""
        if not self.check(token_type):
            msg = message or f"Expected {token_type.name}, got {self.current.type.name}"
            raise ParseError(msg, self.current)
        return self.advance()

    def skip_newlines(self):
        while self.match(TT.NEWLINE):
            pass

    # ========================================================================
    # Node Construction
    # ========================================================================

    def leaf(self, tok: Tok, type_name: Optional[str] = None, value: Optional[str] = None) -> Token:
        return Token(
            type_name or tok.type.name,
            tok.value if value is None else value,
            start_pos=tok.start,
            line=tok.line,
            column=tok.column,
            end_line=tok.end_line,
            end_column=tok.end_column,
            end_pos=tok.end,
        )

    def finish(self, data: str, children: Sequence[Node], start: Start, end: Optional[Tree] = None) -> Tree:
        """Build a node spanning from ``start`` to ``end`` (default: last consumed token)"""
        if isinstance(start, Tok):
            line, column, start_pos = start.line, start.column, start.start
        else:
            line, column, start_pos = start.meta.line, start.meta.column, start.meta.start_pos

        if end is None:
            end_line, end_column, end_pos = self.prev.end_line, self.prev.end_column, self.prev.end
        else:
            end_line, end_column, end_pos = end.meta.end_line, end.meta.end_column, end.meta.end_pos

        if end_pos < start_pos:
            end_line, end_column, end_pos = line, column, start_pos

        return Tree(data, list(children), make_meta(line, column, start_pos, end_line, end_column, end_pos))

    # ========================================================================
    # Local Variable Scopes
    # ========================================================================

    def push_scope(self, inherit: bool):
        self.scopes.append(set(self.scopes[-1]) if inherit else set())

    def pop_scope(self):
        self.scopes.pop()

    def declare(self, name: str):
        self.scopes[-1].add(name)

    def is_local(self, name: str) -> bool:
        return name in self.scopes[-1]

    # ========================================================================
    # Top-Level Parsing
    # ========================================================================

    def parse(self) -> Tree:
        """Parse entire program"""
        start = self.current
        stmts = self.parse_stmts(())
        self.expect(TT.EOF, f"Unexpected {self.current.type.name}")
        return self.finish('program', stmts, start)

    def parse_stmts(self, terminators: Tuple[TT, ...]) -> List[Tree]:
        stmts: List[Tree] = []

        while True:
            while self.match(TT.NEWLINE, TT.SEMI):
                pass
            if self.check(TT.EOF, *terminators):
                break

            stmts.append(self.parse_statement())

            if not self.check(TT.NEWLINE, TT.SEMI, TT.EOF, *terminators):
                raise ParseError(f"Unexpected {self.current.type.name} after statement", self.current)

        return stmts

    def parse_body(self, terminators: Tuple[TT, ...]) -> Tree:
        start = self.current
        stmts = self.parse_stmts(terminators)
        if not stmts:
            return Tree('body', [], make_meta(start.line, start.column, start.start, start.line, start.column, start.start))
        return self.finish('body', stmts, stmts[0], stmts[-1])

    def parse_bodystmt(self) -> Tree:
        """Statements with optional rescue/else/ensure clauses, up to `end`"""
        start = self.current
        body = self.parse_body((TT.RESCUE, TT.ELSE, TT.ENSURE, TT.END))
        if not self.check(TT.RESCUE, TT.ELSE, TT.ENSURE):
            return body

        clauses: List[Node] = [body]
        while self.check(TT.RESCUE):
            rescue_tok = self.advance()
            classes: List[Node] = []
            if not self.check(TT.ASSOC, TT.THEN, TT.NEWLINE, TT.SEMI):
                while True:
                    classes.append(self.parse_splat_or(self.parse_ternary))
                    if not self.match(TT.COMMA):
                        break
                    self.skip_newlines()
            var = None
            if self.match(TT.ASSOC):
                var = self.to_target(self.parse_postfix())
            self.parse_then()
            rbody = self.parse_body((TT.RESCUE, TT.ELSE, TT.ENSURE, TT.END))
            exc_list = self.finish('exc_list', classes, rescue_tok)
            clauses.append(self.finish('resbody', [exc_list, var, rbody], rescue_tok))

        if self.check(TT.ELSE):
            else_tok = self.advance()
            clauses.append(self.finish('else', [self.parse_body((TT.ENSURE, TT.END))], else_tok))

        if self.check(TT.ENSURE):
            ensure_tok = self.advance()
            clauses.append(self.finish('ensure', [self.parse_body((TT.END,))], ensure_tok))

        return self.finish('bodystmt', clauses, start)

    def parse_then(self):
        """Consume the separator after a condition: newline, `;` or `then`"""
        separated = False
        while self.match(TT.NEWLINE, TT.SEMI):
            separated = True
        if self.match(TT.THEN):
            return
        if not separated:
            raise ParseError(f"Expected 'then' or newline, got {self.current.type.name}", self.current)

    # ========================================================================
    # Statements
    # ========================================================================

    def parse_statement(self) -> Tree:
        """
        Parse a single statement: an expression followed by any number of
        modifiers (`x if y`, `x while y`, `x rescue y`).
        """
        if self.looks_like_masgn():
            node = self.parse_masgn()
        else:
            node = self.parse_expr_stmt()

        while True:
            if self.check(TT.IF, TT.UNLESS):
                kw = self.advance()
                cond = self.parse_expr_stmt()
                node = self.finish('if_mod', [self.leaf(kw, 'KEYWORD'), node, cond], node)
            elif self.check(TT.WHILE, TT.UNTIL):
                kw = self.advance()
                cond = self.parse_expr_stmt()
                node = self.finish('while_mod', [self.leaf(kw, 'KEYWORD'), node, cond], node)
            elif self.check(TT.RESCUE):
                self.advance()
                fallback = self.parse_expr_stmt()
                node = self.finish('rescue_mod', [node, fallback], node)
            else:
                return node

    def looks_like_masgn(self) -> bool:
        """Scan ahead for `a, b = ...` at bracket depth zero"""
        head, nxt = self.current, self.peek(1)
        if head.type is TT.IDENT and not self.is_local(head.value) and nxt.spaced and nxt.type in ARG_START:
            # `foo a, b = 1` is a command call
            return False

        depth = 0
        seen_comma = False

        for tok in self.tokens[self.pos:]:
            t = tok.type
            if t in (TT.LPAR, TT.LBRACK, TT.LBRACE):
                depth += 1
            elif t in (TT.RPAR, TT.RBRACK, TT.RBRACE):
                depth -= 1
                if depth < 0:
                    return False
            elif depth == 0:
                if t is TT.COMMA:
                    seen_comma = True
                elif t is TT.ASSIGN:
                    return seen_comma
                elif t in (TT.NEWLINE, TT.SEMI, TT.EOF, TT.DO, TT.LABEL, TT.STRING_LABEL,
                           TT.ASSOC, TT.IF, TT.UNLESS, TT.WHILE, TT.UNTIL, TT.OP_ASGN):
                    return False
        return False

    def parse_masgn(self) -> Tree:
        start = self.current
        targets = self.parse_mlhs_items((TT.ASSIGN,))
        mlhs = self.finish('mlhs', targets, start)
        self.expect(TT.ASSIGN)
        self.skip_newlines()

        first = self.parse_splat_or(self.parse_arg)
        if not self.check(TT.COMMA):
            value = first
        else:
            values = [first]
            while self.match(TT.COMMA):
                self.skip_newlines()
                values.append(self.parse_splat_or(self.parse_arg))
            value = self.finish('array', values, first)

        return self.finish('masgn', [mlhs, value], start)

    def parse_mlhs_items(self, closers: Tuple[TT, ...]) -> List[Node]:
        targets: List[Node] = []
        while True:
            tok = self.current
            if self.match(TT.STAR):
                inner = None
                if not self.check(TT.COMMA, *closers):
                    inner = self.to_target(self.parse_postfix())
                targets.append(self.finish('splat', [inner] if inner is not None else [], tok))
            elif self.match(TT.LPAR):
                inner_items = self.parse_mlhs_items((TT.RPAR,))
                self.expect(TT.RPAR)
                targets.append(self.finish('mlhs', inner_items, tok))
            else:
                targets.append(self.to_target(self.parse_postfix()))

            if not self.match(TT.COMMA):
                break
            if self.check(*closers):
                break
        return targets

    def parse_expr_stmt(self) -> Tree:
        """Parse `and` / `or` chains"""
        left = self.parse_not_expr()

        while self.check(TT.AND, TT.OR):
            op = self.advance()
            self.skip_newlines()
            right = self.parse_not_expr()
            left = self.finish('binop', [left, self.leaf(op, 'OP'), right], left)

        return left

    def parse_not_expr(self) -> Tree:
        if self.check(TT.NOT):
            op = self.advance()
            operand = self.parse_not_expr()
            return self.finish('unop', [self.leaf(op, 'OP'), operand], op)
        return self.parse_arg()

    # ========================================================================
    # Expressions
    # ========================================================================

    def parse_arg(self) -> Tree:
        """Parse assignment (right associative) or a ternary"""
        left = self.parse_ternary()

        if self.check(TT.ASSIGN, TT.OP_ASGN) and self.assignable(left):
            op = self.advance()
            self.skip_newlines()
            target = self.to_target(left)
            value = self.parse_arg()
            return self.finish('asgn', [target, self.leaf(op, 'OP'), value], target)

        return left

    def assignable(self, node: Node) -> bool:
        if is_kind(node, *ASSIGNABLE):
            return True
        if is_kind(node, 'call', 'csend') and len(node.children) == 2:
            name = str(node.children[1])
            return not name.endswith(('?', '!')) and (node.children[0] is not None or name[0].islower() or name[0] == '_')
        return False

    def to_target(self, node: Tree) -> Tree:
        """Turn a parsed operand into an assignment target, declaring locals"""
        if is_kind(node, 'call') and node.children[0] is None and len(node.children) == 2:
            name = node.children[1]
            self.declare(str(name))
            return Tree('lvar', [Token('IDENT', str(name), start_pos=name.start_pos, line=name.line,
                                       column=name.column, end_line=name.end_line,
                                       end_column=name.end_column, end_pos=name.end_pos)], node.meta)
        if not (self.assignable(node) or is_kind(node, 'splat', 'mlhs')):
            raise ParseError(f"Cannot assign to {node.data}", self.current)
        return node

    def parse_ternary(self) -> Tree:
        cond = self.parse_range()

        if not self.check(TT.QMARK):
            return cond

        self.advance()
        self.skip_newlines()

        if self.check(TT.LABEL):
            # `a ? b: c` lexes `b:` as a label
            tok = self.advance()
            then_branch = self.name_reference(tok)
        elif self.check(TT.STRING_LABEL):
            tok = self.advance()
            then_branch = self.finish('str', [self.leaf(tok, 'STRING')], tok)
            then_branch.meta.end_pos -= 1
            then_branch.meta.end_column -= 1
        else:
            then_branch = self.parse_ternary()
            self.skip_newlines()
            self.expect(TT.COLON, "Expected ':' in ternary expression")
        self.skip_newlines()
        else_branch = self.parse_ternary()
        return self.finish('ternary', [cond, then_branch, else_branch], cond)

    def name_reference(self, tok: Tok) -> Tree:
        """A bare name whose token was lexed as something else"""
        name = Token('IDENT', tok.value, start_pos=tok.start, line=tok.line, column=tok.column,
                     end_line=tok.end_line, end_column=tok.end_column - 1, end_pos=tok.end - 1)
        meta = make_meta(tok.line, tok.column, tok.start, tok.end_line, tok.end_column - 1, tok.end - 1)
        if self.is_local(tok.value):
            return Tree('lvar', [name], meta)
        return Tree('call', [None, name], meta)

    def parse_range(self) -> Tree:
        left = self.parse_binary(0)

        if self.check(TT.DOT2, TT.DOT3):
            op = self.advance()
            right = None
            if not self.check(*VALUE_STOP):
                right = self.parse_binary(0)
            return self.finish('range', [left, self.leaf(op, 'OP'), right], left)

        return left

    def parse_binary(self, level: int) -> Tree:
        if level == len(BINARY_LEVELS):
            return self.parse_unary_minus()

        left = self.parse_binary(level + 1)
        ops = BINARY_LEVELS[level]

        while self.check(*ops):
            op = self.advance()
            self.skip_newlines()
            right = self.parse_binary(level + 1)
            left = self.finish('binop', [left, self.leaf(op, 'OP'), right], left)

        return left

    def parse_unary_minus(self) -> Tree:
        if self.check(TT.MINUS):
            op = self.advance()
            if self.check(TT.INT, TT.FLOAT) and self.current.start == op.end:
                num = self.advance()
                literal = self.finish('int' if num.type is TT.INT else 'float',
                                      [self.leaf(num, value='-' + num.value)], op)
                return self.parse_pow_tail(literal)
            operand = self.parse_unary_minus()
            return self.finish('unop', [self.leaf(op, 'OP'), operand], op)
        return self.parse_pow()

    def parse_pow(self) -> Tree:
        return self.parse_pow_tail(self.parse_unary())

    def parse_pow_tail(self, base: Tree) -> Tree:
        if self.check(TT.POW):
            op = self.advance()
            self.skip_newlines()
            exponent = self.parse_unary_minus()
            return self.finish('binop', [base, self.leaf(op, 'OP'), exponent], base)
        return base

    def parse_unary(self) -> Tree:
        if self.check(TT.BANG, TT.TILDE, TT.PLUS):
            op = self.advance()
            operand = self.parse_unary()
            return self.finish('unop', [self.leaf(op, 'OP'), operand], op)

        if self.check(TT.DEFINED):
            kw = self.advance()
            if self.check(TT.LPAR) and not self.current.spaced:
                self.advance()
                self.skip_newlines()
                expr = self.parse_expr_stmt()
                self.skip_newlines()
                self.expect(TT.RPAR)
            else:
                expr = self.parse_unary()
            return self.finish('defined', [expr], kw)

        return self.parse_postfix()

    # ========================================================================
    # Postfix
    # ========================================================================

    def parse_postfix(self) -> Tree:
        node = self.parse_primary()

        while True:
            if self.check(TT.DOT, TT.ANDDOT):
                op = self.advance()
                self.skip_newlines()
                node = self.parse_method_call(node, op)
                continue

            if self.check(TT.COLON2) and not self.current.spaced:
                self.advance()
                if self.check(TT.CONST) and not (self.peek(1).type is TT.LPAR and not self.peek(1).spaced):
                    name = self.advance()
                    node = self.finish('const', [node, self.leaf(name)], node)
                else:
                    node = self.parse_method_call(node, self.prev)
                continue

            if self.check(TT.LBRACK) and (not self.current.spaced or is_kind(node, 'lvar', 'ivar', 'gvar', 'cvar')):
                self.advance()
                args = self.parse_nested(lambda: self.parse_arg_list(TT.RBRACK))
                node = self.finish('index', [node, *args], node)
                continue

            if self.check(TT.LBRACE) and self.takes_block(node):
                node = self.parse_block(node)
                continue

            if self.check(TT.DO) and self.no_do == 0 and self.takes_block(node):
                node = self.parse_block(node)
                continue

            return node

    def takes_block(self, node: Tree) -> bool:
        return is_kind(node, 'call', 'csend', 'super', 'zsuper')

    def parse_method_call(self, receiver: Tree, op: Tok) -> Tree:
        """Parse the method name and arguments after `.`, `&.` or `::`"""
        data = 'csend' if op.type is TT.ANDDOT else 'call'

        if self.check(TT.LPAR):
            # recv.(args) is recv.call(args)
            name = Token('IDENT', 'call')
        elif self.check(TT.IDENT, TT.CONST):
            name = self.leaf(self.advance(), 'IDENT')
        elif self.check(TT.LABEL):
            raise ParseError("Unexpected label after '.'", self.current)
        elif self.current.type in OPERATOR_METHODS:
            name = self.leaf(self.advance(), 'IDENT')
        else:
            raise ParseError(f"Expected method name, got {self.current.type.name}", self.current)

        if self.check(TT.LPAR) and not self.current.spaced:
            self.advance()
            args = self.parse_nested(lambda: self.parse_arg_list(TT.RPAR))
            return self.finish(data, [receiver, name, *args], receiver)

        if self.command_start():
            return self.parse_command(data, [receiver, name], receiver)

        return self.finish(data, [receiver, name], receiver)

    def command_start(self) -> bool:
        """Does the current token begin the arguments of a parenthesis-free call?"""
        tok = self.current
        if not tok.spaced:
            return False
        if tok.type in ARG_START:
            return True
        if tok.type in GLUED_ARG_START:
            nxt = self.peek(1)
            return nxt.start == tok.end and nxt.type not in (TT.NEWLINE, TT.EOF)
        return False

    def parse_command(self, data: str, head: List[Node], start: Start) -> Tree:
        """Parse `name arg, arg` up to the end of the argument list"""
        outer = self.no_do
        self.no_do += 1
        args = self.parse_arg_list(None)
        self.no_do = outer

        node = self.finish(data, head + args, start)
        if self.no_do == 0 and self.check(TT.DO):
            node = self.parse_block(node)
        return node

    def parse_nested(self, parse):
        """Run ``parse`` inside brackets, where `do` binds normally again"""
        outer = self.no_do
        self.no_do = 0
        result = parse()
        self.no_do = outer
        return result

    # ========================================================================
    # Arguments
    # ========================================================================

    def parse_arg_list(self, closer: Optional[TT]) -> List[Node]:
        """
        Parse call arguments up to ``closer`` (or, for parenthesis-free
        calls, up to the first argument not followed by a comma).

        Consecutive `key: value` / `key => value` arguments become one hash.
        """
        args: List[Node] = []
        pairs: List[Tree] = []

        def flush():
            if pairs:
                args.append(self.finish('hash', list(pairs), pairs[0], pairs[-1]))
                pairs.clear()

        while True:
            if closer is not None:
                self.skip_newlines()
                if self.check(closer):
                    break

            tok = self.current
            if self.check(TT.STAR):
                self.advance()
                inner = [] if self.check(TT.COMMA) or (closer is not None and self.check(closer)) else [self.parse_arg()]
                flush()
                args.append(self.finish('splat', inner, tok))
            elif self.check(TT.POW):
                self.advance()
                pairs.append(self.finish('kwsplat', [self.parse_arg()], tok))
            elif self.check(TT.AMP):
                self.advance()
                inner = [] if self.check(TT.COMMA) or (closer is not None and self.check(closer)) else [self.parse_arg()]
                flush()
                args.append(self.finish('block_pass', inner, tok))
            elif self.check(TT.LABEL, TT.STRING_LABEL):
                pairs.append(self.parse_label_pair(closer))
            else:
                value = self.parse_not_expr() if closer is not None else self.parse_arg()
                if self.check(TT.ASSOC):
                    self.advance()
                    self.skip_newlines()
                    pairs.append(self.finish('pair', [value, self.parse_arg()], value))
                else:
                    flush()
                    args.append(value)

            if closer is not None:
                self.skip_newlines()
            if not self.match(TT.COMMA):
                break
            self.skip_newlines()

        flush()
        if closer is not None:
            self.expect(closer, f"Expected {closer.name} to close argument list, got {self.current.type.name}")
        return args

    def parse_label_pair(self, closer: Optional[TT]) -> Tree:
        """Parse `key: value`, including the `key:` shorthand"""
        tok = self.advance()
        if tok.type is TT.LABEL:
            key = self.finish('sym', [self.leaf(tok, 'IDENT')], tok)
        else:
            key = self.finish('sym', [self.leaf(tok, 'STRING')], tok)

        if self.check(*LABEL_VALUE_STOP) or (closer is not None and self.check(closer)):
            if tok.type is not TT.LABEL:
                raise ParseError("Missing value for string key", tok)
            value = self.name_reference(tok)
        else:
            value = self.parse_arg()
        return self.finish('pair', [key, value], tok)

    def parse_splat_or(self, parse) -> Tree:
        if self.check(TT.STAR):
            tok = self.advance()
            return self.finish('splat', [parse()], tok)
        return parse()

    # ========================================================================
    # Blocks and Parameters
    # ========================================================================

    def parse_block(self, call: Tree) -> Tree:
        """Parse `do |x| ... end` or `{ |x| ... }` attached to ``call``"""
        opener = self.advance()
        outer = self.no_do
        self.no_do = 0
        self.push_scope(inherit=True)

        params = self.parse_block_params()
        if opener.type is TT.DO:
            body = self.parse_bodystmt()
            self.expect(TT.END, "Expected 'end' to close do block")
        else:
            body = self.parse_body((TT.RBRACE,))
            self.expect(TT.RBRACE, "Expected '}' to close block")

        self.pop_scope()
        self.no_do = outer
        style = Token('STYLE', 'do' if opener.type is TT.DO else '{')
        return self.finish('block', [call, params, body, style], call)

    def parse_block_params(self) -> Optional[Tree]:
        if self.check(TT.OROR):
            tok = self.advance()
            return self.finish('args', [], tok)
        if not self.check(TT.PIPE):
            return None
        tok = self.advance()
        params = self.parse_params((TT.PIPE,), block=True)
        self.expect(TT.PIPE, "Expected '|' to close block parameters")
        return self.finish('args', params, tok)

    def parse_params(self, closers: Tuple[TT, ...], block: bool = False) -> List[Node]:
        """Parse a formal parameter list up to one of ``closers``"""
        params: List[Node] = []
        default = self.parse_postfix if block else self.parse_ternary

        while not self.check(*closers):
            tok = self.current
            if self.match(TT.STAR):
                name = self.leaf(self.advance(), 'IDENT') if self.check(TT.IDENT) else None
                params.append(self.finish('restarg', [name] if name is not None else [], tok))
            elif self.match(TT.POW):
                name = self.leaf(self.advance(), 'IDENT') if self.check(TT.IDENT) else None
                params.append(self.finish('kwrestarg', [name] if name is not None else [], tok))
            elif self.match(TT.AMP):
                name = self.leaf(self.advance(), 'IDENT') if self.check(TT.IDENT) else None
                params.append(self.finish('blockarg', [name] if name is not None else [], tok))
            elif self.match(TT.LABEL):
                name = self.leaf(tok, 'IDENT')
                if self.check(TT.COMMA, TT.NEWLINE, *closers):
                    params.append(self.finish('kwarg', [name], tok))
                else:
                    params.append(self.finish('kwoptarg', [name, default()], tok))
            elif self.match(TT.LPAR):
                inner = self.parse_params((TT.RPAR,), block=block)
                self.expect(TT.RPAR)
                params.append(self.finish('mlhs', inner, tok))
            elif self.match(TT.SEMI):
                # block-local variables: |a; b, c|
                while self.check(TT.IDENT):
                    local = self.advance()
                    self.declare(local.value)
                    params.append(self.finish('shadowarg', [self.leaf(local)], local))
                    if not self.match(TT.COMMA):
                        break
                continue
            elif self.match(TT.IDENT):
                name = self.leaf(tok)
                if self.match(TT.ASSIGN):
                    params.append(self.finish('optarg', [name, default()], tok))
                else:
                    params.append(self.finish('arg', [name], tok))
            else:
                raise ParseError(f"Unexpected {tok.type.name} in parameter list", tok)

            for child in params[-1].children:
                if isinstance(child, Token) and child.type == 'IDENT':
                    self.declare(str(child))
                    break

            if not self.match(TT.COMMA):
                break
            self.skip_newlines()

        return params

    # ========================================================================
    # Primary
    # ========================================================================

    def parse_primary(self) -> Tree:
        tok = self.current
        t = tok.type

        if t is TT.INT:
            self.advance()
            return self.finish('int', [self.leaf(tok)], tok)
        if t is TT.FLOAT:
            self.advance()
            return self.finish('float', [self.leaf(tok)], tok)
        if t is TT.STRING:
            return self.parse_strings()
        if t is TT.XSTRING:
            self.advance()
            return self.finish('xstr', [self.leaf(tok)], tok)
        if t is TT.REGEX:
            self.advance()
            return self.finish('regexp', [self.leaf(tok)], tok)
        if t is TT.WORDS:
            self.advance()
            return self.finish('words', [self.leaf(tok)], tok)
        if t is TT.SYMBOL:
            self.advance()
            return self.finish('sym', [self.leaf(tok, 'IDENT')], tok)
        if t is TT.DSYM:
            self.advance()
            return self.finish('sym', [self.leaf(tok, 'STRING')], tok)

        if t in (TT.NIL, TT.TRUE, TT.FALSE, TT.SELF):
            self.advance()
            return self.finish(tok.value, [], tok)

        if t is TT.IVAR:
            self.advance()
            return self.finish('ivar', [self.leaf(tok)], tok)
        if t is TT.GVAR:
            self.advance()
            return self.finish('gvar', [self.leaf(tok)], tok)
        if t is TT.CVAR:
            self.advance()
            return self.finish('cvar', [self.leaf(tok)], tok)

        if t is TT.IDENT:
            return self.parse_identifier()

        if t is TT.CONST:
            self.advance()
            if self.check(TT.LPAR) and not self.current.spaced:
                self.advance()
                args = self.parse_nested(lambda: self.parse_arg_list(TT.RPAR))
                return self.finish('call', [None, self.leaf(tok, 'IDENT'), *args], tok)
            return self.finish('const', [None, self.leaf(tok)], tok)

        if t is TT.COLON2:
            self.advance()
            cbase = self.finish('cbase', [], tok)
            name = self.expect(TT.CONST)
            return self.finish('const', [cbase, self.leaf(name)], tok)

        if t is TT.LBRACK:
            self.advance()
            elements = self.parse_nested(lambda: self.parse_arg_list(TT.RBRACK))
            return self.finish('array', elements, tok)

        if t is TT.LBRACE:
            return self.parse_nested(self.parse_hash)

        if t is TT.LPAR:
            self.advance()
            stmts = self.parse_nested(lambda: self.parse_stmts((TT.RPAR,)))
            self.expect(TT.RPAR)
            return self.finish('paren', stmts, tok)

        if t in (TT.DOT2, TT.DOT3):
            self.advance()
            return self.finish('range', [None, self.leaf(tok, 'OP'), self.parse_binary(0)], tok)

        if t is TT.ARROW:
            return self.parse_lambda()

        if t is TT.NOT:
            self.advance()
            operand = self.parse_arg()
            return self.finish('unop', [self.leaf(tok, 'OP'), operand], tok)

        if t in (TT.RETURN, TT.BREAK, TT.NEXT):
            self.advance()
            args = [] if self.check(*VALUE_STOP) else self.parse_arg_list(None)
            return self.finish(tok.value, args, tok)

        if t in (TT.REDO, TT.RETRY):
            self.advance()
            return self.finish(tok.value, [], tok)

        if t is TT.YIELD:
            self.advance()
            if self.check(TT.LPAR) and not self.current.spaced:
                self.advance()
                args = self.parse_nested(lambda: self.parse_arg_list(TT.RPAR))
            elif self.command_start():
                args = self.parse_arg_list(None)
            else:
                args = []
            return self.finish('yield', args, tok)

        if t is TT.SUPER:
            self.advance()
            if self.check(TT.LPAR) and not self.current.spaced:
                self.advance()
                args = self.parse_nested(lambda: self.parse_arg_list(TT.RPAR))
                return self.finish('super', args, tok)
            if self.command_start():
                return self.parse_command('super', [], tok)
            return self.finish('zsuper', [], tok)

        if t is TT.ALIAS:
            self.advance()
            new_name = self.parse_alias_name()
            old_name = self.parse_alias_name()
            return self.finish('alias', [new_name, old_name], tok)

        if t is TT.DEF:
            return self.parse_def()
        if t is TT.CLASS:
            return self.parse_class()
        if t is TT.MODULE:
            return self.parse_module()
        if t in (TT.IF, TT.UNLESS):
            return self.parse_if()
        if t in (TT.WHILE, TT.UNTIL):
            return self.parse_while()
        if t is TT.FOR:
            return self.parse_for()
        if t is TT.CASE:
            return self.parse_case()
        if t is TT.BEGIN:
            self.advance()
            body = self.parse_nested(self.parse_bodystmt)
            self.expect(TT.END, "Expected 'end' to close begin")
            return self.finish('kwbegin', [body], tok)

        raise ParseError(f"Unexpected {t.name}", tok)

    def parse_identifier(self) -> Tree:
        tok = self.advance()
        name = self.leaf(tok)

        if self.check(TT.LPAR) and not self.current.spaced:
            self.advance()
            args = self.parse_nested(lambda: self.parse_arg_list(TT.RPAR))
            return self.finish('call', [None, name, *args], tok)

        if self.is_local(tok.value):
            return self.finish('lvar', [name], tok)

        if self.command_start():
            return self.parse_command('call', [None, name], tok)

        return self.finish('call', [None, name], tok)

    def parse_strings(self) -> Tree:
        """Adjacent string literals concatenate: 'a' "b\""""
        parts: List[Tree] = []
        while self.check(TT.STRING) and (not parts or self.current.line == self.prev.end_line):
            tok = self.advance()
            parts.append(self.finish('str', [self.leaf(tok)], tok))
        if len(parts) == 1:
            return parts[0]
        return self.finish('dstr', parts, parts[0])

    def parse_hash(self) -> Tree:
        start = self.expect(TT.LBRACE)
        pairs: List[Tree] = []

        while True:
            self.skip_newlines()
            if self.check(TT.RBRACE):
                break

            tok = self.current
            if self.match(TT.POW):
                pairs.append(self.finish('kwsplat', [self.parse_arg()], tok))
            elif self.check(TT.LABEL, TT.STRING_LABEL):
                pairs.append(self.parse_label_pair(TT.RBRACE))
            else:
                key = self.parse_arg()
                self.skip_newlines()
                self.expect(TT.ASSOC, f"Expected '=>' in hash literal, got {self.current.type.name}")
                self.skip_newlines()
                pairs.append(self.finish('pair', [key, self.parse_arg()], key))

            self.skip_newlines()
            if not self.match(TT.COMMA):
                break

        self.skip_newlines()
        self.expect(TT.RBRACE, "Expected '}' to close hash literal")
        return self.finish('hash', pairs, start)

    def parse_alias_name(self) -> Tree:
        tok = self.current
        if tok.type in (TT.IDENT, TT.CONST, TT.SYMBOL) or tok.type in OPERATOR_METHODS:
            self.advance()
            return self.finish('sym', [self.leaf(tok, 'IDENT')], tok)
        if tok.type is TT.GVAR:
            self.advance()
            return self.finish('gvar', [self.leaf(tok)], tok)
        raise ParseError(f"Unexpected {tok.type.name} in alias", tok)

    def parse_lambda(self) -> Tree:
        start = self.expect(TT.ARROW)
        self.push_scope(inherit=True)

        params = None
        if self.check(TT.LPAR):
            ptok = self.advance()
            params = self.finish('args', self.parse_params((TT.RPAR,)), ptok)
            self.expect(TT.RPAR)
            params.meta.end_pos = self.prev.end
        elif self.check(TT.IDENT, TT.STAR, TT.AMP, TT.LABEL):
            ptok = self.current
            params = self.finish('args', self.parse_params((TT.LBRACE, TT.DO)), ptok)

        outer = self.no_do
        self.no_do = 0
        if self.match(TT.LBRACE):
            body = self.parse_body((TT.RBRACE,))
            self.expect(TT.RBRACE, "Expected '}' to close lambda")
            style = '{'
        else:
            self.expect(TT.DO, f"Expected lambda body, got {self.current.type.name}")
            body = self.parse_bodystmt()
            self.expect(TT.END, "Expected 'end' to close lambda")
            style = 'do'
        self.no_do = outer

        self.pop_scope()
        return self.finish('lambda', [params, body, Token('STYLE', style)], start)

    # ========================================================================
    # Definitions
    # ========================================================================

    def parse_def(self) -> Tree:
        start = self.expect(TT.DEF)

        singleton = None
        if self.check(TT.IDENT, TT.CONST) and self.peek(1).type is TT.DOT:
            owner = self.advance()
            if owner.value == 'self':
                singleton = self.finish('self', [], owner)
            elif owner.type is TT.CONST:
                singleton = self.finish('const', [None, self.leaf(owner)], owner)
            else:
                singleton = self.finish('lvar', [self.leaf(owner)], owner)
            self.advance()  # .

        name = self.parse_def_name()
        self.push_scope(inherit=False)

        if self.check(TT.LPAR):
            ptok = self.advance()
            params = self.parse_params((TT.RPAR,))
            self.skip_newlines()
            self.expect(TT.RPAR, "Expected ')' to close parameter list")
            args = self.finish('args', params, ptok)
        elif self.check(TT.NEWLINE, TT.SEMI, TT.ASSIGN):
            args = self.finish('args', [], self.current)
        else:
            ptok = self.current
            args = self.finish('args', self.parse_params((TT.NEWLINE, TT.SEMI)), ptok)

        outer = self.no_do
        self.no_do = 0
        if self.match(TT.ASSIGN):
            # endless method: def square(x) = x * x
            self.skip_newlines()
            stmt = self.parse_statement()
            body = self.finish('body', [stmt], stmt)
        else:
            body = self.parse_bodystmt()
            self.expect(TT.END, "Expected 'end' to close def")
        self.no_do = outer

        self.pop_scope()
        return self.finish('def', [singleton, name, args, body], start)

    def parse_def_name(self) -> Token:
        tok = self.current

        if tok.type in (TT.IDENT, TT.CONST):
            self.advance()
            nxt = self.current
            # setter: def name=(value)
            if nxt.type is TT.ASSIGN and not nxt.spaced and self.peek(1).type is TT.LPAR:
                self.advance()
                return self.leaf(tok, 'IDENT', tok.value + '=')
            return self.leaf(tok, 'IDENT')

        if tok.type is TT.LBRACK:
            self.advance()
            self.expect(TT.RBRACK)
            if self.check(TT.ASSIGN) and not self.current.spaced:
                self.advance()
                return self.leaf(tok, 'IDENT', '[]=')
            return self.leaf(tok, 'IDENT', '[]')

        if tok.type in OPERATOR_METHODS:
            self.advance()
            return self.leaf(tok, 'IDENT')

        raise ParseError(f"Expected method name, got {tok.type.name}", tok)

    def parse_cpath(self) -> Tree:
        start = self.current
        if self.match(TT.COLON2):
            scope: Optional[Tree] = self.finish('cbase', [], start)
        else:
            scope = None

        name = self.expect(TT.CONST, f"Expected constant name, got {self.current.type.name}")
        node = self.finish('const', [scope, self.leaf(name)], start)
        while self.check(TT.COLON2):
            self.advance()
            name = self.expect(TT.CONST)
            node = self.finish('const', [node, self.leaf(name)], start)
        return node

    def parse_class(self) -> Tree:
        start = self.expect(TT.CLASS)

        if self.match(TT.LSHIFT):
            target = self.parse_expr_stmt()
            self.push_scope(inherit=False)
            body = self.parse_nested(self.parse_bodystmt)
            self.expect(TT.END, "Expected 'end' to close class << self")
            self.pop_scope()
            return self.finish('sclass', [target, body], start)

        cpath = self.parse_cpath()
        superclass = None
        if self.match(TT.LT):
            superclass = self.parse_ternary()

        self.push_scope(inherit=False)
        body = self.parse_nested(self.parse_bodystmt)
        self.expect(TT.END, "Expected 'end' to close class")
        self.pop_scope()
        return self.finish('class', [cpath, superclass, body], start)

    def parse_module(self) -> Tree:
        start = self.expect(TT.MODULE)
        cpath = self.parse_cpath()

        self.push_scope(inherit=False)
        body = self.parse_nested(self.parse_bodystmt)
        self.expect(TT.END, "Expected 'end' to close module")
        self.pop_scope()
        return self.finish('module', [cpath, body], start)

    # ========================================================================
    # Control Flow
    # ========================================================================

    def parse_if(self) -> Tree:
        start = self.advance()  # if / unless
        node = self.parse_if_tail(start)
        self.expect(TT.END, f"Expected 'end' to close {start.value}")
        node.meta.end_pos = self.prev.end
        node.meta.end_line = self.prev.end_line
        node.meta.end_column = self.prev.end_column
        return node

    def parse_if_tail(self, start: Tok) -> Tree:
        """Condition, body and else part of if/unless/elsif, without `end`"""
        cond = self.parse_nested(self.parse_expr_stmt)
        self.parse_then()
        body = self.parse_nested(lambda: self.parse_body((TT.ELSIF, TT.ELSE, TT.END)))

        else_part: Optional[Tree] = None
        if start.type is not TT.UNLESS and self.check(TT.ELSIF):
            else_part = self.parse_if_tail(self.advance())
        elif self.match(TT.ELSE):
            else_part = self.parse_nested(lambda: self.parse_body((TT.END,)))

        return self.finish('if', [self.leaf(start, 'KEYWORD'), cond, body, else_part], start)

    def parse_while(self) -> Tree:
        start = self.advance()  # while / until

        self.no_do += 1
        cond = self.parse_expr_stmt()
        self.no_do -= 1
        if not self.match(TT.DO):
            self.parse_then_or_newline()

        body = self.parse_nested(lambda: self.parse_body((TT.END,)))
        self.expect(TT.END, f"Expected 'end' to close {start.value}")
        return self.finish('while', [self.leaf(start, 'KEYWORD'), cond, body], start)

    def parse_then_or_newline(self):
        if not self.check(TT.NEWLINE, TT.SEMI):
            raise ParseError(f"Expected newline, got {self.current.type.name}", self.current)

    def parse_for(self) -> Tree:
        start = self.expect(TT.FOR)

        targets: List[Node] = []
        while True:
            name = self.expect(TT.IDENT, "Expected loop variable")
            self.declare(name.value)
            targets.append(self.finish('lvar', [self.leaf(name)], name))
            if not self.match(TT.COMMA):
                break
        var: Node = targets[0] if len(targets) == 1 else self.finish('mlhs', targets, start)

        self.expect(TT.IN, "Expected 'in' in for loop")
        self.no_do += 1
        iterable = self.parse_expr_stmt()
        self.no_do -= 1
        if not self.match(TT.DO):
            self.parse_then_or_newline()

        body = self.parse_nested(lambda: self.parse_body((TT.END,)))
        self.expect(TT.END, "Expected 'end' to close for")
        return self.finish('for', [var, iterable, body], start)

    def parse_case(self) -> Tree:
        start = self.expect(TT.CASE)
        subject = None if self.check(TT.NEWLINE, TT.SEMI) else self.parse_expr_stmt()
        while self.match(TT.NEWLINE, TT.SEMI):
            pass

        whens: List[Tree] = []
        while self.check(TT.WHEN):
            when_tok = self.advance()
            conds: List[Node] = []
            while True:
                conds.append(self.parse_splat_or(self.parse_ternary))
                if not self.match(TT.COMMA):
                    break
                self.skip_newlines()
            self.parse_then()
            body = self.parse_nested(lambda: self.parse_body((TT.WHEN, TT.ELSE, TT.END)))
            whens.append(self.finish('when', [*conds, body], when_tok))

        if self.check(TT.IN):
            raise ParseError("case/in pattern matching is not supported", self.current)
        if not whens:
            raise ParseError("case without when", self.current)

        else_body = None
        if self.match(TT.ELSE):
            else_body = self.parse_nested(lambda: self.parse_body((TT.END,)))
        self.expect(TT.END, "Expected 'end' to close case")
        return self.finish('case', [subject, *whens, else_body], start)


def parse_source(source: str, path: str = "(string)") -> Tree:
    """
    Parse Ruby source into a ``program`` tree.

    Raises LexError/ParseError (both ParseFailure) on input outside the
    supported grammar.
    """
    tokens = tokenize(source)
    logger.debug("%s: %d tokens", path, len(tokens))
    parser = Parser(tokens)
    return parser.parse()
