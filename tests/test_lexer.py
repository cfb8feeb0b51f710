from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import pytest

from tests.support.harness import LexError, TT, non_eof_tokens
from rails5_xhr_update.lexer_rd import tokenize


@dataclass(frozen=True)
class Case:
    """Unified lexer case payload."""

    name: str
    source: str
    expected: Optional[Tuple[Tuple[TT, object], ...]] = None
    expected_types: Optional[Tuple[TT, ...]] = None
    exc: Optional[type[Exception]] = None
    msg: Optional[str] = None


LITERAL_CASES: List[Case] = [
    Case("int", "123", expected=((TT.INT, "123"),)),
    Case("int-underscored", "1_000", expected=((TT.INT, "1_000"),)),
    Case("int-hex", "0x1F", expected=((TT.INT, "0x1F"),)),
    Case("float", "3.14", expected=((TT.FLOAT, "3.14"),)),
    Case("float-exponent", "1e10", expected=((TT.FLOAT, "1e10"),)),
    Case("string-single", "'new'", expected=((TT.STRING, "'new'"),)),
    Case("string-interpolated", '"a #{b + "c"} d"', expected=((TT.STRING, '"a #{b + "c"} d"'),)),
    Case("symbol", ":get", expected=((TT.SYMBOL, "get"),)),
    Case("symbol-predicate", ":valid?", expected=((TT.SYMBOL, "valid?"),)),
    Case("symbol-setter", ":name=", expected=((TT.SYMBOL, "name="),)),
    Case("symbol-operator", ":[]=", expected=((TT.SYMBOL, "[]="),)),
    Case("symbol-quoted", ':"a b"', expected=((TT.DSYM, '"a b"'),)),
    Case("label", "limit: 10", expected=((TT.LABEL, "limit"), (TT.INT, "10"))),
    Case("label-const", "Accept: 1", expected=((TT.LABEL, "Accept"), (TT.INT, "1"))),
    Case("string-label", '"X-Token": 1', expected=((TT.STRING_LABEL, '"X-Token"'), (TT.INT, "1"))),
    Case("words", "%w[a b]", expected=((TT.WORDS, "%w[a b]"),)),
    Case("percent-string", "%(a (b) c)", expected=((TT.STRING, "%(a (b) c)"),)),
    Case("regex", "/ab+/i", expected=((TT.REGEX, "/ab+/i"),)),
    Case("char", "?a", expected=((TT.STRING, "?a"),)),
    Case("backtick", "`ls`", expected=((TT.XSTRING, "`ls`"),)),
    Case("ivar", "@item", expected=((TT.IVAR, "@item"),)),
    Case("cvar", "@@count", expected=((TT.CVAR, "@@count"),)),
    Case("gvar", "$stdout", expected=((TT.GVAR, "$stdout"),)),
    Case("ident-predicate", "empty?", expected=((TT.IDENT, "empty?"),)),
    Case("ident-bang", "save!", expected=((TT.IDENT, "save!"),)),
    Case("const", "ApplicationController", expected=((TT.CONST, "ApplicationController"),)),
]

KEYWORD_CASES: List[Case] = [
    Case("nil", "nil", expected_types=(TT.NIL,)),
    Case("true-false", "true false", expected_types=(TT.TRUE, TT.FALSE)),
    Case("defined", "defined? x", expected_types=(TT.DEFINED, TT.IDENT)),
    Case("if-then-end", "if a then b end", expected_types=(TT.IF, TT.IDENT, TT.THEN, TT.IDENT, TT.END)),
    Case("keyword-after-dot", "x.class", expected_types=(TT.IDENT, TT.DOT, TT.IDENT)),
    Case("keyword-after-def", "def end?", expected_types=(TT.DEF, TT.IDENT)),
    Case("and-or-not", "a and not b or c", expected_types=(TT.IDENT, TT.AND, TT.NOT, TT.IDENT, TT.OR, TT.IDENT)),
]

OPERATOR_CASES: List[Case] = [
    Case("op-assign", "a ||= 1", expected=((TT.IDENT, "a"), (TT.OP_ASGN, "||="), (TT.INT, "1"))),
    Case("assoc", "'a' => 1", expected_types=(TT.STRING, TT.ASSOC, TT.INT)),
    Case("scope", "Foo::Bar", expected_types=(TT.CONST, TT.COLON2, TT.CONST)),
    Case("safe-nav", "a&.b", expected_types=(TT.IDENT, TT.ANDDOT, TT.IDENT)),
    Case("lambda", "->(x) { x }", expected_types=(TT.ARROW, TT.LPAR, TT.IDENT, TT.RPAR, TT.LBRACE, TT.IDENT, TT.RBRACE)),
    Case("ranges", "1..2 ... 3", expected_types=(TT.INT, TT.DOT2, TT.INT, TT.DOT3, TT.INT)),
    Case("ternary", "a ? b : c", expected_types=(TT.IDENT, TT.QMARK, TT.IDENT, TT.COLON, TT.IDENT)),
    Case("divide", "a / b", expected_types=(TT.IDENT, TT.SLASH, TT.IDENT)),
    Case("regex-argument", "match /re/", expected_types=(TT.IDENT, TT.REGEX)),
    Case("modulo", "a % 2", expected_types=(TT.IDENT, TT.PERCENT, TT.INT)),
    Case("spaceship", "a <=> b", expected_types=(TT.IDENT, TT.CMP, TT.IDENT)),
    Case("shift", "a << b", expected_types=(TT.IDENT, TT.LSHIFT, TT.IDENT)),
    Case("minus-argument", "foo -1", expected_types=(TT.IDENT, TT.MINUS, TT.INT)),
]

LAYOUT_CASES: List[Case] = [
    Case("comment", "x = 1 # note\ny", expected_types=(TT.IDENT, TT.ASSIGN, TT.INT, TT.NEWLINE, TT.IDENT)),
    Case("blank-lines-collapse", "a\n\n\nb", expected_types=(TT.IDENT, TT.NEWLINE, TT.IDENT)),
    Case("leading-newlines", "\n\na", expected_types=(TT.IDENT,)),
    Case("crlf", "a\r\nb", expected_types=(TT.IDENT, TT.NEWLINE, TT.IDENT)),
    Case("leading-dot-chain", "foo\n  .bar\n  &.baz", expected_types=(TT.IDENT, TT.DOT, TT.IDENT, TT.ANDDOT, TT.IDENT)),
    Case("line-continuation", "a \\\n  + b", expected_types=(TT.IDENT, TT.PLUS, TT.IDENT)),
    Case("begin-end-comment", "=begin\nxhr :get, x\n=end\ny", expected_types=(TT.IDENT,)),
    Case("end-marker", "x\n__END__\nxhr :get, path", expected_types=(TT.IDENT, TT.NEWLINE)),
    Case(
        "heredoc-body-skipped",
        "x = <<~EOS\n  xhr :get, path\nEOS\ny",
        expected=((TT.IDENT, "x"), (TT.ASSIGN, "="), (TT.STRING, "<<~EOS"), (TT.NEWLINE, "\n"), (TT.IDENT, "y")),
    ),
    Case(
        "heredoc-call-continues",
        "foo(<<-A, 1)\nbody\n  A\nbar",
        expected_types=(TT.IDENT, TT.LPAR, TT.STRING, TT.COMMA, TT.INT, TT.RPAR, TT.NEWLINE, TT.IDENT),
    ),
]

LEX_ERROR_CASES: List[Case] = [
    Case("unterminated-string", "'abc", exc=LexError, msg="Unterminated string"),
    Case("unterminated-heredoc", "x = <<~EOS\nbody", exc=LexError, msg="Unterminated heredoc EOS"),
    Case("unterminated-begin", "=begin\nno end", exc=LexError, msg="Unterminated =begin"),
    Case("unterminated-regex", "match /abc", exc=LexError, msg="Unterminated regexp"),
    Case("bad-ivar", "@1", exc=LexError, msg="Invalid instance variable"),
]


def _assert_tokens(case: Case) -> None:
    tokens = non_eof_tokens(case.source)
    if case.expected is not None:
        assert [(token.type, token.value) for token in tokens] == list(case.expected)
    else:
        assert case.expected_types is not None
        assert [token.type for token in tokens] == list(case.expected_types)


@pytest.mark.parametrize("case", LITERAL_CASES, ids=lambda case: case.name)
def test_literals(case: Case) -> None:
    _assert_tokens(case)


@pytest.mark.parametrize("case", KEYWORD_CASES, ids=lambda case: case.name)
def test_keywords(case: Case) -> None:
    _assert_tokens(case)


@pytest.mark.parametrize("case", OPERATOR_CASES, ids=lambda case: case.name)
def test_operators(case: Case) -> None:
    _assert_tokens(case)


@pytest.mark.parametrize("case", LAYOUT_CASES, ids=lambda case: case.name)
def test_layout(case: Case) -> None:
    _assert_tokens(case)


@pytest.mark.parametrize("case", LEX_ERROR_CASES, ids=lambda case: case.name)
def test_lex_errors(case: Case) -> None:
    assert case.exc is not None
    assert case.msg is not None
    with pytest.raises(case.exc) as exc_info:
        tokenize(case.source)
    assert case.msg in str(exc_info.value)


def test_spaced_flag_tells_arguments_from_operators() -> None:
    glued = non_eof_tokens("foo -1")
    assert [token.spaced for token in glued] == [False, True, False]

    binary = non_eof_tokens("foo - 1")
    assert [token.spaced for token in binary] == [False, True, True]


def test_offsets_and_positions() -> None:
    source = "a = 1\n  xhr :get, path"
    tokens = non_eof_tokens(source)
    xhr = next(token for token in tokens if token.value == "xhr")

    assert (xhr.line, xhr.column) == (2, 3)
    assert source[xhr.start:xhr.end] == "xhr"

    path = tokens[-1]
    assert source[path.start:path.end] == "path"
    assert (path.end_line, path.end_column) == (2, 17)


def test_label_span_includes_colon() -> None:
    source = "get x, page: 2"
    label = next(token for token in tokenize(source) if token.type is TT.LABEL)
    assert source[label.start:label.end] == "page:"
