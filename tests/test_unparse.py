from __future__ import annotations

from dataclasses import dataclass
from typing import List

import pytest
from lark import Token

from tests.support.harness import parse_stmt, reprint
from rails5_xhr_update.tree import sym, synth
from rails5_xhr_update.unparse import unparse


@dataclass(frozen=True)
class Case:
    name: str
    source: str
    expected: str


REPRINT_CASES: List[Case] = [
    Case("paren-call", "foo(1, 2)", "foo(1, 2)"),
    Case("command-gets-parens", "foo 1, 2", "foo(1, 2)"),
    Case("trailing-hash-braceless", "get path, params: { a: 1 }", "get(path, params: { a: 1 })"),
    Case("hash-before-block-pass", "foo(a: 1, &blk)", "foo(a: 1, &blk)"),
    Case("rocket-pairs", "x = { 'a' => 1 }", "x = { 'a' => 1 }"),
    Case("operator-symbol-key", "foo(:+ => 1)", "foo(:+ => 1)"),
    Case("string-label", 'foo("X-Token": t)', 'foo("X-Token": t)'),
    Case("empty-hash", "foo({})", "foo({})"),
    Case("safe-navigation", "a&.b(1)", "a&.b(1)"),
    Case("brace-block", "items.map { |i| i * 2 }", "items.map { |i| i * 2 }"),
    Case("ternary", "x ? 'a' : 'b'", "x ? 'a' : 'b'"),
    Case("lambda", "->(x) { x + 1 }", "->(x) { x + 1 }"),
    Case("cbase-constant", "::Foo::Bar", "::Foo::Bar"),
    Case("predicate-negation", "!foo?", "!foo?"),
    Case("defined", "defined?(x)", "defined?(x)"),
    Case("range", "1..10", "1..10"),
    Case("attribute-assignment", "user.name = 'x'", "user.name = 'x'"),
    Case("op-assignment", "x ||= []", "x ||= []"),
    Case("grouping-kept", "(a + b) * c", "(a + b) * c"),
    Case("splat-and-kwsplat", "foo(*args, **opts)", "foo(*args, **opts)"),
    Case("modifier", "retry if attempts < 3", "retry if attempts < 3"),
    Case("multiple-assignment", "a, b = b, a", "a, b = b, a"),
    Case("index", "params[:id]", "params[:id]"),
    Case("return-values", "def f\n  return 1, 2\nend", "def f\n  return 1, 2\nend"),
    Case("def-body", "def show\n  get :index\nend", "def show\n  get(:index)\nend"),
    Case("def-params", "def self.build(a, b = 2, *rest, key:, **opts, &blk)\n  a\nend",
         "def self.build(a, b = 2, *rest, key:, **opts, &blk)\n  a\nend"),
    Case("if-elsif-else", "if a\n  b\nelsif c\n  d\nelse\n  e\nend", "if a\n  b\nelsif c\n  d\nelse\n  e\nend"),
    Case("rescue", "begin\n  x\nrescue Foo => e\n  y\nend", "begin\n  x\nrescue Foo => e\n  y\nend"),
    Case("do-block", "it 'x' do |a|\n  a\nend", "it('x') do |a|\n  a\nend"),
    Case("nested-blocks", "describe 'a' do\n  it 'b' do\n    get :c\n  end\nend",
         "describe('a') do\n  it('b') do\n    get(:c)\n  end\nend"),
    Case("class", "class A < B\n  def x\n    1\n  end\nend", "class A < B\n  def x\n    1\n  end\nend"),
    Case("case", "case x\nwhen 1, 2\n  :a\nelse\n  :b\nend", "case x\nwhen 1, 2\n  :a\nelse\n  :b\nend"),
]


@pytest.mark.parametrize("case", REPRINT_CASES, ids=lambda case: case.name)
def test_reprint(case: Case) -> None:
    assert reprint(case.source) == case.expected


def test_command_style_only_affects_outer_call() -> None:
    call = parse_stmt("get path_for(item), params: { a: b(1) }")
    assert unparse(call, command_style=True) == "get path_for(item), params: { a: b(1) }"
    assert unparse(call) == "get(path_for(item), params: { a: b(1) })"


def test_command_style_without_arguments() -> None:
    assert unparse(parse_stmt("reload"), command_style=True) == "reload"


def test_synthesized_call() -> None:
    node = synth("call", [
        None,
        Token("IDENT", "get"),
        parse_stmt("root_path"),
        synth("hash", [
            synth("pair", [sym("headers"), parse_stmt("{ Accept: 'application/json' }")]),
            synth("pair", [sym("xhr"), synth("true", [])]),
        ]),
    ])

    expected = "get root_path, headers: { Accept: 'application/json' }, xhr: true"
    assert unparse(node, command_style=True) == expected
    assert not unparse(node, command_style=True).endswith("\n")


def test_symbol_keys_that_are_not_labels_use_rockets() -> None:
    node = synth("hash", [synth("pair", [sym("content-type"), synth("nil", [])])])
    assert unparse(node) == "{ :content-type => nil }"


def test_unknown_kind_is_rejected() -> None:
    with pytest.raises(ValueError):
        unparse(synth("mystery", []))
