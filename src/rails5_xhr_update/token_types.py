"""
Token Types for the Ruby lexer

Shared between lexer and parser to avoid circular dependencies.
"""

from typing import Any
from dataclasses import dataclass
from enum import Enum, auto


class TT(Enum):
    """Token Types"""

    # Literals
    INT = auto()
    FLOAT = auto()
    STRING = auto()  # any string form, raw source text kept as the value
    XSTRING = auto()  # `cmd` and %x()
    SYMBOL = auto()  # :name, value is the bare name
    DSYM = auto()  # :"name", value is the quoted text
    REGEX = auto()
    WORDS = auto()  # %w[] %i[]
    LABEL = auto()  # name: inside hashes and argument lists
    STRING_LABEL = auto()  # "name": inside hashes and argument lists

    # Names
    IDENT = auto()
    CONST = auto()
    IVAR = auto()
    GVAR = auto()
    CVAR = auto()

    # Keywords
    ALIAS = auto()
    AND = auto()
    BEGIN = auto()
    BREAK = auto()
    CASE = auto()
    CLASS = auto()
    DEF = auto()
    DEFINED = auto()
    DO = auto()
    ELSE = auto()
    ELSIF = auto()
    END = auto()
    ENSURE = auto()
    FOR = auto()
    IF = auto()
    IN = auto()
    MODULE = auto()
    NEXT = auto()
    NOT = auto()
    OR = auto()
    REDO = auto()
    RESCUE = auto()
    RETRY = auto()
    RETURN = auto()
    SUPER = auto()
    THEN = auto()
    UNLESS = auto()
    UNTIL = auto()
    WHEN = auto()
    WHILE = auto()
    YIELD = auto()

    # Keyword literals
    TRUE = auto()
    FALSE = auto()
    NIL = auto()
    SELF = auto()

    # Arithmetic
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    POW = auto()
    SLASH = auto()
    PERCENT = auto()

    # Comparison
    EQ = auto()  # ==
    EQQ = auto()  # ===
    NEQ = auto()  # !=
    MATCH = auto()  # =~
    NMATCH = auto()  # !~
    CMP = auto()  # <=>
    LT = auto()
    LTE = auto()
    GT = auto()
    GTE = auto()

    # Logical / bitwise
    ANDAND = auto()
    OROR = auto()
    BANG = auto()
    TILDE = auto()
    AMP = auto()
    PIPE = auto()
    CARET = auto()
    LSHIFT = auto()
    RSHIFT = auto()

    # Assignment
    ASSIGN = auto()  # =
    OP_ASGN = auto()  # += -= ||= ... value carries the operator
    ASSOC = auto()  # =>

    # Punctuation
    ARROW = auto()  # ->
    DOT = auto()
    ANDDOT = auto()  # &.
    COLON2 = auto()  # ::
    COLON = auto()
    QMARK = auto()
    DOT2 = auto()  # ..
    DOT3 = auto()  # ...
    COMMA = auto()
    SEMI = auto()
    LPAR = auto()
    RPAR = auto()
    LBRACK = auto()
    RBRACK = auto()
    LBRACE = auto()
    RBRACE = auto()

    # Special
    NEWLINE = auto()
    EOF = auto()


@dataclass
class Tok:
    """Token with position info.

    ``start``/``end`` are offsets into the source string; ``spaced`` records
    whether whitespace preceded the token, which Ruby uses to tell command
    arguments (``puts -1``) from binary operators (``a - 1``).
    """

    type: TT
    value: Any
    line: int = 0
    column: int = 0
    start: int = 0
    end: int = 0
    spaced: bool = False
    end_line: int = 0
    end_column: int = 0

    def __repr__(self):
        return f"Tok({self.type.name}, {self.value!r}, {self.line}:{self.column})"
