"""
Lexer for Ruby source - Recursive Descent Parser front end

Tokenizes Ruby source code into a stream of tokens.

Features:
- Single-pass tokenization
- Position tracking (line, column, source offsets)
- Context-sensitive literals (regexes, symbols, labels, percent literals,
  heredocs), decided from the previous token and surrounding whitespace
- Leading-dot method chains continue the previous line
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from .errors import ParseFailure
from .token_types import TT, Tok

# ============================================================================
# Lexer Implementation
# ============================================================================

HEREDOC_RE = re.compile(r"<<([~-]?)(['\"`]?)([A-Za-z_][A-Za-z0-9_]*)\2")

# Tokens after which an operator-looking character is a binary operator
VALUE_END = frozenset({
    TT.INT, TT.FLOAT, TT.STRING, TT.XSTRING, TT.SYMBOL, TT.DSYM, TT.REGEX,
    TT.WORDS, TT.IDENT, TT.CONST, TT.IVAR, TT.GVAR, TT.CVAR,
    TT.RPAR, TT.RBRACK, TT.RBRACE,
    TT.END, TT.SELF, TT.TRUE, TT.FALSE, TT.NIL,
})

PERCENT_KINDS = 'wWiIqQrx'
PAIRED_DELIMITERS = {'(': ')', '[': ']', '{': '}', '<': '>'}

# Method names that may follow ':' to form a symbol, longest first
OPERATOR_SYMBOLS = [
    '[]=', '[]', '<=>', '===', '==', '=~', '!=', '!~', '**', '+@', '-@',
    '<<', '>>', '<=', '>=', '+', '-', '*', '/', '%', '<', '>', '!', '~',
    '&', '|', '^',
]

GVAR_SPECIALS = "!@&~'`+/\\;,.<>_*$?:\"0"


class Lexer:
    """
    Ruby lexer.

    Ruby's grammar is not context free at the token level: ``/`` may start a
    regex or divide, ``:`` may start a symbol or end a ternary, ``<<`` may
    open a heredoc. The lexer resolves these from the previous token, and for
    identifiers from the whitespace around the operator (``foo -1`` passes
    ``-1`` to ``foo``, ``foo - 1`` subtracts).
    """

    KEYWORDS = {
        'alias': TT.ALIAS,
        'and': TT.AND,
        'begin': TT.BEGIN,
        'break': TT.BREAK,
        'case': TT.CASE,
        'class': TT.CLASS,
        'def': TT.DEF,
        'defined?': TT.DEFINED,
        'do': TT.DO,
        'else': TT.ELSE,
        'elsif': TT.ELSIF,
        'end': TT.END,
        'ensure': TT.ENSURE,
        'false': TT.FALSE,
        'for': TT.FOR,
        'if': TT.IF,
        'in': TT.IN,
        'module': TT.MODULE,
        'next': TT.NEXT,
        'nil': TT.NIL,
        'not': TT.NOT,
        'or': TT.OR,
        'redo': TT.REDO,
        'rescue': TT.RESCUE,
        'retry': TT.RETRY,
        'return': TT.RETURN,
        'self': TT.SELF,
        'super': TT.SUPER,
        'then': TT.THEN,
        'true': TT.TRUE,
        'unless': TT.UNLESS,
        'until': TT.UNTIL,
        'when': TT.WHEN,
        'while': TT.WHILE,
        'yield': TT.YIELD,
    }

    # Operator mapping: longest matches first to handle prefixes correctly
    OPERATORS = [
        # Three-character operators
        ('**=', TT.OP_ASGN),
        ('<<=', TT.OP_ASGN),
        ('>>=', TT.OP_ASGN),
        ('&&=', TT.OP_ASGN),
        ('||=', TT.OP_ASGN),
        ('<=>', TT.CMP),
        ('===', TT.EQQ),
        ('...', TT.DOT3),

        # Two-character operators
        ('**', TT.POW),
        ('==', TT.EQ),
        ('!=', TT.NEQ),
        ('=~', TT.MATCH),
        ('!~', TT.NMATCH),
        ('<=', TT.LTE),
        ('>=', TT.GTE),
        ('<<', TT.LSHIFT),
        ('>>', TT.RSHIFT),
        ('&&', TT.ANDAND),
        ('||', TT.OROR),
        ('+=', TT.OP_ASGN),
        ('-=', TT.OP_ASGN),
        ('*=', TT.OP_ASGN),
        ('/=', TT.OP_ASGN),
        ('%=', TT.OP_ASGN),
        ('|=', TT.OP_ASGN),
        ('&=', TT.OP_ASGN),
        ('^=', TT.OP_ASGN),
        ('=>', TT.ASSOC),
        ('->', TT.ARROW),
        ('&.', TT.ANDDOT),
        ('::', TT.COLON2),
        ('..', TT.DOT2),

        # Single-character operators
        ('+', TT.PLUS),
        ('-', TT.MINUS),
        ('*', TT.STAR),
        ('/', TT.SLASH),
        ('%', TT.PERCENT),
        ('<', TT.LT),
        ('>', TT.GT),
        ('!', TT.BANG),
        ('~', TT.TILDE),
        ('&', TT.AMP),
        ('|', TT.PIPE),
        ('^', TT.CARET),
        ('=', TT.ASSIGN),
        ('.', TT.DOT),
        (',', TT.COMMA),
        (';', TT.SEMI),
        ('(', TT.LPAR),
        (')', TT.RPAR),
        ('[', TT.LBRACK),
        (']', TT.RBRACK),
        ('{', TT.LBRACE),
        ('}', TT.RBRACE),
        ('?', TT.QMARK),
        (':', TT.COLON),
    ]

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.column = 1
        self.tokens: List[Tok] = []
        self.last: Optional[Tok] = None

        # Start of the token being scanned
        self.tok_start = 0
        self.tok_line = 1
        self.tok_column = 1

        self.spaced = False
        self.at_line_start = True
        self.pending_heredocs: List[Tuple[str, bool]] = []

    # ========================================================================
    # Main Tokenization
    # ========================================================================

    def tokenize(self) -> List[Tok]:
        """Tokenize entire source, return token list"""
        while self.pos < len(self.source):
            self.scan_token()

        if self.pending_heredocs:
            raise LexError(f"Unterminated heredoc {self.pending_heredocs[0][0]} at line {self.line}")

        self.begin_token()
        self.emit(TT.EOF, None)
        return self.tokens

    def scan_token(self):
        """Scan next token"""
        if self.at_line_start:
            self.at_line_start = False
            if self.scan_line_directive():
                return

        # Skip whitespace (not newlines)
        if self.skip_whitespace():
            self.spaced = True
            return

        ch = self.peek()

        # Line continuation
        if ch == '\\' and self.peek(1) in ('\n', '\r'):
            self.advance()
            if self.peek() == '\r':
                self.advance()
            self.advance()
            self.spaced = True
            return

        # Comments
        if ch == '#':
            self.skip_comment()
            return

        # Newlines
        if ch in ('\n', '\r'):
            self.scan_newline()
            return

        self.begin_token()

        if ch in ('"', "'"):
            self.scan_string(ch)
            return

        if ch == '`':
            self.skip_quoted('`')
            self.emit(TT.XSTRING, self.token_text())
            return

        if ch.isdigit():
            self.scan_number()
            return

        if ch.isalpha() or ch == '_' or ord(ch) > 127:
            self.scan_identifier()
            return

        if ch == '@':
            self.scan_ivar()
            return

        if ch == '$':
            self.scan_gvar()
            return

        if ch == ':' and self.peek(1) != ':' and self.is_symbol_start():
            self.scan_symbol()
            return

        if ch == '%' and self.value_expected() and self.is_percent_literal():
            self.scan_percent_literal()
            return

        if ch == '/' and self.value_expected():
            self.scan_regex()
            return

        if ch == '<' and self.peek(1) == '<' and self.value_expected():
            if self.scan_heredoc():
                return

        if ch == '?' and self.value_expected() and self.is_char_literal():
            self.scan_char()
            return

        self.scan_operator()

    def scan_line_directive(self) -> bool:
        """Handle =begin/=end comment blocks and __END__ at column 1"""
        nl = self.source.find('\n', self.pos)
        rest_of_line = self.source[self.pos:len(self.source) if nl < 0 else nl].rstrip('\r')

        if rest_of_line == '__END__':
            self.jump_to(len(self.source))
            return True

        if rest_of_line.startswith('=begin') and rest_of_line[6:7] in ('', ' ', '\t'):
            idx = self.pos
            while True:
                nl = self.source.find('\n', idx)
                if nl < 0:
                    raise LexError(f"Unterminated =begin comment at line {self.line}")
                idx = nl + 1
                if self.source.startswith('=end', idx):
                    end_nl = self.source.find('\n', idx)
                    self.jump_to(len(self.source) if end_nl < 0 else end_nl)
                    return True

        return False

    # ========================================================================
    # Context
    # ========================================================================

    def value_expected(self) -> bool:
        """True when the next token starts an operand rather than an operator"""
        last = self.last
        if last is None or last.type not in VALUE_END:
            return True

        # `foo /re/`, `puts -1`, `render <<~EOS`: a spaced identifier followed
        # by an operator glued to its operand starts a command argument
        if last.type is TT.IDENT and self.spaced:
            return self.peek(1) not in (' ', '\t', '\n', '\r', '=', '\0')

        return False

    def is_symbol_start(self) -> bool:
        ch = self.peek(1)
        if ch in ('"', "'") or ch.isalpha() or ch == '_' or ord(ch) > 127:
            return True
        if ch == '@' or ch == '$':
            return True
        if not self.value_expected():
            return False
        return any(self.source.startswith(op, self.pos + 1) for op in OPERATOR_SYMBOLS)

    def is_percent_literal(self) -> bool:
        kind = self.peek(1)
        if kind in PERCENT_KINDS:
            delim = self.peek(2)
            return not delim.isalnum() and delim not in (' ', '\t', '\n', '\r', '\0')
        return kind in '([{<|!/^'

    def is_char_literal(self) -> bool:
        ch = self.peek(1)
        if ch in (' ', '\t', '\n', '\r', '\0'):
            return False
        if ch == '\\':
            return True
        nxt = self.peek(2)
        return not (nxt.isalnum() or nxt == '_')

    # ========================================================================
    # Token Scanners
    # ========================================================================

    def scan_newline(self):
        """Scan newline, consuming pending heredoc bodies"""
        self.begin_token()
        if self.peek() == '\r' and self.peek(1) == '\n':
            self.advance(2)  # consume CRLF
        else:
            self.advance()
        self.at_line_start = True

        while self.pending_heredocs:
            tag, indented = self.pending_heredocs.pop(0)
            self.skip_heredoc_body(tag, indented)

        if self.last is None or self.last.type is TT.NEWLINE:
            return
        if self.continues_on_next_line():
            self.spaced = True
            return

        tok = Tok(TT.NEWLINE, '\n', self.tok_line, self.tok_column, self.tok_start, self.tok_start + 1, self.spaced,
                  self.tok_line, self.tok_column + 1)
        self.tokens.append(tok)
        self.last = tok
        self.spaced = False

    def continues_on_next_line(self) -> bool:
        """A line starting with `.meth` or `&.meth` continues the previous one"""
        idx = self.pos
        src = self.source
        while idx < len(src):
            ch = src[idx]
            if ch in (' ', '\t', '\r', '\n'):
                idx += 1
            elif ch == '#':
                nl = src.find('\n', idx)
                idx = len(src) if nl < 0 else nl
            else:
                break

        if src.startswith('&.', idx):
            return True
        return src.startswith('.', idx) and not src.startswith('..', idx)

    def skip_heredoc_body(self, tag: str, indented: bool):
        while True:
            if self.pos >= len(self.source):
                raise LexError(f"Unterminated heredoc {tag} at line {self.line}")
            nl = self.source.find('\n', self.pos)
            stop = len(self.source) if nl < 0 else nl + 1
            text = self.source[self.pos:stop].rstrip('\r\n')
            self.jump_to(stop)
            if (text.strip() if indented else text) == tag:
                return

    def scan_string(self, quote: str):
        """Scan string literal: "..." or '...', or a "label": in a hash"""
        self.skip_quoted(quote)
        text = self.token_text()

        if self.peek() == ':' and self.peek(1) in (' ', '\t', '\n', '\r'):
            self.advance()
            self.emit(TT.STRING_LABEL, text)
            return

        self.emit(TT.STRING, text)

    def skip_quoted(self, quote: str):
        """Consume a quoted literal including both quotes"""
        start_line = self.line
        self.advance()  # opening quote

        while True:
            if self.pos >= len(self.source):
                raise LexError(f"Unterminated string at line {start_line}")
            ch = self.peek()
            if ch == '\\':
                self.advance(2)
            elif quote != "'" and ch == '#' and self.peek(1) == '{':
                self.skip_interpolation()
            elif ch == quote:
                self.advance()
                return
            else:
                self.advance()

    def skip_interpolation(self):
        """Consume #{ ... } including nested braces and strings"""
        start_line = self.line
        self.advance(2)
        depth = 1

        while depth:
            if self.pos >= len(self.source):
                raise LexError(f"Unterminated interpolation at line {start_line}")
            ch = self.peek()
            if ch == '\\':
                self.advance(2)
            elif ch in ('"', "'", '`'):
                self.skip_quoted(ch)
            elif ch == '{':
                depth += 1
                self.advance()
            elif ch == '}':
                depth -= 1
                self.advance()
            else:
                self.advance()

    def scan_percent_literal(self):
        """Scan %w[] %i[] %q() %Q{} %r{} %x() and bare %()"""
        start_line = self.line
        self.advance()  # %
        kind = ''
        if self.peek() in PERCENT_KINDS:
            kind = self.advance()

        opener = self.advance()
        closer = PAIRED_DELIMITERS.get(opener, opener)
        interpolates = kind in ('', 'Q', 'W', 'I', 'r', 'x')
        depth = 1

        while True:
            if self.pos >= len(self.source):
                raise LexError(f"Unterminated %-literal at line {start_line}")
            ch = self.peek()
            if ch == '\\':
                self.advance(2)
            elif interpolates and ch == '#' and self.peek(1) == '{':
                self.skip_interpolation()
            elif ch == closer and opener != closer and depth > 1:
                depth -= 1
                self.advance()
            elif ch == closer:
                self.advance()
                break
            elif ch == opener and opener != closer:
                depth += 1
                self.advance()
            else:
                self.advance()

        if kind == 'r':
            while self.peek() in 'imxounse':
                self.advance()
            self.emit(TT.REGEX, self.token_text())
        elif kind in ('w', 'W', 'i', 'I'):
            self.emit(TT.WORDS, self.token_text())
        elif kind == 'x':
            self.emit(TT.XSTRING, self.token_text())
        else:
            self.emit(TT.STRING, self.token_text())

    def scan_regex(self):
        """Scan regex literal: /.../flags"""
        start_line = self.line
        self.advance()  # /
        in_class = False

        while True:
            if self.pos >= len(self.source):
                raise LexError(f"Unterminated regexp at line {start_line}")
            ch = self.peek()
            if ch == '\\':
                self.advance(2)
            elif ch == '#' and self.peek(1) == '{':
                self.skip_interpolation()
            elif ch == '[':
                in_class = True
                self.advance()
            elif ch == ']':
                in_class = False
                self.advance()
            elif ch == '/' and not in_class:
                self.advance()
                break
            else:
                self.advance()

        while self.peek() in 'imxounse':
            self.advance()
        self.emit(TT.REGEX, self.token_text())

    def scan_heredoc(self) -> bool:
        """Scan a heredoc opener; the body is skipped at the next newline"""
        m = HEREDOC_RE.match(self.source, self.pos)
        if m is None:
            return False

        self.advance(len(m.group(0)))
        self.pending_heredocs.append((m.group(3), m.group(1) != ''))
        self.emit(TT.STRING, m.group(0))
        return True

    def scan_char(self):
        """Scan character literal: ?a"""
        self.advance()  # ?
        if self.peek() == '\\':
            self.advance(2)
        else:
            self.advance()
        self.emit(TT.STRING, self.token_text())

    def scan_number(self):
        """Scan number literal"""
        is_float = False

        if self.peek() == '0' and self.peek(1) in 'xXbBoOdD':
            self.advance(2)
            while self.peek().isalnum() or self.peek() == '_':
                self.advance()
            self.emit(TT.INT, self.token_text())
            return

        self.scan_digits()

        # Decimal part
        if self.peek() == '.' and self.peek(1).isdigit():
            is_float = True
            self.advance()
            self.scan_digits()

        # Scientific notation
        if self.peek() in ('e', 'E') and (self.peek(1).isdigit() or (self.peek(1) in '+-' and self.peek(2).isdigit())):
            is_float = True
            self.advance()
            if self.peek() in ('+', '-'):
                self.advance()
            self.scan_digits()

        # Rational / imaginary suffixes
        if self.peek() in ('r', 'i') and not (self.peek(1).isalnum() or self.peek(1) == '_'):
            self.advance()

        self.emit(TT.FLOAT if is_float else TT.INT, self.token_text())

    def scan_digits(self):
        while self.peek().isdigit() or (self.peek() == '_' and self.peek(1).isdigit()):
            self.advance()

    def scan_identifier(self):
        """Scan identifier, constant, keyword or label"""
        while self.is_ident_char(self.peek()):
            self.advance()

        # Predicate and bang methods, but not `foo!=` or `foo ?a : b`
        if self.peek() in ('?', '!') and self.peek(1) != '=' and not self.token_text()[0].isupper():
            self.advance()

        value = self.token_text()
        after_dot = self.last is not None and self.last.type in (TT.DOT, TT.ANDDOT, TT.DEF)

        if self.peek() == ':' and self.peek(1) != ':' and not after_dot:
            self.advance()
            self.emit(TT.LABEL, value)
            return

        if after_dot:
            self.emit(TT.CONST if value[0].isupper() else TT.IDENT, value)
            return

        token_type = self.KEYWORDS.get(value)
        if token_type is None:
            token_type = TT.CONST if value[0].isupper() else TT.IDENT
        self.emit(token_type, value)

    def scan_ivar(self):
        """Scan @ivar or @@cvar"""
        token_type = TT.IVAR
        self.advance()
        if self.peek() == '@':
            token_type = TT.CVAR
            self.advance()

        if not (self.peek().isalpha() or self.peek() == '_'):
            raise LexError(f"Invalid instance variable name at line {self.line}, col {self.column}")
        while self.is_ident_char(self.peek()):
            self.advance()
        self.emit(token_type, self.token_text())

    def scan_gvar(self):
        """Scan $global, $1 or $! style globals"""
        self.advance()  # $
        ch = self.peek()
        if ch.isalpha() or ch == '_':
            while self.is_ident_char(self.peek()):
                self.advance()
        elif ch.isdigit():
            while self.peek().isdigit():
                self.advance()
        elif ch in GVAR_SPECIALS and ch != '\0':
            self.advance()
        else:
            raise LexError(f"Invalid global variable name at line {self.line}, col {self.column}")
        self.emit(TT.GVAR, self.token_text())

    def scan_symbol(self):
        """Scan symbol literal: :name, :"name", :@ivar, :[]="""
        self.advance()  # :
        ch = self.peek()

        if ch in ('"', "'"):
            self.skip_quoted(ch)
            self.emit(TT.DSYM, self.token_text()[1:])
            return

        if ch in ('@', '$'):
            self.advance()
            if self.peek() == '@':
                self.advance()
            while self.is_ident_char(self.peek()):
                self.advance()
            self.emit(TT.SYMBOL, self.token_text()[1:])
            return

        if ch.isalpha() or ch == '_' or ord(ch) > 127:
            while self.is_ident_char(self.peek()):
                self.advance()
            if self.peek() in ('?', '!') and self.peek(1) != '=':
                self.advance()
            elif self.peek() == '=' and self.peek(1) not in ('=', '~', '>'):
                self.advance()
            self.emit(TT.SYMBOL, self.token_text()[1:])
            return

        for op in OPERATOR_SYMBOLS:
            if self.source.startswith(op, self.pos):
                self.advance(len(op))
                self.emit(TT.SYMBOL, op)
                return

        raise LexError(f"Invalid symbol at line {self.line}, col {self.column}")

    def scan_operator(self):
        """Scan operators and punctuation"""
        for op_str, op_type in self.OPERATORS:
            if self.source.startswith(op_str, self.pos):
                self.advance(len(op_str))
                self.emit(op_type, op_str)
                return

        ch = self.peek()
        raise LexError(f"Unexpected character '{ch}' at line {self.line}, col {self.column}")

    # ========================================================================
    # Utilities
    # ========================================================================

    @staticmethod
    def is_ident_char(ch: str) -> bool:
        return ch.isalnum() or ch == '_' or (ch != '\0' and ord(ch) > 127)

    def peek(self, offset: int = 0) -> str:
        """Look ahead at character"""
        idx = self.pos + offset
        if idx < len(self.source):
            return self.source[idx]
        return '\0'

    def advance(self, n: int = 1) -> str:
        """Consume n characters and return them as a string"""
        if n < 0:
            raise ValueError(f"advance() requires n >= 0, got {n}")
        result = self.source[self.pos:self.pos + n]
        for ch in result:
            if ch == '\n':
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        self.pos += n
        return result

    def jump_to(self, index: int):
        """Move to an absolute offset, keeping line/column in sync"""
        self.advance(index - self.pos)

    def skip_whitespace(self) -> bool:
        """Skip whitespace (not newlines), return True if any skipped"""
        skipped = False
        while self.peek() in (' ', '\t', '\f', '\v'):
            self.advance()
            skipped = True
        return skipped

    def skip_comment(self):
        """Skip comment until end of line"""
        while self.peek() not in ('\n', '\r', '\0'):
            self.advance()

    def begin_token(self):
        self.tok_start = self.pos
        self.tok_line = self.line
        self.tok_column = self.column

    def token_text(self) -> str:
        return self.source[self.tok_start:self.pos]

    def emit(self, token_type: TT, value):
        """Emit a token"""
        tok = Tok(
            type=token_type,
            value=value,
            line=self.tok_line,
            column=self.tok_column,
            start=self.tok_start,
            end=self.pos,
            spaced=self.spaced,
            end_line=self.line,
            end_column=self.column,
        )
        self.tokens.append(tok)
        self.last = tok
        self.spaced = False


class LexError(ParseFailure):
    """Lexical analysis error"""
    pass


def tokenize(source: str) -> List[Tok]:
    """Convenience function to tokenize source"""
    lexer = Lexer(source)
    return lexer.tokenize()
