"""
Lexical analyzer for the Kaleido language.

Tokens are produced lazily, one at a time. A lexical error consumes the
offending characters before it is raised, so the same lexer can keep going
from the next character once the caller has dealt with the error.
"""

import string
from typing import Iterator, List, Optional
from .token import Token
from .token_types import TokenType, KEYWORDS
from .errors import LexError

SYMBOL_CHARS = frozenset(string.punctuation) - {'#'}
DIGITS = frozenset(string.digits)


class Lexer:
    """Turns Kaleido source text into tokens."""

    def __init__(self, source_code: str, filename: Optional[str] = None):
        self.source = source_code
        self.filename = filename
        self.position = 0
        self.line = 1
        self.column = 1

    def current_char(self) -> Optional[str]:
        """Get current character or None if at end."""
        if self.position >= len(self.source):
            return None
        return self.source[self.position]

    def peek_char(self, offset: int = 1) -> Optional[str]:
        """Peek at character at current position + offset."""
        pos = self.position + offset
        if pos >= len(self.source):
            return None
        return self.source[pos]

    def advance(self) -> Optional[str]:
        """Advance position and return the consumed character."""
        if self.position >= len(self.source):
            return None

        char = self.source[self.position]
        self.position += 1

        if char == '\n':
            self.line += 1
            self.column = 1
        else:
            self.column += 1

        return char

    def skip_whitespace_and_comments(self):
        while self.current_char() is not None:
            char = self.current_char()
            if char.isspace():
                self.advance()
            elif char == '#':
                # Comment until end of line.
                while self.current_char() is not None and self.current_char() not in '\r\n':
                    self.advance()
            else:
                break

    def read_number(self) -> float:
        """Read a run of digits containing at most one decimal point."""
        start_line, start_column = self.line, self.column
        value = ""
        while self.current_char() is not None and (self.current_char() in DIGITS
                                                   or self.current_char() == '.'):
            value += self.advance()

        if value.count('.') > 1:
            raise LexError(f"Malformed number '{value}'",
                           start_line, start_column, self.filename)
        return float(value)

    def read_identifier(self) -> str:
        value = ""
        while self.current_char() is not None and self.current_char().isalnum():
            value += self.advance()
        return value

    def next_token(self) -> Token:
        """Return the next token, or an EOF token once the input is exhausted."""
        self.skip_whitespace_and_comments()

        char = self.current_char()
        start_line, start_column, start = self.line, self.column, self.position

        if char is None:
            return Token(TokenType.EOF, "", start_line, start_column, start, self.filename)

        # Numbers: [0-9]+(.[0-9]*)? or .[0-9]+
        if char in DIGITS or (char == '.' and self.peek_char() in DIGITS):
            value = self.read_number()
            return Token(TokenType.NUMBER, value, start_line, start_column, start, self.filename)

        # Identifiers and keywords
        if char.isalpha():
            value = self.read_identifier()
            token_type = KEYWORDS.get(value, TokenType.IDENTIFIER)
            return Token(token_type, value, start_line, start_column, start, self.filename)

        self.advance()
        if char in SYMBOL_CHARS:
            return Token(TokenType.SYMBOL, char, start_line, start_column, start, self.filename)

        raise LexError(f"Unrecognized character {char!r}",
                       start_line, start_column, self.filename)

    def tokens(self) -> Iterator[Token]:
        """Lazily yield tokens, ending with a single EOF token."""
        while True:
            token = self.next_token()
            yield token
            if token.type == TokenType.EOF:
                return

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source code."""
        return list(self.tokens())
