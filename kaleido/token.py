"""
Token class for representing lexical tokens.
"""

from .token_types import TokenType, KEYWORDS


class Token:
    """A single lexical token with position information."""

    def __init__(self, token_type, value, line=1, column=1, offset=0, filename=None):
        self.type = token_type
        self.value = value
        self.line = line
        self.column = column
        self.offset = offset
        self.filename = filename

    def __str__(self):
        return f"Token({self.type.name}, {repr(self.value)}, {self.line}:{self.column})"

    def __repr__(self):
        return self.__str__()

    def __eq__(self, other):
        if not isinstance(other, Token):
            return NotImplemented
        return self.type == other.type and self.value == other.value

    def __hash__(self):
        return hash((self.type, self.value))

    def is_type(self, token_type):
        """Check if token is of specified type."""
        return self.type == token_type

    def is_symbol(self, value=None):
        """Check if token is a symbol, optionally a specific one."""
        if self.type != TokenType.SYMBOL:
            return False
        return value is None or self.value == value

    def is_keyword(self):
        return self.type in KEYWORDS.values()

    def follows(self, other):
        """True if this symbol starts exactly where the symbol `other` ends."""
        return (self.type == TokenType.SYMBOL and other.type == TokenType.SYMBOL
                and other.offset + len(other.value) == self.offset)

    def describe(self):
        """Human readable form used in error messages."""
        if self.type == TokenType.EOF:
            return "end of input"
        if self.type == TokenType.NUMBER:
            return f"number {self.value:g}"
        if self.type == TokenType.IDENTIFIER:
            return f"identifier '{self.value}'"
        if self.is_keyword():
            return f"keyword '{self.value}'"
        return f"'{self.value}'"
