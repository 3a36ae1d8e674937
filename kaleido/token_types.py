"""
Token definitions for the Kaleido language.
"""

from enum import Enum, auto


class TokenType(Enum):
    # Literals
    NUMBER = auto()

    # Identifiers
    IDENTIFIER = auto()

    # Keywords
    DEF = auto()
    EXTERN = auto()
    IF = auto()
    THEN = auto()
    ELSE = auto()
    FOR = auto()
    IN = auto()
    VAR = auto()
    UNARY = auto()
    BINARY = auto()

    # Any single punctuation character; operators are assembled by the parser
    SYMBOL = auto()

    # Special
    EOF = auto()


KEYWORDS = {
    'def': TokenType.DEF,
    'extern': TokenType.EXTERN,
    'if': TokenType.IF,
    'then': TokenType.THEN,
    'else': TokenType.ELSE,
    'for': TokenType.FOR,
    'in': TokenType.IN,
    'var': TokenType.VAR,
    'unary': TokenType.UNARY,
    'binary': TokenType.BINARY,
}

# Symbols with a fixed grammatical role; never part of a user operator.
PUNCTUATION = frozenset('(),;')
