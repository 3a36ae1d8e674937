"""
Operator table shared by the parser and the session.

The table starts out holding the built-in binary operators and grows as the
user declares `unary`/`binary` operators. It is passed around explicitly
rather than living in a module global, so every parser test can start from a
fresh table.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, Optional
from .errors import ParseError


class Arity(Enum):
    UNARY = 1
    BINARY = 2


@dataclass(frozen=True)
class OperatorEntry:
    symbol: str
    arity: Arity
    precedence: int
    builtin: bool = False


NOT_AN_OPERATOR = -1

# Higher binds tighter.
BUILTIN_OPERATORS = {
    '=': 2,
    '<': 10,
    '+': 20,
    '-': 20,
    '*': 40,
    '/': 40,
}


class OperatorTable:
    """Registry of operator symbols, their arity and precedence."""

    def __init__(self):
        self._entries: Dict[str, OperatorEntry] = {}
        for symbol, precedence in BUILTIN_OPERATORS.items():
            self._entries[symbol] = OperatorEntry(symbol, Arity.BINARY, precedence, builtin=True)

    def check_declaration(self, symbol: str, arity: Arity):
        """Raise ParseError if declaring `symbol` with `arity` is not allowed."""
        previous = self._entries.get(symbol)
        if previous is not None and previous.builtin and previous.arity != arity:
            raise ParseError(
                f"Cannot redeclare built-in operator '{symbol}' as "
                f"{arity.name.lower()}; it is {previous.arity.name.lower()}",
                expected=f"{previous.arity.name.lower()} operator",
                found=f"{arity.name.lower()} '{symbol}'")

    def declare(self, symbol: str, arity: Arity, precedence: int = 0) -> OperatorEntry:
        """Insert or overwrite the entry for `symbol`; the last declaration wins."""
        self.check_declaration(symbol, arity)
        previous = self._entries.get(symbol)
        if previous is not None and previous.builtin:
            entry = replace(previous, precedence=precedence)
        else:
            entry = OperatorEntry(symbol, arity, precedence)
        self._entries[symbol] = entry
        return entry

    def lookup(self, symbol: str) -> Optional[OperatorEntry]:
        return self._entries.get(symbol)

    def precedence_of(self, symbol: str) -> int:
        entry = self._entries.get(symbol)
        if entry is None:
            return NOT_AN_OPERATOR
        return entry.precedence

    def binary_precedence(self, symbol: str) -> int:
        """Precedence used for precedence climbing; -1 for anything not binary."""
        entry = self._entries.get(symbol)
        if entry is None or entry.arity != Arity.BINARY:
            return NOT_AN_OPERATOR
        return entry.precedence

    def is_binary_operator(self, symbol: str) -> bool:
        entry = self._entries.get(symbol)
        return entry is not None and entry.arity == Arity.BINARY

    def is_unary_operator(self, symbol: str) -> bool:
        entry = self._entries.get(symbol)
        return entry is not None and entry.arity == Arity.UNARY

    def is_builtin(self, symbol: str) -> bool:
        entry = self._entries.get(symbol)
        return entry is not None and entry.builtin

    def snapshot(self) -> Dict[str, OperatorEntry]:
        # Entries are frozen, so a shallow copy is a full snapshot.
        return dict(self._entries)

    def restore(self, snapshot: Dict[str, OperatorEntry]):
        self._entries = dict(snapshot)

    def __contains__(self, symbol):
        return symbol in self._entries

    def __iter__(self) -> Iterator[OperatorEntry]:
        return iter(self._entries.values())

    def __len__(self):
        return len(self._entries)
