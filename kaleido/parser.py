"""
Parser for the Kaleido language.

Recursive descent for primaries and declarations, precedence climbing for
binary operator chains. Operator precedences are read from the operator table
every time an operator token is seen, because user declarations change them
between (never within) top-level units.
"""

from collections import deque
from typing import Deque, List, Optional, Tuple
from .lexer import Lexer
from .token import Token
from .token_types import TokenType, PUNCTUATION
from .ast_nodes import *
from .operators import Arity, OperatorTable, NOT_AN_OPERATOR
from .errors import LexError, ParseError

PendingDeclaration = Tuple[str, Arity, int]


class Parser:
    """
    Parses one top-level unit at a time from a lexer.

    Tokens are pulled lazily: the token after a unit's terminating `;` is not
    lexed until the next unit is requested.
    """

    def __init__(self, lexer: Lexer, operators: OperatorTable, filename: Optional[str] = None):
        self.lexer = lexer
        self.operators = operators
        self.filename = filename or lexer.filename
        self._current: Optional[Token] = None
        self._lookahead: Deque[Token] = deque()

    # --- token handling ---

    def _fetch(self) -> Token:
        if self._lookahead:
            return self._lookahead.popleft()
        return self.lexer.next_token()

    def peek(self) -> Token:
        """Get current token without consuming it."""
        if self._current is None:
            self._current = self._fetch()
        return self._current

    def peek_ahead(self, distance: int) -> Token:
        """Get the token `distance` places after the current one."""
        self.peek()
        while len(self._lookahead) < distance:
            self._lookahead.append(self.lexer.next_token())
        return self._lookahead[distance - 1]

    def advance(self) -> Token:
        """Consume current token and return it."""
        token = self.peek()
        if token.type != TokenType.EOF:
            self._current = None
        return token

    def is_at_end(self) -> bool:
        return self.peek().type == TokenType.EOF

    def check(self, token_type: TokenType) -> bool:
        return self.peek().type == token_type

    def check_symbol(self, value: str) -> bool:
        return self.peek().is_symbol(value)

    def error(self, expected: str, token: Optional[Token] = None,
              message: Optional[str] = None) -> ParseError:
        token = token or self.peek()
        found = token.describe()
        return ParseError(message or f"Expected {expected}, found {found}",
                          expected=expected, found=found,
                          line=token.line, column=token.column, filename=self.filename)

    def consume(self, token_type: TokenType, expected: str) -> Token:
        if self.check(token_type):
            return self.advance()
        raise self.error(expected)

    def consume_symbol(self, value: str, context: str = "") -> Token:
        if self.check_symbol(value):
            return self.advance()
        raise self.error(f"'{value}'{context}")

    def synchronize(self):
        """Skip the rest of a failed unit, up to and including its `;`."""
        while True:
            try:
                token = self.advance()
            except LexError:
                # The unit is already being abandoned.
                continue
            if token.type == TokenType.EOF or token.is_symbol(';'):
                return

    # --- operators ---

    def _symbol_run(self) -> List[Token]:
        """Adjacent non-punctuation symbol tokens starting at the current token."""
        token = self.peek()
        if token.type != TokenType.SYMBOL or token.value in PUNCTUATION:
            return []
        run = [token]
        while True:
            following = self.peek_ahead(len(run))
            if following.value in PUNCTUATION or not following.follows(run[-1]):
                return run
            run.append(following)

    def _match_operator(self, arity: Arity) -> Optional[Tuple[str, int]]:
        """Longest registered operator of `arity` at the current position."""
        run = self._symbol_run()
        for length in range(len(run), 0, -1):
            symbol = "".join(token.value for token in run[:length])
            entry = self.operators.lookup(symbol)
            if entry is not None and entry.arity == arity:
                return symbol, length
        return None

    def _consume_tokens(self, count: int) -> Token:
        first = self.advance()
        for _ in range(count - 1):
            self.advance()
        return first

    # --- top level ---

    def parse_toplevel(self) -> Optional[ASTNode]:
        """
        Parse the next definition, extern or expression.

        Returns None at end of input. A bare expression is wrapped in an
        anonymous zero-argument function. Operator declarations reach the
        operator table only once the whole unit has parsed.
        """
        while self.check_symbol(';'):
            self.advance()

        token = self.peek()
        if token.type == TokenType.EOF:
            return None

        pending: Optional[PendingDeclaration] = None
        if token.type == TokenType.DEF:
            node, pending = self.parse_definition()
        elif token.type == TokenType.EXTERN:
            node, pending = self.parse_extern()
        else:
            node = self.parse_toplevel_expression()

        if self.check_symbol(';'):
            self.advance()
        elif not self.is_at_end():
            raise self.error("';'")

        if pending is not None:
            self.operators.declare(*pending)
        return node

    def parse_all(self) -> List[ASTNode]:
        """Parse every remaining unit; stops at the first error."""
        nodes = []
        while True:
            node = self.parse_toplevel()
            if node is None:
                return nodes
            nodes.append(node)

    # definition ::= 'def' prototype expression
    def parse_definition(self) -> Tuple[Function, Optional[PendingDeclaration]]:
        def_token = self.advance()
        proto = self.parse_prototype()
        body = self.parse_expression()
        return (Function(proto, body, def_token.line, def_token.column),
                self._pending_declaration(proto))

    # external ::= 'extern' prototype
    def parse_extern(self) -> Tuple[Prototype, Optional[PendingDeclaration]]:
        self.advance()
        proto = self.parse_prototype()
        return proto, self._pending_declaration(proto)

    # toplevelexpr ::= expression
    def parse_toplevel_expression(self) -> Function:
        token = self.peek()
        body = self.parse_expression()
        proto = Prototype(ANONYMOUS_FUNCTION, [], line=token.line, column=token.column)
        return Function(proto, body, token.line, token.column)

    @staticmethod
    def _pending_declaration(proto: Prototype) -> Optional[PendingDeclaration]:
        if not proto.is_operator:
            return None
        arity = Arity.UNARY if proto.is_unary_op else Arity.BINARY
        return proto.operator_symbol, arity, proto.precedence

    # prototype
    #   ::= id '(' id* ')'
    #   ::= 'unary' SYMBOL '(' id ')'
    #   ::= 'binary' SYMBOL number? '(' id id ')'
    def parse_prototype(self) -> Prototype:
        token = self.peek()
        precedence = 0
        arity: Optional[Arity] = None

        if token.type == TokenType.IDENTIFIER:
            name = self.advance().value
        elif token.type in (TokenType.UNARY, TokenType.BINARY):
            self.advance()
            arity = Arity.UNARY if token.type == TokenType.UNARY else Arity.BINARY
            symbol_token = self.peek()
            run = self._symbol_run()
            if not run:
                raise self.error(f"{arity.name.lower()} operator symbol")
            symbol = "".join(t.value for t in run)
            self._consume_tokens(len(run))
            name = ("unary" if arity == Arity.UNARY else "binary") + symbol

            if arity == Arity.BINARY:
                precedence = DEFAULT_BINARY_PRECEDENCE
                if self.check(TokenType.NUMBER):
                    number = self.advance()
                    if not number.value.is_integer() or not 1 <= number.value <= 100:
                        raise self.error("precedence between 1 and 100", number,
                                         f"Invalid precedence {number.value:g}: must be 1..100")
                    precedence = int(number.value)

            try:
                self.operators.check_declaration(symbol, arity)
            except ParseError as e:
                e.line, e.column, e.filename = symbol_token.line, symbol_token.column, self.filename
                raise
        else:
            raise self.error("function name in prototype")

        self.consume_symbol('(', " in prototype")
        params = []
        while self.check(TokenType.IDENTIFIER):
            params.append(self.advance().value)
        self.consume_symbol(')', " in prototype")

        if arity is not None and len(params) != arity.value:
            raise self.error(f"{arity.value} operand(s) for {arity.name.lower()} operator",
                             token,
                             f"Invalid number of operands for operator '{name}': "
                             f"expected {arity.value}, got {len(params)}")

        return Prototype(name, params, arity is not None, precedence, token.line, token.column)

    # --- expressions ---

    # expression ::= unary binoprhs
    def parse_expression(self) -> Expression:
        lhs = self.parse_unary()
        return self.parse_binop_rhs(0, lhs)

    # binoprhs ::= (binop unary)*
    def parse_binop_rhs(self, expr_prec: int, lhs: Expression) -> Expression:
        while True:
            match = self._match_operator(Arity.BINARY)
            if match is None:
                return lhs
            symbol, length = match
            tok_prec = self.operators.binary_precedence(symbol)
            # Anything binding looser than the current level belongs to a caller.
            if tok_prec < expr_prec:
                return lhs

            op_token = self._consume_tokens(length)
            rhs = self.parse_unary()

            following = self._match_operator(Arity.BINARY)
            next_prec = (self.operators.binary_precedence(following[0])
                         if following else NOT_AN_OPERATOR)
            if tok_prec < next_prec:
                rhs = self.parse_binop_rhs(tok_prec + 1, rhs)

            lhs = BinaryOp(symbol, lhs, rhs, op_token.line, op_token.column)

    # unary ::= primary | unaryop unary
    def parse_unary(self) -> Expression:
        match = self._match_operator(Arity.UNARY)
        if match is None:
            return self.parse_primary()
        symbol, length = match
        op_token = self._consume_tokens(length)
        operand = self.parse_unary()
        return UnaryOp(symbol, operand, op_token.line, op_token.column)

    # primary ::= identifierexpr | numberexpr | parenexpr | ifexpr | forexpr | varexpr
    def parse_primary(self) -> Expression:
        token = self.peek()
        if token.type == TokenType.IDENTIFIER:
            return self.parse_identifier_expr()
        if token.type == TokenType.NUMBER:
            self.advance()
            return NumberLiteral(token.value, token.line, token.column)
        if token.is_symbol('('):
            return self.parse_paren_expr()
        if token.type == TokenType.IF:
            return self.parse_if_expr()
        if token.type == TokenType.FOR:
            return self.parse_for_expr()
        if token.type == TokenType.VAR:
            return self.parse_var_expr()
        raise self.error("expression")

    # parenexpr ::= '(' expression ')'
    def parse_paren_expr(self) -> Expression:
        self.advance()
        expr = self.parse_expression()
        self.consume_symbol(')')
        return expr

    # identifierexpr ::= identifier | identifier '(' (expression (',' expression)*)? ')'
    def parse_identifier_expr(self) -> Expression:
        token = self.advance()
        if not self.check_symbol('('):
            return VariableRef(token.value, token.line, token.column)

        self.advance()
        args = []
        if not self.check_symbol(')'):
            while True:
                args.append(self.parse_expression())
                if self.check_symbol(')'):
                    break
                if not self.check_symbol(','):
                    raise self.error("')' or ',' in argument list")
                self.advance()
        self.advance()
        return Call(token.value, args, token.line, token.column)

    # ifexpr ::= 'if' expression 'then' expression 'else' expression
    def parse_if_expr(self) -> If:
        token = self.advance()
        cond = self.parse_expression()
        self.consume(TokenType.THEN, "'then'")
        then = self.parse_expression()
        self.consume(TokenType.ELSE, "'else'")
        else_ = self.parse_expression()
        return If(cond, then, else_, token.line, token.column)

    # forexpr ::= 'for' identifier '=' expression ',' expression (',' expression)? 'in' expression
    def parse_for_expr(self) -> For:
        token = self.advance()
        name = self.consume(TokenType.IDENTIFIER, "identifier after 'for'").value
        self.consume_symbol('=', " after for variable")
        start = self.parse_expression()
        self.consume_symbol(',', " after for start value")
        cond = self.parse_expression()

        if self.check_symbol(','):
            self.advance()
            step = self.parse_expression()
        else:
            step = NumberLiteral(1.0, token.line, token.column)

        self.consume(TokenType.IN, "'in' after for")
        body = self.parse_expression()
        return For(name, start, cond, step, body, token.line, token.column)

    # varexpr ::= 'var' identifier ('=' expression)? (',' identifier ('=' expression)?)* 'in' expression
    def parse_var_expr(self) -> VarBinding:
        token = self.advance()
        bindings = []
        while True:
            name_token = self.consume(TokenType.IDENTIFIER, "identifier after 'var'")
            if self.check_symbol('='):
                self.advance()
                init = self.parse_expression()
            else:
                init = NumberLiteral(0.0, name_token.line, name_token.column)
            bindings.append((name_token.value, init))

            if not self.check_symbol(','):
                break
            self.advance()

        self.consume(TokenType.IN, "'in' after var")
        body = self.parse_expression()
        return VarBinding(bindings, body, token.line, token.column)
