"""
An interactive compilation session.

A session owns everything that persists between inputs: the operator table,
the module-level symbol table and the JIT driver. Each top-level unit is
lexed, parsed, lowered and (for bare expressions) executed before the next one
is read. A unit that fails at any stage is reported and leaves the session
exactly as it was before that unit.
"""

import sys
from typing import List, Optional
from .lexer import Lexer
from .token_types import TokenType
from .parser import Parser
from .ast_nodes import ASTNode, ASTPrinter, Function
from .operators import OperatorTable
from .module_state import ModuleState
from .codegen import CodeGenerator
from .driver import HostFunctions, JITDriver
from .errors import KaleidoError, LexError, ParseError, ErrorReporter


class Session:

    def __init__(self, filename: str = "<stdin>", output=None, show_tokens: bool = False,
                 show_ast: bool = False, emit_ir: bool = False, debug_stream=None):
        self.filename = filename
        self.output = output
        self.show_tokens = show_tokens
        self.show_ast = show_ast
        self.emit_ir = emit_ir
        self.debug_stream = debug_stream
        self.operators = OperatorTable()
        self.module_state = ModuleState()
        self.driver = JITDriver(self.module_state, HostFunctions(output))
        self.error_reporter = ErrorReporter(debug_stream)

    def _debug(self, text: str):
        print(text, file=self.debug_stream or sys.stderr)

    def evaluate(self, source: str, filename: Optional[str] = None) -> List[float]:
        """
        Run every top-level unit in `source`.

        Returns the values of the bare expressions, in order. Failed units are
        recorded in `error_reporter` and skipped.
        """
        filename = filename or self.filename
        if self.show_tokens:
            self._dump_tokens(source, filename)

        parser = Parser(Lexer(source, filename), self.operators, filename)
        results = []
        while True:
            saved_operators = self.operators.snapshot()
            try:
                node = parser.parse_toplevel()
                if node is None:
                    return results
                value = self.handle(node, filename)
            except (LexError, ParseError) as e:
                self.operators.restore(saved_operators)
                self.error_reporter.report(e)
                parser.synchronize()
                continue
            except KaleidoError as e:
                self.operators.restore(saved_operators)
                self.error_reporter.report(e)
                continue

            if value is not None:
                results.append(value)

    def handle(self, node: ASTNode, filename: Optional[str] = None) -> Optional[float]:
        """Lower one parsed unit; run it if it is a bare expression."""
        if self.show_ast:
            self._debug(node.accept(ASTPrinter()))

        generator = CodeGenerator(self.module_state, filename=filename or self.filename)
        func = generator.generate(node)
        if self.emit_ir:
            self._debug(str(func.module))

        if isinstance(node, Function) and node.prototype.is_anonymous:
            return self.driver.run(func.module, func.name)
        return None

    def _dump_tokens(self, source: str, filename: str):
        lexer = Lexer(source, filename)
        while True:
            try:
                token = lexer.next_token()
            except LexError as e:
                self._debug(str(e))
                continue
            self._debug(str(token))
            if token.type == TokenType.EOF:
                return
