#!/usr/bin/env python3
"""
Kaleido Language Test Suite

Lexer, operator table, parser, code generation and JIT execution tests for
the Kaleido language.
"""

import io
import re
import sys
import unittest
from contextlib import redirect_stderr
from pathlib import Path

# Add the project root to path
project_root = Path(__file__).parent.parent  # Go up from tests/ to project root
sys.path.insert(0, str(project_root))

import kaleido
from kaleido.lexer import Lexer
from kaleido.token import Token
from kaleido.token_types import TokenType
from kaleido.operators import Arity, OperatorTable, NOT_AN_OPERATOR
from kaleido.parser import Parser
from kaleido.module_state import ModuleState
from kaleido.codegen import CodeGenerator
from kaleido.session import Session
from kaleido.ast_nodes import *
from kaleido.errors import (LexError, ParseError, UnknownOperator, UnknownFunction,
                            ArityMismatch, SignatureConflict, UndefinedVariable,
                            InvalidAssignment, ExecutionError)


def parse_units(source, operators=None):
    """Parse every unit of `source`, returning the list of nodes."""
    if operators is None:
        operators = OperatorTable()
    return Parser(Lexer(source, "<test>"), operators).parse_all()


def generate_ir(source, module_state=None):
    """Lower every unit of `source`; returns the IR text of each unit."""
    if module_state is None:
        module_state = ModuleState()
    operators = OperatorTable()
    parser = Parser(Lexer(source, "<test>"), operators)
    texts = []
    while True:
        node = parser.parse_toplevel()
        if node is None:
            return texts
        func = CodeGenerator(module_state).generate(node)
        texts.append(str(func.module))


class TestLexer(unittest.TestCase):
    """Test cases for the lexer."""

    def test_basic_tokens(self):
        """Test basic token recognition."""
        tokens = Lexer("def foo(x) x+1.5;").tokenize()

        expected_types = [TokenType.DEF, TokenType.IDENTIFIER, TokenType.SYMBOL,
                          TokenType.IDENTIFIER, TokenType.SYMBOL, TokenType.IDENTIFIER,
                          TokenType.SYMBOL, TokenType.NUMBER, TokenType.SYMBOL,
                          TokenType.EOF]

        actual_types = [token.type for token in tokens]
        self.assertEqual(actual_types, expected_types)
        self.assertEqual(tokens[7].value, 1.5)

    def test_keywords(self):
        """Test keyword recognition."""
        tokens = Lexer("def extern if then else for in var unary binary").tokenize()

        expected_types = [TokenType.DEF, TokenType.EXTERN, TokenType.IF, TokenType.THEN,
                          TokenType.ELSE, TokenType.FOR, TokenType.IN, TokenType.VAR,
                          TokenType.UNARY, TokenType.BINARY, TokenType.EOF]
        self.assertEqual([token.type for token in tokens], expected_types)

    def test_numbers(self):
        """Test number tokenization."""
        tokens = Lexer("42 3.14 .5 7.").tokenize()
        self.assertEqual([token.value for token in tokens[:-1]], [42.0, 3.14, 0.5, 7.0])
        self.assertTrue(all(token.type == TokenType.NUMBER for token in tokens[:-1]))

    def test_malformed_number(self):
        lexer = Lexer("1.2.3")
        with self.assertRaises(LexError):
            lexer.next_token()

    def test_non_ascii_digits(self):
        """Only ASCII digits start a number."""
        for source in ["\u00b2;", "\u2460;", "1\u00b2"]:
            lexer = Lexer(source)
            with self.assertRaises(LexError):
                lexer.tokenize()

    def test_comments_are_skipped(self):
        tokens = Lexer("# a comment\n  4 # trailing\n").tokenize()
        self.assertEqual(tokens, [Token(TokenType.NUMBER, 4.0), Token(TokenType.EOF, "")])
        self.assertEqual(tokens[0].line, 2)
        self.assertEqual(tokens[0].column, 3)

    def test_unrecognized_character(self):
        lexer = Lexer("1 € 2")
        self.assertEqual(lexer.next_token().value, 1.0)
        with self.assertRaises(LexError) as ctx:
            lexer.next_token()
        self.assertEqual(ctx.exception.column, 3)
        # Lexing resumes after the offending character.
        self.assertEqual(lexer.next_token().value, 2.0)

    def test_eof_repeats(self):
        lexer = Lexer("")
        self.assertTrue(lexer.next_token().is_type(TokenType.EOF))
        self.assertTrue(lexer.next_token().is_type(TokenType.EOF))

    def test_symbol_adjacency(self):
        """Adjacent symbols can form one operator; separated ones cannot."""
        tokens = Lexer("a<=b a< =b").tokenize()
        self.assertTrue(tokens[2].follows(tokens[1]))
        self.assertFalse(tokens[6].follows(tokens[5]))


class TestOperatorTable(unittest.TestCase):
    """Test cases for the operator table."""

    def test_builtins(self):
        table = OperatorTable()
        self.assertEqual(table.precedence_of('<'), 10)
        self.assertEqual(table.precedence_of('+'), 20)
        self.assertEqual(table.precedence_of('*'), 40)
        self.assertEqual(table.precedence_of('='), 2)
        self.assertTrue(table.is_builtin('-'))
        self.assertEqual(len(table), 6)
        self.assertEqual({entry.symbol for entry in table}, {'=', '<', '+', '-', '*', '/'})
        self.assertTrue(all(entry.arity == Arity.BINARY for entry in table))

    def test_unknown_symbol(self):
        table = OperatorTable()
        self.assertEqual(table.precedence_of(':'), NOT_AN_OPERATOR)
        self.assertNotIn(':', table)

    def test_declare_last_wins(self):
        table = OperatorTable()
        table.declare(':', Arity.BINARY, 30)
        table.declare(':', Arity.BINARY, 1)
        self.assertEqual(table.binary_precedence(':'), 1)

    def test_unary_has_no_binary_precedence(self):
        table = OperatorTable()
        table.declare('!', Arity.UNARY)
        self.assertTrue(table.is_unary_operator('!'))
        self.assertEqual(table.binary_precedence('!'), NOT_AN_OPERATOR)

    def test_builtin_arity_is_fixed(self):
        table = OperatorTable()
        with self.assertRaises(ParseError):
            table.declare('-', Arity.UNARY)
        self.assertTrue(table.is_binary_operator('-'))

    def test_builtin_precedence_can_change(self):
        table = OperatorTable()
        entry = table.declare('+', Arity.BINARY, 50)
        self.assertTrue(entry.builtin)
        self.assertEqual(table.precedence_of('+'), 50)

    def test_snapshot_restore(self):
        table = OperatorTable()
        saved = table.snapshot()
        table.declare('|', Arity.BINARY, 5)
        table.restore(saved)
        self.assertNotIn('|', table)


class TestParser(unittest.TestCase):
    """Test cases for the parser."""

    def parse_expression(self, source, operators=None):
        nodes = parse_units(source, operators)
        self.assertEqual(len(nodes), 1)
        self.assertTrue(nodes[0].prototype.is_anonymous)
        return str(nodes[0].body)

    def test_precedence(self):
        self.assertEqual(self.parse_expression("1+2*3"), "(+ 1 (* 2 3))")
        self.assertEqual(self.parse_expression("(1+2)*3"), "(* (+ 1 2) 3)")

    def test_left_associativity(self):
        self.assertEqual(self.parse_expression("a-b-c"), "(- (- a b) c)")

    def test_assignment_binds_loosest(self):
        self.assertEqual(self.parse_expression("x = y < z + 1"), "(= x (< y (+ z 1)))")

    def test_function_definition(self):
        node, = parse_units("def foo(a b) a*b + foo(a, 1);")
        self.assertIsInstance(node, Function)
        self.assertEqual(node.prototype.params, ["a", "b"])
        self.assertEqual(str(node), "(def (proto foo a b) (+ (* a b) (call foo a 1)))")

    def test_extern(self):
        node, = parse_units("extern sin(x);")
        self.assertIsInstance(node, Prototype)
        self.assertEqual(str(node), "(proto sin x)")

    def test_if_expression(self):
        self.assertEqual(self.parse_expression("if x < 3 then 1 else 2"),
                         "(if (< x 3) 1 2)")

    def test_for_default_step(self):
        self.assertEqual(self.parse_expression("for i = 0, i < 3 in i"),
                         "(for i 0 (< i 3) 1 i)")
        self.assertEqual(self.parse_expression("for i = 0, i < 3, 2 in i"),
                         "(for i 0 (< i 3) 2 i)")

    def test_var_defaults(self):
        self.assertEqual(self.parse_expression("var a, b = 2 in a + b"),
                         "(var ((a 0) (b 2)) (+ a b))")

    def test_user_operator_precedence(self):
        """A redeclared precedence only affects expressions parsed after it."""
        operators = OperatorTable()
        parser = Parser(Lexer("def binary : (x y) y; a : b + c; "
                              "def binary : 1 (x y) y; a : b + c;"), operators)
        first_def = parser.parse_toplevel()
        self.assertEqual(first_def.prototype.precedence, DEFAULT_BINARY_PRECEDENCE)
        before = parser.parse_toplevel()
        parser.parse_toplevel()
        after = parser.parse_toplevel()

        self.assertEqual(str(before.body), "(+ (: a b) c)")
        self.assertEqual(str(after.body), "(: a (+ b c))")

    def test_operator_not_usable_in_own_definition(self):
        operators = OperatorTable()
        with self.assertRaises(ParseError):
            parse_units("def binary : 1 (x y) x : y;", operators)
        self.assertNotIn(':', operators)

    def test_unary_operator(self):
        operators = OperatorTable()
        nodes = parse_units("def unary!(v) if v then 0 else 1; !!x;", operators)
        self.assertTrue(nodes[0].prototype.is_unary_op)
        self.assertEqual(nodes[0].prototype.operator_symbol, "!")
        self.assertEqual(str(nodes[1].body), "(! (! x))")

    def test_multi_character_operator(self):
        operators = OperatorTable()
        nodes = parse_units("def binary >= 10 (a b) 0; a >= b + 1;", operators)
        self.assertEqual(nodes[0].prototype.name, "binary>=")
        self.assertEqual(str(nodes[1].body), "(>= a (+ b 1))")

    def test_builtin_precedence_override(self):
        operators = OperatorTable()
        nodes = parse_units("def binary + 50 (a b) a; 1 + 2 * 3;", operators)
        self.assertEqual(str(nodes[1].body), "(* (+ 1 2) 3)")

    def test_invalid_precedence(self):
        for source in ["def binary % 0 (a b) a;", "def binary % 101 (a b) a;",
                       "def binary % 2.5 (a b) a;"]:
            operators = OperatorTable()
            with self.assertRaises(ParseError):
                parse_units(source, operators)
            self.assertNotIn('%', operators)

    def test_operand_count(self):
        with self.assertRaises(ParseError):
            parse_units("def binary % 5 (a) a;")
        with self.assertRaises(ParseError):
            parse_units("def unary % (a b) a;")

    def test_builtin_arity_redeclaration(self):
        operators = OperatorTable()
        with self.assertRaises(ParseError):
            parse_units("def unary - (v) 0 - v;", operators)
        self.assertFalse(operators.is_unary_operator('-'))

    def test_malformed_prototype(self):
        operators = OperatorTable()
        before = operators.snapshot()
        with self.assertRaises(ParseError) as ctx:
            parse_units("def foo(a (;", operators)
        self.assertEqual(ctx.exception.expected, "')' in prototype")
        self.assertEqual(ctx.exception.found, "'('")
        self.assertEqual(ctx.exception.position, (1, 11))
        self.assertEqual(operators.snapshot(), before)

    def test_missing_terminator(self):
        with self.assertRaises(ParseError) as ctx:
            parse_units("1 2")
        self.assertEqual(ctx.exception.expected, "';'")

    def test_synchronize(self):
        parser = Parser(Lexer("1 +; 2 + 3;"), OperatorTable())
        with self.assertRaises(ParseError):
            parser.parse_toplevel()
        parser.synchronize()
        self.assertEqual(str(parser.parse_toplevel().body), "(+ 2 3)")
        self.assertIsNone(parser.parse_toplevel())

    def test_next_unit_is_not_lexed_early(self):
        parser = Parser(Lexer("1; €"), OperatorTable())
        self.assertIsNotNone(parser.parse_toplevel())
        with self.assertRaises(LexError):
            parser.parse_toplevel()


class TestCodegen(unittest.TestCase):
    """Test cases for LLVM IR generation."""

    def test_arithmetic(self):
        ir_text, = generate_ir("def f(a b) a + b * a - b / a;")
        for op in ("fadd", "fmul", "fsub", "fdiv"):
            self.assertIn(op, ir_text)

    def test_comparison(self):
        ir_text, = generate_ir("def lt(a b) a < b;")
        self.assertIn("fcmp ult", ir_text)
        self.assertIn("uitofp", ir_text)

    def test_if_merges_with_phi(self):
        ir_text, = generate_ir("def f(x) if x < 1 then 2 else 3;")
        self.assertIn("fcmp one", ir_text)
        self.assertIn("ifcont:", ir_text)
        self.assertTrue(re.search(r"= phi\s+double", ir_text))

    def test_loop_shape(self):
        ir_text, = generate_ir(
            "def f(n) var a = 1 in (for i = 0, i < n in a = a + 1) + a;")
        self.assertIn("loop:", ir_text)
        self.assertIn("body:", ir_text)
        self.assertIn("afterloop:", ir_text)
        # One header phi for the loop variable, one for `a`.
        self.assertEqual(len(re.findall(r"= phi\s+double", ir_text)), 2)

    def test_deterministic(self):
        source = "def f(n) var a = 1, b = 1 in (for i = 0, i < n in (a = b)) + a;"
        node, = parse_units(source)
        first = str(CodeGenerator(ModuleState()).generate(node).module)
        second = str(CodeGenerator(ModuleState()).generate(node).module)
        self.assertEqual(first, second)

    def test_definition_recorded(self):
        state = ModuleState()
        generate_ir("def foo(a b) a; extern sin(x);", state)
        self.assertTrue(state.lookup("foo").defined)
        self.assertFalse(state.lookup("sin").defined)
        self.assertEqual(state.lookup("sin").arity, 1)
        self.assertIsNotNone(state.definition_of("foo"))

    def test_anonymous_not_recorded(self):
        state = ModuleState()
        generate_ir("1 + 2;", state)
        self.assertNotIn(ANONYMOUS_FUNCTION, state)

    def test_arity_mismatch(self):
        with self.assertRaises(ArityMismatch) as ctx:
            generate_ir("def foo(a b) a+b; foo(1);")
        self.assertEqual(ctx.exception.name, "foo")

    def test_unknown_function(self):
        with self.assertRaises(UnknownFunction):
            generate_ir("nope(1);")

    def test_unknown_variable(self):
        with self.assertRaises(UndefinedVariable):
            generate_ir("def f(x) y;")

    def test_invalid_assignment(self):
        with self.assertRaises(InvalidAssignment):
            generate_ir("def f(x) 1 = x;")

    def test_unknown_operator(self):
        operators = OperatorTable()
        operators.declare('|', Arity.BINARY, 5)
        node, = parse_units("1 | 2;", operators)
        with self.assertRaises(UnknownOperator):
            CodeGenerator(ModuleState()).generate(node)

    def test_signature_conflict(self):
        state = ModuleState()
        with self.assertRaises(SignatureConflict):
            generate_ir("extern foo(a); def foo(a b) a;", state)
        self.assertEqual(state.lookup("foo").arity, 1)

    def test_failed_definition_rolls_back(self):
        state = ModuleState()
        with self.assertRaises(UnknownFunction) as ctx:
            generate_ir("def bad(x) x + nope(x);", state)
        self.assertNotIn("bad", state)
        self.assertEqual(ctx.exception.line, 1)


class TestExecution(unittest.TestCase):
    """End-to-end tests through the JIT."""

    def setUp(self):
        self.output = io.StringIO()
        self.session = Session("<test>", output=self.output)

    def evaluate(self, source):
        results = self.session.evaluate(source)
        self.assertFalse(self.session.error_reporter.has_errors(),
                         [str(e) for e in self.session.error_reporter.errors])
        return results

    def test_arithmetic(self):
        self.assertEqual(self.evaluate("1+2*3; 8/2/2; 4-2-1;"), [7.0, 2.0, 1.0])

    def test_comparison(self):
        self.assertEqual(self.evaluate("1 < 2; 2 < 1;"), [1.0, 0.0])

    def test_fibonacci(self):
        source = "def fib(x) if (x<3) then 1 else fib(x-1)+fib(x-2); fib(10);"
        self.assertEqual(self.evaluate(source), [55.0])

    def test_sequencing_operator(self):
        self.assertEqual(self.evaluate("def binary : 1 (x y) y; 1:2:3;"), [3.0])

    def test_unary_operator(self):
        source = "def unary!(v) if v then 0 else 1; !1; !0;"
        self.assertEqual(self.evaluate(source), [0.0, 1.0])

    def test_multi_character_operator(self):
        source = "def binary >= 10 (a b) if a < b then 0 else 1; 1 >= 2; 3 >= 2;"
        self.assertEqual(self.evaluate(source), [0.0, 1.0])

    def test_loop_mutation_visible_after_loop(self):
        source = ("def binary : 1 (x y) y;"
                  "def f() var a = 1, b = 5 in (for i = 0, i < 3 in (a = b)) : a;"
                  "f();")
        self.assertEqual(self.evaluate(source), [5.0])

    def test_loop_counts(self):
        source = ("def count(n) var c = 0 in (for i = 0, i < n, 2 in c = c + 1) + c;"
                  "count(10); count(0);")
        self.assertEqual(self.evaluate(source), [5.0, 0.0])

    def test_if_inside_loop(self):
        source = ("def h(n) var s = 0 in "
                  "(for i = 0, i < n in (if i < 2 then s = s + 1 else s = s + 10)) + s;"
                  "h(4);")
        self.assertEqual(self.evaluate(source), [22.0])

    def test_if_assignment_merge(self):
        source = ("def g(x) var y = 0 in (if x < 1 then y = 10 else y = 20) + y;"
                  "g(0); g(5);")
        self.assertEqual(self.evaluate(source), [20.0, 40.0])

    def test_var_initializers_see_enclosing_scope(self):
        source = "def f(a) var a = a + 1, b = a in b; f(1);"
        self.assertEqual(self.evaluate(source), [1.0])

    def test_redefinition(self):
        source = "def f() 1; f(); def f() 2; f();"
        self.assertEqual(self.evaluate(source), [1.0, 2.0])

    def test_redefinition_seen_by_callers(self):
        source = "def f() 1; def g() f() + 10; g(); def f() 2; g();"
        self.assertEqual(self.evaluate(source), [11.0, 12.0])

    def test_extern_libm(self):
        self.assertEqual(self.evaluate("extern sin(x); sin(0);"), [0.0])

    def test_host_functions(self):
        source = "extern putchard(c); extern printd(x); putchard(72); putchard(105); printd(2);"
        self.assertEqual(self.evaluate(source), [0.0, 0.0, 0.0])
        self.assertEqual(self.output.getvalue(), "Hi2.000000\n")

    def test_putchard_invalid_code(self):
        errors = io.StringIO()
        with redirect_stderr(errors):
            results = self.evaluate("extern putchard(c); putchard(0 - 1); putchard(65);")
        self.assertEqual(results, [0.0, 0.0])
        self.assertEqual(self.output.getvalue(), "A")
        self.assertIn("invalid character code", errors.getvalue())

    def test_loop_side_effects(self):
        source = "extern putchard(c); def stars(n) for i = 0, i < n in putchard(42); stars(3);"
        self.assertEqual(self.evaluate(source), [0.0])
        self.assertEqual(self.output.getvalue(), "***")

    def test_run_kaleido(self):
        self.assertEqual(kaleido.run_kaleido("def sq(x) x*x; sq(4);"), [16.0])


class TestErrorHandling(unittest.TestCase):
    """Test that failures are local to their unit."""

    def setUp(self):
        self.session = Session("<test>", output=io.StringIO())

    def errors(self):
        return self.session.error_reporter.errors

    def test_parse_error_recovery(self):
        results = self.session.evaluate("1 +; 2 + 3;")
        self.assertEqual(results, [5.0])
        self.assertEqual(len(self.errors()), 1)
        self.assertIsInstance(self.errors()[0], ParseError)

    def test_lex_error_recovery(self):
        results = self.session.evaluate("1 € 2; 4;")
        self.assertEqual(results, [4.0])
        self.assertIsInstance(self.errors()[0], LexError)

    def test_non_ascii_digit_recovery(self):
        results = self.session.evaluate("²; 4;")
        self.assertEqual(results, [4.0])
        self.assertEqual(len(self.errors()), 1)
        self.assertIsInstance(self.errors()[0], LexError)

    def test_malformed_input_leaves_state(self):
        operators = self.session.operators.snapshot()
        functions = self.session.module_state.snapshot()
        self.session.evaluate("def foo(a (;")
        self.assertIsInstance(self.errors()[0], ParseError)
        self.assertEqual(self.session.operators.snapshot(), operators)
        self.assertEqual(self.session.module_state.snapshot(), functions)

    def test_failed_operator_definition_rolled_back(self):
        self.session.evaluate("def binary | 5 (a b) nope(a);")
        self.assertIsInstance(self.errors()[0], UnknownFunction)
        self.assertNotIn('|', self.session.operators)
        self.assertNotIn('binary|', self.session.module_state)

    def test_arity_mismatch_then_continue(self):
        results = self.session.evaluate("def foo(a b) a+b; foo(1); foo(1, 2);")
        self.assertEqual(results, [3.0])
        self.assertIsInstance(self.errors()[0], ArityMismatch)

    def test_unresolved_extern(self):
        results = self.session.evaluate(
            "extern nosuchfunction(x); def uses(x) nosuchfunction(x); uses(1); 1 + 1;")
        self.assertEqual(results, [2.0])
        self.assertIsInstance(self.errors()[0], ExecutionError)

    def test_error_message_format(self):
        self.session.evaluate("def f(x) y;")
        message = str(self.errors()[0])
        self.assertTrue(message.startswith('UndefinedVariable: File "<test>", line 1'))
        self.assertIn("Unknown variable name 'y'", message)

    def test_debug_output(self):
        debug = io.StringIO()
        session = Session("<test>", output=io.StringIO(), show_ast=True, emit_ir=True,
                          debug_stream=debug)
        self.assertEqual(session.evaluate("1 + 2;"), [3.0])
        self.assertIn("(def (proto __anon_expr) (+ 1 2))", debug.getvalue())
        self.assertIn("__anon_expr", debug.getvalue())
        self.assertIn("ret double", debug.getvalue())


def run_tests():
    """Run all tests."""
    # Create test suite
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    # Add test classes
    suite.addTests(loader.loadTestsFromTestCase(TestLexer))
    suite.addTests(loader.loadTestsFromTestCase(TestOperatorTable))
    suite.addTests(loader.loadTestsFromTestCase(TestParser))
    suite.addTests(loader.loadTestsFromTestCase(TestCodegen))
    suite.addTests(loader.loadTestsFromTestCase(TestExecution))
    suite.addTests(loader.loadTestsFromTestCase(TestErrorHandling))

    # Run tests
    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


if __name__ == '__main__':
    success = run_tests()
    sys.exit(0 if success else 1)
