"""
Abstract Syntax Tree (AST) definitions for the Kaleido language.

The node set is closed: every visitor implements one method per node class,
and each composite node owns its children outright.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

# Name of the wrapper generated for a bare top-level expression. It is not a
# valid identifier, so it can never clash with a user function.
ANONYMOUS_FUNCTION = "__anon_expr"

DEFAULT_BINARY_PRECEDENCE = 30


class ASTNode(ABC):
    """Base class for all AST nodes."""

    def __init__(self, line: int = 0, column: int = 0):
        self.line = line
        self.column = column

    @abstractmethod
    def accept(self, visitor):
        """Accept visitor for visitor pattern implementation."""
        pass

    def __str__(self):
        return self.accept(ASTPrinter())


# Expression nodes
class Expression(ASTNode):
    """Base class for all expressions."""
    pass


class NumberLiteral(Expression):
    """Numeric literal like `1.0`."""

    def __init__(self, value: float, line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.value = value

    def accept(self, visitor):
        return visitor.visit_number_literal(self)


class VariableRef(Expression):
    """Reference to a variable, like `a`."""

    def __init__(self, name: str, line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.name = name

    def accept(self, visitor):
        return visitor.visit_variable_ref(self)


class UnaryOp(Expression):

    def __init__(self, op: str, operand: Expression, line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.op = op
        self.operand = operand

    def accept(self, visitor):
        return visitor.visit_unary_op(self)


class BinaryOp(Expression):

    def __init__(self, op: str, lhs: Expression, rhs: Expression,
                 line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.op = op
        self.lhs = lhs
        self.rhs = rhs

    def accept(self, visitor):
        return visitor.visit_binary_op(self)


class Call(Expression):
    """Function call expression."""

    def __init__(self, callee: str, args: List[Expression],
                 line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.callee = callee
        self.args = args

    def accept(self, visitor):
        return visitor.visit_call(self)


class If(Expression):
    """`if cond then a else b`; both branches are required."""

    def __init__(self, cond: Expression, then: Expression, else_: Expression,
                 line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.cond = cond
        self.then = then
        self.else_ = else_

    def accept(self, visitor):
        return visitor.visit_if(self)


class For(Expression):
    """`for name = start, cond (, step)? in body`; evaluates to 0.0."""

    def __init__(self, var_name: str, start: Expression, cond: Expression,
                 step: Optional[Expression], body: Expression,
                 line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.var_name = var_name
        self.start = start
        self.cond = cond
        self.step = step
        self.body = body

    def accept(self, visitor):
        return visitor.visit_for(self)


class VarBinding(Expression):
    """`var a = 1, b in body`; uninitialized names start at 0.0."""

    def __init__(self, bindings: List[Tuple[str, Expression]], body: Expression,
                 line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.bindings = bindings
        self.body = body

    def accept(self, visitor):
        return visitor.visit_var_binding(self)


# Declarations
class Prototype(ASTNode):
    """
    Name and parameter names of a function. Operator prototypes carry the
    mangled name (`binary:` / `unary!`) and, for binary ones, the precedence.
    """

    def __init__(self, name: str, params: List[str], is_operator: bool = False,
                 precedence: int = 0, line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.name = name
        self.params = params
        self.is_operator = is_operator
        self.precedence = precedence

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def is_unary_op(self) -> bool:
        return self.is_operator and len(self.params) == 1

    @property
    def is_binary_op(self) -> bool:
        return self.is_operator and len(self.params) == 2

    @property
    def operator_symbol(self) -> str:
        assert self.is_operator
        return self.name[len("binary"):] if self.is_binary_op else self.name[len("unary"):]

    @property
    def is_anonymous(self) -> bool:
        return self.name == ANONYMOUS_FUNCTION

    def accept(self, visitor):
        return visitor.visit_prototype(self)


class Function(ASTNode):
    """Function definition: a prototype plus a body expression."""

    def __init__(self, prototype: Prototype, body: Expression,
                 line: int = 0, column: int = 0):
        super().__init__(line, column)
        self.prototype = prototype
        self.body = body

    def accept(self, visitor):
        return visitor.visit_function(self)


# Visitor interface for AST traversal
class ASTVisitor(ABC):
    """Abstract visitor for AST traversal."""

    @abstractmethod
    def visit_number_literal(self, node: NumberLiteral): pass

    @abstractmethod
    def visit_variable_ref(self, node: VariableRef): pass

    @abstractmethod
    def visit_unary_op(self, node: UnaryOp): pass

    @abstractmethod
    def visit_binary_op(self, node: BinaryOp): pass

    @abstractmethod
    def visit_call(self, node: Call): pass

    @abstractmethod
    def visit_if(self, node: If): pass

    @abstractmethod
    def visit_for(self, node: For): pass

    @abstractmethod
    def visit_var_binding(self, node: VarBinding): pass

    @abstractmethod
    def visit_prototype(self, node: Prototype): pass

    @abstractmethod
    def visit_function(self, node: Function): pass


class ASTPrinter(ASTVisitor):
    """Renders a tree as an s-expression, e.g. `(+ a (* b c))`."""

    def visit_number_literal(self, node: NumberLiteral) -> str:
        return f"{node.value:g}"

    def visit_variable_ref(self, node: VariableRef) -> str:
        return node.name

    def visit_unary_op(self, node: UnaryOp) -> str:
        return f"({node.op} {node.operand.accept(self)})"

    def visit_binary_op(self, node: BinaryOp) -> str:
        return f"({node.op} {node.lhs.accept(self)} {node.rhs.accept(self)})"

    def visit_call(self, node: Call) -> str:
        args = "".join(" " + arg.accept(self) for arg in node.args)
        return f"(call {node.callee}{args})"

    def visit_if(self, node: If) -> str:
        return (f"(if {node.cond.accept(self)} {node.then.accept(self)} "
                f"{node.else_.accept(self)})")

    def visit_for(self, node: For) -> str:
        step = node.step.accept(self) if node.step is not None else "1"
        return (f"(for {node.var_name} {node.start.accept(self)} "
                f"{node.cond.accept(self)} {step} {node.body.accept(self)})")

    def visit_var_binding(self, node: VarBinding) -> str:
        bindings = " ".join(f"({name} {init.accept(self)})" for name, init in node.bindings)
        return f"(var ({bindings}) {node.body.accept(self)})"

    def visit_prototype(self, node: Prototype) -> str:
        params = "".join(" " + param for param in node.params)
        return f"(proto {node.name}{params})"

    def visit_function(self, node: Function) -> str:
        return f"(def {node.prototype.accept(self)} {node.body.accept(self)})"
