"""
LLVM IR code generator for the Kaleido AST using llvmlite.

- Emits one LLVM function per top-level unit, into a fresh module
- Every value is a double
- Variables are plain SSA values held in a scope map; reassignment rebinds the
  name, and phi nodes merge the competing bindings where control flow joins
  (after `if`, and in the header block of a `for` loop)
"""

from typing import Dict, List, Optional
from llvmlite import ir
from .ast_nodes import *
from .module_state import ModuleState
from .errors import (CodegenError, UnknownOperator, UnknownFunction, ArityMismatch,
                     UndefinedVariable, InvalidAssignment)

DOUBLE = ir.DoubleType()
ZERO = ir.Constant(DOUBLE, 0.0)
MODULE_NAME = "kaleido"

# symbol -> (IRBuilder method, result name)
BUILTIN_BINARY = {
    '+': ('fadd', 'addtmp'),
    '-': ('fsub', 'subtmp'),
    '*': ('fmul', 'multmp'),
    '/': ('fdiv', 'divtmp'),
}


class Environment:
    """Scope map for code generation: names to their current SSA values."""

    def __init__(self, enclosing: Optional['Environment'] = None):
        self.values: Dict[str, ir.Value] = {}
        self.enclosing = enclosing

    def define(self, name: str, value: ir.Value):
        self.values[name] = value

    def resolve(self, name: str) -> Optional['Environment']:
        """The innermost scope that binds `name`, if any."""
        env = self
        while env is not None:
            if name in env.values:
                return env
            env = env.enclosing
        return None

    def get(self, name: str) -> Optional[ir.Value]:
        env = self.resolve(name)
        return env.values[name] if env is not None else None

    def frames(self) -> List['Environment']:
        """This scope followed by every enclosing one."""
        frames = []
        env = self
        while env is not None:
            frames.append(env)
            env = env.enclosing
        return frames

    def snapshot(self) -> List[Dict[str, ir.Value]]:
        return [dict(frame.values) for frame in self.frames()]

    def restore(self, snapshot: List[Dict[str, ir.Value]]):
        for frame, values in zip(self.frames(), snapshot):
            frame.values = dict(values)


class AssignedNames(ASTVisitor):
    """
    Collects the names an expression assigns with `=`, in first-seen order,
    leaving out names that the expression itself rebinds with `var`/`for`.
    """

    def __init__(self):
        self.names: List[str] = []
        self._bound: List[set] = []

    def collect(self, nodes, bound=()) -> List[str]:
        self._bound.append(set(bound))
        for node in nodes:
            if node is not None:
                node.accept(self)
        self._bound.pop()
        return self.names

    def _record(self, name: str):
        if any(name in scope for scope in self._bound):
            return
        if name not in self.names:
            self.names.append(name)

    def visit_number_literal(self, node: NumberLiteral):
        pass

    def visit_variable_ref(self, node: VariableRef):
        pass

    def visit_unary_op(self, node: UnaryOp):
        node.operand.accept(self)

    def visit_binary_op(self, node: BinaryOp):
        if node.op == '=' and isinstance(node.lhs, VariableRef):
            self._record(node.lhs.name)
        else:
            node.lhs.accept(self)
        node.rhs.accept(self)

    def visit_call(self, node: Call):
        for arg in node.args:
            arg.accept(self)

    def visit_if(self, node: If):
        node.cond.accept(self)
        node.then.accept(self)
        node.else_.accept(self)

    def visit_for(self, node: For):
        node.start.accept(self)
        self.collect([node.cond, node.step, node.body], bound=[node.var_name])

    def visit_var_binding(self, node: VarBinding):
        for _, init in node.bindings:
            init.accept(self)
        self.collect([node.body], bound=[name for name, _ in node.bindings])

    def visit_prototype(self, node: Prototype):
        pass

    def visit_function(self, node: Function):
        pass


class CodeGenerator(ASTVisitor):
    """
    Lowers top-level units to LLVM IR.

    `generate()` is all-or-nothing: if lowering fails, the module-level symbol
    table is put back the way it was and the half-built module is dropped.
    """

    def __init__(self, module_state: ModuleState, module_name: str = MODULE_NAME,
                 filename: Optional[str] = None):
        self.module_state = module_state
        self.module_name = module_name
        self.filename = filename
        self.module: Optional[ir.Module] = None
        self.builder: Optional[ir.IRBuilder] = None
        self.environment: Optional[Environment] = None

    def generate(self, node: ASTNode) -> ir.Function:
        """Lower a Function or extern Prototype; returns the IR function."""
        snapshot = self.module_state.snapshot()
        self.module = ir.Module(name=self.module_name)
        try:
            return node.accept(self)
        except CodegenError as e:
            self.module_state.restore(snapshot)
            if e.line is None:
                e.line, e.column = node.line, node.column
            if e.filename is None:
                e.filename = self.filename
            raise
        finally:
            self.builder = None
            self.environment = None

    # --- helpers ---

    def _error(self, error_class, message: str, name: str, node: ASTNode) -> CodegenError:
        return error_class(message, name=name, line=node.line, column=node.column,
                           filename=self.filename)

    def _declare_function(self, name: str, arity: int,
                          params: Optional[List[str]] = None) -> ir.Function:
        """Return `name` from the current module, declaring it if needed."""
        existing = self.module.globals.get(name)
        if existing is not None:
            return existing
        func_ty = ir.FunctionType(DOUBLE, [DOUBLE] * arity)
        func = ir.Function(self.module, func_ty, name=name)
        for arg, param in zip(func.args, params or []):
            arg.name = param
        return func

    def _operator_function(self, name: str, arity: int, op: str, node: ASTNode) -> ir.Function:
        signature = self.module_state.lookup(name)
        if signature is None or signature.arity != arity:
            kind = "unary" if arity == 1 else "binary"
            raise self._error(UnknownOperator, f"Unknown {kind} operator '{op}'", op, node)
        return self._declare_function(name, arity)

    def _truth(self, value: ir.Value, name: str) -> ir.Value:
        return self.builder.fcmp_ordered('!=', value, ZERO, name)

    # --- expressions ---

    def visit_number_literal(self, node: NumberLiteral) -> ir.Value:
        return ir.Constant(DOUBLE, node.value)

    def visit_variable_ref(self, node: VariableRef) -> ir.Value:
        value = self.environment.get(node.name)
        if value is None:
            raise self._error(UndefinedVariable, f"Unknown variable name '{node.name}'",
                              node.name, node)
        return value

    def visit_unary_op(self, node: UnaryOp) -> ir.Value:
        operand = node.operand.accept(self)
        func = self._operator_function("unary" + node.op, 1, node.op, node)
        return self.builder.call(func, [operand], 'unop')

    def visit_binary_op(self, node: BinaryOp) -> ir.Value:
        if node.op == '=':
            return self._assign(node)

        lhs = node.lhs.accept(self)
        rhs = node.rhs.accept(self)

        if node.op in BUILTIN_BINARY:
            method, name = BUILTIN_BINARY[node.op]
            return getattr(self.builder, method)(lhs, rhs, name)
        if node.op == '<':
            cmp = self.builder.fcmp_unordered('<', lhs, rhs, 'cmptmp')
            return self.builder.uitofp(cmp, DOUBLE, 'booltmp')

        func = self._operator_function("binary" + node.op, 2, node.op, node)
        return self.builder.call(func, [lhs, rhs], 'binop')

    def _assign(self, node: BinaryOp) -> ir.Value:
        if not isinstance(node.lhs, VariableRef):
            raise self._error(InvalidAssignment, "Destination of '=' must be a variable",
                              '=', node)
        name = node.lhs.name
        scope = self.environment.resolve(name)
        if scope is None:
            raise self._error(UndefinedVariable, f"Unknown variable name '{name}'", name, node.lhs)
        value = node.rhs.accept(self)
        scope.values[name] = value
        return value

    def visit_call(self, node: Call) -> ir.Value:
        signature = self.module_state.lookup(node.callee)
        if signature is None:
            raise self._error(UnknownFunction, f"Unknown function referenced: '{node.callee}'",
                              node.callee, node)
        if signature.arity != len(node.args):
            raise self._error(ArityMismatch,
                              f"Function '{node.callee}' takes {signature.arity} argument(s), "
                              f"{len(node.args)} given", node.callee, node)
        func = self._declare_function(node.callee, signature.arity)
        args = [arg.accept(self) for arg in node.args]
        return self.builder.call(func, args, 'calltmp')

    def visit_if(self, node: If) -> ir.Value:
        cond = self._truth(node.cond.accept(self), 'ifcond')

        func = self.builder.function
        then_bb = func.append_basic_block('then')
        else_bb = ir.Block(func, 'else')
        merge_bb = ir.Block(func, 'ifcont')
        self.builder.cbranch(cond, then_bb, else_bb)
        entry_state = self.environment.snapshot()

        self.builder.position_at_end(then_bb)
        then_value = node.then.accept(self)
        self.builder.branch(merge_bb)
        # Nested control flow may have moved us to another block.
        then_bb = self.builder.block
        then_state = self.environment.snapshot()

        self.environment.restore(entry_state)
        func.basic_blocks.append(else_bb)
        self.builder.position_at_end(else_bb)
        else_value = node.else_.accept(self)
        self.builder.branch(merge_bb)
        else_bb = self.builder.block
        else_state = self.environment.snapshot()

        func.basic_blocks.append(merge_bb)
        self.builder.position_at_end(merge_bb)
        phi = self.builder.phi(DOUBLE, 'iftmp')
        phi.add_incoming(then_value, then_bb)
        phi.add_incoming(else_value, else_bb)

        frames = self.environment.frames()
        for frame, then_values, else_values in zip(frames, then_state, else_state):
            for name, then_binding in then_values.items():
                else_binding = else_values[name]
                if then_binding is else_binding:
                    frame.values[name] = then_binding
                    continue
                merged = self.builder.phi(DOUBLE, name)
                merged.add_incoming(then_binding, then_bb)
                merged.add_incoming(else_binding, else_bb)
                frame.values[name] = merged
        return phi

    def visit_for(self, node: For) -> ir.Value:
        start = node.start.accept(self)
        func = self.builder.function
        preheader = self.builder.block
        loop_bb = func.append_basic_block('loop')
        self.builder.branch(loop_bb)
        self.builder.position_at_end(loop_bb)

        loop_var = self.builder.phi(DOUBLE, node.var_name)
        loop_var.add_incoming(start, preheader)

        # Outer variables the loop reassigns get a header phi of their own.
        carried = []
        assigned = AssignedNames().collect([node.cond, node.step, node.body],
                                           bound=[node.var_name])
        for name in assigned:
            scope = self.environment.resolve(name)
            if scope is None:
                continue  # reported when the assignment itself is lowered
            phi = self.builder.phi(DOUBLE, name)
            phi.add_incoming(scope.values[name], preheader)
            scope.values[name] = phi
            carried.append((scope, name, phi))

        self.environment = Environment(self.environment)
        try:
            self.environment.define(node.var_name, loop_var)
            cond = self._truth(node.cond.accept(self), 'loopcond')
            body_bb = func.append_basic_block('body')
            after_bb = ir.Block(func, 'afterloop')
            self.builder.cbranch(cond, body_bb, after_bb)
            exit_state = self.environment.snapshot()

            self.builder.position_at_end(body_bb)
            node.body.accept(self)
            if node.step is not None:
                step = node.step.accept(self)
            else:
                step = ir.Constant(DOUBLE, 1.0)
            current = self.environment.values[node.var_name]
            next_value = self.builder.fadd(current, step, 'nextvar')
            latch = self.builder.block
            self.builder.branch(loop_bb)

            loop_var.add_incoming(next_value, latch)
            for scope, name, phi in carried:
                phi.add_incoming(scope.values[name], latch)

            func.basic_blocks.append(after_bb)
            self.builder.position_at_end(after_bb)
            self.environment.restore(exit_state)
        finally:
            self.environment = self.environment.enclosing

        return ir.Constant(DOUBLE, 0.0)

    def visit_var_binding(self, node: VarBinding) -> ir.Value:
        # Initializers see the enclosing scope only.
        values = [(name, init.accept(self)) for name, init in node.bindings]

        self.environment = Environment(self.environment)
        try:
            for name, value in values:
                self.environment.define(name, value)
            return node.body.accept(self)
        finally:
            self.environment = self.environment.enclosing

    # --- declarations ---

    def visit_prototype(self, node: Prototype) -> ir.Function:
        self.module_state.declare(node.name, node.arity)
        return self._declare_function(node.name, node.arity, node.params)

    def visit_function(self, node: Function) -> ir.Function:
        proto = node.prototype
        if not proto.is_anonymous:
            self.module_state.declare(proto.name, proto.arity)

        func = self._declare_function(proto.name, proto.arity, proto.params)
        entry = func.append_basic_block('entry')
        self.builder = ir.IRBuilder(entry)
        self.environment = Environment()
        for arg, param in zip(func.args, proto.params):
            self.environment.define(param, arg)

        retval = node.body.accept(self)
        self.builder.ret(retval)

        if not proto.is_anonymous:
            self.module_state.define(proto.name, self.module)
        return func
