"""
JIT execution of generated modules with llvmlite's MCJIT.

Each run links the current body of every defined function together with the
module being run, compiles the result in a fresh execution engine and calls
the entry point. Nothing survives the run, so a module that has executed is
never affected by later redefinitions, and the anonymous top-level function
is gone once its value has been returned.
"""

import ctypes
import sys
from typing import List, Optional
from llvmlite import ir
import llvmlite.binding as llvm
from .module_state import ModuleState
from .errors import ExecutionError

_initialized = False


def initialize_llvm():
    global _initialized
    if _initialized:
        return
    llvm.initialize_native_target()
    llvm.initialize_native_asmprinter()
    _initialized = True


HOST_FUNCTION = ctypes.CFUNCTYPE(ctypes.c_double, ctypes.c_double)


class HostFunctions:
    """
    Functions the host provides to `extern` declarations besides the C
    library: `putchard(x)` writes the character with code x, `printd(x)`
    writes x and a newline. Both return 0.
    """

    def __init__(self, stream=None):
        self.stream = stream
        # ctypes callbacks must stay referenced for as long as JIT code may call them.
        self._callbacks = {
            'putchard': HOST_FUNCTION(self.putchard),
            'printd': HOST_FUNCTION(self.printd),
        }

    def _out(self):
        return self.stream or sys.stdout

    def putchard(self, value):
        # Exceptions cannot cross back into JIT code, so bad codes are reported here.
        try:
            char = chr(int(value))
        except (ValueError, OverflowError):
            print(f"putchard: invalid character code {value}", file=sys.stderr)
            return 0.0
        self._out().write(char)
        return 0.0

    def printd(self, value):
        self._out().write(f"{value:f}\n")
        return 0.0

    def register(self):
        """Make the callbacks visible to the JIT under their names."""
        for name, callback in self._callbacks.items():
            llvm.add_symbol(name, ctypes.cast(callback, ctypes.c_void_p).value)

    def __contains__(self, name):
        return name in self._callbacks


class JITDriver:
    """Compiles and runs generated modules against the session's definitions."""

    def __init__(self, module_state: ModuleState, host: Optional[HostFunctions] = None):
        initialize_llvm()
        self.module_state = module_state
        self.host = host or HostFunctions()
        self.target = llvm.Target.from_default_triple()

    def _parse(self, module: ir.Module, target_machine) -> llvm.ModuleRef:
        try:
            parsed = llvm.parse_assembly(str(module))
        except RuntimeError as e:
            raise ExecutionError(f"Invalid IR in module '{module.name}': {e}") from e
        parsed.triple = target_machine.triple
        parsed.data_layout = str(target_machine.target_data)
        return parsed

    def dependencies(self, module: ir.Module) -> List[ir.Module]:
        """Definition modules `module` needs, directly or through other definitions."""
        needed = []
        seen = set()
        pending = [module]
        while pending:
            current = pending.pop(0)
            for func in current.functions:
                if not func.is_declaration or func.name in seen:
                    continue
                seen.add(func.name)
                definition = self.module_state.definition_of(func.name)
                if definition is not None and definition is not module:
                    needed.append(definition)
                    pending.append(definition)
        return needed

    def link(self, module: ir.Module, target_machine=None) -> llvm.ModuleRef:
        """Link `module` with the current definition of every function it reaches."""
        target_machine = target_machine or self.target.create_target_machine()
        linked = self._parse(module, target_machine)
        for dependency in self.dependencies(module):
            linked.link_in(self._parse(dependency, target_machine))
        try:
            linked.verify()
        except RuntimeError as e:
            raise ExecutionError(f"Module verification failed: {e}") from e
        return linked

    @staticmethod
    def unresolved_symbols(linked: llvm.ModuleRef) -> List[str]:
        """Declared-only functions the process cannot supply."""
        return [func.name for func in linked.functions
                if func.is_declaration
                and not func.name.startswith("llvm.")
                and llvm.address_of_symbol(func.name) is None]

    def run(self, module: ir.Module, entry: str, *args: float) -> float:
        """Compile `module`, call `entry` with `args` and return its double result."""
        target_machine = self.target.create_target_machine()
        # Creating the engine also makes the process's own symbols resolvable.
        engine = llvm.create_mcjit_compiler(llvm.parse_assembly(""), target_machine)
        linked = self.link(module, target_machine)

        self.host.register()
        unresolved = self.unresolved_symbols(linked)
        if unresolved:
            names = ", ".join(f"'{name}'" for name in unresolved)
            raise ExecutionError(f"Unresolved external function(s): {names}")

        engine.add_module(linked)
        engine.finalize_object()
        address = engine.get_function_address(entry)
        if not address:
            raise ExecutionError(f"Entry function '{entry}' not found")

        func_type = ctypes.CFUNCTYPE(ctypes.c_double, *([ctypes.c_double] * len(args)))
        return float(func_type(address)(*args))
