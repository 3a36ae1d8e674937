"""
Module-level symbol table: every function declared or defined so far in the
session, and the IR module holding the current body of each defined one.
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple
from llvmlite import ir
from .errors import SignatureConflict


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    arity: int
    defined: bool = False


class ModuleState:
    """Functions that persist across top-level units."""

    def __init__(self):
        self.signatures: Dict[str, FunctionSignature] = {}
        self.definitions: Dict[str, ir.Module] = {}

    def lookup(self, name: str) -> Optional[FunctionSignature]:
        return self.signatures.get(name)

    def declare(self, name: str, arity: int) -> FunctionSignature:
        """
        Record a signature. Re-declaring with the same arity keeps the existing
        entry (and its body, if any); a different arity is a hard error.
        """
        existing = self.signatures.get(name)
        if existing is not None:
            if existing.arity != arity:
                raise SignatureConflict(
                    f"Function '{name}' already declared with {existing.arity} "
                    f"parameter(s), cannot redeclare with {arity}", name=name)
            return existing
        signature = FunctionSignature(name, arity)
        self.signatures[name] = signature
        return signature

    def define(self, name: str, module: ir.Module) -> FunctionSignature:
        """Attach a generated body, replacing any previous one."""
        signature = replace(self.signatures[name], defined=True)
        self.signatures[name] = signature
        self.definitions[name] = module
        return signature

    def definition_of(self, name: str) -> Optional[ir.Module]:
        """The module holding the current body of `name`, if it has one."""
        return self.definitions.get(name)

    def snapshot(self) -> Tuple[Dict[str, FunctionSignature], Dict[str, ir.Module]]:
        return dict(self.signatures), dict(self.definitions)

    def restore(self, snapshot):
        signatures, definitions = snapshot
        self.signatures = dict(signatures)
        self.definitions = dict(definitions)

    def __contains__(self, name):
        return name in self.signatures
