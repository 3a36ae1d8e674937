"""
Kaleido Programming Language
A small expression language compiled to LLVM IR and run in a JIT, with
user-defined operators, control flow and mutable variables.

Version: 0.1.0
Author: Kaleido Development Team
"""

__version__ = "0.1.0"
__author__ = "Kaleido Development Team"

from typing import List, Optional
from .lexer import Lexer
from .parser import Parser
from .operators import Arity, OperatorTable
from .module_state import ModuleState
from .codegen import CodeGenerator
from .driver import HostFunctions, JITDriver
from .session import Session
from .errors import (KaleidoError, LexError, ParseError, CodegenError, ExecutionError,
                     ErrorReporter)
from .token_types import TokenType
from .token import Token
from .ast_nodes import *

__all__ = [
    "Lexer",
    "Parser",
    "Arity",
    "OperatorTable",
    "ModuleState",
    "CodeGenerator",
    "HostFunctions",
    "JITDriver",
    "Session",
    "KaleidoError",
    "LexError",
    "ParseError",
    "CodegenError",
    "ExecutionError",
    "ErrorReporter",
    "TokenType",
    "Token",
    "run_kaleido",
    "run_file"
]


def run_kaleido(source_code: str, filename: str = "<stdin>") -> Optional[List[float]]:
    """
    Run Kaleido source code in a fresh session.

    Args:
        source_code: The Kaleido source code to execute
        filename: Optional filename for error reporting

    Returns:
        The values of the top-level expressions, or None if any unit failed
    """
    session = Session(filename)
    results = session.evaluate(source_code)

    if session.error_reporter.has_errors():
        session.error_reporter.print_errors()
        return None

    return results


def run_file(filename: str) -> Optional[List[float]]:
    """
    Run a Kaleido source file.

    Args:
        filename: Path to the Kaleido source file

    Returns:
        The values of the top-level expressions, or None if there were errors
    """
    try:
        with open(filename, 'r', encoding='utf-8') as file:
            source_code = file.read()
    except OSError as e:
        print(f"Error reading file '{filename}': {e}")
        return None
    return run_kaleido(source_code, filename)
