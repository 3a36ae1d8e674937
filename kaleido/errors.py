"""
Error handling for the Kaleido compiler.

Every error is local to the top-level unit that raised it: the session reports
it, restores the operator table and symbol table, and moves on to the next unit.
"""

import sys


class KaleidoError(Exception):
    """Base class for all Kaleido errors."""

    def __init__(self, message, line=None, column=None, filename=None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename

    def __str__(self):
        location = ""
        if self.filename:
            location += f"File \"{self.filename}\""
        if self.line is not None:
            location += f"{', ' if location else ''}line {self.line}"
        if self.column is not None:
            location += f", column {self.column}"

        if location:
            return f"{self.__class__.__name__}: {location}\n  {self.message}"
        return f"{self.__class__.__name__}: {self.message}"


class LexError(KaleidoError):
    """Unrecognized character or malformed literal."""
    pass


class ParseError(KaleidoError):
    """Unexpected token, missing keyword or invalid operator declaration."""

    def __init__(self, message, expected=None, found=None,
                 line=None, column=None, filename=None):
        super().__init__(message, line, column, filename)
        self.expected = expected
        self.found = found

    @property
    def position(self):
        return (self.line, self.column)


class CodegenError(KaleidoError):
    """Error while lowering the syntax tree to IR."""

    def __init__(self, message, name=None, line=None, column=None, filename=None):
        super().__init__(message, line, column, filename)
        self.name = name


class UnknownOperator(CodegenError):
    pass


class UnknownFunction(CodegenError):
    pass


class ArityMismatch(CodegenError):
    pass


class SignatureConflict(CodegenError):
    pass


class UndefinedVariable(CodegenError):
    pass


class InvalidAssignment(CodegenError):
    pass


class ExecutionError(KaleidoError):
    """The JIT could not link, verify or run a module."""
    pass


class ErrorReporter:
    """Collects the errors of a session so they can be shown together."""

    def __init__(self, stream=None):
        self.errors = []
        self.stream = stream

    def report(self, error):
        """Record an already raised error."""
        self.errors.append(error)
        return error

    def has_errors(self):
        return len(self.errors) > 0

    def clear(self):
        self.errors.clear()

    def print_errors(self):
        """Print all errors to stderr."""
        stream = self.stream or sys.stderr
        for error in self.errors:
            print(str(error), file=stream)
