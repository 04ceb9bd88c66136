from __future__ import annotations
from dataclasses import dataclass
from typing import Any, List, Optional


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class ExprError(Exception):
    """Base class for every failure surfaced by the evaluator."""

    kind = "Error"

    def __init__(self, message: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.step_index: Optional[int] = None
        # Open bracket groups at the moment of failure, innermost last.
        self.groups: List[Any] = []


class BracketMismatchError(ExprError):
    kind = "BracketMismatch"

    def __init__(self, bracket: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(f'There are no corresponding brackets to "{bracket}"', location=location)
        self.bracket = bracket


class InvalidExpressionError(ExprError):
    kind = "InvalidExpression"

    def __init__(self, message: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(f"Invalid expression: {message}", location=location)
        self.detail = message


class InvalidDereferenceError(InvalidExpressionError):
    kind = "InvalidDereference"

    def __init__(self, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__("Invalid dereference.", location=location)


class InvalidIntegerError(ExprError):
    kind = "InvalidInteger"

    def __init__(self, literal: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(f'Invalid integer "{literal}".', location=location)
        self.literal = literal


class VariableNotFoundError(ExprError):
    kind = "VariableNotFound"

    def __init__(self, name: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(f'Variable "{name}" was not found.', location=location)
        self.name = name


class OperationOverflowError(ExprError):
    kind = "OperationOverflow"

    def __init__(self, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__("Overflow occurred", location=location)


class OperationUnderflowError(ExprError):
    kind = "OperationUnderflow"

    def __init__(self, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__("Underflow occurred", location=location)


class DivideByZeroError(ExprError):
    kind = "DivideByZero"

    def __init__(self, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__("Divide by zero error", location=location)


class VoidOperationError(ExprError):
    kind = "VoidOperation"

    def __init__(self, message: str = "Cannot operate with void.", *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message, location=location)


class UninitializedError(VoidOperationError):
    kind = "Uninitialized"

    def __init__(self, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__("Variable was uninitialized", location=location)


class NoInputError(ExprError):
    kind = "NoInput"

    def __init__(self, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__("No inputs.", location=location)


class UnhandledError(ExprError):
    kind = "Unhandled"

    def __init__(self, message: str = "Unhandled error.", *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message, location=location)
