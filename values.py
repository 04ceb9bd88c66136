"""Runtime values and operator semantics.

Values are immutable, so copying a value is the same as sharing it. A
pointer captures a snapshot of the value it was taken from; later
assignments to the source variable are not visible through it.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict

import numpy as np

from errors import (
    DivideByZeroError,
    InvalidDereferenceError,
    InvalidExpressionError,
    OperationOverflowError,
    OperationUnderflowError,
    UninitializedError,
    VoidOperationError,
)


TYPE_UNINIT = "UNINITIALIZED"
TYPE_VOID = "VOID"
TYPE_INT = "INT"
TYPE_STR = "STR"
TYPE_PTR = "PTR"

I32 = np.iinfo(np.int32)
INT_MIN = int(I32.min)
INT_MAX = int(I32.max)
INT_BITS = int(I32.bits)


@dataclass(frozen=True)
class Value:
    type: str
    value: Any = None


VOID = Value(TYPE_VOID)
UNINITIALIZED = Value(TYPE_UNINIT)


def make_int(number: int) -> Value:
    return Value(TYPE_INT, int(number))


def make_str(text: str) -> Value:
    return Value(TYPE_STR, text)


def make_ptr(target: Value) -> Value:
    return Value(TYPE_PTR, target)


def string_from_literal(literal: str) -> Value:
    """Strip the surrounding quotes of a string token.

    An unterminated literal only carries the opening quote.
    """
    body = literal[1:] if literal.startswith('"') else literal
    if body.endswith('"') and not body.endswith('\\"'):
        body = body[:-1]
    return make_str(body)


def render(value: Value) -> str:
    if value.type == TYPE_INT:
        return f"Integer({value.value})"
    if value.type == TYPE_STR:
        escaped = value.value.replace("\\", "\\\\").replace('"', '\\"')
        return f'String("{escaped}")'
    if value.type == TYPE_PTR:
        return f"Pointer({render(value.value)})"
    if value.type == TYPE_VOID:
        return "Void"
    return "Uninitialized"


# ---- Operators ----

ASSIGNMENT_PRIORITY = 6


class BinaryOp(Enum):
    MUL = ("*", 0)
    DIV = ("/", 0)
    REM = ("%", 0)
    ADD = ("+", 1)
    SUB = ("-", 1)
    SHR = (">>", 2)
    SHL = ("<<", 2)
    BAND = ("&", 3)
    BOR = ("|", 3)
    BXOR = ("^", 3)
    EQ = ("==", 4)
    NE = ("!=", 4)
    GT = (">", 4)
    LT = ("<", 4)
    GE = (">=", 4)
    LE = ("<=", 4)
    AND = ("&&", 5)
    OR = ("||", 5)
    ASSIGN = ("=", 6)
    ADD_ASSIGN = ("+=", 6)
    SUB_ASSIGN = ("-=", 6)
    MUL_ASSIGN = ("*=", 6)
    DIV_ASSIGN = ("/=", 6)
    REM_ASSIGN = ("%=", 6)
    BOR_ASSIGN = ("|=", 6)
    BAND_ASSIGN = ("&=", 6)
    BXOR_ASSIGN = ("^=", 6)
    SHR_ASSIGN = (">>=", 6)
    SHL_ASSIGN = ("<<=", 6)

    def __init__(self, symbol: str, priority: int) -> None:
        self.symbol = symbol
        # Lower binds tighter.
        self.priority = priority

    @property
    def is_assignment(self) -> bool:
        return self.priority == ASSIGNMENT_PRIORITY

    def binds_before(self, upcoming: "BinaryOp") -> bool:
        """True when a pending frame of this operator must reduce before `upcoming`."""
        if self.priority < upcoming.priority:
            return True
        # Equal priority: left-associative operators reduce, assignments nest.
        return self.priority == upcoming.priority and not upcoming.is_assignment


class UnaryOp(Enum):
    POS = "+"
    NEG = "-"
    ADDR = "&"
    ADDR_ADDR = "&&"
    DEREF = "*"
    NOT = "!"
    COMPL = "~"


BINARY_OPERATORS: Dict[str, BinaryOp] = {op.symbol: op for op in BinaryOp}
UNARY_OPERATORS: Dict[str, UnaryOp] = {op.value: op for op in UnaryOp}

COMPOUND_BASE: Dict[BinaryOp, BinaryOp] = {
    BinaryOp.ADD_ASSIGN: BinaryOp.ADD,
    BinaryOp.SUB_ASSIGN: BinaryOp.SUB,
    BinaryOp.MUL_ASSIGN: BinaryOp.MUL,
    BinaryOp.DIV_ASSIGN: BinaryOp.DIV,
    BinaryOp.REM_ASSIGN: BinaryOp.REM,
    BinaryOp.BOR_ASSIGN: BinaryOp.BOR,
    BinaryOp.BAND_ASSIGN: BinaryOp.BAND,
    BinaryOp.BXOR_ASSIGN: BinaryOp.BXOR,
    BinaryOp.SHR_ASSIGN: BinaryOp.SHR,
    BinaryOp.SHL_ASSIGN: BinaryOp.SHL,
}


def _checked(result: int) -> int:
    if result > INT_MAX:
        raise OperationOverflowError()
    if result < INT_MIN:
        raise OperationUnderflowError()
    return result


def _trunc_div(a: int, b: int) -> int:
    if b == 0:
        raise DivideByZeroError()
    q = abs(a) // abs(b)
    return _checked(-q if (a < 0) != (b < 0) else q)


def _trunc_rem(a: int, b: int) -> int:
    if b == 0:
        raise DivideByZeroError()
    if a == INT_MIN and b == -1:
        raise OperationOverflowError()
    q = abs(a) // abs(b)
    q = -q if (a < 0) != (b < 0) else q
    return a - b * q


def _shift_left(a: int, b: int) -> int:
    if not 0 <= b < INT_BITS:
        raise OperationOverflowError()
    # Bits shifted past the sign bit are dropped, as in a 32-bit register.
    return int(np.left_shift(np.int32(a), np.int32(b)))


def _shift_right(a: int, b: int) -> int:
    if not 0 <= b < INT_BITS:
        raise OperationUnderflowError()
    return int(np.right_shift(np.int32(a), np.int32(b)))


BinaryImpl = Callable[[Value, Value], Value]


def _expect_present(value: Value) -> None:
    if value.type == TYPE_UNINIT:
        raise UninitializedError()
    if value.type == TYPE_VOID:
        raise VoidOperationError()


class Operators:
    """Dispatch table from operator enumeration members to their semantics."""

    def __init__(self) -> None:
        self.table: Dict[BinaryOp, BinaryImpl] = {}
        self._register_custom(BinaryOp.ADD, self._add)
        self._register_int_only(BinaryOp.SUB, lambda a, b: _checked(a - b))
        self._register_int_only(BinaryOp.MUL, lambda a, b: _checked(a * b))
        self._register_int_only(BinaryOp.DIV, _trunc_div)
        self._register_int_only(BinaryOp.REM, _trunc_rem)
        self._register_int_only(BinaryOp.SHR, _shift_right)
        self._register_int_only(BinaryOp.SHL, _shift_left)
        self._register_int_only(BinaryOp.BAND, lambda a, b: a & b)
        self._register_int_only(BinaryOp.BOR, lambda a, b: a | b)
        self._register_int_only(BinaryOp.BXOR, lambda a, b: a ^ b)
        self._register_custom(BinaryOp.EQ, lambda a, b: make_int(1 if a == b else 0))
        self._register_custom(BinaryOp.NE, lambda a, b: make_int(1 if a != b else 0))
        self._register_relational(BinaryOp.GT, lambda a, b: a > b)
        self._register_relational(BinaryOp.LT, lambda a, b: a < b)
        self._register_relational(BinaryOp.GE, lambda a, b: a >= b)
        self._register_relational(BinaryOp.LE, lambda a, b: a <= b)
        self._register_int_only(BinaryOp.AND, lambda a, b: 1 if a != 0 and b != 0 else 0)
        self._register_int_only(BinaryOp.OR, lambda a, b: 1 if a != 0 or b != 0 else 0)

    def _register_custom(self, op: BinaryOp, impl: BinaryImpl) -> None:
        def checked(left: Value, right: Value) -> Value:
            _expect_present(left)
            _expect_present(right)
            return impl(left, right)

        self.table[op] = checked

    def _register_int_only(self, op: BinaryOp, func: Callable[[int, int], int]) -> None:
        def impl(left: Value, right: Value) -> Value:
            a, b = self._expect_int_pair(op, left, right)
            return make_int(func(a, b))

        self.table[op] = impl

    def _register_relational(self, op: BinaryOp, func: Callable[[int, int], bool]) -> None:
        def impl(left: Value, right: Value) -> Value:
            _expect_present(left)
            _expect_present(right)
            if left.type != TYPE_INT or right.type != TYPE_INT:
                raise InvalidExpressionError(f"Cannot compare {render(left)} and {render(right)}.")
            return make_int(1 if func(left.value, right.value) else 0)

        self.table[op] = impl

    def _expect_int_pair(self, op: BinaryOp, left: Value, right: Value):
        _expect_present(left)
        _expect_present(right)
        if left.type != TYPE_INT or right.type != TYPE_INT:
            raise InvalidExpressionError(
                f'Operator "{op.symbol}" cannot be applied to {render(left)} and {render(right)}.'
            )
        return left.value, right.value

    def _add(self, left: Value, right: Value) -> Value:
        if left.type == TYPE_INT and right.type == TYPE_INT:
            return make_int(_checked(left.value + right.value))
        if left.type == TYPE_STR and right.type == TYPE_STR:
            return make_str(left.value + right.value)
        raise InvalidExpressionError(f"Cannot add {render(left)} and {render(right)}.")

    def binary(self, op: BinaryOp, left: Value, right: Value) -> Value:
        impl = self.table.get(op)
        if impl is None:
            raise InvalidExpressionError(f'Invalid operator "{op.symbol}".')
        return impl(left, right)

    def store(self, right: Value) -> Value:
        _expect_present(right)
        return right

    def assign(self, op: BinaryOp, current: Value, right: Value) -> Value:
        """Return the value to store for `current <op> right`."""
        if op is BinaryOp.ASSIGN:
            return self.store(right)
        base = COMPOUND_BASE.get(op)
        if base is None:
            raise InvalidExpressionError(f'"{op.symbol}" is not an assignment operator.')
        return self.binary(base, current, right)

    def unary(self, op: UnaryOp, operand: Value) -> Value:
        _expect_present(operand)
        if op is UnaryOp.ADDR:
            return make_ptr(operand)
        if op is UnaryOp.ADDR_ADDR:
            return make_ptr(make_ptr(operand))
        if op is UnaryOp.DEREF:
            if operand.type != TYPE_PTR:
                raise InvalidDereferenceError()
            return operand.value
        if operand.type != TYPE_INT:
            raise InvalidExpressionError(f'Operator "{op.value}" expects an integer operand, got {render(operand)}.')
        n = operand.value
        if op is UnaryOp.POS:
            return operand
        if op is UnaryOp.NEG:
            return make_int(_checked(-n))
        if op is UnaryOp.COMPL:
            return make_int(~n)
        return make_int(1 if n == 0 else 0)
