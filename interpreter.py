from __future__ import annotations
import json
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Tuple, Union

from errors import (
    BracketMismatchError,
    ExprError,
    InvalidExpressionError,
    InvalidIntegerError,
    NoInputError,
    SourceLocation,
    UnhandledError,
    VariableNotFoundError,
)
from extensions import HookRegistry, StepContext
from lexer import TOKEN_PUNCT, TOKEN_STRING, TOKEN_WORD, Lexer, Token
from scope import Scope
from values import (
    INT_MAX,
    VOID,
    BinaryOp,
    Operators,
    UnaryOp,
    Value,
    make_int,
    render,
    string_from_literal,
    TYPE_INT,
)


DEFAULT_MAX_DEPTH = 200
# Each nesting level costs up to four Python frames (sentence, declaration,
# expression, primary); deeper input would exceed the default recursion limit.
MAX_DEPTH_LIMIT = 200

KEYWORD_LET = "let"
TERMINATORS = frozenset({";", ")", "}"})
CLOSERS = {"(": ")", "{": "}"}

DIGITS = {
    10: frozenset("0123456789"),
    16: frozenset("0123456789abcdefABCDEF"),
    2: frozenset("01"),
}


# ---- Expression terms ----


@dataclass
class Variable:
    name: str
    location: SourceLocation


@dataclass
class Immediate:
    value: Value
    location: SourceLocation


@dataclass
class Monomial:
    op: UnaryOp
    operand: "Term"
    location: SourceLocation


Term = Union[Variable, Immediate, Monomial]


@dataclass
class Frame:
    """A binary operator waiting for its operands to be reduced."""

    op: BinaryOp
    operands: Deque[Term]
    location: SourceLocation


@dataclass
class Group:
    bracket: str
    location: SourceLocation
    depth: int


# ---- Step log ----


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def entry(self, step_index: Optional[int]) -> Optional[StateEntry]:
        if step_index is None:
            return None
        for entry in reversed(self.entries):
            if entry.step_index == step_index:
                return entry
        return None

    def rules(self) -> List[str]:
        return [e.rewrite_record["rule"] for e in self.entries if e.rewrite_record]


# ---- Interpreter ----


class Interpreter:
    def __init__(
        self,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        max_depth: int = DEFAULT_MAX_DEPTH,
        hooks: Optional[HookRegistry] = None,
    ) -> None:
        if not 1 <= max_depth <= MAX_DEPTH_LIMIT:
            raise ValueError(f"max_depth must be between 1 and {MAX_DEPTH_LIMIT}")
        self.filename = filename
        self.verbose = verbose
        self.max_depth = max_depth
        self.hooks = hooks or HookRegistry()
        self.lexer = Lexer()
        self.scope = Scope()
        self.operators = Operators()
        self.logger = StateLogger(verbose=verbose)
        self.groups: List[Group] = []
        self._source = ""
        self._source_lines: List[str] = []
        self._tokens: List[Token] = []
        self._pos = 0

    @property
    def tokens(self) -> List[Token]:
        """Tokens fed but not yet evaluated."""
        return self.lexer.tokens

    def feed(self, text: str) -> List[Token]:
        self._source += text
        self._source_lines = self._source.splitlines()
        return self.lexer.feed(text)

    def unclosed_brackets(self) -> int:
        """Openers minus closers among the buffered tokens."""
        balance = 0
        for token in self.lexer.tokens:
            if token.type != TOKEN_PUNCT:
                continue
            if token.value in CLOSERS:
                balance += 1
            elif token.value in (")", "}"):
                balance -= 1
        return balance

    def reset(self) -> None:
        self.lexer.clear()
        self.scope.clear()
        self.logger = StateLogger(verbose=self.verbose)
        self.groups = []
        self._source = ""
        self._source_lines = []
        self._tokens = []
        self._pos = 0

    def parse(self, text: str = "") -> Value:
        """Evaluate everything buffered plus `text`; bindings survive the call."""
        if text:
            self.feed(text)
        self._tokens = list(self.lexer.tokens)
        self._pos = 0
        self.groups = []
        # Tracebacks only refer to steps of the current call.
        self.logger = StateLogger(verbose=self.verbose)
        try:
            self._emit_event("parse_start", self, self._tokens)
            self._log_step(rule="PARSE", location=None, extra={"tokens": len(self._tokens)})
            self._check_brackets()
            result = self._parse_sentence()
            stray = self._peek()
            if stray is not None:
                raise BracketMismatchError(stray.value, location=self._location(stray))
        except ExprError as error:
            self._fail(error)
            raise
        except Exception as exc:
            loc = self.logger.entries[-1].source_location if self.logger.entries else None
            wrapped = UnhandledError(f"Internal interpreter error: {exc}", location=loc)
            self._fail(wrapped)
            raise wrapped from exc
        finally:
            self.lexer.clear()
            self._source = ""
            self._source_lines = []
        self._emit_event("parse_end", self, result)
        return result

    def _fail(self, error: ExprError) -> None:
        if self.logger.entries:
            error.step_index = self.logger.entries[-1].step_index
        error.groups = list(self.groups)
        self.groups = []
        # Keep the session usable: bindings made before the failure survive,
        # blocks left open by the failure are discarded.
        self.scope.unwind()
        self._emit_event("on_error", self, error)

    # ---- validation ----

    def _check_brackets(self) -> None:
        puncts = [t for t in self._tokens if t.type == TOKEN_PUNCT]
        for opener, closer in CLOSERS.items():
            opened = [t for t in puncts if t.value == opener]
            closed = [t for t in puncts if t.value == closer]
            if len(opened) > len(closed):
                raise BracketMismatchError(opener, location=self._location(opened[-1]))
            if len(opened) < len(closed):
                raise BracketMismatchError(closer, location=self._location(closed[-1]))
        stack: List[Token] = []
        for token in puncts:
            if token.value in CLOSERS:
                stack.append(token)
            elif token.value in (")", "}"):
                if not stack or CLOSERS[stack[-1].value] != token.value:
                    raise BracketMismatchError(token.value, location=self._location(token))
                stack.pop()

    # ---- statements ----

    def _parse_sentence(self) -> Value:
        last: Value = VOID
        while True:
            token = self._peek()
            if token is None or self._is_punct(token, ")") or self._is_punct(token, "}"):
                return last
            if self._is_punct(token, ";"):
                self._pos += 1
                last = VOID
                continue
            if token.type == TOKEN_WORD and token.value == KEYWORD_LET:
                last = self._parse_declaration()
            else:
                last = self._parse_expression()

    def _parse_declaration(self) -> Value:
        let_token = self._advance()
        name_token = self._peek()
        if name_token is None or not self._is_identifier(name_token):
            raise InvalidExpressionError(
                'Next of "let" keyword must be variable name.', location=self._location(let_token)
            )
        location = self._location(name_token)
        created = self.scope.declare(name_token.value)
        self._log_step(
            rule="DECLARE",
            location=location,
            extra={"name": name_token.value, "depth": self.scope.depth, "created": created},
        )
        following = self._peek(1)
        if following is None or self._is_terminator(following):
            self._pos += 1
            return VOID
        # `let a = 5` continues as an expression starting at the name.
        return self._parse_expression()

    # ---- expressions ----

    def _parse_expression(self) -> Value:
        frames: List[Frame] = []
        unary: List[Token] = []
        while True:
            token = self._peek()
            if token is None or self._is_terminator(token):
                if unary or frames:
                    dangling = unary[-1] if unary else None
                    loc = self._location(dangling) if dangling else frames[-1].location
                    raise InvalidExpressionError("Operator is missing its right-hand operand.", location=loc)
                raise NoInputError(location=self._location(token) if token else None)

            term, is_block = self._parse_primary(token, unary)
            if term is None:
                continue
            for op_token in reversed(unary):
                term = Monomial(op_token.unary, term, self._location(op_token))
            unary = []

            upcoming = self._peek()
            if upcoming is None or self._is_terminator(upcoming):
                if not frames:
                    return self._resolve(term)
                frames[-1].operands.append(term)
                break
            op = upcoming.binary
            if op is None:
                # A bare block is a complete statement; the next one may follow directly.
                if is_block and not frames and isinstance(term, Immediate):
                    return term.value
                raise InvalidExpressionError(
                    f'Expected an operator but found "{upcoming.value}".', location=self._location(upcoming)
                )
            self._pos += 1
            self._push_operator(frames, term, op, self._location(upcoming))

        value = self._reduce(frames.pop())
        while frames:
            frame = frames.pop()
            frame.operands.append(Immediate(value, frame.location))
            value = self._reduce(frame)
        return value

    def _parse_primary(self, token: Token, unary: List[Token]) -> Tuple[Optional[Term], bool]:
        location = self._location(token)
        if token.type == TOKEN_STRING:
            self._pos += 1
            return Immediate(string_from_literal(token.value), location), False
        if token.type == TOKEN_PUNCT:
            if token.value == "(":
                self._pos += 1
                self._open_group(token)
                value = self._parse_expression()
                self._close_group()
                return Immediate(value, location), False
            if token.value == "{":
                self._pos += 1
                self._open_group(token)
                self._enter_scope(location)
                value = self._parse_sentence()
                self._close_group()
                self._exit_scope(location)
                return Immediate(value, location), True
            if token.unary is not None:
                self._pos += 1
                unary.append(token)
                return None, False
            if token.binary is not None:
                raise InvalidExpressionError(f'Illegal operator "{token.value}".', location=location)
            raise VariableNotFoundError(token.value, location=location)
        text = token.value
        if text[0] in DIGITS[10]:
            self._pos += 1
            return Immediate(make_int(self._parse_integer(token)), location), False
        if text == KEYWORD_LET:
            raise InvalidExpressionError('"let" must start a statement.', location=location)
        if self.scope.has(text):
            self._pos += 1
            return Variable(text, location), False
        raise VariableNotFoundError(text, location=location)

    def _parse_integer(self, token: Token) -> int:
        text = token.value
        base = 10
        digits = text
        prefix = text[:2].lower()
        if prefix == "0x":
            base, digits = 16, text[2:]
        elif prefix == "0b":
            base, digits = 2, text[2:]
        cleaned = digits.replace("_", "")
        allowed = DIGITS[base]
        if not cleaned or any(ch not in allowed for ch in cleaned):
            raise InvalidIntegerError(text, location=self._location(token))
        number = int(cleaned, base)
        if number > INT_MAX:
            raise InvalidIntegerError(text, location=self._location(token))
        return number

    def _push_operator(self, frames: List[Frame], term: Term, op: BinaryOp, location: SourceLocation) -> None:
        while frames:
            top = frames[-1]
            if top.op is op:
                top.operands.append(term)
                return
            if not top.op.binds_before(op):
                break
            frames.pop()
            top.operands.append(term)
            term = Immediate(self._reduce(top), top.location)
        frames.append(Frame(op=op, operands=deque([term]), location=location))

    def _reduce(self, frame: Frame) -> Value:
        op = frame.op
        operands = frame.operands
        if len(operands) < 2:
            raise UnhandledError(f'Operator "{op.symbol}" reached reduction with {len(operands)} operand(s)')
        self._log_step(
            rule="REDUCE",
            location=frame.location,
            extra={"operator": op.symbol, "operands": len(operands)},
        )
        try:
            if op.is_assignment:
                return self._reduce_assignment(frame)
            acc = self._resolve(operands.popleft())
            while operands:
                if op is BinaryOp.AND and acc == make_int(0):
                    return acc
                if op is BinaryOp.OR and acc.type == TYPE_INT and acc.value != 0:
                    return acc
                acc = self.operators.binary(op, acc, self._resolve(operands.popleft()))
            return acc
        except ExprError as error:
            if error.location is None:
                error.location = frame.location
            raise

    def _reduce_assignment(self, frame: Frame) -> Value:
        op = frame.op
        operands = frame.operands
        acc = self._resolve(operands.pop())
        while operands:
            target = operands.pop()
            if not isinstance(target, Variable):
                raise InvalidExpressionError("The left-hand must be variable.", location=target.location)
            right = acc
            if op is BinaryOp.ASSIGN:
                acc = self.operators.store(right)
                self.scope.assign(target.name, acc)
            else:

                def apply(current: Value) -> Value:
                    return self.operators.assign(op, current, right)

                acc = self.scope.update(target.name, apply)
            self._log_step(
                rule="ASSIGN",
                location=target.location,
                extra={"name": target.name, "operator": op.symbol, "value": render(acc)},
            )
        return VOID

    def _resolve(self, term: Term) -> Value:
        # Unary chains can be arbitrarily long, so unwrap them without recursing.
        wrappers: List[Monomial] = []
        while isinstance(term, Monomial):
            wrappers.append(term)
            term = term.operand
        if isinstance(term, Immediate):
            value = term.value
        else:
            try:
                value = self.scope.read(term.name)
            except ExprError as error:
                error.location = term.location
                raise
        for wrapper in reversed(wrappers):
            try:
                value = self.operators.unary(wrapper.op, value)
            except ExprError as error:
                if error.location is None:
                    error.location = wrapper.location
                raise
        return value

    # ---- groups and scopes ----

    def _open_group(self, token: Token) -> None:
        location = self._location(token)
        if len(self.groups) >= self.max_depth:
            raise InvalidExpressionError(f"Nesting deeper than {self.max_depth} levels.", location=location)
        self.groups.append(Group(bracket=token.value, location=location, depth=len(self.groups) + 1))

    def _close_group(self) -> None:
        group = self.groups[-1]
        token = self._peek()
        if token is None or not self._is_punct(token, CLOSERS[group.bracket]):
            raise BracketMismatchError(group.bracket, location=group.location)
        self._pos += 1
        self.groups.pop()

    def _enter_scope(self, location: SourceLocation) -> None:
        self.scope.enter_scope()
        self._log_step(rule="ENTER_SCOPE", location=location, extra={"depth": self.scope.depth})
        self._emit_event("scope_enter", self, self.scope.depth)

    def _exit_scope(self, location: SourceLocation) -> None:
        depth = self.scope.depth
        discarded = sorted(self.scope.exit_scope())
        self._log_step(rule="EXIT_SCOPE", location=location, extra={"depth": depth, "discarded": discarded})
        self._emit_event("scope_exit", self, depth, discarded)

    # ---- token helpers ----

    def _peek(self, offset: int = 0) -> Optional[Token]:
        index = self._pos + offset
        if index < len(self._tokens):
            return self._tokens[index]
        return None

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    @staticmethod
    def _is_punct(token: Token, value: str) -> bool:
        return token.type == TOKEN_PUNCT and token.value == value

    @staticmethod
    def _is_terminator(token: Token) -> bool:
        return token.type == TOKEN_PUNCT and token.value in TERMINATORS

    @staticmethod
    def _is_identifier(token: Token) -> bool:
        return token.type == TOKEN_WORD and token.value[0] not in DIGITS[10] and token.value != KEYWORD_LET

    def _location(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self._source_lines):
            statement = self._source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)

    # ---- diagnostics ----

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hooks.emit(event, *args, **kwargs)
        except ExprError:
            raise
        except Exception as exc:
            loc = self.logger.entries[-1].source_location if self.logger.entries else None
            raise UnhandledError(f"Hook '{event}' failed: {exc}", location=loc)

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        env_snapshot = self.scope.snapshot() if self.verbose else None
        statement = location.statement if location else None
        rewrite: Dict[str, Any] = {"rule": rule}
        if extra:
            rewrite.update(extra)
        entry = self.logger.record(
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        try:
            self.hooks.after_step(
                self,
                StepContext(step_index=entry.step_index, rule=rule, location=location, extra=extra),
            )
        except ExprError:
            raise
        except Exception as exc:
            raise UnhandledError(f"Step rule failed: {exc}", location=location)


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: ExprError) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = [TracebackFrame(name="<top-level>", location=None, statement=None)]
        for group in error.groups:
            kind = "block" if group.bracket == "{" else "group"
            frames.append(
                TracebackFrame(
                    name=f"{kind} '{group.bracket}' (depth {group.depth})",
                    location=group.location,
                    statement=group.location.statement,
                )
            )
        return frames

    def format_text(self, error: ExprError, verbose: bool) -> str:
        lines = ["Traceback (innermost group last):"]
        for frame in self.build_frames(error):
            if frame.location:
                lines.append(
                    f"  File \"{frame.location.file}\", line {frame.location.line}, column {frame.location.column}, in {frame.name}"
                )
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  File \"{self.interpreter.filename}\", in {frame.name}")
        if error.location:
            loc = error.location
            lines.append(f"  Failed at line {loc.line}, column {loc.column}")
            if loc.statement:
                lines.append(f"    {loc.statement}")
        entry = self.interpreter.logger.entry(error.step_index)
        if entry:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"    Env snapshot: {snapshot}")
        lines.append(f"{error.__class__.__name__}: {error.message} (kind: {error.kind})")
        return "\n".join(lines)

    def to_json(self, error: ExprError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            frames_json.append(entry)
        data: Dict[str, Any] = {
            "error": {
                "type": error.__class__.__name__,
                "kind": error.kind,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        if error.location:
            data["error"]["source_location"] = {
                "file": error.location.file,
                "line": error.location.line,
                "column": error.location.column,
                "statement": error.location.statement,
            }
        state = self.interpreter.logger.entry(error.step_index)
        if state is not None:
            data["error"]["state_id"] = state.state_id
            if state.rewrite_record is not None:
                data["error"]["rewrite_record"] = state.rewrite_record
            if state.env_snapshot is not None:
                data["error"]["env_snapshot"] = state.env_snapshot
        return json.dumps(data, indent=2)
