import json

import pytest

from errors import DivideByZeroError, UnhandledError, VariableNotFoundError
from extensions import ExtensionError, HookRegistry
from interpreter import Interpreter, TracebackFormatter
from values import make_int


def _capture(interp, source):
    with pytest.raises(Exception) as excinfo:
        interp.parse(source)
    return excinfo.value


def test_error_records_open_groups():
    interp = Interpreter()
    error = _capture(interp, "(1 + { 2 / 0 })")
    assert isinstance(error, DivideByZeroError)
    assert [g.bracket for g in error.groups] == ["(", "{"]
    assert interp.scope.depth == 0
    assert interp.groups == []


def test_format_text():
    interp = Interpreter()
    error = _capture(interp, "(1 + { 2 / 0 })")
    text = TracebackFormatter(interp).format_text(error, verbose=False)
    assert text.startswith("Traceback (innermost group last):")
    assert "group '(' (depth 1)" in text
    assert "block '{' (depth 2)" in text
    assert text.splitlines()[-1] == "DivideByZeroError: Divide by zero error (kind: DivideByZero)"


def test_to_json():
    interp = Interpreter()
    error = _capture(interp, "(1 + { 2 / 0 })")
    data = json.loads(TracebackFormatter(interp).to_json(error))
    assert data["error"]["kind"] == "DivideByZero"
    assert data["error"]["type"] == "DivideByZeroError"
    assert len(data["traceback"]) == 3
    assert data["error"]["rewrite_record"]["rule"] == "REDUCE"
    assert data["error"]["rewrite_record"]["operator"] == "/"


def test_verbose_snapshot_in_traceback():
    interp = Interpreter(verbose=True)
    error = _capture(interp, "let a = 1; a / 0")
    entry = interp.logger.entry(error.step_index)
    assert entry.env_snapshot == {"a": "Integer(1)"}
    text = TracebackFormatter(interp).format_text(error, verbose=True)
    assert "Env snapshot: a=Integer(1)" in text


def test_state_log_rules():
    interp = Interpreter()
    interp.parse("let a = 1; { a }")
    rules = interp.logger.rules()
    for rule in ("PARSE", "DECLARE", "REDUCE", "ASSIGN", "ENTER_SCOPE", "EXIT_SCOPE"):
        assert rule in rules
    ids = [e.state_id for e in interp.logger.entries]
    assert ids[0] == "s_000000"
    assert interp.logger.entries[1].rewrite_record["from_state_id"] == ids[0]


def test_hook_events_fire():
    hooks = HookRegistry()
    seen = []
    hooks.on_event("parse_start", lambda interp, tokens: seen.append(("start", len(tokens))))
    hooks.on_event("parse_end", lambda interp, value: seen.append(("end", value)))
    hooks.on_event("scope_enter", lambda interp, depth: seen.append(("enter", depth)))
    hooks.on_event("scope_exit", lambda interp, depth, names: seen.append(("exit", depth, names)))
    interp = Interpreter(hooks=hooks)
    interp.parse("{ let b; let a = 1; a }")
    assert seen == [
        ("start", 11),
        ("enter", 1),
        ("exit", 1, ["a", "b"]),
        ("end", make_int(1)),
    ]


def test_on_error_hook_receives_error():
    hooks = HookRegistry()
    errors = []
    hooks.on_event("on_error", lambda interp, error: errors.append(error.kind))
    interp = Interpreter(hooks=hooks)
    with pytest.raises(VariableNotFoundError):
        interp.parse("nope")
    assert errors == ["VariableNotFound"]


def test_hook_priority_order():
    hooks = HookRegistry()
    order = []
    hooks.on_event("parse_start", lambda *a: order.append("low"), name="low")
    hooks.on_event("parse_start", lambda *a: order.append("high"), priority=10, name="high")
    assert hooks.handlers("parse_start") == ["high", "low"]
    Interpreter(hooks=hooks).parse("1")
    assert order == ["high", "low"]


def test_failing_hook_is_wrapped():
    hooks = HookRegistry()

    def explode(interp, tokens):
        raise RuntimeError("boom")

    hooks.on_event("parse_start", explode)
    interp = Interpreter(hooks=hooks)
    with pytest.raises(UnhandledError) as excinfo:
        interp.parse("1")
    assert "boom" in excinfo.value.message


def test_step_rules():
    hooks = HookRegistry()
    steps = []
    hooks.add_step_rule(name="every", every_n=1, handler=lambda interp, ctx: steps.append(ctx.rule))
    Interpreter(hooks=hooks).parse("let a = 1 + 2")
    assert steps == ["PARSE", "DECLARE", "REDUCE", "REDUCE", "ASSIGN"]


def test_registry_validation():
    hooks = HookRegistry()
    with pytest.raises(ExtensionError):
        hooks.on_event("not_an_event", lambda *a: None)
    with pytest.raises(ExtensionError):
        hooks.add_step_rule(name="bad", every_n=0, handler=lambda interp, ctx: None)


def test_step_log_starts_fresh_each_parse():
    interp = Interpreter()
    interp.parse("let a = 1")
    interp.parse("a + 1")
    assert interp.logger.entries[0].state_id == "s_000000"
    assert interp.logger.rules() == ["PARSE", "REDUCE"]
