import pytest

from errors import UnhandledError, VariableNotFoundError
from scope import Scope
from values import UNINITIALIZED, make_int


def test_declare_is_idempotent_per_depth():
    scope = Scope()
    assert scope.declare("a") is True
    scope.assign("a", make_int(1))
    assert scope.declare("a") is False
    assert scope.read("a") == make_int(1)


def test_inner_declaration_shadows_outer():
    scope = Scope()
    scope.declare("x")
    scope.assign("x", make_int(1))
    scope.enter_scope()
    assert scope.depth == 1
    scope.declare("x")
    assert scope.read("x") == UNINITIALIZED
    scope.assign("x", make_int(2))
    assert scope.read("x") == make_int(2)
    discarded = scope.exit_scope()
    assert list(discarded) == ["x"]
    assert scope.read("x") == make_int(1)


def test_exit_discards_inner_bindings():
    scope = Scope()
    scope.enter_scope()
    scope.declare("y")
    scope.exit_scope()
    assert not scope.has("y")
    with pytest.raises(VariableNotFoundError) as excinfo:
        scope.read("y")
    assert excinfo.value.name == "y"


def test_update_writes_the_visible_binding():
    scope = Scope()
    scope.declare("n")
    scope.assign("n", make_int(1))
    scope.enter_scope()
    result = scope.update("n", lambda v: make_int(v.value + 1))
    assert result == make_int(2)
    scope.exit_scope()
    assert scope.read("n") == make_int(2)


def test_missing_bindings_and_top_level_exit():
    scope = Scope()
    with pytest.raises(VariableNotFoundError):
        scope.assign("nope", make_int(1))
    with pytest.raises(UnhandledError):
        scope.exit_scope()


def test_unwind_clear_and_snapshot():
    scope = Scope()
    scope.declare("a")
    scope.assign("a", make_int(3))
    scope.enter_scope()
    scope.enter_scope()
    scope.declare("b")
    assert scope.snapshot() == {"a": "Integer(3)", "b": "Uninitialized"}
    scope.unwind()
    assert scope.depth == 0
    assert scope.has("a") and not scope.has("b")
    scope.clear()
    assert not scope.has("a")
