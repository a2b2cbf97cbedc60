import math

import pytest

from hscript.hscript_datatypes import (
    BREAK, CONTINUE, Environment, ErrorRecord, TypeMismatchError, UndefinedVariableError,
    check_type, is_truthy, normalize_value, type_tag,
)

# --- Environment Tests ---

def test_environment_starts_with_global_scope():
    env = Environment()
    assert env.depth == 1
    assert env.current is env.global_scope


def test_get_innermost_first_and_default():
    env = Environment()
    env.set("a", 1)
    env.set("b", 2)
    env.push_scope()
    env.set("b", 20)  # shadow
    assert env.get("a") == 1
    assert env.get("b") == 20
    assert env.get("zzz") is None
    assert env.get("zzz", "d") == "d"
    env.pop_scope()
    assert env.get("b") == 2


def test_set_non_local_writes_global():
    env = Environment()
    env.push_scope()
    env.set("g", 1, local=False)
    env.pop_scope()
    assert env.global_scope["g"] == 1


def test_cannot_pop_global_scope():
    env = Environment()
    with pytest.raises(RuntimeError):
        env.pop_scope()


def test_scoped_restores_on_error():
    env = Environment()
    with pytest.raises(ValueError):
        with env.scoped():
            env.set("tmp", 1)
            raise ValueError("x")
    assert env.depth == 1
    assert "tmp" not in env


def test_call_frame_replaces_and_restores_stack():
    env = Environment()
    env.set("caller", 1)
    env.push_scope()
    saved = env.scopes
    closure = {"captured": 5}
    with pytest.raises(UndefinedVariableError):
        with env.call_frame(closure) as frame:
            assert env.depth == 1
            env.set("local", 2)
            assert frame["local"] == 2
            raise UndefinedVariableError("boom")
    assert env.scopes is saved
    # Closure itself is never written through
    assert closure == {"captured": 5}


def test_call_frame_hides_globals_outside_closure():
    env = Environment()
    env.set("late", 9)
    with env.call_frame({"seen": 1}):
        assert "late" not in env
        assert env.find_owner("late") is None
        assert env.snapshot() == {"seen": 1}
        env.set("late", 10, local=False)
        assert "late" not in env
    assert env.get("late") == 10


def test_snapshot_is_a_flattened_value_copy():
    env = Environment()
    env.set("xs", [1, 2])
    env.set("a", 1)
    env.push_scope()
    env.set("a", 2)
    snap = env.snapshot()
    assert snap == {"xs": [1, 2], "a": 2}
    env.get("xs").append(3)
    assert snap["xs"] == [1, 2]


# --- Value helpers ---

def test_type_tag_checks_bool_before_number():
    assert type_tag(True) == "boolean"
    assert type_tag(1.0) == "number"
    assert type_tag("s") == "string"
    assert type_tag([]) == "sequence"
    assert type_tag({}) == "mapping"
    assert type_tag(ErrorRecord("m")) == "error"


def test_check_type_aliases_and_mismatch():
    check_type(1.0, "number", "x")
    check_type([1], "array", "x")
    check_type({}, "object", "x")
    check_type(True, "bool", "x")
    check_type("anything", None, "x")
    with pytest.raises(TypeMismatchError, match="expected number, got string"):
        check_type("a", "number", "x")
    with pytest.raises(TypeMismatchError, match="Unknown type"):
        check_type(1.0, "complex", "x")


def test_truthiness():
    assert not is_truthy(0.0)
    assert not is_truthy("")
    assert not is_truthy([])
    assert not is_truthy(math.nan)
    assert is_truthy("0")
    assert is_truthy(ErrorRecord(""))


def test_normalize_value_turns_integers_into_floats():
    value = normalize_value({"a": 1, "b": [2, True], "c": (3,)})
    assert value == {"a": 1.0, "b": [2.0, True], "c": [3.0]}
    assert isinstance(value["a"], float)
    assert value["b"][1] is True


def test_error_record_from_exception():
    rec = ErrorRecord.from_exception(UndefinedVariableError("q"))
    assert rec.kind == "UndefinedVariableError"
    assert rec.message == "Undefined variable: q"
    assert str(rec) == "UndefinedVariableError: Undefined variable: q"


def test_control_signals_are_not_exceptions():
    assert not isinstance(BREAK, BaseException)
    assert BREAK is not CONTINUE
    assert BREAK.kind == "break"
