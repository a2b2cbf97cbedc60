import pytest

from hscript.hscript_runtime import ScriptRunner


async def run_env(src):
    runner = ScriptRunner()
    res = await runner.handle_script(src)
    return runner.interpreter.env, res


def assert_ok(res):
    assert res.status == "success", f"expected success, got {res.format_error()}"


def assert_error(res, *fragments):
    assert res.status == "error", f"expected error, got {res.value!r}"
    for fragment in fragments:
        assert fragment in res.error_message, res.error_message


@pytest.mark.asyncio
@pytest.mark.parametrize("initial, operation, expected", [
    ("5", "+1", 6),
    ("5", "*2 - 1", 9),
    ("-5", "^2", 25),
    ("10", "/4", 2.5),
    ("'ab'", "+'c'", "abc"),
    ("[1, 2]", "+[3]", [1, 2, 3]),
])
async def test_expression_operations(initial, operation, expected):
    env, res = await run_env(f'<store name="x" value="{initial}"><man name="x" operation="{operation}">')
    assert_ok(res)
    assert env.get("x") == expected


@pytest.mark.asyncio
async def test_man_node_is_removed():
    _, res = await run_env('<store name="x" value="1">a<man name="x" operation="+1">b')
    assert_ok(res)
    assert res.value == "ab"


@pytest.mark.asyncio
async def test_man_updates_owning_scope():
    src = '<store name="c" value="0"><scope><man name="c" operation="+1"></scope>'
    env, res = await run_env(src)
    assert_ok(res)
    assert env.global_scope["c"] == 1


@pytest.mark.asyncio
async def test_man_undefined_variable():
    _, res = await run_env('<man name="ghost" operation="+1">')
    assert_error(res, "UndefinedVariableError: Undefined variable: ghost")


@pytest.mark.asyncio
async def test_man_type_check():
    _, res = await run_env('<store name="x" value="1"><man name="x" operation="+\'a\'" type="number">')
    assert_error(res, "TypeMismatchError")


@pytest.mark.asyncio
@pytest.mark.parametrize("initial, operation, expected", [
    ("[1, 2]", ".push(3, 4)", [1, 2, 3, 4]),
    ("[1, 2]", ".append(3)", [1, 2, 3]),
    ("[1, 2, 3]", ".pop()", [1, 2]),
    ("[1, 2, 3]", ".shift()", [2, 3]),
    ("[2]", ".unshift(0, 1)", [0, 1, 2]),
    ("[1, 2, 3]", ".reverse()", [3, 2, 1]),
    ("[3, 1, 2]", ".sort()", [1, 2, 3]),
    ("[1, 2, 3, 4]", ".slice(1, 3)", [2, 3]),
    ("[1]", ".concat([2, 3])", [1, 2, 3]),
    ("[1, 2, 1]", ".remove(1)", [2, 1]),
    ("[1, 2]", ".clear()", []),
    ("{a: 1}", ".set('b', 2)", {"a": 1, "b": 2}),
    ("{a: 1, b: 2}", ".delete('a')", {"b": 2}),
    ("'Hello'", ".upper()", "HELLO"),
    ("'Hello'", ".toLowerCase()", "hello"),
    ("'  pad  '", ".trim()", "pad"),
    ("'hello'", ".slice(1)", "ello"),
    ("'a'", ".concat('b', 1)", "ab1"),
    ("'a-b-c'", ".replace('-', '+')", "a+b+c"),
])
async def test_whitelisted_methods(initial, operation, expected):
    env, res = await run_env(f'<store name="x" value="{initial}"><man name="x" operation="{operation}">')
    assert_ok(res)
    assert env.get("x") == expected


@pytest.mark.asyncio
async def test_method_arguments_are_expressions():
    src = '<store name="n" value="4"><store name="xs" value="[]"><man name="xs" operation=".push(n * 2)">'
    env, res = await run_env(src)
    assert_ok(res)
    assert env.get("xs") == [8]


@pytest.mark.asyncio
@pytest.mark.parametrize("initial, operation", [
    ("[1]", ".upper()"),
    ("'s'", ".push(1)"),
    ("1", ".pop()"),
    ("[1]", ".__class__()"),
])
async def test_unknown_operations_are_rejected(initial, operation):
    _, res = await run_env(f'<store name="x" value="{initial}"><man name="x" operation="{operation}">')
    assert_error(res, "UnknownOperation")


@pytest.mark.asyncio
async def test_bad_method_arguments_are_type_errors():
    _, res = await run_env('<store name="x" value="[1]"><man name="x" operation=".concat(2)">')
    assert_error(res, "TypeMismatchError")


@pytest.mark.asyncio
@pytest.mark.parametrize("initial, operation", [
    ("'hello'", ".slice(0/0)"),
    ("[1, 2]", ".slice(1/0)"),
    ("[1, 2]", ".slice(0, -1/0)"),
])
async def test_non_finite_slice_bounds_are_type_errors(initial, operation):
    _, res = await run_env(f'<store name="x" value="{initial}"><man name="x" operation="{operation}">')
    assert_error(res, "TypeMismatchError: Invalid arguments for .slice on x")


@pytest.mark.asyncio
async def test_man_on_error_record_is_rejected():
    src = (
        '<try><calc expression="nope"></calc></try><catch var="err"></catch>'
        '<man name="err" operation="+1">'
    )
    _, res = await run_env(src)
    assert_error(res, "TypeMismatchError")
