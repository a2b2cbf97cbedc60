import math

import pytest

from hscript.hscript_datatypes import (
    Environment, ErrorRecord, LexError, TypeMismatchError, UndefinedVariableError,
)
from hscript.hscript_expr import ExpressionEvaluator, to_postfix, tokenize


def evaluate(text, **bindings):
    env = Environment()
    for k, v in bindings.items():
        env.set(k, v)
    return ExpressionEvaluator(env).evaluate(text)


# --- Tokenizer ---

def test_tokenize_numbers_identifiers_and_operators():
    tokens = tokenize("x1 + 2.5*(y)")
    assert [t.type for t in tokens] == ['identifier', 'operator', 'number', 'operator', 'punct', 'identifier', 'punct']
    assert tokens[2].value == 2.5


def test_tokenize_dotted_path_is_one_identifier():
    tokens = tokenize("rows.0.name")
    assert len(tokens) == 1
    assert tokens[0].value == "rows.0.name"


def test_tokenize_strings_with_escapes():
    tokens = tokenize(r"'it\'s' + " + '"a\\nb"')
    assert tokens[0].value == "it's"
    assert tokens[2].value == "a\nb"


def test_tokenize_rejects_unknown_character():
    with pytest.raises(LexError, match=r"Invalid token: \$"):
        tokenize("1 $ 2")


def test_tokenize_rejects_malformed_number():
    with pytest.raises(LexError):
        tokenize("1.2.3")


def test_tokenize_unterminated_string():
    with pytest.raises(LexError):
        tokenize("'abc")


# --- Shunting-yard ---

def test_postfix_respects_precedence():
    postfix = to_postfix(tokenize("2+3*4"))
    assert [t.value for t in postfix] == [2.0, 3.0, 4.0, '*', '+']


def test_postfix_power_is_right_associative():
    postfix = to_postfix(tokenize("2^3^2"))
    assert [t.value for t in postfix] == [2.0, 3.0, 2.0, '^', '^']


@pytest.mark.parametrize("text", ["(1+2", "1+2)", "((1)", ")("])
def test_unbalanced_parentheses_fail(text):
    with pytest.raises(LexError):
        to_postfix(tokenize(text))


# --- Evaluation ---

@pytest.mark.parametrize("text, expected", [
    ("2+3*4", 14),
    ("2^3^2", 512),
    ("(2+3)*4", 20),
    ("10 - 4 - 3", 3),
    ("2 * -3", -6),
    ("2 - -3", 5),
    ("-2^2", -4),
    ("2^-1", 0.5),
    ("10 % 3", 1),
    ("7 / 2", 3.5),
])
def test_arithmetic(text, expected):
    assert evaluate(text) == expected


def test_numbers_are_floats():
    assert isinstance(evaluate("1 + 1"), float)


def test_division_by_zero_follows_ieee():
    assert evaluate("1/0") == math.inf
    assert evaluate("-1/0") == -math.inf
    assert math.isnan(evaluate("0/0"))


def test_identifiers_resolve_through_environment():
    env = Environment()
    env.set("x", 2.0)
    env.push_scope()
    env.set("y", 5.0)
    assert ExpressionEvaluator(env).evaluate("x * y") == 10


def test_undefined_identifier():
    with pytest.raises(UndefinedVariableError, match="nope"):
        evaluate("nope + 1")


def test_string_concatenation_renders_numbers():
    assert evaluate("'n=' + 3") == "n=3"
    assert evaluate("1.5 + 'x'") == "1.5x"


def test_sequence_concatenation():
    assert evaluate("[1, 2] + [3]") == [1, 2, 3]


def test_arithmetic_type_mismatch():
    with pytest.raises(TypeMismatchError):
        evaluate("1 - 'a'")
    with pytest.raises(TypeMismatchError):
        evaluate("[1] * 2")


def test_comparisons_and_logic():
    assert evaluate("1 < 2 && 'b' > 'a'") is True
    assert evaluate("1 + 2 == 3") is True
    assert evaluate("'a' != 'a' || 2 >= 3") is False
    assert evaluate("!true") is False
    assert evaluate("!(1 > 2)") is True


def test_logic_returns_operands():
    assert evaluate("0 || 'fallback'") == "fallback"
    assert evaluate("true && 7") == 7


def test_relational_type_mismatch():
    with pytest.raises(TypeMismatchError):
        evaluate("1 < 'a'")


def test_sequence_and_mapping_literals():
    assert evaluate("[]") == []
    assert evaluate("{}") == {}
    assert evaluate("[1, [2, 3], 'x']") == [1, [2, 3], "x"]
    value = evaluate("{a: 1 + 1, 'b c': [true, false]}")
    assert value == {"a": 2, "b c": [True, False]}


def test_literal_elements_are_expressions():
    assert evaluate("[x * 2, {k: x}]", x=4.0) == [8, {"k": 4}]


def test_empty_sequence_element_fails():
    with pytest.raises(LexError):
        evaluate("[1,,2]")


def test_member_paths():
    data = {"rows": [{"name": "Ann"}, {"name": "Bo"}], "tags": ["a", "b", "c"]}
    assert evaluate("data.rows.1.name", data=data) == "Bo"
    assert evaluate("data.tags.length", data=data) == 3
    assert evaluate("e.message", e=ErrorRecord("boom", "HttpFailure")) == "boom"
    with pytest.raises(UndefinedVariableError):
        evaluate("data.missing", data=data)


@pytest.mark.parametrize("text", ["", "   ", "1 +", "1 2", "*"])
def test_malformed_expressions(text):
    with pytest.raises(LexError):
        evaluate(text)


def test_evaluate_list():
    env = Environment()
    env.set("a", 1.0)
    ev = ExpressionEvaluator(env)
    assert ev.evaluate_list("a, a + 1, 'x'") == [1, 2, "x"]
    assert ev.evaluate_list("") == []
    assert ev.evaluate_list(None) == []
