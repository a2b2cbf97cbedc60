"""
Arithmetic expression evaluation: tokenizer, shunting-yard conversion to
postfix, and a stack-based postfix evaluator.

Beyond + - * / ^ and parentheses the grammar understands comparisons,
&& / || / !, string and boolean literals, dotted member paths, and
[sequence] / {mapping} literals. Literals are compiled into a single
compound postfix token whose elements are themselves postfix sequences.
"""
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from hscript.hscript_datatypes import (
    Environment, ErrorRecord, LexError, TypeMismatchError, UndefinedVariableError, is_truthy,
)
from hscript.hscript_printer import to_text


@dataclass
class Token:
    type: str   # number | string | boolean | identifier | operator | punct | sequence | mapping
    value: Any
    pos: int = -1

    def __repr__(self):
        return f"{self.type}:{self.value!r}"


TWO_CHAR_OPERATORS = ('==', '!=', '<=', '>=', '&&', '||')
ONE_CHAR_OPERATORS = '+-*/^%<>!'
PUNCTUATION = '()[]{},:'

# Unary operators are renamed on the way in so they can share the stack.
UNARY = {'-': 'neg', '+': 'pos', '!': 'not'}

PRECEDENCE = {
    '||': 1,
    '&&': 2,
    '==': 3, '!=': 3,
    '<': 4, '<=': 4, '>': 4, '>=': 4,
    '+': 5, '-': 5,
    '*': 6, '/': 6, '%': 6,
    'neg': 7, 'pos': 7, 'not': 7,
    '^': 8,
}
RIGHT_ASSOC = {'^', 'neg', 'pos', 'not'}

ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', "'": "'", '"': '"'}


def _is_ident_start(ch: str) -> bool:
    return ch.isascii() and (ch.isalpha() or ch == '_')


def _is_ident_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == '_')


def tokenize(text: str) -> List[Token]:
    """Scan text left to right into tokens. Fails with LexError on unknown characters."""
    if text is None:
        raise LexError("Empty expression")
    tokens: List[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        start = i
        if ch.isdigit() or (ch == '.' and i + 1 < n and text[i + 1].isdigit()):
            while i < n and (text[i].isdigit() or text[i] == '.'):
                i += 1
            raw = text[start:i]
            try:
                tokens.append(Token('number', float(raw), start))
            except ValueError:
                raise LexError(f"Invalid number: {raw} at position {start}") from None
            continue
        if _is_ident_start(ch):
            while i < n and _is_ident_char(text[i]):
                i += 1
            # Dotted member segments: a.b, rows.0
            while i + 1 < n and text[i] == '.' and _is_ident_char(text[i + 1]):
                i += 1
                while i < n and _is_ident_char(text[i]):
                    i += 1
            word = text[start:i]
            if word in ('true', 'false'):
                tokens.append(Token('boolean', word == 'true', start))
            else:
                tokens.append(Token('identifier', word, start))
            continue
        if ch in ('"', "'"):
            quote = ch
            i += 1
            chars = []
            while i < n and text[i] != quote:
                if text[i] == '\\' and i + 1 < n:
                    chars.append(ESCAPES.get(text[i + 1], text[i + 1]))
                    i += 2
                    continue
                chars.append(text[i])
                i += 1
            if i >= n:
                raise LexError(f"Unterminated string starting at position {start}")
            i += 1
            tokens.append(Token('string', "".join(chars), start))
            continue
        two = text[i:i + 2]
        if two in TWO_CHAR_OPERATORS:
            tokens.append(Token('operator', two, start))
            i += 2
            continue
        if ch in ONE_CHAR_OPERATORS:
            tokens.append(Token('operator', ch, start))
            i += 1
            continue
        if ch in PUNCTUATION:
            tokens.append(Token('punct', ch, start))
            i += 1
            continue
        raise LexError(f"Invalid token: {ch} at position {i}")
    return tokens


def _expects_operand(prev: Optional[Token]) -> bool:
    """True when the next token starts an operand (so +, - and ! are unary)."""
    if prev is None:
        return True
    if prev.type == 'operator':
        return True
    return prev.type == 'punct' and prev.value in '([{,:'


def _split_group(tokens: List[Token], start: int, closer: str) -> Tuple[List[List[Token]], int]:
    """Collect comma-separated items up to the matching closer.

    Returns the items and the index just past the closer.
    """
    items: List[List[Token]] = []
    current: List[Token] = []
    depth = 0
    i = start
    while i < len(tokens):
        tok = tokens[i]
        if tok.type == 'punct':
            if tok.value in '([{':
                depth += 1
            elif tok.value in ')]}':
                if depth == 0:
                    if tok.value != closer:
                        raise LexError(f"Mismatched '{tok.value}' at position {tok.pos}")
                    if current:
                        items.append(current)
                    return items, i + 1
                depth -= 1
            elif tok.value == ',' and depth == 0:
                if not current:
                    raise LexError(f"Empty element at position {tok.pos}")
                items.append(current)
                current = []
                i += 1
                continue
        current.append(tok)
        i += 1
    raise LexError(f"Missing '{closer}'")


def _mapping_entry(entry: List[Token]) -> Tuple[str, List[Token]]:
    depth = 0
    for idx, tok in enumerate(entry):
        if tok.type == 'punct' and tok.value in '([{':
            depth += 1
        elif tok.type == 'punct' and tok.value in ')]}':
            depth -= 1
        elif tok.type == 'punct' and tok.value == ':' and depth == 0:
            if idx != 1 or entry[0].type not in ('identifier', 'string'):
                raise LexError(f"Invalid mapping key at position {entry[0].pos}")
            return str(entry[0].value), entry[idx + 1:]
    raise LexError(f"Mapping entry without ':' at position {entry[0].pos}")


def to_postfix(tokens: List[Token]) -> List[Token]:
    """Shunting-yard conversion. Unbalanced parentheses fail with LexError."""
    output: List[Token] = []
    operators: List[Token] = []
    prev: Optional[Token] = None
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token.type in ('number', 'string', 'boolean', 'identifier'):
            output.append(token)
        elif token.type == 'punct' and token.value == '[':
            items, i = _split_group(tokens, i + 1, ']')
            token = Token('sequence', [to_postfix(item) for item in items], token.pos)
            output.append(token)
            prev = token
            continue
        elif token.type == 'punct' and token.value == '{':
            entries, i = _split_group(tokens, i + 1, '}')
            pairs = []
            for entry in entries:
                key, value_tokens = _mapping_entry(entry)
                pairs.append((key, to_postfix(value_tokens)))
            token = Token('mapping', pairs, token.pos)
            output.append(token)
            prev = token
            continue
        elif token.type == 'punct' and token.value == '(':
            operators.append(token)
        elif token.type == 'punct' and token.value == ')':
            while operators and operators[-1].value != '(':
                output.append(operators.pop())
            if not operators:
                raise LexError(f"Unbalanced ')' at position {token.pos}")
            operators.pop()
        elif token.type == 'operator':
            if _expects_operand(prev):
                if token.value not in UNARY:
                    raise LexError(f"Unexpected operator '{token.value}' at position {token.pos}")
                # Prefix operators never pop anything on arrival.
                operators.append(Token('operator', UNARY[token.value], token.pos))
            else:
                op = token.value
                while operators and operators[-1].value != '(':
                    top = operators[-1].value
                    if PRECEDENCE[top] > PRECEDENCE[op] or (
                            PRECEDENCE[top] == PRECEDENCE[op] and op not in RIGHT_ASSOC):
                        output.append(operators.pop())
                    else:
                        break
                operators.append(token)
        else:
            raise LexError(f"Unexpected '{token.value}' at position {token.pos}")
        prev = token
        i += 1
    while operators:
        op = operators.pop()
        if op.value == '(':
            raise LexError(f"Unbalanced '(' at position {op.pos}")
        output.append(op)
    return output


# --- Operator semantics ---

def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float))


def _require_numbers(op: str, a: Any, b: Any):
    if not (_is_number(a) and _is_number(b)):
        raise TypeMismatchError(
            f"Operator '{op}' expects numbers, got {type(a).__name__} and {type(b).__name__}")


def _divide(a: float, b: float) -> float:
    if b == 0:
        # IEEE-754: x/0 is signed infinity, 0/0 and nan/0 are NaN
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _power(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except (ValueError, ZeroDivisionError):
        # math.pow(0, -1) raises; IEEE gives inf. Negative base with fractional exponent is NaN.
        if a == 0 and b < 0:
            return math.inf
        return math.nan


def apply_operator(op: str, a: Any, b: Any) -> Any:
    if op == '+':
        if isinstance(a, str) or isinstance(b, str):
            return to_text(a) + to_text(b)
        if isinstance(a, list) and isinstance(b, list):
            return a + b
        _require_numbers(op, a, b)
        return float(a + b)
    if op == '-':
        _require_numbers(op, a, b)
        return float(a - b)
    if op == '*':
        _require_numbers(op, a, b)
        return float(a * b)
    if op == '/':
        _require_numbers(op, a, b)
        return _divide(float(a), float(b))
    if op == '%':
        _require_numbers(op, a, b)
        if b == 0:
            return math.nan
        return math.fmod(a, b)
    if op == '^':
        _require_numbers(op, a, b)
        return _power(float(a), float(b))
    if op == '==':
        return a == b
    if op == '!=':
        return a != b
    if op in ('<', '<=', '>', '>='):
        comparable = (_is_number(a) and _is_number(b)) or (isinstance(a, str) and isinstance(b, str))
        if not comparable:
            raise TypeMismatchError(
                f"Cannot compare {type(a).__name__} and {type(b).__name__} with '{op}'")
        match op:
            case '<':
                return a < b
            case '<=':
                return a <= b
            case '>':
                return a > b
            case _:
                return a >= b
    if op == '&&':
        return b if is_truthy(a) else a
    if op == '||':
        return a if is_truthy(a) else b
    raise LexError(f"Invalid operator: {op}")


def apply_unary(op: str, a: Any) -> Any:
    if op == 'not':
        return not is_truthy(a)
    if not _is_number(a):
        raise TypeMismatchError(f"Unary '{'-' if op == 'neg' else '+'}' expects a number, got {type(a).__name__}")
    return -float(a) if op == 'neg' else float(a)


def resolve_member(value: Any, segment: str, path: str) -> Any:
    """One step of a dotted path: mapping key, sequence index, or error field."""
    if isinstance(value, dict):
        if segment in value:
            return value[segment]
    elif isinstance(value, list):
        if segment.isdigit() and int(segment) < len(value):
            return value[int(segment)]
        if segment == 'length':
            return float(len(value))
    elif isinstance(value, str):
        if segment == 'length':
            return float(len(value))
    elif isinstance(value, ErrorRecord):
        if segment in ('message', 'kind'):
            return getattr(value, segment)
    raise UndefinedVariableError(path)


class ExpressionEvaluator:
    """Evaluates expression text against an Environment."""

    def __init__(self, env: Environment):
        self.env = env

    def lookup(self, path: str) -> Any:
        head, *rest = path.split('.')
        owner = self.env.find_owner(head)
        if owner is None:
            raise UndefinedVariableError(head)
        value = owner[head]
        for segment in rest:
            value = resolve_member(value, segment, path)
        return value

    def evaluate_postfix(self, postfix: List[Token]) -> Any:
        stack: List[Any] = []
        for token in postfix:
            match token.type:
                case 'number' | 'string' | 'boolean':
                    stack.append(token.value)
                case 'identifier':
                    stack.append(self.lookup(token.value))
                case 'sequence':
                    stack.append([self.evaluate_postfix(item) for item in token.value])
                case 'mapping':
                    stack.append({key: self.evaluate_postfix(item) for key, item in token.value})
                case 'operator' if token.value in ('neg', 'pos', 'not'):
                    if not stack:
                        raise LexError(f"Missing operand for '{token.value}'")
                    stack.append(apply_unary(token.value, stack.pop()))
                case 'operator':
                    if len(stack) < 2:
                        raise LexError(f"Missing operand for '{token.value}' at position {token.pos}")
                    b = stack.pop()
                    a = stack.pop()
                    stack.append(apply_operator(token.value, a, b))
                case _:
                    raise LexError(f"Unexpected token {token!r}")
        if len(stack) != 1:
            raise LexError("Malformed expression" if stack else "Empty expression")
        return stack[0]

    def evaluate(self, text: Optional[str]) -> Any:
        if text is None or not text.strip():
            raise LexError("Empty expression")
        return self.evaluate_postfix(to_postfix(tokenize(text)))

    def evaluate_list(self, text: Optional[str]) -> List[Any]:
        """Evaluate a comma-separated argument list as a sequence literal."""
        if text is None or not text.strip():
            return []
        return self.evaluate(f"[{text}]")
