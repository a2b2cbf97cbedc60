"""
Formats HScript values as text.

`to_text` is what tags render into the document (calc, output, inline codec
results); `Printer.pformat` is the debugging representation used by the
`debug` tag and error traces.
"""
import collections.abc
import decimal
import json
import math

from hscript.hscript_datatypes import ErrorRecord, FunctionDef


def format_number(x) -> str:
    """Render numbers the way the markup expects: 3 not 3.0, Infinity, NaN."""
    if isinstance(x, bool):
        return "true" if x else "false"
    if isinstance(x, int):
        return str(x)
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "Infinity" if x > 0 else "-Infinity"
    if x.is_integer() and abs(x) < 1e21:
        return str(int(x))
    return repr(x)


def to_wire(value):
    """Convert a value into plain JSON-compatible Python data."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, ErrorRecord):
        return {"error": value.message, "kind": value.kind}
    if isinstance(value, list):
        return [to_wire(x) for x in value]
    if isinstance(value, collections.abc.Mapping):
        return {str(k): to_wire(v) for k, v in value.items()}
    return value


def to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return format_number(value)
    if isinstance(value, list):
        return ",".join(to_text(x) for x in value)
    if isinstance(value, ErrorRecord):
        return str(value)
    if isinstance(value, collections.abc.Mapping):
        return json.dumps(to_wire(value), ensure_ascii=False, separators=(",", ":"))
    return str(value)


class Printer:
    """Formats HScript values into readable expression-literal strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping):
            return self._pformat_dict
        if isinstance(obj, list):
            return self._pformat_list
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_number,
            float: self._pformat_number,
            bool: self._pformat_number,
            type(None): lambda o, l: "none",
            list: self._pformat_list,
            dict: self._pformat_dict,
            ErrorRecord: self._pformat_error,
            FunctionDef: self._pformat_function,
        }

    def _pformat_str(self, s, level):
        escaped = s.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'

    def _pformat_number(self, x, level):
        return format_number(x)

    def _pformat_list(self, items, level):
        if not items:
            return "[]"
        return "[" + ", ".join(self.pformat(x, level + 1) for x in items) + "]"

    def _pformat_dict(self, d, level):
        if not d:
            return "{}"
        if len(d) <= 3 and all(not isinstance(v, (list, dict)) for v in d.values()):
            inner = ", ".join(f"{self._pformat_key(k)}: {self.pformat(v, level + 1)}" for k, v in d.items())
            return "{" + inner + "}"
        pad = self._indent_char * (level + 1)
        lines = [f"{pad}{self._pformat_key(k)}: {self.pformat(v, level + 1)}" for k, v in d.items()]
        return "{\n" + ",\n".join(lines) + "\n" + self._indent_char * level + "}"

    def _pformat_key(self, key):
        key = str(key)
        if key.isascii() and key.isidentifier() and key not in ('true', 'false'):
            return key
        return self._pformat_str(key, 0)

    def _pformat_error(self, err, level):
        return f"<{err.kind}: {err.message}>"

    def _pformat_function(self, fn, level):
        return f"func {fn.name}({', '.join(fn.params)})"


def to_expression_literal(value) -> str:
    """Render a value as expression text that evaluates back to it."""
    if isinstance(value, float) and math.isfinite(value) and 'e' in repr(value):
        # No exponent syntax in expressions; spell the number out
        return format(decimal.Decimal(repr(value)), 'f')
    if isinstance(value, (str, bool, int, float, list, dict)) and not (
            isinstance(value, float) and not math.isfinite(value)):
        return Printer().pformat(value).replace("\n", " ")
    if isinstance(value, float):
        # inf/nan have no literal form; build them arithmetically
        if math.isnan(value):
            return "(0/0)"
        return "(1/0)" if value > 0 else "(-1/0)"
    raise TypeError(f"{type(value).__name__} has no expression literal")
