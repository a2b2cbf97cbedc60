"""
Defines the core data types for the HScript runtime.

This module provides the error taxonomy, the runtime value helpers, the
break/continue control signals, and the lexical Environment that every
tag handler reads from and writes to.
"""

import copy
import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from hscript.hscript_tree import Node


# =================================================================
# Errors
# =================================================================

class HScriptError(Exception):
    """Base class for every failure raised by the interpreter."""
    pass


class LexError(HScriptError):
    pass


class UndefinedVariableError(HScriptError):
    def __init__(self, name: str):
        super().__init__(f"Undefined variable: {name}")
        self.name = name


class TypeMismatchError(HScriptError):
    pass


class MissingAttribute(HScriptError):
    def __init__(self, tag: str, attr: str):
        super().__init__(f"<{tag}> requires a '{attr}' attribute")
        self.tag = tag
        self.attr = attr


class ArgumentCountMismatch(HScriptError):
    def __init__(self, func_name: str, expected: int, got: int):
        super().__init__(f"Argument count mismatch for {func_name}: expected {expected}, got {got}")
        self.func_name = func_name
        self.expected = expected
        self.got = got


class FunctionNotFound(HScriptError):
    def __init__(self, name: str):
        super().__init__(f"Function {name} not found")
        self.name = name


class RecursionLimitExceeded(HScriptError):
    pass


class LoopLimitExceeded(HScriptError):
    pass


class UnknownOperation(HScriptError):
    pass


class CodecError(HScriptError):
    def __init__(self, fmt: str, message: str):
        super().__init__(f"{fmt.upper()} error: {message}")
        self.fmt = fmt


class ImportFailure(HScriptError):
    pass


class HttpFailure(HScriptError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


# =================================================================
# Control signals
# =================================================================

class ControlSignal:
    """A break/continue interruption.

    Signals are returned up the tree walk rather than raised, so a try block
    (which only intercepts exceptions) can never swallow one.
    """
    __slots__ = ("kind",)

    def __init__(self, kind: str):
        self.kind = kind

    def __repr__(self):
        return f"<ControlSignal {self.kind}>"


BREAK = ControlSignal("break")
CONTINUE = ControlSignal("continue")


# =================================================================
# Values
# =================================================================

@dataclass
class ErrorRecord:
    """An error captured as data (catch variables, contained I/O failures)."""
    message: str
    kind: str = "Error"

    @classmethod
    def from_exception(cls, exc: BaseException) -> 'ErrorRecord':
        return cls(message=str(exc), kind=type(exc).__name__)

    def __str__(self):
        return f"{self.kind}: {self.message}"


TYPE_ALIASES = {
    'number': 'number',
    'string': 'string',
    'boolean': 'boolean',
    'bool': 'boolean',
    'sequence': 'sequence',
    'array': 'sequence',
    'list': 'sequence',
    'mapping': 'mapping',
    'object': 'mapping',
    'dict': 'mapping',
    'error': 'error',
}


def type_tag(value: Any) -> str:
    """Returns the variant tag of a runtime value."""
    # bool is a subclass of int, so check it before numbers
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, list):
        return 'sequence'
    if isinstance(value, dict):
        return 'mapping'
    if isinstance(value, ErrorRecord):
        return 'error'
    if value is None:
        return 'none'
    return type(value).__name__


def check_type(value: Any, declared: Optional[str], what: str) -> None:
    """Fails with TypeMismatchError when value does not carry the declared tag."""
    if not declared:
        return
    expected = TYPE_ALIASES.get(declared.strip().lower())
    if expected is None:
        raise TypeMismatchError(f"Unknown type '{declared}' for {what}")
    actual = type_tag(value)
    if actual != expected:
        raise TypeMismatchError(f"Type mismatch for {what}: expected {expected}, got {actual}")


def is_truthy(value: Any) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    if isinstance(value, ErrorRecord):
        return True
    return bool(value)


def normalize_value(value: Any) -> Any:
    """Coerce host/codec data into the value model (integers become floats)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return float(value)
    if isinstance(value, (list, tuple)):
        return [normalize_value(x) for x in value]
    if isinstance(value, dict):
        return {str(k): normalize_value(v) for k, v in value.items()}
    return value


# =================================================================
# Environment
# =================================================================

class Environment:
    """A stack of scopes. Index 0 is the global scope for the run's lifetime.

    Scopes are pushed only by scope blocks, function calls and event
    handlers; loop iterations share the enclosing scope.
    """
    def __init__(self):
        self.global_scope: Dict[str, Any] = {}
        self.scopes: List[Dict[str, Any]] = [self.global_scope]

    def find_owner(self, name: str) -> Optional[Dict[str, Any]]:
        """Finds the innermost scope that binds name."""
        for scope in reversed(self.scopes):
            if name in scope:
                return scope
        return None

    def get(self, name: str, default: Any = None) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            return default
        return owner[name]

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def set(self, name: str, value: Any, local: bool = True) -> None:
        if local:
            self.scopes[-1][name] = value
        else:
            self.global_scope[name] = value

    @property
    def current(self) -> Dict[str, Any]:
        return self.scopes[-1]

    @property
    def depth(self) -> int:
        return len(self.scopes)

    def push_scope(self, scope: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        scope = {} if scope is None else scope
        self.scopes.append(scope)
        return scope

    def pop_scope(self) -> Dict[str, Any]:
        if len(self.scopes) <= 1:
            raise RuntimeError("cannot pop the global scope")
        return self.scopes.pop()

    @contextmanager
    def scoped(self):
        """Pushes a fresh scope for the duration of the block."""
        scope = self.push_scope()
        try:
            yield scope
        finally:
            self.pop_scope()

    @contextmanager
    def call_frame(self, closure: Dict[str, Any]):
        """Swaps in a single-scope environment seeded from a closure.

        Bindings outside the closure are not visible inside the frame. The
        caller's stack is restored on every exit path.
        """
        saved = self.scopes
        frame_scope = copy.deepcopy(closure)
        self.scopes = [frame_scope]
        try:
            yield frame_scope
        finally:
            self.scopes = saved

    def snapshot(self) -> Dict[str, Any]:
        """Flatten all visible scopes, outer to inner, into one value copy."""
        merged: Dict[str, Any] = {}
        for scope in self.scopes:
            merged.update(scope)
        return copy.deepcopy(merged)

    def visible_bindings(self) -> Dict[str, Any]:
        """Like snapshot, but without copying values (used for rendering)."""
        merged: Dict[str, Any] = {}
        for scope in self.scopes:
            merged.update(scope)
        return merged


# =================================================================
# Functions
# =================================================================

@dataclass
class FunctionDef:
    name: str
    params: List[str]
    body: 'Node'
    closure: Dict[str, Any] = field(default_factory=dict)

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self):
        return f"<func {self.name}({', '.join(self.params)})>"
