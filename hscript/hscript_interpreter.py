"""
The core HScript interpreter: a tree-walking engine that executes script
tags in place and rewrites the markup tree as it goes.
"""
import asyncio
import inspect
import os
import re
import sys
from typing import Any, Callable, Dict, List, Optional

import pystache

from hscript.hscript_datatypes import (
    BREAK, CONTINUE, ArgumentCountMismatch, ControlSignal, Environment, ErrorRecord,
    FunctionDef, FunctionNotFound, HScriptError, LoopLimitExceeded, MissingAttribute,
    RecursionLimitExceeded, TypeMismatchError, UndefinedVariableError, UnknownOperation,
    check_type, is_truthy,
)
from hscript.hscript_expr import ExpressionEvaluator
from hscript.hscript_printer import to_expression_literal, to_text, to_wire
from hscript.hscript_tree import Node

MAX_DEPTH = 50

# name = expr, with a single '=' (so comparisons like i == 1 stay expressions)
ASSIGNMENT_RE = re.compile(r'^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=(?!=)(.*)$', re.DOTALL)
METHOD_RE = re.compile(r'^\.([A-Za-z_][A-Za-z0-9_]*)\s*(?:\((.*)\))?\s*$', re.DOTALL)


def _max_loop_iters() -> Optional[int]:
    raw = os.environ.get("HSCRIPT_MAX_LOOP_ITERS")
    if raw is None:
        return 100000
    try:
        value = int(raw)
    except ValueError:
        return 100000
    return value if value > 0 else None


# --- man: whitelisted mutation operations ---

def _seq_push(v, *items):
    v.extend(items)
    return v


def _seq_pop(v):
    if v:
        v.pop()
    return v


def _seq_shift(v):
    if v:
        del v[0]
    return v


def _seq_unshift(v, *items):
    v[0:0] = items
    return v


def _seq_reverse(v):
    v.reverse()
    return v


def _seq_sort(v):
    try:
        v.sort()
    except TypeError:
        raise TypeMismatchError("sort expects items of one comparable type") from None
    return v


def _slice(v, start=0.0, end=None):
    return v[int(start):None if end is None else int(end)]


def _seq_concat(v, other):
    if not isinstance(other, list):
        raise TypeMismatchError("concat on a sequence expects a sequence")
    v.extend(other)
    return v


def _seq_remove(v, item):
    if item in v:
        v.remove(item)
    return v


def _clear(v):
    v.clear()
    return v


def _map_set(d, key, value):
    d[to_text(key)] = value
    return d


def _map_delete(d, key):
    d.pop(to_text(key), None)
    return d


def _str_concat(s, *parts):
    return s + "".join(to_text(p) for p in parts)


def _str_replace(s, old, new):
    return s.replace(to_text(old), to_text(new))


MAN_OPERATIONS: Dict[type, Dict[str, Callable]] = {
    list: {
        'push': _seq_push, 'append': _seq_push,
        'pop': _seq_pop,
        'shift': _seq_shift,
        'unshift': _seq_unshift,
        'reverse': _seq_reverse,
        'sort': _seq_sort,
        'slice': _slice,
        'concat': _seq_concat,
        'remove': _seq_remove,
        'clear': _clear,
    },
    dict: {
        'set': _map_set,
        'delete': _map_delete,
        'clear': _clear,
    },
    str: {
        'upper': str.upper, 'toUpperCase': str.upper,
        'lower': str.lower, 'toLowerCase': str.lower,
        'trim': str.strip,
        'slice': _slice,
        'concat': _str_concat,
        'replace': _str_replace,
    },
}


class Interpreter:
    """The HScript execution engine. One instance per run; owns all run state."""

    def __init__(self):
        self.env = Environment()
        self.expr = ExpressionEvaluator(self.env)
        self.functions: Dict[str, FunctionDef] = {}
        self.call_stack: List[str] = []
        self.side_effects: List[Dict[str, Any]] = []
        self.document: Optional[Node] = None
        self.max_loop_iters = _max_loop_iters()
        self.handlers: Dict[str, Callable] = self._create_handlers()

    def _create_handlers(self) -> Dict[str, Callable]:
        return {
            'store': self._store,
            'man': self._man,
            'calc': self._calc,
            'output': self._output,
            'if': self._if,
            'for': self._for,
            'while': self._while,
            'func': self._func,
            'call': self._call,
            'scope': self._scope,
            'try': self._try,
            'break': lambda node: BREAK,
            'continue': lambda node: CONTINUE,
        }

    def register_tag(self, tag: str, handler: Callable):
        """Bind an extra tag handler (collaborator tags, host extensions)."""
        self.handlers[tag.lower()] = handler

    # --- Diagnostics ---

    def _dbg(self, *parts):
        if os.environ.get("HSCRIPT_DEBUG"):
            try:
                print("[DBG]", *parts, file=sys.stderr)
            except Exception:
                pass

    def emit(self, topic: str, message: str):
        """Records a side-effect event for the host application."""
        self.side_effects.append({"topics": [topic], "message": message})

    def trail(self) -> str:
        return " > ".join(self.call_stack)

    # --- Evaluation helpers ---

    def evaluate(self, expression: Optional[str]) -> Any:
        return self.expr.evaluate(expression)

    def run_statement(self, text: str):
        """Run `name = expr` as an assignment, anything else as an expression."""
        m = ASSIGNMENT_RE.match(text)
        if m:
            self.env.set(m.group(1), self.evaluate(m.group(2)))
            return None
        return self.evaluate(text)

    def _require(self, node: Node, attr: str) -> str:
        value = node.get(attr)
        if value is None or not value.strip():
            raise MissingAttribute(node.tag, attr)
        return value

    # --- Tree walk ---

    async def run(self, document: Node):
        """Interpret every child of document in place."""
        self.document = document
        signal = await self.process_children(document)
        if signal is not None:
            raise HScriptError(f"'{signal.kind}' outside of a for/while loop")

    async def process_children(self, node: Node) -> Optional[ControlSignal]:
        for child in list(node.children):
            # Skip nodes an earlier sibling removed or replaced.
            if child.parent is not node:
                continue
            signal = await self.process_node(child)
            if signal is not None:
                return signal
        return None

    async def process_node(self, node: Node) -> Optional[ControlSignal]:
        if not node.is_element:
            return None
        tag = node.tag
        self.call_stack.append(tag)
        try:
            if len(self.call_stack) > MAX_DEPTH:
                raise RecursionLimitExceeded(f"Recursion depth exceeded ({MAX_DEPTH}) at <{tag}>")
            handler = self.handlers.get(tag)
            if handler is None:
                # Transparent container
                return await self.process_children(node)
            result = handler(node)
            if inspect.isawaitable(result):
                result = await result
            return result if isinstance(result, ControlSignal) else None
        except Exception as e:
            if getattr(e, 'hscript_trail', None) is None:
                e.hscript_trail = list(self.call_stack)
                self._dbg("Error processing node:", tag, repr(e), "Stack:", self.trail())
            raise
        finally:
            self.call_stack.pop()

    # --- Variables ---

    def _store(self, node: Node):
        name = self._require(node, 'name')
        value = self.evaluate(node.get('value'))
        check_type(value, node.get('type'), name)
        local = (node.get('local') or 'true').strip().lower() != 'false'
        self.env.set(name, value, local=local)
        node.remove()

    def _man(self, node: Node):
        name = self._require(node, 'name')
        operation = self._require(node, 'operation').strip()
        owner = self.env.find_owner(name)
        if owner is None:
            raise UndefinedVariableError(name)
        value = owner[name]
        if operation.startswith('.'):
            new_value = self._apply_method(name, value, operation)
        else:
            try:
                literal = to_expression_literal(value)
            except TypeError as e:
                raise TypeMismatchError(f"Cannot manipulate {name}: {e}") from None
            new_value = self.evaluate(f"({literal}){operation}")
        check_type(new_value, node.get('type'), name)
        owner[name] = new_value
        node.remove()

    def _apply_method(self, name: str, value: Any, operation: str) -> Any:
        m = METHOD_RE.match(operation)
        if not m:
            raise UnknownOperation(f"Malformed operation for {name}: {operation}")
        op_name, arg_text = m.group(1), m.group(2)
        table = MAN_OPERATIONS.get(type(value), {})
        func = table.get(op_name)
        if func is None:
            raise UnknownOperation(f"Operation .{op_name} is not supported on {type(value).__name__} ({name})")
        args = self.expr.evaluate_list(arg_text)
        try:
            return func(value, *args)
        except (TypeError, ValueError, OverflowError):
            raise TypeMismatchError(f"Invalid arguments for .{op_name} on {name}") from None

    # --- Rendering ---

    def _calc(self, node: Node):
        result = self.evaluate(node.get('expression'))
        check_type(result, node.get('type'), 'calc')
        node.set_text(to_text(result))

    def _output(self, node: Node):
        template = node.get('template')
        if template is not None:
            renderer = pystache.Renderer(escape=lambda u: u)
            text = renderer.render(template, to_wire(self.env.visible_bindings()))
        else:
            text = to_text(self.evaluate(node.get('expression')))
        node.set_text(text)

    # --- Control flow ---

    async def _if(self, node: Node):
        else_node = node.sibling_tagged('else')
        condition = self.evaluate(self._require(node, 'condition'))
        if is_truthy(condition):
            signal = await self.process_children(node)
            if signal is not None:
                return signal
            node.unwrap()
            if else_node is not None:
                else_node.remove()
        else:
            node.remove()
            if else_node is not None:
                signal = await self.process_children(else_node)
                if signal is not None:
                    return signal
                else_node.unwrap()
        return None

    async def _tick(self, count: int) -> int:
        count += 1
        if self.max_loop_iters is not None and count > self.max_loop_iters:
            raise LoopLimitExceeded(f"Loop iteration limit exceeded ({self.max_loop_iters})")
        # Cooperative yield so long loops don't starve other tasks.
        if count % 100 == 0:
            await asyncio.sleep(0)
        return count

    async def _iterate(self, node: Node, condition: str, step: Optional[str]):
        template = node.clone()
        node.clear_children()
        count = 0
        while is_truthy(self.evaluate(condition)):
            count = await self._tick(count)
            iteration = template.clone()
            signal = await self.process_children(iteration)
            if signal is BREAK:
                break
            if signal is not CONTINUE:
                for child in list(iteration.children):
                    node.append_child(child)
            if step:
                self.run_statement(step)
        node.unwrap()

    async def _for(self, node: Node):
        condition = self._require(node, 'condition')
        init = node.get('init')
        if init and init.strip():
            self.run_statement(init)
        await self._iterate(node, condition, node.get('increment'))

    async def _while(self, node: Node):
        condition = self._require(node, 'condition')
        await self._iterate(node, condition, None)

    async def _scope(self, node: Node):
        with self.env.scoped():
            signal = await self.process_children(node)
            if signal is not None:
                return signal
            node.unwrap()
        return None

    async def _try(self, node: Node):
        catch_node = node.sibling_tagged('catch')
        try:
            signal = await self.process_children(node)
        except Exception as e:
            node.remove()
            if catch_node is None:
                raise
            self._dbg("Caught", repr(e), "in", self.trail())
            self.env.set(catch_node.get('var') or 'e', ErrorRecord.from_exception(e))
            signal = await self.process_children(catch_node)
            if signal is not None:
                return signal
            catch_node.unwrap()
            return None
        if signal is not None:
            return signal
        node.unwrap()
        if catch_node is not None:
            catch_node.remove()
        return None

    # --- Functions ---

    def _func(self, node: Node):
        name = self._require(node, 'name')
        params = [p.strip() for p in (node.get('params') or '').split(',') if p.strip()]
        self.functions[name] = FunctionDef(name, params, node.clone(), self.env.snapshot())
        node.remove()

    async def _call(self, node: Node):
        name = self._require(node, 'func')
        fn = self.functions.get(name)
        if fn is None:
            raise FunctionNotFound(name)
        args = self.expr.evaluate_list(node.get('args'))
        if len(args) != fn.arity:
            raise ArgumentCountMismatch(name, fn.arity, len(args))

        result = None
        with self.env.call_frame(fn.closure):
            for param, arg in zip(fn.params, args):
                self.env.set(param, arg)
            body = fn.body.clone()
            signal = await self.process_children(body)
            if signal is None:
                for ret in body.find_all('return'):
                    expression = ret.get('expression')
                    result = self.evaluate(expression) if expression else None
                    ret.remove()
        if signal is not None:
            return signal

        var = node.get('var')
        if var:
            self.env.set(var, result)
            node.remove()
        else:
            node.replace_with(list(body.children))
        return None
