"""
The HScript runtime: the collaborator tag library (input, debug, http,
import, on and the codec tags), and the ScriptRunner that hosts one
Interpreter per runner and packages each run into an ExecutionResult.
"""
import asyncio
import copy
import inspect
import json
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from hscript import hscript_http
from hscript.hscript_datatypes import (
    CodecError, ErrorRecord, FunctionDef, HScriptError, ImportFailure, MissingAttribute,
    TypeMismatchError, normalize_value,
)
from hscript.hscript_file import is_remote, read_source, resolve_locator
from hscript.hscript_interpreter import Interpreter
from hscript.hscript_printer import Printer, to_text, to_wire
from hscript.hscript_serialize import deserialize, serialize
from hscript.hscript_tree import Node, parse_markup

IMPORT_TYPES = ('script', 'html', 'module')


def tag_handler(func):
    """A decorator to explicitly mark host methods as HScript tags."""
    func._is_hscript_tag = True
    return func


# ===================================================================
# Tag library
# ===================================================================

class TagLib:
    """Collaborator tags. Every `_name` method is bound as the `name` tag."""

    def __init__(self, runner: 'ScriptRunner'):
        self.runner = runner
        self.interp: Interpreter = runner.interpreter
        self.printer = Printer()

    @property
    def env(self):
        return self.interp.env

    def contain(self, node: Node, label: str, exc: Exception):
        """Turn a data/IO failure into an error value or inline error text."""
        self.interp.emit('stderr', f"{label}: {exc}")
        var = node.get('var')
        if var:
            self.env.set(var, ErrorRecord.from_exception(exc))
            node.remove()
        else:
            node.set_text(f"Error: {exc}")

    def deliver(self, node: Node, value: Any, text: Callable[[Any], str] = to_text):
        var = node.get('var')
        if var:
            self.env.set(var, value)
            node.remove()
        else:
            node.set_text(text(value))

    # --- Prompt and diagnostics ---

    async def _input(self, node: Node):
        var = node.get('var')
        if not var:
            raise MissingAttribute(node.tag, 'var')
        value = await self.runner.prompt(node.get('prompt') or "")
        self.env.set(var, value)
        node.remove()

    def _debug(self, node: Node):
        var = node.get('var')
        if var:
            if var not in self.env:
                message = f"{var} is undefined"
            else:
                message = f"{var} = {self.printer.pformat(self.env.get(var))}"
        else:
            message = f"Debug point reached: {self.interp.trail()}"
        self.interp.emit('debug', message)
        node.remove()

    # --- Network ---

    async def _http(self, node: Node):
        url = node.get('url')
        try:
            if not url:
                raise MissingAttribute(node.tag, 'url')
            method = (node.get('method') or 'GET').strip().upper()
            headers = {}
            if node.get('headers'):
                headers = self.interp.evaluate(node.get('headers'))
                if not isinstance(headers, dict):
                    raise TypeMismatchError("http headers must evaluate to a mapping")
                headers = {k: to_text(v) for k, v in headers.items()}
            data = None
            if node.get('body') and method not in hscript_http.NO_BODY_METHODS:
                data = json.dumps(to_wire(self.interp.evaluate(node.get('body'))), ensure_ascii=False)
                if not any(k.lower() == 'content-type' for k in headers):
                    headers['Content-Type'] = 'application/json'
            config: Dict[str, Any] = {'headers': headers}
            if node.get('timeout'):
                config['timeout'] = float(node.get('timeout'))
            if node.get('retries'):
                config['retries'] = int(node.get('retries'))
            self.interp._dbg("http", method, url)
            result = normalize_value(await hscript_http.http_request(method, url, config=config, data=data))
        except Exception as e:
            self.contain(node, f"HTTP request failed: {url}", e)
            return
        self.deliver(node, result, lambda v: json.dumps(to_wire(v), ensure_ascii=False))

    # --- Codecs ---

    def run_codec(self, node: Node, fmt: str):
        action = (node.get('action') or 'parse').strip().lower()
        source = node.get('source')
        if source is None and fmt == 'xml' and node.element_children():
            # Inline XML arrives already parsed into child elements
            source = "".join(child.to_markup() for child in node.children).strip()
        elif source is None:
            source = node.text_content().strip()
        try:
            if action == 'parse':
                result = deserialize(source, fmt)
            elif action == 'stringify':
                pretty = (node.get('pretty') or '').strip().lower() == 'true'
                result = serialize(self.interp.evaluate(source), fmt, pretty=pretty)
            else:
                raise CodecError(fmt, f"Invalid action: {action}")
        except Exception as e:
            self.contain(node, f"{fmt.upper()} processing error", e)
            return
        self.deliver(node, result)

    def _json(self, node: Node):
        self.run_codec(node, 'json')

    def _csv(self, node: Node):
        self.run_codec(node, 'csv')

    def _ini(self, node: Node):
        self.run_codec(node, 'ini')

    def _xml(self, node: Node):
        self.run_codec(node, 'xml')

    def _yaml(self, node: Node):
        self.run_codec(node, 'yaml')

    def _yml(self, node: Node):
        self.run_codec(node, 'yaml')

    def _toml(self, node: Node):
        self.run_codec(node, 'toml')

    # --- Import ---

    async def fetch(self, src: str) -> tuple[str, str]:
        if is_remote(src):
            text = await hscript_http.http_request('GET', src, config={'raw': True})
            return to_text(text), src
        return await read_source(src, self.runner.source_dir)

    async def _import(self, node: Node):
        src = node.get('src')
        kind = (node.get('type') or 'script').strip().lower()
        namespace = node.get('namespace')
        try:
            if not src:
                raise ImportFailure("<import> requires a 'src' attribute")
            if kind not in IMPORT_TYPES:
                raise ImportFailure(f"Unknown import type '{kind}'")
            if kind == 'module':
                await self.import_module(src, namespace or 'imported')
                node.remove()
                return
            text, location = await self.fetch(src)
            fragment = parse_markup(text)
            if namespace:
                before = dict(self.interp.functions)
                with self.env.scoped() as scope:
                    await self.run_fragment(fragment, location)
                self.env.set(namespace, dict(scope))
                self.namespace_functions(before, namespace)
            else:
                await self.run_fragment(fragment, location)
        except Exception as e:
            if not isinstance(e, ImportFailure):
                e = ImportFailure(f"{type(e).__name__}: {e}")
            self.interp.emit('stderr', f"Import failed from {src}: {e}")
            node.remove()
            return
        if kind == 'html':
            node.replace_with(list(fragment.children))
        else:
            node.remove()

    async def run_fragment(self, fragment: Node, location: str):
        # Relative imports inside the fragment resolve against its own directory
        saved = self.runner.source_dir
        if not is_remote(location):
            self.runner.source_dir = os.path.dirname(location) or saved
        try:
            signal = await self.interp.process_children(fragment)
        finally:
            self.runner.source_dir = saved
        if signal is not None:
            raise HScriptError(f"'{signal.kind}' outside of a for/while loop")

    def namespace_functions(self, before: Dict[str, FunctionDef], namespace: str):
        """Move functions defined by a namespaced import under `namespace.name`."""
        for name, fn in list(self.interp.functions.items()):
            if before.get(name) is fn:
                continue
            del self.interp.functions[name]
            if name in before:
                self.interp.functions[name] = before[name]
            self.interp.functions[f"{namespace}.{name}"] = fn

    async def import_module(self, src: str, namespace: str):
        runner = self.runner
        key = src if is_remote(src) else resolve_locator(src, runner.source_dir)
        cached = runner.module_cache.get(key)
        if cached is None:
            if key in runner.loading_modules:
                raise ImportFailure(f"Circular import of {src}")
            text, location = await self.fetch(src)
            child = ScriptRunner(host_object=runner.host_object)
            child.module_cache = runner.module_cache
            child.loading_modules = runner.loading_modules | {key}
            child.prompt_handler = runner.prompt_handler
            if not is_remote(location):
                child.source_dir = os.path.dirname(location)
            result = await child.handle_script(text)
            if result.status != 'success':
                raise ImportFailure(result.error_message or "module failed")
            cached = (copy.deepcopy(child.interpreter.env.global_scope), dict(child.interpreter.functions))
            runner.module_cache[key] = cached
        bindings, functions = cached
        self.env.set(namespace, copy.deepcopy(bindings))
        for name, fn in functions.items():
            self.interp.functions[f"{namespace}.{name}"] = fn

    # --- Events ---

    def _on(self, node: Node):
        event = node.get('event')
        selector = node.get('selector')
        if not event:
            raise MissingAttribute(node.tag, 'event')
        if not selector:
            raise MissingAttribute(node.tag, 'selector')
        body = node.clone()
        node.remove()
        document = self.interp.document
        if document is None:
            return
        interp = self.interp

        async def listener(target: Node, detail: Any = None):
            with interp.env.scoped():
                interp.env.set('event', {
                    'type': event,
                    'target': target.tag,
                    'id': target.get('id', ''),
                    'detail': normalize_value(detail),
                })
                signal = await interp.process_children(body.clone())
            if signal is not None:
                raise HScriptError(f"'{signal.kind}' outside of a for/while loop")

        targets = document.select(selector)
        interp._dbg("on", event, selector, "->", len(targets), "targets")
        for target in targets:
            target.add_event_listener(event, listener)


# ===================================================================
# Script Execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Optional[str] = None
    document: Optional[Node] = None
    error_message: Optional[str] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        return str(self.error_message or "Unknown error")

    @property
    def text(self) -> str:
        """The rendered document without markup."""
        return self.document.text_content() if self.document is not None else ""


class ScriptRunner:
    """Parses markup and executes the HScript tags in it.

    One runner keeps its interpreter state (variables and functions) across
    calls to handle_script, so a REPL can feed it fragment by fragment.
    """

    def __init__(self, host_object: Any = None):
        self.host_object = host_object
        self.source_dir: Optional[str] = None  # directory of the current source file, if known
        self.prompt_handler: Optional[Callable[[str], Any]] = None
        self.module_cache: Dict[str, Any] = {}
        self.loading_modules: frozenset = frozenset()
        self.interpreter = Interpreter()

        taglib = TagLib(self)
        for name, member in inspect.getmembers(taglib):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                self.interpreter.register_tag(name[1:], member)
        self._host_tags: set[str] = set()

    def _bind_host_tags(self):
        """Bind @tag_handler methods of the host as tags (underscores become dashes)."""
        for tag in self._host_tags:
            self.interpreter.handlers.pop(tag, None)
        self._host_tags = set()

        host = self.host_object
        if not host:
            return
        for name, member in inspect.getmembers(host):
            if not callable(member):
                continue
            is_tag = getattr(member, "_is_hscript_tag", False)
            if not is_tag:
                func = getattr(member, "__func__", None)
                if func is not None:
                    is_tag = getattr(func, "_is_hscript_tag", False)
            if not is_tag:
                continue
            tag = name.replace("_", "-").lower()
            self.interpreter.register_tag(tag, lambda node, m=member: m(node, self.interpreter))
            self._host_tags.add(tag)

    async def prompt(self, text: str) -> str:
        handler = self.prompt_handler
        if handler is None:
            loop = asyncio.get_running_loop()
            value = await loop.run_in_executor(None, _read_line, text)
        else:
            value = handler(text)
            if inspect.isawaitable(value):
                value = await value
        return "" if value is None else str(value).rstrip("\n")

    def _format_runtime_error(self, e: Exception) -> str:
        match e:
            case HScriptError():
                msg = f"{type(e).__name__}: {e}"
            case RecursionError():
                msg = f"RecursionLimitExceeded: {e}"
            case _:
                msg = f"InternalError: {type(e).__name__}: {e}"
        trail = getattr(e, 'hscript_trail', None)
        if trail:
            msg += "\nHScript stacktrace: " + " > ".join(trail)
        return msg

    async def run_document(self, document: Node) -> ExecutionResult:
        """Interpret an already-built tree in place."""
        interp = self.interpreter
        # Fresh effects list per run; earlier results keep their own
        interp.side_effects = []
        interp.call_stack.clear()
        self._bind_host_tags()
        try:
            await interp.run(document)
        except Exception as e:
            err_msg = self._format_runtime_error(e)
            interp.emit('stderr', err_msg)
            interp._dbg(err_msg)
            return ExecutionResult(
                status='error',
                value=document.to_markup(),
                document=document,
                error_message=err_msg,
                side_effects=interp.side_effects,
            )
        return ExecutionResult(
            status='success',
            value=document.to_markup(),
            document=document,
            side_effects=interp.side_effects,
        )

    async def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a markup source."""
        return await self.run_document(parse_markup(source_code))

    async def dispatch_event(self, target: Union[str, Node], event: str, detail: Any = None) -> int:
        """Fire `event` on every node matching target. Returns the number of handlers run.

        Handler failures are reported on stderr and do not stop other handlers.
        """
        interp = self.interpreter
        if isinstance(target, Node):
            nodes = [target]
        elif interp.document is None:
            nodes = []
        else:
            nodes = interp.document.select(target)
        fired = 0
        for node in nodes:
            for listener in list(node.listeners.get(event, [])):
                fired += 1
                try:
                    await listener(node, detail)
                except Exception as e:
                    interp.emit('stderr', f"Event handler for '{event}' failed: {self._format_runtime_error(e)}")
        return fired


def _read_line(text: str) -> str:
    if text:
        print(text, end="", file=sys.stderr, flush=True)
    line = sys.stdin.readline()
    return line.rstrip("\n")
