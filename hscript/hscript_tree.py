"""
The markup tree consumed by the interpreter.

A Node is either an element (tag, attributes, children) or a text node
(tag '#text' with a text payload). The interpreter only relies on the
structural primitives defined here: remove, replace_with, unwrap, clone,
set_text, append_child and next-sibling lookup.
"""
import html
import re
from html.parser import HTMLParser
from typing import Callable, Dict, Iterator, List, Optional

TEXT = '#text'
DOCUMENT = '#document'

# HTML void elements plus the script tags that never carry a body.
VOID_TAGS = {
    'area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input', 'link',
    'meta', 'source', 'track', 'wbr',
    'store', 'man', 'break', 'continue', 'debug',
    'calc', 'output', 'call', 'return',
}


class Node:
    """Represents a DOM-like node.
    - tag: lower-cased element name, '#text' for text nodes, '#document' for roots
    - attrs: dict of attributes (names lower-cased)
    - children: ordered list of child Nodes
    - parent: reference to the parent Node (None when detached)
    - text: payload for text nodes
    """

    __slots__ = ("tag", "attrs", "children", "parent", "text", "listeners")

    def __init__(self, tag: str, attrs: Optional[Dict[str, str]] = None, text: Optional[str] = None):
        if not tag:
            raise ValueError("Empty tag passed to Node constructor")
        self.tag = tag.lower()
        self.attrs: Dict[str, str] = {}
        for k, v in (attrs or {}).items():
            lk = k.lower()
            if lk not in self.attrs:
                self.attrs[lk] = "" if v is None else v
        self.children: List['Node'] = []
        self.parent: Optional['Node'] = None
        self.text = text if text is not None else ""
        # event name -> handlers; populated by the 'on' tag
        self.listeners: Dict[str, List[Callable]] = {}

    @classmethod
    def text_node(cls, text: str) -> 'Node':
        return cls(TEXT, text=text)

    @property
    def is_text(self) -> bool:
        return self.tag == TEXT

    @property
    def is_element(self) -> bool:
        return self.tag not in (TEXT, DOCUMENT)

    # --- Attributes ---

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.attrs.get(name.lower(), default)

    def has_attr(self, name: str) -> bool:
        return name.lower() in self.attrs

    def set_attr(self, name: str, value: str):
        self.attrs[name.lower()] = value

    # --- Structure ---

    def index_in_parent(self) -> int:
        if self.parent is None:
            return -1
        for i, child in enumerate(self.parent.children):
            if child is self:
                return i
        return -1

    def append_child(self, child: 'Node') -> 'Node':
        if any(a is child for a in _ancestors(self)):
            raise ValueError(f"Adding {child.tag} as child of {self.tag} would create circular reference")
        child.remove()
        child.parent = self
        self.children.append(child)
        return child

    def insert_at(self, index: int, nodes: List['Node']):
        for offset, n in enumerate(nodes):
            n.remove()
            n.parent = self
            self.children.insert(index + offset, n)

    def remove(self):
        """Detach this node from its parent."""
        parent = self.parent
        if parent is None:
            return
        idx = self.index_in_parent()
        if idx >= 0:
            del parent.children[idx]
        self.parent = None

    def replace_with(self, nodes: List['Node']):
        """Splice nodes into the parent at this node's position, then detach this node."""
        parent = self.parent
        nodes = [n for n in nodes if n is not self]
        if parent is None:
            for n in nodes:
                n.remove()
            return
        # Detach the replacements first; they may currently be our own children.
        for n in nodes:
            n.remove()
        idx = self.index_in_parent()
        self.remove()
        parent.insert_at(idx, nodes)

    def unwrap(self):
        """Replace this node with its own children."""
        self.replace_with(list(self.children))

    def clear_children(self):
        for child in self.children:
            child.parent = None
        self.children = []

    def set_text(self, text: str):
        """Replace all children with a single text node (innerText semantics)."""
        if self.is_text:
            self.text = text
            return
        self.clear_children()
        if text:
            self.append_child(Node.text_node(text))

    def text_content(self) -> str:
        if self.is_text:
            return self.text
        return "".join(child.text_content() for child in self.children)

    def clone(self) -> 'Node':
        """Deep copy with no shared mutable state; the copy is detached."""
        copy = Node(self.tag, dict(self.attrs), text=self.text)
        for child in self.children:
            c = child.clone()
            c.parent = copy
            copy.children.append(c)
        return copy

    # --- Navigation ---

    def element_children(self) -> List['Node']:
        return [c for c in self.children if not c.is_text]

    def next_element_sibling(self) -> Optional['Node']:
        parent = self.parent
        if parent is None:
            return None
        idx = self.index_in_parent()
        for sib in parent.children[idx + 1:]:
            if not sib.is_text:
                return sib
        return None

    def sibling_tagged(self, tag: str) -> Optional['Node']:
        """The immediately following element sibling when it carries tag."""
        sib = self.next_element_sibling()
        if sib is not None and sib.tag == tag.lower():
            return sib
        return None

    def iter_descendants(self) -> Iterator['Node']:
        """Pre-order, document order, excluding self."""
        for child in list(self.children):
            yield child
            yield from child.iter_descendants()

    def find_all(self, tag: str) -> List['Node']:
        tag = tag.lower()
        return [n for n in self.iter_descendants() if n.tag == tag]

    def root(self) -> 'Node':
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def matches(self, selector: str) -> bool:
        """Simple selector: tag, #id, .class, or a compound like div#main.note."""
        if not self.is_element:
            return False
        m = _SELECTOR_RE.fullmatch(selector.strip())
        if not m or not selector.strip():
            return False
        tag, rest = m.group(1), m.group(2) or ""
        if tag and tag != '*' and tag.lower() != self.tag:
            return False
        classes = self.get('class', '').split()
        for kind, name in re.findall(r'([#.])([\w-]+)', rest):
            if kind == '#' and self.get('id') != name:
                return False
            if kind == '.' and name not in classes:
                return False
        return True

    def select(self, selector: str) -> List['Node']:
        """All descendants matching any of the comma-separated selectors."""
        parts = [p.strip() for p in selector.split(',') if p.strip()]
        return [n for n in self.iter_descendants() if any(n.matches(p) for p in parts)]

    # --- Events ---

    def add_event_listener(self, event: str, handler: Callable):
        self.listeners.setdefault(event, []).append(handler)

    # --- Output ---

    def to_markup(self) -> str:
        if self.is_text:
            return html.escape(self.text, quote=False)
        inner = "".join(child.to_markup() for child in self.children)
        if self.tag == DOCUMENT:
            return inner
        attrs = "".join(f' {k}="{html.escape(v, quote=True)}"' for k, v in self.attrs.items())
        if self.tag in VOID_TAGS and not self.children:
            return f"<{self.tag}{attrs}>"
        return f"<{self.tag}{attrs}>{inner}</{self.tag}>"

    def __repr__(self):
        if self.is_text:
            return f"<Text {self.text!r}>"
        return f"<Node {self.tag} attrs={self.attrs!r} children={len(self.children)}>"


_SELECTOR_RE = re.compile(r'([A-Za-z][\w-]*|\*)?((?:[#.][\w-]+)*)')


def _ancestors(node: Node):
    """Yields node and its ancestors."""
    cur = node
    while cur is not None:
        yield cur
        cur = cur.parent


class _TreeBuilder(HTMLParser):
    """Builds a Node tree from a markup fragment."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root = Node(DOCUMENT)
        self.stack: List[Node] = [self.root]

    def handle_starttag(self, tag, attrs):
        node = Node(tag, {k: v for k, v in attrs})
        self.stack[-1].append_child(node)
        if node.tag not in VOID_TAGS:
            self.stack.append(node)

    def handle_startendtag(self, tag, attrs):
        node = Node(tag, {k: v for k, v in attrs})
        self.stack[-1].append_child(node)

    def handle_endtag(self, tag):
        tag = tag.lower()
        # Close back to the matching open element; ignore stray end tags.
        for i in range(len(self.stack) - 1, 0, -1):
            if self.stack[i].tag == tag:
                del self.stack[i:]
                return

    def handle_data(self, data):
        if data:
            self.stack[-1].append_child(Node.text_node(data))


def parse_markup(source: str) -> Node:
    """Parse markup text into a detached '#document' root node."""
    builder = _TreeBuilder()
    builder.feed(source)
    builder.close()
    return builder.root
