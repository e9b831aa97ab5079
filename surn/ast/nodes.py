"""AST node definitions.

A single `AstNode` type represents every construct of the unified source
language. The concrete construct is identified by its `kind` string so the
translation engine stays independent of any grammar; the coarse category
(statement, expression, macro) is derived from a kind table.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Any

from surn.errors import AstStructureError, MissingProperty

_MISSING: Any = object()


class NodeCategory(IntEnum):
    """Node categories, numbered as in the native extension ABI."""

    STATEMENT = 1
    EXPRESSION = 2
    MACRO = 3


_STATEMENT_KINDS = {
    "Program",
    "Block",
    "VariableDeclaration",
    "StaticDeclaration",
    "FunctionDeclaration",
    "ReturnStatement",
    "ImportStatement",
    "NamespaceStatement",
    "TypeDefinition",
    "ObjectStatement",
    "Class",
    "ClassProperty",
    "ExpressionStatement",
}

_MACRO_KINDS = {"Macro", "MacroInvocation"}


def category_of(kind: str) -> NodeCategory:
    """Return the category for a node kind. Unknown kinds are expressions."""
    if kind in _STATEMENT_KINDS:
        return NodeCategory.STATEMENT
    if kind in _MACRO_KINDS:
        return NodeCategory.MACRO
    return NodeCategory.EXPRESSION


class Capability(Enum):
    """Shape of a node as seen by capability checks in rule bodies."""

    CLASS = auto()
    PLAIN_OBJECT = auto()
    OTHER = auto()

    @classmethod
    def of(cls, value: Any) -> "Capability":
        if not isinstance(value, AstNode):
            return cls.OTHER
        if value.kind in ("Class", "ClassDeclaration"):
            return cls.CLASS
        if value.kind in ("ObjectStatement", "ObjectExpression", "Object"):
            return cls.PLAIN_OBJECT
        return cls.OTHER


@dataclass(frozen=True)
class SourcePosition:
    """Location of a node in its compilation unit."""

    file: str | None = None
    line: int | None = None
    column: int | None = None

    def __str__(self) -> str:
        parts = [self.file or "<unknown>"]
        if self.line is not None:
            parts.append(str(self.line))
            if self.column is not None:
                parts.append(str(self.column))
        return ":".join(parts)


class ChildrenView:
    """Restartable, lazy view over a node's children."""

    def __init__(self, node: "AstNode"):
        self._node = node

    def __iter__(self) -> Iterator["AstNode"]:
        return iter(tuple(self._node._children))

    def __len__(self) -> int:
        return len(self._node._children)


def _holds_node(items: Any) -> bool:
    return any(
        isinstance(item, AstNode)
        or (isinstance(item, list | tuple) and _holds_node(item))
        for item in items
    )


def _owned_nodes(value: Any) -> list["AstNode"]:
    """Nodes held by a property value: the value itself or a flat sequence.

    Raises:
        AstStructureError: If a node sits inside a nested sequence
    """
    if not isinstance(value, list | tuple):
        return [value] if isinstance(value, AstNode) else []
    nodes = []
    for item in value:
        if isinstance(item, AstNode):
            nodes.append(item)
        elif isinstance(item, list | tuple) and _holds_node(item):
            raise AstStructureError("Nodes cannot be stored in nested sequences")
    return nodes


class AstNode:
    """A node of the unified-source AST.

    Children and node-valued properties are owned by this node: a node can
    only be attached to one parent and may never become its own ancestor.
    """

    __slots__ = (
        "kind",
        "name",
        "type",
        "token",
        "position",
        "_properties",
        "_children",
        "_parent",
    )

    def __init__(
        self,
        kind: str,
        name: str | None = None,
        properties: dict[str, Any] | None = None,
        children: list["AstNode"] | None = None,
        type: str | None = None,
        token: str | None = None,
        position: SourcePosition | None = None,
    ):
        self.kind = kind
        self.name = name
        self.type = type
        self.token = token
        self.position = position
        self._properties: dict[str, Any] = {}
        self._children: list[AstNode] = []
        self._parent: AstNode | None = None
        for key, value in (properties or {}).items():
            self.set(key, value)
        for child in children or []:
            self.add_child(child)

    def __repr__(self) -> str:
        label = f"{self.kind} {self.name!r}" if self.name else self.kind
        return f"<AstNode {label}>"

    @property
    def category(self) -> NodeCategory:
        return category_of(self.kind)

    @property
    def parent(self) -> "AstNode | None":
        return self._parent

    @property
    def properties(self) -> dict[str, Any]:
        """A shallow copy of the properties, in declaration order."""
        return dict(self._properties)

    @property
    def children(self) -> list["AstNode"]:
        return list(self._children)

    # --- Ownership ---

    def ancestors(self) -> Iterator["AstNode"]:
        node = self._parent
        while node is not None:
            yield node
            node = node._parent

    def _adopt(self, value: Any) -> None:
        nodes = _owned_nodes(value)
        seen: set[int] = set()
        for node in nodes:
            if id(node) in seen:
                raise AstStructureError(
                    f"{node!r} appears more than once under {self!r}", node
                )
            seen.add(id(node))
            if node is self or any(a is node for a in self.ancestors()):
                raise AstStructureError(
                    f"Attaching {node!r} to {self!r} would create a cycle", node
                )
            if node._parent is not None:
                raise AstStructureError(
                    f"{node!r} is already owned by {node._parent!r}", node
                )
        for node in nodes:
            node._parent = self

    def _release(self, value: Any) -> None:
        for node in _owned_nodes(value):
            if node._parent is self:
                node._parent = None

    def add_child(self, child: "AstNode") -> "AstNode":
        self._adopt(child)
        self._children.append(child)
        return child

    def set(self, name: str, value: Any) -> None:
        """Set a property. Lists are stored as tuples so they stay read-only."""
        if isinstance(value, list):
            value = tuple(value)
        self._adopt(value)
        if name in self._properties:
            self._release(self._properties[name])
        self._properties[name] = value

    def detach(self) -> "AstNode":
        """Remove this node from its parent and return it."""
        if self._parent is not None:
            self._parent._remove(self)
        return self

    def _remove(self, child: "AstNode") -> None:
        for i, existing in enumerate(self._children):
            if existing is child:
                del self._children[i]
                child._parent = None
                return
        for key, value in self._properties.items():
            if value is child:
                self._properties[key] = None
                child._parent = None
                return
            if isinstance(value, tuple) and any(v is child for v in value):
                self._properties[key] = tuple(v for v in value if v is not child)
                child._parent = None
                return

    def replace_child(self, old: "AstNode", new: "AstNode") -> None:
        """Swap `old` for `new` in the same slot, keeping parent linkage."""
        if old._parent is not self:
            raise AstStructureError(f"{old!r} is not a child of {self!r}", old)
        if new is old:
            return
        self._adopt(new)
        for i, existing in enumerate(self._children):
            if existing is old:
                self._children[i] = new
                old._parent = None
                return
        for key, value in self._properties.items():
            if value is old:
                self._properties[key] = new
                old._parent = None
                return
            if isinstance(value, tuple) and any(v is old for v in value):
                self._properties[key] = tuple(new if v is old else v for v in value)
                old._parent = None
                return
        new._parent = None
        raise AstStructureError(f"{old!r} not found in {self!r}", old)

    def replace_with(self, new: "AstNode") -> "AstNode":
        if self._parent is None:
            raise AstStructureError(f"{self!r} has no parent to replace it in", self)
        self._parent.replace_child(self, new)
        return new

    # --- Lookup ---

    def has(self, name: str) -> bool:
        return name in self._properties

    def get(self, name: str, default: Any = _MISSING) -> Any:
        """Look up a property by name.

        The attributes `kind`, `name`, `type` (alias `ty`), `token`,
        `position` and `children` are reachable through the same lookup.

        Raises:
            MissingProperty: If the property is absent and no default is given
        """
        if name == "kind":
            return self.kind
        if name == "name":
            return self.name
        if name in ("type", "ty"):
            return self.type
        if name == "token":
            return self.token
        if name == "position":
            return self.position
        if name == "children":
            return tuple(self._children)
        if name in self._properties:
            return self._properties[name]
        if default is not _MISSING:
            return default
        raise MissingProperty(name, self)

    def iter_children(self) -> ChildrenView:
        return ChildrenView(self)

    def walk(self) -> Iterator["AstNode"]:
        """Depth-first, pre-order walk over this subtree in source order."""
        yield self
        for value in self._properties.values():
            for node in _nodes_in(value):
                yield from node.walk()
        for child in self._children:
            yield from child.walk()

    def clone(self) -> "AstNode":
        """Deep copy of this subtree, detached from any parent."""
        return AstNode(
            self.kind,
            name=self.name,
            properties={k: _clone_value(v) for k, v in self._properties.items()},
            children=[c.clone() for c in self._children],
            type=self.type,
            token=self.token,
            position=self.position,
        )


def _nodes_in(value: Any) -> Iterator[AstNode]:
    if isinstance(value, AstNode):
        yield value
    elif isinstance(value, tuple):
        for item in value:
            if isinstance(item, AstNode):
                yield item


def _clone_value(value: Any) -> Any:
    if isinstance(value, AstNode):
        return value.clone()
    if isinstance(value, tuple):
        return [_clone_value(v) for v in value]
    return value
