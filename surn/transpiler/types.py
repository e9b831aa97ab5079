"""Semantic types and their representation in target languages.

The type engine answers two questions for the traversal engine: what is the
semantic type of a node, and can the target language spell it. It never
raises on its own: an unrepresentable type is reported with an `Unsupported`
tag and the caller decides whether to erase it or fail.
"""

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from surn.ast.nodes import AstNode

# Built-in type names of the unified source language
PRIMITIVES = frozenset(
    {
        "byte",
        "short",
        "int",
        "long",
        "float",
        "double",
        "bool",
        "string",
        "any",
        "array",
        "number",
        "void",
        "u8",
        "u16",
        "u32",
        "u64",
        "i8",
        "i16",
        "i32",
        "i64",
        "f32",
        "f64",
    }
)


@dataclass(frozen=True)
class SemanticType:
    """Base for the semantic type variants."""


@dataclass(frozen=True)
class Primitive(SemanticType):
    name: str


@dataclass(frozen=True)
class Named(SemanticType):
    class_name: str


@dataclass(frozen=True)
class Inferred(SemanticType):
    """Type to be inferred from an expression no rule could type."""

    from_expression: Any = field(compare=False)


@dataclass(frozen=True)
class Erased(SemanticType):
    """No type: the construct carries none, or it has been erased."""


ERASED = Erased()


@dataclass(frozen=True)
class Unsupported:
    """Tag returned when a target cannot spell a type.

    The caller must erase or box the construct.
    """

    semantic_type: SemanticType
    reason: str


@dataclass(frozen=True)
class TypeView:
    """What a nested plug over a type sees.

    Attributes:
        name: Target spelling, empty when the type is erased
        source: Source-language type name
        semantic: The resolved semantic type
    """

    name: str
    source: str
    semantic: SemanticType

    @property
    def erased(self) -> bool:
        return not self.name

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class TypeSystem:
    """Type capabilities of one target language.

    Attributes:
        typing: "static" or "dynamic"
        mappings: Source type name -> target spelling
        erase_unsupported: Erase unrepresentable types instead of failing
    """

    typing: str = "dynamic"
    mappings: dict[str, str] = field(default_factory=dict)
    erase_unsupported: bool = True

    @classmethod
    def create(
        cls, typing: str, mappings: dict[str, str] | None = None, erase: bool | None = None
    ) -> "TypeSystem":
        """Build a type system; erasure defaults to on for dynamic targets."""
        if erase is None:
            erase = typing == "dynamic"
        return cls(typing=typing, mappings=dict(mappings or {}), erase_unsupported=erase)

    @property
    def is_static(self) -> bool:
        return self.typing == "static"


def _literal_type(value: Any) -> SemanticType:
    match value:
        case bool():
            return Primitive("bool")
        case int():
            return Primitive("int")
        case float():
            return Primitive("float")
        case str():
            return Primitive("string")
        case list() | tuple():
            return Primitive("array")
        case _:
            return ERASED


class TypeEngine:
    """Resolves semantic types and their target spelling for one language."""

    def __init__(self, type_system: TypeSystem):
        self.type_system = type_system

    def type_of(self, node: Any) -> SemanticType:
        """Return the semantic type of a node.

        A declared type wins, then the type of a literal (the node itself or
        its `value`), then the type of a typed `value` expression. An untyped
        value expression gives `Inferred`; a node without any of these is
        `Erased`.
        """
        if not isinstance(node, AstNode):
            return ERASED
        if node.type:
            return self.declared(node.type)
        if node.kind == "Literal":
            return _literal_type(node.get("value", None))
        value = node.get("value", None)
        if isinstance(value, AstNode):
            inner = self.type_of(value)
            if isinstance(inner, Primitive | Named):
                return inner
            return Inferred(value)
        return ERASED

    def declared(self, name: str) -> SemanticType:
        if name in PRIMITIVES:
            return Primitive(name)
        return Named(name)

    def represent(self, semantic_type: SemanticType) -> str | Unsupported:
        """Return the target spelling of a type, or an `Unsupported` tag."""
        ts = self.type_system
        match semantic_type:
            case Erased():
                return ""
            case Primitive(name):
                if name in ts.mappings:
                    return ts.mappings[name]
                if ts.is_static:
                    return name
                return Unsupported(semantic_type, f"dynamic target has no type '{name}'")
            case Named(class_name):
                if ts.is_static:
                    return ts.mappings.get(class_name, class_name)
                return Unsupported(
                    semantic_type, f"dynamic target cannot declare class type '{class_name}'"
                )
            case Inferred():
                if "inferred" in ts.mappings:
                    return ts.mappings["inferred"]
                return Unsupported(semantic_type, "type cannot be inferred")
        return Unsupported(semantic_type, f"unknown type {semantic_type!r}")

    def name_of(self, semantic_type: SemanticType) -> str:
        """Source-language name of a type; empty for erased or inferred types."""
        match semantic_type:
            case Primitive(name):
                return name
            case Named(class_name):
                return class_name
        return ""

    def view(self, node: Any) -> TypeView | Unsupported:
        """Resolve a node's type for rendering."""
        semantic = self.type_of(node)
        spelled = self.represent(semantic)
        if isinstance(spelled, Unsupported):
            logger.debug(f"Type of {node!r} is not representable: {spelled.reason}")
            return spelled
        return TypeView(spelled, self.name_of(semantic), semantic)
