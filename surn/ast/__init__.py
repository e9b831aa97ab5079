"""In-memory AST model shared by parsers and the translation engine."""

from surn.ast.nodes import (
    AstNode,
    Capability,
    NodeCategory,
    SourcePosition,
    category_of,
)

__all__ = [
    "AstNode",
    "Capability",
    "NodeCategory",
    "SourcePosition",
    "category_of",
]
