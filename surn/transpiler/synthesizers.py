"""Structural rules that build new subtrees instead of emitting text.

A synthesizer receives the bound node and its plug context and returns a new,
detached subtree, or None to decline. The traversal engine translates the
returned subtree exactly as it would an authored node. Synthesizers never
modify the node they are given.
"""

from collections.abc import Callable
from typing import Any

from loguru import logger

from surn.ast.nodes import AstNode, Capability
from surn.errors import UndefinedRule

Synthesizer = Callable[[AstNode, Any], AstNode | None]

# Registry of synthesizer names to their implementations
_SYNTHESIZERS: dict[str, Synthesizer] = {}


def register_synthesizer(name: str, synthesizer: Synthesizer | None = None):
    """Register a synthesizer under `name`; usable as a decorator.

    Args:
        name: Name used by `@rewrite` in mapping definitions
        synthesizer: The callable, or None when used as a decorator
    """

    def decorator(func: Synthesizer) -> Synthesizer:
        _SYNTHESIZERS[name] = func
        return func

    if synthesizer is not None:
        return decorator(synthesizer)
    return decorator


def get_synthesizer(name: str) -> Synthesizer:
    """Return a registered synthesizer.

    Raises:
        UndefinedRule: If no synthesizer has that name
    """
    if name not in _SYNTHESIZERS:
        known = ", ".join(sorted(_SYNTHESIZERS)) or "none"
        raise UndefinedRule(f"Unknown synthesizer '{name}' (known: {known})")
    return _SYNTHESIZERS[name]


def default_synthesizers() -> dict[str, Synthesizer]:
    """A snapshot of the registered synthesizers."""
    return dict(_SYNTHESIZERS)


@register_synthesizer("object-as-class")
def object_as_class(node: AstNode, context: Any) -> AstNode | None:
    """Rewrite a plain object into a class when `objects.parse-as-class` is set.

    Each object property becomes a public `ClassProperty` whose type is
    resolved through the type engine. The class extends the path given by
    `objects.base-object`, if any.
    """
    options = context.options
    if not options.flag("objects.parse-as-class"):
        return None
    if context.capability is not Capability.PLAIN_OBJECT:
        return None

    members = []
    for prop in node.get("properties", ()):
        semantic = context.types.type_of(prop)
        value = prop.get("value", None)
        members.append(
            AstNode(
                "ClassProperty",
                name=prop.name,
                properties={
                    "visibility": "public",
                    **({"value": value.clone()} if isinstance(value, AstNode) else {}),
                },
                type=context.types.name_of(semantic) or None,
                position=prop.position,
            )
        )

    base = options.get("objects.base-object")
    cls = AstNode(
        "Class",
        name=node.name,
        properties={
            "extends": str(base) if base else None,
            "implements": [],
        },
        children=members,
        position=node.position,
    )
    logger.debug(f"Rewrote object {node.name} as class with {len(members)} properties")
    return cls
