"""Intermediate representation of rule bodies.

A plug or unplug rule body is a tuple of segments. Segments are immutable so a
rule can be copied by value simply by sharing its body.
"""

from dataclasses import dataclass

# Segments


@dataclass(frozen=True)
class Segment:
    """Base for all body segments."""


@dataclass(frozen=True)
class Text(Segment):
    """Literal target text."""

    value: str


@dataclass(frozen=True)
class Interpolation(Segment):
    """`$name`, `${path}` or `${path ?? "default"}`."""

    path: tuple[str, ...]
    default: str | None = None


@dataclass(frozen=True)
class Join(Segment):
    """`${"sep" <@ path}`: translate each element, join with `separator`."""

    separator: str
    path: tuple[str, ...]


@dataclass(frozen=True)
class NestedPlug(Segment):
    """`@> path as binder { body }`: scoped override for `path`."""

    path: tuple[str, ...]
    binder: str
    body: tuple[Segment, ...]


@dataclass(frozen=True)
class Rewrite(Segment):
    """`@rewrite name`: run a structural rule before the rest of the body."""

    synthesizer: str


@dataclass(frozen=True)
class Conditional(Segment):
    """`if cond { body } else { orelse }`."""

    condition: "Condition"
    body: tuple[Segment, ...]
    orelse: tuple[Segment, ...] = ()


# Conditions


@dataclass(frozen=True)
class Condition:
    """Base for conditions of conditional segments."""

    negate: bool = False


@dataclass(frozen=True)
class Compare(Condition):
    """`path == "value"` / `path != "value"`; `label` is the origin token."""

    path: tuple[str, ...] = ()
    value: str = ""


@dataclass(frozen=True)
class Present(Condition):
    """Bare `path`: the property exists and is not empty."""

    path: tuple[str, ...] = ()


@dataclass(frozen=True)
class HasCapability(Condition):
    """`binder.is_class()` / `binder.is_plain_object()`."""

    binder: str = ""
    capability: str = ""


@dataclass(frozen=True)
class OptionSet(Condition):
    """`option key`: a custom option is set to a true value."""

    key: str = ""


CAPABILITY_METHODS = {
    "is_class": "CLASS",
    "is_plain_object": "PLAIN_OBJECT",
}


def walk_segments(body: tuple[Segment, ...]):
    """Yield every segment in `body`, including nested ones."""
    for segment in body:
        yield segment
        if isinstance(segment, NestedPlug):
            yield from walk_segments(segment.body)
        elif isinstance(segment, Conditional):
            yield from walk_segments(segment.body)
            yield from walk_segments(segment.orelse)
