"""Tests for structural rules."""

import pytest

from surn.ast import builders as b
from surn.ast.nodes import AstNode
from surn.errors import UndefinedRule
from surn.transpiler import synthesizers
from surn.transpiler.options import CustomOptions
from surn.transpiler.synthesizers import (
    default_synthesizers,
    get_synthesizer,
    object_as_class,
    register_synthesizer,
)
from surn.transpiler.traversal import PlugContext
from surn.transpiler.types import TypeEngine, TypeSystem


def _context(node: AstNode, options: dict) -> PlugContext:
    return PlugContext(
        node, "x", node, None, CustomOptions(options), TypeEngine(TypeSystem())
    )


def test_object_as_class_builds_class(point_object):
    """Test the class built from an object with typed properties."""
    ctx = _context(
        point_object, {"objects.parse-as-class": True, "objects.base-object": "Base"}
    )
    cls = object_as_class(point_object, ctx)

    assert cls.kind == "Class"
    assert cls.name == "Point"
    assert cls.get("extends") == "Base"
    assert cls.get("implements") == ()
    assert cls.parent is None
    x, y = cls.children
    assert (x.kind, x.name, x.type) == ("ClassProperty", "x", "number")
    assert x.get("visibility") == "public"
    assert x.get("value").get("value") == 0
    assert y.name == "y"


def test_object_as_class_leaves_source_untouched(point_object):
    """Test that property values are cloned, not moved."""
    ctx = _context(point_object, {"objects.parse-as-class": "yes"})
    original = point_object.get("properties")[0].get("value")
    cls = object_as_class(point_object, ctx)
    assert cls.children[0].get("value") is not original
    assert original.parent is point_object.get("properties")[0]
    assert cls.get("extends") is None


def test_object_as_class_type_from_literal():
    """Test that an untyped property takes its value's type."""
    obj = b.object_statement("P", [b.object_property("s", value=b.literal("a"))])
    cls = object_as_class(obj, _context(obj, {"objects.parse-as-class": True}))
    assert cls.children[0].type == "string"


@pytest.mark.parametrize(
    "node, options",
    [
        (b.object_statement("P", []), {}),
        (b.object_statement("P", []), {"objects.parse-as-class": "false"}),
        (AstNode("Class", name="P"), {"objects.parse-as-class": True}),
    ],
)
def test_object_as_class_declines(node, options):
    """Test that the rewrite declines without the option or on non-objects."""
    assert object_as_class(node, _context(node, options)) is None


def test_registry_lookup():
    """Test finding the bundled synthesizer and rejecting unknown names."""
    assert get_synthesizer("object-as-class") is object_as_class
    assert "object-as-class" in default_synthesizers()
    with pytest.raises(UndefinedRule, match="Unknown synthesizer 'nope'"):
        get_synthesizer("nope")


def test_register_synthesizer(monkeypatch):
    """Test registration as a decorator and as a call."""
    monkeypatch.setattr(synthesizers, "_SYNTHESIZERS", {})

    @register_synthesizer("first")
    def first(node, ctx):
        return None

    register_synthesizer("second", first)
    assert get_synthesizer("first") is first
    assert sorted(default_synthesizers()) == ["first", "second"]
