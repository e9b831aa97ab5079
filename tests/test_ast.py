"""Tests for AST nodes, builders and serialization."""

import pytest

from surn.ast import builders as b
from surn.ast.nodes import AstNode, Capability, NodeCategory, SourcePosition
from surn.ast.serialize import dumps, from_dict, load, loads, to_dict
from surn.errors import AstStructureError, MissingProperty


def test_category_from_kind():
    """Test that statement, expression and macro kinds are categorized."""
    assert b.variable("a").category is NodeCategory.STATEMENT
    assert b.identifier("a").category is NodeCategory.EXPRESSION
    assert AstNode("MacroInvocation").category is NodeCategory.MACRO
    assert AstNode("SomethingNew").category is NodeCategory.EXPRESSION


def test_properties_keep_declaration_order():
    """Test that properties are returned in the order they were set."""
    node = AstNode("X", properties={"b": 1, "a": 2, "c": 3})
    assert list(node.properties) == ["b", "a", "c"]


def test_get_reaches_attributes():
    """Test that name, type, token and children share the property lookup."""
    node = b.variable("hello", b.literal(1), type="int", token="let")
    assert node.get("name") == "hello"
    assert node.get("type") == "int"
    assert node.get("ty") == "int"
    assert node.get("token") == "let"
    assert node.get("kind") == "VariableDeclaration"
    assert node.get("value").kind == "Literal"


def test_get_missing_property_raises():
    """Test that a missing property raises unless a default is given."""
    node = b.identifier("a")
    with pytest.raises(MissingProperty, match="Identifier has no property 'value'"):
        node.get("value")
    assert node.get("value", None) is None
    assert not node.has("value")


def test_list_properties_are_read_only():
    """Test that list properties are stored as tuples."""
    call = b.call("f", [b.literal(1), b.literal(2)])
    assert isinstance(call.get("args"), tuple)
    assert len(call.get("args")) == 2


def test_children_view_is_restartable():
    """Test that iterating children twice yields the same nodes."""
    root = b.program([b.identifier("a"), b.identifier("b")])
    view = root.iter_children()
    first = [c.name for c in view]
    second = [c.name for c in view]
    assert first == second == ["a", "b"]
    assert len(view) == 2


def test_node_has_single_owner():
    """Test that attaching an owned node elsewhere is rejected."""
    shared = b.identifier("a")
    b.program([shared])
    with pytest.raises(AstStructureError, match="already owned"):
        b.program([shared])


def test_node_listed_twice_is_rejected():
    """Test that one node cannot fill two slots of the same sequence."""
    arg = b.identifier("a")
    with pytest.raises(AstStructureError, match="more than once"):
        AstNode("CallExpression", properties={"callee": b.identifier("f"), "args": [arg, arg]})
    assert arg.parent is None


def test_nodes_in_nested_sequences_are_rejected():
    """Test that nodes may only be stored directly or in a flat sequence."""
    with pytest.raises(AstStructureError, match="nested sequences"):
        AstNode("ArrayExpression", properties={"rows": [[b.literal(1)]]})
    with pytest.raises(AstStructureError, match="nested sequences"):
        from_dict(
            {"kind": "ArrayExpression", "properties": {"rows": [[{"kind": "Literal"}]]}}
        )
    matrix = AstNode("Literal", properties={"value": [[1, 2], [3, 4]]})
    assert matrix.get("value") == ([1, 2], [3, 4])


def test_cycle_is_rejected():
    """Test that a node cannot become its own ancestor."""
    outer = AstNode("Block")
    inner = outer.add_child(AstNode("Block"))
    with pytest.raises(AstStructureError, match="cycle"):
        inner.add_child(outer)
    with pytest.raises(AstStructureError, match="cycle"):
        outer.set("self", outer)


def test_detach_and_reattach():
    """Test that a detached node can be attached to a new parent."""
    child = b.identifier("a")
    first = b.program([child])
    child.detach()
    assert child.parent is None
    assert first.children == []
    second = b.program([child])
    assert child.parent is second


def test_detach_from_property():
    """Test that detaching a property value clears the slot."""
    value = b.literal(1)
    decl = b.variable("a", value)
    value.detach()
    assert decl.get("value") is None
    assert value.parent is None


def test_replace_child_keeps_slot():
    """Test that replacing a child keeps its position and parent link."""
    a, c = b.identifier("a"), b.identifier("c")
    root = b.program([a, b.identifier("b")])
    root.replace_child(a, c)
    assert [n.name for n in root.children] == ["c", "b"]
    assert c.parent is root
    assert a.parent is None


def test_replace_property_node():
    """Test that replace_with swaps a node held in a property list."""
    first = b.literal(1)
    call = b.call("f", [first, b.literal(2)])
    replacement = b.literal(3)
    first.replace_with(replacement)
    assert [a.get("value") for a in call.get("args")] == [3, 2]
    assert replacement.parent is call


def test_replace_child_not_owned():
    """Test that replacing a foreign node is rejected."""
    root = b.program([])
    with pytest.raises(AstStructureError, match="not a child"):
        root.replace_child(b.identifier("a"), b.identifier("b"))


def test_walk_is_preorder_in_source_order():
    """Test the depth-first walk order."""
    root = b.program(
        [
            b.variable("a", b.binary(b.literal(1), "+", b.identifier("x"))),
            b.identifier("b"),
        ]
    )
    kinds = [n.kind for n in root.walk()]
    assert kinds == [
        "Program",
        "VariableDeclaration",
        "BinaryExpression",
        "Literal",
        "Identifier",
        "Identifier",
    ]


def test_clone_is_deep_and_detached():
    """Test that clone copies the whole subtree."""
    decl = b.variable("a", b.literal(1), type="int")
    b.program([decl])
    clone = decl.clone()
    assert clone is not decl
    assert clone.parent is None
    assert clone.get("value") is not decl.get("value")
    assert clone.get("value").parent is clone
    assert clone.type == "int"


def test_capability_of_values():
    """Test the capability classification of nodes."""
    assert Capability.of(b.object_statement("P", [])) is Capability.PLAIN_OBJECT
    assert Capability.of(AstNode("Class", name="P")) is Capability.CLASS
    assert Capability.of(b.identifier("a")) is Capability.OTHER
    assert Capability.of("text") is Capability.OTHER


def test_literal_raw_spelling():
    """Test the default raw spelling of literals."""
    assert b.literal("hi").get("raw") == '"hi"'
    assert b.literal(True).get("raw") == "true"
    assert b.literal(None).get("raw") == "null"
    assert b.literal(1.5).get("raw") == "1.5"
    assert b.literal(3, raw="0x3").get("raw") == "0x3"


def test_source_position_str():
    """Test that positions render as file:line:column."""
    assert str(SourcePosition("a.sn", 3, 7)) == "a.sn:3:7"
    assert str(SourcePosition("a.sn", 3)) == "a.sn:3"
    assert str(SourcePosition(line=2)) == "<unknown>:2"


def test_dict_roundtrip_preserves_structure():
    """Test that to_dict and from_dict keep kinds, order and attributes."""
    root = b.program(
        [
            b.variable("hello", b.literal("hi"), type="string", token="let"),
            b.object_statement("P", [b.object_property("x", "number", b.literal(0))]),
        ],
        file="main.sn",
    )
    data = to_dict(root)
    rebuilt = from_dict(data)
    assert to_dict(rebuilt) == data
    decl = rebuilt.children[0]
    assert decl.token == "let"
    assert decl.type == "string"
    assert decl.get("value").parent is decl


def test_from_dict_rejects_non_node():
    """Test that data without a kind is rejected."""
    with pytest.raises(AstStructureError, match="Not an AST node"):
        from_dict({"name": "a"})


def test_loads_assigns_file_to_positions():
    """Test that loading names the file in positions without one."""
    text = '{"kind": "Program", "children": [{"kind": "Identifier", "name": "a", "position": {"line": 2}}]}'
    root = loads(text, file="unit.json")
    assert root.position.file == "unit.json"
    assert root.children[0].position == SourcePosition("unit.json", 2, None)


def test_load_from_file(tmp_path):
    """Test loading a serialized AST file."""
    path = tmp_path / "unit.json"
    path.write_text(dumps(b.program([b.identifier("a")])), encoding="utf-8")
    root = load(path)
    assert root.kind == "Program"
    assert root.children[0].name == "a"
    assert root.position.file == str(path)
