"""Helper constructors for common unified-source constructs.

Parsers and tests use these to build trees with the property names the
bundled mappings expect.
"""

import json
from typing import Any

from surn.ast.nodes import AstNode, SourcePosition


def literal(value: Any, raw: str | None = None, **kwargs: Any) -> AstNode:
    """Create a literal. `raw` defaults to the source spelling of `value`."""
    if raw is None:
        if isinstance(value, bool):
            raw = "true" if value else "false"
        elif isinstance(value, str):
            raw = json.dumps(value, ensure_ascii=False)
        elif value is None:
            raw = "null"
        else:
            raw = repr(value)
    return AstNode("Literal", properties={"value": value, "raw": raw}, **kwargs)


def identifier(name: str, **kwargs: Any) -> AstNode:
    return AstNode("Identifier", name=name, **kwargs)


def variable(
    name: str,
    value: AstNode | None = None,
    type: str | None = None,
    token: str = "var",
    **kwargs: Any,
) -> AstNode:
    """Create a variable declaration; `token` is `var`, `const` or `static`."""
    properties = {"value": value} if value is not None else {}
    return AstNode(
        "VariableDeclaration",
        name=name,
        properties=properties,
        type=type,
        token=token,
        **kwargs,
    )


def call(callee: AstNode | str, args: list[AstNode] | None = None, **kwargs: Any) -> AstNode:
    if isinstance(callee, str):
        callee = identifier(callee)
    return AstNode(
        "CallExpression", properties={"callee": callee, "args": args or []}, **kwargs
    )


def member(obj: AstNode | str, prop: str, **kwargs: Any) -> AstNode:
    if isinstance(obj, str):
        obj = identifier(obj)
    return AstNode(
        "MemberExpression", name=prop, properties={"object": obj}, **kwargs
    )


def binary(left: AstNode, op: str, right: AstNode, **kwargs: Any) -> AstNode:
    return AstNode(
        "BinaryExpression",
        properties={"left": left, "op": op, "right": right},
        **kwargs,
    )


def object_statement(
    name: str, properties: list[AstNode], **kwargs: Any
) -> AstNode:
    return AstNode(
        "ObjectStatement", name=name, properties={"properties": properties}, **kwargs
    )


def object_property(
    name: str, type: str | None = None, value: AstNode | None = None, **kwargs: Any
) -> AstNode:
    properties = {"value": value} if value is not None else {}
    return AstNode(
        "ObjectProperty", name=name, type=type, properties=properties, **kwargs
    )


def program(body: list[AstNode], file: str | None = None) -> AstNode:
    return AstNode("Program", name=file, children=body, position=SourcePosition(file))


def function(
    name: str,
    params: list[AstNode],
    body: list[AstNode],
    returns: str | None = None,
    **kwargs: Any,
) -> AstNode:
    """Create a function declaration; `returns` is the declared return type."""
    return AstNode(
        "FunctionDeclaration",
        name=name,
        properties={"params": params, "body": body},
        type=returns,
        **kwargs,
    )


def return_statement(value: AstNode | None = None, **kwargs: Any) -> AstNode:
    properties = {"value": value} if value is not None else {}
    return AstNode("ReturnStatement", properties=properties, **kwargs)


def expression_statement(expression: AstNode, **kwargs: Any) -> AstNode:
    return AstNode(
        "ExpressionStatement", properties={"expression": expression}, **kwargs
    )
