"""JSON serialization of AST trees.

This is the serialized-AST format read by the command line and handed to
native extensions. A node is a JSON object with a `kind` key; property values
are scalars, nodes, or lists of those.
"""

import json
from pathlib import Path
from typing import Any

from surn.ast.nodes import AstNode, SourcePosition
from surn.errors import AstStructureError


def to_dict(node: AstNode) -> dict[str, Any]:
    data: dict[str, Any] = {"kind": node.kind}
    if node.name is not None:
        data["name"] = node.name
    if node.type is not None:
        data["type"] = node.type
    if node.token is not None:
        data["token"] = node.token
    if node.position is not None:
        data["position"] = {
            "file": node.position.file,
            "line": node.position.line,
            "column": node.position.column,
        }
    properties = node.properties
    if properties:
        data["properties"] = {k: _value_to_json(v) for k, v in properties.items()}
    if node.children:
        data["children"] = [to_dict(c) for c in node.children]
    return data


def _value_to_json(value: Any) -> Any:
    if isinstance(value, AstNode):
        return to_dict(value)
    if isinstance(value, tuple):
        return [_value_to_json(v) for v in value]
    return value


def from_dict(data: dict[str, Any], file: str | None = None) -> AstNode:
    """Build a tree from its dict form.

    Args:
        data: Dict produced by `to_dict` or an external parser
        file: File name used for positions that do not name one

    Raises:
        AstStructureError: If the data is not a node
    """
    if not isinstance(data, dict) or "kind" not in data:
        raise AstStructureError(f"Not an AST node: {data!r}")
    position = None
    if "position" in data:
        pos = data["position"] or {}
        position = SourcePosition(
            pos.get("file") or file, pos.get("line"), pos.get("column")
        )
    elif file is not None:
        position = SourcePosition(file)
    return AstNode(
        data["kind"],
        name=data.get("name"),
        properties={
            k: _value_from_json(v, file) for k, v in data.get("properties", {}).items()
        },
        children=[from_dict(c, file) for c in data.get("children", [])],
        type=data.get("type"),
        token=data.get("token"),
        position=position,
    )


def _value_from_json(value: Any, file: str | None) -> Any:
    if isinstance(value, dict):
        return from_dict(value, file)
    if isinstance(value, list):
        return [_value_from_json(v, file) for v in value]
    return value


def dumps(node: AstNode, indent: int | None = None) -> str:
    return json.dumps(to_dict(node), indent=indent, ensure_ascii=False)


def loads(text: str, file: str | None = None) -> AstNode:
    return from_dict(json.loads(text), file)


def load(path: str | Path) -> AstNode:
    path = Path(path)
    return loads(path.read_text(encoding="utf-8"), str(path))
