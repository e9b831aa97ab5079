from surn.ast.nodes import AstNode, SourcePosition
from surn.errors import Diagnostic, TranspilerError
from surn.transpiler import create_registry, transpile, transpile_many
from surn.transpiler.options import CustomOptions, FailurePolicy, TranslationOptions

__version__ = "0.1.0"


__all__ = [
    "AstNode",
    "SourcePosition",
    "Diagnostic",
    "TranspilerError",
    "CustomOptions",
    "FailurePolicy",
    "TranslationOptions",
    "create_registry",
    "transpile",
    "transpile_many",
]
