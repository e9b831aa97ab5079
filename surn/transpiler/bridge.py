"""
Native extension bridge.

Targets that cannot be described by a mapping definition supply compiled
transformation logic through a two-function boundary:

    void  register_surn(struct SurnRegistry *reg);   /* or register() */
    char *transform(struct SurnAST *ast);

`register_surn` fills in the language metadata and the bridge API version the
extension was built against. `transform` receives the compilation unit name
and its JSON-serialized AST (in `surname`) and returns the target text, or
NULL on failure.

Python modules can implement the same boundary with `register() -> dict` and
`transform(ast: SerializedAst) -> str | None`.
"""

import ctypes
import importlib
import importlib.util
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any

from loguru import logger

from surn.ast.nodes import AstNode
from surn.ast.serialize import dumps
from surn.errors import (
    ConfigurationError,
    Diagnostic,
    ExtensionFailure,
    IncompatibleExtension,
    TranslationError,
    UnsupportedConstruct,
)
from surn.transpiler.options import TranslationOptions
from surn.transpiler.registry import Version
from surn.transpiler.traversal import TranslationResult

BRIDGE_API_VERSION = 1


class CVersion(ctypes.Structure):
    _fields_ = [
        ("major", ctypes.c_int),
        ("minor", ctypes.c_int),
        ("patch", ctypes.c_int),
    ]


class SurnRegistry(ctypes.Structure):
    _fields_ = [
        ("lang_name", ctypes.c_char_p),
        ("lang_desc", ctypes.c_char_p),
        ("lang_version", CVersion),
        ("api_version", ctypes.c_int),
    ]


class SurnAST(ctypes.Structure):
    _fields_ = [
        ("name", ctypes.c_char_p),
        ("surname", ctypes.c_char_p),
        ("version", CVersion),
    ]


@dataclass(frozen=True)
class ExtensionInfo:
    """Language metadata reported by an extension's registration call."""

    name: str
    description: str
    version: Version
    api_version: int
    file_types: tuple[str, ...] = ()
    threading_allowed: bool = True
    source: str | None = None


@dataclass(frozen=True)
class SerializedAst:
    """What a Python extension's `transform` receives."""

    name: str
    surname: str
    version: Version


def check_api_version(info: ExtensionInfo) -> ExtensionInfo:
    """Reject extensions built against another bridge API.

    Raises:
        IncompatibleExtension: If the versions differ
    """
    if info.api_version != BRIDGE_API_VERSION:
        raise IncompatibleExtension(info.name, info.api_version, BRIDGE_API_VERSION)
    return info


def _decode(value: bytes | None) -> str:
    return value.decode("utf-8") if value else ""


class SharedLibraryExtension:
    """An extension compiled to a shared library, loaded with ctypes.

    Foreign code gives no thread-safety guarantee, so passes are serialized
    unless `threading_allowed` is set.
    """

    def __init__(
        self,
        path: str | Path,
        file_types: tuple[str, ...] = (),
        threading_allowed: bool = False,
    ):
        self.path = Path(path)
        self.file_types = file_types
        self.threading_allowed = threading_allowed
        try:
            self.lib = ctypes.CDLL(str(self.path))
        except OSError as e:
            raise ConfigurationError(f"Cannot load extension {self.path}: {e}") from e
        self._info: ExtensionInfo | None = None

    def _function(self, *names: str) -> Any:
        for name in names:
            fn = getattr(self.lib, name, None)
            if fn is not None:
                return fn
        raise ConfigurationError(
            f"Extension {self.path} does not export {' or '.join(names)}"
        )

    def info(self) -> ExtensionInfo:
        if self._info is not None:
            return self._info
        register = self._function("register_surn", "register")
        register.argtypes = [ctypes.POINTER(SurnRegistry)]
        register.restype = None
        reg = SurnRegistry()
        register(ctypes.byref(reg))
        version = reg.lang_version
        info = ExtensionInfo(
            name=_decode(reg.lang_name),
            description=_decode(reg.lang_desc),
            version=Version(version.major, version.minor, version.patch),
            api_version=reg.api_version,
            file_types=self.file_types,
            threading_allowed=self.threading_allowed,
            source=str(self.path),
        )
        if not info.name:
            raise ConfigurationError(f"Extension {self.path} did not report a language name")
        self._info = check_api_version(info)
        logger.info(f"Loaded native extension {info.name} {info.version} from {self.path}")
        return self._info

    def transform(self, root: AstNode, unit: str) -> str | None:
        info = self.info()
        fn = self._function("transform")
        fn.argtypes = [ctypes.POINTER(SurnAST)]
        fn.restype = ctypes.c_char_p
        ast = SurnAST(
            unit.encode("utf-8"),
            dumps(root).encode("utf-8"),
            CVersion(info.version.major, info.version.minor, info.version.patch),
        )
        result = fn(ctypes.byref(ast))
        return None if result is None else result.decode("utf-8")


class PythonModuleExtension:
    """An extension written as a Python module."""

    def __init__(self, module: ModuleType):
        self.module = module
        self._info: ExtensionInfo | None = None

    @classmethod
    def load(cls, path: str | Path) -> "PythonModuleExtension":
        """Load an extension module from a file."""
        path = Path(path)
        spec = importlib.util.spec_from_file_location(f"surn_extension_{path.stem}", path)
        if spec is None or spec.loader is None:
            raise ConfigurationError(f"Cannot load extension module {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return cls(module)

    @classmethod
    def import_module(cls, name: str) -> "PythonModuleExtension":
        return cls(importlib.import_module(name))

    def info(self) -> ExtensionInfo:
        if self._info is not None:
            return self._info
        register = getattr(self.module, "register", None)
        if register is None or not hasattr(self.module, "transform"):
            raise ConfigurationError(
                f"Extension module {self.module.__name__} must define register() and transform()"
            )
        reg = register()
        version = reg.get("lang_version", (0, 0, 0))
        if isinstance(version, str):
            version = Version.parse(version)
        else:
            version = Version(*version)
        info = ExtensionInfo(
            name=reg["lang_name"],
            description=reg.get("lang_desc", ""),
            version=version,
            api_version=int(reg.get("api_version", 0)),
            file_types=tuple(reg.get("file_types", ())),
            threading_allowed=bool(reg.get("threading_allowed", True)),
            source=getattr(self.module, "__file__", None),
        )
        self._info = check_api_version(info)
        logger.info(f"Loaded extension module {info.name} {info.version}")
        return self._info

    def transform(self, root: AstNode, unit: str) -> str | None:
        info = self.info()
        return self.module.transform(SerializedAst(unit, dumps(root), info.version))


class ExtensionTranslator:
    """Runs translation passes through a native extension."""

    def __init__(self, language: str, extension: Any, options: TranslationOptions | None = None):
        self.language = language
        self.extension = extension
        self.options = options or TranslationOptions()

    def translate(self, root: AstNode) -> TranslationResult:
        unit = self.options.unit or (root.position.file if root.position else None) or ""
        logger.debug(f"Handing {unit or root!r} to {self.language} extension")
        try:
            try:
                text = self.extension.transform(root, unit)
            except TranslationError:
                raise
            except Exception as e:
                raise ExtensionFailure(
                    f"{self.language} extension raised {type(e).__name__}: {e}", root
                ) from e
            if text is None:
                raise ExtensionFailure(f"{self.language} extension failed to transform", root)
        except TranslationError as e:
            logger.error(f"Translation to {self.language} failed: {e}")
            return TranslationResult(
                self.language, unit or None, None, [Diagnostic.from_error(e)], error=e
            )
        return TranslationResult(self.language, unit or None, text)

    def unplug(self, token: str, node: AstNode | None = None) -> str:
        raise UnsupportedConstruct(
            f"{self.language} is a native extension and has no unplug rules", node, key=token
        )
