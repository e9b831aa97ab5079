"""
Language registry: the catalog of configured target languages.

A registry is constructed explicitly and passed around; there is no global
instance. Languages are registered before translation starts and are
read-only afterwards. Re-registering a name replaces the whole language once
every in-flight pass for it has finished.
"""

import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from loguru import logger

from surn.ast.nodes import AstNode
from surn.errors import ConfigurationError, UndefinedRule
from surn.transpiler.labels import LabelRegistry
from surn.transpiler.mapping import MappingDefinition, load_mapping, parse_mapping
from surn.transpiler.options import CustomOptions, TranslationOptions
from surn.transpiler.rules import RuleTable
from surn.transpiler.synthesizers import Synthesizer, default_synthesizers
from surn.transpiler.traversal import TranslationResult, Translator
from surn.transpiler.types import TypeEngine, TypeSystem

DEFAULT_LANGUAGES = ("javascript", "php", "c")


@dataclass(frozen=True, order=True)
class Version:
    major: int
    minor: int = 0
    patch: int = 0

    @classmethod
    def parse(cls, text: str) -> "Version":
        """Parse `major[.minor[.patch]]`; `x` wildcards read as 0."""
        m = re.fullmatch(r"v?(\d+)(?:\.(\d+|x))?(?:\.(\d+|x))?", text.strip())
        if not m:
            raise ConfigurationError(f"Invalid version '{text}'")
        parts = [int(p) if p and p != "x" else 0 for p in m.groups()]
        return cls(*parts)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass
class LanguageDescriptor:
    """Configuration of one target language.

    A declarative language owns a label registry and rule table; a native
    one delegates to a bridge extension instead.
    """

    name: str
    description: str = ""
    version: Version = field(default_factory=lambda: Version(0))
    author: str = ""
    file_types: tuple[str, ...] = ()
    threading_allowed: bool = True
    labels: LabelRegistry | None = None
    rules: RuleTable | None = None
    type_system: TypeSystem = field(default_factory=TypeSystem)
    options: dict[str, Any] = field(default_factory=dict)
    synthesizers: dict[str, Synthesizer] = field(default_factory=default_synthesizers)
    extension: Any = None
    source: str | None = None

    @classmethod
    def from_mapping(cls, definition: MappingDefinition) -> "LanguageDescriptor":
        """Build a declarative language from a mapping definition.

        Raises:
            ConfigurationError: If the definition's declarations conflict
        """
        labels, rules = definition.build()
        return cls(
            name=definition.name,
            description=definition.description,
            version=Version.parse(definition.version),
            author=definition.author,
            file_types=definition.file_types,
            threading_allowed=definition.threading_allowed,
            labels=labels,
            rules=rules,
            type_system=TypeSystem.create(
                definition.typing, definition.types, definition.erase_types
            ),
            options=dict(definition.options),
            source=definition.source,
        )

    @property
    def is_native(self) -> bool:
        return self.extension is not None

    def validate(self) -> None:
        """Check that the language is complete enough to register.

        Raises:
            ConfigurationError: If a declarative language lacks tables, or a
                default option has an invalid value
            UndefinedRule: If a rule rewrites through an unknown synthesizer
        """
        CustomOptions(self.options)
        if self.is_native:
            return
        if self.labels is None or self.rules is None:
            raise ConfigurationError(
                f"Language {self.name} needs a label registry and rule table"
            )
        for rule in self.rules.rules(self.name):
            for name in rule.rewrites():
                if name not in self.synthesizers:
                    raise UndefinedRule(
                        f"Rule {rule.key} in {self.name} rewrites with unknown "
                        f"synthesizer '{name}'"
                    )

    def freeze(self) -> None:
        if self.labels is not None:
            self.labels.freeze()
        if self.rules is not None:
            self.rules.freeze()

    def translator(self, options: TranslationOptions | None = None) -> Any:
        """Create the translator for one pass.

        The language's default options are overridden by the pass options.
        """
        options = options or TranslationOptions()
        custom = CustomOptions(self.options).merged(options.custom_opts)
        options = TranslationOptions(
            failure_policy=options.failure_policy,
            precedence=options.precedence,
            custom_opts=custom,
            unit=options.unit,
        )
        if self.is_native:
            from surn.transpiler.bridge import ExtensionTranslator

            return ExtensionTranslator(self.name, self.extension, options)
        return Translator(
            self.name,
            self.labels,
            self.rules,
            TypeEngine(self.type_system),
            options,
            self.synthesizers,
        )


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _Entry:
    def __init__(self, descriptor: LanguageDescriptor):
        self.descriptor = descriptor
        self.lock = ReadWriteLock()
        # Held for the whole pass when the language does not allow threading
        self.exclusive = threading.Lock()


class LanguageRegistry:
    """Catalog of target languages available for translation."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def register(
        self, descriptor: LanguageDescriptor, replace: bool = False
    ) -> LanguageDescriptor:
        """Register a language, freezing its tables.

        Args:
            descriptor: The language to register
            replace: Replace an existing language of the same name

        Raises:
            ConfigurationError: If the language is invalid, or already
                registered and `replace` is False
        """
        descriptor.validate()
        descriptor.freeze()
        with self._lock:
            entry = self._entries.get(descriptor.name)
            if entry is None:
                self._entries[descriptor.name] = _Entry(descriptor)
                logger.info(f"Registered language {descriptor.name} {descriptor.version}")
                return descriptor
            if not replace:
                raise ConfigurationError(
                    f"Language {descriptor.name} is already registered; "
                    "replace it explicitly to reconfigure"
                )
        # Waits for in-flight passes, so no pass sees a half-replaced language.
        with entry.lock.write():
            entry.descriptor = descriptor
        logger.info(f"Replaced language {descriptor.name} {descriptor.version}")
        return descriptor

    def register_mapping(
        self,
        mapping: str | Path | MappingDefinition,
        replace: bool = False,
        source: str | None = None,
    ) -> LanguageDescriptor:
        """Register a language from a mapping definition.

        Args:
            mapping: A path to an SMTT file, its text, or a parsed definition
            replace: Replace an existing language of the same name
            source: Name used in error messages when `mapping` is text
        """
        if isinstance(mapping, Path):
            definition = load_mapping(mapping)
        elif isinstance(mapping, str):
            definition = parse_mapping(mapping, source)
        else:
            definition = mapping
        return self.register(LanguageDescriptor.from_mapping(definition), replace)

    def load_polyfill(self, path: str | Path) -> LanguageDescriptor:
        """Register a project mapping file, replacing a bundled language."""
        path = Path(path)
        logger.info(f"Loading polyfill {path}")
        return self.register_mapping(path, replace=True)

    def register_defaults(self, names: tuple[str, ...] = DEFAULT_LANGUAGES) -> None:
        """Register the bundled mapping definitions."""
        defaults = resources.files("surn.transpiler") / "defaults"
        for name in names:
            resource = defaults / f"{name}.smtt"
            text = resource.read_text(encoding="utf-8")
            self.register_mapping(text, replace=True, source=f"{name}.smtt")

    def register_extension(self, extension: Any, replace: bool = False) -> LanguageDescriptor:
        """Register a native extension.

        Raises:
            IncompatibleExtension: If the extension targets another bridge API
        """
        info = extension.info()
        descriptor = LanguageDescriptor(
            name=info.name,
            description=info.description,
            version=info.version,
            file_types=info.file_types,
            threading_allowed=info.threading_allowed,
            extension=extension,
            source=info.source,
        )
        return self.register(descriptor, replace)

    def unregister(self, name: str) -> None:
        entry = self._entry(name)
        with entry.lock.write():
            with self._lock:
                self._entries.pop(name, None)
        logger.info(f"Unregistered language {name}")

    def _entry(self, name: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(name)
        if entry is None:
            known = ", ".join(self.names()) or "none"
            raise ConfigurationError(f"Unknown language '{name}' (registered: {known})")
        return entry

    def get(self, name: str) -> LanguageDescriptor:
        """Return a registered language.

        Raises:
            ConfigurationError: If the language is not registered
        """
        return self._entry(name).descriptor

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def for_extension(self, extension: str) -> LanguageDescriptor | None:
        """Return the language handling a file extension, if any."""
        extension = extension.lstrip(".").lower()
        with self._lock:
            entries = list(self._entries.values())
        for entry in entries:
            if extension in entry.descriptor.file_types:
                return entry.descriptor
        return None

    @contextmanager
    def session(
        self, name: str, options: TranslationOptions | None = None
    ) -> Iterator[Any]:
        """Open a translation pass for a language.

        The language cannot be replaced while the session is open. Passes
        for a language that does not allow threading run one at a time.
        """
        entry = self._entry(name)
        with entry.lock.read():
            descriptor = entry.descriptor
            translator = descriptor.translator(options)
            if descriptor.threading_allowed:
                yield translator
            else:
                with entry.exclusive:
                    yield translator

    def translate(
        self, name: str, root: AstNode, options: TranslationOptions | None = None
    ) -> TranslationResult:
        with self.session(name, options) as translator:
            return translator.translate(root)
