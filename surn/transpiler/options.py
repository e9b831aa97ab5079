"""Configuration for translation passes and projects."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from surn.errors import ConfigurationError

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0", ""}


class FailurePolicy(Enum):
    """What a pass does when a construct cannot be translated."""

    ABORT = auto()  # Discard the unit's output and report
    SKIP = auto()  # Emit nothing for the construct, report a warning, go on


class DispatchPrecedence(Enum):
    """Which dispatch key is tried first when a node has both."""

    LABEL_FIRST = auto()
    KIND_FIRST = auto()


def parse_flag(value: Any) -> bool:
    """Interpret an option value as a boolean."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"Not a boolean option value: {value!r}")


# Options read as booleans by the engine itself; checked when options are built
BOOLEAN_OPTIONS = frozenset({"objects.parse-as-class"})


class CustomOptions(Mapping[str, Any]):
    """Read-only named options consulted by rules.

    Keys are dotted names such as `objects.parse-as-class`.

    Raises:
        ConfigurationError: If a known boolean option has a non-boolean value
    """

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values = dict(values or {})
        for key in BOOLEAN_OPTIONS & self._values.keys():
            try:
                parse_flag(self._values[key])
            except ConfigurationError as e:
                raise ConfigurationError(f"Option '{key}': {e}") from e

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"CustomOptions({self._values!r})"

    def flag(self, key: str, default: bool = False) -> bool:
        if key not in self._values:
            return default
        return parse_flag(self._values[key])

    def is_set(self, key: str) -> bool:
        """Whether an option is switched on.

        Flags count when true; any other non-empty value counts as set.
        """
        value = self._values.get(key)
        try:
            return parse_flag(value)
        except ConfigurationError:
            return True

    def merged(self, overrides: Mapping[str, Any] | None) -> "CustomOptions":
        """Return new options where `overrides` win over these values."""
        values = dict(self._values)
        values.update(overrides or {})
        return CustomOptions(values)


def parse_option_assignments(items: list[str]) -> dict[str, Any]:
    """Parse `key=value` strings as given on the command line."""
    options: dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            options[item.strip()] = True
            continue
        key, value = item.split("=", 1)
        options[key.strip()] = value.strip()
    return options


@dataclass(frozen=True)
class TranslationOptions:
    """Settings for one translation pass.

    Attributes:
        failure_policy: Abort the unit or skip unsupported constructs
        precedence: Whether labels or structural kinds are dispatched first
        custom_opts: Named options consulted by rule bodies and synthesizers
        unit: Name of the compilation unit, used in diagnostics
    """

    failure_policy: FailurePolicy = FailurePolicy.ABORT
    precedence: DispatchPrecedence = DispatchPrecedence.LABEL_FIRST
    custom_opts: CustomOptions = field(default_factory=CustomOptions)
    unit: str | None = None

    def for_unit(self, unit: str | None) -> "TranslationOptions":
        return replace(self, unit=unit)


def failure_policy_from_name(name: str) -> FailurePolicy:
    try:
        return FailurePolicy[name.strip().upper()]
    except KeyError as e:
        raise ConfigurationError(
            f"Unknown failure policy '{name}' (expected abort or skip)"
        ) from e


def precedence_from_name(name: str) -> DispatchPrecedence:
    mapping = {
        "label": DispatchPrecedence.LABEL_FIRST,
        "kind": DispatchPrecedence.KIND_FIRST,
    }
    try:
        return mapping[name.strip().lower()]
    except KeyError as e:
        raise ConfigurationError(
            f"Unknown dispatch precedence '{name}' (expected label or kind)"
        ) from e


@dataclass
class ProjectConfig:
    """Project configuration read from a YAML file.

    Example:
        language: javascript
        polyfill: mappings/javascript.smtt
        on_unsupported: skip
        options:
          objects.parse-as-class: true
          objects.base-object: Base
    """

    language: str
    polyfill: Path | None = None
    options: dict[str, Any] = field(default_factory=dict)
    failure_policy: FailurePolicy = FailurePolicy.ABORT
    precedence: DispatchPrecedence = DispatchPrecedence.LABEL_FIRST

    @classmethod
    def load(cls, path: str | Path) -> "ProjectConfig":
        """Load a project configuration.

        `polyfill` is resolved relative to the configuration file.

        Raises:
            ConfigurationError: If the file is malformed
        """
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path}: expected a mapping at top level")
        if "language" not in data:
            raise ConfigurationError(f"{path}: missing 'language'")

        polyfill = None
        if data.get("polyfill"):
            polyfill = Path(data["polyfill"])
            if not polyfill.is_absolute():
                polyfill = path.parent / polyfill

        options = data.get("options") or {}
        if not isinstance(options, dict):
            raise ConfigurationError(f"{path}: 'options' must be a mapping")
        try:
            CustomOptions(options)
        except ConfigurationError as e:
            raise ConfigurationError(f"{path}: {e}") from e

        config = cls(
            language=str(data["language"]),
            polyfill=polyfill,
            options={str(k): v for k, v in options.items()},
        )
        if "on_unsupported" in data:
            config.failure_policy = failure_policy_from_name(str(data["on_unsupported"]))
        if "precedence" in data:
            config.precedence = precedence_from_name(str(data["precedence"]))
        logger.debug(f"Loaded project config from {path}: {config}")
        return config

    def translation_options(
        self, extra: Mapping[str, Any] | None = None
    ) -> TranslationOptions:
        return TranslationOptions(
            failure_policy=self.failure_policy,
            precedence=self.precedence,
            custom_opts=CustomOptions(self.options).merged(extra),
        )
