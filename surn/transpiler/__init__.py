"""
Mapping-driven translation of AST trees into target languages.

This module provides the top-level interface: build a language registry,
then translate one or many compilation units with it.
"""

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from loguru import logger

from surn.ast.nodes import AstNode
from surn.transpiler.options import TranslationOptions
from surn.transpiler.registry import LanguageDescriptor, LanguageRegistry
from surn.transpiler.traversal import TranslationResult


def create_registry(defaults: bool = True, polyfill: str | None = None) -> LanguageRegistry:
    """Create a language registry.

    Args:
        defaults: Register the bundled languages
        polyfill: Optional mapping file registered after the defaults,
            replacing a bundled language of the same name

    Returns:
        A registry ready for translation passes
    """
    registry = LanguageRegistry()
    if defaults:
        registry.register_defaults()
    if polyfill:
        registry.load_polyfill(polyfill)
    return registry


def transpile(
    root: AstNode,
    language: str,
    registry: LanguageRegistry,
    options: TranslationOptions | None = None,
) -> TranslationResult:
    """Translate one compilation unit.

    Args:
        root: Root node of the unit
        language: Name of a registered target language
        registry: Registry holding the language
        options: Pass options (failure policy, custom options, ...)

    Returns:
        The translation result; translation errors are reported in it

    Raises:
        ConfigurationError: If the language is not registered
    """
    return registry.translate(language, root, options)


def transpile_many(
    units: Iterable[tuple[str, AstNode]],
    language: str,
    registry: LanguageRegistry,
    options: TranslationOptions | None = None,
    max_workers: int | None = None,
) -> list[TranslationResult]:
    """Translate several compilation units in parallel, one per worker.

    Args:
        units: (unit name, root) pairs
        language: Name of a registered target language
        registry: Registry holding the language
        options: Pass options shared by every unit
        max_workers: Worker thread count, defaults to the executor's choice

    Returns:
        Results in the order of `units`
    """
    options = options or TranslationOptions()
    units = list(units)
    logger.info(f"Translating {len(units)} units to {language}")
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [
            pool.submit(registry.translate, language, root, replace(options, unit=name))
            for name, root in units
        ]
        return [f.result() for f in futures]


__all__ = [
    "LanguageDescriptor",
    "LanguageRegistry",
    "TranslationOptions",
    "TranslationResult",
    "create_registry",
    "transpile",
    "transpile_many",
]
