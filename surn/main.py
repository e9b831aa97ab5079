"""Command line interface for surn.

This module provides a command-line interface for translating serialized
AST files into target languages with mapping definitions, and for checking
and live-reloading those mapping definitions.
"""

import os
import time
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any, TypeVar, cast

import arrow
import typer
import watchdog.events
import watchdog.observers
from loguru import logger
from watchdog.events import FileSystemEventHandler

from surn.ast.nodes import AstNode
from surn.ast.serialize import load
from surn.errors import ConfigurationError, ReportKind, TranspilerError
from surn.transpiler import create_registry, transpile, transpile_many
from surn.transpiler.mapping import load_mapping
from surn.transpiler.options import (
    CustomOptions,
    ProjectConfig,
    TranslationOptions,
    failure_policy_from_name,
    parse_option_assignments,
    precedence_from_name,
)
from surn.transpiler.registry import LanguageDescriptor, LanguageRegistry
from surn.transpiler.traversal import TranslationResult

# Define type variables for TypedCallable
F = TypeVar("F", bound=Callable[..., Any])


# TypedCommand decorator helper
def typed_command(app_command: Any) -> Callable[[F], F]:
    """Wrap typer command with proper typing for mypy."""

    def decorator(func: F) -> F:
        return cast(F, app_command(func))

    return decorator


app = typer.Typer(
    name="surn",
    help=(
        "Translate Surn ASTs into target languages using mapping definitions. "
        "Commands: transpile, batch, languages, check, unplug, watch."
    ),
    add_completion=False,
)


# Define reusable arguments and options
AST_FILE_ARG = typer.Argument(..., help="Serialized AST file (JSON)")
AST_FILES_ARG = typer.Argument(..., help="Serialized AST files (JSON)")
OUTPUT_ARG = typer.Argument(None, help="Output file (stdout when omitted)")
WATCH_OUTPUT_ARG = typer.Argument(..., help="Output file rewritten on every change")
MAPPING_FILE_ARG = typer.Argument(..., help="Mapping definition (.smtt) file")
LANGUAGE_OPT = typer.Option(None, "--language", "-l", help="Target language name")
POLYFILL_OPT = typer.Option(
    None, "--polyfill", "-p", help="Mapping definition overriding a bundled language"
)
CONFIG_OPT = typer.Option(None, "--config", "-c", help="Project configuration (YAML)")
OPTION_OPT = typer.Option(
    [], "--option", "-o", help="Custom option as key=value (repeatable)"
)
ON_UNSUPPORTED_OPT = typer.Option(
    None, "--on-unsupported", help="abort (default) or skip unsupported constructs"
)
PRECEDENCE_OPT = typer.Option(
    None, "--precedence", help="Dispatch precedence: label (default) or kind"
)
FORMAT_OPT = typer.Option(
    "plain", "--format", "-f", help="Output format (plain, commented)"
)


def _load_config(config: Path | None) -> ProjectConfig | None:
    if config is None:
        return None
    try:
        return ProjectConfig.load(config)
    except (OSError, ConfigurationError) as e:
        logger.error(f"Invalid project configuration: {e}")
        raise typer.Exit(1) from e


def _build_registry(
    polyfill: Path | None, project: ProjectConfig | None
) -> LanguageRegistry:
    """Create a registry with the bundled languages and any polyfills."""
    try:
        registry = create_registry()
        if project is not None and project.polyfill is not None:
            registry.load_polyfill(project.polyfill)
        if polyfill is not None:
            registry.load_polyfill(polyfill)
        return registry
    except (OSError, ConfigurationError) as e:
        logger.error(f"Failed to load mapping definition: {e}")
        raise typer.Exit(1) from e


def _resolve_language(
    registry: LanguageRegistry,
    language: str | None,
    project: ProjectConfig | None,
    output: Path | None = None,
) -> LanguageDescriptor:
    """Pick the target language from the flag, the project, or the output file."""
    name = language or (project.language if project else None)
    try:
        if name:
            return registry.get(name)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e
    if output is not None and output.suffix:
        descriptor = registry.for_extension(output.suffix)
        if descriptor is not None:
            logger.info(f"Using {descriptor.name} for {output.suffix} output")
            return descriptor
    logger.error("No target language given; use --language or a project config")
    raise typer.Exit(1)


def _translation_options(
    project: ProjectConfig | None,
    options: list[str],
    on_unsupported: str | None,
    precedence: str | None,
) -> TranslationOptions:
    try:
        extra = parse_option_assignments(options)
        if project is not None:
            base = project.translation_options(extra)
        else:
            base = TranslationOptions(custom_opts=CustomOptions(extra))
        if on_unsupported:
            base = replace(base, failure_policy=failure_policy_from_name(on_unsupported))
        if precedence:
            base = replace(base, precedence=precedence_from_name(precedence))
        return base
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


def _load_ast(path: Path) -> AstNode:
    try:
        return load(path)
    except (OSError, ValueError, TranspilerError) as e:
        logger.error(f"Failed to read AST from {path}: {e}")
        raise typer.Exit(1) from e


def _report(result: TranslationResult) -> None:
    for diagnostic in result.diagnostics:
        if diagnostic.kind is ReportKind.ERROR:
            logger.error(str(diagnostic))
        else:
            logger.warning(str(diagnostic))


def _add_header_comments(code: str, source_file: Path, language: LanguageDescriptor) -> str:
    """Add header comments to the code.

    Args:
        code: Generated code
        source_file: AST file the code was generated from
        language: Target language

    Returns:
        Code with header comments
    """
    timestamp = arrow.utcnow().format("YYYY-MM-DD HH:mm:ss UTC")
    header = f"// Generated by surn v{__import__('surn').__version__}\n"
    header += f"// Generation time: {timestamp}\n"
    header += f"// Source file: {os.path.basename(source_file)}\n"
    header += f"// Target: {language.name} {language.version}\n"
    header += "\n"

    # Keep an opening tag such as <?php on the first line
    first, sep, rest = code.partition("\n")
    if first.startswith("<?"):
        return f"{first}{sep}{header}{rest}"
    return header + code


def _format_code(
    code: str, format_type: str, source_file: Path, language: LanguageDescriptor
) -> str:
    if format_type == "commented":
        return _add_header_comments(code, source_file, language)
    if format_type != "plain":
        logger.warning(f"Unknown format: {format_type}. Using plain.")
    return code


def _write(code: str, output: Path | None) -> None:
    if output is None:
        typer.echo(code)
        return
    logger.info(f"Writing {output}...")
    with open(output, "w", encoding="utf-8") as f:
        f.write(code if code.endswith("\n") else code + "\n")


@typed_command(app.command("transpile"))
def transpile_file(
    ast_file: Path = AST_FILE_ARG,
    output: Path | None = OUTPUT_ARG,
    language: str | None = LANGUAGE_OPT,
    polyfill: Path | None = POLYFILL_OPT,
    config: Path | None = CONFIG_OPT,
    option: list[str] = OPTION_OPT,
    on_unsupported: str | None = ON_UNSUPPORTED_OPT,
    precedence: str | None = PRECEDENCE_OPT,
    format: str = FORMAT_OPT,
) -> None:
    """Translate one AST file.

    Example: surn transpile hello.ast.json hello.js -l javascript
    """
    project = _load_config(config)
    registry = _build_registry(polyfill, project)
    descriptor = _resolve_language(registry, language, project, output)
    options = _translation_options(project, option, on_unsupported, precedence)

    root = _load_ast(ast_file)
    result = transpile(root, descriptor.name, registry, options.for_unit(str(ast_file)))
    _report(result)
    if not result.ok:
        logger.error(f"Translation of {ast_file} to {descriptor.name} failed")
        raise typer.Exit(1)

    _write(_format_code(result.text or "", format, ast_file, descriptor), output)


@typed_command(app.command("batch"))
def batch_transpile(
    ast_files: list[Path] = AST_FILES_ARG,
    out_dir: Path = typer.Option(..., "--out-dir", "-d", help="Output directory"),
    language: str | None = LANGUAGE_OPT,
    polyfill: Path | None = POLYFILL_OPT,
    config: Path | None = CONFIG_OPT,
    option: list[str] = OPTION_OPT,
    on_unsupported: str | None = ON_UNSUPPORTED_OPT,
    workers: int | None = typer.Option(None, "--workers", "-j", help="Worker threads"),
    format: str = FORMAT_OPT,
) -> None:
    """Translate several AST files in parallel.

    Each output is named after its AST file with the language's first file
    extension. Units that fail are reported and skipped.

    Example: surn batch src/*.json -d build -l php -j 4
    """
    project = _load_config(config)
    registry = _build_registry(polyfill, project)
    descriptor = _resolve_language(registry, language, project)
    options = _translation_options(project, option, on_unsupported, None)
    extension = descriptor.file_types[0] if descriptor.file_types else descriptor.name

    units = [(str(path), _load_ast(path)) for path in ast_files]
    out_dir.mkdir(parents=True, exist_ok=True)
    results = transpile_many(units, descriptor.name, registry, options, workers)

    failed = 0
    for path, result in zip(ast_files, results, strict=True):
        _report(result)
        if not result.ok:
            failed += 1
            continue
        stem = path.name.split(".")[0]
        code = _format_code(result.text or "", format, path, descriptor)
        _write(code, out_dir / f"{stem}.{extension}")

    logger.info(f"Translated {len(results) - failed}/{len(results)} units to {descriptor.name}")
    if failed:
        raise typer.Exit(1)


@typed_command(app.command("languages"))
def list_languages(
    polyfill: Path | None = POLYFILL_OPT,
) -> None:
    """List the registered target languages."""
    registry = _build_registry(polyfill, None)
    for name in registry.names():
        descriptor = registry.get(name)
        kind = "native" if descriptor.is_native else "mapping"
        extensions = " ".join(f".{ext}" for ext in descriptor.file_types)
        typer.echo(
            f"{name} {descriptor.version} ({kind}) {extensions} - {descriptor.description}"
        )


@typed_command(app.command("check"))
def check_mapping(
    mapping_file: Path = MAPPING_FILE_ARG,
) -> None:
    """Check a mapping definition without translating anything.

    Example: surn check mappings/javascript.smtt
    """
    try:
        definition = load_mapping(mapping_file)
        descriptor = LanguageRegistry().register(LanguageDescriptor.from_mapping(definition))
    except (OSError, ConfigurationError) as e:
        logger.error(f"Invalid mapping definition: {e}")
        raise typer.Exit(1) from e

    labels = descriptor.labels.labels(descriptor.name) if descriptor.labels else []
    rules = descriptor.rules.rules(descriptor.name) if descriptor.rules else []
    typer.echo(
        f"{descriptor.name} {descriptor.version}: "
        f"{len(labels)} labels, {len(rules)} rules, typing {descriptor.type_system.typing}"
    )


@typed_command(app.command("unplug"))
def unplug_token(
    token: str = typer.Argument(..., help="Target-language surface token"),
    language: str | None = LANGUAGE_OPT,
    polyfill: Path | None = POLYFILL_OPT,
) -> None:
    """Run the parse-direction rule for a token.

    Example: surn unplug let -l javascript
    """
    registry = _build_registry(polyfill, None)
    descriptor = _resolve_language(registry, language, None)
    try:
        with registry.session(descriptor.name) as translator:
            typer.echo(translator.unplug(token))
    except TranspilerError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


class MappingChangeHandler(FileSystemEventHandler):  # type: ignore
    """Event handler for mapping and AST file changes."""

    def __init__(
        self,
        registry: LanguageRegistry,
        language: str,
        mapping_file: Path,
        ast_file: Path,
        output: Path,
        options: TranslationOptions,
    ):
        """Initialize the change handler.

        Args:
            registry: Registry the mapping is re-registered into
            language: Target language name
            mapping_file: Watched mapping definition
            ast_file: Watched AST file
            output: File the translation is written to
            options: Pass options
        """
        self.registry = registry
        self.language = language
        self.mapping_file = mapping_file.resolve()
        self.ast_file = ast_file.resolve()
        self.output = output
        self.options = options
        self.needs_reload = False

    def on_modified(self, event: watchdog.events.FileSystemEvent) -> None:
        """Handle file modified event.

        Args:
            event: File system event
        """
        path = os.path.abspath(event.src_path)
        if path in (str(self.mapping_file), str(self.ast_file)):
            logger.info(f"Detected changes in {os.path.basename(path)}")
            self.needs_reload = True

    def reload(self) -> bool:
        """Re-register the mapping and translate again.

        The language is replaced as a whole; a broken mapping leaves the
        previous version registered.
        """
        try:
            self.registry.load_polyfill(self.mapping_file)
            root = load(self.ast_file)
        except (OSError, ValueError, TranspilerError) as e:
            logger.error(f"Reload failed: {e}")
            return False
        result = transpile(root, self.language, self.registry, self.options)
        _report(result)
        if not result.ok:
            return False
        _write(result.text or "", self.output)
        logger.info(f"Updated {self.output}")
        return True


@typed_command(app.command("watch"))
def watch_mapping(
    ast_file: Path = AST_FILE_ARG,
    output: Path = WATCH_OUTPUT_ARG,
    polyfill: Path = typer.Option(..., "--polyfill", "-p", help="Mapping definition to watch"),
    language: str | None = LANGUAGE_OPT,
    option: list[str] = OPTION_OPT,
) -> None:
    """Watch a mapping definition and re-translate on changes.

    Example: surn watch hello.ast.json hello.js -p mappings/javascript.smtt
    """
    registry = _build_registry(polyfill, None)
    if language is None:
        language = load_mapping(polyfill).name
    options = _translation_options(None, option, None, None)

    handler = MappingChangeHandler(registry, language, polyfill, ast_file, output, options)
    handler.reload()

    # Watch the files' directories, not the files themselves
    observer = watchdog.observers.Observer()
    directories = {handler.mapping_file.parent, handler.ast_file.parent}
    for directory in directories:
        observer.schedule(handler, path=str(directory), recursive=False)
    observer.start()
    logger.info(f"Watching {polyfill} (press Ctrl+C to exit)...")

    try:
        while True:
            if handler.needs_reload:
                handler.needs_reload = False
                handler.reload()
            time.sleep(0.1)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, stopping...")
    finally:
        observer.stop()
        observer.join()


if __name__ == "__main__":
    app()
