"""
CLI utility helpers — pipeline loading, store construction, output.
"""

from __future__ import annotations

import importlib
import importlib.util
import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from reprocache.core.errors import ConfigError, ReproError
from reprocache.core.hashing import compute_hash
from reprocache.core.logging import bind_context, configure_logging
from reprocache.core.settings import get_settings
from reprocache.execution.retry import ExponentialBackoff
from reprocache.orchestration.graph import Graph
from reprocache.store.local import LocalArtifactStore

console = Console()
err_console = Console(stderr=True)


# ── Pipeline loading ─────────────────────────────────────────────────────


def _import_target(module_ref: str) -> Any:
    """Import a dotted module name or a ``.py`` file path."""
    if module_ref.endswith(".py"):
        path = Path(module_ref)
        if not path.is_file():
            raise ConfigError(f"Pipeline file not found: {module_ref}")
        # Same-stem files in different directories must not share a sys.modules entry.
        module_name = f"_reprocache_pipeline_{path.stem}_{compute_hash(path.resolve(), length=12)}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ConfigError(f"Cannot load module from: {module_ref}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(module_ref)


def resolve_pipeline(ref: str) -> Graph:
    """Resolve ``'module:attr'`` (or ``'path/to/file.py:attr'``) to a Graph.

    The attribute may be a ``Graph`` or a zero-argument callable returning one.

    Raises:
        ConfigError: If the reference is malformed or does not yield a Graph.
    """
    module_ref, sep, attr_path = ref.rpartition(":")
    if not sep or not module_ref or not attr_path:
        raise ConfigError(f"Invalid pipeline reference (expected MODULE:ATTR): {ref!r}")

    try:
        obj: Any = _import_target(module_ref)
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Error importing {module_ref!r}: {e}", cause=e) from e

    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigError(f"{module_ref!r} has no attribute {attr_path!r}", cause=e) from e

    if not isinstance(obj, Graph) and callable(obj):
        obj = obj()
    if not isinstance(obj, Graph):
        raise ConfigError(f"{ref!r} resolved to {type(obj).__name__}, expected Graph")
    return obj


# ── Store / logging ──────────────────────────────────────────────────────


def make_store(store_dir: Path | None = None) -> LocalArtifactStore:
    """Open the local store, defaulting to ``REPRO_STORE_DIR``."""
    settings = get_settings()
    return LocalArtifactStore(
        store_dir or settings.store_dir,
        serializer=settings.serializer,
        read_retry=ExponentialBackoff(
            max_retries=settings.read_retries,
            base_delay=settings.retry_base_delay,
        ),
    )


def setup_logging() -> None:
    """Configure structlog from settings for this invocation."""
    settings = get_settings()
    configure_logging(level=settings.log_level, format=settings.log_format, force=True)


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    """Write JSON to stdout unwrapped, so it stays machine-readable."""
    typer.echo(json.dumps(payload, indent=2, default=str))


def exit_with_error(error: Exception, code: int = 2) -> NoReturn:
    """Render an error to stderr and exit."""
    if isinstance(error, ReproError):
        err_console.print(f"[bold red]Error[/bold red] ({type(error).__name__}): {escape(error.message)}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {escape(str(error))}")
    raise typer.Exit(code=code)


def load_pipeline(ref: str) -> Graph:
    """``resolve_pipeline`` with CLI error handling."""
    try:
        graph = resolve_pipeline(ref)
        graph.validate()
    except ReproError as e:
        exit_with_error(e)
    bind_context(pipeline=graph.name)
    return graph
