#!/usr/bin/env python3
"""
pgpverify CLI Helpers

Shared formatting utilities for consistent CLI output across all commands.
Provides colored status messages, the result table and logging setup.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from pgpverify.config import VerifyConfig, load_config
from pgpverify.pgp.results import SignatureCheckResult, SignatureStatus

# Single shared Console instance for the entire CLI
console = Console()

STATUS_STYLES = {
    SignatureStatus.SIGNATURE_VALID: "green",
    SignatureStatus.SIGNATURE_INVALID: "red",
    SignatureStatus.SIGNATURE_ERROR: "red",
    SignatureStatus.SIGNATURE_NOT_RESOLVED: "yellow",
    SignatureStatus.KEY_NOT_FOUND: "yellow",
    SignatureStatus.ARTIFACT_NOT_RESOLVED: "red",
    SignatureStatus.ERROR: "red",
}


def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]✓[/green] {escape(message)}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow triangle."""
    console.print(f"[yellow]⚠[/yellow]  {escape(message)}")


def print_error(message: str, fix_hint: str = "") -> None:
    """Print an error message with red X and optional fix hint."""
    console.print(f"[red]✗[/red] {escape(message)}")
    if fix_hint:
        console.print(f"  [white]Hint: {escape(fix_hint)}[/white]")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route the pgpverify logger through rich."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logger = logging.getLogger("pgpverify")
    logger.handlers.clear()
    handler = RichHandler(console=console, show_time=False, show_path=verbose, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


def results_table(results: Iterable[SignatureCheckResult]) -> Table:
    """Summary table: one row per artifact."""
    table = Table(title="PGP verification")
    table.add_column("Artifact", style="cyan")
    table.add_column("Status")
    table.add_column("Key")
    for result in results:
        style = STATUS_STYLES.get(result.status, "white")
        key = result.key.fingerprint_hex if result.key else (
            str(result.signature.key_id) if result.signature else ""
        )
        table.add_row(str(result.artifact), f"[{style}]{result.status.value}[/{style}]", key)
    return table


def resolve_config(
    config_path: Optional[Path] = None,
    keyserver: Optional[str] = None,
    cache: Optional[Path] = None,
    offline: bool = False,
) -> VerifyConfig:
    """Configuration file values with command line overrides applied.

    Raises:
        ConfigError: If the configuration file is invalid.
    """
    config = load_config(config_path)
    server_updates = {}
    if keyserver:
        server_updates["servers"] = keyserver
    if offline:
        server_updates["offline"] = True
    updates = {}
    if server_updates:
        updates["key_server"] = config.key_server.model_copy(update=server_updates)
    if cache is not None:
        updates["cache_path"] = cache
    return config.model_copy(update=updates) if updates else config
