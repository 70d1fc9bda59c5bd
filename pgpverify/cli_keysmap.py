#!/usr/bin/env python3
"""
pgpverify CLI - keysmap command group

Validate keys map documents before using them in a run.
"""
from __future__ import annotations

import sys

import click
from rich.table import Table

from pgpverify.cli_helpers import console, print_error, print_success
from pgpverify.keysmap import KeysMap, KeysMapError


@click.group()
def keysmap():
    """Keys map utilities."""
    pass


@keysmap.command("check")
@click.argument("locations", nargs=-1, required=True)
@click.option("--list", "list_rules", is_flag=True, help="Print the loaded rules")
def keysmap_check(locations, list_rules: bool):
    """Parse keys maps and report the number of rules.

    LOCATIONS are paths, file: URLs or http(s) URLs. Exit code 1 on the
    first malformed or unreadable map.
    """
    keys_map = KeysMap()
    for location in locations:
        try:
            keys_map.load(location)
        except KeysMapError as e:
            print_error(str(e), "Entries look like: groupId:artifactId:type:version = 0x<fingerprint>")
            sys.exit(1)
        except OSError as e:
            print_error(f"Cannot read {location}: {e}")
            sys.exit(1)

    if list_rules:
        table = Table(title="Keys map")
        table.add_column("Artifact pattern", style="cyan")
        table.add_column("Key items")
        for pattern, items in keys_map:
            table.add_row(str(pattern), str(items))
        console.print(table)

    print_success(f"Keys map OK: {keys_map.size()} rule(s)")
