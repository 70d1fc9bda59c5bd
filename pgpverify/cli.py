#!/usr/bin/env python3
"""
pgpverify CLI - OpenPGP signature verification for build artifacts.

Usage:
    pgpverify check MANIFEST [--keys-map LOCATION] [--keyserver URLS] [--report FILE]
    pgpverify show ARTIFACT_FILE SIGNATURE_FILE
    pgpverify keys fetch [KEYID...] [--manifest FILE]
    pgpverify keysmap check LOCATION
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.markup import escape

from pgpverify import __version__
from pgpverify.artifacts import ManifestError
from pgpverify.cli_keys import keys
from pgpverify.cli_keysmap import keysmap
from pgpverify.cli_helpers import (
    console,
    print_error,
    print_success,
    print_warning,
    resolve_config,
    results_table,
    setup_logging,
)
from pgpverify.config import ConfigError, KeysMapLocationConfig
from pgpverify.keysmap import KeysMapError
from pgpverify.pgp.keys import key_algorithm_name
from pgpverify.pgp.results import ArtifactInfo, SignatureStatus
from pgpverify.pgp.signatures import check_signature, hash_algorithm_name
from pgpverify.verifier import VerificationFailure, build_key_cache, run_check


@click.group()
@click.version_option(version=__version__, prog_name="pgpverify")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Only show warnings and errors")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Configuration file (default: ~/.pgpverify/config.yaml)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool, config_path: Optional[Path]):
    """pgpverify - verify PGP signatures of build artifacts against a keys map."""
    setup_logging(verbose=verbose, quiet=quiet)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["quiet"] = quiet


@main.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--keys-map", "-k", "keys_maps", multiple=True,
              help="Keys map location (path, file: or http(s) URL); repeatable")
@click.option("--keyserver", help="Key servers separated by ';' (overrides config)")
@click.option("--cache", type=click.Path(file_okay=False, path_type=Path),
              help="Key cache directory (default: ~/.pgpverify/pgpkeys-cache)")
@click.option("--report", type=click.Path(dir_okay=False, path_type=Path),
              help="Write a JSON report to this file")
@click.option("--offline", is_flag=True, help="Never contact key servers")
@click.option("--fail-weak-signature", is_flag=True, default=None,
              help="Fail when a signature uses a weak hash algorithm")
@click.option("--disable-checksum", is_flag=True, default=None,
              help="Always verify, even if a prior run validated the same artifacts")
@click.option("--workers", type=click.IntRange(min=1), help="Parallel signature checks")
@click.pass_context
def check(
    ctx: click.Context,
    manifest: Path,
    keys_maps: Tuple[str, ...],
    keyserver: Optional[str],
    cache: Optional[Path],
    report: Optional[Path],
    offline: bool,
    fail_weak_signature: Optional[bool],
    disable_checksum: Optional[bool],
    workers: Optional[int],
):
    """Verify all artifacts listed in a YAML MANIFEST.

    Exit code 0 if every artifact is consistent with the keys map, 1 otherwise.
    """
    try:
        config = resolve_config(ctx.obj["config_path"], keyserver=keyserver, cache=cache, offline=offline)
    except ConfigError as e:
        print_error(str(e), "Fix or remove ~/.pgpverify/config.yaml")
        sys.exit(1)

    updates = {}
    if keys_maps:
        updates["keys_map_locations"] = [KeysMapLocationConfig(location=k) for k in keys_maps]
    if report is not None:
        updates["report_file"] = report
    if fail_weak_signature:
        updates["fail_weak_signature"] = True
    if disable_checksum:
        updates["disable_checksum"] = True
    if workers is not None:
        updates["max_workers"] = workers
    if ctx.obj["quiet"]:
        updates["quiet"] = True
    config = config.model_copy(update=updates)

    try:
        results = run_check(config, manifest)
    except ManifestError as e:
        print_error(str(e), "Each artifact needs group_id, artifact_id and version")
        sys.exit(1)
    except KeysMapError as e:
        print_error(f"Invalid keys map: {e}")
        sys.exit(1)
    except VerificationFailure as e:
        print_error(str(e), "See the log above for the rejected artifacts")
        sys.exit(1)
    except OSError as e:
        print_error(str(e))
        sys.exit(1)

    if not results:
        print_success("Nothing to verify")
        return

    if not config.quiet:
        console.print(results_table(results))
    print_success(f"{len(results)} artifact(s) verified")


@main.command()
@click.argument("artifact_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("signature_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--keyserver", help="Key servers separated by ';' (overrides config)")
@click.option("--cache", type=click.Path(file_okay=False, path_type=Path),
              help="Key cache directory (default: ~/.pgpverify/pgpkeys-cache)")
@click.option("--offline", is_flag=True, help="Never contact key servers")
@click.pass_context
def show(
    ctx: click.Context,
    artifact_file: Path,
    signature_file: Path,
    keyserver: Optional[str],
    cache: Optional[Path],
    offline: bool,
):
    """Check one file against its detached signature and show the details.

    Exit code 0 if the signature is valid, 1 otherwise.
    """
    try:
        config = resolve_config(ctx.obj["config_path"], keyserver=keyserver, cache=cache, offline=offline)
        key_cache = build_key_cache(config)
    except ConfigError as e:
        print_error(str(e), "Fix or remove ~/.pgpverify/config.yaml")
        sys.exit(1)
    except OSError as e:
        print_error(str(e))
        sys.exit(1)

    artifact = ArtifactInfo(
        group_id="local",
        artifact_id=artifact_file.stem,
        type=artifact_file.suffix.lstrip(".") or "file",
        version="0",
    )
    result = check_signature(artifact, artifact_file, signature_file, key_cache)

    console.print(f"[bold]File:[/bold]        {escape(str(artifact_file))}")
    console.print(f"[bold]Signature:[/bold]   {escape(str(signature_file))}")
    if result.signature is not None:
        sig = result.signature
        console.print(f"  Key ID:      {sig.key_id}")
        console.print(f"  Hash:        {hash_algorithm_name(sig.hash_algorithm)}")
        console.print(f"  Created:     {sig.date.isoformat() if sig.date else '-'}")
    if result.key is not None:
        key = result.key
        console.print(f"[bold]Key:[/bold]         {key.fingerprint_hex}")
        if key.master:
            console.print(f"  Master key:  {key.master_hex}")
        try:
            algorithm = key_algorithm_name(key.algorithm)
        except ValueError:
            algorithm = str(key.algorithm)
        console.print(f"  Algorithm:   {algorithm} ({key.bits} bits)")
        for uid in key.uids:
            console.print(f"  User ID:     {uid}", markup=False)
    if result.key_show_url:
        console.print(f"  Details:     {result.key_show_url}", markup=False)
    if result.revocation_signature is not None:
        revocation = result.revocation_signature
        print_warning(f"Key revoked: {revocation.reason_as_string} {revocation.description}".rstrip())

    if result.status is SignatureStatus.SIGNATURE_VALID:
        print_success("PGP Signature OK")
        return
    print_error(f"{result.status.value}: {result.error_message or 'signature does not match'}")
    sys.exit(1)


main.add_command(keys)
main.add_command(keysmap)


if __name__ == "__main__":
    main()
