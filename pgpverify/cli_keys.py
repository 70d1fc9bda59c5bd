#!/usr/bin/env python3
"""
pgpverify CLI - keys command group

Key cache maintenance: fetch keys from the key servers ahead of a run.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from pgpverify.artifacts import ManifestError
from pgpverify.cli_helpers import console, print_error, print_success, print_warning, resolve_config
from pgpverify.config import ConfigError
from pgpverify.keyserver import PGPKeyNotFound
from pgpverify.pgp import KeyId, PGPError
from pgpverify.pgp.keys import build_key_info
from pgpverify.verifier import build_key_cache, prefetch_keys


@click.group()
def keys():
    """Key cache management."""
    pass


@keys.command("fetch")
@click.argument("key_ids", nargs=-1)
@click.option("--manifest", "-m", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Fetch the keys of every signed artifact in this manifest")
@click.option("--keyserver", help="Key servers separated by ';' (overrides config)")
@click.option("--cache", type=click.Path(file_okay=False, path_type=Path),
              help="Key cache directory (default: ~/.pgpverify/pgpkeys-cache)")
@click.pass_context
def keys_fetch(
    ctx: click.Context,
    key_ids,
    manifest: Optional[Path],
    keyserver: Optional[str],
    cache: Optional[Path],
):
    """Fetch keys into the local cache.

    KEY_IDS are 64-bit key ids or fingerprints in hex, with or without 0x.
    With --manifest, the signature of every artifact is read and its key
    fetched, so a later check can run with --offline.
    """
    if not key_ids and manifest is None:
        print_error("Nothing to fetch", "Pass key ids or --manifest FILE")
        sys.exit(1)

    config_path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        config = resolve_config(config_path, keyserver=keyserver, cache=cache)
        key_cache = build_key_cache(config)
    except ConfigError as e:
        print_error(str(e), "Fix or remove ~/.pgpverify/config.yaml")
        sys.exit(1)
    except OSError as e:
        print_error(str(e))
        sys.exit(1)

    failed = 0
    if manifest is not None:
        failed += _prefetch_manifest(config, manifest, key_cache)

    for text in key_ids:
        try:
            key_id = KeyId.parse(text)
        except ValueError as e:
            print_error(str(e), "Use 16 hex digits for a key id or 40 for a fingerprint")
            failed += 1
            continue

        try:
            pack = key_cache.get_key_ring(key_id)
        except PGPKeyNotFound as e:
            print_error(str(e))
            failed += 1
            continue
        except (PGPError, OSError) as e:
            print_error(f"Cannot fetch {key_id}: {e}")
            failed += 1
            continue

        if not pack.has_public_keys:
            print_warning(f"{key_id}: revoked, no public key available")
            continue

        key = key_id.key_from_ring(pack.key_ring)
        info = build_key_info(key, pack.key_ring)
        print_success(f"{info.fingerprint_hex}")
        for uid in info.uids:
            console.print(f"  {uid}", markup=False)
        if pack.has_revocation_signature:
            print_warning(f"{key_id}: key is revoked")

    if failed:
        sys.exit(1)


def _prefetch_manifest(config, manifest: Path, key_cache) -> int:
    """Warm the cache for a manifest; unresolved artifacts only warn."""
    try:
        unresolved = prefetch_keys(config, manifest, key_cache)
    except ManifestError as e:
        print_error(str(e))
        return 1

    if unresolved:
        print_warning(f"{len(unresolved)} artifact(s) in {manifest} without a resolved signature or key")
    else:
        print_success(f"Keys for {manifest} cached")
    return 0
